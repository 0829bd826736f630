"""
Budget Materialization

Turns budgets into transient ledger records so balance projections account
for money that is reserved but not yet spent.

- Reserve record: once a budget's cycle has started, the still unspent part
  of the budget (initialValue - spent) leaves on the cycle start date, paid
  with the linked master's method (cash otherwise)
- Return record: once the cycle is over, that same amount comes back on the
  cycle's last day

Real tagged spending always counts on its own, so during a cycle the
balance carries max(initial, spent) and after it only what was spent.
Nothing is materialized for a fully spent budget.

DESIGN DECISION: Materializations are computed on demand and are never
written to the store, the cache or the remote. They exist only in the
list handed to balance consumers, and are stripped again with
`filter_out_materializations`. Ids are deterministic, so a record with the
same id already present in the ledger is never duplicated.
"""

from datetime import date
from decimal import Decimal
from typing import Iterable

from ledger.budgets.calculations import spent_in_period
from ledger.models.budget import Budget
from ledger.models.transaction import Card, TransactionRecord
from ledger.rules.billing import post_date


RESERVE_PREFIX = "budget-reserve-"
RETURN_PREFIX = "budget-return-"


def generate_materializations(
    budgets: Iterable[Budget],
    records: Iterable[TransactionRecord],
    today: date,
    *,
    cards: Iterable[Card],
    cash_method: str,
) -> list[TransactionRecord]:
    """
    Reserve/return records implied by active budgets as of `today`.

    Args:
        budgets: All budgets
        records: The real ledger (used for spent amounts, linked masters
            and duplicate detection)
        today: Local date
        cards: Card registry for postDates
        cash_method: Name of the cash pseudo-card

    Returns:
        New transient records in budget order.
    """
    records = list(records)
    cards = list(cards)
    existing = {r.id for r in records}
    by_id = {r.id: r for r in records}
    generated: list[TransactionRecord] = []

    for budget in budgets:
        if not budget.is_active or today < budget.start_date:
            continue

        spent = spent_in_period(
            records,
            budget.tag,
            budget.start_date,
            budget.end_date,
            exclude_ids=(budget.recurrence_id, budget.trigger_tx_id),
        )
        unused = budget.initial_value - spent
        if unused <= Decimal("0"):
            continue

        master = by_id.get(budget.recurrence_id) if budget.recurrence_id else None
        method = master.method if master is not None else cash_method

        reserve_id = f"{RESERVE_PREFIX}{budget.id}"
        if reserve_id not in existing:
            generated.append(TransactionRecord(
                id=reserve_id,
                desc=f"[Budget reserve] {budget.tag}",
                value=-unused,
                op_date=budget.start_date,
                post_date=post_date(budget.start_date, method, cards, cash_method),
                method=method,
                planned=False,
                budget_tag=budget.tag,
                budget_reserve_for=budget.id,
            ))

        if budget.end_date is None or today <= budget.end_date:
            continue
        return_id = f"{RETURN_PREFIX}{budget.id}"
        if return_id not in existing:
            generated.append(TransactionRecord(
                id=return_id,
                desc=f"[Budget return] {budget.tag}",
                value=unused,
                op_date=budget.end_date,
                post_date=budget.end_date,
                method=cash_method,
                planned=False,
                budget_tag=budget.tag,
                budget_return_for=budget.id,
            ))

    return generated


def inject_materializations(
    records: Iterable[TransactionRecord],
    budgets: Iterable[Budget],
    today: date,
    *,
    cards: Iterable[Card],
    cash_method: str,
) -> list[TransactionRecord]:
    """The ledger plus its budget materializations (for balance consumers only)."""
    records = list(records)
    return records + generate_materializations(
        budgets, records, today, cards=cards, cash_method=cash_method
    )


def filter_out_materializations(records: Iterable[TransactionRecord]) -> list[TransactionRecord]:
    """Drop transient budget records, e.g. before anything is persisted."""
    return [
        r for r in records
        if not r.is_materialization
        and not r.id.startswith((RESERVE_PREFIX, RETURN_PREFIX))
    ]


def is_budget_trigger(record: TransactionRecord, budgets: Iterable[Budget]) -> bool:
    """
    Whether a record is the trigger of an active budget.

    A trigger only opens a reservation; the reserve record stands in for
    it in balances. Triggers are the budget's triggering record itself and,
    for recurring budgets, the master's occurrence on the cycle start.
    """
    if record.is_materialization:
        return False
    for budget in budgets:
        if not budget.is_active:
            continue
        if budget.trigger_tx_id and record.id == budget.trigger_tx_id:
            return True
        if (
            budget.recurrence_id
            and record.parent_id == budget.recurrence_id
            and record.op_date == (budget.trigger_tx_iso or budget.start_date)
        ):
            return True
    return False


def exclude_budget_triggers(
    records: Iterable[TransactionRecord],
    budgets: Iterable[Budget],
) -> list[TransactionRecord]:
    budgets = list(budgets)
    return [r for r in records if not is_budget_trigger(r, budgets)]
