"""
Budget Lifecycle

Opening, refreshing and closing budgets as the calendar moves.

- A master rule with a budget tag owns one recurring budget per cycle.
  The cycle runs from the occurrence on or before today up to the day
  before the next occurrence.
- A planned one-off with a budget tag opens an ad-hoc budget from today
  until its date.
- Budgets whose window ended before today are closed.
- Only one budget per tag is active at a time; the most recent one wins.
"""

from collections.abc import Mapping
from datetime import date, datetime, timedelta
from typing import Any, Iterable, Optional

from pydantic import BaseModel, Field, ValidationError

from ledger.budgets.calculations import recompute_budget
from ledger.models.budget import Budget, BudgetStatus, BudgetType
from ledger.models.transaction import TransactionRecord
from ledger.rules.recurrence import cycle_start_for, next_occurrence_from


class BudgetChange(BaseModel):
    """Updated budget list and what changed."""

    budgets: list[Budget] = Field(default_factory=list)
    created_ids: list[str] = Field(default_factory=list)
    closed_ids: list[str] = Field(default_factory=list)

    @property
    def changed(self) -> bool:
        return bool(self.created_ids or self.closed_ids)


def recurring_budget_id(master_id: str, cycle_start: date) -> str:
    return f"bud-{master_id}-{cycle_start.isoformat()}"


def current_cycle_window(master: TransactionRecord, today: date) -> Optional[tuple[date, date]]:
    """Inclusive [start, end] of the master's cycle containing today."""
    start = cycle_start_for(master, today)
    if start is None:
        return None
    following = next_occurrence_from(master, start)
    return start, following - timedelta(days=1)


def ensure_recurring_budgets(
    records: Iterable[TransactionRecord],
    budgets: Iterable[Budget],
    *,
    today: date,
    now: datetime,
) -> BudgetChange:
    """Open the current-cycle budget of every tagged master that lacks one."""
    records = list(records)
    result = list(budgets)
    known = {b.id for b in result}
    created = []

    for master in records:
        if not master.is_master or not master.budget_tag:
            continue
        window = current_cycle_window(master, today)
        if window is None:
            continue
        budget_id = recurring_budget_id(master.id, window[0])
        if budget_id in known:
            continue
        budget = recompute_budget(
            Budget(
                id=budget_id,
                tag=master.budget_tag,
                budget_type=BudgetType.RECURRING,
                start_date=window[0],
                end_date=window[1],
                initial_value=abs(master.value),
                recurrence_id=master.id,
                trigger_tx_id=master.id,
                trigger_tx_iso=window[0],
                last_updated=now,
            ),
            records,
        )
        result.append(budget)
        known.add(budget_id)
        created.append(budget_id)

    enforced = enforce_single_active(result, now=now)
    return BudgetChange(
        budgets=enforced,
        created_ids=created,
        closed_ids=_newly_closed(result, enforced),
    )


def close_expired_budgets(
    budgets: Iterable[Budget],
    *,
    today: date,
    now: datetime,
) -> BudgetChange:
    """Close active budgets whose window ended before today."""
    result = []
    closed = []
    for budget in budgets:
        if budget.is_active and budget.end_date is not None and budget.end_date < today:
            budget = budget.model_copy(update={"status": BudgetStatus.CLOSED, "last_updated": now})
            closed.append(budget.id)
        result.append(budget)
    return BudgetChange(budgets=result, closed_ids=closed)


def upsert_budget_from_transaction(
    record: TransactionRecord,
    budgets: Iterable[Budget],
    records: Iterable[TransactionRecord],
    *,
    today: date,
    now: datetime,
) -> BudgetChange:
    """
    Open or refresh the budget a newly saved tagged record implies.

    Masters get their current-cycle recurring budget; planned future
    one-offs get an ad-hoc budget from today to their date. Anything else
    leaves the budgets unchanged.
    """
    records = list(records)
    budgets = list(budgets)
    if not record.budget_tag:
        return BudgetChange(budgets=budgets)

    if record.is_master:
        others = [r for r in records if r.id != record.id]
        return ensure_recurring_budgets(others + [record], budgets, today=today, now=now)

    if record.op_date <= today:
        return BudgetChange(budgets=budgets)

    budget_id = f"bud-{record.id}"
    budget = recompute_budget(
        Budget(
            id=budget_id,
            tag=record.budget_tag,
            budget_type=BudgetType.AD_HOC,
            start_date=today,
            end_date=record.op_date,
            initial_value=abs(record.value),
            trigger_tx_id=record.id,
            trigger_tx_iso=record.op_date,
            last_updated=now,
        ),
        records,
    )
    existing = [b for b in budgets if b.id != budget_id]
    created = [] if len(existing) != len(budgets) else [budget_id]
    candidates = existing + [budget]
    enforced = enforce_single_active(candidates, now=now)
    return BudgetChange(
        budgets=enforced,
        created_ids=created,
        closed_ids=_newly_closed(candidates, enforced),
    )


def enforce_single_active(budgets: Iterable[Budget], *, now: datetime) -> list[Budget]:
    """Close all but the latest-starting active budget of each tag."""
    budgets = list(budgets)
    latest: dict[str, Budget] = {}
    for budget in budgets:
        if not budget.is_active:
            continue
        current = latest.get(budget.tag)
        if current is None or (budget.start_date, budget.id) > (current.start_date, current.id):
            latest[budget.tag] = budget

    result = []
    for budget in budgets:
        if budget.is_active and latest[budget.tag].id != budget.id:
            budget = budget.model_copy(update={"status": BudgetStatus.CLOSED, "last_updated": now})
        result.append(budget)
    return result


def _newly_closed(before: list[Budget], after: list[Budget]) -> list[str]:
    return [new.id for old, new in zip(before, after) if old.is_active and not new.is_active]


def normalize_budget(raw: Any) -> Optional[Budget]:
    """A stored budget, or None when it lacks an id/tag or does not validate."""
    if isinstance(raw, Budget):
        return raw
    if not isinstance(raw, Mapping) or not raw.get("id") or not raw.get("tag"):
        return None
    try:
        return Budget.model_validate(raw)
    except ValidationError:
        return None


def normalize_budgets(raw_budgets: Any) -> list[Budget]:
    """Readable budgets from a stored collection, deduplicated by id."""
    if raw_budgets is None:
        return []
    if isinstance(raw_budgets, Mapping):
        raw_budgets = list(raw_budgets.values())
    by_id: dict[str, Budget] = {}
    for raw in raw_budgets:
        budget = normalize_budget(raw)
        if budget is not None:
            by_id[budget.id] = budget
    return list(by_id.values())
