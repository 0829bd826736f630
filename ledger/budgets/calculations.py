"""
Budget Calculations

Spending against a budget is derived from the ledger, never stored by hand.
"""

from datetime import date
from decimal import Decimal
from typing import Iterable, Optional

from ledger.models.budget import Budget
from ledger.models.transaction import TransactionRecord


def spent_in_period(
    records: Iterable[TransactionRecord],
    tag: str,
    start: date,
    end: Optional[date],
    *,
    exclude_ids: Iterable[Optional[str]] = (),
) -> Decimal:
    """
    Sum of absolute values of executed records tagged `tag` in [start, end].

    Master rules, planned and materialized records never count. Records
    whose id or parentId is in `exclude_ids` (the budget's own trigger
    series) are skipped.
    """
    excluded = {i for i in exclude_ids if i}
    total = Decimal("0")
    for record in records:
        if record.is_master or record.planned or record.is_materialization:
            continue
        if record.budget_tag != tag:
            continue
        if record.id in excluded or record.parent_id in excluded:
            continue
        if record.op_date < start or (end is not None and record.op_date > end):
            continue
        total += abs(record.value)
    return total


def recompute_budget(budget: Budget, records: Iterable[TransactionRecord]) -> Budget:
    """Refresh spentValue and reservedValue = max(initial - spent, 0)."""
    spent = spent_in_period(
        records,
        budget.tag,
        budget.start_date,
        budget.end_date,
        exclude_ids=(budget.recurrence_id, budget.trigger_tx_id),
    )
    reserved = max(budget.initial_value - spent, Decimal("0"))
    return budget.model_copy(update={"spent_value": spent, "reserved_value": reserved})
