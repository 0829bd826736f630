"""Projection of the ledger onto the calendar: overrides, occurrences, balances."""

from ledger.projection.balances import (
    DailyBalance,
    compute_daily_balances,
    impact_date,
    normalize_start_balance,
)
from ledger.projection.materializer import (
    occurrences_in_range,
    project_occurrence,
    tx_by_date,
    upcoming_planned,
)
from ledger.projection.overrides import (
    LedgerError,
    MasterMatch,
    OccurrenceNotFoundError,
    OverrideResult,
    RecordNotFoundError,
    delete_all,
    delete_single,
    detach_single,
    edit_record,
    find_master_for,
    heuristic_identity_match,
    split_series,
    split_virtual_id,
    truncate_future,
    virtual_id,
)

__all__ = [
    # Balances
    "DailyBalance",
    "compute_daily_balances",
    "impact_date",
    "normalize_start_balance",
    # Materializer
    "occurrences_in_range",
    "project_occurrence",
    "tx_by_date",
    "upcoming_planned",
    # Overrides
    "LedgerError",
    "MasterMatch",
    "OccurrenceNotFoundError",
    "OverrideResult",
    "RecordNotFoundError",
    "delete_all",
    "delete_single",
    "detach_single",
    "edit_record",
    "find_master_for",
    "heuristic_identity_match",
    "split_series",
    "split_virtual_id",
    "truncate_future",
    "virtual_id",
]
