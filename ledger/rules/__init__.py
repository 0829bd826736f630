"""Pure date rules: billing cycles and recurrence."""

from ledger.rules.billing import (
    ensure_cash_card,
    find_card,
    fold_name,
    infer_card,
    invoice_due_date,
    is_cash,
    post_date,
    validate_card_registry,
)
from ledger.rules.recurrence import (
    add_months,
    clamp_day,
    cycle_start_for,
    days_in_month,
    iter_dates,
    matches_pattern,
    next_occurrence_from,
    occurs_on,
    previous_occurrence_from,
)

__all__ = [
    "add_months",
    "clamp_day",
    "cycle_start_for",
    "days_in_month",
    "ensure_cash_card",
    "find_card",
    "fold_name",
    "infer_card",
    "invoice_due_date",
    "is_cash",
    "iter_dates",
    "matches_pattern",
    "next_occurrence_from",
    "occurs_on",
    "post_date",
    "previous_occurrence_from",
    "validate_card_registry",
]
