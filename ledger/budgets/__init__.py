"""Budgets: spending calculations, lifecycle and balance materialization."""

from ledger.budgets.calculations import recompute_budget, spent_in_period
from ledger.budgets.lifecycle import (
    BudgetChange,
    close_expired_budgets,
    current_cycle_window,
    enforce_single_active,
    ensure_recurring_budgets,
    normalize_budget,
    normalize_budgets,
    recurring_budget_id,
    upsert_budget_from_transaction,
)
from ledger.budgets.materialization import (
    RESERVE_PREFIX,
    RETURN_PREFIX,
    exclude_budget_triggers,
    filter_out_materializations,
    generate_materializations,
    inject_materializations,
    is_budget_trigger,
)

__all__ = [
    # Calculations
    "recompute_budget",
    "spent_in_period",
    # Lifecycle
    "BudgetChange",
    "close_expired_budgets",
    "current_cycle_window",
    "enforce_single_active",
    "ensure_recurring_budgets",
    "normalize_budget",
    "normalize_budgets",
    "recurring_budget_id",
    "upsert_budget_from_transaction",
    # Materialization
    "RESERVE_PREFIX",
    "RETURN_PREFIX",
    "exclude_budget_triggers",
    "filter_out_materializations",
    "generate_materializations",
    "inject_materializations",
    "is_budget_trigger",
]
