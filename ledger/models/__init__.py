"""
Data Models Package

This package contains all Pydantic models used by the ledger core.
All data flowing through the ledger must conform to these schemas.
"""

from ledger.models.transaction import (
    EPOCH,
    Card,
    OverrideScope,
    RecurrencePattern,
    TransactionRecord,
    creation_key,
    sort_key,
)
from ledger.models.budget import (
    Budget,
    BudgetStatus,
    BudgetType,
)
from ledger.models.events import (
    LedgerEvent,
    LedgerEventBuilder,
    LedgerEventType,
    LedgerSeverity,
)
from ledger.models.sync import (
    ChangeSource,
    CollectionName,
    LedgerChange,
    MergeStrategy,
    ReconciliationResult,
)

__all__ = [
    # Transaction models
    "EPOCH",
    "Card",
    "OverrideScope",
    "RecurrencePattern",
    "TransactionRecord",
    "creation_key",
    "sort_key",
    # Budget models
    "Budget",
    "BudgetStatus",
    "BudgetType",
    # Event models
    "LedgerEvent",
    "LedgerEventBuilder",
    "LedgerEventType",
    "LedgerSeverity",
    # Sync models
    "ChangeSource",
    "CollectionName",
    "LedgerChange",
    "MergeStrategy",
    "ReconciliationResult",
]
