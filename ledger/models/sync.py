"""
Sync Models

Shapes exchanged between the offline queue, the reconciliation merge and
the engine.
"""

from enum import Enum
from typing import Optional

from pydantic import BaseModel, Field

from ledger.models.transaction import TransactionRecord


class CollectionName(str, Enum):
    """
    Collections that are persisted remotely and can be marked dirty.

    Values double as the cache key and the remote path segment.
    """
    TRANSACTIONS = "tx"
    CARDS = "cards"
    START_BALANCE = "startBal"
    START_DATE = "startSet"
    BUDGETS = "budgets"


class MergeStrategy(str, Enum):
    """How a remote snapshot was folded into local state."""
    REPLACE = "replace"
    MERGE = "merge"


class ReconciliationResult(BaseModel):
    """
    Outcome of reconciling a remote snapshot with local state.

    Consumers (cache write, re-flush, listeners) act on this description;
    the merge itself performs no I/O.
    """

    strategy: MergeStrategy
    records: list[TransactionRecord] = Field(default_factory=list)
    added_ids: list[str] = Field(default_factory=list)
    removed_ids: list[str] = Field(default_factory=list)
    updated_ids: list[str] = Field(default_factory=list)
    normalization_changed: bool = Field(
        default=False,
        description="Re-normalizing the merged set changed at least one record"
    )

    @property
    def changed(self) -> bool:
        return bool(self.added_ids or self.removed_ids or self.updated_ids)


class ChangeSource(str, Enum):
    """Where a change to local state came from."""
    LOCAL = "local"
    REMOTE = "remote"
    CACHE = "cache"


class LedgerChange(BaseModel):
    """Notification handed to change listeners (UI refresh and the like)."""

    source: ChangeSource
    collections: list[CollectionName] = Field(default_factory=list)
    reconciliation: Optional[ReconciliationResult] = None
