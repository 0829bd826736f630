"""Offline queue and remote reconciliation."""

from ledger.sync.merge import last_writer_wins, reconcile
from ledger.sync.queue import (
    DIRTY_QUEUE_KEY,
    OfflineMutationQueue,
    parse_collection,
)

__all__ = [
    "DIRTY_QUEUE_KEY",
    "OfflineMutationQueue",
    "last_writer_wins",
    "parse_collection",
    "reconcile",
]
