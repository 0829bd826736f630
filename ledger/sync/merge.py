"""
Reconciliation Merge

Folds a remote snapshot of the transaction collection into local state.

Two strategies:
1. REPLACE - no local ledger writes are pending, so the remote snapshot is
   authoritative and replaces local state wholesale. This is how deletions
   made on another device propagate.
2. MERGE - local writes are still queued. Every local record is kept;
   records present on both sides are resolved last-writer-wins on
   modifiedAt (falling back to ts, ties go to the remote copy); remote-only
   records are added.

DESIGN DECISION: Merging is pure. It returns a ReconciliationResult that
the caller applies; cache writes, re-flushing and UI refreshes are
separate consumers of that result.

TRADEOFFS:
- In MERGE mode a record deleted remotely survives locally and is written
  back on the next flush. Per-record tombstones are out of scope.
"""

from typing import Iterable

from ledger.models.sync import MergeStrategy, ReconciliationResult
from ledger.models.transaction import TransactionRecord, sort_key


def last_writer_wins(local: TransactionRecord, remote: TransactionRecord) -> TransactionRecord:
    """Newer modification wins; equal instants favour the remote copy."""
    if local.last_modified > remote.last_modified:
        return local
    return remote


def reconcile(
    local: Iterable[TransactionRecord],
    remote: Iterable[TransactionRecord],
    *,
    pending: bool,
) -> ReconciliationResult:
    """
    Reconcile local records with a remote snapshot.

    Args:
        local: Current local records
        remote: Records from the remote snapshot (already normalized)
        pending: Whether local ledger writes are still queued

    Returns:
        ReconciliationResult with the merged records (canonical order) and
        the ids added, removed and updated relative to local state
    """
    local_by_id = {r.id: r for r in local}
    remote_by_id = {r.id: r for r in remote}

    added = [rid for rid in remote_by_id if rid not in local_by_id]

    if not pending:
        removed = [rid for rid in local_by_id if rid not in remote_by_id]
        updated = [
            rid for rid, record in remote_by_id.items()
            if rid in local_by_id and local_by_id[rid] != record
        ]
        return ReconciliationResult(
            strategy=MergeStrategy.REPLACE,
            records=sorted(remote_by_id.values(), key=sort_key),
            added_ids=added,
            removed_ids=removed,
            updated_ids=updated,
        )

    merged = dict(local_by_id)
    updated = []
    for rid, record in remote_by_id.items():
        current = merged.get(rid)
        if current is None:
            merged[rid] = record
            continue
        winner = last_writer_wins(current, record)
        if winner is not current and winner != current:
            merged[rid] = winner
            updated.append(rid)

    return ReconciliationResult(
        strategy=MergeStrategy.MERGE,
        records=sorted(merged.values(), key=sort_key),
        added_ids=added,
        updated_ids=updated,
    )
