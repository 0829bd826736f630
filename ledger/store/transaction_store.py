"""
Transaction Store

In-memory, identity-keyed collection of normalized records.

DESIGN DECISION: The store is an arena keyed by id. parentId is only a
lookup key into the same arena, never an object reference, so detaching,
merging and deleting never leave dangling pointers.

Reads are copy-on-read: `snapshot()` returns a new, canonically sorted
list of immutable records that callers may keep or reorder freely.
"""

from datetime import date
from typing import Any, Iterable, Optional

from ledger.models.transaction import Card, TransactionRecord, sort_key
from ledger.store.normalizer import NormalizationReport, normalize_collection
from ledger.telemetry import LedgerEventLogger


class TransactionStore:
    """Canonical in-memory ledger for one profile."""

    def __init__(
        self,
        cash_method: str,
        event_logger: Optional[LedgerEventLogger] = None,
    ):
        self._cash_method = cash_method
        self._event_logger = event_logger
        self._records: dict[str, TransactionRecord] = {}

    def __len__(self) -> int:
        return len(self._records)

    def __contains__(self, record_id: object) -> bool:
        return record_id in self._records

    # -------------------------------------------------------------------------
    # Reads
    # -------------------------------------------------------------------------

    def snapshot(self) -> list[TransactionRecord]:
        """All records ordered by postDate, then creation instant, then id."""
        return sorted(self._records.values(), key=sort_key)

    def get(self, record_id: str) -> Optional[TransactionRecord]:
        return self._records.get(record_id)

    def masters(self) -> list[TransactionRecord]:
        return [r for r in self.snapshot() if r.is_master]

    def children_of(self, master_id: str) -> list[TransactionRecord]:
        return [r for r in self.snapshot() if r.parent_id == master_id]

    # -------------------------------------------------------------------------
    # Writes
    # -------------------------------------------------------------------------

    def ingest(
        self,
        raw_records: Any,
        *,
        today: date,
        cards: Iterable[Card],
    ) -> NormalizationReport:
        """
        Replace the contents with normalized raw records.

        Returns:
            The normalization report; `report.changed` means the source
            must be written back.
        """
        report = normalize_collection(
            raw_records,
            today=today,
            cards=cards,
            cash_method=self._cash_method,
            event_logger=self._event_logger,
        )
        self.replace_all(report.records)
        return report

    def renormalize(self, *, today: date, cards: Iterable[Card]) -> NormalizationReport:
        """Re-run normalization over the current contents (e.g. after card edits)."""
        return self.ingest(self.snapshot(), today=today, cards=cards)

    def replace_all(self, records: Iterable[TransactionRecord]) -> None:
        self._records = {r.id: r for r in records}

    def upsert(self, *records: TransactionRecord) -> None:
        for record in records:
            self._records[record.id] = record

    def remove(self, *record_ids: str) -> list[str]:
        """Remove records by id; returns the ids that were present."""
        removed = []
        for record_id in record_ids:
            if self._records.pop(record_id, None) is not None:
                removed.append(record_id)
        return removed

    def clear(self) -> None:
        self._records = {}

    def to_storage(self) -> list[dict]:
        """JSON-safe payload of the whole collection."""
        return [r.to_storage_dict() for r in self.snapshot()]
