"""
Ledger Event Models

Significant decisions taken by the ledger core are emitted as typed events
and written to the structured local log. They exist for telemetry and for
tests that need to observe *how* a result was reached (for instance, that
a projection was deduplicated by the identity heuristic rather than by
parentId).

DESIGN DECISION: Events are never persisted. The ledger keeps no audit
trail; losing the process loses the events.
"""

from datetime import datetime, timezone
from enum import Enum
from typing import Any, Optional
from uuid import UUID, uuid4

from pydantic import BaseModel, Field


class LedgerEventType(str, Enum):
    """Types of events the ledger core emits."""
    # Overrides
    OCCURRENCE_DETACHED = "occurrence_detached"
    OCCURRENCE_DELETED = "occurrence_deleted"
    SERIES_TRUNCATED = "series_truncated"
    SERIES_TRUNCATE_IGNORED = "series_truncate_ignored"
    SERIES_SPLIT = "series_split"
    SERIES_DELETED = "series_deleted"
    NON_RECURRING_FALLBACK = "non_recurring_fallback"

    # Projection
    HEURISTIC_MATCH = "heuristic_match"
    UNKNOWN_PATTERN = "unknown_pattern"

    # Store
    RECORD_NORMALIZED = "record_normalized"
    RECORD_DROPPED = "record_dropped"
    CARD_UNRESOLVED = "card_unresolved"

    # Sync
    COLLECTION_MARKED_DIRTY = "collection_marked_dirty"
    FLUSH_SUCCEEDED = "flush_succeeded"
    FLUSH_FAILED = "flush_failed"
    RETRY_SCHEDULED = "retry_scheduled"
    SNAPSHOT_REPLACED = "snapshot_replaced"
    SNAPSHOT_MERGED = "snapshot_merged"
    PROFILE_SWITCHED = "profile_switched"

    # Budgets
    BUDGET_CREATED = "budget_created"
    BUDGET_CLOSED = "budget_closed"


class LedgerSeverity(str, Enum):
    """Severity level for ledger events."""
    DEBUG = "debug"
    INFO = "info"
    WARNING = "warning"
    ERROR = "error"


class LedgerEvent(BaseModel):
    """A single ledger event."""

    event_id: UUID = Field(default_factory=uuid4)
    timestamp: datetime = Field(
        default_factory=lambda: datetime.now(timezone.utc),
        description="When the event occurred (UTC)"
    )
    event_type: LedgerEventType
    severity: LedgerSeverity = LedgerSeverity.INFO

    entity_type: Optional[str] = Field(
        default=None,
        description="Type of entity (e.g., 'record', 'collection', 'budget')"
    )
    entity_id: Optional[str] = None

    description: str = Field(..., max_length=500)
    details: dict[str, Any] = Field(default_factory=dict)
    error_message: Optional[str] = None

    def to_log_dict(self) -> dict:
        """
        Convert to a dictionary suitable for structured logging.
        """
        return {
            "event_id": str(self.event_id),
            "timestamp": self.timestamp.isoformat(),
            "event_type": self.event_type.value,
            "severity": self.severity.value,
            "entity_type": self.entity_type,
            "entity_id": self.entity_id,
            "description": self.description,
            "details": self.details,
            "error_message": self.error_message,
        }


class LedgerEventBuilder:
    """
    Helper class to build ledger events with common patterns.

    Usage:
        event = LedgerEventBuilder.heuristic_match("42", "rent-7", "2024-05-01")
        event = LedgerEventBuilder.flush_failed(["tx"], "offline")
    """

    @staticmethod
    def occurrence_detached(master_id: str, child_id: str, day: str) -> LedgerEvent:
        return LedgerEvent(
            event_type=LedgerEventType.OCCURRENCE_DETACHED,
            entity_type="record",
            entity_id=master_id,
            description=f"Occurrence {day} detached from {master_id}",
            details={"child_id": child_id, "date": day},
        )

    @staticmethod
    def occurrence_deleted(master_id: str, day: str, removed: list[str]) -> LedgerEvent:
        return LedgerEvent(
            event_type=LedgerEventType.OCCURRENCE_DELETED,
            entity_type="record",
            entity_id=master_id,
            description=f"Occurrence {day} of {master_id} deleted",
            details={"date": day, "removed_ids": removed},
        )

    @staticmethod
    def series_truncated(master_id: str, end: str, previous: Optional[str]) -> LedgerEvent:
        return LedgerEvent(
            event_type=LedgerEventType.SERIES_TRUNCATED,
            entity_type="record",
            entity_id=master_id,
            description=f"Series {master_id} now ends before {end}",
            details={"recurrence_end": end, "previous_end": previous},
        )

    @staticmethod
    def truncate_ignored(master_id: str, requested: str, current: str) -> LedgerEvent:
        return LedgerEvent(
            event_type=LedgerEventType.SERIES_TRUNCATE_IGNORED,
            severity=LedgerSeverity.WARNING,
            entity_type="record",
            entity_id=master_id,
            description="Truncation would extend the series; ignored",
            details={"requested_end": requested, "current_end": current},
        )

    @staticmethod
    def series_split(master_id: str, new_master_id: str, day: str) -> LedgerEvent:
        return LedgerEvent(
            event_type=LedgerEventType.SERIES_SPLIT,
            entity_type="record",
            entity_id=master_id,
            description=f"Series {master_id} split at {day}",
            details={"new_master_id": new_master_id, "date": day},
        )

    @staticmethod
    def series_deleted(master_id: str, removed: list[str]) -> LedgerEvent:
        return LedgerEvent(
            event_type=LedgerEventType.SERIES_DELETED,
            entity_type="record",
            entity_id=master_id,
            description=f"Series {master_id} deleted with {len(removed) - 1} children",
            details={"removed_ids": removed},
        )

    @staticmethod
    def non_recurring_fallback(record_id: str, operation: str) -> LedgerEvent:
        return LedgerEvent(
            event_type=LedgerEventType.NON_RECURRING_FALLBACK,
            severity=LedgerSeverity.WARNING,
            entity_type="record",
            entity_id=record_id,
            description=f"{operation} on a non-recurring record; record deleted",
            details={"operation": operation},
        )

    @staticmethod
    def heuristic_match(record_id: str, master_id: str, day: str) -> LedgerEvent:
        return LedgerEvent(
            event_type=LedgerEventType.HEURISTIC_MATCH,
            severity=LedgerSeverity.WARNING,
            entity_type="record",
            entity_id=record_id,
            description="Occurrence matched to master by desc/value heuristic",
            details={"master_id": master_id, "date": day},
        )

    @staticmethod
    def unknown_pattern(master_id: str, pattern: str) -> LedgerEvent:
        return LedgerEvent(
            event_type=LedgerEventType.UNKNOWN_PATTERN,
            severity=LedgerSeverity.WARNING,
            entity_type="record",
            entity_id=master_id,
            description=f"Unknown recurrence pattern {pattern!r}",
            details={"pattern": pattern},
        )

    @staticmethod
    def record_normalized(record_id: str, fields: list[str]) -> LedgerEvent:
        return LedgerEvent(
            event_type=LedgerEventType.RECORD_NORMALIZED,
            severity=LedgerSeverity.DEBUG,
            entity_type="record",
            entity_id=record_id,
            description=f"Record normalized ({', '.join(fields)})",
            details={"fields": fields},
        )

    @staticmethod
    def record_dropped(raw: Any, reason: str) -> LedgerEvent:
        return LedgerEvent(
            event_type=LedgerEventType.RECORD_DROPPED,
            severity=LedgerSeverity.WARNING,
            entity_type="record",
            description="Unreadable record dropped during ingestion",
            details={"raw": repr(raw)[:200]},
            error_message=reason,
        )

    @staticmethod
    def card_unresolved(record_id: str, method: str) -> LedgerEvent:
        return LedgerEvent(
            event_type=LedgerEventType.CARD_UNRESOLVED,
            severity=LedgerSeverity.WARNING,
            entity_type="record",
            entity_id=record_id,
            description=f"Method {method!r} matches no single card; left unresolved",
            details={"method": method},
        )

    @staticmethod
    def marked_dirty(collection: str) -> LedgerEvent:
        return LedgerEvent(
            event_type=LedgerEventType.COLLECTION_MARKED_DIRTY,
            severity=LedgerSeverity.DEBUG,
            entity_type="collection",
            entity_id=collection,
            description=f"Collection {collection} marked dirty",
        )

    @staticmethod
    def flush_succeeded(collections: list[str]) -> LedgerEvent:
        return LedgerEvent(
            event_type=LedgerEventType.FLUSH_SUCCEEDED,
            entity_type="collection",
            description=f"Flushed {', '.join(collections)}",
            details={"collections": collections},
        )

    @staticmethod
    def flush_failed(collections: list[str], error: str) -> LedgerEvent:
        return LedgerEvent(
            event_type=LedgerEventType.FLUSH_FAILED,
            severity=LedgerSeverity.WARNING,
            entity_type="collection",
            description=f"Flush failed for {', '.join(collections)}",
            details={"collections": collections},
            error_message=error,
        )

    @staticmethod
    def retry_scheduled(attempt: int, delay_seconds: float) -> LedgerEvent:
        return LedgerEvent(
            event_type=LedgerEventType.RETRY_SCHEDULED,
            severity=LedgerSeverity.DEBUG,
            entity_type="collection",
            description=f"Flush retry #{attempt} in {delay_seconds:.1f}s",
            details={"attempt": attempt, "delay_seconds": delay_seconds},
        )

    @staticmethod
    def snapshot_applied(
        strategy: str,
        added: list[str],
        removed: list[str],
        updated: list[str],
    ) -> LedgerEvent:
        event_type = (
            LedgerEventType.SNAPSHOT_REPLACED
            if strategy == "replace"
            else LedgerEventType.SNAPSHOT_MERGED
        )
        return LedgerEvent(
            event_type=event_type,
            entity_type="collection",
            entity_id="tx",
            description=f"Remote snapshot applied ({strategy})",
            details={
                "added": len(added),
                "removed": len(removed),
                "updated": len(updated),
            },
        )

    @staticmethod
    def profile_switched(previous: str, current: str) -> LedgerEvent:
        return LedgerEvent(
            event_type=LedgerEventType.PROFILE_SWITCHED,
            entity_type="profile",
            entity_id=current,
            description=f"Profile switched from {previous} to {current}",
        )

    @staticmethod
    def budget_created(budget_id: str, tag: str, start: str) -> LedgerEvent:
        return LedgerEvent(
            event_type=LedgerEventType.BUDGET_CREATED,
            entity_type="budget",
            entity_id=budget_id,
            description=f"Budget for #{tag} opened on {start}",
            details={"tag": tag, "start_date": start},
        )

    @staticmethod
    def budget_closed(budget_id: str, tag: str) -> LedgerEvent:
        return LedgerEvent(
            event_type=LedgerEventType.BUDGET_CLOSED,
            entity_type="budget",
            entity_id=budget_id,
            description=f"Budget for #{tag} closed",
            details={"tag": tag},
        )
