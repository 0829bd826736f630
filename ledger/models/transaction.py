"""
Core Data Models for the Recurring Ledger

A ledger is a flat collection of transaction records. A record is one of:
1. A one-off operation (no recurrence, no parent)
2. A master rule (non-empty recurrence) projecting occurrences on a calendar
3. A detached occurrence (parentId set, recurrence empty) that was split
   off a master and now lives as a concrete record

DESIGN DECISION: Records are immutable (frozen pydantic models).
Every mutation produces a new copy, so snapshots handed out by the store
can never be altered behind its back.

Persisted field names are camelCase (aliases); Python attributes are
snake_case. Legacy payloads using `val`, `close` and `due` are accepted.
"""

from datetime import date, datetime, timezone
from decimal import Decimal
from enum import Enum
from typing import Any, Optional

from pydantic import (
    AliasChoices,
    BaseModel,
    ConfigDict,
    Field,
    field_validator,
    model_validator,
)


EPOCH = datetime(1970, 1, 1, tzinfo=timezone.utc)


# =============================================================================
# ENUMS - Finite set of valid values
# =============================================================================

class RecurrencePattern(str, Enum):
    """
    Supported recurrence shapes.

    Codes are what gets persisted on a master record. All shapes are
    anchored at the master's opDate; month-based shapes clamp the anchor
    day to the length of shorter months.
    """
    DAILY = "D"
    WEEKLY = "W"
    BIWEEKLY = "BW"
    MONTHLY = "M"
    QUARTERLY = "Q"
    SEMIANNUAL = "S"
    YEARLY = "Y"

    @classmethod
    def parse(cls, value: Any) -> Optional["RecurrencePattern"]:
        """Resolve a code or long name; None for empty or unknown input."""
        if isinstance(value, cls):
            return value
        if not isinstance(value, str) or not value.strip():
            return None
        raw = value.strip()
        try:
            return cls(raw.upper())
        except ValueError:
            return _PATTERN_NAMES.get(raw.lower())

    @property
    def month_interval(self) -> Optional[int]:
        """Months between occurrences for month-based shapes."""
        return _MONTH_INTERVALS.get(self)

    @property
    def day_interval(self) -> Optional[int]:
        """Days between occurrences for day-based shapes."""
        return _DAY_INTERVALS.get(self)


_PATTERN_NAMES = {
    "daily": RecurrencePattern.DAILY,
    "weekly": RecurrencePattern.WEEKLY,
    "biweekly": RecurrencePattern.BIWEEKLY,
    "fortnightly": RecurrencePattern.BIWEEKLY,
    "monthly": RecurrencePattern.MONTHLY,
    "quarterly": RecurrencePattern.QUARTERLY,
    "semiannual": RecurrencePattern.SEMIANNUAL,
    "semi-annual": RecurrencePattern.SEMIANNUAL,
    "yearly": RecurrencePattern.YEARLY,
    "annual": RecurrencePattern.YEARLY,
    "annually": RecurrencePattern.YEARLY,
}

_DAY_INTERVALS = {
    RecurrencePattern.DAILY: 1,
    RecurrencePattern.WEEKLY: 7,
    RecurrencePattern.BIWEEKLY: 14,
}

_MONTH_INTERVALS = {
    RecurrencePattern.MONTHLY: 1,
    RecurrencePattern.QUARTERLY: 3,
    RecurrencePattern.SEMIANNUAL: 6,
    RecurrencePattern.YEARLY: 12,
}


class OverrideScope(str, Enum):
    """
    How far an edit or deletion of one occurrence reaches.

    SINGLE: only that date (exception + optional detached child)
    FUTURE: that date and every later one (series truncated)
    ALL: the whole series including detached children
    """
    SINGLE = "single"
    FUTURE = "future"
    ALL = "all"


# =============================================================================
# CARDS
# =============================================================================

class Card(BaseModel):
    """
    A payment method with a monthly billing cycle.

    The cash pseudo-card is represented with both days unset.
    """
    model_config = ConfigDict(
        populate_by_name=True,
        str_strip_whitespace=True,
        frozen=True,
    )

    name: str = Field(
        ...,
        min_length=1,
        max_length=80,
        description="Unique card name; doubles as the record's method"
    )
    close_day: Optional[int] = Field(
        default=None,
        ge=1,
        le=31,
        validation_alias=AliasChoices("closeDay", "close", "close_day"),
        serialization_alias="closeDay",
        description="Day of month the statement closes"
    )
    due_day: Optional[int] = Field(
        default=None,
        ge=1,
        le=31,
        validation_alias=AliasChoices("dueDay", "due", "due_day"),
        serialization_alias="dueDay",
        description="Day of month the invoice is due"
    )

    @field_validator("close_day", "due_day", mode="before")
    @classmethod
    def zero_means_no_cycle(cls, v: Any) -> Any:
        if v in (0, "0", "", None):
            return None
        return v

    @model_validator(mode="after")
    def validate_cycle(self) -> "Card":
        """Both cycle days are set together and never coincide."""
        if (self.close_day is None) != (self.due_day is None):
            raise ValueError("closeDay and dueDay must be provided together")
        if self.close_day is not None and self.close_day == self.due_day:
            raise ValueError("closeDay and dueDay must differ")
        return self

    @property
    def has_cycle(self) -> bool:
        return self.close_day is not None

    def to_storage_dict(self) -> dict:
        return self.model_dump(by_alias=True)


# =============================================================================
# TRANSACTION RECORDS
# =============================================================================

class TransactionRecord(BaseModel):
    """
    A single ledger record.

    Invariants kept by normalization and the override operations:
    - non-empty recurrence => master rule
    - parentId set and recurrence empty => detached occurrence
    - postDate == opDate for the cash method
    - exceptions never contain dates on or after recurrenceEnd
    """
    model_config = ConfigDict(
        populate_by_name=True,
        frozen=True,
        extra="ignore",
    )

    # Identity
    id: str = Field(..., min_length=1)
    parent_id: Optional[str] = Field(
        default=None,
        alias="parentId",
        description="Master rule this record was detached from"
    )

    # Money and dates
    desc: str = ""
    value: Decimal = Field(
        default=Decimal("0"),
        validation_alias=AliasChoices("value", "val"),
        serialization_alias="value",
        description="Signed amount (negative = expense)"
    )
    op_date: date = Field(..., alias="opDate")
    post_date: date = Field(..., alias="postDate")
    method: str = Field(..., min_length=1)
    planned: bool = False

    # Recurrence (masters only)
    recurrence: str = ""
    exceptions: tuple[date, ...] = ()
    recurrence_end: Optional[date] = Field(
        default=None,
        alias="recurrenceEnd",
        description="Exclusive upper bound of the series"
    )

    # Timestamps for ordering and last-writer-wins
    ts: Optional[datetime] = None
    modified_at: Optional[datetime] = Field(default=None, alias="modifiedAt")

    budget_tag: Optional[str] = Field(default=None, alias="budgetTag")

    # Transient flags, never persisted
    is_virtual: bool = Field(default=False, exclude=True)
    inferred_parent_id: Optional[str] = Field(default=None, exclude=True)
    budget_reserve_for: Optional[str] = Field(default=None, exclude=True)
    budget_return_for: Optional[str] = Field(default=None, exclude=True)

    @field_validator("id", "parent_id", mode="before")
    @classmethod
    def coerce_id(cls, v: Any) -> Any:
        """Legacy ids were numeric timestamps."""
        if v is None or v == "":
            return None
        if isinstance(v, (int, float)) and not isinstance(v, bool):
            return str(int(v))
        return v

    @field_validator("recurrence", mode="before")
    @classmethod
    def normalize_recurrence(cls, v: Any) -> str:
        if v is None:
            return ""
        if isinstance(v, RecurrencePattern):
            return v.value
        return str(v).strip()

    @field_validator("budget_tag", mode="before")
    @classmethod
    def clean_tag(cls, v: Any) -> Any:
        """Tags are stored without the leading '#'; blank means untagged."""
        if isinstance(v, str):
            v = v.strip().lstrip("#")
            return v or None
        return v

    @field_validator("exceptions", mode="before")
    @classmethod
    def none_exceptions(cls, v: Any) -> Any:
        return () if v is None else v

    @field_validator("exceptions")
    @classmethod
    def sort_exceptions(cls, v: tuple[date, ...]) -> tuple[date, ...]:
        return tuple(sorted(set(v)))

    @field_validator("ts", "modified_at")
    @classmethod
    def ensure_aware(cls, v: Optional[datetime]) -> Optional[datetime]:
        """Naive timestamps are treated as UTC so they stay comparable."""
        if v is not None and v.tzinfo is None:
            return v.replace(tzinfo=timezone.utc)
        return v

    # -------------------------------------------------------------------------

    @property
    def is_master(self) -> bool:
        return bool(self.recurrence)

    @property
    def is_detached(self) -> bool:
        return self.parent_id is not None and not self.recurrence

    @property
    def is_materialization(self) -> bool:
        return self.budget_reserve_for is not None or self.budget_return_for is not None

    @property
    def pattern(self) -> Optional[RecurrencePattern]:
        return RecurrencePattern.parse(self.recurrence)

    @property
    def last_modified(self) -> datetime:
        """Instant used for last-writer-wins (modifiedAt, then ts)."""
        return self.modified_at or self.ts or EPOCH

    @property
    def created_at(self) -> datetime:
        return self.ts or EPOCH

    def to_storage_dict(self) -> dict:
        """Serialize with persisted (camelCase) names, JSON-safe."""
        return self.model_dump(mode="json", by_alias=True)


def sort_key(record: TransactionRecord) -> tuple:
    """Canonical store order: posting date, then creation, then id."""
    return (record.post_date, record.created_at, record.id)


def creation_key(record: TransactionRecord) -> tuple:
    """Per-day order used by projections: creation, then id."""
    return (record.created_at, record.id)
