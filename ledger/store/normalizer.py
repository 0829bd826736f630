"""
Record Normalization

Records arrive from three places: local mutations, the persistent cache
and remote snapshots written by other (possibly older) clients. Anything
that reaches the store goes through `normalize_record` first.

DESIGN DECISION: Malformed records are repaired, never rejected. Each repair
is reported in `defaulted` so the caller knows the record must be written
back once. Normalizing an already normalized record reports nothing,
which is what stops sync loops between devices.

Only values that are not even mappings are dropped.
"""

from collections.abc import Mapping
from datetime import date, datetime, timezone
from decimal import Decimal, InvalidOperation
from typing import Any, Callable, Iterable, Optional
from uuid import uuid4

from pydantic import BaseModel, ConfigDict, Field, ValidationError

from ledger.models.events import LedgerEventBuilder
from ledger.models.transaction import Card, RecurrencePattern, TransactionRecord
from ledger.rules.billing import find_card, infer_card, is_cash, post_date
from ledger.telemetry import LedgerEventLogger


IdFactory = Callable[[], str]


def new_record_id() -> str:
    return uuid4().hex


class NormalizedRecord(BaseModel):
    """A repaired record plus what had to be repaired."""
    model_config = ConfigDict(frozen=True)

    record: TransactionRecord
    defaulted: tuple[str, ...] = ()
    unresolved_method: bool = False

    @property
    def changed(self) -> bool:
        return bool(self.defaulted)


class NormalizationReport(BaseModel):
    """Outcome of normalizing a whole collection."""

    records: list[TransactionRecord] = Field(default_factory=list)
    changed_ids: list[str] = Field(default_factory=list)
    unresolved_ids: list[str] = Field(default_factory=list)
    dropped: int = 0

    @property
    def changed(self) -> bool:
        return bool(self.changed_ids or self.dropped)


# =============================================================================
# VALUE COERCION
# =============================================================================

def coerce_date(value: Any) -> Optional[date]:
    if isinstance(value, datetime):
        return value.date()
    if isinstance(value, date):
        return value
    if isinstance(value, str) and len(value) >= 10:
        try:
            return date.fromisoformat(value[:10])
        except ValueError:
            return None
    return None


def coerce_datetime(value: Any) -> Optional[datetime]:
    """ISO strings, datetimes and epoch milliseconds."""
    if isinstance(value, datetime):
        return value if value.tzinfo else value.replace(tzinfo=timezone.utc)
    if isinstance(value, bool):
        return None
    if isinstance(value, (int, float)):
        try:
            return datetime.fromtimestamp(value / 1000, tz=timezone.utc)
        except (OverflowError, OSError, ValueError):
            return None
    if isinstance(value, str) and value.strip():
        text = value.strip()
        if text.endswith("Z"):
            text = text[:-1] + "+00:00"
        try:
            parsed = datetime.fromisoformat(text)
        except ValueError:
            return None
        return parsed if parsed.tzinfo else parsed.replace(tzinfo=timezone.utc)
    return None


def coerce_decimal(value: Any) -> Optional[Decimal]:
    if isinstance(value, bool) or value is None:
        return None
    if isinstance(value, Decimal):
        return value if value.is_finite() else None
    if isinstance(value, (int, float, str)):
        try:
            result = Decimal(str(value).strip())
        except InvalidOperation:
            return None
        return result if result.is_finite() else None
    return None


# =============================================================================
# NORMALIZATION
# =============================================================================

def normalize_record(
    raw: Any,
    *,
    today: date,
    cards: Iterable[Card],
    cash_method: str,
    id_factory: IdFactory = new_record_id,
) -> NormalizedRecord:
    """
    Repair a single record.

    Args:
        raw: A TransactionRecord or a mapping with persisted field names
        today: Local date used for missing opDate and planned defaults
        cards: Card registry used for postDate and method resolution
        cash_method: Name of the cash pseudo-card
        id_factory: Generator for missing ids

    Returns:
        NormalizedRecord with the repaired record and the repaired fields

    Raises:
        TypeError: If raw is neither a record nor a mapping
        ValidationError: If the repaired payload still does not validate
    """
    if isinstance(raw, TransactionRecord):
        data = raw.model_dump(by_alias=True)
    elif isinstance(raw, Mapping):
        data = dict(raw)
    else:
        raise TypeError(f"Cannot normalize {type(raw).__name__} as a record")

    cards = list(cards)
    defaulted: list[str] = []

    if data.get("id") in (None, ""):
        data["id"] = id_factory()
        defaulted.append("id")
    elif not isinstance(data["id"], str):
        defaulted.append("id")

    if "val" in data:
        legacy = data.pop("val")
        if "value" not in data:
            data["value"] = legacy
        defaulted.append("value")
    amount = coerce_decimal(data.get("value"))
    if amount is None:
        amount = Decimal("0")
        if "value" not in defaulted:
            defaulted.append("value")
    data["value"] = amount

    if not isinstance(data.get("desc"), str):
        data["desc"] = "" if data.get("desc") is None else str(data["desc"])
        defaulted.append("desc")

    op = coerce_date(data.get("opDate"))
    if op is None:
        op = today
        defaulted.append("opDate")
    data["opDate"] = op

    # Method: canonical cash spelling, known card, inferred card, or kept
    raw_method = data.get("method")
    method = raw_method.strip() if isinstance(raw_method, str) else ""
    stored_post = coerce_date(data.get("postDate"))
    unresolved = False
    card = None
    if is_cash(method, cash_method):
        method = cash_method
    else:
        card = find_card(cards, method)
        if card is None:
            inferred = infer_card(method, op, stored_post, cards, cash_method)
            if inferred is not None:
                method = inferred
                card = find_card(cards, inferred)
            elif not method:
                method = cash_method
            else:
                unresolved = True
    if method != raw_method:
        data["method"] = method
        defaulted.append("method")

    if method == cash_method or card is not None:
        desired_post = post_date(op, method, cards, cash_method)
    else:
        desired_post = stored_post or op
    if stored_post != desired_post:
        defaulted.append("postDate")
    data["postDate"] = desired_post

    if data.get("planned") is None:
        data["planned"] = op > today
        defaulted.append("planned")

    raw_recurrence = data.get("recurrence")
    pattern = RecurrencePattern.parse(raw_recurrence)
    if pattern is not None and raw_recurrence != pattern.value:
        data["recurrence"] = pattern.value
        defaulted.append("recurrence")

    for key in ("ts", "modifiedAt"):
        if data.get(key) is not None:
            stamp = coerce_datetime(data[key])
            if stamp is None:
                defaulted.append(key)
            data[key] = stamp

    end = coerce_date(data.get("recurrenceEnd"))
    if data.get("recurrenceEnd") is not None and end is None:
        defaulted.append("recurrenceEnd")
    data["recurrenceEnd"] = end

    raw_exceptions = data.get("exceptions") or []
    if isinstance(raw_exceptions, Mapping):
        raw_exceptions = list(raw_exceptions.values())
    if not isinstance(raw_exceptions, (list, tuple)):
        raw_exceptions = []
    parsed = [coerce_date(item) for item in raw_exceptions]
    cleaned = sorted({d for d in parsed if d is not None and (end is None or d < end)})
    if cleaned != parsed:
        defaulted.append("exceptions")
    data["exceptions"] = cleaned

    record = TransactionRecord.model_validate(data)
    # Cleaned by the model validators
    for key, value in (("parentId", record.parent_id), ("budgetTag", record.budget_tag)):
        if data.get(key) != value:
            defaulted.append(key)
    return NormalizedRecord(
        record=record,
        defaulted=tuple(defaulted),
        unresolved_method=unresolved,
    )


def normalize_collection(
    raw_records: Any,
    *,
    today: date,
    cards: Iterable[Card],
    cash_method: str,
    event_logger: Optional[LedgerEventLogger] = None,
    id_factory: IdFactory = new_record_id,
) -> NormalizationReport:
    """
    Normalize a whole collection as read from cache or remote.

    Accepts a list or an index-keyed mapping. Records sharing an id are
    collapsed (the later one wins) and reported as changed. Entries that
    cannot be read at all are dropped and logged.
    """
    if raw_records is None:
        raw_records = []
    elif isinstance(raw_records, Mapping):
        raw_records = list(raw_records.values())

    cards = list(cards)
    report = NormalizationReport()
    by_id: dict[str, TransactionRecord] = {}

    for raw in raw_records:
        try:
            result = normalize_record(
                raw,
                today=today,
                cards=cards,
                cash_method=cash_method,
                id_factory=id_factory,
            )
        except (TypeError, ValidationError) as e:
            report.dropped += 1
            if event_logger:
                event_logger.log(LedgerEventBuilder.record_dropped(raw, str(e)))
            continue

        record = result.record
        if result.changed:
            report.changed_ids.append(record.id)
            if event_logger:
                event_logger.log(
                    LedgerEventBuilder.record_normalized(record.id, list(result.defaulted))
                )
        if result.unresolved_method:
            report.unresolved_ids.append(record.id)
            if event_logger:
                event_logger.log(LedgerEventBuilder.card_unresolved(record.id, record.method))
        if record.id in by_id:
            report.changed_ids.append(record.id)
        by_id[record.id] = record

    report.records = list(by_id.values())
    return report
