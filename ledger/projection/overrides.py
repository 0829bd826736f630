"""
Exception Ledger

Edits and deletions that touch one occurrence of a recurring series.

Three scopes, mirroring what a user can pick when changing an occurrence:
1. Single  - the date becomes an exception on the master; a concrete child
             record (parentId = master.id) may take its place
2. Future  - the master's recurrenceEnd is moved to that date
3. All     - the master and every child detached from it are removed

DESIGN DECISION: Every operation is a pure function from a record list to
an OverrideResult (new list, what changed, which events to log). The engine
applies the result to the store; nothing here performs I/O or logging.

Identity resolution prefers parentId. The desc/value heuristic used for
records written before parentId existed is isolated in
`heuristic_identity_match` and always reported as such.
"""

from datetime import date, datetime
from decimal import Decimal
from typing import Any, Iterable, Optional, Sequence

from pydantic import BaseModel, Field

from ledger.models.events import LedgerEvent, LedgerEventBuilder
from ledger.models.transaction import Card, RecurrencePattern, TransactionRecord
from ledger.rules.billing import post_date
from ledger.rules.recurrence import occurs_on
from ledger.store.normalizer import IdFactory, new_record_id


# Fields a caller may change when editing an occurrence or a record
EDITABLE_FIELDS = frozenset({"desc", "value", "method", "planned", "budget_tag"})
RECORD_EDITABLE_FIELDS = EDITABLE_FIELDS | {"op_date", "recurrence"}


class LedgerError(Exception):
    """Base exception for ledger operations."""
    pass


class RecordNotFoundError(LedgerError):
    """No record with the given id exists."""
    pass


class OccurrenceNotFoundError(LedgerError):
    """The master rule does not produce an occurrence on that date."""
    pass


class MasterMatch(BaseModel):
    """A master rule resolved for a record, and how it was resolved."""

    master: TransactionRecord
    heuristic: bool = False


class OverrideResult(BaseModel):
    """New record list plus a description of the change."""

    records: list[TransactionRecord] = Field(default_factory=list)
    touched_ids: list[str] = Field(default_factory=list)
    removed_ids: list[str] = Field(default_factory=list)
    created: Optional[TransactionRecord] = None
    events: list[LedgerEvent] = Field(default_factory=list)

    @property
    def changed(self) -> bool:
        return bool(self.touched_ids or self.removed_ids or self.created)


# =============================================================================
# IDENTITY
# =============================================================================

def virtual_id(master_id: str, day: date) -> str:
    """Id of the projected occurrence of a master on a date."""
    return f"{master_id}_{day.isoformat()}"


def split_virtual_id(record_id: str) -> Optional[tuple[str, date]]:
    """Inverse of `virtual_id`; None when the id is not a virtual one."""
    master_id, sep, suffix = record_id.rpartition("_")
    if not sep or not master_id:
        return None
    try:
        return master_id, date.fromisoformat(suffix)
    except ValueError:
        return None


def heuristic_identity_match(master: TransactionRecord, record: TransactionRecord) -> bool:
    """
    Legacy identity rule for records without parentId.

    Same method and either the same description or the same absolute value.
    """
    if record.method != master.method:
        return False
    return record.desc == master.desc or abs(record.value) == abs(master.value)


def find_master_for(
    record: TransactionRecord,
    day: date,
    records: Iterable[TransactionRecord],
) -> Optional[MasterMatch]:
    """
    Resolve the master rule a record belongs to.

    parentId wins. Otherwise the first master that occurs on `day` and
    passes `heuristic_identity_match` is returned, flagged heuristic.
    """
    if record.is_master:
        return MasterMatch(master=record)

    records = list(records)
    if record.parent_id:
        for candidate in records:
            if candidate.id == record.parent_id and candidate.is_master:
                return MasterMatch(master=candidate)
        return None

    for candidate in records:
        if (
            candidate.is_master
            and occurs_on(candidate, day)
            and heuristic_identity_match(candidate, record)
        ):
            return MasterMatch(master=candidate, heuristic=True)
    return None


# =============================================================================
# HELPERS
# =============================================================================

def _lookup(records: Sequence[TransactionRecord], record_id: str) -> TransactionRecord:
    for record in records:
        if record.id == record_id:
            return record
    raise RecordNotFoundError(f"Record {record_id} not found")


def _parent_master(
    records: Sequence[TransactionRecord],
    record: TransactionRecord,
) -> Optional[TransactionRecord]:
    if record.is_master:
        return record
    if record.parent_id:
        for candidate in records:
            if candidate.id == record.parent_id and candidate.is_master:
                return candidate
    return None


def _rebuild(record: TransactionRecord, **updates: Any) -> TransactionRecord:
    """Validated copy of a record with some fields replaced."""
    data = record.model_dump()
    data.update(updates)
    return TransactionRecord.model_validate(data)


def _check_changes(changes: Optional[dict], allowed: frozenset) -> dict:
    changes = dict(changes or {})
    unknown = set(changes) - allowed
    if unknown:
        raise ValueError(f"Cannot change fields: {', '.join(sorted(unknown))}")
    if "value" in changes:
        changes["value"] = Decimal(str(changes["value"]))
    if "recurrence" in changes:
        raw = changes["recurrence"]
        pattern = RecurrencePattern.parse(raw)
        if pattern is None and raw is not None and str(raw).strip():
            raise ValueError(f"Unknown recurrence pattern: {raw!r}")
        # Blank stops the series
        changes["recurrence"] = pattern.value if pattern else ""
    return changes


def _apply(
    records: Sequence[TransactionRecord],
    replaced: Iterable[TransactionRecord] = (),
    removed: Iterable[str] = (),
    created: Optional[TransactionRecord] = None,
    events: Iterable[LedgerEvent] = (),
) -> OverrideResult:
    replaced = {r.id: r for r in replaced}
    removed = set(removed)
    result = [replaced.get(r.id, r) for r in records if r.id not in removed]
    if created is not None:
        result.append(created)
    return OverrideResult(
        records=result,
        touched_ids=list(replaced),
        removed_ids=[r.id for r in records if r.id in removed],
        created=created,
        events=list(events),
    )


def _delete_record(
    records: Sequence[TransactionRecord],
    record: TransactionRecord,
    operation: str,
) -> OverrideResult:
    return _apply(
        records,
        removed=[record.id],
        events=[LedgerEventBuilder.non_recurring_fallback(record.id, operation)],
    )


# =============================================================================
# SINGLE SCOPE
# =============================================================================

def detach_single(
    records: Sequence[TransactionRecord],
    record_id: str,
    day: date,
    *,
    now: datetime,
    today: date,
    cards: Iterable[Card],
    cash_method: str,
    move_to_today: bool = False,
    changes: Optional[dict] = None,
    id_factory: IdFactory = new_record_id,
) -> OverrideResult:
    """
    Split one occurrence off a master as a concrete record.

    Args:
        records: Current ledger
        record_id: The master, or any record resolving to it via parentId
        day: Occurrence date to detach
        now: Modification instant stamped on touched records
        today: Local date (planned flag, move_to_today)
        cards: Card registry for the child's postDate
        cash_method: Name of the cash pseudo-card
        move_to_today: Date the child today instead of on `day`
        changes: Edited desc/value/method/planned/budget_tag for the child

    Returns:
        OverrideResult with the updated master and the new child. Detaching
        an already excepted date returns the ledger unchanged.

    Raises:
        RecordNotFoundError: Unknown record_id
        OccurrenceNotFoundError: The master does not occur on `day`
        ValueError: Changes name a field that cannot be edited
    """
    changes = _check_changes(changes, EDITABLE_FIELDS)
    target = _lookup(records, record_id)
    master = _parent_master(records, target)
    if master is None:
        return _delete_record(records, target, "detach_single")

    if day in master.exceptions:
        return OverrideResult(records=list(records))
    if not occurs_on(master, day):
        raise OccurrenceNotFoundError(
            f"Record {master.id} has no occurrence on {day.isoformat()}"
        )

    updated_master = master.model_copy(update={
        "exceptions": tuple(sorted(set(master.exceptions) | {day})),
        "modified_at": now,
    })

    exec_day = today if move_to_today else day
    method = changes.get("method", master.method)
    child = TransactionRecord(
        id=id_factory(),
        parent_id=master.id,
        desc=changes.get("desc", master.desc),
        value=changes.get("value", master.value),
        op_date=exec_day,
        post_date=post_date(exec_day, method, cards, cash_method),
        method=method,
        planned=changes.get("planned", exec_day > today),
        recurrence="",
        ts=now,
        modified_at=now,
        budget_tag=changes.get("budget_tag", master.budget_tag),
    )
    return _apply(
        records,
        replaced=[updated_master],
        created=child,
        events=[LedgerEventBuilder.occurrence_detached(master.id, child.id, day.isoformat())],
    )


def delete_single(
    records: Sequence[TransactionRecord],
    record_id: str,
    day: date,
    *,
    now: datetime,
) -> OverrideResult:
    """
    Remove one occurrence: except the date and drop the child detached on it.

    Given a detached child, only the child is removed (its date is already
    an exception). A non-recurring record is deleted outright.
    """
    target = _lookup(records, record_id)
    master = _parent_master(records, target)
    if master is None:
        return _delete_record(records, target, "delete_single")

    if not target.is_master:
        return _apply(
            records,
            removed=[target.id],
            events=[LedgerEventBuilder.occurrence_deleted(master.id, day.isoformat(), [target.id])],
        )

    if day not in master.exceptions and not occurs_on(master, day):
        raise OccurrenceNotFoundError(
            f"Record {master.id} has no occurrence on {day.isoformat()}"
        )

    children = [r.id for r in records if r.parent_id == master.id and r.op_date == day]
    replaced = []
    if day not in master.exceptions:
        replaced.append(master.model_copy(update={
            "exceptions": tuple(sorted(set(master.exceptions) | {day})),
            "modified_at": now,
        }))
    return _apply(
        records,
        replaced=replaced,
        removed=children,
        events=[LedgerEventBuilder.occurrence_deleted(master.id, day.isoformat(), children)],
    )


# =============================================================================
# FUTURE SCOPE
# =============================================================================

def truncate_future(
    records: Sequence[TransactionRecord],
    record_id: str,
    day: date,
    *,
    now: datetime,
) -> OverrideResult:
    """
    End a series so that `day` and everything after it no longer occur.

    Only ever tightens the bound: a `day` on or after the current
    recurrenceEnd leaves the master untouched (and is reported). Exceptions
    at or past the new bound are dropped. A non-recurring record is deleted.
    """
    target = _lookup(records, record_id)
    master = _parent_master(records, target)
    if master is None:
        return _delete_record(records, target, "truncate_future")

    current = master.recurrence_end
    if current is not None and day >= current:
        return OverrideResult(
            records=list(records),
            events=[LedgerEventBuilder.truncate_ignored(
                master.id, day.isoformat(), current.isoformat()
            )],
        )

    updated = master.model_copy(update={
        "recurrence_end": day,
        "exceptions": tuple(e for e in master.exceptions if e < day),
        "modified_at": now,
    })
    return _apply(
        records,
        replaced=[updated],
        events=[LedgerEventBuilder.series_truncated(
            master.id, day.isoformat(), current.isoformat() if current else None
        )],
    )


def split_series(
    records: Sequence[TransactionRecord],
    record_id: str,
    day: date,
    *,
    now: datetime,
    today: date,
    cards: Iterable[Card],
    cash_method: str,
    changes: Optional[dict] = None,
    id_factory: IdFactory = new_record_id,
) -> OverrideResult:
    """
    Edit "this and future occurrences".

    The existing master is truncated at `day` and a new master carrying the
    changes starts on `day`, inheriting the old end bound and the
    exceptions that fall in its range. Splitting at (or before) the first
    occurrence edits the master in place. A non-recurring record is simply
    edited.
    """
    changes = _check_changes(changes, EDITABLE_FIELDS | {"recurrence"})
    target = _lookup(records, record_id)
    master = _parent_master(records, target)
    if master is None:
        return edit_record(
            records, record_id, changes,
            now=now, today=today, cards=cards, cash_method=cash_method,
        )

    if day <= master.op_date:
        return edit_record(
            records, master.id, changes,
            now=now, today=today, cards=cards, cash_method=cash_method,
        )

    if day not in master.exceptions and not occurs_on(master, day):
        raise OccurrenceNotFoundError(
            f"Record {master.id} has no occurrence on {day.isoformat()}"
        )

    truncated = truncate_future(records, master.id, day, now=now)
    method = changes.get("method", master.method)
    new_master = _rebuild(
        master,
        id=id_factory(),
        op_date=day,
        post_date=post_date(day, method, cards, cash_method),
        exceptions=tuple(e for e in master.exceptions if e >= day),
        planned=changes.get("planned", day > today),
        ts=now,
        modified_at=now,
        **{k: v for k, v in changes.items() if k != "planned"},
    )
    result = _apply(
        truncated.records,
        created=new_master,
        events=truncated.events + [
            LedgerEventBuilder.series_split(master.id, new_master.id, day.isoformat())
        ],
    )
    result.touched_ids = truncated.touched_ids
    return result


# =============================================================================
# ALL SCOPE
# =============================================================================

def delete_all(
    records: Sequence[TransactionRecord],
    record_id: str,
) -> OverrideResult:
    """
    Remove a master and every record detached from it.

    Given a detached child, its master is resolved first. A record with no
    master is deleted alone.
    """
    target = _lookup(records, record_id)
    master = _parent_master(records, target)
    if master is None:
        return _delete_record(records, target, "delete_all")

    removed = [master.id] + [r.id for r in records if r.parent_id == master.id]
    return _apply(
        records,
        removed=removed,
        events=[LedgerEventBuilder.series_deleted(master.id, removed)],
    )


def edit_record(
    records: Sequence[TransactionRecord],
    record_id: str,
    changes: Optional[dict],
    *,
    now: datetime,
    today: date,
    cards: Iterable[Card],
    cash_method: str,
) -> OverrideResult:
    """
    Edit a record as a whole (a one-off, a detached child or a full series).

    postDate is recomputed from the resulting opDate and method.
    """
    changes = _check_changes(changes, RECORD_EDITABLE_FIELDS)
    target = _lookup(records, record_id)
    op_day = changes.get("op_date", target.op_date)
    method = changes.get("method", target.method)
    updated = _rebuild(
        target,
        post_date=post_date(op_day, method, cards, cash_method),
        modified_at=now,
        **changes,
    )
    return _apply(records, replaced=[updated])
