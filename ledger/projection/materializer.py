"""
Occurrence Materializer

Projects the ledger onto a date range: concrete records dated in the range
plus virtual records for every master occurrence that has not been
materialized as a concrete record.

Virtual records:
- id is "<masterId>_<YYYY-MM-DD>"
- parentId is the master id, recurrence is cleared
- planned is True and is_virtual is set
- postDate is recomputed for the occurrence date

A concrete record "materializes" a master occurrence when, on the same day,
it carries parentId == master.id, or, lacking any parentId, it passes the
legacy desc/value heuristic. Heuristic matches are logged and yielded with
`inferred_parent_id` set.

Output is a generator: ordered by date, then creation instant, and safe to
restart by calling the function again.
"""

from collections import defaultdict
from datetime import date, timedelta
from typing import Iterable, Iterator, Optional

from ledger.models.events import LedgerEventBuilder
from ledger.models.transaction import Card, TransactionRecord, creation_key
from ledger.projection.overrides import heuristic_identity_match, virtual_id
from ledger.rules.billing import post_date
from ledger.rules.recurrence import iter_dates, occurs_on
from ledger.telemetry import LedgerEventLogger


def project_occurrence(
    master: TransactionRecord,
    day: date,
    cards: Iterable[Card],
    cash_method: str,
) -> TransactionRecord:
    """Virtual record for the occurrence of `master` on `day`."""
    return master.model_copy(update={
        "id": virtual_id(master.id, day),
        "parent_id": master.id,
        "op_date": day,
        "post_date": post_date(day, master.method, cards, cash_method),
        "planned": True,
        "recurrence": "",
        "exceptions": (),
        "recurrence_end": None,
        "is_virtual": True,
    })


def occurrences_in_range(
    records: Iterable[TransactionRecord],
    start: date,
    end: date,
    *,
    cards: Iterable[Card],
    cash_method: str,
    event_logger: Optional[LedgerEventLogger] = None,
) -> Iterator[TransactionRecord]:
    """
    Lazily yield every concrete and virtual record in [start, end].

    Args:
        records: Ledger snapshot (masters and concrete records)
        start: First day, inclusive
        end: Last day, inclusive
        cards: Card registry for virtual postDates
        cash_method: Name of the cash pseudo-card
        event_logger: Receives heuristic-match events

    Yields:
        Records ordered by opDate, then creation instant, then id.
    """
    cards = list(cards)
    masters = []
    by_day: dict[date, list[TransactionRecord]] = defaultdict(list)
    for record in records:
        if record.is_master:
            if record.pattern is None:
                if event_logger:
                    event_logger.log(
                        LedgerEventBuilder.unknown_pattern(record.id, record.recurrence)
                    )
                continue
            masters.append(record)
        elif start <= record.op_date <= end:
            by_day[record.op_date].append(record)

    for day in iter_dates(start, end):
        concrete = by_day.get(day, [])
        claimed: set[str] = set()
        day_items: dict[str, TransactionRecord] = {r.id: r for r in concrete}

        for master in masters:
            if not occurs_on(master, day):
                continue
            if any(r.parent_id == master.id for r in concrete):
                continue
            match = next(
                (
                    r for r in concrete
                    if r.parent_id is None
                    and r.id not in claimed
                    and heuristic_identity_match(master, r)
                ),
                None,
            )
            if match is not None:
                claimed.add(match.id)
                day_items[match.id] = match.model_copy(
                    update={"inferred_parent_id": master.id}
                )
                if event_logger:
                    event_logger.log(
                        LedgerEventBuilder.heuristic_match(match.id, master.id, day.isoformat())
                    )
                continue
            projected = project_occurrence(master, day, cards, cash_method)
            day_items[projected.id] = projected

        yield from sorted(day_items.values(), key=creation_key)


def tx_by_date(
    records: Iterable[TransactionRecord],
    day: date,
    *,
    cards: Iterable[Card],
    cash_method: str,
    event_logger: Optional[LedgerEventLogger] = None,
) -> list[TransactionRecord]:
    """Everything that happens on one day."""
    return list(occurrences_in_range(
        records, day, day,
        cards=cards, cash_method=cash_method, event_logger=event_logger,
    ))


def upcoming_planned(
    records: Iterable[TransactionRecord],
    today: date,
    horizon_days: int,
    *,
    cards: Iterable[Card],
    cash_method: str,
) -> dict[date, list[TransactionRecord]]:
    """
    Planned records from today plus projected occurrences after today.

    Saved planned records count from today; virtual occurrences start
    tomorrow (today's are due, not upcoming). Grouped by opDate.
    """
    records = list(records)
    end = today + timedelta(days=horizon_days)
    grouped: dict[date, list[TransactionRecord]] = defaultdict(list)
    for record in occurrences_in_range(records, today, end, cards=cards, cash_method=cash_method):
        if record.is_virtual and record.op_date == today:
            continue
        if record.planned:
            grouped[record.op_date].append(record)
    return dict(grouped)
