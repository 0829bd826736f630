"""
Recurrence Resolver

Answers "does this master rule produce an occurrence on that day?" and the
cycle arithmetic budgets need ("where does the cycle containing a date
start, and where does the next one begin?").

Every shape is anchored at the master's opDate:
- D / W / BW: every 1 / 7 / 14 days
- M / Q / S / Y: every 1 / 3 / 6 / 12 months on the anchor day, clamped to
  the last day of shorter months (a rule on the 31st falls on Apr 30,
  a Feb 29 anniversary falls on Feb 28 in common years)

All functions are pure.
"""

from datetime import date, timedelta
from typing import Iterator, Optional

from ledger.models.transaction import RecurrencePattern, TransactionRecord


def days_in_month(year: int, month: int) -> int:
    if month == 12:
        next_month = date(year + 1, 1, 1)
    else:
        next_month = date(year, month + 1, 1)
    return (next_month - date(year, month, 1)).days


def clamp_day(year: int, month: int, day: int) -> date:
    """Build a date, clamping `day` to the length of the month."""
    return date(year, month, min(day, days_in_month(year, month)))


def add_months(base: date, months: int, *, desired_day: Optional[int] = None) -> date:
    """
    Shift `base` by a (possibly negative) number of months.

    Args:
        base: Starting date
        months: Months to add
        desired_day: Day of month to aim for; defaults to base.day.
            Clamped to the target month's length.
    """
    total_months = base.month - 1 + months
    year = base.year + total_months // 12
    month = total_months % 12 + 1
    return clamp_day(year, month, desired_day or base.day)


def months_between(start: date, end: date) -> int:
    """Whole calendar months from start's month to end's month."""
    return (end.year - start.year) * 12 + (end.month - start.month)


def iter_dates(start: date, end: date) -> Iterator[date]:
    """Every date from start to end inclusive (empty when end < start)."""
    current = start
    while current <= end:
        yield current
        current += timedelta(days=1)


def matches_pattern(anchor: date, pattern: RecurrencePattern, day: date) -> bool:
    """Pure pattern arithmetic: does `day` fall on the grid anchored at `anchor`?"""
    if day < anchor:
        return False

    step = pattern.day_interval
    if step is not None:
        return (day - anchor).days % step == 0

    step = pattern.month_interval
    elapsed = months_between(anchor, day)
    if elapsed % step != 0:
        return False
    return add_months(anchor, elapsed, desired_day=anchor.day) == day


def occurs_on(master: TransactionRecord, day: date) -> bool:
    """
    Whether a master rule produces an occurrence on `day`.

    False for non-masters, unknown patterns, days before the anchor,
    days on or after recurrenceEnd and excepted days.
    """
    pattern = master.pattern
    if pattern is None:
        return False
    if day < master.op_date:
        return False
    if master.recurrence_end is not None and day >= master.recurrence_end:
        return False
    if day in master.exceptions:
        return False
    return matches_pattern(master.op_date, pattern, day)


def next_occurrence_from(master: TransactionRecord, current: date) -> Optional[date]:
    """
    The grid date following `current`, ignoring exceptions and the end bound.

    `current` is expected to lie on the grid; month shapes keep aiming for
    the anchor day so a clamped Feb 28 is followed by Mar 31 again.
    """
    pattern = master.pattern
    if pattern is None:
        return None
    if pattern.day_interval is not None:
        return current + timedelta(days=pattern.day_interval)
    return add_months(current, pattern.month_interval, desired_day=master.op_date.day)


def previous_occurrence_from(master: TransactionRecord, current: date) -> Optional[date]:
    """The grid date preceding `current`; None before the anchor."""
    pattern = master.pattern
    if pattern is None:
        return None
    if pattern.day_interval is not None:
        previous = current - timedelta(days=pattern.day_interval)
    else:
        previous = add_months(current, -pattern.month_interval, desired_day=master.op_date.day)
    return previous if previous >= master.op_date else None


def cycle_start_for(master: TransactionRecord, target: date) -> Optional[date]:
    """
    Start of the cycle containing `target`.

    Returns the latest grid date on or before `target`, or None when the
    target precedes the anchor, the series has ended, or the pattern is
    unknown. Exceptions do not move cycle boundaries.
    """
    pattern = master.pattern
    anchor = master.op_date
    if pattern is None or target < anchor:
        return None
    if master.recurrence_end is not None and target >= master.recurrence_end:
        return None

    if pattern.day_interval is not None:
        step = pattern.day_interval
        return anchor + timedelta(days=((target - anchor).days // step) * step)

    step = pattern.month_interval
    elapsed = months_between(anchor, target)
    elapsed -= elapsed % step
    candidate = add_months(anchor, elapsed, desired_day=anchor.day)
    if candidate > target:
        elapsed -= step
        if elapsed < 0:
            return None
        candidate = add_months(anchor, elapsed, desired_day=anchor.day)
    return candidate
