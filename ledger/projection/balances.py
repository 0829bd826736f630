"""
Daily Balance Projection

Running balances per day, starting from the ledger's opening balance.

- Cash moves money on its opDate; cards move it on their postDate.
- "projected" counts everything, planned and virtual records included.
- "available" counts only records that actually happened (not planned).
"""

from collections.abc import Mapping
from datetime import date
from decimal import Decimal
from typing import Any, Iterable, Optional

from pydantic import BaseModel

from ledger.models.transaction import TransactionRecord
from ledger.rules.billing import is_cash
from ledger.rules.recurrence import iter_dates
from ledger.store.normalizer import coerce_decimal


class DailyBalance(BaseModel):
    """Balances at the end of one day."""

    day: date
    projected: Decimal
    available: Decimal


def normalize_start_balance(value: Any) -> Optional[Decimal]:
    """
    Read an opening balance as stored by any client version.

    Accepts a number, a numeric string or a mapping with "value"/"amount".
    Returns None when nothing usable is present.
    """
    if isinstance(value, Mapping):
        for key in ("value", "amount"):
            if key in value:
                return normalize_start_balance(value[key])
        return None
    if isinstance(value, str) and value.count(",") == 1 and "." not in value:
        # decimal comma
        value = value.replace(",", ".")
    return coerce_decimal(value)


def impact_date(record: TransactionRecord, cash_method: str) -> date:
    """Day a record changes the account balance."""
    if is_cash(record.method, cash_method):
        return record.op_date
    return record.post_date


def compute_daily_balances(
    records: Iterable[TransactionRecord],
    start: date,
    end: date,
    *,
    start_balance: Optional[Decimal],
    cash_method: str,
    start_date: Optional[date] = None,
) -> list[DailyBalance]:
    """
    Compute end-of-day balances for [start, end].

    Args:
        records: Concrete, virtual and materialized records to count
        start: First day reported
        end: Last day reported
        start_balance: Opening balance (None counts as zero)
        cash_method: Name of the cash pseudo-card
        start_date: Day the opening balance refers to; records moving
            money before it are already part of the opening balance

    Returns:
        One DailyBalance per day, in order.
    """
    projected_by_day: dict[date, Decimal] = {}
    available_by_day: dict[date, Decimal] = {}
    opening_projected = start_balance or Decimal("0")
    opening_available = opening_projected

    for record in records:
        day = impact_date(record, cash_method)
        if start_date is not None and day < start_date:
            continue
        if day > end:
            continue
        if day < start:
            opening_projected += record.value
            if not record.planned:
                opening_available += record.value
            continue
        projected_by_day[day] = projected_by_day.get(day, Decimal("0")) + record.value
        if not record.planned:
            available_by_day[day] = available_by_day.get(day, Decimal("0")) + record.value

    balances = []
    projected, available = opening_projected, opening_available
    for day in iter_dates(start, end):
        projected += projected_by_day.get(day, Decimal("0"))
        available += available_by_day.get(day, Decimal("0"))
        balances.append(DailyBalance(day=day, projected=projected, available=available))
    return balances
