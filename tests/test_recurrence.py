"""Tests for the recurrence resolver."""

import pytest
from datetime import date

from ledger.models import TransactionRecord
from ledger.rules import (
    add_months,
    cycle_start_for,
    days_in_month,
    iter_dates,
    next_occurrence_from,
    occurs_on,
    previous_occurrence_from,
)


def make_master(op_date, recurrence="M", **kwargs):
    return TransactionRecord(
        id=kwargs.pop("id", "m1"),
        desc=kwargs.pop("desc", "Rent"),
        value=kwargs.pop("value", -1000),
        op_date=op_date,
        post_date=op_date,
        method="Cash",
        recurrence=recurrence,
        **kwargs,
    )


class TestDateArithmetic:
    """Tests for calendar helpers."""

    def test_days_in_month(self):
        """Test month lengths including leap years."""
        assert days_in_month(2023, 2) == 28
        assert days_in_month(2024, 2) == 29
        assert days_in_month(2024, 12) == 31

    def test_add_months_clamps(self):
        """Test that month shifts clamp to the target month."""
        assert add_months(date(2024, 1, 31), 1) == date(2024, 2, 29)
        assert add_months(date(2024, 3, 31), -1) == date(2024, 2, 29)

    def test_add_months_crosses_years(self):
        """Test year boundaries in both directions."""
        assert add_months(date(2024, 12, 15), 1) == date(2025, 1, 15)
        assert add_months(date(2024, 1, 15), -1) == date(2023, 12, 15)

    def test_iter_dates(self):
        """Test inclusive date iteration."""
        days = list(iter_dates(date(2024, 2, 28), date(2024, 3, 1)))
        assert days == [date(2024, 2, 28), date(2024, 2, 29), date(2024, 3, 1)]
        assert list(iter_dates(date(2024, 3, 2), date(2024, 3, 1))) == []


class TestOccursOn:
    """Tests for occurrence resolution."""

    def test_monthly_on_anchor_day(self):
        """Test a plain monthly rule."""
        master = make_master(date(2024, 1, 15))
        assert occurs_on(master, date(2024, 1, 15))
        assert occurs_on(master, date(2024, 2, 15))
        assert not occurs_on(master, date(2024, 2, 14))

    def test_monthly_on_31st_clamps(self):
        """Test that a rule on the 31st falls on the last day of short months."""
        master = make_master(date(2024, 1, 31))
        assert occurs_on(master, date(2024, 2, 29))
        assert not occurs_on(master, date(2024, 2, 28))
        assert occurs_on(master, date(2024, 3, 31))
        assert occurs_on(master, date(2024, 4, 30))

    def test_yearly_leap_day(self):
        """Test a Feb 29 anniversary in common years."""
        master = make_master(date(2024, 2, 29), "Y")
        assert occurs_on(master, date(2025, 2, 28))
        assert occurs_on(master, date(2028, 2, 29))
        assert not occurs_on(master, date(2028, 2, 28))

    def test_day_based_patterns(self):
        """Test daily, weekly and biweekly rules."""
        anchor = date(2024, 1, 1)
        assert occurs_on(make_master(anchor, "D"), date(2024, 3, 17))
        assert occurs_on(make_master(anchor, "W"), date(2024, 1, 8))
        assert not occurs_on(make_master(anchor, "W"), date(2024, 1, 9))
        assert occurs_on(make_master(anchor, "BW"), date(2024, 1, 15))
        assert not occurs_on(make_master(anchor, "BW"), date(2024, 1, 8))

    def test_multi_month_patterns(self):
        """Test quarterly and semiannual rules."""
        anchor = date(2024, 1, 15)
        assert occurs_on(make_master(anchor, "Q"), date(2024, 4, 15))
        assert not occurs_on(make_master(anchor, "Q"), date(2024, 2, 15))
        assert occurs_on(make_master(anchor, "S"), date(2024, 7, 15))
        assert not occurs_on(make_master(anchor, "S"), date(2024, 4, 15))

    def test_before_anchor(self):
        """Test that nothing occurs before the first date."""
        master = make_master(date(2024, 1, 15))
        assert not occurs_on(master, date(2023, 12, 15))

    def test_recurrence_end_is_exclusive(self):
        """Test the end bound."""
        master = make_master(date(2024, 1, 31), recurrence_end=date(2024, 3, 31))
        assert occurs_on(master, date(2024, 2, 29))
        assert not occurs_on(master, date(2024, 3, 31))

    def test_exceptions(self):
        """Test that excepted dates do not occur."""
        master = make_master(date(2024, 1, 15), exceptions=[date(2024, 2, 15)])
        assert not occurs_on(master, date(2024, 2, 15))
        assert occurs_on(master, date(2024, 3, 15))

    def test_non_master_and_unknown_pattern(self):
        """Test records that cannot occur."""
        assert not occurs_on(make_master(date(2024, 1, 15), ""), date(2024, 1, 15))
        assert not occurs_on(make_master(date(2024, 1, 15), "X"), date(2024, 1, 15))


class TestCycleNavigation:
    """Tests for next/previous occurrence and cycle starts."""

    def test_next_occurrence_returns_to_anchor_day(self):
        """Test that clamping does not drift the anchor day."""
        master = make_master(date(2024, 1, 31))
        assert next_occurrence_from(master, date(2024, 1, 31)) == date(2024, 2, 29)
        assert next_occurrence_from(master, date(2024, 2, 29)) == date(2024, 3, 31)

    def test_previous_occurrence(self):
        """Test stepping back and stopping at the anchor."""
        master = make_master(date(2024, 1, 31))
        assert previous_occurrence_from(master, date(2024, 3, 31)) == date(2024, 2, 29)
        assert previous_occurrence_from(master, date(2024, 1, 31)) is None

    def test_cycle_start_monthly(self):
        """Test the cycle containing a date."""
        master = make_master(date(2024, 1, 31))
        assert cycle_start_for(master, date(2024, 3, 15)) == date(2024, 2, 29)
        assert cycle_start_for(master, date(2024, 3, 31)) == date(2024, 3, 31)
        assert cycle_start_for(master, date(2024, 1, 20)) is None

    def test_cycle_start_weekly(self):
        """Test day-based cycles."""
        master = make_master(date(2024, 1, 1), "W")
        assert cycle_start_for(master, date(2024, 1, 10)) == date(2024, 1, 8)

    def test_cycle_start_after_end(self):
        """Test that ended series have no current cycle."""
        master = make_master(date(2024, 1, 1), "W", recurrence_end=date(2024, 3, 1))
        assert cycle_start_for(master, date(2024, 3, 5)) is None


if __name__ == "__main__":
    pytest.main([__file__, "-v"])
