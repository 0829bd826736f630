"""Tests for budget calculations, lifecycle and materialization."""

import pytest
from datetime import date, datetime, timezone
from decimal import Decimal

from ledger.budgets import (
    RESERVE_PREFIX,
    RETURN_PREFIX,
    close_expired_budgets,
    current_cycle_window,
    enforce_single_active,
    ensure_recurring_budgets,
    exclude_budget_triggers,
    filter_out_materializations,
    generate_materializations,
    inject_materializations,
    is_budget_trigger,
    normalize_budgets,
    recompute_budget,
    spent_in_period,
    upsert_budget_from_transaction,
)
from ledger.models import Budget, BudgetStatus, BudgetType, Card, TransactionRecord


NOW = datetime(2024, 2, 20, 12, tzinfo=timezone.utc)
TODAY = date(2024, 2, 20)
CARDS = [Card(name="Cash"), Card(name="Visa", close_day=10, due_day=20)]


def make_record(record_id, op_date, value=-10, **kwargs):
    return TransactionRecord(
        id=record_id,
        desc=kwargs.pop("desc", record_id),
        value=value,
        op_date=op_date,
        post_date=kwargs.pop("post_date", op_date),
        method=kwargs.pop("method", "Cash"),
        **kwargs,
    )


def groceries_master(**kwargs):
    return make_record(
        "m1", date(2024, 1, 15), value=-400,
        recurrence="M", budget_tag="groceries", **kwargs,
    )


def groceries_budget(**kwargs):
    data = dict(
        id="bud-m1-2024-02-15",
        tag="groceries",
        budget_type=BudgetType.RECURRING,
        start_date=date(2024, 2, 15),
        end_date=date(2024, 3, 14),
        initial_value=Decimal("400"),
        recurrence_id="m1",
        trigger_tx_id="m1",
        trigger_tx_iso=date(2024, 2, 15),
    )
    data.update(kwargs)
    return Budget(**data)


class TestSpending:
    """Tests for spent and reserved amounts."""

    def test_spent_counts_executed_tagged_records(self):
        """Test which records count against a budget."""
        records = [
            make_record("veg", date(2024, 2, 18), -50, budget_tag="groceries"),
            make_record("later", date(2024, 2, 25), -70, budget_tag="groceries", planned=True),
            make_record("child", date(2024, 2, 15), -400, budget_tag="groceries",
                        parent_id="m1"),
            make_record("fuel", date(2024, 2, 18), -90, budget_tag="car"),
            make_record("outside", date(2024, 3, 20), -30, budget_tag="groceries"),
        ]
        spent = spent_in_period(
            records, "groceries", date(2024, 2, 15), date(2024, 3, 14), exclude_ids=["m1"]
        )
        assert spent == Decimal("50")

    def test_hashtag_spending_counts(self):
        """Test that '#tag' on a record matches the budget's tag."""
        veg = make_record("veg", date(2024, 2, 18), -50, budget_tag="#groceries")
        assert veg.budget_tag == "groceries"
        budget = recompute_budget(groceries_budget(tag="#groceries"), [veg])
        assert budget.tag == "groceries"
        assert budget.spent_value == Decimal("50")

    def test_recompute_budget(self):
        """Test reserved = initial - spent, floored at zero."""
        records = [make_record("veg", date(2024, 2, 18), -50, budget_tag="groceries")]
        budget = recompute_budget(groceries_budget(), records)
        assert budget.spent_value == Decimal("50")
        assert budget.reserved_value == Decimal("350")

        overspent = [make_record("feast", date(2024, 2, 18), -500, budget_tag="groceries")]
        assert recompute_budget(groceries_budget(), overspent).reserved_value == Decimal("0")


class TestLifecycle:
    """Tests for opening and closing budgets."""

    def test_cycle_window(self):
        """Test the cycle containing today."""
        assert current_cycle_window(groceries_master(), TODAY) == (
            date(2024, 2, 15), date(2024, 3, 14)
        )

    def test_ensure_recurring_budget(self):
        """Test that a tagged master opens its current-cycle budget."""
        change = ensure_recurring_budgets([groceries_master()], [], today=TODAY, now=NOW)
        assert change.created_ids == ["bud-m1-2024-02-15"]
        budget = change.budgets[0]
        assert budget.budget_type == BudgetType.RECURRING
        assert budget.initial_value == Decimal("400")
        assert budget.start_date == date(2024, 2, 15)
        assert budget.end_date == date(2024, 3, 14)
        assert budget.recurrence_id == "m1"

        again = ensure_recurring_budgets(
            [groceries_master()], change.budgets, today=TODAY, now=NOW
        )
        assert not again.changed
        assert len(again.budgets) == 1

    def test_new_cycle_closes_previous_budget(self):
        """Test that only the latest budget of a tag stays active."""
        first = ensure_recurring_budgets([groceries_master()], [], today=TODAY, now=NOW)
        second = ensure_recurring_budgets(
            [groceries_master()], first.budgets, today=date(2024, 3, 16), now=NOW
        )
        assert second.created_ids == ["bud-m1-2024-03-15"]
        assert second.closed_ids == ["bud-m1-2024-02-15"]
        active = [b.id for b in second.budgets if b.is_active]
        assert active == ["bud-m1-2024-03-15"]

    def test_untagged_or_ended_masters_ignored(self):
        """Test masters that do not own a budget."""
        plain = make_record("m2", date(2024, 1, 15), recurrence="M")
        ended = groceries_master(recurrence_end=date(2024, 2, 1))
        assert not ensure_recurring_budgets([plain, ended], [], today=TODAY, now=NOW).changed

    def test_close_expired(self):
        """Test that finished windows are closed."""
        change = close_expired_budgets([groceries_budget()], today=date(2024, 3, 15), now=NOW)
        assert change.closed_ids == ["bud-m1-2024-02-15"]
        assert change.budgets[0].status == BudgetStatus.CLOSED

        still_open = close_expired_budgets([groceries_budget()], today=date(2024, 3, 14), now=NOW)
        assert not still_open.changed

    def test_enforce_single_active(self):
        """Test that older active budgets of the same tag are closed."""
        older = groceries_budget(id="old", start_date=date(2024, 1, 15), end_date=date(2024, 2, 14))
        newer = groceries_budget()
        other = Budget(id="car", tag="car", start_date=date(2024, 1, 1))
        result = enforce_single_active([older, newer, other], now=NOW)
        assert [b.is_active for b in result] == [False, True, True]

    def test_upsert_ad_hoc_budget(self):
        """Test that a planned future one-off opens an ad-hoc budget."""
        trip = make_record("trip", date(2024, 3, 10), -300, budget_tag="travel", planned=True)
        change = upsert_budget_from_transaction(trip, [], [trip], today=TODAY, now=NOW)
        assert change.created_ids == ["bud-trip"]
        budget = change.budgets[0]
        assert budget.budget_type == BudgetType.AD_HOC
        assert budget.start_date == TODAY
        assert budget.end_date == date(2024, 3, 10)
        assert budget.trigger_tx_id == "trip"

    def test_upsert_ignores_past_or_untagged(self):
        """Test records that do not imply a budget."""
        past = make_record("lunch", date(2024, 2, 1), budget_tag="food")
        untagged = make_record("x", date(2024, 3, 1))
        assert not upsert_budget_from_transaction(past, [], [past], today=TODAY, now=NOW).changed
        assert not upsert_budget_from_transaction(
            untagged, [], [untagged], today=TODAY, now=NOW
        ).changed

    def test_upsert_master(self):
        """Test that saving a tagged master opens its recurring budget."""
        master = groceries_master()
        veg = make_record("veg", date(2024, 2, 18), -50, budget_tag="groceries")
        change = upsert_budget_from_transaction(master, [], [veg], today=TODAY, now=NOW)
        assert change.created_ids == ["bud-m1-2024-02-15"]
        assert change.budgets[0].spent_value == Decimal("50")

    def test_normalize_budgets(self):
        """Test that unreadable stored budgets are skipped."""
        budgets = normalize_budgets({
            "a": {"id": "b1", "tag": "x", "startDate": "2024-01-01"},
            "b": {"tag": "no-id", "startDate": "2024-01-01"},
            "c": {"id": "b2", "tag": "x", "startDate": "not a date"},
            "d": {"id": "b1", "tag": "y", "startDate": "2024-01-01"},
        })
        assert [(b.id, b.tag) for b in budgets] == [("b1", "y")]
        assert normalize_budgets(None) == []


class TestMaterialization:
    """Tests for reserve and return records."""

    def test_reserve_once_cycle_started(self):
        """Test the reserve record on the cycle start."""
        generated = generate_materializations(
            [groceries_budget()], [groceries_master()], TODAY, cards=CARDS, cash_method="Cash"
        )
        assert len(generated) == 1
        reserve = generated[0]
        assert reserve.id == f"{RESERVE_PREFIX}bud-m1-2024-02-15"
        assert reserve.value == Decimal("-400")
        assert reserve.op_date == date(2024, 2, 15)
        assert reserve.budget_reserve_for == "bud-m1-2024-02-15"
        assert reserve.is_materialization

    def test_reserve_uses_master_card(self):
        """Test that the reserve posts like the master's card."""
        master = groceries_master(method="Visa")
        generated = generate_materializations(
            [groceries_budget()], [master], TODAY, cards=CARDS, cash_method="Cash"
        )
        assert generated[0].method == "Visa"
        assert generated[0].post_date == date(2024, 3, 20)

    def test_nothing_before_start(self):
        """Test that future budgets do not reserve yet."""
        generated = generate_materializations(
            [groceries_budget()], [], date(2024, 2, 14), cards=CARDS, cash_method="Cash"
        )
        assert generated == []

    def test_return_after_cycle_end(self):
        """Test that unused money comes back on the last day."""
        records = [
            groceries_master(),
            make_record("veg", date(2024, 2, 18), -50, budget_tag="groceries"),
        ]
        generated = generate_materializations(
            [groceries_budget()], records, date(2024, 3, 15), cards=CARDS, cash_method="Cash"
        )
        reserved = [r for r in generated if r.id.startswith(RESERVE_PREFIX)]
        returned = [r for r in generated if r.id.startswith(RETURN_PREFIX)]
        assert reserved[0].value == Decimal("-350")
        assert len(returned) == 1
        assert returned[0].value == Decimal("350")
        assert returned[0].op_date == date(2024, 3, 14)
        assert returned[0].method == "Cash"

    def test_nothing_for_fully_spent_budget(self):
        """Test that a spent budget reserves and returns nothing."""
        records = [make_record("feast", date(2024, 2, 18), -400, budget_tag="groceries")]
        generated = generate_materializations(
            [groceries_budget()], records, date(2024, 3, 15), cards=CARDS, cash_method="Cash"
        )
        assert generated == []

    def test_closed_budgets_materialize_nothing(self):
        """Test that closed budgets are ignored."""
        closed = groceries_budget(status=BudgetStatus.CLOSED)
        assert generate_materializations(
            [closed], [], TODAY, cards=CARDS, cash_method="Cash"
        ) == []

    def test_inject_and_filter_round_trip(self):
        """Test that injected records are stripped again before persisting."""
        records = [groceries_master()]
        injected = inject_materializations(
            records, [groceries_budget()], TODAY, cards=CARDS, cash_method="Cash"
        )
        assert len(injected) == 2
        assert filter_out_materializations(injected) == records

    def test_existing_ids_not_duplicated(self):
        """Test that a record already carrying the reserve id suppresses it."""
        existing = make_record(f"{RESERVE_PREFIX}bud-m1-2024-02-15", date(2024, 2, 15), -400)
        generated = generate_materializations(
            [groceries_budget()], [existing], TODAY, cards=CARDS, cash_method="Cash"
        )
        assert generated == []

    def test_budget_triggers_excluded(self):
        """Test that the occurrence opening a budget is not counted twice."""
        budgets = [groceries_budget()]
        trigger = make_record(
            "m1_2024-02-15", date(2024, 2, 15), -400, parent_id="m1", is_virtual=True
        )
        later = make_record("m1_2024-03-15", date(2024, 3, 15), -400, parent_id="m1")
        assert is_budget_trigger(trigger, budgets)
        assert not is_budget_trigger(later, budgets)
        assert exclude_budget_triggers([trigger, later], budgets) == [later]


if __name__ == "__main__":
    pytest.main([__file__, "-v"])
