"""Tests for the billing-cycle calculator and card resolution."""

import pytest
from datetime import date

from ledger.models import Card
from ledger.rules import (
    ensure_cash_card,
    fold_name,
    infer_card,
    invoice_due_date,
    is_cash,
    post_date,
    validate_card_registry,
)


VISA = Card(name="Visa", close_day=10, due_day=20)
NUBANK = Card(name="Nubank", close_day=25, due_day=5)
CARDS = [Card(name="Cash"), VISA, NUBANK]


class TestPostDate:
    """Tests for posting date computation."""

    def test_cash_posts_on_operation_date(self):
        """Test that cash settles immediately."""
        assert post_date(date(2024, 1, 17), "Cash", CARDS) == date(2024, 1, 17)

    def test_cash_is_case_insensitive(self):
        """Test that the cash method is matched loosely."""
        assert post_date(date(2024, 1, 17), "cash", CARDS) == date(2024, 1, 17)

    def test_purchase_on_close_day_stays_in_cycle(self):
        """Test a purchase on the close day."""
        assert post_date(date(2024, 1, 10), "Visa", CARDS) == date(2024, 1, 20)

    def test_purchase_after_close_rolls_to_next_cycle(self):
        """Test a purchase one day after the close day."""
        assert post_date(date(2024, 1, 11), "Visa", CARDS) == date(2024, 2, 20)

    def test_due_before_close_means_following_month(self):
        """Test cards whose due day has rolled into the next month."""
        assert post_date(date(2024, 1, 25), "Nubank", CARDS) == date(2024, 2, 5)
        assert post_date(date(2024, 1, 26), "Nubank", CARDS) == date(2024, 3, 5)

    def test_year_rollover(self):
        """Test December purchases landing in the next year."""
        assert post_date(date(2024, 12, 26), "Nubank", CARDS) == date(2025, 2, 5)
        assert post_date(date(2024, 12, 11), "Visa", CARDS) == date(2025, 1, 20)

    def test_close_day_clamped_to_short_month(self):
        """Test a card closing on the 31st in February."""
        card = Card(name="Late", close_day=31, due_day=10)
        assert invoice_due_date(date(2024, 2, 29), card) == date(2024, 3, 10)
        assert invoice_due_date(date(2023, 2, 28), card) == date(2023, 3, 10)
        assert invoice_due_date(date(2024, 4, 30), card) == date(2024, 5, 10)

    def test_due_day_clamped_to_short_month(self):
        """Test a due day that does not exist in the cycle month."""
        card = Card(name="EndOfMonth", close_day=5, due_day=31)
        assert invoice_due_date(date(2023, 2, 3), card) == date(2023, 2, 28)
        assert invoice_due_date(date(2024, 4, 3), card) == date(2024, 4, 30)

    def test_unknown_method_posts_on_operation_date(self):
        """Test that unresolved methods settle immediately."""
        assert post_date(date(2024, 1, 17), "Amex", CARDS) == date(2024, 1, 17)

    def test_custom_cash_method(self):
        """Test a renamed cash pseudo-card."""
        cards = [Card(name="Dinheiro"), VISA]
        assert post_date(date(2024, 1, 11), "Dinheiro", cards, "Dinheiro") == date(2024, 1, 11)
        assert post_date(date(2024, 1, 11), "Visa", cards, "Dinheiro") == date(2024, 2, 20)


class TestCardInference:
    """Tests for resolving legacy method values to cards."""

    def test_fold_name_ignores_case_and_accents(self):
        """Test name folding."""
        assert fold_name("Cartão  de Crédito") == "cartao de credito"
        assert is_cash("CASH", "Cash")

    def test_infer_by_loose_name(self):
        """Test a case-insensitive name match."""
        assert infer_card("visa", date(2024, 1, 5), None, CARDS) == "Visa"

    def test_infer_by_stored_post_date(self):
        """Test the single card whose cycle reproduces the stored postDate."""
        assert infer_card("credit", date(2024, 1, 5), date(2024, 1, 20), CARDS) == "Visa"
        assert infer_card("credit", date(2024, 1, 5), date(2024, 2, 5), CARDS) == "Nubank"

    def test_ambiguous_cycle_is_not_guessed(self):
        """Test that several matching cards resolve to nothing."""
        twin = Card(name="Master", close_day=10, due_day=20)
        cards = [Card(name="Cash"), VISA, twin]
        assert infer_card("credit", date(2024, 1, 5), date(2024, 1, 20), cards) is None

    def test_generic_method_with_single_card(self):
        """Test that a generic 'card' method resolves when only one card exists."""
        cards = [Card(name="Cash"), VISA]
        assert infer_card("Cartão", date(2024, 1, 5), None, cards) == "Visa"
        assert infer_card("Cartão", date(2024, 1, 5), None, CARDS) is None

    def test_unrelated_method_is_not_guessed(self):
        """Test that arbitrary names stay unresolved."""
        assert infer_card("Amex", date(2024, 1, 5), None, [Card(name="Cash"), VISA]) is None


class TestCardRegistry:
    """Tests for card registry validation."""

    def test_cash_card_is_first_and_unique(self):
        """Test that the cash card is always present exactly once."""
        cards = ensure_cash_card([VISA, Card(name="cash")], "Cash")
        assert [c.name for c in cards] == ["Cash", "Visa"]

    def test_duplicate_names_rejected(self):
        """Test that names must be unique (loosely compared)."""
        with pytest.raises(ValueError, match="Duplicate"):
            validate_card_registry([VISA, Card(name="VISA", close_day=1, due_day=9)], "Cash")

    def test_card_without_cycle_rejected(self):
        """Test that real cards need a billing cycle."""
        with pytest.raises(ValueError, match="closeDay"):
            validate_card_registry([Card(name="Debit")], "Cash")

    def test_valid_registry(self):
        """Test a valid registry passes through."""
        cards = validate_card_registry(iter([VISA, NUBANK]), "Cash")
        assert [c.name for c in cards] == ["Cash", "Visa", "Nubank"]


if __name__ == "__main__":
    pytest.main([__file__, "-v"])
