"""
Billing-Cycle Calculator

Maps an operation date and payment method to the date the money actually
leaves the account (postDate).

- Cash settles on the operation date.
- A card purchase on or before the statement close day belongs to that
  month's cycle; after it, to the next month's cycle. Close and due days
  are clamped to the month length (a card closing on the 31st closes on
  Feb 28/29).
- If dueDay > closeDay the invoice is due in the cycle month; otherwise
  the due day has rolled into the following month.

DESIGN DECISION: `post_date` is total. An unknown method is "unresolved"
and settles on the operation date; callers that must distinguish this case
use `find_card`. Legacy records with unrecognised methods go through
`infer_card`, which refuses to guess when more than one card fits.
"""

import unicodedata
from datetime import date
from typing import Iterable, Optional

from ledger.models.transaction import Card
from ledger.rules.recurrence import add_months, clamp_day


# Generic method names older records used before cards had names
GENERIC_CARD_METHODS = frozenset({"", "card", "cartao", "credit card", "credit"})


def fold_name(name: Optional[str]) -> str:
    """Case- and accent-insensitive form of a method or card name."""
    if not name:
        return ""
    decomposed = unicodedata.normalize("NFD", str(name))
    stripped = "".join(ch for ch in decomposed if not unicodedata.combining(ch))
    return " ".join(stripped.casefold().split())


def is_cash(method: Optional[str], cash_method: str) -> bool:
    return fold_name(method) == fold_name(cash_method)


def find_card(cards: Iterable[Card], method: Optional[str]) -> Optional[Card]:
    """Card whose name equals `method` exactly."""
    for card in cards:
        if card.name == method:
            return card
    return None


def invoice_due_date(op_date: date, card: Card) -> date:
    """Due date of the invoice an operation on `op_date` lands on."""
    close = clamp_day(op_date.year, op_date.month, card.close_day)
    cycle = date(op_date.year, op_date.month, 1)
    if op_date > close:
        cycle = add_months(cycle, 1, desired_day=1)
    if card.due_day < card.close_day:
        cycle = add_months(cycle, 1, desired_day=1)
    return clamp_day(cycle.year, cycle.month, card.due_day)


def post_date(
    op_date: date,
    method: Optional[str],
    cards: Iterable[Card],
    cash_method: str = "Cash",
) -> date:
    """
    Compute the posting date of an operation.

    Args:
        op_date: Day the operation happened
        method: Cash method name or a card name
        cards: Card registry
        cash_method: Name of the cash pseudo-card

    Returns:
        op_date for cash, cycle-less or unknown methods; the invoice due
        date for a known card.
    """
    if is_cash(method, cash_method):
        return op_date
    card = find_card(cards, method)
    if card is None or not card.has_cycle:
        return op_date
    return invoice_due_date(op_date, card)


def infer_card(
    method: Optional[str],
    op_date: date,
    stored_post_date: Optional[date],
    cards: Iterable[Card],
    cash_method: str = "Cash",
) -> Optional[str]:
    """
    Resolve a legacy method value to a canonical card name.

    Resolution order:
    1. Case/accent-insensitive name match
    2. The single card whose cycle reproduces the stored postDate
    3. The only card, when the method is empty or a generic "card" word

    Returns:
        The canonical card name, or None when zero or several cards fit.
    """
    real_cards = [c for c in cards if c.has_cycle and not is_cash(c.name, cash_method)]
    folded = fold_name(method)

    by_name = [c for c in real_cards if fold_name(c.name) == folded]
    if len(by_name) == 1:
        return by_name[0].name

    if stored_post_date is not None:
        by_cycle = [c for c in real_cards if invoice_due_date(op_date, c) == stored_post_date]
        if len(by_cycle) == 1:
            return by_cycle[0].name
        if len(by_cycle) > 1:
            return None

    if len(real_cards) == 1 and folded in GENERIC_CARD_METHODS:
        return real_cards[0].name

    return None


def ensure_cash_card(cards: Iterable[Card], cash_method: str) -> list[Card]:
    """Registry with the cash pseudo-card first, exactly once."""
    others = [c for c in cards if not is_cash(c.name, cash_method)]
    return [Card(name=cash_method)] + others


def validate_card_registry(cards: Iterable[Card], cash_method: str) -> list[Card]:
    """
    Check a card registry and return it with the cash card ensured.

    Raises:
        ValueError: On duplicate names or a non-cash card without a cycle.
    """
    cards = list(cards)
    seen: set[str] = set()
    for card in cards:
        key = fold_name(card.name)
        if key in seen:
            raise ValueError(f"Duplicate card name: {card.name}")
        seen.add(key)
        if not card.has_cycle and not is_cash(card.name, cash_method):
            raise ValueError(f"Card {card.name} needs closeDay and dueDay")
    return ensure_cash_card(cards, cash_method)
