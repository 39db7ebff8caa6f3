"""
Due-set selection for review sessions.

Three tiers, first non-empty wins:
1. Cards due now (with a one-minute forward buffer for clock skew).
2. Never-reviewed cards, oldest first.
3. Every card in the deck, oldest first, so a deck is never a dead end.

An empty deck yields an empty list, which callers treat as "nothing to
review".
"""

import logging
from collections.abc import Iterable
from datetime import datetime, timedelta

from studyloop.domain.constants import DUE_BUFFER_SECONDS
from studyloop.domain.models import Card

logger = logging.getLogger(__name__)


def due_cutoff(now: datetime) -> datetime:
    return now + timedelta(seconds=DUE_BUFFER_SECONDS)


def is_due(card: Card, now: datetime) -> bool:
    return card.next_review <= due_cutoff(now)


def select_for_review(cards: Iterable[Card], now: datetime) -> list[Card]:
    cards = list(cards)

    due = sorted((c for c in cards if is_due(c, now)), key=lambda c: c.next_review)
    if due:
        return due

    new = sorted((c for c in cards if c.is_new), key=lambda c: c.created_at)
    if new:
        logger.debug(f"No cards due; falling back to {len(new)} new cards")
        return new

    if cards:
        logger.debug(f"No due or new cards; offering all {len(cards)} cards")
    return sorted(cards, key=lambda c: c.created_at)


def count_due(cards: Iterable[Card], now: datetime) -> int:
    """Cards that are due or have never been reviewed."""
    return sum(1 for c in cards if is_due(c, now) or c.is_new)
