"""
Legacy data migration helpers.

Older data recorded ratings only on the card (last_reviewed + difficulty)
and never wrote review events. These helpers make that history visible to
the statistics engine, either on the fly or by persisting it once.
"""

import logging
from collections import Counter
from dataclasses import dataclass

from ulid import ULID

from studyloop.domain.interfaces import FlashcardStore
from studyloop.domain.models import Card, Difficulty, ReviewEvent

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class CountMismatch:
    """A card whose review_count disagrees with its number of review events."""

    card_id: str
    review_count: int
    event_count: int


def needs_backfill(events: list[ReviewEvent], cards: list[Card]) -> bool:
    return not events and any(c.last_reviewed is not None for c in cards)


def synthesize_placeholder_events(cards: list[Card], owner: str) -> list[ReviewEvent]:
    """
    One placeholder event per reviewed card, at its last_reviewed time,
    rated with its last difficulty (Good when unknown).
    """
    placeholders = [
        ReviewEvent(
            id=f"rev_{ULID()}",
            card_id=card.id,
            owner=owner,
            difficulty=card.difficulty or Difficulty.GOOD,
            reviewed_at=card.last_reviewed,
        )
        for card in cards
        if card.last_reviewed is not None
    ]
    placeholders.sort(key=lambda e: e.reviewed_at)
    return placeholders


async def backfill_review_events(store: FlashcardStore, dry_run: bool = False) -> int:
    """
    Persist placeholder events for legacy cards. Returns how many were written
    (or would be, with dry_run). Does nothing once any event exists.
    """
    events = await store.list_review_events()
    cards = await store.list_all_cards()
    if not needs_backfill(events, cards):
        return 0

    placeholders = synthesize_placeholder_events(cards, store.owner)
    if dry_run:
        logger.info(f"[DRY RUN] Would back-fill {len(placeholders)} review events")
        return len(placeholders)

    for p in placeholders:
        await store.append_review_event(p.card_id, p.difficulty, p.reviewed_at)
    logger.info(f"Back-filled {len(placeholders)} review events")
    return len(placeholders)


def find_count_mismatches(cards: list[Card], events: list[ReviewEvent]) -> list[CountMismatch]:
    """Report cards whose review_count differs from their event count."""
    counts = Counter(e.card_id for e in events)
    return [
        CountMismatch(card_id=c.id, review_count=c.review_count, event_count=counts[c.id])
        for c in cards
        if c.review_count != counts[c.id]
    ]
