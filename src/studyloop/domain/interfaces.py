"""
Ports (interfaces) for persistence.

These define the contract that infrastructure adapters must implement.
Application services depend on these abstractions, not concrete implementations.
"""

import logging
from abc import ABC, abstractmethod
from datetime import datetime
from typing import Any

from .models import Card, Deck, Difficulty, ReviewEvent

logger = logging.getLogger(__name__)

# Card fields a rating is allowed to touch.
REVIEW_FIELDS = ("next_review", "review_count", "difficulty", "last_reviewed")


class FlashcardStore(ABC):
    """
    Port for the durable store of decks, cards and review events.

    Every operation is scoped to the owner the store was opened for and may
    raise NotFound (missing table or row) or Transient (I/O failure).
    Implementations never retry internally.

    Implementations:
        - InMemoryStore: dict-backed, for tests and throwaway sessions.
        - SqliteStore: a local SQLite file.
        - HostedStore: a PostgREST-style hosted backend over HTTP.
    """

    owner: str

    @abstractmethod
    async def list_decks(self) -> list[Deck]:
        """Return all decks, with card_count and last_reviewed derived."""

    @abstractmethod
    async def get_deck(self, deck_id: str) -> Deck:
        pass

    @abstractmethod
    async def create_deck(self, name: str, description: str = "") -> Deck:
        pass

    @abstractmethod
    async def delete_deck(self, deck_id: str) -> None:
        """Delete a deck, cascading to its cards and their review events."""

    @abstractmethod
    async def list_cards(self, deck_id: str) -> list[Card]:
        pass

    @abstractmethod
    async def list_all_cards(self) -> list[Card]:
        """Return every card the owner has, across all decks."""

    @abstractmethod
    async def get_card(self, card_id: str) -> Card:
        pass

    @abstractmethod
    async def create_card(
        self, deck_id: str, front: str, back: str, tags: list[str] | None = None
    ) -> Card:
        """Create a card that is immediately due (next_review = now)."""

    @abstractmethod
    async def update_card(self, card_id: str, fields: dict[str, Any]) -> Card:
        pass

    @abstractmethod
    async def append_review_event(
        self,
        card_id: str,
        difficulty: Difficulty,
        timestamp: datetime,
        response_time_ms: int | None = None,
    ) -> ReviewEvent:
        pass

    @abstractmethod
    async def list_review_events(self) -> list[ReviewEvent]:
        """Return all review events, sorted by reviewed_at ascending."""

    async def record_review(
        self, card: Card, fields: dict[str, Any], difficulty: Difficulty, timestamp: datetime
    ) -> tuple[Card, ReviewEvent]:
        """
        Apply a rating: update the card, then append its review event.

        If the append fails the card update is reverted and the original
        error propagates, so a rating is never half-written. Adapters with
        real transactions override this.
        """
        updated = await self.update_card(card.id, fields)
        try:
            event = await self.append_review_event(card.id, difficulty, timestamp)
        except Exception:
            logger.warning(f"Event append failed for card {card.id}; reverting card update")
            try:
                await self.update_card(card.id, {k: getattr(card, k) for k in REVIEW_FIELDS})
            except Exception as revert_error:
                logger.error(f"Could not revert card {card.id}: {revert_error!r}")
            raise
        return updated, event

    async def aclose(self) -> None:
        """Release connections. Stores without resources need not override."""
