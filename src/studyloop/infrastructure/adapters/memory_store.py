"""
In-memory store — dict-backed FlashcardStore.

Used by tests and by `--store memory` for throwaway sessions.
"""

import logging
from dataclasses import replace
from datetime import datetime
from typing import Any

from studyloop.application.providers import Clock, system_clock
from studyloop.domain.errors import InvalidInput, NotFound
from studyloop.domain.interfaces import REVIEW_FIELDS, FlashcardStore
from studyloop.domain.models import Card, Deck, Difficulty, ReviewEvent, summarize_deck

from ._ids import new_id

logger = logging.getLogger(__name__)

UPDATABLE_FIELDS = set(REVIEW_FIELDS) | {"front", "back", "tags"}


class InMemoryStore(FlashcardStore):
    def __init__(self, owner: str = "local", clock: Clock = system_clock):
        self.owner = owner
        self._clock = clock
        self.decks: dict[str, Deck] = {}
        self.cards: dict[str, Card] = {}
        self.events: list[ReviewEvent] = []

    async def list_decks(self) -> list[Deck]:
        cards = list(self.cards.values())
        decks = sorted(self.decks.values(), key=lambda d: d.created_at, reverse=True)
        return [summarize_deck(d, cards) for d in decks]

    async def get_deck(self, deck_id: str) -> Deck:
        deck = self.decks.get(deck_id)
        if deck is None:
            raise NotFound("deck", deck_id)
        return summarize_deck(deck, list(self.cards.values()))

    async def create_deck(self, name: str, description: str = "") -> Deck:
        if not name.strip():
            raise InvalidInput("deck name must not be empty")
        deck = Deck(
            id=new_id("deck"),
            owner=self.owner,
            name=name.strip(),
            description=description,
            created_at=self._clock(),
        )
        self.decks[deck.id] = deck
        return deck

    async def delete_deck(self, deck_id: str) -> None:
        if deck_id not in self.decks:
            raise NotFound("deck", deck_id)
        removed = {cid for cid, c in self.cards.items() if c.deck_id == deck_id}
        for cid in removed:
            del self.cards[cid]
        self.events = [e for e in self.events if e.card_id not in removed]
        del self.decks[deck_id]

    async def list_cards(self, deck_id: str) -> list[Card]:
        if deck_id not in self.decks:
            raise NotFound("deck", deck_id)
        return [c for c in self.cards.values() if c.deck_id == deck_id]

    async def list_all_cards(self) -> list[Card]:
        return list(self.cards.values())

    async def get_card(self, card_id: str) -> Card:
        card = self.cards.get(card_id)
        if card is None:
            raise NotFound("card", card_id)
        return card

    async def create_card(
        self, deck_id: str, front: str, back: str, tags: list[str] | None = None
    ) -> Card:
        if deck_id not in self.decks:
            raise NotFound("deck", deck_id)
        if not front.strip() or not back.strip():
            raise InvalidInput("card front and back must not be empty")
        now = self._clock()
        card = Card(
            id=new_id("card"),
            deck_id=deck_id,
            front=front,
            back=back,
            tags=list(tags or []),
            next_review=now,
            created_at=now,
        )
        self.cards[card.id] = card
        return card

    async def update_card(self, card_id: str, fields: dict[str, Any]) -> Card:
        card = await self.get_card(card_id)
        unknown = set(fields) - UPDATABLE_FIELDS
        if unknown:
            raise InvalidInput(f"cannot update card fields: {sorted(unknown)}")
        updated = replace(card, **fields)
        self.cards[card_id] = updated
        return updated

    async def append_review_event(
        self,
        card_id: str,
        difficulty: Difficulty,
        timestamp: datetime,
        response_time_ms: int | None = None,
    ) -> ReviewEvent:
        await self.get_card(card_id)
        event = ReviewEvent(
            id=new_id("rev"),
            card_id=card_id,
            owner=self.owner,
            difficulty=difficulty,
            reviewed_at=timestamp,
            response_time_ms=response_time_ms,
        )
        self.events.append(event)
        return event

    async def list_review_events(self) -> list[ReviewEvent]:
        return sorted(self.events, key=lambda e: e.reviewed_at)
