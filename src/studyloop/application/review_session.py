"""
Review session state machine.

Drives one pass over a due-set:

    IDLE --start--> PRESENTING --reveal--> REVEALED --rate--> PRESENTING | COMPLETED

Only `rate` touches persisted state, and each rating writes exactly one card
update plus one review event. UI layers observe transitions through
listeners instead of holding scheduler state themselves.
"""

import logging
from collections.abc import Callable
from dataclasses import dataclass
from enum import Enum
from typing import Literal

from ulid import ULID

from studyloop.domain.errors import InvalidInput, NoCardsAvailable
from studyloop.domain.interfaces import FlashcardStore
from studyloop.domain.models import Card, Difficulty, ReviewEvent

from .interval import next_review_at
from .providers import Clock, RandomSource, system_clock
from .selector import select_for_review

logger = logging.getLogger(__name__)


class SessionState(str, Enum):
    IDLE = "idle"
    PRESENTING = "presenting"
    REVEALED = "revealed"
    COMPLETED = "completed"


@dataclass(frozen=True)
class SessionEvent:
    """A transition notification sent to session listeners."""

    kind: Literal["started", "revealed", "rated", "completed", "abandoned"]
    state: SessionState
    card: Card | None
    position: int
    total: int
    review_event: ReviewEvent | None = None


Listener = Callable[[SessionEvent], None]


class ReviewSession:
    """
    One interactive review pass over a deck's due-set.

    Abandoning mid-session keeps every rating already applied; there is no
    rollback of a partially completed session.
    """

    def __init__(
        self,
        store: FlashcardStore,
        clock: Clock = system_clock,
        rng: RandomSource | None = None,
        listeners: list[Listener] | None = None,
    ):
        self.id = f"session_{ULID()}"
        self._store = store
        self._clock = clock
        self._rng = rng
        self._listeners: list[Listener] = list(listeners or [])

        self.state = SessionState.IDLE
        self.deck_id: str | None = None
        self.cards: list[Card] = []
        self.index = 0
        self.events: list[ReviewEvent] = []
        self._rating = False

    # ------------------------------------------------------------------
    # Observation
    # ------------------------------------------------------------------

    def subscribe(self, listener: Listener) -> None:
        self._listeners.append(listener)

    @property
    def current_card(self) -> Card | None:
        if self.state in (SessionState.PRESENTING, SessionState.REVEALED):
            return self.cards[self.index]
        return None

    @property
    def total(self) -> int:
        return len(self.cards)

    @property
    def position(self) -> int:
        """1-based position of the current card, or the total once complete."""
        if self.state is SessionState.COMPLETED:
            return self.total
        return self.index + 1 if self.cards else 0

    @property
    def back_visible(self) -> bool:
        return self.state is SessionState.REVEALED

    # ------------------------------------------------------------------
    # Transitions
    # ------------------------------------------------------------------

    async def start(self, deck_id: str) -> Card:
        """Load the deck's due-set from the store and present its first card."""
        self._ensure_can_start()
        cards = await self._store.list_cards(deck_id)
        due_set = select_for_review(cards, self._clock())
        if not due_set:
            logger.info(f"No cards available for review in deck {deck_id}")
            raise NoCardsAvailable(deck_id)
        return self.begin(due_set, deck_id=deck_id)

    def begin(self, due_set: list[Card], deck_id: str | None = None) -> Card:
        """Start presenting an already selected due-set."""
        self._ensure_can_start()
        if not due_set:
            raise NoCardsAvailable(deck_id or "?")

        self.deck_id = deck_id or due_set[0].deck_id
        self.cards = list(due_set)
        self.index = 0
        self.events = []
        self.state = SessionState.PRESENTING
        logger.info(f"Review session {self.id} started with {self.total} cards")
        self._emit("started")
        return self.cards[0]

    def reveal(self) -> Card:
        """Expose the back face. Repeating it on the same card changes nothing."""
        if self.state is SessionState.REVEALED:
            return self.cards[self.index]
        if self.state is not SessionState.PRESENTING:
            raise InvalidInput(f"cannot reveal while session is {self.state.value}")
        self.state = SessionState.REVEALED
        self._emit("revealed")
        return self.cards[self.index]

    async def rate(self, difficulty: Difficulty | str) -> Card | None:
        """
        Rate the revealed card and advance.

        Returns the next card, or None when the due-set is exhausted and the
        session is COMPLETED. On a store failure the error propagates and the
        session stays on the same revealed card.
        """
        if self.state is not SessionState.REVEALED:
            raise InvalidInput(f"cannot rate while session is {self.state.value}")
        if self._rating:
            raise InvalidInput(f"card {self.cards[self.index].id} is already being rated")
        rating = Difficulty.parse(difficulty)

        card = self.cards[self.index]
        now = self._clock()
        fields = {
            "next_review": next_review_at(rating, card.review_count, now, self._rng),
            "review_count": card.review_count + 1,
            "difficulty": rating,
            "last_reviewed": now,
        }
        # one rating in flight per revealed card
        self._rating = True
        try:
            updated, event = await self._store.record_review(card, fields, rating, now)
        finally:
            self._rating = False
        logger.debug(
            f"Rated {card.id} as {rating.value} (review #{updated.review_count}), "
            f"next review {updated.next_review.isoformat()}"
        )

        self.cards[self.index] = updated
        self.events.append(event)
        self._emit("rated", card=updated, review_event=event)

        self.index += 1
        if self.index >= len(self.cards):
            self.state = SessionState.COMPLETED
            logger.info(f"Review session {self.id} completed ({len(self.events)} ratings)")
            self._emit("completed", card=None)
            return None

        self.state = SessionState.PRESENTING
        return self.cards[self.index]

    def abandon(self) -> None:
        """Stop advancing. Ratings already applied stay applied."""
        if self.state in (SessionState.PRESENTING, SessionState.REVEALED):
            logger.info(f"Review session {self.id} abandoned at {self.position}/{self.total}")
            self.state = SessionState.IDLE
            self._emit("abandoned", card=None)

    # ------------------------------------------------------------------
    # Helpers
    # ------------------------------------------------------------------

    def _ensure_can_start(self) -> None:
        if self.state in (SessionState.PRESENTING, SessionState.REVEALED):
            raise InvalidInput(f"session {self.id} is already in progress")
        if self.state is SessionState.COMPLETED:
            self.state = SessionState.IDLE

    def _emit(self, kind, card: Card | None = ..., review_event: ReviewEvent | None = None):
        event = SessionEvent(
            kind=kind,
            state=self.state,
            card=self.current_card if card is ... else card,
            position=self.position,
            total=self.total,
            review_event=review_event,
        )
        for listener in self._listeners:
            listener(event)
