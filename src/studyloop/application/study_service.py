"""
Study Service — the entry point UI layers talk to.

Bundles the store with the injected clock, random source and zone, and
exposes review sessions, statistics and due-date projection.
"""

import logging
from datetime import date, datetime, tzinfo

from studyloop.domain.interfaces import FlashcardStore
from studyloop.domain.models import Card, Difficulty
from studyloop.domain.stats.models import StatisticsSnapshot

from .planner import cards_due_on, project_due_counts
from .providers import Clock, RandomSource, local_timezone, system_clock
from .review_session import Listener, ReviewSession
from .stats.service import StatisticsService

logger = logging.getLogger(__name__)


class StudyService:
    def __init__(
        self,
        store: FlashcardStore,
        clock: Clock = system_clock,
        rng: RandomSource | None = None,
        tz: tzinfo | None = None,
    ):
        self.store = store
        self.clock = clock
        self.rng = rng
        self.tz = tz or local_timezone()
        self._stats = StatisticsService(store, clock=clock, tz=self.tz)

    async def start_review(
        self, deck_id: str, listeners: list[Listener] | None = None
    ) -> ReviewSession:
        """Open a session on the deck's due-set. Raises NoCardsAvailable if empty."""
        session = ReviewSession(self.store, clock=self.clock, rng=self.rng, listeners=listeners)
        await session.start(deck_id)
        return session

    def reveal(self, session: ReviewSession) -> Card:
        return session.reveal()

    async def rate(self, session: ReviewSession, difficulty: Difficulty | str) -> Card | None:
        return await session.rate(difficulty)

    async def compute_statistics(self) -> StatisticsSnapshot:
        return await self._stats.compute()

    async def project_due_counts(
        self, window_start: datetime, window_end: datetime
    ) -> dict[date, int]:
        cards = await self.store.list_all_cards()
        return project_due_counts(cards, window_start, window_end, self.tz)

    async def cards_due_on(self, day: date) -> list[Card]:
        """Cards falling due on one local calendar day, earliest first."""
        return cards_due_on(await self.store.list_all_cards(), day, self.tz)
