"""
Statistics Service — Application layer orchestrator.

Fetches the owner's full history from the store and hands it to the
calculator. Store errors propagate unchanged; malformed or legacy history
never does.
"""

import logging
from datetime import tzinfo

from studyloop.application.migrations import needs_backfill, synthesize_placeholder_events
from studyloop.application.providers import Clock, local_timezone, system_clock
from studyloop.domain.interfaces import FlashcardStore
from studyloop.domain.stats.models import StatisticsSnapshot

from .calculator import StatisticsCalculator

logger = logging.getLogger(__name__)


class StatisticsService:
    """
    Application service for computing a user's statistics snapshot.

    Depends on the FlashcardStore abstraction, not a concrete adapter.
    """

    def __init__(
        self,
        store: FlashcardStore,
        clock: Clock = system_clock,
        tz: tzinfo | None = None,
        calculator: StatisticsCalculator | None = None,
    ):
        """
        Args:
            store: The store (port) holding decks, cards and review events.
            clock: Source of "now".
            tz: Zone used for calendar-day bucketing; host local zone if None.
            calculator: Optional custom calculator; built from tz if not provided.
        """
        self._store = store
        self._clock = clock
        self._calc = calculator or StatisticsCalculator(tz or local_timezone())

    async def compute(self) -> StatisticsSnapshot:
        events = await self._store.list_review_events()
        cards = await self._store.list_all_cards()
        decks = await self._store.list_decks()

        backfilled = False
        if needs_backfill(events, cards):
            # Legacy cards carry ratings but no events; synthesize them in
            # memory. `studyloop migrate backfill` persists them for good.
            events = synthesize_placeholder_events(cards, self._store.owner)
            backfilled = True
            logger.info(f"Back-filled {len(events)} placeholder review events for statistics")

        return self._calc.compute(events, cards, decks, self._clock(), backfilled=backfilled)
