"""
Statistics calculator for rolling review events up into analytics.

This is a pure computation module with no I/O: every result is a function
of the events, cards and decks passed in plus "now" and the local zone.
"""

import math
from collections import Counter, defaultdict
from datetime import date, datetime, timedelta, tzinfo
from decimal import ROUND_HALF_UP, Decimal

from studyloop.application.selector import count_due
from studyloop.domain.constants import (
    DAILY_ACTIVITY_DAYS,
    MASTERY_MIN_REVIEWS,
    MASTERY_MIN_SUCCESSES,
    MIN_WEEKLY_BUCKETS,
    SECONDS_PER_DAY,
)
from studyloop.domain.models import Card, Deck, Difficulty, ReviewEvent
from studyloop.domain.stats.models import (
    DailyActivity,
    DeckKnowledge,
    DeckPerformance,
    PerformanceBucket,
    PerformanceSeries,
    StatisticsSnapshot,
)


def round_half_up(value: float | Decimal, ndigits: int = 0) -> float:
    """Round like a person would: 2.5 -> 3, 0.25 -> 0.3 (at 1 digit)."""
    exponent = Decimal(1).scaleb(-ndigits)
    return float(Decimal(str(value)).quantize(exponent, rounding=ROUND_HALF_UP))


def percentage(part: int, whole: int) -> int:
    """Integer percentage, rounded half up; 0 when whole is 0."""
    if whole == 0:
        return 0
    return int(round_half_up(Decimal(part * 100) / Decimal(whole)))


class StatisticsCalculator:
    """
    Computes a StatisticsSnapshot from raw review history.

    Stateless and side-effect free.
    """

    def __init__(self, tz: tzinfo):
        self.tz = tz

    def compute(
        self,
        events: list[ReviewEvent],
        cards: list[Card],
        decks: list[Deck],
        now: datetime,
        backfilled: bool = False,
    ) -> StatisticsSnapshot:
        events = sorted(events, key=lambda e: e.reviewed_at)
        today = self.local_date(now)

        total = len(events)
        successful = sum(1 for e in events if e.difficulty.is_success)
        days_active = self._days_since_first(events, now)
        current, longest = self.streaks(events, today)

        return StatisticsSnapshot(
            total_cards=len(cards),
            cards_due=count_due(cards, now),
            total_reviews=total,
            reviews_today=sum(1 for e in events if self.local_date(e.reviewed_at) >= today),
            success_rate=percentage(successful, total),
            mastered_cards=self.mastered_cards(events),
            learning_velocity=round_half_up(total / days_active, 1),
            avg_daily_reviews=int(round_half_up(total / days_active)),
            current_streak=current,
            longest_streak=longest,
            daily_activity=self.daily_activity(events, today),
            performance=self.performance(events),
            difficulty_distribution=self.difficulty_distribution(events),
            deck_performance=self.deck_performance(events, cards, decks),
            deck_knowledge=self.deck_knowledge(cards, decks),
            backfilled=backfilled,
        )

    def local_date(self, moment: datetime) -> date:
        return moment.astimezone(self.tz).date()

    # ------------------------------------------------------------------
    # Scalar metrics
    # ------------------------------------------------------------------

    def mastered_cards(self, events: list[ReviewEvent]) -> int:
        """
        Count cards reviewed at least 3 times with at least 2 successes.
        """
        totals: Counter[str] = Counter()
        successes: Counter[str] = Counter()
        for e in events:
            totals[e.card_id] += 1
            if e.difficulty.is_success:
                successes[e.card_id] += 1
        return sum(
            1
            for card_id, n in totals.items()
            if n >= MASTERY_MIN_REVIEWS and successes[card_id] >= MASTERY_MIN_SUCCESSES
        )

    def _days_since_first(self, events: list[ReviewEvent], now: datetime) -> int:
        if not events:
            return 1
        elapsed = (now - events[0].reviewed_at).total_seconds()
        return max(1, math.floor(elapsed / SECONDS_PER_DAY))

    def streaks(self, events: list[ReviewEvent], today: date) -> tuple[int, int]:
        """
        Return (current, longest) runs of consecutive local days with reviews.

        The current streak is anchored on today, or on yesterday when today
        has no reviews yet, so it does not reset before the day is over.
        """
        days = sorted({self.local_date(e.reviewed_at) for e in events})
        if not days:
            return 0, 0

        day_set = set(days)
        one_day = timedelta(days=1)

        current = 0
        anchor = today if today in day_set else today - one_day
        while anchor in day_set:
            current += 1
            anchor -= one_day

        longest = run = 1
        for prev, curr in zip(days, days[1:]):
            run = run + 1 if curr - prev == one_day else 1
            longest = max(longest, run)

        return current, longest

    # ------------------------------------------------------------------
    # Series
    # ------------------------------------------------------------------

    def daily_activity(
        self, events: list[ReviewEvent], today: date, days: int = DAILY_ACTIVITY_DAYS
    ) -> list[DailyActivity]:
        """Review counts for the last `days` local days, oldest first."""
        counts = Counter(self.local_date(e.reviewed_at) for e in events)
        window = [today - timedelta(days=i) for i in range(days - 1, -1, -1)]
        return [DailyActivity(day=d, reviews=counts.get(d, 0)) for d in window]

    def performance(self, events: list[ReviewEvent]) -> PerformanceSeries:
        """
        Success rate per ISO week, or per day when fewer than 3 weeks have data.
        """
        if not events:
            return PerformanceSeries(granularity="day")

        weekly = self._bucket(events, lambda d: d - timedelta(days=d.weekday()))
        if len(weekly) >= MIN_WEEKLY_BUCKETS:
            return PerformanceSeries(granularity="week", buckets=weekly)
        return PerformanceSeries(granularity="day", buckets=self._bucket(events, lambda d: d))

    def _bucket(self, events: list[ReviewEvent], key) -> list[PerformanceBucket]:
        totals: Counter[date] = Counter()
        successes: Counter[date] = Counter()
        for e in events:
            start = key(self.local_date(e.reviewed_at))
            totals[start] += 1
            if e.difficulty.is_success:
                successes[start] += 1
        return [
            PerformanceBucket(
                start=start,
                total=totals[start],
                successful=successes[start],
                success_rate=percentage(successes[start], totals[start]),
            )
            for start in sorted(totals)
        ]

    def difficulty_distribution(self, events: list[ReviewEvent]) -> dict[Difficulty, int]:
        counts = Counter(e.difficulty for e in events)
        return {d: counts.get(d, 0) for d in Difficulty}

    def deck_performance(
        self, events: list[ReviewEvent], cards: list[Card], decks: list[Deck]
    ) -> list[DeckPerformance]:
        """
        Success rate per deck, best first. Decks without events are omitted,
        as are events whose card no longer exists.
        """
        deck_of = {c.id: c.deck_id for c in cards}
        totals: Counter[str] = Counter()
        successes: Counter[str] = Counter()
        for e in events:
            deck_id = deck_of.get(e.card_id)
            if deck_id is None:
                continue
            totals[deck_id] += 1
            if e.difficulty.is_success:
                successes[deck_id] += 1

        ranking = [
            DeckPerformance(
                deck_id=deck.id,
                name=deck.name,
                total=totals[deck.id],
                success_rate=percentage(successes[deck.id], totals[deck.id]),
            )
            for deck in decks
            if totals[deck.id] > 0
        ]
        ranking.sort(key=lambda p: (-p.success_rate, p.name))
        return ranking

    # ------------------------------------------------------------------
    # Deck knowledge
    # ------------------------------------------------------------------

    def deck_knowledge(self, cards: list[Card], decks: list[Deck]) -> list[DeckKnowledge]:
        by_deck: dict[str, list[Card]] = defaultdict(list)
        for card in cards:
            by_deck[card.deck_id].append(card)

        overview = []
        for deck in decks:
            members = by_deck.get(deck.id, [])
            reviewed = [c for c in members if not c.is_new]
            score = sum(card_knowledge_score(c) for c in reviewed)
            level = int(round_half_up(score / len(members))) if members else 0
            overview.append(
                DeckKnowledge(
                    deck_id=deck.id,
                    name=deck.name,
                    total_cards=len(members),
                    reviewed_cards=len(reviewed),
                    knowledge_level=level,
                    mastery_level=mastery_label(level, len(reviewed)),
                )
            )
        return overview


def card_knowledge_score(card: Card) -> int:
    """Score a reviewed card 0-100 from its last rating and review count."""
    n = card.review_count
    if card.difficulty is Difficulty.AGAIN:
        return min(20, n * 5)
    if card.difficulty is Difficulty.HARD:
        return min(50, 25 + n * 8)
    if card.difficulty is Difficulty.GOOD:
        return min(85, 50 + n * 10)
    if card.difficulty is Difficulty.EASY:
        return min(100, 70 + n * 15)
    return min(30, n * 10)


def mastery_label(knowledge_level: int, reviewed_cards: int) -> str:
    if reviewed_cards == 0:
        return "Not Started"
    if knowledge_level < 30:
        return "Learning"
    if knowledge_level < 60:
        return "Developing"
    if knowledge_level < 85:
        return "Proficient"
    return "Mastered"
