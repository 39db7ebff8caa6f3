"""
Domain models for review statistics.

These are pure data structures with no I/O or external dependencies.
"""

from dataclasses import dataclass, field
from datetime import date
from typing import Literal

from studyloop.domain.models import Difficulty


@dataclass(frozen=True)
class DailyActivity:
    """Number of review events on one local calendar day."""

    day: date
    reviews: int


@dataclass(frozen=True)
class PerformanceBucket:
    """
    Success rate for one time bucket.

    Attributes:
        start: First local day of the bucket (ISO week start or the day itself).
        total: Events in the bucket.
        successful: Events rated Good or Easy.
        success_rate: Integer percentage, rounded half up.
    """

    start: date
    total: int
    successful: int
    success_rate: int


@dataclass(frozen=True)
class PerformanceSeries:
    granularity: Literal["week", "day"]
    buckets: list[PerformanceBucket] = field(default_factory=list)


@dataclass(frozen=True)
class DeckPerformance:
    deck_id: str
    name: str
    total: int
    success_rate: int


@dataclass(frozen=True)
class DeckKnowledge:
    """
    Knowledge overview for one deck.

    knowledge_level is the mean per-card score (0-100) over all member
    cards; mastery_level is its display label.
    """

    deck_id: str
    name: str
    total_cards: int
    reviewed_cards: int
    knowledge_level: int
    mastery_level: str


@dataclass
class StatisticsSnapshot:
    """
    Everything the analytics view needs, computed in one pass.

    All percentages are integers; all counts are non-negative.
    """

    total_cards: int
    cards_due: int
    total_reviews: int
    reviews_today: int
    success_rate: int
    mastered_cards: int
    learning_velocity: float
    avg_daily_reviews: int
    current_streak: int
    longest_streak: int

    daily_activity: list[DailyActivity] = field(default_factory=list)
    performance: PerformanceSeries = field(
        default_factory=lambda: PerformanceSeries(granularity="day")
    )
    difficulty_distribution: dict[Difficulty, int] = field(default_factory=dict)
    deck_performance: list[DeckPerformance] = field(default_factory=list)
    deck_knowledge: list[DeckKnowledge] = field(default_factory=list)

    # True when events were synthesized from legacy card state.
    backfilled: bool = False
