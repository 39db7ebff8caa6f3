"""
Interval calculator: maps a rating and prior exposure to the next review date.

Pure computation module with no I/O. Randomness comes from an injected
source so callers (and tests) control the jitter.
"""

import math
from datetime import datetime, timedelta

from studyloop.domain.constants import JITTER_MAX, JITTER_MIN, SECONDS_PER_DAY
from studyloop.domain.models import Difficulty

from .providers import RandomSource, default_rng


def base_interval(rating: Difficulty, review_count: int) -> int:
    """
    Days until the next review, before jitter.

    Non-decreasing in rating strength and in review_count. The first two
    reviews use fixed values so a card never comes back the same day.
    """
    n = max(0, review_count)

    if rating is Difficulty.AGAIN:
        return max(1, math.floor(n * 0.5))
    if rating is Difficulty.HARD:
        return 2 if n == 0 else max(2, math.floor(n * 1.5))
    if rating is Difficulty.GOOD:
        if n == 0:
            return 4
        if n == 1:
            return 7
        return math.floor(n * 3.5)
    if n == 0:
        return 7
    if n == 1:
        return 14
    # never shorter than the second-review interval
    return max(14, math.floor(n * 5))


def next_interval(
    rating: Difficulty, review_count: int, rng: RandomSource | None = None
) -> int:
    """
    Days until the next review, jittered by a factor in [0.8, 1.2].

    The jitter keeps cards rated together from landing on the same future
    date. The result is always an integer >= 1.
    """
    rng = rng or default_rng()
    factor = rng.uniform(JITTER_MIN, JITTER_MAX)
    return max(1, math.floor(base_interval(rating, review_count) * factor))


def next_review_at(
    rating: Difficulty,
    review_count: int,
    now: datetime,
    rng: RandomSource | None = None,
) -> datetime:
    days = next_interval(rating, review_count, rng)
    return now + timedelta(seconds=days * SECONDS_PER_DAY)
