"""Injectable clock and random sources."""

import random
from collections.abc import Callable
from datetime import datetime, timezone, tzinfo
from typing import Protocol

Clock = Callable[[], datetime]


class RandomSource(Protocol):
    def uniform(self, a: float, b: float) -> float: ...


_default_rng = random.Random()


def system_clock() -> datetime:
    return datetime.now(timezone.utc)


def fixed_clock(moment: datetime) -> Clock:
    """Return a clock frozen at moment (must be timezone-aware)."""
    if moment.tzinfo is None:
        raise ValueError("fixed_clock needs a timezone-aware datetime")
    return lambda: moment


def default_rng() -> RandomSource:
    return _default_rng


def local_timezone() -> tzinfo:
    """The host's local zone, used when no timezone is configured."""
    return datetime.now().astimezone().tzinfo or timezone.utc
