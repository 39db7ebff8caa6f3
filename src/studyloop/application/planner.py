"""
Due-date projection for the planning calendar.

Pure grouping functions over card records; nothing here mutates state.
"""

from collections import Counter
from collections.abc import Iterable
from datetime import date, datetime, time, timedelta, tzinfo
from enum import Enum

from studyloop.domain.constants import DUE_SOON_DAYS
from studyloop.domain.models import Card


class DueUrgency(str, Enum):
    OVERDUE = "overdue"
    TODAY = "today"
    SOON = "soon"
    LATER = "later"


def project_due_counts(
    cards: Iterable[Card], window_start: datetime, window_end: datetime, tz: tzinfo
) -> dict[date, int]:
    """
    Count cards whose next_review lies in [window_start, window_end],
    keyed by the local calendar date of next_review, in date order.
    """
    counts = Counter(
        c.next_review.astimezone(tz).date()
        for c in cards
        if window_start <= c.next_review <= window_end
    )
    return dict(sorted(counts.items()))


def month_window(year: int, month: int, tz: tzinfo) -> tuple[datetime, datetime]:
    """
    First and last instant of a local calendar month.

    Month numbers outside 1-12 roll over into neighbouring years, so
    month_window(2024, 0, tz) is December 2023.
    """
    year += (month - 1) // 12
    month = (month - 1) % 12 + 1
    start = datetime.combine(date(year, month, 1), time.min, tzinfo=tz)
    if month == 12:
        next_start = date(year + 1, 1, 1)
    else:
        next_start = date(year, month + 1, 1)
    end = datetime.combine(next_start - timedelta(days=1), time.max, tzinfo=tz)
    return start, end


def cards_due_on(cards: Iterable[Card], day: date, tz: tzinfo) -> list[Card]:
    """Cards whose next_review falls on the given local day, earliest first."""
    due = [c for c in cards if c.next_review.astimezone(tz).date() == day]
    return sorted(due, key=lambda c: c.next_review)


def classify_due_day(day: date, today: date) -> DueUrgency:
    delta = (day - today).days
    if delta < 0:
        return DueUrgency.OVERDUE
    if delta == 0:
        return DueUrgency.TODAY
    if delta <= DUE_SOON_DAYS:
        return DueUrgency.SOON
    return DueUrgency.LATER
