# Domain Stats Package
from .models import (
    DailyActivity,
    DeckKnowledge,
    DeckPerformance,
    PerformanceBucket,
    PerformanceSeries,
    StatisticsSnapshot,
)

__all__ = [
    "DailyActivity",
    "DeckKnowledge",
    "DeckPerformance",
    "PerformanceBucket",
    "PerformanceSeries",
    "StatisticsSnapshot",
]
