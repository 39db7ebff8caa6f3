from datetime import datetime, timedelta, timezone

import pytest

from studyloop.application.providers import fixed_clock
from studyloop.domain.models import Card, Difficulty, ReviewEvent
from studyloop.infrastructure.adapters.memory_store import InMemoryStore

NOW = datetime(2024, 3, 13, 12, 0, tzinfo=timezone.utc)  # a Wednesday


class StubRandom:
    """Deterministic jitter source: always returns the same factor."""

    def __init__(self, factor: float = 1.0):
        self.factor = factor
        self.calls: list[tuple[float, float]] = []

    def uniform(self, a: float, b: float) -> float:
        self.calls.append((a, b))
        return self.factor


@pytest.fixture
def now():
    return NOW


@pytest.fixture
def clock():
    return fixed_clock(NOW)


@pytest.fixture
def rng():
    return StubRandom()


@pytest.fixture
def store(clock):
    return InMemoryStore(owner="alice", clock=clock)


def make_card(
    card_id: str = "c1",
    deck_id: str = "d1",
    next_review: datetime = NOW,
    created_at: datetime | None = None,
    last_reviewed: datetime | None = None,
    review_count: int = 0,
    difficulty: Difficulty | None = None,
) -> Card:
    return Card(
        id=card_id,
        deck_id=deck_id,
        front=f"front {card_id}",
        back=f"back {card_id}",
        next_review=next_review,
        created_at=created_at or NOW - timedelta(days=30),
        last_reviewed=last_reviewed,
        review_count=review_count,
        difficulty=difficulty,
    )


def make_event(
    card_id: str, difficulty: Difficulty, reviewed_at: datetime, event_id: str | None = None
) -> ReviewEvent:
    return ReviewEvent(
        id=event_id or f"rev_{card_id}_{reviewed_at.isoformat()}",
        card_id=card_id,
        owner="alice",
        difficulty=difficulty,
        reviewed_at=reviewed_at,
    )


@pytest.fixture
def mock_home(tmp_path, monkeypatch):
    """Mocks Path.home() to point to a temp dir."""
    home = tmp_path / "home"
    home.mkdir()

    # Mocking HOME to a temp directory to isolate config/logs
    monkeypatch.setenv("HOME", str(home))
    return home


@pytest.fixture
def card_factory():
    return make_card


@pytest.fixture
def event_factory():
    return make_event
