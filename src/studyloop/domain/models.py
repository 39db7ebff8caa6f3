"""
Domain models for decks, cards and review events.

These are pure data structures with no I/O or external dependencies.
"""

from dataclasses import dataclass, field, replace
from datetime import datetime
from enum import Enum

from .errors import InvalidInput


class Difficulty(str, Enum):
    """Rating given to a card, ordered by implied retention strength."""

    AGAIN = "again"
    HARD = "hard"
    GOOD = "good"
    EASY = "easy"

    @property
    def strength(self) -> int:
        return _STRENGTH[self]

    @property
    def is_success(self) -> bool:
        return self in (Difficulty.GOOD, Difficulty.EASY)

    @classmethod
    def parse(cls, value: "str | Difficulty") -> "Difficulty":
        """Accept a Difficulty, its value, or its 1-4 button number."""
        if isinstance(value, Difficulty):
            return value
        text = str(value).strip().lower()
        if text.isdigit() and 1 <= int(text) <= 4:
            return list(cls)[int(text) - 1]
        try:
            return cls(text)
        except ValueError:
            raise InvalidInput(f"unknown difficulty rating: {value!r}") from None

    # str already defines every comparison, so each one is overridden
    def __lt__(self, other: object) -> bool:
        if not isinstance(other, Difficulty):
            return NotImplemented
        return self.strength < other.strength

    def __le__(self, other: object) -> bool:
        if not isinstance(other, Difficulty):
            return NotImplemented
        return self.strength <= other.strength

    def __gt__(self, other: object) -> bool:
        if not isinstance(other, Difficulty):
            return NotImplemented
        return self.strength > other.strength

    def __ge__(self, other: object) -> bool:
        if not isinstance(other, Difficulty):
            return NotImplemented
        return self.strength >= other.strength


_STRENGTH = {
    Difficulty.AGAIN: 1,
    Difficulty.HARD: 2,
    Difficulty.GOOD: 3,
    Difficulty.EASY: 4,
}


@dataclass(frozen=True)
class Card:
    """
    A single flashcard.

    Attributes:
        next_review: When the card becomes due. New cards are due at creation.
        last_reviewed: Time of the last rating, None for a never-reviewed card.
        review_count: Number of completed ratings.
        difficulty: Last rating given, None for a never-reviewed card.
    """

    id: str
    deck_id: str
    front: str
    back: str
    next_review: datetime
    created_at: datetime
    tags: list[str] = field(default_factory=list)
    last_reviewed: datetime | None = None
    review_count: int = 0
    difficulty: Difficulty | None = None

    def __post_init__(self):
        if self.review_count < 0:
            raise InvalidInput(f"card {self.id}: review_count must be >= 0")
        if self.last_reviewed is None and self.review_count != 0:
            raise InvalidInput(
                f"card {self.id}: never-reviewed card must have review_count == 0"
            )

    @property
    def is_new(self) -> bool:
        return self.last_reviewed is None


@dataclass(frozen=True)
class Deck:
    """
    A named collection of cards.

    card_count and last_reviewed are derived from the member cards; see
    summarize_deck.
    """

    id: str
    owner: str
    name: str
    description: str = ""
    created_at: datetime | None = None
    card_count: int = 0
    last_reviewed: datetime | None = None


@dataclass(frozen=True)
class ReviewEvent:
    """
    One append-only rating record.

    response_time_ms is part of the record shape but nothing fills it yet.
    """

    id: str
    card_id: str
    owner: str
    difficulty: Difficulty
    reviewed_at: datetime
    response_time_ms: int | None = None


def summarize_deck(deck: Deck, cards: list[Card]) -> Deck:
    """Return a copy of deck with card_count and last_reviewed derived from cards."""
    members = [c for c in cards if c.deck_id == deck.id]
    reviewed = [c.last_reviewed for c in members if c.last_reviewed is not None]
    return replace(
        deck,
        card_count=len(members),
        last_reviewed=max(reviewed) if reviewed else None,
    )


def parse_tags(raw: str | list[str] | None) -> list[str]:
    """Normalise a comma-separated string or list of tags."""
    if raw is None:
        return []
    items = raw.split(",") if isinstance(raw, str) else raw
    return [t.strip() for t in items if t and t.strip()]
