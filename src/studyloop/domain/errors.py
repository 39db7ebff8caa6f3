"""
Error taxonomy shared by the scheduler, the statistics engine and the stores.
"""


class StudyLoopError(Exception):
    """Base exception for all studyloop errors."""


class StoreError(StudyLoopError):
    """Raised by store adapters when an operation cannot be completed."""


class NotFound(StoreError):
    """
    A backing collection or row is missing.

    Non-fatal: callers offer the one-time setup flow instead of crashing.
    """

    def __init__(self, what: str, detail: str | None = None):
        self.what = what
        message = f"{what} not found"
        if detail:
            message = f"{message}: {detail}"
        super().__init__(message)


class Transient(StoreError):
    """Network or availability failure. The operation was abandoned."""


class InvalidInput(StudyLoopError):
    """A request was rejected before any mutation took place."""


class NoCardsAvailable(InvalidInput):
    """The due-set for a deck is empty, so no review session can start."""

    def __init__(self, deck_id: str):
        self.deck_id = deck_id
        super().__init__(f"no cards available for review in deck {deck_id}")
