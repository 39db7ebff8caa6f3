"""Centralized constants for studyloop.

All magic numbers and tuning defaults live here so every layer
imports from a single source of truth.
"""

# ---------- Time ----------
SECONDS_PER_DAY = 86400

# ---------- Interval Calculator ----------
JITTER_MIN = 0.8
JITTER_MAX = 1.2

# ---------- Due-Set Selector ----------
DUE_BUFFER_SECONDS = 60

# ---------- Statistics ----------
MASTERY_MIN_REVIEWS = 3
MASTERY_MIN_SUCCESSES = 2
DAILY_ACTIVITY_DAYS = 7
MIN_WEEKLY_BUCKETS = 3

# ---------- Planning ----------
DUE_SOON_DAYS = 7

# ---------- Hosted store / HTTP ----------
REQUEST_TIMEOUT = 30.0
DECKS_TABLE = "flashcard_decks"
CARDS_TABLE = "flashcards"
EVENTS_TABLE = "review_history"
