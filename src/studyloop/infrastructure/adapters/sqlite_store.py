"""
SQLite Store — Infrastructure adapter for a local database file.

Implements FlashcardStore with the standard library sqlite3 module. The
schema is created by init_schema(), the one-time setup step; until then
every call raises NotFound.
"""

import json
import logging
import sqlite3
from collections.abc import Iterator
from contextlib import contextmanager
from datetime import datetime, timezone
from pathlib import Path
from typing import Any

from studyloop.application.providers import Clock, system_clock
from studyloop.domain.errors import InvalidInput, NotFound, Transient
from studyloop.domain.interfaces import REVIEW_FIELDS, FlashcardStore
from studyloop.domain.models import Card, Deck, Difficulty, ReviewEvent, summarize_deck

from ._ids import new_id

logger = logging.getLogger(__name__)

SCHEMA = """
CREATE TABLE IF NOT EXISTS decks (
    id TEXT PRIMARY KEY,
    owner TEXT NOT NULL,
    name TEXT NOT NULL,
    description TEXT NOT NULL DEFAULT '',
    created_at TEXT NOT NULL
);

CREATE TABLE IF NOT EXISTS cards (
    id TEXT PRIMARY KEY,
    deck_id TEXT NOT NULL REFERENCES decks(id) ON DELETE CASCADE,
    owner TEXT NOT NULL,
    front TEXT NOT NULL,
    back TEXT NOT NULL,
    tags JSON NOT NULL DEFAULT '[]',
    next_review TEXT NOT NULL,
    last_reviewed TEXT,
    review_count INTEGER NOT NULL DEFAULT 0 CHECK(review_count >= 0),
    difficulty TEXT CHECK(difficulty IS NULL OR difficulty IN ('again','hard','good','easy')),
    created_at TEXT NOT NULL
);

CREATE TABLE IF NOT EXISTS review_events (
    id TEXT PRIMARY KEY,
    card_id TEXT NOT NULL REFERENCES cards(id) ON DELETE CASCADE,
    owner TEXT NOT NULL,
    difficulty TEXT NOT NULL CHECK(difficulty IN ('again','hard','good','easy')),
    reviewed_at TEXT NOT NULL,
    response_time_ms INTEGER
);

CREATE INDEX IF NOT EXISTS idx_cards_deck ON cards(deck_id);
CREATE INDEX IF NOT EXISTS idx_events_owner ON review_events(owner, reviewed_at);
"""

UPDATABLE_COLUMNS = set(REVIEW_FIELDS) | {"front", "back", "tags"}


def _ts(value: datetime | None) -> str | None:
    if value is None:
        return None
    return value.astimezone(timezone.utc).isoformat(timespec="microseconds")


def _parse_ts(value: str | None) -> datetime | None:
    if value is None:
        return None
    parsed = datetime.fromisoformat(value)
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed


def _to_column(name: str, value: Any) -> Any:
    if name in ("next_review", "last_reviewed"):
        return _ts(value)
    if name == "difficulty":
        return Difficulty.parse(value).value if value is not None else None
    if name == "tags":
        return json.dumps(list(value or []))
    return value


class SqliteStore(FlashcardStore):
    def __init__(self, db_path: Path | str, owner: str = "local", clock: Clock = system_clock):
        self.db_path = Path(db_path) if str(db_path) != ":memory:" else db_path
        self.owner = owner
        self._clock = clock
        self._conn: sqlite3.Connection | None = None

    # ------------------------------------------------------------------
    # Connection handling
    # ------------------------------------------------------------------

    def connect(self) -> sqlite3.Connection:
        if self._conn is None:
            if isinstance(self.db_path, Path):
                self.db_path.parent.mkdir(parents=True, exist_ok=True)
            try:
                conn = sqlite3.connect(str(self.db_path), timeout=5, check_same_thread=False)
            except sqlite3.Error as e:
                raise Transient(f"cannot open {self.db_path}: {e}") from e
            conn.row_factory = sqlite3.Row
            conn.execute("PRAGMA foreign_keys=ON")
            self._conn = conn
        return self._conn

    def init_schema(self) -> None:
        """Create the tables. Safe to call repeatedly."""
        conn = self.connect()
        conn.executescript(SCHEMA)
        conn.commit()
        logger.info(f"Initialized studyloop schema in {self.db_path}")

    def close(self) -> None:
        if self._conn is not None:
            self._conn.close()
            self._conn = None

    @contextmanager
    def _tx(self) -> Iterator[sqlite3.Connection]:
        """Run a unit of work, mapping sqlite errors onto the store taxonomy."""
        conn = self.connect()
        try:
            with conn:
                yield conn
        except sqlite3.OperationalError as e:
            if "no such table" in str(e):
                raise NotFound("table", f"{e} (run `studyloop store init`)") from e
            logger.error(f"SQLite call failed: {e}")
            raise Transient(str(e)) from e
        except sqlite3.IntegrityError as e:
            raise InvalidInput(str(e)) from e
        except sqlite3.Error as e:
            logger.error(f"SQLite call failed: {e}")
            raise Transient(str(e)) from e

    # ------------------------------------------------------------------
    # Row mapping
    # ------------------------------------------------------------------

    def _row_to_card(self, row: sqlite3.Row) -> Card:
        return Card(
            id=row["id"],
            deck_id=row["deck_id"],
            front=row["front"],
            back=row["back"],
            tags=json.loads(row["tags"] or "[]"),
            next_review=_parse_ts(row["next_review"]),
            last_reviewed=_parse_ts(row["last_reviewed"]),
            review_count=row["review_count"],
            difficulty=Difficulty(row["difficulty"]) if row["difficulty"] else None,
            created_at=_parse_ts(row["created_at"]),
        )

    def _row_to_deck(self, row: sqlite3.Row) -> Deck:
        return Deck(
            id=row["id"],
            owner=row["owner"],
            name=row["name"],
            description=row["description"],
            created_at=_parse_ts(row["created_at"]),
        )

    def _row_to_event(self, row: sqlite3.Row) -> ReviewEvent:
        return ReviewEvent(
            id=row["id"],
            card_id=row["card_id"],
            owner=row["owner"],
            difficulty=Difficulty(row["difficulty"]),
            reviewed_at=_parse_ts(row["reviewed_at"]),
            response_time_ms=row["response_time_ms"],
        )

    # ------------------------------------------------------------------
    # Decks
    # ------------------------------------------------------------------

    async def list_decks(self) -> list[Deck]:
        with self._tx() as conn:
            decks = conn.execute(
                "SELECT * FROM decks WHERE owner = ? ORDER BY created_at DESC", (self.owner,)
            ).fetchall()
            cards = conn.execute("SELECT * FROM cards WHERE owner = ?", (self.owner,)).fetchall()
        all_cards = [self._row_to_card(r) for r in cards]
        return [summarize_deck(self._row_to_deck(r), all_cards) for r in decks]

    async def get_deck(self, deck_id: str) -> Deck:
        with self._tx() as conn:
            row = conn.execute(
                "SELECT * FROM decks WHERE id = ? AND owner = ?", (deck_id, self.owner)
            ).fetchone()
            if row is None:
                raise NotFound("deck", deck_id)
            cards = conn.execute("SELECT * FROM cards WHERE deck_id = ?", (deck_id,)).fetchall()
        return summarize_deck(self._row_to_deck(row), [self._row_to_card(r) for r in cards])

    async def create_deck(self, name: str, description: str = "") -> Deck:
        if not name.strip():
            raise InvalidInput("deck name must not be empty")
        deck = Deck(
            id=new_id("deck"),
            owner=self.owner,
            name=name.strip(),
            description=description,
            created_at=self._clock(),
        )
        with self._tx() as conn:
            conn.execute(
                "INSERT INTO decks (id, owner, name, description, created_at) "
                "VALUES (?, ?, ?, ?, ?)",
                (deck.id, deck.owner, deck.name, deck.description, _ts(deck.created_at)),
            )
        return deck

    async def delete_deck(self, deck_id: str) -> None:
        with self._tx() as conn:
            cur = conn.execute(
                "DELETE FROM decks WHERE id = ? AND owner = ?", (deck_id, self.owner)
            )
            if cur.rowcount == 0:
                raise NotFound("deck", deck_id)

    # ------------------------------------------------------------------
    # Cards
    # ------------------------------------------------------------------

    async def list_cards(self, deck_id: str) -> list[Card]:
        await self.get_deck(deck_id)
        with self._tx() as conn:
            rows = conn.execute(
                "SELECT * FROM cards WHERE deck_id = ? ORDER BY created_at ASC", (deck_id,)
            ).fetchall()
        return [self._row_to_card(r) for r in rows]

    async def list_all_cards(self) -> list[Card]:
        with self._tx() as conn:
            rows = conn.execute(
                "SELECT * FROM cards WHERE owner = ? ORDER BY created_at ASC", (self.owner,)
            ).fetchall()
        return [self._row_to_card(r) for r in rows]

    async def get_card(self, card_id: str) -> Card:
        with self._tx() as conn:
            row = conn.execute(
                "SELECT * FROM cards WHERE id = ? AND owner = ?", (card_id, self.owner)
            ).fetchone()
        if row is None:
            raise NotFound("card", card_id)
        return self._row_to_card(row)

    async def create_card(
        self, deck_id: str, front: str, back: str, tags: list[str] | None = None
    ) -> Card:
        if not front.strip() or not back.strip():
            raise InvalidInput("card front and back must not be empty")
        await self.get_deck(deck_id)
        now = self._clock()
        card = Card(
            id=new_id("card"),
            deck_id=deck_id,
            front=front,
            back=back,
            tags=list(tags or []),
            next_review=now,
            created_at=now,
        )
        with self._tx() as conn:
            conn.execute(
                "INSERT INTO cards (id, deck_id, owner, front, back, tags, next_review, "
                "last_reviewed, review_count, difficulty, created_at) "
                "VALUES (?, ?, ?, ?, ?, ?, ?, NULL, 0, NULL, ?)",
                (
                    card.id,
                    deck_id,
                    self.owner,
                    front,
                    back,
                    json.dumps(card.tags),
                    _ts(card.next_review),
                    _ts(card.created_at),
                ),
            )
        return card

    def _update_card(self, conn: sqlite3.Connection, card_id: str, fields: dict[str, Any]) -> None:
        unknown = set(fields) - UPDATABLE_COLUMNS
        if unknown:
            raise InvalidInput(f"cannot update card fields: {sorted(unknown)}")
        if not fields:
            return
        assignments = ", ".join(f"{name} = ?" for name in fields)
        values = [_to_column(name, value) for name, value in fields.items()]
        cur = conn.execute(
            f"UPDATE cards SET {assignments} WHERE id = ? AND owner = ?",
            (*values, card_id, self.owner),
        )
        if cur.rowcount == 0:
            raise NotFound("card", card_id)

    async def update_card(self, card_id: str, fields: dict[str, Any]) -> Card:
        with self._tx() as conn:
            self._update_card(conn, card_id, fields)
        return await self.get_card(card_id)

    # ------------------------------------------------------------------
    # Review events
    # ------------------------------------------------------------------

    def _insert_event(
        self,
        conn: sqlite3.Connection,
        card_id: str,
        difficulty: Difficulty,
        timestamp: datetime,
        response_time_ms: int | None,
    ) -> ReviewEvent:
        event = ReviewEvent(
            id=new_id("rev"),
            card_id=card_id,
            owner=self.owner,
            difficulty=difficulty,
            reviewed_at=timestamp,
            response_time_ms=response_time_ms,
        )
        conn.execute(
            "INSERT INTO review_events (id, card_id, owner, difficulty, reviewed_at, "
            "response_time_ms) VALUES (?, ?, ?, ?, ?, ?)",
            (
                event.id,
                card_id,
                self.owner,
                difficulty.value,
                _ts(timestamp),
                response_time_ms,
            ),
        )
        return event

    async def append_review_event(
        self,
        card_id: str,
        difficulty: Difficulty,
        timestamp: datetime,
        response_time_ms: int | None = None,
    ) -> ReviewEvent:
        with self._tx() as conn:
            return self._insert_event(conn, card_id, difficulty, timestamp, response_time_ms)

    async def list_review_events(self) -> list[ReviewEvent]:
        with self._tx() as conn:
            rows = conn.execute(
                "SELECT * FROM review_events WHERE owner = ? ORDER BY reviewed_at ASC",
                (self.owner,),
            ).fetchall()
        return [self._row_to_event(r) for r in rows]

    async def record_review(
        self, card: Card, fields: dict[str, Any], difficulty: Difficulty, timestamp: datetime
    ) -> tuple[Card, ReviewEvent]:
        """Update the card and append its event in a single transaction."""
        with self._tx() as conn:
            self._update_card(conn, card.id, fields)
            event = self._insert_event(conn, card.id, difficulty, timestamp, None)
        return await self.get_card(card.id), event

    async def aclose(self) -> None:
        self.close()
