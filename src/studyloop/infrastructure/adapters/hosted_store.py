"""
Hosted Store — adapter for a PostgREST-style backend-as-a-service.

Talks to the `flashcard_decks`, `flashcards` and `review_history` tables
over HTTP, every query filtered by user_id. Errors are mapped onto the
store taxonomy: missing tables/rows become NotFound, network trouble and
5xx responses become Transient. No retries happen here.
"""

import logging
from datetime import datetime, timezone
from typing import Any

import httpx

from studyloop.domain.constants import (
    CARDS_TABLE,
    DECKS_TABLE,
    EVENTS_TABLE,
    REQUEST_TIMEOUT,
)
from studyloop.domain.errors import InvalidInput, NotFound, StoreError, Transient
from studyloop.domain.interfaces import REVIEW_FIELDS, FlashcardStore
from studyloop.domain.models import (
    Card,
    Deck,
    Difficulty,
    ReviewEvent,
    parse_tags,
    summarize_deck,
)

# PostgREST / Postgres codes meaning "the thing you asked for is not there"
NOT_FOUND_CODES = {"PGRST116", "PGRST205", "42P01"}

UPDATABLE_FIELDS = set(REVIEW_FIELDS) | {"front", "back", "tags"}


def _parse_ts(value: str | None) -> datetime | None:
    if not value:
        return None
    parsed = datetime.fromisoformat(value.replace("Z", "+00:00"))
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed


def _ts(value: datetime | None) -> str | None:
    return value.astimezone(timezone.utc).isoformat() if value else None


class HostedStore(FlashcardStore):
    """Adapter for a hosted backend exposing a PostgREST API under /rest/v1."""

    def __init__(
        self,
        url: str,
        owner: str,
        api_key: str | None = None,
        timeout: float = REQUEST_TIMEOUT,
        client: httpx.AsyncClient | None = None,
    ):
        self.logger = logging.getLogger(__name__)
        self.url = url.rstrip("/")
        self.owner = owner
        self.api_key = api_key
        self.timeout = timeout
        self._client = client

    def _headers(self) -> dict[str, str]:
        headers = {"Prefer": "return=representation"}
        if self.api_key:
            headers["apikey"] = self.api_key
            headers["Authorization"] = f"Bearer {self.api_key}"
        return headers

    async def aclose(self) -> None:
        if self._client is not None:
            await self._client.aclose()
            self._client = None

    async def _request(
        self,
        method: str,
        table: str,
        params: dict[str, str] | None = None,
        json: Any = None,
    ) -> Any:
        if self._client is None:
            self._client = httpx.AsyncClient(timeout=self.timeout)

        endpoint = f"{self.url}/rest/v1/{table}"
        try:
            resp = await self._client.request(
                method, endpoint, params=params, json=json, headers=self._headers()
            )
        except httpx.TimeoutException as e:
            self.logger.error(f"Hosted store call timed out: {method} {table}")
            raise Transient(f"timeout talking to {self.url}") from e
        except httpx.TransportError as e:
            self.logger.error(f"Hosted store call failed: {e}")
            raise Transient(str(e)) from e

        if resp.is_success:
            return resp.json() if resp.content else None

        code, message = self._error_details(resp)
        if resp.status_code == 404 or code in NOT_FOUND_CODES:
            raise NotFound(table, message)
        if resp.status_code >= 500 or resp.status_code == 429:
            self.logger.error(f"Hosted store unavailable ({resp.status_code}): {message}")
            raise Transient(f"{resp.status_code}: {message}")
        if resp.status_code in (400, 409, 422):
            raise InvalidInput(message)
        raise StoreError(f"{resp.status_code}: {message}")

    @staticmethod
    def _error_details(resp: httpx.Response) -> tuple[str | None, str]:
        try:
            body = resp.json()
        except ValueError:
            return None, resp.text or resp.reason_phrase
        if not isinstance(body, dict):
            return None, str(body)
        return body.get("code"), body.get("message") or str(body)

    # ------------------------------------------------------------------
    # Row mapping
    # ------------------------------------------------------------------

    def _to_deck(self, row: dict) -> Deck:
        return Deck(
            id=str(row["id"]),
            owner=row.get("user_id", self.owner),
            name=row["name"],
            description=row.get("description") or "",
            created_at=_parse_ts(row.get("created_at")),
        )

    def _to_card(self, row: dict) -> Card:
        last_reviewed = _parse_ts(row.get("last_reviewed"))
        review_count = max(0, row.get("review_count") or 0)
        if last_reviewed is None and review_count:
            self.logger.warning(
                f"Card {row['id']} has review_count without last_reviewed; treating as new"
            )
            review_count = 0
        created_at = _parse_ts(row.get("created_at"))
        next_review = _parse_ts(row.get("next_review")) or created_at
        if next_review is None:
            self.logger.warning(f"Card {row['id']} has no next_review or created_at; due now")
            next_review = datetime.now(timezone.utc)
        return Card(
            id=str(row["id"]),
            deck_id=str(row["deck_id"]),
            front=row["front"],
            back=row["back"],
            tags=parse_tags(row.get("tags")),
            next_review=next_review,
            last_reviewed=last_reviewed,
            review_count=review_count,
            difficulty=self._card_difficulty(row),
            created_at=created_at or next_review,
        )

    def _card_difficulty(self, row: dict) -> Difficulty | None:
        if not row.get("difficulty"):
            return None
        try:
            return Difficulty.parse(row["difficulty"])
        except InvalidInput:
            self.logger.warning(
                f"Card {row['id']} has unknown difficulty {row['difficulty']!r}; ignoring it"
            )
            return None

    def _to_event(self, row: dict) -> ReviewEvent:
        reviewed_at = _parse_ts(row.get("review_date"))
        if reviewed_at is None:
            raise InvalidInput(f"review event {row.get('id')} has no review_date")
        return ReviewEvent(
            id=str(row["id"]),
            card_id=str(row["card_id"]),
            owner=row.get("user_id", self.owner),
            difficulty=Difficulty.parse(row.get("difficulty")),
            reviewed_at=reviewed_at,
            response_time_ms=row.get("response_time_ms"),
        )

    def _to_events(self, rows: list[dict]) -> list[ReviewEvent]:
        """Map history rows, skipping malformed legacy rows instead of failing."""
        events = []
        for row in rows:
            try:
                events.append(self._to_event(row))
            except (InvalidInput, KeyError, ValueError, AttributeError) as e:
                self.logger.warning(f"Skipping malformed review history row {row.get('id')}: {e}")
        return events

    def _owned(self, **filters: str) -> dict[str, str]:
        return {"user_id": f"eq.{self.owner}", **filters}

    @staticmethod
    def _single(rows: Any, what: str, key: str) -> dict:
        if not rows:
            raise NotFound(what, key)
        return rows[0]

    # ------------------------------------------------------------------
    # Decks
    # ------------------------------------------------------------------

    async def list_decks(self) -> list[Deck]:
        rows = await self._request(
            "GET", DECKS_TABLE, params=self._owned(select="*", order="created_at.desc")
        )
        cards = await self.list_all_cards()
        return [summarize_deck(self._to_deck(r), cards) for r in rows or []]

    async def get_deck(self, deck_id: str) -> Deck:
        rows = await self._request(
            "GET", DECKS_TABLE, params=self._owned(select="*", id=f"eq.{deck_id}")
        )
        deck = self._to_deck(self._single(rows, "deck", deck_id))
        return summarize_deck(deck, await self.list_cards(deck_id))

    async def create_deck(self, name: str, description: str = "") -> Deck:
        if not name.strip():
            raise InvalidInput("deck name must not be empty")
        rows = await self._request(
            "POST",
            DECKS_TABLE,
            json={"user_id": self.owner, "name": name.strip(), "description": description},
        )
        return self._to_deck(self._single(rows, "deck", name))

    async def delete_deck(self, deck_id: str) -> None:
        rows = await self._request(
            "GET", DECKS_TABLE, params=self._owned(select="id", id=f"eq.{deck_id}")
        )
        self._single(rows, "deck", deck_id)

        cards = await self.list_cards(deck_id)
        if cards:
            ids = ",".join(c.id for c in cards)
            await self._request("DELETE", EVENTS_TABLE, params=self._owned(card_id=f"in.({ids})"))
            await self._request("DELETE", CARDS_TABLE, params=self._owned(deck_id=f"eq.{deck_id}"))
        await self._request("DELETE", DECKS_TABLE, params=self._owned(id=f"eq.{deck_id}"))

    # ------------------------------------------------------------------
    # Cards
    # ------------------------------------------------------------------

    async def list_cards(self, deck_id: str) -> list[Card]:
        rows = await self._request(
            "GET",
            CARDS_TABLE,
            params=self._owned(select="*", deck_id=f"eq.{deck_id}", order="created_at.asc"),
        )
        return [self._to_card(r) for r in rows or []]

    async def list_all_cards(self) -> list[Card]:
        rows = await self._request(
            "GET", CARDS_TABLE, params=self._owned(select="*", order="created_at.asc")
        )
        return [self._to_card(r) for r in rows or []]

    async def get_card(self, card_id: str) -> Card:
        rows = await self._request(
            "GET", CARDS_TABLE, params=self._owned(select="*", id=f"eq.{card_id}")
        )
        return self._to_card(self._single(rows, "card", card_id))

    async def create_card(
        self, deck_id: str, front: str, back: str, tags: list[str] | None = None
    ) -> Card:
        if not front.strip() or not back.strip():
            raise InvalidInput("card front and back must not be empty")
        now = datetime.now(timezone.utc)
        rows = await self._request(
            "POST",
            CARDS_TABLE,
            json={
                "deck_id": deck_id,
                "user_id": self.owner,
                "front": front,
                "back": back,
                "tags": ", ".join(tags or []),
                "next_review": _ts(now),
                "last_reviewed": None,
            },
        )
        return self._to_card(self._single(rows, "card", front))

    async def update_card(self, card_id: str, fields: dict[str, Any]) -> Card:
        unknown = set(fields) - UPDATABLE_FIELDS
        if unknown:
            raise InvalidInput(f"cannot update card fields: {sorted(unknown)}")
        payload = {}
        for name, value in fields.items():
            if isinstance(value, datetime):
                value = _ts(value)
            elif isinstance(value, Difficulty):
                value = value.value
            elif name == "tags":
                value = ", ".join(value or [])
            payload[name] = value
        rows = await self._request(
            "PATCH", CARDS_TABLE, params=self._owned(id=f"eq.{card_id}"), json=payload
        )
        return self._to_card(self._single(rows, "card", card_id))

    # ------------------------------------------------------------------
    # Review events
    # ------------------------------------------------------------------

    async def append_review_event(
        self,
        card_id: str,
        difficulty: Difficulty,
        timestamp: datetime,
        response_time_ms: int | None = None,
    ) -> ReviewEvent:
        rows = await self._request(
            "POST",
            EVENTS_TABLE,
            json={
                "card_id": card_id,
                "user_id": self.owner,
                "difficulty": difficulty.value,
                "review_date": _ts(timestamp),
                "response_time_ms": response_time_ms,
            },
        )
        return self._to_event(self._single(rows, "review event", card_id))

    async def list_review_events(self) -> list[ReviewEvent]:
        rows = await self._request(
            "GET", EVENTS_TABLE, params=self._owned(select="*", order="review_date.asc")
        )
        return self._to_events(rows or [])
