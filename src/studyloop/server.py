import logging
import time
from contextlib import asynccontextmanager
from datetime import date, datetime

from fastapi import Depends, FastAPI, HTTPException
from pydantic import BaseModel

from studyloop.application.config import resolve_config
from studyloop.application.factory import get_store
from studyloop.application.review_session import ReviewSession
from studyloop.application.study_service import StudyService
from studyloop.consts import VERSION
from studyloop.domain.errors import (
    InvalidInput,
    NoCardsAvailable,
    NotFound,
    StudyLoopError,
    Transient,
)
from studyloop.domain.interfaces import FlashcardStore
from studyloop.domain.models import Card, parse_tags

# Setup logging
logging.basicConfig(level=logging.INFO)
logger = logging.getLogger("studyloop.server")

_store: FlashcardStore | None = None

# Process-local; at most one active session per owner
_sessions: dict[str, ReviewSession] = {}


def get_app_store() -> FlashcardStore:
    """Store shared by all requests, built from the resolved configuration."""
    global _store
    if _store is None:
        _store = get_store(resolve_config())
    return _store


def get_study_service(store: FlashcardStore = Depends(get_app_store)) -> StudyService:
    return StudyService(store, tz=resolve_config().tzinfo())


@asynccontextmanager
async def lifespan(app: FastAPI):
    # Startup
    logger.info(f"studyloop server v{VERSION} starting up...")
    yield
    # Shutdown
    logger.info("studyloop server shutting down...")
    _sessions.clear()
    if _store is not None:
        await _store.aclose()


app = FastAPI(
    title="studyloop server",
    description="HTTP API for flashcard reviews and study statistics.",
    version=VERSION,
    lifespan=lifespan,
)


def _http_error(e: StudyLoopError) -> HTTPException:
    if isinstance(e, NoCardsAvailable):
        return HTTPException(status_code=409, detail=str(e))
    if isinstance(e, NotFound):
        return HTTPException(status_code=404, detail=str(e))
    if isinstance(e, Transient):
        logger.error(f"Store unavailable: {e}")
        return HTTPException(status_code=503, detail=str(e))
    if isinstance(e, InvalidInput):
        return HTTPException(status_code=400, detail=str(e))
    logger.error(f"Store error: {e}", exc_info=True)
    return HTTPException(status_code=500, detail=str(e))


class HealthResponse(BaseModel):
    status: str
    version: str
    uptime_seconds: float


start_time = time.time()


@app.get("/health", response_model=HealthResponse)
async def health_check():
    """
    Simple health check to verify server is reachable.
    """
    return HealthResponse(status="ok", version=VERSION, uptime_seconds=time.time() - start_time)


@app.get("/version")
async def get_version():
    return {"version": VERSION}


# ---------------------------------------------------------------------------
# Decks & cards
# ---------------------------------------------------------------------------


class DeckRequest(BaseModel):
    name: str
    description: str = ""


class CardRequest(BaseModel):
    front: str
    back: str
    tags: list[str] | str | None = None


@app.get("/decks")
async def list_decks(store: FlashcardStore = Depends(get_app_store)):
    try:
        return await store.list_decks()
    except StudyLoopError as e:
        raise _http_error(e) from e


@app.post("/decks", status_code=201)
async def create_deck(req: DeckRequest, store: FlashcardStore = Depends(get_app_store)):
    try:
        return await store.create_deck(req.name, req.description)
    except StudyLoopError as e:
        raise _http_error(e) from e


@app.get("/decks/{deck_id}")
async def get_deck(deck_id: str, store: FlashcardStore = Depends(get_app_store)):
    try:
        return await store.get_deck(deck_id)
    except StudyLoopError as e:
        raise _http_error(e) from e


@app.delete("/decks/{deck_id}")
async def delete_deck(deck_id: str, store: FlashcardStore = Depends(get_app_store)):
    try:
        await store.delete_deck(deck_id)
    except StudyLoopError as e:
        raise _http_error(e) from e
    return {"ok": True}


@app.get("/decks/{deck_id}/cards")
async def list_cards(deck_id: str, store: FlashcardStore = Depends(get_app_store)):
    try:
        await store.get_deck(deck_id)
        return await store.list_cards(deck_id)
    except StudyLoopError as e:
        raise _http_error(e) from e


@app.post("/decks/{deck_id}/cards", status_code=201)
async def create_card(
    deck_id: str, req: CardRequest, store: FlashcardStore = Depends(get_app_store)
):
    try:
        card = await store.create_card(deck_id, req.front, req.back, parse_tags(req.tags))
        return card
    except StudyLoopError as e:
        raise _http_error(e) from e


# ---------------------------------------------------------------------------
# Review sessions
# ---------------------------------------------------------------------------


class StartReviewRequest(BaseModel):
    deck_id: str


class RateRequest(BaseModel):
    difficulty: str


def _session_view(session: ReviewSession, card: Card | None = None) -> dict:
    card = card if card is not None else session.current_card
    view = {
        "session_id": session.id,
        "deck_id": session.deck_id,
        "state": session.state.value,
        "position": session.position,
        "total": session.total,
        "card": None,
    }
    if card is not None:
        view["card"] = {"id": card.id, "front": card.front, "tags": card.tags}
        if session.back_visible:
            view["card"]["back"] = card.back
    return view


def _get_session(session_id: str, store: FlashcardStore) -> ReviewSession:
    session = _sessions.get(store.owner)
    if session is None or session.id != session_id:
        raise HTTPException(status_code=404, detail=f"no active review session {session_id}")
    return session


@app.post("/reviews", status_code=201)
async def start_review(req: StartReviewRequest, service: StudyService = Depends(get_study_service)):
    """
    Start a review session on a deck's due cards.
    Replaces any session the same owner still had open.
    """
    try:
        session = await service.start_review(req.deck_id)
    except StudyLoopError as e:
        raise _http_error(e) from e

    previous = _sessions.get(service.store.owner)
    if previous is not None:
        previous.abandon()
    _sessions[service.store.owner] = session
    return _session_view(session)


@app.post("/reviews/{session_id}/reveal")
async def reveal_card(session_id: str, service: StudyService = Depends(get_study_service)):
    session = _get_session(session_id, service.store)
    try:
        service.reveal(session)
    except StudyLoopError as e:
        raise _http_error(e) from e
    return _session_view(session)


@app.post("/reviews/{session_id}/rate")
async def rate_card(
    session_id: str, req: RateRequest, service: StudyService = Depends(get_study_service)
):
    session = _get_session(session_id, service.store)
    try:
        await service.rate(session, req.difficulty)
    except StudyLoopError as e:
        raise _http_error(e) from e

    view = _session_view(session)
    view["last_review"] = session.events[-1]
    if session.current_card is None:
        _sessions.pop(service.store.owner, None)
    return view


@app.delete("/reviews/{session_id}")
async def abandon_review(session_id: str, store: FlashcardStore = Depends(get_app_store)):
    session = _get_session(session_id, store)
    session.abandon()
    _sessions.pop(store.owner, None)
    return {"ok": True, "rated": len(session.events)}


# ---------------------------------------------------------------------------
# Statistics & planning
# ---------------------------------------------------------------------------


@app.get("/stats")
async def get_stats(service: StudyService = Depends(get_study_service)):
    try:
        return await service.compute_statistics()
    except StudyLoopError as e:
        raise _http_error(e) from e


@app.get("/plan")
async def get_plan(
    start: datetime,
    end: datetime,
    service: StudyService = Depends(get_study_service),
):
    """Number of cards falling due on each local day of [start, end]."""
    if start.tzinfo is None or end.tzinfo is None:
        raise HTTPException(status_code=400, detail="start and end must carry a UTC offset")
    if end < start:
        raise HTTPException(status_code=400, detail="end must not be before start")
    try:
        counts = await service.project_due_counts(start, end)
    except StudyLoopError as e:
        raise _http_error(e) from e
    return {day.isoformat(): n for day, n in counts.items()}


@app.get("/plan/{day}")
async def get_plan_day(day: date, service: StudyService = Depends(get_study_service)):
    """Cards falling due on one local calendar day."""
    try:
        return await service.cards_due_on(day)
    except StudyLoopError as e:
        raise _http_error(e) from e
