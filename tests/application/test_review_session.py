import asyncio
from datetime import timedelta

import pytest
import pytest_asyncio

from studyloop.application.review_session import ReviewSession, SessionState
from studyloop.domain.errors import InvalidInput, NoCardsAvailable, Transient
from studyloop.domain.models import Difficulty
from studyloop.infrastructure.adapters.memory_store import InMemoryStore
from studyloop.infrastructure.adapters.sqlite_store import SqliteStore


@pytest_asyncio.fixture
async def deck_with_cards(store):
    deck = await store.create_deck("Spanish")
    cards = [await store.create_card(deck.id, f"q{i}", f"a{i}") for i in range(3)]
    return deck, cards


@pytest.fixture
def session(store, clock, rng):
    return ReviewSession(store, clock=clock, rng=rng)


@pytest.mark.asyncio
async def test_start_presents_first_card_face_down(session, deck_with_cards):
    deck, cards = deck_with_cards

    first = await session.start(deck.id)

    assert first.id == cards[0].id
    assert session.state is SessionState.PRESENTING
    assert not session.back_visible
    assert (session.position, session.total) == (1, 3)


@pytest.mark.asyncio
async def test_start_on_empty_deck_raises(session, store):
    deck = await store.create_deck("Empty")
    with pytest.raises(NoCardsAvailable):
        await session.start(deck.id)
    assert session.state is SessionState.IDLE


@pytest.mark.asyncio
async def test_reveal_is_idempotent(session, deck_with_cards):
    deck, _ = deck_with_cards
    await session.start(deck.id)

    first = session.reveal()
    second = session.reveal()

    assert first is second
    assert session.state is SessionState.REVEALED


@pytest.mark.asyncio
async def test_rate_before_reveal_is_rejected(session, store, deck_with_cards):
    deck, _ = deck_with_cards
    await session.start(deck.id)

    with pytest.raises(InvalidInput, match="cannot rate"):
        await session.rate(Difficulty.GOOD)
    assert store.events == []


def test_reveal_before_start_is_rejected(session):
    with pytest.raises(InvalidInput, match="cannot reveal"):
        session.reveal()


@pytest.mark.asyncio
async def test_rate_writes_card_and_event(session, store, deck_with_cards, now):
    deck, cards = deck_with_cards
    await session.start(deck.id)
    session.reveal()

    nxt = await session.rate("good")

    updated = store.cards[cards[0].id]
    assert updated.review_count == 1
    assert updated.difficulty is Difficulty.GOOD
    assert updated.last_reviewed == now
    assert updated.next_review == now + timedelta(days=4)

    assert len(store.events) == 1
    event = store.events[0]
    assert event.card_id == cards[0].id
    assert event.difficulty is Difficulty.GOOD
    assert event.reviewed_at == now
    assert event.owner == "alice"

    assert nxt.id == cards[1].id
    assert session.state is SessionState.PRESENTING
    assert session.position == 2


@pytest.mark.asyncio
async def test_full_pass_completes(session, store, deck_with_cards):
    deck, _ = deck_with_cards
    seen = []
    session.subscribe(lambda e: seen.append(e.kind))

    await session.start(deck.id)
    for rating in ("1", "3", "4"):
        session.reveal()
        result = await session.rate(rating)

    assert result is None
    assert session.state is SessionState.COMPLETED
    assert session.current_card is None
    assert session.position == session.total == 3
    assert len(store.events) == 3
    assert seen == [
        "started",
        "revealed",
        "rated",
        "revealed",
        "rated",
        "revealed",
        "rated",
        "completed",
    ]


@pytest.mark.asyncio
async def test_invalid_rating_leaves_state_untouched(session, store, deck_with_cards):
    deck, cards = deck_with_cards
    await session.start(deck.id)
    session.reveal()

    with pytest.raises(InvalidInput):
        await session.rate("perfect")

    assert session.state is SessionState.REVEALED
    assert store.cards[cards[0].id].review_count == 0
    assert store.events == []


@pytest.mark.asyncio
async def test_abandon_keeps_applied_ratings(session, store, deck_with_cards):
    deck, _ = deck_with_cards
    await session.start(deck.id)
    session.reveal()
    await session.rate(Difficulty.EASY)

    session.abandon()

    assert session.state is SessionState.IDLE
    assert len(store.events) == 1


@pytest.mark.asyncio
async def test_cannot_start_twice(session, deck_with_cards):
    deck, _ = deck_with_cards
    await session.start(deck.id)
    with pytest.raises(InvalidInput, match="already in progress"):
        await session.start(deck.id)


@pytest.mark.asyncio
async def test_failed_event_append_reverts_card(session, store, deck_with_cards, monkeypatch):
    deck, cards = deck_with_cards
    await session.start(deck.id)
    session.reveal()

    async def broken_append(*args, **kwargs):
        raise Transient("connection reset")

    monkeypatch.setattr(store, "append_review_event", broken_append)

    with pytest.raises(Transient):
        await session.rate(Difficulty.GOOD)

    restored = store.cards[cards[0].id]
    assert restored.review_count == 0
    assert restored.last_reviewed is None
    assert restored.next_review == cards[0].next_review
    assert session.state is SessionState.REVEALED
    assert session.current_card.id == cards[0].id


def test_begin_with_preselected_cards(session, card_factory):
    cards = [card_factory("x"), card_factory("y")]
    first = session.begin(cards)
    assert first.id == "x"
    assert session.deck_id == "d1"


@pytest.mark.asyncio
async def test_concurrent_rate_writes_once(session, store, deck_with_cards, monkeypatch):
    deck, cards = deck_with_cards
    await session.start(deck.id)
    session.reveal()

    original_update = store.update_card

    async def slow_update(card_id, fields):
        await asyncio.sleep(0)
        return await original_update(card_id, fields)

    monkeypatch.setattr(store, "update_card", slow_update)

    results = await asyncio.gather(
        session.rate(Difficulty.GOOD), session.rate(Difficulty.GOOD), return_exceptions=True
    )

    assert results[0].id == cards[1].id
    assert isinstance(results[1], InvalidInput)
    assert len(store.events) == 1
    assert store.cards[cards[0].id].review_count == 1
    assert session.current_card.id == cards[1].id
    assert session.position == 2


@pytest_asyncio.fixture(params=["memory", "sqlite"])
async def any_store(request, tmp_path, clock):
    if request.param == "memory":
        yield InMemoryStore(owner="alice", clock=clock)
        return
    sqlite_store = SqliteStore(tmp_path / "studyloop.db", owner="alice", clock=clock)
    sqlite_store.init_schema()
    yield sqlite_store
    await sqlite_store.aclose()


@pytest.mark.asyncio
async def test_repeated_ratings_of_one_card_count_each(any_store, clock, rng):
    deck = await any_store.create_deck("Single")
    card = await any_store.create_card(deck.id, "q", "a")
    ratings = [Difficulty.AGAIN, Difficulty.GOOD, Difficulty.EASY, Difficulty.HARD, Difficulty.GOOD]

    for rating in ratings:
        review = ReviewSession(any_store, clock=clock, rng=rng)
        await review.start(deck.id)
        review.reveal()
        assert await review.rate(rating) is None

    events = [e for e in await any_store.list_review_events() if e.card_id == card.id]
    assert len(events) == len(ratings)
    assert (await any_store.get_card(card.id)).review_count == len(ratings)
