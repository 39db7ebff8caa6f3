from datetime import timedelta, timezone
from unittest.mock import AsyncMock

import pytest

from studyloop.application.stats.service import StatisticsService
from studyloop.domain.errors import NotFound, Transient
from studyloop.domain.models import Deck, Difficulty


@pytest.fixture
def mock_store():
    store = AsyncMock()
    store.owner = "alice"
    store.list_review_events.return_value = []
    store.list_all_cards.return_value = []
    store.list_decks.return_value = []
    return store


@pytest.mark.asyncio
async def test_service_orchestration(mock_store, clock, card_factory, event_factory, now):
    mock_store.list_all_cards.return_value = [card_factory("c1")]
    mock_store.list_review_events.return_value = [
        event_factory("c1", Difficulty.GOOD, now - timedelta(hours=1))
    ]
    mock_store.list_decks.return_value = [Deck(id="d1", owner="alice", name="Spanish")]

    service = StatisticsService(mock_store, clock=clock, tz=timezone.utc)
    snap = await service.compute()

    assert snap.total_reviews == 1
    assert snap.reviews_today == 1
    assert snap.success_rate == 100
    assert not snap.backfilled
    mock_store.list_review_events.assert_awaited_once()
    mock_store.list_all_cards.assert_awaited_once()
    mock_store.list_decks.assert_awaited_once()


@pytest.mark.asyncio
async def test_service_backfills_legacy_history(mock_store, clock, card_factory, now):
    mock_store.list_all_cards.return_value = [
        card_factory("c1", last_reviewed=now - timedelta(days=1), review_count=5, difficulty=Difficulty.EASY),
        card_factory("c2", last_reviewed=now, review_count=1),
        card_factory("c3"),
    ]

    snap = await StatisticsService(mock_store, clock=clock, tz=timezone.utc).compute()

    assert snap.backfilled
    assert snap.total_reviews == 2
    assert snap.current_streak == 2
    assert snap.difficulty_distribution[Difficulty.EASY] == 1
    assert snap.difficulty_distribution[Difficulty.GOOD] == 1
    # read path only: nothing is written back
    mock_store.append_review_event.assert_not_awaited()


@pytest.mark.asyncio
async def test_service_empty_store(mock_store, clock):
    snap = await StatisticsService(mock_store, clock=clock, tz=timezone.utc).compute()
    assert snap.total_reviews == 0
    assert not snap.backfilled


@pytest.mark.asyncio
@pytest.mark.parametrize("error", [NotFound("table"), Transient("timeout")])
async def test_service_propagates_store_errors(mock_store, clock, error):
    mock_store.list_review_events.side_effect = error

    with pytest.raises(type(error)):
        await StatisticsService(mock_store, clock=clock, tz=timezone.utc).compute()
