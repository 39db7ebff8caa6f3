"""Tests for CLI commands: decks, cards, review, stats, plan, migrate, store and config."""

import asyncio
import json
from datetime import datetime, timedelta, timezone
from unittest.mock import MagicMock, patch

import pytest
from typer.testing import CliRunner

from studyloop.domain.errors import NotFound, Transient
from studyloop.domain.models import Difficulty
from studyloop.infrastructure.adapters.memory_store import InMemoryStore
from studyloop.interface._common import dump_json, humanize_error, humanize_last_reviewed
from studyloop.interface.cli import app

runner = CliRunner()


@pytest.fixture
def shared_store(mock_home):
    """One in-memory store shared by every command of a test."""
    store = InMemoryStore(owner="alice")
    with patch("studyloop.interface.cli.get_store", return_value=store):
        yield store


def seed(store, cards=2):
    async def run():
        deck = await store.create_deck("Spanish")
        for i in range(cards):
            await store.create_card(deck.id, f"question {i}", f"answer {i}")
        return deck

    return asyncio.run(run())


# --- Help ---


def test_cli_help():
    """Test that help text is displayed correctly."""
    result = runner.invoke(app, ["--help"])
    assert result.exit_code == 0
    assert "studyloop" in result.stdout
    assert "review" in result.stdout
    assert "stats" in result.stdout
    assert "deck" in result.stdout


# --- Decks & cards ---


def test_deck_create_and_list(shared_store):
    result = runner.invoke(app, ["deck", "create", "Spanish", "--description", "verbs"])
    assert result.exit_code == 0
    assert "Created deck 'Spanish'" in result.stdout

    result = runner.invoke(app, ["deck", "list", "--json"])
    assert result.exit_code == 0
    decks = json.loads(result.stdout)
    assert [d["name"] for d in decks] == ["Spanish"]
    assert decks[0]["card_count"] == 0


def test_deck_list_empty(shared_store):
    result = runner.invoke(app, ["deck", "list"])
    assert result.exit_code == 0
    assert "No decks yet" in result.stdout


def test_deck_show_missing(shared_store):
    result = runner.invoke(app, ["deck", "show", "deck_missing"])
    assert result.exit_code == 1
    assert "Not found" in result.output


def test_deck_delete_requires_confirmation(shared_store):
    deck = seed(shared_store)

    result = runner.invoke(app, ["deck", "delete", deck.id], input="n\n")
    assert result.exit_code == 1
    assert deck.id in shared_store.decks

    result = runner.invoke(app, ["deck", "delete", deck.id, "--force"])
    assert result.exit_code == 0
    assert shared_store.decks == {}
    assert shared_store.cards == {}


def test_card_add_and_list(shared_store):
    deck = seed(shared_store, cards=0)

    result = runner.invoke(
        app, ["card", "add", deck.id, "--front", "hablar", "--back", "to speak", "--tags", "verbs, ar"]
    )
    assert result.exit_code == 0

    card = next(iter(shared_store.cards.values()))
    assert card.tags == ["verbs", "ar"]

    result = runner.invoke(app, ["card", "list", deck.id])
    assert result.exit_code == 0
    assert "hablar" in result.stdout
    assert "new" in result.stdout


def test_card_add_empty_front_is_rejected(shared_store):
    deck = seed(shared_store, cards=0)
    result = runner.invoke(app, ["card", "add", deck.id, "--front", " ", "--back", "b"])
    assert result.exit_code == 2
    assert "Invalid input" in result.output


# --- Review ---


def test_review_session_rates_every_card(shared_store):
    deck = seed(shared_store)

    result = runner.invoke(app, ["review", deck.id], input="\n3\n\n9\n4\n")

    assert result.exit_code == 0, result.output
    assert "answer 0" in result.stdout
    assert "Please answer 1-4" in result.stdout
    assert "Review session completed" in result.stdout
    assert [e.difficulty for e in shared_store.events] == [Difficulty.GOOD, Difficulty.EASY]
    assert all(c.review_count == 1 for c in shared_store.cards.values())


def test_review_quit_keeps_earlier_ratings(shared_store):
    deck = seed(shared_store)

    result = runner.invoke(app, ["review", deck.id], input="\n1\nq\n")

    assert result.exit_code == 0
    assert "Session stopped" in result.stdout
    assert len(shared_store.events) == 1


def test_review_empty_deck(shared_store):
    deck = seed(shared_store, cards=0)
    result = runner.invoke(app, ["review", deck.id])
    assert result.exit_code == 2
    assert "no cards available" in result.output


# --- Stats & plan ---


def test_stats_json(shared_store):
    deck = seed(shared_store)
    runner.invoke(app, ["review", deck.id], input="\n3\n\n1\n")

    result = runner.invoke(app, ["stats", "--json"])

    assert result.exit_code == 0
    data = json.loads(result.stdout)
    assert data["total_reviews"] == 2
    assert data["success_rate"] == 50
    assert data["current_streak"] == 1
    assert data["difficulty_distribution"] == {"again": 1, "hard": 0, "good": 1, "easy": 0}
    assert len(data["daily_activity"]) == 7


def test_stats_text_mentions_backfill(shared_store):
    deck = seed(shared_store, cards=1)
    card = next(iter(shared_store.cards.values()))
    asyncio.run(
        shared_store.update_card(
            card.id,
            {"last_reviewed": datetime.now(timezone.utc), "review_count": 2},
        )
    )

    result = runner.invoke(app, ["stats"])

    assert result.exit_code == 0
    assert "estimated from card state" in result.stdout
    assert deck.name in result.stdout


def test_plan_json(shared_store):
    seed(shared_store, cards=1)
    card = next(iter(shared_store.cards.values()))
    due = datetime(2031, 5, 20, 12, tzinfo=timezone.utc)
    asyncio.run(shared_store.update_card(card.id, {"next_review": due}))

    result = runner.invoke(app, ["plan", "--year", "2031", "--month", "5", "--json"])

    assert result.exit_code == 0, result.output
    counts = json.loads(result.stdout)
    assert sum(counts.values()) == 1


def test_plan_day_lists_cards(shared_store, monkeypatch):
    monkeypatch.setenv("STUDYLOOP_TIMEZONE", "UTC")
    seed(shared_store, cards=2)
    card = next(iter(shared_store.cards.values()))
    due = datetime(2031, 5, 20, 12, tzinfo=timezone.utc)
    asyncio.run(shared_store.update_card(card.id, {"next_review": due}))

    result = runner.invoke(app, ["plan", "--day", "2031-05-20", "--json"])

    assert result.exit_code == 0, result.output
    cards = json.loads(result.stdout)
    assert [c["id"] for c in cards] == [card.id]
    assert cards[0]["next_review"] == "2031-05-20T12:00:00+00:00"

    empty = runner.invoke(app, ["plan", "--day", "2031-05-21"])
    assert "No reviews scheduled on 2031-05-21" in empty.stdout


# --- Migration & setup ---


def test_migrate_backfill_dry_run(shared_store):
    seed(shared_store, cards=1)
    card = next(iter(shared_store.cards.values()))
    reviewed = datetime.now(timezone.utc) - timedelta(days=1)
    asyncio.run(
        shared_store.update_card(
            card.id, {"last_reviewed": reviewed, "review_count": 1, "difficulty": Difficulty.HARD}
        )
    )

    result = runner.invoke(app, ["migrate", "backfill", "--dry-run"])
    assert result.exit_code == 0
    assert "[DRY RUN] Would write 1" in result.stdout
    assert shared_store.events == []

    result = runner.invoke(app, ["migrate", "backfill"])
    assert "Wrote 1" in result.stdout
    assert len(shared_store.events) == 1

    result = runner.invoke(app, ["migrate", "check"])
    assert result.exit_code == 0
    assert "match" in result.stdout


def test_migrate_check_reports_mismatch(shared_store):
    seed(shared_store, cards=1)
    card = next(iter(shared_store.cards.values()))
    asyncio.run(
        shared_store.update_card(
            card.id, {"last_reviewed": datetime.now(timezone.utc), "review_count": 3}
        )
    )

    result = runner.invoke(app, ["migrate", "check"])

    assert result.exit_code == 1
    assert "review_count=3 events=0" in result.stdout


def test_uninitialized_sqlite_store_hints_at_setup(mock_home, tmp_path):
    db = tmp_path / "fresh.db"
    result = runner.invoke(app, ["--store", "sqlite", "--db", str(db), "deck", "list"])
    assert result.exit_code == 1
    assert "studyloop store init" in result.output


def test_store_init_then_use(mock_home, tmp_path):
    db = tmp_path / "fresh.db"
    result = runner.invoke(app, ["--store", "sqlite", "--db", str(db), "store", "init"])
    assert result.exit_code == 0
    assert db.exists()

    result = runner.invoke(app, ["--store", "sqlite", "--db", str(db), "deck", "create", "Spanish"])
    assert result.exit_code == 0
    result = runner.invoke(app, ["--store", "sqlite", "--db", str(db), "deck", "list", "--json"])
    assert [d["name"] for d in json.loads(result.stdout)] == ["Spanish"]


def test_store_unavailable(mock_home):
    broken = MagicMock()
    broken.list_decks.side_effect = Transient("connection refused")

    async def aclose():
        return None

    broken.aclose = aclose
    with patch("studyloop.interface.cli.get_store", return_value=broken):
        result = runner.invoke(app, ["deck", "list"])

    assert result.exit_code == 1
    assert "Store unavailable" in result.output


# --- Config ---


@patch("studyloop.interface.cli.resolve_config")
def test_config_show_command(mock_resolve_config):
    """Test config show command displays JSON."""
    mock_config = MagicMock()
    mock_config.model_dump.return_value = {"owner": "alice", "store": "memory", "verbose": 1}
    mock_resolve_config.return_value = mock_config

    result = runner.invoke(app, ["config", "show"])

    assert result.exit_code == 0
    output_data = json.loads(result.stdout)
    assert output_data["owner"] == "alice"
    assert output_data["store"] == "memory"


# --- Server ---


@patch("uvicorn.run")
def test_serve_command(mock_run):
    result = runner.invoke(app, ["serve", "--port", "9000"])
    assert result.exit_code == 0
    mock_run.assert_called_once_with("studyloop.server:app", host="127.0.0.1", port=9000, reload=False)


# --- Helpers ---


def test_humanize_error():
    assert "store init" in humanize_error(NotFound("table"))
    assert humanize_error(NotFound("deck", "d1")) == "Not found: deck not found: d1"
    assert humanize_error(Transient("down")).startswith("Store unavailable")


@pytest.mark.parametrize(
    "days_ago, text",
    [
        (None, "Never reviewed"),
        (0, "Today"),
        (1, "Yesterday"),
        (3, "3 days ago"),
        (14, "2 weeks ago"),
        (65, "2 months ago"),
    ],
)
def test_humanize_last_reviewed(days_ago, text):
    now = datetime(2024, 3, 13, 12, tzinfo=timezone.utc)
    moment = None if days_ago is None else now - timedelta(days=days_ago)
    assert humanize_last_reviewed(moment, now) == text


def test_dump_json_encodes_domain_values(card_factory):
    card = card_factory(
        last_reviewed=datetime(2024, 3, 12, 9, tzinfo=timezone.utc),
        review_count=1,
        difficulty=Difficulty.HARD,
    )

    data = json.loads(dump_json({"card": card, Difficulty.EASY: 2}))

    assert data["card"]["difficulty"] == "hard"
    assert data["card"]["last_reviewed"] == "2024-03-12T09:00:00+00:00"
    assert data["card"]["tags"] == []
    assert data["easy"] == 2
