"""studyloop CLI — decks, cards, review sessions, statistics and planning."""

import asyncio
import json
import logging
import sys
from collections.abc import Awaitable, Callable
from datetime import date, datetime
from pathlib import Path
from typing import Annotated, Any, TypeVar

import typer

from studyloop.application.config import AppConfig, resolve_config
from studyloop.application.factory import get_store
from studyloop.application.planner import classify_due_day, month_window
from studyloop.application.review_session import SessionEvent
from studyloop.application.study_service import StudyService
from studyloop.domain.errors import InvalidInput, StudyLoopError
from studyloop.domain.interfaces import FlashcardStore
from studyloop.domain.models import Difficulty, parse_tags
from studyloop.interface._common import (
    _resolve_with_overrides,
    dump_json,
    humanize_error,
    humanize_last_reviewed,
)

T = TypeVar("T")

# ---------------------------------------------------------------------------
# Root app
# ---------------------------------------------------------------------------

app = typer.Typer(
    help="studyloop: flashcard reviews with spaced scheduling and study statistics.",
    no_args_is_help=True,
    rich_markup_mode="rich",
)

# ---------------------------------------------------------------------------
# Logging
# ---------------------------------------------------------------------------

logging.basicConfig(
    level=logging.WARNING,
    format="%(levelname)s:%(name)s:%(message)s",
    stream=sys.stderr,
)
logger = logging.getLogger(__name__)

# ---------------------------------------------------------------------------
# Register subgroups
# ---------------------------------------------------------------------------

deck_app = typer.Typer(help="Create, inspect and delete decks.", no_args_is_help=True)
app.add_typer(deck_app, name="deck")

card_app = typer.Typer(help="Add and list cards.", no_args_is_help=True)
app.add_typer(card_app, name="card")

migrate_app = typer.Typer(help="Legacy data migration.", no_args_is_help=True)
app.add_typer(migrate_app, name="migrate")

store_app = typer.Typer(help="Store setup.", no_args_is_help=True)
app.add_typer(store_app, name="store")

config_app = typer.Typer(help="Manage studyloop configuration.")
app.add_typer(config_app, name="config")


# ---------------------------------------------------------------------------
# Global callback
# ---------------------------------------------------------------------------


@app.callback()
def main_callback(
    ctx: typer.Context,
    store: Annotated[
        str | None, typer.Option(help="Store backend: memory, sqlite, hosted.")
    ] = None,
    db_path: Annotated[Path | None, typer.Option("--db", help="SQLite database file.")] = None,
    owner: Annotated[str | None, typer.Option(help="Owner whose data to use.")] = None,
    verbose: Annotated[
        int,
        typer.Option(
            "--verbose", "-v", count=True, help="Increase verbosity. Repeat for more detail."
        ),
    ] = 0,
):
    """Global settings for studyloop."""
    ctx.ensure_object(dict)
    ctx.obj["overrides"] = {"store": store, "db_path": db_path, "owner": owner}
    ctx.obj["verbose"] = verbose


def _config(ctx: typer.Context) -> AppConfig:
    obj = ctx.obj or {}
    config = _resolve_with_overrides(**obj.get("overrides", {}))
    verbose = max(obj.get("verbose", 0), config.verbose)
    if verbose >= 2:
        logging.getLogger().setLevel(logging.DEBUG)
    elif verbose == 1:
        logging.getLogger().setLevel(logging.INFO)
    return config


def _run(ctx: typer.Context, action: Callable[[FlashcardStore, AppConfig], Awaitable[T]]) -> T:
    """
    Open the configured store, run one async action against it, and turn
    studyloop errors into terminal messages and exit codes.
    """
    try:
        config = _config(ctx)
        store = get_store(config)
    except (ValueError, StudyLoopError) as e:
        typer.secho(humanize_error(e), fg="red", err=True)
        raise typer.Exit(2) from None

    async def run() -> T:
        try:
            return await action(store, config)
        finally:
            await store.aclose()

    try:
        return asyncio.run(run())
    except InvalidInput as e:
        typer.secho(humanize_error(e), fg="yellow", err=True)
        raise typer.Exit(2) from None
    except StudyLoopError as e:
        logger.debug(f"Command failed: {e!r}")
        typer.secho(humanize_error(e), fg="red", err=True)
        raise typer.Exit(1) from None


def _service(store: FlashcardStore, config: AppConfig) -> StudyService:
    return StudyService(store, tz=config.tzinfo())


# ---------------------------------------------------------------------------
# Decks
# ---------------------------------------------------------------------------


@deck_app.command("list")
def deck_list(
    ctx: typer.Context,
    json_output: Annotated[bool, typer.Option("--json", help="Output as JSON.")] = False,
):
    """List decks with card counts."""
    decks = _run(ctx, lambda store, _: store.list_decks())
    if json_output:
        typer.echo(dump_json(decks))
        return
    if not decks:
        typer.secho("No decks yet. Create one with 'studyloop deck create NAME'.", fg="yellow")
        return
    now = datetime.now().astimezone()
    for deck in decks:
        typer.echo(
            f"{deck.id}  {deck.name}  ({deck.card_count} cards, "
            f"{humanize_last_reviewed(deck.last_reviewed, now)})"
        )


@deck_app.command("create")
def deck_create(
    ctx: typer.Context,
    name: Annotated[str, typer.Argument(help="Deck name.")],
    description: Annotated[str, typer.Option(help="Optional description.")] = "",
):
    """Create a new deck."""
    deck = _run(ctx, lambda store, _: store.create_deck(name, description))
    typer.secho(f"Created deck '{deck.name}' ({deck.id})", fg="green")


@deck_app.command("show")
def deck_show(
    ctx: typer.Context,
    deck_id: Annotated[str, typer.Argument(help="Deck ID.")],
):
    """Show deck details."""
    deck = _run(ctx, lambda store, _: store.get_deck(deck_id))
    now = datetime.now().astimezone()
    typer.echo(deck.name)
    typer.echo(deck.description or "No description")
    typer.echo(f"{deck.card_count} cards")
    typer.echo(f"Last reviewed: {humanize_last_reviewed(deck.last_reviewed, now)}")


@deck_app.command("delete")
def deck_delete(
    ctx: typer.Context,
    deck_id: Annotated[str, typer.Argument(help="Deck ID.")],
    force: Annotated[
        bool, typer.Option("--force", "-f", help="Bypass confirmation.")
    ] = False,
):
    """Delete a deck with all of its cards and review history."""
    if not force and not typer.confirm(
        "Delete this deck? This action cannot be undone.", default=False
    ):
        raise typer.Exit(1)
    _run(ctx, lambda store, _: store.delete_deck(deck_id))
    typer.secho("Deck deleted.", fg="green")


# ---------------------------------------------------------------------------
# Cards
# ---------------------------------------------------------------------------


@card_app.command("add")
def card_add(
    ctx: typer.Context,
    deck_id: Annotated[str, typer.Argument(help="Deck ID.")],
    front: Annotated[str, typer.Option(help="Question side.")],
    back: Annotated[str, typer.Option(help="Answer side.")],
    tags: Annotated[str, typer.Option(help="Comma-separated tags.")] = "",
):
    """Add a card. New cards are due immediately."""
    card = _run(ctx, lambda store, _: store.create_card(deck_id, front, back, parse_tags(tags)))
    typer.secho(f"Added card {card.id}", fg="green")


@card_app.command("list")
def card_list(
    ctx: typer.Context,
    deck_id: Annotated[str, typer.Argument(help="Deck ID.")],
    json_output: Annotated[bool, typer.Option("--json", help="Output as JSON.")] = False,
):
    """List the cards in a deck."""
    cards = _run(ctx, lambda store, _: store.list_cards(deck_id))
    if json_output:
        typer.echo(dump_json(cards))
        return
    for card in cards:
        rating = card.difficulty.value if card.difficulty else "new"
        typer.echo(
            f"{card.id}  [{rating}, {card.review_count} reviews]  {card.front[:60]}  "
            f"(next {card.next_review.astimezone():%Y-%m-%d %H:%M})"
        )


# ---------------------------------------------------------------------------
# Review
# ---------------------------------------------------------------------------

RATING_PROMPT = "Rate: [1] again  [2] hard  [3] good  [4] easy  [q] quit"


@app.command()
def review(
    ctx: typer.Context,
    deck_id: Annotated[str, typer.Argument(help="Deck to review.")],
):
    """Review a deck interactively: Enter reveals the answer, 1-4 rates it."""

    def on_event(event: SessionEvent) -> None:
        if event.kind == "completed":
            typer.secho(f"Review session completed! ({event.total} cards)", fg="green")
        elif event.kind == "abandoned":
            typer.secho("Session stopped. Ratings so far are saved.", fg="yellow")

    async def action(store: FlashcardStore, config: AppConfig) -> None:
        service = _service(store, config)
        session = await service.start_review(deck_id, listeners=[on_event])

        while session.current_card is not None:
            card = session.current_card
            typer.echo(f"\n[{session.position}/{session.total}] {card.front}")
            if typer.prompt("Press Enter to reveal (q to quit)", default="", show_default=False) == "q":
                session.abandon()
                return
            service.reveal(session)
            typer.echo(f"  -> {card.back}")

            while True:
                answer = typer.prompt(RATING_PROMPT).strip().lower()
                if answer == "q":
                    session.abandon()
                    return
                try:
                    rating = Difficulty.parse(answer)
                except InvalidInput:
                    typer.secho("Please answer 1-4 or q.", fg="yellow")
                    continue
                break
            await service.rate(session, rating)

    _run(ctx, action)


# ---------------------------------------------------------------------------
# Statistics & planning
# ---------------------------------------------------------------------------


@app.command()
def stats(
    ctx: typer.Context,
    json_output: Annotated[bool, typer.Option("--json", help="Output as JSON.")] = False,
):
    """Show review statistics: streaks, success rate, mastery and activity."""
    snapshot = _run(ctx, lambda store, config: _service(store, config).compute_statistics())

    if json_output:
        typer.echo(dump_json(snapshot))
        return

    if snapshot.backfilled:
        typer.secho(
            "Statistics estimated from card state (no review history yet). "
            "Run 'studyloop migrate backfill' to keep it.",
            fg="yellow",
        )
    typer.echo(f"Cards: {snapshot.total_cards}  Due: {snapshot.cards_due}")
    typer.echo(
        f"Reviews: {snapshot.total_reviews}  Today: {snapshot.reviews_today}  "
        f"Success rate: {snapshot.success_rate}%"
    )
    typer.echo(
        f"Streak: {snapshot.current_streak} (longest {snapshot.longest_streak})  "
        f"Mastered: {snapshot.mastered_cards}/{snapshot.total_cards}  "
        f"Velocity: {snapshot.learning_velocity}/day"
    )
    typer.echo("\nLast 7 days:")
    for point in snapshot.daily_activity:
        typer.echo(f"  {point.day:%a %b %d}  {'#' * point.reviews} {point.reviews}")
    if snapshot.deck_performance:
        typer.echo("\nDecks by success rate:")
        for deck in snapshot.deck_performance:
            typer.echo(f"  {deck.success_rate:3d}%  {deck.name} ({deck.total} reviews)")
    if snapshot.deck_knowledge:
        typer.echo("\nKnowledge:")
        for deck in snapshot.deck_knowledge:
            typer.echo(
                f"  {deck.name}: {deck.knowledge_level}% {deck.mastery_level} "
                f"({deck.reviewed_cards}/{deck.total_cards} cards reviewed)"
            )


@app.command()
def plan(
    ctx: typer.Context,
    year: Annotated[int | None, typer.Option(help="Calendar year (default: this year).")] = None,
    month: Annotated[int | None, typer.Option(help="Month 1-12 (default: this month).")] = None,
    day: Annotated[
        datetime | None,
        typer.Option(formats=["%Y-%m-%d"], help="List the cards due on this day instead."),
    ] = None,
    json_output: Annotated[bool, typer.Option("--json", help="Output as JSON.")] = False,
):
    """Show how many reviews fall due on each day of a month, or the cards due on one day."""
    if day is not None:
        _plan_day(ctx, day.date(), json_output)
        return

    async def action(store: FlashcardStore, config: AppConfig) -> tuple[Any, Any]:
        service = _service(store, config)
        today = service.clock().astimezone(service.tz).date()
        start, end = month_window(year or today.year, month or today.month, service.tz)
        return today, await service.project_due_counts(start, end)

    today, counts = _run(ctx, action)
    if json_output:
        typer.echo(json.dumps({d.isoformat(): n for d, n in counts.items()}, indent=2))
        return
    if not counts:
        typer.secho("No reviews scheduled in this month.", fg="yellow")
        return
    for due_day, n in counts.items():
        typer.echo(f"{due_day.isoformat()}  {n:4d}  {classify_due_day(due_day, today).value}")


def _plan_day(ctx: typer.Context, day: date, json_output: bool) -> None:
    cards = _run(ctx, lambda store, config: _service(store, config).cards_due_on(day))
    if json_output:
        typer.echo(dump_json(cards))
        return
    if not cards:
        typer.secho(f"No reviews scheduled on {day.isoformat()}.", fg="yellow")
        return
    for card in cards:
        typer.echo(f"{card.next_review:%H:%M}  {card.id}  {card.front}")


# ---------------------------------------------------------------------------
# Migration & setup
# ---------------------------------------------------------------------------


@migrate_app.command("backfill")
def migrate_backfill(
    ctx: typer.Context,
    dry_run: Annotated[
        bool, typer.Option("--dry-run", help="Preview changes without saving.")
    ] = False,
):
    """Write placeholder review events for cards reviewed before history existed."""
    from studyloop.application.migrations import backfill_review_events

    written = _run(ctx, lambda store, _: backfill_review_events(store, dry_run=dry_run))
    prefix = "[DRY RUN] Would write" if dry_run else "Wrote"
    typer.echo(f"{prefix} {written} placeholder review events.")


@migrate_app.command("check")
def migrate_check(ctx: typer.Context):
    """Report cards whose review count differs from their review history."""
    from studyloop.application.migrations import find_count_mismatches

    async def action(store: FlashcardStore, _: AppConfig):
        return find_count_mismatches(
            await store.list_all_cards(), await store.list_review_events()
        )

    mismatches = _run(ctx, action)
    if not mismatches:
        typer.secho("Review counts match review history.", fg="green")
        return
    typer.secho(f"{len(mismatches)} cards out of sync:", fg="yellow")
    for m in mismatches:
        typer.echo(f"  {m.card_id}: review_count={m.review_count} events={m.event_count}")
    raise typer.Exit(1)


@store_app.command("init")
def store_init(ctx: typer.Context):
    """Create the local database tables (one-time setup)."""
    from studyloop.infrastructure.adapters.sqlite_store import SqliteStore

    config = _config(ctx)
    if config.store != "sqlite":
        typer.echo(f"Store '{config.store}' needs no local setup.")
        return
    store = SqliteStore(config.db_path, owner=config.owner)
    store.init_schema()
    store.close()
    typer.secho(f"Initialized {config.db_path}", fg="green")


# ---------------------------------------------------------------------------
# Config subgroup
# ---------------------------------------------------------------------------


@config_app.command("show")
def config_show():
    """Display final resolved configuration."""
    config = resolve_config()
    d = {k: str(v) if isinstance(v, Path) else v for k, v in config.model_dump().items()}
    typer.echo(json.dumps(d, indent=2))


# ---------------------------------------------------------------------------
# Server
# ---------------------------------------------------------------------------


@app.command()
def serve(
    port: Annotated[int, typer.Option(help="Port to bind the server to.")] = 8777,
    host: Annotated[str, typer.Option(help="Host to bind the server to.")] = "127.0.0.1",
    reload: Annotated[bool, typer.Option(help="Enable auto-reload.")] = False,
):
    """Run the HTTP API."""
    import uvicorn

    uvicorn.run("studyloop.server:app", host=host, port=port, reload=reload)
