"""
Hanzi Review: terminal front end for the review engine.

Commands:
- hanzi-review enroll   - Register items from the content pipeline
- hanzi-review due      - Show due counts per status
- hanzi-review study    - Run a review session
- hanzi-review sync     - Replay grades queued while offline
- hanzi-review pending  - List queued offline grades
- hanzi-review stats    - Show review statistics
- hanzi-review reset    - Clear the local cache
"""
from __future__ import annotations

import asyncio
import sys
from dataclasses import dataclass
from datetime import datetime
from pathlib import Path
from typing import Optional

import typer
from loguru import logger
from rich.console import Console
from rich.panel import Panel
from rich.prompt import Confirm, Prompt
from rich.table import Table

from config import Settings, get_settings
from src.review.background_sync import BackgroundSync
from src.review.catalog import ItemCatalog, enroll as enroll_items
from src.review.local_cache import STORAGE_KEYS, LocalCache
from src.review.models import ReviewStatus, parse_status_priority
from src.review.remote_store import RemoteReviewItemStore
from src.review.review_log import ReviewLog
from src.review.scheduler import GradeButton, SM2Config, SM2Scheduler
from src.review.session import ReviewSession, SessionCard, SessionPhase
from src.review.sql_store import SqlReviewItemStore
from src.review.storage import SqliteKeyValueStorage
from src.review.store import ReviewItemStore, StoreUnavailableError
from src.review.sync_queue import OfflineSyncQueue

# =============================================================================
# CLI Setup
# =============================================================================

app = typer.Typer(
    name="hanzi-review",
    help="Hanzi Review: spaced-repetition review CLI",
    no_args_is_help=True,
)
console = Console()


# =============================================================================
# Styling
# =============================================================================

STYLES = {
    "correct": "bold green",
    "incorrect": "bold red",
    "info": "bold cyan",
    "warning": "bold yellow",
    "dim": "dim",
    "status": {
        ReviewStatus.NEW: "blue",
        ReviewStatus.LEARNING: "red",
        ReviewStatus.REVIEW: "yellow",
        ReviewStatus.MASTERED: "green",
    },
}

GRADE_KEYS = {
    "1": GradeButton.AGAIN,
    "2": GradeButton.HARD,
    "3": GradeButton.GOOD,
    "4": GradeButton.EASY,
}

# Payload fields shown on the front of a card, by preference
FRONT_FIELDS = ("original", "char", "point", "front", "text")


def style_status(status: ReviewStatus) -> str:
    color = STYLES["status"].get(status, "white")
    return f"[{color}]{status.value}[/{color}]"


# =============================================================================
# Wiring
# =============================================================================


@dataclass
class Runtime:
    """Engine components built from settings."""

    settings: Settings
    store: ReviewItemStore
    storage: SqliteKeyValueStorage
    cache: LocalCache
    queue: OfflineSyncQueue
    review_log: ReviewLog
    scheduler: SM2Scheduler

    def session(
        self,
        user_id: str,
        limit: int | None = None,
        shuffle: bool | None = None,
        seed: int | None = None,
    ) -> ReviewSession:
        return ReviewSession(
            user_id=user_id,
            store=self.store,
            cache=self.cache,
            sync_queue=self.queue,
            scheduler=self.scheduler,
            catalog=ItemCatalog.from_cache(self.cache),
            review_log=self.review_log,
            limit=limit if limit is not None else self.settings.session_card_limit,
            shuffle=self.settings.session_shuffle if shuffle is None else shuffle,
            shuffle_seed=seed if seed is not None else self.settings.session_shuffle_seed,
            store_timeout=self.settings.store_timeout_seconds,
        )

    async def close(self) -> None:
        await self.store.close()
        self.storage.close()


def build_runtime(settings: Settings | None = None) -> Runtime:
    settings = settings or get_settings()
    settings.state_dir.mkdir(parents=True, exist_ok=True)
    priority = parse_status_priority(settings.review_status_priority)

    store: ReviewItemStore
    if settings.record_store_url:
        store = RemoteReviewItemStore(
            settings.record_store_url,
            api_key=settings.record_store_api_key,
            timeout=settings.store_timeout_seconds,
            status_priority=priority,
        )
    else:
        store = SqlReviewItemStore(
            settings.resolved_database_url,
            timeout=settings.store_timeout_seconds,
            status_priority=priority,
        )

    storage = SqliteKeyValueStorage(settings.local_db_path)
    cache = LocalCache(storage, status_priority=priority)
    scheduler = SM2Scheduler(
        SM2Config(
            maximum_easiness=settings.maximum_easiness,
            mastered_interval=settings.mastered_interval_days,
        )
    )
    return Runtime(
        settings=settings,
        store=store,
        storage=storage,
        cache=cache,
        queue=OfflineSyncQueue(storage, store, cache=cache, timeout=settings.store_timeout_seconds),
        review_log=ReviewLog(storage, max_entries=settings.review_log_max_entries),
        scheduler=scheduler,
    )


def _user(user: Optional[str]) -> str:
    return user or get_settings().default_user_id


def _format_ms(timestamp: int | None) -> str:
    if timestamp is None:
        return "never"
    return datetime.fromtimestamp(timestamp / 1000).strftime("%Y-%m-%d %H:%M")


# =============================================================================
# Display Helpers
# =============================================================================


def card_faces(card: SessionCard) -> tuple[str, str]:
    """Front and back text of a card."""
    if card.item is None:
        return f"{card.state.item_type.value} {card.state.item_id}", "[dim](content not cached)[/dim]"

    payload = card.item.payload
    front_field = next((f for f in FRONT_FIELDS if payload.get(f)), None)
    front = str(payload[front_field]) if front_field else card.item.id
    back_lines = [f"{key}: {value}" for key, value in payload.items() if key != front_field]
    return front, "\n".join(back_lines) or "[dim](no details)[/dim]"


def display_card_front(card: SessionCard, index: int, total: int) -> None:
    front, _ = card_faces(card)
    header = f"Card {index}/{total}  |  {card.state.item_type.value}  |  {style_status(card.state.status)}"
    console.print(Panel(front, title=header, title_align="left", border_style="cyan", padding=(1, 2)))


def display_card_back(card: SessionCard) -> None:
    _, back = card_faces(card)
    console.print(Panel(back, border_style="dim", padding=(1, 2)))


def _display_summary(session: ReviewSession) -> None:
    summary = session.summary
    table = Table(title="Session Summary", show_header=False)
    table.add_column("Metric", style="cyan")
    table.add_column("Value", justify="right")
    table.add_row("Reviewed", f"{summary.reviewed}/{summary.total}")
    table.add_row("Correct", f"[green]{summary.correct}[/green]")
    table.add_row("Incorrect", f"[red]{summary.incorrect}[/red]")
    table.add_row("Accuracy", f"{summary.accuracy:.0%}")
    table.add_row("XP gained", f"+{summary.xp}")
    if summary.queued_offline:
        table.add_row("Queued offline", f"[yellow]{summary.queued_offline}[/yellow]")
    console.print()
    console.print(table)


def _ask_grade() -> int | None:
    """Prompt for a grade; None means end the session."""
    console.print("\n[dim]1 = Again   2 = Hard   3 = Good   4 = Easy   q = quit[/dim]")
    choice = Prompt.ask("Grade", choices=[*GRADE_KEYS, "q"])
    if choice == "q":
        return None
    return int(GRADE_KEYS[choice])


# =============================================================================
# Commands
# =============================================================================


@app.command()
def enroll(
    items_file: Path = typer.Argument(..., exists=True, dir_okay=False, help="JSON file of learnable items"),
    user: Optional[str] = typer.Option(None, "--user", "-u", help="Learner id"),
) -> None:
    """Register generated items and create their review records."""
    runtime = build_runtime()
    catalog = ItemCatalog.from_json_file(items_file)
    runtime.cache.save_items(list(catalog))

    async def run():
        try:
            return await enroll_items(_user(user), catalog, runtime.store, runtime.scheduler)
        finally:
            await runtime.close()

    try:
        result = asyncio.run(run())
    except StoreUnavailableError as exc:
        console.print(f"[red]Review store unavailable:[/red] {exc}")
        console.print("Items were cached; run enroll again once the store is reachable.")
        raise typer.Exit(1)

    console.print(f"[green]✓[/green] {result.created} new item(s) enrolled, {result.existing} already tracked")


@app.command()
def due(
    user: Optional[str] = typer.Option(None, "--user", "-u", help="Learner id"),
) -> None:
    """Show how many items are due, per status."""
    runtime = build_runtime()
    session = runtime.session(_user(user))

    async def run():
        try:
            return await session.load_dashboard()
        finally:
            await runtime.close()

    counts = asyncio.run(run())

    table = Table(title="Due Today")
    table.add_column("Status")
    table.add_column("Cards", justify="right")
    table.add_row(style_status(ReviewStatus.LEARNING), str(counts.learning))
    table.add_row(style_status(ReviewStatus.REVIEW), str(counts.review))
    table.add_row(style_status(ReviewStatus.NEW), str(counts.new))
    table.add_row(style_status(ReviewStatus.MASTERED), str(counts.mastered))
    table.add_row("[bold]total[/bold]", f"[bold]{counts.total}[/bold]")
    console.print(table)

    if counts.offline:
        console.print("[yellow]Offline: counts come from the local cache and may be stale.[/yellow]")


@app.command()
def study(
    user: Optional[str] = typer.Option(None, "--user", "-u", help="Learner id"),
    limit: Optional[int] = typer.Option(None, "--limit", "-l", help="Maximum cards this session"),
    shuffle: Optional[bool] = typer.Option(None, "--shuffle/--no-shuffle", help="Shuffle the queue once"),
    seed: Optional[int] = typer.Option(None, "--seed", help="Shuffle seed"),
) -> None:
    """Start an interactive review session."""
    runtime = build_runtime()
    session = runtime.session(_user(user), limit=limit, shuffle=shuffle, seed=seed)
    asyncio.run(_study(runtime, session))


async def _study(runtime: Runtime, session: ReviewSession) -> None:
    console.print("\n[bold cyan]Hanzi Review[/bold cyan]")
    console.print("=" * 40)

    sync = BackgroundSync(runtime.queue, interval_seconds=runtime.settings.sync_interval_seconds)
    sync.start()
    try:
        started = await session.start_session()
        if not started:
            console.print("\n[green]Nothing due for review![/green]")
            console.print("All caught up. Check back tomorrow.")
            return

        if session.offline:
            console.print("[yellow]Offline: grades will be queued and synced later.[/yellow]")

        total = len(session.queue)
        try:
            while session.phase == SessionPhase.ACTIVE:
                card = session.current_card()
                console.print()
                display_card_front(card, session.index + 1, total)
                Prompt.ask("[dim]Press Enter to reveal[/dim]", default="", show_default=False)
                display_card_back(session.flip())

                grade = _ask_grade()
                if grade is None:
                    session.end_session()
                    break

                outcome = await session.grade(grade)
                style = STYLES["correct"] if grade >= 3 else STYLES["incorrect"]
                due_in = outcome.state.interval
                console.print(f"[{style}]Next review in {due_in} day{'s' if due_in != 1 else ''}[/{style}]")
                if outcome.queued:
                    console.print("[dim]Saved offline[/dim]")
        except KeyboardInterrupt:
            console.print("\n\n[yellow]Session interrupted.[/yellow]")
            if session.phase == SessionPhase.ACTIVE:
                session.end_session()

        _display_summary(session)
    finally:
        await sync.stop()
        await runtime.close()


@app.command()
def sync(
    user: Optional[str] = typer.Option(None, "--user", "-u", help="Learner id"),
) -> None:
    """Replay queued offline grades and refresh the local cache."""
    runtime = build_runtime()

    async def run():
        try:
            result = await runtime.queue.flush()
            refreshed = None
            if result.complete:
                try:
                    states = await runtime.store.list_states(_user(user))
                    runtime.cache.save(states)
                    refreshed = len(states)
                except StoreUnavailableError as exc:
                    logger.warning("Cache refresh skipped: {}", exc)
            return result, refreshed
        finally:
            await runtime.close()

    result, refreshed = asyncio.run(run())
    console.print(f"Replayed: [green]{result.succeeded}[/green]  Pending: [yellow]{result.remaining}[/yellow]")
    if refreshed is not None:
        console.print(f"Local cache refreshed with {refreshed} record(s)")
    if not result.complete:
        console.print("[yellow]Review store unreachable; remaining grades stay queued.[/yellow]")
        raise typer.Exit(1)


@app.command()
def pending() -> None:
    """List grades waiting to be synced."""
    runtime = build_runtime()
    actions = runtime.queue.list_pending()
    asyncio.run(runtime.close())

    if not actions:
        console.print("[green]No pending grades.[/green]")
        return

    table = Table(title=f"Pending Grades ({len(actions)})")
    table.add_column("Queued")
    table.add_column("Item")
    table.add_column("Grade", justify="right")
    table.add_column("Next interval", justify="right")
    for action in actions:
        table.add_row(
            _format_ms(action.timestamp),
            f"{action.item_type.value}:{action.item_id}",
            str(action.grade),
            f"{action.state.interval}d",
        )
    console.print(table)


@app.command()
def stats(
    user: Optional[str] = typer.Option(None, "--user", "-u", help="Learner id"),
) -> None:
    """Show review statistics from the local review log."""
    runtime = build_runtime()
    user_id = _user(user)
    user_stats = runtime.review_log.stats(user_id)
    pending_count = len(runtime.queue)
    last_sync = runtime.cache.get_last_sync_time()
    asyncio.run(runtime.close())

    table = Table(title="Review Statistics", show_header=False)
    table.add_column("Metric", style="cyan")
    table.add_column("Value", justify="right")
    table.add_row("Total reviews", str(user_stats.total_reviews))
    table.add_row("Correct", str(user_stats.correct))
    table.add_row("Incorrect", str(user_stats.incorrect))
    table.add_row("Accuracy", f"{user_stats.accuracy}%")
    table.add_row("Pending sync", str(pending_count))
    table.add_row("Last sync", _format_ms(last_sync))
    console.print(table)


@app.command()
def reset(
    confirm: bool = typer.Option(False, "--yes", "-y", help="Skip confirmation"),
) -> None:
    """Clear the local cache (pending grades are kept)."""
    msg = "This clears cached review state and items. Continue?"
    if not confirm and not Confirm.ask(msg, default=False):
        raise typer.Exit(0)

    runtime = build_runtime()
    runtime.storage.remove(STORAGE_KEYS["review_deck"])
    runtime.storage.remove(STORAGE_KEYS["items"])
    asyncio.run(runtime.close())
    console.print("[green]✓[/green] Local cache cleared")


# =============================================================================
# Entry Point
# =============================================================================


def main() -> None:
    """CLI entry point."""
    # Configure logging
    logger.remove()
    logger.add(
        sys.stderr,
        level=get_settings().log_level.upper(),
        format="<level>{message}</level>",
    )

    app()


run = main


if __name__ == "__main__":
    main()
