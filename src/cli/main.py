"""
Typer CLI for stitchstream.

Commands:
    stitchstream simulate          - Run a simulated learner through several rotations
    stitchstream drill             - Answer questions interactively in the terminal
    stitchstream curriculum        - Show the concepts of each track
    stitchstream levels            - Show the boundary level ladder
    stitchstream facts seed        - Write the arithmetic catalogue to the database
    stitchstream facts show ID     - Show one fact computed from its id
    stitchstream info              - Show configuration
    stitchstream serve             - Run the API server

Usage:
    stitchstream --help
    stitchstream simulate --rotations 6 --accuracy 0.8 --seed 7
    stitchstream facts seed --database-url sqlite:///./facts.db
"""

from __future__ import annotations

import asyncio
import random
import time

import typer
from rich import print as rprint
from rich.console import Console
from rich.panel import Panel
from rich.prompt import Prompt
from rich.table import Table

from config import get_settings
from src.content.curriculum import default_curriculum
from src.core.errors import InvalidFactId, StitchStreamError
from src.core.logging_setup import configure_logging
from src.core.models import TRACK_IDS, UnitStatus
from src.delivery.engine import LearningEngine, create_learning_engine
from src.mastery.controller import BOUNDARY_LEVELS
from src.mastery.persistence import InMemoryMasteryPersistence

app = typer.Typer(
    help="stitchstream CLI: buffered arithmetic practice over three rotating tracks",
    no_args_is_help=True,
)
console = Console()


@app.callback()
def main_callback(
    verbose: bool = typer.Option(False, "--verbose", "-v", help="Show engine logs"),
) -> None:
    """Configure logging before any command runs."""
    settings = get_settings()
    configure_logging("DEBUG" if verbose else "WARNING", settings.log_file)


def _fail(error: StitchStreamError) -> None:
    rprint(f"[red]✗[/red] {error.code}: {error.message}")
    raise typer.Exit(code=1)


def _print_status(engine: LearningEngine, user_id: str) -> None:
    status = engine.status(user_id)
    table = Table(title=f"Pipeline for {user_id} (rotation {status.rotation_count})")
    table.add_column("Track", style="cyan")
    for slot in ("live", "ready", "preparing"):
        table.add_column(slot.upper())

    for track_id, slots in status.slots.items():
        marker = " ◀" if track_id == status.active_track else ""
        cells = []
        for slot in ("live", "ready", "preparing"):
            info = slots[slot]
            if info is None:
                cells.append("[dim]empty[/dim]")
            else:
                colour = {"loaded": "green", "loading": "yellow", "error": "red"}[info["status"]]
                cells.append(f"[{colour}]{info['unit_id']}[/{colour}]")
        table.add_row(f"{track_id}{marker}", *cells)

    console.print(table)
    stats = status.scheduler
    rprint(
        f"  prefetch: executed={stats.executed} retried={stats.retried} "
        f"dropped={stats.dropped} queued={stats.queued}"
    )


# ========================================
# Simulation
# ========================================


@app.command("simulate")
def simulate(
    user_id: str = typer.Option("sim-user", "--user", "-u", help="Learner id"),
    rotations: int = typer.Option(6, "--rotations", "-r", min=1, help="Sessions to complete"),
    accuracy: float = typer.Option(0.8, "--accuracy", "-a", min=0.0, max=1.0, help="Chance of a correct answer"),
    latency_ms: int = typer.Option(1500, "--latency-ms", min=0, help="Mean response time"),
    seed: int | None = typer.Option(None, "--seed", help="Random seed for answers and distractors"),
) -> None:
    """
    Simulate a learner: answer every LIVE question, then complete the session.

    The prefetch queue is drained between sessions, as the background loop
    would do while the learner is busy.
    """
    rng = random.Random(seed)
    persistence = InMemoryMasteryPersistence()

    async def run_simulation() -> None:
        engine = create_learning_engine(
            get_settings(), persistence=persistence, rng=random.Random(seed)
        )
        await engine.initialize_for_user(user_id)
        await engine.scheduler.drain()

        for _ in range(rotations):
            unit = engine.get_live_unit(user_id)
            correct_count = 0
            for question in unit.questions:
                correct = rng.random() < accuracy
                latency = max(0.0, rng.gauss(latency_ms, latency_ms / 4))
                engine.on_answered(user_id, question.id, correct, latency)
                correct_count += int(correct)
            rprint(
                f"[cyan]track {unit.track_id}[/cyan] {unit.id}: "
                f"{correct_count}/{unit.question_count} correct"
            )

            outcome = await engine.complete_session(user_id)
            moved = outcome.reposition
            if moved is not None and moved.perfect:
                rprint(f"  [green]✓[/green] perfect: {moved.concept_key} skips {moved.skip_number}")
            if outcome.promotion_deferred:
                rprint(f"[yellow]⏳[/yellow] track {outcome.event.previous_track} still preparing")
            await engine.scheduler.drain()

        _print_status(engine, user_id)
        histogram = engine.mastery.level_histogram(user_id)
        rprint(
            "  boundary levels: "
            + ", ".join(f"L{level}={count}" for level, count in histogram.items())
        )
        rprint(f"  saved levels: {len(persistence.load_levels(user_id))}")

    try:
        asyncio.run(run_simulation())
    except StitchStreamError as e:
        _fail(e)


# ========================================
# Interactive drill
# ========================================


@app.command("drill")
def drill(
    user_id: str = typer.Option("learner", "--user", "-u", help="Learner id"),
    sessions: int = typer.Option(3, "--sessions", "-s", min=1, help="Units to work through"),
    seed: int | None = typer.Option(None, "--seed", help="Random seed for distractors"),
) -> None:
    """Answer questions in the terminal; type q to stop."""
    rng = random.Random(seed)

    async def run_drill() -> None:
        engine = create_learning_engine(get_settings(), rng=random.Random(seed))
        await engine.initialize_for_user(user_id)
        engine.start()
        try:
            for _ in range(sessions):
                unit = engine.get_live_unit(user_id)
                console.print(Panel(f"Track {unit.track_id} · {unit.id}", style="cyan"))
                while (question := engine.current_question(user_id)) is not None:
                    choices = [question.correct_answer, question.distractor]
                    rng.shuffle(choices)
                    started = time.monotonic()
                    answer = await asyncio.to_thread(
                        Prompt.ask, f"{question.text} = ?", choices=[*choices, "q"]
                    )
                    if answer == "q":
                        return
                    latency = (time.monotonic() - started) * 1000
                    outcome = engine.on_answered(
                        user_id, question.id, answer == question.correct_answer, latency
                    )
                    mark = "[green]✓[/green]" if outcome.correct else "[red]✗[/red]"
                    rprint(f"  {mark} level {outcome.previous_level} → {outcome.new_level}")

                rotation = await engine.complete_session(user_id)
                moved = rotation.reposition
                if moved is not None:
                    rprint(
                        f"  {moved.correct_count}/{moved.total_count} correct · "
                        f"{moved.concept_key} now at position {moved.new_position}"
                    )
                if rotation.emergency_load:
                    rprint("[yellow]⏳[/yellow] Preparing the next unit...")
                while (live := engine.get_live_unit(user_id)).status is UnitStatus.LOADING:
                    await asyncio.sleep(0.05)
                if live.status is UnitStatus.ERROR:
                    rprint(f"[red]✗[/red] {live.id} could not be prepared: {live.error}")
                    return
        finally:
            await engine.shutdown()

    try:
        asyncio.run(run_drill())
    except StitchStreamError as e:
        _fail(e)


# ========================================
# Curriculum & Levels
# ========================================


@app.command("curriculum")
def show_curriculum(
    track: int | None = typer.Option(None, "--track", "-t", help="Only this track"),
) -> None:
    """Show the concepts of each track in teaching order."""
    curriculum = default_curriculum()
    tracks = [track] if track else list(TRACK_IDS)
    for track_id in tracks:
        concepts = curriculum.track(track_id)
        if not concepts:
            rprint(f"[yellow]⚠[/yellow] Track {track_id} has no concepts")
            continue
        table = Table(title=f"Track {track_id} ({len(concepts)} concepts)")
        table.add_column("Code", style="cyan")
        table.add_column("Name")
        table.add_column("Type", style="green")
        table.add_column("Requires", style="dim")
        for concept in concepts:
            table.add_row(
                concept.code,
                concept.name,
                concept.concept_type,
                ", ".join(concept.prerequisites) or "-",
            )
        console.print(table)


@app.command("levels")
def show_levels() -> None:
    """Show the boundary level ladder and fast-answer thresholds."""
    thresholds = get_settings().get_fast_thresholds()
    table = Table(title="Boundary Levels")
    table.add_column("Level", style="cyan")
    table.add_column("Name", style="green")
    table.add_column("Distractor")
    table.add_column("Fast below", justify="right")
    for level, info in BOUNDARY_LEVELS.items():
        table.add_row(str(level), info.name, info.description, f"{thresholds[level]} ms")
    console.print(table)


# ========================================
# Facts
# ========================================

facts_app = typer.Typer(help="Fact catalogue management")
app.add_typer(facts_app, name="facts")


@facts_app.command("seed")
def facts_seed(
    database_url: str | None = typer.Option(None, "--database-url", help="Override DATABASE_URL"),
) -> None:
    """
    Write the standard arithmetic catalogue to the facts table.

    Creates tables if needed. Safe to run multiple times (idempotent).
    """
    from src.db.database import build_engine, get_session_factory, init_db
    from src.facts.fact_store import build_arithmetic_catalogue
    from src.facts.sql_store import SqlFactStore

    url = database_url or get_settings().database_url
    db_engine = build_engine(url)
    init_db(db_engine)
    store = SqlFactStore(get_session_factory(db_engine))
    written = store.upsert_many(build_arithmetic_catalogue())
    rprint(f"[green]✓[/green] Seeded {written} facts ({store.count()} in table)")
    db_engine.dispose()


@facts_app.command("show")
def facts_show(fact_id: str = typer.Argument(..., help="Canonical id, e.g. mult-7-4")) -> None:
    """Show one fact computed from its id."""
    from src.content.assembler import render_text
    from src.facts.fact_store import fact_from_id

    try:
        fact = fact_from_id(fact_id)
    except InvalidFactId as e:
        _fail(e)
        return
    rprint(f"[bold]{render_text(fact)}[/bold] = {fact.result}")
    rprint(f"  difficulty {fact.difficulty:.2f} · tags: {', '.join(fact.tags)}")


# ========================================
# Info & Server
# ========================================


@app.command("info")
def show_info() -> None:
    """Show configuration."""
    settings = get_settings()

    table = Table(title="stitchstream Configuration")
    table.add_column("Setting", style="cyan")
    table.add_column("Value", style="green")

    table.add_row("Database URL", settings.database_url)
    table.add_row("Fact API", settings.fact_api_url or "computed from ids")
    table.add_row("Unit size", str(settings.unit_size))
    for key, value in settings.get_prefetch_config().items():
        table.add_row(f"Prefetch {key}", str(value))
    table.add_row("Log Level", settings.log_level)

    console.print(table)


@app.command("serve")
def serve(
    host: str | None = typer.Option(None, "--host", help="Override API_HOST"),
    port: int | None = typer.Option(None, "--port", help="Override API_PORT"),
) -> None:
    """Run the API server with uvicorn."""
    import uvicorn

    settings = get_settings()
    uvicorn.run(
        "src.api.main:app",
        host=host or settings.api_host,
        port=port or settings.api_port,
        log_level=settings.log_level.lower(),
    )


def run() -> None:
    """Entry point for the CLI."""
    app()


if __name__ == "__main__":
    run()
