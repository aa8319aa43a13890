"""
Typer CLI for the quizrank rating engine.

Commands:
    quizrank db init                 - Create database tables
    quizrank session start SUBJECT   - Start a quiz session
    quizrank session pause|resume|complete|abandon SESSION_ID
    quizrank session score SESSION_ID
    quizrank next SUBJECT SESSION_ID - Select the next item
    quizrank answer SUBJECT SESSION_ID ITEM_ID ANSWER
    quizrank ratings SUBJECT         - Overall and per-category ratings
    quizrank priorities SUBJECT      - Category practice priorities
    quizrank simulate                - Offline rating evolution simulation

Usage:
    quizrank --help
    quizrank session start alice --type diagnostic --max-items 20
    quizrank next alice 6f1c... --category fractions
    quizrank simulate --ability 650 --attempts 100 --seed 7
"""

from __future__ import annotations

import random
import sys
from pathlib import Path
from uuid import UUID

import typer
from loguru import logger
from rich import print as rprint
from rich.console import Console
from rich.table import Table

from config import get_settings
from quizrank import __version__
from quizrank.adaptive import (
    ConflictError,
    RatingEngine,
    RatingEngineError,
    RatingPolicy,
    simulate_learner,
)

app = typer.Typer(
    help="quizrank CLI: adaptive ELO ratings and difficulty-matched item selection",
    no_args_is_help=True,
)

console = Console()


def _engine() -> RatingEngine:
    return RatingEngine.from_settings(get_settings())


def _fail(exc: RatingEngineError) -> None:
    rprint(f"[red]✗[/red] {exc}")
    if exc.retryable:
        rprint("[dim]  The operation was rolled back and can be retried.[/dim]")
    raise typer.Exit(code=1)


# ========================================
# DATABASE COMMANDS
# ========================================

db_app = typer.Typer(help="Database management")
app.add_typer(db_app, name="db")


@db_app.command("init")
def db_init() -> None:
    """
    Create all tables from the SQLAlchemy models.

    Safe to run multiple times (idempotent).
    """
    from quizrank.db.database import init_db

    logger.info("Initializing database tables...")
    init_db()
    rprint("[green]✓[/green] Database initialized!")


# ========================================
# SESSION COMMANDS
# ========================================

session_app = typer.Typer(help="Quiz session lifecycle")
app.add_typer(session_app, name="session")


@session_app.command("start")
def session_start(
    subject_id: str = typer.Argument(..., help="Subject (learner) id"),
    session_type: str = typer.Option("practice", "--type", "-t", help="practice, diagnostic, timed or quick-test"),
    max_items: int = typer.Option(None, "--max-items", "-n", help="Maximum attempts in the session"),
) -> None:
    """Start a new quiz session."""
    try:
        quiz_session = _engine().sessions.create_session(subject_id, session_type, max_items)
    except RatingEngineError as exc:
        _fail(exc)
    rprint(f"[green]✓[/green] Started {session_type} session [bold]{quiz_session.id}[/bold]")


def _transition(action: str, session_id: UUID, subject_id: str | None) -> None:
    try:
        quiz_session = getattr(_engine().sessions, action)(session_id, subject_id)
    except RatingEngineError as exc:
        _fail(exc)
    rprint(f"[green]✓[/green] Session {quiz_session.id} is now [bold]{quiz_session.status}[/bold]")


@session_app.command("pause")
def session_pause(
    session_id: UUID = typer.Argument(..., help="Session id"),
    subject_id: str = typer.Option(None, "--subject", "-s", help="Require this owner"),
) -> None:
    """Pause an active session."""
    _transition("pause", session_id, subject_id)


@session_app.command("resume")
def session_resume(
    session_id: UUID = typer.Argument(..., help="Session id"),
    subject_id: str = typer.Option(None, "--subject", "-s", help="Require this owner"),
) -> None:
    """Resume a paused session."""
    _transition("resume", session_id, subject_id)


@session_app.command("complete")
def session_complete(
    session_id: UUID = typer.Argument(..., help="Session id"),
    subject_id: str = typer.Option(None, "--subject", "-s", help="Require this owner"),
) -> None:
    """Complete a session."""
    _transition("complete", session_id, subject_id)


@session_app.command("abandon")
def session_abandon(
    session_id: UUID = typer.Argument(..., help="Session id"),
    subject_id: str = typer.Option(None, "--subject", "-s", help="Require this owner"),
) -> None:
    """Abandon a session."""
    _transition("abandon", session_id, subject_id)


@session_app.command("score")
def session_score(session_id: UUID = typer.Argument(..., help="Session id")) -> None:
    """Show a session's score."""
    try:
        score = _engine().sessions.session_score(session_id)
    except RatingEngineError as exc:
        _fail(exc)

    table = Table(title=f"Session {session_id}")
    table.add_column("Metric", style="cyan")
    table.add_column("Value", style="green")
    table.add_row("Status", score.status)
    table.add_row("Attempts", str(score.total_attempts))
    table.add_row("Correct", str(score.correct_attempts))
    table.add_row("Score", f"{score.percentage:.1f}%")
    table.add_row("Rating change", f"{score.rating_change:+d}")
    table.add_row("Active time", f"{score.elapsed_seconds}s")
    console.print(table)


# ========================================
# PRACTICE COMMANDS
# ========================================


@app.command("next")
def next_item(
    subject_id: str = typer.Argument(..., help="Subject (learner) id"),
    session_id: UUID = typer.Argument(..., help="Active session id"),
    category: str = typer.Option(None, "--category", "-c", help="Target category (id or slug)"),
    strict: bool = typer.Option(False, "--strict", help="Do not relax the difficulty band"),
) -> None:
    """Select the next item for a subject."""
    try:
        candidate = _engine().select_next(subject_id, session_id, category, relax=not strict)
    except RatingEngineError as exc:
        _fail(exc)

    if candidate is None:
        rprint("[yellow]⚠[/yellow] No item available for this session")
        return

    rprint(f"[bold]{candidate.prompt}[/bold]")
    rprint(f"  Item:        {candidate.item_id}")
    rprint(f"  Difficulty:  {candidate.difficulty} (your rating {candidate.subject_rating})")
    rprint(f"  Expected:    {candidate.expected_score:.0%}")
    rprint(f"  Reliability: {candidate.item_reliability:.0%}")
    if candidate.queue_priority:
        rprint(f"  [yellow]Review item[/yellow] (missed before, priority {candidate.queue_priority})")


@app.command("answer")
def answer_item(
    subject_id: str = typer.Argument(..., help="Subject (learner) id"),
    session_id: UUID = typer.Argument(..., help="Active session id"),
    item_id: UUID = typer.Argument(..., help="Item being answered"),
    answer: str = typer.Argument(..., help="Submitted answer"),
    time_spent: int = typer.Option(0, "--time", help="Seconds spent on the item"),
) -> None:
    """Record an answer and show the rating changes."""
    try:
        outcome = _engine().record_attempt(session_id, item_id, subject_id, answer, time_spent)
    except ConflictError:
        rprint("[yellow]⚠[/yellow] Item already answered in this session")
        raise typer.Exit(code=1)
    except RatingEngineError as exc:
        _fail(exc)

    if outcome.is_correct:
        rprint("[green]✓ Correct![/green]")
    else:
        rprint(f"[red]✗ Incorrect.[/red] Correct answer: [bold]{outcome.correct_answer}[/bold]")
    if outcome.explanation:
        rprint(f"[dim]{outcome.explanation}[/dim]")
    rprint(f"[dim]Answered correctly by {outcome.item_accuracy:.0%} of attempts so far[/dim]")

    table = Table(title="Rating changes")
    table.add_column("Rating", style="cyan")
    table.add_column("Before", justify="right")
    table.add_column("After", justify="right")
    table.add_column("Change", justify="right")
    for name, change in outcome.deltas.items():
        color = "green" if change.delta > 0 else "red" if change.delta < 0 else "white"
        table.add_row(name, str(change.before), str(change.after), f"[{color}]{change.delta:+d}[/{color}]")
    console.print(table)


# ========================================
# REPORT COMMANDS
# ========================================


@app.command("ratings")
def show_ratings(subject_id: str = typer.Argument(..., help="Subject (learner) id")) -> None:
    """Show overall and per-category ratings."""
    engine = _engine()
    try:
        summary = engine.performance_summary(subject_id)
        categories = engine.list_category_ratings(subject_id)
    except RatingEngineError as exc:
        _fail(exc)

    rprint(
        f"[bold]{subject_id}[/bold]: overall [cyan]{summary.overall_rating}[/cyan] "
        f"({summary.total_attempts} attempts, {summary.success_rate:.0%} correct, "
        f"streak {summary.current_streak}, best {summary.best_rating})"
    )
    rprint(f"Rating confidence: {summary.confidence:.0%}")

    table = Table(title="Category ratings")
    table.add_column("Category", style="cyan")
    table.add_column("Rating", justify="right", style="green")
    table.add_column("Level")
    table.add_column("Attempts", justify="right")
    table.add_column("Success", justify="right")
    for c in categories:
        table.add_row(c.name, str(c.rating), c.difficulty_level, str(c.attempts), f"{c.success_rate:.0%}")
    console.print(table)


@app.command("priorities")
def show_priorities(subject_id: str = typer.Argument(..., help="Subject (learner) id")) -> None:
    """Show category practice priorities, highest first."""
    try:
        priorities = _engine().category_priorities(subject_id)
    except RatingEngineError as exc:
        _fail(exc)

    table = Table(title=f"Practice priorities for {subject_id}")
    table.add_column("Category", style="cyan")
    table.add_column("Rating", justify="right")
    table.add_column("Items", justify="right")
    table.add_column("Priority", justify="right", style="green")
    table.add_column("Recommendation")
    for p in priorities:
        table.add_row(p.name, str(p.rating), str(p.available_items), f"{p.priority:.2f}", p.recommended_action)
    console.print(table)


@app.command("simulate")
def simulate(
    ability: float = typer.Option(650, "--ability", "-a", help="True ability of the synthetic learner"),
    attempts: int = typer.Option(100, "--attempts", "-n", help="Number of answered items"),
    items: int = typer.Option(60, "--items", help="Size of the simulated item bank"),
    seed: int = typer.Option(None, "--seed", help="Random seed for a reproducible run"),
) -> None:
    """Simulate how a learner's rating converges (no database needed)."""
    settings = get_settings()
    policy = RatingPolicy.from_settings(settings)
    rng = random.Random(seed)
    bank = [rng.uniform(policy.rating_floor, policy.rating_ceiling) for _ in range(items)]

    try:
        result = simulate_learner(ability, bank, attempts, rng=rng, policy=policy)
    except RatingEngineError as exc:
        _fail(exc)

    table = Table(title=f"Simulated learner (true ability {ability:.0f})")
    table.add_column("Attempt", justify="right", style="cyan")
    table.add_column("Rating", justify="right", style="green")
    checkpoints = sorted({0, *range(10, attempts + 1, 10), attempts})
    for n in checkpoints:
        table.add_row(str(n), str(result.trajectory[n]))
    console.print(table)
    rprint(f"Final rating {result.final_rating}, error {result.error:.0f}, accuracy {result.accuracy:.0%}")


@app.command("version")
def show_version() -> None:
    """Show version information."""
    rprint(f"[bold]quizrank[/bold] v{__version__}")


def _configure_logging() -> None:
    settings = get_settings()
    logger.remove()
    logger.add(
        sys.stderr,
        level="WARNING" if settings.log_level == "INFO" else settings.log_level,
        format="<level>{message}</level>",
    )
    if settings.log_file:
        Path(settings.log_file).parent.mkdir(parents=True, exist_ok=True)
        logger.add(settings.log_file, level=settings.log_level, rotation="10 MB", retention=5)


def main() -> None:
    """CLI entry point."""
    _configure_logging()
    app()


if __name__ == "__main__":
    main()
