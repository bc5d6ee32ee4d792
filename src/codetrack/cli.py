"""Command-line interface for CodeTrack."""

from __future__ import annotations

import logging
from pathlib import Path
from typing import NoReturn, Optional

import typer

from .config import Settings
from .db import SqliteRepository
from .errors import CodeTrackError
from .formatting import format_duration
from .paths import get_db_path
from .provisioning import ensure_user
from .reporting import Period, SummaryPrinter
from .store import ActivityStore, duration_from_parts

app = typer.Typer(help="Track time spent on courses and projects.")


@app.callback(no_args_is_help=True)
def main(verbose: bool = typer.Option(False, "--verbose", "-v", help="Enable verbose logs.")) -> None:
    logging.basicConfig(
        level=logging.DEBUG if verbose else logging.INFO,
        format="%(asctime)s %(levelname)s %(name)s %(message)s",
    )


def _open_store(user: str, db_path: Optional[Path]) -> ActivityStore:
    try:
        repository = SqliteRepository(db_path or get_db_path())
        store = ActivityStore(repository, ensure_user(repository, user))
        store.load()
    except CodeTrackError as exc:
        _fail(exc)
    return store


def _fail(exc: CodeTrackError) -> NoReturn:
    typer.echo(f"Error: {exc}", err=True)
    raise typer.Exit(code=1) from exc


@app.command()
def web(
    host: str = typer.Option("127.0.0.1", "--host", help="Interface to bind the dashboard."),
    port: int = typer.Option(
        8765, "--port", min=1, max=65535, help="TCP port for the dashboard."
    ),
    db_path: Optional[Path] = typer.Option(
        None, "--db", path_type=Path, help="Location of the CodeTrack SQLite database."
    ),
    refresh_minutes: float = typer.Option(
        5.0,
        "--refresh-minutes",
        min=0.1,
        help="How often loaded workspaces re-sync from the database.",
    ),
    open_browser: bool = typer.Option(
        True,
        "--open-browser/--no-open-browser",
        help="Automatically launch the dashboard in your default browser.",
    ),
) -> None:
    """Start the dashboard API server."""
    from .server_runner import run_dashboard

    run_dashboard(
        host=host,
        port=port,
        db_path=db_path or get_db_path(),
        settings=Settings.from_intervals(refresh_minutes=refresh_minutes),
        open_browser=open_browser,
    )


@app.command()
def summary(
    user: str = typer.Option(..., "--user", help="External user id to report on."),
    db_path: Optional[Path] = typer.Option(
        None, "--db", path_type=Path, help="Location of the CodeTrack SQLite database."
    ),
) -> None:
    """Print totals per course and project plus the last 7 days."""
    SummaryPrinter(_open_store(user, db_path)).print_summary()


@app.command()
def chart(
    user: str = typer.Option(..., "--user", help="External user id to report on."),
    period: Period = typer.Option(Period.DAY, "--period", help="Bucket size."),
    db_path: Optional[Path] = typer.Option(
        None, "--db", path_type=Path, help="Location of the CodeTrack SQLite database."
    ),
) -> None:
    """Print hours per activity for each chart bucket."""
    SummaryPrinter(_open_store(user, db_path)).print_chart(period)


@app.command()
def log(
    user: str = typer.Option(..., "--user", help="External user id."),
    activity_id: int = typer.Option(..., "--activity", help="Activity to log time against."),
    hours: int = typer.Option(0, "--hours", min=0),
    minutes: int = typer.Option(0, "--minutes", min=0),
    notes: str = typer.Option("", "--notes", help="What you worked on."),
    db_path: Optional[Path] = typer.Option(
        None, "--db", path_type=Path, help="Location of the CodeTrack SQLite database."
    ),
) -> None:
    """Record time already spent on an activity."""
    store = _open_store(user, db_path)
    try:
        duration = duration_from_parts(hours, minutes)
        store.record_session(activity_id, duration, notes=notes)
    except CodeTrackError as exc:
        _fail(exc)
    activity = store.get_activity(activity_id)
    typer.echo(
        f"Logged {format_duration(duration)} for {activity.title} "
        f"(total {activity.total_time})"
    )
