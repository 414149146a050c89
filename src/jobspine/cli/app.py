"""
Root Typer application for the jobspine CLI.
"""

from __future__ import annotations

import signal
import threading
from datetime import datetime

import typer
from typer import Typer

from jobspine import __version__
from jobspine.cli.db import app as db_app
from jobspine.cli.jobs import app as jobs_app
from jobspine.cli.outcomes import app as outcomes_app
from jobspine.cli.utils import console, fail, load_registry, load_settings, output_json
from jobspine.core.errors import ConfigurationError, InvalidScheduleExpression, StorageUnavailable
from jobspine.core.logging import configure_logging
from jobspine.core.timestamps import ensure_utc, to_iso8601, utc_now
from jobspine.scheduling import create_scheduler
from jobspine.scheduling.cron import CronSchedule

app = Typer(
    name="jobspine",
    help="jobspine - cron job scheduling with cross-replica advisory locks.",
    no_args_is_help=True,
    rich_markup_mode="rich",
)


# ── Version callback ─────────────────────────────────────────────────────


def _version_callback(value: bool) -> None:
    if value:
        typer.echo(f"jobspine {__version__}")
        raise typer.Exit()


@app.callback()
def main(
    version: bool | None = typer.Option(
        None,
        "--version",
        "-V",
        help="Show version and exit.",
        callback=_version_callback,
        is_eager=True,
    ),
) -> None:
    """jobspine CLI - validate schedules, inspect jobs and outcomes, run the scheduler."""


@app.command()
def version() -> None:
    """Show the installed version."""
    typer.echo(f"jobspine {__version__}")


@app.command()
def cron(
    expression: str = typer.Argument(..., help='Six-field cron, e.g. "0 */5 * * * *"'),
    count: int = typer.Option(5, "--count", "-n", min=1, max=100, help="Firings to show"),
    after: datetime | None = typer.Option(None, "--after", help="Start instant (UTC if naive)"),
    json_out: bool = typer.Option(False, "--json"),
) -> None:
    """Validate a cron expression and print its next firings."""
    try:
        schedule = CronSchedule.parse(expression)
    except InvalidScheduleExpression as exc:
        fail(exc.reason)

    start = ensure_utc(after) if after is not None else utc_now()
    firings = [to_iso8601(f) for f in schedule.upcoming(start, count)]

    if json_out:
        output_json({"expression": schedule.expression, "next": firings})
        return
    console.print(f"[green]Valid[/green]: {schedule.expression}")
    for firing in firings:
        console.print(f"  {firing}")


@app.command()
def run(
    target: str = typer.Option(..., "--app", "-a", help="module or module:attr holding the registry"),
    database: str | None = typer.Option(None, "--database", "-d", help="Database URL"),
    duration: float | None = typer.Option(
        None, "--duration", help="Stop after this many seconds instead of waiting for a signal"
    ),
) -> None:
    """Run the scheduler in the foreground until SIGINT/SIGTERM.

    Example::

        jobspine run --app myproject.jobs:registry
        JOBSPINE_DATABASE_URL=postgresql+psycopg://... jobspine run -a myproject.jobs
    """
    settings = load_settings(database)
    configure_logging(level=settings.log_level, json_format=settings.json_logs)
    registry = load_registry(target)

    try:
        scheduler = create_scheduler(settings, registry)
        scheduler.start()
    except (ConfigurationError, StorageUnavailable) as exc:
        fail(exc.message, code=2)

    stop_requested = threading.Event()

    def _request_stop(signum: int, _frame: object) -> None:
        stop_requested.set()

    previous = {
        sig: signal.signal(sig, _request_stop) for sig in (signal.SIGINT, signal.SIGTERM)
    }
    console.print(
        f"[bold green]jobspine running[/bold green] "
        f"(instance={scheduler.instance_id}, jobs={len(scheduler.jobs())})"
    )
    try:
        stop_requested.wait(timeout=duration)
    finally:
        for sig, handler in previous.items():
            signal.signal(sig, handler)
        scheduler.stop()
        scheduler.engine.dispose()

    console.print("[yellow]jobspine stopped[/yellow]")


# ── Sub-command registration ─────────────────────────────────────────────

app.add_typer(jobs_app, name="jobs", help="Registered jobs.")
app.add_typer(db_app, name="db", help="Database operations.")
app.add_typer(outcomes_app, name="outcomes", help="Outcome log.")
