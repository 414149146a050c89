"""
CLI: ``jobspine outcomes`` - read and purge the outcome log.
"""

from __future__ import annotations

from datetime import timedelta

import typer

from jobspine.cli.utils import console, fail, get_engine, load_settings, output_json, print_table
from jobspine.core.errors import StorageUnavailable
from jobspine.core.timestamps import to_iso8601, utc_now
from jobspine.scheduling.outcome_log import SqlOutcomeLog

app = typer.Typer(no_args_is_help=True)


@app.command("list")
def list_outcomes(
    job: str | None = typer.Option(None, "--job", "-j", help="Only this job"),
    limit: int = typer.Option(20, "--limit", "-n", min=1),
    database: str | None = typer.Option(None, "--database", "-d"),
    json_out: bool = typer.Option(False, "--json"),
) -> None:
    """Show the most recent outcome entries."""
    engine = get_engine(database)
    try:
        entries = SqlOutcomeLog(engine).list(job_name=job, limit=limit)
    except StorageUnavailable as exc:
        fail(str(exc))
    finally:
        engine.dispose()

    if json_out:
        output_json(entries)
        return
    print_table(
        [
            {
                "attempted_at": to_iso8601(e.attempted_at),
                "job": e.job_name,
                "status": e.status.value,
                "duration_ms": round(e.result.duration_ms, 1),
                "instance": e.instance_id,
                "error": e.result.error,
            }
            for e in entries
        ],
        title="Outcomes",
    )


@app.command()
def purge(
    success_retention: int | None = typer.Option(
        None, "--success-retention", help="Seconds to keep successful outcomes"
    ),
    failure_retention: int | None = typer.Option(
        None, "--failure-retention", help="Seconds to keep failed outcomes"
    ),
    batch_size: int | None = typer.Option(None, "--batch-size", min=1),
    database: str | None = typer.Option(None, "--database", "-d"),
) -> None:
    """Delete outcome entries past their retention (defaults from settings)."""
    settings = load_settings(database)
    engine = get_engine(database)
    try:
        deleted = SqlOutcomeLog(engine).purge_expired(
            utc_now(),
            success_retention=timedelta(
                seconds=success_retention
                if success_retention is not None
                else settings.success_retention_seconds
            ),
            failure_retention=timedelta(
                seconds=failure_retention
                if failure_retention is not None
                else settings.failure_retention_seconds
            ),
            batch_size=batch_size or settings.cleanup_batch_size,
        )
    except StorageUnavailable as exc:
        fail(str(exc))
    finally:
        engine.dispose()

    console.print(f"Deleted [bold]{deleted}[/bold] outcome entr{'y' if deleted == 1 else 'ies'}")
