"""
CLI: ``jobspine jobs`` - inspect the jobs an application registers.
"""

from __future__ import annotations

import typer

from jobspine.cli.utils import load_registry, output_json, print_table
from jobspine.core.timestamps import to_iso8601, utc_now

app = typer.Typer(no_args_is_help=True)


@app.command("list")
def list_jobs(
    target: str = typer.Option(..., "--app", "-a", help="module or module:attr holding the registry"),
    json_out: bool = typer.Option(False, "--json"),
) -> None:
    """List registered jobs in evaluation order with their next firing."""
    registry = load_registry(target)
    now = utc_now()

    rows = []
    for definition in registry.all():
        row = definition.describe()
        row["next_run"] = to_iso8601(definition.schedule.next_after(now))
        rows.append(row)

    if json_out:
        output_json(rows)
        return
    print_table(
        [
            {
                "name": r["name"],
                "schedule": r["schedule"],
                "next_run": r["next_run"],
                "description": r["description"],
            }
            for r in rows
        ],
        title="Jobs",
    )
