"""
CLI: ``jobspine db`` - storage management commands.
"""

from __future__ import annotations

import typer

from jobspine.cli.utils import console, fail, get_engine
from jobspine.core.errors import StorageUnavailable
from jobspine.core.storage import JobSpineBase, create_schema

app = typer.Typer(no_args_is_help=True)


@app.command()
def init(
    database: str | None = typer.Option(None, "--database", "-d", help="Database URL"),
) -> None:
    """Create the jobspine tables if they do not exist."""
    engine = get_engine(database)
    try:
        create_schema(engine)
    except StorageUnavailable as exc:
        fail(str(exc))
    finally:
        engine.dispose()

    tables = ", ".join(sorted(JobSpineBase.metadata.tables))
    console.print(f"[green]Schema ready[/green] ({tables})")
