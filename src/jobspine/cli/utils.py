"""
CLI utility helpers - settings, engine and job loading, output formatting.
"""

from __future__ import annotations

import importlib
import json
from dataclasses import asdict
from typing import Any, NoReturn

import typer
from rich.console import Console
from rich.table import Table
from sqlalchemy.engine import Engine

from jobspine.core.settings import SchedulerSettings
from jobspine.core.storage import create_storage_engine
from jobspine.scheduling.registry import JobRegistry, get_default_registry

console = Console()
err_console = Console(stderr=True)


# ── Settings / storage helpers ───────────────────────────────────────────


def load_settings(database: str | None = None) -> SchedulerSettings:
    """Read settings from the environment, optionally overriding the database URL."""
    settings = SchedulerSettings()
    if database:
        settings = settings.model_copy(update={"database_url": database})
    return settings


def get_engine(database: str | None = None) -> Engine:
    return create_storage_engine(load_settings(database).database_url)


def load_registry(target: str) -> JobRegistry:
    """Import ``module`` or ``module:attr`` and return its job registry.

    ``attr`` may name a ``JobRegistry`` or a zero-argument callable returning
    one. Without ``attr`` the module is imported for its ``@job`` decorators
    and the default registry is returned.
    """
    module_name, _, attr = target.partition(":")
    try:
        module = importlib.import_module(module_name)
    except ImportError as exc:
        fail(f"Cannot import {module_name!r}: {exc}")

    if not attr:
        return get_default_registry()

    try:
        obj = getattr(module, attr)
    except AttributeError:
        fail(f"Module {module_name!r} has no attribute {attr!r}")

    if callable(obj) and not isinstance(obj, JobRegistry):
        obj = obj()
    if not isinstance(obj, JobRegistry):
        fail(f"{target!r} is not a JobRegistry (got {type(obj).__name__})")
    return obj


def fail(message: str, code: int = 1) -> NoReturn:
    """Print an error and exit."""
    err_console.print(f"[bold red]Error[/bold red]: {message}")
    raise typer.Exit(code=code)


# ── Output helpers ───────────────────────────────────────────────────────


def _to_dict(obj: Any) -> dict[str, Any]:
    """Convert an object with ``to_dict`` / dataclass / dict to a plain dict."""
    if hasattr(obj, "to_dict"):
        return obj.to_dict()
    if hasattr(obj, "__dataclass_fields__"):
        return asdict(obj)
    if isinstance(obj, dict):
        return obj
    return {"value": str(obj)}


def output_json(data: Any) -> None:
    if isinstance(data, list | tuple):
        payload: Any = [_to_dict(d) for d in data]
    else:
        payload = _to_dict(data)
    console.print_json(json.dumps(payload, default=str))


def print_table(rows: list[dict[str, Any]], *, title: str = "") -> None:
    """Render a list of dicts as a Rich table."""
    if not rows:
        console.print("[dim]No items.[/dim]")
        return
    table = Table(title=title or None, show_lines=False, pad_edge=False)
    for col in rows[0]:
        table.add_column(col, overflow="fold")
    for row in rows:
        table.add_row(*("" if v is None else str(v) for v in row.values()))
    console.print(table)


def print_dict(data: dict[str, Any], *, title: str = "") -> None:
    """Render a single dict as key-value pairs."""
    if title:
        console.print(f"[bold]{title}[/bold]")
    for k, v in data.items():
        console.print(f"  [cyan]{k}[/cyan]: {v}")
