"""SQLAlchemy engine factory, outcome table and storage error translation.

Manifesto:
    The scheduler needs exactly two things from storage: a session-scoped
    advisory lock primitive and an append path for outcome entries. Both go
    through one SQLAlchemy ``Engine`` so the same code runs on PostgreSQL in
    production and SQLite in tests. Driver exceptions never leak past this
    layer; they become ``StorageUnavailable``.

This module provides:

* ``create_storage_engine`` -- Create a SA engine from a URL with sane defaults.
* ``JobSpineBase``          -- Declarative base for jobspine tables.
* ``JobOutcomeTable``       -- The append-only ``core_job_outcomes`` table.
* ``create_schema``         -- Create missing tables (migrations are external).
* ``storage_errors``        -- Context manager translating SA errors.

Tags:
    jobspine, storage, sqlalchemy, engine, outcome-log, schema

Doc-Types:
    api-reference
"""

from __future__ import annotations

import datetime
from collections.abc import Iterator
from contextlib import contextmanager
from typing import Any

from sqlalchemy import JSON, Boolean, DateTime, Float, Index, Text, event
from sqlalchemy import create_engine as _sa_create_engine
from sqlalchemy.engine import Engine
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column
from sqlalchemy.pool import StaticPool

from jobspine.core.errors import StorageUnavailable

_MEMORY_URLS = {"sqlite://", "sqlite:///:memory:"}


def create_storage_engine(
    url: str = "sqlite:///jobspine.db",
    *,
    echo: bool = False,
    pool_size: int | None = None,
    max_overflow: int | None = None,
    pool_timeout: int | None = None,
    **kwargs: Any,
) -> Engine:
    """Create a SQLAlchemy engine with sane defaults.

    Parameters
    ----------
    url:
        Database URL (``sqlite:///…``, ``postgresql+psycopg://…``, etc.)
    echo:
        If ``True``, log all SQL.
    pool_size, max_overflow, pool_timeout:
        Connection pool parameters (ignored for in-memory SQLite). Each held advisory
        lock pins one pooled connection for the duration of the job, so
        ``pool_size + max_overflow`` should exceed the number of jobs that
        can run at once.
    **kwargs:
        Extra arguments forwarded to ``sqlalchemy.create_engine``.
    """
    pool_kwargs: dict[str, Any] = {}
    if pool_size is not None:
        pool_kwargs["pool_size"] = pool_size
    if max_overflow is not None:
        pool_kwargs["max_overflow"] = max_overflow
    if pool_timeout is not None:
        pool_kwargs["pool_timeout"] = pool_timeout

    if url.startswith("sqlite"):
        kwargs.setdefault("connect_args", {"check_same_thread": False})
        if url in _MEMORY_URLS:
            # One shared in-memory database for every thread
            kwargs.setdefault("poolclass", StaticPool)
            return _sa_create_engine(url, echo=echo, **kwargs)

        engine = _sa_create_engine(url, echo=echo, **pool_kwargs, **kwargs)

        @event.listens_for(engine, "connect")
        def _set_sqlite_pragma(dbapi_connection: Any, _rec: Any) -> None:
            cursor = dbapi_connection.cursor()
            cursor.execute("PRAGMA journal_mode=WAL")
            cursor.execute("PRAGMA busy_timeout=5000")
            cursor.close()

        return engine

    pool_kwargs.setdefault("pool_pre_ping", True)
    return _sa_create_engine(url, echo=echo, **pool_kwargs, **kwargs)


class JobSpineBase(DeclarativeBase):
    """Shared declarative base for jobspine tables."""


class JobOutcomeTable(JobSpineBase):
    """One row per execution attempt. Rows are never updated."""

    __tablename__ = "core_job_outcomes"

    id: Mapped[str] = mapped_column(Text, primary_key=True)
    job_name: Mapped[str] = mapped_column(Text, nullable=False)
    status: Mapped[str] = mapped_column(Text, nullable=False)
    error: Mapped[str | None] = mapped_column(Text)
    error_type: Mapped[str | None] = mapped_column(Text)
    retryable: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    payload: Mapped[dict | None] = mapped_column(JSON)
    attempted_at: Mapped[datetime.datetime] = mapped_column(DateTime(timezone=True), nullable=False)
    started_at: Mapped[datetime.datetime] = mapped_column(DateTime(timezone=True), nullable=False)
    finished_at: Mapped[datetime.datetime] = mapped_column(DateTime(timezone=True), nullable=False)
    duration_ms: Mapped[float] = mapped_column(Float, nullable=False)
    instance_id: Mapped[str | None] = mapped_column(Text)

    __table_args__ = (
        Index("ix_core_job_outcomes_job_attempted", "job_name", "attempted_at"),
        Index("ix_core_job_outcomes_status_finished", "status", "finished_at"),
    )


def create_schema(engine: Engine) -> None:
    """Create the jobspine tables if they do not exist."""
    with storage_errors("create schema"):
        JobSpineBase.metadata.create_all(engine)


@contextmanager
def storage_errors(operation: str) -> Iterator[None]:
    """Translate SQLAlchemy/driver errors into ``StorageUnavailable``.

    Example:
        with storage_errors("append outcome"):
            conn.execute(stmt)
    """
    try:
        yield
    except SQLAlchemyError as exc:
        raise StorageUnavailable(f"Storage error during {operation}", cause=exc) from exc
