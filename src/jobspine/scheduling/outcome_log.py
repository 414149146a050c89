"""Outcome log - append-only record of execution attempts.

Manifesto:
    Every attempt that acquired its lock leaves exactly one entry, success
    or failure. Entries are never updated; the only other write is the
    retention purge that deletes entries past their retention period.

Two implementations share the ``OutcomeLog`` protocol:

* ``SqlOutcomeLog``    -- ``core_job_outcomes`` via SQLAlchemy Core
* ``MemoryOutcomeLog`` -- list-backed, for tests and embedded use

Tags:
    jobspine, scheduling, outcome-log, append-only, sqlalchemy, retention

Doc-Types:
    api-reference
"""

from __future__ import annotations

import threading
from datetime import datetime, timedelta
from typing import Any, Protocol, runtime_checkable

from sqlalchemy import and_, delete, func, insert, or_, select
from sqlalchemy.engine import Engine

from jobspine.core.storage import JobOutcomeTable, storage_errors
from jobspine.core.timestamps import ensure_utc
from jobspine.scheduling.result import JobResult, JobStatus, OutcomeEntry

_outcomes = JobOutcomeTable.__table__


@runtime_checkable
class OutcomeLog(Protocol):
    """Append-only outcome storage."""

    def append(self, entry: OutcomeEntry) -> None: ...

    def list(self, job_name: str | None = None, limit: int = 100) -> list[OutcomeEntry]: ...

    def count(self, job_name: str | None = None, status: JobStatus | None = None) -> int: ...

    def purge_expired(
        self,
        now: datetime,
        *,
        success_retention: timedelta,
        failure_retention: timedelta,
        batch_size: int = 1000,
    ) -> int: ...


def _row_values(entry: OutcomeEntry) -> dict[str, Any]:
    result = entry.result
    return {
        "id": entry.id,
        "job_name": entry.job_name,
        "status": result.status.value,
        "error": result.error,
        "error_type": result.error_type,
        "retryable": result.retryable,
        "payload": dict(result.payload) if result.payload is not None else None,
        "attempted_at": ensure_utc(entry.attempted_at),
        "started_at": ensure_utc(result.started_at),
        "finished_at": ensure_utc(result.finished_at),
        "duration_ms": result.duration_ms,
        "instance_id": entry.instance_id,
    }


def _entry_from_row(row: Any) -> OutcomeEntry:
    result = JobResult(
        status=JobStatus(row.status),
        started_at=ensure_utc(row.started_at),
        finished_at=ensure_utc(row.finished_at),
        error=row.error,
        error_type=row.error_type,
        retryable=bool(row.retryable),
        payload=row.payload,
    )
    return OutcomeEntry(
        id=row.id,
        job_name=row.job_name,
        result=result,
        attempted_at=ensure_utc(row.attempted_at),
        instance_id=row.instance_id,
    )


class SqlOutcomeLog:
    """Outcome log stored in the ``core_job_outcomes`` table.

    Writes are serialized per instance; workers finish at arbitrary times and
    SQLite allows one writer at a time.
    """

    def __init__(self, engine: Engine):
        self.engine = engine
        self._write_lock = threading.Lock()

    def append(self, entry: OutcomeEntry) -> None:
        with self._write_lock, storage_errors("append outcome"):
            with self.engine.begin() as conn:
                conn.execute(insert(_outcomes).values(**_row_values(entry)))

    def list(self, job_name: str | None = None, limit: int = 100) -> list[OutcomeEntry]:
        """Most recent entries first."""
        stmt = select(_outcomes)
        if job_name is not None:
            stmt = stmt.where(_outcomes.c.job_name == job_name)
        stmt = stmt.order_by(_outcomes.c.attempted_at.desc(), _outcomes.c.id.desc()).limit(limit)
        with storage_errors("list outcomes"), self.engine.connect() as conn:
            rows = conn.execute(stmt).all()
        return [_entry_from_row(row) for row in rows]

    def count(self, job_name: str | None = None, status: JobStatus | None = None) -> int:
        stmt = select(func.count()).select_from(_outcomes)
        if job_name is not None:
            stmt = stmt.where(_outcomes.c.job_name == job_name)
        if status is not None:
            stmt = stmt.where(_outcomes.c.status == status.value)
        with storage_errors("count outcomes"), self.engine.connect() as conn:
            return int(conn.execute(stmt).scalar_one())

    def purge_expired(
        self,
        now: datetime,
        *,
        success_retention: timedelta,
        failure_retention: timedelta,
        batch_size: int = 1000,
    ) -> int:
        """Delete entries finished before their status' retention cutoff.

        Deletes at most ``batch_size`` rows per statement so a large backlog
        never holds one long write transaction. Returns the number removed.
        """
        now = ensure_utc(now)
        expired = or_(
            and_(
                _outcomes.c.status == JobStatus.SUCCESS.value,
                _outcomes.c.finished_at < now - success_retention,
            ),
            and_(
                _outcomes.c.status == JobStatus.FAILURE.value,
                _outcomes.c.finished_at < now - failure_retention,
            ),
        )
        total = 0
        while True:
            with self._write_lock, storage_errors("purge outcomes"):
                with self.engine.begin() as conn:
                    ids = conn.execute(
                        select(_outcomes.c.id).where(expired).limit(batch_size)
                    ).scalars().all()
                    if ids:
                        conn.execute(delete(_outcomes).where(_outcomes.c.id.in_(ids)))
            total += len(ids)
            if len(ids) < batch_size:
                return total


class MemoryOutcomeLog:
    """In-process outcome log."""

    def __init__(self) -> None:
        self._entries: list[OutcomeEntry] = []
        self._lock = threading.Lock()

    def append(self, entry: OutcomeEntry) -> None:
        with self._lock:
            self._entries.append(entry)

    def list(self, job_name: str | None = None, limit: int = 100) -> list[OutcomeEntry]:
        with self._lock:
            entries = [e for e in self._entries if job_name is None or e.job_name == job_name]
        entries.sort(key=lambda e: (e.attempted_at, e.id), reverse=True)
        return entries[:limit]

    def count(self, job_name: str | None = None, status: JobStatus | None = None) -> int:
        with self._lock:
            return sum(
                1
                for e in self._entries
                if (job_name is None or e.job_name == job_name)
                and (status is None or e.status is status)
            )

    def purge_expired(
        self,
        now: datetime,
        *,
        success_retention: timedelta,
        failure_retention: timedelta,
        batch_size: int = 1000,
    ) -> int:
        now = ensure_utc(now)

        def expired(entry: OutcomeEntry) -> bool:
            keep_for = success_retention if entry.status is JobStatus.SUCCESS else failure_retention
            return entry.result.finished_at < now - keep_for

        with self._lock:
            before = len(self._entries)
            self._entries = [e for e in self._entries if not expired(e)]
            return before - len(self._entries)

    def clear(self) -> None:
        with self._lock:
            self._entries.clear()


__all__ = ["OutcomeLog", "SqlOutcomeLog", "MemoryOutcomeLog"]
