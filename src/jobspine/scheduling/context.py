"""Per-attempt job context.

A fresh ``JobContext`` is built for every execution attempt and handed to
the job's routine. It carries the attempt's identity, its arguments, a
structlog logger already bound to job/attempt/instance, and a storage
connection scoped to the attempt.

.. code-block:: text

    JobContext
    ├── .job_name      → registered name (also the lock key)
    ├── .attempt_id    → ULID of this attempt
    ├── .tick_instant  → when the tick's evaluation began
    ├── .scheduled_at  → schedule firing that made the job due
    ├── .instance_id   → replica running the attempt
    ├── .arguments     → read-only mapping from the definition
    ├── .log           → bound structlog logger
    ├── .connection()  → lazily opened SQLAlchemy connection
    └── .close()       → called by the scheduler when the attempt ends

The storage connection is separate from the one holding the job's advisory
lock: committing or rolling back job work never touches the lock session.
Any transaction the routine leaves open is rolled back on close.

Tags:
    jobspine, scheduling, context, job-context, storage-session

Doc-Types:
    api-reference
"""

from __future__ import annotations

from collections.abc import Mapping
from datetime import datetime
from types import MappingProxyType
from typing import Any

from sqlalchemy.engine import Connection, Engine

from jobspine.core.errors import ConfigurationError, ContextClosedError
from jobspine.core.logging import get_logger
from jobspine.core.storage import storage_errors


class JobContext:
    """Execution context for one attempt of one job."""

    def __init__(
        self,
        *,
        job_name: str,
        attempt_id: str,
        tick_instant: datetime,
        scheduled_at: datetime,
        instance_id: str | None = None,
        arguments: Mapping[str, Any] | None = None,
        engine: Engine | None = None,
    ):
        self.job_name = job_name
        self.attempt_id = attempt_id
        self.tick_instant = tick_instant
        self.scheduled_at = scheduled_at
        self.instance_id = instance_id
        self._arguments = MappingProxyType(dict(arguments or {}))
        self._engine = engine
        self._connection: Connection | None = None
        self._closed = False
        self._log = get_logger(
            "jobspine.job",
            job=job_name,
            attempt_id=attempt_id,
            instance_id=instance_id,
        )

    def _check_open(self) -> None:
        if self._closed:
            raise ContextClosedError(
                f"Context for {self.job_name!r} attempt {self.attempt_id} is closed"
            ).with_context(job_name=self.job_name, attempt_id=self.attempt_id)

    @property
    def arguments(self) -> Mapping[str, Any]:
        self._check_open()
        return self._arguments

    @property
    def log(self) -> Any:
        self._check_open()
        return self._log

    @property
    def closed(self) -> bool:
        return self._closed

    def connection(self) -> Connection:
        """Return the attempt's storage connection, opening it on first use."""
        self._check_open()
        if self._engine is None:
            raise ConfigurationError("No storage engine configured for job contexts")
        if self._connection is None:
            with storage_errors("open job connection"):
                self._connection = self._engine.connect()
        return self._connection

    def close(self) -> None:
        """Close the context and its connection. Safe to call twice."""
        if self._closed:
            return
        self._closed = True
        connection, self._connection = self._connection, None
        if connection is not None:
            # Connection.close() rolls back whatever the routine left open
            with storage_errors("close job connection"):
                connection.close()

    def __enter__(self) -> JobContext:
        return self

    def __exit__(self, *args: Any) -> None:
        self.close()

    def __repr__(self) -> str:
        state = "closed" if self._closed else "open"
        return f"JobContext(job={self.job_name!r}, attempt={self.attempt_id!r}, {state})"
