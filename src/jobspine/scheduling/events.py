"""Scheduler observability events.

The scheduler reports what it does as named events with a flat set of
fields. Where they go is up to the ``EventSink``: by default they become
structlog log lines, tests record them in memory.

Event names:
    job_due               a job's schedule matched in this tick's window
    job_misfired          due, but the firing is older than the misfire grace
    lock_denied           another session holds the job's advisory lock
    execution_started     lock acquired, routine submitted
    execution_finished    routine completed successfully
    execution_failed      routine raised (or returned a failure result)
    outcome_not_recorded  the outcome entry could not be appended
    storage_unavailable   lock storage unreachable; job's tick aborted
    tick_skipped          loop woke again within an already evaluated second

Tags:
    jobspine, scheduling, observability, events, structlog

Doc-Types:
    api-reference
"""

from __future__ import annotations

import logging
import threading
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Protocol, runtime_checkable

from jobspine.core.logging import get_logger
from jobspine.core.timestamps import utc_now

logger = logging.getLogger(__name__)

JOB_DUE = "job_due"
JOB_MISFIRED = "job_misfired"
LOCK_DENIED = "lock_denied"
EXECUTION_STARTED = "execution_started"
EXECUTION_FINISHED = "execution_finished"
EXECUTION_FAILED = "execution_failed"
OUTCOME_NOT_RECORDED = "outcome_not_recorded"
STORAGE_UNAVAILABLE = "storage_unavailable"
TICK_SKIPPED = "tick_skipped"

_WARNING_EVENTS = {JOB_MISFIRED, EXECUTION_FAILED}
_ERROR_EVENTS = {OUTCOME_NOT_RECORDED, STORAGE_UNAVAILABLE}
_DEBUG_EVENTS = {TICK_SKIPPED, LOCK_DENIED, JOB_DUE}


@dataclass(frozen=True)
class SchedulerEvent:
    """One emitted event."""

    name: str
    fields: dict[str, Any] = field(default_factory=dict)
    emitted_at: datetime = field(default_factory=utc_now)

    @property
    def job(self) -> str | None:
        return self.fields.get("job")


@runtime_checkable
class EventSink(Protocol):
    def emit(self, name: str, **fields: Any) -> None: ...


class LoggingEventSink:
    """Render events as structlog log lines at a level matching their severity."""

    def __init__(self, logger_name: str = "jobspine.scheduler"):
        self._log = get_logger(logger_name)

    def emit(self, name: str, **fields: Any) -> None:
        if name in _ERROR_EVENTS:
            self._log.error(name, **fields)
        elif name in _WARNING_EVENTS:
            self._log.warning(name, **fields)
        elif name in _DEBUG_EVENTS:
            self._log.debug(name, **fields)
        else:
            self._log.info(name, **fields)


class RecordingEventSink:
    """Keep events in memory for assertions."""

    def __init__(self) -> None:
        self.events: list[SchedulerEvent] = []
        self._lock = threading.Lock()

    def emit(self, name: str, **fields: Any) -> None:
        with self._lock:
            self.events.append(SchedulerEvent(name=name, fields=dict(fields)))

    def named(self, name: str, job: str | None = None) -> list[SchedulerEvent]:
        with self._lock:
            return [
                e for e in self.events if e.name == name and (job is None or e.job == job)
            ]

    def names(self) -> list[str]:
        with self._lock:
            return [e.name for e in self.events]

    def clear(self) -> None:
        with self._lock:
            self.events.clear()


class EventEmitter:
    """Fan events out to sinks. A failing sink never breaks the loop."""

    def __init__(self, sinks: list[EventSink] | None = None, **common: Any):
        self.sinks = list(sinks) if sinks is not None else [LoggingEventSink()]
        self.common = common

    def emit(self, name: str, **fields: Any) -> None:
        payload = {**self.common, **fields}
        for sink in self.sinks:
            try:
                sink.emit(name, **payload)
            except Exception:
                logger.exception(f"Event sink {sink!r} failed on {name}")


__all__ = [
    "EventSink",
    "EventEmitter",
    "LoggingEventSink",
    "RecordingEventSink",
    "SchedulerEvent",
    "JOB_DUE",
    "JOB_MISFIRED",
    "LOCK_DENIED",
    "EXECUTION_STARTED",
    "EXECUTION_FINISHED",
    "EXECUTION_FAILED",
    "OUTCOME_NOT_RECORDED",
    "STORAGE_UNAVAILABLE",
    "TICK_SKIPPED",
]
