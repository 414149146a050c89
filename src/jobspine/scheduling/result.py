"""Job results and outcome entries.

A routine produces a ``JobResult``; the scheduler wraps it in an
``OutcomeEntry`` (with attempt identity and replica) and appends it to the
outcome log. Both are frozen: once an attempt has finished, nothing about
its record changes.

Tags:
    jobspine, scheduling, result, outcome, value-object

Doc-Types:
    api-reference
"""

from __future__ import annotations

from collections.abc import Mapping
from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from types import MappingProxyType
from typing import Any

from jobspine.core.errors import JobSpineError, describe_error, is_retryable
from jobspine.core.timestamps import generate_ulid, to_iso8601, utc_now


class JobStatus(str, Enum):
    """Terminal status of one execution attempt."""

    SUCCESS = "success"
    FAILURE = "failure"


def _freeze(payload: Mapping[str, Any] | None) -> Mapping[str, Any] | None:
    if payload is None:
        return None
    return MappingProxyType(dict(payload))


@dataclass(frozen=True)
class JobResult:
    """Outcome of a single execution attempt.

    Attributes:
        status: success or failure
        error: ``Type: message`` description of the failure, if any
        error_type: Class name of the failing exception (the wrapped cause
            for ``ExecutionFailure``)
        retryable: Whether the failure is worth retrying at the next match.
            Recorded only; the scheduler never retries within a tick.
        payload: Optional read-only mapping returned by the routine
        started_at / finished_at: Wall-clock bounds of the attempt (UTC)
    """

    status: JobStatus
    started_at: datetime
    finished_at: datetime
    error: str | None = None
    error_type: str | None = None
    retryable: bool = False
    payload: Mapping[str, Any] | None = field(default=None, compare=False)

    @property
    def duration_ms(self) -> float:
        return (self.finished_at - self.started_at).total_seconds() * 1000

    @property
    def succeeded(self) -> bool:
        return self.status is JobStatus.SUCCESS

    @classmethod
    def success(
        cls,
        payload: Mapping[str, Any] | None = None,
        *,
        started_at: datetime | None = None,
        finished_at: datetime | None = None,
    ) -> JobResult:
        finished = finished_at or utc_now()
        return cls(
            status=JobStatus.SUCCESS,
            started_at=started_at or finished,
            finished_at=finished,
            payload=_freeze(payload),
        )

    @classmethod
    def failure(
        cls,
        error: BaseException,
        *,
        started_at: datetime | None = None,
        finished_at: datetime | None = None,
    ) -> JobResult:
        """Build a failure result from an exception.

        For an ``ExecutionFailure`` that wraps another exception, the
        recorded type and message are those of the wrapped cause.
        """
        finished = finished_at or utc_now()
        cause = error.cause if isinstance(error, JobSpineError) and error.cause else error
        return cls(
            status=JobStatus.FAILURE,
            started_at=started_at or finished,
            finished_at=finished,
            error=describe_error(error),
            error_type=type(cause).__name__,
            retryable=is_retryable(error),
        )

    def with_times(self, started_at: datetime, finished_at: datetime) -> JobResult:
        """Copy of this result stamped with the attempt's real bounds."""
        return JobResult(
            status=self.status,
            started_at=started_at,
            finished_at=finished_at,
            error=self.error,
            error_type=self.error_type,
            retryable=self.retryable,
            payload=_freeze(self.payload),
        )

    def to_dict(self) -> dict[str, Any]:
        return {
            "status": self.status.value,
            "error": self.error,
            "error_type": self.error_type,
            "retryable": self.retryable,
            "payload": dict(self.payload) if self.payload is not None else None,
            "started_at": to_iso8601(self.started_at),
            "finished_at": to_iso8601(self.finished_at),
            "duration_ms": round(self.duration_ms, 3),
        }


@dataclass(frozen=True)
class OutcomeEntry:
    """One row of the append-only outcome log."""

    id: str
    job_name: str
    result: JobResult
    attempted_at: datetime
    instance_id: str | None = None

    @classmethod
    def create(
        cls,
        job_name: str,
        result: JobResult,
        *,
        attempted_at: datetime,
        instance_id: str | None = None,
        entry_id: str | None = None,
    ) -> OutcomeEntry:
        return cls(
            id=entry_id or generate_ulid(),
            job_name=job_name,
            result=result,
            attempted_at=attempted_at,
            instance_id=instance_id,
        )

    @property
    def status(self) -> JobStatus:
        return self.result.status

    def to_dict(self) -> dict[str, Any]:
        data = {
            "id": self.id,
            "job_name": self.job_name,
            "attempted_at": to_iso8601(self.attempted_at),
            "instance_id": self.instance_id,
        }
        data.update(self.result.to_dict())
        return data


def coerce_result(value: Any, *, started_at: datetime, finished_at: datetime) -> JobResult:
    """Turn whatever a routine returned into a ``JobResult``.

    ``None`` is a success without payload, a mapping is a success payload
    and a ``JobResult`` is kept (re-stamped with the attempt's timing).
    """
    if value is None:
        return JobResult.success(started_at=started_at, finished_at=finished_at)
    if isinstance(value, JobResult):
        return value.with_times(started_at, finished_at)
    if isinstance(value, Mapping):
        return JobResult.success(value, started_at=started_at, finished_at=finished_at)
    raise TypeError(
        f"routine returned {type(value).__name__}; expected JobResult, mapping or None"
    )


__all__ = ["JobStatus", "JobResult", "OutcomeEntry", "coerce_result"]
