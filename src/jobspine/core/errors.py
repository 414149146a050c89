"""
Structured error types for the jobspine scheduler.

Every failure the engine can observe is classified into one of a handful of
typed errors carrying the metadata needed to decide what happens next:
surface it to the operator at boot, skip a tick, or record it in the
outcome log and carry on.

Manifesto:
    - **Boot-time vs tick-time:** Configuration errors are fatal and raised
      before the loop starts. Everything else is contained per tick.
    - **Explicit retry semantics:** Each error knows whether the failed
      operation is worth attempting again at its next schedule match.
    - **Rich context:** Errors carry job name, attempt id and free-form
      metadata for structured log events.
    - **Error chaining:** The original exception is preserved as ``cause``.

Architecture:
    ::

        ┌─────────────────────────────────────────────────────────────────┐
        │                       JobSpineError                              │
        │  (category, retryable, context, cause)                           │
        ├─────────────────────────────────────────────────────────────────┤
        │                                                                  │
        │  ConfigurationError        StorageUnavailable   ExecutionFailure │
        │  (CONFIG, fatal at boot)   (STORAGE, transient) (EXECUTION)      │
        │       │                                                          │
        │  DuplicateJobName          LockContention       ContextClosed    │
        │  UnknownJob                (LOCK, control flow) (INTERNAL)       │
        │  InvalidScheduleExpression                                       │
        └─────────────────────────────────────────────────────────────────┘

Propagation policy:
    Only ``ConfigurationError`` reaches the caller of ``Scheduler.start()``.
    ``LockContention`` is an expected signal; ``ExecutionFailure`` and
    ``StorageUnavailable`` are logged, emitted as events and recorded.

Examples:
    >>> error = InvalidScheduleExpression("*/0 * * * * *", "step must be positive")
    >>> error.category
    <ErrorCategory.CONFIG: 'CONFIG'>
    >>> error.retryable
    False

    >>> try:
    ...     raise ConnectionRefusedError("db down")
    ... except ConnectionRefusedError as e:
    ...     err = StorageUnavailable("cannot reach lock storage", cause=e)
    >>> err.retryable
    True

Tags:
    error-handling, exception-hierarchy, scheduler, configuration,
    storage, jobspine

Doc-Types:
    - API Reference
    - Error Handling Guide
"""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from typing import Any


class ErrorCategory(str, Enum):
    """
    Error categories used for routing log events and alerts.

    Attributes:
        CONFIG: Invalid job definitions, duplicate names, bad settings
        STORAGE: Lock storage or outcome log unreachable
        LOCK: Advisory lock held elsewhere (expected, not a failure)
        EXECUTION: A job's execution routine failed
        INTERNAL: Misuse of the engine's own objects
    """

    CONFIG = "CONFIG"
    STORAGE = "STORAGE"
    LOCK = "LOCK"
    EXECUTION = "EXECUTION"
    INTERNAL = "INTERNAL"


@dataclass
class ErrorContext:
    """
    Structured metadata attached to an error.

    Only non-None fields are serialized by ``to_dict()``, so log events stay
    compact.

    Attributes:
        job_name: Name of the job the error relates to
        attempt_id: Identifier of the execution attempt
        instance_id: Scheduler instance (replica) that observed the error
        lock_key: Advisory lock key involved, if any
        metadata: Additional key-value pairs
    """

    job_name: str | None = None
    attempt_id: str | None = None
    instance_id: str | None = None
    lock_key: str | None = None
    metadata: dict[str, Any] = field(default_factory=dict)

    def to_dict(self) -> dict[str, Any]:
        """Convert to dictionary for logging."""
        result = {}
        for key in ["job_name", "attempt_id", "instance_id", "lock_key"]:
            value = getattr(self, key)
            if value is not None:
                result[key] = value
        if self.metadata:
            result.update(self.metadata)
        return result


class JobSpineError(Exception):
    """
    Base exception for all jobspine errors.

    Subclasses set ``default_category`` and ``default_retryable``; callers
    may override either per instance.

    Examples:
        >>> error = JobSpineError("Something went wrong")
        >>> error.category
        <ErrorCategory.INTERNAL: 'INTERNAL'>

        >>> error = JobSpineError("Tick aborted").with_context(job_name="digest")
        >>> error.context.job_name
        'digest'
    """

    default_category: ErrorCategory = ErrorCategory.INTERNAL
    default_retryable: bool = False

    def __init__(
        self,
        message: str,
        *,
        category: ErrorCategory | None = None,
        retryable: bool | None = None,
        context: ErrorContext | None = None,
        cause: BaseException | None = None,
    ):
        super().__init__(message)
        self.message = message
        self.category = category or self.default_category
        self.retryable = retryable if retryable is not None else self.default_retryable
        self.context = context or ErrorContext()
        self.cause = cause

        if cause is not None:
            self.__cause__ = cause

    def with_context(self, **kwargs: Any) -> JobSpineError:
        """
        Add context to this error (fluent API).

        Usage:
            raise StorageUnavailable("lock query failed").with_context(
                job_name="digest", lock_key="digest"
            )
        """
        for key, value in kwargs.items():
            if hasattr(self.context, key) and key != "metadata":
                setattr(self.context, key, value)
            else:
                self.context.metadata[key] = value
        return self

    def to_dict(self) -> dict[str, Any]:
        """Convert error to dictionary for logging/serialization."""
        result = {
            "error_type": self.__class__.__name__,
            "message": self.message,
            "category": self.category.value,
            "retryable": self.retryable,
        }
        context_dict = self.context.to_dict()
        if context_dict:
            result["context"] = context_dict
        if self.cause is not None:
            result["cause"] = f"{type(self.cause).__name__}: {self.cause}"
        return result

    def __repr__(self) -> str:
        return f"{self.__class__.__name__}({self.message!r}, category={self.category.value})"


# =============================================================================
# CONFIGURATION ERRORS (fatal at boot)
# =============================================================================


class ConfigurationError(JobSpineError):
    """
    Invalid job configuration detected before the loop starts.

    Never retryable - the job definitions or settings must be fixed.
    """

    default_category = ErrorCategory.CONFIG
    default_retryable = False


class DuplicateJobName(ConfigurationError):
    """A job name was registered twice."""

    def __init__(self, name: str):
        self.job_name = name
        super().__init__(
            f"A job named {name!r} is already registered",
            context=ErrorContext(job_name=name),
        )


class UnknownJob(ConfigurationError):
    """Lookup of a job name that was never registered."""

    def __init__(self, name: str, available: list[str] | None = None):
        self.job_name = name
        self.available = available or []
        hint = ", ".join(self.available) if self.available else "none"
        super().__init__(
            f"No job registered under {name!r}. Registered jobs: {hint}",
            context=ErrorContext(job_name=name),
        )


class InvalidScheduleExpression(ConfigurationError):
    """A cron expression uses unsupported syntax or can never fire."""

    def __init__(self, expression: str, reason: str):
        self.expression = expression
        self.reason = reason
        super().__init__(
            f"Invalid schedule expression {expression!r}: {reason}",
            context=ErrorContext(metadata={"expression": expression}),
        )


# =============================================================================
# RUNTIME ERRORS (contained per tick)
# =============================================================================


class LockContention(JobSpineError):
    """
    The advisory lock for a key is held by another session.

    This is the steady-state behavior of redundant replicas, not a failure.
    ``AdvisoryLockManager.guard()`` raises it; the scheduler itself uses the
    boolean ``try_acquire`` and never sees this exception.
    """

    default_category = ErrorCategory.LOCK
    default_retryable = True

    def __init__(self, key: str):
        self.key = key
        super().__init__(
            f"Advisory lock {key!r} is held by another session",
            context=ErrorContext(lock_key=key),
        )


class StorageUnavailable(JobSpineError):
    """
    Lock storage or the outcome log could not be reached.

    Transient: the affected job's tick is aborted and the loop continues.
    """

    default_category = ErrorCategory.STORAGE
    default_retryable = True


class ExecutionFailure(JobSpineError):
    """
    A job's execution routine failed.

    Job authors may raise this directly to control the recorded message and
    whether the failure is considered retryable at the next schedule match.
    Any other exception escaping a routine is wrapped in one, with the
    original kept as ``cause``.
    """

    default_category = ErrorCategory.EXECUTION
    default_retryable = False


class ContextClosedError(JobSpineError):
    """A JobContext was used after its execution attempt finished."""

    default_category = ErrorCategory.INTERNAL
    default_retryable = False


# =============================================================================
# UTILITY FUNCTIONS
# =============================================================================


def is_retryable(error: BaseException) -> bool:
    """Check if an error is retryable."""
    if isinstance(error, JobSpineError):
        return error.retryable
    return False


def describe_error(error: BaseException) -> str:
    """Return a one-line ``Type: message`` description of an exception."""
    if isinstance(error, ExecutionFailure) and error.cause is not None:
        return f"{type(error.cause).__name__}: {error.cause}"
    message = error.message if isinstance(error, JobSpineError) else str(error)
    return f"{type(error).__name__}: {message}" if message else type(error).__name__


__all__ = [
    "ErrorCategory",
    "ErrorContext",
    "JobSpineError",
    "ConfigurationError",
    "DuplicateJobName",
    "UnknownJob",
    "InvalidScheduleExpression",
    "LockContention",
    "StorageUnavailable",
    "ExecutionFailure",
    "ContextClosedError",
    "is_retryable",
    "describe_error",
]
