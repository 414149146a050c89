"""Job Registry - ordered name → job definition lookup.

Manifesto:
    The scheduler evaluates jobs in a fixed, predictable order and uses each
    job's name as both its advisory lock key and its outcome log key. The
    registry therefore guarantees two things: names are unique, and the set
    of jobs cannot change once the scheduler is running.

ARCHITECTURE
────────────
::

    JobRegistry
      ├── .register(definition)     ─ store, DuplicateJobName on clash
      ├── .define(name, schedule, routine, ...)  ─ build + register
      ├── .get(name)                ─ lookup, UnknownJob if absent
      ├── .all() / .names()         ─ insertion order
      └── .freeze()                 ─ called by Scheduler.start()

    Decorator API (explicit registry or the module default):
      @job("digest", "0 */5 * * * *")
      def digest(context): ...

    get_default_registry()     ─ module-level singleton
    reset_default_registry()   ─ clear for testing

    ScheduledJob("weekly-digest", job_name="digest", cron_expression=...)
      └── re-binds a registered routine under another name/schedule

BEST PRACTICES
──────────────
- Pass an explicit ``JobRegistry`` in tests; call
  ``reset_default_registry()`` in fixtures when using the decorator default.
- Routines receive a ``JobContext``; anything they need beyond it comes in
  through ``arguments``.

Tags:
    jobspine, scheduling, registry, job-definition, decorator

Doc-Types:
    api-reference
"""

from __future__ import annotations

from abc import ABC, abstractmethod
from collections.abc import Callable, Iterator, Mapping
from dataclasses import dataclass, field
from types import MappingProxyType
from typing import TYPE_CHECKING, Any, Protocol, runtime_checkable

from jobspine.core.errors import ConfigurationError, DuplicateJobName, UnknownJob
from jobspine.scheduling.cron import CronSchedule, parse_schedule

if TYPE_CHECKING:
    from jobspine.scheduling.context import JobContext

_EMPTY: Mapping[str, Any] = MappingProxyType({})


@runtime_checkable
class JobRoutine(Protocol):
    """Anything with an ``execute(context)`` method.

    May return a ``JobResult``, a mapping (success payload) or ``None``, or
    raise. ``async def execute`` is accepted as well.
    """

    def execute(self, context: JobContext) -> Any: ...


class Job(ABC):
    """Base class for class-based jobs.

    Example:
        >>> class Digest(Job):
        ...     name = "digest"
        ...     schedule = "0 */5 * * * *"
        ...
        ...     def execute(self, context):
        ...         context.log.info("digest_sent")
        >>> registry.register_job(Digest())
    """

    name: str
    schedule: str
    description: str | None = None

    @abstractmethod
    def execute(self, context: JobContext) -> Any:
        """Run one attempt."""


def _freeze_arguments(arguments: Mapping[str, Any] | None) -> Mapping[str, Any]:
    if not arguments:
        return _EMPTY
    return MappingProxyType(dict(arguments))


def resolve_callable(routine: Any) -> Callable[[JobContext], Any]:
    """Return the function to call for ``routine``."""
    if isinstance(routine, JobRoutine):
        return routine.execute
    if callable(routine):
        return routine
    raise ConfigurationError(
        f"Routine {routine!r} is neither callable nor exposes execute(context)"
    )


@dataclass(frozen=True)
class JobDefinition:
    """A named, scheduled unit of work. Immutable once created."""

    name: str
    schedule: CronSchedule
    routine: Any
    arguments: Mapping[str, Any] = field(default_factory=dict, compare=False)
    description: str | None = None

    def __post_init__(self) -> None:
        if not isinstance(self.name, str) or not self.name.strip():
            raise ConfigurationError(f"Job name must be a non-empty string, got {self.name!r}")
        object.__setattr__(self, "schedule", parse_schedule(self.schedule))
        object.__setattr__(self, "arguments", _freeze_arguments(self.arguments))
        resolve_callable(self.routine)

    @property
    def call(self) -> Callable[[JobContext], Any]:
        return resolve_callable(self.routine)

    def describe(self) -> dict[str, Any]:
        return {
            "name": self.name,
            "schedule": self.schedule.expression,
            "description": self.description,
            "arguments": dict(self.arguments),
        }


@dataclass(frozen=True)
class ScheduledJob:
    """Bind an already registered job's routine under another name.

    The new name gets its own schedule, arguments, advisory lock and outcome
    history. Resolution against the registry happens when the scheduler is
    validated; an unknown ``job_name`` is a configuration error.
    """

    name: str
    job_name: str
    cron_expression: str
    arguments: Mapping[str, Any] = field(default_factory=dict, compare=False)
    schedule: CronSchedule = field(init=False, repr=False, compare=False)

    def __post_init__(self) -> None:
        object.__setattr__(self, "schedule", CronSchedule.parse(self.cron_expression))
        object.__setattr__(self, "arguments", _freeze_arguments(self.arguments))

    def resolve(self, registry: JobRegistry) -> JobDefinition:
        target = registry.get(self.job_name)
        return JobDefinition(
            name=self.name,
            schedule=self.schedule,
            routine=target.routine,
            arguments=self.arguments,
            description=target.description,
        )


class JobRegistry:
    """Ordered, append-only set of job definitions.

    Example:
        >>> registry = JobRegistry()
        >>> registry.define("digest", "0 */5 * * * *", send_digest)
        >>> [d.name for d in registry.all()]
        ['digest']
    """

    def __init__(self) -> None:
        self._definitions: dict[str, JobDefinition] = {}
        self._frozen = False

    def register(self, definition: JobDefinition) -> JobDefinition:
        """Add a definition.

        Raises:
            DuplicateJobName: a job with this name already exists
            ConfigurationError: the registry is frozen (scheduler running)
        """
        if self._frozen:
            raise ConfigurationError(
                f"Cannot register {definition.name!r}: registry is frozen while the scheduler runs"
            )
        if definition.name in self._definitions:
            raise DuplicateJobName(definition.name)
        self._definitions[definition.name] = definition
        return definition

    def define(
        self,
        name: str,
        schedule: str | CronSchedule,
        routine: Any,
        *,
        arguments: Mapping[str, Any] | None = None,
        description: str | None = None,
    ) -> JobDefinition:
        """Build a definition (validating its schedule) and register it."""
        return self.register(
            JobDefinition(
                name=name,
                schedule=parse_schedule(schedule),
                routine=routine,
                arguments=_freeze_arguments(arguments),
                description=description,
            )
        )

    def register_job(self, job: Job, *, arguments: Mapping[str, Any] | None = None) -> JobDefinition:
        """Register a class-based ``Job`` instance."""
        return self.define(
            job.name,
            job.schedule,
            job,
            arguments=arguments,
            description=job.description or (type(job).__doc__ or "").strip() or None,
        )

    def get(self, name: str) -> JobDefinition:
        try:
            return self._definitions[name]
        except KeyError:
            raise UnknownJob(name, self.names()) from None

    def all(self) -> tuple[JobDefinition, ...]:
        return tuple(self._definitions.values())

    def names(self) -> list[str]:
        return list(self._definitions)

    def freeze(self) -> None:
        self._frozen = True

    @property
    def is_frozen(self) -> bool:
        return self._frozen

    def __len__(self) -> int:
        return len(self._definitions)

    def __contains__(self, name: object) -> bool:
        return name in self._definitions

    def __iter__(self) -> Iterator[JobDefinition]:
        return iter(self.all())


# === GLOBAL DEFAULT REGISTRY ===

_default_registry: JobRegistry | None = None


def get_default_registry() -> JobRegistry:
    """Get the global default registry, creating it on first access."""
    global _default_registry
    if _default_registry is None:
        _default_registry = JobRegistry()
    return _default_registry


def reset_default_registry() -> None:
    """Reset the global registry (for testing)."""
    global _default_registry
    _default_registry = None


# === DECORATOR API ===


def job(
    name: str,
    schedule: str,
    registry: JobRegistry | None = None,
    *,
    arguments: Mapping[str, Any] | None = None,
    description: str | None = None,
):
    """Decorator to register a function as a scheduled job.

    The schedule is validated immediately, so a bad expression fails at
    import time rather than on the first tick.

    Example:
        >>> @job("digest", "0 */5 * * * *")
        ... def send_digest(context):
        ...     return {"sent": 12}
    """

    def decorator(func: Callable) -> Callable:
        target = registry if registry is not None else get_default_registry()
        target.define(
            name,
            schedule,
            func,
            arguments=arguments,
            description=description or (func.__doc__ or "").strip() or None,
        )
        return func

    return decorator


__all__ = [
    "Job",
    "JobRoutine",
    "JobDefinition",
    "ScheduledJob",
    "JobRegistry",
    "get_default_registry",
    "reset_default_registry",
    "job",
    "resolve_callable",
]
