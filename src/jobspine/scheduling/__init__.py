"""Scheduling package for jobspine.

Manifesto:
    Running recurring jobs on several replicas requires more than
    ``time.sleep()`` in a loop. It needs validated schedules (so a typo
    fails at boot, not at 3am), lock-guarded execution (so two replicas
    never run the same job at once) and an outcome record of every attempt.
    This package provides all three around a single control loop.

┌──────────────────────────────────────────────────────────────────────────────┐
│  JOBSPINE SCHEDULER                                                           │
│                                                                               │
│  Quick Start:                                                                 │
│  ┌──────────────────────────────────────────────────────────────────────┐   │
│  │   from jobspine.core.settings import SchedulerSettings               │   │
│  │   from jobspine.scheduling import JobRegistry, create_scheduler, job │   │
│  │                                                                      │   │
│  │   registry = JobRegistry()                                           │   │
│  │                                                                      │   │
│  │   @job("digest", "0 */5 * * * *", registry=registry)                 │   │
│  │   def send_digest(context):                                          │   │
│  │       return {"sent": 12}                                            │   │
│  │                                                                      │   │
│  │   scheduler = create_scheduler(SchedulerSettings(), registry)        │   │
│  │   scheduler.start()                                                  │   │
│  │   ...                                                                │   │
│  │   scheduler.stop()                                                   │   │
│  └──────────────────────────────────────────────────────────────────────┘   │
│                                                                               │
│  Modules:                                                                     │
│  - cron            CronSchedule: six-field parsing and due evaluation        │
│  - registry        JobDefinition, JobRegistry, ScheduledJob, @job            │
│  - context         JobContext handed to routines                            │
│  - result          JobResult, OutcomeEntry                                  │
│  - outcome_log     SqlOutcomeLog, MemoryOutcomeLog                          │
│  - lock_manager    AdvisoryLockManager (PostgreSQL / MySQL / local)         │
│  - events          EventSink, LoggingEventSink, RecordingEventSink          │
│  - protocol        SchedulerBackend                                         │
│  - thread_backend  ThreadSchedulerBackend (default timing)                  │
│  - service         Scheduler, TickReport, SchedulerHealth                   │
│  - builtin         OutcomeRetentionJob                                      │
│                                                                               │
│  Tables:                                                                      │
│  - core_job_outcomes: one row per execution attempt                          │
└──────────────────────────────────────────────────────────────────────────────┘

Guardrails:
    ❌ Running a job without holding its advisory lock
    ✅ ``Scheduler`` acquires before submit and releases in ``finally``
    ❌ Parsing cron expressions inside the loop
    ✅ ``CronSchedule.parse()`` when the job is defined
    ❌ Constructing scheduler components individually
    ✅ ``create_scheduler(settings, registry)`` factory function

Tags:
    jobspine, scheduling, cron, advisory-locks, outcome-log, beat-as-poller

Doc-Types:
    package-overview, architecture-map, module-index
"""

from __future__ import annotations

from collections.abc import Iterable

from sqlalchemy.engine import Engine

from jobspine.core.settings import SchedulerSettings
from jobspine.core.storage import create_schema, create_storage_engine
from jobspine.core.timestamps import Clock

# Built-in jobs
from .builtin import OUTCOME_RETENTION_JOB, OutcomeRetentionJob, register_builtin_jobs

# Context
from .context import JobContext

# Evaluator
from .cron import CronSchedule, parse_schedule

# Events
from .events import EventEmitter, EventSink, LoggingEventSink, RecordingEventSink, SchedulerEvent

# Lock Manager
from .lock_manager import (
    AdvisoryLockManager,
    LocalLockBackend,
    MySQLLockBackend,
    PostgresLockBackend,
    advisory_key,
)

# Outcome log
from .outcome_log import MemoryOutcomeLog, OutcomeLog, SqlOutcomeLog

# Protocol
from .protocol import BackendHealth, SchedulerBackend

# Registry
from .registry import (
    Job,
    JobDefinition,
    JobRegistry,
    JobRoutine,
    ScheduledJob,
    get_default_registry,
    job,
    reset_default_registry,
)

# Results
from .result import JobResult, JobStatus, OutcomeEntry

# Service
from .service import Scheduler, SchedulerHealth, SchedulerState, SchedulerStats, TickReport

# Backends
from .thread_backend import ThreadSchedulerBackend

__all__ = [
    # Evaluator
    "CronSchedule",
    "parse_schedule",
    # Registry
    "Job",
    "JobRoutine",
    "JobDefinition",
    "JobRegistry",
    "ScheduledJob",
    "job",
    "get_default_registry",
    "reset_default_registry",
    # Context / results
    "JobContext",
    "JobResult",
    "JobStatus",
    "OutcomeEntry",
    # Outcome log
    "OutcomeLog",
    "SqlOutcomeLog",
    "MemoryOutcomeLog",
    # Lock Manager
    "AdvisoryLockManager",
    "PostgresLockBackend",
    "MySQLLockBackend",
    "LocalLockBackend",
    "advisory_key",
    # Events
    "EventSink",
    "EventEmitter",
    "LoggingEventSink",
    "RecordingEventSink",
    "SchedulerEvent",
    # Protocol / backends
    "SchedulerBackend",
    "BackendHealth",
    "ThreadSchedulerBackend",
    # Service
    "Scheduler",
    "SchedulerState",
    "SchedulerStats",
    "SchedulerHealth",
    "TickReport",
    # Built-in jobs
    "OUTCOME_RETENTION_JOB",
    "OutcomeRetentionJob",
    "register_builtin_jobs",
    # Factory
    "create_scheduler",
]


def create_scheduler(
    settings: SchedulerSettings | None = None,
    registry: JobRegistry | None = None,
    *,
    scheduled_jobs: Iterable[ScheduledJob] | None = None,
    engine: Engine | None = None,
    outcome_log: OutcomeLog | None = None,
    clock: Clock | None = None,
    events: EventEmitter | list[EventSink] | None = None,
    backend: SchedulerBackend | None = None,
    create_tables: bool = True,
) -> Scheduler:
    """Factory function to create a fully wired scheduler.

    Builds the engine from ``settings.database_url`` (unless one is given),
    creates the outcome table, registers the enabled built-in jobs and wires
    lock manager, outcome log and thread backend together.

    Args:
        settings: Scheduler settings (read from the environment if None)
        registry: Jobs to run (the module default registry if None)
        scheduled_jobs: Extra bindings of registered routines
        engine: Pre-built SQLAlchemy engine
        outcome_log: Outcome log (``SqlOutcomeLog`` on the engine if None)
        clock: Time source (system clock if None)
        events: Event emitter or sinks (structlog logging if None)
        backend: Timing backend (``ThreadSchedulerBackend`` if None)
        create_tables: Create missing jobspine tables

    Returns:
        Configured, not yet started ``Scheduler``

    Example:
        >>> scheduler = create_scheduler(SchedulerSettings(), registry)
        >>> scheduler.start()
    """
    settings = settings or SchedulerSettings()
    registry = registry if registry is not None else get_default_registry()
    if engine is None:
        # A running job can hold its lock session, its context connection and
        # an outcome append at once
        engine = create_storage_engine(
            settings.database_url,
            pool_size=settings.max_workers * 2,
            max_overflow=settings.max_workers + 4,
        )

    if create_tables:
        create_schema(engine)

    outcome_log = outcome_log or SqlOutcomeLog(engine)
    if OUTCOME_RETENTION_JOB not in registry:
        register_builtin_jobs(registry, settings, outcome_log)

    lock_manager = AdvisoryLockManager(
        engine, instance_id=settings.instance_id, max_sessions=settings.max_workers
    )

    return Scheduler(
        registry,
        lock_manager,
        outcome_log,
        scheduled_jobs=scheduled_jobs,
        clock=clock,
        backend=backend,
        events=events,
        engine=engine,
        max_workers=settings.max_workers,
        tick_interval_seconds=settings.tick_interval_seconds,
        misfire_grace_seconds=settings.misfire_grace_seconds,
        shutdown_grace_seconds=settings.shutdown_grace_seconds,
    )
