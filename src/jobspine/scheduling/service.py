"""Scheduler - the control loop.

Manifesto:
    Every replica runs the same loop over the same jobs. Each tick captures
    one instant, asks every job's schedule whether it fired since the last
    tick, and races the other replicas for the job's advisory lock. The
    winner runs the job on its worker pool and records the outcome; the
    losers skip quietly. Nothing a job does, and no storage hiccup, can stop
    the loop.

Tags:
    jobspine, scheduling, control-loop, beat-as-poller, advisory-locks

Doc-Types:
    api-reference, architecture-diagram


┌──────────────────────────────────────────────────────────────────────────────┐
│  SCHEDULER ARCHITECTURE                                                       │
│                                                                               │
│   Dependencies:                                                               │
│   ┌─────────────┐ ┌─────────────┐ ┌─────────────┐ ┌─────────────┐            │
│   │ JobRegistry │ │ LockManager │ │ OutcomeLog  │ │ Backend     │            │
│   │ (what)      │ │ (safety)    │ │ (record)    │ │ (timing)    │            │
│   └──────┬──────┘ └──────┬──────┘ └──────┬──────┘ └──────┬──────┘            │
│          ▼               ▼               ▼               ▼                    │
│   run_tick(now):                                                              │
│     1. instant = truncate(clock.now())                                        │
│     2. instant <= previous instant?  → tick_skipped                           │
│     3. for each job (registry order, then ScheduledJobs):                     │
│          is_due(previous, instant)?  → job_due                                │
│          firing older than misfire grace? → job_misfired, skip                │
│          all workers busy?           → lock_denied (no_free_worker), skip     │
│          lock_manager.try_acquire(name)                                       │
│            ├── False  → lock_denied, skip                                     │
│            ├── StorageUnavailable → storage_unavailable, skip                 │
│            └── True   → execution_started, pool.submit(_execute)             │
│                                                                               │
│   _execute (worker thread):                                                   │
│     context → routine(context) → JobResult → outcome_log.append               │
│     finally: context.close(), lock_manager.release(name)                      │
│                                                                               │
│   Lifecycle:  CREATED ──start()──► RUNNING ──stop()──► STOPPING ──► STOPPED   │
└──────────────────────────────────────────────────────────────────────────────┘
"""

from __future__ import annotations

import asyncio
import inspect
import logging
import threading
from collections.abc import Iterable
from concurrent.futures import Future, ThreadPoolExecutor
from concurrent.futures import wait as wait_futures
from dataclasses import dataclass, field
from datetime import datetime, timedelta
from enum import Enum
from typing import Any

from jobspine.core.errors import (
    ConfigurationError,
    DuplicateJobName,
    ExecutionFailure,
    JobSpineError,
    StorageUnavailable,
    UnknownJob,
    describe_error,
)
from jobspine.core.logging import LogContext
from jobspine.core.timestamps import (
    Clock,
    SystemClock,
    generate_ulid,
    to_iso8601,
    truncate_to_second,
    utc_now,
)
from jobspine.scheduling import events as ev
from jobspine.scheduling.context import JobContext
from jobspine.scheduling.events import EventEmitter, EventSink
from jobspine.scheduling.lock_manager import AdvisoryLockManager
from jobspine.scheduling.outcome_log import OutcomeLog
from jobspine.scheduling.protocol import BackendHealth, SchedulerBackend
from jobspine.scheduling.registry import JobDefinition, JobRegistry, ScheduledJob
from jobspine.scheduling.result import JobResult, OutcomeEntry, coerce_result
from jobspine.scheduling.thread_backend import ThreadSchedulerBackend

logger = logging.getLogger(__name__)

_ONE_SECOND = timedelta(seconds=1)


class SchedulerState(str, Enum):
    CREATED = "created"
    RUNNING = "running"
    STOPPING = "stopping"
    STOPPED = "stopped"


@dataclass
class SchedulerStats:
    """Counters for one scheduler instance."""

    tick_count: int = 0
    ticks_skipped: int = 0
    jobs_due: int = 0
    jobs_started: int = 0
    jobs_succeeded: int = 0
    jobs_failed: int = 0
    jobs_denied: int = 0
    jobs_misfired: int = 0
    storage_errors: int = 0
    outcomes_not_recorded: int = 0
    last_tick: datetime | None = None
    last_error: str | None = None

    def to_dict(self) -> dict[str, Any]:
        return {
            "tick_count": self.tick_count,
            "ticks_skipped": self.ticks_skipped,
            "jobs_due": self.jobs_due,
            "jobs_started": self.jobs_started,
            "jobs_succeeded": self.jobs_succeeded,
            "jobs_failed": self.jobs_failed,
            "jobs_denied": self.jobs_denied,
            "jobs_misfired": self.jobs_misfired,
            "storage_errors": self.storage_errors,
            "outcomes_not_recorded": self.outcomes_not_recorded,
            "last_tick": to_iso8601(self.last_tick),
            "last_error": self.last_error,
        }


@dataclass
class SchedulerHealth:
    """Health status for one scheduler instance."""

    healthy: bool
    state: SchedulerState
    instance_id: str
    backend: BackendHealth | dict
    jobs: int = 0
    held_locks: int = 0
    in_flight: int = 0
    last_tick: datetime | None = None
    stats: SchedulerStats = field(default_factory=SchedulerStats)

    def to_dict(self) -> dict[str, Any]:
        return {
            "healthy": self.healthy,
            "state": self.state.value,
            "instance_id": self.instance_id,
            "backend": self.backend.to_dict() if isinstance(self.backend, BackendHealth) else self.backend,
            "jobs": self.jobs,
            "held_locks": self.held_locks,
            "in_flight": self.in_flight,
            "last_tick": to_iso8601(self.last_tick),
            "stats": self.stats.to_dict(),
        }


@dataclass
class TickReport:
    """What one tick decided. Futures resolve to the recorded ``OutcomeEntry``."""

    instant: datetime
    skipped: bool = False
    due: list[str] = field(default_factory=list)
    started: list[str] = field(default_factory=list)
    denied: list[str] = field(default_factory=list)
    misfired: list[str] = field(default_factory=list)
    errors: dict[str, str] = field(default_factory=dict)
    futures: dict[str, Future] = field(default_factory=dict)

    def wait(self, timeout: float | None = None) -> dict[str, OutcomeEntry]:
        """Block until the executions started by this tick have finished.

        Returns the outcome entries of the executions that completed in time.
        """
        if self.futures:
            wait_futures(list(self.futures.values()), timeout=timeout)
        return {
            name: future.result()
            for name, future in self.futures.items()
            if future.done() and not future.cancelled() and future.exception() is None
        }


def _run_awaitable(value: Any) -> Any:
    if inspect.iscoroutine(value):
        return asyncio.run(value)

    async def _await() -> Any:
        return await value

    return asyncio.run(_await())


class Scheduler:
    """Cron-driven job scheduler with cross-replica mutual exclusion.

    Example:
        >>> registry = JobRegistry()
        >>> registry.define("digest", "0 */5 * * * *", send_digest)
        >>> scheduler = Scheduler(
        ...     registry,
        ...     AdvisoryLockManager(engine),
        ...     SqlOutcomeLog(engine),
        ... )
        >>> scheduler.start()
        >>>
        >>> # Later...
        >>> scheduler.stop()
    """

    def __init__(
        self,
        registry: JobRegistry,
        lock_manager: AdvisoryLockManager,
        outcome_log: OutcomeLog,
        *,
        scheduled_jobs: Iterable[ScheduledJob] | None = None,
        clock: Clock | None = None,
        backend: SchedulerBackend | None = None,
        events: EventEmitter | list[EventSink] | None = None,
        engine: Any = None,
        max_workers: int = 8,
        tick_interval_seconds: float = 1.0,
        misfire_grace_seconds: int | None = 60,
        shutdown_grace_seconds: float = 30.0,
    ) -> None:
        """Initialize the scheduler.

        Args:
            registry: Job definitions, evaluated in insertion order
            lock_manager: Advisory locks; its ``instance_id`` identifies this replica
            outcome_log: Where attempt outcomes are appended
            scheduled_jobs: Extra bindings of registered routines under other names
            clock: Source of "now" (``SystemClock`` by default)
            backend: Tick timing backend (``ThreadSchedulerBackend`` by default)
            events: Event emitter or sinks (structlog logging by default)
            engine: Engine for job context connections (the lock manager's by default)
            max_workers: Worker pool size
            tick_interval_seconds: Loop period, in (0, 1]
            misfire_grace_seconds: Skip firings older than this; None disables
            shutdown_grace_seconds: Default wait for in-flight work in ``stop()``
        """
        self.registry = registry
        self.lock_manager = lock_manager
        self.outcome_log = outcome_log
        self.scheduled_jobs = list(scheduled_jobs or [])
        self.clock: Clock = clock or SystemClock()
        self.backend: SchedulerBackend = backend or ThreadSchedulerBackend()
        self.engine = engine if engine is not None else lock_manager.engine
        self.instance_id = lock_manager.instance_id
        self.max_workers = max_workers
        self.interval = tick_interval_seconds
        self.misfire_grace_seconds = misfire_grace_seconds
        self.shutdown_grace_seconds = shutdown_grace_seconds

        if isinstance(events, EventEmitter):
            self.events = events
        else:
            self.events = EventEmitter(events, instance_id=self.instance_id)

        self._state = SchedulerState.CREATED
        self._entries: tuple[JobDefinition, ...] | None = None
        self._pool: ThreadPoolExecutor | None = None
        self._last_instant: datetime | None = None
        # future -> job name, for executions submitted and not yet finished
        self._in_flight: dict[Future, str] = {}
        self._stats = SchedulerStats()
        self._stats_lock = threading.Lock()
        self._tick_lock = threading.Lock()
        self._flight_lock = threading.Lock()

    # === Configuration ===

    def validate(self) -> tuple[JobDefinition, ...]:
        """Check the configuration and resolve the job list.

        Raises:
            ConfigurationError: bad loop settings, a ScheduledJob naming an
                unknown job, or a name used twice
        """
        if not 0 < self.interval <= 1:
            raise ConfigurationError(
                f"tick_interval_seconds must be in (0, 1], got {self.interval}"
            )
        if self.max_workers < 1:
            raise ConfigurationError(f"max_workers must be at least 1, got {self.max_workers}")
        if self.misfire_grace_seconds is not None and self.misfire_grace_seconds < 0:
            raise ConfigurationError("misfire_grace_seconds must not be negative")

        entries = list(self.registry.all())
        names = {definition.name for definition in entries}
        for scheduled in self.scheduled_jobs:
            if scheduled.name in names:
                raise DuplicateJobName(scheduled.name)
            entries.append(scheduled.resolve(self.registry))
            names.add(scheduled.name)
        return tuple(entries)

    def prepare(self) -> None:
        """Validate, freeze the registry and create the worker pool. Idempotent."""
        if self._entries is not None:
            return
        entries = self.validate()
        self.registry.freeze()
        self._pool = ThreadPoolExecutor(
            max_workers=self.max_workers, thread_name_prefix="jobspine-worker"
        )
        self._entries = entries

    def jobs(self) -> tuple[JobDefinition, ...]:
        self.prepare()
        assert self._entries is not None
        return self._entries

    def _entry(self, name: str) -> JobDefinition:
        for definition in self.jobs():
            if definition.name == name:
                return definition
        raise UnknownJob(name, [d.name for d in self.jobs()])

    # === Lifecycle ===

    def start(self) -> None:
        """Validate and start ticking in the background. Returns immediately.

        Raises:
            ConfigurationError: invalid configuration; no tick has run
        """
        if self._state is SchedulerState.RUNNING:
            logger.warning("Scheduler already running")
            return
        if self._state is not SchedulerState.CREATED:
            raise ConfigurationError("A stopped scheduler cannot be restarted")

        self.prepare()
        logger.info(
            f"Starting Scheduler {self.instance_id} with {self.backend.name} backend "
            f"({len(self.jobs())} jobs, interval={self.interval}s)"
        )
        self._state = SchedulerState.RUNNING
        self.backend.start(self.run_tick, self.interval)

    def stop(self, grace_seconds: float | None = None) -> None:
        """Stop ticking and shut down.

        Waits up to ``grace_seconds`` (default ``shutdown_grace_seconds``)
        for in-flight executions, then shuts the pool down, cancelling
        attempts that never started. An execution still running after the
        grace period keeps its advisory lock until it finishes (or the
        process exits and the storage session ends), so no other replica can
        start the same job meanwhile. Locks with no running execution are
        released.
        """
        if self._state in (SchedulerState.STOPPING, SchedulerState.STOPPED):
            return
        was_running = self._state is SchedulerState.RUNNING
        self._state = SchedulerState.STOPPING
        logger.info(f"Stopping Scheduler {self.instance_id}...")

        if was_running:
            self.backend.stop()

        grace = self.shutdown_grace_seconds if grace_seconds is None else grace_seconds
        with self._flight_lock:
            pending = list(self._in_flight)
        if pending:
            wait_futures(pending, timeout=grace)

        if self._pool is not None:
            # Cancelled attempts release their locks in _forget_future
            self._pool.shutdown(wait=False, cancel_futures=True)

        with self._flight_lock:
            running = set(self._in_flight.values())
        if running:
            logger.warning(
                f"{len(running)} execution(s) still running after {grace}s grace; "
                f"their locks stay held until they finish: {sorted(running)}"
            )

        released = 0
        for key in self.lock_manager.held_keys():
            if key not in running and self.lock_manager.release(key):
                released += 1
        if released:
            logger.warning(f"Released {released} orphaned lock(s) on shutdown")

        self._state = SchedulerState.STOPPED
        logger.info("Scheduler stopped")

    @property
    def state(self) -> SchedulerState:
        return self._state

    @property
    def is_running(self) -> bool:
        return self._state is SchedulerState.RUNNING

    # === Tick processing ===

    def run_tick(self, now: datetime | None = None) -> TickReport:
        """Evaluate every job once for a single instant.

        Called by the backend on each interval; tests and tools may call it
        directly with an explicit ``now``.
        """
        instant = truncate_to_second(now if now is not None else self.clock.now())

        if self._state in (SchedulerState.STOPPING, SchedulerState.STOPPED):
            self.events.emit(ev.TICK_SKIPPED, instant=to_iso8601(instant), reason="stopped")
            return TickReport(instant=instant, skipped=True)

        entries = self.jobs()

        with self._tick_lock:
            previous = self._last_instant
            if previous is not None and instant <= previous:
                self._bump("ticks_skipped")
                self.events.emit(
                    ev.TICK_SKIPPED,
                    instant=to_iso8601(instant),
                    previous=to_iso8601(previous),
                    reason="already_evaluated",
                )
                return TickReport(instant=instant, skipped=True)

            # The first tick only looks at its own second
            window_start = previous if previous is not None else instant - _ONE_SECOND
            self._last_instant = instant
            with self._stats_lock:
                self._stats.tick_count += 1
                self._stats.last_tick = instant

            report = TickReport(instant=instant)
            for definition in entries:
                try:
                    self._evaluate(definition, window_start, instant, report)
                except Exception as e:
                    report.errors[definition.name] = describe_error(e)
                    with self._stats_lock:
                        self._stats.last_error = describe_error(e)
                    logger.exception(f"Evaluating job {definition.name} failed: {e}")

        if report.started:
            logger.debug(f"Tick {to_iso8601(instant)} started {report.started}")
        return report

    def _evaluate(
        self,
        definition: JobDefinition,
        window_start: datetime,
        instant: datetime,
        report: TickReport,
    ) -> None:
        if not definition.schedule.is_due(window_start, instant):
            return

        name = definition.name
        firing = definition.schedule.latest_at_or_before(instant)
        report.due.append(name)
        self._bump("jobs_due")
        self.events.emit(ev.JOB_DUE, job=name, scheduled_at=to_iso8601(firing))

        lateness = (instant - firing).total_seconds()
        if self.misfire_grace_seconds is not None and lateness > self.misfire_grace_seconds:
            report.misfired.append(name)
            self._bump("jobs_misfired")
            self.events.emit(
                ev.JOB_MISFIRED,
                job=name,
                scheduled_at=to_iso8601(firing),
                lateness_seconds=lateness,
            )
            return

        self._start_attempt(definition, firing, instant, report)

    def _start_attempt(
        self,
        definition: JobDefinition,
        scheduled_at: datetime,
        tick_instant: datetime,
        report: TickReport,
    ) -> Future | None:
        name = definition.name
        with self._flight_lock:
            busy = len(self._in_flight)
        if busy >= self.max_workers:
            # No lock for work that could only queue
            report.denied.append(name)
            self._bump("jobs_denied")
            self.events.emit(
                ev.LOCK_DENIED,
                job=name,
                scheduled_at=to_iso8601(scheduled_at),
                reason="no_free_worker",
            )
            return None

        try:
            acquired = self.lock_manager.try_acquire(name)
        except StorageUnavailable as e:
            report.errors[name] = describe_error(e)
            with self._stats_lock:
                self._stats.storage_errors += 1
                self._stats.last_error = describe_error(e)
            self.events.emit(ev.STORAGE_UNAVAILABLE, job=name, error=describe_error(e))
            return None

        if not acquired:
            report.denied.append(name)
            self._bump("jobs_denied")
            self.events.emit(ev.LOCK_DENIED, job=name, scheduled_at=to_iso8601(scheduled_at))
            return None

        attempt_id = generate_ulid()
        self.events.emit(
            ev.EXECUTION_STARTED,
            job=name,
            attempt_id=attempt_id,
            scheduled_at=to_iso8601(scheduled_at),
        )
        assert self._pool is not None
        try:
            future = self._pool.submit(
                self._execute, definition, attempt_id, scheduled_at, tick_instant
            )
        except RuntimeError:
            # Pool already shut down
            self.lock_manager.release(name)
            raise

        with self._flight_lock:
            self._in_flight[future] = name
        future.add_done_callback(self._forget_future)

        report.started.append(name)
        report.futures[name] = future
        self._bump("jobs_started")
        return future

    def _forget_future(self, future: Future) -> None:
        with self._flight_lock:
            name = self._in_flight.pop(future, None)
        if future.cancelled() and name is not None:
            # Never started, so _execute will not release it
            self.lock_manager.release(name)

    def _execute(
        self,
        definition: JobDefinition,
        attempt_id: str,
        scheduled_at: datetime,
        tick_instant: datetime,
    ) -> OutcomeEntry:
        name = definition.name
        context = JobContext(
            job_name=name,
            attempt_id=attempt_id,
            tick_instant=tick_instant,
            scheduled_at=scheduled_at,
            instance_id=self.instance_id,
            arguments=definition.arguments,
            engine=self.engine,
        )
        attempted_at = self.clock.now()
        started_at = utc_now()
        try:
            with LogContext(job=name, attempt_id=attempt_id):
                result = self._invoke(definition, context, started_at)
                entry = OutcomeEntry.create(
                    name, result, attempted_at=attempted_at, instance_id=self.instance_id
                )
                self._report_result(entry, attempt_id)
                self._record(entry, attempt_id)
            return entry
        finally:
            try:
                context.close()
            except JobSpineError as e:
                logger.warning(f"Closing context of {name} failed: {e}")
            finally:
                self.lock_manager.release(name)

    def _invoke(self, definition: JobDefinition, context: JobContext, started_at: datetime) -> JobResult:
        try:
            value = definition.call(context)
            if inspect.isawaitable(value):
                value = _run_awaitable(value)
            return coerce_result(value, started_at=started_at, finished_at=utc_now())
        except Exception as e:
            failure = (
                e
                if isinstance(e, ExecutionFailure)
                else ExecutionFailure(f"Job {definition.name!r} failed", cause=e)
            )
            return JobResult.failure(failure, started_at=started_at, finished_at=utc_now())

    def _report_result(self, entry: OutcomeEntry, attempt_id: str) -> None:
        result = entry.result
        if result.succeeded:
            self._bump("jobs_succeeded")
            self.events.emit(
                ev.EXECUTION_FINISHED,
                job=entry.job_name,
                attempt_id=attempt_id,
                duration_ms=round(result.duration_ms, 3),
            )
        else:
            with self._stats_lock:
                self._stats.jobs_failed += 1
                self._stats.last_error = result.error
            self.events.emit(
                ev.EXECUTION_FAILED,
                job=entry.job_name,
                attempt_id=attempt_id,
                duration_ms=round(result.duration_ms, 3),
                error=result.error,
                error_type=result.error_type,
                retryable=result.retryable,
            )

    def _record(self, entry: OutcomeEntry, attempt_id: str) -> None:
        try:
            self.outcome_log.append(entry)
        except Exception as e:
            self._bump("outcomes_not_recorded")
            self.events.emit(
                ev.OUTCOME_NOT_RECORDED,
                job=entry.job_name,
                attempt_id=attempt_id,
                status=entry.status.value,
                error=describe_error(e),
            )

    def _bump(self, counter: str) -> None:
        with self._stats_lock:
            setattr(self._stats, counter, getattr(self._stats, counter) + 1)

    # === Manual operations ===

    def trigger(self, name: str) -> Future | None:
        """Run a job now, outside its schedule, under its advisory lock.

        Returns:
            Future resolving to the ``OutcomeEntry``, or None when the lock
            was denied or storage was unavailable.

        Raises:
            UnknownJob: no job with this name
        """
        definition = self._entry(name)
        if self._state in (SchedulerState.STOPPING, SchedulerState.STOPPED):
            raise ConfigurationError("Cannot trigger jobs on a stopped scheduler")
        instant = truncate_to_second(self.clock.now())
        report = TickReport(instant=instant)
        future = self._start_attempt(definition, instant, instant, report)
        if future is not None:
            logger.info(f"Triggered job {name} manually")
        return future

    # === Health & stats ===

    def health(self) -> SchedulerHealth:
        backend_health = self.backend.health()
        with self._flight_lock:
            in_flight = len(self._in_flight)
        jobs = len(self._entries) if self._entries is not None else len(self.registry)
        return SchedulerHealth(
            healthy=self.is_running and bool(backend_health.get("healthy", False)),
            state=self._state,
            instance_id=self.instance_id,
            backend=backend_health,
            jobs=jobs,
            held_locks=len(self.lock_manager.held_keys()),
            in_flight=in_flight,
            last_tick=self._stats.last_tick,
            stats=self.get_stats(),
        )

    def get_stats(self) -> SchedulerStats:
        """Snapshot of the counters."""
        with self._stats_lock:
            return SchedulerStats(**self._stats.__dict__)

    def reset_stats(self) -> None:
        with self._stats_lock:
            self._stats = SchedulerStats()


__all__ = [
    "Scheduler",
    "SchedulerState",
    "SchedulerStats",
    "SchedulerHealth",
    "TickReport",
]
