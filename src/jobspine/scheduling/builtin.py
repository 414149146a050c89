"""Built-in jobs.

``OutcomeRetentionJob`` keeps the outcome log bounded: on its schedule it
deletes successful entries older than the success retention and failed
entries older than the (longer) failure retention. It is an ordinary job, so
its advisory lock guarantees one replica does the work per firing.

Tags:
    jobspine, scheduling, builtin, retention, cleanup

Doc-Types:
    api-reference
"""

from __future__ import annotations

from datetime import timedelta
from typing import Any

from jobspine.core.settings import SchedulerSettings
from jobspine.scheduling.context import JobContext
from jobspine.scheduling.outcome_log import OutcomeLog
from jobspine.scheduling.registry import Job, JobDefinition, JobRegistry

OUTCOME_RETENTION_JOB = "jobspine.outcome_retention"


class OutcomeRetentionJob(Job):
    """Delete outcome entries past their retention period."""

    name = OUTCOME_RETENTION_JOB

    def __init__(
        self,
        outcome_log: OutcomeLog,
        *,
        schedule: str = "0 0 * * * *",
        success_retention: timedelta = timedelta(hours=2),
        failure_retention: timedelta = timedelta(days=2),
        batch_size: int = 1000,
    ):
        self.outcome_log = outcome_log
        self.schedule = schedule
        self.success_retention = success_retention
        self.failure_retention = failure_retention
        self.batch_size = batch_size

    def execute(self, context: JobContext) -> dict[str, Any]:
        deleted = self.outcome_log.purge_expired(
            context.tick_instant,
            success_retention=self.success_retention,
            failure_retention=self.failure_retention,
            batch_size=self.batch_size,
        )
        context.log.info("outcomes_purged", deleted=deleted)
        return {"deleted": deleted}


def register_builtin_jobs(
    registry: JobRegistry,
    settings: SchedulerSettings,
    outcome_log: OutcomeLog,
) -> list[JobDefinition]:
    """Register the built-in jobs enabled in ``settings``."""
    registered = []
    if settings.outcome_retention_enabled:
        retention = OutcomeRetentionJob(
            outcome_log,
            schedule=settings.outcome_cleanup_schedule,
            success_retention=timedelta(seconds=settings.success_retention_seconds),
            failure_retention=timedelta(seconds=settings.failure_retention_seconds),
            batch_size=settings.cleanup_batch_size,
        )
        registered.append(registry.register_job(retention))
    return registered


__all__ = ["OUTCOME_RETENTION_JOB", "OutcomeRetentionJob", "register_builtin_jobs"]
