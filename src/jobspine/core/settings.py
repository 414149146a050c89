"""Scheduler settings loaded from the environment.

Manifesto:
    Configuration should be explicit, validated, and environment-driven.
    A replica that boots with a nonsensical tick interval or a negative
    grace period should refuse to start rather than misbehave at 3am.

    - **Pydantic validation:** Type-checked at startup, not at tick time
    - **Environment-driven:** Reads ``JOBSPINE_*`` env vars and ``.env``
    - **Sensible defaults:** Works out of the box against a local SQLite file

Fields
──────
database_url               : SQLAlchemy URL for locks and the outcome log
instance_id                : Replica identifier (auto-generated when empty)
tick_interval_seconds      : Loop wake-up period, at most one second
max_workers                : Size of the execution thread pool
shutdown_grace_seconds     : How long stop() waits for in-flight executions
misfire_grace_seconds      : Max lateness before a due firing is skipped
log_level / json_logs      : structlog configuration
outcome_retention_enabled  : Register the built-in outcome retention job
outcome_cleanup_schedule   : Six-field cron for the retention job
success_retention_seconds  : Keep successful outcomes this long
failure_retention_seconds  : Keep failed outcomes this long
cleanup_batch_size         : Max rows deleted per retention statement

Examples:
    >>> settings = SchedulerSettings(database_url="sqlite:///jobs.db")
    >>> settings.tick_interval_seconds
    1.0

Tags:
    settings, configuration, pydantic, environment, jobspine

Doc-Types:
    - API Reference
    - Configuration Guide
"""

from __future__ import annotations

from pydantic import Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


class SchedulerSettings(BaseSettings):
    """Settings for one scheduler replica."""

    model_config = SettingsConfigDict(
        env_prefix="JOBSPINE_",
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )

    # ── Storage ──────────────────────────────────────────────────
    database_url: str = "sqlite:///jobspine.db"
    instance_id: str | None = None

    # ── Loop ─────────────────────────────────────────────────────
    tick_interval_seconds: float = Field(default=1.0, gt=0, le=1.0)
    max_workers: int = Field(default=8, ge=1)
    shutdown_grace_seconds: float = Field(default=30.0, ge=0)
    misfire_grace_seconds: int = Field(default=60, ge=0)

    # ── Observability ────────────────────────────────────────────
    log_level: str = "INFO"
    json_logs: bool | None = None

    # ── Outcome retention ────────────────────────────────────────
    outcome_retention_enabled: bool = True
    outcome_cleanup_schedule: str = "0 0 * * * *"
    success_retention_seconds: int = Field(default=7200, ge=0)
    failure_retention_seconds: int = Field(default=172_800, ge=0)
    cleanup_batch_size: int = Field(default=1000, ge=1)

    @field_validator("log_level")
    @classmethod
    def _normalize_level(cls, value: str) -> str:
        level = value.upper()
        if level not in {"DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"}:
            raise ValueError(f"unknown log level: {value}")
        return level
