"""Tests for SchedulerSettings."""

import os

import pytest
from pydantic import ValidationError

from jobspine.core.settings import SchedulerSettings


@pytest.fixture(autouse=True)
def _clean_env(monkeypatch, tmp_path):
    """Keep host JOBSPINE_* variables and .env files out of these tests."""
    monkeypatch.chdir(tmp_path)
    for name in list(os.environ):
        if name.startswith("JOBSPINE_"):
            monkeypatch.delenv(name)


class TestDefaults:
    def test_defaults(self):
        settings = SchedulerSettings()
        assert settings.database_url == "sqlite:///jobspine.db"
        assert settings.instance_id is None
        assert settings.tick_interval_seconds == 1.0
        assert settings.max_workers == 8
        assert settings.misfire_grace_seconds == 60
        assert settings.shutdown_grace_seconds == 30.0
        assert settings.log_level == "INFO"
        assert settings.outcome_retention_enabled is True
        assert settings.outcome_cleanup_schedule == "0 0 * * * *"
        assert settings.success_retention_seconds == 2 * 3600
        assert settings.failure_retention_seconds == 2 * 86400
        assert settings.cleanup_batch_size == 1000


class TestEnvironment:
    def test_env_override(self, monkeypatch):
        """JOBSPINE_* variables override defaults."""
        monkeypatch.setenv("JOBSPINE_DATABASE_URL", "postgresql+psycopg://db/jobs")
        monkeypatch.setenv("JOBSPINE_MAX_WORKERS", "2")
        monkeypatch.setenv("JOBSPINE_INSTANCE_ID", "replica-a")
        settings = SchedulerSettings()
        assert settings.database_url == "postgresql+psycopg://db/jobs"
        assert settings.max_workers == 2
        assert settings.instance_id == "replica-a"

    def test_env_file(self, tmp_path):
        (tmp_path / ".env").write_text("JOBSPINE_TICK_INTERVAL_SECONDS=0.5\n")
        assert SchedulerSettings().tick_interval_seconds == 0.5


class TestValidation:
    def test_log_level_normalized(self):
        assert SchedulerSettings(log_level="debug").log_level == "DEBUG"

    def test_unknown_log_level_rejected(self):
        with pytest.raises(ValidationError):
            SchedulerSettings(log_level="chatty")

    @pytest.mark.parametrize("interval", [0, -1, 1.5])
    def test_tick_interval_bounds(self, interval):
        """The loop must wake at least once per second."""
        with pytest.raises(ValidationError):
            SchedulerSettings(tick_interval_seconds=interval)

    def test_worker_count_positive(self):
        with pytest.raises(ValidationError):
            SchedulerSettings(max_workers=0)

    def test_negative_grace_rejected(self):
        with pytest.raises(ValidationError):
            SchedulerSettings(misfire_grace_seconds=-1)
