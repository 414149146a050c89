"""Tests for the jobspine CLI."""

import json
import os
import re
import textwrap
from datetime import UTC, datetime, timedelta

import pytest
from sqlalchemy import inspect
from typer.testing import CliRunner

from jobspine import __version__
from jobspine.cli.app import app
from jobspine.core.storage import create_schema, create_storage_engine
from jobspine.scheduling.outcome_log import SqlOutcomeLog
from jobspine.scheduling.result import JobResult, OutcomeEntry

runner = CliRunner()


@pytest.fixture(autouse=True)
def _isolated_cwd(monkeypatch, tmp_path):
    """Run every command from an empty directory with no JOBSPINE_* settings."""
    monkeypatch.chdir(tmp_path)
    for name in list(os.environ):
        if name.startswith("JOBSPINE_"):
            monkeypatch.delenv(name)


@pytest.fixture
def database(tmp_path):
    """URL of a SQLite database with the schema created."""
    url = f"sqlite:///{tmp_path / 'cli.db'}"
    engine = create_storage_engine(url)
    create_schema(engine)
    engine.dispose()
    return url


@pytest.fixture
def jobs_module(tmp_path, monkeypatch, request):
    """Write an importable module defining a registry and return its name."""
    name = re.sub(r"\W", "_", f"cli_jobs_{request.node.name}")
    source = textwrap.dedent(
        """
        from jobspine.scheduling import JobRegistry, job

        registry = JobRegistry()
        registry.define("digest", "0 */5 * * * *", lambda context: None, description="Send digest")
        registry.define("cleanup", "0 0 3 * * *", lambda context: None)

        not_a_registry = 42


        def build():
            return registry


        @job("decorated", "0 * * * * *")
        def decorated(context):
            \"\"\"Registered on the default registry.\"\"\"
        """
    )
    (tmp_path / f"{name}.py").write_text(source)
    monkeypatch.syspath_prepend(str(tmp_path))
    return name


def add_outcomes(url):
    engine = create_storage_engine(url)
    log = SqlOutcomeLog(engine)
    base = datetime(2025, 1, 6, 12, 0, tzinfo=UTC)
    for minutes, failed in ((0, False), (5, True), (10, False)):
        started = base + timedelta(minutes=minutes)
        finished = started + timedelta(milliseconds=20)
        if failed:
            result = JobResult.failure(RuntimeError("smtp down"), started_at=started, finished_at=finished)
        else:
            result = JobResult.success({"sent": 1}, started_at=started, finished_at=finished)
        log.append(OutcomeEntry.create("digest", result, attempted_at=started, instance_id="r1"))
    log.append(
        OutcomeEntry.create(
            "email",
            JobResult.success(started_at=base, finished_at=base),
            attempted_at=base,
        )
    )
    engine.dispose()


class TestVersion:
    def test_version_flag(self):
        result = runner.invoke(app, ["--version"])
        assert result.exit_code == 0
        assert f"jobspine {__version__}" in result.output

    def test_version_command(self):
        result = runner.invoke(app, ["version"])
        assert result.exit_code == 0
        assert __version__ in result.output


class TestCron:
    def test_valid_expression(self):
        result = runner.invoke(
            app, ["cron", "0 */5 * * * *", "--after", "2025-01-06T12:00:00", "-n", "2"]
        )
        assert result.exit_code == 0
        assert "Valid" in result.output
        assert "2025-01-06T12:05:00+00:00" in result.output
        assert "2025-01-06T12:10:00+00:00" in result.output

    def test_json_output(self):
        result = runner.invoke(
            app, ["cron", "0 0 0 13 * FRI", "--after", "2025-01-06T12:00:00", "-n", "2", "--json"]
        )
        assert result.exit_code == 0
        data = json.loads(result.output)
        assert data == {
            "expression": "0 0 0 13 * FRI",
            "next": ["2025-01-10T00:00:00+00:00", "2025-01-13T00:00:00+00:00"],
        }

    @pytest.mark.parametrize("expression", ["* * * * *", "0 0 0 30 2 *", "* * * L * *"])
    def test_invalid_expression(self, expression):
        result = runner.invoke(app, ["cron", expression])
        assert result.exit_code == 1


class TestDb:
    def test_init_creates_schema(self, tmp_path):
        url = f"sqlite:///{tmp_path / 'fresh.db'}"
        result = runner.invoke(app, ["db", "init", "--database", url])

        assert result.exit_code == 0
        assert "Schema ready" in result.output
        engine = create_storage_engine(url)
        try:
            assert "core_job_outcomes" in inspect(engine).get_table_names()
        finally:
            engine.dispose()

    def test_init_uses_environment(self, tmp_path, monkeypatch):
        monkeypatch.setenv("JOBSPINE_DATABASE_URL", f"sqlite:///{tmp_path / 'env.db'}")
        result = runner.invoke(app, ["db", "init"])
        assert result.exit_code == 0
        assert (tmp_path / "env.db").exists()


class TestJobs:
    def test_list_registry_attribute(self, jobs_module):
        result = runner.invoke(app, ["jobs", "list", "--app", f"{jobs_module}:registry"])
        assert result.exit_code == 0
        assert "digest" in result.output
        assert "cleanup" in result.output

    def test_list_json_from_factory(self, jobs_module):
        result = runner.invoke(app, ["jobs", "list", "-a", f"{jobs_module}:build", "--json"])
        assert result.exit_code == 0
        data = json.loads(result.output)
        assert [row["name"] for row in data] == ["digest", "cleanup"]
        assert data[0]["schedule"] == "0 */5 * * * *"
        assert data[0]["description"] == "Send digest"
        assert data[0]["next_run"].endswith("+00:00")

    def test_list_default_registry(self, jobs_module):
        result = runner.invoke(app, ["jobs", "list", "-a", jobs_module, "--json"])
        assert result.exit_code == 0
        data = json.loads(result.output)
        assert [row["name"] for row in data] == ["decorated"]
        assert data[0]["description"] == "Registered on the default registry."

    @pytest.mark.parametrize(
        "suffix", [":missing_attribute", ":not_a_registry"]
    )
    def test_bad_attribute(self, jobs_module, suffix):
        result = runner.invoke(app, ["jobs", "list", "-a", f"{jobs_module}{suffix}"])
        assert result.exit_code == 1

    def test_unimportable_module(self):
        result = runner.invoke(app, ["jobs", "list", "-a", "no_such_jobspine_module"])
        assert result.exit_code == 1


class TestOutcomes:
    def test_list_table(self, database):
        add_outcomes(database)
        result = runner.invoke(app, ["outcomes", "list", "--database", database])
        assert result.exit_code == 0
        assert "Outcomes" in result.output

    def test_list_json_filtered(self, database):
        add_outcomes(database)
        result = runner.invoke(
            app, ["outcomes", "list", "-d", database, "--job", "digest", "-n", "2", "--json"]
        )
        assert result.exit_code == 0
        data = json.loads(result.output)
        assert [row["attempted_at"] for row in data] == [
            "2025-01-06T12:10:00+00:00",
            "2025-01-06T12:05:00+00:00",
        ]
        assert data[1]["status"] == "failure"
        assert data[1]["error"] == "RuntimeError: smtp down"

    def test_list_empty(self, database):
        result = runner.invoke(app, ["outcomes", "list", "-d", database])
        assert result.exit_code == 0
        assert "No items" in result.output

    def test_list_without_schema_fails(self, tmp_path):
        url = f"sqlite:///{tmp_path / 'empty.db'}"
        result = runner.invoke(app, ["outcomes", "list", "-d", url])
        assert result.exit_code == 1

    def test_purge(self, database):
        """Entries from 2025 are far past the default retention."""
        add_outcomes(database)
        result = runner.invoke(app, ["outcomes", "purge", "-d", database, "--batch-size", "2"])
        assert result.exit_code == 0
        assert "Deleted 4 outcome entries" in result.output

        engine = create_storage_engine(database)
        try:
            assert SqlOutcomeLog(engine).count() == 0
        finally:
            engine.dispose()

    def test_purge_custom_retention(self, database):
        add_outcomes(database)
        result = runner.invoke(
            app,
            [
                "outcomes",
                "purge",
                "-d",
                database,
                "--success-retention",
                str(10 * 365 * 86400),
                "--failure-retention",
                "0",
            ],
        )
        assert result.exit_code == 0
        assert "Deleted 1 outcome entry" in result.output


@pytest.mark.slow
class TestRun:
    def test_run_for_duration(self, jobs_module, tmp_path):
        url = f"sqlite:///{tmp_path / 'run.db'}"
        result = runner.invoke(
            app,
            ["run", "--app", f"{jobs_module}:registry", "--database", url, "--duration", "0.3"],
        )
        assert result.exit_code == 0, result.output
        assert "jobspine running" in result.output
        assert "jobspine stopped" in result.output
        assert (tmp_path / "run.db").exists()
