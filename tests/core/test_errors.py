"""Tests for the jobspine error hierarchy."""

import pytest

from jobspine.core.errors import (
    ConfigurationError,
    ContextClosedError,
    DuplicateJobName,
    ErrorCategory,
    ErrorContext,
    ExecutionFailure,
    InvalidScheduleExpression,
    JobSpineError,
    LockContention,
    StorageUnavailable,
    UnknownJob,
    describe_error,
    is_retryable,
)


class TestErrorContext:
    """Tests for ErrorContext serialization."""

    def test_empty_context(self):
        assert ErrorContext().to_dict() == {}

    def test_only_set_fields_serialized(self):
        """None fields are dropped, metadata is merged in."""
        context = ErrorContext(job_name="digest", metadata={"tick": "12:00"})
        assert context.to_dict() == {"job_name": "digest", "tick": "12:00"}


class TestJobSpineError:
    """Tests for the base error."""

    def test_defaults(self):
        error = JobSpineError("boom")
        assert error.message == "boom"
        assert str(error) == "boom"
        assert error.category == ErrorCategory.INTERNAL
        assert error.retryable is False
        assert error.cause is None

    def test_overrides(self):
        error = JobSpineError("boom", category=ErrorCategory.STORAGE, retryable=True)
        assert error.category == ErrorCategory.STORAGE
        assert error.retryable is True

    def test_cause_chained(self):
        """The original exception becomes __cause__."""
        original = ValueError("bad")
        error = JobSpineError("wrapped", cause=original)
        assert error.cause is original
        assert error.__cause__ is original

    def test_with_context(self):
        """Known keys set fields, unknown keys land in metadata."""
        error = JobSpineError("boom").with_context(job_name="digest", shard=3)
        assert error.context.job_name == "digest"
        assert error.context.metadata == {"shard": 3}

    def test_to_dict(self):
        error = StorageUnavailable("db down", cause=ConnectionError("refused"))
        error.with_context(lock_key="digest")
        data = error.to_dict()
        assert data["error_type"] == "StorageUnavailable"
        assert data["message"] == "db down"
        assert data["category"] == "STORAGE"
        assert data["retryable"] is True
        assert data["context"] == {"lock_key": "digest"}
        assert data["cause"] == "ConnectionError: refused"

    def test_repr(self):
        assert repr(ConfigurationError("bad")) == "ConfigurationError('bad', category=CONFIG)"


class TestConfigurationErrors:
    """Boot-time errors."""

    def test_duplicate_job_name(self):
        error = DuplicateJobName("email")
        assert isinstance(error, ConfigurationError)
        assert error.job_name == "email"
        assert "'email'" in error.message
        assert error.context.job_name == "email"

    def test_unknown_job_lists_available(self):
        error = UnknownJob("missing", ["a", "b"])
        assert "a, b" in error.message
        assert error.available == ["a", "b"]

    def test_unknown_job_without_available(self):
        assert "none" in UnknownJob("missing").message

    def test_invalid_schedule_expression(self):
        error = InvalidScheduleExpression("*/0 * * * * *", "zero step")
        assert error.expression == "*/0 * * * * *"
        assert error.reason == "zero step"
        assert error.category == ErrorCategory.CONFIG
        assert error.context.metadata == {"expression": "*/0 * * * * *"}
        assert not error.retryable


class TestRuntimeErrors:
    """Errors contained per tick."""

    def test_lock_contention(self):
        error = LockContention("digest")
        assert error.key == "digest"
        assert error.category == ErrorCategory.LOCK
        assert error.context.lock_key == "digest"

    def test_storage_unavailable_retryable(self):
        assert StorageUnavailable("down").retryable is True

    def test_execution_failure_not_retryable_by_default(self):
        assert ExecutionFailure("failed").retryable is False
        assert ExecutionFailure("failed", retryable=True).retryable is True

    def test_context_closed(self):
        assert ContextClosedError("closed").category == ErrorCategory.INTERNAL


class TestHelpers:
    """is_retryable and describe_error."""

    @pytest.mark.parametrize(
        "error, expected",
        [
            (StorageUnavailable("down"), True),
            (ConfigurationError("bad"), False),
            (ValueError("plain"), False),
        ],
    )
    def test_is_retryable(self, error, expected):
        assert is_retryable(error) is expected

    def test_describe_plain_exception(self):
        assert describe_error(ValueError("bad input")) == "ValueError: bad input"

    def test_describe_empty_message(self):
        assert describe_error(KeyboardInterrupt()) == "KeyboardInterrupt"

    def test_describe_jobspine_error(self):
        assert describe_error(StorageUnavailable("down")) == "StorageUnavailable: down"

    def test_describe_wrapped_failure_uses_cause(self):
        """A wrapped failure is described by the exception the routine raised."""
        error = ExecutionFailure("job failed", cause=RuntimeError("smtp timeout"))
        assert describe_error(error) == "RuntimeError: smtp timeout"
