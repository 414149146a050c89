"""Tests for scheduler event sinks and the emitter."""

from unittest.mock import MagicMock

import pytest

from jobspine.scheduling.events import (
    EXECUTION_FAILED,
    EXECUTION_FINISHED,
    EXECUTION_STARTED,
    JOB_DUE,
    JOB_MISFIRED,
    LOCK_DENIED,
    OUTCOME_NOT_RECORDED,
    STORAGE_UNAVAILABLE,
    TICK_SKIPPED,
    EventEmitter,
    EventSink,
    LoggingEventSink,
    RecordingEventSink,
)


class TestRecordingEventSink:
    def test_records_and_filters(self):
        sink = RecordingEventSink()
        sink.emit(JOB_DUE, job="digest")
        sink.emit(JOB_DUE, job="email")
        sink.emit(LOCK_DENIED, job="digest")

        assert isinstance(sink, EventSink)
        assert sink.names() == [JOB_DUE, JOB_DUE, LOCK_DENIED]
        assert [e.job for e in sink.named(JOB_DUE)] == ["digest", "email"]
        assert len(sink.named(JOB_DUE, job="digest")) == 1

        sink.clear()
        assert sink.events == []

    def test_event_fields_copied(self):
        sink = RecordingEventSink()
        sink.emit(EXECUTION_FAILED, job="digest", error="boom")
        [event] = sink.events
        assert event.fields == {"job": "digest", "error": "boom"}
        assert event.emitted_at.tzinfo is not None


class TestLoggingEventSink:
    @pytest.mark.parametrize(
        "name, level",
        [
            (OUTCOME_NOT_RECORDED, "error"),
            (STORAGE_UNAVAILABLE, "error"),
            (JOB_MISFIRED, "warning"),
            (EXECUTION_FAILED, "warning"),
            (TICK_SKIPPED, "debug"),
            (LOCK_DENIED, "debug"),
            (JOB_DUE, "debug"),
            (EXECUTION_STARTED, "info"),
            (EXECUTION_FINISHED, "info"),
        ],
    )
    def test_level_by_event(self, name, level):
        sink = LoggingEventSink()
        sink._log = MagicMock()
        sink.emit(name, job="digest")
        getattr(sink._log, level).assert_called_once_with(name, job="digest")


class TestEventEmitter:
    def test_common_fields_merged(self):
        sink = RecordingEventSink()
        emitter = EventEmitter([sink], instance_id="r1")
        emitter.emit(JOB_DUE, job="digest")
        assert sink.events[0].fields == {"instance_id": "r1", "job": "digest"}

    def test_failing_sink_does_not_stop_others(self):
        broken = MagicMock()
        broken.emit.side_effect = RuntimeError("sink down")
        sink = RecordingEventSink()
        emitter = EventEmitter([broken, sink])

        emitter.emit(EXECUTION_FINISHED, job="digest")

        assert sink.names() == [EXECUTION_FINISHED]

    def test_defaults_to_logging_sink(self):
        emitter = EventEmitter()
        assert len(emitter.sinks) == 1
        assert isinstance(emitter.sinks[0], LoggingEventSink)
