"""
Fixtures for scheduler tests.

Schedulers built here use a ``StubBackend`` that never ticks on its own, so
every tick in a test comes from an explicit ``run_tick`` call.
"""

import pytest

from jobspine.scheduling.events import RecordingEventSink
from jobspine.scheduling.lock_manager import AdvisoryLockManager
from jobspine.scheduling.outcome_log import MemoryOutcomeLog
from jobspine.scheduling.service import Scheduler


class StubBackend:
    """Backend that records its callback instead of running a loop."""

    name = "stub"

    def __init__(self):
        self.callback = None
        self.interval = None
        self.started = False
        self.stopped = False

    def start(self, tick_callback, interval_seconds=1.0):
        self.callback = tick_callback
        self.interval = interval_seconds
        self.started = True

    def stop(self):
        self.started = False
        self.stopped = True

    def health(self):
        return {"healthy": self.started, "backend": self.name, "tick_count": 0, "last_tick": None}


@pytest.fixture
def stub_backend():
    return StubBackend()


@pytest.fixture
def make_scheduler(engine, clock):
    """Factory for schedulers sharing the test database, stopped on teardown."""
    created = []

    def factory(registry, *, instance_id=None, lock_manager=None, outcome_log=None, **kwargs):
        scheduler = Scheduler(
            registry,
            lock_manager or AdvisoryLockManager(engine, instance_id=instance_id),
            outcome_log if outcome_log is not None else MemoryOutcomeLog(),
            clock=kwargs.pop("clock", clock),
            backend=kwargs.pop("backend", StubBackend()),
            events=[RecordingEventSink()],
            **kwargs,
        )
        created.append(scheduler)
        return scheduler

    yield factory
    for scheduler in created:
        scheduler.stop(grace_seconds=5)
