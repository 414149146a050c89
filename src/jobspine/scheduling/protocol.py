"""Tick backend protocol.

┌──────────────────────────────────────────────────────────────────────────────┐
│  TICK BACKEND PROTOCOL                                                        │
│                                                                               │
│  The scheduler is a "beat-as-poller": a backend decides WHEN ticks happen,   │
│  the Scheduler decides WHAT happens on each tick.                            │
│                                                                               │
│   ┌─────────────────┐      run_tick()      ┌─────────────────────────┐       │
│   │  Thread Backend │ ───────────────────► │  Scheduler              │       │
│   │  (default)      │                      │  - capture instant      │       │
│   └─────────────────┘                      │  - evaluate schedules   │       │
│                                            │  - try advisory locks   │       │
│   ┌─────────────────┐      run_tick()      │  - submit to pool       │       │
│   │  Manual driving │ ───────────────────► │                         │       │
│   │  (tests, CLI)   │                      └─────────────────────────┘       │
│   └─────────────────┘                                                        │
│                                                                               │
│  Backends must call the tick at least once per second; a tick that comes    │
│  late is still correct because due evaluation covers the whole window       │
│  since the previous tick.                                                    │
└──────────────────────────────────────────────────────────────────────────────┘
"""

from __future__ import annotations

from collections.abc import Callable
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Protocol, runtime_checkable

TickCallback = Callable[[], Any]


@runtime_checkable
class SchedulerBackend(Protocol):
    """Protocol for pluggable tick timing backends.

    Example (custom backend):
        >>> class MyBackend:
        ...     name = "custom"
        ...
        ...     def start(self, tick_callback, interval_seconds=1.0):
        ...         my_timer.every(interval_seconds, tick_callback)
        ...
        ...     def stop(self):
        ...         my_timer.cancel()
        ...
        ...     def health(self) -> dict:
        ...         return {"healthy": True, "backend": "custom"}
    """

    name: str

    def start(self, tick_callback: TickCallback, interval_seconds: float = 1.0) -> None:
        """Start calling ``tick_callback`` every ``interval_seconds``. Must not block."""
        ...

    def stop(self) -> None:
        """Stop ticking; waits for a tick in progress to return."""
        ...

    def health(self) -> dict[str, Any]:
        """Return at least ``healthy``, ``backend``, ``tick_count`` and ``last_tick``."""
        ...


@dataclass
class BackendHealth:
    """Structured backend health response."""

    healthy: bool
    backend: str
    tick_count: int = 0
    last_tick: datetime | None = None
    extra: dict[str, Any] = field(default_factory=dict)

    def to_dict(self) -> dict[str, Any]:
        return {
            "healthy": self.healthy,
            "backend": self.backend,
            "tick_count": self.tick_count,
            "last_tick": self.last_tick.isoformat() if self.last_tick else None,
            **self.extra,
        }
