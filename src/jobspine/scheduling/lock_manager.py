"""Advisory lock manager - cross-replica mutual exclusion for due jobs.

Manifesto:
    Several replicas evaluate the same schedules at the same second. Exactly
    one of them may run a given job at a time, and a replica that dies while
    running must not leave the job locked forever. Both properties come from
    binding each lock to a storage session: the storage engine drops the lock
    when the session ends, whether by an explicit unlock, a clean close or a
    broken connection.

This module provides non-blocking, session-scoped advisory locks keyed by job
name, with one dedicated storage connection per held lock.

Tags:
    jobspine, scheduling, advisory-locks, session-scoped, concurrency, safety

Doc-Types:
    api-reference, architecture-diagram


    Lock Manager Architecture::

        try_acquire("digest")
            │  reserve key       → False if held, pending or at max_sessions
            │  engine.connect()  → dedicated session for this attempt
            ▼
        backend.try_lock(session, "digest")   (never blocks)
            ├── True  → keep session open, remember it under "digest"
            └── False → close session, return False (another holder)

        release("digest")
            │  pop session
            ▼
        backend.unlock(session, "digest")
            ├── ok     → close session (returned to the pool)
            └── error  → invalidate session (physically closed, so the
                         storage engine reclaims the lock), close

    Backends (selected from engine.dialect.name):
        postgresql      pg_try_advisory_lock(bigint) / pg_advisory_unlock
        mysql, mariadb  GET_LOCK(name, 0) / RELEASE_LOCK(name)
        anything else   process-local lock table keyed by database URL.
                        Valid for replicas inside ONE process only (tests,
                        single-node SQLite deployments).
"""

from __future__ import annotations

import hashlib
import logging
import threading
from collections.abc import Iterator
from contextlib import contextmanager
from typing import Protocol
from uuid import uuid4

from sqlalchemy import text
from sqlalchemy.engine import Connection, Engine
from sqlalchemy.exc import SQLAlchemyError

from jobspine.core.errors import LockContention, StorageUnavailable

logger = logging.getLogger(__name__)

_MYSQL_MAX_LOCK_NAME = 64


def advisory_key(name: str) -> int:
    """Stable signed 64-bit key for a lock name.

    Derived from a BLAKE2b digest, so the same name maps to the same key in
    every process and across deploys (unlike ``hash()``).
    """
    digest = hashlib.blake2b(name.encode("utf-8"), digest_size=8).digest()
    return int.from_bytes(digest, "big", signed=True)


class LockBackend(Protocol):
    """Storage-specific lock statements executed on a dedicated session."""

    name: str

    def try_lock(self, session: Connection, key: str) -> bool: ...

    def unlock(self, session: Connection, key: str) -> bool: ...

    def session_closed(self, session: Connection) -> None: ...


class PostgresLockBackend:
    """PostgreSQL session-level advisory locks."""

    name = "postgresql"

    def try_lock(self, session: Connection, key: str) -> bool:
        row = session.execute(
            text("SELECT pg_try_advisory_lock(:key)"), {"key": advisory_key(key)}
        ).scalar()
        return bool(row)

    def unlock(self, session: Connection, key: str) -> bool:
        row = session.execute(
            text("SELECT pg_advisory_unlock(:key)"), {"key": advisory_key(key)}
        ).scalar()
        return bool(row)

    def session_closed(self, session: Connection) -> None:
        # The server drops session locks itself
        return None


class MySQLLockBackend:
    """MySQL / MariaDB named locks (``GET_LOCK`` with zero timeout)."""

    name = "mysql"

    @staticmethod
    def lock_name(key: str) -> str:
        if len(key) <= _MYSQL_MAX_LOCK_NAME:
            return key
        return "jobspine:" + hashlib.blake2b(key.encode("utf-8"), digest_size=16).hexdigest()

    def try_lock(self, session: Connection, key: str) -> bool:
        row = session.execute(
            text("SELECT GET_LOCK(:name, 0)"), {"name": self.lock_name(key)}
        ).scalar()
        return row == 1

    def unlock(self, session: Connection, key: str) -> bool:
        row = session.execute(
            text("SELECT RELEASE_LOCK(:name)"), {"name": self.lock_name(key)}
        ).scalar()
        return row == 1

    def session_closed(self, session: Connection) -> None:
        return None


# namespace -> {lock key -> owning session}
_LOCAL_TABLES: dict[str, dict[str, Connection]] = {}
_LOCAL_GUARD = threading.Lock()


class LocalLockBackend:
    """Process-local emulation of session-scoped advisory locks.

    Locks are owned by the session object that acquired them and vanish
    when that session is closed. Managers built on the same database URL
    share one table, so several managers in a process behave like several
    replicas sharing a database.
    """

    name = "local"

    def __init__(self, namespace: str):
        self.namespace = namespace

    @classmethod
    def for_engine(cls, engine: Engine) -> LocalLockBackend:
        namespace = engine.url.render_as_string(hide_password=False)
        if engine.url.database in (None, "", ":memory:"):
            # Each in-memory database is private to its engine
            namespace = f"{namespace}#{id(engine)}"
        return cls(namespace)

    def _table(self) -> dict[str, Connection]:
        return _LOCAL_TABLES.setdefault(self.namespace, {})

    def try_lock(self, session: Connection, key: str) -> bool:
        with _LOCAL_GUARD:
            table = self._table()
            if key in table:
                return False
            table[key] = session
            return True

    def unlock(self, session: Connection, key: str) -> bool:
        with _LOCAL_GUARD:
            table = self._table()
            if table.get(key) is session:
                del table[key]
                return True
            return False

    def session_closed(self, session: Connection) -> None:
        with _LOCAL_GUARD:
            table = self._table()
            for key in [k for k, owner in table.items() if owner is session]:
                del table[key]

    def holder_count(self) -> int:
        with _LOCAL_GUARD:
            return len(self._table())


def backend_for(engine: Engine) -> LockBackend:
    """Choose the lock backend matching the engine's dialect."""
    dialect = engine.dialect.name
    if dialect == "postgresql":
        return PostgresLockBackend()
    if dialect in ("mysql", "mariadb"):
        return MySQLLockBackend()
    return LocalLockBackend.for_engine(engine)


class AdvisoryLockManager:
    """Non-blocking advisory locks bound to dedicated storage sessions.

    Example:
        >>> manager = AdvisoryLockManager(engine, instance_id="replica-1")
        >>>
        >>> if manager.try_acquire("digest"):
        ...     try:
        ...         run_digest()
        ...     finally:
        ...         manager.release("digest")
        ... else:
        ...     print("Another replica is running digest")
    """

    def __init__(
        self,
        engine: Engine,
        *,
        backend: LockBackend | None = None,
        instance_id: str | None = None,
        max_sessions: int | None = None,
    ) -> None:
        """Initialize lock manager.

        Args:
            engine: SQLAlchemy engine the lock sessions are drawn from
            backend: Lock statements to use. Chosen from the dialect if None.
            instance_id: Identifier of this replica. Auto-generated if not
                provided.
            max_sessions: Cap on lock sessions open at once. Acquisitions past
                the cap are refused instead of waiting for a pooled connection.
        """
        self.engine = engine
        self.backend = backend or backend_for(engine)
        self.instance_id = instance_id or str(uuid4())
        self.max_sessions = max_sessions
        self._sessions: dict[str, Connection] = {}
        # Keys whose lock statement is in progress, outside _guard
        self._pending: set[str] = set()
        self._guard = threading.Lock()

    # === Acquire / release ===

    def try_acquire(self, key: str) -> bool:
        """Attempt to take the lock for ``key`` without waiting.

        Returns:
            True if acquired (the session stays open until ``release``),
            False if another session holds it, this manager already holds or
            is acquiring it, or ``max_sessions`` lock sessions are open.

        Raises:
            StorageUnavailable: the lock storage could not be reached
        """
        with self._guard:
            if key in self._sessions or key in self._pending:
                return False
            if self.max_sessions is not None and self._open_count() >= self.max_sessions:
                logger.debug(f"Lock {key} refused: {self.max_sessions} lock sessions open")
                return False
            self._pending.add(key)

        try:
            return self._acquire(key)
        finally:
            with self._guard:
                self._pending.discard(key)

    def _acquire(self, key: str) -> bool:
        try:
            session = self.engine.connect()
        except SQLAlchemyError as exc:
            raise StorageUnavailable(
                f"Cannot open lock session for {key!r}", cause=exc
            ).with_context(lock_key=key, instance_id=self.instance_id) from exc

        acquired = False
        try:
            acquired = self.backend.try_lock(session, key)
            if session.in_transaction():
                session.commit()
        except SQLAlchemyError as exc:
            self._discard(session, invalidate=True)
            raise StorageUnavailable(
                f"Lock statement failed for {key!r}", cause=exc
            ).with_context(lock_key=key, instance_id=self.instance_id) from exc
        except BaseException:
            self._discard(session, invalidate=True)
            raise

        if not acquired:
            self._discard(session)
            logger.debug(f"Lock {key} held elsewhere")
            return False

        with self._guard:
            self._sessions[key] = session
        logger.debug(f"Acquired lock {key} ({self.backend.name})")
        return True

    def _open_count(self) -> int:
        return len(self._sessions) + len(self._pending)

    def release(self, key: str) -> bool:
        """Release the lock for ``key`` and close its session.

        Idempotent: releasing a key this manager does not hold does nothing
        and returns False. Never raises for storage failures; if the unlock
        statement fails the session is invalidated instead, which ends it
        and with it the lock.
        """
        with self._guard:
            session = self._sessions.pop(key, None)
        if session is None:
            return False

        try:
            if session.in_transaction():
                session.rollback()
            released = self.backend.unlock(session, key)
            if session.in_transaction():
                session.commit()
        except SQLAlchemyError as exc:
            logger.warning(f"Unlock of {key} failed, invalidating its session: {exc}")
            self._discard(session, invalidate=True)
            return True

        if not released:
            logger.warning(f"Lock {key} was not held by its session at release")
        self._discard(session)
        logger.debug(f"Released lock {key}")
        return True

    def _discard(self, session: Connection, *, invalidate: bool = False) -> None:
        try:
            if invalidate:
                session.invalidate()
            session.close()
        except SQLAlchemyError as exc:
            logger.warning(f"Closing lock session failed: {exc}")
        finally:
            self.backend.session_closed(session)

    # === Introspection ===

    def held_keys(self) -> list[str]:
        with self._guard:
            return list(self._sessions)

    def is_held(self, key: str) -> bool:
        with self._guard:
            return key in self._sessions

    def close(self) -> int:
        """Release every lock this manager holds. Returns how many."""
        released = 0
        for key in self.held_keys():
            if self.release(key):
                released += 1
        return released

    @contextmanager
    def guard(self, key: str) -> Iterator[None]:
        """Hold ``key`` for the duration of the block.

        Raises:
            LockContention: another session holds the lock
        """
        if not self.try_acquire(key):
            raise LockContention(key).with_context(instance_id=self.instance_id)
        try:
            yield
        finally:
            self.release(key)


__all__ = [
    "AdvisoryLockManager",
    "LockBackend",
    "PostgresLockBackend",
    "MySQLLockBackend",
    "LocalLockBackend",
    "advisory_key",
    "backend_for",
]
