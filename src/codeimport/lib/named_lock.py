"""Store-held named locks.

Three primitives share one small interface:

- ``MySQLNamedLock`` uses the server's GET_LOCK/RELEASE_LOCK functions.
- ``PostgresAdvisoryLock`` uses session-level advisory locks.

  Both belong to one dedicated connection and are dropped by the server when
  that connection dies, so a crashed importer never leaves them behind.

- ``TableNamedLock`` stores one row per lock in ``application_locks`` for
  stores without native named locks (SQLite in tests and local runs). Rows
  carry a lease measured on the store's clock; the holder renews it through
  ``refresh`` and a crashed holder's row is reclaimed once it lapses.

All raise ``StoreConnectivityError`` when the store itself fails; a lock that
is merely busy is reported by ``acquire`` returning False.
"""
from __future__ import annotations

import os
import socket
import threading
import time
import uuid
from datetime import datetime, timedelta, timezone
from typing import Callable, Optional, Protocol

import structlog
from sqlalchemy import func, select, text
from sqlalchemy.engine import Connection
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.orm import Session

from codeimport.errors import StoreConnectivityError
from codeimport.lib.hashing import name_digest
from codeimport.models.application_lock import ApplicationLock

log = structlog.get_logger()


class NamedLock(Protocol):
    # seconds between lease renewals while held; None when the lock needs none
    refresh_interval: Optional[float]

    def acquire(self, name: str, timeout_seconds: int) -> bool: ...

    def release(self, name: str) -> None: ...

    def refresh(self, name: str) -> None: ...

    def holder(self, name: str) -> Optional[str]: ...

    def session_id(self) -> Optional[str]: ...


class _ConnectionLock:
    """Shared plumbing for locks bound to a single dedicated connection.

    The connection must not go back to the pool while a lock is held, since
    the server ties the lock to the session that took it.
    """

    refresh_interval: Optional[float] = None

    def __init__(self, connection: Connection):
        self.connection = connection

    def _scalar(self, sql: str, **params):
        try:
            return self.connection.execute(text(sql), params).scalar()
        except SQLAlchemyError as exc:
            raise StoreConnectivityError(f"named lock query failed: {exc}", {"sql": sql}) from exc


class MySQLNamedLock(_ConnectionLock):
    """GET_LOCK based lock."""

    def acquire(self, name: str, timeout_seconds: int) -> bool:
        result = self._scalar("SELECT GET_LOCK(:name, :timeout)", name=name, timeout=int(timeout_seconds))
        if result is None:
            # NULL means the server could not even attempt the lock
            raise StoreConnectivityError(f"GET_LOCK returned NULL for '{name}'", {"lock_name": name})
        return int(result) == 1

    def release(self, name: str) -> None:
        result = self._scalar("SELECT RELEASE_LOCK(:name)", name=name)
        if result is None or int(result) != 1:
            raise StoreConnectivityError(
                f"RELEASE_LOCK did not release '{name}' (result={result})", {"lock_name": name}
            )

    def refresh(self, name: str) -> None:
        # nothing to renew; only confirm this session still owns the lock
        result = self._scalar("SELECT IS_USED_LOCK(:name) = CONNECTION_ID()", name=name)
        if result is None or int(result) != 1:
            raise StoreConnectivityError(f"lock '{name}' is no longer held by this session", {"lock_name": name})

    def holder(self, name: str) -> Optional[str]:
        result = self._scalar("SELECT IS_USED_LOCK(:name)", name=name)
        return None if result is None else f"connection {result}"

    def session_id(self) -> Optional[str]:
        result = self._scalar("SELECT CONNECTION_ID()")
        return None if result is None else f"connection {result}"


_HOLDER_SQL = (
    "SELECT pid FROM pg_locks WHERE locktype = 'advisory' AND granted"
    " AND classid = :hi AND objid = :lo AND objsubid = 1"
)


class PostgresAdvisoryLock(_ConnectionLock):
    """Session-level advisory lock keyed by a 60-bit digest of the lock name.

    ``pg_try_advisory_lock`` never blocks, so the per-attempt timeout is spent
    polling it.
    """

    def __init__(
        self,
        connection: Connection,
        poll_interval: float = 0.05,
        sleep=time.sleep,
        monotonic=time.monotonic,
    ):
        super().__init__(connection)
        self.poll_interval = poll_interval
        self._sleep = sleep
        self._monotonic = monotonic

    @staticmethod
    def key_for(name: str) -> int:
        # 15 hex digits keep the key positive and classid below 2**31
        return int(name_digest(name)[:15], 16)

    def _key_parts(self, name: str) -> dict:
        key = self.key_for(name)
        return {"hi": key >> 32, "lo": key & 0xFFFFFFFF}

    def acquire(self, name: str, timeout_seconds: int) -> bool:
        key = self.key_for(name)
        deadline = self._monotonic() + max(0, timeout_seconds)
        while True:
            result = self._scalar("SELECT pg_try_advisory_lock(:key)", key=key)
            if result is None:
                raise StoreConnectivityError(f"pg_try_advisory_lock returned NULL for '{name}'", {"lock_name": name})
            if result:
                return True
            if self._monotonic() >= deadline:
                return False
            self._sleep(self.poll_interval)

    def release(self, name: str) -> None:
        result = self._scalar("SELECT pg_advisory_unlock(:key)", key=self.key_for(name))
        if not result:
            raise StoreConnectivityError(f"pg_advisory_unlock did not release '{name}'", {"lock_name": name})

    def refresh(self, name: str) -> None:
        held = self._scalar(
            "SELECT count(*) FROM pg_locks WHERE locktype = 'advisory' AND granted"
            " AND classid = :hi AND objid = :lo AND objsubid = 1 AND pid = pg_backend_pid()",
            **self._key_parts(name),
        )
        if not held:
            raise StoreConnectivityError(f"lock '{name}' is no longer held by this session", {"lock_name": name})

    def holder(self, name: str) -> Optional[str]:
        result = self._scalar(_HOLDER_SQL, **self._key_parts(name))
        return None if result is None else f"backend {result}"

    def session_id(self) -> Optional[str]:
        result = self._scalar("SELECT pg_backend_pid()")
        return None if result is None else f"backend {result}"


class TableNamedLock:
    """Row-per-lock implementation on the ``application_locks`` table.

    Lease times are read from the store (``CURRENT_TIMESTAMP``) so hosts with
    different local clocks or timezones agree on when a row has lapsed.

    Usage:
        lock = TableNamedLock(session)
        if lock.acquire("codeimport_openemr_RXNORM", 10):
            try:
                ...  # call lock.refresh(...) at least every refresh_interval
            finally:
                lock.release("codeimport_openemr_RXNORM")
    """

    def __init__(
        self,
        session: Session,
        lease_seconds: int = 3600,
        poll_interval: float = 0.5,
        sleep=time.sleep,
        monotonic=time.monotonic,
        clock: Optional[Callable[[], datetime]] = None,
    ):
        """Initialize table lock.

        Args:
            session: SQLAlchemy session
            lease_seconds: Lease length, renewed by each refresh (default: 1 hour)
            poll_interval: Seconds between checks while waiting inside acquire
            clock: Overrides the store clock (tests)
        """
        self.session = session
        self.lease_seconds = lease_seconds
        self.poll_interval = poll_interval
        self._sleep = sleep
        self._monotonic = monotonic
        self._clock = clock
        # the keepalive thread shares the session with the caller
        self._mutex = threading.RLock()
        self.process_id = os.getpid()
        self.hostname = socket.gethostname()
        self.owner_token = f"{self.hostname[:40]}:{self.process_id}:{uuid.uuid4().hex[:12]}"

    @property
    def refresh_interval(self) -> float:
        return max(1.0, self.lease_seconds / 3)

    def _store_now(self) -> datetime:
        if self._clock is not None:
            return self._clock()
        now = self.session.execute(select(func.current_timestamp())).scalar()
        if isinstance(now, str):
            now = datetime.fromisoformat(now)
        if now.tzinfo is not None:
            now = now.astimezone(timezone.utc).replace(tzinfo=None)
        return now

    def _lease_end(self, now: datetime) -> datetime:
        return now + timedelta(seconds=self.lease_seconds)

    def _current(self, name: str) -> Optional[ApplicationLock]:
        return self.session.query(ApplicationLock).filter_by(lock_name=name).first()

    def _reclaim_lapsed(self, name: str, now: datetime) -> None:
        # conditional delete so a lease renewed meanwhile is left alone
        reclaimed = (
            self.session.query(ApplicationLock)
            .filter(ApplicationLock.lock_name == name, ApplicationLock.expires_at < now)
            .delete(synchronize_session=False)
        )
        self.session.commit()
        if reclaimed:
            log.warning("lock_lease_reclaimed", lock_name=name)

    def acquire(self, name: str, timeout_seconds: int) -> bool:
        deadline = self._monotonic() + max(0, timeout_seconds)
        with self._mutex:
            try:
                while True:
                    # rollback ends any open read transaction so other writers' commits are visible
                    self.session.rollback()
                    now = self._store_now()
                    self._reclaim_lapsed(name, now)
                    existing = self._current(name)
                    if existing is not None:
                        if existing.owner_token == self.owner_token:
                            return True
                        if self._monotonic() >= deadline:
                            return False
                        self._sleep(self.poll_interval)
                        continue

                    self.session.add(
                        ApplicationLock(
                            lock_name=name,
                            owner_token=self.owner_token,
                            process_id=self.process_id,
                            hostname=self.hostname,
                            acquired_at=now,
                            expires_at=self._lease_end(now),
                        )
                    )
                    try:
                        self.session.commit()
                        return True
                    except IntegrityError:
                        # Another process inserted the row first
                        self.session.rollback()
                        if self._monotonic() >= deadline:
                            return False
            except SQLAlchemyError as exc:
                self.session.rollback()
                raise StoreConnectivityError(f"lock table access failed: {exc}", {"lock_name": name}) from exc

    def refresh(self, name: str) -> None:
        """Extend the lease of a lock this instance holds."""
        with self._mutex:
            try:
                self.session.rollback()
                now = self._store_now()
                renewed = (
                    self.session.query(ApplicationLock)
                    .filter_by(lock_name=name, owner_token=self.owner_token)
                    .update({ApplicationLock.expires_at: self._lease_end(now)}, synchronize_session=False)
                )
                self.session.commit()
            except SQLAlchemyError as exc:
                self.session.rollback()
                raise StoreConnectivityError(f"lock table refresh failed: {exc}", {"lock_name": name}) from exc
        if not renewed:
            raise StoreConnectivityError(f"lock '{name}' is no longer held by {self.owner_token}", {"lock_name": name})

    def release(self, name: str) -> None:
        with self._mutex:
            try:
                self.session.rollback()
                deleted = (
                    self.session.query(ApplicationLock)
                    .filter_by(lock_name=name, owner_token=self.owner_token)
                    .delete(synchronize_session=False)
                )
                self.session.commit()
            except SQLAlchemyError as exc:
                self.session.rollback()
                raise StoreConnectivityError(f"lock table release failed: {exc}", {"lock_name": name}) from exc
        if not deleted:
            raise StoreConnectivityError(f"lock '{name}' was not held by {self.owner_token}", {"lock_name": name})

    def holder(self, name: str) -> Optional[str]:
        with self._mutex:
            try:
                self.session.rollback()
                now = self._store_now()
                existing = self._current(name)
            except SQLAlchemyError as exc:
                raise StoreConnectivityError(f"lock table access failed: {exc}", {"lock_name": name}) from exc
        if existing is None or existing.is_expired(now):
            return None
        return existing.describe()

    def session_id(self) -> Optional[str]:
        return self.owner_token


def _lock_connection(engine) -> Connection:
    try:
        return engine.connect().execution_options(isolation_level="AUTOCOMMIT")
    except SQLAlchemyError as exc:
        raise StoreConnectivityError(f"could not open lock connection: {exc}") from exc


def named_lock_for(engine, session: Optional[Session] = None) -> NamedLock:
    """Pick the lock primitive for an engine's dialect.

    MySQL and PostgreSQL get a dedicated connection for their server-side
    locks; everything else falls back to the lock table through ``session``
    (or a new one bound to the engine).
    """
    dialect = (engine.dialect.name or "").lower()
    if dialect.startswith("mysql"):
        return MySQLNamedLock(_lock_connection(engine))
    if dialect.startswith("postgres"):
        return PostgresAdvisoryLock(_lock_connection(engine))
    if session is None:
        session = Session(bind=engine, expire_on_commit=False)
    return TableNamedLock(session)
