"""Per-category import lock with bounded retries.

One lock exists per (store instance, code type family). A single acquisition
runs this loop:

    attempt 1..max_attempts:
        request lock (per-attempt timeout)
            ACQUIRED    -> done
            STORE_ERROR -> raise immediately, never retried
            CONTENDED   -> initial delay 0?  raise NoWaitContention
                           attempts left?    note holder, sleep, back off
                           otherwise         raise LockContentionExhausted

Backoff after each sleep: delay = min(delay * 2, cap) + uniform(1, min(10, delay)).
"""
from __future__ import annotations

import enum
import random
import threading
import time
from contextlib import contextmanager
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Callable, Generator, Optional

import structlog

from codeimport.errors import (
    LockContentionExhausted,
    LockAcquisitionError,
    NoWaitContention,
    StoreConnectivityError,
)
from codeimport.lib.codetypes import CodeType
from codeimport.lib.hashing import name_digest
from codeimport.lib.named_lock import NamedLock

log = structlog.get_logger()

LOCK_NAME_PREFIX = "codeimport"
MAX_LOCK_NAME_LENGTH = 64
MAX_JITTER_SECONDS = 10


@dataclass(frozen=True)
class LockRetryPolicy:
    max_attempts: int = 5
    initial_delay_seconds: float = 5
    backoff_cap_seconds: float = 300
    per_attempt_timeout_seconds: int = 10

    def __post_init__(self):
        if self.max_attempts < 1:
            raise ValueError("max_attempts must be >= 1")
        if self.initial_delay_seconds < 0:
            raise ValueError("initial_delay_seconds must be >= 0")
        if self.per_attempt_timeout_seconds < 0:
            raise ValueError("per_attempt_timeout_seconds must be >= 0")

    @property
    def no_wait(self) -> bool:
        return self.initial_delay_seconds == 0


class AcquireStatus(str, enum.Enum):
    ACQUIRED = "acquired"
    CONTENDED = "contended"
    STORE_ERROR = "store_error"


@dataclass(frozen=True)
class AttemptResult:
    status: AcquireStatus
    error: Optional[BaseException] = None


@dataclass(frozen=True)
class LockHandle:
    lock_name: str
    held_since: datetime
    attempts: int = 1
    waited_seconds: float = 0.0
    holder_id: Optional[str] = None

    @property
    def waited(self) -> bool:
        """True when at least one contended attempt preceded the grant."""
        return self.attempts > 1


def lock_name_for(instance: str, code_type: CodeType) -> str:
    """Lock name for a store instance and code type family.

    MySQL caps lock names at 64 characters; longer natural names are replaced
    by a digest of the same inputs so the name stays stable across processes.
    """
    family = code_type.family.value
    natural = f"{LOCK_NAME_PREFIX}_{instance}_{family}"
    if len(natural) <= MAX_LOCK_NAME_LENGTH:
        return natural
    hashed = f"{LOCK_NAME_PREFIX}_{name_digest(instance, family)}"
    log.info("lock_name_hashed", natural_name=natural, lock_name=hashed)
    return hashed


def next_delay(delay: float, cap: float, rng: random.Random) -> float:
    base = min(delay * 2, cap)
    upper = max(1.0, min(float(MAX_JITTER_SECONDS), float(delay)))
    return base + rng.uniform(1.0, upper)


class LockCoordinator:
    """Acquires and releases the import lock for one store instance.

    Holds at most one lock at a time. Use ``hold()`` (or the coordinator as a
    context manager) so release runs on every exit path:

        with coordinator.hold(CodeType.RXNORM) as handle:
            ...
    """

    def __init__(
        self,
        primitive: NamedLock,
        instance: str,
        policy: Optional[LockRetryPolicy] = None,
        sleep: Callable[[float], None] = time.sleep,
        rng: Optional[random.Random] = None,
        clock: Callable[[], datetime] = lambda: datetime.now(timezone.utc),
    ):
        self.primitive = primitive
        self.instance = instance
        self.policy = policy or LockRetryPolicy()
        self._sleep = sleep
        self._rng = rng or random.Random()
        self._clock = clock
        self._held: Optional[LockHandle] = None

    @property
    def held(self) -> Optional[LockHandle]:
        return self._held

    def lock_name(self, code_type: CodeType) -> str:
        return lock_name_for(self.instance, code_type)

    def try_acquire(self, lock_name: str) -> AttemptResult:
        """One request against the store, classified without raising."""
        try:
            granted = self.primitive.acquire(lock_name, self.policy.per_attempt_timeout_seconds)
        except StoreConnectivityError as exc:
            return AttemptResult(AcquireStatus.STORE_ERROR, exc)
        return AttemptResult(AcquireStatus.ACQUIRED if granted else AcquireStatus.CONTENDED)

    def _holder(self, lock_name: str) -> Optional[str]:
        try:
            return self.primitive.holder(lock_name)
        except Exception as exc:
            log.warning("lock_holder_lookup_failed", lock_name=lock_name, error=str(exc))
            return None

    def acquire(self, code_type: CodeType) -> LockHandle:
        """Acquire the lock for ``code_type``'s family or raise.

        Raises:
            NoWaitContention: lock busy and the policy does not wait
            LockContentionExhausted: lock stayed busy for every attempt
            LockAcquisitionError: the acquire call itself failed (kind STORE_ERROR)
        """
        if self._held is not None:
            raise RuntimeError(f"lock '{self._held.lock_name}' is already held by this coordinator")

        lock_name = self.lock_name(code_type)
        policy = self.policy
        delay = float(policy.initial_delay_seconds)
        waited = 0.0
        holder: Optional[str] = None
        attempt = 1

        while True:
            result = self.try_acquire(lock_name)

            if result.status is AcquireStatus.ACQUIRED:
                own_id = None
                try:
                    own_id = self.primitive.session_id()
                except Exception as exc:
                    log.warning("lock_session_id_failed", lock_name=lock_name, error=str(exc))
                self._held = LockHandle(
                    lock_name=lock_name,
                    held_since=self._clock(),
                    attempts=attempt,
                    waited_seconds=waited,
                    holder_id=own_id,
                )
                log.info("lock_acquired", lock_name=lock_name, attempts=attempt,
                         waited_seconds=waited, holder_id=own_id)
                return self._held

            if result.status is AcquireStatus.STORE_ERROR:
                raise LockAcquisitionError(
                    f"Failed to acquire lock '{lock_name}': {result.error}",
                    lock_name=lock_name,
                    attempts=attempt,
                    waited_seconds=waited,
                    details={"code_type": code_type.value},
                ) from result.error

            if policy.no_wait:
                raise NoWaitContention(
                    f"Lock '{lock_name}' is held by another import and no-wait mode is set",
                    lock_name=lock_name,
                    attempts=attempt,
                    holder=self._holder(lock_name),
                    details={"code_type": code_type.value},
                )

            if attempt >= policy.max_attempts:
                holder = self._holder(lock_name) or holder
                msg = (
                    f"Could not acquire lock '{lock_name}' after {attempt} attempts "
                    f"({waited:.0f}s waited)"
                )
                if holder:
                    msg += f"; held by {holder}"
                raise LockContentionExhausted(
                    msg,
                    lock_name=lock_name,
                    attempts=attempt,
                    waited_seconds=waited,
                    holder=holder,
                    details={"code_type": code_type.value},
                )

            holder = self._holder(lock_name) or holder
            log.info("lock_contended", lock_name=lock_name, attempt=attempt,
                     max_attempts=policy.max_attempts, holder=holder, sleep_seconds=delay)
            self._sleep(delay)
            waited += delay
            delay = next_delay(delay, policy.backoff_cap_seconds, self._rng)
            attempt += 1

    def release(self) -> None:
        """Release the held lock; a no-op when nothing is held.

        A failing release call is logged, never raised, and local state is
        cleared either way.
        """
        handle = self._held
        if handle is None:
            return
        try:
            self.primitive.release(handle.lock_name)
            log.info("lock_released", lock_name=handle.lock_name)
        except Exception as exc:
            log.error("lock_release_failed", lock_name=handle.lock_name, error=str(exc))
        finally:
            self._held = None

    def refresh(self) -> None:
        """Renew the held lock's lease; raises StoreConnectivityError if it was lost."""
        if self._held is None:
            raise RuntimeError("no lock is held by this coordinator")
        self.primitive.refresh(self._held.lock_name)

    @contextmanager
    def keepalive(self) -> Generator[None, None, None]:
        """Renew the held lock in a background thread for the duration of the block.

        Primitives whose lock lives as long as their session report no
        ``refresh_interval`` and get no thread.
        """
        handle = self._held
        interval = self.primitive.refresh_interval
        if handle is None or not interval:
            yield
            return

        stop = threading.Event()

        def beat():
            while not stop.wait(interval):
                try:
                    self.primitive.refresh(handle.lock_name)
                except Exception as exc:
                    log.error("lock_refresh_failed", lock_name=handle.lock_name, error=str(exc))

        worker = threading.Thread(target=beat, name=f"keepalive-{handle.lock_name}", daemon=True)
        worker.start()
        try:
            yield
        finally:
            stop.set()
            worker.join()

    def peek(self, code_type: CodeType) -> Optional[str]:
        """Current holder of ``code_type``'s lock without acquiring it."""
        return self.primitive.holder(self.lock_name(code_type))

    @contextmanager
    def hold(self, code_type: CodeType) -> Generator[LockHandle, None, None]:
        handle = self.acquire(code_type)
        try:
            yield handle
        finally:
            self.release()

    def __enter__(self) -> LockCoordinator:
        return self

    def __exit__(self, exc_type, exc_val, exc_tb) -> None:
        self.release()

    def __del__(self):
        # a coordinator dropped while holding a lock still gives it back
        if getattr(self, "_held", None) is not None:
            log.warning("lock_released_on_finalize", lock_name=self._held.lock_name)
            self.release()
