import random
import threading
import time

import pytest

from codeimport.errors import StoreConnectivityError
from codeimport.lib.database import InMemoryAdapter
from codeimport.lib.lock_coordinator import LockCoordinator, LockRetryPolicy
from codeimport.services.ledger import TrackingLedger
from codeimport.services.loaders import LoaderRegistry


class FakeLockServer:
    """In-process stand-in for a store's server-wide named locks."""

    def __init__(self):
        self._mutex = threading.Lock()
        self.owners = {}
        self.events = []
        self.acquire_calls = 0
        self._next_id = 0
        # name -> number of acquire calls a simulated competitor still blocks
        self.competitor = {}

    def connect(self):
        with self._mutex:
            self._next_id += 1
            return FakeNamedLock(self, self._next_id)

    def hold_for(self, name, attempts):
        self.competitor[name] = attempts

    def held_count(self):
        with self._mutex:
            return len(self.owners)


class FakeNamedLock:
    def __init__(self, server, conn_id):
        self.server = server
        self.conn_id = conn_id
        self.fail_acquire = False
        self.fail_release = False
        self.fail_holder = False
        self.refresh_interval = None
        self.refreshes = []

    def acquire(self, name, timeout_seconds):
        s = self.server
        with s._mutex:
            s.acquire_calls += 1
            if self.fail_acquire:
                raise StoreConnectivityError("connection lost")
            if s.competitor.get(name, 0) > 0:
                s.competitor[name] -= 1
                return False
            owner = s.owners.get(name)
            if owner is not None and owner != self.conn_id:
                return False
            s.owners[name] = self.conn_id
            s.events.append(("grant", name, self.conn_id, time.monotonic()))
            return True

    def release(self, name):
        s = self.server
        with s._mutex:
            if self.fail_release:
                raise StoreConnectivityError("connection lost during release")
            if s.owners.get(name) != self.conn_id:
                raise StoreConnectivityError(f"{name} not held")
            s.events.append(("release", name, self.conn_id, time.monotonic()))
            del s.owners[name]

    def refresh(self, name):
        s = self.server
        with s._mutex:
            if s.owners.get(name) != self.conn_id:
                raise StoreConnectivityError(f"{name} not held")
            self.refreshes.append(name)

    def holder(self, name):
        s = self.server
        if self.fail_holder:
            raise StoreConnectivityError("holder lookup failed")
        if s.competitor.get(name, 0) > 0:
            return "connection 999"
        owner = s.owners.get(name)
        return None if owner is None else f"connection {owner}"

    def session_id(self):
        return f"connection {self.conn_id}"


class RecordingLoader:
    def __init__(self, result=None, error=None):
        self.requests = []
        self.result = result
        self.error = error

    def load(self, request):
        self.requests.append(request)
        if self.error is not None:
            raise self.error
        return self.result


@pytest.fixture
def lock_server():
    return FakeLockServer()


@pytest.fixture
def sleeps():
    return []


@pytest.fixture
def make_coordinator(lock_server, sleeps):
    def _make(max_attempts=3, initial_delay=2, instance="openemr", primitive=None, seed=7):
        return LockCoordinator(
            primitive or lock_server.connect(),
            instance=instance,
            policy=LockRetryPolicy(max_attempts=max_attempts, initial_delay_seconds=initial_delay),
            sleep=sleeps.append,
            rng=random.Random(seed),
        )
    return _make


@pytest.fixture
def ledger():
    adapter = InMemoryAdapter()
    return TrackingLedger(adapter.session())


@pytest.fixture
def loader():
    return RecordingLoader()


@pytest.fixture
def registry(loader):
    from codeimport.lib.codetypes import CodeType

    return LoaderRegistry({t: loader for t in CodeType})
