"""
Pytest configuration and fixtures for the sync service tests.

Provides in-memory stand-ins for the engine's collaborators:
- FakeClock / FakeScheduler: manual time, timers fire on advance()
- FakeNetwork: online flag plus edge-triggered listeners
- FakeAuth: authenticated flag
- FakeClient: scripted fetch / heartbeat results with a call log
and a real LocalCacheStore backed by a temporary SQLite file.
"""

import os
import sys
import threading
from typing import Any, Dict, List, Optional

import pytest

# Add src to path for imports
sys.path.insert(0, os.path.join(os.path.dirname(os.path.dirname(os.path.abspath(__file__))), "src"))

from masjid_display.api_client import FetchResult
from masjid_display.cache_store import LocalCacheStore
from masjid_display.sync.gates import BackoffGate, ThrottleGate
from masjid_display.sync.resources import DEFAULT_CHANNEL_SETTINGS, ResourceKind

START_TIME = 1_700_000_000.0


class FakeClock:
    def __init__(self, start: float = START_TIME):
        self.current = start

    def now(self) -> float:
        return self.current

    def advance(self, seconds: float) -> None:
        self.current += seconds


class FakeScheduler:
    """Interval timers driven by a FakeClock."""

    def __init__(self, clock: FakeClock):
        self.clock = clock
        self.timers: Dict[str, Dict[str, Any]] = {}
        self.fired: List[str] = []
        self._counter = 0

    def schedule(self, interval, callback, name=None):
        self._counter += 1
        handle = f"timer-{self._counter}"
        self.timers[handle] = {
            "interval": interval,
            "callback": callback,
            "due": self.clock.now() + interval,
            "name": name or handle,
        }
        return handle

    def cancel(self, handle):
        self.timers.pop(handle, None)

    @property
    def active_count(self) -> int:
        return len(self.timers)

    def names(self) -> List[str]:
        return sorted(timer["name"] for timer in self.timers.values())

    def advance(self, seconds: float) -> None:
        """Move the clock forward, firing every timer that falls due on the way."""
        end = self.clock.now() + seconds
        while True:
            due = [(timer["due"], handle) for handle, timer in self.timers.items() if timer["due"] <= end]
            if not due:
                break
            due_at, handle = min(due)
            self.clock.current = max(self.clock.current, due_at)
            timer = self.timers[handle]
            timer["due"] += timer["interval"]
            self.fired.append(timer["name"])
            timer["callback"]()
        self.clock.current = end


class FakeNetwork:
    def __init__(self, online: bool = True):
        self.is_online = online
        self.listeners = []

    def add_listener(self, listener):
        if listener not in self.listeners:
            self.listeners.append(listener)

    def remove_listener(self, listener):
        if listener in self.listeners:
            self.listeners.remove(listener)

    def go_offline(self):
        self.is_online = False
        for listener in list(self.listeners):
            listener(False)

    def go_online(self):
        self.is_online = True
        for listener in list(self.listeners):
            listener(True)


class FakeAuth:
    def __init__(self, authenticated: bool = True):
        self.is_authenticated = authenticated


class FakeClient:
    """
    Scripted RemoteResourceClient.

    Results queued with script() are returned in order; an Exception in the
    queue is raised instead. With an empty queue every call succeeds.
    """

    def __init__(self):
        self._lock = threading.Lock()
        self._scripts: Dict[ResourceKind, List[Any]] = {}
        self.calls: List[tuple] = []
        self.heartbeats: List[tuple] = []
        self.saved: List[ResourceKind] = []

    def script(self, kind: ResourceKind, *results) -> None:
        with self._lock:
            self._scripts.setdefault(kind, []).extend(results)

    def _next(self, kind: ResourceKind, default: FetchResult) -> FetchResult:
        with self._lock:
            queue = self._scripts.get(kind)
            result = queue.pop(0) if queue else default
        if isinstance(result, Exception):
            raise result
        return result

    def fetch(self, kind, force_refresh=False):
        with self._lock:
            self.calls.append((kind, force_refresh))
        return self._next(kind, FetchResult.ok({"kind": kind.value}))

    def confirm_saved(self, kind, result):
        with self._lock:
            self.saved.append(kind)

    def submit_heartbeat(self, status, metrics):
        with self._lock:
            self.calls.append((ResourceKind.HEARTBEAT, None))
            self.heartbeats.append((status, metrics))
        return self._next(ResourceKind.HEARTBEAT, FetchResult.ok({"commands": []}))

    def call_count(self, kind: Optional[ResourceKind] = None) -> int:
        with self._lock:
            if kind is None:
                return len(self.calls)
            return sum(1 for called, _ in self.calls if called is kind)


@pytest.fixture(autouse=True)
def clean_env(monkeypatch):
    """Keep host environment overrides out of config and credentials."""
    for name in ("MDS_API_URL", "MDS_CACHE_DB", "MDS_LOG_LEVEL", "MDS_API_KEY", "MDS_SCREEN_ID"):
        monkeypatch.delenv(name, raising=False)


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def scheduler(clock):
    return FakeScheduler(clock)


@pytest.fixture
def network():
    return FakeNetwork(online=True)


@pytest.fixture
def auth():
    return FakeAuth(authenticated=True)


@pytest.fixture
def client():
    return FakeClient()


@pytest.fixture
def store(tmp_path):
    cache = LocalCacheStore(
        str(tmp_path / "cache.db"),
        ttls={kind: settings.ttl for kind, settings in DEFAULT_CHANNEL_SETTINGS.items()},
    )
    yield cache
    cache.close()


@pytest.fixture
def gates():
    return ThrottleGate(), BackoffGate()
