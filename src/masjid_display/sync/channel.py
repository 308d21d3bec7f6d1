"""
Resource channels: one per ResourceKind.

A channel binds a kind to its cadence, its fetch and store operations and
its slice of the shared throttle/backoff gates. sync() never raises; every
failure is logged, turned into a backoff (unless forced) and reported as a
ChannelOutcome.

Attempt order for sync(force_refresh):
1. offline / unauthenticated -> skip, nothing recorded
2. another sync of the same kind in flight -> skip
3. throttle (bypassed when forced) -> attempt time recorded
4. backoff (bypassed when forced); an expired gate is cleared here
5. remote call, then cache write on success
6. failure arms backoff unless forced
"""

import threading
from dataclasses import dataclass
from enum import Enum
from typing import Any, Callable, Dict, Optional

from masjid_display.common.ipc import MessageType
from masjid_display.common.logger import get_last_error, setup_logger
from masjid_display.system_metrics import collect_heartbeat_metrics

from .events import EventBus
from .gates import BackoffGate, ThrottleGate
from .resources import ChannelSettings, ResourceKind

logger = setup_logger(__name__)

HEARTBEAT_STATUS = "ONLINE"


class ChannelOutcome(Enum):
    """Result of one sync() call."""
    SUCCESS = "success"
    UNCHANGED = "unchanged"
    FAILED = "failed"
    SKIPPED_OFFLINE = "skipped_offline"
    SKIPPED_UNAUTHENTICATED = "skipped_unauthenticated"
    THROTTLED = "throttled"
    BACKED_OFF = "backed_off"
    IN_FLIGHT = "in_flight"
    DISABLED = "disabled"

    @property
    def attempted(self) -> bool:
        """True if the remote service was actually called."""
        return self in (ChannelOutcome.SUCCESS, ChannelOutcome.UNCHANGED, ChannelOutcome.FAILED)


@dataclass
class ChannelState:
    """Per-kind bookkeeping held for the process lifetime."""
    last_sync_time: Optional[float] = None
    last_error: Optional[str] = None
    consecutive_failures: int = 0
    total_attempts: int = 0
    total_failures: int = 0


class ResourceChannel:
    """Keeps one cached resource fresh."""

    def __init__(
        self,
        kind: ResourceKind,
        settings: ChannelSettings,
        client,
        store,
        clock,
        scheduler,
        throttle: ThrottleGate,
        backoff: BackoffGate,
        is_online: Callable[[], bool],
        is_authenticated: Callable[[], bool],
        events: Optional[EventBus] = None,
    ):
        """
        Args:
            kind: Resource this channel syncs
            settings: Cadence, cooldown and throttle spacing
            client: RemoteResourceClient (fetch / submit_heartbeat)
            store: LocalCacheStore (save)
            clock: Object with now() -> seconds
            scheduler: Object with schedule(interval, callback, name) / cancel(handle)
            throttle: Shared throttle gate
            backoff: Shared backoff gate
            is_online: Network state probe
            is_authenticated: Auth state probe
            events: Optional event bus for sync notifications
        """
        self.kind = kind
        self.settings = settings
        self._client = client
        self._store = store
        self._clock = clock
        self._scheduler = scheduler
        self._throttle = throttle
        self._backoff = backoff
        self._is_online = is_online
        self._is_authenticated = is_authenticated
        self._events = events

        self._state = ChannelState()
        self._in_flight = threading.Lock()
        self._timer_lock = threading.Lock()
        self._timer = None

    @property
    def name(self) -> str:
        return self.kind.value

    @property
    def state(self) -> ChannelState:
        return self._state

    @property
    def is_running(self) -> bool:
        """True while the periodic timer is scheduled."""
        return self._timer is not None

    @property
    def in_flight(self) -> bool:
        return self._in_flight.locked()

    # Timer lifecycle

    def start(self) -> None:
        """Schedule the periodic timer. No-op if already scheduled."""
        with self._timer_lock:
            if self._timer is not None:
                return
            self._timer = self._scheduler.schedule(
                self.settings.interval,
                self._on_tick,
                name=f"sync-{self.name}",
            )
        logger.debug("Channel %s started (every %ss)", self.name, self.settings.interval)

    def stop(self) -> None:
        """Cancel the periodic timer. No-op if not scheduled."""
        with self._timer_lock:
            if self._timer is None:
                return
            timer, self._timer = self._timer, None
            self._scheduler.cancel(timer)
        logger.debug("Channel %s stopped", self.name)

    def _on_tick(self) -> None:
        try:
            self.sync(force_refresh=False)
        except Exception:
            logger.exception("Timer tick for %s failed", self.name)

    # Sync

    def sync(self, force_refresh: bool = False) -> ChannelOutcome:
        """
        Run one sync attempt for this resource.

        Args:
            force_refresh: Bypass throttle and backoff; failure won't arm backoff

        Returns:
            What happened
        """
        if not self._is_online():
            return ChannelOutcome.SKIPPED_OFFLINE
        if not self._is_authenticated():
            return ChannelOutcome.SKIPPED_UNAUTHENTICATED

        if not self._in_flight.acquire(blocking=False):
            logger.debug("%s sync already in progress", self.name)
            return ChannelOutcome.IN_FLIGHT

        try:
            return self._attempt(force_refresh)
        finally:
            self._in_flight.release()

    def _attempt(self, force_refresh: bool) -> ChannelOutcome:
        now = self._clock.now()

        if not self._take_attempt_slot(force_refresh, now):
            logger.debug("%s sync throttled", self.name)
            return ChannelOutcome.THROTTLED

        if self._backoff.is_armed(self.kind):
            if not self._backoff.is_blocked(self.kind, now):
                self._backoff.clear(self.kind)
                logger.info("%s backoff expired, retrying", self.name)
            elif not force_refresh:
                logger.debug(
                    "%s in backoff for another %.0fs",
                    self.name, self._backoff.resume_at(self.kind) - now,
                )
                return ChannelOutcome.BACKED_OFF

        self._state.total_attempts += 1

        try:
            result = self._perform(force_refresh)
            if result.success:
                self._apply(result)
        except Exception as e:
            logger.exception("Unexpected error syncing %s", self.name)
            return self._record_failure(force_refresh, f"{type(e).__name__}: {e}")

        if not result.success:
            return self._record_failure(force_refresh, result.error or "unknown error")

        return self._record_success(result)

    def _take_attempt_slot(self, force_refresh: bool, now: float) -> bool:
        if force_refresh:
            self._throttle.record(self.kind, now)
            return True
        return self._throttle.try_acquire(self.kind, now, self.settings.min_interval)

    def _perform(self, force_refresh: bool):
        return self._client.fetch(self.kind, force_refresh=force_refresh)

    def _apply(self, result) -> None:
        """Write a successful result to the cache."""
        if result.unchanged:
            return
        self._store.save(self.kind, result.data, now=self._clock.now())
        self._client.confirm_saved(self.kind, result)

    def _announce(self, result) -> None:
        self._emit(MessageType.RESOURCE_SYNCED, {
            "kind": self.name,
            "unchanged": bool(result.unchanged),
        })

    def _record_success(self, result) -> ChannelOutcome:
        self._state.last_sync_time = self._clock.now()
        self._state.last_error = None
        self._state.consecutive_failures = 0
        self._backoff.clear(self.kind)

        if result.unchanged:
            logger.debug("%s unchanged", self.name)
        else:
            logger.info("%s synced", self.name)

        self._announce(result)
        return ChannelOutcome.UNCHANGED if result.unchanged else ChannelOutcome.SUCCESS

    def _record_failure(self, force_refresh: bool, error: str) -> ChannelOutcome:
        self._state.last_error = error
        self._state.consecutive_failures += 1
        self._state.total_failures += 1

        if force_refresh:
            logger.warning("Forced %s sync failed: %s", self.name, error)
        else:
            resume_at = self._backoff.arm(self.kind, self._clock.now(), self.settings.cooldown)
            logger.error(
                "%s sync failed: %s - backing off %ss (until %.0f)",
                self.name, error, self.settings.cooldown, resume_at,
            )

        self._emit(MessageType.SYNC_ERROR, {
            "kind": self.name,
            "error": error,
            "forced": force_refresh,
        })
        return ChannelOutcome.FAILED

    def _emit(self, event_type: MessageType, data: Dict[str, Any]) -> None:
        if self._events is not None:
            self._events.emit(event_type, data)

    def snapshot(self) -> Dict[str, Any]:
        """Status of this channel for diagnostics."""
        return {
            "running": self.is_running,
            "in_flight": self.in_flight,
            "last_sync_time": self._state.last_sync_time,
            "last_attempt_time": self._throttle.last_attempt(self.kind),
            "backoff_active": self._backoff.is_armed(self.kind),
            "backoff_resume_at": self._backoff.resume_at(self.kind),
            "last_error": self._state.last_error,
            "consecutive_failures": self._state.consecutive_failures,
            "total_attempts": self._state.total_attempts,
            "total_failures": self._state.total_failures,
            "interval": self.settings.interval,
        }

    def __repr__(self) -> str:
        return f"{type(self).__name__}(kind={self.name}, interval={self.settings.interval}s)"


class HeartbeatChannel(ResourceChannel):
    """
    Pushes screen status instead of pulling a resource.

    The minimum spacing applies to every caller, forced or not, and is
    checked against the single shared heartbeat timestamp in the throttle
    gate, so the aggregate sync and the timer can never double-fire.
    """

    def __init__(
        self,
        *args,
        started_at: float,
        last_error_source: Callable[[], str] = get_last_error,
        **kwargs,
    ):
        """
        Args:
            started_at: Engine start time, for uptime
            last_error_source: Returns the last logged error message
        """
        super().__init__(*args, **kwargs)
        self.started_at = started_at
        self._last_error_source = last_error_source
        self.enabled = True

    def sync(self, force_refresh: bool = False) -> ChannelOutcome:
        if not self.enabled:
            logger.debug("HTTP heartbeat disabled")
            return ChannelOutcome.DISABLED
        return super().sync(force_refresh)

    def is_due(self, now: float) -> bool:
        """True if the heartbeat spacing has elapsed."""
        return self._throttle.is_due(self.kind, now, self.settings.min_interval)

    @property
    def last_heartbeat_time(self) -> Optional[float]:
        return self._throttle.last_attempt(self.kind)

    def _take_attempt_slot(self, force_refresh: bool, now: float) -> bool:
        return self._throttle.try_acquire(self.kind, now, self.settings.min_interval)

    def _perform(self, force_refresh: bool):
        uptime = self._clock.now() - self.started_at
        metrics = collect_heartbeat_metrics(uptime, self._last_error_source())
        return self._client.submit_heartbeat(HEARTBEAT_STATUS, metrics)

    def _apply(self, result) -> None:
        pass

    def _announce(self, result) -> None:
        data = result.data if isinstance(result.data, dict) else {}
        self._emit(MessageType.HEARTBEAT_SENT, data)

        commands = data.get("commands") or []
        if commands:
            logger.info("Heartbeat returned %d command(s)", len(commands))
        for command in commands:
            self._emit(MessageType.COMMAND, command if isinstance(command, dict) else {"command": command})
