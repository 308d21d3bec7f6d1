"""
Sync Orchestrator for the Masjid Display client.

Owns one channel per resource kind, starts and stops their timers together,
reacts to network transitions and offers an aggregate "sync everything now".

Lifecycle:
- initialize(): register network listener; if authenticated, run one
  aggregate sync and start every channel timer (idempotent)
- network offline: stop all timers, gate state keeps counting down
- network online: aggregate sync, then restart timers
- cleanup(): stop timers, remove listener (idempotent, cache untouched)

Construct one per process and pass it to whoever needs it; there is no
module-level instance.
"""

import threading
from concurrent.futures import ALL_COMPLETED, ThreadPoolExecutor, wait
from dataclasses import dataclass
from typing import Any, Callable, Dict, Optional

from masjid_display.common.ipc import MessageType
from masjid_display.common.logger import get_last_error, setup_logger

from .channel import ChannelOutcome, HeartbeatChannel, ResourceChannel
from .clock import SystemClock
from .events import EventBus, EventListener
from .gates import BackoffGate, ThrottleGate
from .resources import (
    DEFAULT_AGGREGATE_MIN_INTERVAL,
    DEFAULT_CHANNEL_SETTINGS,
    PULL_KINDS,
    ChannelSettings,
    ResourceKind,
)

logger = setup_logger(__name__)


@dataclass
class EngineState:
    """Process-wide engine flags."""
    initialized: bool = False
    started_at: float = 0.0
    last_aggregate_time: Optional[float] = None


class SyncOrchestrator:
    """Public face of the resource synchronization engine."""

    def __init__(
        self,
        client,
        store,
        network,
        auth,
        scheduler,
        clock=None,
        channel_settings: Optional[Dict[ResourceKind, ChannelSettings]] = None,
        aggregate_min_interval: float = DEFAULT_AGGREGATE_MIN_INTERVAL,
        events: Optional[EventBus] = None,
        last_error_source: Callable[[], str] = get_last_error,
    ):
        """
        Args:
            client: RemoteResourceClient (fetch / submit_heartbeat)
            store: LocalCacheStore (save / get)
            network: NetworkMonitor (is_online, add_listener, remove_listener)
            auth: Object exposing is_authenticated (e.g. DeviceCredentials)
            scheduler: Timer service (schedule / cancel)
            clock: Object with now() -> seconds (SystemClock if None)
            channel_settings: Per-kind timings (defaults if None)
            aggregate_min_interval: Seconds between non-forced aggregate syncs
            events: Event bus for sync notifications (a private one if None)
            last_error_source: Supplies the heartbeat's last error marker
        """
        self._client = client
        self._store = store
        self._network = network
        self._auth = auth
        self._scheduler = scheduler
        self._clock = clock or SystemClock()
        self._settings = dict(DEFAULT_CHANNEL_SETTINGS)
        self._settings.update(channel_settings or {})
        self.aggregate_min_interval = aggregate_min_interval
        self._events = events or EventBus()

        self._lock = threading.Lock()
        self._aggregate_lock = threading.Lock()
        self._state = EngineState(started_at=self._clock.now())

        self._throttle = ThrottleGate()
        self._backoff = BackoffGate()

        self._channels: Dict[ResourceKind, ResourceChannel] = {}
        for kind in PULL_KINDS:
            self._channels[kind] = ResourceChannel(kind, self._settings[kind], **self._channel_deps())

        self._heartbeat = HeartbeatChannel(
            ResourceKind.HEARTBEAT,
            self._settings[ResourceKind.HEARTBEAT],
            started_at=self._state.started_at,
            last_error_source=last_error_source,
            **self._channel_deps(),
        )
        self._channels[ResourceKind.HEARTBEAT] = self._heartbeat

        logger.info("SyncOrchestrator created with %d channels", len(self._channels))

    def _channel_deps(self) -> Dict[str, Any]:
        return {
            "client": self._client,
            "store": self._store,
            "clock": self._clock,
            "scheduler": self._scheduler,
            "throttle": self._throttle,
            "backoff": self._backoff,
            "is_online": self._is_online,
            "is_authenticated": self._is_authenticated,
            "events": self._events,
        }

    def _is_online(self) -> bool:
        return bool(self._network.is_online)

    def _is_authenticated(self) -> bool:
        return bool(self._auth.is_authenticated)

    # Properties

    @property
    def initialized(self) -> bool:
        return self._state.initialized

    @property
    def authenticated(self) -> bool:
        return self._is_authenticated()

    @property
    def last_heartbeat_time(self) -> Optional[float]:
        return self._heartbeat.last_heartbeat_time

    @property
    def channels(self) -> Dict[ResourceKind, ResourceChannel]:
        return dict(self._channels)

    def channel(self, kind: ResourceKind) -> ResourceChannel:
        return self._channels[kind]

    # Lifecycle

    def initialize(self) -> None:
        """
        Activate the engine. A second call is a logged no-op.

        Sync failures during the initial aggregate sync are absorbed.
        """
        with self._lock:
            if self._state.initialized:
                logger.info("SyncOrchestrator already initialized")
                return
            self._state.initialized = True
            self._network.add_listener(self._handle_network_change)

        logger.info("SyncOrchestrator initialized")

        if self._is_authenticated():
            self.sync_all()
            self._resume_channels()
        else:
            logger.info("Not authenticated - syncing deferred")

    def cleanup(self) -> None:
        """Stop all timers and listeners. Safe to call at any time, any number of times."""
        with self._lock:
            was_initialized = self._state.initialized
            self._state.initialized = False
            self._network.remove_listener(self._handle_network_change)

        self.stop_channels()

        if was_initialized:
            logger.info("SyncOrchestrator cleaned up")

    def start_channels(self) -> None:
        """Start every channel timer that is not already running."""
        for channel in self._channels.values():
            channel.start()

    def stop_channels(self) -> None:
        for channel in self._channels.values():
            channel.stop()

    def _resume_channels(self) -> None:
        """Start timers after a catch-up sync, unless cleanup or an outage got there first."""
        with self._lock:
            if not self._state.initialized:
                logger.info("Cleaned up during catch-up sync - timers stay stopped")
                return
            if not self._is_online():
                logger.info("Offline - sync timers start when the network returns")
                return
            self.start_channels()

    def _handle_network_change(self, is_online: bool) -> None:
        if is_online:
            logger.info("Network online - catching up")
            if not self._state.initialized or not self._is_authenticated():
                return
            self.sync_all()
            self._resume_channels()
        else:
            logger.info("Network offline - pausing sync timers")
            self.stop_channels()

    # Sync operations

    def sync_all(self, force_refresh: bool = False) -> Dict[ResourceKind, ChannelOutcome]:
        """
        Sync every resource concurrently and wait for all of them.

        One channel's failure never cancels or delays another. Never raises.

        Args:
            force_refresh: Bypass the aggregate throttle and per-channel gates

        Returns:
            Outcome per kind that took part (empty if the call was skipped)
        """
        if not self._is_online():
            logger.debug("Aggregate sync skipped - offline")
            return {}
        if not self._is_authenticated():
            logger.debug("Aggregate sync skipped - not authenticated")
            return {}

        now = self._clock.now()
        with self._aggregate_lock:
            last = self._state.last_aggregate_time
            if not force_refresh and last is not None and now - last < self.aggregate_min_interval:
                logger.debug("Aggregate sync throttled (%.1fs since last)", now - last)
                return {}
            self._state.last_aggregate_time = now

        kinds = list(PULL_KINDS)
        if self._heartbeat.enabled and self._heartbeat.is_due(now):
            kinds.append(ResourceKind.HEARTBEAT)

        logger.info("Aggregate sync started (%d resources, forced=%s)", len(kinds), force_refresh)

        outcomes: Dict[ResourceKind, ChannelOutcome] = {}
        with ThreadPoolExecutor(max_workers=len(kinds), thread_name_prefix="sync") as executor:
            futures = {
                executor.submit(self._channels[kind].sync, force_refresh): kind
                for kind in kinds
            }
            done, _ = wait(futures, return_when=ALL_COMPLETED)

        for future in done:
            kind = futures[future]
            try:
                outcomes[kind] = future.result()
            except Exception:
                logger.exception("Sync of %s raised", kind.value)
                outcomes[kind] = ChannelOutcome.FAILED

        self._log_summary(outcomes)
        self._events.emit(MessageType.SYNC_SUMMARY, {
            kind.value: outcome.value for kind, outcome in outcomes.items()
        })
        return outcomes

    def _log_summary(self, outcomes: Dict[ResourceKind, ChannelOutcome]) -> None:
        summary = ", ".join(
            f"{kind.value}={outcomes[kind].value}"
            for kind in ResourceKind if kind in outcomes
        )
        failed = sum(1 for outcome in outcomes.values() if outcome is ChannelOutcome.FAILED)
        if failed:
            logger.warning("Aggregate sync finished with %d failure(s): %s", failed, summary)
        else:
            logger.info("Aggregate sync finished: %s", summary)

    def sync(self, kind: ResourceKind, force_refresh: bool = False) -> ChannelOutcome:
        return self._channels[kind].sync(force_refresh)

    def sync_content(self, force_refresh: bool = False) -> ChannelOutcome:
        return self.sync(ResourceKind.CONTENT, force_refresh)

    def sync_prayer_status(self, force_refresh: bool = False) -> ChannelOutcome:
        return self.sync(ResourceKind.PRAYER_STATUS, force_refresh)

    def sync_prayer_times(self, force_refresh: bool = False) -> ChannelOutcome:
        return self.sync(ResourceKind.PRAYER_TIMES, force_refresh)

    def sync_events(self, force_refresh: bool = False) -> ChannelOutcome:
        return self.sync(ResourceKind.EVENTS, force_refresh)

    def sync_schedule(self, force_refresh: bool = False) -> ChannelOutcome:
        return self.sync(ResourceKind.SCHEDULE, force_refresh)

    def send_heartbeat(self, force_refresh: bool = False) -> ChannelOutcome:
        return self.sync(ResourceKind.HEARTBEAT, force_refresh)

    def set_http_heartbeat_enabled(self, enabled: bool) -> None:
        """
        Turn the HTTP heartbeat on or off, e.g. while another transport
        carries heartbeats.
        """
        if self._heartbeat.enabled == enabled:
            return
        self._heartbeat.enabled = enabled
        logger.info("HTTP heartbeat %s", "enabled" if enabled else "disabled")

    # Events and status

    def on(self, event_type: MessageType, listener: EventListener) -> Callable[[], None]:
        """Subscribe to sync events. Returns an unsubscribe function."""
        return self._events.on(event_type, listener)

    def is_syncing(self) -> bool:
        return any(channel.in_flight for channel in self._channels.values())

    def time_since_last_sync(self, kind: ResourceKind) -> Optional[float]:
        last = self._channels[kind].state.last_sync_time
        if last is None:
            return None
        return self._clock.now() - last

    def get_status(self) -> Dict[str, Any]:
        """Engine and per-channel status for diagnostics."""
        return {
            "initialized": self._state.initialized,
            "authenticated": self._is_authenticated(),
            "online": self._is_online(),
            "started_at": self._state.started_at,
            "last_aggregate_time": self._state.last_aggregate_time,
            "last_heartbeat_time": self.last_heartbeat_time,
            "http_heartbeat_enabled": self._heartbeat.enabled,
            "channels": {
                kind.value: channel.snapshot() for kind, channel in self._channels.items()
            },
        }

    def __repr__(self) -> str:
        return f"SyncOrchestrator(initialized={self._state.initialized}, channels={len(self._channels)})"
