"""
Portal reachability tracking for the sync engine.

A background thread probes the portal and folds each probe into an
online/offline state with hysteresis: one success brings the link up,
`offline_threshold` consecutive failures take it down. Listeners are told
about transitions only, never about repeated results.

Probing order: HTTP GET on each health path (anything below 500 counts as
reachable), then a plain TCP connect to the portal host.
"""

import socket
import threading
import time
from dataclasses import asdict, dataclass
from typing import Callable, List, Optional
from urllib.parse import urlparse

import requests

from masjid_display.common.logger import setup_logger

logger = setup_logger(__name__)

# Seconds between probes; faster while offline so recovery is noticed quickly
CHECK_INTERVAL_ONLINE = 30
CHECK_INTERVAL_OFFLINE = 10

ONLINE_THRESHOLD = 1
OFFLINE_THRESHOLD = 3

PROBE_TIMEOUT = 5
HEALTH_PATHS = ("/api/health", "/")

TransitionListener = Callable[[bool], None]


def probe_http(base_url: str, timeout: float = PROBE_TIMEOUT) -> bool:
    """True if any health path answers without a server error."""
    for path in HEALTH_PATHS:
        try:
            response = requests.get(f"{base_url}{path}", timeout=timeout)
        except requests.exceptions.RequestException:
            continue
        if response.status_code < 500:
            return True
    return False


def probe_tcp(base_url: str, timeout: float = PROBE_TIMEOUT) -> bool:
    """True if the portal host accepts a TCP connection."""
    parsed = urlparse(base_url)
    if not parsed.hostname:
        return False
    port = parsed.port or (443 if parsed.scheme == "https" else 80)
    try:
        with socket.create_connection((parsed.hostname, port), timeout=timeout):
            return True
    except OSError:
        return False


@dataclass
class LinkStats:
    online: bool = False
    consecutive_failures: int = 0
    consecutive_successes: int = 0
    last_check_time: Optional[float] = None
    last_check_result: Optional[bool] = None
    total_checks: int = 0
    total_failures: int = 0


class NetworkMonitor:
    """
    Online/offline view of the portal link.

    Usage:
        monitor = NetworkMonitor("https://portal.masjidconnect.co.uk")
        monitor.add_listener(orchestrator_callback)
        monitor.start()
        ...
        monitor.stop()
    """

    def __init__(
        self,
        api_url: str,
        check_interval_online: float = CHECK_INTERVAL_ONLINE,
        check_interval_offline: float = CHECK_INTERVAL_OFFLINE,
        offline_threshold: int = OFFLINE_THRESHOLD,
        initially_online: bool = False,
    ):
        """
        Args:
            api_url: Portal base URL to probe
            check_interval_online: Seconds between probes while online
            check_interval_offline: Seconds between probes while offline
            offline_threshold: Consecutive failures before going offline
            initially_online: State assumed before the first probe
        """
        self._api_url = api_url.rstrip("/")
        self.check_interval_online = check_interval_online
        self.check_interval_offline = check_interval_offline
        self.offline_threshold = offline_threshold

        self._lock = threading.Lock()
        # Held while a transition is recorded and delivered; reentrant for listeners that report
        self._dispatch_lock = threading.RLock()
        self._stats = LinkStats(online=initially_online)
        self._listeners: List[TransitionListener] = []

        self._worker: Optional[threading.Thread] = None
        self._halt = threading.Event()

    @property
    def target_url(self) -> str:
        return self._api_url

    @property
    def is_online(self) -> bool:
        with self._lock:
            return self._stats.online

    @property
    def is_running(self) -> bool:
        return self._worker is not None and self._worker.is_alive()

    def add_listener(self, listener: TransitionListener) -> None:
        """Register `listener(is_online)` for state transitions. Duplicates are ignored."""
        with self._lock:
            if listener not in self._listeners:
                self._listeners.append(listener)

    def remove_listener(self, listener: TransitionListener) -> None:
        with self._lock:
            if listener in self._listeners:
                self._listeners.remove(listener)

    def get_status(self) -> dict:
        with self._lock:
            status = asdict(self._stats)
            status["listeners"] = len(self._listeners)
        status["target_url"] = self.target_url
        return status

    def check_now(self) -> bool:
        """Probe the portal once and update state. Returns the probe result."""
        try:
            reachable = probe_http(self.target_url) or probe_tcp(self.target_url)
        except Exception:
            logger.exception("Connectivity probe crashed")
            reachable = False
        self.report(reachable)
        return reachable

    def report(self, reachable: bool) -> None:
        """
        Fold one reachability observation into the link state.

        Listeners run on the calling thread. Reports from other threads wait
        until they return, so transitions arrive in the order they happened.
        """
        with self._dispatch_lock:
            with self._lock:
                changed = self._record(reachable)
                listeners = list(self._listeners) if changed else []

            for listener in listeners:
                try:
                    listener(reachable)
                except Exception as e:
                    logger.error("Network listener failed: %s", e)

    def _record(self, reachable: bool) -> bool:
        """Update counters; return True when the online flag flipped. Caller holds the lock."""
        stats = self._stats
        stats.total_checks += 1
        stats.last_check_time = time.time()
        stats.last_check_result = reachable

        if reachable:
            stats.consecutive_successes += 1
            stats.consecutive_failures = 0
            if stats.online or stats.consecutive_successes < ONLINE_THRESHOLD:
                return False
            stats.online = True
            logger.info("Portal reachable, going online (%s)", self.target_url)
            return True

        stats.total_failures += 1
        stats.consecutive_failures += 1
        stats.consecutive_successes = 0
        if not stats.online or stats.consecutive_failures < self.offline_threshold:
            return False
        stats.online = False
        logger.warning(
            "Portal unreachable %d times in a row, going offline (%s)",
            stats.consecutive_failures, self.target_url,
        )
        return True

    def _next_interval(self) -> float:
        return self.check_interval_online if self.is_online else self.check_interval_offline

    def _run(self) -> None:
        self.check_now()
        while not self._halt.wait(timeout=self._next_interval()):
            self.check_now()

    def start(self) -> None:
        """Start probing in a daemon thread. No-op if already running."""
        if self.is_running:
            return
        self._halt.clear()
        self._worker = threading.Thread(target=self._run, name="network-monitor", daemon=True)
        self._worker.start()
        logger.info("Network monitor watching %s", self.target_url)

    def stop(self) -> None:
        """Stop probing and wait for the thread to exit. No-op if not running."""
        worker, self._worker = self._worker, None
        if worker is None:
            return
        self._halt.set()
        worker.join(timeout=10)
        logger.info("Network monitor stopped")
