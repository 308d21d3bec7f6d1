"""
Masjid Display sync service process.

Wires config, credentials, cache, portal client, network monitor and the
sync orchestrator together and runs until SIGINT/SIGTERM.

Shutdown order is the reverse of startup:
orchestrator -> network monitor -> timers -> IPC publisher -> HTTP session
"""

import signal
import sys
import threading
from typing import Optional

from masjid_display import __version__
from masjid_display.api_client import RemoteResourceClient
from masjid_display.cache_store import LocalCacheStore
from masjid_display.common.config import Config
from masjid_display.common.credentials import DeviceCredentials
from masjid_display.common.ipc import MessagePublisher
from masjid_display.common.logger import configure_logging, setup_logger
from masjid_display.network_monitor import NetworkMonitor
from masjid_display.sync.clock import IntervalScheduler
from masjid_display.sync.events import EventBus
from masjid_display.sync.orchestrator import SyncOrchestrator

logger = setup_logger(__name__)


class SyncService:
    """Owns every long-lived component of the sync process."""

    def __init__(self, config: Config):
        self.config = config
        self._running = False
        self._stop_event = threading.Event()

        self.credentials: Optional[DeviceCredentials] = None
        self.store: Optional[LocalCacheStore] = None
        self.client: Optional[RemoteResourceClient] = None
        self.monitor: Optional[NetworkMonitor] = None
        self.scheduler: Optional[IntervalScheduler] = None
        self.publisher: Optional[MessagePublisher] = None
        self.orchestrator: Optional[SyncOrchestrator] = None

    def build(self) -> None:
        """Construct all components from config. Nothing is started yet."""
        config = self.config
        channel_settings = config.channel_settings()

        self.credentials = DeviceCredentials(config.credentials_file)
        self.store = LocalCacheStore(
            config.cache_db,
            ttls={kind: settings.ttl for kind, settings in channel_settings.items()},
        )
        self.client = RemoteResourceClient(
            config.api_base_url,
            self.credentials,
            timeout=config.get('api.timeout', 10),
            events_count=config.get('api.events_count', 10),
            prayer_times_days=config.get('api.prayer_times_days', 7),
        )
        self.monitor = NetworkMonitor(
            config.api_base_url,
            check_interval_online=config.get('network.check_interval_online', 30),
            check_interval_offline=config.get('network.check_interval_offline', 10),
            offline_threshold=config.get('network.offline_threshold', 3),
        )
        self.scheduler = IntervalScheduler()

        if config.get('ipc.enabled', False):
            self.publisher = MessagePublisher(config.get('ipc.port', 5560), "sync_service")

        self.orchestrator = SyncOrchestrator(
            client=self.client,
            store=self.store,
            network=self.monitor,
            auth=self.credentials,
            scheduler=self.scheduler,
            channel_settings=channel_settings,
            aggregate_min_interval=config.aggregate_min_interval,
            events=EventBus(self.publisher),
        )
        self.orchestrator.set_http_heartbeat_enabled(
            bool(config.get('sync.http_heartbeat_enabled', True))
        )

    def start(self) -> None:
        if self._running:
            return
        if self.orchestrator is None:
            self.build()

        logger.info("Masjid Display sync service %s starting", __version__)
        self._running = True
        self._stop_event.clear()

        # Probe once so initialize() sees the real network state
        self.monitor.check_now()
        self.monitor.start()
        self.orchestrator.initialize()

    def stop(self) -> None:
        if not self._running:
            return
        self._running = False
        self._stop_event.set()

        self.orchestrator.cleanup()
        self.monitor.stop()
        self.scheduler.shutdown()
        if self.publisher:
            self.publisher.close()
        self.client.close()
        self.store.close()

        logger.info("Masjid Display sync service stopped")

    def run(self) -> None:
        """Run the service (blocking) until a signal arrives."""
        signal.signal(signal.SIGINT, self._signal_handler)
        signal.signal(signal.SIGTERM, self._signal_handler)

        self.start()
        try:
            while not self._stop_event.wait(timeout=1.0):
                pass
        except KeyboardInterrupt:
            logger.info("Keyboard interrupt received")

        self.stop()

    def _signal_handler(self, signum: int, frame) -> None:
        """Handle system signals."""
        logger.info("Received signal: %s", signal.Signals(signum).name)
        self._stop_event.set()


def main(argv=None) -> int:
    """Main entry point for the sync service."""
    import argparse

    parser = argparse.ArgumentParser(description="Masjid Display sync service")
    parser.add_argument('--config', help="Path to YAML config file")
    parser.add_argument('--api-url', help="Portal URL override")
    parser.add_argument('--log-level', help="Log level (DEBUG, INFO, ...)")

    args = parser.parse_args(argv)

    try:
        config = Config(args.config)
    except FileNotFoundError as e:
        logger.error("%s", e)
        return 1

    if args.api_url:
        config.set('api.base_url', args.api_url)

    configure_logging(
        level=args.log_level or config.get('logging.level'),
        log_file=config.get('logging.file'),
    )

    try:
        service = SyncService(config)
        service.build()
    except ValueError as e:
        logger.error("Invalid configuration: %s", e)
        return 1

    service.run()
    return 0


if __name__ == "__main__":
    sys.exit(main())
