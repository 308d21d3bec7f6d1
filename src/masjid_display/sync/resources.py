"""
Resource kinds synced from the MasjidConnect portal and their cadences.
"""

from dataclasses import dataclass
from enum import Enum
from typing import Dict, Optional


class ResourceKind(Enum):
    """Independently synced data categories."""
    CONTENT = "content"
    PRAYER_STATUS = "prayer_status"
    PRAYER_TIMES = "prayer_times"
    EVENTS = "events"
    SCHEDULE = "schedule"
    HEARTBEAT = "heartbeat"

    @property
    def is_pull(self) -> bool:
        """True for kinds fetched into the cache (everything but heartbeat)."""
        return self is not ResourceKind.HEARTBEAT


PULL_KINDS = tuple(kind for kind in ResourceKind if kind.is_pull)


@dataclass(frozen=True)
class ChannelSettings:
    """
    Timing for one channel, all in seconds.

    interval: timer cadence
    cooldown: backoff window after a failed non-forced attempt
    min_interval: minimum spacing between attempts (throttle)
    ttl: cache lifetime of a stored payload (None = never stale)
    """
    interval: float
    cooldown: float
    min_interval: float
    ttl: Optional[float] = None

    def __post_init__(self):
        if self.interval <= 0:
            raise ValueError("interval must be positive")
        if self.cooldown <= 0:
            raise ValueError("cooldown must be positive")
        if self.min_interval < 0:
            raise ValueError("min_interval must not be negative")
        if self.min_interval >= self.interval:
            raise ValueError(
                f"min_interval ({self.min_interval}s) must be shorter than "
                f"interval ({self.interval}s)"
            )


DEFAULT_CHANNEL_SETTINGS: Dict[ResourceKind, ChannelSettings] = {
    ResourceKind.CONTENT: ChannelSettings(
        interval=5 * 60, cooldown=5 * 60, min_interval=30, ttl=5 * 60),
    ResourceKind.PRAYER_STATUS: ChannelSettings(
        interval=30, cooldown=2 * 60, min_interval=10, ttl=2 * 60),
    ResourceKind.PRAYER_TIMES: ChannelSettings(
        interval=6 * 3600, cooldown=5 * 60, min_interval=60, ttl=24 * 3600),
    ResourceKind.EVENTS: ChannelSettings(
        interval=10 * 60, cooldown=30 * 60, min_interval=60, ttl=30 * 60),
    ResourceKind.SCHEDULE: ChannelSettings(
        interval=5 * 60, cooldown=5 * 60, min_interval=30, ttl=5 * 60),
    ResourceKind.HEARTBEAT: ChannelSettings(
        interval=30, cooldown=60, min_interval=25, ttl=None),
}

# Minimum spacing between two aggregate syncs (forced syncs bypass it)
DEFAULT_AGGREGATE_MIN_INTERVAL = 5.0
