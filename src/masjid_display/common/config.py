"""
Configuration management for the Masjid Display sync service.
Loads settings from a YAML file layered over built-in defaults.
"""

import copy
import os
from pathlib import Path
from typing import Any, Dict, Optional

import yaml

from masjid_display.sync.resources import (
    DEFAULT_AGGREGATE_MIN_INTERVAL,
    DEFAULT_CHANNEL_SETTINGS,
    ChannelSettings,
    ResourceKind,
)

DEFAULT_CONFIG: Dict[str, Any] = {
    'api': {
        'base_url': 'https://portal.masjidconnect.co.uk',
        'timeout': 10,
        'events_count': 10,
        'prayer_times_days': 7,
    },
    'storage': {
        'cache_db': '/var/lib/masjid-display/cache.db',
        'credentials_file': '/var/lib/masjid-display/credentials.json',
    },
    'network': {
        'check_interval_online': 30,
        'check_interval_offline': 10,
        'offline_threshold': 3,
    },
    'ipc': {
        'enabled': False,
        'port': 5560,
    },
    'logging': {
        'level': 'INFO',
        'file': None,
    },
    'sync': {
        'aggregate_min_interval': DEFAULT_AGGREGATE_MIN_INTERVAL,
        'http_heartbeat_enabled': True,
        'channels': {
            kind.value: {
                'interval': settings.interval,
                'cooldown': settings.cooldown,
                'min_interval': settings.min_interval,
                'ttl': settings.ttl,
            }
            for kind, settings in DEFAULT_CHANNEL_SETTINGS.items()
        },
    },
}


def _merge(base: Dict[str, Any], override: Dict[str, Any]) -> Dict[str, Any]:
    """Recursively merge `override` into a copy of `base`."""
    merged = copy.deepcopy(base)
    for key, value in override.items():
        if isinstance(value, dict) and isinstance(merged.get(key), dict):
            merged[key] = _merge(merged[key], value)
        else:
            merged[key] = value
    return merged


class Config:
    """Manages application configuration from YAML files."""

    def __init__(self, config_path: Optional[str] = None):
        """
        Initialize configuration.

        Args:
            config_path: Path to config file. If None, uses
                config/default_config.yaml when present, else built-in defaults
        """
        self._explicit = config_path is not None
        if config_path is None:
            project_root = Path(__file__).parent.parent.parent.parent
            config_path = project_root / "config" / "default_config.yaml"

        self.config_path = Path(config_path)
        self._config: Dict[str, Any] = {}
        self.load()

    def load(self) -> None:
        """Load configuration from YAML file."""
        file_config: Dict[str, Any] = {}

        if self.config_path.exists():
            with open(self.config_path, 'r') as f:
                file_config = yaml.safe_load(f) or {}
        elif self._explicit:
            raise FileNotFoundError(f"Config file not found: {self.config_path}")

        self._config = _merge(DEFAULT_CONFIG, file_config)

        # Apply environment variable overrides
        self._apply_env_overrides()

    def _apply_env_overrides(self) -> None:
        """Override config values from environment variables."""
        if 'MDS_API_URL' in os.environ:
            self.set('api.base_url', os.environ['MDS_API_URL'])

        if 'MDS_CACHE_DB' in os.environ:
            self.set('storage.cache_db', os.environ['MDS_CACHE_DB'])

        if 'MDS_LOG_LEVEL' in os.environ:
            self.set('logging.level', os.environ['MDS_LOG_LEVEL'])

    def get(self, key: str, default: Any = None) -> Any:
        """
        Get configuration value using dot notation.

        Example:
            >>> config = Config()
            >>> config.get('api.timeout')
            10
        """
        value = self._config

        for k in key.split('.'):
            if isinstance(value, dict) and k in value:
                value = value[k]
            else:
                return default

        return value

    def set(self, key: str, value: Any) -> None:
        """Set configuration value using dot notation."""
        keys = key.split('.')
        config = self._config

        for k in keys[:-1]:
            if k not in config or not isinstance(config[k], dict):
                config[k] = {}
            config = config[k]

        config[keys[-1]] = value

    def save(self, path: Optional[str] = None) -> None:
        """
        Save configuration to YAML file.

        Args:
            path: Path to save to. If None, uses original config_path
        """
        save_path = Path(path) if path else self.config_path
        save_path.parent.mkdir(parents=True, exist_ok=True)

        with open(save_path, 'w') as f:
            yaml.safe_dump(self._config, f, default_flow_style=False, indent=2)

    def channel_settings(self) -> Dict[ResourceKind, ChannelSettings]:
        """
        Build per-kind channel settings. Unknown channel names are ignored;
        missing fields fall back to that kind's default.

        Raises:
            ValueError: If a configured channel has inconsistent timings
        """
        configured = self.get('sync.channels', {}) or {}
        settings: Dict[ResourceKind, ChannelSettings] = {}

        for kind, default in DEFAULT_CHANNEL_SETTINGS.items():
            values = configured.get(kind.value) or {}
            settings[kind] = ChannelSettings(
                interval=float(values.get('interval', default.interval)),
                cooldown=float(values.get('cooldown', default.cooldown)),
                min_interval=float(values.get('min_interval', default.min_interval)),
                ttl=values.get('ttl', default.ttl),
            )

        return settings

    @property
    def api_base_url(self) -> str:
        return self.get('api.base_url', '')

    @property
    def cache_db(self) -> str:
        return self.get('storage.cache_db')

    @property
    def credentials_file(self) -> str:
        return self.get('storage.credentials_file')

    @property
    def aggregate_min_interval(self) -> float:
        return float(self.get('sync.aggregate_min_interval', DEFAULT_AGGREGATE_MIN_INTERVAL))

    def __repr__(self) -> str:
        return f"Config(path={self.config_path})"
