"""
Paired screen credentials.

Stored as credentials.json after pairing. The sync engine only asks
is_authenticated; pairing itself happens elsewhere.
"""

import json
import os
import threading
from pathlib import Path
from typing import Any, Dict, Optional

from masjid_display.common.logger import setup_logger

logger = setup_logger(__name__)

DEFAULT_CREDENTIALS_FILE = "/var/lib/masjid-display/credentials.json"


class DeviceCredentials:
    """Manages the screen's API key and screen ID."""

    def __init__(self, path: Optional[str] = None):
        """
        Args:
            path: Path to credentials.json. If None, uses DEFAULT_CREDENTIALS_FILE
        """
        self.path = Path(path or DEFAULT_CREDENTIALS_FILE)
        self._lock = threading.Lock()
        self._data: Dict[str, Any] = {}
        self.load()

    def load(self) -> None:
        """Load credentials from disk and apply environment overrides."""
        data: Dict[str, Any] = {}
        if self.path.exists():
            try:
                with open(self.path, 'r') as f:
                    data = json.load(f)
            except (OSError, ValueError) as e:
                logger.error("Could not read credentials %s: %s", self.path, e)
                data = {}

        if 'MDS_API_KEY' in os.environ:
            data['api_key'] = os.environ['MDS_API_KEY']

        if 'MDS_SCREEN_ID' in os.environ:
            data['screen_id'] = os.environ['MDS_SCREEN_ID']

        with self._lock:
            self._data = data

    def save(self) -> None:
        """Save credentials to disk."""
        self.path.parent.mkdir(parents=True, exist_ok=True)
        with self._lock:
            data = dict(self._data)
        with open(self.path, 'w') as f:
            json.dump(data, f, indent=2)

    @property
    def api_key(self) -> str:
        with self._lock:
            return self._data.get('api_key', '')

    @property
    def screen_id(self) -> str:
        with self._lock:
            return self._data.get('screen_id', '')

    @property
    def masjid_id(self) -> str:
        with self._lock:
            return self._data.get('masjid_id', '')

    @property
    def is_authenticated(self) -> bool:
        """True once the screen holds both an API key and a screen ID."""
        return bool(self.api_key and self.screen_id)

    def set_credentials(self, api_key: str, screen_id: str, masjid_id: str = "") -> None:
        """Store credentials returned by pairing."""
        with self._lock:
            self._data['api_key'] = api_key
            self._data['screen_id'] = screen_id
            if masjid_id:
                self._data['masjid_id'] = masjid_id
        logger.info("Credentials set for screen %s", screen_id)

    def clear(self) -> None:
        """Forget credentials (factory reset / unpair)."""
        with self._lock:
            self._data = {}
        if self.path.exists():
            self.path.unlink()
        logger.info("Credentials cleared")

    def __repr__(self) -> str:
        return f"DeviceCredentials(path={self.path}, authenticated={self.is_authenticated})"
