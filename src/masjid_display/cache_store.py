"""
Local SQLite cache of synced resources.

One row per resource kind holding the last payload the portal returned.
Writes are whole-value overwrites (last writer wins). The display UI reads
the same database concurrently, so WAL mode is enabled.

Table:
- cache_entries: kind, JSON payload, saved_at, expires_at

The cache survives restarts; nothing here is cleared by the sync engine.
"""

import json
import sqlite3
import threading
import time
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Dict, List, Optional

from masjid_display.common.logger import setup_logger
from masjid_display.sync.resources import ResourceKind

logger = setup_logger(__name__)

DEFAULT_DB_FILE = "/var/lib/masjid-display/cache.db"


@dataclass
class CacheEntry:
    kind: ResourceKind
    payload: Any
    saved_at: float
    expires_at: Optional[float]

    def is_stale(self, now: float) -> bool:
        return self.expires_at is not None and now >= self.expires_at


class LocalCacheStore:
    """
    SQLite-backed key/value store keyed by ResourceKind.

    Thread-safe: uses a connection per thread via thread-local storage.
    """

    def __init__(
        self,
        db_file: str = DEFAULT_DB_FILE,
        ttls: Optional[Dict[ResourceKind, Optional[float]]] = None,
    ):
        """
        Args:
            db_file: SQLite database path
            ttls: Per-kind lifetime in seconds (None = never stale)
        """
        self.db_file = Path(db_file)
        self.ttls = dict(ttls or {})
        self._local = threading.local()

        self.db_file.parent.mkdir(parents=True, exist_ok=True)

        self._init_schema()
        logger.info("LocalCacheStore initialized: %s", self.db_file)

    def _get_conn(self) -> sqlite3.Connection:
        """Get a thread-local SQLite connection."""
        if not hasattr(self._local, "conn") or self._local.conn is None:
            self._local.conn = sqlite3.connect(
                str(self.db_file),
                timeout=10,
            )
            self._local.conn.row_factory = sqlite3.Row
            self._local.conn.execute("PRAGMA journal_mode=WAL")
            self._local.conn.execute("PRAGMA synchronous=NORMAL")
        return self._local.conn

    def _init_schema(self) -> None:
        conn = self._get_conn()
        conn.executescript("""
            CREATE TABLE IF NOT EXISTS cache_entries (
                kind TEXT PRIMARY KEY,
                payload TEXT NOT NULL,
                saved_at REAL NOT NULL,
                expires_at REAL
            );
        """)
        conn.commit()

    def save(self, kind: ResourceKind, payload: Any, now: Optional[float] = None) -> None:
        """
        Overwrite the cached payload for `kind`.

        Raises:
            TypeError: If the payload is not JSON-serializable
            sqlite3.Error: On database failure
        """
        saved_at = now if now is not None else time.time()
        ttl = self.ttls.get(kind)
        expires_at = saved_at + ttl if ttl is not None else None

        conn = self._get_conn()
        conn.execute(
            """
            INSERT INTO cache_entries (kind, payload, saved_at, expires_at)
            VALUES (?, ?, ?, ?)
            ON CONFLICT(kind) DO UPDATE SET
                payload = excluded.payload,
                saved_at = excluded.saved_at,
                expires_at = excluded.expires_at
            """,
            (kind.value, json.dumps(payload), saved_at, expires_at),
        )
        conn.commit()
        logger.debug("Cached %s (%s)", kind.value, "no expiry" if ttl is None else f"ttl {ttl}s")

    def get_entry(self, kind: ResourceKind) -> Optional[CacheEntry]:
        row = self._get_conn().execute(
            "SELECT payload, saved_at, expires_at FROM cache_entries WHERE kind = ?",
            (kind.value,),
        ).fetchone()
        if row is None:
            return None

        try:
            payload = json.loads(row["payload"])
        except ValueError:
            logger.warning("Corrupt cache entry for %s, ignoring", kind.value)
            return None

        return CacheEntry(
            kind=kind,
            payload=payload,
            saved_at=row["saved_at"],
            expires_at=row["expires_at"],
        )

    def get(self, kind: ResourceKind) -> Any:
        """Cached payload for `kind`, or None if absent."""
        entry = self.get_entry(kind)
        return entry.payload if entry else None

    def is_stale(self, kind: ResourceKind, now: Optional[float] = None) -> bool:
        """True when the entry is missing or past its TTL."""
        entry = self.get_entry(kind)
        if entry is None:
            return True
        return entry.is_stale(now if now is not None else time.time())

    def keys(self) -> List[ResourceKind]:
        rows = self._get_conn().execute("SELECT kind FROM cache_entries").fetchall()
        kinds = []
        for row in rows:
            try:
                kinds.append(ResourceKind(row["kind"]))
            except ValueError:
                continue
        return kinds

    def size_bytes(self) -> int:
        """Approximate size of all cached payloads."""
        row = self._get_conn().execute(
            "SELECT COALESCE(SUM(LENGTH(payload)), 0) AS total FROM cache_entries"
        ).fetchone()
        return int(row["total"])

    def clear(self, kind: Optional[ResourceKind] = None) -> None:
        """Remove one entry, or every entry when kind is None."""
        conn = self._get_conn()
        if kind is None:
            conn.execute("DELETE FROM cache_entries")
        else:
            conn.execute("DELETE FROM cache_entries WHERE kind = ?", (kind.value,))
        conn.commit()
        logger.info("Cache cleared: %s", kind.value if kind else "all")

    def close(self) -> None:
        """Close this thread's connection."""
        conn = getattr(self._local, "conn", None)
        if conn is not None:
            conn.close()
            self._local.conn = None
