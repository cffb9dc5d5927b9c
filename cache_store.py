"""
Response cache for geo provider lookups.

Map data changes slowly, so address resolution, reverse geocoding and
travel metrics are cached for a day to bound provider call volume and cost.
The cache is injected into the provider adapter; tests substitute
NullCache or a fresh MemoryCache.

Values are JSON strings (immutable), so concurrent writers are plain
last-write-wins.  Cache errors are swallowed and logged: a broken cache
must never break a quote.
"""

import hashlib
import logging
import sqlite3
import threading
import time
from datetime import date, datetime, timedelta, timezone
from typing import Dict, Optional, Tuple

logger = logging.getLogger(__name__)

DEFAULT_TTL_SECONDS = 24 * 60 * 60


def normalize_input(text: str) -> str:
    """Case- and whitespace-insensitive form of a free-text lookup."""
    return " ".join(text.lower().split())


def cache_key(operation: str, normalized_input: str, day: Optional[date] = None) -> str:
    """Deterministic key from operation, normalized input and a UTC day bucket."""
    if day is None:
        day = datetime.now(timezone.utc).date()
    raw = f"{operation}|{normalized_input}|{day.isoformat()}"
    return hashlib.sha256(raw.encode()).hexdigest()


class QuoteCache:
    """Interface: get/set JSON strings with a time-to-live."""

    def get(self, key: str) -> Optional[str]:
        raise NotImplementedError

    def set(self, key: str, value: str, ttl_seconds: int = DEFAULT_TTL_SECONDS) -> None:
        raise NotImplementedError


class NullCache(QuoteCache):
    """Never stores anything."""

    def get(self, key: str) -> Optional[str]:
        return None

    def set(self, key: str, value: str, ttl_seconds: int = DEFAULT_TTL_SECONDS) -> None:
        return None


class MemoryCache(QuoteCache):
    """Process-local cache.  *clock* is injectable for deterministic tests."""

    def __init__(self, clock=time.monotonic):
        self._clock = clock
        self._lock = threading.Lock()
        self._entries: Dict[str, Tuple[float, str]] = {}

    def get(self, key: str) -> Optional[str]:
        with self._lock:
            entry = self._entries.get(key)
            if entry is None:
                return None
            expires_at, value = entry
            if self._clock() >= expires_at:
                del self._entries[key]
                return None
            return value

    def set(self, key: str, value: str, ttl_seconds: int = DEFAULT_TTL_SECONDS) -> None:
        with self._lock:
            now = self._clock()
            # Keys are day-bucketed, so stale ones are never read again.
            expired = [k for k, (expires_at, _) in self._entries.items() if now >= expires_at]
            for k in expired:
                del self._entries[k]
            self._entries[key] = (now + ttl_seconds, value)

    def __len__(self) -> int:
        return len(self._entries)


class SQLiteCache(QuoteCache):
    """Persistent cache in a single SQLite table.

    Survives restarts, so a redeploy doesn't re-bill every lookup the
    previous process already paid for.
    """

    def __init__(self, db_path: str):
        self.db_path = db_path
        self._init_db()

    def _get_db(self):
        conn = sqlite3.connect(self.db_path, timeout=10)
        conn.row_factory = sqlite3.Row
        conn.execute("PRAGMA journal_mode=WAL")
        return conn

    def _init_db(self):
        conn = self._get_db()
        conn.executescript("""
            CREATE TABLE IF NOT EXISTS geo_cache (
                cache_key     TEXT PRIMARY KEY,
                response_json TEXT NOT NULL,
                created_at    TEXT NOT NULL,
                ttl_seconds   INTEGER NOT NULL
            );
            CREATE INDEX IF NOT EXISTS idx_geo_cache_created ON geo_cache(created_at);
        """)
        conn.commit()
        conn.close()

    def get(self, key: str) -> Optional[str]:
        try:
            conn = self._get_db()
            row = conn.execute(
                """SELECT response_json, created_at, ttl_seconds FROM geo_cache
                   WHERE cache_key = ?""",
                (key,),
            ).fetchone()
            conn.close()

            if not row:
                return None

            created = datetime.fromisoformat(row["created_at"])
            if created.tzinfo is None:
                created = created.replace(tzinfo=timezone.utc)
            age = datetime.now(timezone.utc) - created
            if age > timedelta(seconds=row["ttl_seconds"]):
                return None

            return row["response_json"]
        except Exception:
            logger.warning("Geo cache lookup failed", exc_info=True)
            return None

    def set(self, key: str, value: str, ttl_seconds: int = DEFAULT_TTL_SECONDS) -> None:
        try:
            conn = self._get_db()
            conn.execute(
                """INSERT OR REPLACE INTO geo_cache
                   (cache_key, response_json, created_at, ttl_seconds)
                   VALUES (?, ?, ?, ?)""",
                (key, value, datetime.now(timezone.utc).isoformat(), ttl_seconds),
            )
            conn.commit()
            conn.close()
        except Exception:
            logger.warning("Geo cache write failed", exc_info=True)

    def purge_expired(self) -> int:
        """Delete expired rows.  Returns the number removed."""
        conn = self._get_db()
        rows = conn.execute(
            "SELECT cache_key, created_at, ttl_seconds FROM geo_cache"
        ).fetchall()
        now = datetime.now(timezone.utc)
        expired = []
        for row in rows:
            created = datetime.fromisoformat(row["created_at"])
            if created.tzinfo is None:
                created = created.replace(tzinfo=timezone.utc)
            if now - created > timedelta(seconds=row["ttl_seconds"]):
                expired.append((row["cache_key"],))
        conn.executemany("DELETE FROM geo_cache WHERE cache_key = ?", expired)
        conn.commit()
        conn.close()
        return len(expired)
