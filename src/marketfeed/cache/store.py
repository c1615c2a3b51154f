"""SQLite-backed TTL cache for API responses.

Entries older than their TTL are treated as absent: ``get`` deletes them
before they can be read as a hit. ``peek`` bypasses that check and exists
only for the stale-on-failure fallback in ``CachedMarketClient``.
"""

from __future__ import annotations

import json
import logging
import time
from pathlib import Path
from typing import Any, Callable

import aiosqlite
from pydantic import BaseModel, ConfigDict

from marketfeed.core.config import CacheConfig

logger = logging.getLogger(__name__)

CacheType = str  # "search" | "quote" | "history" | "fx"


def cache_key(type: CacheType, *parts: object) -> str:
    """Build ``"type:part:part"``, e.g. ``cache_key("quote", "cg:bitcoin")``."""
    return ":".join([type, *(str(p) for p in parts)])


def ttl_for(type: CacheType, config: CacheConfig | None = None) -> int:
    """Default TTL for a cache type, in milliseconds."""
    config = config or CacheConfig()
    seconds = {
        "search": config.search_ttl,
        "quote": config.quote_ttl,
        "history": config.history_ttl,
        "fx": config.fx_ttl,
    }.get(type, config.default_ttl)
    return seconds * 1000


def _system_clock() -> int:
    return int(time.time() * 1000)


class CacheEntry(BaseModel):
    """A cached JSON value and its freshness window."""

    model_config = ConfigDict(frozen=True)

    key: str
    value: Any
    fetched_at_ms: int
    ttl_ms: int

    def is_expired(self, now_ms: int) -> bool:
        return now_ms - self.fetched_at_ms > self.ttl_ms


class SqliteCacheStore:
    """Persistent key/value cache with per-entry TTL.

    Parameters
    ----------
    db_path : str
        Path to the SQLite database file. Created if missing.
    clock : Callable[[], int] | None
        Returns the current time in epoch milliseconds. Defaults to the
        system clock.
    """

    def __init__(self, db_path: str, clock: Callable[[], int] | None = None) -> None:
        self._db_path = db_path
        self._clock = clock or _system_clock
        self._initialized = False

    async def _ensure_table(self) -> None:
        if self._initialized:
            return

        Path(self._db_path).parent.mkdir(parents=True, exist_ok=True)
        async with aiosqlite.connect(self._db_path) as db:
            await db.execute(
                """CREATE TABLE IF NOT EXISTS cache (
                    key TEXT PRIMARY KEY,
                    value TEXT NOT NULL,
                    fetched_at_ms INTEGER NOT NULL,
                    ttl_ms INTEGER NOT NULL
                )"""
            )
            await db.commit()
        self._initialized = True

    async def peek(self, key: str) -> CacheEntry | None:
        """Return the entry regardless of age, without purging it."""
        await self._ensure_table()
        async with aiosqlite.connect(self._db_path) as db:
            cursor = await db.execute(
                "SELECT key, value, fetched_at_ms, ttl_ms FROM cache WHERE key = ?",
                (key,),
            )
            row = await cursor.fetchone()

        if row is None:
            return None
        return CacheEntry(
            key=row[0], value=json.loads(row[1]), fetched_at_ms=row[2], ttl_ms=row[3]
        )

    async def get(self, key: str) -> CacheEntry | None:
        """Return a fresh entry, or None. Expired entries are deleted."""
        entry = await self.peek(key)
        if entry is None:
            return None
        if entry.is_expired(self._clock()):
            logger.debug("Cache entry expired: %s", key)
            await self.delete(key)
            return None
        return entry

    async def set(self, key: str, value: Any, ttl_ms: int) -> CacheEntry:
        """Store ``value`` (JSON-serializable), replacing any existing entry."""
        await self._ensure_table()
        entry = CacheEntry(key=key, value=value, fetched_at_ms=self._clock(), ttl_ms=ttl_ms)
        async with aiosqlite.connect(self._db_path) as db:
            await db.execute(
                """INSERT OR REPLACE INTO cache (key, value, fetched_at_ms, ttl_ms)
                   VALUES (?, ?, ?, ?)""",
                (key, json.dumps(value), entry.fetched_at_ms, ttl_ms),
            )
            await db.commit()
        return entry

    async def delete(self, key: str) -> bool:
        await self._ensure_table()
        async with aiosqlite.connect(self._db_path) as db:
            cursor = await db.execute("DELETE FROM cache WHERE key = ?", (key,))
            await db.commit()
            return cursor.rowcount > 0

    async def clear(self) -> int:
        """Delete every entry. Returns the number removed."""
        await self._ensure_table()
        async with aiosqlite.connect(self._db_path) as db:
            cursor = await db.execute("DELETE FROM cache")
            await db.commit()
            removed = cursor.rowcount
        logger.info("Cleared %d cache entries", removed)
        return removed

    async def purge_expired(self) -> int:
        """Delete every expired entry. Returns the number removed."""
        await self._ensure_table()
        async with aiosqlite.connect(self._db_path) as db:
            cursor = await db.execute(
                "DELETE FROM cache WHERE ? - fetched_at_ms > ttl_ms", (self._clock(),)
            )
            await db.commit()
            return cursor.rowcount

    async def stats(self) -> dict[str, int]:
        """Entry counts: ``{"total", "valid", "expired"}``."""
        await self._ensure_table()
        async with aiosqlite.connect(self._db_path) as db:
            cursor = await db.execute(
                """SELECT COUNT(*),
                          COALESCE(SUM(CASE WHEN ? - fetched_at_ms > ttl_ms THEN 1 ELSE 0 END), 0)
                   FROM cache""",
                (self._clock(),),
            )
            total, expired = await cursor.fetchone()
        return {"total": total, "valid": total - expired, "expired": expired}
