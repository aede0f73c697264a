"""Key-value backends behind CacheStore.

Backends move opaque string payloads and nothing else. They raise their
library's own exceptions (listed in ``errors``); CacheStore is the boundary
that catches them, so none of the handling lives here.
"""

from __future__ import annotations

import fnmatch
import math
from datetime import UTC, datetime, timedelta
from typing import TYPE_CHECKING

import aiosqlite
from redis.asyncio import Redis
from redis.exceptions import RedisError

if TYPE_CHECKING:
    from collections.abc import Callable


def utcnow() -> datetime:
    return datetime.now(UTC)


class MemoryBackend:
    """In-process dict used when no shared backend is configured or reachable.

    Each entry remembers its own deadline so expired rows can be dropped on
    read or by ``sweep``. Freshness is still judged by CacheStore.
    """

    name = "memory"
    errors: tuple[type[BaseException], ...] = ()

    def __init__(self, clock: Callable[[], datetime] = utcnow) -> None:
        self._clock = clock
        self._data: dict[str, tuple[str, datetime]] = {}

    async def get(self, key: str) -> str | None:
        item = self._data.get(key)
        if item is None:
            return None
        payload, deadline = item
        if self._clock() >= deadline:
            self._data.pop(key, None)
            return None
        return payload

    async def set(self, key: str, payload: str, ttl_seconds: float) -> None:
        self._data[key] = (payload, self._clock() + timedelta(seconds=ttl_seconds))

    async def keys(self, pattern: str) -> list[str]:
        return [key for key in list(self._data) if fnmatch.fnmatchcase(key, pattern)]

    async def delete(self, key: str) -> bool:
        return self._data.pop(key, None) is not None

    async def sweep(self) -> int:
        now = self._clock()
        expired = [key for key, (_, deadline) in self._data.items() if now >= deadline]
        for key in expired:
            del self._data[key]
        return len(expired)

    async def close(self) -> None:
        self._data.clear()


_CREATE_KV_TABLE = """
CREATE TABLE IF NOT EXISTS kv_cache (
    key        TEXT PRIMARY KEY,
    payload    TEXT NOT NULL,
    expires_at TEXT NOT NULL
)
"""

_CREATE_KV_INDEX = "CREATE INDEX IF NOT EXISTS idx_kv_expires ON kv_cache(expires_at)"


class SqliteBackend:
    """SQLite-backed store, shareable between processes on one host."""

    name = "sqlite"
    errors: tuple[type[BaseException], ...] = (aiosqlite.Error,)

    def __init__(
        self,
        db: aiosqlite.Connection,
        clock: Callable[[], datetime] = utcnow,
    ) -> None:
        self._db = db
        self._clock = clock

    async def init_db(self) -> None:
        """Create tables and set WAL mode. Called once at startup."""
        await self._db.execute("PRAGMA journal_mode = WAL")
        await self._db.execute(_CREATE_KV_TABLE)
        await self._db.execute(_CREATE_KV_INDEX)
        await self._db.commit()

    async def get(self, key: str) -> str | None:
        cursor = await self._db.execute("SELECT payload FROM kv_cache WHERE key = ?", (key,))
        row = await cursor.fetchone()
        return row[0] if row is not None else None

    async def set(self, key: str, payload: str, ttl_seconds: float) -> None:
        expires_at = self._clock() + timedelta(seconds=ttl_seconds)
        await self._db.execute(
            "INSERT OR REPLACE INTO kv_cache (key, payload, expires_at) VALUES (?, ?, ?)",
            (key, payload, expires_at.isoformat()),
        )
        await self._db.commit()

    async def keys(self, pattern: str) -> list[str]:
        cursor = await self._db.execute(
            "SELECT key FROM kv_cache WHERE key GLOB ? ORDER BY key", (pattern,)
        )
        return [row[0] for row in await cursor.fetchall()]

    async def delete(self, key: str) -> bool:
        cursor = await self._db.execute("DELETE FROM kv_cache WHERE key = ?", (key,))
        await self._db.commit()
        return cursor.rowcount > 0

    async def sweep(self) -> int:
        cursor = await self._db.execute(
            "DELETE FROM kv_cache WHERE expires_at < ?", (self._clock().isoformat(),)
        )
        await self._db.commit()
        return cursor.rowcount

    async def close(self) -> None:
        await self._db.close()


class RedisBackend:
    """Remote shared store. Expiry is also set natively via ``SET ... EX``.

    Values are decoded as UTF-8 on read. Another writer on a shared instance
    can leave bytes that do not decode, which reads as a backend error.
    """

    name = "redis"
    errors: tuple[type[BaseException], ...] = (RedisError, OSError, UnicodeDecodeError)

    def __init__(self, client: Redis) -> None:
        self._client = client

    async def ping(self) -> None:
        await self._client.ping()

    async def get(self, key: str) -> str | None:
        return await self._client.get(key)

    async def set(self, key: str, payload: str, ttl_seconds: float) -> None:
        await self._client.set(key, payload, ex=max(1, math.ceil(ttl_seconds)))

    async def keys(self, pattern: str) -> list[str]:
        return [key async for key in self._client.scan_iter(match=pattern)]

    async def delete(self, key: str) -> bool:
        return bool(await self._client.delete(key))

    async def sweep(self) -> int:
        # Redis evicts on its own.
        return 0

    async def close(self) -> None:
        await self._client.aclose()


def connect_redis(url: str) -> RedisBackend:
    return RedisBackend(Redis.from_url(url, decode_responses=True))
