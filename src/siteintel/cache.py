"""TTL key-value cache shared by every component in the process.

All cache operations catch the backend's own exception types internally and
degrade gracefully: read failures return ``None`` (treated as cache miss by
callers), write failures are logged and reported as ``False``. Callers treat
the cache as an optimisation, never as a source of truth, so infrastructure
errors never cross the CacheStore boundary. Errors are still logged with
``exc_info=True`` so they remain observable.

Freshness is decided here, on every read, from the ``cached_at`` stamp in the
stored envelope. Whatever eviction a backend does on its own is only memory
hygiene.
"""

from __future__ import annotations

from pathlib import Path
from typing import TYPE_CHECKING, Any

import aiosqlite
import structlog
from pydantic import ValidationError

from siteintel.backends import MemoryBackend, SqliteBackend, connect_redis, utcnow
from siteintel.errors import ErrorCode
from siteintel.models.cache import CacheEntry

if TYPE_CHECKING:
    from collections.abc import Callable
    from datetime import datetime, timedelta

    from siteintel.config import CacheSettings
    from siteintel.protocols import CacheBackend

log = structlog.get_logger()


class CacheStore:
    """Fail-soft TTL cache over a single backend handle."""

    def __init__(
        self,
        backend: CacheBackend,
        *,
        clock: Callable[[], datetime] = utcnow,
        degraded: bool = False,
    ) -> None:
        self._backend = backend
        self._clock = clock
        self._errors = backend.errors
        self.degraded = degraded

    @property
    def backend_name(self) -> str:
        return self._backend.name

    def now(self) -> datetime:
        return self._clock()

    # ------------------------------------------------------------------
    # Reads
    # ------------------------------------------------------------------

    async def get_entry(self, key: str) -> CacheEntry | None:
        """Read the full envelope. Returns ``None`` on miss, expiry or failure."""
        try:
            payload = await self._backend.get(key)
        except self._errors:
            log.warning("cache_read_error", key=key, backend=self.backend_name, exc_info=True)
            return None
        if payload is None:
            return None

        try:
            entry = CacheEntry.model_validate_json(payload)
        except ValidationError:
            log.warning("cache_payload_invalid", key=key, backend=self.backend_name)
            return None

        if entry.is_expired(self._clock()):
            log.debug("cache_entry_expired", key=key)
            return None
        return entry

    async def get(self, key: str) -> Any | None:
        """Read a value. Returns ``None`` on miss, expiry or failure."""
        entry = await self.get_entry(key)
        return entry.value if entry is not None else None

    async def keys(self, pattern: str) -> list[str]:
        """Keys matching a glob pattern. Physically present keys may be expired."""
        try:
            return await self._backend.keys(pattern)
        except self._errors:
            log.warning("cache_keys_error", pattern=pattern, exc_info=True)
            return []

    # ------------------------------------------------------------------
    # Writes
    # ------------------------------------------------------------------

    async def set(self, key: str, value: Any, ttl: timedelta) -> bool:
        """Write a value with a time-to-live. Non-fatal on failure."""
        entry = CacheEntry(
            key=key,
            value=value,
            cached_at=self._clock(),
            ttl_seconds=ttl.total_seconds(),
        )
        try:
            payload = entry.model_dump_json()
        except (TypeError, ValueError):
            log.warning("cache_value_unserialisable", key=key, exc_info=True)
            return False

        try:
            await self._backend.set(key, payload, entry.ttl_seconds)
        except self._errors:
            log.warning("cache_write_error", key=key, backend=self.backend_name, exc_info=True)
            return False
        return True

    async def delete(self, key: str) -> bool:
        try:
            return await self._backend.delete(key)
        except self._errors:
            log.warning("cache_delete_error", key=key, exc_info=True)
            return False

    async def delete_pattern(self, pattern: str) -> int:
        """Delete every key matching ``pattern``. Returns how many were removed."""
        deleted = 0
        for key in await self.keys(pattern):
            if await self.delete(key):
                deleted += 1
        return deleted

    # ------------------------------------------------------------------
    # Maintenance
    # ------------------------------------------------------------------

    async def sweep(self) -> int:
        """Physically drop expired entries where the backend needs it."""
        try:
            removed = await self._backend.sweep()
        except self._errors:
            log.warning("cache_sweep_error", backend=self.backend_name, exc_info=True)
            return 0
        if removed:
            log.info("cache_sweep_complete", backend=self.backend_name, removed=removed)
        return removed

    async def close(self) -> None:
        try:
            await self._backend.close()
        except self._errors:
            log.warning("cache_close_error", backend=self.backend_name, exc_info=True)


async def open_cache_store(
    settings: CacheSettings,
    *,
    clock: Callable[[], datetime] = utcnow,
) -> CacheStore:
    """Pick and connect the backend once at startup.

    A configured backend that cannot be reached degrades to the in-process
    fallback instead of failing the caller.
    """
    if settings.redis_url:
        backend = connect_redis(settings.redis_url)
        try:
            await backend.ping()
        except backend.errors:
            log.warning(
                "cache_backend_unavailable",
                backend="redis",
                code=ErrorCode.CACHE_BACKEND_UNAVAILABLE,
                exc_info=True,
            )
            await _close_quietly(backend)
        else:
            log.info("cache_backend_connected", backend="redis")
            return CacheStore(backend, clock=clock)
        return CacheStore(MemoryBackend(clock), clock=clock, degraded=True)

    if settings.db_path:
        db_path = settings.db_path
        try:
            if db_path != ":memory:":
                path = Path(db_path).expanduser()
                path.parent.mkdir(parents=True, exist_ok=True)
                db_path = str(path)
            db = await aiosqlite.connect(db_path)
            sqlite_backend = SqliteBackend(db, clock)
            await sqlite_backend.init_db()
        except (aiosqlite.Error, OSError):
            log.warning(
                "cache_backend_unavailable",
                backend="sqlite",
                code=ErrorCode.CACHE_BACKEND_UNAVAILABLE,
                exc_info=True,
            )
            return CacheStore(MemoryBackend(clock), clock=clock, degraded=True)
        log.info("cache_backend_connected", backend="sqlite", db_path=db_path)
        return CacheStore(sqlite_backend, clock=clock)

    log.info("cache_backend_connected", backend="memory")
    return CacheStore(MemoryBackend(clock), clock=clock)


async def _close_quietly(backend: CacheBackend) -> None:
    try:
        await backend.close()
    except backend.errors:
        log.debug("cache_backend_close_failed", backend=backend.name, exc_info=True)
