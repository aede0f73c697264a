"""Unit tests for siteintel.cache and siteintel.backends."""

from __future__ import annotations

from datetime import timedelta
from typing import TYPE_CHECKING
from unittest.mock import AsyncMock, MagicMock, patch

import aiosqlite
from redis.exceptions import ConnectionError as RedisConnectionError
from redis.exceptions import RedisError

from siteintel.backends import MemoryBackend, RedisBackend
from siteintel.cache import CacheStore, open_cache_store
from siteintel.config import CacheSettings

if TYPE_CHECKING:
    from pathlib import Path

    from tests.conftest import FakeClock

TTL = timedelta(hours=1)


def _failing_backend(exc: BaseException) -> AsyncMock:
    backend = AsyncMock()
    backend.name = "redis"
    backend.errors = (RedisError, OSError)
    for method in ("get", "set", "keys", "delete", "sweep", "close"):
        getattr(backend, method).side_effect = exc
    return backend


# ---------------------------------------------------------------------------
# TTL semantics (every local backend)
# ---------------------------------------------------------------------------


class TestTtl:
    async def test_set_and_get_fresh(self, store: CacheStore) -> None:
        assert await store.set("k", {"a": [1, 2]}, TTL) is True
        assert await store.get("k") == {"a": [1, 2]}

    async def test_hit_just_before_ttl(self, store: CacheStore, clock: FakeClock) -> None:
        await store.set("k", "v", TTL)
        clock.advance(seconds=TTL.total_seconds() - 1)
        assert await store.get("k") == "v"

    async def test_miss_exactly_at_ttl(self, store: CacheStore, clock: FakeClock) -> None:
        await store.set("k", "v", TTL)
        clock.advance(seconds=TTL.total_seconds())
        assert await store.get("k") is None

    async def test_miss_after_ttl(self, store: CacheStore, clock: FakeClock) -> None:
        await store.set("k", "v", TTL)
        clock.advance(seconds=TTL.total_seconds() + 1)
        assert await store.get("k") is None

    async def test_get_nonexistent_returns_none(self, store: CacheStore) -> None:
        assert await store.get("missing") is None

    async def test_upsert_overwrites_and_restarts_ttl(
        self, store: CacheStore, clock: FakeClock
    ) -> None:
        await store.set("k", "v1", TTL)
        clock.advance(minutes=50)
        await store.set("k", "v2", TTL)
        clock.advance(minutes=50)
        assert await store.get("k") == "v2"

    async def test_entry_reports_age(self, store: CacheStore, clock: FakeClock) -> None:
        await store.set("k", "v", timedelta(days=7))
        clock.advance(days=2)
        entry = await store.get_entry("k")
        assert entry is not None
        assert entry.age(store.now()) == timedelta(days=2)
        assert entry.ttl == timedelta(days=7)


# ---------------------------------------------------------------------------
# Keys, delete, sweep
# ---------------------------------------------------------------------------


class TestKeys:
    async def test_glob_matches_across_colons(self, store: CacheStore) -> None:
        await store.set("nav:shop.com:main", 1, TTL)
        await store.set("nav:shop.com:women:tops", 2, TTL)
        await store.set("nav:other.com:main", 3, TTL)

        keys = await store.keys("nav:shop.com:*")
        assert sorted(keys) == ["nav:shop.com:main", "nav:shop.com:women:tops"]

    async def test_delete(self, store: CacheStore) -> None:
        await store.set("k", "v", TTL)
        assert await store.delete("k") is True
        assert await store.delete("k") is False
        assert await store.get("k") is None

    async def test_delete_pattern_counts_removed(self, store: CacheStore) -> None:
        await store.set("nav:a.com:main", 1, TTL)
        await store.set("nav:a.com:men", 1, TTL)
        await store.set("nav:b.com:main", 1, TTL)

        assert await store.delete_pattern("nav:a.com:*") == 2
        assert await store.keys("nav:*") == ["nav:b.com:main"]

    async def test_sweep_drops_expired_only(self, store: CacheStore, clock: FakeClock) -> None:
        await store.set("short", 1, timedelta(minutes=1))
        await store.set("long", 2, timedelta(days=1))
        clock.advance(minutes=2)

        assert await store.sweep() == 1
        assert await store.keys("*") == ["long"]


# ---------------------------------------------------------------------------
# Fail-soft boundary
# ---------------------------------------------------------------------------


class TestFailSoft:
    async def test_backend_errors_never_escape(self) -> None:
        store = CacheStore(_failing_backend(RedisConnectionError("down")))

        assert await store.get("k") is None
        assert await store.get_entry("k") is None
        assert await store.set("k", "v", TTL) is False
        assert await store.keys("*") == []
        assert await store.delete("k") is False
        assert await store.delete_pattern("*") == 0
        assert await store.sweep() == 0
        await store.close()

    async def test_os_error_is_a_miss(self) -> None:
        store = CacheStore(_failing_backend(OSError("connection reset")))
        assert await store.get("k") is None

    async def test_sqlite_read_failure_returns_none(self, sqlite_store: CacheStore) -> None:
        """A database error on read or write surfaces as a miss or a failed write."""
        db = sqlite_store._backend._db  # type: ignore[attr-defined]
        original_execute = db.execute

        async def failing_execute(*args, **kwargs):
            raise aiosqlite.OperationalError("disk I/O error")

        db.execute = failing_execute
        try:
            assert await sqlite_store.get("k") is None
            assert await sqlite_store.set("k", "v", TTL) is False
        finally:
            db.execute = original_execute

    async def test_malformed_payload_is_a_miss(self, clock: FakeClock) -> None:
        backend = MemoryBackend(clock)
        store = CacheStore(backend, clock=clock)
        await backend.set("k", "not json at all", 60)
        assert await store.get("k") is None

    async def test_unserialisable_value_is_not_written(self, memory_store: CacheStore) -> None:
        assert await memory_store.set("k", object(), TTL) is False
        assert await memory_store.get("k") is None


# ---------------------------------------------------------------------------
# Backend selection
# ---------------------------------------------------------------------------


class TestOpenCacheStore:
    async def test_no_backend_configured_uses_memory(self) -> None:
        store = await open_cache_store(CacheSettings())
        assert store.backend_name == "memory"
        assert store.degraded is False

    async def test_sqlite_backend(self, tmp_path: Path) -> None:
        db_path = tmp_path / "nested" / "cache.db"
        store = await open_cache_store(CacheSettings(db_path=str(db_path)))
        try:
            assert store.backend_name == "sqlite"
            assert db_path.parent.is_dir()
            assert await store.set("k", "v", TTL) is True
            assert await store.get("k") == "v"
        finally:
            await store.close()

    async def test_unreachable_redis_degrades_to_memory(self) -> None:
        client = MagicMock()
        client.ping = AsyncMock(side_effect=RedisConnectionError("refused"))
        client.aclose = AsyncMock()

        with patch("siteintel.backends.Redis") as redis_cls:
            redis_cls.from_url.return_value = client
            store = await open_cache_store(CacheSettings(redis_url="redis://nowhere:6379/0"))

        assert store.backend_name == "memory"
        assert store.degraded is True
        client.aclose.assert_awaited_once()
        # The fallback still works as a cache.
        assert await store.set("k", "v", TTL) is True
        assert await store.get("k") == "v"

    async def test_reachable_redis_is_used(self) -> None:
        client = MagicMock()
        client.ping = AsyncMock(return_value=True)

        with patch("siteintel.backends.Redis") as redis_cls:
            redis_cls.from_url.return_value = client
            store = await open_cache_store(CacheSettings(redis_url="redis://cache:6379/0"))

        redis_cls.from_url.assert_called_once_with(
            "redis://cache:6379/0", decode_responses=True
        )
        assert store.backend_name == "redis"
        assert store.degraded is False


class TestRedisBackend:
    async def test_set_uses_native_expiry_in_whole_seconds(self) -> None:
        client = MagicMock()
        client.set = AsyncMock()
        backend = RedisBackend(client)

        await backend.set("k", "payload", 0.2)
        client.set.assert_awaited_once_with("k", "payload", ex=1)

    async def test_keys_scans_with_match(self) -> None:
        async def scan_iter(match: str):
            for key in ("learning:a.com", "learning:b.com"):
                yield key

        client = MagicMock()
        client.scan_iter = scan_iter
        backend = RedisBackend(client)

        assert await backend.keys("learning:*") == ["learning:a.com", "learning:b.com"]

    async def test_undecodable_value_is_a_miss(self) -> None:
        client = MagicMock()
        client.get = AsyncMock(
            side_effect=UnicodeDecodeError("utf-8", b"\xff\xfe", 0, 1, "invalid start byte")
        )
        store = CacheStore(RedisBackend(client))

        assert await store.get("learning:shop.com") is None
