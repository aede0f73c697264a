"""Shared test fixtures for the siteintel test suite."""

from __future__ import annotations

from datetime import UTC, datetime, timedelta
from typing import TYPE_CHECKING

import aiosqlite
import pytest

from siteintel.backends import MemoryBackend, SqliteBackend
from siteintel.cache import CacheStore

if TYPE_CHECKING:
    from collections.abc import AsyncGenerator


class FakeClock:
    """Controllable UTC clock. Call it to read, ``advance`` to move it."""

    def __init__(self, start: datetime | None = None) -> None:
        self.current = start or datetime(2026, 1, 1, 12, 0, tzinfo=UTC)

    def __call__(self) -> datetime:
        return self.current

    def advance(self, **kwargs: float) -> None:
        self.current += timedelta(**kwargs)


@pytest.fixture()
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture()
def memory_store(clock: FakeClock) -> CacheStore:
    """CacheStore over the in-process backend, driven by the fake clock."""
    return CacheStore(MemoryBackend(clock), clock=clock)


@pytest.fixture()
async def sqlite_store(clock: FakeClock) -> AsyncGenerator[CacheStore, None]:
    """CacheStore over in-memory SQLite, driven by the fake clock."""
    async with aiosqlite.connect(":memory:") as db:
        backend = SqliteBackend(db, clock)
        await backend.init_db()
        yield CacheStore(backend, clock=clock)


@pytest.fixture(params=["memory", "sqlite"])
async def store(
    request: pytest.FixtureRequest, clock: FakeClock
) -> AsyncGenerator[CacheStore, None]:
    """Every local backend, so TTL behaviour is checked against each."""
    if request.param == "memory":
        yield CacheStore(MemoryBackend(clock), clock=clock)
        return
    async with aiosqlite.connect(":memory:") as db:
        backend = SqliteBackend(db, clock)
        await backend.init_db()
        yield CacheStore(backend, clock=clock)
