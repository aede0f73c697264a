"""Integration test fixtures.

Provides a fully wired AppState from ``lifespan`` over in-memory SQLite, so
every component shares one real cache handle.
"""

from __future__ import annotations

from typing import TYPE_CHECKING

import pytest

from siteintel.app import lifespan
from siteintel.config import Settings

if TYPE_CHECKING:
    from collections.abc import AsyncGenerator

    from siteintel.state import AppState
    from tests.conftest import FakeClock


@pytest.fixture()
async def app_state(clock: FakeClock) -> AsyncGenerator[AppState, None]:
    settings = Settings(cache={"db_path": ":memory:", "sweep_interval_seconds": 0})
    async with lifespan(settings, clock=clock, configure_logging=False) as state:
        yield state
