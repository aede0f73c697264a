"""Background scheduler coroutines for cache maintenance."""

from __future__ import annotations

import asyncio
from typing import TYPE_CHECKING

import structlog

if TYPE_CHECKING:
    from siteintel.state import AppState

log = structlog.get_logger()


async def run_cache_sweep_scheduler(state: AppState) -> None:
    """Drop expired entries at startup and then on the configured interval.

    Reads never depend on this: an expired entry is a miss whether or not it
    has been swept. An interval of 0 sweeps once and returns.
    """
    interval_seconds = state.settings.cache.sweep_interval_seconds

    while True:
        try:
            await state.cache.sweep()
        except Exception:
            log.warning("cache_sweep_scheduler_error", exc_info=True)

        if interval_seconds <= 0:
            return
        await asyncio.sleep(interval_seconds)
