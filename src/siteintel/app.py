"""Process wiring.

Responsibilities (and nothing more):
- Configure structlog
- Open the one CacheStore for this process and inject it into every component
- Run the cache sweep scheduler for the lifetime of the state
"""

from __future__ import annotations

import asyncio
import logging
import sys
from contextlib import asynccontextmanager, suppress
from datetime import timedelta
from typing import TYPE_CHECKING

import structlog

from siteintel import __version__
from siteintel.backends import utcnow
from siteintel.cache import CacheStore, open_cache_store
from siteintel.config import Settings
from siteintel.learning import LearningLoop
from siteintel.navigation import NavigationHierarchyCache
from siteintel.patterns import PatternIntelligenceStore
from siteintel.schedulers import run_cache_sweep_scheduler
from siteintel.state import AppState

if TYPE_CHECKING:
    from collections.abc import AsyncGenerator, Callable
    from datetime import datetime

log = structlog.get_logger()


# ---------------------------------------------------------------------------
# Logging setup
# ---------------------------------------------------------------------------


def setup_logging(settings: Settings) -> None:
    """Configure structlog. Called once at startup before any log statements."""
    log_level = logging.getLevelNamesMapping()[settings.logging.level]

    shared_processors: list[structlog.types.Processor] = [
        structlog.contextvars.merge_contextvars,
        structlog.processors.add_log_level,
        structlog.processors.StackInfoRenderer(),
        structlog.processors.TimeStamper(fmt="iso"),
    ]

    if settings.logging.format == "json":
        processors = [
            *shared_processors,
            structlog.processors.format_exc_info,
            structlog.processors.JSONRenderer(),
        ]
    else:
        processors = [*shared_processors, structlog.dev.ConsoleRenderer()]

    structlog.configure(
        processors=processors,
        wrapper_class=structlog.make_filtering_bound_logger(log_level),
        context_class=dict,
        logger_factory=structlog.PrintLoggerFactory(file=sys.stderr),
        cache_logger_on_first_use=True,
    )


# ---------------------------------------------------------------------------
# Lifespan
# ---------------------------------------------------------------------------


def build_state(settings: Settings, cache_store: CacheStore) -> AppState:
    """Construct every component around an already opened CacheStore."""
    navigation = NavigationHierarchyCache(
        cache_store,
        ttl=timedelta(days=settings.navigation.ttl_days),
        max_depth=settings.navigation.max_depth,
        department_vocabulary=settings.navigation.department_vocabulary,
        logger=log.bind(component="navigation_cache"),
    )
    patterns = PatternIntelligenceStore(
        cache_store,
        learning_ttl=timedelta(days=settings.patterns.learning_ttl_days),
        selector_ttl=timedelta(days=settings.patterns.selector_ttl_days),
        max_generic_selector_length=settings.patterns.max_generic_selector_length,
        ecommerce_keywords=settings.patterns.ecommerce_keywords,
        min_strategy_success_rate=settings.patterns.min_strategy_success_rate,
        logger=log.bind(component="pattern_store"),
    )
    learning = LearningLoop(
        patterns,
        quality_schedule=settings.learning.quality_schedule,
        max_attempts=settings.learning.max_attempts,
        target_quality=settings.learning.target_quality,
        logger=log.bind(component="learning_loop"),
    )
    return AppState(
        settings=settings,
        cache=cache_store,
        navigation=navigation,
        patterns=patterns,
        learning=learning,
    )


@asynccontextmanager
async def lifespan(
    settings: Settings | None = None,
    *,
    clock: Callable[[], datetime] = utcnow,
    configure_logging: bool = True,
) -> AsyncGenerator[AppState, None]:
    """Create and tear down all shared resources for the process lifetime."""
    settings = settings or Settings()
    if configure_logging:
        setup_logging(settings)

    log.info("siteintel_starting", version=__version__)

    cache_store = await open_cache_store(settings.cache, clock=clock)
    state = build_state(settings, cache_store)

    sweep_task = asyncio.create_task(run_cache_sweep_scheduler(state))

    log.info(
        "siteintel_started",
        version=__version__,
        cache_backend=cache_store.backend_name,
        degraded=cache_store.degraded,
    )

    try:
        yield state
    finally:
        sweep_task.cancel()
        with suppress(asyncio.CancelledError):
            await sweep_task
        await cache_store.close()
        log.info("siteintel_stopping")
