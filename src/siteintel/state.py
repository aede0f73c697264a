"""Application state container.

AppState is created once at startup (inside the ``lifespan`` context manager)
and handed to whatever drives the scraping pipeline. Every component holds the
same CacheStore instance; nothing constructs its own.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from siteintel.cache import CacheStore
    from siteintel.config import Settings
    from siteintel.learning import LearningLoop
    from siteintel.navigation import NavigationHierarchyCache
    from siteintel.patterns import PatternIntelligenceStore


@dataclass
class AppState:
    """Holds all shared runtime state."""

    settings: Settings
    cache: CacheStore
    navigation: NavigationHierarchyCache
    patterns: PatternIntelligenceStore
    learning: LearningLoop
