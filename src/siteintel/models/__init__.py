from __future__ import annotations

from siteintel.models.cache import CacheEntry
from siteintel.models.learning import (
    AttemptImprovements,
    AttemptRecord,
    CumulativeLearning,
    LearningAttempt,
    LearningPhase,
    LearningResult,
)
from siteintel.models.navigation import (
    BareItems,
    DepartmentIndex,
    DropdownMenuMap,
    LevelContext,
    NavigationCacheStats,
    NavigationHierarchy,
    NavigationLookup,
    NavigationNode,
    NavigationRepresentation,
    NavItem,
    SectionList,
)
from siteintel.models.patterns import (
    ApplicablePattern,
    CrossSitePattern,
    LearningAnalytics,
    LearningPatterns,
    LearningRecord,
    SelectorRecord,
    SuccessfulSelector,
)

__all__ = [
    # cache
    "CacheEntry",
    # navigation
    "NavItem",
    "SectionList",
    "DropdownMenuMap",
    "BareItems",
    "DepartmentIndex",
    "NavigationRepresentation",
    "NavigationNode",
    "NavigationHierarchy",
    "NavigationLookup",
    "NavigationCacheStats",
    "LevelContext",
    # patterns
    "SuccessfulSelector",
    "LearningPatterns",
    "LearningRecord",
    "SelectorRecord",
    "ApplicablePattern",
    "CrossSitePattern",
    "LearningAnalytics",
    # learning
    "LearningPhase",
    "LearningAttempt",
    "CumulativeLearning",
    "AttemptImprovements",
    "AttemptRecord",
    "LearningResult",
]
