"""Cache-or-discover navigation hierarchy builder.

Each navigation level of a domain lives at ``nav:{domain}:{level}``. Levels
are colon-delimited paths: ``main`` is the root, departments sit at
``{department}`` and subcategories at ``{department}:{subcategory}``.

Discovery is injected. This module never retries, never locks and never
raises out of its public methods: a failed branch is simply missing from the
hierarchy. Two concurrent misses on the same level both run discovery.
"""

from __future__ import annotations

import re
from collections import defaultdict
from datetime import timedelta
from typing import TYPE_CHECKING, Any
from urllib.parse import urlparse

import structlog
from pydantic import ValidationError

from siteintel.models.navigation import (
    DepartmentIndex,
    LevelContext,
    LevelStats,
    NavigationCacheStats,
    NavigationHierarchy,
    NavigationLookup,
    NavigationNode,
    NavItem,
    count_items,
    parse_navigation,
)

if TYPE_CHECKING:
    from collections.abc import Iterable, Sequence

    from structlog.types import FilteringBoundLogger

    from siteintel.cache import CacheStore
    from siteintel.protocols import DiscoveryFn

MAIN_LEVEL = "main"
NAVIGATION_TTL = timedelta(days=7)

# Closed, hand-tuned list. An entry is a department when its lowercased name
# contains any of these.
DEPARTMENT_VOCABULARY: tuple[str, ...] = (
    "women",
    "men",
    "kids",
    "girls",
    "boys",
    "baby",
    "toddler",
    "home",
    "furniture",
    "electronics",
    "toys",
    "sports",
    "beauty",
    "shoes",
    "accessories",
    "sale",
    "new",
)

_SLUG_PATTERN = re.compile(r"[^a-z0-9]")


def slugify(name: str) -> str:
    """``'Women & Girls'`` → ``'women___girls'``"""
    return _SLUG_PATTERN.sub("_", name.lower())


def nav_key(domain: str, level: str) -> str:
    return f"nav:{domain}:{level}"


def is_department(item: NavItem, vocabulary: Iterable[str] = DEPARTMENT_VOCABULARY) -> bool:
    name = item.name.lower()
    return any(pattern in name for pattern in vocabulary)


def extract_departments(
    navigation: Any,
    vocabulary: Iterable[str] = DEPARTMENT_VOCABULARY,
) -> list[NavItem]:
    """Department-like entries of a main navigation payload."""
    representation = parse_navigation(navigation)
    if representation is None:
        return []
    if isinstance(representation, DepartmentIndex):
        return representation.items
    vocabulary = tuple(vocabulary)
    return [item for item in representation.items if is_department(item, vocabulary)]


def extract_subcategories(navigation: Any) -> list[NavItem]:
    """Every entry of a department-level navigation payload."""
    representation = parse_navigation(navigation)
    return representation.items if representation is not None else []


class NavigationHierarchyCache:
    """Builds and caches a domain's multi-level navigation tree."""

    def __init__(
        self,
        cache: CacheStore,
        *,
        ttl: timedelta = NAVIGATION_TTL,
        max_depth: int = 3,
        department_vocabulary: Sequence[str] = DEPARTMENT_VOCABULARY,
        logger: FilteringBoundLogger | None = None,
    ) -> None:
        self._cache = cache
        self._ttl = ttl
        self._max_depth = max_depth
        self._vocabulary = tuple(department_vocabulary)
        self._log = logger or structlog.get_logger().bind(component="navigation_cache")
        # (domain, level) -> hit/miss counters, diagnostics only
        self._stats: dict[tuple[str, str], LevelStats] = defaultdict(LevelStats)

    # ------------------------------------------------------------------
    # Single level
    # ------------------------------------------------------------------

    async def get_cached_node(self, domain: str, level: str) -> tuple[NavigationNode, float] | None:
        """Return the cached node for a level and its age in days, if fresh."""
        entry = await self._cache.get_entry(nav_key(domain, level))
        if entry is None:
            return None
        try:
            node = NavigationNode.model_validate(entry.value)
        except ValidationError:
            self._log.warning("navigation_cache_payload_invalid", domain=domain, level=level)
            return None
        age_days = entry.age(self._cache.now()).total_seconds() / 86400
        return node, age_days

    async def get_or_discover(
        self,
        domain: str,
        level: str = MAIN_LEVEL,
        discovery_fn: DiscoveryFn | None = None,
        *,
        context: LevelContext | None = None,
    ) -> NavigationLookup | None:
        """Return the navigation for a level from cache, or discover and cache it.

        Returns None when the level is not cached and discovery is absent,
        fails, or yields nothing.
        """
        cached = await self.get_cached_node(domain, level)
        if cached is not None:
            node, age_days = cached
            self._stats[(domain, level)].hits += 1
            self._log.info(
                "navigation_cache_hit",
                domain=domain,
                level=level,
                age_days=round(age_days, 2),
                item_count=node.item_count,
            )
            return NavigationLookup(node=node, from_cache=True, cache_age_days=age_days)

        if discovery_fn is None:
            return None

        self._log.info("navigation_cache_miss", domain=domain, level=level)
        try:
            discovered = await discovery_fn(context or LevelContext(domain=domain, level=level))
        except Exception:
            self._log.warning(
                "navigation_discovery_failed", domain=domain, level=level, exc_info=True
            )
            return None

        if not discovered:
            self._log.info("navigation_discovery_empty", domain=domain, level=level)
            return None

        # pydantic validation and serialisation errors are both ValueErrors.
        try:
            node = NavigationNode(
                domain=domain,
                level=level,
                item_count=count_items(discovered),
                navigation=discovered,
                cached_at=self._cache.now(),
            )
            payload = node.model_dump(mode="json")
        except ValueError:
            self._log.warning(
                "navigation_payload_invalid", domain=domain, level=level, exc_info=True
            )
            return None

        stored = await self._cache.set(nav_key(domain, level), payload, self._ttl)
        self._stats[(domain, level)].misses += 1
        self._log.info(
            "navigation_discovered",
            domain=domain,
            level=level,
            item_count=node.item_count,
            cached=stored,
        )
        return NavigationLookup(node=node, from_cache=False)

    # ------------------------------------------------------------------
    # Whole hierarchy
    # ------------------------------------------------------------------

    async def get_cached_hierarchy(self, domain: str) -> NavigationHierarchy | None:
        """Assemble every fresh cached level. None unless ``main`` is among them."""
        prefix = nav_key(domain, "")
        hierarchy = NavigationHierarchy(domain=domain, discovered_at=self._cache.now())
        for key in sorted(await self._cache.keys(f"{prefix}*")):
            level = key.removeprefix(prefix)
            cached = await self.get_cached_node(domain, level)
            if cached is not None:
                hierarchy.levels[level] = cached[0]

        if not hierarchy.is_complete:
            return None
        return hierarchy

    async def build_hierarchy(
        self,
        domain: str,
        *,
        max_depth: int | None = None,
        discovery_fn: DiscoveryFn | None = None,
        force_refresh: bool = False,
    ) -> NavigationHierarchy | None:
        """Build the navigation tree for a domain, reusing cached levels.

        Returns None only when no ``main`` navigation can be obtained.
        Departments and subcategories that fail to resolve are left out.
        """
        try:
            return await self._build_hierarchy(
                domain,
                max_depth=self._max_depth if max_depth is None else max_depth,
                discovery_fn=discovery_fn,
                force_refresh=force_refresh,
            )
        except Exception:
            self._log.error("navigation_hierarchy_failed", domain=domain, exc_info=True)
            return None

    async def _build_hierarchy(
        self,
        domain: str,
        *,
        max_depth: int,
        discovery_fn: DiscoveryFn | None,
        force_refresh: bool,
    ) -> NavigationHierarchy | None:
        if force_refresh:
            await self.clear_navigation_cache(domain)
        else:
            existing = await self.get_cached_hierarchy(domain)
            if existing is not None:
                self._log.info(
                    "navigation_hierarchy_cached", domain=domain, levels=len(existing.levels)
                )
                return existing

        main = await self.get_or_discover(
            domain,
            MAIN_LEVEL,
            discovery_fn,
            context=LevelContext(domain=domain, level=MAIN_LEVEL),
        )
        if main is None:
            self._log.warning("navigation_main_missing", domain=domain)
            return None

        hierarchy = NavigationHierarchy(domain=domain, discovered_at=self._cache.now())
        hierarchy.levels[MAIN_LEVEL] = main.node

        if max_depth > 1:
            for department in extract_departments(main.value, self._vocabulary):
                department_level = slugify(department.name)
                try:
                    await self._build_department(
                        hierarchy,
                        department,
                        department_level,
                        discovery_fn,
                        with_subcategories=max_depth > 2,
                    )
                except Exception:
                    self._log.warning(
                        "navigation_branch_failed",
                        domain=domain,
                        level=department_level,
                        exc_info=True,
                    )

        self._log.info("navigation_hierarchy_built", domain=domain, levels=len(hierarchy.levels))
        return hierarchy

    async def _build_department(
        self,
        hierarchy: NavigationHierarchy,
        department: NavItem,
        department_level: str,
        discovery_fn: DiscoveryFn | None,
        *,
        with_subcategories: bool,
    ) -> None:
        department_nav = await self.get_or_discover(
            hierarchy.domain,
            department_level,
            discovery_fn,
            context=LevelContext(
                domain=hierarchy.domain,
                level=department_level,
                parent_level=MAIN_LEVEL,
                item=department,
            ),
        )
        if department_nav is None:
            return
        hierarchy.levels[department_level] = department_nav.node
        if not with_subcategories:
            return

        for subcategory in extract_subcategories(department_nav.value):
            level = f"{department_level}:{slugify(subcategory.name)}"
            try:
                lookup = await self.get_or_discover(
                    hierarchy.domain,
                    level,
                    discovery_fn,
                    context=LevelContext(
                        domain=hierarchy.domain,
                        level=level,
                        parent_level=department_level,
                        item=subcategory,
                    ),
                )
            except Exception:
                self._log.warning(
                    "navigation_branch_failed",
                    domain=hierarchy.domain,
                    level=level,
                    exc_info=True,
                )
                continue
            if lookup is not None:
                hierarchy.levels[level] = lookup.node

    # ------------------------------------------------------------------
    # Maintenance and diagnostics
    # ------------------------------------------------------------------

    async def clear_navigation_cache(self, domain: str) -> int:
        deleted = await self._cache.delete_pattern(nav_key(domain, "*"))
        self._log.info("navigation_cache_cleared", domain=domain, keys=deleted)
        return deleted

    async def has_valid_navigation_cache(
        self, domain: str, max_age: timedelta = NAVIGATION_TTL
    ) -> bool:
        cached = await self.get_cached_node(domain, MAIN_LEVEL)
        if cached is None:
            return False
        return cached[1] < max_age.total_seconds() / 86400

    async def preload_known_sites(self, sites: Iterable[str]) -> dict[str, bool]:
        """Report which sites (URLs or bare domains) already have fresh main navigation."""
        results: dict[str, bool] = {}
        for site in sites:
            domain = urlparse(site).hostname or site
            results[domain] = await self.has_valid_navigation_cache(domain)
            if results[domain]:
                self._log.info("navigation_preloaded", domain=domain)
        return results

    def get_cache_stats(self) -> NavigationCacheStats:
        stats = NavigationCacheStats()
        domains: set[str] = set()
        for (domain, level), counters in self._stats.items():
            domains.add(domain)
            stats.total_hits += counters.hits
            stats.total_misses += counters.misses
            level_stats = stats.level_stats.setdefault(level, LevelStats())
            level_stats.hits += counters.hits
            level_stats.misses += counters.misses

        stats.domains = sorted(domains)
        lookups = stats.total_hits + stats.total_misses
        if lookups:
            stats.hit_rate = stats.total_hits / lookups
        return stats
