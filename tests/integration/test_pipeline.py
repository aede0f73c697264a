"""End-to-end runs across navigation, learning and cross-site reuse.

All three components share the AppState cache, so what one stores the
others must see.
"""

from __future__ import annotations

from typing import TYPE_CHECKING, Any

from siteintel.models.learning import LearningAttempt

if TYPE_CHECKING:
    from siteintel.models.learning import CumulativeLearning
    from siteintel.models.navigation import LevelContext
    from siteintel.state import AppState
    from tests.conftest import FakeClock

NAVIGATION: dict[str, Any] = {
    "main": {"dropdown_menus": {"dropdown_0": {"items": [{"name": "Kids"}, {"name": "Help"}]}}},
    "kids": {"main_sections": [{"name": "Toys"}, {"name": "Clothing"}]},
    "kids:toys": ["Lego"],
    "kids:clothing": ["Jackets"],
}


async def discover(context: LevelContext) -> Any:
    return NAVIGATION.get(context.level)


async def execute(
    target: str,
    cumulative: CumulativeLearning,
    attempt_number: int,
    *,
    focus_areas: tuple[str, ...],
) -> LearningAttempt:
    return LearningAttempt(
        patterns=[{"focus": list(focus_areas)}],
        selectors={"title": ".product-title", "price": ".price-9f8e7d6c"},
        platform_detected="magento",
    )


class TestPipeline:
    async def test_hierarchy_survives_until_ttl(
        self, app_state: AppState, clock: FakeClock
    ) -> None:
        hierarchy = await app_state.navigation.build_hierarchy(
            "kids-shop.com", discovery_fn=discover
        )
        assert hierarchy is not None
        assert sorted(hierarchy.levels) == ["kids", "kids:clothing", "kids:toys", "main"]

        clock.advance(days=6)
        assert await app_state.navigation.has_valid_navigation_cache("kids-shop.com")

        clock.advance(days=1)
        assert await app_state.navigation.get_cached_hierarchy("kids-shop.com") is None

    async def test_learning_feeds_cross_site_reuse(self, app_state: AppState) -> None:
        result = await app_state.learning.learn(
            "https://learned-shop.com/catalog", execute, lambda attempt: 0.92
        )
        assert result.attempts == 1
        assert result.error is None

        matches = await app_state.patterns.get_cross_site_patterns("new-store.com")

        [match] = matches
        assert match.source_domain == "learned-shop.com"
        # Hashed price selector is site-specific and is not offered for reuse.
        assert [p.selector for p in match.patterns] == [".product-title"]

        selectors = await app_state.patterns.get_cross_site_selectors("title")
        assert [s.domain for s in selectors] == ["learned-shop.com"]

    async def test_relearning_bumps_usage(self, app_state: AppState) -> None:
        for _ in range(3):
            await app_state.learning.learn("https://shop.com", execute, lambda attempt: 0.92)

        [record] = await app_state.patterns.get_cross_site_selectors("title")
        assert record.usage_count == 3

        analytics = await app_state.patterns.get_learning_analytics("shop.com")
        assert analytics.has_learning_data is True
        assert analytics.learning_quality == 0.92
