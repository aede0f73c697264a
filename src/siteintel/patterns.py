"""Cross-site pattern intelligence.

Stores what was learned per domain and decides which of it can be reused
elsewhere. The reuse heuristics are lexical and cheap; their
constants are hand-tuned and exposed so deployments can adjust them.

Key layout:
  learning:{domain}                       LearningRecord, 30 days
  selector_success:{domain}:{element}     SelectorRecord, 14 days
"""

from __future__ import annotations

import math
import re
from datetime import timedelta
from typing import TYPE_CHECKING, Any

import structlog
from pydantic import ValidationError

from siteintel.models.patterns import (
    ApplicablePattern,
    CrossSitePattern,
    LearningAnalytics,
    LearningMetadata,
    LearningPatterns,
    LearningRecord,
    PatternSet,
    SelectorRecord,
)

if TYPE_CHECKING:
    from collections.abc import Iterable, Mapping, Sequence

    from structlog.types import FilteringBoundLogger

    from siteintel.cache import CacheStore

LEARNING_TTL = timedelta(days=30)
SELECTOR_TTL = timedelta(days=14)

MAX_GENERIC_SELECTOR_LENGTH = 100
MIN_STRATEGY_SUCCESS_RATE = 0.6
ECOMMERCE_KEYWORDS: tuple[str, ...] = ("shop", "store", "buy", "cart", "checkout")

# Markers of generated, site-specific markup.
SITE_SPECIFIC_SELECTOR_PATTERNS: tuple[re.Pattern[str], ...] = (
    re.compile(r"\.[a-z]+-[0-9a-f]{6,}", re.IGNORECASE),  # hashed class suffix
    re.compile(r"\[data-[a-z]+-[0-9]+", re.IGNORECASE),  # numbered data attribute
    re.compile(r"#[a-z]+-[0-9]+", re.IGNORECASE),  # numbered id
)

_GENERIC_CLASS_PATTERN = re.compile(r"\.(product|item|card)")


def learning_key(domain: str) -> str:
    return f"learning:{domain}"


def selector_key(domain: str, element_type: str) -> str:
    return f"selector_success:{domain}:{element_type}"


def is_selector_generic(
    selector: str,
    *,
    max_length: int = MAX_GENERIC_SELECTOR_LENGTH,
) -> bool:
    """Whether a selector looks semantic enough to try on another site."""
    if len(selector) > max_length:
        return False
    if '"' in selector or "'" in selector:
        return False
    return not any(pattern.search(selector) for pattern in SITE_SPECIFIC_SELECTOR_PATTERNS)


def coerce_rate(value: Any) -> float | None:
    """Numeric metadata value as a float. None for bools, NaN and non-numbers."""
    if isinstance(value, bool):
        return None
    try:
        rate = float(value)
    except (TypeError, ValueError):
        return None
    return None if math.isnan(rate) else rate


def calculate_selector_confidence(selector: str, metadata: Mapping[str, Any]) -> float:
    confidence = 0.5
    if "title" in selector or "name" in selector:
        confidence += 0.2
    if "price" in selector or "cost" in selector:
        confidence += 0.2
    if "description" in selector or "detail" in selector:
        confidence += 0.15

    success_rate = coerce_rate(metadata.get("success_rate"))
    if success_rate:
        confidence += success_rate * 0.3

    if _GENERIC_CLASS_PATTERN.search(selector):
        confidence += 0.1
    return max(0.0, min(confidence, 1.0))


def calculate_domain_similarity(
    domain_a: str,
    domain_b: str,
    *,
    ecommerce_keywords: Iterable[str] = ECOMMERCE_KEYWORDS,
) -> float:
    """Lexical guess at how likely two domains share reusable structure."""
    similarity = 0.0

    if domain_a.rsplit(".", 1)[-1] == domain_b.rsplit(".", 1)[-1]:
        similarity += 0.3

    length_diff = abs(len(domain_a) - len(domain_b))
    similarity += max(0.0, 1 - length_diff / 20) * 0.2

    keywords = tuple(ecommerce_keywords)
    if any(k in domain_a for k in keywords) and any(k in domain_b for k in keywords):
        similarity += 0.5

    return min(similarity, 1.0)


class PatternIntelligenceStore:
    """Per-domain learned patterns plus cross-domain reuse ranking."""

    def __init__(
        self,
        cache: CacheStore,
        *,
        learning_ttl: timedelta = LEARNING_TTL,
        selector_ttl: timedelta = SELECTOR_TTL,
        max_generic_selector_length: int = MAX_GENERIC_SELECTOR_LENGTH,
        ecommerce_keywords: Sequence[str] = ECOMMERCE_KEYWORDS,
        min_strategy_success_rate: float = MIN_STRATEGY_SUCCESS_RATE,
        logger: FilteringBoundLogger | None = None,
    ) -> None:
        self._cache = cache
        self._learning_ttl = learning_ttl
        self._selector_ttl = selector_ttl
        self._max_selector_length = max_generic_selector_length
        self._ecommerce_keywords = tuple(ecommerce_keywords)
        self._min_strategy_rate = min_strategy_success_rate
        self._log = logger or structlog.get_logger().bind(component="pattern_store")

    # ------------------------------------------------------------------
    # Per-domain learning patterns
    # ------------------------------------------------------------------

    async def store_learning_patterns(
        self, domain: str, patterns: LearningPatterns | Mapping[str, Any]
    ) -> bool:
        if not isinstance(patterns, LearningPatterns):
            try:
                patterns = LearningPatterns.model_validate(patterns)
            except ValidationError:
                self._log.warning("learning_patterns_invalid", domain=domain, exc_info=True)
                return False

        now = self._cache.now()
        previous = await self._read_learning_record(domain)
        record = LearningRecord(
            domain=domain,
            patterns=PatternSet.model_validate(
                patterns.model_dump(include=set(PatternSet.model_fields))
            ),
            quality_metrics=patterns.quality_metrics,
            learning_metadata=LearningMetadata(
                attempts_made=patterns.attempts_made,
                final_quality=patterns.final_quality,
                patterns_learned=patterns.patterns_learned,
                created_at=previous.learning_metadata.created_at if previous else now,
                last_updated=now,
            ),
            cross_site_applicable=patterns.cross_site_applicable,
            cumulative=patterns.cumulative,
        )

        try:
            payload = record.model_dump(mode="json")
        except ValueError:
            self._log.warning("learning_record_unserialisable", domain=domain, exc_info=True)
            return False

        stored = await self._cache.set(learning_key(domain), payload, self._learning_ttl)
        if stored:
            self._log.info(
                "learning_patterns_stored",
                domain=domain,
                successful_selectors=len(record.patterns.successful_selectors),
                failed_patterns=len(record.patterns.failed_patterns),
                strategies=len(record.patterns.strategy_success_rates),
            )
        return stored

    async def get_learning_patterns(self, domain: str) -> LearningRecord | None:
        record = await self._read_learning_record(domain)
        if record is not None:
            record.learning_metadata.last_accessed = self._cache.now()
        return record

    async def _read_learning_record(self, domain: str) -> LearningRecord | None:
        raw = await self._cache.get(learning_key(domain))
        if raw is None:
            return None
        try:
            return LearningRecord.model_validate(raw)
        except ValidationError:
            self._log.warning("learning_record_invalid", domain=domain)
            return None

    async def get_learning_analytics(self, domain: str) -> LearningAnalytics:
        record = await self._read_learning_record(domain)
        if record is None:
            return LearningAnalytics(domain=domain, has_learning_data=False)
        metadata = record.learning_metadata
        return LearningAnalytics(
            domain=domain,
            has_learning_data=True,
            learning_quality=metadata.final_quality,
            attempts_made=metadata.attempts_made,
            patterns_learned=metadata.patterns_learned,
            successful_selectors=len(record.patterns.successful_selectors),
            last_learned=metadata.last_updated,
            cross_site_applicable=record.cross_site_applicable,
        )

    # ------------------------------------------------------------------
    # Selector success records
    # ------------------------------------------------------------------

    async def store_successful_selector(
        self,
        domain: str,
        element_type: str,
        selector: str,
        metadata: Mapping[str, Any] | None = None,
    ) -> SelectorRecord | None:
        """Upsert the success record for ``(domain, element_type)``.

        A repeat store bumps ``usage_count`` and keeps the first ``created_at``.
        Returns the stored record, or None if it could not be written.
        """
        metadata = dict(metadata or {})
        now = self._cache.now()
        key = selector_key(domain, element_type)

        usage_count = 1
        created_at = now
        existing = await self._read_selector_record(key)
        if existing is not None:
            usage_count = existing.usage_count + 1
            created_at = existing.created_at

        reliability = coerce_rate(metadata.get("reliability_score", 1.0))
        if reliability is None:
            self._log.warning(
                "selector_reliability_invalid",
                domain=domain,
                element_type=element_type,
                raw_reliability=metadata["reliability_score"],
            )
            reliability = 1.0
        record = SelectorRecord(
            selector=selector,
            element_type=element_type,
            domain=domain,
            success_metadata=metadata,
            reliability_score=max(0.0, min(reliability, 1.0)),
            usage_count=usage_count,
            created_at=created_at,
            last_used=now,
        )
        try:
            payload = record.model_dump(mode="json")
        except ValueError:
            self._log.warning(
                "selector_record_unserialisable", domain=domain, element_type=element_type
            )
            return None
        if not await self._cache.set(key, payload, self._selector_ttl):
            return None
        self._log.debug(
            "selector_success_stored",
            domain=domain,
            element_type=element_type,
            usage_count=usage_count,
        )
        return record

    async def _read_selector_record(self, key: str) -> SelectorRecord | None:
        raw = await self._cache.get(key)
        if raw is None:
            return None
        try:
            return SelectorRecord.model_validate(raw)
        except ValidationError:
            self._log.warning("selector_record_invalid", key=key)
            return None

    # ------------------------------------------------------------------
    # Cross-site reuse
    # ------------------------------------------------------------------

    def is_selector_generic(self, selector: str) -> bool:
        return is_selector_generic(selector, max_length=self._max_selector_length)

    def domain_similarity(self, domain_a: str, domain_b: str) -> float:
        return calculate_domain_similarity(
            domain_a, domain_b, ecommerce_keywords=self._ecommerce_keywords
        )

    def filter_applicable_patterns(
        self, record: LearningRecord, element_type: str | None = None
    ) -> list[ApplicablePattern]:
        """Patterns from another domain's record that are safe to reuse."""
        applicable: list[ApplicablePattern] = []

        for candidate in record.patterns.successful_selectors:
            if not self.is_selector_generic(candidate.selector):
                continue
            if element_type is not None and candidate.element_type != element_type:
                continue
            metadata = {**candidate.metadata, "element_type": candidate.element_type}
            if candidate.success_rate is not None:
                metadata["success_rate"] = candidate.success_rate
            applicable.append(
                ApplicablePattern(
                    type="selector",
                    selector=candidate.selector,
                    metadata=metadata,
                    success_rate=candidate.success_rate,
                    confidence=calculate_selector_confidence(candidate.selector, metadata),
                )
            )

        for strategy, rate in record.patterns.strategy_success_rates.items():
            if rate > self._min_strategy_rate:
                applicable.append(
                    ApplicablePattern(
                        type="strategy",
                        strategy=strategy,
                        success_rate=rate,
                        confidence=rate,
                    )
                )

        return applicable

    async def get_cross_site_patterns(
        self, target_domain: str, element_type: str | None = None
    ) -> list[CrossSitePattern]:
        """Reusable patterns from every other learned domain, best first."""
        results: list[CrossSitePattern] = []
        prefix = learning_key("")

        for key in await self._cache.keys(learning_key("*")):
            domain = key.removeprefix(prefix)
            if domain == target_domain:
                continue
            record = await self._read_learning_record(domain)
            if record is None or not record.cross_site_applicable:
                continue

            applicable = self.filter_applicable_patterns(record, element_type)
            if not applicable:
                continue
            results.append(
                CrossSitePattern(
                    source_domain=domain,
                    similarity_score=self.domain_similarity(domain, target_domain),
                    patterns=applicable,
                    quality_score=record.learning_metadata.final_quality,
                )
            )

        results.sort(key=lambda match: match.rank_score, reverse=True)
        self._log.debug(
            "cross_site_patterns_ranked",
            target_domain=target_domain,
            element_type=element_type,
            sources=len(results),
        )
        return results

    async def get_cross_site_selectors(
        self, element_type: str, limit: int = 10
    ) -> list[SelectorRecord]:
        """Selector records for an element type across all domains, best first."""
        records: list[SelectorRecord] = []
        for key in await self._cache.keys(f"selector_success:*:{element_type}"):
            record = await self._read_selector_record(key)
            if record is not None and record.element_type == element_type:
                records.append(record)

        records.sort(key=lambda record: record.rank_score, reverse=True)
        return records[:limit]
