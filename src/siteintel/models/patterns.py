from __future__ import annotations

from datetime import datetime
from typing import Any, Literal

from pydantic import BaseModel, Field, model_validator

from siteintel.models.learning import CumulativeLearning


class SuccessfulSelector(BaseModel):
    """A selector that worked on its source domain.

    Accepts a mapping, a bare selector string, or a ``[selector, metadata]``
    pair.
    """

    selector: str
    element_type: str | None = None
    success_rate: float | None = None
    metadata: dict[str, Any] = {}

    @model_validator(mode="before")
    @classmethod
    def _from_pair(cls, data: Any) -> Any:
        if isinstance(data, str):
            return {"selector": data}
        if isinstance(data, (list, tuple)) and len(data) == 2:
            selector, metadata = data
            metadata = dict(metadata) if isinstance(metadata, dict) else {}
            return {
                "selector": selector,
                "element_type": metadata.get("element_type"),
                "success_rate": metadata.get("success_rate"),
                "metadata": metadata,
            }
        return data


class PatternSet(BaseModel):
    successful_selectors: list[SuccessfulSelector] = []
    failed_patterns: list[Any] = []
    strategy_success_rates: dict[str, float] = {}
    element_patterns: dict[str, Any] = {}
    page_structure: dict[str, Any] = {}


class LearningPatterns(PatternSet):
    """Input to ``store_learning_patterns``: the pattern set plus run metadata."""

    quality_metrics: dict[str, Any] = {}
    attempts_made: int = 0
    final_quality: float = 0.0
    patterns_learned: int = 0
    cross_site_applicable: bool = True
    cumulative: CumulativeLearning | None = None


class LearningMetadata(BaseModel):
    attempts_made: int = 0
    final_quality: float = 0.0
    patterns_learned: int = 0
    created_at: datetime
    last_updated: datetime
    last_accessed: datetime | None = None


class LearningRecord(BaseModel):
    """The value stored at ``learning:{domain}``."""

    domain: str
    patterns: PatternSet = PatternSet()
    quality_metrics: dict[str, Any] = {}
    learning_metadata: LearningMetadata
    cross_site_applicable: bool = True
    cumulative: CumulativeLearning | None = None


class SelectorRecord(BaseModel):
    """The value stored at ``selector_success:{domain}:{element_type}``."""

    selector: str
    element_type: str
    domain: str
    success_metadata: dict[str, Any] = {}
    reliability_score: float = Field(default=1.0, ge=0.0, le=1.0)
    usage_count: int = Field(default=1, ge=1)
    created_at: datetime
    last_used: datetime

    @property
    def rank_score(self) -> float:
        return self.reliability_score * 0.6 + min(self.usage_count, 10) / 10 * 0.4


class ApplicablePattern(BaseModel):
    type: Literal["selector", "strategy"]
    confidence: float
    selector: str | None = None
    strategy: str | None = None
    success_rate: float | None = None
    metadata: dict[str, Any] = {}


class CrossSitePattern(BaseModel):
    source_domain: str
    similarity_score: float
    patterns: list[ApplicablePattern]
    quality_score: float

    @property
    def rank_score(self) -> float:
        return self.quality_score * 0.7 + self.similarity_score * 0.3


class LearningAnalytics(BaseModel):
    domain: str
    has_learning_data: bool
    learning_quality: float = 0.0
    attempts_made: int = 0
    patterns_learned: int = 0
    successful_selectors: int = 0
    last_learned: datetime | None = None
    cross_site_applicable: bool = False
