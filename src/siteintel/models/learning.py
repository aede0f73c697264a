from __future__ import annotations

from enum import StrEnum
from typing import Any

from pydantic import BaseModel, Field

from siteintel.errors import ErrorCode


class LearningPhase(StrEnum):
    IDLE = "idle"
    ATTEMPTING = "attempting"
    VALIDATING = "validating"
    DONE = "done"


class LearningAttempt(BaseModel):
    """What one attempt executor round produced."""

    attempt_number: int = Field(default=0, ge=0)
    quality: float = 0.0  # Filled in by the loop after validation
    patterns: list[Any] = []
    selectors: dict[str, str] = {}  # element type -> selector
    extraction_rules: dict[str, Any] = {}
    platform_detected: str | None = None
    fallbacks: dict[str, Any] = {}
    categories_explored: list[Any] = []


class CumulativeLearning(BaseModel):
    """Knowledge merged across the attempts of one learning run."""

    patterns: list[Any] = []
    selectors: dict[str, str] = {}
    extraction_rules: dict[str, Any] = {}
    platform_detected: str | None = None
    fallbacks: dict[str, Any] = {}
    categories_explored: list[Any] = []

    def merge(self, attempt: LearningAttempt) -> CumulativeLearning:
        """Fold an attempt into a new cumulative state.

        Lists are concatenated without deduplication, mappings are shallow
        merged with the attempt winning, and the platform only changes when
        the attempt detected one.
        """
        return CumulativeLearning(
            patterns=[*self.patterns, *attempt.patterns],
            selectors={**self.selectors, **attempt.selectors},
            extraction_rules={**self.extraction_rules, **attempt.extraction_rules},
            platform_detected=attempt.platform_detected or self.platform_detected,
            fallbacks={**self.fallbacks, **attempt.fallbacks},
            categories_explored=[*self.categories_explored, *attempt.categories_explored],
        )


class AttemptImprovements(BaseModel):
    quality_delta: float = 0.0
    new_patterns: int = 0
    new_selectors: list[str] = []
    is_first_attempt: bool = True


class AttemptRecord(BaseModel):
    attempt: int
    quality: float
    quality_target: float
    focus_areas: list[str] = []
    patterns: list[Any] = []
    improvements: AttemptImprovements = AttemptImprovements()


class LearningResult(BaseModel):
    target: str
    domain: str
    quality: float = 0.0
    attempts: int = 0
    target_quality: float
    patterns: list[Any] = []
    selectors: dict[str, str] = {}
    extraction_rules: dict[str, Any] = {}
    platform_detected: str | None = None
    fallbacks: dict[str, Any] = {}
    categories_explored: list[Any] = []
    quality_progression: list[float] = []
    history: list[AttemptRecord] = []
    trend: str = "insufficient_data"
    duration_ms: int = 0
    error: str | None = None
    error_code: ErrorCode | None = None
