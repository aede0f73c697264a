"""Bounded progressive learning loop.

Each run moves through IDLE → ATTEMPTING(n) → VALIDATING(n) and then either
back to ATTEMPTING(n+1) or to DONE. Attempt n+1 starts only after attempt n
has been merged, because the merged state is its input.

Every attempt has its own quality bar (discovery → refinement → mastery).
The loop stops as soon as an attempt clears its own bar, when the overall
target is reached, or when the attempt budget runs out. A failing executor
or validator ends the run early; whatever was merged up to that point is
still returned. An attempt the validator could not score is merged too.
"""

from __future__ import annotations

import inspect
import math
import time
from typing import TYPE_CHECKING, Any
from urllib.parse import urlparse

import structlog
from pydantic import ValidationError

from siteintel.errors import ErrorCode, SiteIntelError
from siteintel.models.learning import (
    AttemptImprovements,
    AttemptRecord,
    CumulativeLearning,
    LearningAttempt,
    LearningPhase,
    LearningResult,
)
from siteintel.models.patterns import LearningPatterns, SuccessfulSelector

if TYPE_CHECKING:
    from collections.abc import Mapping, Sequence

    from structlog.types import FilteringBoundLogger

    from siteintel.patterns import PatternIntelligenceStore
    from siteintel.protocols import AttemptExecutor, ProgressCallback, QualityValidator

DEFAULT_QUALITY_SCHEDULE: tuple[float, ...] = (0.35, 0.65, 0.90)

FOCUS_AREAS: dict[int, tuple[str, ...]] = {
    1: ("navigation_mapping", "basic_product_detection", "platform_identification"),
    2: ("deep_category_exploration", "selector_refinement", "pattern_learning"),
    3: ("edge_case_handling", "fallback_generation", "quality_optimization"),
}

ATTEMPT_DESCRIPTIONS: dict[int, str] = {
    1: "Discovery & basic extraction",
    2: "Pattern refinement & enhancement",
    3: "Deep extraction & quality optimization",
}


def quality_target(attempt: int, schedule: Sequence[float] = DEFAULT_QUALITY_SCHEDULE) -> float:
    """Bar for one attempt. Attempts past the schedule reuse its last value."""
    return schedule[min(attempt, len(schedule)) - 1]


def focus_areas(attempt: int) -> tuple[str, ...]:
    return FOCUS_AREAS.get(attempt, FOCUS_AREAS[3])


def attempt_description(attempt: int) -> str:
    return ATTEMPT_DESCRIPTIONS.get(attempt, "Advanced learning")


def calculate_improvements(
    previous: AttemptRecord | None,
    known_selectors: Mapping[str, str],
    attempt: LearningAttempt,
) -> AttemptImprovements:
    new_selectors = sorted(set(attempt.selectors) - set(known_selectors))
    if previous is None:
        return AttemptImprovements(
            new_patterns=len(attempt.patterns),
            new_selectors=new_selectors,
            is_first_attempt=True,
        )
    return AttemptImprovements(
        quality_delta=attempt.quality - previous.quality,
        new_patterns=len(attempt.patterns) - len(previous.patterns),
        new_selectors=new_selectors,
        is_first_attempt=False,
    )


def quality_trend(progression: Sequence[float]) -> str:
    if len(progression) < 2:
        return "insufficient_data"
    delta = progression[-1] - progression[0]
    if delta > 0.3:
        return "excellent_progress"
    if delta > 0.1:
        return "good_progress"
    if delta > 0:
        return "slow_progress"
    return "stagnant"


def _domain_of(target: str) -> str:
    return urlparse(target).hostname or target


def accepts_focus_areas(executor: Any) -> bool:
    """Whether an executor can be called with a ``focus_areas`` keyword."""
    try:
        parameters = inspect.signature(executor).parameters.values()
    except (TypeError, ValueError):
        return False
    return any(
        parameter.name == "focus_areas" or parameter.kind is inspect.Parameter.VAR_KEYWORD
        for parameter in parameters
    )


class LearningLoop:
    """Runs attempts until the quality goal is met or the budget is spent."""

    def __init__(
        self,
        pattern_store: PatternIntelligenceStore | None = None,
        *,
        quality_schedule: Sequence[float] = DEFAULT_QUALITY_SCHEDULE,
        max_attempts: int = 3,
        target_quality: float = 0.9,
        logger: FilteringBoundLogger | None = None,
    ) -> None:
        if not quality_schedule:
            raise ValueError("quality_schedule must contain at least one bar")
        self._pattern_store = pattern_store
        self._schedule = tuple(quality_schedule)
        self._max_attempts = max_attempts
        self._target_quality = target_quality
        self._log = logger or structlog.get_logger().bind(component="learning_loop")
        self.phase = LearningPhase.IDLE  # Phase of the most recent run
        self.last_results: dict[str, LearningResult] = {}

    async def learn(
        self,
        target: str,
        attempt_executor: AttemptExecutor,
        quality_validator: QualityValidator,
        *,
        max_attempts: int | None = None,
        target_quality: float | None = None,
        progress_callback: ProgressCallback | None = None,
    ) -> LearningResult:
        """Learn a site progressively. Never raises; failures are in ``error``."""
        max_attempts = self._max_attempts if max_attempts is None else max_attempts
        target_quality = self._target_quality if target_quality is None else target_quality
        domain = _domain_of(target)
        log = self._log.bind(domain=domain)
        log.info(
            "learning_started",
            target=target,
            max_attempts=max_attempts,
            target_quality=target_quality,
        )

        started = time.perf_counter()
        quality = 0.0
        attempt = 0
        cumulative = CumulativeLearning()
        history: list[AttemptRecord] = []
        error: SiteIntelError | None = None
        pass_focus = accepts_focus_areas(attempt_executor)

        try:
            while attempt < max_attempts and quality < target_quality:
                attempt += 1
                bar = quality_target(attempt, self._schedule)
                focus = focus_areas(attempt)

                self.phase = LearningPhase.ATTEMPTING
                log.info(
                    "learning_attempt_started",
                    attempt=attempt,
                    current_quality=quality,
                    attempt_target=bar,
                    focus_areas=focus,
                )
                self._notify(
                    progress_callback,
                    (attempt - 1) * 100 // max_attempts,
                    f"Attempt {attempt}: {attempt_description(attempt)}",
                )
                attempt_result = await self._execute(
                    attempt_executor, target, cumulative, attempt, focus if pass_focus else None
                )

                self.phase = LearningPhase.VALIDATING
                try:
                    quality = await self._validate(quality_validator, attempt_result, log)
                except SiteIntelError:
                    # Unscored, so it stays out of the history.
                    cumulative = cumulative.merge(attempt_result)
                    raise
                attempt_result = attempt_result.model_copy(update={"quality": quality})

                improvements = calculate_improvements(
                    history[-1] if history else None, cumulative.selectors, attempt_result
                )
                cumulative = cumulative.merge(attempt_result)
                history.append(
                    AttemptRecord(
                        attempt=attempt,
                        quality=quality,
                        quality_target=bar,
                        focus_areas=list(focus),
                        patterns=attempt_result.patterns,
                        improvements=improvements,
                    )
                )
                log.info(
                    "learning_attempt_completed",
                    attempt=attempt,
                    quality=quality,
                    patterns_learned=len(attempt_result.patterns),
                    total_patterns=len(cumulative.patterns),
                )

                if quality >= bar:
                    log.info("learning_attempt_target_reached", attempt=attempt, quality=quality)
                    break
        except SiteIntelError as exc:
            error = exc
            log.error(
                "learning_failed",
                attempt=attempt,
                code=exc.code,
                message=exc.message,
                exc_info=True,
            )

        self.phase = LearningPhase.DONE
        progression = [record.quality for record in history]
        result = LearningResult(
            target=target,
            domain=domain,
            quality=quality,
            attempts=attempt,
            target_quality=target_quality,
            patterns=cumulative.patterns,
            selectors=cumulative.selectors,
            extraction_rules=cumulative.extraction_rules,
            platform_detected=cumulative.platform_detected,
            fallbacks=cumulative.fallbacks,
            categories_explored=cumulative.categories_explored,
            quality_progression=progression,
            history=history,
            trend=quality_trend(progression),
            duration_ms=int((time.perf_counter() - started) * 1000),
            error=error.message if error else None,
            error_code=error.code if error else None,
        )
        self.last_results[domain] = result

        if history and self._pattern_store is not None:
            await self._persist(self._pattern_store, result, cumulative)

        self._notify(progress_callback, 100, f"Learning complete: {quality * 100:.1f}% quality")
        log.info(
            "learning_completed",
            quality=quality,
            attempts=attempt,
            duration_ms=result.duration_ms,
            failed=error is not None,
        )
        return result

    async def _execute(
        self,
        executor: AttemptExecutor,
        target: str,
        cumulative: CumulativeLearning,
        attempt: int,
        focus: tuple[str, ...] | None,
    ) -> LearningAttempt:
        try:
            if focus is None:
                raw: Any = await executor(target, cumulative, attempt)
            else:
                raw = await executor(target, cumulative, attempt, focus_areas=focus)
        except Exception as exc:
            raise SiteIntelError(
                code=ErrorCode.ATTEMPT_FAILED,
                message=f"Attempt {attempt} failed: {exc}",
                recoverable=True,
            ) from exc

        try:
            result = (
                raw if isinstance(raw, LearningAttempt) else LearningAttempt.model_validate(raw)
            )
        except ValidationError as exc:
            raise SiteIntelError(
                code=ErrorCode.ATTEMPT_INVALID,
                message=f"Attempt {attempt} returned an invalid result: {exc}",
            ) from exc
        return result.model_copy(update={"attempt_number": attempt})

    async def _validate(
        self,
        validator: QualityValidator,
        result: LearningAttempt,
        log: FilteringBoundLogger,
    ) -> float:
        try:
            score: Any = validator(result)
            if inspect.isawaitable(score):
                score = await score
        except Exception as exc:
            raise SiteIntelError(
                code=ErrorCode.VALIDATION_FAILED,
                message=f"Quality validation failed: {exc}",
                recoverable=True,
            ) from exc

        if isinstance(score, bool) or not isinstance(score, (int, float)) or math.isnan(score):
            raise SiteIntelError(
                code=ErrorCode.QUALITY_INVALID,
                message=f"Quality validator returned {score!r}, expected a float in [0, 1]",
            )
        if not 0.0 <= score <= 1.0:
            log.warning("learning_quality_clamped", raw_quality=score)
        return max(0.0, min(float(score), 1.0))

    async def _persist(
        self,
        store: PatternIntelligenceStore,
        result: LearningResult,
        cumulative: CumulativeLearning,
    ) -> None:
        patterns = LearningPatterns(
            successful_selectors=[
                SuccessfulSelector(
                    selector=selector, element_type=element_type, success_rate=result.quality
                )
                for element_type, selector in result.selectors.items()
            ],
            quality_metrics={
                "quality_progression": result.quality_progression,
                "trend": result.trend,
            },
            attempts_made=result.attempts,
            final_quality=result.quality,
            patterns_learned=len(result.patterns),
            cumulative=cumulative,
        )
        await store.store_learning_patterns(result.domain, patterns)

        if result.error is not None:
            return
        for element_type, selector in result.selectors.items():
            await store.store_successful_selector(
                result.domain,
                element_type,
                selector,
                {
                    "reliability_score": result.quality,
                    "success_rate": result.quality,
                    "platform": result.platform_detected,
                },
            )

    def _notify(self, callback: ProgressCallback | None, percent: int, message: str) -> None:
        if callback is None:
            return
        try:
            callback(percent, message)
        except Exception:
            self._log.warning("learning_progress_callback_failed", exc_info=True)
