"""Protocol interfaces for swappable components and injected collaborators.

CacheStore talks to a ``CacheBackend``; the navigation cache and the
learning loop call out to discovery, attempt and validation callables that
the orchestrator supplies. Tests satisfy these with small in-memory doubles.
"""

from __future__ import annotations

from typing import TYPE_CHECKING, Any, Protocol

if TYPE_CHECKING:
    from collections.abc import Awaitable

    from siteintel.models.learning import CumulativeLearning, LearningAttempt
    from siteintel.models.navigation import LevelContext


class CacheBackend(Protocol):
    """Raw string storage used by CacheStore."""

    name: str
    errors: tuple[type[BaseException], ...]

    async def get(self, key: str) -> str | None: ...

    async def set(self, key: str, payload: str, ttl_seconds: float) -> None: ...

    async def keys(self, pattern: str) -> list[str]: ...

    async def delete(self, key: str) -> bool: ...

    async def sweep(self) -> int: ...

    async def close(self) -> None: ...


class DiscoveryFn(Protocol):
    """Discovers the raw navigation for one level, or returns None."""

    async def __call__(self, context: LevelContext) -> Any: ...


class AttemptExecutor(Protocol):
    """Runs one round of site intelligence gathering.

    An executor that also takes a ``focus_areas`` keyword (or ``**kwargs``)
    is passed the attempt's focus areas.
    """

    async def __call__(
        self,
        target: str,
        cumulative: CumulativeLearning,
        attempt_number: int,
    ) -> LearningAttempt | dict[str, Any]: ...


class QualityValidator(Protocol):
    """Scores an attempt in [0, 1]. May be sync or async."""

    def __call__(self, attempt: LearningAttempt) -> float | Awaitable[float]: ...


class ProgressCallback(Protocol):
    def __call__(self, percent: int, message: str) -> None: ...
