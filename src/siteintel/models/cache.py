from __future__ import annotations

from datetime import datetime, timedelta
from typing import Any

from pydantic import BaseModel


class CacheEntry(BaseModel):
    """One stored value plus the data needed to judge its freshness.

    This is the JSON envelope written to every backend. Expiry is decided
    from ``cached_at`` and ``ttl_seconds`` at read time, never from whether
    the backend still holds the row.
    """

    key: str
    value: Any
    cached_at: datetime
    ttl_seconds: float

    @property
    def ttl(self) -> timedelta:
        return timedelta(seconds=self.ttl_seconds)

    def age(self, now: datetime) -> timedelta:
        return now - self.cached_at

    def is_expired(self, now: datetime) -> bool:
        return self.age(now) >= self.ttl
