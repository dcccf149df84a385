"""Cache payloads and counters."""

from datetime import datetime
from typing import Any, List

from pydantic import BaseModel


class CacheEnvelope(BaseModel):
    """What is actually stored under a cache key: the value plus its expiry."""

    data: Any
    cached_at: datetime
    expires_at: datetime


class CacheKeyRegistry(BaseModel):
    """Index of live cache keys, so prefix invalidation needs no key scan."""

    keys: List[str] = []


class CacheStats(BaseModel):
    hits: int = 0
    misses: int = 0
    errors: int = 0
    total_requests: int = 0
    hit_rate: float = 0.0
    last_reset: datetime
