"""
Cache Policy Model
==================
The four cache strategies and the per-file assignment record.

Exactly one CacheAssignment exists per classified file.
"""
from enum import Enum

from pydantic import BaseModel, ConfigDict


class CachePolicy(str, Enum):
    IMMUTABLE = "immutable"
    LONG_TERM = "long_term"
    SHORT_TERM = "short_term"
    NO_CACHE = "no_cache"


# Output grouping order for headers documents and summaries.
POLICY_ORDER = [
    CachePolicy.IMMUTABLE,
    CachePolicy.LONG_TERM,
    CachePolicy.SHORT_TERM,
    CachePolicy.NO_CACHE,
]


class CacheAssignment(BaseModel):
    model_config = ConfigDict(frozen=True)

    path: str
    extension: str
    policy: CachePolicy
    cache_control: str
    rationale: str
    size_bytes: int = 0
