"""
Request Record Model
====================
One sampled HTTP request as seen by the backend middleware.

Fields:
    method              — HTTP verb
    path                — request path (no query string)
    status_code         — final response status
    duration_ms         — wall time from handler entry to response
    memory_delta_bytes  — process RSS change across the request (may be negative)
    timestamp           — completion time (UTC)
"""
from datetime import datetime

from pydantic import BaseModel, ConfigDict, Field

from perfwatch.models.metric_bundle import utc_now


class RequestRecord(BaseModel):
    model_config = ConfigDict(frozen=True)

    method: str
    path: str
    status_code: int
    duration_ms: float
    memory_delta_bytes: int = 0
    timestamp: datetime = Field(default_factory=utc_now)
