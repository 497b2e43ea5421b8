"""
Backend Metrics Models
======================
Pydantic models for the backend collector's derived views.

RequestSummary is recomputed on every query from a ring-buffer snapshot.
SystemSnapshot / DatabaseSnapshot are produced by the periodic timer and
published by swapping a single reference, so they are frozen.
"""
from datetime import datetime
from typing import Dict, List, Optional

from pydantic import BaseModel, ConfigDict, Field

from perfwatch.models.metric_bundle import utc_now


class RequestSummary(BaseModel):
    model_config = ConfigDict(frozen=True)

    total_requests: int
    average_response_time: float
    median_response_time: float
    min_response_time: float
    max_response_time: float
    p95_response_time: float
    p99_response_time: float
    status_codes: Dict[int, int]
    error_rate: float
    slow_requests: int


class SystemSnapshot(BaseModel):
    model_config = ConfigDict(frozen=True)

    timestamp: datetime = Field(default_factory=utc_now)
    rss_bytes: int
    vms_bytes: int
    memory_usage: float             # system memory in use, 0.0–1.0
    process_memory_percent: float
    cpu_user_seconds: float
    cpu_system_seconds: float
    cpu_percent: float
    load_average: List[float] = []
    uptime_seconds: float
    platform: str
    python_version: str


class DatabaseSnapshot(BaseModel):
    model_config = ConfigDict(frozen=True)

    timestamp: datetime = Field(default_factory=utc_now)
    connections_current: Optional[int] = None
    connections_available: Optional[int] = None
    opcounters: Dict[str, int] = {}
    resident_memory_mb: Optional[float] = None
    uptime_seconds: Optional[float] = None
    version: Optional[str] = None
