"""
Metric Bundle Model
===================
The normalized hand-off unit between collectors and the rule engine.

Fields:
    kind        — frontend | backend | database | bundle | cache
    timestamp   — when the producing component captured the data
    metrics     — flat map of named scalar values (snake_case, dotted for groups,
                  e.g. "system.memory_usage")
    items       — optional per-record details (assets, resources, assignments)
    failures    — partial-failure markers from the producer ({"source", "reason"}),
                  e.g. an unreadable file or an unsupported browser observer

Bundles are frozen once built; producers pass copies of their working state so
later mutation on the producer side never leaks into an evaluated bundle.
"""
from datetime import datetime, timezone
from typing import Any, Dict, Literal, Mapping, Optional, Tuple, Union

from pydantic import BaseModel, ConfigDict, Field

BundleKind = Literal["frontend", "backend", "database", "bundle", "cache"]
Scalar = Union[bool, int, float, str, None]


def utc_now() -> datetime:
    return datetime.now(timezone.utc)


class MetricBundle(BaseModel):
    model_config = ConfigDict(frozen=True)

    kind: BundleKind
    timestamp: datetime = Field(default_factory=utc_now)
    metrics: Dict[str, Scalar] = Field(default_factory=dict)
    items: Tuple[Dict[str, Any], ...] = ()
    failures: Tuple[Dict[str, str], ...] = ()

    @classmethod
    def build(
        cls,
        kind: BundleKind,
        metrics: Mapping[str, Scalar],
        items=(),
        timestamp: Optional[datetime] = None,
        failures=(),
    ) -> "MetricBundle":
        """Build a bundle from copies of the producer's data."""
        return cls(
            kind=kind,
            timestamp=timestamp or utc_now(),
            metrics=dict(metrics),
            items=tuple(dict(item) for item in items),
            failures=tuple(
                {"source": str(f["source"]), "reason": str(f["reason"])} for f in failures
            ),
        )

    def get(self, name: str, default: Scalar = None) -> Scalar:
        return self.metrics.get(name, default)

    def has(self, name: str) -> bool:
        return self.metrics.get(name) is not None
