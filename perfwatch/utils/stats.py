"""
Sample Statistics
=================
Order statistics over duration samples.

All functions take an unsorted sequence and sort a private copy, so callers
may pass a live snapshot without worrying about mutation.
"""
import math
from typing import Optional, Sequence


def mean(values: Sequence[float]) -> Optional[float]:
    if not values:
        return None
    return sum(values) / len(values)


def median(values: Sequence[float]) -> Optional[float]:
    """Middle value; the average of the two middle values for even counts."""
    if not values:
        return None
    ordered = sorted(values)
    mid = len(ordered) // 2
    if len(ordered) % 2 == 0:
        return (ordered[mid - 1] + ordered[mid]) / 2
    return ordered[mid]


def percentile(values: Sequence[float], p: float) -> Optional[float]:
    """
    Nearest-rank percentile.

    Parameters
    ----------
    values : Sequence[float]
        Samples in any order.
    p : float
        Percentile in (0, 100].

    Returns
    -------
    float | None
        The smallest sample such that at least p% of samples are <= it.
        None for an empty sample set.
    """
    if not 0 < p <= 100:
        raise ValueError(f"percentile must be in (0, 100], got {p}")
    if not values:
        return None
    ordered = sorted(values)
    rank = math.ceil((p / 100) * len(ordered))
    return ordered[max(rank, 1) - 1]
