"""Small statistical helpers shared by the batch analyzer and realtime code.

Every helper takes a plain sequence of numbers and returns ``0`` for empty
input. Callers must read ``0`` as "no data", not as an instant completion.
"""

from __future__ import annotations

import math
from datetime import datetime
from typing import Dict, Iterable, Sequence

from config.constants import TIME_BUCKETS, TIME_BUCKET_LABELS

SECONDS_PER_DAY = 24 * 60 * 60


def calculate_average(values: Sequence[float]) -> float:
    """Arithmetic mean of ``values``."""
    if not values:
        return 0
    return sum(values) / len(values)


def calculate_median(values: Sequence[float]) -> float:
    """Median of ``values``; the mean of the two middle elements for even lengths."""
    if not values:
        return 0
    ordered = sorted(values)
    mid = len(ordered) // 2
    if len(ordered) % 2 == 0:
        return (ordered[mid - 1] + ordered[mid]) / 2
    return ordered[mid]


def calculate_percentile(values: Sequence[float], percentile: float) -> float:
    """Percentile of ``values`` using linear interpolation between neighbours.

    ``percentile`` is clamped to ``[0, 100]``.
    """
    if not values:
        return 0

    ordered = sorted(values)
    percentile = min(100.0, max(0.0, float(percentile)))
    index = (percentile / 100) * (len(ordered) - 1)

    if index.is_integer():
        return ordered[int(index)]

    lower = math.floor(index)
    upper = math.ceil(index)
    weight = index - lower
    return ordered[lower] * (1 - weight) + ordered[upper] * weight


def clamp_rate(value: float) -> float:
    """Clamp a percentage to ``[0, 100]``."""
    return min(100.0, max(0.0, value))


def bucket_durations(durations: Iterable[float]) -> Dict[str, int]:
    """Count completion durations per fixed time band."""
    counts = {label: 0 for label in TIME_BUCKET_LABELS}
    for duration in durations:
        for upper, label in TIME_BUCKETS:
            if duration < upper:
                counts[label] += 1
                break
    return counts


def days_between(start: datetime, end: datetime) -> float:
    """Fractional number of days from ``start`` to ``end``."""
    return (end - start).total_seconds() / SECONDS_PER_DAY


def rate(part: float, whole: float) -> float:
    """``part / whole`` as a percentage, 0 when ``whole`` is empty."""
    if whole <= 0:
        return 0
    return clamp_rate(part / whole * 100)


def calculate_std_dev(values: Sequence[float]) -> float:
    """Population standard deviation of ``values``."""
    if not values:
        return 0
    mean = calculate_average(values)
    return math.sqrt(math.fsum((v - mean) ** 2 for v in values) / len(values))


def describe(values: Sequence[float]) -> Dict[str, float]:
    """Summary statistics for ``values``; an empty dict when there is no data."""
    if not values:
        return {}
    return {
        "count": len(values),
        "mean": calculate_average(values),
        "median": calculate_median(values),
        "stdDev": calculate_std_dev(values),
        "min": min(values),
        "max": max(values),
        "p25": calculate_percentile(values, 25),
        "p75": calculate_percentile(values, 75),
        "p90": calculate_percentile(values, 90),
        "p95": calculate_percentile(values, 95),
    }
