"""
Statistical helpers for fleet-wide aggregates.
"""

import math
from typing import Optional, Sequence


def population_std_dev(count: int, total: float, total_squares: float) -> float:
    """Population standard deviation from count, sum and sum of squares."""
    if not count:
        return 0.0
    mean = total / count
    variance = total_squares / count - mean * mean
    # Rounding can push a zero variance slightly negative
    return math.sqrt(variance) if variance > 0 else 0.0


def percentile_rank(ranked_vehicle_ids: Sequence[str], vehicle_id: str) -> float:
    """
    Rank of vehicle_id among vehicles sorted ascending by their average.

    position / (N - 1) * 100, with position 0-indexed. 0 when the vehicle
    is absent or is the only ranked vehicle.
    """
    try:
        position = list(ranked_vehicle_ids).index(vehicle_id)
    except ValueError:
        return 0.0
    if len(ranked_vehicle_ids) < 2:
        return 0.0
    return position / (len(ranked_vehicle_ids) - 1) * 100


def percent_difference(value: float, baseline: float) -> float:
    """((value - baseline) / baseline) * 100, defined as 0 for a zero baseline."""
    if baseline == 0:
        return 0.0
    return (value - baseline) / baseline * 100


def mean_or_zero(values: Sequence[float]) -> float:
    return sum(values) / len(values) if values else 0.0


def zero_if_none(value: Optional[float]) -> float:
    return float(value) if value is not None else 0.0
