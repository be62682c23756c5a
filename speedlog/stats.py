"""Pure statistics used to reduce ping samples."""

from __future__ import annotations

import math
from typing import Iterable, List, Tuple

from .errors import EmptyInputError


def _as_list(values: Iterable[float]) -> List[float]:
    return [float(value) for value in values]


def median(values: Iterable[float]) -> float:
    ordered = sorted(_as_list(values))
    if not ordered:
        raise EmptyInputError("median() requires at least one value")
    mid = len(ordered) // 2
    if len(ordered) % 2 == 0:
        return (ordered[mid - 1] + ordered[mid]) / 2.0
    return ordered[mid]


def mean(values: Iterable[float]) -> float:
    items = _as_list(values)
    if not items:
        raise EmptyInputError("mean() requires at least one value")
    return sum(items) / len(items)


def sample_standard_deviation(values: Iterable[float]) -> float:
    """Unbiased (N-1) standard deviation; a single sample has no spread."""
    items = _as_list(values)
    if len(items) < 2:
        return 0.0
    avg = mean(items)
    variance = sum((value - avg) ** 2 for value in items) / (len(items) - 1)
    return math.sqrt(variance)


def ping_and_jitter(samples: Iterable[float]) -> Tuple[float, float]:
    """Return (median ping, jitter) for round-trip samples in milliseconds."""
    items = _as_list(samples)
    if not items:
        raise EmptyInputError("ping_and_jitter() requires at least one sample")
    return median(items), sample_standard_deviation(items)
