"""Statistics helpers for cohort margin analysis.

This module provides utilities for:
- Computing linear-interpolation percentiles from pre-sorted samples.
- Median, arithmetic mean and population standard deviation.
- Summarizing a margin sample into P25/median/P75/mean in one pass.

Every function raises :class:`~marginscan.errors.EmptyInputError` on empty
input. Callers guarantee non-empty samples; the check is a guard against
caller bugs, not a normal control path.
"""

from __future__ import annotations

import math
from dataclasses import dataclass
from typing import Iterable, List, Sequence

from .errors import EmptyInputError


@dataclass(frozen=True, slots=True)
class MarginSummary:
    """Order statistics and mean of one margin sample."""

    p25: float
    median: float
    p75: float
    mean: float
    count: int


def _require_samples(samples: Sequence[float], name: str) -> None:
    if not samples:
        raise EmptyInputError(f"Cannot compute {name} of an empty sample.")


def percentile(sorted_samples: Sequence[float], p: float) -> float:
    """Calculate a percentile using linear interpolation.

    The input sequence is expected to already be sorted in ascending order.
    The rank is ``p * (n - 1)`` (0-indexed); fractional ranks interpolate
    between the two neighbouring samples.

    Args:
        sorted_samples: Sorted numeric samples.
        p: Percentile as a fraction in the inclusive range ``[0, 1]``.

    Returns:
        Interpolated percentile value.

    Raises:
        ValueError: If ``p`` is outside ``[0, 1]``.
        EmptyInputError: If ``sorted_samples`` is empty.
    """
    if not 0 <= p <= 1:
        raise ValueError("Percentile 'p' must be in the range [0, 1].")

    _require_samples(sorted_samples, "a percentile")

    position = (len(sorted_samples) - 1) * p
    lower_index = math.floor(position)
    upper_index = math.ceil(position)

    if lower_index == upper_index:
        return float(sorted_samples[lower_index])

    lower_value = sorted_samples[lower_index]
    upper_value = sorted_samples[upper_index]
    return float(lower_value + (upper_value - lower_value) * (position - lower_index))


def median(samples: Iterable[float]) -> float:
    """Return the interpolated median; ``samples`` need not be sorted."""
    return percentile(sorted(samples), 0.5)


def mean(samples: Sequence[float]) -> float:
    """Return the arithmetic mean of ``samples``."""
    _require_samples(samples, "a mean")
    return math.fsum(samples) / len(samples)


def stddev(samples: Sequence[float]) -> float:
    """Return the population standard deviation (divides by ``n``).

    A single sample has zero spread.
    """
    _require_samples(samples, "a standard deviation")
    if len(samples) == 1:
        return 0.0

    average = mean(samples)
    variance = math.fsum((sample - average) ** 2 for sample in samples) / len(samples)
    return math.sqrt(variance)


def summarize(samples: Iterable[float]) -> MarginSummary:
    """Sort once and compute P25, median, P75 and mean."""
    ordered: List[float] = sorted(samples)
    _require_samples(ordered, "a summary")

    return MarginSummary(
        p25=percentile(ordered, 0.25),
        median=percentile(ordered, 0.5),
        p75=percentile(ordered, 0.75),
        mean=mean(ordered),
        count=len(ordered),
    )
