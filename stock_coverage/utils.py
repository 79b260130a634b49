"""
Numeric helpers shared by the coverage components.
"""
import logging
import math
from datetime import date
from typing import Iterable, Sequence

import numpy as np

logger = logging.getLogger(__name__)

# Denominators below this are treated as zero
NEAR_ZERO = 1e-10


def safe_divide(numerator: float, denominator: float, default: float = 0.0) -> float:
    """
    Safely divide two numbers, returning default if division by zero.

    Parameters:
    -----------
    numerator : float
        Numerator
    denominator : float
        Denominator
    default : float
        Default value if the denominator is zero or not finite

    Returns:
    --------
    float
        Result of division or default
    """
    if denominator == 0 or not math.isfinite(denominator):
        return default
    return numerator / denominator


def clamp(value: float, min_val: float, max_val: float) -> float:
    """
    Clamp a value to a range.

    Parameters:
    -----------
    value : float
        Value to clamp
    min_val : float
        Minimum value
    max_val : float
        Maximum value

    Returns:
    --------
    float
        Clamped value
    """
    return max(min_val, min(max_val, value))


def upper_median(values: Sequence[float]) -> float:
    """
    Median that picks the upper middle element for even-length input.

    Always returns an observed value, which keeps caps and imputations
    on the scale of real sales.
    """
    if len(values) == 0:
        raise ValueError("upper_median() requires at least one value")
    ordered = np.sort(np.asarray(values, dtype=float))
    return float(ordered[len(ordered) // 2])


def mean_or_default(values: Iterable[float], default: float = 0.0) -> float:
    """Arithmetic mean, or default for empty input."""
    values = list(values)
    if not values:
        return default
    return float(np.mean(values))


def day_of_week(d: date) -> int:
    """Day of week with Sunday = 0 ... Saturday = 6."""
    return (d.weekday() + 1) % 7


def all_finite(*values: float) -> bool:
    """True when every value is a finite number."""
    return all(math.isfinite(v) for v in values)
