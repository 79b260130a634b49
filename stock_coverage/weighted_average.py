"""
Exponentially weighted demand statistics.

Weights start from each point's half-life decay weight and are reduced for
partially available and promotional days.
"""
import logging
from typing import Dict, List, Sequence, Tuple

import numpy as np
from scipy import stats

from stock_coverage.config import StockCoverageConfig
from stock_coverage.schemas import ProcessedDataPoint, WeightedAverageResult
from stock_coverage.utils import safe_divide

logger = logging.getLogger(__name__)

MIN_AVAILABILITY_WEIGHT = 0.5
PROMOTION_WEIGHT = 0.8

ADAPTIVE_RECENT_DAYS = 14
ADAPTIVE_STABLE_FACTOR = 0.7
ADAPTIVE_VOLATILE_FACTOR = 1.3

EMPTY_RESULT = WeightedAverageResult(
    mean=0.0, variance=0.0, standard_deviation=0.0, sum_weights=0.0, effective_samples=0.0
)


def point_weight(point: ProcessedDataPoint, config: StockCoverageConfig) -> float:
    """Decay weight adjusted for availability and promotions."""
    adjustment = 1.0
    if point.availability_factor < 1.0:
        adjustment *= max(MIN_AVAILABILITY_WEIGHT, point.availability_factor)
    if config.enable_promotion_adjustment and point.is_promotion:
        adjustment *= PROMOTION_WEIGHT
    return point.weight * adjustment


def calculate_weighted_average(
    points: Sequence[ProcessedDataPoint],
    config: StockCoverageConfig
) -> WeightedAverageResult:
    """
    Weighted mean, variance and effective sample size of adjusted demand.

    Outlier points are excluded.

    Parameters:
    -----------
    points : Sequence[ProcessedDataPoint]
        Processed series (any subset)
    config : StockCoverageConfig
        Calculation parameters

    Returns:
    --------
    WeightedAverageResult
        All-zero result for empty input
    """
    kept = [p for p in points if not p.is_outlier]
    if not kept:
        return EMPTY_RESULT

    values = np.array([p.adjusted_demand for p in kept], dtype=float)
    weights = np.array([point_weight(p, config) for p in kept], dtype=float)

    sum_weights = float(weights.sum())
    if sum_weights <= 0:
        return EMPTY_RESULT

    mean = float(np.sum(weights * values) / sum_weights)
    variance = float(np.sum(weights * (values - mean) ** 2) / sum_weights)
    sum_squared_weights = float(np.sum(weights ** 2))

    return WeightedAverageResult(
        mean=mean,
        variance=variance,
        standard_deviation=float(np.sqrt(variance)),
        sum_weights=sum_weights,
        effective_samples=safe_divide(sum_weights ** 2, sum_squared_weights, 0.0),
    )


def calculate_by_day_of_week(
    points: Sequence[ProcessedDataPoint],
    config: StockCoverageConfig
) -> Dict[int, WeightedAverageResult]:
    """Weighted statistics per weekday; weekdays without data use the overall result."""
    overall = calculate_weighted_average(points, config)
    results = {}
    for dow in range(7):
        day_points = [p for p in points if p.day_of_week == dow]
        results[dow] = calculate_weighted_average(day_points, config) if day_points else overall
    return results


def calculate_rolling(
    points: Sequence[ProcessedDataPoint],
    config: StockCoverageConfig,
    window_days: int = 7
) -> List[float]:
    """Trailing weighted mean for each point (for time series charts)."""
    means = []
    for i in range(len(points)):
        window = points[max(0, i - window_days + 1):i + 1]
        means.append(calculate_weighted_average(window, config).mean)
    return means


def calculate_confidence_interval(
    result: WeightedAverageResult,
    confidence_level: float = 0.95
) -> Tuple[float, float]:
    """
    Two-sided confidence interval for the weighted mean.

    Standard error uses the effective sample size; the lower bound is floored at 0.

    Returns:
    --------
    Tuple[float, float]
        (lower, upper)
    """
    z_score = float(stats.norm.ppf(0.5 + confidence_level / 2))

    if result.effective_samples > 0:
        standard_error = result.standard_deviation / np.sqrt(result.effective_samples)
    else:
        standard_error = result.standard_deviation

    margin = z_score * standard_error
    return max(0.0, result.mean - margin), result.mean + margin


def _coefficient_of_variation(result: WeightedAverageResult) -> float:
    return safe_divide(result.standard_deviation, result.mean, 0.0) if result.mean > 0 else 0.0


def calculate_adaptive_weights(
    points: Sequence[ProcessedDataPoint],
    config: StockCoverageConfig
) -> List[float]:
    """
    Point weights with the recent two weeks re-scaled by relative stability.

    Recent weights are scaled by 0.7 when the recent window is more stable
    (lower CV) than older history, else by 1.3.
    """
    if not points:
        return []

    recent = points[-ADAPTIVE_RECENT_DAYS:]
    older = points[:-ADAPTIVE_RECENT_DAYS]

    recent_cv = _coefficient_of_variation(calculate_weighted_average(recent, config))
    older_cv = _coefficient_of_variation(calculate_weighted_average(older, config))
    factor = ADAPTIVE_STABLE_FACTOR if recent_cv < older_cv else ADAPTIVE_VOLATILE_FACTOR

    last_date = points[-1].date
    weights = []
    for point in points:
        base = point_weight(point, config)
        if (last_date - point.date).days <= ADAPTIVE_RECENT_DAYS:
            weights.append(base * factor)
        else:
            weights.append(base)
    return weights
