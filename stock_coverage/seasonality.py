"""
Seasonality Adjustment Module
Day-of-week and monthly demand patterns, plus holiday normalization.
"""
import logging
import math
from dataclasses import replace
from datetime import date
from typing import Dict, Iterable, List, Sequence, Tuple

import numpy as np

from stock_coverage.config import StockCoverageConfig
from stock_coverage.schemas import ProcessedDataPoint, SeasonalityFactors
from stock_coverage.utils import day_of_week

logger = logging.getLogger(__name__)

DAY_NAMES = ('sunday', 'monday', 'tuesday', 'wednesday', 'thursday', 'friday', 'saturday')

MIN_POINTS_WEEKLY = 14
MIN_POINTS_MONTHLY = 90

MAX_FACTOR_DEVIATION = 0.5
MIN_FACTOR = 0.1

WEEKLY_PATTERN_CV_THRESHOLD = 0.15
PEAK_LOW_THRESHOLD = 0.1
HOLIDAY_EFFECT_THRESHOLD = 1.2

NEUTRAL_FACTORS = SeasonalityFactors()


def smooth_factor(factor: float, max_deviation: float = MAX_FACTOR_DEVIATION) -> float:
    """
    Compress factors outside [1 - max_deviation, 1 + max_deviation] logarithmically.

    The result is floored at MIN_FACTOR so it can always be divided by.
    """
    min_factor = 1 - max_deviation
    max_factor = 1 + max_deviation

    if factor <= 0:
        return MIN_FACTOR
    if factor < min_factor:
        factor = min_factor * (1 + math.log(factor / min_factor) * 0.1)
    elif factor > max_factor:
        factor = max_factor * (1 + math.log(factor / max_factor) * 0.1)

    return max(MIN_FACTOR, factor)


def calculate_seasonality_factors(
    points: Sequence[ProcessedDataPoint],
    config: StockCoverageConfig
) -> SeasonalityFactors:
    """
    Weekday demand factors relative to the average weekday.

    Uses decay-weighted averages of positive, non-outlier demand. Neutral
    factors are returned when seasonality is disabled or fewer than 14 points
    are available; weekdays without any data keep a factor of 1.0.
    """
    if not config.enable_seasonality or len(points) < MIN_POINTS_WEEKLY:
        return NEUTRAL_FACTORS

    sums = np.zeros(7)
    weights = np.zeros(7)
    for point in points:
        if point.adjusted_demand > 0 and not point.is_outlier:
            sums[point.day_of_week] += point.adjusted_demand * point.weight
            weights[point.day_of_week] += point.weight

    has_data = weights > 0
    if not has_data.any():
        return NEUTRAL_FACTORS

    averages = np.zeros(7)
    averages[has_data] = sums[has_data] / weights[has_data]
    overall = float(averages[has_data].mean())
    if overall <= 0:
        return NEUTRAL_FACTORS

    factors = {}
    for dow, name in enumerate(DAY_NAMES):
        factors[name] = smooth_factor(averages[dow] / overall) if has_data[dow] else 1.0

    return SeasonalityFactors(**factors)


def apply_seasonality(
    base_demand: float,
    target_date: date,
    factors: SeasonalityFactors,
    config: StockCoverageConfig
) -> float:
    """Scale a base demand by the factor for target_date's weekday."""
    if not config.enable_seasonality:
        return base_demand
    return base_demand * factors.for_day(day_of_week(target_date))


def deseasonalize(
    points: Sequence[ProcessedDataPoint],
    factors: SeasonalityFactors,
    config: StockCoverageConfig
) -> Tuple[ProcessedDataPoint, ...]:
    """Return new points with weekday effects divided out of adjusted demand."""
    if not config.enable_seasonality:
        return tuple(points)

    return tuple(
        replace(p, adjusted_demand=p.adjusted_demand / factors.for_day(p.day_of_week))
        for p in points
    )


def detect_weekly_patterns(
    points: Sequence[ProcessedDataPoint],
    config: StockCoverageConfig
) -> Dict:
    """
    Summarize the weekly pattern.

    Returns:
    --------
    Dict
        {
            'has_weekly_pattern': bool,  # CV of factors > 15%
            'pattern_strength': float,   # CV of factors
            'peak_days': List[int],      # factor > 1.1
            'low_days': List[int]        # factor < 0.9
        }
    """
    values = np.array(calculate_seasonality_factors(points, config).as_tuple())
    mean = float(values.mean())
    cv = float(values.std() / mean) if mean > 0 else 0.0

    peak_days = [dow for dow, f in enumerate(values) if f > 1 + PEAK_LOW_THRESHOLD]
    low_days = [dow for dow, f in enumerate(values) if f < 1 - PEAK_LOW_THRESHOLD]

    return {
        'has_weekly_pattern': cv > WEEKLY_PATTERN_CV_THRESHOLD,
        'pattern_strength': cv,
        'peak_days': peak_days,
        'low_days': low_days,
    }


def calculate_monthly_seasonality(points: Sequence[ProcessedDataPoint]) -> Dict[int, float]:
    """
    Demand factor per calendar month (1-12).

    Needs at least 90 points; months without data are neutral.
    """
    factors = {month: 1.0 for month in range(1, 13)}
    if len(points) < MIN_POINTS_MONTHLY:
        return factors

    by_month: Dict[int, List[float]] = {}
    for point in points:
        if point.adjusted_demand > 0 and not point.is_outlier:
            by_month.setdefault(point.date.month, []).append(point.adjusted_demand)

    all_values = [v for values in by_month.values() for v in values]
    if not all_values:
        return factors

    overall = float(np.mean(all_values))
    for month, values in by_month.items():
        factors[month] = smooth_factor(float(np.mean(values)) / overall)

    return factors


def adjust_for_holidays(
    points: Sequence[ProcessedDataPoint],
    holidays: Iterable[date]
) -> Tuple[ProcessedDataPoint, ...]:
    """
    Scale holiday demand back to baseline when the holiday effect exceeds 20%.
    """
    holiday_set = set(holidays)
    holiday_demand = [p.adjusted_demand for p in points if p.date in holiday_set]
    normal_demand = [p.adjusted_demand for p in points if p.date not in holiday_set]

    if not holiday_demand or not normal_demand:
        return tuple(points)

    avg_normal = float(np.mean(normal_demand))
    if avg_normal == 0:
        return tuple(points)

    holiday_factor = float(np.mean(holiday_demand)) / avg_normal
    if holiday_factor <= HOLIDAY_EFFECT_THRESHOLD:
        return tuple(points)

    logger.debug(f"Normalizing {len(holiday_demand)} holiday days by factor {holiday_factor:.2f}")
    return tuple(
        replace(p, adjusted_demand=p.adjusted_demand / holiday_factor) if p.date in holiday_set else p
        for p in points
    )
