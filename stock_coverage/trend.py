"""
Trend Analysis Module
Weighted log-linear regression for growth/decline detection and projection.
"""
import logging
import math
from dataclasses import dataclass
from typing import List, NamedTuple, Sequence, Tuple

import numpy as np

from stock_coverage.config import StockCoverageConfig
from stock_coverage.schemas import ProcessedDataPoint, TrendAnalysis
from stock_coverage.utils import NEAR_ZERO, clamp, mean_or_default

logger = logging.getLogger(__name__)

LOG_EPSILON = 0.1            # Added before log() so zero demand stays finite
MIN_TREND_POINTS = 7
FULL_CONFIDENCE_POINTS = 14

DEFAULT_TREND_CONFIDENCE = 0.5

UNDAMPENED_PROJECTION_DAYS = 7
DAILY_DAMPENING = 0.01

CHANGE_POINT_WINDOW = 14
CHANGE_POINT_THRESHOLD = 0.3


class RegressionFit(NamedTuple):
    intercept: float
    slope: float
    r_squared: float


@dataclass(frozen=True)
class PolynomialTrend:
    coefficients: Tuple[float, ...]  # Highest power first (numpy.polyfit order)
    r_squared: float


def weighted_linear_regression(x: np.ndarray, y: np.ndarray, w: np.ndarray) -> RegressionFit:
    """
    Closed-form weighted least squares fit of y = intercept + slope * x.

    A near-zero denominator yields a flat fit at the weighted mean of y.
    R-squared is weighted and clamped to [0, 1]; a flat series has R-squared 0.

    Parameters:
    -----------
    x, y, w : np.ndarray
        Time index, values and observation weights

    Returns:
    --------
    RegressionFit
        (intercept, slope, r_squared)
    """
    if len(x) < 2:
        return RegressionFit(float(y[0]) if len(y) else 0.0, 0.0, 0.0)

    sum_w = float(np.sum(w))
    sum_wx = float(np.sum(w * x))
    sum_wy = float(np.sum(w * y))
    sum_wxx = float(np.sum(w * x * x))
    sum_wxy = float(np.sum(w * x * y))

    denominator = sum_w * sum_wxx - sum_wx * sum_wx
    if abs(denominator) < NEAR_ZERO:
        return RegressionFit(sum_wy / sum_w, 0.0, 0.0)

    slope = (sum_w * sum_wxy - sum_wx * sum_wy) / denominator
    intercept = (sum_wy - slope * sum_wx) / sum_w

    mean_y = sum_wy / sum_w
    residuals = y - (intercept + slope * x)
    ss_residual = float(np.sum(w * residuals ** 2))
    ss_total = float(np.sum(w * (y - mean_y) ** 2))

    r_squared = 1 - ss_residual / ss_total if ss_total > NEAR_ZERO else 0.0

    return RegressionFit(intercept, slope, clamp(r_squared, 0.0, 1.0))


def default_trend(points: Sequence[ProcessedDataPoint]) -> TrendAnalysis:
    """Flat trend at the arithmetic mean of positive demand."""
    average = mean_or_default(p.adjusted_demand for p in points if p.adjusted_demand > 0)
    return TrendAnalysis(
        intercept=math.log(max(LOG_EPSILON, average)),
        slope=0.0,
        r_squared=0.0,
        trend_factor=1.0,
        current_level=average,
        confidence=DEFAULT_TREND_CONFIDENCE,
    )


def calculate_trend_confidence(r_squared: float, valid_points: int, total_points: int) -> float:
    """
    Confidence = 0.5 R-squared + 0.3 completeness + 0.2 min(1, valid/14).

    A perfect fit on a handful of sparse points stays well short of 1.
    """
    completeness = valid_points / total_points if total_points else 0.0
    volume = min(1.0, valid_points / FULL_CONFIDENCE_POINTS)
    return clamp(0.5 * r_squared + 0.3 * completeness + 0.2 * volume, 0.0, 1.0)


def analyze(points: Sequence[ProcessedDataPoint], config: StockCoverageConfig) -> TrendAnalysis:
    """
    Fit a weighted log-linear trend to adjusted demand.

    Regresses ln(demand + 0.1) on x = 1..n over strictly positive points, using
    the preprocessor's decay weights. Falls back to the default trend when
    trend correction is disabled or fewer than 7 positive points exist.

    Parameters:
    -----------
    points : Sequence[ProcessedDataPoint]
        Processed (optionally deseasonalized) series, oldest first
    config : StockCoverageConfig
        Calculation parameters

    Returns:
    --------
    TrendAnalysis
    """
    if not config.enable_trend_correction or len(points) < MIN_TREND_POINTS:
        return default_trend(points)

    valid = [p for p in points if p.adjusted_demand > 0]
    if len(valid) < MIN_TREND_POINTS:
        return default_trend(points)

    n = len(valid)
    x = np.arange(1, n + 1, dtype=float)
    y = np.log(np.array([p.adjusted_demand for p in valid], dtype=float) + LOG_EPSILON)
    w = np.array([p.weight for p in valid], dtype=float)

    fit = weighted_linear_regression(x, y, w)

    current_level = math.exp(fit.intercept + fit.slope * n) - LOG_EPSILON

    return TrendAnalysis(
        intercept=fit.intercept,
        slope=fit.slope,
        r_squared=fit.r_squared,
        trend_factor=math.exp(fit.slope),
        current_level=max(0.0, current_level),
        confidence=calculate_trend_confidence(fit.r_squared, n, len(points)),
    )


def project_trend(trend: TrendAnalysis, days_ahead: int) -> np.ndarray:
    """
    Project daily demand for days 1..days_ahead.

    The first week compounds the fitted trend factor; later days use a factor
    pulled toward 1 by 1 / (1 + 0.01 * day) so long horizons do not run away.
    """
    projections = np.zeros(days_ahead, dtype=float)
    for day in range(1, days_ahead + 1):
        if day <= UNDAMPENED_PROJECTION_DAYS:
            factor = trend.trend_factor
        else:
            dampening = 1 / (1 + DAILY_DAMPENING * day)
            factor = 1 + (trend.trend_factor - 1) * dampening
        projections[day - 1] = max(0.0, trend.current_level * factor ** day)
    return projections


def detect_change_points(
    points: Sequence[ProcessedDataPoint],
    config: StockCoverageConfig
) -> List[int]:
    """
    Indices where the trend factor shifts by more than 30%.

    Compares independently fitted trends of the 14 days before and after
    each candidate index.
    """
    change_points: List[int] = []
    if len(points) < CHANGE_POINT_WINDOW * 2:
        return change_points

    for i in range(CHANGE_POINT_WINDOW, len(points) - CHANGE_POINT_WINDOW):
        before = analyze(points[i - CHANGE_POINT_WINDOW:i], config)
        after = analyze(points[i:i + CHANGE_POINT_WINDOW], config)

        change = abs((after.trend_factor - before.trend_factor) / before.trend_factor)
        if change > CHANGE_POINT_THRESHOLD:
            change_points.append(i)

    if change_points:
        logger.debug(f"Detected {len(change_points)} trend change points")

    return change_points


def polynomial_trend(points: Sequence[ProcessedDataPoint], degree: int = 2) -> PolynomialTrend:
    """
    Weighted polynomial fit of adjusted demand over positive points.

    Returns zero coefficients when there are not enough points for the degree.
    """
    valid = [p for p in points if p.adjusted_demand > 0]
    if len(valid) < degree + 1:
        return PolynomialTrend(coefficients=(0.0,) * (degree + 1), r_squared=0.0)

    x = np.arange(1, len(valid) + 1, dtype=float)
    y = np.array([p.adjusted_demand for p in valid], dtype=float)
    w = np.array([p.weight for p in valid], dtype=float)

    # polyfit weights multiply residuals, so pass sqrt of the observation weights
    coefficients = np.polyfit(x, y, degree, w=np.sqrt(w))

    fitted = np.polyval(coefficients, x)
    mean_y = float(np.sum(w * y) / np.sum(w))
    ss_total = float(np.sum(w * (y - mean_y) ** 2))
    ss_residual = float(np.sum(w * (y - fitted) ** 2))
    r_squared = 1 - ss_residual / ss_total if ss_total > NEAR_ZERO else 0.0

    return PolynomialTrend(
        coefficients=tuple(float(c) for c in coefficients),
        r_squared=clamp(r_squared, 0.0, 1.0),
    )
