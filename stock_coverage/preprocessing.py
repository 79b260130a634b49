"""
Data Preprocessing Module
Aligns raw sales and availability records into a fixed-length daily series,
corrects demand for stockouts, caps outliers and normalizes promotional uplift.
"""
import logging
from dataclasses import asdict
from datetime import date, datetime
from typing import List, Tuple, Union

import numpy as np
import pandas as pd

from stock_coverage.config import StockCoverageConfig
from stock_coverage.exceptions import InsufficientDataError, InvalidConfigurationError
from stock_coverage.schemas import (
    DataQualityScore,
    ProcessedDataPoint,
    StockCoverageInput,
)
from stock_coverage.utils import safe_divide, upper_median

logger = logging.getLogger(__name__)

MIN_DISTINCT_SALES_DATES = 7
MINUTES_PER_DAY = 1440

ROLLING_WINDOW_DAYS = 7         # +/- days around each point
IMPUTATION_LOOKBACK_DAYS = 28   # Same-weekday history used for stockout days

MODIFIED_Z_CONSTANT = 0.6745
MODIFIED_Z_THRESHOLD = 3.5

PROMOTION_UPLIFT_THRESHOLD = 1.2


def validate_input(data: StockCoverageInput) -> None:
    """
    Validate that the input can support a calculation.

    Raises:
    -------
    InvalidConfigurationError
        If the product reference is missing
    InsufficientDataError
        If sales history is empty or covers fewer than 7 distinct dates
    """
    if data.product is None:
        raise InvalidConfigurationError('Product data is required')

    sku = data.product.sku
    if not data.sales_history:
        raise InsufficientDataError(
            'Sales history is required for calculation',
            details={'sku': sku},
        )

    unique_dates = {sale.date for sale in data.sales_history}
    if len(unique_dates) < MIN_DISTINCT_SALES_DATES:
        raise InsufficientDataError(
            f'At least {MIN_DISTINCT_SALES_DATES} days of sales history required',
            details={
                'sku': sku,
                'days_found': len(unique_dates),
                'minimum_required': MIN_DISTINCT_SALES_DATES,
            },
        )


def build_daily_frame(
    data: StockCoverageInput,
    config: StockCoverageConfig,
    reference_date: date
) -> pd.DataFrame:
    """
    Build the contiguous daily frame for the calculation window.

    Parameters:
    -----------
    data : StockCoverageInput
        Validated input records
    config : StockCoverageConfig
        Calculation parameters
    reference_date : date
        Last day of the window ("today")

    Returns:
    --------
    pd.DataFrame
        Indexed by day, exactly config.historical_days rows, with columns:
        original_sales, availability_factor, is_promotion, day_of_week, weight
    """
    dates = pd.date_range(end=pd.Timestamp(reference_date), periods=config.historical_days, freq='D')

    sales = pd.DataFrame(
        [(pd.Timestamp(s.date), s.units_sold, s.promotion_flag) for s in data.sales_history],
        columns=['date', 'units_sold', 'promotion_flag'],
    )
    daily_sales = sales.groupby('date').agg(
        units_sold=('units_sold', 'sum'),
        promotion_flag=('promotion_flag', 'any'),
    ).reindex(dates)

    frame = pd.DataFrame(index=dates)
    frame['original_sales'] = daily_sales['units_sold'].fillna(0).astype(float)
    frame['is_promotion'] = daily_sales['promotion_flag'].eq(True)

    if data.stock_availability:
        availability = pd.DataFrame(
            [(pd.Timestamp(a.date), a.minutes_in_stock / MINUTES_PER_DAY) for a in data.stock_availability],
            columns=['date', 'availability_factor'],
        )
        daily_availability = availability.groupby('date')['availability_factor'].mean().reindex(dates)
        frame['availability_factor'] = daily_availability.fillna(1.0).clip(0.0, 1.0)
    else:
        frame['availability_factor'] = 1.0

    # Sunday = 0 ... Saturday = 6
    frame['day_of_week'] = (dates.dayofweek + 1) % 7

    days_ago = np.arange(config.historical_days - 1, -1, -1, dtype=float)
    frame['weight'] = np.power(0.5, days_ago / config.half_life)

    return frame


def rolling_median(sales: np.ndarray, index: int, window: int = ROLLING_WINDOW_DAYS) -> float:
    """
    Upper median of positive sales within +/- window days of index.

    Falls back to the day's own sales when the window has no positive sales.
    Each call sorts its window; for ~90-day series this is cheap enough.
    """
    start = max(0, index - window)
    end = min(len(sales), index + window + 1)
    positive = sales[start:end][sales[start:end] > 0]
    if len(positive) == 0:
        return float(sales[index])
    return upper_median(positive)


def impute_demand(
    index: int,
    adjusted: np.ndarray,
    sales: np.ndarray,
    availability: np.ndarray,
    day_of_week: np.ndarray,
    fallback_median: float,
    config: StockCoverageConfig
) -> float:
    """
    Estimate demand for a severe-stockout day.

    Uses the mean of the same weekday over the previous 4 weeks where the SKU
    was adequately available; falls back to the local rolling median.
    """
    start = max(0, index - IMPUTATION_LOOKBACK_DAYS)
    similar_days = []
    for j in range(start, index):
        if day_of_week[j] == day_of_week[index] and availability[j] >= config.min_availability_factor:
            similar_days.append(adjusted[j] if adjusted[j] > 0 else sales[j])

    if similar_days:
        return float(np.mean(similar_days))
    return fallback_median


def adjust_for_availability(
    sales: np.ndarray,
    availability: np.ndarray,
    day_of_week: np.ndarray,
    config: StockCoverageConfig
) -> np.ndarray:
    """
    Convert observed sales into estimated unconstrained demand.

    Days with adequate availability are scaled up by 1/AF and capped at
    rolling median x outlier_cap_multiplier. Severe stockout days are imputed.
    Points are processed oldest first so imputation can use earlier results.
    """
    adjusted = np.zeros(len(sales), dtype=float)
    imputed_days = 0

    for i in range(len(sales)):
        median = rolling_median(sales, i)
        factor = availability[i]

        if factor >= config.min_availability_factor:
            scaled = sales[i] / max(factor, config.min_availability_factor)
            adjusted[i] = min(scaled, median * config.outlier_cap_multiplier)
        else:
            adjusted[i] = impute_demand(i, adjusted, sales, availability, day_of_week, median, config)
            imputed_days += 1

    if imputed_days:
        logger.debug(f"Imputed demand for {imputed_days} severe stockout days")

    return adjusted


def detect_outliers(demand: np.ndarray) -> Tuple[np.ndarray, np.ndarray]:
    """
    Flag and cap outliers using the modified z-score (median / MAD).

    Parameters:
    -----------
    demand : np.ndarray
        Availability-adjusted demand

    Returns:
    --------
    Tuple[np.ndarray, np.ndarray]
        (capped_demand, outlier_flags)
    """
    capped = demand.copy()
    flags = np.zeros(len(demand), dtype=bool)

    positive = demand[demand > 0]
    if len(positive) == 0:
        return capped, flags

    median = upper_median(positive)
    mad = upper_median(np.abs(positive - median))
    if mad == 0:
        return capped, flags

    upper_bound = median + MODIFIED_Z_THRESHOLD * mad / MODIFIED_Z_CONSTANT
    lower_bound = max(0.0, median - MODIFIED_Z_THRESHOLD * mad / MODIFIED_Z_CONSTANT)

    for i, value in enumerate(demand):
        if value == 0:
            continue
        modified_z = MODIFIED_Z_CONSTANT * (value - median) / mad
        if abs(modified_z) > MODIFIED_Z_THRESHOLD:
            flags[i] = True
            capped[i] = min(upper_bound, max(lower_bound, value))

    if flags.any():
        logger.debug(f"Capped {int(flags.sum())} outliers (median={median:.2f}, MAD={mad:.2f})")

    return capped, flags


def normalize_promotions(
    demand: np.ndarray,
    is_promotion: np.ndarray,
    is_outlier: np.ndarray
) -> np.ndarray:
    """
    Scale promotional days back to baseline demand.

    Only applied when the promotional uplift over non-promotional, non-outlier
    days exceeds 20%.
    """
    promo = demand[is_promotion & ~is_outlier]
    normal = demand[~is_promotion & ~is_outlier]
    if len(promo) == 0 or len(normal) == 0:
        return demand

    avg_normal = float(np.mean(normal))
    if avg_normal == 0:
        return demand

    uplift = float(np.mean(promo)) / avg_normal
    if uplift <= PROMOTION_UPLIFT_THRESHOLD:
        return demand

    logger.debug(f"Normalizing promotional demand by uplift {uplift:.2f}")
    normalized = demand.copy()
    normalized[is_promotion] = normalized[is_promotion] / uplift
    return normalized


def preprocess(
    data: StockCoverageInput,
    config: StockCoverageConfig,
    reference_date: Union[date, datetime]
) -> Tuple[ProcessedDataPoint, ...]:
    """
    Clean and align raw records into one ProcessedDataPoint per window day.

    Parameters:
    -----------
    data : StockCoverageInput
        Raw product, sales and availability records
    config : StockCoverageConfig
        Calculation parameters
    reference_date : date or datetime
        Calculation reference instant; the window ends on this date

    Returns:
    --------
    Tuple[ProcessedDataPoint, ...]
        Oldest first, length == config.historical_days

    Raises:
    -------
    InvalidConfigurationError, InsufficientDataError
    """
    validate_input(data)

    if isinstance(reference_date, datetime):
        reference_date = reference_date.date()

    frame = build_daily_frame(data, config, reference_date)

    sales = frame['original_sales'].to_numpy(dtype=float)
    availability = frame['availability_factor'].to_numpy(dtype=float)
    day_of_week = frame['day_of_week'].to_numpy(dtype=int)
    is_promotion = frame['is_promotion'].to_numpy(dtype=bool)
    weights = frame['weight'].to_numpy(dtype=float)

    adjusted = adjust_for_availability(sales, availability, day_of_week, config)
    adjusted, is_outlier = detect_outliers(adjusted)

    # Outlier capping runs first so the uplift is measured on capped demand
    if config.enable_promotion_adjustment:
        adjusted = normalize_promotions(adjusted, is_promotion, is_outlier)

    points = tuple(
        ProcessedDataPoint(
            date=timestamp.date(),
            day_of_week=int(day_of_week[i]),
            original_sales=float(sales[i]),
            availability_factor=float(availability[i]),
            adjusted_demand=float(max(0.0, adjusted[i])),
            weight=float(weights[i]),
            is_promotion=bool(is_promotion[i]),
            is_outlier=bool(is_outlier[i]),
        )
        for i, timestamp in enumerate(frame.index)
    )

    logger.debug(
        f"Preprocessed {data.product.sku}: {len(points)} days, "
        f"{int(is_outlier.sum())} outliers, {int((availability < config.min_availability_factor).sum())} stockout days"
    )
    return points


def calculate_data_quality(
    points: Tuple[ProcessedDataPoint, ...],
    config: StockCoverageConfig
) -> DataQualityScore:
    """
    Score how trustworthy the processed series is.

    Overall score = 0.3 completeness + 0.3 consistency
                    + 0.2 (1 - availability issues) + 0.2 (1 - outliers)
    """
    total_days = config.historical_days
    days_with_sales = sum(1 for p in points if p.original_sales > 0)
    low_availability_days = sum(1 for p in points if p.availability_factor < config.min_availability_factor)
    outliers = sum(1 for p in points if p.is_outlier)

    demands = np.array([p.adjusted_demand for p in points if not p.is_outlier], dtype=float)
    if len(demands) > 0:
        mean = float(np.mean(demands))
        std = float(np.sqrt(np.mean((demands - mean) ** 2)))
        coefficient_of_variation = safe_divide(std, mean, 1.0) if mean > 0 else 1.0
    else:
        coefficient_of_variation = 1.0

    completeness = days_with_sales / total_days
    consistency = max(0.0, 1 - coefficient_of_variation)
    availability_issues = low_availability_days / total_days
    outlier_percentage = outliers / total_days

    overall_score = (
        completeness * 0.3
        + consistency * 0.3
        + (1 - availability_issues) * 0.2
        + (1 - outlier_percentage) * 0.2
    )

    return DataQualityScore(
        completeness=completeness,
        consistency=consistency,
        availability_issues=availability_issues,
        outlier_percentage=outlier_percentage,
        overall_score=overall_score,
    )


def points_to_frame(points: Tuple[ProcessedDataPoint, ...]) -> pd.DataFrame:
    """
    Tabular view of processed points, indexed by date.

    Useful for diagnostics and reports; the engine itself works on the tuples.
    """
    columns: List[str] = [
        'date', 'day_of_week', 'original_sales', 'availability_factor',
        'adjusted_demand', 'weight', 'is_promotion', 'is_outlier',
    ]
    frame = pd.DataFrame([asdict(p) for p in points], columns=columns)
    return frame.set_index('date')
