"""
Stock Coverage Calculator
Orchestrates preprocessing, seasonality, trend and weighted statistics into
coverage percentiles and reorder recommendations for one SKU or a batch.
"""
import logging
import math
from datetime import date, datetime, time, timedelta
from enum import Enum
from types import MappingProxyType
from typing import Any, Callable, Dict, List, Mapping, NamedTuple, Optional, Sequence, Set, Tuple, Union

import numpy as np
from joblib import Parallel, delayed
from scipy import stats

from stock_coverage.config import Settings, StockCoverageConfig, merge_and_validate_config, settings
from stock_coverage.exceptions import CalculationError, InvalidConfigurationError, StockCoverageCalculationError
from stock_coverage.preprocessing import calculate_data_quality, preprocess
from stock_coverage.schemas import (
    BatchProcessingResult,
    DataQualityScore,
    Product,
    ProcessedDataPoint,
    SeasonalityFactors,
    StockCoverageInput,
    StockCoverageResult,
    TrendAnalysis,
)
from stock_coverage.seasonality import calculate_seasonality_factors, deseasonalize
from stock_coverage.timing import Timer
from stock_coverage.trend import analyze, project_trend
from stock_coverage.utils import all_finite, clamp, day_of_week, safe_divide
from stock_coverage.weighted_average import calculate_weighted_average

logger = logging.getLogger(__name__)

ALGORITHM = 'EWMA_TREND_SEASONALITY_V1'

DEMAND_EPSILON = 0.01          # Floor on assumed daily demand for coverage division
MIN_TREND_CONFIDENCE = 0.3     # Below this the trend projection is not applied
FULL_VOLUME_DAYS = 30

DUPLICATE_SKU_ERROR = 'Duplicate SKU in batch; first occurrence kept'


class Percentile(str, Enum):
    P10 = 'P10'
    P50 = 'P50'
    P90 = 'P90'
    P95 = 'P95'
    P99 = 'P99'


Z_SCORES: Mapping[Percentile, float] = MappingProxyType({
    Percentile.P10: -1.28,
    Percentile.P50: 0.0,
    Percentile.P90: 1.28,
    Percentile.P95: 1.645,
    Percentile.P99: 2.33,
})


class DemandForecast(NamedTuple):
    demand_forecast: float
    demand_std_dev: float
    adjusted_demand: float
    seasonality_index: float
    availability_adjustment: float
    daily_forecast: np.ndarray


class Recommendations(NamedTuple):
    reorder_point: int
    reorder_quantity: int
    stockout_risk: float
    safety_stock: float


def generate_forecast(
    points: Sequence[ProcessedDataPoint],
    deseasonalized: Sequence[ProcessedDataPoint],
    trend: TrendAnalysis,
    factors: SeasonalityFactors,
    reference: datetime,
    config: StockCoverageConfig
) -> DemandForecast:
    """
    Combine weighted level, trend projection and weekday factors into a daily forecast.

    The level path is the trend projection over the horizon when trend
    correction is enabled and the trend is trusted, else the weighted mean.
    Each future day 1..horizon is scaled by its weekday factor.
    """
    weighted = calculate_weighted_average(deseasonalized, config)
    horizon = config.forecast_horizon

    if config.enable_trend_correction and trend.confidence > MIN_TREND_CONFIDENCE:
        level_path = project_trend(trend, horizon)
    else:
        level_path = np.full(horizon, weighted.mean, dtype=float)

    if config.enable_seasonality:
        today = reference.date()
        seasonal = np.array([
            factors.for_day(day_of_week(today + timedelta(days=day)))
            for day in range(1, horizon + 1)
        ])
    else:
        seasonal = np.ones(horizon)

    daily_forecast = np.maximum(level_path * seasonal, 0.0)

    return DemandForecast(
        demand_forecast=float(daily_forecast.mean()),
        demand_std_dev=weighted.standard_deviation,
        adjusted_demand=float(level_path.mean()),
        seasonality_index=float(seasonal.mean()),
        availability_adjustment=float(np.mean([p.availability_factor for p in points])),
        daily_forecast=daily_forecast,
    )


def calculate_coverage(
    current_stock: float,
    demand_forecast: float,
    demand_std_dev: float,
    max_coverage_days: float = settings.max_coverage_days
) -> Dict[Percentile, float]:
    """
    Coverage days per percentile: stock / max(eps, demand + z * std).

    Higher percentiles assume higher demand and therefore fewer days.
    Results are capped at max_coverage_days.
    """
    coverage = {}
    for percentile, z_score in Z_SCORES.items():
        assumed_demand = max(DEMAND_EPSILON, demand_forecast + z_score * demand_std_dev)
        coverage[percentile] = min(max_coverage_days, current_stock / assumed_demand)
    return coverage


def service_level_z(service_level: float) -> float:
    """Standard normal quantile for a service level (0.95 -> 1.645)."""
    return float(stats.norm.ppf(service_level))


def calculate_stockout_risk(current_stock: float, daily_forecast: np.ndarray, safety_stock: float) -> float:
    """
    Share of forecast days on which projected stock falls below the safety stock.
    """
    if len(daily_forecast) == 0:
        return 0.0
    remaining = current_stock - np.cumsum(daily_forecast)
    return float(np.mean(remaining < safety_stock))


def calculate_recommendations(
    product: Product,
    forecast: DemandForecast,
    config: StockCoverageConfig,
    engine_settings: Settings = settings
) -> Recommendations:
    """
    Reorder point, order quantity and stockout risk.

    Reorder Point = Lead Time Demand + Safety Stock
    Safety Stock  = Z(service level) x sigma x sqrt(LT) + safety days x daily demand
    Order Qty     = EOQ, bounded by minimum stock and remaining capacity
    """
    demand = forecast.demand_forecast
    lead_time = product.lead_time_days or engine_settings.default_lead_time_days

    lead_time_demand = demand * lead_time
    safety_stock = (
        service_level_z(config.service_level) * forecast.demand_std_dev * math.sqrt(lead_time)
        + config.safety_stock_days * demand
    )
    reorder_point = int(math.ceil(lead_time_demand + safety_stock))

    unit_cost = float(product.cost_price)
    annual_demand = demand * 365
    if unit_cost > 0:
        eoq = math.sqrt(
            (2 * annual_demand * engine_settings.ordering_cost_per_order)
            / (engine_settings.holding_cost_rate * unit_cost)
        )
    else:
        eoq = demand * engine_settings.order_cycle_days

    quantity = max(math.ceil(eoq), math.ceil(product.minimum_stock))
    if product.maximum_stock is not None:
        quantity = min(quantity, math.floor(product.maximum_stock - product.current_stock))

    return Recommendations(
        reorder_point=reorder_point,
        reorder_quantity=int(max(0, quantity)),
        stockout_risk=clamp(calculate_stockout_risk(product.current_stock, forecast.daily_forecast, safety_stock), 0.0, 1.0),
        safety_stock=safety_stock,
    )


def calculate_overall_confidence(
    data_quality: DataQualityScore,
    trend_confidence: float,
    days_used: int
) -> float:
    """0.4 data quality + 0.3 trend confidence + 0.3 data volume, clamped to [0, 1]."""
    volume = min(1.0, safe_divide(days_used, FULL_VOLUME_DAYS))
    confidence = 0.4 * data_quality.overall_score + 0.3 * trend_confidence + 0.3 * volume
    return clamp(confidence, 0.0, 1.0)


def _check_finite(sku: str, values: Dict[str, float]) -> None:
    bad = {name: value for name, value in values.items() if not all_finite(value)}
    if bad:
        raise CalculationError(
            'Non-finite values produced during calculation',
            details={'sku': sku, 'values': bad},
        )


def as_reference_instant(value: Any) -> Optional[datetime]:
    """
    Normalize a reference instant; a plain date means midnight of that day.

    Raises:
    -------
    InvalidConfigurationError
        If value is neither a date nor a datetime
    """
    if value is None or isinstance(value, datetime):
        return value
    if isinstance(value, date):
        return datetime.combine(value, time())
    raise InvalidConfigurationError(
        f'Reference instant must be a date or datetime, got {type(value).__name__}'
    )


class StockCoverageCalculator:
    """
    Stock coverage engine for one validated configuration.

    Holds nothing but the frozen config; every step is a stateless function,
    so one instance can serve any number of SKUs or worker processes.
    """

    def __init__(self, config: Optional[Any] = None, engine_settings: Settings = settings):
        """
        Initialize calculator.

        Parameters:
        -----------
        config : StockCoverageConfig or Mapping, optional
            Full config, or partial overrides merged over the defaults
        engine_settings : Settings
            Engine-wide settings (default: module settings)

        Raises:
        -------
        InvalidConfigurationError
            If the merged configuration is out of range
        """
        if isinstance(config, StockCoverageConfig):
            self.config = config
        else:
            self.config = merge_and_validate_config(config)
        self.settings = engine_settings

    def calculate(self, data: StockCoverageInput, now: Optional[Union[date, datetime]] = None) -> StockCoverageResult:
        """
        Calculate stock coverage for one SKU.

        Parameters:
        -----------
        data : StockCoverageInput
            Product, sales history and availability records
        now : date or datetime, optional
            Reference instant; defaults to data.current_date, then the wall clock.
            A date is taken as midnight of that day.

        Returns:
        --------
        StockCoverageResult

        Raises:
        -------
        InvalidConfigurationError, InsufficientDataError
            Invalid input, before any computation
        CalculationError
            Unexpected numeric failure, with the SKU attached
        """
        reference = as_reference_instant(now) or data.current_date or datetime.now()
        config = self.config

        points = preprocess(data, config, reference)
        sku = data.product.sku

        try:
            data_quality = calculate_data_quality(points, config)
            factors = calculate_seasonality_factors(points, config)
            deseasonalized = deseasonalize(points, factors, config)
            trend = analyze(deseasonalized, config)
            forecast = generate_forecast(points, deseasonalized, trend, factors, reference, config)

            _check_finite(sku, {
                'demand_forecast': forecast.demand_forecast,
                'demand_std_dev': forecast.demand_std_dev,
                'trend_factor': trend.trend_factor,
                'current_level': trend.current_level,
            })

            coverage = calculate_coverage(
                data.product.current_stock,
                forecast.demand_forecast,
                forecast.demand_std_dev,
                self.settings.max_coverage_days,
            )
            recommendations = calculate_recommendations(data.product, forecast, config, self.settings)
            confidence = calculate_overall_confidence(data_quality, trend.confidence, len(points))
        except StockCoverageCalculationError:
            raise
        except (ArithmeticError, ValueError) as e:
            raise CalculationError(
                f'Coverage calculation failed: {e}',
                details={'sku': sku},
            ) from e

        logger.debug(
            f"{sku}: demand={forecast.demand_forecast:.2f}/day, "
            f"coverage P50={coverage[Percentile.P50]:.1f}d, trend={trend.trend_factor:.4f}"
        )

        return StockCoverageResult(
            sku=sku,
            coverage_days=coverage[Percentile.P50],
            coverage_days_p90=coverage[Percentile.P90],
            coverage_days_p10=coverage[Percentile.P10],
            demand_forecast=forecast.demand_forecast,
            demand_std_dev=forecast.demand_std_dev,
            adjusted_demand=forecast.adjusted_demand,
            trend_factor=trend.trend_factor,
            seasonality_index=forecast.seasonality_index,
            availability_adjustment=forecast.availability_adjustment,
            confidence=confidence,
            data_quality=data_quality,
            reorder_point=recommendations.reorder_point,
            reorder_quantity=recommendations.reorder_quantity,
            stockout_risk=recommendations.stockout_risk,
            historical_days_used=len(points),
            algorithm=ALGORITHM,
            calculated_at=reference,
            expires_at=reference + timedelta(seconds=config.cache_timeout_seconds),
        )

    def calculate_batch(
        self,
        inputs: Sequence[StockCoverageInput],
        parallel: bool = True,
        on_progress: Optional[Callable[[int, int], None]] = None,
        now: Optional[Union[date, datetime]] = None
    ) -> Tuple[Dict[str, StockCoverageResult], BatchProcessingResult]:
        """
        Calculate coverage for many SKUs.

        Inputs are processed in chunks of config.batch_size. A chunk runs in
        joblib workers when it holds at least settings.parallel_threshold
        SKUs. One SKU failing never aborts the batch. A SKU repeated in the
        batch keeps its first result; each repeat is recorded as a failure.

        Parameters:
        -----------
        inputs : Sequence[StockCoverageInput]
            One input per SKU
        parallel : bool
            Whether to use parallel processing (default: True)
        on_progress : Callable[[int, int], None], optional
            Called with (completed, total) after each chunk
        now : date or datetime, optional
            Shared reference instant for every SKU (default: each input's current_date, then the wall clock)

        Returns:
        --------
        Tuple[Dict[str, StockCoverageResult], BatchProcessingResult]
            Results by SKU, and the batch summary
        """
        reference = as_reference_instant(now)
        total = len(inputs)
        batch_size = self.config.batch_size

        results: Dict[str, StockCoverageResult] = {}
        successful: List[str] = []
        failed: List[str] = []
        errors: Dict[str, str] = {}
        seen: Set[str] = set()

        logger.info(f"Calculating stock coverage for {total} SKUs (batch size {batch_size})")

        with Timer("Stock Coverage Batch") as timer:
            for start in range(0, total, batch_size):
                chunk = inputs[start:start + batch_size]
                use_parallel = (
                    parallel
                    and len(chunk) >= self.settings.parallel_threshold
                    and self.settings.n_jobs != 0
                )

                if use_parallel:
                    outcomes = Parallel(n_jobs=self.settings.n_jobs)(
                        delayed(_calculate_one)(self, data, reference) for data in chunk
                    )
                else:
                    outcomes = [_calculate_one(self, data, reference) for data in chunk]

                for position, (sku, result, error) in enumerate(outcomes, start=start):
                    key = sku or f'<missing product #{position}>'
                    if key in seen:
                        failed.append(key)
                        errors[key] = f"{errors[key]}; {DUPLICATE_SKU_ERROR}" if key in errors else DUPLICATE_SKU_ERROR
                        logger.warning(f"Duplicate SKU {key} at position {position}; keeping the first occurrence")
                        continue
                    seen.add(key)

                    if result is not None:
                        results[key] = result
                        successful.append(key)
                    else:
                        failed.append(key)
                        errors[key] = error
                        logger.warning(f"Failed to calculate coverage for {key}: {error}")

                if on_progress is not None:
                    on_progress(min(start + batch_size, total), total)

        summary = BatchProcessingResult(
            successful=tuple(successful),
            failed=tuple(failed),
            errors=errors,
            total_time_ms=timer.elapsed_ms,
            average_time_per_sku_ms=safe_divide(timer.elapsed_ms, total),
        )

        logger.info(f"Successful: {len(successful)} SKUs, Failed: {len(failed)} SKUs")
        return results, summary


def _calculate_one(
    calculator: StockCoverageCalculator,
    data: StockCoverageInput,
    reference: Optional[datetime]
) -> Tuple[Optional[str], Optional[StockCoverageResult], Optional[str]]:
    """Run one SKU, converting typed failures into an error message."""
    try:
        return data.sku, calculator.calculate(data, now=reference), None
    except StockCoverageCalculationError as e:
        return data.sku, None, str(e)


def calculate_stock_coverage(
    data: StockCoverageInput,
    config: Optional[Any] = None,
    now: Optional[Union[date, datetime]] = None
) -> StockCoverageResult:
    """Functional entry point: calculate coverage for one SKU."""
    return StockCoverageCalculator(config).calculate(data, now=now)
