"""
Data structures for stock coverage calculation.

Input records are pydantic models (validated when built from raw rows).
Computed structures are frozen dataclasses, created once and read-only afterwards.
"""
import datetime as dt
from dataclasses import asdict, dataclass
from decimal import Decimal
from typing import Any, Dict, Optional, Tuple

from pydantic import BaseModel, ConfigDict, Field


# ============================================================================
# Input records
# ============================================================================

class Product(BaseModel):
    """Product master data needed by the engine."""
    model_config = ConfigDict(frozen=True)

    sku: str = Field(..., min_length=1, max_length=100)
    current_stock: float = Field(..., ge=0)
    cost_price: Decimal = Field(Decimal("0"), ge=0)
    minimum_stock: float = Field(0, ge=0)
    maximum_stock: Optional[float] = Field(None, ge=0)
    lead_time_days: Optional[int] = Field(None, ge=1)


class SalesHistory(BaseModel):
    """Units sold on one calendar day."""
    model_config = ConfigDict(frozen=True)

    date: dt.date
    units_sold: int = Field(..., ge=0)
    revenue: Decimal = Decimal("0")
    promotion_flag: bool = False


class StockAvailability(BaseModel):
    """Minutes the SKU was purchasable on one calendar day."""
    model_config = ConfigDict(frozen=True)

    date: dt.date
    minutes_in_stock: int = Field(..., ge=0, le=1440)


class StockCoverageInput(BaseModel):
    """Everything needed to compute coverage for one SKU."""
    model_config = ConfigDict(frozen=True)

    product: Optional[Product] = None
    sales_history: Tuple[SalesHistory, ...] = ()
    stock_availability: Tuple[StockAvailability, ...] = ()
    current_date: Optional[dt.datetime] = None

    @property
    def sku(self) -> Optional[str]:
        return self.product.sku if self.product is not None else None


# ============================================================================
# Computed structures
# ============================================================================

@dataclass(frozen=True)
class ProcessedDataPoint:
    """One calendar day of the cleaned, aligned history."""
    date: dt.date
    day_of_week: int            # 0-6 (Sunday-Saturday)
    original_sales: float       # Raw units sold
    availability_factor: float  # Share of the day in stock (0-1)
    adjusted_demand: float      # Availability/outlier/promotion corrected demand
    weight: float               # Exponential decay weight
    is_promotion: bool
    is_outlier: bool


@dataclass(frozen=True)
class TrendAnalysis:
    """Log-linear trend fit."""
    intercept: float
    slope: float
    r_squared: float
    trend_factor: float   # Daily multiplicative growth (e^slope)
    current_level: float  # Demand extrapolated to today
    confidence: float


@dataclass(frozen=True)
class WeightedAverageResult:
    mean: float
    variance: float
    standard_deviation: float
    sum_weights: float
    effective_samples: float


@dataclass(frozen=True)
class SeasonalityFactors:
    """Multiplicative demand factors by day of week."""
    sunday: float = 1.0
    monday: float = 1.0
    tuesday: float = 1.0
    wednesday: float = 1.0
    thursday: float = 1.0
    friday: float = 1.0
    saturday: float = 1.0

    def for_day(self, day_of_week: int) -> float:
        return self.as_tuple()[day_of_week]

    def as_tuple(self) -> Tuple[float, ...]:
        return (self.sunday, self.monday, self.tuesday, self.wednesday,
                self.thursday, self.friday, self.saturday)


@dataclass(frozen=True)
class DataQualityScore:
    completeness: float         # Share of days with sales
    consistency: float          # 1 - coefficient of variation (floored at 0)
    availability_issues: float  # Share of days with low availability
    outlier_percentage: float   # Share of days flagged as outliers
    overall_score: float


@dataclass(frozen=True)
class StockCoverageResult:
    """Final output of one coverage calculation."""
    sku: str

    # Coverage in days
    coverage_days: float       # P50
    coverage_days_p90: float   # Conservative (high demand)
    coverage_days_p10: float   # Optimistic (low demand)

    # Demand metrics
    demand_forecast: float
    demand_std_dev: float
    adjusted_demand: float

    # Analysis components
    trend_factor: float
    seasonality_index: float
    availability_adjustment: float

    # Quality
    confidence: float
    data_quality: DataQualityScore

    # Recommendations
    reorder_point: int
    reorder_quantity: int
    stockout_risk: float

    # Provenance
    historical_days_used: int
    algorithm: str
    calculated_at: dt.datetime
    expires_at: dt.datetime

    def to_dict(self, flat: bool = False) -> Dict[str, Any]:
        """
        Serialize to a dictionary.

        Parameters:
        -----------
        flat : bool
            If True, inline data quality fields with a 'data_quality_' prefix
            and render timestamps as ISO strings (for tabular reports)
        """
        record = asdict(self)
        if not flat:
            return record

        quality = record.pop('data_quality')
        for key, value in quality.items():
            record[f'data_quality_{key}'] = value
        record['calculated_at'] = self.calculated_at.isoformat()
        record['expires_at'] = self.expires_at.isoformat()
        return record


@dataclass(frozen=True)
class BatchProcessingResult:
    successful: Tuple[str, ...]
    failed: Tuple[str, ...]
    errors: Dict[str, str]
    total_time_ms: float
    average_time_per_sku_ms: float
