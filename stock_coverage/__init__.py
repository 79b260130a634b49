"""
Stock Coverage Engine
Availability-aware days-of-cover forecasting with reorder recommendations.
"""

__version__ = "1.0.0"

from stock_coverage.calculator import StockCoverageCalculator, calculate_stock_coverage
from stock_coverage.config import CONFIG_PRESETS, DEFAULT_CONFIG, StockCoverageConfig, settings
from stock_coverage.exceptions import (
    CalculationError,
    InsufficientDataError,
    InvalidConfigurationError,
    StockCoverageCalculationError,
)
from stock_coverage.schemas import (
    Product,
    SalesHistory,
    StockAvailability,
    StockCoverageInput,
    StockCoverageResult,
)

__all__ = [
    "StockCoverageCalculator",
    "calculate_stock_coverage",
    "StockCoverageConfig",
    "DEFAULT_CONFIG",
    "CONFIG_PRESETS",
    "settings",
    "StockCoverageCalculationError",
    "InsufficientDataError",
    "InvalidConfigurationError",
    "CalculationError",
    "Product",
    "SalesHistory",
    "StockAvailability",
    "StockCoverageInput",
    "StockCoverageResult",
]
