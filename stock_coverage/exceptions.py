"""
Typed errors raised by the stock coverage engine.
"""
from enum import Enum
from typing import Any, Dict, Optional


class StockCoverageErrorType(str, Enum):
    """Error categories surfaced to callers."""
    INSUFFICIENT_DATA = "INSUFFICIENT_DATA"
    INVALID_CONFIGURATION = "INVALID_CONFIGURATION"
    CALCULATION_ERROR = "CALCULATION_ERROR"


class StockCoverageCalculationError(Exception):
    """
    Base error for stock coverage calculations.

    Attributes:
    -----------
    error_type : StockCoverageErrorType
        Category of the failure
    details : dict
        Context such as the SKU and the offending values
    """

    error_type = StockCoverageErrorType.CALCULATION_ERROR

    def __init__(self, message: str, details: Optional[Dict[str, Any]] = None):
        super().__init__(message)
        self.message = message
        self.details = details or {}

    @property
    def sku(self) -> Optional[str]:
        return self.details.get('sku')

    def __str__(self) -> str:
        if self.sku:
            return f"[{self.error_type.value}] {self.message} (sku={self.sku})"
        return f"[{self.error_type.value}] {self.message}"


class InsufficientDataError(StockCoverageCalculationError):
    """Sales history too short to compute coverage."""
    error_type = StockCoverageErrorType.INSUFFICIENT_DATA


class InvalidConfigurationError(StockCoverageCalculationError):
    """Missing product reference or out-of-range configuration."""
    error_type = StockCoverageErrorType.INVALID_CONFIGURATION


class CalculationError(StockCoverageCalculationError):
    """Unexpected numeric failure (e.g. NaN propagation)."""
    error_type = StockCoverageErrorType.CALCULATION_ERROR
