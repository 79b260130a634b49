"""
Configuration management for the stock coverage engine.

Two layers:
- Settings: engine-wide values loaded from environment variables / .env
- StockCoverageConfig: immutable per-calculation parameters, validated on construction
"""
import logging
from typing import Any, Dict, List, Mapping, Optional

from pydantic import BaseModel, ConfigDict, Field, ValidationError
from pydantic_settings import BaseSettings, SettingsConfigDict

from stock_coverage.exceptions import InvalidConfigurationError

logger = logging.getLogger(__name__)


class Settings(BaseSettings):
    """Application settings."""

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
    )

    # Logging
    log_level: str = "INFO"

    # Batch processing
    parallel_threshold: int = 10
    n_jobs: int = -1  # -1 = all CPUs

    # Coverage output
    max_coverage_days: float = 999.0

    # Reorder economics
    ordering_cost_per_order: float = 50.0
    holding_cost_rate: float = 0.25  # Annual, as fraction of unit cost
    order_cycle_days: int = 30
    default_lead_time_days: int = 7


def _load_settings() -> Settings:
    """Load settings from environment."""
    try:
        return Settings()
    except ValidationError as e:
        # Bad environment values should not make the package unimportable
        logger.warning(f"Could not load all settings from environment: {e}")
        return Settings.model_construct()


settings = _load_settings()


class StockCoverageConfig(BaseModel):
    """
    Parameters for a single stock coverage calculation.

    Frozen after construction; out-of-range values are rejected by pydantic.
    """

    model_config = ConfigDict(frozen=True, extra="forbid")

    # Data window
    historical_days: int = Field(90, ge=7, le=365)
    forecast_horizon: int = Field(7, ge=1, le=90)

    # Exponential decay
    half_life: float = Field(14.0, ge=1, le=90)

    # Availability adjustments
    min_availability_factor: float = Field(0.6, ge=0.1, le=1.0)
    outlier_cap_multiplier: float = Field(3.0, ge=1, le=10)

    # Feature flags
    enable_seasonality: bool = True
    enable_trend_correction: bool = True
    enable_promotion_adjustment: bool = True

    # Result metadata / batch driver
    cache_timeout_seconds: int = Field(3600, ge=60, le=86400)
    batch_size: int = Field(100, ge=1, le=1000)

    # Service levels
    service_level: float = Field(0.95, ge=0.5, le=0.999)
    safety_stock_days: float = Field(3.0, ge=0, le=30)


DEFAULT_CONFIG = StockCoverageConfig()


CONFIG_PRESETS: Dict[str, Dict[str, Any]] = {
    # Critical items
    'conservative': {
        'historical_days': 120,
        'forecast_horizon': 14,
        'half_life': 21,
        'min_availability_factor': 0.7,
        'outlier_cap_multiplier': 2.5,
        'service_level': 0.99,
        'safety_stock_days': 7,
    },
    # Normal items
    'balanced': {
        'historical_days': 90,
        'forecast_horizon': 7,
        'half_life': 14,
        'min_availability_factor': 0.6,
        'outlier_cap_multiplier': 3,
        'service_level': 0.95,
        'safety_stock_days': 3,
    },
    # Fast movers
    'aggressive': {
        'historical_days': 60,
        'forecast_horizon': 5,
        'half_life': 7,
        'min_availability_factor': 0.5,
        'outlier_cap_multiplier': 4,
        'service_level': 0.9,
        'safety_stock_days': 1,
    },
    'minimal': {
        'historical_days': 14,
        'forecast_horizon': 3,
        'half_life': 3,
        'min_availability_factor': 0.4,
        'outlier_cap_multiplier': 5,
        'service_level': 0.85,
        'safety_stock_days': 0,
    },
}


def format_config_errors(error: ValidationError) -> List[str]:
    """
    Format pydantic validation errors as 'field: message' strings.

    Parameters:
    -----------
    error : ValidationError
        Error raised while validating a config

    Returns:
    --------
    List[str]
        One readable message per failing field
    """
    messages = []
    for err in error.errors():
        path = '.'.join(str(part) for part in err['loc'])
        messages.append(f"{path}: {err['msg']}")
    return messages


def validate_config(config: Mapping[str, Any]) -> StockCoverageConfig:
    """
    Validate a raw mapping into a StockCoverageConfig.

    Raises:
    -------
    InvalidConfigurationError
        If any value is missing, unknown or out of range
    """
    try:
        return StockCoverageConfig(**dict(config))
    except ValidationError as e:
        errors = format_config_errors(e)
        raise InvalidConfigurationError(
            'Invalid configuration provided',
            details={'errors': errors, 'provided_config': dict(config)},
        ) from e


def merge_and_validate_config(
    partial_config: Optional[Mapping[str, Any]] = None,
    default_config: StockCoverageConfig = DEFAULT_CONFIG
) -> StockCoverageConfig:
    """
    Merge a partial config over defaults and validate the result.

    Parameters:
    -----------
    partial_config : Mapping, optional
        Values overriding the defaults
    default_config : StockCoverageConfig
        Base configuration (default: DEFAULT_CONFIG)

    Returns:
    --------
    StockCoverageConfig
        Validated merged configuration
    """
    merged = default_config.model_dump()
    merged.update(partial_config or {})
    return validate_config(merged)


def get_preset_config(preset: str) -> Dict[str, Any]:
    """Return the partial configuration for a named preset."""
    if preset not in CONFIG_PRESETS:
        raise InvalidConfigurationError(
            f"Unknown config preset: {preset}",
            details={'available_presets': sorted(CONFIG_PRESETS)},
        )
    return dict(CONFIG_PRESETS[preset])
