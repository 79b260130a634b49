"""
Shared fixtures: a fixed reference instant and builders for input records.
"""
import pytest
from datetime import date, datetime, timedelta
from pathlib import Path
import sys

sys.path.insert(0, str(Path(__file__).parent.parent))

from stock_coverage.schemas import (
    Product,
    ProcessedDataPoint,
    SalesHistory,
    StockAvailability,
    StockCoverageInput,
)
from stock_coverage.utils import day_of_week

# A Sunday
REFERENCE = datetime(2024, 6, 30, 12, 0)


@pytest.fixture
def reference():
    return REFERENCE


@pytest.fixture
def make_input():
    """
    Build a StockCoverageInput from daily unit values, oldest first,
    with the last value falling on the reference date.
    """
    def _make(units, sku='SKU-001', current_stock=100, cost_price='10.00',
              availability=None, promotions=(), end=REFERENCE.date(), **product_fields):
        start = end - timedelta(days=len(units) - 1)
        sales = tuple(
            SalesHistory(
                date=start + timedelta(days=i),
                units_sold=value,
                promotion_flag=i in promotions,
            )
            for i, value in enumerate(units)
        )
        minutes = ()
        if availability:
            minutes = tuple(
                StockAvailability(date=start + timedelta(days=i), minutes_in_stock=value)
                for i, value in availability.items()
            )
        product = Product(sku=sku, current_stock=current_stock, cost_price=cost_price, **product_fields)
        return StockCoverageInput(product=product, sales_history=sales, stock_availability=minutes)

    return _make


@pytest.fixture
def make_points():
    """Build ProcessedDataPoints with unit weights from adjusted demand values."""
    def _make(values, end=date(2024, 6, 30), weight=1.0, **overrides):
        start = end - timedelta(days=len(values) - 1)
        points = []
        for i, value in enumerate(values):
            day = start + timedelta(days=i)
            fields = dict(
                date=day,
                day_of_week=day_of_week(day),
                original_sales=float(value),
                availability_factor=1.0,
                adjusted_demand=float(value),
                weight=weight,
                is_promotion=False,
                is_outlier=False,
            )
            fields.update(overrides)
            points.append(ProcessedDataPoint(**fields))
        return tuple(points)

    return _make
