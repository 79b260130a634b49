"""
Unit tests for Preprocessing Module
Tests daily alignment, availability correction, stockout imputation,
outlier capping, promotion normalization and data quality scoring
"""
import pytest
import numpy as np
from datetime import date, timedelta
from pathlib import Path
import sys

sys.path.insert(0, str(Path(__file__).parent.parent))

from stock_coverage.config import DEFAULT_CONFIG, merge_and_validate_config
from stock_coverage.exceptions import InsufficientDataError, InvalidConfigurationError
from stock_coverage.preprocessing import (
    MODIFIED_Z_CONSTANT,
    adjust_for_availability,
    build_daily_frame,
    calculate_data_quality,
    detect_outliers,
    normalize_promotions,
    points_to_frame,
    preprocess,
    rolling_median,
    validate_input,
)
from stock_coverage.schemas import SalesHistory, StockCoverageInput


class TestValidateInput:
    """Test input validation"""

    def test_missing_product(self):
        data = StockCoverageInput(product=None)
        with pytest.raises(InvalidConfigurationError):
            validate_input(data)

    def test_empty_sales(self, make_input):
        data = make_input([])
        with pytest.raises(InsufficientDataError) as exc_info:
            validate_input(data)
        assert exc_info.value.sku == 'SKU-001'

    def test_fewer_than_seven_dates(self, make_input):
        data = make_input([5] * 6)
        with pytest.raises(InsufficientDataError) as exc_info:
            validate_input(data)
        assert exc_info.value.details['days_found'] == 6
        assert exc_info.value.details['minimum_required'] == 7

    def test_duplicate_dates_count_once(self, make_input):
        data = make_input([5] * 6)
        duplicated = data.model_copy(update={
            'sales_history': data.sales_history + (data.sales_history[0],)
        })
        with pytest.raises(InsufficientDataError):
            validate_input(duplicated)

    def test_seven_dates_pass(self, make_input):
        validate_input(make_input([0] * 7))


class TestDailyFrame:
    """Test window alignment"""

    def test_window_length_and_fill(self, make_input, reference):
        data = make_input([4] * 10)
        frame = build_daily_frame(data, DEFAULT_CONFIG, reference.date())

        assert len(frame) == 90
        assert frame.index[-1].date() == reference.date()
        assert frame['original_sales'].iloc[-10:].tolist() == [4.0] * 10
        assert frame['original_sales'].iloc[:-10].sum() == 0
        assert (frame['availability_factor'] == 1.0).all()

    def test_records_outside_window_ignored(self, make_input, reference):
        data = make_input([4] * 120)
        frame = build_daily_frame(data, DEFAULT_CONFIG, reference.date())
        assert len(frame) == 90
        assert frame['original_sales'].sum() == 4 * 90

    def test_same_day_sales_summed(self, make_input, reference):
        data = make_input([3] * 7)
        extra = SalesHistory(date=reference.date(), units_sold=2, promotion_flag=True)
        data = data.model_copy(update={'sales_history': data.sales_history + (extra,)})

        frame = build_daily_frame(data, DEFAULT_CONFIG, reference.date())
        assert frame['original_sales'].iloc[-1] == 5
        assert frame['is_promotion'].iloc[-1]

    def test_sunday_is_zero(self, make_input, reference):
        frame = build_daily_frame(make_input([1] * 7), DEFAULT_CONFIG, reference.date())
        # 2024-06-30 is a Sunday
        assert frame['day_of_week'].iloc[-1] == 0
        assert frame['day_of_week'].iloc[-2] == 6

    def test_weights_decay_by_half_life(self, make_input, reference):
        frame = build_daily_frame(make_input([1] * 7), DEFAULT_CONFIG, reference.date())
        weights = frame['weight'].to_numpy()

        assert weights[-1] == pytest.approx(1.0)
        assert weights[-15] == pytest.approx(0.5)
        assert np.all(np.diff(weights) > 0)


class TestAvailabilityAdjustment:
    """Test demand correction for partial availability"""

    def test_scaled_by_availability(self):
        sales = np.array([10.0] * 14 + [8.0] + [10.0] * 14)
        availability = np.array([1.0] * 14 + [0.8] + [1.0] * 14)
        dow = np.arange(29) % 7

        adjusted = adjust_for_availability(sales, availability, dow, DEFAULT_CONFIG)
        assert adjusted[14] == pytest.approx(10.0)
        assert adjusted[0] == pytest.approx(10.0)

    def test_scaled_demand_capped_at_rolling_median(self):
        sales = np.array([10.0] * 14 + [50.0] + [10.0] * 14)
        availability = np.array([1.0] * 14 + [0.7] + [1.0] * 14)
        dow = np.arange(29) % 7

        adjusted = adjust_for_availability(sales, availability, dow, DEFAULT_CONFIG)
        assert adjusted[14] == pytest.approx(30.0)

    def test_severe_stockout_imputed_from_same_weekday(self):
        sales = np.array([10.0, 20.0, 10.0, 10.0, 10.0, 10.0, 10.0] * 4 + [1.0, 10.0])
        availability = np.ones(30)
        availability[29 - 1] = 0.1
        dow = np.arange(30) % 7

        adjusted = adjust_for_availability(sales, availability, dow, DEFAULT_CONFIG)
        # Index 28 shares a weekday with 0, 7, 14, 21 (all 10 units)
        assert adjusted[28] == pytest.approx(10.0)

    def test_imputation_falls_back_to_rolling_median(self):
        sales = np.array([0.0, 12.0, 12.0, 12.0, 12.0, 12.0, 12.0, 12.0])
        availability = np.array([0.1] + [1.0] * 7)
        dow = np.arange(8) % 7

        adjusted = adjust_for_availability(sales, availability, dow, DEFAULT_CONFIG)
        assert adjusted[0] == pytest.approx(12.0)

    def test_rolling_median_uses_upper_middle(self):
        sales = np.array([1.0, 2.0, 3.0, 4.0])
        assert rolling_median(sales, 0) == 3.0

    def test_rolling_median_without_positive_sales(self):
        sales = np.zeros(5)
        assert rolling_median(sales, 2) == 0.0


class TestOutliers:
    """Test modified z-score outlier capping"""

    def test_spike_flagged_and_capped(self):
        demand = np.array([8.0, 10.0, 12.0] * 10 + [100.0])
        capped, flags = detect_outliers(demand)

        assert flags[-1]
        assert flags[:-1].sum() == 0
        assert capped[-1] == pytest.approx(10.0 + 3.5 * 2.0 / MODIFIED_Z_CONSTANT)
        assert demand[-1] == 100.0

    def test_zero_mad_leaves_series_unchanged(self):
        demand = np.array([10.0] * 20 + [40.0])
        capped, flags = detect_outliers(demand)
        assert not flags.any()
        np.testing.assert_array_equal(capped, demand)

    def test_zero_days_never_flagged(self):
        demand = np.array([0.0] * 5 + [8.0, 10.0, 12.0] * 5)
        _, flags = detect_outliers(demand)
        assert not flags[:5].any()


class TestPromotions:
    """Test promotional uplift normalization"""

    def test_uplift_normalized(self):
        demand = np.array([10.0] * 6 + [20.0] * 2)
        promo = np.array([False] * 6 + [True] * 2)
        outliers = np.zeros(8, dtype=bool)

        normalized = normalize_promotions(demand, promo, outliers)
        np.testing.assert_allclose(normalized, [10.0] * 8)

    def test_small_uplift_ignored(self):
        demand = np.array([10.0] * 6 + [11.0] * 2)
        promo = np.array([False] * 6 + [True] * 2)
        outliers = np.zeros(8, dtype=bool)

        normalized = normalize_promotions(demand, promo, outliers)
        np.testing.assert_array_equal(normalized, demand)

    def test_no_promotions(self):
        demand = np.array([10.0] * 8)
        normalized = normalize_promotions(demand, np.zeros(8, dtype=bool), np.zeros(8, dtype=bool))
        np.testing.assert_array_equal(normalized, demand)

    def test_disabled_by_config(self, make_input, reference):
        units = [10] * 28
        promotions = {20, 21, 22}
        for i in promotions:
            units[i] = 20
        data = make_input(units, promotions=promotions)
        config = merge_and_validate_config({'historical_days': 28, 'enable_promotion_adjustment': False})

        points = preprocess(data, config, reference)
        assert points[20].adjusted_demand == pytest.approx(20.0)


class TestPreprocess:
    """Test the full preprocessing pipeline"""

    def test_constant_series(self, make_input, reference):
        points = preprocess(make_input([10] * 90), DEFAULT_CONFIG, reference)

        assert len(points) == 90
        assert points[-1].date == reference.date()
        assert all(p.adjusted_demand == pytest.approx(10.0) for p in points)
        assert not any(p.is_outlier for p in points)

    def test_accepts_date_reference(self, make_input, reference):
        by_datetime = preprocess(make_input([10] * 30), DEFAULT_CONFIG, reference)
        by_date = preprocess(make_input([10] * 30), DEFAULT_CONFIG, reference.date())
        assert by_datetime == by_date

    def test_availability_factor_bounded(self, make_input, reference):
        availability = {i: (i * 97) % 1441 for i in range(30)}
        points = preprocess(make_input([10] * 30, availability=availability), DEFAULT_CONFIG, reference)
        assert all(0.0 <= p.availability_factor <= 1.0 for p in points)
        assert all(p.adjusted_demand >= 0 for p in points)

    def test_single_stockout_day_imputed(self, make_input, reference):
        units = [10] * 90
        units[70] = 1
        data = make_input(units, availability={70: 144})

        points = preprocess(data, DEFAULT_CONFIG, reference)
        assert points[70].availability_factor == pytest.approx(0.1)
        assert points[70].original_sales == 1
        assert points[70].adjusted_demand == pytest.approx(10.0)

    def test_promotions_normalized(self, make_input, reference):
        units = [10] * 90
        promotions = {80, 81, 82}
        for i in promotions:
            units[i] = 20
        points = preprocess(make_input(units, promotions=promotions), DEFAULT_CONFIG, reference)

        assert points[80].is_promotion
        assert points[80].adjusted_demand < 20.0


class TestDataQuality:
    """Test data quality scoring"""

    def test_perfect_series(self, make_input, reference):
        points = preprocess(make_input([10] * 90), DEFAULT_CONFIG, reference)
        quality = calculate_data_quality(points, DEFAULT_CONFIG)

        assert quality.completeness == pytest.approx(1.0)
        assert quality.consistency == pytest.approx(1.0)
        assert quality.availability_issues == 0
        assert quality.outlier_percentage == 0
        assert quality.overall_score == pytest.approx(1.0)

    def test_all_zero_series(self, make_input, reference):
        points = preprocess(make_input([0] * 7), DEFAULT_CONFIG, reference)
        quality = calculate_data_quality(points, DEFAULT_CONFIG)

        assert quality.completeness == 0
        assert quality.consistency == 0
        assert quality.overall_score == pytest.approx(0.4)

    def test_sparse_history_lowers_completeness(self, make_input, reference):
        points = preprocess(make_input([10] * 45), DEFAULT_CONFIG, reference)
        quality = calculate_data_quality(points, DEFAULT_CONFIG)
        assert quality.completeness == pytest.approx(0.5)
        assert 0 <= quality.overall_score <= 1


class TestPointsToFrame:
    def test_indexed_by_date(self, make_input, reference):
        points = preprocess(make_input([10] * 14), DEFAULT_CONFIG, reference)
        frame = points_to_frame(points)

        assert len(frame) == 90
        assert frame.index[-1] == reference.date()
        assert 'adjusted_demand' in frame.columns
