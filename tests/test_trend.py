"""
Unit tests for Trend Module
Tests weighted regression, trend analysis, projection and change points
"""
import math
import pytest
import numpy as np
from pathlib import Path
import sys

sys.path.insert(0, str(Path(__file__).parent.parent))

from stock_coverage.config import DEFAULT_CONFIG, merge_and_validate_config
from stock_coverage.schemas import TrendAnalysis
from stock_coverage.trend import (
    LOG_EPSILON,
    analyze,
    calculate_trend_confidence,
    detect_change_points,
    polynomial_trend,
    project_trend,
    weighted_linear_regression,
)


def exponential_series(level, growth, n):
    """Demand whose log(demand + epsilon) is exactly linear in x = 1..n."""
    return [math.exp(math.log(level) + math.log(growth) * x) - LOG_EPSILON for x in range(1, n + 1)]


class TestWeightedRegression:
    """Test closed-form weighted least squares"""

    def test_exact_line(self):
        x = np.arange(1, 11, dtype=float)
        fit = weighted_linear_regression(x, 2 + 3 * x, np.ones(10))

        assert fit.intercept == pytest.approx(2.0)
        assert fit.slope == pytest.approx(3.0)
        assert fit.r_squared == pytest.approx(1.0)

    def test_flat_series_has_zero_r_squared(self):
        x = np.arange(1, 11, dtype=float)
        fit = weighted_linear_regression(x, np.full(10, 5.0), np.ones(10))

        assert fit.slope == pytest.approx(0.0)
        assert fit.intercept == pytest.approx(5.0)
        assert fit.r_squared == 0.0

    def test_degenerate_x(self):
        fit = weighted_linear_regression(np.full(5, 3.0), np.arange(5, dtype=float), np.ones(5))
        assert fit.slope == 0.0
        assert fit.intercept == pytest.approx(2.0)
        assert fit.r_squared == 0.0

    def test_single_point(self):
        fit = weighted_linear_regression(np.array([1.0]), np.array([4.0]), np.array([1.0]))
        assert fit == (4.0, 0.0, 0.0)

    def test_weights_pull_fit(self):
        x = np.arange(1, 5, dtype=float)
        y = np.array([0.0, 0.0, 10.0, 10.0])
        unweighted = weighted_linear_regression(x, y, np.ones(4))
        recent_heavy = weighted_linear_regression(x, y, np.array([0.01, 0.01, 1.0, 1.0]))
        assert recent_heavy.r_squared <= 1.0
        assert unweighted.slope != pytest.approx(recent_heavy.slope)


class TestTrendConfidence:
    def test_bounds(self):
        assert calculate_trend_confidence(1.0, 14, 14) == pytest.approx(1.0)
        assert calculate_trend_confidence(0.0, 0, 0) == 0.0

    def test_few_points_capped(self):
        # Perfect fit on 7 of 90 days
        confidence = calculate_trend_confidence(1.0, 7, 90)
        assert confidence == pytest.approx(0.5 + 0.3 * 7 / 90 + 0.2 * 0.5)
        assert confidence < 1.0


class TestAnalyze:
    """Test log-linear trend analysis"""

    def test_flat_demand(self, make_points):
        trend = analyze(make_points([10] * 30), DEFAULT_CONFIG)

        assert trend.trend_factor == pytest.approx(1.0)
        assert trend.current_level == pytest.approx(10.0)
        assert trend.r_squared == 0.0
        assert trend.confidence == pytest.approx(0.5)

    def test_exponential_growth(self, make_points):
        values = exponential_series(10.0, 1.02, 30)
        trend = analyze(make_points(values), DEFAULT_CONFIG)

        assert trend.trend_factor == pytest.approx(1.02)
        assert trend.r_squared == pytest.approx(1.0)
        assert trend.current_level == pytest.approx(values[-1])
        assert trend.confidence == pytest.approx(1.0)

    def test_decline(self, make_points):
        trend = analyze(make_points(exponential_series(50.0, 0.97, 30)), DEFAULT_CONFIG)
        assert trend.trend_factor < 1.0

    def test_too_few_positive_points(self, make_points):
        trend = analyze(make_points([0] * 24 + [4] * 6), DEFAULT_CONFIG)

        assert trend.trend_factor == 1.0
        assert trend.confidence == 0.5
        assert trend.current_level == pytest.approx(4.0)

    def test_all_zero(self, make_points):
        trend = analyze(make_points([0] * 7), DEFAULT_CONFIG)
        assert trend.current_level == 0.0
        assert trend.confidence == 0.5

    def test_disabled(self, make_points):
        config = merge_and_validate_config({'enable_trend_correction': False})
        trend = analyze(make_points(exponential_series(10.0, 1.05, 30)), config)
        assert trend.trend_factor == 1.0
        assert trend.slope == 0.0

    def test_zero_days_skipped(self, make_points):
        values = [10, 0] * 15
        trend = analyze(make_points(values), DEFAULT_CONFIG)
        assert trend.trend_factor == pytest.approx(1.0)
        # 15 of 30 points valid
        assert trend.confidence == pytest.approx(0.3 * 0.5 + 0.2)


class TestProjection:
    """Test dampened projection"""

    def _trend(self, level, factor):
        return TrendAnalysis(
            intercept=0.0, slope=math.log(factor), r_squared=1.0,
            trend_factor=factor, current_level=level, confidence=1.0,
        )

    def test_flat(self):
        projection = project_trend(self._trend(10.0, 1.0), 14)
        np.testing.assert_allclose(projection, np.full(14, 10.0))

    def test_first_week_compounds(self):
        projection = project_trend(self._trend(10.0, 1.1), 7)
        expected = [10.0 * 1.1 ** day for day in range(1, 8)]
        np.testing.assert_allclose(projection, expected)

    def test_dampened_after_first_week(self):
        projection = project_trend(self._trend(10.0, 1.1), 30)
        assert projection[7] < 10.0 * 1.1 ** 8
        dampening = 1 / (1 + 0.01 * 8)
        assert projection[7] == pytest.approx(10.0 * (1 + 0.1 * dampening) ** 8)

    def test_non_negative(self):
        projection = project_trend(self._trend(0.0, 0.5), 10)
        assert (projection >= 0).all()


class TestChangePoints:
    """Test trend change point detection"""

    def test_too_short(self, make_points):
        assert detect_change_points(make_points([10] * 27), DEFAULT_CONFIG) == []

    def test_flat_series(self, make_points):
        assert detect_change_points(make_points([10] * 60), DEFAULT_CONFIG) == []

    def test_growth_onset(self, make_points):
        values = [10.0] * 28 + [10.0 * 1.5 ** k for k in range(1, 15)]
        change_points = detect_change_points(make_points(values), DEFAULT_CONFIG)

        assert change_points
        assert all(14 <= i < 28 for i in change_points)


class TestPolynomialTrend:
    def test_quadratic(self, make_points):
        values = [1 + 0.5 * x ** 2 for x in range(1, 21)]
        fit = polynomial_trend(make_points(values), degree=2)

        assert fit.coefficients == pytest.approx((0.5, 0.0, 1.0), abs=1e-6)
        assert fit.r_squared == pytest.approx(1.0)

    def test_not_enough_points(self, make_points):
        fit = polynomial_trend(make_points([5, 0]), degree=2)
        assert fit.coefficients == (0.0, 0.0, 0.0)
        assert fit.r_squared == 0.0
