"""Tests for the shared statistics helpers."""

from __future__ import annotations

import numpy as np
import pytest

from vitalcore.domains.health.domain_logic.stats import (
    DegenerateRegressionError,
    EmptyInputError,
    clamp_score,
    linear_regression,
    mean,
    pearson,
    weighted_mean,
)


class TestMean:
    def test_mean(self):
        assert mean([1.0, 2.0, 3.0, 6.0]) == 3.0

    def test_empty_raises(self):
        with pytest.raises(EmptyInputError):
            mean([])


class TestWeightedMean:
    def test_weights_renormalize_over_present_items(self):
        # 100 at weight 30 and 40 at weight 20 -> (3000 + 800) / 50
        assert weighted_mean([(100, 30), (40, 20)]) == pytest.approx(76.0)

    def test_empty_raises(self):
        with pytest.raises(EmptyInputError):
            weighted_mean([])

    def test_zero_weight_raises(self):
        with pytest.raises(EmptyInputError, match="zero total weight"):
            weighted_mean([(10, 0), (20, 0)])


class TestPearson:
    def test_identity_is_one(self):
        xs = [3.0, 1.0, 4.0, 1.5, 9.0, 2.6]
        assert pearson(xs, xs) == pytest.approx(1.0)

    def test_symmetric(self):
        xs = [1.0, 2.0, 3.5, 4.0, 7.0]
        ys = [2.0, 1.0, 4.0, 3.0, 8.0]
        assert pearson(xs, ys) == pytest.approx(pearson(ys, xs))

    def test_inverse_is_minus_one(self):
        assert pearson([1, 2, 3, 4], [8, 6, 4, 2]) == pytest.approx(-1.0)

    def test_constant_series_is_zero(self):
        assert pearson([5.0, 5.0, 5.0], [1.0, 2.0, 3.0]) == 0.0
        assert pearson([1.0, 2.0, 3.0], [7.0, 7.0, 7.0]) == 0.0

    def test_within_bounds(self):
        r = pearson([1, 2, 3, 4, 5], [2, 4, 5, 4, 5])
        assert -1.0 <= r <= 1.0

    def test_length_mismatch_raises(self):
        with pytest.raises(ValueError, match="equal lengths"):
            pearson([1, 2, 3], [1, 2])

    def test_single_point_raises(self):
        with pytest.raises(ValueError, match="at least 2"):
            pearson([1], [1])

    def test_repeated_float_series_is_zero(self):
        bmi = [70 / 1.75 ** 2] * 21
        pulse = [60.0 + (day % 5) for day in range(21)]
        assert pearson(bmi, pulse) == 0.0

    def test_agrees_with_numpy(self):
        xs = [118.0, 121.0, 125.0, 119.0, 131.0, 127.0, 135.0]
        ys = [92.0, 95.0, 101.0, 90.0, 110.0, 99.0, 112.0]
        assert pearson(xs, ys) == pytest.approx(np.corrcoef(xs, ys)[0, 1])


class TestLinearRegression:
    def test_exact_line(self):
        slope, intercept = linear_regression([0, 1, 2, 3], [1, 3, 5, 7])
        assert slope == pytest.approx(2.0)
        assert intercept == pytest.approx(1.0)

    def test_flat_line(self):
        slope, intercept = linear_regression([0, 5, 10], [4, 4, 4])
        assert slope == pytest.approx(0.0)
        assert intercept == pytest.approx(4.0)

    def test_identical_xs_raise(self):
        with pytest.raises(DegenerateRegressionError):
            linear_regression([3, 3, 3], [1, 2, 3])

    def test_empty_raises(self):
        with pytest.raises(EmptyInputError):
            linear_regression([], [])


class TestClampScore:
    @pytest.mark.parametrize(
        "value, expected",
        [(-12.0, 0), (0, 0), (55.9, 55), (100.0, 100), (140.2, 100)],
    )
    def test_clamps_and_truncates(self, value, expected):
        assert clamp_score(value) == expected
