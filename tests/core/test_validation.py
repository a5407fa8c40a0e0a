"""
Tests for input validation utilities.
"""

import numpy as np
import pytest

from glmmcompare.core.exceptions import DimensionError, ValidationError
from glmmcompare.core.validation import (
    check_1d,
    check_2d,
    check_array,
    check_column_rank,
    check_consistent_length,
    check_finite,
    check_in_range,
    check_min_samples,
)


class TestCheckArray:
    """check_array converts to ndarray and rejects non-numeric data."""

    def test_list_to_float_array(self):
        result = check_array([1, 2, 3], "X")
        assert np.issubdtype(result.dtype, np.floating)
        np.testing.assert_array_equal(result, [1.0, 2.0, 3.0])

    def test_rejects_mixed_types(self):
        with pytest.raises(ValidationError, match="object dtype"):
            check_array([None, 1, 2.0], "X")

    def test_rejects_strings(self):
        with pytest.raises(ValidationError, match="non-numeric dtype"):
            check_array(["a", "b", "c"], "X")

    def test_bool_promoted(self):
        result = check_array([True, False], "x")
        np.testing.assert_array_equal(result, [1.0, 0.0])


class TestCheckFinite:

    def test_finite_passes(self):
        check_finite(np.array([1.0, 2.0]), "y")

    def test_nan_and_inf_counted(self):
        with pytest.raises(ValidationError, match="1 NaN, 1 Inf"):
            check_finite(np.array([1.0, np.nan, np.inf]), "y")


class TestDimensions:

    def test_check_1d(self):
        check_1d(np.zeros(3), "y")
        with pytest.raises(DimensionError, match="expected 1D"):
            check_1d(np.zeros((3, 1)), "y")

    def test_check_2d(self):
        check_2d(np.zeros((3, 2)), "X")
        with pytest.raises(DimensionError, match="expected 2D"):
            check_2d(np.zeros(3), "X")

    def test_consistent_length(self):
        check_consistent_length(np.zeros(3), np.zeros((3, 2)), names=("y", "X"))
        with pytest.raises(DimensionError, match="y=3, X=4"):
            check_consistent_length(np.zeros(3), np.zeros((4, 2)), names=("y", "X"))

    def test_names_must_match(self):
        with pytest.raises(ValueError):
            check_consistent_length(np.zeros(3), names=("y", "X"))


class TestCheckMinSamples:

    def test_too_few(self):
        with pytest.raises(ValidationError, match="at least 5"):
            check_min_samples(np.zeros(3), 5, "y")


class TestCheckInRange:

    def test_inside_passes(self):
        check_in_range(np.array([0.0, 0.5, 1.0]), 0.0, 1.0, "prop")

    def test_reports_count_and_first_index(self):
        with pytest.raises(ValidationError, match=r"prop: 2 value\(s\) outside \[0, 1\] \(first at index 1: -0.5\)"):
            check_in_range(np.array([0.2, -0.5, 3.0]), 0.0, 1.0, "prop")

    def test_open_upper_bound(self):
        check_in_range(np.array([0.0, 1e9]), 0.0, None, "weights")
        with pytest.raises(ValidationError, match=r"outside \[0, inf\]"):
            check_in_range(np.array([-1.0]), 0.0, None, "weights")


class TestCheckColumnRank:

    def test_full_rank(self, rng):
        check_column_rank(rng.standard_normal((20, 3)), "X")

    def test_intercept_plus_all_dummies(self):
        """An intercept with a full set of treatment dummies is not identifiable."""
        trt = np.repeat([0, 1, 2], 4)
        X = np.column_stack([np.ones(12)] + [(trt == k).astype(float) for k in range(3)])
        with pytest.raises(ValidationError, match="rank-deficient"):
            check_column_rank(X, "X")
