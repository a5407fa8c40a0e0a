"""Tests for random effects structure: Z, Λ_θ and θ handling."""

import numpy as np
import pytest

from glmmcompare.core.exceptions import DimensionError, ValidationError
from glmmcompare.mixed._random_effects import (
    build_lambda,
    build_z_matrix,
    is_singular_theta,
    join_theta,
    lower_triangle,
    parse_random_effects,
    split_theta,
    theta_lower_bounds,
    theta_start,
)


@pytest.fixture
def slope_specs():
    """(1 + x | g) with 3 groups of 2 observations."""
    g = np.array(['b', 'a', 'c', 'a', 'b', 'c'])
    x = np.array([0.5, 1.0, -1.0, 2.0, 0.0, 3.0])
    return parse_random_effects({'g': g}, {'g': ['1', 'x']}, {'x': x}, 6), x


class TestParseRandomEffects:

    def test_levels_sorted(self, slope_specs):
        specs, _ = slope_specs
        spec = specs[0]
        np.testing.assert_array_equal(spec.levels, ['a', 'b', 'c'])
        np.testing.assert_array_equal(spec.group_ids, [1, 0, 2, 0, 1, 2])
        assert spec.n_groups == 3
        assert spec.n_terms == 2
        assert spec.theta_size == 3

    def test_z_term_major(self, slope_specs):
        specs, x = slope_specs
        Z = build_z_matrix(specs)
        assert Z.shape == (6, 6)
        # intercept columns 0-2, slope columns 3-5
        np.testing.assert_array_equal(Z[:, :3].sum(axis=1), np.ones(6))
        np.testing.assert_array_equal(Z[:, 3:].sum(axis=1), x)
        assert Z[0, 1] == 1.0 and Z[0, 4] == 0.5

    def test_default_intercept(self):
        specs = parse_random_effects({'g': np.array([0, 0, 1, 1])}, None, None, 4)
        assert specs[0].terms == ('1',)

    def test_missing_slope_data(self):
        with pytest.raises(ValidationError, match="random_data"):
            parse_random_effects({'g': np.array([0, 1, 0])}, {'g': ['1', 'x']}, {}, 3)

    def test_group_length(self):
        with pytest.raises(DimensionError):
            parse_random_effects({'g': np.array([0, 1])}, None, None, 3)


class TestLambda:

    def test_lower_triangle_row_major(self):
        T = lower_triangle(np.array([1.0, 2.0, 3.0]), 2)
        np.testing.assert_array_equal(T, [[1.0, 0.0], [2.0, 3.0]])

    def test_kron_structure(self, slope_specs):
        specs, _ = slope_specs
        Lam = build_lambda(np.array([1.0, 0.5, 2.0]), specs)
        assert Lam.shape == (6, 6)
        np.testing.assert_array_equal(np.diag(Lam), [1, 1, 1, 2, 2, 2])
        # slope row of group j picks up 0.5 × intercept of group j
        np.testing.assert_array_equal(Lam[3:, :3], 0.5 * np.eye(3))
        np.testing.assert_array_equal(Lam[:3, 3:], np.zeros((3, 3)))

    def test_bounds_and_start(self, slope_specs):
        specs, _ = slope_specs
        np.testing.assert_array_equal(theta_lower_bounds(specs), [0.0, -np.inf, 0.0])
        np.testing.assert_array_equal(theta_start(specs), [1.0, 0.0, 1.0])


class TestSingularity:

    def test_zero_slope_variance(self, slope_specs):
        specs, _ = slope_specs
        assert is_singular_theta(np.array([0.8, 0.3, 0.0]), specs)

    def test_interior(self, slope_specs):
        specs, _ = slope_specs
        assert not is_singular_theta(np.array([0.8, 0.3, 0.5]), specs)

    def test_off_diagonal_ignored(self, slope_specs):
        specs, _ = slope_specs
        assert not is_singular_theta(np.array([0.8, 0.0, 0.5]), specs)

    def test_tolerance(self, slope_specs):
        specs, _ = slope_specs
        theta = np.array([0.8, 0.3, 5e-5])
        assert is_singular_theta(theta, specs, tol=1e-4)
        assert not is_singular_theta(theta, specs, tol=1e-5)


class TestSplitJoin:

    def test_split(self, slope_specs):
        specs, _ = slope_specs
        blocks = split_theta(np.array([1.0, 0.2, 0.7]), specs)
        np.testing.assert_array_equal(blocks['g'], [1.0, 0.2, 0.7])

    def test_join_inverts_split(self, slope_specs):
        specs, _ = slope_specs
        theta = np.array([1.0, 0.2, 0.7])
        np.testing.assert_array_equal(join_theta(split_theta(theta, specs), specs), theta)

    def test_join_missing_group(self, slope_specs):
        specs, _ = slope_specs
        with pytest.raises(ValidationError, match="no block"):
            join_theta({'h': [1.0, 0.0, 1.0]}, specs)

    def test_join_wrong_size(self, slope_specs):
        specs, _ = slope_specs
        with pytest.raises(DimensionError):
            join_theta({'g': [1.0, 1.0]}, specs)
