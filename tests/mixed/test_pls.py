"""
Tests for the PLS / PIRLS inner solves and the Laplace objectives.
"""

import numpy as np
import pytest

from glmmcompare.core.config import DEFAULT_FORMULA
from glmmcompare.core.exceptions import ConvergenceError
from glmmcompare.families import Binomial, resolve_family
from glmmcompare.mixed._deviance import (
    laplace_deviance_fast,
    laplace_deviance_full,
    laplace_loglik,
    laplace_objective,
)
from glmmcompare.mixed._pirls import solve_pirls, solve_pirls_u
from glmmcompare.mixed._pls import solve_pls, solve_pls_u
from glmmcompare.mixed._random_effects import (
    build_lambda, build_z_matrix, parse_random_effects,
)
from glmmcompare.mixed.formula import parse_formula


@pytest.fixture
def problem(derived_frame):
    """Arrays of the default model at a fixed θ."""
    mf = parse_formula(DEFAULT_FORMULA, derived_frame)
    specs = parse_random_effects(mf.groups, mf.random_effects, mf.random_data,
                                 len(mf.y))
    Z = build_z_matrix(specs)
    theta = np.array([0.6, 0.1, 0.4])
    return {
        'X': mf.X, 'Z': Z, 'y': mf.y,
        'wt': derived_frame['tot'].to_numpy(dtype=float),
        'specs': specs, 'theta': theta,
        'Lambda': build_lambda(theta, specs),
        'family': resolve_family('binomial', 'cloglog'),
    }


class _UnboundedDeviance(Binomial):
    """Binomial whose deviance is infinite everywhere."""

    def deviance(self, y, mu, wt):
        return float('inf')


class TestPLS:

    def test_zero_lambda_is_wls(self, rng):
        n, p, q = 50, 3, 4
        X = rng.standard_normal((n, p))
        Z = rng.standard_normal((n, q))
        z = rng.standard_normal(n)
        w = rng.uniform(0.5, 2.0, n)
        result = solve_pls(X, Z, z, np.zeros((q, q)), w)
        W = np.diag(w)
        expected = np.linalg.solve(X.T @ W @ X, X.T @ W @ z)
        np.testing.assert_allclose(result.beta, expected, rtol=1e-10)
        np.testing.assert_allclose(result.u, np.zeros(q), atol=1e-12)

    def test_u_given_beta_matches_joint(self, rng):
        n, p, q = 60, 2, 6
        X = rng.standard_normal((n, p))
        Z = rng.standard_normal((n, q))
        z = rng.standard_normal(n)
        w = rng.uniform(0.5, 2.0, n)
        Lam = np.diag(rng.uniform(0.2, 1.5, q))
        joint = solve_pls(X, Z, z, Lam, w)
        cond = solve_pls_u(Z, z, X @ joint.beta, Lam, w, joint.beta)
        np.testing.assert_allclose(cond.u, joint.u, rtol=1e-8, atol=1e-10)
        np.testing.assert_allclose(cond.L, joint.L)
        assert cond.RX is None

    def test_penalized_normal_equations(self, rng):
        n, p, q = 40, 2, 5
        X = rng.standard_normal((n, p))
        Z = rng.standard_normal((n, q))
        z = rng.standard_normal(n)
        w = np.ones(n)
        Lam = 0.7 * np.eye(q)
        r = solve_pls(X, Z, z, Lam, w)
        ZL = Z @ Lam
        resid = z - X @ r.beta - ZL @ r.u
        np.testing.assert_allclose(X.T @ resid, np.zeros(p), atol=1e-9)
        np.testing.assert_allclose(ZL.T @ resid - r.u, np.zeros(q), atol=1e-9)


class TestPIRLS:

    def test_joint_converges(self, problem):
        d = problem
        r = solve_pirls(d['X'], d['Z'], d['y'], d['Lambda'], d['family'], d['wt'])
        assert r.converged
        assert np.all((r.mu > 0) & (r.mu < 1))
        assert r.deviance > 0

    def test_u_given_beta_reaches_joint_mode(self, problem):
        d = problem
        joint = solve_pirls(d['X'], d['Z'], d['y'], d['Lambda'], d['family'], d['wt'])
        cond = solve_pirls_u(d['X'], d['Z'], d['y'], d['Lambda'], d['family'],
                             d['wt'], joint.pls.beta)
        assert cond.converged
        np.testing.assert_allclose(cond.pls.u, joint.pls.u, atol=1e-4)
        assert cond.penalized_deviance == pytest.approx(joint.penalized_deviance, rel=1e-6)

    def test_u_given_beta_improves_on_zero(self, problem):
        """Step-halving never ends above the penalized deviance at u = 0."""
        d = problem
        beta = np.array([-1.0, -0.5, 0.0, 0.5, 0.0, 1.0])
        cond = solve_pirls_u(d['X'], d['Z'], d['y'], d['Lambda'], d['family'],
                             d['wt'], beta)
        at_zero = d['family'].deviance(d['y'], d['family'].link.linkinv(d['X'] @ beta), d['wt'])
        assert cond.penalized_deviance <= at_zero + 1e-6
        np.testing.assert_array_equal(cond.pls.beta, beta)

    def test_joint_divergence_raises(self, problem):
        d = problem
        with pytest.raises(ConvergenceError, match="PIRLS diverged") as exc:
            solve_pirls(d['X'], d['Z'], d['y'], d['Lambda'],
                        _UnboundedDeviance('cloglog'), d['wt'])
        assert exc.value.reason == 'diverging'
        assert exc.value.iterations == 1

    def test_u_given_beta_divergence_raises(self, problem):
        d = problem
        with pytest.raises(ConvergenceError, match=r"PIRLS\(u\) diverged"):
            solve_pirls_u(d['X'], d['Z'], d['y'], d['Lambda'],
                          _UnboundedDeviance('cloglog'), d['wt'], np.zeros(6))

    def test_max_iter_must_be_positive(self, problem):
        d = problem
        with pytest.raises(ValueError, match="max_iter"):
            solve_pirls(d['X'], d['Z'], d['y'], d['Lambda'], d['family'],
                        d['wt'], max_iter=0)


class TestLaplace:

    def test_objectives_agree_at_joint_mode(self, problem):
        d = problem
        args = (d['X'], d['Z'], d['y'], d['wt'], d['specs'], d['family'])
        fast = laplace_deviance_fast(d['theta'], *args)
        joint = solve_pirls(d['X'], d['Z'], d['y'], d['Lambda'], d['family'], d['wt'])
        phi = np.concatenate([d['theta'], joint.pls.beta])
        full = laplace_deviance_full(phi, *args, n_theta=3)
        assert full == pytest.approx(fast, rel=1e-5)

    def test_loglik_is_minus_half_objective_plus_constant(self, problem):
        """ll = ll_saturated - objective / 2 for binomial data."""
        d = problem
        fam = d['family']
        r = solve_pirls_u(d['X'], d['Z'], d['y'], d['Lambda'], fam, d['wt'],
                          np.zeros(d['X'].shape[1]))
        ll_sat = fam.log_likelihood(d['y'], d['y'], d['wt'], 1.0)
        assert laplace_loglik(r, d['y'], d['wt'], fam) == pytest.approx(
            ll_sat - 0.5 * laplace_objective(r), rel=1e-8)
