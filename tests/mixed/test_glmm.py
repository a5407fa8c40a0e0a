"""Tests for GLMM fitting: fast (nAGQ=0) and full Laplace (nAGQ=1) modes."""

import warnings

import numpy as np
import pytest

from glmmcompare.core.compute.tolerances import FAST_VS_FULL, REFIT, loglik_close
from glmmcompare.core.config import DEFAULT_FORMULA
from glmmcompare.core.exceptions import DimensionError, ValidationError
from glmmcompare.mixed import glmer, glmm, parse_formula

NAMES = ('trtA', 'trtB', 'trtC', 'trtA:cov', 'trtB:cov', 'trtC:cov')


class TestFastFit:
    """nAGQ=0: θ optimized, β from PIRLS."""

    def test_converged(self, fast_fit):
        assert fast_fit.converged
        assert fast_fit.nagq == 0
        assert fast_fit.optimizer == 'L-BFGS-B'

    def test_coefficient_names(self, fast_fit):
        assert fast_fit.coefficient_names == NAMES
        assert list(fast_fit.fixef) == list(NAMES)

    def test_theta(self, fast_fit):
        assert fast_fit.theta.shape == (3,)
        np.testing.assert_array_equal(fast_fit.theta_blocks['rep'], fast_fit.theta)
        assert fast_fit.theta[0] >= 0 and fast_fit.theta[2] >= 0

    def test_fitted_values_in_range(self, fast_fit):
        assert np.all((fast_fit.fitted_values > 0) & (fast_fit.fitted_values < 1))

    def test_wald_z(self, fast_fit):
        np.testing.assert_allclose(
            fast_fit.z_values, fast_fit.coefficients / fast_fit.se, rtol=1e-12
        )
        assert np.all(fast_fit.se > 0)
        assert np.all((fast_fit.p_values >= 0) & (fast_fit.p_values <= 1))

    def test_elapsed(self, fast_fit):
        assert fast_fit.elapsed > 0
        assert 'optimization' in fast_fit.timing

    def test_summary(self, fast_fit):
        s = fast_fit.summary()
        assert 'cloglog' in s
        assert 'nAGQ = 0' in s
        assert DEFAULT_FORMULA in s
        assert 'trtA:cov' in s

    def test_info(self, fast_fit):
        assert fast_fit.info['nAGQ'] == 0
        assert fast_fit.info['formula'] == DEFAULT_FORMULA
        assert fast_fit.info['link'] == 'cloglog'


class TestFullFit:
    """nAGQ=1: θ and β optimized jointly on the Laplace deviance."""

    def test_mode(self, full_fit):
        assert full_fit.nagq == 1
        assert 'Laplace' in full_fit.summary()

    def test_fast_not_above_full(self, fast_fit, full_fit):
        assert fast_fit.log_likelihood <= full_fit.log_likelihood + FAST_VS_FULL.atol

    def test_treatment_ordering(self, full_fit):
        """True intercepts: A = -1.0, B = -0.4, C = 0.2 on the cloglog scale."""
        b = full_fit.fixef
        assert b['trtA'] < b['trtB'] < b['trtC']

    def test_information_criteria(self, full_fit):
        k = 6 + 3
        assert full_fit.aic == pytest.approx(-2 * full_fit.log_likelihood + 2 * k)
        assert full_fit.bic == pytest.approx(
            -2 * full_fit.log_likelihood + np.log(144) * k)

    def test_var_components(self, full_fit):
        vcs = full_fit.var_components
        assert [vc.name for vc in vcs] == ['(Intercept)', 'cov']
        assert all(vc.group == 'rep' for vc in vcs)
        T = np.array([[full_fit.theta[0], 0.0], [full_fit.theta[1], full_fit.theta[2]]])
        np.testing.assert_allclose([vc.variance for vc in vcs], np.diag(T @ T.T))
        assert vcs[0].corr is None

    def test_ranef_shape(self, full_fit):
        assert full_fit.ranef['rep'].shape == (6, 2)

    def test_singular_tolerance(self, full_fit):
        assert not full_fit.is_singular(tol=0.0)
        assert full_fit.is_singular(tol=1e6)

    def test_summary_row_names_left_aligned(self, full_fit):
        lines = full_fit.summary().splitlines()
        assert any(line.startswith(f" {'trtA':<15s} ") for line in lines)
        assert any(line.startswith(f" {'trtC:cov':<15s} ") for line in lines)

    def test_repr(self, full_fit):
        assert 'nAGQ=1' in repr(full_fit)


class TestRefit:
    """Restarting at a converged optimum reproduces it."""

    def test_from_theta_and_beta(self, derived_frame, full_fit):
        refit = glmer(DEFAULT_FORMULA, derived_frame, link='cloglog', weights='tot',
                      theta0=full_fit.theta_blocks, beta0=full_fit.fixef)
        assert refit.info['started_from'] == 'theta0+beta0'
        assert refit.log_likelihood >= full_fit.log_likelihood - 1e-9
        assert loglik_close(refit.log_likelihood, full_fit.log_likelihood, REFIT)

    def test_from_flat_arrays(self, derived_frame, full_fit):
        refit = glmer(DEFAULT_FORMULA, derived_frame, link='cloglog', weights='tot',
                      theta0=full_fit.theta, beta0=full_fit.coefficients)
        assert loglik_close(refit.log_likelihood, full_fit.log_likelihood, REFIT)

    def test_from_theta_only(self, derived_frame, full_fit):
        refit = glmer(DEFAULT_FORMULA, derived_frame, link='cloglog', weights='tot',
                      theta0=full_fit.theta_blocks)
        assert refit.info['started_from'] == 'theta0'
        assert refit.log_likelihood == pytest.approx(full_fit.log_likelihood, abs=1e-2)


class TestArrayInterface:

    def test_glmm_matches_glmer(self, derived_frame, fast_fit):
        mf = parse_formula(DEFAULT_FORMULA, derived_frame)
        result = glmm(
            mf.y, mf.X, mf.groups,
            family='binomial', link='cloglog',
            weights=derived_frame['tot'].to_numpy(),
            random_effects=mf.random_effects,
            random_data=mf.random_data,
            coefficient_names=mf.coefficient_names,
            fast=True,
        )
        assert result.log_likelihood == pytest.approx(fast_fit.log_likelihood, rel=1e-10)
        np.testing.assert_allclose(result.coefficients, fast_fit.coefficients, rtol=1e-8)

    def test_default_names(self, derived_frame):
        mf = parse_formula('prop ~ cov + (1 | rep)', derived_frame)
        result = glmm(mf.y, mf.X, mf.groups, link='cloglog',
                      weights=derived_frame['tot'].to_numpy(), fast=True)
        assert result.coefficient_names == ('(Intercept)', 'X1')

    def test_formula_recorded_only_when_given(self, derived_frame):
        mf = parse_formula('prop ~ cov + (1 | rep)', derived_frame)
        kwargs = dict(link='cloglog', weights=derived_frame['tot'].to_numpy(), fast=True)
        bare = glmm(mf.y, mf.X, mf.groups, **kwargs)
        assert 'formula' not in bare.info
        assert 'Formula:' not in bare.summary()

        named = glmm(mf.y, mf.X, mf.groups, formula='prop ~ cov + (1 | rep)', **kwargs)
        assert named.info['formula'] == 'prop ~ cov + (1 | rep)'
        assert 'Formula: prop ~ cov + (1 | rep)' in named.summary()


class TestInputErrors:

    def test_unknown_optimizer(self, derived_frame):
        with pytest.raises(ValueError, match="Unknown optimizer"):
            glmer(DEFAULT_FORMULA, derived_frame, weights='tot', optimizer='BFGS')

    def test_unknown_weights_column(self, derived_frame):
        with pytest.raises(ValidationError, match="Weights column"):
            glmer(DEFAULT_FORMULA, derived_frame, weights='trials')

    def test_theta0_length(self, derived_frame):
        with pytest.raises(DimensionError, match="theta0"):
            glmer(DEFAULT_FORMULA, derived_frame, weights='tot', theta0=[1.0, 0.0])

    def test_beta0_missing_name(self, derived_frame):
        with pytest.raises(ValidationError, match="beta0"):
            glmer(DEFAULT_FORMULA, derived_frame, weights='tot',
                  theta0={'rep': [1.0, 0.0, 1.0]}, beta0={'trtA': 0.0})

    def test_negative_weights(self, derived_frame):
        mf = parse_formula(DEFAULT_FORMULA, derived_frame)
        wt = -derived_frame['tot'].to_numpy(dtype=float)
        with pytest.raises(ValidationError, match=r"weights: .* outside \[0, inf\]"):
            glmm(mf.y, mf.X, mf.groups, link='cloglog', weights=wt)

    def test_counts_as_binomial_response(self, derived_frame):
        """The response must be a proportion; counts go in as weights."""
        with pytest.raises(ValidationError, match="binomial proportions"):
            glmer('fail ~ 0 + trt + trt:cov + (1 + cov | rep)', derived_frame,
                  link='cloglog', weights='tot')

    def test_weights_length(self, derived_frame):
        mf = parse_formula(DEFAULT_FORMULA, derived_frame)
        with pytest.raises(DimensionError, match="y=144, weights=3"):
            glmm(mf.y, mf.X, mf.groups, link='cloglog', weights=[1.0, 2.0, 3.0])

    def test_slope_data_must_be_a_vector(self, derived_frame):
        mf = parse_formula(DEFAULT_FORMULA, derived_frame)
        slope = np.column_stack([mf.random_data['cov']] * 2)
        with pytest.raises(DimensionError, match="expected 1D"):
            glmm(mf.y, mf.X, mf.groups, link='cloglog',
                 weights=derived_frame['tot'].to_numpy(),
                 random_effects=mf.random_effects, random_data={'cov': slope})


class TestOptimizers:

    def test_powell_fast(self, derived_frame, fast_fit):
        result = glmer(DEFAULT_FORMULA, derived_frame, link='cloglog', weights='tot',
                       fast=True, optimizer='Powell')
        assert result.optimizer == 'Powell'
        assert result.log_likelihood == pytest.approx(fast_fit.log_likelihood, abs=0.05)

    def test_nelder_mead_fast(self, derived_frame, fast_fit):
        result = glmer(DEFAULT_FORMULA, derived_frame, link='cloglog', weights='tot',
                       fast=True, optimizer='Nelder-Mead', max_iter=2000)
        assert result.log_likelihood == pytest.approx(fast_fit.log_likelihood, abs=0.05)


class TestWarnings:

    def test_non_convergence(self, derived_frame):
        with pytest.warns(RuntimeWarning, match="did not converge"):
            result = glmer(DEFAULT_FORMULA, derived_frame, link='cloglog',
                           weights='tot', fast=True, max_iter=1)
        assert not result.converged
        assert any('did not converge' in w for w in result.warnings)
        assert 'WARNING: Model did not converge' in result.summary()

    def test_singular_fit(self, identical_groups):
        with pytest.warns(UserWarning, match="boundary \\(singular\\) fit"):
            result = glmer('prop ~ 0 + trt + (1 | rep)', identical_groups,
                           link='cloglog', weights='tot', fast=True)
        assert result.is_singular()
        assert result.theta[0] < 1e-4
        assert any('singular' in w for w in result.warnings)
        assert 'boundary (singular) fit' in result.summary()

    def test_singular_fit_kept(self, identical_groups):
        """A singular fit is reported, not corrected."""
        with warnings.catch_warnings():
            warnings.simplefilter("ignore")
            result = glmer('prop ~ 0 + trt + (1 | rep)', identical_groups,
                           link='cloglog', weights='tot', fast=False)
        assert result.is_singular()
        assert result.var_components[0].variance < 1e-8
