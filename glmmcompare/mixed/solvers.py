"""
Solver dispatch for the GLMM engine.

Public API:
    glmm()   — fit a GLMM from arrays (y, X, groups)
    glmer()  — fit a GLMM from an lme4-style formula and a data frame

Two optimizer modes are available:
    fast  (nAGQ=0)  θ is optimized; β and u come jointly from PIRLS.
    full  (nAGQ=1)  a fast fit, then θ and β are optimized jointly on the
                    Laplace deviance with u from PIRLS given β.
"""

from __future__ import annotations

import logging
import warnings

import numpy as np
import pandas as pd
from numpy.typing import ArrayLike, NDArray
from scipy import stats
from scipy.optimize import minimize, OptimizeResult

from glmmcompare.core.config import OPTIMIZERS
from glmmcompare.core.exceptions import ValidationError, DimensionError, NumericalError
from glmmcompare.core.result import Result
from glmmcompare.core.compute.timing import Timer
from glmmcompare.families import Family, Link, resolve_family

from glmmcompare.mixed._common import GLMMParams, VarCompSummary
from glmmcompare.mixed._random_effects import (
    RandomEffectSpec, parse_random_effects, build_z_matrix, build_lambda,
    lower_triangle, theta_lower_bounds, theta_start, is_singular_theta,
    split_theta, join_theta,
)
from glmmcompare.mixed._pls import l_factor
from glmmcompare.mixed._pirls import solve_pirls, solve_pirls_u, working_values
from glmmcompare.mixed._deviance import (
    laplace_deviance_fast, laplace_deviance_full, laplace_loglik,
)
from glmmcompare.mixed.design import MixedDesign
from glmmcompare.mixed.formula import parse_formula
from glmmcompare.mixed.solution import GLMMSolution

logger = logging.getLogger(__name__)

SINGULAR_TOL = 1e-4


def glmm(
    y: ArrayLike,
    X: ArrayLike,
    groups: dict[str, ArrayLike],
    *,
    family: str | Family = 'binomial',
    link: str | Link | None = None,
    weights: ArrayLike | None = None,
    random_effects: dict[str, list[str]] | None = None,
    random_data: dict[str, ArrayLike] | None = None,
    coefficient_names: tuple[str, ...] | list[str] | None = None,
    fast: bool = False,
    optimizer: str = 'L-BFGS-B',
    theta0: ArrayLike | dict[str, ArrayLike] | None = None,
    beta0: ArrayLike | dict[str, float] | None = None,
    tol: float = 1e-8,
    max_iter: int = 500,
    formula: str | None = None,
) -> GLMMSolution:
    """Fit a generalized linear mixed model.

    Uses the Laplace approximation to the marginal likelihood with
    Penalized IRLS (PIRLS) for the inner loop and scipy.optimize for the
    outer optimization.

    Args:
        y: Response vector (n,). For the binomial family, the observed
            proportion of the outcome.
        X: Fixed effects design matrix (n, p).
        groups: Dict mapping grouping factor names to group label arrays.
        family: 'binomial', 'poisson' or a Family instance.
        link: Link override for a string family, e.g. 'cloglog'.
        weights: Prior weights (n,); number of trials for binomial data.
        random_effects: Optional dict of group name → term list.
            Example: {'rep': ['1', 'cov']} for (1 + cov | rep).
        random_data: Data for random slope variables.
        coefficient_names: Names of the columns of X.
        fast: If True, fit with nAGQ=0 (θ only). Default full Laplace fit.
        optimizer: 'L-BFGS-B' (default), 'Nelder-Mead' or 'Powell'.
        theta0: Starting θ, as a flat vector in engine order or a dict
            group → lower triangle (row-major).
        beta0: Starting β for the full fit, as a vector or a dict
            name → value. With both theta0 and beta0 the fast stage is
            skipped and the Laplace fit starts directly from them.
        tol: Convergence tolerance for the outer optimizer.
        max_iter: Maximum outer iterations per stage.
        formula: Model formula the arrays were built from; recorded in
            info and shown by summary().

    Returns:
        GLMMSolution with fixed effects, θ, variance components,
        log-likelihood and timing.

    Examples:
        >>> result = glmm(prop, X, groups={'rep': rep}, link='cloglog',
        ...               weights=tot,
        ...               random_effects={'rep': ['1', 'cov']},
        ...               random_data={'cov': cov})
    """
    if optimizer not in OPTIMIZERS:
        raise ValueError(
            f"Unknown optimizer: {optimizer!r}. "
            f"Valid optimizers: {', '.join(OPTIMIZERS)}"
        )

    timer = Timer()
    timer.start()

    family_obj = resolve_family(family, link)

    design = MixedDesign.validate(
        y, X, groups, random_effects, random_data, weights,
    )
    family_obj.check_response(design.y)

    if coefficient_names is None:
        coef_names = _make_coef_names(design.p)
    else:
        coef_names = list(coefficient_names)
        if len(coef_names) != design.p:
            raise DimensionError(
                f"coefficient_names has {len(coef_names)} entries, "
                f"expected {design.p}"
            )

    with timer.section('setup'):
        specs = parse_random_effects(
            design.groups, design.random_effects, design.random_data, design.n
        )
        Z = build_z_matrix(specs)
        lb = theta_lower_bounds(specs)
        theta_init = _resolve_theta0(theta0, specs)
        beta_init = _resolve_beta0(beta0, coef_names)
        n_theta = len(lb)

    X_, y_, wt = design.X, design.y, design.weights
    n_iter = 0

    # Stage 1: θ only, β from joint PIRLS
    skip_fast = not fast and theta0 is not None and beta0 is not None
    with timer.section('optimization'):
        if skip_fast:
            theta_hat, beta_hat = theta_init, beta_init
            opt_result = None
        else:
            opt_result = _minimize(
                laplace_deviance_fast,
                theta_init,
                (X_, Z, y_, wt, specs, family_obj),
                [(lb[i], None) for i in range(n_theta)],
                optimizer, tol, max_iter,
            )
            n_iter += opt_result.nit
            theta_hat = opt_result.x
            pirls = solve_pirls(X_, Z, y_, build_lambda(theta_hat, specs),
                                family_obj, wt, tol=1e-10, max_iter=50)
            beta_hat = pirls.pls.beta
            logger.debug("fast stage: deviance=%.6f, θ=%s, %d iterations",
                         opt_result.fun, theta_hat, opt_result.nit)

        # Stage 2: θ and β jointly, u from PIRLS given β
        if not fast:
            phi0 = np.concatenate([theta_hat, beta_hat])
            args = (X_, Z, y_, wt, specs, family_obj, n_theta)
            start_value = laplace_deviance_full(phi0, *args)
            opt_result = _minimize(
                laplace_deviance_full,
                phi0,
                args,
                [(lb[i], None) for i in range(n_theta)]
                + [(None, None)] * design.p,
                optimizer, tol, max_iter,
            )
            n_iter += opt_result.nit
            if opt_result.fun <= start_value:
                theta_hat = opt_result.x[:n_theta]
                beta_hat = opt_result.x[n_theta:]
            else:
                logger.debug("Laplace stage ended above its start "
                             "(%.6f > %.6f); keeping the start",
                             opt_result.fun, start_value)
            logger.debug("Laplace stage: deviance=%.6f, %d iterations",
                         min(opt_result.fun, start_value), opt_result.nit)

    converged = True if opt_result is None else bool(opt_result.success)
    message = '' if opt_result is None else str(opt_result.message)
    theta_hat = np.asarray(theta_hat, dtype=np.float64)
    beta_hat = np.asarray(beta_hat, dtype=np.float64)

    if not converged:
        warnings.warn(
            f"GLMM optimizer did not converge after {n_iter} iterations. "
            f"Message: {message}",
            RuntimeWarning,
            stacklevel=2,
        )

    # Conditional modes and Laplace log-likelihood at (θ̂, β̂)
    with timer.section('final_solve'):
        Lambda_hat = build_lambda(theta_hat, specs)
        pirls = solve_pirls_u(X_, Z, y_, Lambda_hat, family_obj, wt, beta_hat)

    with timer.section('variance_components'):
        var_comps = _extract_var_components(theta_hat, specs)
        n_groups_dict = {s.group_name: s.n_groups for s in specs}
        singular = is_singular_theta(theta_hat, specs, SINGULAR_TOL)

    with timer.section('blups'):
        random_effs = _extract_blups(pirls.pls.b, specs)

    with timer.section('inference'):
        _, w = working_values(y_, pirls.mu, pirls.eta, wt, family_obj)
        se = _compute_se(X_, Z, Lambda_hat, w)
        z_vals = beta_hat / se
        p_vals = 2.0 * stats.norm.sf(np.abs(z_vals))

    with timer.section('model_fit'):
        ll = laplace_loglik(pirls, y_, wt, family_obj)
        if not np.isfinite(ll):
            raise NumericalError(
                f"Log-likelihood is not finite at the optimum (θ = {theta_hat})"
            )
        n_params = design.p + n_theta
        aic = -2.0 * ll + 2.0 * n_params
        bic = -2.0 * ll + np.log(design.n) * n_params

    timer.stop()

    params = GLMMParams(
        coefficients=beta_hat,
        coefficient_names=tuple(coef_names),
        se=se,
        z_values=z_vals,
        p_values=p_vals,
        var_components=tuple(var_comps),
        log_likelihood=float(ll),
        deviance=pirls.deviance,
        aic=float(aic),
        bic=float(bic),
        n_obs=design.n,
        n_groups=n_groups_dict,
        family_name=family_obj.name,
        link_name=family_obj.link.name,
        nagq=0 if fast else 1,
        optimizer=optimizer,
        converged=converged,
        singular=singular,
        n_iter=n_iter,
        random_effects=random_effs,
        fitted_values=pirls.mu,
        linear_predictor=pirls.eta,
        residuals=y_ - pirls.mu,
        theta=theta_hat,
        theta_blocks=split_theta(theta_hat, specs),
    )

    warn_list = []
    if not converged:
        warn_list.append(f"Optimizer did not converge: {message}")
    if not pirls.converged:
        warn_list.append(f"PIRLS did not converge after {pirls.n_iter} iterations")
    if singular:
        warn_list.append("boundary (singular) fit: see GLMMSolution.is_singular()")
        warnings.warn(
            "boundary (singular) fit: a variance component or correlation "
            "is on the boundary of the parameter space",
            UserWarning,
            stacklevel=2,
        )

    info = {
        'method': 'Laplace',
        'nAGQ': 0 if fast else 1,
        'family': family_obj.name,
        'link': family_obj.link.name,
        'optimizer': optimizer,
        'converged': converged,
        'pirls_converged': pirls.converged,
        'n_iter': n_iter,
        'pirls_iter': pirls.n_iter,
        'objective': -2.0 * float(ll),
        'started_from': 'theta0+beta0' if skip_fast
                        else ('theta0' if theta0 is not None else 'default'),
    }
    if formula is not None:
        info['formula'] = formula

    result = Result(
        params=params,
        info=info,
        timing=timer.result(),
        backend_name='cpu_glmm',
        warnings=tuple(warn_list),
    )

    return GLMMSolution(_result=result)


def glmer(
    formula: str,
    data: pd.DataFrame,
    *,
    family: str | Family = 'binomial',
    link: str | Link | None = None,
    weights: str | ArrayLike | None = None,
    fast: bool = False,
    optimizer: str = 'L-BFGS-B',
    theta0: ArrayLike | dict[str, ArrayLike] | None = None,
    beta0: ArrayLike | dict[str, float] | None = None,
    tol: float = 1e-8,
    max_iter: int = 500,
) -> GLMMSolution:
    """Fit a GLMM from an lme4-style formula.

    Args:
        formula: e.g. 'prop ~ 0 + trt + trt:cov + (1 + cov | rep)'.
        data: Observation table.
        weights: Column name or array of prior weights (e.g. 'tot').
        Remaining arguments as for glmm().

    Returns:
        GLMMSolution; its info dict records the formula.

    Examples:
        >>> fit = glmer('prop ~ 0 + trt + trt:cov + (1 + cov | rep)', df,
        ...             link='cloglog', weights='tot', fast=True)
    """
    mf = parse_formula(formula, data)

    if isinstance(weights, str):
        if weights not in data.columns:
            raise ValidationError(
                f"Weights column '{weights}' not in data. "
                f"Available: {list(data.columns)}"
            )
        weights = data[weights].to_numpy(dtype=np.float64)

    return glmm(
        mf.y, mf.X, mf.groups,
        family=family,
        link=link,
        weights=weights,
        random_effects=mf.random_effects,
        random_data=mf.random_data,
        coefficient_names=mf.coefficient_names,
        fast=fast,
        optimizer=optimizer,
        theta0=theta0,
        beta0=beta0,
        tol=tol,
        max_iter=max_iter,
        formula=formula,
    )


# =====================================================================
# Helpers
# =====================================================================

def _minimize(fun, x0, args, bounds, optimizer: str, tol: float,
              max_iter: int) -> OptimizeResult:
    """Run scipy.optimize.minimize with per-method stopping options."""
    if optimizer == 'L-BFGS-B':
        options = {'maxiter': max_iter, 'ftol': tol, 'gtol': tol * 10}
    elif optimizer == 'Nelder-Mead':
        options = {'maxiter': max_iter, 'maxfev': max_iter * 4,
                   'fatol': tol, 'xatol': 1e-6, 'adaptive': len(x0) > 3}
    else:
        options = {'maxiter': max_iter, 'ftol': tol, 'xtol': 1e-6}

    return minimize(
        fun,
        np.asarray(x0, dtype=np.float64),
        args=args,
        method=optimizer,
        bounds=bounds,
        options=options,
    )


def _resolve_theta0(
    theta0: ArrayLike | dict[str, ArrayLike] | None,
    specs: list[RandomEffectSpec],
) -> NDArray:
    """Starting θ from user input, clipped to its lower bounds."""
    lb = theta_lower_bounds(specs)
    if theta0 is None:
        return theta_start(specs)
    if isinstance(theta0, dict):
        theta = join_theta(theta0, specs)
    else:
        theta = np.asarray(theta0, dtype=np.float64).ravel()
        if theta.shape[0] != len(lb):
            raise DimensionError(
                f"theta0 has {theta.shape[0]} elements, expected {len(lb)}"
            )
    if not np.all(np.isfinite(theta)):
        raise ValidationError("theta0 contains non-finite values")
    return np.maximum(theta, lb)


def _resolve_beta0(
    beta0: ArrayLike | dict[str, float] | None,
    coef_names: list[str],
) -> NDArray | None:
    """Starting β as a vector ordered like coef_names."""
    if beta0 is None:
        return None
    if isinstance(beta0, dict):
        missing = [name for name in coef_names if name not in beta0]
        if missing:
            raise ValidationError(
                f"beta0 is missing coefficients {missing}. "
                f"Available: {list(beta0.keys())}"
            )
        return np.array([beta0[name] for name in coef_names], dtype=np.float64)
    beta = np.asarray(beta0, dtype=np.float64).ravel()
    if beta.shape[0] != len(coef_names):
        raise DimensionError(
            f"beta0 has {beta.shape[0]} elements, expected {len(coef_names)}"
        )
    return beta


def _extract_var_components(
    theta: NDArray,
    specs: list[RandomEffectSpec],
) -> list[VarCompSummary]:
    """Variance component summaries from θ (σ² = 1 for GLMM).

    The covariance of one group's random effects is T T'.
    """
    var_comps = []
    offset = 0

    for spec in specs:
        T = lower_triangle(theta[offset:offset + spec.theta_size], spec.n_terms)
        offset += spec.theta_size
        cov_matrix = T @ T.T

        for i, term in enumerate(spec.terms):
            var_i = cov_matrix[i, i]
            sd_i = np.sqrt(max(var_i, 0.0))

            if i > 0 and cov_matrix[0, 0] > 0 and var_i > 0:
                corr = cov_matrix[i, 0] / (np.sqrt(cov_matrix[0, 0]) * sd_i)
                corr = float(np.clip(corr, -1.0, 1.0))
            else:
                corr = None

            var_comps.append(VarCompSummary(
                group=spec.group_name,
                name='(Intercept)' if term == '1' else term,
                variance=float(var_i),
                std_dev=float(sd_i),
                corr=corr,
            ))

    return var_comps


def _extract_blups(b: NDArray, specs: list[RandomEffectSpec]) -> dict[str, NDArray]:
    """Conditional modes per grouping factor as (J_k, q_k) arrays.

    b is term-major within each block: [term0_g0, term0_g1, ..., term1_g0, ...].
    """
    result = {}
    offset = 0
    for spec in specs:
        size = spec.n_groups * spec.n_terms
        result[spec.group_name] = (
            b[offset:offset + size].reshape(spec.n_terms, spec.n_groups).T.copy()
        )
        offset += size
    return result


def _compute_se(X: NDArray, Z: NDArray, Lambda: NDArray, w: NDArray) -> NDArray:
    """Standard errors of β̂ from the Schur complement at the mode.

    Var(β̂) = (X'WX - X'WZΛ L⁻ᵀ L⁻¹ Λ'Z'WX)⁻¹ with W the working weights
    and L = cholesky(Λ'Z'WZΛ + I).
    """
    sqrt_w = np.sqrt(w)
    Xw = X * sqrt_w[:, np.newaxis]
    ZLam = (Z * sqrt_w[:, np.newaxis]) @ Lambda
    L = l_factor(ZLam)
    CX = np.linalg.solve(L, ZLam.T @ Xw)
    schur = Xw.T @ Xw - CX.T @ CX
    try:
        vcov = np.linalg.inv(schur)
    except np.linalg.LinAlgError:
        vcov = np.linalg.pinv(schur)
    return np.sqrt(np.maximum(np.diag(vcov), 0.0))


def _make_coef_names(p: int) -> list[str]:
    """Generate default coefficient names."""
    if p == 1:
        return ['(Intercept)']
    return ['(Intercept)'] + [f'X{i}' for i in range(1, p)]
