"""
Penalized Iteratively Reweighted Least Squares (PIRLS) for GLMM.

For a GLMM with given θ (and hence Λ_θ), PIRLS iteratively finds the
conditional modes of the random effects by solving a sequence of penalized
weighted least squares problems.

This is the inner loop of GLMM estimation. The outer loop optimizes θ
(fast fit) or θ and β together (Laplace fit) on the Laplace-approximated
deviance.

References:
    Bates, D., Maechler, M., Bolker, B., & Walker, S. (2015).
    Fitting Linear Mixed-Effects Models Using lme4.
    Journal of Statistical Software, 67(1), Section 3.
"""

from __future__ import annotations

from dataclasses import dataclass
import logging

import numpy as np
from numpy.typing import NDArray

from glmmcompare.core.exceptions import ConvergenceError
from glmmcompare.families import Family
from glmmcompare.mixed._pls import solve_pls, solve_pls_u, PLSResult, l_factor

logger = logging.getLogger(__name__)

_MAX_HALVINGS = 10


def _check_diverged(pdev: float, n_iter: int, where: str) -> None:
    if not np.isfinite(pdev):
        raise ConvergenceError(
            f"{where} diverged at iteration {n_iter}: penalized deviance is {pdev}",
            iterations=n_iter,
            reason='diverging',
        )


@dataclass(frozen=True)
class PIRLSResult:
    """Result from PIRLS convergence.

    Attributes:
        pls: The final PLS result (contains beta, u, b, L).
        mu: Fitted values on the response scale (n,).
        eta: Linear predictor Xβ + Zb (n,).
        deviance: Family deviance at convergence.
        converged: Whether PIRLS converged.
        n_iter: Number of PIRLS iterations.
    """
    pls: PLSResult
    mu: NDArray
    eta: NDArray
    deviance: float
    converged: bool
    n_iter: int

    @property
    def penalized_deviance(self) -> float:
        """deviance + ‖u‖²."""
        return self.deviance + float(self.pls.u @ self.pls.u)


def working_values(y, mu, eta, wt, family):
    """Working response z and working weights w at the current iterate."""
    mu_eta_val = family.link.mu_eta(eta)
    z = eta + (y - mu) / mu_eta_val
    w = wt * (mu_eta_val ** 2) / family.variance(mu)
    return z, np.maximum(w, 1e-10)


def solve_pirls(
    X: NDArray,
    Z: NDArray,
    y: NDArray,
    Lambda: NDArray,
    family: Family,
    wt: NDArray,
    tol: float = 1e-8,
    max_iter: int = 25,
) -> PIRLSResult:
    """Penalized IRLS over β and u jointly (fast fit, nAGQ=0).

    For given θ (hence Λ), iterates:

    1. Working response: z = η + (y - μ) / (dμ/dη)
    2. Working weights: w = wt · (dμ/dη)² / V(μ)
    3. Solve penalized WLS: minimize ‖√W(z - Xβ - ZΛu)‖² + ‖u‖²
    4. Update: η = Xβ + Zb, μ = g⁻¹(η)
    5. Check convergence on the relative change of deviance + ‖u‖²

    Args:
        X: Fixed effects design matrix (n, p).
        Z: Random effects design matrix (n, q).
        y: Response vector (n,).
        Lambda: Relative covariance factor (q, q).
        family: GLM family with link.
        wt: Prior weights (n,).
        tol: Convergence tolerance on relative penalized deviance change.
        max_iter: Maximum PIRLS iterations.

    Returns:
        PIRLSResult with converged estimates.

    Raises:
        ConvergenceError: If the penalized deviance becomes non-finite.
    """
    if max_iter < 1:
        raise ValueError(f"max_iter must be at least 1, got {max_iter}")

    link = family.link

    mu = family.initialize(y, wt)
    eta = link.link(mu)

    pdev_old = family.deviance(y, mu, wt)
    converged = False
    n_iter = 0

    for n_iter in range(1, max_iter + 1):
        z, w = working_values(y, mu, eta, wt, family)
        pls_result = solve_pls(X, Z, z, Lambda, w)

        eta = X @ pls_result.beta + Z @ pls_result.b
        mu = link.linkinv(eta)

        pdev_new = family.deviance(y, mu, wt) + float(pls_result.u @ pls_result.u)
        _check_diverged(pdev_new, n_iter, 'PIRLS')
        if abs(pdev_new - pdev_old) / (abs(pdev_new) + 0.1) < tol:
            converged = True
            break
        pdev_old = pdev_new

    if not converged:
        logger.debug("joint PIRLS stopped after %d iterations without converging", n_iter)

    return PIRLSResult(
        pls=pls_result,
        mu=mu,
        eta=eta,
        deviance=family.deviance(y, mu, wt),
        converged=converged,
        n_iter=n_iter,
    )


def solve_pirls_u(
    X: NDArray,
    Z: NDArray,
    y: NDArray,
    Lambda: NDArray,
    family: Family,
    wt: NDArray,
    beta: NDArray,
    tol: float = 1e-10,
    max_iter: int = 50,
) -> PIRLSResult:
    """Penalized IRLS over u only, with β fixed (Laplace fit, nAGQ=1).

    Same iteration as solve_pirls with Xβ as an offset. Each step is
    halved until the penalized deviance does not increase; the L factor
    of the result is recomputed at the weights of the final iterate so
    that the Laplace approximation is evaluated at the conditional mode.

    Args:
        X: Fixed effects design matrix (n, p).
        Z: Random effects design matrix (n, q).
        y: Response vector (n,).
        Lambda: Relative covariance factor (q, q).
        family: GLM family with link.
        wt: Prior weights (n,).
        beta: Fixed effects (p,), held constant.
        tol: Convergence tolerance on relative penalized deviance change.
        max_iter: Maximum PIRLS iterations.

    Returns:
        PIRLSResult whose pls.beta is the given β.

    Raises:
        ConvergenceError: If the penalized deviance becomes non-finite.
    """
    if max_iter < 1:
        raise ValueError(f"max_iter must be at least 1, got {max_iter}")

    link = family.link
    beta = np.asarray(beta, dtype=np.float64)
    offset = X @ beta

    u = np.zeros(Z.shape[1], dtype=np.float64)
    eta = offset.copy()
    mu = link.linkinv(eta)
    pdev_old = family.deviance(y, mu, wt)
    converged = False
    n_iter = 0

    for n_iter in range(1, max_iter + 1):
        z, w = working_values(y, mu, eta, wt, family)
        u_new = solve_pls_u(Z, z, offset, Lambda, w, beta).u

        for _ in range(_MAX_HALVINGS):
            eta_new = offset + Z @ (Lambda @ u_new)
            mu_new = link.linkinv(eta_new)
            pdev_new = family.deviance(y, mu_new, wt) + float(u_new @ u_new)
            if pdev_new <= pdev_old * (1 + 1e-12) + 1e-12:
                break
            u_new = 0.5 * (u + u_new)

        _check_diverged(pdev_new, n_iter, 'PIRLS(u)')
        change = abs(pdev_new - pdev_old) / (abs(pdev_new) + 0.1)
        u, eta, mu, pdev_old = u_new, eta_new, mu_new, pdev_new
        if change < tol:
            converged = True
            break

    if not converged:
        logger.debug("PIRLS(u) stopped after %d iterations without converging", n_iter)

    _, w = working_values(y, mu, eta, wt, family)
    L = l_factor((Z * np.sqrt(w)[:, np.newaxis]) @ Lambda)
    pls_result = PLSResult(beta=beta, u=u, b=Lambda @ u, L=L, RX=None)

    return PIRLSResult(
        pls=pls_result,
        mu=mu,
        eta=eta,
        deviance=family.deviance(y, mu, wt),
        converged=converged,
        n_iter=n_iter,
    )
