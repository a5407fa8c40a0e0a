"""
Penalized weighted least squares (PLS) solves for the GLMM engine.

For fixed θ (and hence fixed Λ_θ), each PIRLS step solves

    minimize ‖√W(z - Xβ - ZΛu)‖² + ‖u‖²

where u = Λ⁻¹b are the "spherical" random effects and W the working
weights. Two variants are needed:

    solve_pls    β and u jointly (fast fit, nAGQ=0)
    solve_pls_u  u only, with Xβ moved into an offset (Laplace fit, nAGQ=1)

References:
    Bates, D., Maechler, M., Bolker, B., & Walker, S. (2015).
    Fitting Linear Mixed-Effects Models Using lme4.
    Journal of Statistical Software, 67(1), 1-48. Section 2.
"""

from __future__ import annotations

from dataclasses import dataclass
import numpy as np
from numpy.typing import NDArray
import scipy.linalg as sla


@dataclass(frozen=True)
class PLSResult:
    """Result from a penalized least squares solve.

    Attributes:
        beta: Fixed effects estimates (p,). For solve_pls_u this is the
            β that was held fixed.
        u: Spherical random effects (q,).
        b: Conditional modes b = Λu (q,).
        L: Cholesky factor of (Λ'Z'WZΛ + I), shape (q, q).
        RX: Cholesky factor of the Schur complement for β, shape (p, p),
            or None when β was held fixed.
    """
    beta: NDArray
    u: NDArray
    b: NDArray
    L: NDArray
    RX: NDArray | None


def l_factor(ZLam: NDArray) -> NDArray:
    """L = cholesky(Λ'Z'WZΛ + I)."""
    q = ZLam.shape[1]
    LtL = ZLam.T @ ZLam + np.eye(q)
    try:
        return np.linalg.cholesky(LtL)
    except np.linalg.LinAlgError:
        # Add small ridge if not PD
        LtL += 1e-10 * np.eye(q)
        return np.linalg.cholesky(LtL)


def solve_pls(
    X: NDArray,
    Z: NDArray,
    z: NDArray,
    Lambda: NDArray,
    weights: NDArray,
) -> PLSResult:
    """Solve the penalized WLS problem jointly for β and u.

    The normal equations of the penalized system are

        [Λ'Z'WZΛ + I   Λ'Z'WX ] [u]   [Λ'Z'Wz]
        [X'WZΛ         X'WX   ] [β] = [X'Wz  ]

    solved by eliminating u through the L factor and then β through the
    Cholesky factor RX of the Schur complement.

    Args:
        X: Fixed effects design matrix (n, p).
        Z: Random effects design matrix (n, q).
        z: Working response (n,).
        Lambda: Relative covariance factor (q, q), block-diagonal.
        weights: Working weights (n,).

    Returns:
        PLSResult with β, u, b, L and RX.
    """
    sqrt_w = np.sqrt(weights)
    Xw = X * sqrt_w[:, np.newaxis]
    zw = z * sqrt_w
    ZLam = (Z * sqrt_w[:, np.newaxis]) @ Lambda

    L = l_factor(ZLam)

    ZLam_t_z = ZLam.T @ zw        # (q,)
    ZLam_t_X = ZLam.T @ Xw        # (q, p)

    cu = sla.solve_triangular(L, ZLam_t_z, lower=True)
    CX = sla.solve_triangular(L, ZLam_t_X, lower=True)

    # RX RX' = X'WX - CX'CX  (the Schur complement)
    RtR = Xw.T @ Xw - CX.T @ CX
    rhs_beta = Xw.T @ zw - CX.T @ cu

    try:
        RX = np.linalg.cholesky(RtR)
        tmp = sla.solve_triangular(RX, rhs_beta, lower=True)
        beta = sla.solve_triangular(RX.T, tmp, lower=False)
    except np.linalg.LinAlgError:
        # Fallback to lstsq if Cholesky fails
        beta, _, _, _ = np.linalg.lstsq(RtR, rhs_beta, rcond=None)
        eigvals = np.maximum(np.linalg.eigvalsh(RtR), 1e-20)
        RX = np.diag(np.sqrt(eigvals))

    # L L' u = Λ'Z'W(z - Xβ)
    cu_final = sla.solve_triangular(L, ZLam_t_z - ZLam_t_X @ beta, lower=True)
    u = sla.solve_triangular(L.T, cu_final, lower=False)

    return PLSResult(beta=beta, u=u, b=Lambda @ u, L=L, RX=RX)


def solve_pls_u(
    Z: NDArray,
    z: NDArray,
    offset: NDArray,
    Lambda: NDArray,
    weights: NDArray,
    beta: NDArray,
) -> PLSResult:
    """Solve the penalized WLS problem for u with β held fixed.

    minimize ‖√W(z - offset - ZΛu)‖² + ‖u‖²,  offset = Xβ

    Args:
        Z: Random effects design matrix (n, q).
        z: Working response (n,).
        offset: Fixed part of the linear predictor Xβ (n,).
        Lambda: Relative covariance factor (q, q).
        weights: Working weights (n,).
        beta: The fixed β, carried into the result.

    Returns:
        PLSResult with RX set to None.
    """
    sqrt_w = np.sqrt(weights)
    ZLam = (Z * sqrt_w[:, np.newaxis]) @ Lambda
    L = l_factor(ZLam)

    rhs = ZLam.T @ ((z - offset) * sqrt_w)
    tmp = sla.solve_triangular(L, rhs, lower=True)
    u = sla.solve_triangular(L.T, tmp, lower=False)

    return PLSResult(beta=np.asarray(beta, dtype=np.float64), u=u,
                     b=Lambda @ u, L=L, RX=None)
