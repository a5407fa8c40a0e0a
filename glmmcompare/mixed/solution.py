"""
Solution wrapper for fitted GLMMs.

GLMMSolution wraps Result[GLMMParams] and provides R-style summary
output, property accessors for common quantities and the singularity
check that lme4 calls isSingular().
"""

from __future__ import annotations

import numpy as np
from numpy.typing import NDArray

from glmmcompare.core.result import Result
from glmmcompare.mixed._common import GLMMParams, VarCompSummary


def _significance_stars(p: float) -> str:
    """Return significance stars like R."""
    if p < 0.001:
        return '***'
    elif p < 0.01:
        return '**'
    elif p < 0.05:
        return '*'
    elif p < 0.1:
        return '.'
    else:
        return ' '


def _format_pvalue(p: float) -> str:
    """Format p-value like R."""
    if p < 2e-16:
        return '< 2e-16'
    elif p < 0.001:
        return f'{p:.2e}'
    else:
        return f'{p:.4f}'


class GLMMSolution:
    """Solution wrapper for a fitted generalized linear mixed model.

    Uses Wald z-statistics for inference. The log-likelihood is the
    Laplace approximation evaluated at (θ̂, β̂) for both nAGQ=0 and
    nAGQ=1 fits, so the two are directly comparable.
    """

    def __init__(self, _result: Result[GLMMParams]):
        self._result = _result

    @property
    def params(self) -> GLMMParams:
        return self._result.params

    @property
    def info(self) -> dict:
        return self._result.info

    @property
    def warnings(self) -> tuple[str, ...]:
        return self._result.warnings

    @property
    def timing(self) -> dict[str, float] | None:
        return self._result.timing

    @property
    def elapsed(self) -> float:
        """Wall-clock seconds spent in the fit."""
        if self._result.timing is None:
            return float('nan')
        return self._result.timing['total_seconds']

    # --- Fixed effects ---

    @property
    def coefficients(self) -> NDArray:
        return self.params.coefficients

    @property
    def coefficient_names(self) -> tuple[str, ...]:
        return self.params.coefficient_names

    @property
    def fixef(self) -> dict[str, float]:
        return {name: float(v) for name, v in
                zip(self.params.coefficient_names, self.params.coefficients)}

    @property
    def se(self) -> NDArray:
        return self.params.se

    @property
    def z_values(self) -> NDArray:
        """Wald z-statistics for fixed effects."""
        return self.params.z_values

    @property
    def p_values(self) -> NDArray:
        return self.params.p_values

    # --- Random effects ---

    @property
    def theta(self) -> NDArray:
        """Flat θ vector: per group, the row-major lower triangle of T."""
        return self.params.theta

    @property
    def theta_blocks(self) -> dict[str, NDArray]:
        return self.params.theta_blocks

    @property
    def ranef(self) -> dict[str, NDArray]:
        return self.params.random_effects

    @property
    def var_components(self) -> tuple[VarCompSummary, ...]:
        return self.params.var_components

    def is_singular(self, tol: float = 1e-4) -> bool:
        """True if any diagonal element of a relative covariance factor
        is below tol (a variance component on the boundary)."""
        for block in self.params.theta_blocks.values():
            # block is a row-major lower triangle of a q x q factor
            q = int(round((np.sqrt(8 * len(block) + 1) - 1) / 2))
            diag_idx = [i * (i + 1) // 2 + i for i in range(q)]
            if np.any(np.asarray(block)[diag_idx] < tol):
                return True
        return False

    # --- Model fit ---

    @property
    def log_likelihood(self) -> float:
        return self.params.log_likelihood

    @property
    def deviance(self) -> float:
        return self.params.deviance

    @property
    def aic(self) -> float:
        return self.params.aic

    @property
    def bic(self) -> float:
        return self.params.bic

    @property
    def nagq(self) -> int:
        return self.params.nagq

    @property
    def optimizer(self) -> str:
        return self.params.optimizer

    @property
    def fitted_values(self) -> NDArray:
        """Fitted values on the response scale (μ̂)."""
        return self.params.fitted_values

    @property
    def linear_predictor(self) -> NDArray:
        """Linear predictor (η̂ = Xβ̂ + Zb̂)."""
        return self.params.linear_predictor

    @property
    def residuals(self) -> NDArray:
        return self.params.residuals

    @property
    def converged(self) -> bool:
        return self.params.converged

    # --- Summary ---

    def summary(self) -> str:
        """R-style summary matching lme4::summary(glmer(...))."""
        params = self.params

        lines = []
        if params.nagq == 0:
            lines.append(
                "Generalized linear mixed model fit by ML "
                "(Adaptive Gauss-Hermite Quadrature, nAGQ = 0)"
            )
        else:
            lines.append(
                "Generalized linear mixed model fit by ML "
                "(Laplace Approximation)"
            )
        lines.append(f" Family: {params.family_name}  ( {params.link_name} )")
        formula = self._result.info.get('formula')
        if formula:
            lines.append(f"Formula: {formula}")
        lines.append(f"Optimizer: {params.optimizer}")
        lines.append("")

        lines.append(f" {'AIC':>10s} {'BIC':>10s} {'logLik':>10s} {'deviance':>10s}")
        lines.append(
            f" {params.aic:10.1f} {params.bic:10.1f} "
            f"{params.log_likelihood:10.1f} {-2.0 * params.log_likelihood:10.1f}"
        )
        lines.append("")

        # Random effects
        lines.append("Random effects:")
        lines.append(f" {'Groups':<12s} {'Name':<15s} {'Variance':>10s} "
                     f"{'Std.Dev.':>10s} {'Corr':>6s}")
        prev_group = None
        for vc in params.var_components:
            grp_label = vc.group if vc.group != prev_group else ''
            corr = f'{vc.corr:6.2f}' if vc.corr is not None else ''
            lines.append(
                f" {grp_label:<12s} {vc.name:<15s} {vc.variance:10.4f} "
                f"{vc.std_dev:10.4f} {corr:>6s}"
            )
            prev_group = vc.group

        group_parts = ', '.join(
            f'{name}, {n}' for name, n in params.n_groups.items()
        )
        lines.append(f"Number of obs: {params.n_obs}, groups:  {group_parts}")
        lines.append("")

        # Fixed effects (Wald z-test)
        width = max([15] + [len(n) for n in params.coefficient_names])
        lines.append("Fixed effects:")
        lines.append(
            f" {'':<{width}s} {'Estimate':>10s} {'Std. Error':>10s} "
            f"{'z value':>10s} {'Pr(>|z|)':>10s}"
        )
        for i, name in enumerate(params.coefficient_names):
            p_str = _format_pvalue(params.p_values[i])
            stars = _significance_stars(params.p_values[i])
            lines.append(
                f" {name:<{width}s} {params.coefficients[i]:10.4f} "
                f"{params.se[i]:10.4f} "
                f"{params.z_values[i]:10.3f} {p_str:>10s} {stars}"
            )

        lines.append("---")
        lines.append("Signif. codes:  0 '***' 0.001 '**' 0.01 '*' 0.05 '.' 0.1 ' ' 1")

        if params.singular:
            lines.append("")
            lines.append("boundary (singular) fit: see help('isSingular')")

        if not params.converged:
            lines.append("")
            lines.append("WARNING: Model did not converge")

        return '\n'.join(lines)

    def __repr__(self) -> str:
        nfe = len(self.params.coefficients)
        nre = len(self.params.var_components)
        return (
            f"GLMMSolution({self.params.family_name}({self.params.link_name}), "
            f"nAGQ={self.params.nagq}, "
            f"n={self.params.n_obs}, "
            f"fixed={nfe}, "
            f"random={nre} var components)"
        )
