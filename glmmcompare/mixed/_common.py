"""
Common data types for the GLMM engine.

Contains the frozen parameter payloads that go inside Result[P] envelopes.
Payloads hold data only; all computation lives in solvers.py.

References:
    Bates, D., Maechler, M., Bolker, B., & Walker, S. (2015).
    Fitting Linear Mixed-Effects Models Using lme4.
    Journal of Statistical Software, 67(1), 1-48.
"""

from dataclasses import dataclass

from numpy.typing import NDArray


@dataclass(frozen=True)
class VarCompSummary:
    """Variance component summary for one random effect term.

    Attributes:
        group: Grouping factor name (e.g. 'rep').
        name: Term name within the group (e.g. '(Intercept)', 'cov').
        variance: Estimated variance σ²_b for this component.
        std_dev: Standard deviation (sqrt of variance).
        corr: Correlation with the first term in the same group,
              or None if this is the first (or only) term.
    """
    group: str
    name: str
    variance: float
    std_dev: float
    corr: float | None = None


@dataclass(frozen=True)
class GLMMParams:
    """
    Parameter payload for a fitted generalized linear mixed model.
    """
    # Fixed effects
    coefficients: NDArray
    coefficient_names: tuple[str, ...]
    se: NDArray
    z_values: NDArray                  # β̂ / se (Wald z-statistics)
    p_values: NDArray                  # from normal distribution

    # Random effects
    var_components: tuple[VarCompSummary, ...]

    # Model fit
    log_likelihood: float
    deviance: float
    aic: float
    bic: float
    n_obs: int
    n_groups: dict[str, int]

    # Family
    family_name: str
    link_name: str

    # Optimizer
    nagq: int                          # 0 = fast, 1 = Laplace
    optimizer: str
    converged: bool
    singular: bool
    n_iter: int

    # Random effects conditional modes
    random_effects: dict[str, NDArray]

    # Predictions (on link scale and response scale)
    fitted_values: NDArray             # μ̂ = g⁻¹(Xβ̂ + Zb̂) (n,)
    linear_predictor: NDArray          # η̂ = Xβ̂ + Zb̂ (n,)
    residuals: NDArray                 # y - μ̂ (n,)

    # Covariance parameters: flat vector plus per-group lower triangles
    theta: NDArray
    theta_blocks: dict[str, NDArray]
