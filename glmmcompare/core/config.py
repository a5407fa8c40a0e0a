"""
Fit configurations.

A FitConfig names one way of running the optimizer: fast (nAGQ=0, θ only)
or full (nAGQ=1, θ and β jointly), which scipy method drives the outer
loop, and its stopping rule. The workflow runs every configuration in
DEFAULT_CONFIGS against the same data and formula.
"""

from dataclasses import dataclass

OPTIMIZERS = ('L-BFGS-B', 'Nelder-Mead', 'Powell')

DEFAULT_FORMULA = 'prop ~ 0 + trt + trt:cov + (1 + cov | rep)'


@dataclass(frozen=True)
class FitConfig:
    """One optimizer configuration.

    Attributes:
        name: Label used in reports (e.g. 'fast', 'full').
        fast: If True, fit with nAGQ=0 (θ only, β from PIRLS).
        optimizer: scipy.optimize.minimize method for the outer loop.
        tol: Convergence tolerance passed to the optimizer.
        max_iter: Maximum outer iterations.
    """
    name: str
    fast: bool
    optimizer: str = 'L-BFGS-B'
    tol: float = 1e-8
    max_iter: int = 500

    def __post_init__(self):
        if self.optimizer not in OPTIMIZERS:
            raise ValueError(
                f"Unknown optimizer: {self.optimizer!r}. "
                f"Valid optimizers: {', '.join(OPTIMIZERS)}"
            )
        if self.tol <= 0:
            raise ValueError(f"tol must be positive, got {self.tol}")
        if self.max_iter < 1:
            raise ValueError(f"max_iter must be >= 1, got {self.max_iter}")

    @property
    def nagq(self) -> int:
        """Number of adaptive Gauss-Hermite points (0 = fast, 1 = Laplace)."""
        return 0 if self.fast else 1


DEFAULT_CONFIGS: tuple[FitConfig, ...] = (
    FitConfig(name='fast', fast=True),
    FitConfig(name='full', fast=False),
    FitConfig(name='full (Nelder-Mead)', fast=False, optimizer='Nelder-Mead',
              tol=1e-10, max_iter=5000),
)
