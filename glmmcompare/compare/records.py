"""
Runtime-neutral fit records.

A FitRecord is what the comparison layer sees of a fit, whichever runtime
produced it: named coefficients, θ per grouping factor, log-likelihood,
convergence and singularity flags and the elapsed time.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import TYPE_CHECKING

import numpy as np
from numpy.typing import NDArray

if TYPE_CHECKING:
    from glmmcompare.mixed.solution import GLMMSolution


@dataclass(frozen=True)
class FitRecord:
    """One fitted model, reduced to what the report compares.

    Attributes:
        label: Configuration label (e.g. 'fast', 'full', 'refit').
        engine: 'python' or 'R'.
        mode: 'fast' (nAGQ=0) or 'full' (nAGQ=1).
        coefficients: Fixed effect name → estimate (R-style names).
        theta: Grouping factor → row-major lower triangle of T.
        log_likelihood: Log-likelihood reported by the engine.
        converged: False if the engine reported a convergence problem.
        singular: True for a boundary (singular) fit.
        elapsed: Wall-clock seconds of the fit call.
        warnings: Convergence and singularity messages from the engine.
        optimizer: Outer optimizer name.
    """
    label: str
    engine: str
    mode: str
    coefficients: dict[str, float]
    theta: dict[str, NDArray]
    log_likelihood: float
    converged: bool
    singular: bool
    elapsed: float
    warnings: tuple[str, ...] = field(default_factory=tuple)
    optimizer: str = ''

    @property
    def nagq(self) -> int:
        return 0 if self.mode == 'fast' else 1

    @property
    def theta_vector(self) -> NDArray:
        """θ blocks concatenated in insertion order."""
        if not self.theta:
            return np.zeros(0)
        return np.concatenate([np.asarray(v, dtype=np.float64)
                               for v in self.theta.values()])

    @classmethod
    def from_solution(cls, label: str, solution: 'GLMMSolution') -> FitRecord:
        """Build a record from a fit of the Python engine."""
        return cls(
            label=label,
            engine='python',
            mode='fast' if solution.nagq == 0 else 'full',
            coefficients=solution.fixef,
            theta={k: np.array(v) for k, v in solution.theta_blocks.items()},
            log_likelihood=solution.log_likelihood,
            converged=solution.converged,
            singular=solution.is_singular(),
            elapsed=solution.elapsed,
            warnings=solution.warnings,
            optimizer=solution.optimizer,
        )

    def __repr__(self) -> str:
        return (
            f"FitRecord({self.label!r}, engine={self.engine!r}, "
            f"mode={self.mode!r}, logLik={self.log_likelihood:.4f}, "
            f"elapsed={self.elapsed:.3f}s)"
        )
