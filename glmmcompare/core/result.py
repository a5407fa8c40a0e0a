"""
Generic result container for every fit produced by glmmcompare.

Result is the envelope that domain payloads travel in. Timing, warnings and
solver metadata live next to the payload, so the comparison layer can read
them without knowing which engine produced the fit.

Design decisions:
    - Generic over parameter payload P for type safety
    - info dict for flexible metadata (optimizer, nAGQ, convergence)
    - timing is optional (don't burden unit tests)
    - Immutable (frozen=True): a fit is never edited after it is produced
"""

from dataclasses import dataclass, field
from typing import TypeVar, Generic, Any

P = TypeVar('P')  # Parameter payload type


@dataclass(frozen=True)
class Result(Generic[P]):
    """
    Immutable result envelope for a model fit.

    Type Parameters:
        P: The domain-specific parameter payload type

    Attributes:
        params: Domain-specific parameters (coefficients, θ, log-likelihood)
        info: Structured metadata (method, optimizer, convergence)
        timing: Execution timing breakdown, or None if not measured
        backend_name: Identifier of the engine that produced this result
        warnings: Non-fatal issues encountered during the fit

    Examples:
        >>> Result(
        ...     params=GLMMParams(...),
        ...     info={'method': 'Laplace', 'nAGQ': 1, 'converged': True},
        ...     timing={'total_seconds': 0.5, 'optimization': 0.4},
        ...     backend_name='cpu_glmm',
        ... )
    """
    params: P
    info: dict[str, Any]
    timing: dict[str, float] | None
    backend_name: str
    warnings: tuple[str, ...] = field(default_factory=tuple)

    def has_warning(self, substring: str) -> bool:
        """Check if any warning contains the given substring."""
        return any(substring in w for w in self.warnings)
