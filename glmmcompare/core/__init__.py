"""
Core infrastructure for glmmcompare.

Shared abstractions used by the engine, the R bridge and the comparison
layer.

Key components:
    result: Generic Result[P] envelope
    exceptions: Exception hierarchy
    validation: Input validators
    config: Optimizer configurations
    compute: Timing and tolerance tiers
"""

from glmmcompare.core.result import Result
from glmmcompare.core.exceptions import (
    GLMMCompareError,
    ValidationError,
    DimensionError,
    NumericalError,
    ConvergenceError,
    RuntimeUnavailableError,
)
from glmmcompare.core.config import FitConfig, DEFAULT_CONFIGS

__all__ = [
    # Result
    "Result",
    # Exceptions
    "GLMMCompareError",
    "ValidationError",
    "DimensionError",
    "NumericalError",
    "ConvergenceError",
    "RuntimeUnavailableError",
    # Configuration
    "FitConfig",
    "DEFAULT_CONFIGS",
]
