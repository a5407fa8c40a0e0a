"""
Exception hierarchy for glmmcompare.

All exceptions inherit from GLMMCompareError so callers can catch any
library-specific error in one place.

Design principles:
    - Exceptions carry diagnostic information as attributes
    - Error messages are actionable with actual vs expected values
    - Never catch and re-raise with less information
"""


class GLMMCompareError(Exception):
    """Base exception for all glmmcompare errors."""
    pass


class ValidationError(GLMMCompareError):
    """
    Input validation failed.

    Raised when data files, formulas or arrays fail validation checks.
    """
    pass


class DimensionError(ValidationError):
    """
    Array dimensions are incorrect or inconsistent.
    """
    pass


class NumericalError(GLMMCompareError):
    """
    Numerical computation failed.
    """
    pass


class ConvergenceError(GLMMCompareError):
    """
    Iterative algorithm failed to converge.

    Attributes:
        iterations: Number of iterations completed
        final_change: Final parameter or objective change
        reason: Why convergence failed (e.g., 'max_iterations', 'diverging')
    """

    def __init__(
        self,
        message: str,
        iterations: int,
        final_change: float | None = None,
        reason: str | None = None,
    ):
        super().__init__(message)
        self.iterations = iterations
        self.final_change = final_change
        self.reason = reason


class RuntimeUnavailableError(GLMMCompareError):
    """
    The second statistical runtime cannot be reached.

    Raised when rpy2 is not installed, R cannot be embedded, or a required
    R package is missing.

    Attributes:
        runtime: Name of the runtime ('R')
        package: Missing package, if the runtime itself started
    """

    def __init__(
        self,
        message: str,
        runtime: str = 'R',
        package: str | None = None,
    ):
        super().__init__(message)
        self.runtime = runtime
        self.package = package
