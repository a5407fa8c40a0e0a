"""
Tests for the glmmcompare exception hierarchy.
"""

import pytest

from glmmcompare.core.exceptions import (
    ConvergenceError,
    DimensionError,
    GLMMCompareError,
    NumericalError,
    RuntimeUnavailableError,
    ValidationError,
)


class TestInheritance:
    """Every exception is catchable via GLMMCompareError."""

    @pytest.mark.parametrize("exc", [
        ValidationError("bad input"),
        DimensionError("wrong shape"),
        NumericalError("overflow"),
        ConvergenceError("did not converge", iterations=10),
        RuntimeUnavailableError("no R"),
    ])
    def test_base_class(self, exc):
        with pytest.raises(GLMMCompareError):
            raise exc

    def test_dimension_error_is_validation_error(self):
        with pytest.raises(ValidationError):
            raise DimensionError("wrong shape")

    def test_convergence_error_is_not_numerical_error(self):
        err = ConvergenceError("did not converge", iterations=100)
        assert not isinstance(err, NumericalError)


class TestConvergenceError:

    def test_all_attributes(self):
        err = ConvergenceError(
            "PIRLS did not converge",
            iterations=25,
            final_change=1e-4,
            reason="max_iterations",
        )
        assert str(err) == "PIRLS did not converge"
        assert err.iterations == 25
        assert err.final_change == 1e-4
        assert err.reason == "max_iterations"

    def test_defaults_are_none(self):
        err = ConvergenceError("failed", iterations=10)
        assert err.final_change is None
        assert err.reason is None


class TestRuntimeUnavailableError:

    def test_defaults(self):
        err = RuntimeUnavailableError("rpy2 is not installed")
        assert err.runtime == 'R'
        assert err.package is None

    def test_package(self):
        err = RuntimeUnavailableError("lme4 missing", package='lme4')
        assert err.package == 'lme4'
        assert "lme4" in str(err)
