"""
Array validators shared by the engine and the data layer.

Each helper checks one property of one named input and raises a
ValidationError (or DimensionError for shape problems) whose message
names the input and reports what was found. Nothing is repaired in
place: a bad input stops the fit before any optimization starts.
"""

import numpy as np
from numpy.typing import ArrayLike, NDArray
from typing import Any

from glmmcompare.core.exceptions import ValidationError, DimensionError


def check_array(
    array: ArrayLike,
    name: str,
) -> NDArray[np.floating[Any]]:
    """
    Convert an array-like to a numeric float array.

    Integer and boolean input is promoted to float64. Strings, mixed
    lists and other object data are rejected.

    Raises:
        ValidationError: If the input is not numeric
    """
    try:
        result = np.asarray(array)
    except (ValueError, TypeError) as e:
        raise ValidationError(f"{name}: cannot convert to array: {e}") from e

    if result.dtype == object:
        raise ValidationError(
            f"{name}: converted to object dtype, indicating mixed types or non-numeric data"
        )
    if result.dtype == bool:
        return result.astype(np.float64)
    if not np.issubdtype(result.dtype, np.number):
        raise ValidationError(
            f"{name}: non-numeric dtype {result.dtype}, expected numeric data"
        )
    if not np.issubdtype(result.dtype, np.floating):
        result = result.astype(np.float64)
    return result


def check_finite(array: NDArray[np.floating[Any]], name: str) -> None:
    """Reject NaN and Inf, reporting how many of each were found."""
    if not np.all(np.isfinite(array)):
        n_nan = int(np.sum(np.isnan(array)))
        n_inf = int(np.sum(np.isinf(array)))
        raise ValidationError(
            f"{name}: contains non-finite values ({n_nan} NaN, {n_inf} Inf)"
        )


def _check_ndim(array: NDArray, ndim: int, name: str) -> None:
    if array.ndim != ndim:
        raise DimensionError(
            f"{name}: expected {ndim}D array, got {array.ndim}D with shape {array.shape}"
        )


def check_1d(array: NDArray[np.floating[Any]], name: str) -> None:
    """Require a vector."""
    _check_ndim(array, 1, name)


def check_2d(array: NDArray[np.floating[Any]], name: str) -> None:
    """Require a matrix."""
    _check_ndim(array, 2, name)


def check_consistent_length(
    *arrays: NDArray,
    names: tuple[str, ...]
) -> None:
    """
    Require every array to have the same number of rows.

    Args:
        *arrays: Arrays indexed by observation along axis 0
        names: One name per array, used in the error message

    Raises:
        ValueError: If names and arrays differ in number
        DimensionError: If the row counts differ
    """
    if len(arrays) != len(names):
        raise ValueError(
            f"Number of arrays ({len(arrays)}) must match number of names ({len(names)})"
        )

    lengths = [arr.shape[0] for arr in arrays]
    if len(set(lengths)) > 1:
        details = ", ".join(f"{name}={length}" for name, length in zip(names, lengths))
        raise DimensionError(f"Inconsistent lengths: {details}")


def check_min_samples(array: NDArray, min_samples: int, name: str) -> None:
    """Require at least min_samples rows."""
    n = array.shape[0]
    if n < min_samples:
        raise ValidationError(
            f"{name}: requires at least {min_samples} samples, got {n}"
        )


def check_in_range(
    array: NDArray[np.floating[Any]],
    low: float | None,
    high: float | None,
    name: str,
) -> None:
    """
    Require low <= array <= high elementwise. Either bound may be None.

    Raises:
        ValidationError: Naming the count and the first offending index
    """
    bad = np.zeros(array.shape, dtype=bool)
    if low is not None:
        bad |= array < low
    if high is not None:
        bad |= array > high
    if np.any(bad):
        first = int(np.flatnonzero(bad)[0])
        lo = '-inf' if low is None else f'{low:g}'
        hi = 'inf' if high is None else f'{high:g}'
        raise ValidationError(
            f"{name}: {int(bad.sum())} value(s) outside [{lo}, {hi}] "
            f"(first at index {first}: {array.ravel()[first]:g})"
        )


def check_column_rank(X: NDArray[np.floating[Any]], name: str) -> None:
    """
    Require full column rank.

    An intercept next to a complete set of treatment dummies, for
    example, leaves the fixed effects unidentifiable.

    Raises:
        ValidationError: If the matrix is rank-deficient
    """
    n, p = X.shape
    rank = np.linalg.matrix_rank(X)
    if rank < p:
        raise ValidationError(
            f"{name}: rank-deficient (rank={rank}, expected={min(n, p)}). "
            f"This indicates perfect multicollinearity."
        )
