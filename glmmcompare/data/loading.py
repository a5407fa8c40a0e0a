"""
Observation tables: loading and derived columns.

The input is a delimited table with treatment, covariate, replicate,
success and failure columns. The binomial response is fitted as a
proportion with the number of trials as prior weights, so two columns
are derived before any fit:

    tot  = successes + failures
    prop = failures / tot
"""

from __future__ import annotations

import logging
from pathlib import Path

import numpy as np
import pandas as pd

from glmmcompare.core.exceptions import ValidationError

logger = logging.getLogger(__name__)

_SEPARATORS = {
    '.csv': ',',
    '.tsv': '\t',
    '.tab': '\t',
}


def load_observations(
    path: str | Path,
    *,
    columns: list[str] | None = None,
) -> pd.DataFrame:
    """Read an observation table from a delimited file.

    Args:
        path: File path. '.csv' is comma separated, '.tsv' and '.tab'
            are tab separated.
        columns: Columns that must be present. When given, only these
            columns are returned, in this order.

    Returns:
        pandas DataFrame.

    Raises:
        ValidationError: Unknown file format, empty table, or missing
            required columns.
    """
    path = Path(path)
    suffix = path.suffix.lower()

    if suffix not in _SEPARATORS:
        raise ValidationError(
            f"Unknown file format: {suffix!r}. "
            f"Supported: {', '.join(sorted(_SEPARATORS))}"
        )

    df = pd.read_csv(path, sep=_SEPARATORS[suffix])
    df.columns = [str(c).strip() for c in df.columns]

    if len(df) == 0:
        raise ValidationError(f"{path} contains no observations")

    if columns is not None:
        missing = [c for c in columns if c not in df.columns]
        if missing:
            raise ValidationError(
                f"{path} is missing required columns {missing}. "
                f"Available: {list(df.columns)}"
            )
        df = df[list(columns)]

    logger.info("loaded %d observations from %s", len(df), path)
    return df


def _count_column(df: pd.DataFrame, name: str) -> np.ndarray:
    if name not in df.columns:
        raise ValidationError(
            f"Count column '{name}' not in data. Available: {list(df.columns)}"
        )
    values = pd.to_numeric(df[name], errors='coerce').to_numpy(dtype=np.float64)
    if np.any(np.isnan(values)):
        raise ValidationError(f"Count column '{name}' contains missing or non-numeric values")
    if np.any(values < 0):
        raise ValidationError(f"Count column '{name}' contains negative counts")
    if np.any(values != np.round(values)):
        raise ValidationError(f"Count column '{name}' contains non-integer counts")
    return values


def derive_columns(
    df: pd.DataFrame,
    *,
    successes: str,
    failures: str,
    total: str = 'tot',
    proportion: str = 'prop',
) -> pd.DataFrame:
    """Add total-trials and proportion columns.

    Args:
        df: Observation table.
        successes: Name of the success count column.
        failures: Name of the failure count column.
        total: Name of the derived total column.
        proportion: Name of the derived proportion column (failures / total).

    Returns:
        A copy of df with the two derived columns.

    Raises:
        ValidationError: Missing, negative or non-integer counts, or rows
            with zero trials.
    """
    s = _count_column(df, successes)
    f = _count_column(df, failures)
    tot = s + f

    zero = np.flatnonzero(tot == 0)
    if zero.size > 0:
        raise ValidationError(
            f"{zero.size} rows have zero trials "
            f"(first at row {int(zero[0])}); proportion is undefined"
        )

    out = df.copy()
    out[total] = tot.astype(np.int64)
    out[proportion] = f / tot
    return out


def check_derived_columns(
    df: pd.DataFrame,
    *,
    successes: str,
    failures: str,
    total: str = 'tot',
    proportion: str = 'prop',
    atol: float = 1e-12,
) -> None:
    """Verify total == successes + failures and proportion == failures / total.

    Raises:
        ValidationError: Naming the first row that breaks an invariant.
    """
    for name in (successes, failures, total, proportion):
        if name not in df.columns:
            raise ValidationError(f"Column '{name}' not in data")

    s = df[successes].to_numpy(dtype=np.float64)
    f = df[failures].to_numpy(dtype=np.float64)
    tot = df[total].to_numpy(dtype=np.float64)
    prop = df[proportion].to_numpy(dtype=np.float64)

    bad = np.flatnonzero(tot != s + f)
    if bad.size > 0:
        raise ValidationError(
            f"'{total}' != '{successes}' + '{failures}' in {bad.size} rows "
            f"(first at row {int(bad[0])})"
        )

    bad = np.flatnonzero(~np.isclose(prop * tot, f, rtol=0.0, atol=atol * np.maximum(tot, 1)))
    if bad.size > 0:
        raise ValidationError(
            f"'{proportion}' != '{failures}' / '{total}' in {bad.size} rows "
            f"(first at row {int(bad[0])})"
        )

    if np.any((prop < 0) | (prop > 1)):
        raise ValidationError(f"'{proportion}' has values outside [0, 1]")
