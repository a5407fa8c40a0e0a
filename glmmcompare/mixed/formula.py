"""
lme4-style model formulas.

A formula such as

    prop ~ 0 + trt + trt:cov + (1 + cov | rep)

is split into a response column, a fixed-effects part expanded by patsy,
and one random-effects term per ``(expr | group)`` bar. The same string
is passed unchanged to lme4 in the R runtime, so coefficient names are
rewritten to R's spelling (``trt[A]:cov`` → ``trtA:cov``,
``Intercept`` → ``(Intercept)``) to line the two fits up.
"""

from __future__ import annotations

from dataclasses import dataclass
import re

import numpy as np
import pandas as pd
import patsy
from numpy.typing import NDArray

from glmmcompare.core.exceptions import ValidationError

_BAR = re.compile(r'\(\s*([^()|]+?)\s*(\|\|?)\s*([^()|]+?)\s*\)')
_LEVEL = re.compile(r'\[(?:T\.)?([^\]]*)\]')


@dataclass(frozen=True)
class RandomTerm:
    """One ``(expr | group)`` bar of a formula."""
    expr: str
    group: str


@dataclass(frozen=True)
class ModelFrame:
    """Everything the engine needs from a formula and a data frame.

    Attributes:
        formula: The original formula string.
        response: Name of the response column.
        y: Response vector (n,).
        X: Fixed effects design matrix (n, p).
        coefficient_names: R-style names of the columns of X.
        groups: Grouping factor name → labels (n,).
        random_effects: Grouping factor name → term names ('1' = intercept).
        random_data: Slope term name → values (n,).
    """
    formula: str
    response: str
    y: NDArray
    X: NDArray
    coefficient_names: tuple[str, ...]
    groups: dict[str, NDArray]
    random_effects: dict[str, list[str]]
    random_data: dict[str, NDArray]


def split_formula(formula: str) -> tuple[str, str, list[RandomTerm]]:
    """Split a formula into response, fixed right-hand side and bars.

    Returns:
        (response, fixed_rhs, random_terms). fixed_rhs is '1' when the
        formula has no fixed terms.

    Raises:
        ValidationError: On a missing '~', a missing bar or an
            uncorrelated ('||') bar.
    """
    if formula.count('~') != 1:
        raise ValidationError(
            f"Formula must contain exactly one '~', got {formula!r}"
        )
    lhs, rhs = (part.strip() for part in formula.split('~'))
    if not lhs:
        raise ValidationError(f"Formula has no response: {formula!r}")

    random_terms = []
    for expr, bar, group in _BAR.findall(rhs):
        if bar == '||':
            raise ValidationError(
                f"Uncorrelated random effects ('||') are not supported: "
                f"({expr} || {group})"
            )
        random_terms.append(RandomTerm(expr=expr.strip(), group=group.strip()))

    if not random_terms:
        raise ValidationError(
            f"Formula has no random-effects term '(expr | group)': {formula!r}"
        )

    fixed = _BAR.sub('', rhs)
    fixed = re.sub(r'(\+\s*)+', '+ ', fixed).strip().strip('+').strip()
    if '|' in fixed:
        raise ValidationError(f"Could not parse random-effects terms in {formula!r}")

    return lhs, fixed or '1', random_terms


def r_style_name(name: str) -> str:
    """Rewrite a patsy column name the way R's model.matrix spells it."""
    if name == 'Intercept':
        return '(Intercept)'
    return ':'.join(_LEVEL.sub(r'\1', part) for part in name.split(':'))


def _group_labels(data: pd.DataFrame, group: str) -> NDArray:
    """Labels for a grouping factor; 'a:b' is the interaction of a and b."""
    parts = [p.strip() for p in group.split(':')]
    missing = [p for p in parts if p not in data.columns]
    if missing:
        raise ValidationError(
            f"Grouping factor '{group}': columns {missing} not in data. "
            f"Available: {list(data.columns)}"
        )
    labels = data[parts[0]].astype(str)
    for p in parts[1:]:
        labels = labels + ':' + data[p].astype(str)
    return labels.to_numpy()


def _dmatrix(expr: str, data: pd.DataFrame) -> pd.DataFrame:
    try:
        return patsy.dmatrix(expr, data, return_type='dataframe', NA_action='raise')
    except patsy.PatsyError as e:
        raise ValidationError(f"Cannot build model matrix for {expr!r}: {e}") from e


def parse_formula(formula: str, data: pd.DataFrame) -> ModelFrame:
    """Build the fixed and random design from a formula and a data frame.

    Args:
        formula: lme4-style formula, e.g. 'prop ~ 0 + trt + trt:cov + (1 + cov | rep)'.
        data: Observation table.

    Returns:
        ModelFrame.

    Raises:
        ValidationError: On unknown columns, missing values or a
            grouping factor that appears in more than one bar.
    """
    response, fixed_rhs, random_terms = split_formula(formula)

    if response not in data.columns:
        raise ValidationError(
            f"Response '{response}' not in data. Available: {list(data.columns)}"
        )
    y = data[response].to_numpy(dtype=np.float64)

    X_df = _dmatrix(fixed_rhs, data)
    coef_names = tuple(r_style_name(c) for c in X_df.columns)

    groups: dict[str, NDArray] = {}
    random_effects: dict[str, list[str]] = {}
    random_data: dict[str, NDArray] = {}
    for term in random_terms:
        if term.group in groups:
            raise ValidationError(
                f"Grouping factor '{term.group}' appears in more than one "
                f"random-effects term"
            )
        groups[term.group] = _group_labels(data, term.group)

        Zt_df = _dmatrix(term.expr, data)
        names = []
        for col in Zt_df.columns:
            if col == 'Intercept':
                names.append('1')
                continue
            name = r_style_name(col)
            random_data[name] = Zt_df[col].to_numpy(dtype=np.float64)
            names.append(name)
        random_effects[term.group] = names

    return ModelFrame(
        formula=formula,
        response=response,
        y=y,
        X=X_df.to_numpy(dtype=np.float64),
        coefficient_names=coef_names,
        groups=groups,
        random_effects=random_effects,
        random_data=random_data,
    )
