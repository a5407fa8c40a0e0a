"""
Design validation for the GLMM engine.

MixedDesign validates and organizes the inputs for a GLMM fit: the
response y, prior weights, fixed effects matrix X, grouping variables,
and random effect specifications.
"""

from __future__ import annotations

from dataclasses import dataclass
import numpy as np
from numpy.typing import NDArray

from glmmcompare.core.exceptions import ValidationError
from glmmcompare.core.validation import (
    check_array, check_finite, check_1d, check_2d, check_consistent_length,
    check_min_samples, check_in_range, check_column_rank,
)


@dataclass(frozen=True)
class MixedDesign:
    """Validated design for a mixed model.

    Attributes:
        y: Response vector (n,).
        X: Fixed effects design matrix (n, p).
        weights: Prior weights (n,), e.g. number of binomial trials.
        groups: Dict of grouping factor name → group labels (n,).
        random_effects: Dict of group name → list of term names.
        random_data: Dict of variable name → data array (n,).
        n: Number of observations.
        p: Number of fixed effect columns.
    """
    y: NDArray
    X: NDArray
    weights: NDArray
    groups: dict[str, NDArray]
    random_effects: dict[str, list[str]] | None
    random_data: dict[str, NDArray] | None
    n: int
    p: int

    @staticmethod
    def validate(
        y: NDArray,
        X: NDArray,
        groups: dict[str, NDArray],
        random_effects: dict[str, list[str]] | None = None,
        random_data: dict[str, NDArray] | None = None,
        weights: NDArray | None = None,
    ) -> 'MixedDesign':
        """Validate inputs and create a MixedDesign.

        Args:
            y: Response vector.
            X: Fixed effects design matrix. If 1-D, treated as single column.
            groups: Dict mapping grouping factor names to group label arrays.
            random_effects: Optional dict mapping group names to term lists.
            random_data: Optional dict mapping variable names to data arrays.
            weights: Optional prior weights; unit weights if None.

        Returns:
            Validated MixedDesign.

        Raises:
            ValidationError: On invalid inputs.
            DimensionError: On length mismatches.
        """
        y = check_array(y, 'y').astype(np.float64)
        if y.ndim == 2 and y.shape[1] == 1:
            y = y.ravel()
        check_1d(y, 'y')
        check_min_samples(y, 3, 'y')
        check_finite(y, 'y')
        n = len(y)

        X = check_array(X, 'X').astype(np.float64)
        if X.ndim == 1:
            X = X.reshape(-1, 1)
        check_2d(X, 'X')
        check_consistent_length(y, X, names=('y', 'X'))
        check_finite(X, 'X')
        check_column_rank(X, 'X')
        p = X.shape[1]

        if weights is None:
            weights = np.ones(n, dtype=np.float64)
        else:
            weights = check_array(weights, 'weights').astype(np.float64)
            check_1d(weights, 'weights')
            check_consistent_length(y, weights, names=('y', 'weights'))
            check_finite(weights, 'weights')
            check_in_range(weights, 0.0, None, 'weights')

        if not groups:
            raise ValidationError("At least one grouping factor required")

        groups_validated = {}
        for name, g in groups.items():
            g = np.asarray(g)
            check_consistent_length(y, g, names=('y', f"groups['{name}']"))
            unique = np.unique(g)
            if len(unique) < 2:
                raise ValidationError(
                    f"Group '{name}' has only {len(unique)} level(s), "
                    f"need at least 2"
                )
            groups_validated[name] = g

        if random_effects is not None:
            for name in random_effects:
                if name not in groups:
                    raise ValidationError(
                        f"Random effect group '{name}' not found in groups dict. "
                        f"Available: {list(groups.keys())}"
                    )

        data_validated = None
        if random_data is not None:
            data_validated = {}
            for name, data in random_data.items():
                label = f"random_data['{name}']"
                data = check_array(data, label).astype(np.float64)
                check_1d(data, label)
                check_consistent_length(y, data, names=('y', label))
                check_finite(data, label)
                data_validated[name] = data

        return MixedDesign(
            y=y,
            X=X,
            weights=weights,
            groups=groups_validated,
            random_effects=random_effects,
            random_data=data_validated,
            n=n,
            p=p,
        )
