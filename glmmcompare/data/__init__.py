"""
Observation tables: file loading and derived binomial columns.
"""

from glmmcompare.data.loading import (
    load_observations,
    derive_columns,
    check_derived_columns,
)

__all__ = [
    "load_observations",
    "derive_columns",
    "check_derived_columns",
]
