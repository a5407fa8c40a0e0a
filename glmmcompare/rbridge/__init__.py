"""
Second statistical runtime: lme4 in R through rpy2.

Requires the optional extra ``glmmcompare[r]`` and an R installation with
lme4. Every entry point raises RuntimeUnavailableError when either is
missing.
"""

from glmmcompare.rbridge.lme4 import (
    r_available,
    transfer_frame,
    fit_lme4,
    column_to_row_major,
    row_to_column_major,
    order_start,
)

__all__ = [
    "r_available",
    "transfer_frame",
    "fit_lme4",
    "column_to_row_major",
    "row_to_column_major",
    "order_start",
]
