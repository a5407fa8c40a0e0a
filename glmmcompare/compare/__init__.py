"""
Comparison of fits across optimizer modes and runtimes.
"""

from glmmcompare.compare.records import FitRecord
from glmmcompare.compare.report import (
    FitComparison,
    compare_fits,
    format_report,
    format_coefficients,
    check_fast_vs_full,
    check_refit,
)

__all__ = [
    "FitRecord",
    "FitComparison",
    "compare_fits",
    "format_report",
    "format_coefficients",
    "check_fast_vs_full",
    "check_refit",
]
