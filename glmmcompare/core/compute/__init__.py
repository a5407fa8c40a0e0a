"""
Shared compute infrastructure: timing and tolerance tiers.
"""

from glmmcompare.core.compute.timing import Timer, timed
from glmmcompare.core.compute.tolerances import (
    ToleranceTier,
    REFIT,
    FAST_VS_FULL,
    CROSS_RUNTIME,
    loglik_close,
)

__all__ = [
    "Timer",
    "timed",
    "ToleranceTier",
    "REFIT",
    "FAST_VS_FULL",
    "CROSS_RUNTIME",
    "loglik_close",
]
