"""
glmmcompare: GLMM fits compared across two runtimes.

Fits a binomial GLMM (cloglog link, trials as weights) with a numpy/scipy
engine and with lme4 in R, in fast (nAGQ=0) and full (nAGQ=1) modes, and
reports log-likelihoods, coefficients and timings side by side.

Submodules:
    data: Observation tables and derived columns
    mixed: The Python GLMM engine
    rbridge: lme4 through rpy2
    compare: Fit records and the report
    workflow: The end-to-end comparison
"""

__version__ = "0.1.0"

from glmmcompare import data
from glmmcompare import mixed
from glmmcompare import compare
from glmmcompare.mixed import glmm, glmer, GLMMSolution
from glmmcompare.compare import FitRecord
from glmmcompare.workflow import run_comparison

__all__ = [
    "__version__",
    "data",
    "mixed",
    "compare",
    "glmm",
    "glmer",
    "GLMMSolution",
    "FitRecord",
    "run_comparison",
]
