"""
Generalized linear mixed models fitted by the numpy/scipy engine.

Public API:
    glmm()          — fit a GLMM from arrays (fast nAGQ=0 or Laplace nAGQ=1)
    glmer()         — fit a GLMM from an lme4-style formula and a data frame
    parse_formula() — split a formula into fixed and random designs
    GLMMSolution    — result wrapper for GLMM
"""

from glmmcompare.mixed.solvers import glmm, glmer
from glmmcompare.mixed.solution import GLMMSolution
from glmmcompare.mixed.formula import parse_formula, ModelFrame

__all__ = [
    "glmm",
    "glmer",
    "parse_formula",
    "ModelFrame",
    "GLMMSolution",
]
