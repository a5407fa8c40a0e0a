"""
lme4 in an embedded R session, driven through rpy2.

The observation table is copied into R once (transfer_frame) and every
configuration is then fitted with lme4::glmer against that copy. Results
come back as FitRecords so they line up with fits of the Python engine.

θ ordering: lme4 stores each grouping factor's relative covariance factor
as its column-major lower triangle; the Python engine uses the row-major
lower triangle. The two agree for one or two terms per group and are
converted here otherwise. lme4 also orders grouping factors by decreasing
number of levels, so start values are placed by group and coefficient
name (order_start) rather than by position.
"""

from __future__ import annotations

import logging

import numpy as np
import pandas as pd
from numpy.typing import ArrayLike, NDArray

from glmmcompare.compare.records import FitRecord
from glmmcompare.core.compute.timing import timed
from glmmcompare.core.exceptions import (
    DimensionError, RuntimeUnavailableError, ValidationError,
)

logger = logging.getLogger(__name__)

_FIT = """
function(formula, data, family, link, weights, nagq, start) {
  args <- list(formula = stats::as.formula(formula), data = data,
               family = get(family, mode = "function")(link = link),
               nAGQ = nagq)
  if (!is.null(weights)) args$weights <- data[[weights]]
  if (!is.null(start)) args$start <- start
  do.call(lme4::glmer, args)
}
"""

_EXTRACT = """
function(fit, tol) {
  msgs <- c(unlist(fit@optinfo$conv$lme4$messages),
            unlist(fit@optinfo$warnings))
  code <- fit@optinfo$conv$opt
  list(
    fixef = lme4::fixef(fit),
    theta = lme4::getME(fit, "theta"),
    cnms = lme4::getME(fit, "cnms"),
    loglik = as.numeric(stats::logLik(fit)),
    singular = lme4::isSingular(fit, tol = tol),
    code = if (is.null(code)) 0L else as.integer(code),
    messages = if (is.null(msgs)) character(0) else as.character(msgs)
  )
}
"""


_STRUCTURE = """
function(formula, data, family, link, weights) {
  args <- list(formula = stats::as.formula(formula), data = data,
               family = get(family, mode = "function")(link = link))
  if (!is.null(weights)) args$weights <- data[[weights]]
  lf <- do.call(lme4::glFormula, args)
  list(groups = names(lf$reTrms$cnms), fixef = colnames(lf$X))
}
"""

def _robjects():
    """Import rpy2 and start R, or raise RuntimeUnavailableError."""
    try:
        import rpy2.robjects as ro
    except ImportError as e:
        raise RuntimeUnavailableError(
            "rpy2 is not installed; install glmmcompare[r] to fit with lme4",
            package='rpy2',
        ) from e
    except (OSError, RuntimeError, ValueError) as e:
        raise RuntimeUnavailableError(f"R could not be started: {e}") from e
    return ro


def _lme4(ro):
    from rpy2.robjects.packages import importr, PackageNotInstalledError
    try:
        return importr('lme4')
    except PackageNotInstalledError as e:
        raise RuntimeUnavailableError(
            "The R package 'lme4' is not installed", package='lme4',
        ) from e


def r_available() -> bool:
    """True if rpy2 imports and R has lme4 installed."""
    try:
        _lme4(_robjects())
    except RuntimeUnavailableError as e:
        logger.info("R runtime unavailable: %s", e)
        return False
    return True


def transfer_frame(df: pd.DataFrame):
    """Copy a DataFrame into R as a data.frame.

    Object (string) columns are sent as R factors.
    """
    ro = _robjects()
    from rpy2.robjects import pandas2ri
    from rpy2.robjects.conversion import localconverter

    frame = df.copy()
    for col in frame.columns:
        if frame[col].dtype == object:
            frame[col] = frame[col].astype('category')

    with localconverter(ro.default_converter + pandas2ri.converter):
        r_data = ro.conversion.get_conversion().py2rpy(frame)
    logger.info("transferred %d rows x %d columns to R", len(frame), frame.shape[1])
    return r_data


def column_to_row_major(block: ArrayLike, q: int) -> NDArray:
    """Reorder a column-major lower triangle to row-major."""
    T = np.zeros((q, q), dtype=np.float64)
    T.T[np.triu_indices(q)] = np.asarray(block, dtype=np.float64)
    return T[np.tril_indices(q)]


def row_to_column_major(block: ArrayLike, q: int) -> NDArray:
    """Reorder a row-major lower triangle to column-major."""
    T = np.zeros((q, q), dtype=np.float64)
    T[np.tril_indices(q)] = np.asarray(block, dtype=np.float64)
    return T.T[np.triu_indices(q)]


def _n_terms(size: int) -> int:
    q = int(round((np.sqrt(8 * size + 1) - 1) / 2))
    if q * (q + 1) // 2 != size:
        raise ValidationError(f"{size} is not the size of a lower triangle")
    return q


def order_start(
    theta0: ArrayLike | dict[str, ArrayLike] | None,
    beta0: ArrayLike | dict[str, float] | None,
    groups: list[str],
    fixef_names: list[str],
) -> tuple[NDArray | None, NDArray | None]:
    """Arrange start values in lme4's parameter order.

    lme4 sorts grouping factors by decreasing number of levels, so its θ
    order generally differs from the order of the formula's bars.

    Args:
        theta0: dict group → row-major lower triangle, or a flat vector
            already in lme4 order.
        beta0: dict name → value, or a vector already in lme4 order.
        groups: Grouping factors in lme4's θ order (names of cnms).
        fixef_names: Fixed-effect names in lme4's order (columns of X).

    Returns:
        (theta, fixef); either is None when its start value is None.

    Raises:
        ValidationError: A dict start does not name exactly the model's
            groups or coefficients.
        DimensionError: A vector start has the wrong length.
    """
    theta = None
    if isinstance(theta0, dict):
        _check_names(theta0, groups, 'theta0', 'grouping factors')
        theta = np.concatenate([
            row_to_column_major(block, _n_terms(block.size))
            for block in (np.asarray(theta0[g], dtype=np.float64).ravel()
                          for g in groups)
        ])
    elif theta0 is not None:
        theta = np.asarray(theta0, dtype=np.float64).ravel()

    fixef = None
    if isinstance(beta0, dict):
        _check_names(beta0, fixef_names, 'beta0', 'coefficients')
        fixef = np.array([beta0[name] for name in fixef_names], dtype=np.float64)
    elif beta0 is not None:
        fixef = np.asarray(beta0, dtype=np.float64).ravel()
        if fixef.size != len(fixef_names):
            raise DimensionError(
                f"beta0 has {fixef.size} elements, expected {len(fixef_names)}"
            )

    return theta, fixef


def _check_names(given: dict, expected: list[str], arg: str, what: str) -> None:
    missing = [k for k in expected if k not in given]
    extra = [k for k in given if k not in expected]
    if missing or extra:
        raise ValidationError(
            f"{arg} does not match the model's {what}: missing {missing}, "
            f"unknown {extra}. Expected: {expected}"
        )


def _start_list(ro, theta: NDArray | None, fixef: NDArray | None,
                fixef_names: list[str]):
    """lme4 start=list(theta=, fixef=) from values in lme4 order."""
    if theta is None and fixef is None:
        return ro.NULL
    items = {}
    if theta is not None:
        items['theta'] = ro.FloatVector(theta)
    if fixef is not None:
        vec = ro.FloatVector(fixef)
        vec.names = ro.StrVector(fixef_names)
        items['fixef'] = vec
    return ro.ListVector(items)


def fit_lme4(
    formula: str,
    r_data,
    *,
    family: str = 'binomial',
    link: str = 'cloglog',
    weights: str | None = 'tot',
    nagq: int = 1,
    theta0: ArrayLike | dict[str, ArrayLike] | None = None,
    beta0: ArrayLike | dict[str, float] | None = None,
    label: str | None = None,
    singular_tol: float = 1e-4,
) -> FitRecord:
    """Fit a GLMM with lme4::glmer in the embedded R session.

    Args:
        formula: lme4 formula string.
        r_data: R data.frame from transfer_frame().
        family: R family function name.
        link: Link name passed to the family.
        weights: Name of the prior-weights column, or None.
        nagq: 0 for the fast fit, 1 for the Laplace fit.
        theta0: Starting θ, as a dict group → row-major lower triangle
            or a flat vector already in lme4 order. Dict blocks are
            placed by group name.
        beta0: Starting fixed effects, dict name → value (placed by
            name) or a vector in lme4 order.
        label: Record label; defaults to 'fast' or 'full'.
        singular_tol: Tolerance for lme4::isSingular.

    Returns:
        FitRecord with engine 'R'. Only the glmer call is timed.

    Raises:
        RuntimeUnavailableError: rpy2 or lme4 is missing.
        rpy2.rinterface_lib.embedded.RRuntimeError: R failed to fit.
    """
    if nagq not in (0, 1):
        raise ValidationError(f"nagq must be 0 or 1, got {nagq}")

    ro = _robjects()
    _lme4(ro)

    fit_fn = ro.r(_FIT)
    extract_fn = ro.r(_EXTRACT)
    weights_r = ro.NULL if weights is None else weights

    start = ro.NULL
    if theta0 is not None or beta0 is not None:
        structure = ro.r(_STRUCTURE)(formula, r_data, family, link, weights_r)
        groups = [str(g) for g in structure.rx2('groups')]
        fixef_names = [str(n) for n in structure.rx2('fixef')]
        theta_start, fixef_start = order_start(theta0, beta0, groups, fixef_names)
        start = _start_list(ro, theta_start, fixef_start, fixef_names)

    mode = 'fast' if nagq == 0 else 'full'
    logger.info("lme4::glmer %s (nAGQ=%d)", formula, nagq)
    with timed() as timer:
        fit = fit_fn(formula, r_data, family, link, weights_r, nagq, start)
    elapsed = timer.result()['total_seconds']

    out = extract_fn(fit, singular_tol)
    fixef_r = out.rx2('fixef')
    coefficients = {str(name): float(v)
                    for name, v in zip(fixef_r.names, np.asarray(fixef_r))}

    theta_r = np.asarray(out.rx2('theta'), dtype=np.float64)
    cnms = out.rx2('cnms')
    theta: dict[str, NDArray] = {}
    offset = 0
    for group, terms in zip(cnms.names, cnms):
        q = len(terms)
        size = q * (q + 1) // 2
        theta[str(group)] = column_to_row_major(theta_r[offset:offset + size], q)
        offset += size

    messages = tuple(str(m) for m in out.rx2('messages'))
    code = int(out.rx2('code')[0])
    singular = bool(out.rx2('singular')[0])
    converged = code == 0 and not any('converge' in m for m in messages)
    warn_list = list(messages)
    if singular and not any('singular' in m for m in messages):
        warn_list.append("boundary (singular) fit: see help('isSingular')")

    record = FitRecord(
        label=label or mode,
        engine='R',
        mode=mode,
        coefficients=coefficients,
        theta=theta,
        log_likelihood=float(out.rx2('loglik')[0]),
        converged=converged,
        singular=singular,
        elapsed=elapsed,
        warnings=tuple(warn_list),
        optimizer='lme4 default',
    )
    logger.debug("lme4 fit: %r", record)
    return record
