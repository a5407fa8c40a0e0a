"""
Comparison of fit records and the console report.

compare_fits() lines two records up by coefficient name and grouping
factor. check_fast_vs_full() and check_refit() are the two
reproducibility checks the workflow runs:

    fast vs full   logLik(fast) <= logLik(full) + atol
    refit          |logLik(refit) - logLik(original)| <= atol + rtol·|logLik(original)|
"""

from __future__ import annotations

from dataclasses import dataclass
import logging

import numpy as np

from glmmcompare.compare.records import FitRecord
from glmmcompare.core.compute.tolerances import (
    ToleranceTier, FAST_VS_FULL, REFIT, loglik_close,
)

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class FitComparison:
    """Differences between a reference fit and a candidate fit.

    Attributes:
        reference: Label of the reference record.
        candidate: Label of the candidate record.
        loglik_diff: logLik(candidate) - logLik(reference).
        max_coef_diff: max |Δβ| over shared coefficient names (nan if none).
        shared_coefficients: Names present in both records.
        max_theta_diff: max |Δθ| over shared grouping factors (nan if none).
        time_ratio: elapsed(candidate) / elapsed(reference).
    """
    reference: str
    candidate: str
    loglik_diff: float
    max_coef_diff: float
    shared_coefficients: tuple[str, ...]
    max_theta_diff: float
    time_ratio: float

    def summary(self) -> str:
        return '\n'.join([
            f"{self.candidate} vs {self.reference}",
            f"  logLik difference: {self.loglik_diff:+.4f}",
            f"  max |Δ coef|:      {self.max_coef_diff:.3g} "
            f"({len(self.shared_coefficients)} shared)",
            f"  max |Δ θ|:         {self.max_theta_diff:.3g}",
            f"  time ratio:        {self.time_ratio:.2f}",
        ])


def _label(record: FitRecord) -> str:
    return f"{record.engine}:{record.label}"


def compare_fits(reference: FitRecord, candidate: FitRecord) -> FitComparison:
    """Compare two fits of the same model.

    Coefficients are matched by name and θ by grouping factor, so the
    records may come from different runtimes.
    """
    shared = tuple(n for n in reference.coefficients if n in candidate.coefficients)
    if shared:
        max_coef = max(abs(candidate.coefficients[n] - reference.coefficients[n])
                       for n in shared)
    else:
        max_coef = float('nan')

    theta_diffs = []
    for group, ref_block in reference.theta.items():
        cand_block = candidate.theta.get(group)
        if cand_block is None:
            continue
        ref_block = np.asarray(ref_block, dtype=np.float64)
        cand_block = np.asarray(cand_block, dtype=np.float64)
        if ref_block.shape == cand_block.shape:
            theta_diffs.append(float(np.max(np.abs(cand_block - ref_block))))
    max_theta = max(theta_diffs) if theta_diffs else float('nan')

    if reference.elapsed > 0:
        ratio = candidate.elapsed / reference.elapsed
    else:
        ratio = float('nan')

    return FitComparison(
        reference=_label(reference),
        candidate=_label(candidate),
        loglik_diff=candidate.log_likelihood - reference.log_likelihood,
        max_coef_diff=float(max_coef),
        shared_coefficients=shared,
        max_theta_diff=max_theta,
        time_ratio=ratio,
    )


def format_report(records: list[FitRecord] | tuple[FitRecord, ...]) -> str:
    """One row per fit: label, engine, mode, logLik, elapsed, flags."""
    width = max([len('label')] + [len(r.label) for r in records])
    lines = [
        f"{'label':<{width}s} {'engine':<7s} {'mode':<5s} "
        f"{'logLik':>12s} {'elapsed (s)':>12s} {'converged':>10s} {'singular':>9s}"
    ]
    for r in records:
        lines.append(
            f"{r.label:<{width}s} {r.engine:<7s} {r.mode:<5s} "
            f"{r.log_likelihood:12.4f} {r.elapsed:12.4f} "
            f"{str(r.converged):>10s} {str(r.singular):>9s}"
        )
    return '\n'.join(lines)


def format_coefficients(records: list[FitRecord] | tuple[FitRecord, ...]) -> str:
    """Fixed effects side by side, one column per fit."""
    names: list[str] = []
    for r in records:
        names.extend(n for n in r.coefficients if n not in names)
    width = max([len('term')] + [len(n) for n in names])
    headers = [_label(r) for r in records]
    col = max([10] + [len(h) for h in headers])

    lines = [f"{'term':<{width}s} " + ' '.join(f"{h:>{col}s}" for h in headers)]
    for name in names:
        cells = []
        for r in records:
            value = r.coefficients.get(name)
            cells.append(f"{value:{col}.5f}" if value is not None else f"{'NA':>{col}s}")
        lines.append(f"{name:<{width}s} " + ' '.join(cells))
    return '\n'.join(lines)


def check_fast_vs_full(
    fast: FitRecord,
    full: FitRecord,
    tol: ToleranceTier = FAST_VS_FULL,
) -> bool:
    """True if the fast fit does not beat the full fit by more than tol.atol."""
    ok = fast.log_likelihood <= full.log_likelihood + tol.atol
    if ok:
        logger.info("fast vs full (%s): logLik %.4f <= %.4f",
                    fast.engine, fast.log_likelihood, full.log_likelihood)
    else:
        logger.warning("fast vs full (%s): fast logLik %.4f exceeds full %.4f",
                       fast.engine, fast.log_likelihood, full.log_likelihood)
    return ok


def check_refit(
    original: FitRecord,
    refit: FitRecord,
    tol: ToleranceTier = REFIT,
) -> bool:
    """True if a re-fit reproduces the original log-likelihood within tol."""
    ok = loglik_close(refit.log_likelihood, original.log_likelihood, tol)
    if ok:
        logger.info("refit from %s: logLik %.4f reproduces %.4f",
                    _label(original), refit.log_likelihood, original.log_likelihood)
    else:
        logger.warning("refit from %s: logLik %.4f differs from %.4f by %.4g",
                       _label(original), refit.log_likelihood,
                       original.log_likelihood,
                       refit.log_likelihood - original.log_likelihood)
    return ok
