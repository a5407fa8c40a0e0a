"""
The comparison workflow.

    1. load the observation table
    2. derive tot = successes + failures and prop = failures / tot
    3. copy the table into R
    4. fit every configuration with the Python engine, and nAGQ=0/1 with lme4
    5. print log-likelihoods, coefficients and timings side by side
    6. re-fit the Python model from R's full fit (or, without R, from the
       Python full fit) and check that the optimum is reproduced

Everything is printed to one stream; nothing is written to disk.
"""

from __future__ import annotations

from dataclasses import dataclass, field
import logging
from pathlib import Path
import sys
from typing import TextIO

import pandas as pd

from glmmcompare.compare import (
    FitRecord, FitComparison, compare_fits, format_report,
    format_coefficients, check_fast_vs_full, check_refit,
)
from glmmcompare.core.compute.tolerances import CROSS_RUNTIME, loglik_close
from glmmcompare.core.config import FitConfig, DEFAULT_CONFIGS, DEFAULT_FORMULA
from glmmcompare.data import load_observations, derive_columns, check_derived_columns
from glmmcompare.mixed import glmer

logger = logging.getLogger(__name__)

_RULE = '=' * 72


@dataclass(frozen=True)
class WorkflowResult:
    """Everything one run of the workflow produced.

    Attributes:
        data: Observation table with derived columns.
        records: Every fit, Python first, in the order they ran.
        comparisons: Pairwise comparisons printed in the report.
        fast_vs_full: Engine → outcome of the fast vs full check.
        refit: Record of the re-fit, or None if no full fit was run.
        refit_ok: Outcome of the re-fit check, or None.
    """
    data: pd.DataFrame
    records: tuple[FitRecord, ...]
    comparisons: tuple[FitComparison, ...]
    fast_vs_full: dict[str, bool] = field(default_factory=dict)
    refit: FitRecord | None = None
    refit_ok: bool | None = None

    def record(self, engine: str, label: str) -> FitRecord:
        """Look up a record by engine and label."""
        for r in self.records:
            if r.engine == engine and r.label == label:
                return r
        raise KeyError(f"No {engine} fit labelled {label!r}")


def _first(records: list[FitRecord], engine: str, mode: str) -> FitRecord | None:
    for r in records:
        if r.engine == engine and r.mode == mode:
            return r
    return None


def _section(stream: TextIO, title: str) -> None:
    print('', file=stream)
    print(_RULE, file=stream)
    print(title, file=stream)
    print(_RULE, file=stream)


def run_comparison(
    path: str | Path,
    *,
    formula: str = DEFAULT_FORMULA,
    successes: str = 'succ',
    failures: str = 'fail',
    link: str = 'cloglog',
    configs: tuple[FitConfig, ...] = DEFAULT_CONFIGS,
    with_r: bool = True,
    stream: TextIO | None = None,
) -> WorkflowResult:
    """Run the full comparison on one data file.

    Args:
        path: Delimited observation table.
        formula: lme4-style formula, fitted unchanged in both runtimes.
        successes: Success count column.
        failures: Failure count column.
        link: Binomial link.
        configs: Python engine configurations to run.
        with_r: Also fit with lme4. Raises RuntimeUnavailableError if R
            cannot be reached.
        stream: Where the report is printed (default sys.stdout).

    Returns:
        WorkflowResult.
    """
    stream = stream if stream is not None else sys.stdout

    # 1-2. data
    df = load_observations(path)
    df = derive_columns(df, successes=successes, failures=failures)
    check_derived_columns(df, successes=successes, failures=failures)
    logger.info("derived tot and prop for %d rows", len(df))

    # 3. second runtime
    r_data = None
    if with_r:
        from glmmcompare.rbridge import transfer_frame
        r_data = transfer_frame(df)

    # 4. fits
    records: list[FitRecord] = []
    _section(stream, f"Formula: {formula}   family: binomial ({link})   weights: tot")
    for config in configs:
        logger.info("python fit %r (nAGQ=%d, %s)", config.name, config.nagq, config.optimizer)
        solution = glmer(
            formula, df,
            link=link,
            weights='tot',
            fast=config.fast,
            optimizer=config.optimizer,
            tol=config.tol,
            max_iter=config.max_iter,
        )
        records.append(FitRecord.from_solution(config.name, solution))
        if not config.fast and _first(records[:-1], 'python', 'full') is None:
            print(solution.summary(), file=stream)

    if with_r:
        from glmmcompare.rbridge import fit_lme4
        for nagq in sorted({c.nagq for c in configs}):
            records.append(fit_lme4(formula, r_data, link=link,
                                    weights='tot', nagq=nagq))

    # 5. report
    _section(stream, "Fits")
    print(format_report(records), file=stream)
    print('', file=stream)
    print(format_coefficients(records), file=stream)

    for r in records:
        for w in r.warnings:
            print(f"  [{r.engine}:{r.label}] {w}", file=stream)

    comparisons: list[FitComparison] = []
    fast_vs_full: dict[str, bool] = {}
    engines = ['python'] + (['R'] if with_r else [])
    for engine in engines:
        fast = _first(records, engine, 'fast')
        full = _first(records, engine, 'full')
        if fast is not None and full is not None:
            fast_vs_full[engine] = check_fast_vs_full(fast, full)
            comparisons.append(compare_fits(full, fast))

    py_full = _first(records, 'python', 'full')
    r_full = _first(records, 'R', 'full')
    if py_full is not None and r_full is not None:
        comparisons.append(compare_fits(r_full, py_full))
        if not loglik_close(py_full.log_likelihood, r_full.log_likelihood, CROSS_RUNTIME):
            logger.warning("python and R full-fit log-likelihoods differ by %.4f",
                           py_full.log_likelihood - r_full.log_likelihood)

    # 6. re-fit from the converged parameters of the other runtime
    refit = None
    refit_ok = None
    source = r_full if r_full is not None else py_full
    if py_full is not None:
        logger.info("re-fitting python from %s:%s", source.engine, source.label)
        base = next(c for c in configs if not c.fast)
        solution = glmer(
            formula, df,
            link=link,
            weights='tot',
            fast=False,
            optimizer=base.optimizer,
            theta0=source.theta,
            beta0=source.coefficients,
            tol=base.tol,
            max_iter=base.max_iter,
        )
        refit = FitRecord.from_solution(f"refit from {source.engine}", solution)
        records.append(refit)
        comparisons.append(compare_fits(source, refit))
        refit_ok = check_refit(py_full, refit)

    _section(stream, "Comparisons")
    for c in comparisons:
        print(c.summary(), file=stream)
    for engine, ok in fast_vs_full.items():
        print(f"fast <= full ({engine}): {'yes' if ok else 'NO'}", file=stream)
    if refit_ok is not None:
        print(f"refit reproduces python full logLik: {'yes' if refit_ok else 'NO'}",
              file=stream)

    return WorkflowResult(
        data=df,
        records=tuple(records),
        comparisons=tuple(comparisons),
        fast_vs_full=fast_vs_full,
        refit=refit,
        refit_ok=refit_ok,
    )
