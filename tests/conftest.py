"""
pytest configuration and shared fixtures.
"""

import warnings

import numpy as np
import pandas as pd
import pytest

from glmmcompare.core.config import DEFAULT_FORMULA
from glmmcompare.mixed import glmer


@pytest.fixture
def rng():
    """Seeded random number generator for reproducible tests."""
    return np.random.default_rng(42)


def _cloglog_counts(rng, *, n_rep=6, treatments=('A', 'B', 'C'),
                    covariates=np.linspace(-1.0, 1.0, 8),
                    sd_intercept=0.5, sd_slope=0.4, rho=0.2):
    """Binomial counts with a cloglog link and (1 + cov | rep) effects."""
    beta = {'A': (-1.0, 0.6), 'B': (-0.4, -0.3), 'C': (0.2, 0.9)}
    cov_matrix = np.array([
        [sd_intercept**2, rho * sd_intercept * sd_slope],
        [rho * sd_intercept * sd_slope, sd_slope**2],
    ])
    re = rng.multivariate_normal([0.0, 0.0], cov_matrix, size=n_rep)

    rows = []
    for r in range(n_rep):
        for trt in treatments:
            for cov in covariates:
                b0, b1 = beta[trt]
                eta = b0 + re[r, 0] + (b1 + re[r, 1]) * cov
                p_fail = 1.0 - np.exp(-np.exp(eta))
                tot = int(rng.integers(20, 51))
                fail = int(rng.binomial(tot, p_fail))
                rows.append({
                    'trt': trt,
                    'cov': float(cov),
                    'rep': f'r{r + 1}',
                    'succ': tot - fail,
                    'fail': fail,
                })
    return pd.DataFrame(rows)


@pytest.fixture(scope="session")
def counts_frame():
    """Observation table: trt × cov × rep with success and failure counts.

    3 treatments, 8 covariate values, 6 replicates = 144 rows. Shared
    across the session; tests must copy before mutating.
    """
    return _cloglog_counts(np.random.default_rng(42))


@pytest.fixture(scope="session")
def derived_frame(counts_frame):
    """counts_frame with tot and prop added."""
    df = counts_frame.copy()
    df['tot'] = df['succ'] + df['fail']
    df['prop'] = df['fail'] / df['tot']
    return df


@pytest.fixture
def counts_csv(tmp_path, counts_frame):
    """counts_frame written to a CSV file."""
    path = tmp_path / 'counts.csv'
    counts_frame.to_csv(path, index=False)
    return path


@pytest.fixture(scope="session")
def fast_fit(derived_frame):
    """nAGQ=0 fit of prop ~ 0 + trt + trt:cov + (1 + cov | rep)."""
    with warnings.catch_warnings():
        warnings.simplefilter("ignore")
        return glmer(DEFAULT_FORMULA, derived_frame, link='cloglog',
                     weights='tot', fast=True)


@pytest.fixture(scope="session")
def full_fit(derived_frame):
    """nAGQ=1 fit of the same model."""
    with warnings.catch_warnings():
        warnings.simplefilter("ignore")
        return glmer(DEFAULT_FORMULA, derived_frame, link='cloglog',
                     weights='tot', fast=False)
