"""
Shared fixtures for GLMM engine tests.
"""

import numpy as np
import pandas as pd
import pytest


@pytest.fixture
def identical_groups():
    """Every replicate has exactly the same counts: no between-group variance.

    4 replicates × 2 treatments × 5 covariate values = 40 rows.
    """
    rows = []
    fails = {'A': [2, 4, 7, 9, 13], 'B': [5, 6, 9, 14, 16]}
    for rep in ['r1', 'r2', 'r3', 'r4']:
        for trt in ['A', 'B']:
            for i, cov in enumerate(np.linspace(-1.0, 1.0, 5)):
                rows.append({'trt': trt, 'cov': cov, 'rep': rep,
                             'fail': fails[trt][i], 'tot': 20})
    df = pd.DataFrame(rows)
    df['prop'] = df['fail'] / df['tot']
    return df
