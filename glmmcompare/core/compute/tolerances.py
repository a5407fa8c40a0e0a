"""
Tolerance tiers for comparing fits.

Defines how close two fits must be before the report calls them equal:
- refit: the same engine restarted from its own (or the other runtime's)
  optimum
- fast vs full: the approximate fit may only fall short of the full fit
- cross runtime: independent packages, different optimizers and stopping
  rules

Used by the comparison layer, the workflow and the test suite.
"""

from dataclasses import dataclass


@dataclass(frozen=True)
class ToleranceTier:
    """Tolerance specification for numerical comparison."""
    rtol: float
    atol: float
    name: str
    description: str


# Restarting at a converged optimum must land on the same log-likelihood
REFIT = ToleranceTier(
    rtol=1e-6,
    atol=1e-3,
    name='refit',
    description='Same model restarted from converged θ and β',
)

# logLik(fast) <= logLik(full) + atol
FAST_VS_FULL = ToleranceTier(
    rtol=0.0,
    atol=1e-4,
    name='fast_vs_full',
    description='nAGQ=0 fit can only fall short of the Laplace fit',
)

# Independent packages: log-likelihood within half a unit, coefficients
# to about two significant digits
CROSS_RUNTIME = ToleranceTier(
    rtol=1e-2,
    atol=0.5,
    name='cross_runtime',
    description='Python engine vs lme4 on the same data and formula',
)


def loglik_close(a: float, b: float, tier: ToleranceTier) -> bool:
    """Return True if two log-likelihoods agree within the tier."""
    return abs(a - b) <= tier.atol + tier.rtol * abs(b)
