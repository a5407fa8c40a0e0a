"""
GLM family and link function specifications for the GLMM engine.

Each Family defines:
- A variance function V(μ) relating variance to the mean
- A default link function g(μ) mapping the mean to the linear predictor
- A deviance function used inside PIRLS
- A log-likelihood function for logLik / AIC
- An initialization function for PIRLS starting values

Each Link defines:
- g(μ) → η  (link)
- g⁻¹(η) → μ  (inverse link)
- dμ/dη  (derivative of inverse link, for PIRLS weights)

Prior weights follow R's binomial convention: the response is a
proportion and the weight is the number of trials.

References:
    McCullagh, P., & Nelder, J. A. (1989). Generalized Linear Models (2nd ed.)
    R Core Team. stats::family, stats::make.link
"""

from __future__ import annotations

from abc import ABC, abstractmethod
import numpy as np
from numpy.typing import NDArray
from scipy import stats
from scipy.special import gammaln

from glmmcompare.core.validation import check_in_range

_EPS = np.finfo(np.float64).eps


# =====================================================================
# Link functions
# =====================================================================

class Link(ABC):
    """Abstract link function g(μ) mapping mean to linear predictor."""

    @property
    @abstractmethod
    def name(self) -> str:
        ...

    @abstractmethod
    def link(self, mu: NDArray) -> NDArray:
        """g(μ) → η."""
        ...

    @abstractmethod
    def linkinv(self, eta: NDArray) -> NDArray:
        """g⁻¹(η) → μ."""
        ...

    @abstractmethod
    def mu_eta(self, eta: NDArray) -> NDArray:
        """dμ/dη = (g⁻¹)'(η)."""
        ...

    def __repr__(self) -> str:
        return f"{self.__class__.__name__}()"


class LogitLink(Link):
    """Logit link: g(μ) = log(μ/(1-μ)). Default for Binomial family."""

    @property
    def name(self) -> str:
        return 'logit'

    def link(self, mu: NDArray) -> NDArray:
        mu = np.clip(mu, 1e-10, 1 - 1e-10)
        return np.log(mu / (1 - mu))

    def linkinv(self, eta: NDArray) -> NDArray:
        # Clip to prevent overflow in exp
        eta = np.clip(eta, -500, 500)
        return 1.0 / (1.0 + np.exp(-eta))

    def mu_eta(self, eta: NDArray) -> NDArray:
        eta = np.clip(eta, -500, 500)
        p = 1.0 / (1.0 + np.exp(-eta))
        return np.maximum(p * (1.0 - p), 1e-10)


class ProbitLink(Link):
    """Probit link: g(μ) = Φ⁻¹(μ)."""

    @property
    def name(self) -> str:
        return 'probit'

    def link(self, mu: NDArray) -> NDArray:
        mu = np.clip(mu, 1e-10, 1 - 1e-10)
        return stats.norm.ppf(mu)

    def linkinv(self, eta: NDArray) -> NDArray:
        return stats.norm.cdf(eta)

    def mu_eta(self, eta: NDArray) -> NDArray:
        return np.maximum(stats.norm.pdf(eta), 1e-10)


class CloglogLink(Link):
    """Complementary log-log link: g(μ) = log(-log(1-μ)).

    Asymmetric alternative to logit/probit: μ approaches 1 much faster
    than it leaves 0. Bounds match R's make.link("cloglog"):
    g⁻¹(η) is clamped to [ε, 1-ε] and dμ/dη is floored at ε with η
    capped at 700.
    """

    @property
    def name(self) -> str:
        return 'cloglog'

    def link(self, mu: NDArray) -> NDArray:
        mu = np.clip(mu, _EPS, 1 - _EPS)
        return np.log(-np.log1p(-mu))

    def linkinv(self, eta: NDArray) -> NDArray:
        eta = np.minimum(eta, 700.0)
        return np.clip(-np.expm1(-np.exp(eta)), _EPS, 1 - _EPS)

    def mu_eta(self, eta: NDArray) -> NDArray:
        eta = np.minimum(eta, 700.0)
        return np.maximum(np.exp(eta) * np.exp(-np.exp(eta)), _EPS)


class LogLink(Link):
    """Log link: g(μ) = log(μ). Default for Poisson family."""

    @property
    def name(self) -> str:
        return 'log'

    def link(self, mu: NDArray) -> NDArray:
        return np.log(np.maximum(mu, 1e-10))

    def linkinv(self, eta: NDArray) -> NDArray:
        # Clip to prevent overflow
        eta = np.clip(eta, -500, 500)
        return np.exp(eta)

    def mu_eta(self, eta: NDArray) -> NDArray:
        eta = np.clip(eta, -500, 500)
        return np.exp(eta)


# =====================================================================
# Link name → class mapping
# =====================================================================

_LINK_CLASSES: dict[str, type[Link]] = {
    'logit': LogitLink,
    'probit': ProbitLink,
    'cloglog': CloglogLink,
    'log': LogLink,
}


def resolve_link(link: str | Link | None, default: Link) -> Link:
    """Resolve a link argument to a Link instance."""
    if link is None:
        return default
    if isinstance(link, Link):
        return link
    if isinstance(link, str):
        cls = _LINK_CLASSES.get(link.lower())
        if cls is None:
            valid = ', '.join(sorted(_LINK_CLASSES.keys()))
            raise ValueError(f"Unknown link: {link!r}. Valid links: {valid}")
        return cls()
    raise TypeError(f"link must be str or Link, got {type(link).__name__}")


# =====================================================================
# Family base class
# =====================================================================

class Family(ABC):
    """
    GLM family specification.

    Defines the relationship between the mean and variance of the
    response distribution, along with a link function.
    """

    _valid_links: tuple[str, ...] = ()

    def __init__(self, link: str | Link | None = None):
        resolved = resolve_link(link, self._default_link())
        if self._valid_links and resolved.name not in self._valid_links:
            raise ValueError(
                f"Link {resolved.name!r} is not valid for the {self.name} "
                f"family. Valid links: {', '.join(self._valid_links)}"
            )
        self._link = resolved

    @property
    @abstractmethod
    def name(self) -> str:
        ...

    @abstractmethod
    def _default_link(self) -> Link:
        ...

    @property
    def link(self) -> Link:
        return self._link

    @abstractmethod
    def variance(self, mu: NDArray) -> NDArray:
        """Variance function V(μ)."""
        ...

    @abstractmethod
    def deviance(self, y: NDArray, mu: NDArray, wt: NDArray) -> float:
        """Compute total deviance: 2 * Σ wt_i * d(y_i, μ_i)."""
        ...

    @abstractmethod
    def check_response(self, y: NDArray) -> None:
        """Raise ValidationError if y is outside the support of the family."""
        ...

    @abstractmethod
    def initialize(self, y: NDArray, wt: NDArray) -> NDArray:
        """Initialize μ from y for PIRLS starting values.

        Must return values in the valid range for the link function.
        """
        ...

    @abstractmethod
    def log_likelihood(
        self, y: NDArray, mu: NDArray, wt: NDArray, dispersion: float
    ) -> float:
        """Compute the conditional log-likelihood Σ log f(y_i | μ_i).

        Includes normalizing constants so that the value matches R's
        family$aic() / (-2).
        """
        ...

    def __repr__(self) -> str:
        return f"{self.__class__.__name__}(link={self._link.name!r})"


# =====================================================================
# Concrete families
# =====================================================================

class Binomial(Family):
    """Binomial family. Default link: logit.

    y is the observed proportion and wt the number of trials, so the
    success count is wt·y.

    V(μ) = μ(1-μ)
    Deviance = 2 * Σ wt_i * [y_i log(y_i/μ_i) + (1-y_i) log((1-y_i)/(1-μ_i))]
    """

    _valid_links = ('logit', 'probit', 'cloglog', 'log')

    @property
    def name(self) -> str:
        return 'binomial'

    def _default_link(self) -> Link:
        return LogitLink()

    def variance(self, mu: NDArray) -> NDArray:
        mu = np.clip(mu, 1e-10, 1 - 1e-10)
        return mu * (1.0 - mu)

    def check_response(self, y: NDArray) -> None:
        check_in_range(y, 0.0, 1.0, 'y (binomial proportions)')

    def initialize(self, y: NDArray, wt: NDArray) -> NDArray:
        # R's binomial()$initialize: (wt * y + 0.5) / (wt + 1)
        return (wt * y + 0.5) / (wt + 1.0)

    def deviance(self, y: NDArray, mu: NDArray, wt: NDArray) -> float:
        mu = np.clip(mu, 1e-10, 1 - 1e-10)
        # 0*log(0) = 0. np.where evaluates both branches, so suppress
        # harmless warnings from the unused branch.
        with np.errstate(divide='ignore', invalid='ignore'):
            term1 = np.where(y > 0, y * np.log(y / mu), 0.0)
            term2 = np.where(y < 1, (1 - y) * np.log((1 - y) / (1 - mu)), 0.0)
        return 2.0 * float(np.sum(wt * (term1 + term2)))

    def log_likelihood(
        self, y: NDArray, mu: NDArray, wt: NDArray, dispersion: float
    ) -> float:
        # Σ log dbinom(round(wt * y), wt, μ) over observations with wt > 0
        mu = np.clip(mu, 1e-10, 1 - 1e-10)
        m = np.round(wt)
        keep = m > 0
        k = np.round(m * y)
        return float(np.sum(stats.binom.logpmf(k[keep], m[keep], mu[keep])))


class Poisson(Family):
    """Poisson family. Default link: log.

    V(μ) = μ
    Deviance = 2 * Σ wt_i * [y_i log(y_i/μ_i) - (y_i - μ_i)]
    """

    _valid_links = ('log',)

    @property
    def name(self) -> str:
        return 'poisson'

    def _default_link(self) -> Link:
        return LogLink()

    def variance(self, mu: NDArray) -> NDArray:
        return np.maximum(mu, 1e-10)

    def check_response(self, y: NDArray) -> None:
        check_in_range(y, 0.0, None, 'y (Poisson counts)')

    def initialize(self, y: NDArray, wt: NDArray) -> NDArray:
        # R: y + 0.1 (to avoid log(0))
        return y + 0.1

    def deviance(self, y: NDArray, mu: NDArray, wt: NDArray) -> float:
        mu = np.maximum(mu, 1e-10)
        with np.errstate(divide='ignore', invalid='ignore'):
            term = np.where(y > 0, y * np.log(y / mu), 0.0)
        return 2.0 * float(np.sum(wt * (term - (y - mu))))

    def log_likelihood(
        self, y: NDArray, mu: NDArray, wt: NDArray, dispersion: float
    ) -> float:
        # Σ wt_i * [y_i * log(μ_i) - μ_i - log(y_i!)]
        mu = np.maximum(mu, 1e-10)
        return float(np.sum(
            wt * (y * np.log(mu) - mu - gammaln(y + 1))
        ))


# =====================================================================
# Family name → class mapping + resolver
# =====================================================================

_FAMILY_CLASSES: dict[str, type[Family]] = {
    'binomial': Binomial,
    'poisson': Poisson,
}


def resolve_family(family: str | Family, link: str | Link | None = None) -> Family:
    """Resolve a family argument to a Family instance.

    Args:
        family: Either a string name ('binomial', 'poisson') or a Family
            instance (passed through).
        link: Optional link override for a string family, e.g. 'cloglog'.

    Returns:
        Family instance.

    Raises:
        ValueError: If the family or link name is not recognized, or a
            link is given together with a Family instance.
        TypeError: If argument is neither string nor Family.
    """
    if isinstance(family, Family):
        if link is not None:
            raise ValueError(
                "Pass the link to the Family constructor, not alongside "
                "a Family instance"
            )
        return family
    if isinstance(family, str):
        cls = _FAMILY_CLASSES.get(family.lower())
        if cls is None:
            valid = ', '.join(sorted(_FAMILY_CLASSES.keys()))
            raise ValueError(
                f"Unknown family: {family!r}. Valid families: {valid}"
            )
        return cls(link)
    raise TypeError(f"family must be str or Family, got {type(family).__name__}")
