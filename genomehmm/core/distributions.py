"""
Probability distributions backing the emission schemes.

Provides:
- CategoricalDistribution: Vose alias-method sampler
- NegativeBinomialDistribution: Gamma-Poisson counts parameterised by mean
  and number of failures
- fit_number_of_failures / fit_gamma_shape: Minka's fixed-point estimators
- estimate_failures_using_moments: method-of-moments starting point
- negative_binomial_rows_log_pmf / fit_failures_with_means: NB with a
  separate mean per row, as used by count regressions
"""

import logging
from typing import Optional

import numpy as np
from scipy.optimize import minimize_scalar
from scipy.special import digamma, gammaln, polygamma

logger = logging.getLogger(__name__)

_default_rng = np.random.default_rng()


def default_rng() -> np.random.Generator:
    """The generator used when a caller does not pass one."""
    return _default_rng


def seed(value: Optional[int]) -> None:
    """Reseed the package-wide default generator."""
    global _default_rng
    _default_rng = np.random.default_rng(value)


def _rng(rng: Optional[np.random.Generator]) -> np.random.Generator:
    return _default_rng if rng is None else rng


# =============================================================================
# Categorical
# =============================================================================

def alias_tables(probabilities: np.ndarray):
    """
    Build Vose alias tables for a probability vector.

    Returns:
        Tuple of (prob, alias) arrays of the same length as the input
    """
    probabilities = np.asarray(probabilities, dtype=np.float64)
    n = len(probabilities)
    if n == 0:
        raise ValueError("no probabilities given")
    if np.any(probabilities < 0) or not np.isfinite(probabilities).all():
        raise ValueError(f"invalid probabilities {probabilities}")
    total = probabilities.sum()
    if total <= 0:
        raise ValueError("probabilities sum to zero")

    scaled = probabilities * n / total
    prob = np.zeros(n)
    alias = np.zeros(n, dtype=np.int64)
    small = [i for i in range(n) if scaled[i] < 1.0]
    large = [i for i in range(n) if scaled[i] >= 1.0]
    while small and large:
        less = small.pop()
        more = large.pop()
        prob[less] = scaled[less]
        alias[less] = more
        scaled[more] = scaled[more] + scaled[less] - 1.0
        if scaled[more] < 1.0:
            small.append(more)
        else:
            large.append(more)

    # Whatever is left over is 1 up to rounding.
    for i in large + small:
        prob[i] = 1.0
        alias[i] = i
    return prob, alias


class CategoricalDistribution:
    """Draws indices 0..K-1 with given probabilities in O(1) per draw."""

    def __init__(self, probabilities, rng: Optional[np.random.Generator] = None):
        self.probabilities = np.asarray(probabilities, dtype=np.float64)
        self.prob, self.alias = alias_tables(self.probabilities)
        self.rng = rng

    def __len__(self):
        return len(self.prob)

    def sample(self, size=None):
        rng = _rng(self.rng)
        i = rng.integers(len(self.prob), size=size)
        toss = rng.random(size=size)
        res = np.where(toss < self.prob[i], i, self.alias[i])
        return int(res) if size is None else res.astype(np.int64)

    def __repr__(self):
        return f"CategoricalDistribution({self.probabilities.tolist()})"


# =============================================================================
# Negative binomial
# =============================================================================

def negative_binomial_log_pmf(values, mean: float, failures: float) -> np.ndarray:
    """
    Log-pmf of NB(mean, failures), vectorised over `values`.

    Infinite failures reduce to Poisson(mean); mean 0 puts all mass on 0.
    Negative values and undefined parameters give -inf.
    """
    x = np.asarray(values, dtype=np.float64)
    res = np.full(x.shape, -np.inf)
    if np.isnan(mean) or np.isnan(failures):
        return res

    valid = (x >= 0) & ~np.isnan(x)
    if mean == 0:
        res[valid & (x == 0)] = 0.0
        return res

    xv = x[valid]
    if np.isinf(failures):
        res[valid] = xv * np.log(mean) - mean - gammaln(xv + 1.0)
        return res

    log_p = np.log(mean) - np.log(mean + failures)
    log_q = np.log(failures) - np.log(mean + failures)
    res[valid] = (gammaln(xv + failures) - gammaln(xv + 1.0) - gammaln(failures)
                  + failures * log_q + xv * log_p)
    return res


class NegativeBinomialDistribution:
    """Negative binomial over counts, with mean `mean` and `failures` failures."""

    def __init__(self, mean: float, failures: float,
                 rng: Optional[np.random.Generator] = None):
        if mean < 0:
            raise ValueError(f"mean {mean} must be >= 0")
        if not failures > 0:
            raise ValueError(f"number of failures {failures} must be > 0")
        self.mean = float(mean)
        self.failures = float(failures)
        self.rng = rng

    @classmethod
    def using_mean(cls, mean: float, failures: float, rng=None):
        return cls(mean, failures, rng)

    @classmethod
    def using_moments(cls, mean: float, variance: float, rng=None):
        return cls(mean, estimate_failures_using_moments(mean, variance), rng)

    @classmethod
    def of(cls, values, rng=None):
        """Maximum likelihood fit to the observed counts."""
        values = np.asarray(values, dtype=np.float64)
        if len(values) == 0:
            raise ValueError("no values to fit")
        mean = values.mean()
        failures = estimate_failures_using_moments(mean, values.var())
        failures = fit_number_of_failures(values, np.ones(len(values)), mean, failures)
        return cls(mean, failures, rng)

    @property
    def variance(self) -> float:
        if np.isinf(self.failures):
            return self.mean
        return self.mean + self.mean ** 2 / self.failures

    def log_probability(self, values):
        res = negative_binomial_log_pmf(values, self.mean, self.failures)
        return float(res) if res.ndim == 0 else res

    def sample(self, size=None):
        rng = _rng(self.rng)
        if self.mean == 0:
            res = np.zeros(size, dtype=np.int64) if size is not None else 0
            return res
        if np.isinf(self.failures):
            return rng.poisson(self.mean, size=size)
        rates = rng.gamma(self.failures, self.mean / self.failures, size=size)
        return rng.poisson(rates)

    def __repr__(self):
        return f"NegativeBinomialDistribution(mean={self.mean}, failures={self.failures})"


def estimate_failures_using_moments(mean: float, variance: float) -> float:
    """
    Method-of-moments number of failures; infinite when the data are not
    overdispersed.
    """
    p = mean / variance if variance > 0 else 1.0
    if 1.0 - p < 1e-6:
        return np.inf
    return mean * p / (1.0 - p)


def fit_gamma_shape(mean_log: float, mean: float, shape: float,
                    max_iterations: int = 100, tolerance: float = 1e-6) -> float:
    """
    Minka's generalized Newton update for the Gamma shape given E[x] and
    E[log x], starting from `shape`.
    """
    log_mean = np.log(mean)
    a = shape if np.isfinite(shape) and shape > 0 else 0.5 / (log_mean - mean_log)
    for _ in range(max_iterations):
        a_inv = 1.0 / a
        a_inv += ((mean_log - log_mean + np.log(a) - digamma(a))
                  * a_inv ** 2 / (a_inv - polygamma(1, a)))
        a_next = 1.0 / a_inv
        if not np.isfinite(a_next) or a_next <= 0:
            logger.debug("gamma shape fit diverged at a=%s", a)
            return a
        if abs(a_next - a) < tolerance:
            return a_next
        a = a_next
    return a


def fit_number_of_failures(values, weights, mean: float, failures: float,
                           max_iterations: int = 100) -> float:
    """
    Weighted EM estimate of the number of failures with the mean held fixed.

    Each step treats the Poisson rates as latent Gamma(failures + x) variables
    and refits the Gamma shape on their expected value and expected log.
    Infinite failures or a zero mean are returned unchanged.
    """
    if np.isinf(failures) or mean == 0:
        return failures

    values = np.asarray(values, dtype=np.float64)
    weights = np.asarray(weights, dtype=np.float64)
    unique, inverse = np.unique(values, return_inverse=True)
    unique_weights = np.bincount(inverse.ravel(), weights=weights.ravel(),
                                 minlength=len(unique))
    total = unique_weights.sum()
    if total <= 0:
        return failures

    a = failures
    for _ in range(max_iterations):
        expectation = (unique_weights * (a + unique)).sum() / total
        log_expectation = (unique_weights * digamma(a + unique)).sum() / total
        a_next = fit_gamma_shape(log_expectation, expectation, a)
        if not np.isfinite(a_next):
            break
        if abs(a_next - a) < 1e-6 * max(1.0, a):
            a = a_next
            break
        a = a_next
    return a


def negative_binomial_rows_log_pmf(values, means, failures: float) -> np.ndarray:
    """Log-pmf of NB(means[t], failures) at values[t]."""
    x = np.asarray(values, dtype=np.float64)
    mu = np.asarray(means, dtype=np.float64)
    if np.isinf(failures):
        with np.errstate(divide='ignore', invalid='ignore'):
            res = np.where(x == 0, 0.0, x * np.log(mu)) - mu - gammaln(x + 1.0)
    else:
        with np.errstate(divide='ignore', invalid='ignore'):
            log_total = np.log(mu + failures)
            res = (gammaln(x + failures) - gammaln(x + 1.0) - gammaln(failures)
                   + failures * (np.log(failures) - log_total)
                   + np.where(x == 0, 0.0, x * (np.log(mu) - log_total)))
    res = np.asarray(res, dtype=np.float64)
    res[(x < 0) | np.isnan(res)] = -np.inf
    return res


def fit_failures_with_means(values, weights, means, failures: float,
                            bounds=(-10.0, 20.0)) -> float:
    """
    Weighted ML number of failures when every row has its own mean.

    The search runs over log(failures) within `bounds`; infinite failures
    are returned unchanged.
    """
    if np.isinf(failures):
        return failures
    values = np.asarray(values, dtype=np.float64)
    weights = np.asarray(weights, dtype=np.float64)
    means = np.asarray(means, dtype=np.float64)
    if not weights.sum() > 0:
        return failures

    def objective(log_failures):
        return -np.dot(weights, negative_binomial_rows_log_pmf(values, means, np.exp(log_failures)))

    res = minimize_scalar(objective, bounds=bounds, method='bounded')
    if not np.isfinite(res.fun):
        logger.debug("failures fit failed, keeping %s", failures)
        return failures
    return float(np.exp(res.x))
