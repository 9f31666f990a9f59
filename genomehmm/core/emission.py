"""
Emission schemes: per-(state, dimension) observation models.

A scheme reads one column of an observation table, scores it, fills it
with samples and re-estimates itself from posterior weights. All scores
are natural-log probabilities; impossible values score -inf, never NaN.
"""

import logging
from typing import Callable, Optional, Union

import numpy as np
import pandas as pd
from scipy.special import gammaln

from genomehmm.core.distributions import (
    CategoricalDistribution,
    NegativeBinomialDistribution,
    default_rng,
    estimate_failures_using_moments,
    fit_failures_with_means,
    fit_number_of_failures,
    negative_binomial_log_pmf,
    negative_binomial_rows_log_pmf,
)
from genomehmm.core.model_io import register_type
from genomehmm.core.table import Column, column_values, write_column

logger = logging.getLogger(__name__)

Fill = Union[np.ndarray, Callable[[int], bool]]


def fill_mask(fill: Fill, num_rows: int) -> np.ndarray:
    """Turn a boolean mask or a row predicate into a boolean mask."""
    if callable(fill):
        return np.fromiter((bool(fill(i)) for i in range(num_rows)), dtype=bool, count=num_rows)
    mask = np.asarray(fill, dtype=bool)
    if mask.shape != (num_rows,):
        raise ValueError(f"fill mask of shape {mask.shape} does not match {num_rows} rows")
    return mask


class EmissionScheme:
    """Base class of all emission schemes."""

    degrees_of_freedom = 0

    def log_probability(self, df: pd.DataFrame, row: int, column: Column) -> float:
        return float(self.log_probabilities(df.iloc[row:row + 1], column)[0])

    def log_probabilities(self, df: pd.DataFrame, column: Column) -> np.ndarray:
        raise NotImplementedError

    def sample(self, df: pd.DataFrame, column: Column, fill: Fill,
               rng: Optional[np.random.Generator] = None) -> None:
        raise NotImplementedError

    def update(self, df: pd.DataFrame, column: Column, weights: np.ndarray) -> None:
        raise NotImplementedError

    def to_payload(self) -> dict:
        raise NotImplementedError

    @classmethod
    def from_payload(cls, payload: dict):
        return cls(**payload)

    def rebuild_derived_indices(self) -> None:
        """Recompute cached values after construction or deserialisation."""

    def __repr__(self):
        fields = ", ".join(f"{k}={v!r}" for k, v in self.to_payload().items())
        return f"{type(self).__name__}({fields})"


class IntegerEmissionScheme(EmissionScheme):
    """
    Scheme over an integer column. Subclasses implement the value-level
    `_log_probabilities`, `_sample` and `_update`.
    """

    def log_probabilities(self, df, column):
        values = column_values(df, column)
        res = np.asarray(self._log_probabilities(values), dtype=np.float64)
        res[np.isnan(res)] = -np.inf
        return res

    def sample(self, df, column, fill, rng=None):
        mask = fill_mask(fill, len(df))
        n = int(mask.sum())
        if n == 0:
            return
        values = column_values(df, column).astype(np.int64, copy=True)
        values[mask] = self._sample(n, default_rng() if rng is None else rng)
        write_column(df, column, values)

    def update(self, df, column, weights):
        weights = np.asarray(weights, dtype=np.float64)
        if len(weights) != len(df):
            raise ValueError(f"{len(weights)} weights for {len(df)} rows")
        if not weights.sum() > 0:
            logger.debug("%s: all weights are zero, keeping parameters", self)
            return
        self._update(column_values(df, column), weights)

    def _log_probabilities(self, values: np.ndarray) -> np.ndarray:
        raise NotImplementedError

    def _sample(self, n: int, rng: np.random.Generator) -> np.ndarray:
        raise NotImplementedError

    def _update(self, values: np.ndarray, weights: np.ndarray) -> None:
        raise NotImplementedError


@register_type("genomehmm.PoissonEmissionScheme")
class PoissonEmissionScheme(IntegerEmissionScheme):
    """Poisson counts with a single rate parameter."""

    degrees_of_freedom = 1

    def __init__(self, rate: float):
        if rate < 0:
            raise ValueError(f"rate {rate} must be >= 0")
        self.rate = float(rate)

    def _log_probabilities(self, values):
        x = values.astype(np.float64)
        res = np.full(x.shape, -np.inf)
        valid = x >= 0
        if self.rate == 0:
            res[valid & (x == 0)] = 0.0
            return res
        xv = x[valid]
        res[valid] = xv * np.log(self.rate) - self.rate - gammaln(xv + 1.0)
        return res

    def _sample(self, n, rng):
        return rng.poisson(self.rate, size=n)

    def _update(self, values, weights):
        self.rate = float(np.dot(weights, values) / weights.sum())

    def to_payload(self):
        return {"rate": self.rate}


@register_type("genomehmm.NegBinEmissionScheme")
class NegBinEmissionScheme(IntegerEmissionScheme):
    """
    Negative binomial counts, parameterised by mean and number of failures.

    Infinite failures behave as Poisson(mean); a zero mean puts all mass on 0.
    """

    degrees_of_freedom = 2

    def __init__(self, mean: float, failures: float):
        if mean < 0:
            raise ValueError(f"mean {mean} must be >= 0")
        if not failures > 0:
            raise ValueError(f"number of failures {failures} must be > 0")
        self.mean = float(mean)
        self.failures = float(failures)

    @classmethod
    def using_moments(cls, mean: float, variance: float) -> "NegBinEmissionScheme":
        return cls(mean, estimate_failures_using_moments(mean, variance))

    def _log_probabilities(self, values):
        return negative_binomial_log_pmf(values, self.mean, self.failures)

    def _sample(self, n, rng):
        return NegativeBinomialDistribution(self.mean, self.failures, rng).sample(n)

    def _update(self, values, weights):
        self.mean = float(np.dot(weights, values) / weights.sum())
        self.failures = float(fit_number_of_failures(values, weights, self.mean, self.failures))

    def to_payload(self):
        return {"mean": self.mean, "failures": self.failures}


@register_type("genomehmm.CategoricalEmissionScheme")
class CategoricalEmissionScheme(IntegerEmissionScheme):
    """Observations in 0..K-1 with a free probability per category."""

    def __init__(self, probabilities):
        probabilities = np.asarray(probabilities, dtype=np.float64)
        if probabilities.ndim != 1 or len(probabilities) == 0:
            raise ValueError("probabilities must be a non-empty vector")
        if np.any(probabilities < 0) or abs(probabilities.sum() - 1.0) > 1e-6:
            raise ValueError(f"invalid categorical probabilities {probabilities}")
        self.probabilities = probabilities
        self.rebuild_derived_indices()

    @property
    def degrees_of_freedom(self):
        return len(self.probabilities) - 1

    def rebuild_derived_indices(self):
        with np.errstate(divide='ignore'):
            self._log_probabilities_table = np.log(self.probabilities)

    def _log_probabilities(self, values):
        k = len(self.probabilities)
        res = np.full(values.shape, -np.inf)
        valid = (values >= 0) & (values < k)
        res[valid] = self._log_probabilities_table[values[valid].astype(np.int64)]
        return res

    def _sample(self, n, rng):
        return CategoricalDistribution(self.probabilities, rng).sample(n)

    def _update(self, values, weights):
        k = len(self.probabilities)
        valid = (values >= 0) & (values < k)
        counts = np.bincount(values[valid].astype(np.int64), weights=weights[valid], minlength=k)
        total = counts.sum()
        if not total > 0:
            logger.debug("%s: no weight on valid categories, keeping parameters", self)
            return
        self.probabilities = counts / total
        self.rebuild_derived_indices()

    def to_payload(self):
        return {"probabilities": self.probabilities.tolist()}


@register_type("genomehmm.ConstantIntegerEmissionScheme")
class ConstantIntegerEmissionScheme(IntegerEmissionScheme):
    """The singular scheme: always emits `emission`. Never updated."""

    def __init__(self, emission: int):
        self.emission = int(emission)

    def _log_probabilities(self, values):
        return np.where(values == self.emission, 0.0, -np.inf)

    def _sample(self, n, rng):
        return np.full(n, self.emission, dtype=np.int64)

    def update(self, df, column, weights):
        pass

    def to_payload(self):
        return {"emission": self.emission}


# Regression schemes --------------------------------------------------------

IRLS_MAX_ITERATIONS = 100
IRLS_TOLERANCE = 1e-8


def weighted_least_squares(x: np.ndarray, z: np.ndarray, w: np.ndarray) -> np.ndarray:
    """beta minimising sum_t w[t] * (z[t] - x[t] . beta)^2."""
    sw = np.sqrt(w)
    return np.linalg.lstsq(x * sw[:, None], z * sw, rcond=None)[0]


class IntegerRegressionEmissionScheme(EmissionScheme):
    """
    Count regression with a log link.

    The mean of row t is exp(beta_0 + sum_j beta_j * x[t, j]), where the
    covariates x[:, j] are the table columns named in `covariate_labels`.
    `update` refits the coefficients by iteratively reweighted least
    squares, with the posterior weights multiplying the working weights.
    """

    def __init__(self, covariate_labels, regression_coefficients):
        self.covariate_labels = [str(label) for label in covariate_labels]
        coefficients = np.asarray(regression_coefficients, dtype=np.float64)
        if coefficients.shape != (len(self.covariate_labels) + 1,):
            raise ValueError(
                f"expected {len(self.covariate_labels) + 1} coefficients (intercept first), "
                f"got shape {coefficients.shape}")
        self.regression_coefficients = coefficients

    @property
    def degrees_of_freedom(self):
        return len(self.regression_coefficients)

    def design_matrix(self, df: pd.DataFrame) -> np.ndarray:
        """Intercept column followed by the covariates."""
        columns = [np.ones(len(df))]
        columns.extend(column_values(df, label).astype(np.float64)
                       for label in self.covariate_labels)
        return np.column_stack(columns)

    def means(self, df: pd.DataFrame) -> np.ndarray:
        return np.exp(self.design_matrix(df) @ self.regression_coefficients)

    def log_probabilities(self, df, column):
        values = column_values(df, column)
        res = np.asarray(self._log_probabilities(values, self.means(df)), dtype=np.float64)
        res[np.isnan(res)] = -np.inf
        return res

    def sample(self, df, column, fill, rng=None):
        mask = fill_mask(fill, len(df))
        if not mask.any():
            return
        values = column_values(df, column).astype(np.int64, copy=True)
        values[mask] = self._sample(self.means(df)[mask], default_rng() if rng is None else rng)
        write_column(df, column, values)

    def update(self, df, column, weights):
        weights = np.asarray(weights, dtype=np.float64)
        if len(weights) != len(df):
            raise ValueError(f"{len(weights)} weights for {len(df)} rows")
        if not weights.sum() > 0:
            logger.debug("%s: all weights are zero, keeping parameters", self)
            return

        x = self.design_matrix(df)
        y = column_values(df, column).astype(np.float64)
        beta = self.regression_coefficients
        for _ in range(IRLS_MAX_ITERATIONS):
            eta = x @ beta
            mu = np.exp(eta)
            settled = self._update_dispersion(y, weights, mu)
            z = eta + (y - mu) / mu
            beta_next = weighted_least_squares(x, z, weights * self._working_weights(mu))
            converged = np.abs(beta_next - beta).sum() < IRLS_TOLERANCE
            beta = beta_next
            if converged and settled:
                break
        else:
            logger.debug("%s: IRLS stopped after %d iterations", self, IRLS_MAX_ITERATIONS)
        self.regression_coefficients = beta

    def _log_probabilities(self, values: np.ndarray, means: np.ndarray) -> np.ndarray:
        raise NotImplementedError

    def _sample(self, means: np.ndarray, rng: np.random.Generator) -> np.ndarray:
        raise NotImplementedError

    def _working_weights(self, means: np.ndarray) -> np.ndarray:
        """(d mu / d eta)^2 / Var(mu); d mu / d eta = mu under the log link."""
        raise NotImplementedError

    def _update_dispersion(self, y: np.ndarray, weights: np.ndarray, means: np.ndarray) -> bool:
        """Refit dispersion parameters, if any; True once they stop moving."""
        return True

    def to_payload(self):
        return {"covariate_labels": list(self.covariate_labels),
                "regression_coefficients": self.regression_coefficients.tolist()}


@register_type("genomehmm.PoissonRegressionEmissionScheme")
class PoissonRegressionEmissionScheme(IntegerRegressionEmissionScheme):
    """Poisson counts with log-linear mean."""

    def _log_probabilities(self, values, means):
        x = values.astype(np.float64)
        with np.errstate(divide='ignore', invalid='ignore'):
            res = np.where(x == 0, 0.0, x * np.log(means)) - means - gammaln(x + 1.0)
        res[x < 0] = -np.inf
        return res

    def _sample(self, means, rng):
        return rng.poisson(means)

    def _working_weights(self, means):
        return means


@register_type("genomehmm.NegBinRegressionEmissionScheme")
class NegBinRegressionEmissionScheme(IntegerRegressionEmissionScheme):
    """
    Negative binomial counts with log-linear mean and a shared number of
    failures, refit between IRLS steps.
    """

    def __init__(self, covariate_labels, regression_coefficients, failures: float):
        super().__init__(covariate_labels, regression_coefficients)
        if not failures > 0:
            raise ValueError(f"number of failures {failures} must be > 0")
        self.failures = float(failures)

    @property
    def degrees_of_freedom(self):
        return len(self.regression_coefficients) + 1

    def _log_probabilities(self, values, means):
        return negative_binomial_rows_log_pmf(values, means, self.failures)

    def _sample(self, means, rng):
        if np.isinf(self.failures):
            return rng.poisson(means)
        return rng.poisson(rng.gamma(self.failures, means / self.failures))

    def _working_weights(self, means):
        return means / (1.0 + means / self.failures)

    def _update_dispersion(self, y, weights, means):
        previous = self.failures
        self.failures = fit_failures_with_means(y, weights, means, previous)
        if np.isinf(previous):
            return True
        return abs(self.failures - previous) < 1e-4 * max(1.0, previous)

    def to_payload(self):
        payload = super().to_payload()
        payload["failures"] = self.failures
        return payload
