"""
Finite mixture over the same emission schemes as the HMMs.

A mixture is an HMM without memory: every row picks a component
independently with the mixture weights.
"""

import logging
from typing import Any, Dict, Optional, Sequence, Union

import numpy as np
import pandas as pd

from genomehmm.config import DEFAULT_MAX_ITERATIONS, DEFAULT_THRESHOLD, DEFAULT_TITLE
from genomehmm.core.context import check_no_nan
from genomehmm.core.distributions import CategoricalDistribution, default_rng
from genomehmm.core.emission import ConstantIntegerEmissionScheme, PoissonRegressionEmissionScheme
from genomehmm.core.errors import ModelConstructionError, NumericalError
from genomehmm.core.hmm import FreeEmissions, _check_stochastic, _log
from genomehmm.core.logmath import log_rescale, log_sum_exp
from genomehmm.core.model_io import from_envelope, register_type, to_envelope
from genomehmm.core.monitor import FitResult, MLMonitor
from genomehmm.core.parallel import parallel_for
from genomehmm.core.table import STATE_LABEL, empty_sample_table, row_bind, validate_table

logger = logging.getLogger(__name__)


class MixtureIterationContext:
    """Joint log-probabilities (rows x components) and responsibilities."""

    def __init__(self, model: 'MLFreeMixture', df: pd.DataFrame, n_jobs=None):
        validate_table(df)
        self.model = model
        self.df = df
        self.n_jobs = n_jobs
        self.log_joint = np.empty((len(df), model.num_components))
        self.log_gammas = np.empty((model.num_components, len(df)))

    def iterate(self):
        def fill(k):
            self.log_joint[:, k] = (self.model.log_weights[k]
                                    + self.model.emissions.log_probabilities(k, self.df))

        parallel_for(fill, range(self.model.num_components), n_jobs=self.n_jobs)
        check_no_nan(self.log_joint, "observation")
        self.log_gammas = log_rescale(self.log_joint, axis=1).T

    def log_likelihood(self) -> float:
        return float(log_sum_exp(self.log_joint, axis=1).sum())


@register_type("genomehmm.MLFreeMixture")
class MLFreeMixture:
    """
    Mixture of components, each with an independent scheme per dimension.

    Args:
        schemes: `schemes[component][dimension]`
        weights: (K,) component weights, uniform by default
    """

    def __init__(self, schemes, weights: Optional[np.ndarray] = None):
        emissions = FreeEmissions(schemes)
        K = emissions.num_states
        weights = (np.full(K, 1.0 / K) if weights is None
                   else np.asarray(weights, dtype=np.float64))
        if weights.shape != (K,):
            raise ModelConstructionError(f"weights of shape {weights.shape}, expected ({K},)")
        _check_stochastic(weights, "mixture weights")
        self.emissions = emissions
        self.log_weights = _log(weights)
        self.monitor_: Optional[MLMonitor] = None

    @property
    def num_components(self) -> int:
        return self.emissions.num_states

    @property
    def num_dimensions(self) -> int:
        return self.emissions.num_dimensions

    @property
    def weights(self) -> np.ndarray:
        return np.exp(self.log_weights)

    def degrees_of_freedom(self) -> int:
        return (self.num_components - 1) + sum(
            s.degrees_of_freedom for s in self.emissions.unique_schemes())

    def fit(self, data: Union[pd.DataFrame, Sequence[pd.DataFrame]],
            title: str = DEFAULT_TITLE,
            threshold: float = DEFAULT_THRESHOLD,
            max_iterations: int = DEFAULT_MAX_ITERATIONS,
            verbose: bool = False,
            n_jobs: Optional[int] = None) -> FitResult:
        """EM over one table or the row-bound list of tables."""
        df = data if isinstance(data, pd.DataFrame) else row_bind(list(data))
        context = MixtureIterationContext(self, df, n_jobs)
        monitor = MLMonitor(title, threshold, max_iterations, verbose=verbose)
        self.monitor_ = monitor
        try:
            while True:
                context.iterate()
                ll = context.log_likelihood()
                if ll == -np.inf:
                    raise NumericalError(f"{title}: observations have zero probability under the model")
                if monitor.monitor(ll):
                    break
                self._update_parameters(df, context.log_gammas)
        finally:
            monitor.close()
        return monitor.finish(self)

    def _update_parameters(self, df: pd.DataFrame, log_gammas: np.ndarray) -> None:
        self.log_weights = log_sum_exp(log_gammas, axis=1) - np.log(log_gammas.shape[1])
        self.emissions.update(df, np.exp(log_gammas))

    def evaluate(self, df: pd.DataFrame, n_jobs: Optional[int] = None) -> np.ndarray:
        """(K, T) log responsibilities."""
        context = MixtureIterationContext(self, df, n_jobs)
        context.iterate()
        return context.log_gammas

    def predict(self, df: pd.DataFrame, n_jobs: Optional[int] = None) -> np.ndarray:
        """Most responsible component per row; ties go to the lowest index."""
        return np.argmax(self.evaluate(df, n_jobs), axis=0)

    def log_likelihood(self, df: pd.DataFrame) -> float:
        context = MixtureIterationContext(self, df)
        context.iterate()
        return context.log_likelihood()

    def sample(self, n: int, rng: Optional[np.random.Generator] = None) -> pd.DataFrame:
        rng = default_rng() if rng is None else rng
        components = CategoricalDistribution(self.weights, rng).sample(n)
        df = empty_sample_table(n, self.num_dimensions)
        self.emissions.sample_into(df, components, rng)
        df[STATE_LABEL] = components
        return df

    def rebuild_derived_indices(self) -> None:
        self.emissions.rebuild_derived_indices()

    def to_payload(self) -> Dict[str, Any]:
        return {
            "log_weights": self.log_weights.tolist(),
            "emissions": to_envelope(self.emissions),
        }

    @classmethod
    def from_payload(cls, payload: Dict[str, Any]) -> 'MLFreeMixture':
        emissions = from_envelope(payload["emissions"])
        log_weights = np.asarray(payload["log_weights"], dtype=np.float64)
        model = cls(emissions.schemes, np.exp(log_weights))
        model.log_weights = log_weights
        return model

    def __repr__(self):
        with np.printoptions(precision=4, suppress=True):
            return f"MLFreeMixture(weights={self.weights}, emissions={self.emissions})"


@register_type("genomehmm.ZeroPoissonMixture")
class ZeroPoissonMixture(MLFreeMixture):
    """
    Three components over one count column:

    0 - point mass at zero
    1 - LOW Poisson regression
    2 - HIGH Poisson regression

    The counts are the first column of the table; both regressions read
    the same covariate columns by label.

    Args:
        covariate_labels: Covariate column names
        regression_coefficients: (low, high) coefficient vectors, intercept first
        weights: (3,) component weights, uniform by default
    """

    def __init__(self, covariate_labels, regression_coefficients, weights=None):
        low, high = regression_coefficients
        super().__init__([
            [ConstantIntegerEmissionScheme(0)],
            [PoissonRegressionEmissionScheme(covariate_labels, low)],
            [PoissonRegressionEmissionScheme(covariate_labels, high)],
        ], weights)
        self.covariate_labels = [str(label) for label in covariate_labels]

    @property
    def regression_coefficients(self):
        return [self.emissions.scheme(k, 0).regression_coefficients for k in (1, 2)]

    def sample(self, covariates: pd.DataFrame, rng: Optional[np.random.Generator] = None,
               label: str = "y") -> pd.DataFrame:
        """Counts for every row of `covariates`, placed in a new first column."""
        rng = default_rng() if rng is None else rng
        validate_table(covariates)
        components = CategoricalDistribution(self.weights, rng).sample(len(covariates))
        df = covariates.copy()
        df.insert(0, label, np.zeros(len(df), dtype=np.int64))
        self.emissions.sample_into(df, components, rng)
        df[STATE_LABEL] = components
        return df

    def bic(self, df: pd.DataFrame) -> float:
        return np.log(len(df)) * self.degrees_of_freedom() - 2 * self.log_likelihood(df)

    def aic(self, df: pd.DataFrame) -> float:
        return 2 * self.degrees_of_freedom() - 2 * self.log_likelihood(df)

    def to_payload(self) -> Dict[str, Any]:
        return {
            "log_weights": self.log_weights.tolist(),
            "covariate_labels": list(self.covariate_labels),
            "regression_coefficients": [c.tolist() for c in self.regression_coefficients],
        }

    @classmethod
    def from_payload(cls, payload: Dict[str, Any]) -> 'ZeroPoissonMixture':
        log_weights = np.asarray(payload["log_weights"], dtype=np.float64)
        model = cls(payload["covariate_labels"], payload["regression_coefficients"],
                    np.exp(log_weights))
        model.log_weights = log_weights
        return model

    def __repr__(self):
        with np.printoptions(precision=4, suppress=True):
            return (f"ZeroPoissonMixture(weights={self.weights}, "
                    f"covariates={self.covariate_labels}, "
                    f"coefficients={self.regression_coefficients})")
