"""
genomehmm HMM module

Provides:
1. Emission bindings: free (one scheme per state and dimension) and
   constrained (schemes shared between states through an index map)
2. MLHMM: a maximum-likelihood HMM over observation tables with
   Baum-Welch fitting, Viterbi decoding, posterior evaluation and sampling

Everything is kept in log space. The heavy recurrences live in
genomehmm.core.internals.
"""

import logging
from typing import Any, Dict, List, Optional, Sequence, Union

import numpy as np
import pandas as pd

from genomehmm.config import (
    DEFAULT_MAX_ITERATIONS,
    DEFAULT_THRESHOLD,
    DEFAULT_TITLE,
    STOCHASTIC_TOLERANCE,
)
from genomehmm.core import internals
from genomehmm.core.context import HMMIterationContext
from genomehmm.core.distributions import CategoricalDistribution, alias_tables, default_rng
from genomehmm.core.emission import EmissionScheme
from genomehmm.core.errors import ModelConstructionError, NumericalError
from genomehmm.core.logmath import log_rescale, log_sum_exp
from genomehmm.core.model_io import from_envelope, register_type, to_envelope
from genomehmm.core.monitor import FitResult, MLMonitor
from genomehmm.core.parallel import parallel_for
from genomehmm.core.table import STATE_LABEL, empty_sample_table, row_bind, validate_table

logger = logging.getLogger(__name__)

# Rows per block in the rolling log-likelihood.
ROLLING_BLOCK_SIZE = 1 << 16


# =============================================================================
# Emission bindings
# =============================================================================

@register_type("genomehmm.FreeEmissions")
class FreeEmissions:
    """
    An independent scheme for every (state, dimension) pair:
    `schemes[state][dimension]`.
    """

    def __init__(self, schemes: Sequence[Sequence[EmissionScheme]]):
        schemes = [list(row) for row in schemes]
        if len(schemes) == 0 or len(schemes[0]) == 0:
            raise ModelConstructionError("no emission schemes given")
        if any(len(row) != len(schemes[0]) for row in schemes):
            raise ModelConstructionError("emission schemes table is jagged")
        self.schemes = schemes

    @property
    def num_states(self) -> int:
        return len(self.schemes)

    @property
    def num_dimensions(self) -> int:
        return len(self.schemes[0])

    def scheme(self, state: int, dimension: int) -> EmissionScheme:
        return self.schemes[state][dimension]

    def unique_schemes(self) -> List[EmissionScheme]:
        return [scheme for row in self.schemes for scheme in row]

    def log_probabilities(self, state: int, df: pd.DataFrame) -> np.ndarray:
        res = np.zeros(len(df))
        for d, scheme in enumerate(self.schemes[state]):
            res += scheme.log_probabilities(df, d)
        return res

    def update(self, df: pd.DataFrame, gammas: np.ndarray) -> None:
        for state, row in enumerate(self.schemes):
            for d, scheme in enumerate(row):
                scheme.update(df, d, gammas[state])

    def sample_into(self, df: pd.DataFrame, states: np.ndarray, rng) -> None:
        for state, row in enumerate(self.schemes):
            mask = states == state
            for d, scheme in enumerate(row):
                scheme.sample(df, d, mask, rng)

    def rebuild_derived_indices(self) -> None:
        for scheme in self.unique_schemes():
            scheme.rebuild_derived_indices()

    def to_payload(self) -> Dict[str, Any]:
        return {"schemes": [[to_envelope(s) for s in row] for row in self.schemes]}

    @classmethod
    def from_payload(cls, payload):
        return cls([[from_envelope(s) for s in row] for row in payload["schemes"]])

    def __repr__(self):
        return f"FreeEmissions({self.schemes})"


@register_type("genomehmm.ConstrainedEmissions")
class ConstrainedEmissions:
    """
    Schemes shared between states.

    `state_dimension_emission_map[state][dimension]` is an index into
    `schemes`. A scheme is fitted on the dimension it is bound to, pooling
    the posteriors of every state that maps to it. When a scheme is bound
    to several dimensions the last one (in state, then dimension order) wins.
    """

    def __init__(self, state_dimension_emission_map, schemes: Sequence[EmissionScheme]):
        self.schemes = list(schemes)
        self.set_state_dimension_emission_map(state_dimension_emission_map)

    def set_state_dimension_emission_map(self, state_dimension_emission_map) -> None:
        rows = [list(row) for row in state_dimension_emission_map]
        if len(rows) == 0 or len(rows[0]) == 0:
            raise ModelConstructionError("empty state-dimension emission map")
        if any(len(row) != len(rows[0]) for row in rows):
            raise ModelConstructionError("state-dimension emission map is jagged")
        emission_map = np.asarray(rows, dtype=np.int64)
        if emission_map.min() < 0:
            raise ModelConstructionError("negative emission index in the map")
        num_emissions = int(emission_map.max()) + 1
        if num_emissions != len(self.schemes):
            raise ModelConstructionError(
                f"map refers to {num_emissions} emission schemes, got {len(self.schemes)}"
            )
        self.state_dimension_emission_map = emission_map
        self.rebuild_derived_indices()

    def rebuild_derived_indices(self) -> None:
        """Recompute the emission -> dimension map. Unused schemes map to -1."""
        emission_dimension_map = np.full(len(self.schemes), -1, dtype=np.int64)
        S, D = self.state_dimension_emission_map.shape
        for s in range(S):
            for d in range(D):
                emission_dimension_map[self.state_dimension_emission_map[s, d]] = d
        self.emission_dimension_map = emission_dimension_map
        for scheme in self.schemes:
            scheme.rebuild_derived_indices()

    @property
    def num_states(self) -> int:
        return self.state_dimension_emission_map.shape[0]

    @property
    def num_dimensions(self) -> int:
        return self.state_dimension_emission_map.shape[1]

    @property
    def num_emission_schemes(self) -> int:
        return len(self.schemes)

    def scheme(self, state: int, dimension: int) -> EmissionScheme:
        return self.schemes[self.state_dimension_emission_map[state, dimension]]

    def unique_schemes(self) -> List[EmissionScheme]:
        return list(self.schemes)

    def log_probabilities(self, state: int, df: pd.DataFrame) -> np.ndarray:
        res = np.zeros(len(df))
        for d, e in enumerate(self.state_dimension_emission_map[state]):
            res += self.schemes[e].log_probabilities(df, d)
        return res

    def update(self, df: pd.DataFrame, gammas: np.ndarray) -> None:
        for e, scheme in enumerate(self.schemes):
            d = self.emission_dimension_map[e]
            if d < 0:
                continue
            states = self.state_dimension_emission_map[:, d] == e
            scheme.update(df, d, gammas[states].sum(axis=0))

    def sample_into(self, df: pd.DataFrame, states: np.ndarray, rng) -> None:
        for d in range(self.num_dimensions):
            emissions = self.state_dimension_emission_map[states, d]
            for e in np.unique(emissions):
                self.schemes[e].sample(df, d, emissions == e, rng)

    def to_payload(self) -> Dict[str, Any]:
        return {
            "state_dimension_emission_map": self.state_dimension_emission_map.tolist(),
            "schemes": [to_envelope(s) for s in self.schemes],
        }

    @classmethod
    def from_payload(cls, payload):
        return cls(payload["state_dimension_emission_map"],
                   [from_envelope(s) for s in payload["schemes"]])

    def __repr__(self):
        return (f"ConstrainedEmissions(map={self.state_dimension_emission_map.tolist()}, "
                f"schemes={self.schemes})")


Emissions = Union[FreeEmissions, ConstrainedEmissions]


# =============================================================================
# Parameter validation
# =============================================================================

def _check_stochastic(values: np.ndarray, name: str) -> None:
    if not np.isfinite(values).all() or np.any(values < 0):
        raise ModelConstructionError(f"{name} must be finite and non-negative")
    sums = values.sum(axis=-1)
    if np.any(np.abs(sums - 1.0) > STOCHASTIC_TOLERANCE):
        raise ModelConstructionError(f"{name} must sum to 1, got {sums}")


def _log(values: np.ndarray) -> np.ndarray:
    with np.errstate(divide='ignore'):
        return np.log(values)


# =============================================================================
# MLHMM
# =============================================================================

@register_type("genomehmm.MLHMM")
class MLHMM:
    """
    Maximum-likelihood HMM over integer observation tables.

    Args:
        emissions: FreeEmissions or ConstrainedEmissions binding
        prior_probabilities: (S,) initial state distribution, uniform by default
        transition_probabilities: (S, S) row-stochastic matrix, uniform by default
    """

    def __init__(self, emissions: Emissions,
                 prior_probabilities: Optional[np.ndarray] = None,
                 transition_probabilities: Optional[np.ndarray] = None):
        S = emissions.num_states
        if S < 2:
            raise ModelConstructionError(f"expected at least 2 states, got {S}")

        prior = (np.full(S, 1.0 / S) if prior_probabilities is None
                 else np.asarray(prior_probabilities, dtype=np.float64))
        trans = (np.full((S, S), 1.0 / S) if transition_probabilities is None
                 else np.asarray(transition_probabilities, dtype=np.float64))
        if prior.shape != (S,):
            raise ModelConstructionError(f"prior probabilities of shape {prior.shape}, expected ({S},)")
        if trans.shape != (S, S):
            raise ModelConstructionError(
                f"transition probabilities of shape {trans.shape}, expected ({S}, {S})"
            )
        _check_stochastic(prior, "prior probabilities")
        _check_stochastic(trans, "transition probability rows")

        self.emissions = emissions
        self.log_prior_probabilities = _log(prior)
        self.log_transition_probabilities = _log(trans)
        self.monitor_: Optional[MLMonitor] = None

    @classmethod
    def free(cls, schemes, prior_probabilities=None, transition_probabilities=None) -> 'MLHMM':
        return cls(FreeEmissions(schemes), prior_probabilities, transition_probabilities)

    @classmethod
    def constrained(cls, state_dimension_emission_map, schemes,
                    prior_probabilities=None, transition_probabilities=None) -> 'MLHMM':
        return cls(ConstrainedEmissions(state_dimension_emission_map, schemes),
                   prior_probabilities, transition_probabilities)

    # ------------------------------------------------------------------ shape

    @property
    def num_states(self) -> int:
        return self.emissions.num_states

    @property
    def num_dimensions(self) -> int:
        return self.emissions.num_dimensions

    @property
    def prior_probabilities(self) -> np.ndarray:
        return np.exp(self.log_prior_probabilities)

    @property
    def transition_probabilities(self) -> np.ndarray:
        return np.exp(self.log_transition_probabilities)

    def degrees_of_freedom(self) -> int:
        S = self.num_states
        return (S - 1) + (S - 1) * S + sum(
            s.degrees_of_freedom for s in self.emissions.unique_schemes())

    # ------------------------------------------------------------- inference

    def log_probabilities(self, state: int, df: pd.DataFrame) -> np.ndarray:
        """Log-probability of every row of `df` under `state`'s emissions."""
        return self.emissions.log_probabilities(state, df)

    def context(self, df: pd.DataFrame, n_jobs: Optional[int] = None) -> HMMIterationContext:
        return HMMIterationContext(self, df, n_jobs=n_jobs)

    def predict(self, df: pd.DataFrame, n_jobs: Optional[int] = None) -> np.ndarray:
        """
        Viterbi decoding.

        Returns:
            (T,) most likely state for every row
        """
        context = self.context(df, n_jobs)
        context.refill()
        path, _ = internals.viterbi(self.log_prior_probabilities,
                                    self.log_transition_probabilities,
                                    context.log_observation_probabilities)
        return path

    def evaluate(self, df: pd.DataFrame, n_jobs: Optional[int] = None) -> np.ndarray:
        """
        Log posterior state memberships.

        Returns:
            (S, T) log gamma; exp() of every column sums to 1
        """
        context = self.context(df, n_jobs)
        context.iterate()
        return context.log_gammas

    def log_likelihood(self, df: pd.DataFrame) -> float:
        """log P(df | model), rolled forward block by block without full tables."""
        validate_table(df)
        carry = None
        for lo in range(0, len(df), ROLLING_BLOCK_SIZE):
            block = df.iloc[lo:lo + ROLLING_BLOCK_SIZE]
            log_obs = np.column_stack([self.log_probabilities(s, block)
                                       for s in range(self.num_states)])
            if np.isnan(log_obs).any():
                raise NumericalError(f"NaN in observation table within rows {lo}..{lo + len(block)}")
            if carry is None:
                carry = self.log_prior_probabilities + log_obs[0]
                log_obs = log_obs[1:]
            carry = internals.log_forward_rolling(self.log_transition_probabilities,
                                                  np.ascontiguousarray(log_obs), carry)
        return float(log_sum_exp(carry))

    # --------------------------------------------------------------- fitting

    def fit(self, data: Union[pd.DataFrame, Sequence[pd.DataFrame]],
            title: str = DEFAULT_TITLE,
            threshold: float = DEFAULT_THRESHOLD,
            max_iterations: int = DEFAULT_MAX_ITERATIONS,
            verbose: bool = False,
            n_jobs: Optional[int] = None) -> FitResult:
        """
        Fit the model with Baum-Welch.

        Args:
            data: One observation table or a list of independent tables
            title: Name used in log messages
            threshold: Stop when the log-likelihood changes by less than this
            max_iterations: Upper bound on E-steps
            verbose: Show a progress bar over iterations
            n_jobs: Worker threads (default: GENOMEHMM_THREADS or all cores)

        Returns:
            FitResult; the monitor is also kept as `monitor_`
        """
        dfs = [data] if isinstance(data, pd.DataFrame) else list(data)
        if len(dfs) == 0:
            raise ValueError("no observation tables to fit")
        for df in dfs:
            validate_table(df)

        contexts = [self.context(df, n_jobs) for df in dfs]
        monitor = MLMonitor(title, threshold, max_iterations, verbose=verbose)
        self.monitor_ = monitor
        if len(contexts) == 1:
            bound = dfs[0]
        else:
            bound = row_bind(dfs)

        try:
            while True:
                if len(contexts) == 1:
                    contexts[0].iterate()
                else:
                    parallel_for(lambda c: c.iterate(), contexts, n_jobs=n_jobs)
                ll = sum(c.log_likelihood() for c in contexts)
                if ll == -np.inf:
                    raise NumericalError(f"{title}: observations have zero probability under the model")
                if monitor.monitor(ll):
                    break
                self._update_parameters(bound, contexts)
        finally:
            monitor.close()

        return monitor.finish(self)

    def _update_parameters(self, df: pd.DataFrame, contexts: List[HMMIterationContext]) -> None:
        if len(contexts) == 1:
            log_xi_sums = contexts[0].log_xi_sums
            log_first = contexts[0].log_gammas[:, 0]
            log_gammas = contexts[0].log_gammas
        else:
            log_xi_sums = np.logaddexp.reduce([c.log_xi_sums for c in contexts])
            log_first = np.logaddexp.reduce([c.log_gammas[:, 0] for c in contexts])
            log_gammas = np.hstack([c.log_gammas for c in contexts])

        new_trans = log_rescale(log_xi_sums, axis=1)
        # states never left keep their old transition row
        visited = np.isfinite(log_sum_exp(log_xi_sums, axis=1))
        self.log_transition_probabilities[visited] = new_trans[visited]
        self.log_prior_probabilities[:] = log_rescale(log_first)

        self.emissions.update(df, np.exp(log_gammas))

    # -------------------------------------------------------------- sampling

    def sample_states(self, n: int, rng: Optional[np.random.Generator] = None) -> np.ndarray:
        """Draw a state path of length `n` from the prior and transition rows."""
        if n < 1:
            raise ValueError(f"number of states {n} must be > 0")
        rng = default_rng() if rng is None else rng
        S = self.num_states
        first = CategoricalDistribution(self.prior_probabilities, rng).sample()
        alias_prob = np.empty((S, S))
        alias_idx = np.empty((S, S), dtype=np.int64)
        for s, row in enumerate(self.transition_probabilities):
            alias_prob[s], alias_idx[s] = alias_tables(row)
        columns = rng.integers(S, size=n - 1)
        tosses = rng.random(n - 1)
        return internals.sample_chain(first, alias_prob, alias_idx, columns, tosses)

    def sample_states_posterior(self, df: pd.DataFrame,
                                rng: Optional[np.random.Generator] = None,
                                n_jobs: Optional[int] = None) -> np.ndarray:
        """Draw a state path from P(states | df) by forward filtering, backward sampling."""
        rng = default_rng() if rng is None else rng
        log_fwd = self.context(df, n_jobs).calculate_log_forward_probabilities()
        return internals.sample_backward(log_fwd, self.log_transition_probabilities,
                                         rng.random(len(df)))

    def sample(self, n: int, rng: Optional[np.random.Generator] = None) -> pd.DataFrame:
        """
        Synthetic observation table with columns d0..d{D-1} and the
        generating `state` column.
        """
        rng = default_rng() if rng is None else rng
        states = self.sample_states(n, rng)
        df = empty_sample_table(n, self.num_dimensions)
        self.emissions.sample_into(df, states, rng)
        df[STATE_LABEL] = states
        return df

    # ----------------------------------------------------------- persistence

    def rebuild_derived_indices(self) -> None:
        self.emissions.rebuild_derived_indices()

    def to_payload(self) -> Dict[str, Any]:
        return {
            "log_prior_probabilities": self.log_prior_probabilities.tolist(),
            "log_transition_probabilities": self.log_transition_probabilities.tolist(),
            "emissions": to_envelope(self.emissions),
        }

    @classmethod
    def from_payload(cls, payload: Dict[str, Any]) -> 'MLHMM':
        emissions = from_envelope(payload["emissions"])
        log_prior = np.asarray(payload["log_prior_probabilities"], dtype=np.float64)
        log_trans = np.asarray(payload["log_transition_probabilities"], dtype=np.float64)
        model = cls(emissions, np.exp(log_prior), np.exp(log_trans))
        model.log_prior_probabilities = log_prior
        model.log_transition_probabilities = log_trans
        return model

    def __repr__(self):
        with np.printoptions(precision=4, suppress=True):
            return (f"MLHMM(prior_probabilities={self.prior_probabilities}, "
                    f"transition_probabilities={self.transition_probabilities}, "
                    f"emissions={self.emissions})")
