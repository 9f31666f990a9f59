"""
Per-(model, table) scratch space for one E-step of Baum-Welch.
"""

import numpy as np
import pandas as pd

from genomehmm.core import internals
from genomehmm.core.errors import NumericalError
from genomehmm.core.logmath import log_sum_exp
from genomehmm.core.parallel import chunked, invoke_all, parallel_for, parallel_reduce
from genomehmm.core.table import validate_table


def check_no_nan(table: np.ndarray, name: str, row_axis: int = 0) -> None:
    """Raise NumericalError naming the first NaN cell of a (rows x states) table."""
    nan = np.isnan(table)
    if nan.any():
        cell = np.unravel_index(np.argmax(nan), table.shape)
        row, state = (cell[0], cell[1]) if row_axis == 0 else (cell[1], cell[0])
        raise NumericalError(f"NaN in {name} table at row {row}, state {state}")


class HMMIterationContext:
    """
    Holds the observation, forward and backward tables (rows x states),
    the log posteriors (states x rows) and the xi sums (states x states)
    of a model over one observation table.

    The context reads the model's log prior and transition arrays by
    reference; the model updates them in place between iterations.
    """

    def __init__(self, model, df: pd.DataFrame, n_jobs=None):
        validate_table(df)
        self.model = model
        self.df = df
        self.n_jobs = n_jobs
        self.num_states = model.num_states
        self.num_rows = len(df)

        S, T = self.num_states, self.num_rows
        self.log_observation_probabilities = np.empty((T, S))
        self.log_forward_probabilities = np.empty((T, S))
        self.log_backward_probabilities = np.empty((T, S))
        self.log_gammas = np.empty((S, T))
        self.log_xi_sums = np.full((S, S), -np.inf)

    @property
    def log_prior_probabilities(self):
        return self.model.log_prior_probabilities

    @property
    def log_transition_probabilities(self):
        return self.model.log_transition_probabilities

    def iterate(self):
        self.refill()
        self.expect()

    def refill(self):
        """Score every row under every state's emissions, state-parallel."""
        def fill(state):
            self.log_observation_probabilities[:, state] = self.model.log_probabilities(state, self.df)

        parallel_for(fill, range(self.num_states), n_jobs=self.n_jobs)
        check_no_nan(self.log_observation_probabilities, "observation")

    def expect(self):
        invoke_all(self._forward, self._backward, n_jobs=self.n_jobs)
        check_no_nan(self.log_forward_probabilities, "forward")
        check_no_nan(self.log_backward_probabilities, "backward")

        S = self.num_states

        def xi_chunk(lo, hi):
            return internals.log_xi_sums(
                self.log_forward_probabilities, self.log_backward_probabilities,
                self.log_transition_probabilities, self.log_observation_probabilities,
                lo, hi)

        self.log_xi_sums = parallel_reduce(
            xi_chunk, np.logaddexp, chunked(1, self.num_rows, self.n_jobs),
            np.full((S, S), -np.inf), n_jobs=self.n_jobs)

        internals.log_gammas(self.log_forward_probabilities,
                             self.log_backward_probabilities, self.log_gammas)
        check_no_nan(self.log_gammas, "gamma", row_axis=1)

    def calculate_log_forward_probabilities(self) -> np.ndarray:
        """Refill and run the forward pass only."""
        self.refill()
        self._forward()
        check_no_nan(self.log_forward_probabilities, "forward")
        return self.log_forward_probabilities

    def log_likelihood(self) -> float:
        return float(log_sum_exp(self.log_forward_probabilities[-1]))

    def _forward(self):
        internals.log_forward(self.log_prior_probabilities, self.log_transition_probabilities,
                              self.log_observation_probabilities, self.log_forward_probabilities)

    def _backward(self):
        internals.log_backward(self.log_transition_probabilities,
                               self.log_observation_probabilities, self.log_backward_probabilities)
