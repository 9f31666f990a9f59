"""
Posterior false discovery rate control.

Given log posterior probabilities of the null hypothesis (local FDRs), the
adaptive procedure of Sun & Cai rejects the largest set of rows whose mean
null probability stays below `alpha`.
"""

import logging
from typing import FrozenSet, Iterable, Mapping, Union

import numpy as np

from genomehmm.core.logmath import log_sum_exp

logger = logging.getLogger(__name__)


class NullHypothesis:
    """A fixed set of HMM states that make up the null hypothesis."""

    def __init__(self, null_states: Iterable[int]):
        self.null_states: FrozenSet[int] = frozenset(int(s) for s in null_states)
        if not self.null_states:
            raise ValueError("null hypothesis needs at least one state")
        if min(self.null_states) < 0:
            raise ValueError(f"null states {sorted(self.null_states)} must be non-negative")

    def apply(self, log_memberships: Union[np.ndarray, Mapping[int, np.ndarray]]) -> np.ndarray:
        """
        Log-sum the memberships of the null states.

        Args:
            log_memberships: (states x rows) array, or a mapping state -> row array

        Returns:
            (rows,) log posterior probability of the null hypothesis
        """
        if isinstance(log_memberships, Mapping):
            missing = self.null_states - set(log_memberships)
            if missing:
                raise ValueError(f"no memberships for null states {sorted(missing)}")
            rows = np.vstack([log_memberships[s] for s in sorted(self.null_states)])
        else:
            log_memberships = np.asarray(log_memberships, dtype=np.float64)
            if max(self.null_states) >= log_memberships.shape[0]:
                raise ValueError(f"null states {sorted(self.null_states)} out of range "
                                 f"for {log_memberships.shape[0]} states")
            rows = log_memberships[sorted(self.null_states)]
        return log_sum_exp(rows, axis=0)

    def __repr__(self):
        return f"NullHypothesis({sorted(self.null_states)})"


def _check(log_null_memberships, alpha=None) -> np.ndarray:
    x = np.asarray(log_null_memberships, dtype=np.float64)
    if x.ndim != 1 or len(x) == 0:
        raise ValueError("expected a non-empty 1-D array of log null memberships")
    if np.isnan(x).any():
        raise ValueError("log null memberships contain NaN")
    if alpha is not None and not 0 < alpha < 1:
        raise ValueError(f"alpha {alpha} must lie in (0, 1)")
    return x


def _log_cumulative_means(sorted_values: np.ndarray) -> np.ndarray:
    with np.errstate(divide='ignore'):
        return (np.logaddexp.accumulate(sorted_values)
                - np.log(np.arange(1, len(sorted_values) + 1)))


class Fdr:
    """FDR control over log local FDRs; `Fdr(alpha)` is a reusable predictor."""

    def __init__(self, alpha: float = 0.05):
        if not 0 < alpha < 1:
            raise ValueError(f"alpha {alpha} must lie in (0, 1)")
        self.alpha = alpha

    def predict(self, log_null_memberships) -> np.ndarray:
        return self.control(log_null_memberships, self.alpha)

    @staticmethod
    def control(log_null_memberships, alpha: float) -> np.ndarray:
        """
        Reject rows in increasing order of null probability while the running
        mean null probability stays <= alpha.

        Returns:
            Boolean mask of rejected rows
        """
        x = _check(log_null_memberships, alpha)
        indices = np.argsort(x, kind='stable')
        log_fdr = _log_cumulative_means(x[indices])
        exceeded = np.flatnonzero(log_fdr > np.log(alpha))
        count = exceeded[0] if len(exceeded) else len(x)

        rejected = np.zeros(len(x), dtype=bool)
        rejected[indices[:count]] = True
        logger.debug("FDR %g: rejected %d of %d", alpha, count, len(x))
        return rejected

    @staticmethod
    def control_states(log_memberships, null_states: Iterable[int], alpha: float) -> np.ndarray:
        return Fdr.control(NullHypothesis(null_states).apply(log_memberships), alpha)

    @staticmethod
    def log_qvalidate(log_null_memberships) -> np.ndarray:
        """
        Log q-values: the running mean of sorted null probabilities, made
        monotone by a reverse running minimum.
        """
        x = _check(log_null_memberships)
        indices = np.argsort(x, kind='stable')
        log_q = _log_cumulative_means(x[indices])
        log_q = np.minimum.accumulate(log_q[::-1])[::-1]
        res = np.empty(len(x))
        res[indices] = log_q
        return res

    @staticmethod
    def qvalidate(log_null_memberships) -> np.ndarray:
        return np.exp(Fdr.log_qvalidate(log_null_memberships))
