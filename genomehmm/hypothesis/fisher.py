"""
Fisher's exact test for 2x2 contingency tables.

The table is described by the hypergeometric parameters:

    N: population size      K: number of successes in the population
    n: number of draws      k: number of observed successes
"""

import enum

import numpy as np

from genomehmm.core.logmath import binomial_coefficient_log, log_sum_exp


class Alternative(enum.Enum):
    LESS = "less"
    GREATER = "greater"
    TWO_SIDED = "two-sided"


class TwoSidedPolicy(enum.Enum):
    # tables with probability <= p_observed * (1 + 1e-7), as R's fisher.test
    RELATIVE_ERROR = "relative"
    # tables with probability <= p_observed + 1e-6
    ABSOLUTE_CUTOFF = "absolute"


RELATIVE_ERROR = 1 + 1e-7
ABSOLUTE_CUTOFF = 1e-6


class FisherExactTest:
    """
    Args:
        N, K, n, k: hypergeometric parameters, 0 <= k <= min(n, K), n, K <= N
        policy: which tables count as "at least as extreme" for TWO_SIDED
    """

    def __init__(self, N: int, K: int, n: int, k: int,
                 policy: TwoSidedPolicy = TwoSidedPolicy.RELATIVE_ERROR):
        if not (0 <= K <= N and 0 <= n <= N):
            raise ValueError(f"invalid table parameters N={N}, K={K}, n={n}")
        self.N, self.K, self.n, self.k = N, K, n, k
        self.policy = policy
        self.lo = max(0, n - (N - K))
        self.hi = min(n, K)
        if not self.lo <= k <= self.hi:
            raise ValueError(f"k={k} outside the support [{self.lo}, {self.hi}]")

    @classmethod
    def for_table(cls, a: int, b: int, c: int, d: int, **kwargs) -> 'FisherExactTest':
        """
        2x2 table [[a, b], [c, d]]: K is the first row sum, n the first
        column sum, k the top-left cell.
        """
        return cls(a + b + c + d, a + b, a + c, a, **kwargs)

    def log_probabilities(self) -> np.ndarray:
        """Log hypergeometric probabilities over the support lo..hi."""
        x = np.arange(self.lo, self.hi + 1)
        return (binomial_coefficient_log(self.K, x)
                + binomial_coefficient_log(self.N - self.K, self.n - x)
                - binomial_coefficient_log(self.N, self.n))

    def __call__(self, alternative: Alternative = Alternative.TWO_SIDED) -> float:
        log_p = np.atleast_1d(self.log_probabilities())
        i = self.k - self.lo
        if alternative is Alternative.LESS:
            res = np.exp(log_sum_exp(log_p[:i + 1]))
        elif alternative is Alternative.GREATER:
            res = np.exp(log_sum_exp(log_p[i:]))
        elif self.policy is TwoSidedPolicy.RELATIVE_ERROR:
            res = np.exp(log_sum_exp(log_p[log_p <= log_p[i] + np.log(RELATIVE_ERROR)]))
        else:
            p = np.exp(log_p)
            res = p[p <= p[i] + ABSOLUTE_CUTOFF].sum()
        return float(min(1.0, res))

    def __repr__(self):
        return f"FisherExactTest(N={self.N}, K={self.K}, n={self.n}, k={self.k})"
