"""
Stouffer-Liptak combination of dependent p-values.

Neighbouring genomic bins are correlated, so the z-score sum is corrected
by the lag correlations of the genome-wide p-value track.
"""

from typing import Sequence

import numpy as np
from scipy.stats import norm

EPSILON = 9e-17
MAX_CORRELATION_DISTANCE = 100


def lag_correlations(p_values: np.ndarray, max_distance: int) -> np.ndarray:
    """
    Pearson correlations between the track and its shifts by 1..L, where
    L = min(n // 2, max_distance). Entry 0 is 0; a constant window has
    correlation 0. Only the overlapping parts of the track are compared;
    the shifted track is not padded with zeros.
    """
    p_values = np.asarray(p_values, dtype=np.float64)
    n = len(p_values)
    size = min(n // 2, max_distance) + 1
    res = np.zeros(size)
    for lag in range(1, size):
        x = p_values[:n - lag]
        y = p_values[lag:]
        if x.std() == 0 or y.std() == 0:
            continue
        res[lag] = np.corrcoef(x, y)[0, 1]
    return res


class StoufferLiptakTest:
    """
    Args:
        p_values: genome-wide p-value track used to estimate correlations
        max_correlation_distance: largest lag considered
    """

    def __init__(self, p_values: Sequence[float],
                 max_correlation_distance: int = MAX_CORRELATION_DISTANCE):
        p_values = np.asarray(p_values, dtype=np.float64)
        if len(p_values) == 0 or not np.any(p_values != 0):
            raise ValueError("p-values must not all be zero")
        self.correlations = lag_correlations(p_values, max_correlation_distance)

    @staticmethod
    def zscore(p: float) -> float:
        """Upper-tail z-score, with p clipped away from 0 and 1."""
        p = min(max(p, EPSILON), 1 - EPSILON)
        return float(norm.isf(p))

    def combine(self, p_values: Sequence[float]) -> float:
        """
        Combined p-value of consecutive bins:

            Z = sum(z_i) / sqrt(n + 2 * sum_{i<j} rho(j - i))

        Every z-score enters the sum, the first one included, so results
        differ from implementations that start the sum at the second bin.
        """
        p_values = np.asarray(p_values, dtype=np.float64)
        n = len(p_values)
        if n == 0:
            raise ValueError("no p-values to combine")
        if n == 1:
            return float(p_values[0])

        z = sum(self.zscore(p) for p in p_values)
        last = len(self.correlations) - 1
        correction = float(n)
        for i in range(n):
            for j in range(i + 1, n):
                correction += 2 * self.correlations[min(last, j - i)]
        if not correction > 0:
            raise ValueError(f"non-positive variance correction {correction}")
        return float(max(EPSILON, norm.sf(z / np.sqrt(correction))))
