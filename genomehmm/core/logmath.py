"""
Log-space arithmetic used throughout genomehmm.

All probability tables in the package are kept in natural-log space;
values are exponentiated only at the boundary (sampling, reporting).
"""

import numpy as np
from numba import jit
from scipy.special import gammaln, logsumexp as scipy_logsumexp


@jit(nopython=True, nogil=True, cache=False)
def log_add_exp(a, b):
    """
    Evaluates log(exp(a) + exp(b)) as

        max(a, b) + log1p(exp(-|a - b|))

    Returns -inf when both arguments are -inf.
    """
    if a == -np.inf:
        return b
    if b == -np.inf:
        return a
    if a >= b:
        return a + np.log1p(np.exp(b - a))
    return b + np.log1p(np.exp(a - b))


@jit(nopython=True, nogil=True, cache=False)
def log_sum_exp_1d(values):
    """Max-shifted log-sum-exp of a 1-D array; -inf for an all -inf input."""
    m = -np.inf
    for x in values:
        if x > m:
            m = x
    if m == -np.inf:
        return -np.inf
    acc = 0.0
    for x in values:
        acc += np.exp(x - m)
    return m + np.log(acc)


def log_sum_exp(values, axis=None, keepdims: bool = False):
    """Numerically stable log(sum(exp(values))) along `axis`."""
    values = np.asarray(values, dtype=np.float64)
    with np.errstate(divide='ignore'):
        return scipy_logsumexp(values, axis=axis, keepdims=keepdims)


def log_rescale(values, axis: int = -1) -> np.ndarray:
    """
    Log-normalise `values` along `axis`, so that exp() of every slice sums to 1.

    Slices that are entirely -inf are left as -inf instead of becoming NaN.
    """
    values = np.asarray(values, dtype=np.float64)
    if values.ndim == 0:
        raise ValueError("cannot rescale a scalar")
    norm = log_sum_exp(values, axis=axis, keepdims=True)
    with np.errstate(invalid='ignore'):
        res = values - norm
    res[np.broadcast_to(np.isneginf(norm), res.shape)] = -np.inf
    return res


def log_abs_diff_exp(x: float, y: float) -> float:
    """Computes log|exp(x) - exp(y)| without overflow."""
    if np.isinf(x) and np.isinf(y):
        # both values are zero, as is the difference
        return -np.inf
    return max(x, y) + np.log1p(-np.exp(-abs(x - y)))


_LOG_FACTORIAL_CACHE = gammaln(np.arange(1024, dtype=np.float64) + 1.0)


def factorial_log(i: int) -> float:
    """Computes log(i!) using a tabulated cache for small arguments."""
    if i < 0:
        raise ValueError(f"factorial of a negative number {i}")
    if i < len(_LOG_FACTORIAL_CACHE):
        return float(_LOG_FACTORIAL_CACHE[i])
    return float(gammaln(i + 1.0))


def binomial_coefficient_log(n, k):
    """log C(n, k); vectorised over numpy arrays."""
    n = np.asarray(n, dtype=np.float64)
    k = np.asarray(k, dtype=np.float64)
    res = gammaln(n + 1.0) - gammaln(k + 1.0) - gammaln(n - k + 1.0)
    return float(res) if res.ndim == 0 else res
