"""Multiple-testing corrections."""

import numpy as np


def benjamini_hochberg(p_values) -> np.ndarray:
    """
    Benjamini-Hochberg step-up q-values.

    With p-values ranked in decreasing order (k = 0 for the largest),

        q[k] = min(1, p[k] * m / (m - k))

    followed by a running minimum, so q-values are monotone in p.

    Args:
        p_values: 1-D array of p-values in [0, 1]

    Returns:
        q-values in the input order
    """
    p = np.asarray(p_values, dtype=np.float64)
    if p.ndim != 1:
        raise ValueError(f"expected a 1-D array of p-values, got shape {p.shape}")
    m = len(p)
    if m == 0:
        raise ValueError("no p-values given")
    if np.isnan(p).any() or np.any(p < 0) or np.any(p > 1):
        raise ValueError("p-values must lie in [0, 1]")

    order = np.argsort(-p, kind='stable')
    q = np.minimum(1.0, p[order] * m / (m - np.arange(m)))
    q = np.minimum.accumulate(q)
    res = np.empty(m)
    res[order] = q
    return res
