"""
Posterior calling of enriched regions.

A fitted model assigns every row a posterior probability of belonging to
the null states; rows are called enriched under posterior FDR control and
merged into runs of consecutive rows.
"""

import logging
from typing import Iterable, NamedTuple, Optional, Tuple

import numpy as np
import pandas as pd

from genomehmm.hypothesis.fdr import Fdr, NullHypothesis

logger = logging.getLogger(__name__)


class PosteriorCalls(NamedTuple):
    rejected: np.ndarray
    q_values: np.ndarray
    log_null_memberships: np.ndarray


def null_log_memberships(model, df: pd.DataFrame, null_states: Iterable[int],
                         n_jobs: Optional[int] = None) -> np.ndarray:
    """Log posterior probability of the null hypothesis for every row."""
    return NullHypothesis(null_states).apply(model.evaluate(df, n_jobs=n_jobs))


def call_enriched(model, df: pd.DataFrame, null_states: Iterable[int],
                  alpha: float = 0.05, n_jobs: Optional[int] = None) -> PosteriorCalls:
    """
    Evaluate the model and control the FDR of the non-null calls.

    Args:
        model: Fitted MLHMM or MLFreeMixture
        df: Observation table
        null_states: States making up the null hypothesis
        alpha: FDR level

    Returns:
        PosteriorCalls with the rejected mask, q-values and log null memberships
    """
    log_null = null_log_memberships(model, df, null_states, n_jobs=n_jobs)
    rejected = Fdr.control(log_null, alpha)
    q_values = Fdr.qvalidate(log_null)
    logger.info("Called %d of %d rows at FDR %g", int(rejected.sum()), len(rejected), alpha)
    return PosteriorCalls(rejected, q_values, log_null)


def rejected_runs(mask: np.ndarray) -> Tuple[np.ndarray, np.ndarray]:
    """
    Runs of consecutive True values.

    Returns:
        (starts, lengths) in row coordinates
    """
    mask = np.asarray(mask, dtype=bool)
    # Pad with False so every run has a rising and a falling edge
    padded = np.concatenate([[0], mask.astype(np.int8), [0]])
    diff = np.diff(padded)

    starts = np.where(diff == 1)[0]
    ends = np.where(diff == -1)[0]
    return starts, ends - starts
