"""
Shared pytest fixtures for genomehmm tests.
"""
import pytest
import numpy as np
import pandas as pd

from genomehmm.core.emission import PoissonEmissionScheme
from genomehmm.core.hmm import MLHMM


@pytest.fixture
def rng():
    """Seeded generator so sampled data are reproducible."""
    return np.random.default_rng(42)


@pytest.fixture
def two_state_model():
    """
    Poisson HMM with two well separated states.
    State 0: background (rate 1)
    State 1: enriched (rate 100)
    """
    return MLHMM.free(
        [[PoissonEmissionScheme(1.0)], [PoissonEmissionScheme(100.0)]],
        prior_probabilities=np.array([0.5, 0.5]),
        transition_probabilities=np.array([[0.9, 0.1], [0.1, 0.9]]),
    )


@pytest.fixture
def alternating_table():
    """Observations flipping between background and enriched every row."""
    return pd.DataFrame({'d0': np.array([0, 100] * 10, dtype=np.int64)})


@pytest.fixture
def sticky_model():
    """Two-state Poisson HMM with long runs and moderately separated rates."""
    return MLHMM.free(
        [[PoissonEmissionScheme(2.0)], [PoissonEmissionScheme(20.0)]],
        prior_probabilities=np.array([0.6, 0.4]),
        transition_probabilities=np.array([[0.95, 0.05], [0.1, 0.9]]),
    )


@pytest.fixture
def sampled_table(sticky_model, rng):
    """500 rows sampled from `sticky_model`, without the state column."""
    df = sticky_model.sample(500, rng)
    return df[['d0']].copy()


@pytest.fixture
def temp_dir(tmp_path):
    """Temporary directory for file operations."""
    return str(tmp_path)
