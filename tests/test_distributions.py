"""
Unit tests for the distributions module.
"""
import pytest
import numpy as np
from scipy import stats

from genomehmm.core.distributions import (
    CategoricalDistribution,
    NegativeBinomialDistribution,
    estimate_failures_using_moments,
    fit_gamma_shape,
)


class TestCategoricalDistribution:

    def test_frequencies(self, rng):
        probabilities = np.array([0.1, 0.0, 0.6, 0.3])
        draws = CategoricalDistribution(probabilities, rng).sample(100000)
        freq = np.bincount(draws, minlength=4) / len(draws)
        np.testing.assert_allclose(freq, probabilities, atol=0.01)
        assert freq[1] == 0.0

    def test_scalar_draw(self, rng):
        draw = CategoricalDistribution([0.0, 1.0], rng).sample()
        assert draw == 1

    def test_empty(self):
        with pytest.raises(ValueError):
            CategoricalDistribution([])


class TestNegativeBinomialDistribution:

    def test_log_probability_matches_scipy(self):
        nb = NegativeBinomialDistribution(4.0, 3.0)
        x = np.arange(10)
        np.testing.assert_allclose(nb.log_probability(x),
                                   stats.nbinom.logpmf(x, 3.0, 3.0 / 7.0))

    def test_sample_moments(self, rng):
        nb = NegativeBinomialDistribution(5.0, 2.0, rng)
        x = nb.sample(50000)
        assert x.mean() == pytest.approx(5.0, rel=0.05)
        assert x.var() == pytest.approx(nb.variance, rel=0.1)

    def test_of_recovers_parameters(self, rng):
        x = rng.negative_binomial(3.0, 3.0 / 13.0, size=30000)
        nb = NegativeBinomialDistribution.of(x)
        assert nb.mean == pytest.approx(10.0, rel=0.05)
        assert nb.failures == pytest.approx(3.0, rel=0.15)


class TestEstimators:

    def test_failures_using_moments(self):
        assert estimate_failures_using_moments(5.0, 5.0) == np.inf
        assert estimate_failures_using_moments(5.0, 0.0) == np.inf
        assert estimate_failures_using_moments(5.0, 17.5) == pytest.approx(2.0)

    def test_fit_gamma_shape(self, rng):
        x = rng.gamma(3.0, 2.0, size=50000)
        shape = fit_gamma_shape(np.log(x).mean(), x.mean(), 1.0)
        assert shape == pytest.approx(3.0, rel=0.05)
