"""
Tests for the Stouffer-Liptak combination.
"""
import pytest
import numpy as np
from scipy.stats import norm

from genomehmm.hypothesis.stouffer import StoufferLiptakTest, lag_correlations


class TestLagCorrelations:

    def test_linear_track(self):
        np.testing.assert_allclose(lag_correlations([0.0, 0.1, 0.2, 0.3, 0.4], 20), [0.0, 1.0, 1.0])

    def test_constant_windows(self):
        np.testing.assert_array_equal(lag_correlations(np.zeros(6), 20), np.zeros(4))

    def test_max_distance(self):
        assert len(lag_correlations(np.arange(1000) % 7, 100)) == 101

    def test_reference_values(self):
        # lag 1: [.1, .2, .4] vs [.2, .4, .3]; lag 2: [.1, .2] vs [.4, .3]
        np.testing.assert_allclose(lag_correlations([0.1, 0.2, 0.4, 0.3], 20),
                                   [0.0, np.sqrt(3 / 28), -1.0])


class TestStoufferLiptakTest:

    def test_zscore(self):
        assert StoufferLiptakTest.zscore(0.05) == pytest.approx(1.6448536, rel=1e-7)
        assert StoufferLiptakTest.zscore(0.5) == pytest.approx(0.0, abs=1e-12)
        z0 = StoufferLiptakTest.zscore(0.0)
        assert np.isfinite(z0) and z0 > 8

    def test_single_value(self):
        test = StoufferLiptakTest([0.1, 0.2, 0.3, 0.4])
        assert test.combine([1e-6]) == 1e-6

    def test_independent_combination(self):
        test = StoufferLiptakTest([0.1, 0.5, 0.9, 0.3], max_correlation_distance=0)
        z = StoufferLiptakTest.zscore(0.05)
        assert test.combine([0.05, 0.05]) == pytest.approx(norm.sf(2 * z / np.sqrt(2)))

    def test_reference_combination(self):
        test = StoufferLiptakTest([0.1, 0.2, 0.4, 0.3], max_correlation_distance=20)
        z = StoufferLiptakTest.zscore(0.05)
        # pairs (0,1) and (1,2) at lag 1, pair (0,2) at lag 2
        correction = 3 + 2 * (2 * np.sqrt(3 / 28) - 1)
        expected = norm.sf(3 * z / np.sqrt(correction))
        assert test.combine([0.05, 0.05, 0.05]) == pytest.approx(expected, rel=1e-9)
        assert expected == pytest.approx(5.8e-4, rel=0.05)

    def test_positive_correlation_weakens_evidence(self, rng):
        track = np.convolve(rng.uniform(size=2000), np.ones(5) / 5, mode='same')
        correlated = StoufferLiptakTest(track)
        independent = StoufferLiptakTest(track, max_correlation_distance=0)
        p = [0.01, 0.02, 0.01]
        assert correlated.combine(p) > independent.combine(p)

    def test_all_zero_track(self):
        with pytest.raises(ValueError):
            StoufferLiptakTest([0.0, 0.0, 0.0])
