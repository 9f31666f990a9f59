"""
Tests for posterior FDR control.
"""
import pytest
import numpy as np

from genomehmm.hypothesis.fdr import Fdr, NullHypothesis


class TestNullHypothesis:

    def test_array_memberships(self):
        log_memberships = np.log(np.array([[0.2, 0.5], [0.3, 0.1], [0.5, 0.4]]))
        res = NullHypothesis([0, 2]).apply(log_memberships)
        np.testing.assert_allclose(np.exp(res), [0.7, 0.9])

    def test_mapping_memberships(self):
        log_memberships = {0: np.log([0.2, 0.5]), 1: np.log([0.8, 0.5])}
        np.testing.assert_allclose(NullHypothesis({1}).apply(log_memberships), np.log([0.8, 0.5]))

    def test_out_of_range_state(self):
        with pytest.raises(ValueError):
            NullHypothesis([3]).apply(np.zeros((2, 4)))

    def test_negative_state(self):
        with pytest.raises(ValueError):
            NullHypothesis([-1])

    def test_frozen(self):
        assert isinstance(NullHypothesis([1, 1, 0]).null_states, frozenset)


class TestControl:

    def test_uniform_half_rejects_nothing(self):
        rejected = Fdr.control(np.full(100, np.log(0.5)), 0.05)
        assert not rejected.any()

    def test_rejects_exact_minority(self):
        log_null = np.full(100, np.log(0.5))
        enriched = [3, 17, 42, 80, 99]
        log_null[enriched] = -1e3
        rejected = Fdr.control(log_null, 0.05)
        np.testing.assert_array_equal(np.flatnonzero(rejected), enriched)

    def test_all_below_alpha_rejects_all(self):
        assert Fdr.control(np.full(10, np.log(0.01)), 0.05).all()

    def test_matches_qvalues(self, rng):
        log_null = np.log(rng.beta(1, 1, size=1000))
        for alpha in (0.01, 0.05, 0.1, 0.2):
            rejected = Fdr.control(log_null, alpha)
            assert rejected.sum() == (Fdr.qvalidate(log_null) <= alpha).sum()

    def test_predictor(self):
        log_null = np.log([0.001, 0.9, 0.002])
        np.testing.assert_array_equal(Fdr(0.05).predict(log_null), [True, False, True])

    def test_control_states(self):
        log_memberships = np.log(np.array([[0.999, 0.001], [0.001, 0.999]]))
        np.testing.assert_array_equal(Fdr.control_states(log_memberships, [0], 0.05), [False, True])

    @pytest.mark.parametrize("alpha", [0.0, 1.0, -0.1, 1.5])
    def test_invalid_alpha(self, alpha):
        with pytest.raises(ValueError):
            Fdr.control(np.log([0.5]), alpha)

    def test_empty(self):
        with pytest.raises(ValueError):
            Fdr.control([], 0.05)

    def test_nan(self):
        with pytest.raises(ValueError):
            Fdr.control([np.nan, -1.0], 0.05)


class TestQValidate:

    def test_monotone(self, rng):
        log_null = np.log(rng.beta(0.5, 1, size=500))
        q = Fdr.qvalidate(log_null)
        order = np.argsort(log_null)
        assert np.all(np.diff(q[order]) >= 0)
        assert np.all(q <= 1 + 1e-12)

    def test_small_example(self):
        q = Fdr.qvalidate(np.log([0.3, 0.1, 0.2]))
        np.testing.assert_allclose(q, [0.2, 0.1, 0.15])

    def test_log_qvalidate(self):
        log_null = np.log([0.3, 0.1, 0.2])
        np.testing.assert_allclose(np.exp(Fdr.log_qvalidate(log_null)), Fdr.qvalidate(log_null))
