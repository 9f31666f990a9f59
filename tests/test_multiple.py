"""
Tests for the Benjamini-Hochberg correction.
"""
import pytest
import numpy as np

from genomehmm.hypothesis.multiple import benjamini_hochberg


class TestBenjaminiHochberg:

    def test_small_vector(self):
        np.testing.assert_allclose(benjamini_hochberg([0.2, 0.42, 0.8, 0.01]),
                                   [0.4, 0.56, 0.8, 0.04])

    def test_matches_r(self):
        p = [0.000962882346117542, 0.00189844480724466, 0.0183097438104205,
             0.0315318359604176, 0.0481693657349631, 0.105687877464594,
             0.543211136961355, 0.565056666152251, 0.603476808731503,
             0.955690764788587]
        expected = [0.00949222403622329, 0.00949222403622329, 0.0610324793680683,
                    0.078829589901044, 0.0963387314699263, 0.176146462440991,
                    0.670529787479448, 0.670529787479448, 0.670529787479448,
                    0.955690764788587]
        np.testing.assert_allclose(benjamini_hochberg(p), expected, rtol=1e-12)

    def test_order_preserved(self, rng):
        p = rng.uniform(size=200)
        q = benjamini_hochberg(p)
        order = np.argsort(p)
        assert np.all(np.diff(q[order]) >= 0)
        assert np.all(q >= p)
        assert np.all(q <= 1)

    def test_empty(self):
        with pytest.raises(ValueError):
            benjamini_hochberg([])

    def test_out_of_range(self):
        with pytest.raises(ValueError):
            benjamini_hochberg([0.5, 1.5])
