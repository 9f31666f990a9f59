"""
Tests for the thread-pool helpers and chunked xi accumulation.
"""
import pytest
import numpy as np

from genomehmm.core.parallel import chunked, invoke_all, parallel_for, parallel_reduce


class TestChunked:

    @pytest.mark.parametrize("lo,hi,n", [(0, 10, 3), (1, 100, 8), (5, 7, 10), (0, 1, 1)])
    def test_covers_range(self, lo, hi, n):
        chunks = chunked(lo, hi, n)
        assert len(chunks) == min(n, hi - lo)
        assert chunks[0][0] == lo
        assert chunks[-1][1] == hi
        for (a, b), (c, d) in zip(chunks, chunks[1:]):
            assert b == c
        assert all(b > a for a, b in chunks)

    def test_empty_range(self):
        assert chunked(3, 3, 4) == []


class TestParallelFor:

    def test_preserves_order(self):
        assert parallel_for(lambda x: x * x, range(20), n_jobs=4) == [x * x for x in range(20)]

    def test_propagates_exceptions(self):
        def boom(x):
            if x == 3:
                raise RuntimeError("boom")
            return x

        with pytest.raises(RuntimeError, match="boom"):
            parallel_for(boom, range(6), n_jobs=3)

    def test_nested_calls_run(self):
        res = parallel_for(lambda x: sum(parallel_for(lambda y: x * y, range(4), n_jobs=4)),
                           range(5), n_jobs=5)
        assert res == [6 * x for x in range(5)]

    def test_invoke_all(self):
        assert invoke_all(lambda: 1, lambda: 2, n_jobs=2) == [1, 2]

    def test_parallel_reduce(self):
        values = np.arange(100)
        res = parallel_reduce(lambda lo, hi: values[lo:hi].sum(), lambda a, b: a + b,
                              chunked(0, 100, 7), 0, n_jobs=4)
        assert res == values.sum()


class TestChunkInvariance:

    @pytest.mark.parametrize("n_jobs", [1, 2, 5, 16])
    def test_xi_sums_independent_of_chunking(self, sticky_model, sampled_table, n_jobs):
        reference = sticky_model.context(sampled_table, n_jobs=1)
        reference.iterate()
        context = sticky_model.context(sampled_table, n_jobs=n_jobs)
        context.iterate()
        np.testing.assert_allclose(context.log_xi_sums, reference.log_xi_sums, rtol=1e-10)
        np.testing.assert_array_equal(context.log_gammas, reference.log_gammas)
