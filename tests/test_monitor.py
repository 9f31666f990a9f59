"""
Unit tests for EM convergence monitoring.
"""
import logging

import pytest
import numpy as np

from genomehmm.core.errors import LikelihoodDecreaseWarning, NumericalError
from genomehmm.core.monitor import MLMonitor


class TestMLMonitor:

    def test_converges_below_threshold(self):
        monitor = MLMonitor("test", threshold=0.1, max_iterations=10)
        assert not monitor.monitor(-100.0)
        assert not monitor.monitor(-50.0)
        assert monitor.monitor(-49.95)
        assert monitor.converged

    def test_stops_at_max_iterations(self):
        monitor = MLMonitor("test", threshold=0.1, max_iterations=2)
        assert not monitor.monitor(-100.0)
        assert monitor.monitor(-50.0)
        result = monitor.finish()
        assert not result.converged
        assert result.iterations == 2
        assert result.history == [-100.0, -50.0]

    def test_nan_raises(self):
        monitor = MLMonitor("test")
        with pytest.raises(NumericalError):
            monitor.monitor(np.nan)

    def test_decrease_warns(self, caplog):
        monitor = MLMonitor("test", threshold=0.1, max_iterations=10)
        monitor.monitor(-10.0)
        with pytest.warns(LikelihoodDecreaseWarning):
            monitor.monitor(-20.0)
        assert any(r.levelno == logging.ERROR for r in caplog.records)

    def test_iteration_log_format(self, caplog):
        caplog.set_level(logging.DEBUG, logger="genomehmm.core.monitor")
        monitor = MLMonitor("chr1", threshold=0.1, max_iterations=10)
        monitor.monitor(-123.456789)
        assert "chr1 iteration: 001  LL: -123.456789" in caplog.text

    def test_non_convergence_logged_as_warning(self, caplog):
        monitor = MLMonitor("test", threshold=1e-9, max_iterations=2)
        monitor.monitor(-100.0)
        monitor.monitor(-50.0)
        with caplog.at_level(logging.WARNING, logger="genomehmm.core.monitor"):
            monitor.finish()
        assert "did not converge" in caplog.text

    @pytest.mark.parametrize("threshold,max_iterations", [(0.0, 10), (-1.0, 10), (0.1, 0)])
    def test_invalid_settings(self, threshold, max_iterations):
        with pytest.raises(ValueError):
            MLMonitor("test", threshold=threshold, max_iterations=max_iterations)

    def test_verbose_progress_bar(self):
        monitor = MLMonitor("test", threshold=0.1, max_iterations=5, verbose=True)
        monitor.monitor(-10.0)
        monitor.monitor(-9.99)
        assert monitor.finish().converged

    def test_close_is_idempotent(self):
        monitor = MLMonitor("test", max_iterations=5, verbose=True)
        monitor.monitor(-10.0)
        monitor.close()
        monitor.close()
        assert monitor._pbar is None
