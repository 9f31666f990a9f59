"""
Convergence monitoring for EM fits.
"""

import logging
import warnings
from dataclasses import dataclass, field
from typing import List, Optional

import numpy as np
from tqdm import tqdm

from genomehmm.config import (
    DEFAULT_MAX_ITERATIONS,
    DEFAULT_THRESHOLD,
    DEFAULT_TITLE,
    LIKELIHOOD_TOLERANCE,
)
from genomehmm.core.errors import LikelihoodDecreaseWarning, NumericalError

logger = logging.getLogger(__name__)


@dataclass
class FitResult:
    """Outcome of an EM run."""

    log_likelihood: float
    iterations: int
    converged: bool
    history: List[float] = field(default_factory=list)


class MLMonitor:
    """
    Track EM log-likelihood values and decide when to stop.

    An EM run stops when the absolute change between two consecutive
    iterations falls below `threshold`, or when `max_iterations` values have
    been seen.
    """

    def __init__(self, title: str = DEFAULT_TITLE,
                 threshold: float = DEFAULT_THRESHOLD,
                 max_iterations: int = DEFAULT_MAX_ITERATIONS,
                 verbose: bool = False,
                 level: int = logging.DEBUG):
        if not threshold > 0:
            raise ValueError(f"threshold {threshold} must be > 0")
        if max_iterations < 1:
            raise ValueError(f"maximum number of iterations {max_iterations} must be > 0")
        self.title = title
        self.threshold = threshold
        self.max_iterations = max_iterations
        self.level = level
        self.history: List[float] = []
        self.converged = False
        self._pbar: Optional[tqdm] = None
        if verbose:
            self._pbar = tqdm(total=max_iterations, desc=f"Fitting {title}", unit="iter")

    @property
    def iterations(self) -> int:
        return len(self.history)

    def monitor(self, log_likelihood: float) -> bool:
        """
        Record a log-likelihood value.

        Returns:
            True if the fit should stop
        """
        if np.isnan(log_likelihood):
            self.close()
            raise NumericalError(f"{self.title}: log-likelihood is NaN at iteration {self.iterations + 1}")

        self.history.append(float(log_likelihood))
        it = len(self.history)
        curr = self.history[-1]
        prev = self.history[-2] if it > 1 else None

        status = ""
        if prev is not None and curr < prev:
            status = " *"
            tolerance = LIKELIHOOD_TOLERANCE * max(1.0, abs(prev))
            if prev - curr > tolerance:
                message = (f"{self.title}: log-likelihood decreased at iteration {it}: "
                           f"{prev:.6f} -> {curr:.6f}")
                logger.error(message)
                warnings.warn(message, LikelihoodDecreaseWarning)
        logger.log(self.level, "%s iteration: %03d  LL: %.6f%s", self.title, it, curr, status)

        if self._pbar is not None:
            self._pbar.update(1)
            postfix = {'logprob': f'{curr:.1f}'}
            if prev is not None:
                postfix['delta'] = f'{curr - prev:.2e}'
            self._pbar.set_postfix(postfix)

        if prev is not None and abs(curr - prev) < self.threshold:
            self.converged = True
            return True
        return it >= self.max_iterations

    def finish(self, model=None) -> FitResult:
        """Log the outcome and summarise the run."""
        self.close()
        ll = self.history[-1] if self.history else -np.inf
        if self.converged:
            logger.info("%s: converged after %d iterations, LL %.6f",
                        self.title, self.iterations, ll)
        else:
            logger.warning("%s: did not converge in %d iterations (threshold %g), LL %.6f",
                           self.title, self.iterations, self.threshold, ll)
        if model is not None:
            logger.debug("%s: %s", self.title, model)
        return FitResult(log_likelihood=ll, iterations=self.iterations,
                         converged=self.converged, history=list(self.history))

    def close(self):
        """Close the progress bar, if any; safe to call more than once."""
        if self._pbar is not None:
            self._pbar.close()
            self._pbar = None
