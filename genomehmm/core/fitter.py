"""
Guess-then-fit drivers.

A `Fitter` wraps a guess function producing an initial model from the
data; `Fitter.multi_started` runs several short fits from different
guesses and continues the best one.
"""

import logging
from typing import Callable, List, Optional, Sequence, Union

import numpy as np
import pandas as pd
from tqdm import tqdm

from genomehmm.config import DEFAULT_TITLE, FitSettings
from genomehmm.core.emission import PoissonEmissionScheme
from genomehmm.core.hmm import MLHMM
from genomehmm.core.table import column_values, row_bind

logger = logging.getLogger(__name__)

Data = Union[pd.DataFrame, Sequence[pd.DataFrame]]
Guess = Callable[[List[pd.DataFrame], int, np.random.Generator], object]


def _as_list(data: Data) -> List[pd.DataFrame]:
    dfs = [data] if isinstance(data, pd.DataFrame) else list(data)
    if len(dfs) == 0:
        raise ValueError("no observation tables to fit")
    return dfs


class Fitter:
    """
    Fits models produced by `guess(dfs, attempt, rng)`.

    Args:
        guess: Initial model factory; `attempt` numbers the restarts
        settings: Fit defaults, see genomehmm.config.FitSettings
    """

    def __init__(self, guess: Guess, settings: Optional[FitSettings] = None):
        self.guess = guess
        self.settings = settings if settings is not None else FitSettings()

    def fit(self, data: Data, title: str = DEFAULT_TITLE,
            threshold: Optional[float] = None,
            max_iterations: Optional[int] = None,
            attempt: int = 0,
            rng: Optional[np.random.Generator] = None,
            verbose: Optional[bool] = None):
        """
        Guess an initial model and fit it.

        Returns:
            The fitted model; its `monitor_` holds the fit history
        """
        threshold = self.settings.threshold if threshold is None else threshold
        max_iterations = self.settings.max_iterations if max_iterations is None else max_iterations
        verbose = self.settings.verbose if verbose is None else verbose
        if not threshold > 0:
            raise ValueError(f"threshold {threshold} must be > 0")
        if max_iterations < 1:
            raise ValueError(f"maximum number of iterations {max_iterations} must be > 0")

        dfs = _as_list(data)
        if rng is None:
            rng = np.random.default_rng(attempt)
        model = self.guess(dfs, attempt, rng)
        model.fit(dfs if len(dfs) > 1 else dfs[0], title=title, threshold=threshold,
                  max_iterations=max_iterations, verbose=verbose,
                  n_jobs=self.settings.n_jobs)
        return model

    def multi_started(self, multi_starts: Optional[int] = None,
                      multi_start_iterations: Optional[int] = None) -> 'MultiStartFitter':
        """Multi-start variant; unset counts come from the settings."""
        return MultiStartFitter(self.guess, self.settings, multi_starts, multi_start_iterations)


class MultiStartFitter(Fitter):
    """
    Runs `multi_starts` fits of `multi_start_iterations` iterations each,
    keeps the one with the highest total log-likelihood and continues it
    for the remaining iterations.
    """

    def __init__(self, guess: Guess, settings: Optional[FitSettings] = None,
                 multi_starts: Optional[int] = None,
                 multi_start_iterations: Optional[int] = None):
        super().__init__(guess, settings)
        if multi_starts is None:
            multi_starts = self.settings.multi_starts
        if multi_start_iterations is None:
            multi_start_iterations = self.settings.multi_start_iterations
        if multi_starts < 1:
            raise ValueError(f"number of starts {multi_starts} must be >= 1")
        if multi_start_iterations < 1:
            raise ValueError(f"iterations per start {multi_start_iterations} must be >= 1")
        self.multi_starts = multi_starts
        self.multi_start_iterations = multi_start_iterations

    def fit(self, data: Data, title: str = DEFAULT_TITLE,
            threshold: Optional[float] = None,
            max_iterations: Optional[int] = None,
            attempt: int = 0,
            rng: Optional[np.random.Generator] = None,
            verbose: Optional[bool] = None):
        max_iterations = self.settings.max_iterations if max_iterations is None else max_iterations
        verbose = self.settings.verbose if verbose is None else verbose
        if max_iterations <= self.multi_start_iterations:
            raise ValueError(
                f"maximum number of iterations {max_iterations} must exceed "
                f"iterations per start {self.multi_start_iterations}"
            )

        dfs = _as_list(data)
        best_model = None
        best_logprob = float('-inf')

        pbar = tqdm(range(self.multi_starts), desc=f"Starts {title}", disable=not verbose)
        for i in pbar:
            model = super().fit(dfs, title=f"{title} #{i}", threshold=threshold,
                                max_iterations=self.multi_start_iterations,
                                attempt=attempt + i,
                                rng=None if rng is None else np.random.default_rng(rng.integers(2 ** 32)),
                                verbose=False)
            logprob = sum(model.log_likelihood(df) for df in dfs)
            logger.debug("%s #%d: LL %.6f", title, i, logprob)
            if logprob > best_logprob:
                best_logprob = logprob
                best_model = model
            pbar.set_postfix({'best_logprob': f'{best_logprob:.2e}'})

        if best_model is None:
            raise ValueError(f"{title}: no start produced a finite log-likelihood")

        logger.info("%s: best of %d starts has LL %.6f", title, self.multi_starts, best_logprob)
        threshold = self.settings.threshold if threshold is None else threshold
        best_model.fit(dfs if len(dfs) > 1 else dfs[0], title=title, threshold=threshold,
                       max_iterations=max_iterations - self.multi_start_iterations,
                       verbose=verbose, n_jobs=self.settings.n_jobs)
        return best_model


def poisson_hmm_guess(num_states: int) -> Guess:
    """
    Guess for free Poisson HMMs: per dimension, the rates are the means of
    `num_states` equal quantile slices of the pooled column, lowest first.
    Restarts after the first jitter the rates and draw the prior and the
    transition rows from a flat Dirichlet.
    """
    if num_states < 2:
        raise ValueError(f"expected at least 2 states, got {num_states}")

    def guess(dfs: List[pd.DataFrame], attempt: int, rng: np.random.Generator) -> MLHMM:
        df = row_bind(dfs)
        num_dimensions = df.shape[1]
        rates = np.empty((num_states, num_dimensions))
        for d in range(num_dimensions):
            values = np.sort(column_values(df, d).astype(np.float64))
            slices = np.array_split(values, num_states)
            rates[:, d] = [s.mean() if len(s) else 0.0 for s in slices]
        rates += 1e-2 * np.arange(1, num_states + 1)[:, None]

        if attempt == 0:
            prior = np.full(num_states, 1.0 / num_states)
            off = 0.1 / (num_states - 1)
            trans = np.full((num_states, num_states), off)
            np.fill_diagonal(trans, 0.9)
        else:
            rates *= rng.uniform(0.5, 1.5, size=rates.shape)
            prior = rng.dirichlet(np.ones(num_states))
            trans = rng.dirichlet(np.ones(num_states), num_states)

        schemes = [[PoissonEmissionScheme(rates[s, d]) for d in range(num_dimensions)]
                   for s in range(num_states)]
        return MLHMM.free(schemes, prior, trans)

    return guess
