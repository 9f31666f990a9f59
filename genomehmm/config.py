"""
Fitting defaults for genomehmm models.

`FitSettings` owns every knob that controls an EM run; functions taking
individual keyword arguments fall back to the module-level defaults below.
"""

import os
from dataclasses import dataclass

DEFAULT_TITLE = "unknown"
DEFAULT_THRESHOLD = 0.1
DEFAULT_MAX_ITERATIONS = 100
DEFAULT_MULTI_STARTS = 5
DEFAULT_MULTI_START_ITERATIONS = 5

# Relative slack before a likelihood drop is reported.
LIKELIHOOD_TOLERANCE = 1e-8

# Rows of exp(log-probabilities) must sum to 1 within this margin on input.
STOCHASTIC_TOLERANCE = 1e-6

THREADS_ENV_VAR = "GENOMEHMM_THREADS"


def default_n_jobs() -> int:
    """Number of worker threads, honouring GENOMEHMM_THREADS."""
    value = os.environ.get(THREADS_ENV_VAR)
    if value:
        try:
            n_jobs = int(value)
        except ValueError:
            raise ValueError(f"{THREADS_ENV_VAR} must be an integer, got {value!r}")
        if n_jobs > 0:
            return n_jobs
    return os.cpu_count() or 1


@dataclass
class FitSettings:
    """Parameters of a Baum-Welch (or mixture EM) run."""

    threshold: float = DEFAULT_THRESHOLD
    max_iterations: int = DEFAULT_MAX_ITERATIONS
    n_jobs: int = 0
    verbose: bool = False
    multi_starts: int = DEFAULT_MULTI_STARTS
    multi_start_iterations: int = DEFAULT_MULTI_START_ITERATIONS

    def __post_init__(self):
        if not self.threshold > 0:
            raise ValueError(f"threshold {self.threshold} must be > 0")
        if self.max_iterations < 1:
            raise ValueError(f"maximum number of iterations {self.max_iterations} must be > 0")
        if self.n_jobs < 0:
            raise ValueError(f"n_jobs {self.n_jobs} must be >= 0")
        if self.multi_starts < 1:
            raise ValueError(f"number of starts {self.multi_starts} must be >= 1")
        if self.multi_start_iterations < 1:
            raise ValueError(f"iterations per start {self.multi_start_iterations} must be >= 1")
        if self.n_jobs == 0:
            self.n_jobs = default_n_jobs()

    @classmethod
    def from_env(cls, **overrides) -> "FitSettings":
        """Build settings with the thread count taken from the environment."""
        overrides.setdefault("n_jobs", default_n_jobs())
        return cls(**overrides)
