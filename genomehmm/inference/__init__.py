"""Posterior calling on fitted models."""

from genomehmm.inference.engine import (
    PosteriorCalls,
    call_enriched,
    null_log_memberships,
    rejected_runs,
)

__all__ = [
    'PosteriorCalls',
    'call_enriched',
    'null_log_memberships',
    'rejected_runs',
]
