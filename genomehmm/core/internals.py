"""
Numba kernels for the HMM recurrences.

All kernels take log-space arrays:
    log_prior: (S,) log prior probabilities
    log_trans: (S, S) log transition matrix, rows are "from" states
    log_obs:   (T, S) log observation probabilities

They are compiled with ``nogil=True`` so the iteration context can run the
forward and backward passes, and chunks of the xi accumulation, on separate
threads.
"""

import numpy as np
from numba import jit

from genomehmm.core.logmath import log_add_exp, log_sum_exp_1d


# =============================================================================
# Forward / backward
# =============================================================================

@jit(nopython=True, nogil=True, cache=False)
def log_forward(log_prior, log_trans, log_obs, out):
    """
    Fill `out` (T, S) with log alpha:

        alpha[0, s] = prior[s] + obs[0, s]
        alpha[t, s] = logsumexp_p(alpha[t-1, p] + trans[p, s]) + obs[t, s]
    """
    T, S = log_obs.shape
    work = np.empty(S)
    for s in range(S):
        out[0, s] = log_prior[s] + log_obs[0, s]
    for t in range(1, T):
        for s in range(S):
            for p in range(S):
                work[p] = out[t - 1, p] + log_trans[p, s]
            out[t, s] = log_sum_exp_1d(work) + log_obs[t, s]


@jit(nopython=True, nogil=True, cache=False)
def log_backward(log_trans, log_obs, out):
    """
    Fill `out` (T, S) with log beta:

        beta[T-1, s] = 0
        beta[t, s] = logsumexp_n(trans[s, n] + obs[t+1, n] + beta[t+1, n])
    """
    T, S = log_obs.shape
    work = np.empty(S)
    for s in range(S):
        out[T - 1, s] = 0.0
    for t in range(T - 2, -1, -1):
        for s in range(S):
            for n in range(S):
                work[n] = log_trans[s, n] + log_obs[t + 1, n] + out[t + 1, n]
            out[t, s] = log_sum_exp_1d(work)


@jit(nopython=True, nogil=True, cache=False)
def log_forward_rolling(log_trans, log_obs, carry):
    """
    Advance the last forward row `carry` (S,) through every row of `log_obs`
    keeping only two rows in memory. Returns the new last row.
    """
    T, S = log_obs.shape
    prev = carry.copy()
    curr = np.empty(S)
    work = np.empty(S)
    for t in range(T):
        for s in range(S):
            for p in range(S):
                work[p] = prev[p] + log_trans[p, s]
            curr[s] = log_sum_exp_1d(work) + log_obs[t, s]
        prev, curr = curr, prev
    return prev


# =============================================================================
# Posterior quantities
# =============================================================================

@jit(nopython=True, nogil=True, cache=False)
def log_xi_sums(log_fwd, log_bwd, log_trans, log_obs, lo, hi):
    """
    Sum over t in [lo, hi) of the per-t normalised xi matrices:

        xi_t[p, n] = alpha[t-1, p] + trans[p, n] + obs[t, n] + beta[t, n]

    normalised over all state pairs. `lo` must be >= 1.
    """
    S = log_trans.shape[0]
    acc = np.full((S, S), -np.inf)
    xit = np.empty(S * S)
    for t in range(lo, hi):
        for p in range(S):
            for n in range(S):
                xit[p * S + n] = (log_fwd[t - 1, p] + log_trans[p, n]
                                  + log_obs[t, n] + log_bwd[t, n])
        norm = log_sum_exp_1d(xit)
        if norm == -np.inf:
            continue
        for p in range(S):
            for n in range(S):
                acc[p, n] = log_add_exp(acc[p, n], xit[p * S + n] - norm)
    return acc


@jit(nopython=True, nogil=True, cache=False)
def log_gammas(log_fwd, log_bwd, out):
    """Fill `out` (S, T) with alpha + beta, log-normalised over states per row."""
    T, S = log_fwd.shape
    work = np.empty(S)
    for t in range(T):
        for s in range(S):
            work[s] = log_fwd[t, s] + log_bwd[t, s]
        norm = log_sum_exp_1d(work)
        for s in range(S):
            if norm == -np.inf:
                out[s, t] = -np.inf
            else:
                out[s, t] = work[s] - norm


# =============================================================================
# Decoding and sampling
# =============================================================================

@jit(nopython=True, nogil=True, cache=False)
def viterbi(log_prior, log_trans, log_obs):
    """
    Most likely state path. Ties go to the lowest state index, both among
    predecessors and for the final state.

    Returns:
        path: (T,) int64 state sequence
        log_prob: log probability of the path
    """
    T, S = log_obs.shape
    score = np.empty((T, S))
    back = np.zeros((T, S), dtype=np.int64)
    for s in range(S):
        score[0, s] = log_prior[s] + log_obs[0, s]
    for t in range(1, T):
        for s in range(S):
            best = score[t - 1, 0] + log_trans[0, s]
            best_p = 0
            for p in range(1, S):
                v = score[t - 1, p] + log_trans[p, s]
                if v > best:
                    best = v
                    best_p = p
            score[t, s] = best + log_obs[t, s]
            back[t, s] = best_p

    path = np.zeros(T, dtype=np.int64)
    best_s = 0
    for s in range(1, S):
        if score[T - 1, s] > score[T - 1, best_s]:
            best_s = s
    path[T - 1] = best_s
    log_prob = score[T - 1, best_s]
    for t in range(T - 2, -1, -1):
        path[t] = back[t + 1, path[t + 1]]
    return path, log_prob


@jit(nopython=True, nogil=True, cache=False)
def sample_chain(first, alias_prob, alias_idx, columns, tosses):
    """
    Markov chain from a first state using per-state alias tables
    (`alias_prob`, `alias_idx`: (S, S)) and pre-drawn uniforms.
    """
    n = len(columns) + 1
    states = np.empty(n, dtype=np.int64)
    states[0] = first
    for t in range(1, n):
        prev = states[t - 1]
        i = columns[t - 1]
        if tosses[t - 1] < alias_prob[prev, i]:
            states[t] = i
        else:
            states[t] = alias_idx[prev, i]
    return states


@jit(nopython=True, nogil=True, cache=False)
def sample_backward(log_fwd, log_trans, uniforms):
    """
    Backward sampling of a state path given the forward table:
    the last state from alpha[T-1], then state t from alpha[t] + trans[:, x[t+1]].
    Inverse-CDF draws use `uniforms` (T,).
    """
    T, S = log_fwd.shape
    states = np.empty(T, dtype=np.int64)
    work = np.empty(S)
    for t in range(T - 1, -1, -1):
        for s in range(S):
            if t == T - 1:
                work[s] = log_fwd[t, s]
            else:
                work[s] = log_fwd[t, s] + log_trans[s, states[t + 1]]
        norm = log_sum_exp_1d(work)
        u = uniforms[t]
        acc = 0.0
        chosen = S - 1
        for s in range(S):
            if work[s] == -np.inf:
                continue
            acc += np.exp(work[s] - norm)
            if u < acc:
                chosen = s
                break
        # rounding may leave u above the last cumulative value
        if acc <= u and work[chosen] == -np.inf:
            for s in range(S - 1, -1, -1):
                if work[s] > -np.inf:
                    chosen = s
                    break
        states[t] = chosen
    return states
