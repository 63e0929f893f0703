"""
Rank selection and basis enrichment after a local solve.
"""

from __future__ import annotations

import numpy as np
import tinydmrg._backend as tn
from tinydmrg._decomposition import rank_chop
from tinydmrg._reort import reort


def truncation_threshold(tol, d, dpow, res_new, resid_damp):
    return max(tol / (d ** dpow), res_new * resid_damp)


def _round_half_up(x):
    return int(np.floor(x + 0.5))


def residual_rank(u, s, vh, residual, threshold):
    """
    Smallest rank whose truncated solution has a local residual below ``threshold``.

    A bisection gives a first estimate; the residual is not monotone in the rank
    near the optimum, so the estimate is refined by a linear scan.

    Args:
        u, s, vh (np.ndarray): economy SVD of the local solution.
        residual (Callable): relative local residual of a flat solution vector.
        threshold (float): admissible residual.

    Returns:
        int: the rank, between 1 and ``len(s)``.
    """
    n = s.size

    def passes(r):
        return residual(((u[:, :r] * s[:r]) @ vh[:r, :]).reshape(-1)) < threshold

    r1, r2 = 1, n
    r = _round_half_up((r1 + r2) / 2)
    while r2 - r1 > 1:
        if passes(r):
            r2 = r
        else:
            r1 = r
        r = _round_half_up((r1 + r2) / 2)

    if passes(r):
        while r > 1 and passes(r - 1):
            r -= 1
        return r
    for r in range(r + 1, n + 1):
        if passes(r):
            return r
    return n


def select_rank(u, s, vh, threshold, trunc_norm, residual=None):
    """
    Truncation rank under the Frobenius (``'fro'``) or the residual (``'residual'``) criterion.
    """
    if trunc_norm == 'fro':
        return rank_chop(s, threshold * np.linalg.norm(s))
    return residual_rank(u, s, vh, residual, threshold)


def clamp_rank(r, drank, num_singular, rmax):
    """Adds the rank kick ``drank`` and clamps to the available singular values and ``rmax``."""
    r = r + drank
    r = min(r, num_singular)
    r = min(r, rmax)
    return max(1, int(r))


def update_rank_controls(dx, dx_old, dpow, drank, tol, options, last_sweep):
    """
    Adapts the truncation exponent ``dpow`` and the rank kick ``drank`` of one block.

    Slow convergence of the block (ratio of successive corrections above
    ``top_conv``) tightens the truncation and enlarges the rank; fast
    convergence (below ``bot_conv``) or a correction below ``tol`` relaxes both.

    Returns:
        tuple[float, int]: the new ``dpow`` and ``drank``.
    """
    if last_sweep:
        return 0.5, 0
    if dx_old > 0:
        ratio = dx / dx_old
    else:
        ratio = np.inf if dx > 0 else 0.0
    if ratio > options.top_conv and dx > tol:
        drank = drank + 1
        dpow = dpow + options.step_dpow
    if ratio < options.bot_conv or dx < tol:
        drank = max(drank - 1, 0)
        dpow = max(dpow - options.step_dpow, options.min_dpow)
    return dpow, drank


def split_with_kick(u, s, vh, r, forward, kickrank, dtype=None, device=None):
    """
    Splits the truncated local solution into two factors and enriches the
    orthonormal one with ``kickrank`` random directions.

    Sweeping forward the left factor is kept orthonormal and the singular values
    go to the right; backward the roles swap. The partner factor is padded with
    zeros, so the product is unchanged by the kick.

    Returns:
        tuple[np.ndarray, np.ndarray]: left ``(rows, r')`` and right ``(r', cols)`` factors.
    """
    if forward:
        left = u[:, :r]
        right = vh[:r, :].T * s[:r]
        if kickrank > 0:
            kick = tn.randn((left.shape[0], kickrank), dtype=dtype, device=device).numpy()
            left = reort(left, kick)
        radd = left.shape[1] - r
        right = np.hstack([right, np.zeros((right.shape[0], radd), dtype=right.dtype)])
        return left, right.T

    left = u[:, :r] * s[:r]
    right = vh[:r, :].T
    if kickrank > 0:
        kick = tn.randn((right.shape[0], kickrank), dtype=dtype, device=device).numpy()
        right = reort(right, kick)
    radd = right.shape[1] - r
    left = np.hstack([left, np.zeros((left.shape[0], radd), dtype=left.dtype)])
    return left, right.T
