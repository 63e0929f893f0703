"""
Dense factorizations used by the TT layer.

The factorizations run in numpy; tinygrad tensors are converted on the way in
and out so callers keep working with backend tensors.
"""

from __future__ import annotations

import sys

import numpy as np
import tinydmrg._backend as tn


def rank_chop(s, eps):
    """
    Smallest rank such that the discarded tail of the singular values has
    Euclidean norm at most ``eps``.

    Args:
        s (np.ndarray): singular values in non-increasing order.
        eps (float): absolute threshold.

    Returns:
        int: the rank (at least 1).
    """
    s = np.asarray(s, dtype=np.float64).reshape(-1)
    if s.size == 0:
        return 1
    if eps <= 0:
        return s.size
    tail = np.sqrt(np.cumsum(s[::-1] ** 2))[::-1]
    # tail[r] is the norm of s[r:]
    ok = np.nonzero(tail <= eps)[0]
    r = int(ok[0]) if ok.size > 0 else s.size
    return max(1, r)


def QR(mat):
    """Economy QR of a tinygrad matrix. Returns ``(Q, R)`` as tensors."""
    q, r = np.linalg.qr(mat.numpy(), mode='reduced')
    return tn.tensor(q, dtype=mat.dtype, device=mat.device), tn.tensor(r, dtype=mat.dtype, device=mat.device)


def _svd(mat):
    try:
        return np.linalg.svd(mat, full_matrices=False)
    except np.linalg.LinAlgError:
        # gesdd occasionally fails to converge, retry on the triangular factor
        q, r = np.linalg.qr(mat, mode='reduced')
        u, s, vh = np.linalg.svd(r, full_matrices=False)
        return q @ u, s, vh


def _tt_svd_numpy(full, N, eps, rmax):
    d = len(N)
    norm = np.linalg.norm(full)
    delta = eps / np.sqrt(d - 1) * norm if d > 1 else 0.0
    cores = []
    R = [1]
    cur = full.reshape(N[0], -1)
    for k in range(d - 1):
        cur = cur.reshape(R[k] * N[k], -1)
        u, s, vh = _svd(cur)
        r = min(rank_chop(s, delta), rmax)
        cores.append(u[:, :r].reshape(R[k], N[k], r))
        cur = s[:r, None] * vh[:r, :]
        R.append(r)
    cores.append(cur.reshape(R[-1], N[-1], 1))
    R.append(1)
    return cores, R


def to_tt(tens, N, eps=1e-10, rmax=sys.maxsize):
    """
    TT-SVD of a full tensor.

    Args:
        tens (tinygrad.Tensor): full tensor with shape ``N``.
        N (list[int]): mode sizes.
        eps (float): relative accuracy.
        rmax (int): rank bound.

    Returns:
        tuple[list[tinygrad.Tensor], list[int]]: cores and ranks.
    """
    cores, R = _tt_svd_numpy(tens.numpy(), list(N), eps, rmax)
    cores = [tn.tensor(c, dtype=tens.dtype, device=tens.device) for c in cores]
    return cores, R


def mat_to_tt(A, M, N, eps=1e-10, rmax=sys.maxsize):
    """
    TT-SVD of a full operator of shape ``M + N`` into TT-matrix cores.
    """
    d = len(M)
    full = A.numpy().reshape(list(M) + list(N))
    perm = [idx for k in range(d) for idx in (k, d + k)]
    full = np.transpose(full, perm).reshape([m * n for m, n in zip(M, N)])
    cores, R = _tt_svd_numpy(full, [m * n for m, n in zip(M, N)], eps, rmax)
    cores = [
        tn.tensor(c.reshape(R[k], M[k], N[k], R[k + 1]), dtype=A.dtype, device=A.device)
        for k, c in enumerate(cores)
    ]
    return cores, R
