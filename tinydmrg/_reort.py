"""
Extension of an orthonormal basis by Gram-Schmidt with reorthogonalization.
"""

from __future__ import annotations

import warnings

import numpy as np
import tinydmrg._backend as tn
from tinydmrg.errors import InvalidArguments, ReorthogonalizationWarning


def reort(u, uadd, max_rounds=4):
    """
    Extends the orthonormal columns of ``u`` by the directions of ``uadd``.

    A column of the projected block whose squared norm fell to a quarter of its
    original value or less has lost too many digits, and the whole block is
    projected again.

    Args:
        u (np.ndarray): ``m x k`` matrix with orthonormal columns.
        uadd (np.ndarray): ``m x p`` candidate columns.
        max_rounds (int, optional): number of projection rounds before giving up. Defaults to 4.

    Returns:
        np.ndarray: ``m x (k+q)`` matrix whose first ``k`` columns are ``u``, ``q <= min(p, m-k)``.
    """
    u = tn.to_numpy(u)
    uadd = tn.to_numpy(uadd)
    if u.ndim != 2 or uadd.ndim != 2 or u.shape[0] != uadd.shape[0]:
        raise InvalidArguments('reort expects two matrices with the same number of rows.')

    m, k = u.shape
    if uadd.shape[1] == 0 or k >= m:
        return u
    if k + uadd.shape[1] >= m:
        uadd = uadd[:, :m - k]

    unew = uadd - u @ (u.T @ uadd)
    for _ in range(max_rounds):
        dropped = np.sum(unew ** 2, axis=0) <= 0.25 * np.sum(uadd ** 2, axis=0)
        unew, _ = np.linalg.qr(unew, mode='reduced')
        if not np.any(dropped):
            break
        uadd = unew
        unew = uadd - u @ (u.T @ uadd)
    else:
        warnings.warn(
            'reorthogonalization did not settle after %d rounds' % max_rounds,
            ReorthogonalizationWarning,
            stacklevel=2,
        )
        unew, _ = np.linalg.qr(unew, mode='reduced')

    return np.hstack([u, unew])
