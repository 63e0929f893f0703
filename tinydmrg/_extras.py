"""
Additional TT helpers backed by tinygrad.
"""

from __future__ import annotations

import numpy as np
import tinydmrg._backend as tn
import tinydmrg._tt_base
from tinydmrg.errors import InvalidArguments, ShapeMismatch


def eye(shape, dtype=tn.float64, device=None):
    shape = list(shape)
    cores = [tn.reshape(tn.eye(s, dtype=dtype, device=device), [1, s, s, 1]) for s in shape]
    return tinydmrg._tt_base.TT(cores)


def zeros(shape, dtype=tn.float64, device=None):
    if not isinstance(shape, list):
        raise InvalidArguments('Shape must be a list.')
    d = len(shape)
    if d == 0:
        return tinydmrg._tt_base.TT(None)
    if isinstance(shape[0], tuple):
        cores = [tn.zeros([1, shape[i][0], shape[i][1], 1], dtype=dtype, device=device) for i in range(d)]
    else:
        cores = [tn.zeros([1, shape[i], 1], dtype=dtype, device=device) for i in range(d)]
    return tinydmrg._tt_base.TT(cores)


def ones(shape, dtype=tn.float64, device=None):
    if not isinstance(shape, list):
        raise InvalidArguments('Shape must be a list.')
    d = len(shape)
    if d == 0:
        return tinydmrg._tt_base.TT(None)
    if isinstance(shape[0], tuple):
        cores = [tn.ones([1, shape[i][0], shape[i][1], 1], dtype=dtype, device=device) for i in range(d)]
    else:
        cores = [tn.ones([1, shape[i], 1], dtype=dtype, device=device) for i in range(d)]
    return tinydmrg._tt_base.TT(cores)


def kron(first, second):
    if first is None and isinstance(second, tinydmrg._tt_base.TT):
        return second.clone()
    if second is None and isinstance(first, tinydmrg._tt_base.TT):
        return first.clone()
    if isinstance(first, tinydmrg._tt_base.TT) and isinstance(second, tinydmrg._tt_base.TT):
        if first.is_ttm != second.is_ttm:
            raise InvalidArguments('Incompatible data types (make sure both are either TT-matrices or TT-tensors).')
        cores_new = [c.clone() for c in first.cores] + [c.clone() for c in second.cores]
        return tinydmrg._tt_base.TT(cores_new)
    raise InvalidArguments('Invalid arguments.')


def _rank_list(N, R):
    if isinstance(R, int):
        return [1] + [R] * (len(N) - 1) + [1]
    if len(N) + 1 != len(R) or R[0] != 1 or R[-1] != 1 or len(N) == 0:
        raise InvalidArguments('Check if N and R are right.')
    return list(R)


def _core_shape(n, r1, r2):
    return [r1, n[0], n[1], r2] if isinstance(n, tuple) else [r1, n, r2]


def random(N, R, dtype=tn.float64, device=None):
    """
    TT with standard normal cores.

    Args:
        N (list[int] | list[tuple[int, int]]): mode sizes (tuples for a TT-matrix).
        R (int | list[int]): ranks, either a single inner rank or the full rank list.
    """
    R = _rank_list(N, R)
    cores = [tn.randn(_core_shape(N[i], R[i], R[i + 1]), dtype=dtype, device=device) for i in range(len(N))]
    return tinydmrg._tt_base.TT(cores)


def randn(N, R, var=1.0, dtype=tn.float64, device=None):
    """
    Random TT whose full entries have variance ``var``.

    The cores are scaled so that the sum over all rank paths keeps the variance.
    """
    R = _rank_list(N, R)
    d = len(N)
    v = (var / np.prod(R)) ** (1 / d)
    cores = [
        tn.randn(_core_shape(N[i], R[i], R[i + 1]), dtype=dtype, device=device) * np.sqrt(v)
        for i in range(d)
    ]
    return tinydmrg._tt_base.TT(cores)

def dot(a, b):
    """
    Inner product of two TT-tensors, contracted core by core.
    """
    if not isinstance(a, tinydmrg._tt_base.TT) or not isinstance(b, tinydmrg._tt_base.TT):
        raise InvalidArguments('Both operands should be TT instances.')
    if a.is_ttm or b.is_ttm:
        raise NotImplementedError('Dot is only implemented for TT tensors.')
    if a.N != b.N:
        raise ShapeMismatch('Operands are not the same size.')
    result = tn.ones((1, 1), dtype=a.cores[0].dtype, device=a.cores[0].device)
    for ca, cb in zip(a.cores, b.cores):
        result = tn.einsum('ab,anc,bnd->cd', result, ca, cb)
    return float(result.numpy().item())


def numel(tensor):
    return sum([tn.numel(tensor.cores[i]) for i in range(len(tensor.N))])


def erank(tensor):
    """
    Effective rank: the constant inner rank giving the same number of parameters.
    """
    N = np.array([m * n for m, n in tensor.shape] if tensor.is_ttm else tensor.N, dtype=np.float64)
    R = np.array(tensor.R, dtype=np.float64)
    d = len(N)
    if d == 1:
        return 1.0
    sz = float(np.sum(N * R[:-1] * R[1:]))
    b = N[0] + N[-1]
    a = float(np.sum(N[1:-1]))
    if a == 0:
        return sz / b
    return float((np.sqrt(b * b + 4 * a * sz) - b) / (2 * a))
