"""
Core TT class backed by tinygrad.
"""

from __future__ import annotations

import sys
import numpy as np
import tinydmrg._backend as tn
from tinydmrg._decomposition import mat_to_tt, to_tt
from tinydmrg._aux_ops import dense_matvec, ttm_tt_cores, ttm_ttm_cores
from tinydmrg.errors import ShapeMismatch, RankMismatch, IncompatibleTypes, InvalidArguments


class TT:
    """
    Tensor-train tensor (cores ``r x n x r'``) or TT-matrix (cores ``r x m x n x r'``).

    Args:
        source (list | np.ndarray | tinygrad.Tensor | None): list of cores or a full tensor to decompose.
        shape (list, optional): for a full TT-matrix the list of ``(m, n)`` tuples. Defaults to None.
        eps (float, optional): relative accuracy of the TT-SVD. Defaults to 1e-10.
        rmax (int, optional): rank bound of the TT-SVD. Defaults to sys.maxsize.
        device (str, optional): tinygrad device. Defaults to None.
        dtype (optional): tinygrad dtype. Defaults to None.
    """

    @property
    def is_ttm(self):
        return self.__is_ttm

    @property
    def M(self):
        if not self.__is_ttm:
            raise IncompatibleTypes("The field M is defined only for TT matrices.")
        return self.__M.copy()

    @property
    def N(self):
        return self.__N.copy()

    @property
    def R(self):
        return self.__R.copy()

    @property
    def d(self):
        return len(self.__N)

    def __init__(self, source, shape=None, eps=1e-10, rmax=sys.maxsize, device=None, dtype=None):
        if source is None or (isinstance(source, list) and len(source) == 0):
            self.cores = []
            self.__M = []
            self.__N = []
            self.__R = [1, 1]
            self.__is_ttm = False
            self.shape = []
            return

        if isinstance(source, list):
            cores = [tn.tensor(c, dtype=dtype, device=device) for c in source]
            R = [cores[0].shape[0]]
            N = []
            M = []
            for i, core in enumerate(cores):
                s = core.shape
                if s[0] != R[-1]:
                    raise RankMismatch(
                        "Ranks of the given cores do not match: for core number %d previous rank is %d and current rank is %d." % (i, R[-1], s[0]))
                if len(s) == 3:
                    R.append(s[2])
                    N.append(s[1])
                elif len(s) == 4:
                    R.append(s[3])
                    M.append(s[1])
                    N.append(s[2])
                else:
                    raise InvalidArguments("Invalid input: TT-cores have to be either 4d or 3d.")

            d = len(cores)
            if R[0] != 1 or R[-1] != 1 or (len(M) != 0 and len(M) != d):
                raise InvalidArguments("Check the ranks and the mode size.")

            self.cores = cores
            self.__R = R
            self.__N = N
            self.__is_ttm = len(M) == d
            self.__M = M if self.__is_ttm else []
            self.shape = self._shape_arg()
            return

        if isinstance(source, np.ndarray):
            source = tn.tensor(source, dtype=dtype, device=device)

        if tn.is_tensor(source):
            source = tn.tensor(source, dtype=dtype, device=device)
            if shape is None:
                self.__N = list(source.shape)
                self.cores, self.__R = to_tt(source, self.__N, eps, rmax)
                self.__M = []
                self.__is_ttm = False
            elif isinstance(shape, list) and len(shape) > 0 and isinstance(shape[0], tuple):
                self.__M = [s[0] for s in shape]
                self.__N = [s[1] for s in shape]
                self.cores, self.__R = mat_to_tt(source, self.__M, self.__N, eps, rmax)
                self.__is_ttm = True
            else:
                self.__N = list(shape)
                self.cores, self.__R = to_tt(tn.reshape(source, shape), self.__N, eps, rmax)
                self.__M = []
                self.__is_ttm = False
            self.shape = self._shape_arg()
            return

        raise NotImplementedError(
            "Function only implemented for tinygrad tensors, numpy arrays, list of cores as tensors and None.")

    def clone(self):
        return TT([c.clone() for c in self.cores])

    def _shape_arg(self):
        return [(m, n) for m, n in zip(self.__M, self.__N)] if self.__is_ttm else [n for n in self.__N]

    def full(self):
        """
        Full tensor (``N`` shaped) or full operator (``M + N`` shaped).
        """
        d = len(self.__N)
        if self.__is_ttm:
            tfull = tn.reshape(self.cores[0], [-1, self.cores[0].shape[-1]])
            for i in range(1, d):
                core = self.cores[i]
                tfull = tfull @ tn.reshape(core, [core.shape[0], -1])
                tfull = tn.reshape(tfull, [-1, core.shape[-1]])
            # interleaved (m1, n1, m2, n2, ...) -> (m1, ..., md, n1, ..., nd)
            tfull = tn.reshape(tfull, [s for mn in zip(self.__M, self.__N) for s in mn])
            perm = [2 * k for k in range(d)] + [2 * k + 1 for k in range(d)]
            return tn.permute(tfull, perm)

        tfull = tn.reshape(self.cores[0], [-1, self.cores[0].shape[-1]])
        for i in range(1, d):
            core = self.cores[i]
            tfull = tfull @ tn.reshape(core, [core.shape[0], -1])
            tfull = tn.reshape(tfull, [-1, core.shape[-1]])
        return tn.reshape(tfull, self.__N)

    def numpy(self):
        return self.full().numpy()

    def norm(self):
        """
        Frobenius norm computed in the TT-format.

        Returns:
            float: the norm.
        """
        gram = tn.ones((1, 1), dtype=self.cores[0].dtype, device=self.cores[0].device)
        for core in self.cores:
            c = tn.reshape(core, [core.shape[0], -1, core.shape[-1]])
            gram = tn.einsum('ab,anc,bnd->cd', gram, c, c)
        return float(np.sqrt(max(gram.numpy().item(), 0.0)))

    def __repr__(self):
        if self.__is_ttm:
            output = 'TT-matrix with sizes and ranks:\n'
            output += 'M = ' + str(self.__M) + '\nN = ' + str(self.__N) + '\n'
            output += 'R = ' + str(self.__R) + '\n'
        else:
            output = 'TT with sizes and ranks:\n'
            output += 'N = ' + str(self.__N) + '\n'
            output += 'R = ' + str(self.__R) + '\n'
        return output

    def _check_same_shape(self, other):
        if not isinstance(other, TT):
            raise InvalidArguments('Invalid arguments.')
        if self.__is_ttm != other.is_ttm:
            raise IncompatibleTypes('Incompatible data types (make sure both are either TT-matrices or TT-tensors).')
        if self.__N != other.N or (self.__is_ttm and self.__M != other.M):
            raise ShapeMismatch('Shapes are incompatible.')

    def __add__(self, other):
        self._check_same_shape(other)
        d = len(self.__N)
        if d == 1:
            return TT([self.cores[0] + other.cores[0]])
        rank_axis = 3 if self.__is_ttm else 2
        cores = []
        for k, (a, b) in enumerate(zip(self.cores, other.cores)):
            if k == 0:
                cores.append(tn.cat([a, b], dim=rank_axis))
            elif k == d - 1:
                cores.append(tn.cat([a, b], dim=0))
            else:
                nomode = [(0, 0)] * (rank_axis - 1)
                top = tn.pad(a, [(0, 0)] + nomode + [(0, b.shape[-1])])
                bottom = tn.pad(b, [(0, 0)] + nomode + [(a.shape[-1], 0)])
                cores.append(tn.cat([top, bottom], dim=0))
        return TT(cores)

    def __sub__(self, other):
        return self + (-other)

    def __mul__(self, other):
        if np.isscalar(other):
            cores = [c.clone() for c in self.cores]
            cores[0] = cores[0] * float(other)
            return TT(cores)
        raise InvalidArguments('Only scalar multiplication is supported.')

    def __rmul__(self, other):
        return self.__mul__(other)

    def __truediv__(self, other):
        if np.isscalar(other):
            return self.__mul__(1.0 / float(other))
        raise InvalidArguments('Only scalar division is supported.')

    def __neg__(self):
        return self.__mul__(-1.0)

    def __matmul__(self, other):
        if self.__is_ttm and tn.is_tensor(other):
            if self.__N != list(other.shape)[-len(self.__N):]:
                raise ShapeMismatch('Shapes do not match.')
            return dense_matvec(self.cores, other)

        if isinstance(other, TT) and self.__is_ttm:
            if other.is_ttm:
                if self.__N != other.M:
                    raise ShapeMismatch('Shapes do not match.')
                return TT(ttm_ttm_cores(self.cores, other.cores))
            if self.__N != other.N:
                raise ShapeMismatch('Shapes do not match.')
            return TT(ttm_tt_cores(self.cores, other.cores))
        raise InvalidArguments('Wrong arguments.')
