"""
Local two-site problems of the DMRG sweep.

The local unknown is indexed ``(rx1, n1, n2, rx3)`` in C order. The operator is
``Phi1 x A1 x A2 x Phi2`` where ``Phi1[x1, a1, y1]`` and ``Phi2[x3, a3, y3]`` are
the operator environments around the pair, the first index being the output
(row) rank and the last the input (column) rank.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Callable, Optional

import numpy as np
import tinydmrg._backend as tn
from tinydmrg._iterative_solvers import gmres_restart, pcg


def local_rhs(psi1, y1, y2, psi2):
    """
    Projected right-hand side ``psi1 * y1 * y2 * psi2^T`` as a flat numpy vector.

    Args:
        psi1 (tinygrad.Tensor): left environment ``(rx1, ry1)``.
        y1 (tinygrad.Tensor): core ``(ry1, n1, ry2)``.
        y2 (tinygrad.Tensor): core ``(ry2, n2, ry3)``.
        psi2 (tinygrad.Tensor): right environment ``(rx3, ry3)``.

    Returns:
        np.ndarray: vector of length ``rx1*n1*n2*rx3``.
    """
    rhs = tn.tensordot(psi1, y1, ([1], [0]))
    rhs = tn.tensordot(rhs, y2, ([2], [0]))
    rhs = tn.tensordot(rhs, psi2, ([3], [1]))
    return rhs.numpy().reshape(-1)


def dense_local_matrix(phi1, A1, A2, phi2):
    """
    Assembles ``Phi1 x A1 x A2 x Phi2`` as an explicit square numpy matrix.
    """
    # (x1, y1, n1, m1, a2)
    B = tn.tensordot(phi1, A1, ([1], [0]))
    # (x1, y1, n1, m1, n2, m2, a3)
    B = tn.tensordot(B, A2, ([4], [0]))
    # (x1, y1, n1, m1, n2, m2, x3, y3)
    B = tn.tensordot(B, phi2, ([6], [1]))
    B = tn.permute(B, [0, 2, 4, 6, 1, 3, 5, 7])
    size = phi1.shape[0] * A1.shape[1] * A2.shape[1] * phi2.shape[0]
    return B.numpy().reshape(size, -1)


class LocalOperator:
    """
    Matrix-free two-site operator.

    The environments may have different output and input ranks, so the same
    class also applies the all-ones projected operator of the residual estimate.
    """

    def __init__(self, phi1, A1, A2, phi2):
        self.phi1 = phi1
        self.A1 = A1
        self.A2 = A2
        self.phi2 = phi2
        self.in_shape = [phi1.shape[2], A1.shape[2], A2.shape[2], phi2.shape[2]]
        self.out_shape = [phi1.shape[0], A1.shape[1], A2.shape[1], phi2.shape[0]]

    @property
    def shape(self):
        return int(np.prod(self.out_shape)), int(np.prod(self.in_shape))

    def matvec(self, x):
        x = tn.tensor(np.reshape(x, self.in_shape), dtype=self.phi1.dtype, device=self.phi1.device)
        # (x1, a1, m1, m2, y3)
        w = tn.tensordot(self.phi1, x, ([2], [0]))
        # (x1, m2, y3, n1, a2)
        w = tn.tensordot(w, self.A1, ([1, 2], [0, 2]))
        # (x1, y3, n1, n2, a3)
        w = tn.tensordot(w, self.A2, ([4, 1], [0, 2]))
        # (x1, n1, n2, x3)
        w = tn.tensordot(w, self.phi2, ([4, 1], [1, 2]))
        return w.numpy().reshape(-1)


def jacobi_preconditioner(phi1, A1, A2, phi2):
    """
    Block-Jacobi approximate inverse of the local operator.

    The diagonal of the environment with the larger rank splits the operator into
    one dense block per diagonal index; the blocks act on the remaining modes and
    are inverted explicitly.

    Returns:
        Callable[[np.ndarray], np.ndarray]: application of the block-diagonal inverse.
    """
    rx1 = phi1.shape[0]
    rx3 = phi2.shape[0]
    n1 = A1.shape[1]
    n2 = A2.shape[1]

    if rx1 > rx3:
        diag = phi1.numpy()
        diag = diag[np.arange(rx1), :, np.arange(rx1)]
        # (a1, n1, m1, n2, m2, a3) -> (a1, n1, m1, n2, m2, x3, y3)
        rest = tn.tensordot(A1, A2, ([3], [0]))
        rest = tn.tensordot(rest, phi2, ([5], [1]))
        rest = tn.permute(rest, [0, 1, 3, 5, 2, 4, 6]).numpy()
        size = n1 * n2 * rx3
        blocks = np.einsum('ia,ast->ist', diag, rest.reshape(-1, size, size))
        inverse = _invert_blocks(blocks)

        def apply(v):
            return np.einsum('ist,it->is', inverse, np.reshape(v, (rx1, size))).reshape(-1)

        return apply

    diag = phi2.numpy()
    diag = diag[np.arange(rx3), :, np.arange(rx3)]
    # (x1, y1, n1, m1, a2) -> (x1, y1, n1, m1, n2, m2, a3)
    rest = tn.tensordot(phi1, A1, ([1], [0]))
    rest = tn.tensordot(rest, A2, ([4], [0]))
    rest = tn.permute(rest, [0, 2, 4, 1, 3, 5, 6]).numpy()
    size = rx1 * n1 * n2
    blocks = np.einsum('stc,ic->ist', rest.reshape(size, size, -1), diag)
    inverse = _invert_blocks(blocks)

    def apply(v):
        return np.einsum('ist,ti->si', inverse, np.reshape(v, (size, rx3))).reshape(-1)

    return apply


def _invert_blocks(blocks):
    try:
        return np.linalg.inv(blocks)
    except np.linalg.LinAlgError:
        return np.linalg.pinv(blocks)


@dataclass
class LocalSolution:
    """Result of one local solve."""

    sol: np.ndarray
    res_prev: float
    res_new: float
    converged: bool
    iterations: int
    dense: bool
    residual: Callable[[np.ndarray], float]


def solve_local(phi1, A1, A2, phi2, rhs, sol_prev, real_tol, options, use_prec=False):
    """
    Solves the local two-site system.

    Systems smaller than ``options.max_full_size`` are assembled and solved
    directly, larger ones are solved matrix-free by GMRES or PCG started from
    ``sol_prev``.

    Args:
        phi1, A1, A2, phi2 (tinygrad.Tensor): environments and operator cores.
        rhs (np.ndarray): local right-hand side.
        sol_prev (np.ndarray): current local solution.
        real_tol (float): relative tolerance of the iterative solver.
        options (SolverOptions): solver options.
        use_prec (bool, optional): build the block-Jacobi preconditioner. Defaults to False.

    Returns:
        LocalSolution: the new local solution and its residuals.
    """
    norm_rhs = np.linalg.norm(rhs)
    if norm_rhs == 0.0:
        return LocalSolution(np.zeros_like(rhs), 0.0, 0.0, True, 0, True, lambda v: 0.0)

    if rhs.size < options.max_full_size:
        B = dense_local_matrix(phi1, A1, A2, phi2)

        def residual(v):
            return float(np.linalg.norm(B @ v - rhs) / norm_rhs)

        res_prev = residual(sol_prev)
        try:
            sol = np.linalg.solve(B, rhs)
        except np.linalg.LinAlgError:
            sol = np.linalg.lstsq(B, rhs, rcond=None)[0]
        return LocalSolution(sol, res_prev, residual(sol), True, 0, True, residual)

    op = LocalOperator(phi1, A1, A2, phi2)

    def residual(v):
        return float(np.linalg.norm(op.matvec(v) - rhs) / norm_rhs)

    prec: Optional[Callable] = jacobi_preconditioner(phi1, A1, A2, phi2) if use_prec else None
    res_prev = residual(sol_prev)
    if options.local_solver == 'gmres':
        sol, converged, nit = gmres_restart(
            op.matvec, rhs, sol_prev, options.local_restart, real_tol, options.local_iters, prec
        )
    else:
        sol, converged, nit = pcg(
            op.matvec, rhs, sol_prev, real_tol, options.local_iters * options.local_restart, prec
        )
    return LocalSolution(sol, res_prev, residual(sol), converged, nit, False, residual)
