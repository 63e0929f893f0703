"""
Linear system solver in the TT format: two-site DMRG sweeps (tinygrad backend).
"""

from __future__ import annotations

import datetime
import warnings
from dataclasses import dataclass, field
from typing import List

import numpy as np
import tinydmrg._backend as tn
from tinydmrg._decomposition import QR, _svd
from tinydmrg._extras import erank, random, zeros
from tinydmrg._local_system import LocalOperator, local_rhs, solve_local
from tinydmrg._phi import LEFT_TO_RIGHT, RIGHT_TO_LEFT, boundary_phi, compute_next_phi, ones_core
from tinydmrg._truncation import (
    clamp_rank,
    select_rank,
    split_with_kick,
    truncation_threshold,
    update_rank_controls,
)
from tinydmrg._tt_base import TT
from tinydmrg.errors import (
    IncompatibleTypes,
    InvalidArguments,
    LocalSolverWarning,
    ResidualDampWarning,
    ReorthogonalizationWarning,
    ShapeMismatch,
)
from tinydmrg.options import SolverOptions


@dataclass
class Diagnostic:
    """A recovered solver-quality issue."""

    kind: str
    sweep: int
    block: int
    message: str


@dataclass
class SolveInfo:
    """
    Report of a :func:`dmrg_solve` run.

    Attributes:
        sweeps (int): number of (full) sweeps started.
        converged (bool): the final confirmation sweep was completed.
        max_res (list[float]): worst estimated local residual per half sweep.
        max_dx (list[float]): worst relative local correction per half sweep.
        ranks (list[int]): TT-ranks of the returned solution.
        diagnostics (list[Diagnostic]): warnings raised during the sweeps.
    """

    sweeps: int = 0
    converged: bool = False
    max_res: List[float] = field(default_factory=list)
    max_dx: List[float] = field(default_factory=list)
    ranks: List[int] = field(default_factory=list)
    diagnostics: List[Diagnostic] = field(default_factory=list)


@dataclass
class _SweepState:
    """Position and per-block statistics of the sweep."""

    d: int
    dpows: np.ndarray
    dranks: np.ndarray
    dx: np.ndarray
    dx_old: np.ndarray
    direction: int = 1
    site: int = 0
    sweep: int = 1
    last_sweep: bool = False
    max_res: float = 0.0
    max_dx: float = 0.0

    @classmethod
    def start(cls, d, min_dpow):
        return cls(
            d=d,
            dpows=np.full(d - 1, float(min_dpow)),
            dranks=np.zeros(d - 1, dtype=int),
            dx=np.zeros(d - 1),
            dx_old=np.ones(d - 1),
        )

    @property
    def forward(self):
        return self.direction == 1

    def advance(self):
        """Moves to the next pair; returns True (after reversing) at the end of a half sweep."""
        self.site += self.direction
        if (self.forward and self.site == self.d - 1) or (not self.forward and self.site == -1):
            self.direction = -self.direction
            return True
        return False

    def next_half_sweep(self):
        self.max_res = 0.0
        self.max_dx = 0.0
        self.dx_old = self.dx.copy()
        if self.site == -1 and self.forward:
            self.sweep += 1
        self.site += self.direction


class _Environments:
    """
    Operator, right-hand side and residual-check environments.

    Entry ``k`` of every list is the environment at the cut before site ``k``;
    as a left environment it covers sites ``0..k-1``, as a right one ``k..d-1``.
    """

    def __init__(self, A_cores, y_cores, N, dtype, device):
        d = len(N)
        self.A_cores = A_cores
        self.y_cores = y_cores
        self.ones = [ones_core(n, dtype, device) for n in N]
        self.phia = [boundary_phi(True, dtype, device)] + [None] * (d - 1) + [boundary_phi(True, dtype, device)]
        self.phiy = [boundary_phi(False, dtype, device)] + [None] * (d - 1) + [boundary_phi(False, dtype, device)]
        self.cphia = [boundary_phi(True, dtype, device)] + [None] * (d - 1) + [boundary_phi(True, dtype, device)]
        self.cphiy = [boundary_phi(False, dtype, device)] + [None] * (d - 1) + [boundary_phi(False, dtype, device)]

    def update_from_left(self, k, core):
        """Recomputes the environments at cut ``k+1`` from cut ``k`` and the new core of site ``k``."""
        self._update(k + 1, k, k, core, LEFT_TO_RIGHT)

    def update_from_right(self, k, core):
        """Recomputes the environments at cut ``k`` from cut ``k+1`` and the new core of site ``k``."""
        self._update(k, k + 1, k, core, RIGHT_TO_LEFT)

    def _update(self, target, source, k, core, direction):
        A = self.A_cores[k]
        y = self.y_cores[k]
        self.phia[target] = compute_next_phi(self.phia[source], core, A, core, direction)
        self.phiy[target] = compute_next_phi(self.phiy[source], core, None, y, direction)
        self.cphia[target] = compute_next_phi(self.cphia[source], self.ones[k], A, core, direction)
        self.cphiy[target] = compute_next_phi(self.cphiy[source], self.ones[k], None, y, direction)


def dmrg_solve(A, y, tol, options=None, return_info=False, **kwargs):
    """
    Solves ``A x = y`` in the TT format with two-site DMRG sweeps.

    Each step solves the linear system projected onto two neighbouring cores,
    splits the solution by a truncated SVD, adds a few random directions to the
    retained basis and moves on. The ranks adapt to the tolerance; once the
    estimated residual of every block is below ``tol`` a final sweep without
    enrichment cleans up the ranks.

    Examples:

        .. code-block:: python

            import tinydmrg as tt
            A = tt.eye([2, 2, 2, 2])
            y = tt.random([2, 2, 2, 2], 2)
            x = tt.solvers.dmrg_solve(A, y, 1e-8, verb=0)

    Args:
        A (TT): square TT-matrix.
        y (TT): right-hand side TT-tensor with the column mode sizes of ``A``.
        tol (float): relative residual to reach.
        options (SolverOptions | dict, optional): solver options. Defaults to None.
        return_info (bool, optional): also return a :class:`SolveInfo`. Defaults to False.
        **kwargs: options given as keywords (see :class:`SolverOptions`).

    Raises:
        InvalidArguments: ``A`` or ``y`` are not TT instances or ``tol`` is not positive.
        IncompatibleTypes: ``A`` is not a TT-matrix or ``y`` is not a TT-tensor.
        ShapeMismatch: ``A`` is not square or does not match ``y``.
        ConfigurationError: unknown option or invalid option value.

    Returns:
        TT | tuple[TT, SolveInfo]: the approximate solution (and the report).
    """
    if not (isinstance(A, TT) and isinstance(y, TT)):
        raise InvalidArguments('A and y must be TT instances.')
    if not (A.is_ttm and not y.is_ttm):
        raise IncompatibleTypes('A must be TT-matrix and y must be a TT-tensor.')
    if A.M != A.N:
        raise ShapeMismatch(
            'A is not square; solve the normal equations (A^T A) x = A^T y instead.')
    if A.N != y.N:
        raise ShapeMismatch('Dimension mismatch between A and y.')
    if not np.isscalar(tol) or not tol > 0:
        raise InvalidArguments('tol must be a positive number.')

    options = SolverOptions.create(options, **kwargs)

    if options.P is not None:
        P = options.P
        if not isinstance(P, TT) or not P.is_ttm or P.M != P.N or P.N != A.M:
            raise ShapeMismatch('P must be a square TT-matrix matching A.')
        A = P @ A
        y = P @ y

    if options.x0 is not None:
        if not isinstance(options.x0, TT) or options.x0.is_ttm or options.x0.N != y.N:
            raise ShapeMismatch('x0 must be a TT-tensor with the mode sizes of y.')

    info = SolveInfo()
    if y.norm() == 0.0:
        x = zeros(y.N, dtype=A.cores[0].dtype, device=A.cores[0].device)
        info.converged = True
        info.ranks = x.R
        return (x, info) if return_info else x

    if len(y.N) == 1:
        x = _solve_single_core(A, y)
        info.converged = True
        info.sweeps = 1
        info.ranks = x.R
        return (x, info) if return_info else x

    x = _dmrg_solve_python(A, y, float(tol), options, info)
    return (x, info) if return_info else x


def _solve_single_core(A, y):
    a = A.cores[0].numpy()[0, :, :, 0]
    b = y.cores[0].numpy()[0, :, 0]
    try:
        sol = np.linalg.solve(a, b)
    except np.linalg.LinAlgError:
        sol = np.linalg.lstsq(a, b, rcond=None)[0]
    return TT([tn.tensor(sol.reshape(1, -1, 1), dtype=A.cores[0].dtype, device=A.cores[0].device)])


def _report(info, state, kind, category, message):
    info.diagnostics.append(Diagnostic(kind, state.sweep, state.site, message))
    warnings.warn(message, category, stacklevel=3)


def _dmrg_solve_python(A, y, tol, options, info):
    time_total = datetime.datetime.now()

    dtype = A.cores[0].dtype
    device = A.cores[0].device
    N = y.N
    d = len(N)
    A_cores = A.cores
    y_cores = [tn.tensor(c, dtype=dtype, device=device) for c in y.cores]

    x = options.x0 if options.x0 is not None else random(N, options.kickrank if options.kickrank > 0 else 1, dtype, device)
    x_cores = [tn.tensor(c, dtype=dtype, device=device) for c in x.cores]
    rx = x.R

    if options.verb > 0:
        print(
            'Starting DMRG solve with:\n\ttolerance: %g\n\tsweeps: %d\n\tlocal solver: %s\n\tlocal preconditioner: %s\n\ttruncation: %s'
            % (tol, options.nswp, options.local_solver, str(options.local_prec), options.trunc_norm)
        )

    envs = _Environments(A_cores, y_cores, N, dtype, device)

    # right-to-left orthogonalization of the initial guess seeds the environments
    for k in range(d - 1, 0, -1):
        core = tn.reshape(x_cores[k], [rx[k], N[k] * rx[k + 1]])
        Qmat, Rmat = QR(tn.transpose(core, 0, 1))
        core_prev = tn.reshape(x_cores[k - 1], [rx[k - 1] * N[k - 1], rx[k]]) @ tn.transpose(Rmat, 0, 1)
        rx[k] = Qmat.shape[1]
        x_cores[k] = tn.reshape(tn.transpose(Qmat, 0, 1), [rx[k], N[k], rx[k + 1]]).realize()
        x_cores[k - 1] = tn.reshape(core_prev, [rx[k - 1], N[k - 1], rx[k]]).realize()
        envs.update_from_right(k, x_cores[k])

    state = _SweepState.start(d, options.min_dpow)

    while state.sweep <= options.nswp:
        k = state.site

        rhs = local_rhs(envs.phiy[k], y_cores[k], y_cores[k + 1], envs.phiy[k + 2])
        sol_prev = x_cores[k].numpy().reshape(rx[k] * N[k], rx[k + 1])
        sol_prev = (sol_prev @ x_cores[k + 1].numpy().reshape(rx[k + 1], N[k + 1] * rx[k + 2])).reshape(-1)

        if state.last_sweep:
            real_tol = tol / np.sqrt(d) / options.resid_damp
        else:
            real_tol = tol / (d ** state.dpows[k]) / options.resid_damp

        use_prec = options.local_prec == 'jacobi' and not state.last_sweep
        local = solve_local(
            envs.phia[k], A_cores[k], A_cores[k + 1], envs.phia[k + 2], rhs, sol_prev, real_tol, options, use_prec
        )
        sol = local.sol

        if not local.converged:
            _report(info, state, 'local_solver', LocalSolverWarning,
                    'local solver did not converge at block %d (residual %3.3e)' % (k, local.res_new))
        if local.res_new > real_tol and local.res_prev < options.resid_damp * local.res_new:
            _report(info, state, 'residual_damp', ResidualDampWarning,
                    'residual reduction at block %d was smaller than the truncation assumes (%3.3e -> %3.3e)'
                    % (k, local.res_prev, local.res_new))

        norm_sol = np.linalg.norm(sol)
        dx = np.linalg.norm(sol - sol_prev)
        dx = dx / norm_sol if norm_sol > 0 else dx
        state.dx[k] = dx
        state.max_dx = max(state.max_dx, dx)

        state.dpows[k], state.dranks[k] = update_rank_controls(
            dx, state.dx_old[k], state.dpows[k], state.dranks[k], tol, options, state.last_sweep
        )

        # cheap residual estimate on the all-ones projection
        crhs = local_rhs(envs.cphiy[k], y_cores[k], y_cores[k + 1], envs.cphiy[k + 2])
        norm_crhs = np.linalg.norm(crhs)
        if norm_crhs > 0:
            cop = LocalOperator(envs.cphia[k], A_cores[k], A_cores[k + 1], envs.cphia[k + 2])
            res = np.linalg.norm(cop.matvec(sol) - crhs) / norm_crhs
        else:
            res = local.res_new
        state.max_res = max(state.max_res, res)

        u, s, vh = _svd(sol.reshape(rx[k] * N[k], N[k + 1] * rx[k + 2]))
        threshold = truncation_threshold(tol, d, state.dpows[k], local.res_new, options.resid_damp)
        r = select_rank(u, s, vh, threshold, options.trunc_norm, local.residual)
        r = clamp_rank(r, state.dranks[k], s.size, options.rmax)

        if options.verb > 1:
            print('\tblock %d (%s), dx: %3.3e, res: %3.3e, rank: %d'
                  % (k, 'forward' if state.forward else 'backward', dx, res, r))

        kickrank = 0 if state.last_sweep else options.kickrank
        with warnings.catch_warnings(record=True) as caught:
            warnings.simplefilter('always', ReorthogonalizationWarning)
            left, right = split_with_kick(u, s, vh, r, state.forward, kickrank, dtype, device)
        for w in caught:
            if issubclass(w.category, ReorthogonalizationWarning):
                _report(info, state, 'reorthogonalization', w.category, str(w.message))
            else:
                warnings.warn_explicit(w.message, w.category, w.filename, w.lineno)
        r = left.shape[1]
        rx[k + 1] = r
        x_cores[k] = tn.tensor(left.reshape(rx[k], N[k], r), dtype=dtype, device=device)
        x_cores[k + 1] = tn.tensor(right.reshape(r, N[k + 1], rx[k + 2]), dtype=dtype, device=device)

        if state.forward:
            envs.update_from_left(k, x_cores[k])
        else:
            envs.update_from_right(k + 1, x_cores[k + 1])

        if not state.advance():
            continue

        if state.last_sweep:
            info.converged = True
            break

        info.max_res.append(float(state.max_res))
        info.max_dx.append(float(state.max_dx))
        criterion = state.max_dx if options.trunc_norm == 'fro' else state.max_res
        if criterion < tol:
            state.last_sweep = True

        if options.verb > 0:
            print('sweep %d (%s), max_dx: %3.3e, max_res: %3.3e, erank: %g'
                  % (state.sweep, 'forward' if state.direction == -1 else 'backward',
                     state.max_dx, state.max_res, erank(TT(x_cores))))

        state.next_half_sweep()

    info.sweeps = min(state.sweep, options.nswp)
    info.ranks = list(rx)

    if options.verb > 0:
        if not info.converged:
            print('DMRG solve stopped after %d sweeps without reaching the tolerance %g' % (options.nswp, tol))
        print('Finished after', info.sweeps, 'sweeps and', datetime.datetime.now() - time_total)

    return TT(x_cores)
