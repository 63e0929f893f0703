import warnings

import numpy as np
import pytest

import tinydmrg as tt
import tinydmrg._backend as tn
from tinydmrg.errors import (
    ConfigurationError,
    IncompatibleTypes,
    InvalidArguments,
    LocalSolverWarning,
    ReorthogonalizationWarning,
    ResidualDampWarning,
    ShapeMismatch,
)
from tinydmrg import solvers


def _laplacian(d, n):
    """Discrete d-dimensional Laplacian as a rank-2 TT-matrix."""
    T = 2.0 * np.eye(n) - np.eye(n, k=1) - np.eye(n, k=-1)
    I = np.eye(n)
    cores = []
    for k in range(d):
        if k == 0:
            core = np.stack([T, I], axis=-1)[None]
        elif k == d - 1:
            core = np.stack([I, T], axis=0)[..., None]
        else:
            core = np.zeros((2, n, n, 2))
            core[0, :, :, 0] = I
            core[1, :, :, 0] = T
            core[1, :, :, 1] = I
        cores.append(core)
    return tt.TT(cores)


def _dense_system(A, y):
    size = int(np.prod(y.N))
    return A.numpy().reshape(size, size), y.numpy().reshape(-1)


def _rel_residual(A, x, y):
    return (A @ x - y).norm() / y.norm()


def test_laplacian_matrix():
    A = _laplacian(3, 4)
    T = 2.0 * np.eye(4) - np.eye(4, k=1) - np.eye(4, k=-1)
    I = np.eye(4)
    ref = np.kron(np.kron(T, I), I) + np.kron(np.kron(I, T), I) + np.kron(np.kron(I, I), T)
    np.testing.assert_allclose(A.numpy().reshape(64, 64), ref, atol=1e-12)


def test_identity_system():
    tt.manual_seed(0)
    N = [2, 3, 2, 3]
    y = tt.random(N, 2)

    x, info = tt.dmrg_solve(tt.eye(N), y, 1e-8, verb=0, return_info=True)

    assert info.converged
    assert np.linalg.norm(x.numpy() - y.numpy()) <= 1e-7 * y.norm()
    assert max(x.R) <= 4


def test_laplacian_ones_rhs():
    tt.manual_seed(1)
    A = _laplacian(4, 4)
    y = tt.ones([4] * 4)

    x, info = tt.dmrg_solve(A, y, 1e-8, verb=0, return_info=True)

    assert info.converged
    assert info.sweeps <= 10
    assert info.ranks == x.R
    assert len(info.max_res) >= 1
    assert _rel_residual(A, x, y) < 1e-7

    B, b = _dense_system(A, y)
    ref = np.linalg.solve(B, b)
    assert np.linalg.norm(x.numpy().reshape(-1) - ref) <= 1e-6 * np.linalg.norm(ref)


def test_frobenius_truncation():
    tt.manual_seed(2)
    A = _laplacian(4, 3)
    y = tt.ones([3] * 4)

    x = tt.dmrg_solve(A, y, 1e-8, verb=0, trunc_norm='fro')

    assert _rel_residual(A, x, y) < 1e-6


def test_random_well_conditioned_system():
    tt.manual_seed(3)
    rng = np.random.RandomState(3)
    N = [3, 3, 3]
    cores = []
    for k in range(3):
        core = np.zeros((1, 3, 3, 1))
        core[0, :, :, 0] = 3.0 * np.eye(3) + 0.3 * rng.randn(3, 3)
        cores.append(core)
    A = tt.TT(cores) + 0.1 * tt.TT([rng.randn(*c.shape) for c in cores])
    y = tt.random(N, 2)

    x = tt.dmrg_solve(A, y, 1e-9, verb=0)

    B, b = _dense_system(A, y)
    ref = np.linalg.solve(B, b)
    assert np.linalg.norm(x.numpy().reshape(-1) - ref) <= 1e-7 * np.linalg.norm(ref)
    assert _rel_residual(A, x, y) < 1e-8


@pytest.mark.parametrize('kwargs', [
    {'local_solver': 'gmres'},
    {'local_solver': 'pcg'},
    {'local_solver': 'gmres', 'local_prec': 'jacobi'},
    {'local_solver': 'pcg', 'local_prec': 'jacobi'},
])
def test_iterative_local_solvers(kwargs):
    tt.manual_seed(4)
    A = _laplacian(4, 3)
    y = tt.ones([3] * 4)

    x = tt.dmrg_solve(A, y, 1e-7, verb=0, max_full_size=1, local_restart=60, nswp=20, **kwargs)

    assert _rel_residual(A, x, y) < 1e-5


def test_resolve_from_solution():
    tt.manual_seed(5)
    A = _laplacian(3, 4)
    y = tt.ones([4] * 3)
    x = tt.dmrg_solve(A, y, 1e-10, verb=0)

    x2, info = tt.dmrg_solve(A, y, 1e-8, verb=0, x0=x, return_info=True)

    assert info.converged
    assert info.sweeps == 1
    assert len(info.max_dx) == 1
    assert (x2 - x).norm() <= 1e-6 * x.norm()


def test_rank_ceiling_on_final_sweep():
    tt.manual_seed(6)
    rng = np.random.RandomState(6)
    N = [3, 3, 3, 3]
    # a Kronecker-product operator keeps the rank of the right-hand side
    cores = []
    for n in N:
        g = rng.randn(n, n)
        cores.append((g @ g.T + n * np.eye(n)).reshape(1, n, n, 1))
    A = tt.TT(cores)
    y = tt.random(N, 2)

    x, info = tt.dmrg_solve(A, y, 1e-8, verb=0, rmax=2, return_info=True)

    assert info.converged
    assert max(x.R) <= 2
    assert _rel_residual(A, x, y) < 1e-7


def test_no_local_preconditioner_in_final_sweep(monkeypatch):
    tt.manual_seed(13)
    calls = []
    solve_local = solvers.solve_local

    def recording_solve_local(*args):
        calls.append((args[6], args[8]))
        return solve_local(*args)

    monkeypatch.setattr(solvers, 'solve_local', recording_solve_local)
    tol = 1e-6
    d = 4
    _, info = tt.dmrg_solve(
        _laplacian(d, 3), tt.ones([3] * d), tol, verb=0, max_full_size=1, local_prec='jacobi', return_info=True
    )

    assert info.converged
    final_tol = tol / np.sqrt(d) / 1.5
    final = [use_prec for real_tol, use_prec in calls if np.isclose(real_tol, final_tol)]
    earlier = [use_prec for real_tol, use_prec in calls if not np.isclose(real_tol, final_tol)]
    assert len(final) == d - 1
    assert not any(final)
    assert earlier and all(earlier)


def test_residual_damp_warning_is_reported():
    tt.manual_seed(14)
    A = _laplacian(4, 4)
    y = tt.random([4] * 4, 2)

    with pytest.warns(ResidualDampWarning):
        _, info = tt.dmrg_solve(
            A, y, 1e-8, verb=0, nswp=1, max_full_size=1, local_restart=1, local_iters=1,
            resid_damp=1e6, return_info=True
        )

    assert any(diag.kind == 'residual_damp' for diag in info.diagnostics)


def test_kick_warnings_are_forwarded(monkeypatch):
    tt.manual_seed(15)
    split_with_kick = solvers.split_with_kick

    def noisy_split_with_kick(*args):
        warnings.warn('basis did not settle', ReorthogonalizationWarning)
        warnings.warn('unrelated', RuntimeWarning)
        return split_with_kick(*args)

    monkeypatch.setattr(solvers, 'split_with_kick', noisy_split_with_kick)
    with warnings.catch_warnings(record=True) as caught:
        warnings.simplefilter('always')
        _, info = tt.dmrg_solve(_laplacian(3, 2), tt.ones([2] * 3), 1e-8, verb=0, return_info=True)

    kinds = {diag.kind for diag in info.diagnostics}
    assert 'reorthogonalization' in kinds
    assert all(diag.message != 'unrelated' for diag in info.diagnostics)
    assert any(w.category is RuntimeWarning and str(w.message) == 'unrelated' for w in caught)
    assert any(w.category is ReorthogonalizationWarning for w in caught)


def test_sweep_budget_without_convergence():
    tt.manual_seed(7)
    A = _laplacian(4, 4)
    y = tt.random([4] * 4, 3)

    x, info = tt.dmrg_solve(A, y, 1e-14, verb=0, nswp=1, rmax=1, kickrank=0, return_info=True)

    assert not info.converged
    assert info.sweeps == 1
    assert x.N == [4] * 4


def test_global_preconditioner():
    tt.manual_seed(8)
    A = _laplacian(3, 3)
    y = tt.ones([3] * 3)
    P = 0.5 * tt.eye([3] * 3)

    x = tt.dmrg_solve(A, y, 1e-9, verb=0, P=P)

    assert _rel_residual(A, x, y) < 1e-7


def test_zero_rhs():
    A = _laplacian(3, 2)
    x, info = tt.dmrg_solve(A, tt.zeros([2] * 3), 1e-8, verb=0, return_info=True)
    assert x.norm() == 0.0
    assert info.converged


def test_single_core():
    A = tt.TT([np.array([[2.0, 1.0], [1.0, 3.0]]).reshape(1, 2, 2, 1)])
    y = tt.TT([np.array([1.0, 2.0]).reshape(1, 2, 1)])

    x = tt.dmrg_solve(A, y, 1e-10, verb=0)

    np.testing.assert_allclose(x.numpy(), np.linalg.solve([[2.0, 1.0], [1.0, 3.0]], [1.0, 2.0]))


def test_verbose_output(capsys):
    tt.manual_seed(9)
    A = _laplacian(3, 2)
    tt.dmrg_solve(A, tt.ones([2] * 3), 1e-6, verb=2)
    out = capsys.readouterr().out
    assert 'Starting DMRG solve' in out
    assert 'sweep 1' in out
    assert 'block 0' in out


def test_local_solver_warning_is_reported():
    tt.manual_seed(10)
    A = _laplacian(4, 4)
    y = tt.random([4] * 4, 2)

    with pytest.warns(LocalSolverWarning):
        _, info = tt.dmrg_solve(
            A, y, 1e-12, verb=0, nswp=1, max_full_size=1, local_restart=1, local_iters=1, return_info=True
        )

    assert any(diag.kind == 'local_solver' for diag in info.diagnostics)


def test_dtype_and_shape_of_solution():
    tt.manual_seed(11)
    A = _laplacian(3, 3)
    x = tt.dmrg_solve(A, tt.ones([3] * 3), 1e-6, verb=0)
    assert x.N == [3, 3, 3]
    assert x.R[0] == 1 and x.R[-1] == 1
    assert x.cores[0].dtype == tn.float64


def test_non_square_operator():
    A = tt.TT([np.ones((1, 2, 3, 1)), np.ones((1, 2, 2, 1))])
    y = tt.ones([3, 2])
    with pytest.raises(ShapeMismatch, match='normal equations'):
        tt.dmrg_solve(A, y, 1e-6, verb=0)


def test_mismatched_rhs():
    with pytest.raises(ShapeMismatch):
        tt.dmrg_solve(tt.eye([2, 2]), tt.ones([2, 3]), 1e-6, verb=0)


def test_wrong_types():
    with pytest.raises(IncompatibleTypes):
        tt.dmrg_solve(tt.eye([2, 2]), tt.eye([2, 2]), 1e-6, verb=0)
    with pytest.raises(InvalidArguments):
        tt.dmrg_solve(np.eye(4), tt.ones([2, 2]), 1e-6, verb=0)


def test_invalid_tolerance():
    with pytest.raises(InvalidArguments):
        tt.dmrg_solve(tt.eye([2, 2]), tt.ones([2, 2]), 0.0, verb=0)


def test_invalid_initial_guess():
    with pytest.raises(ShapeMismatch):
        tt.dmrg_solve(tt.eye([2, 2]), tt.ones([2, 2]), 1e-6, verb=0, x0=tt.ones([2, 3]))


def test_unknown_option_is_fatal():
    with pytest.raises(ConfigurationError):
        tt.dmrg_solve(tt.eye([2, 2]), tt.ones([2, 2]), 1e-6, options={'sweeps': 3})


def test_qtt_laplacian_ones_rhs():
    tt.manual_seed(12)
    n = 16
    T = 2.0 * np.eye(n) - np.eye(n, k=1) - np.eye(n, k=-1)
    A = tt.TT(T, shape=[(2, 2)] * 4, eps=1e-14)
    y = tt.ones([2] * 4)

    x = tt.dmrg_solve(A, y, 1e-8, verb=0)

    assert _rel_residual(A, x, y) < 1e-7
    ref = np.linalg.solve(T, np.ones(n))
    assert np.linalg.norm(x.numpy().reshape(-1) - ref) <= 1e-5 * np.linalg.norm(ref)
