import numpy as np

from tinydmrg._iterative_solvers import gmres, gmres_restart, pcg


def _spd(rng, n):
    g = rng.randn(n, n)
    return g @ g.T + n * np.eye(n)


def test_gmres_nonsymmetric():
    rng = np.random.RandomState(0)
    A = rng.randn(20, 20) + 10 * np.eye(20)
    b = rng.randn(20)

    x, converged, nit = gmres_restart(lambda v: A @ v, b, np.zeros(20), 20, 1e-12, resets=2)

    assert converged
    assert nit <= 40
    np.testing.assert_allclose(A @ x, b, atol=1e-9)


def test_gmres_right_preconditioner():
    rng = np.random.RandomState(1)
    d = np.linspace(1.0, 1e4, 30)
    A = np.diag(d) + 0.1 * rng.randn(30, 30)
    b = rng.randn(30)

    x, converged, _ = gmres(lambda v: A @ v, b, np.zeros(30), 30, 1e-10, prec=lambda v: v / d)

    assert converged
    assert np.linalg.norm(A @ x - b) <= 1e-8 * np.linalg.norm(b)


def test_gmres_exact_initial_guess():
    rng = np.random.RandomState(2)
    A = _spd(rng, 8)
    x_true = rng.randn(8)

    x, converged, nit = gmres(lambda v: A @ v, A @ x_true, x_true, 8, 1e-10)

    assert converged and nit == 0
    np.testing.assert_array_equal(x, x_true)


def test_gmres_stops_at_iteration_limit():
    rng = np.random.RandomState(3)
    A = rng.randn(40, 40) + 2 * np.eye(40)
    b = rng.randn(40)

    _, converged, nit = gmres_restart(lambda v: A @ v, b, np.zeros(40), 3, 1e-14, resets=2)

    assert not converged
    assert nit == 6


def test_pcg_spd():
    rng = np.random.RandomState(4)
    A = _spd(rng, 25)
    b = rng.randn(25)
    diag = np.diag(A)

    x, converged, _ = pcg(lambda v: A @ v, b, np.zeros(25), 1e-12, 200, prec=lambda v: v / diag)

    assert converged
    np.testing.assert_allclose(A @ x, b, atol=1e-9)
