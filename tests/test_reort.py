import numpy as np
import pytest

import tinydmrg as tt
from tinydmrg.errors import InvalidArguments, ReorthogonalizationWarning


def _orthonormal(rng, m, k):
    q, _ = np.linalg.qr(rng.randn(m, k))
    return q


def test_reort_extends_basis():
    rng = np.random.RandomState(0)
    u = _orthonormal(rng, 12, 3)
    uadd = rng.randn(12, 2)

    w = tt.reort(u, uadd)

    assert w.shape == (12, 5)
    np.testing.assert_allclose(w[:, :3], u)
    np.testing.assert_allclose(w.T @ w, np.eye(5), atol=1e-12)


def test_reort_nearly_dependent_columns():
    rng = np.random.RandomState(1)
    u = _orthonormal(rng, 10, 4)
    uadd = u @ rng.randn(4, 2) + 1e-9 * rng.randn(10, 2)

    w = tt.reort(u, uadd)

    np.testing.assert_allclose(w.T @ w, np.eye(w.shape[1]), atol=1e-10)


def test_reort_clips_to_available_dimension():
    rng = np.random.RandomState(2)
    u = _orthonormal(rng, 5, 3)

    w = tt.reort(u, rng.randn(5, 4))

    assert w.shape == (5, 5)
    np.testing.assert_allclose(w.T @ w, np.eye(5), atol=1e-12)


def test_reort_full_basis_is_unchanged():
    rng = np.random.RandomState(3)
    u = _orthonormal(rng, 4, 4)

    w = tt.reort(u, rng.randn(4, 2))

    np.testing.assert_array_equal(w, u)


def test_reort_empty_addition():
    rng = np.random.RandomState(4)
    u = _orthonormal(rng, 6, 2)

    w = tt.reort(u, np.zeros((6, 0)))

    np.testing.assert_array_equal(w, u)


def test_reort_row_mismatch():
    with pytest.raises(InvalidArguments):
        tt.reort(np.eye(4)[:, :2], np.ones((3, 1)))


def test_reort_round_cap_warns_and_stays_orthonormal():
    rng = np.random.RandomState(5)
    u = _orthonormal(rng, 10, 4)
    uadd = u @ rng.randn(4, 2) + 1e-9 * rng.randn(10, 2)

    with pytest.warns(ReorthogonalizationWarning):
        w = tt.reort(u, uadd, max_rounds=1)

    assert w.shape == (10, 6)
    np.testing.assert_allclose(w[:, :4], u)
    np.testing.assert_allclose(w.T @ w, np.eye(6), atol=1e-10)
