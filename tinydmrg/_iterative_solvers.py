"""
Iterative solvers (restarted GMRES and preconditioned CG) for the local systems.

Vectors are flat numpy arrays; the operator is any callable ``matvec(v)``.
"""

from __future__ import annotations

import numpy as np


def gmres_restart(matvec, b, x0, max_iterations, threshold, resets=2, prec=None):
    """
    Restarted GMRES.

    Args:
        matvec (Callable): the operator.
        b (np.ndarray): right-hand side.
        x0 (np.ndarray): initial guess.
        max_iterations (int): dimension of the Krylov space per restart.
        threshold (float): tolerance on ``||b - A x|| / ||b||``.
        resets (int, optional): number of restarts. Defaults to 2.
        prec (Callable, optional): right preconditioner. Defaults to None.

    Returns:
        tuple[np.ndarray, bool, int]: solution, convergence flag and total number of iterations.
    """
    iters = 0
    converged = False
    x = x0
    for _ in range(resets):
        x, flag, it = gmres(matvec, b, x, max_iterations, threshold, prec)
        iters += it
        if flag:
            converged = True
            break
    return x, converged, iters


def gmres(matvec, b, x0, max_iterations, threshold, prec=None):
    op = matvec if prec is None else (lambda v: matvec(prec(v)))
    r = b - matvec(x0)

    b_norm = np.linalg.norm(b)
    r_norm = np.linalg.norm(r)
    if b_norm == 0.0 or r_norm <= threshold * b_norm:
        return x0, True, 0

    max_iterations = max(1, min(max_iterations, b.size))
    H = np.zeros((max_iterations + 1, max_iterations), dtype=b.dtype)
    cs = np.zeros((max_iterations,), dtype=b.dtype)
    sn = np.zeros((max_iterations,), dtype=b.dtype)
    beta = np.zeros((max_iterations + 1,), dtype=b.dtype)
    beta[0] = r_norm

    Q = [r / r_norm]
    converged = False
    k = 0

    for k in range(max_iterations):
        q = op(Q[k])
        for i in range(k + 1):
            H[i, k] = q @ Q[i]
            q = q - Q[i] * H[i, k]

        h = np.linalg.norm(q)
        H[k + 1, k] = h
        if h > 0.0:
            Q.append(q / h)

        h_col, c, s = _apply_givens_rotation(H[: (k + 2), k].copy(), cs, sn, k + 1)
        H[: (k + 2), k] = h_col
        cs[k] = c
        sn[k] = s

        beta[k + 1] = -sn[k] * beta[k]
        beta[k] = cs[k] * beta[k]
        error = abs(beta[k + 1]) / b_norm
        if error <= threshold:
            converged = True
            break
        if h == 0.0:
            break

    y = _solve_upper(H[: k + 1, : k + 1], beta[: k + 1])
    z = np.zeros_like(x0)
    for i in range(k + 1):
        z = z + Q[i] * y[i]
    if prec is not None:
        z = prec(z)
    return x0 + z, converged, k + 1


def pcg(matvec, b, x0, threshold, max_iterations, prec=None):
    """
    Preconditioned conjugate gradients for symmetric positive definite operators.

    Args:
        matvec (Callable): the operator.
        b (np.ndarray): right-hand side.
        x0 (np.ndarray): initial guess.
        threshold (float): tolerance on ``||b - A x|| / ||b||``.
        max_iterations (int): iteration limit.
        prec (Callable, optional): approximate inverse of the operator. Defaults to None.

    Returns:
        tuple[np.ndarray, bool, int]: solution, convergence flag and number of iterations.
    """
    x = x0.copy()
    r = b - matvec(x)
    b_norm = np.linalg.norm(b)
    if b_norm == 0.0 or np.linalg.norm(r) <= threshold * b_norm:
        return x, True, 0

    z = r if prec is None else prec(r)
    p = z.copy()
    rz = r @ z
    for it in range(1, max_iterations + 1):
        Ap = matvec(p)
        pAp = p @ Ap
        if pAp == 0.0:
            return x, False, it
        alpha = rz / pAp
        x = x + alpha * p
        r = r - alpha * Ap
        if np.linalg.norm(r) <= threshold * b_norm:
            return x, True, it
        z = r if prec is None else prec(r)
        rz_new = r @ z
        p = z + (rz_new / rz) * p
        rz = rz_new
    return x, False, max_iterations


def _solve_upper(R, rhs):
    # the rotated Hessenberg matrix is upper triangular, zero pivots come from breakdowns
    y = np.zeros_like(rhs)
    for i in range(rhs.size - 1, -1, -1):
        if R[i, i] == 0.0:
            continue
        y[i] = (rhs[i] - R[i, i + 1:] @ y[i + 1:]) / R[i, i]
    return y


def _apply_givens_rotation(h, cs, sn, k):
    for i in range(k - 1):
        temp = cs[i] * h[i] + sn[i] * h[i + 1]
        h[i + 1] = -sn[i] * h[i] + cs[i] * h[i + 1]
        h[i] = temp

    cs_k, sn_k = _givens_rotation(h[k - 1], h[k])
    h[k - 1] = cs_k * h[k - 1] + sn_k * h[k]
    h[k] = 0.0
    return h, cs_k, sn_k


def _givens_rotation(v1, v2):
    den = np.sqrt(v1**2 + v2**2)
    if den == 0.0:
        return 1.0, 0.0
    return v1 / den, v2 / den
