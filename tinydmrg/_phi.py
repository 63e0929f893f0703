"""
Recursion for the environment (Phi) tensors of the alternating sweeps.

An operator environment ``Phi[x, a, y]`` is the contraction of the basis cores
``x``, the operator cores and the data cores ``y`` over all sites on one side of
a cut; the right-hand side environment ``Phi[x, y]`` is the same without the
operator.
"""

from __future__ import annotations

import tinydmrg._backend as tn
from tinydmrg.errors import InvalidArguments

LEFT_TO_RIGHT = 'lr'
RIGHT_TO_LEFT = 'rl'


def compute_next_phi(phi_prev, x, A, y, direction):
    """
    Moves the cut of an environment by one site: ``Phi_next = Phi_prev * (x^T A y)``.

    For ``'lr'`` the cores enter as ``x[x1, n, x2]``, ``A[a1, n, m, a2]``, ``y[y1, m, y2]``
    and ``phi_prev`` is indexed by the left ranks ``(x1, a1, y1)``; the result is
    indexed by the right ranks. ``'rl'`` swaps the rank axes of all cores so the
    same contraction accumulates from the right.

    Args:
        phi_prev (tinygrad.Tensor): ``(rx, ra, ry)``, or ``(rx, ry)`` if ``A`` is None.
        x (tinygrad.Tensor): basis core ``(rx1, n, rx2)``.
        A (tinygrad.Tensor | None): operator core ``(ra1, n, m, ra2)``.
        y (tinygrad.Tensor): data core ``(ry1, m, ry2)``.
        direction (str): ``'lr'`` or ``'rl'``.

    Returns:
        tinygrad.Tensor: the next environment.
    """
    if direction == RIGHT_TO_LEFT:
        x = tn.permute(x, [2, 1, 0])
        y = tn.permute(y, [2, 1, 0])
        if A is not None:
            A = tn.permute(A, [3, 1, 2, 0])
    elif direction != LEFT_TO_RIGHT:
        raise InvalidArguments("Direction must be 'lr' or 'rl', got %s." % str(direction))

    # O(n rx ra ry^2)
    phi = tn.tensordot(phi_prev, y, ([phi_prev.ndim - 1], [0]))
    if A is None:
        # O(n rx^2 ry)
        return tn.tensordot(x, phi, ([0, 1], [0, 1])).realize()

    # O(n^2 rx ra^2 ry): (x1, a1, m, y2) x (a1, n, m, a2) -> (x1, y2, n, a2)
    phi = tn.tensordot(phi, A, ([1, 2], [0, 2]))
    # O(n rx^2 ra ry): (x1, n, x2) x (x1, y2, n, a2) -> (x2, y2, a2)
    phi = tn.tensordot(x, phi, ([0, 1], [0, 2]))
    return tn.permute(phi, [0, 2, 1]).realize()


def boundary_phi(with_operator, dtype, device=None):
    """All-ones boundary environment outside the first / last site."""
    shape = (1, 1, 1) if with_operator else (1, 1)
    return tn.ones(shape, dtype=dtype, device=device)


def ones_core(n, dtype, device=None):
    """Rank-one all-ones core used for the cheap residual estimate."""
    return tn.ones((1, n, 1), dtype=dtype, device=device)
