"""
Core-wise products between TT objects.
"""
import tinydmrg._backend as tn


def dense_matvec(cores, other):
    """
    Performs multiplication between a TT-matrix and a full tensor.
    Compatible to trailing dimensions broadcasting.

    Args:
        cores (list[Tensor]): the TT-cores of the TT-matrix. The TT-matrix should be of shape (M1 x ... x Md) x (N1 x ... x Nd).
        other (Tensor): The tensor with shape B1 x ... x Bn x N1 x ... x Nd.

    Returns:
        Tensor: The result. Shape is B1 x ... x Bn x M1 x ... x Md.
    """
    result = other.unsqueeze(-1)
    d = len(cores)
    D = len(other.shape)
    for i in range(d):
        result = tn.tensordot(result, cores[i], ([D - d, -1], [2, 0]))
    return result.squeeze(-1)


def ttm_tt_cores(A_cores, x_cores):
    """
    Cores of the product of a TT-matrix and a TT-tensor. The ranks multiply.

    Args:
        A_cores (list[Tensor]): cores of shape ``(ra, m, n, ra')``.
        x_cores (list[Tensor]): cores of shape ``(rx, n, rx')``.

    Returns:
        list[Tensor]: cores of shape ``(ra*rx, m, ra'*rx')``.
    """
    result = []
    for a, x in zip(A_cores, x_cores):
        ra1, m, _, ra2 = a.shape
        rx1, _, rx2 = x.shape
        core = tn.einsum('amnA,xnX->axmAX', a, x)
        result.append(tn.reshape(core, [ra1 * rx1, m, ra2 * rx2]))
    return result


def ttm_ttm_cores(A_cores, B_cores):
    """
    Cores of the product of two TT-matrices (``A @ B``).
    """
    result = []
    for a, b in zip(A_cores, B_cores):
        ra1, m, _, ra2 = a.shape
        rb1, _, k, rb2 = b.shape
        core = tn.einsum('amnA,bnkB->abmkAB', a, b)
        result.append(tn.reshape(core, [ra1 * rb1, m, k, ra2 * rb2]))
    return result
