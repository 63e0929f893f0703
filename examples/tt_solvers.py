import numpy as np
import tinydmrg as tt

rng = np.random.RandomState(10)
tt.manual_seed(10)
N = [2, 2, 2, 2, 2]
rx = [1, 2, 2, 2, 2, 1]
size = int(np.prod(N))

full = 0.2 * rng.randn(size, size).astype(np.float64)
full += np.eye(size, dtype=np.float64)
A = tt.TT(full, shape=[(n, n) for n in N], eps=1e-12)
x_true = tt.TT([rng.rand(rx[i], N[i], rx[i + 1]).astype(np.float64) for i in range(len(N))])
b = A @ x_true

x_dense, info = tt.dmrg_solve(A, b, 1e-10, nswp=10, verb=1, return_info=True)
x_gmres = tt.dmrg_solve(A, b, 1e-10, max_full_size=1, local_restart=64, local_prec="jacobi", verb=0)
x_fro = tt.dmrg_solve(A, b, 1e-10, trunc_norm="fro", verb=0)


def rel_residual(x):
    return (A @ x - b).norm() / b.norm()


# 1D Laplacian on 2^5 points in QTT format
T = 2.0 * np.eye(size) - np.eye(size, k=1) - np.eye(size, k=-1)
L = tt.TT(T, shape=[(n, n) for n in N], eps=1e-12)
ones = tt.ones(N)
u = tt.dmrg_solve(L, ones, 1e-8, verb=0)

print("initial residual:", rel_residual(tt.ones(N)))
print("dense local solves:", rel_residual(x_dense), "in", info.sweeps, "sweeps, ranks", info.ranks)
print("gmres + jacobi local solves:", rel_residual(x_gmres))
print("frobenius truncation:", rel_residual(x_fro))
print("laplacian ranks:", u.R, "residual:", (L @ u - ones).norm() / ones.norm())
