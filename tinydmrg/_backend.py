from __future__ import annotations

import os

import numpy as np

if "XDG_CACHE_HOME" not in os.environ:
    os.environ["XDG_CACHE_HOME"] = "/tmp"

from tinygrad import Tensor, dtypes

float32 = dtypes.float32
float64 = dtypes.float64
_FORCE_FP32 = os.getenv("TINYDMRG_FORCE_FP32", "0").lower() in ("1", "true", "yes")
_FP64_SUPPORT_CACHE: dict[str, bool] = {}


def _is_cpu_device(device):
    if device is None:
        return True
    dev = str(device).upper()
    return dev.startswith("CPU") or dev in ("CLANG", "LLVM")


def supports_fp64(device=None):
    dev = _resolve_device(device)
    if dev is None or _is_cpu_device(dev):
        return True
    if dev in _FP64_SUPPORT_CACHE:
        return _FP64_SUPPORT_CACHE[dev]
    try:
        probe = Tensor([1.0], dtype=float64, device=dev)
        (probe + probe).realize()
        _FP64_SUPPORT_CACHE[dev] = True
    except Exception:
        _FP64_SUPPORT_CACHE[dev] = False
    return _FP64_SUPPORT_CACHE[dev]


def _should_force_fp32(device):
    dev = _resolve_device(device)
    if dev is None or _is_cpu_device(dev):
        return False
    if _FORCE_FP32:
        return True
    return not supports_fp64(dev)


def default_float_dtype(device=None):
    return float32 if _should_force_fp32(device) else float64


def numpy_dtype(dtype):
    if dtype == float32:
        return np.float32
    return np.float64


def _infer_dtype(data):
    if isinstance(data, Tensor):
        return data.dtype
    if isinstance(data, np.ndarray):
        if data.dtype == np.float32:
            return float32
        if data.dtype == np.float64:
            return float64
    return None


def coerce_dtype(dtype, device=None, data=None):
    target = dtype if dtype is not None else _infer_dtype(data)
    if target == float64 and _should_force_fp32(device):
        return float32
    return target


def default_device():
    device = os.getenv("TINYDMRG_DEVICE") or os.getenv("DEV")
    return str(device) if device else None


def _resolve_device(device):
    resolved = device if device is not None else default_device()
    return None if resolved is None else str(resolved)


def is_tensor(x) -> bool:
    return isinstance(x, Tensor)


def manual_seed(seed: int):
    """Seed the tinygrad generator used for random TT cores and kicks."""
    Tensor.manual_seed(seed)


def tensor(data, dtype=None, device=None):
    resolved = _resolve_device(device)
    target_dtype = coerce_dtype(dtype, resolved, data)
    if isinstance(data, Tensor):
        out = data
        if target_dtype is not None and out.dtype != target_dtype:
            out = out.cast(target_dtype)
        if resolved is not None and out.device != resolved:
            out = out.to(resolved)
        return out
    if isinstance(data, np.ndarray) and not data.flags["C_CONTIGUOUS"]:
        data = np.ascontiguousarray(data)
    if target_dtype is None and isinstance(data, (list, tuple, np.ndarray)):
        target_dtype = default_float_dtype(resolved)
    if isinstance(data, np.ndarray) and data.dtype != numpy_dtype(target_dtype):
        data = data.astype(numpy_dtype(target_dtype))
    return Tensor(data, dtype=target_dtype, device=resolved)


def to_numpy(x) -> np.ndarray:
    if isinstance(x, Tensor):
        return x.numpy()
    return np.asarray(x)


def ones(shape, dtype=None, device=None):
    resolved = _resolve_device(device)
    target_dtype = coerce_dtype(dtype, resolved)
    if target_dtype is None:
        target_dtype = default_float_dtype(resolved)
    return Tensor.ones(*shape, dtype=target_dtype, device=resolved)


def zeros(shape, dtype=None, device=None):
    resolved = _resolve_device(device)
    target_dtype = coerce_dtype(dtype, resolved)
    if target_dtype is None:
        target_dtype = default_float_dtype(resolved)
    return Tensor.zeros(*shape, dtype=target_dtype, device=resolved)


def randn(shape, dtype=None, device=None):
    resolved = _resolve_device(device)
    target_dtype = coerce_dtype(dtype, resolved)
    if target_dtype is None:
        target_dtype = default_float_dtype(resolved)
    return Tensor.randn(*shape, dtype=target_dtype, device=resolved)


def eye(n, m=None, dtype=None, device=None):
    resolved = _resolve_device(device)
    target_dtype = coerce_dtype(dtype, resolved)
    if target_dtype is None:
        target_dtype = default_float_dtype(resolved)
    return Tensor.eye(n, m, dtype=target_dtype, device=resolved)


def reshape(x: Tensor, shape):
    return x.reshape(shape)


def permute(x: Tensor, dims):
    return x.permute(dims)


def transpose(x: Tensor, dim0: int, dim1: int):
    return x.transpose(dim0, dim1)


def cat(tensors, dim=0):
    return Tensor.cat(*tensors, dim=dim)


def einsum(formula: str, *operands: Tensor):
    return Tensor.einsum(formula, *operands)


def tensordot(a: Tensor, b: Tensor, axes=2):
    if isinstance(axes, int):
        a_axes = list(range(a.ndim - axes, a.ndim))
        b_axes = list(range(axes))
    else:
        a_axes, b_axes = axes
        a_axes = list(a_axes)
        b_axes = list(b_axes)
    a_axes = [ax + a.ndim if ax < 0 else ax for ax in a_axes]
    b_axes = [ax + b.ndim if ax < 0 else ax for ax in b_axes]
    a_remain = [i for i in range(a.ndim) if i not in a_axes]
    b_remain = [i for i in range(b.ndim) if i not in b_axes]
    letters = list("abcdefghijklmnopqrstuvwxyzABCDEFGHIJKLMNOPQRSTUVWXYZ")
    if a.ndim + b.ndim > len(letters):
        raise ValueError("tensordot supports up to 52 dims")
    a_labels = letters[:a.ndim]
    b_labels = letters[a.ndim:a.ndim + b.ndim]
    for ai, bi in zip(a_axes, b_axes):
        b_labels[bi] = a_labels[ai]
    out_labels = [a_labels[i] for i in a_remain] + [b_labels[i] for i in b_remain]
    formula = "".join(a_labels) + "," + "".join(b_labels) + "->" + "".join(out_labels)
    return Tensor.einsum(formula, a, b)


def numel(x: Tensor) -> int:
    val = x.numel()
    return int(val) if not isinstance(val, int) else val


def pad(x: Tensor, padding, value: float = 0.0):
    return x.pad(tuple(tuple(p) for p in padding), value=value)
