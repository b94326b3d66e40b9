import torch
import triton
import triton.language as tl

_BLOCK_SIZE = 1024
_DENSE_BLOCK_N = 32
_DENSE_BLOCK_K = 64
_GRAD_BLOCK_M = 32
_GRAD_BLOCK_N = 32
_HITS_BLOCK_M = 64
_REDUCE_BLOCK = 1024
_MAX_CLASSES = 1024

# Activation selectors passed to kernels as constexpr.
_ACT_RELU = tl.constexpr(0)
_ACTIVATIONS = {"relu": 0, "sigmoid": 1}


def _numel(shape):
    # Compute total element count for an int or iterable shape.
    if isinstance(shape, int):
        return int(shape)
    numel = 1
    for dim in shape:
        numel *= int(dim)
    return numel


def _require_contiguous(x):
    # Triton kernels assume contiguous layouts for simple pointer arithmetic.
    if not x.is_contiguous():
        raise ValueError("Triton backend expects contiguous tensors.")


def _require_2d(x, name):
    # Guard for kernels that operate on 2D matrices.
    if x.dim() != 2:
        raise ValueError(f"{name} must be 2D, got shape {tuple(x.shape)}")


def _activation_id(name):
    try:
        return _ACTIVATIONS[name]
    except KeyError:
        raise ValueError(f"unknown activation '{name}'") from None


@triton.jit
def _fill_const_kernel(out_ptr, n_elements, value, BLOCK_SIZE: tl.constexpr):
    # Fill a flat buffer with a constant value.
    pid = tl.program_id(0)
    offs = pid * BLOCK_SIZE + tl.arange(0, BLOCK_SIZE)
    mask = offs < n_elements
    tl.store(out_ptr + offs, value, mask=mask)


def _fill_(x, value):
    # In-place constant fill.
    _require_contiguous(x)
    n_elements = _numel(x.shape)
    if n_elements == 0:
        return x
    if x.dtype in (torch.int32, torch.int64):
        value = int(value)
    else:
        value = float(value)
    blocks = triton.cdiv(n_elements, _BLOCK_SIZE)
    _fill_const_kernel[(blocks,)](x, n_elements, value, BLOCK_SIZE=_BLOCK_SIZE)
    return x


__all__ = [
    "_BLOCK_SIZE",
    "_DENSE_BLOCK_N",
    "_DENSE_BLOCK_K",
    "_GRAD_BLOCK_M",
    "_GRAD_BLOCK_N",
    "_HITS_BLOCK_M",
    "_REDUCE_BLOCK",
    "_MAX_CLASSES",
    "_ACT_RELU",
    "_activation_id",
    "_numel",
    "_require_contiguous",
    "_require_2d",
    "_fill_",
    "_fill_const_kernel",
]
