import triton
import triton.language as tl

from ._common import (
    _ACT_RELU,
    _DENSE_BLOCK_K,
    _DENSE_BLOCK_N,
    _activation_id,
    _require_2d,
    _require_contiguous,
)


@triton.jit
def _dense_forward_kernel(
    x_ptr,
    w_ptr,
    b_ptr,
    out_ptr,
    w_offset,
    b_offset,
    in_dim,
    out_dim,
    stride_xm,
    stride_outm,
    ACTIVATION: tl.constexpr,
    BLOCK_N: tl.constexpr,
    BLOCK_K: tl.constexpr,
):
    # One program per (sample, block of output units); w is (out_dim, in_dim).
    row = tl.program_id(0)
    pid_n = tl.program_id(1)
    offs_n = pid_n * BLOCK_N + tl.arange(0, BLOCK_N)
    offs_k = tl.arange(0, BLOCK_K)
    mask_n = offs_n < out_dim

    x_row = x_ptr + row * stride_xm
    w_base = w_ptr + w_offset

    acc = tl.zeros((BLOCK_N, BLOCK_K), dtype=tl.float32)
    for k in range(0, in_dim, BLOCK_K):
        k_idx = k + offs_k
        mask_k = k_idx < in_dim
        x = tl.load(x_row + k_idx, mask=mask_k, other=0.0)
        w = tl.load(
            w_base + offs_n[:, None] * in_dim + k_idx[None, :],
            mask=mask_n[:, None] & mask_k[None, :],
            other=0.0,
        )
        acc += w * x[None, :]

    z = tl.sum(acc, axis=1)
    z += tl.load(b_ptr + b_offset + offs_n, mask=mask_n, other=0.0)
    if ACTIVATION == _ACT_RELU:
        y = tl.maximum(z, 0.0)
    else:
        y = 1.0 / (1.0 + tl.exp(-z))
    tl.store(out_ptr + row * stride_outm + offs_n, y, mask=mask_n)


@triton.jit
def _relu_backward_kernel(
    delta_ptr,
    w_ptr,
    act_ptr,
    out_ptr,
    w_offset,
    cur_dim,
    next_dim,
    stride_dm,
    stride_am,
    stride_outm,
    BLOCK_N: tl.constexpr,
    BLOCK_J: tl.constexpr,
):
    # One program per (sample, block of current units); w is (next_dim, cur_dim).
    row = tl.program_id(0)
    pid_n = tl.program_id(1)
    offs_n = pid_n * BLOCK_N + tl.arange(0, BLOCK_N)
    offs_j = tl.arange(0, BLOCK_J)
    mask_n = offs_n < cur_dim

    d_row = delta_ptr + row * stride_dm
    w_base = w_ptr + w_offset

    acc = tl.zeros((BLOCK_J, BLOCK_N), dtype=tl.float32)
    for j in range(0, next_dim, BLOCK_J):
        j_idx = j + offs_j
        mask_j = j_idx < next_dim
        d = tl.load(d_row + j_idx, mask=mask_j, other=0.0)
        w = tl.load(
            w_base + j_idx[:, None] * cur_dim + offs_n[None, :],
            mask=mask_j[:, None] & mask_n[None, :],
            other=0.0,
        )
        acc += w * d[:, None]

    dz = tl.sum(acc, axis=0)
    # Reuse the stored forward activation for the derivative.
    a = tl.load(act_ptr + row * stride_am + offs_n, mask=mask_n, other=0.0)
    out = tl.where(a > 0, dz, 0.0)
    tl.store(out_ptr + row * stride_outm + offs_n, out, mask=mask_n)


def _dense_forward(x, weights, biases, layer, out):
    _require_2d(x, "dense input")
    _require_2d(out, "dense output")
    _require_contiguous(x)
    _require_contiguous(out)
    _require_contiguous(weights)
    _require_contiguous(biases)
    activation = _activation_id(layer.activation)

    n_rows = x.shape[0]
    if n_rows == 0:
        return out
    grid = (n_rows, triton.cdiv(layer.out_dim, _DENSE_BLOCK_N))
    _dense_forward_kernel[grid](
        x,
        weights,
        biases,
        out,
        layer.weight_offset,
        layer.bias_offset,
        layer.in_dim,
        layer.out_dim,
        x.stride(0),
        out.stride(0),
        ACTIVATION=activation,
        BLOCK_N=_DENSE_BLOCK_N,
        BLOCK_K=_DENSE_BLOCK_K,
    )
    return out


def _relu_backward(next_delta, weights, layer, activation, out):
    _require_2d(next_delta, "next delta")
    _require_2d(activation, "activation")
    _require_contiguous(next_delta)
    _require_contiguous(activation)
    _require_contiguous(out)
    _require_contiguous(weights)

    n_rows = next_delta.shape[0]
    if n_rows == 0:
        return out
    grid = (n_rows, triton.cdiv(layer.in_dim, _DENSE_BLOCK_N))
    _relu_backward_kernel[grid](
        next_delta,
        weights,
        activation,
        out,
        layer.weight_offset,
        layer.in_dim,
        layer.out_dim,
        next_delta.stride(0),
        activation.stride(0),
        out.stride(0),
        BLOCK_N=_DENSE_BLOCK_N,
        BLOCK_J=_DENSE_BLOCK_K,
    )
    return out


__all__ = [
    "_dense_forward",
    "_relu_backward",
    "_dense_forward_kernel",
    "_relu_backward_kernel",
]
