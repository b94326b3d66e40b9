import triton
import triton.language as tl

from ._common import (
    _BLOCK_SIZE,
    _GRAD_BLOCK_M,
    _GRAD_BLOCK_N,
    _numel,
    _require_2d,
    _require_contiguous,
)


@triton.jit
def _bias_grad_kernel(
    delta_ptr,
    grad_ptr,
    b_offset,
    n_rows,
    n_cols,
    stride_dm,
    BLOCK_M: tl.constexpr,
    BLOCK_N: tl.constexpr,
):
    # Sum each column of delta over the batch.
    pid_n = tl.program_id(0)
    offs_n = pid_n * BLOCK_N + tl.arange(0, BLOCK_N)
    offs_m = tl.arange(0, BLOCK_M)
    mask_n = offs_n < n_cols

    acc = tl.zeros((BLOCK_M, BLOCK_N), dtype=tl.float32)
    for m in range(0, n_rows, BLOCK_M):
        m_idx = m + offs_m
        mask = (m_idx[:, None] < n_rows) & mask_n[None, :]
        d = tl.load(
            delta_ptr + m_idx[:, None] * stride_dm + offs_n[None, :],
            mask=mask,
            other=0.0,
        )
        acc += d

    total = tl.sum(acc, axis=0)
    tl.store(grad_ptr + b_offset + offs_n, total, mask=mask_n)


@triton.jit
def _weight_grad_kernel(
    x_ptr,
    delta_ptr,
    w_ptr,
    grad_ptr,
    w_offset,
    n_rows,
    in_dim,
    out_dim,
    stride_xm,
    stride_dm,
    l2_lambda,
    BLOCK_O: tl.constexpr,
    BLOCK_K: tl.constexpr,
):
    # One program per (output-unit block, input-unit block) tile of w.
    pid_o = tl.program_id(0)
    pid_k = tl.program_id(1)
    offs_o = pid_o * BLOCK_O + tl.arange(0, BLOCK_O)
    offs_k = pid_k * BLOCK_K + tl.arange(0, BLOCK_K)
    mask_o = offs_o < out_dim
    mask_k = offs_k < in_dim
    mask = mask_o[:, None] & mask_k[None, :]

    acc = tl.zeros((BLOCK_O, BLOCK_K), dtype=tl.float32)
    for i in range(0, n_rows):
        d = tl.load(delta_ptr + i * stride_dm + offs_o, mask=mask_o, other=0.0)
        x = tl.load(x_ptr + i * stride_xm + offs_k, mask=mask_k, other=0.0)
        acc += d[:, None] * x[None, :]

    tile = w_offset + offs_o[:, None] * in_dim + offs_k[None, :]
    w = tl.load(w_ptr + tile, mask=mask, other=0.0)
    acc += w * l2_lambda
    tl.store(grad_ptr + tile, acc, mask=mask)


@triton.jit
def _apply_update_kernel(p_ptr, g_ptr, n_elements, scale, BLOCK_SIZE: tl.constexpr):
    # p += g * scale over a flat buffer.
    pid = tl.program_id(0)
    offs = pid * BLOCK_SIZE + tl.arange(0, BLOCK_SIZE)
    mask = offs < n_elements
    p = tl.load(p_ptr + offs, mask=mask, other=0.0)
    g = tl.load(g_ptr + offs, mask=mask, other=0.0)
    tl.store(p_ptr + offs, p + g * scale, mask=mask)


def _bias_grad(delta, bias_grads, layer):
    _require_2d(delta, "delta")
    _require_contiguous(delta)
    _require_contiguous(bias_grads)
    if delta.shape[1] != layer.out_dim:
        raise ValueError(f"delta width {delta.shape[1]} != {layer.out_dim}")
    n_rows, n_cols = delta.shape
    grid = (triton.cdiv(n_cols, _GRAD_BLOCK_N),)
    _bias_grad_kernel[grid](
        delta,
        bias_grads,
        layer.bias_offset,
        n_rows,
        n_cols,
        delta.stride(0),
        BLOCK_M=_GRAD_BLOCK_M,
        BLOCK_N=_GRAD_BLOCK_N,
    )
    return bias_grads


def _weight_grad(x, delta, weights, weight_grads, layer, l2_lambda):
    _require_2d(x, "input activation")
    _require_2d(delta, "delta")
    _require_contiguous(x)
    _require_contiguous(delta)
    _require_contiguous(weights)
    _require_contiguous(weight_grads)
    if x.shape[1] != layer.in_dim or delta.shape[1] != layer.out_dim:
        raise ValueError("weight grad shape mismatch")
    if x.shape[0] != delta.shape[0]:
        raise ValueError("batch size mismatch between input and delta")

    grid = (
        triton.cdiv(layer.out_dim, _GRAD_BLOCK_M),
        triton.cdiv(layer.in_dim, _GRAD_BLOCK_N),
    )
    _weight_grad_kernel[grid](
        x,
        delta,
        weights,
        weight_grads,
        layer.weight_offset,
        x.shape[0],
        layer.in_dim,
        layer.out_dim,
        x.stride(0),
        delta.stride(0),
        float(l2_lambda),
        BLOCK_O=_GRAD_BLOCK_M,
        BLOCK_K=_GRAD_BLOCK_N,
    )
    return weight_grads


def _apply_update(params, grads, scale):
    _require_contiguous(params)
    _require_contiguous(grads)
    if params.shape != grads.shape:
        raise ValueError("update expects matching shapes")
    n_elements = _numel(params.shape)
    if n_elements == 0:
        return params
    blocks = triton.cdiv(n_elements, _BLOCK_SIZE)
    _apply_update_kernel[(blocks,)](
        params, grads, n_elements, float(scale), BLOCK_SIZE=_BLOCK_SIZE
    )
    return params


__all__ = [
    "_bias_grad",
    "_weight_grad",
    "_apply_update",
    "_bias_grad_kernel",
    "_weight_grad_kernel",
    "_apply_update_kernel",
]
