import torch
import triton
import triton.language as tl

from ._common import (
    _HITS_BLOCK_M,
    _MAX_CLASSES,
    _REDUCE_BLOCK,
    _require_2d,
    _require_contiguous,
)


@triton.jit
def _hits_partial_kernel(
    pred_ptr,
    labels_ptr,
    partial_ptr,
    n_rows,
    n_cols,
    stride_pm,
    stride_lm,
    BLOCK_M: tl.constexpr,
    BLOCK_C: tl.constexpr,
):
    # Map phase: each program counts hits for BLOCK_M rows into its own slot.
    pid = tl.program_id(0)
    offs_m = pid * BLOCK_M + tl.arange(0, BLOCK_M)
    offs_c = tl.arange(0, BLOCK_C)
    mask_m = offs_m < n_rows
    mask = mask_m[:, None] & (offs_c[None, :] < n_cols)

    p = tl.load(
        pred_ptr + offs_m[:, None] * stride_pm + offs_c[None, :],
        mask=mask,
        other=float("-inf"),
    )
    row_max = tl.max(p, axis=1)
    # Lowest index among the maxima.
    candidates = tl.where(p == row_max[:, None], offs_c[None, :], BLOCK_C)
    argmax = tl.min(candidates, axis=1)

    label = tl.load(
        labels_ptr + offs_m * stride_lm + argmax,
        mask=mask_m & (argmax < n_cols),
        other=0.0,
    )
    hit = (label == 1.0) & mask_m
    tl.store(partial_ptr + pid, tl.sum(hit.to(tl.int32), axis=0))


@triton.jit
def _hits_reduce_kernel(partial_ptr, counter_ptr, n_partials, BLOCK: tl.constexpr):
    # Reduce phase: a single program folds every partial into the counter.
    offs = tl.arange(0, BLOCK)
    acc = tl.zeros((BLOCK,), dtype=tl.int32)
    for start in range(0, n_partials, BLOCK):
        idx = start + offs
        acc += tl.load(partial_ptr + idx, mask=idx < n_partials, other=0)
    total = tl.sum(acc, axis=0)
    tl.store(counter_ptr, tl.load(counter_ptr) + total)


def _count_hits(pred, labels, counter):
    _require_2d(pred, "predictions")
    _require_2d(labels, "labels")
    _require_contiguous(pred)
    _require_contiguous(labels)
    _require_contiguous(counter)
    if pred.shape != labels.shape:
        raise ValueError("accuracy expects matching prediction/label shapes")
    if counter.dtype != torch.int32 or counter.numel() != 1:
        raise ValueError("counter must be a single int32 element")

    n_rows, n_cols = pred.shape
    if n_cols > _MAX_CLASSES:
        raise ValueError(f"at most {_MAX_CLASSES} classes supported, got {n_cols}")
    if n_rows == 0:
        return counter

    block_c = triton.next_power_of_2(n_cols)
    blocks = triton.cdiv(n_rows, _HITS_BLOCK_M)
    partials = torch.empty((blocks,), device=pred.device, dtype=torch.int32)
    _hits_partial_kernel[(blocks,)](
        pred,
        labels,
        partials,
        n_rows,
        n_cols,
        pred.stride(0),
        labels.stride(0),
        BLOCK_M=_HITS_BLOCK_M,
        BLOCK_C=block_c,
    )
    _hits_reduce_kernel[(1,)](partials, counter, blocks, BLOCK=_REDUCE_BLOCK)
    return counter


__all__ = [
    "_count_hits",
    "_hits_partial_kernel",
    "_hits_reduce_kernel",
]
