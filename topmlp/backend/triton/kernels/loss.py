import torch
import triton
import triton.language as tl

from ._common import _BLOCK_SIZE, _numel, _require_contiguous


@triton.jit
def _output_delta_kernel(
    pred_ptr, labels_ptr, out_ptr, n_elements, eps, BLOCK_SIZE: tl.constexpr
):
    pid = tl.program_id(0)
    offs = pid * BLOCK_SIZE + tl.arange(0, BLOCK_SIZE)
    mask = offs < n_elements
    p = tl.load(pred_ptr + offs, mask=mask, other=0.5)
    y = tl.load(labels_ptr + offs, mask=mask, other=0.0)
    s = p * (1.0 - p)
    # Clamp the BCE denominator into [eps, 1 - eps]; the sigmoid factor is not clamped.
    clipped = tl.minimum(tl.maximum(s, eps), 1.0 - eps)
    out = ((y - p) / clipped) * s
    tl.store(out_ptr + offs, out, mask=mask)


def _output_delta(pred, labels, out, eps):
    _require_contiguous(pred)
    _require_contiguous(labels)
    _require_contiguous(out)
    if pred.shape != labels.shape or pred.shape != out.shape:
        raise ValueError("output delta expects matching shapes")
    if labels.dtype != torch.float32:
        raise ValueError(f"labels must be float32 one-hot, got {labels.dtype}")
    n_elements = _numel(pred.shape)
    if n_elements == 0:
        return out
    blocks = triton.cdiv(n_elements, _BLOCK_SIZE)
    _output_delta_kernel[(blocks,)](
        pred, labels, out, n_elements, eps, BLOCK_SIZE=_BLOCK_SIZE
    )
    return out


__all__ = [
    "_output_delta",
    "_output_delta_kernel",
]
