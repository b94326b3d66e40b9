import numpy as np
import torch

from topmlp.errors import accelerator_call

from .base import EPSILON, Backend, check_backward_shapes, check_dense_shapes


class TritonBackend(Backend):
    """CUDA backend: buffers are guarded torch tensors, compute is Triton kernels."""

    name = "triton"

    def __init__(self, device="cuda"):
        try:
            import triton  # noqa: F401
            import triton.language as tl  # noqa: F401
        except Exception as exc:
            raise RuntimeError(
                "Triton backend requires Triton to be installed"
            ) from exc
        if not torch.cuda.is_available():
            raise RuntimeError("Triton backend requires CUDA to be available")
        super().__init__()
        self.device = torch.device(device)

        from .triton import kernels
        from .triton.data import DeviceTensor, raw

        self._k = kernels
        self._wrap = DeviceTensor
        self._raw = raw

    def _normalize_dtype(self, dtype):
        if dtype is None:
            return torch.float32
        if isinstance(dtype, torch.dtype):
            return dtype
        mapping = {
            np.dtype(np.float32): torch.float32,
            np.dtype(np.int32): torch.int32,
        }
        np_dtype = np.dtype(dtype)
        if np_dtype not in mapping:
            raise ValueError(f"unsupported dtype {np_dtype}")
        return mapping[np_dtype]

    @accelerator_call("allocate")
    def empty(self, shape, dtype="float32"):
        dtype = self._normalize_dtype(dtype)
        return self._wrap(torch.empty(shape, dtype=dtype, device=self.device))

    @accelerator_call("allocate")
    def zeros(self, shape, dtype="float32"):
        out = self.empty(shape, dtype)
        return self._k._fill_(out, 0)

    @accelerator_call("host_to_device")
    def to_device(self, host_array):
        host_array = np.ascontiguousarray(host_array)
        t = torch.from_numpy(host_array).to(self.device)
        if not t.is_contiguous():
            t = t.contiguous()
        return self._wrap(t)

    @accelerator_call("device_to_host")
    def to_host(self, x):
        return self._raw(x).detach().cpu().numpy()

    @accelerator_call("host_to_device")
    def copy_(self, dst, host_array):
        src = torch.from_numpy(np.ascontiguousarray(host_array))
        if tuple(src.shape) != tuple(dst.shape):
            raise ValueError(
                f"copy shape mismatch: {tuple(dst.shape)} vs {tuple(src.shape)}"
            )
        self._raw(dst).copy_(src)
        return dst

    @accelerator_call("fill")
    def fill_(self, x, value):
        return self._k._fill_(x, value)

    @accelerator_call("fence")
    def fence(self):
        # Single stream: the event marks the point every update must follow.
        event = torch.cuda.Event()
        event.record()
        torch.cuda.current_stream(self.device).wait_event(event)

    @accelerator_call("synchronize")
    def synchronize(self):
        torch.cuda.synchronize(self.device)

    @accelerator_call("free")
    def release(self):
        torch.cuda.synchronize(self.device)
        torch.cuda.empty_cache()

    @accelerator_call("dense_forward")
    def dense_forward(self, x, weights, biases, layer, out):
        check_dense_shapes(x, out, layer)
        return self._k._dense_forward(x, weights, biases, layer, out)

    @accelerator_call("output_delta")
    def output_delta(self, pred, labels, out):
        return self._k._output_delta(pred, labels, out, EPSILON)

    @accelerator_call("relu_backward")
    def relu_backward(self, next_delta, weights, layer, activation, out):
        check_backward_shapes(next_delta, activation, out, layer)
        return self._k._relu_backward(next_delta, weights, layer, activation, out)

    @accelerator_call("bias_grad")
    def bias_grad(self, delta, bias_grads, layer):
        return self._k._bias_grad(delta, bias_grads, layer)

    @accelerator_call("weight_grad")
    def weight_grad(self, x, delta, weights, weight_grads, layer, l2_lambda):
        return self._k._weight_grad(x, delta, weights, weight_grads, layer, l2_lambda)

    @accelerator_call("apply_update")
    def apply_update(self, params, grads, scale):
        return self._k._apply_update(params, grads, scale)

    @accelerator_call("count_hits")
    def count_hits(self, pred, labels, counter):
        return self._k._count_hits(pred, labels, counter)
