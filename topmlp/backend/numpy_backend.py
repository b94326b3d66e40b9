import numpy as np

from .base import (
    EPSILON,
    Backend,
    check_backward_shapes,
    check_dense_shapes,
    check_same_shape,
)


class NumpyBackend(Backend):
    """Host reference backend. Buffers are float32 NumPy arrays."""

    name = "numpy"

    def empty(self, shape, dtype="float32"):
        return np.empty(shape, dtype=dtype)

    def zeros(self, shape, dtype="float32"):
        return np.zeros(shape, dtype=dtype)

    def to_device(self, host_array):
        return np.array(host_array, copy=True, order="C")

    def to_host(self, x):
        return np.array(x, copy=True)

    def copy_(self, dst, host_array):
        check_same_shape(dst, host_array, "copy")
        np.copyto(dst, host_array)
        return dst

    def fill_(self, x, value):
        x.fill(value)
        return x

    def dense_forward(self, x, weights, biases, layer, out):
        check_dense_shapes(x, out, layer)
        w = weights[layer.weight_slice].reshape(layer.out_dim, layer.in_dim)
        b = biases[layer.bias_slice]
        np.matmul(x, w.T, out=out)
        out += b
        if layer.activation == "relu":
            np.maximum(out, 0.0, out=out)
        elif layer.activation == "sigmoid":
            with np.errstate(over="ignore"):
                np.negative(out, out=out)
                np.exp(out, out=out)
                out += 1.0
                np.reciprocal(out, out=out)
        else:
            raise ValueError(f"unknown activation '{layer.activation}'")
        return out

    def output_delta(self, pred, labels, out):
        check_same_shape(pred, labels, "output delta")
        check_same_shape(pred, out, "output delta")
        s = pred * (1.0 - pred)
        clipped = np.clip(s, EPSILON, 1.0 - EPSILON)
        np.multiply((labels - pred) / clipped, s, out=out)
        return out

    def relu_backward(self, next_delta, weights, layer, activation, out):
        check_backward_shapes(next_delta, activation, out, layer)
        w = weights[layer.weight_slice].reshape(layer.out_dim, layer.in_dim)
        np.matmul(next_delta, w, out=out)
        out[activation <= 0] = 0.0
        return out

    def bias_grad(self, delta, bias_grads, layer):
        if delta.shape[1] != layer.out_dim:
            raise ValueError(f"delta width {delta.shape[1]} != {layer.out_dim}")
        np.sum(delta, axis=0, out=bias_grads[layer.bias_slice])
        return bias_grads

    def weight_grad(self, x, delta, weights, weight_grads, layer, l2_lambda):
        if x.shape[1] != layer.in_dim or delta.shape[1] != layer.out_dim:
            raise ValueError("weight grad shape mismatch")
        if x.shape[0] != delta.shape[0]:
            raise ValueError("batch size mismatch between input and delta")
        w = weights[layer.weight_slice].reshape(layer.out_dim, layer.in_dim)
        g = weight_grads[layer.weight_slice].reshape(layer.out_dim, layer.in_dim)
        np.matmul(delta.T, x, out=g)
        g += w * np.float32(l2_lambda)
        return weight_grads

    def apply_update(self, params, grads, scale):
        check_same_shape(params, grads, "update")
        params += grads * np.float32(scale)
        return params

    def count_hits(self, pred, labels, counter):
        check_same_shape(pred, labels, "accuracy")
        n_rows = pred.shape[0]
        if n_rows == 0:
            return counter
        # np.argmax keeps the first occurrence on ties.
        idx = np.argmax(pred, axis=1)
        hits = int(np.count_nonzero(labels[np.arange(n_rows), idx] == 1.0))
        counter[0] += hits
        return counter
