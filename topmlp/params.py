import logging

import numpy as np

from topmlp.network import LayerDescriptor, NetworkLayout

logger = logging.getLogger(__name__)


class ParameterStore:
    """Flat weight/bias buffers with host and device mirrors.

    Host buffers are float32 NumPy arrays. Device buffers live on the
    backend and are the ones mutated during training; gradient mirrors use
    the same offsets as the parameters they update.
    """

    def __init__(self, layout: NetworkLayout, backend):
        self.layout = layout
        self.backend = backend
        self.weights = np.zeros(layout.weight_count, dtype=np.float32)
        self.biases = np.zeros(layout.bias_count, dtype=np.float32)
        self.device_weights = None
        self.device_biases = None
        self.weight_grads = None
        self.bias_grads = None

    def _layer(self, index) -> LayerDescriptor:
        return self.layout[index]

    def weight(self, index, device=False):
        """(out_dim, in_dim) view of one layer's weights."""
        layer = self._layer(index)
        flat = self.device_weights if device else self.weights
        return flat[layer.weight_slice].reshape(layer.out_dim, layer.in_dim)

    def bias(self, index, device=False):
        layer = self._layer(index)
        flat = self.device_biases if device else self.biases
        return flat[layer.bias_slice]

    def set_layer(self, index, weight=None, bias=None):
        """Write one layer's host weights and/or bias."""
        layer = self._layer(index)
        if weight is not None:
            weight = np.asarray(weight, dtype=np.float32)
            if weight.shape != (layer.out_dim, layer.in_dim):
                raise ValueError(
                    f"layer {index} weight must be {(layer.out_dim, layer.in_dim)}, got {weight.shape}"
                )
            self.weights[layer.weight_slice] = weight.reshape(-1)
        if bias is not None:
            bias = np.asarray(bias, dtype=np.float32)
            if bias.shape != (layer.out_dim,):
                raise ValueError(f"layer {index} bias must be ({layer.out_dim},), got {bias.shape}")
            self.biases[layer.bias_slice] = bias

    @property
    def on_device(self):
        return self.device_weights is not None

    def to_device(self):
        if self.on_device:
            self.backend.copy_(self.device_weights, self.weights)
            self.backend.copy_(self.device_biases, self.biases)
        else:
            self.device_weights = self.backend.to_device(self.weights)
            self.device_biases = self.backend.to_device(self.biases)
            self.weight_grads = self.backend.zeros(self.layout.weight_count)
            self.bias_grads = self.backend.zeros(self.layout.bias_count)
        return self

    def to_host(self):
        if not self.on_device:
            raise RuntimeError("parameters have not been transferred to the device")
        self.weights[:] = self.backend.to_host(self.device_weights)
        self.biases[:] = self.backend.to_host(self.device_biases)
        return self

    def release(self):
        self.device_weights = None
        self.device_biases = None
        self.weight_grads = None
        self.bias_grads = None
        self.backend.release()

    def nbytes(self):
        # Device footprint: parameters plus their gradient mirrors.
        return 2 * (self.weights.nbytes + self.biases.nbytes)


class Workspace:
    """Per-layer activation and delta buffers sized for one batch, plus the hit counter."""

    def __init__(self, layout: NetworkLayout, batch_size: int, backend):
        if batch_size <= 0:
            raise ValueError(f"batch_size must be positive, got {batch_size}")
        self.layout = layout
        self.batch_size = batch_size
        self.backend = backend
        self.activations = [backend.empty((batch_size, d.out_dim)) for d in layout]
        self.deltas = [backend.empty((batch_size, d.out_dim)) for d in layout]
        self.counter = backend.zeros((1,), dtype="int32")

    def activation(self, index, n_rows=None):
        return self._rows(self.activations[index], n_rows)

    def delta(self, index, n_rows=None):
        return self._rows(self.deltas[index], n_rows)

    def _rows(self, buf, n_rows):
        if n_rows is None or n_rows == self.batch_size:
            return buf
        if not 0 <= n_rows <= self.batch_size:
            raise ValueError(f"window of {n_rows} rows exceeds batch size {self.batch_size}")
        return buf[:n_rows]

    def reset_counter(self):
        self.backend.fill_(self.counter, 0)

    def read_counter(self) -> int:
        return int(self.backend.to_host(self.counter)[0])

    def nbytes(self):
        per_row = sum(d.out_dim for d in self.layout) * 4
        return 2 * per_row * self.batch_size + 4

    def release(self):
        self.activations = []
        self.deltas = []
        self.counter = None
