from typing import Iterable, Union

from topmlp.network import LayerDescriptor

# Lower clamp for p * (1 - p) in the output delta; the upper clamp is 1 - EPSILON.
EPSILON = 1e-7


class Backend:
    """Backend interface: every buffer op and kernel the trainer launches lives here.

    Buffers are 1D flat (parameters, gradients) or 2D row-major with the
    batch as the outer index (activations, deltas, labels). Kernels write
    into caller-provided outputs; nothing is allocated per batch.
    """

    name = "base"

    # memory

    def empty(self, shape: Union[int, Iterable[int]], dtype="float32"):
        # Used by Workspace and ParameterStore for buffers fully overwritten later.
        raise NotImplementedError

    def zeros(self, shape: Union[int, Iterable[int]], dtype="float32"):
        # Used by ParameterStore for gradient mirrors and by Workspace for the counter.
        raise NotImplementedError

    def to_device(self, host_array):
        # Synchronous host -> device copy of a NumPy array.
        raise NotImplementedError

    def to_host(self, x):
        # Synchronous device -> host copy, returns a NumPy array.
        raise NotImplementedError

    def copy_(self, dst, host_array):
        # Overwrite an existing device buffer from the host, in place.
        raise NotImplementedError

    def fill_(self, x, value):
        # Used to reset the accuracy counter and gradient mirrors.
        raise NotImplementedError

    def fence(self):
        # Ordering point between the backward and update phases.
        pass

    def synchronize(self):
        # Block the host until all queued device work is done.
        pass

    def release(self):
        # Return cached device memory once buffers have been dropped.
        pass

    # kernels

    def dense_forward(self, x, weights, biases, layer: LayerDescriptor, out):
        # out[i, o] = act(bias[o] + sum_k x[i, k] * w[o, k]) for layer.activation.
        raise NotImplementedError

    def output_delta(self, pred, labels, out):
        # Clamped binary cross-entropy x sigmoid derivative error signal.
        raise NotImplementedError

    def relu_backward(self, next_delta, weights, layer: LayerDescriptor, activation, out):
        # out[i, c] = (activation[i, c] > 0) * sum_j w[j, c] * next_delta[i, j]
        # where layer is the descriptor of the matrix mapping c -> j.
        raise NotImplementedError

    def bias_grad(self, delta, bias_grads, layer: LayerDescriptor):
        # bias_grads[layer][o] = sum_i delta[i, o]
        raise NotImplementedError

    def weight_grad(self, x, delta, weights, weight_grads, layer: LayerDescriptor, l2_lambda):
        # weight_grads[layer][o, k] = sum_i x[i, k] * delta[i, o] + w[o, k] * l2_lambda
        raise NotImplementedError

    def apply_update(self, params, grads, scale):
        # params += grads * scale, elementwise over flat buffers.
        raise NotImplementedError

    def count_hits(self, pred, labels, counter):
        # counter[0] += number of rows whose argmax lands on a label equal to 1.
        raise NotImplementedError


def check_dense_shapes(x, out, layer: LayerDescriptor):
    if len(x.shape) != 2 or len(out.shape) != 2:
        raise ValueError("dense forward expects 2D input and output")
    if x.shape[1] != layer.in_dim:
        raise ValueError(f"input width {x.shape[1]} != layer in_dim {layer.in_dim}")
    if out.shape != (x.shape[0], layer.out_dim):
        raise ValueError(
            f"output shape {tuple(out.shape)} != {(x.shape[0], layer.out_dim)}"
        )


def check_same_shape(a, b, what):
    if tuple(a.shape) != tuple(b.shape):
        raise ValueError(f"{what} shape mismatch: {tuple(a.shape)} vs {tuple(b.shape)}")


def check_backward_shapes(next_delta, activation, out, layer: LayerDescriptor):
    if next_delta.shape[1] != layer.out_dim:
        raise ValueError(f"next delta width {next_delta.shape[1]} != {layer.out_dim}")
    if activation.shape[1] != layer.in_dim:
        raise ValueError(f"activation width {activation.shape[1]} != {layer.in_dim}")
    if next_delta.shape[0] != activation.shape[0]:
        raise ValueError("batch size mismatch between delta and activation")
    check_same_shape(activation, out, "relu backward")
