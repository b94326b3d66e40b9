import logging
import time
from collections import defaultdict
from dataclasses import dataclass
from enum import Enum

import numpy as np
from tqdm import tqdm

from topmlp.backend import get_backend
from topmlp.network import NetworkLayout
from topmlp.params import ParameterStore, Workspace

logger = logging.getLogger(__name__)


class Phase(Enum):
    IDLE = "idle"
    FORWARD = "forward"
    BACKWARD = "backward"
    UPDATE = "update"


@dataclass(frozen=True)
class BatchWindow:
    """Row range of a dataset buffer; owns no memory."""

    offset: int
    size: int

    def rows(self, array):
        return array[self.offset : self.offset + self.size]


@dataclass(frozen=True)
class EpochResult:
    epoch: int
    hits: int
    total: int
    accuracy: float
    seconds: float


def _as_float32(a):
    return np.ascontiguousarray(a, dtype=np.float32)


def batch_windows(start, count, batch_size, drop_last=True):
    windows = []
    offset = start
    end = start + count
    while offset < end:
        size = min(batch_size, end - offset)
        if size < batch_size and drop_last:
            break
        windows.append(BatchWindow(offset, size))
        offset += size
    return windows


class Trainer:
    """Chains the per-layer kernels into training steps, epochs and evaluation passes.

    Every step runs forward (input -> output), backward (output delta, then
    relu deltas toward the input, gradients into the mirrors from the
    outermost layer inward), a fence, then one in-place update of the flat
    weight and bias buffers.
    """

    def __init__(
        self,
        layout: NetworkLayout,
        store: ParameterStore = None,
        backend=None,
        batch_size=32,
        learning_rate=0.001,
        l2_lambda=0.7,
    ):
        self.backend = backend if backend is not None else get_backend()
        self.layout = layout
        self.store = store if store is not None else ParameterStore(layout, self.backend)
        if self.store.layout is not layout:
            raise ValueError("parameter store was built for a different layout")
        self.batch_size = int(batch_size)
        self.learning_rate = float(learning_rate)
        self.l2_lambda = float(l2_lambda)
        self.workspace = Workspace(layout, self.batch_size, self.backend)

        self.x = self.y = None
        self.eval_x = self.eval_y = None
        self.train_windows = []
        self.eval_windows = []

        self.callbacks = defaultdict(list)
        self._phase = Phase.IDLE

    def add_callback(self, event, callback):
        self.callbacks[event].append(callback)

    def trigger_callbacks(self, onevent, *args):
        for callback in self.callbacks.get(onevent, []):
            callback(self, *args)

    # data

    def set_data(self, x, y, eval_size, eval_x=None, eval_y=None):
        """Transfer the dataset to the device and lay out disjoint train/eval windows.

        Without eval_x/eval_y the first eval_size samples are held out and
        training uses the full batches after them.
        """
        x, y = _as_float32(x), _as_float32(y)
        self._check_dataset(x, y)
        if eval_size <= 0:
            raise ValueError(f"eval_size must be positive, got {eval_size}")
        self.x = self.backend.to_device(x)
        self.y = self.backend.to_device(y)

        if eval_x is None:
            if eval_size >= x.shape[0]:
                raise ValueError(f"eval_size {eval_size} leaves no training samples")
            self.eval_x, self.eval_y = self.x, self.y
            train_start = eval_size
        else:
            eval_x, eval_y = _as_float32(eval_x), _as_float32(eval_y)
            self._check_dataset(eval_x, eval_y)
            if eval_size > eval_x.shape[0]:
                raise ValueError(f"eval_size {eval_size} exceeds evaluation set {eval_x.shape[0]}")
            self.eval_x = self.backend.to_device(eval_x)
            self.eval_y = self.backend.to_device(eval_y)
            train_start = 0

        self.train_windows = batch_windows(
            train_start, x.shape[0] - train_start, self.batch_size
        )
        self.eval_windows = batch_windows(0, eval_size, self.batch_size, drop_last=False)
        if not self.train_windows:
            raise ValueError("dataset holds no full training batch")
        return self

    def _check_dataset(self, x, y):
        if x.ndim != 2 or x.shape[1] != self.layout.input_dim:
            raise ValueError(f"features must be (n, {self.layout.input_dim}), got {x.shape}")
        if y.ndim != 2 or y.shape != (x.shape[0], self.layout.output_dim):
            raise ValueError(f"labels must be ({x.shape[0]}, {self.layout.output_dim}), got {y.shape}")

    @property
    def eval_size(self):
        return sum(w.size for w in self.eval_windows)

    # one step

    def _enter(self, phase, *allowed):
        if self._phase not in allowed:
            raise RuntimeError(f"cannot run {phase.value} after {self._phase.value}")
        self._phase = phase

    def forward(self, x):
        """Run every layer in order; returns the output activation rows."""
        self._enter(Phase.FORWARD, Phase.IDLE, Phase.FORWARD, Phase.UPDATE)
        n_rows = x.shape[0]
        ws = self.workspace
        inp = x
        for layer in self.layout:
            out = ws.activation(layer.index, n_rows)
            self.backend.dense_forward(
                inp, self.store.device_weights, self.store.device_biases, layer, out
            )
            inp = out
        return inp

    def backward(self, x, y):
        """Output delta, relu deltas down to the first hidden layer, then gradients.

        Reads only pre-update weights; writes deltas and the gradient mirrors.
        """
        self._enter(Phase.BACKWARD, Phase.FORWARD)
        n_rows = x.shape[0]
        ws = self.workspace
        out = self.layout.output
        self.backend.output_delta(
            ws.activation(out.index, n_rows), y, ws.delta(out.index, n_rows)
        )
        for layer in reversed(self.layout.layers[1:]):
            below = layer.index - 1
            self.backend.relu_backward(
                ws.delta(layer.index, n_rows),
                self.store.device_weights,
                layer,
                ws.activation(below, n_rows),
                ws.delta(below, n_rows),
            )
        for layer in reversed(self.layout.layers):
            inp = x if layer.index == 0 else ws.activation(layer.index - 1, n_rows)
            delta = ws.delta(layer.index, n_rows)
            self.backend.bias_grad(delta, self.store.bias_grads, layer)
            self.backend.weight_grad(
                inp,
                delta,
                self.store.device_weights,
                self.store.weight_grads,
                layer,
                self.l2_lambda,
            )

    def update(self, n_rows):
        """Apply the accumulated gradients, averaged over n_rows and scaled by the learning rate."""
        self._enter(Phase.UPDATE, Phase.BACKWARD)
        self.backend.fence()
        scale = self.learning_rate / n_rows
        self.backend.apply_update(self.store.device_weights, self.store.weight_grads, scale)
        self.backend.apply_update(self.store.device_biases, self.store.bias_grads, scale)

    def train_step(self, window: BatchWindow):
        x = window.rows(self.x)
        y = window.rows(self.y)
        self.forward(x)
        self.backward(x, y)
        self.update(window.size)

    # epochs

    def evaluate(self):
        """Forward pass over the held-out windows; returns the hit count."""
        if self._phase is Phase.BACKWARD:
            raise RuntimeError("cannot evaluate with a pending update")
        ws = self.workspace
        ws.reset_counter()
        for window in self.eval_windows:
            pred = self.forward(window.rows(self.eval_x))
            self.backend.count_hits(pred, window.rows(self.eval_y), ws.counter)
        self._phase = Phase.IDLE
        return ws.read_counter()

    def run_epoch(self, epoch, progress=False):
        start = time.perf_counter()
        windows = tqdm(
            self.train_windows,
            desc=f"epoch {epoch}",
            leave=False,
            disable=not progress,
        )
        for window in windows:
            self.train_step(window)
            self.trigger_callbacks("on_batch_end", window)
        hits = self.evaluate()
        total = self.eval_size
        result = EpochResult(
            epoch=epoch,
            hits=hits,
            total=total,
            accuracy=hits / total,
            seconds=time.perf_counter() - start,
        )
        logger.info(
            "epoch %d | hits %d/%d | accuracy %.4f | %.2fs",
            epoch,
            hits,
            total,
            result.accuracy,
            result.seconds,
        )
        self.trigger_callbacks("on_epoch_end", result)
        return result

    def run(self, epochs, progress=False):
        if self.x is None:
            raise RuntimeError("call set_data() before run()")
        if not self.store.on_device:
            self.store.to_device()
        return [self.run_epoch(epoch, progress) for epoch in range(epochs)]

    def describe(self):
        """Buffer sizes and hyperparameters, for the startup report."""
        return {
            "sizes": self.layout.sizes,
            "weights": self.layout.weight_count,
            "biases": self.layout.bias_count,
            "parameter_bytes": self.store.nbytes(),
            "workspace_bytes": self.workspace.nbytes(),
            "batch_size": self.batch_size,
            "learning_rate": self.learning_rate,
            "l2_lambda": self.l2_lambda,
            "train_batches": len(self.train_windows),
            "eval_size": self.eval_size,
            "backend": self.backend.name,
        }

    def release(self):
        self.x = self.y = self.eval_x = self.eval_y = None
        self.workspace.release()
        self.store.release()
