import numpy as np
import pytest

from topmlp.backend import NumpyBackend
from topmlp.network import NetworkLayout
from topmlp.params import ParameterStore
from topmlp.trainer import BatchWindow, Trainer, batch_windows

W0 = np.array([[0.1, 0.2], [-0.3, 0.1], [0.2, -0.1]], dtype=np.float32)
B0 = np.array([0.0, 0.2, -0.1], dtype=np.float32)
W1 = np.array([[0.3, -0.2, 0.5], [0.1, 0.4, -0.6]], dtype=np.float32)
B1 = np.array([0.05, -0.05], dtype=np.float32)
W2 = np.array([[0.7, -0.4], [-0.5, 0.9]], dtype=np.float32)
B2 = np.array([0.0, 0.1], dtype=np.float32)

X = np.array([[1.0, 2.0]], dtype=np.float32)
Y = np.array([[1.0, 0.0]], dtype=np.float32)


def sigmoid(z):
    return 1.0 / (1.0 + np.exp(-z))


def make_backend():
    return NumpyBackend()


def hand_network(backend, lr=0.5, l2=0.1):
    layout = NetworkLayout.from_sizes((2, 3, 2, 2))
    store = ParameterStore(layout, backend)
    for i, (w, b) in enumerate([(W0, B0), (W1, B1), (W2, B2)]):
        store.set_layer(i, weight=w, bias=b)
    store.to_device()
    trainer = Trainer(layout, store, backend, batch_size=1, learning_rate=lr, l2_lambda=l2)
    return trainer


def test_forward_matches_hand_computation():
    backend = make_backend()
    trainer = hand_network(backend)
    x = backend.to_device(X)
    trainer.forward(x)
    ws = trainer.workspace

    # z0 = [0.5, 0.1, -0.1]
    np.testing.assert_allclose(backend.to_host(ws.activation(0)), [[0.5, 0.1, 0.0]], atol=1e-5)
    # z1 = [0.15 - 0.02 + 0.05, 0.05 + 0.04 - 0.05]
    np.testing.assert_allclose(backend.to_host(ws.activation(1)), [[0.18, 0.04]], atol=1e-5)
    # z2 = [0.126 - 0.016, -0.09 + 0.036 + 0.1]
    np.testing.assert_allclose(
        backend.to_host(ws.activation(2)), [sigmoid(np.array([0.110, 0.046]))], atol=1e-5
    )


def test_backward_and_update_match_hand_gradients():
    lr, l2 = 0.5, 0.1
    backend = make_backend()
    trainer = hand_network(backend, lr=lr, l2=l2)
    x, y = backend.to_device(X), backend.to_device(Y)
    trainer.forward(x)
    trainer.backward(x, y)
    trainer.update(1)

    a0 = np.array([0.5, 0.1, 0.0])
    a1 = np.array([0.18, 0.04])
    p = sigmoid(np.array([0.110, 0.046]))
    # p(1-p) is far from the clamp, so the output delta is label - p.
    d2 = np.array([1.0, 0.0]) - p
    d1 = np.array([0.7 * d2[0] - 0.5 * d2[1], -0.4 * d2[0] + 0.9 * d2[1]])
    d0 = np.array([0.3 * d1[0] + 0.1 * d1[1], -0.2 * d1[0] + 0.4 * d1[1], 0.0])

    ws = trainer.workspace
    np.testing.assert_allclose(backend.to_host(ws.delta(2))[0], d2, atol=1e-5)
    np.testing.assert_allclose(backend.to_host(ws.delta(1))[0], d1, atol=1e-5)
    np.testing.assert_allclose(backend.to_host(ws.delta(0))[0], d0, atol=1e-5)

    store = trainer.store.to_host()
    expected = [
        (W0 + lr * (np.outer(d0, X[0]) + W0 * l2), B0 + lr * d0),
        (W1 + lr * (np.outer(d1, a0) + W1 * l2), B1 + lr * d1),
        (W2 + lr * (np.outer(d2, a1) + W2 * l2), B2 + lr * d2),
    ]
    for i, (w, b) in enumerate(expected):
        np.testing.assert_allclose(store.weight(i), w, atol=1e-5)
        np.testing.assert_allclose(store.bias(i), b, atol=1e-5)
    # The dead third hidden unit keeps its incoming weights apart from the l2 term.
    np.testing.assert_allclose(store.weight(0)[2], W0[2] * (1 + lr * l2), atol=1e-6)


def test_zero_learning_rate_is_idempotent():
    backend = make_backend()
    trainer = hand_network(backend, lr=0.0, l2=0.7)
    x, y = backend.to_device(X), backend.to_device(Y)
    before_w = trainer.store.device_weights.copy()
    before_b = trainer.store.device_biases.copy()
    for _ in range(3):
        trainer.forward(x)
        trainer.backward(x, y)
        trainer.update(1)
    np.testing.assert_array_equal(trainer.store.device_weights, before_w)
    np.testing.assert_array_equal(trainer.store.device_biases, before_b)


def _bce(p, y):
    return float(-(y * np.log(p) + (1 - y) * np.log(1 - p)).sum())


def test_single_hidden_unit_step_descends():
    backend = make_backend()
    layout = NetworkLayout.from_sizes((1, 1, 1))
    store = ParameterStore(layout, backend)
    store.set_layer(0, weight=[[0.5]], bias=[0.0])
    store.set_layer(1, weight=[[0.5]], bias=[0.0])
    store.to_device()
    trainer = Trainer(layout, store, backend, batch_size=1, learning_rate=0.1, l2_lambda=0.0)
    x = np.array([[1.0]], dtype=np.float32)
    y = np.array([[1.0]], dtype=np.float32)

    loss_before = _bce(trainer.forward(x).copy(), y)
    trainer.backward(x, y)
    trainer.update(1)
    loss_after = _bce(trainer.forward(x).copy(), y)

    # y = 1 and both activations positive: every gradient component is positive.
    assert store.device_weights[0] > 0.5 and store.device_weights[1] > 0.5
    assert store.device_biases[0] > 0 and store.device_biases[1] > 0
    assert loss_after < loss_before


def test_phases_must_run_in_order():
    backend = make_backend()
    trainer = hand_network(backend)
    x, y = backend.to_device(X), backend.to_device(Y)
    with pytest.raises(RuntimeError, match="backward"):
        trainer.backward(x, y)
    trainer.forward(x)
    with pytest.raises(RuntimeError, match="update"):
        trainer.update(1)
    trainer.backward(x, y)
    with pytest.raises(RuntimeError, match="forward"):
        trainer.forward(x)
    with pytest.raises(RuntimeError, match="pending update"):
        trainer.evaluate()
    trainer.update(1)
    trainer.forward(x)


def test_batch_windows():
    assert batch_windows(3, 10, 4) == [BatchWindow(3, 4), BatchWindow(7, 4)]
    assert batch_windows(0, 10, 4, drop_last=False)[-1] == BatchWindow(8, 2)
    assert batch_windows(0, 3, 4) == []
    window = BatchWindow(2, 3)
    np.testing.assert_array_equal(window.rows(np.arange(10)), [2, 3, 4])


def _separable(n, rng):
    # Class is the sign of the first feature.
    x = rng.standard_normal((n, 4)).astype(np.float32)
    labels = (x[:, 0] > 0).astype(np.int64)
    y = np.eye(2, dtype=np.float32)[labels]
    return x, y


def test_train_and_eval_windows_are_disjoint():
    backend = make_backend()
    layout = NetworkLayout.from_sizes((4, 8, 2))
    trainer = Trainer(layout, backend=backend, batch_size=8)
    x, y = _separable(100, np.random.default_rng(0))
    trainer.set_data(x, y, eval_size=20)

    eval_rows = {i for w in trainer.eval_windows for i in range(w.offset, w.offset + w.size)}
    train_rows = {i for w in trainer.train_windows for i in range(w.offset, w.offset + w.size)}
    assert eval_rows == set(range(20))
    assert not eval_rows & train_rows
    # 80 training samples -> 10 full batches; eval ends with a partial window.
    assert len(trainer.train_windows) == 10
    assert [w.size for w in trainer.eval_windows] == [8, 8, 4]
    assert trainer.eval_size == 20


def test_run_learns_separable_problem():
    from topmlp.initializers import glorot_normal_

    backend = make_backend()
    layout = NetworkLayout.from_sizes((4, 16, 8, 2))
    store = ParameterStore(layout, backend)
    glorot_normal_(store, np.random.default_rng(0))
    trainer = Trainer(layout, store, backend, batch_size=16, learning_rate=0.5, l2_lambda=0.0)
    x, y = _separable(1200, np.random.default_rng(1))
    trainer.set_data(x, y, eval_size=200)

    seen = []
    trainer.add_callback("on_epoch_end", lambda t, result: seen.append(result.epoch))
    batches = []
    trainer.add_callback("on_batch_end", lambda t, window: batches.append(window))

    results = trainer.run(epochs=10)
    assert seen == list(range(10))
    assert len(batches) == 10 * len(trainer.train_windows)
    assert all(r.total == 200 for r in results)
    assert results[-1].hits == round(results[-1].accuracy * 200)
    assert results[-1].accuracy > 0.9


def test_separate_eval_set():
    backend = make_backend()
    layout = NetworkLayout.from_sizes((4, 8, 2))
    trainer = Trainer(layout, backend=backend, batch_size=10)
    x, y = _separable(50, np.random.default_rng(0))
    ex, ey = _separable(30, np.random.default_rng(1))
    trainer.set_data(x, y, eval_size=25, eval_x=ex, eval_y=ey)
    assert trainer.train_windows[0].offset == 0
    assert len(trainer.train_windows) == 5
    assert trainer.eval_size == 25


def test_set_data_validation():
    backend = make_backend()
    trainer = Trainer(NetworkLayout.from_sizes((4, 8, 2)), backend=backend, batch_size=10)
    x, y = _separable(30, np.random.default_rng(0))
    with pytest.raises(ValueError):
        trainer.set_data(x[:, :3], y, eval_size=10)
    with pytest.raises(ValueError):
        trainer.set_data(x, y[:, :1], eval_size=10)
    with pytest.raises(ValueError, match="no full training batch"):
        trainer.set_data(x, y, eval_size=25)
    with pytest.raises(RuntimeError):
        Trainer(NetworkLayout.from_sizes((4, 8, 2)), backend=backend).run(1)


def test_describe_reports_buffers():
    backend = make_backend()
    trainer = hand_network(backend)
    info = trainer.describe()
    assert info["weights"] == 2 * 3 + 3 * 2 + 2 * 2
    assert info["biases"] == 3 + 2 + 2
    assert info["backend"] == "numpy"
    assert info["parameter_bytes"] == 2 * 4 * (16 + 7)
