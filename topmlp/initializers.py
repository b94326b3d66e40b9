import numpy as np

from topmlp.params import ParameterStore


def glorot_std(fan_in, fan_out):
    return np.sqrt(2.0 / (fan_in + fan_out))


def glorot_normal_(store: ParameterStore, rng=None, dist="normal"):
    """Fill every weight matrix with zero-mean noise of variance 2 / (fan_in + fan_out).

    Biases are zeroed. Works on the host buffers; call store.to_device() after.
    dist="uniform" draws from U(-a, a) with a = sqrt(6 / (fan_in + fan_out)),
    which has the same variance.
    """
    if rng is None:
        rng = np.random.default_rng()
    for layer in store.layout:
        shape = (layer.out_dim, layer.in_dim)
        if dist == "normal":
            w = rng.standard_normal(shape) * glorot_std(layer.fan_in, layer.fan_out)
        elif dist == "uniform":
            upper = np.sqrt(6.0 / (layer.fan_in + layer.fan_out))
            w = rng.uniform(-upper, upper, size=shape)
        else:
            raise ValueError(f"unknown distribution '{dist}'")
        store.weights[layer.weight_slice] = w.astype(np.float32).reshape(-1)
    store.biases[:] = 0.0
    return store
