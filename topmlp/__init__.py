from topmlp.backend import (
    NumpyBackend,
    TritonBackend,
    available_backends,
    get_backend,
    set_backend,
)
from topmlp.config import TrainConfig
from topmlp.errors import AcceleratorError, DatasetUnavailableError, TopMLPError
from topmlp.initializers import glorot_normal_
from topmlp.network import LayerDescriptor, LayerSpec, NetworkLayout
from topmlp.params import ParameterStore, Workspace
from topmlp.trainer import BatchWindow, EpochResult, Trainer

__all__ = [
    "AcceleratorError",
    "BatchWindow",
    "DatasetUnavailableError",
    "EpochResult",
    "LayerDescriptor",
    "LayerSpec",
    "NetworkLayout",
    "NumpyBackend",
    "ParameterStore",
    "TopMLPError",
    "TrainConfig",
    "Trainer",
    "TritonBackend",
    "Workspace",
    "available_backends",
    "get_backend",
    "glorot_normal_",
    "set_backend",
]
