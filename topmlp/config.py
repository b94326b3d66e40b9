from dataclasses import asdict, dataclass, fields
from typing import Optional, Tuple

import yaml


@dataclass
class TrainConfig:
    sizes: Tuple[int, ...] = (784, 256, 64, 10)
    epochs: int = 100
    batch_size: int = 32
    learning_rate: float = 0.001
    l2_lambda: float = 0.7
    dataset_size: int = 60000
    # Held-out samples taken from the front of the training file each epoch.
    eval_size: int = 96
    seed: int = 0
    backend: str = "triton"
    data_path: Optional[str] = None
    eval_data_path: Optional[str] = None
    normalize: bool = True
    progress: bool = True

    def __post_init__(self):
        self.sizes = tuple(int(s) for s in self.sizes)
        self.validate()

    def validate(self):
        if len(self.sizes) < 2 or any(s <= 0 for s in self.sizes):
            raise ValueError(f"sizes must be at least two positive ints, got {self.sizes}")
        for name in ("epochs", "batch_size", "dataset_size"):
            if getattr(self, name) <= 0:
                raise ValueError(f"{name} must be positive, got {getattr(self, name)}")
        if self.eval_size <= 0:
            raise ValueError(f"eval_size must be positive, got {self.eval_size}")
        if self.learning_rate < 0 or self.l2_lambda < 0:
            raise ValueError("learning_rate and l2_lambda must be non-negative")
        if self.eval_data_path is None and self.train_batches < 1:
            raise ValueError(
                f"eval_size={self.eval_size} leaves no full training batch of "
                f"{self.batch_size} in {self.dataset_size} samples"
            )

    @property
    def train_batches(self) -> int:
        held_out = 0 if self.eval_data_path else self.eval_size
        return (self.dataset_size - held_out) // self.batch_size

    @classmethod
    def from_dict(cls, data, **overrides):
        known = {f.name for f in fields(cls)}
        merged = dict(data or {})
        merged.update({k: v for k, v in overrides.items() if v is not None})
        unknown = sorted(set(merged) - known)
        if unknown:
            raise ValueError(f"unknown config keys: {', '.join(unknown)}")
        return cls(**merged)

    @classmethod
    def from_yaml(cls, path, **overrides):
        with open(path) as f:
            data = yaml.safe_load(f) or {}
        if not isinstance(data, dict):
            raise ValueError(f"{path}: expected a mapping at top level")
        return cls.from_dict(data, **overrides)

    def to_dict(self):
        out = asdict(self)
        out["sizes"] = list(self.sizes)
        return out
