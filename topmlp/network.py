from dataclasses import dataclass
from typing import Iterable, Optional, Sequence, Tuple

ACTIVATIONS = ("relu", "sigmoid")


@dataclass(frozen=True)
class LayerSpec:
    size: int
    activation: Optional[str] = None


@dataclass(frozen=True)
class LayerDescriptor:
    """Handle for one trainable layer inside the flat parameter buffers.

    index 0 is the first hidden layer, the last index is the output layer.
    The weight matrix is stored row-major with shape (out_dim, in_dim).
    """

    index: int
    in_dim: int
    out_dim: int
    activation: str
    weight_offset: int
    bias_offset: int

    @property
    def weight_size(self) -> int:
        return self.in_dim * self.out_dim

    @property
    def bias_size(self) -> int:
        return self.out_dim

    @property
    def weight_slice(self) -> slice:
        return slice(self.weight_offset, self.weight_offset + self.weight_size)

    @property
    def bias_slice(self) -> slice:
        return slice(self.bias_offset, self.bias_offset + self.bias_size)

    @property
    def fan_in(self) -> int:
        return self.in_dim

    @property
    def fan_out(self) -> int:
        return self.out_dim


class NetworkLayout:
    """Ordered layer sequence plus the offsets of every layer's parameters."""

    def __init__(self, specs: Sequence[LayerSpec]):
        specs = tuple(specs)
        if len(specs) < 2:
            raise ValueError("network needs an input layer and at least one trainable layer")
        for spec in specs:
            if int(spec.size) <= 0:
                raise ValueError(f"layer sizes must be positive, got {spec.size}")
        if specs[0].activation is not None:
            raise ValueError("input layer takes no activation")
        for spec in specs[1:-1]:
            if spec.activation != "relu":
                raise ValueError(f"hidden layers must use relu, got {spec.activation!r}")
        if specs[-1].activation != "sigmoid":
            raise ValueError(f"output layer must use sigmoid, got {specs[-1].activation!r}")

        self.specs = specs
        self.layers = self._describe(specs)
        self.weight_count = sum(d.weight_size for d in self.layers)
        self.bias_count = sum(d.bias_size for d in self.layers)

    @staticmethod
    def _describe(specs) -> Tuple[LayerDescriptor, ...]:
        layers = []
        weight_offset = 0
        bias_offset = 0
        for i in range(1, len(specs)):
            desc = LayerDescriptor(
                index=i - 1,
                in_dim=int(specs[i - 1].size),
                out_dim=int(specs[i].size),
                activation=specs[i].activation,
                weight_offset=weight_offset,
                bias_offset=bias_offset,
            )
            weight_offset += desc.weight_size
            bias_offset += desc.bias_size
            layers.append(desc)
        return tuple(layers)

    @classmethod
    def from_sizes(cls, sizes: Iterable[int]) -> "NetworkLayout":
        """Input layer, relu hidden layers, sigmoid output layer."""
        sizes = [int(s) for s in sizes]
        if len(sizes) < 2:
            raise ValueError("need at least input and output sizes")
        specs = [LayerSpec(sizes[0])]
        specs += [LayerSpec(s, "relu") for s in sizes[1:-1]]
        specs.append(LayerSpec(sizes[-1], "sigmoid"))
        return cls(specs)

    @property
    def sizes(self) -> Tuple[int, ...]:
        return tuple(int(s.size) for s in self.specs)

    @property
    def input_dim(self) -> int:
        return int(self.specs[0].size)

    @property
    def output_dim(self) -> int:
        return int(self.specs[-1].size)

    @property
    def output(self) -> LayerDescriptor:
        return self.layers[-1]

    def __len__(self):
        return len(self.layers)

    def __iter__(self):
        return iter(self.layers)

    def __getitem__(self, index) -> LayerDescriptor:
        return self.layers[index]

    def __repr__(self):
        return f"NetworkLayout(sizes={self.sizes}, weights={self.weight_count}, biases={self.bias_count})"
