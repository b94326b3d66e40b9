import pytest

from topmlp.network import LayerSpec, NetworkLayout


@pytest.mark.parametrize("sizes", [
    (784, 256, 64, 10),   # reference network
    (2, 3, 2, 2),         # hand-checkable network
    (1, 1, 1),            # single hidden unit
    (5, 7),               # no hidden layer
    (13, 8, 21, 3, 4),    # deeper than the reference
])
def test_offsets_partition_buffers(sizes):
    layout = NetworkLayout.from_sizes(sizes)

    assert len(layout) == len(sizes) - 1
    assert layout.weight_count == sum(a * b for a, b in zip(sizes, sizes[1:]))
    assert layout.bias_count == sum(sizes[1:])

    weight_end = 0
    bias_end = 0
    for i, layer in enumerate(layout):
        assert layer.index == i
        assert (layer.in_dim, layer.out_dim) == (sizes[i], sizes[i + 1])
        # contiguous, non-overlapping, in layer order
        assert layer.weight_offset == weight_end
        assert layer.bias_offset == bias_end
        weight_end += layer.weight_size
        bias_end += layer.bias_size
    assert weight_end == layout.weight_count
    assert bias_end == layout.bias_count


def test_reference_offsets():
    layout = NetworkLayout.from_sizes((784, 256, 64, 10))
    assert [d.weight_offset for d in layout] == [0, 784 * 256, 784 * 256 + 256 * 64]
    assert [d.bias_offset for d in layout] == [0, 256, 256 + 64]
    assert layout.weight_count == 784 * 256 + 256 * 64 + 64 * 10
    assert layout.bias_count == 256 + 64 + 10
    assert [d.activation for d in layout] == ["relu", "relu", "sigmoid"]
    assert layout.output.index == 2


def test_descriptor_slices():
    layout = NetworkLayout.from_sizes((2, 3, 2, 2))
    second = layout[1]
    assert second.weight_slice == slice(6, 12)
    assert second.bias_slice == slice(3, 5)
    assert (second.fan_in, second.fan_out) == (3, 2)


@pytest.mark.parametrize("specs, message", [
    ([LayerSpec(4)], "at least one trainable"),
    ([LayerSpec(4), LayerSpec(0, "sigmoid")], "positive"),
    ([LayerSpec(4, "relu"), LayerSpec(2, "sigmoid")], "input layer"),
    ([LayerSpec(4), LayerSpec(3, "sigmoid"), LayerSpec(2, "sigmoid")], "hidden layers"),
    ([LayerSpec(4), LayerSpec(3, "relu"), LayerSpec(2, "relu")], "output layer"),
])
def test_invalid_layouts(specs, message):
    with pytest.raises(ValueError, match=message):
        NetworkLayout(specs)
