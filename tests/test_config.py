import pytest

from topmlp.config import TrainConfig


def test_defaults_match_reference_run():
    config = TrainConfig()
    assert config.sizes == (784, 256, 64, 10)
    assert (config.epochs, config.batch_size) == (100, 32)
    assert config.learning_rate == 0.001
    assert config.l2_lambda == 0.7
    assert config.dataset_size == 60000
    assert config.eval_size == 96
    assert config.train_batches == (60000 - 96) // 32


def test_from_yaml_with_overrides(tmp_path):
    path = tmp_path / "run.yaml"
    path.write_text("sizes: [4, 8, 2]\nepochs: 3\nbatch_size: 5\nbackend: numpy\n")
    config = TrainConfig.from_yaml(str(path), epochs=7, seed=None)
    assert config.sizes == (4, 8, 2)
    assert config.epochs == 7
    assert config.seed == 0
    assert config.to_dict()["sizes"] == [4, 8, 2]


def test_unknown_keys_rejected(tmp_path):
    path = tmp_path / "run.yaml"
    path.write_text("epochs: 3\nmomentum: 0.9\n")
    with pytest.raises(ValueError, match="momentum"):
        TrainConfig.from_yaml(str(path))


def test_non_mapping_rejected(tmp_path):
    path = tmp_path / "run.yaml"
    path.write_text("- 1\n- 2\n")
    with pytest.raises(ValueError, match="mapping"):
        TrainConfig.from_yaml(str(path))


@pytest.mark.parametrize("kwargs", [
    {"sizes": (4,)},
    {"sizes": (4, 0, 2)},
    {"epochs": 0},
    {"batch_size": -1},
    {"learning_rate": -0.1},
    {"eval_size": 0},
    {"dataset_size": 100, "eval_size": 90, "batch_size": 32},
])
def test_validation(kwargs):
    with pytest.raises(ValueError):
        TrainConfig(**kwargs)


def test_separate_eval_file_keeps_all_training_samples():
    config = TrainConfig(dataset_size=64, eval_size=1000, batch_size=32, eval_data_path="eval.csv")
    assert config.train_batches == 2
