import logging

import numpy as np

from topmlp import cli
from topmlp.errors import AcceleratorError


def _write_dataset(path, n, rng):
    x = rng.integers(0, 256, size=(n, 4))
    labels = (x[:, 0] > 127).astype(int)
    rows = np.column_stack([labels, x])
    path.write_text("\n".join(",".join(str(v) for v in r) for r in rows) + "\n")
    return str(path)


def test_cli_trains_on_numpy(tmp_path, caplog):
    caplog.set_level(logging.INFO)
    data = _write_dataset(tmp_path / "train.csv", 120, np.random.default_rng(0))
    code = cli.main([
        "--data", data,
        "--backend", "numpy",
        "--sizes", "4,6,2",
        "--epochs", "2",
        "--batch-size", "10",
        "--dataset-size", "120",
        "--eval-size", "20",
        "--no-progress",
    ])
    assert code == 0
    epoch_lines = [r.getMessage() for r in caplog.records if r.getMessage().startswith("epoch ")]
    assert len(epoch_lines) == 2
    assert "hits" in epoch_lines[0] and "/20" in epoch_lines[0]


def test_cli_missing_dataset(tmp_path, capsys):
    code = cli.main([
        "--data", str(tmp_path / "missing.csv"),
        "--backend", "numpy",
        "--no-progress",
    ])
    assert code == 2
    assert "dataset unavailable" in capsys.readouterr().err


def test_cli_reports_accelerator_failure(tmp_path, monkeypatch, capsys):
    def boom(config):
        raise AcceleratorError("dense_forward", "kernels/dense.py", 42, RuntimeError("launch failed"))

    monkeypatch.setattr(cli, "train", boom)
    code = cli.main(["--backend", "numpy"])
    assert code == 1
    err = capsys.readouterr().err
    assert "dense_forward failed (kernels/dense.py:42): launch failed" in err


def test_cli_yaml_config(tmp_path):
    data = _write_dataset(tmp_path / "train.csv", 60, np.random.default_rng(1))
    cfg = tmp_path / "run.yaml"
    cfg.write_text(
        "sizes: [4, 5, 2]\nepochs: 1\nbatch_size: 10\ndataset_size: 60\n"
        f"eval_size: 10\nbackend: numpy\ndata_path: {data}\nprogress: false\n"
    )
    assert cli.main(["--config", str(cfg)]) == 0
