import argparse
import logging
import sys
import time
from contextlib import contextmanager

import numpy as np

from topmlp.backend import set_backend
from topmlp.config import TrainConfig
from topmlp.datasets import load_csv
from topmlp.device import report_devices
from topmlp.errors import AcceleratorError, DatasetUnavailableError
from topmlp.initializers import glorot_normal_
from topmlp.network import NetworkLayout
from topmlp.params import ParameterStore
from topmlp.trainer import Trainer

logger = logging.getLogger("topmlp")


@contextmanager
def timed(label):
    start = time.perf_counter()
    yield
    logger.info("%s took %.3fs", label, time.perf_counter() - start)


def build_parser():
    p = argparse.ArgumentParser(
        prog="topmlp-train",
        description="Train a relu/relu/sigmoid MLP with mini-batch SGD.",
    )
    p.add_argument("--config", help="YAML file with TrainConfig fields")
    p.add_argument("--data", dest="data_path", help="label-first training CSV")
    p.add_argument("--eval-data", dest="eval_data_path", help="optional held-out CSV")
    p.add_argument("--sizes", type=lambda s: tuple(int(v) for v in s.split(",")),
                   help="comma separated layer sizes, e.g. 784,256,64,10")
    p.add_argument("--epochs", type=int)
    p.add_argument("--batch-size", dest="batch_size", type=int)
    p.add_argument("--lr", dest="learning_rate", type=float)
    p.add_argument("--l2", dest="l2_lambda", type=float)
    p.add_argument("--dataset-size", dest="dataset_size", type=int)
    p.add_argument("--eval-size", dest="eval_size", type=int)
    p.add_argument("--seed", type=int)
    p.add_argument("--backend", choices=("numpy", "triton"))
    p.add_argument("--no-progress", dest="progress", action="store_false", default=None)
    p.add_argument("--raw", dest="normalize", action="store_false", default=None,
                   help="keep feature values unscaled")
    p.add_argument("-v", "--verbose", action="store_true")
    return p


def load_config(args):
    overrides = {k: v for k, v in vars(args).items() if k not in ("config", "verbose")}
    if args.config:
        return TrainConfig.from_yaml(args.config, **overrides)
    return TrainConfig.from_dict({}, **overrides)


def train(config: TrainConfig):
    if config.data_path is None:
        raise DatasetUnavailableError("no training data path given (--data or data_path)")
    backend = set_backend(config.backend)
    if backend.name == "triton":
        report_devices()
    layout = NetworkLayout.from_sizes(config.sizes)

    with timed("load"):
        x, y = load_csv(
            config.data_path,
            layout.input_dim,
            layout.output_dim,
            limit=config.dataset_size,
            normalize=config.normalize,
        )
        eval_x = eval_y = None
        if config.eval_data_path:
            eval_x, eval_y = load_csv(
                config.eval_data_path,
                layout.input_dim,
                layout.output_dim,
                limit=config.eval_size,
                normalize=config.normalize,
            )

    store = ParameterStore(layout, backend)
    glorot_normal_(store, np.random.default_rng(config.seed))
    trainer = Trainer(
        layout,
        store,
        backend,
        batch_size=config.batch_size,
        learning_rate=config.learning_rate,
        l2_lambda=config.l2_lambda,
    )
    with timed("transfer"):
        store.to_device()
        trainer.set_data(x, y, config.eval_size, eval_x, eval_y)
        backend.synchronize()

    for key, value in trainer.describe().items():
        logger.info("%s: %s", key, value)

    results = trainer.run(config.epochs, progress=config.progress)
    with timed("free"):
        trainer.release()
    return results


def main(argv=None):
    args = build_parser().parse_args(argv)
    logging.basicConfig(
        level=logging.DEBUG if args.verbose else logging.INFO,
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )
    try:
        config = load_config(args)
        train(config)
    except AcceleratorError as exc:
        print(f"{exc.operation} failed ({exc.filename}:{exc.lineno}): {exc.cause}", file=sys.stderr)
        return 1
    except DatasetUnavailableError as exc:
        print(f"dataset unavailable: {exc}", file=sys.stderr)
        return 2
    except (ValueError, ImportError) as exc:
        print(f"error: {exc}", file=sys.stderr)
        return 2
    except RuntimeError as exc:
        # Backend could not start, e.g. no CUDA device for triton.
        print(f"error: {exc}", file=sys.stderr)
        return 1
    return 0


if __name__ == "__main__":
    sys.exit(main())
