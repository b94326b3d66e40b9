import gzip
import hashlib
import logging
import os

import numpy as np
import requests

from topmlp.errors import DatasetUnavailableError

logger = logging.getLogger(__name__)

MNIST_URL = "https://ossci-datasets.s3.amazonaws.com/mnist/"
MNIST_FILES = {
    True: ("train-images-idx3-ubyte.gz", "train-labels-idx1-ubyte.gz"),
    False: ("t10k-images-idx3-ubyte.gz", "t10k-labels-idx1-ubyte.gz"),
}


def one_hot(labels, num_classes, dtype=np.float32):
    labels = np.asarray(labels, dtype=np.int64)
    if labels.size and (labels.min() < 0 or labels.max() >= num_classes):
        raise ValueError(f"labels must lie in [0, {num_classes})")
    out = np.zeros((labels.shape[0], num_classes), dtype=dtype)
    out[np.arange(labels.shape[0]), labels] = 1.0
    return out


def _has_header(path):
    with open(path) as f:
        first = f.readline()
    field = first.split(",", 1)[0].strip()
    try:
        float(field)
    except ValueError:
        return True
    return False


def load_csv(path, input_dim, output_dim, limit=None, normalize=True):
    """Read a label-first CSV into (features, one-hot labels).

    Each row is `label,f0,f1,...,f{input_dim-1}`. A non-numeric first row is
    treated as a header. Features are divided by 255 when normalize is set.
    """
    if not os.path.isfile(path):
        raise DatasetUnavailableError(f"dataset file not found: {path}")
    try:
        skip = 1 if _has_header(path) else 0
        raw = np.loadtxt(
            path,
            delimiter=",",
            dtype=np.float32,
            skiprows=skip,
            max_rows=limit,
            ndmin=2,
        )
    except (OSError, ValueError, UnicodeDecodeError) as exc:
        raise DatasetUnavailableError(f"cannot parse {path}: {exc}") from exc

    if raw.shape[0] == 0:
        raise DatasetUnavailableError(f"{path} holds no samples")
    if raw.shape[1] != input_dim + 1:
        raise DatasetUnavailableError(
            f"{path}: expected {input_dim + 1} columns per row, got {raw.shape[1]}"
        )
    if limit is not None and raw.shape[0] < limit:
        raise DatasetUnavailableError(
            f"{path}: requested {limit} samples, file holds {raw.shape[0]}"
        )

    labels = raw[:, 0]
    if not np.all(labels == np.round(labels)):
        raise DatasetUnavailableError(f"{path}: labels must be integers")
    try:
        y = one_hot(labels.astype(np.int64), output_dim)
    except ValueError as exc:
        raise DatasetUnavailableError(f"{path}: {exc}") from exc

    x = np.ascontiguousarray(raw[:, 1:])
    if normalize:
        x /= 255.0
    logger.debug("loaded %d samples from %s", x.shape[0], path)
    return x, y


def _fetch(url, cache_dir):
    fp = os.path.join(cache_dir, hashlib.md5(url.encode("utf-8")).hexdigest())
    if os.path.isfile(fp):
        with open(fp, "rb") as f:
            dat = f.read()
    else:
        try:
            resp = requests.get(url, timeout=60)
            resp.raise_for_status()
        except requests.RequestException as exc:
            raise DatasetUnavailableError(f"download failed for {url}: {exc}") from exc
        dat = resp.content
        os.makedirs(cache_dir, exist_ok=True)
        with open(fp, "wb") as f:
            f.write(dat)
    return np.frombuffer(gzip.decompress(dat), dtype=np.uint8).copy()


def fetch_mnist(train=True, cache_dir="/tmp", normalize=True):
    """Download (or reuse cached) MNIST IDX files; returns flat features and one-hot labels."""
    images, labels = MNIST_FILES[bool(train)]
    x = _fetch(MNIST_URL + images, cache_dir)[0x10:].reshape((-1, 28 * 28))
    y = _fetch(MNIST_URL + labels, cache_dir)[8:]
    x = x.astype(np.float32)
    if normalize:
        x /= 255.0
    return x, one_hot(y, 10)
