import logging

import numpy as np

from topmlp import NetworkLayout, ParameterStore, Trainer, available_backends, glorot_normal_, set_backend
from topmlp.datasets import fetch_mnist

logging.basicConfig(level=logging.INFO, format="%(message)s")

X, Y = fetch_mnist(train=True)
X_valid, Y_valid = fetch_mnist(train=False)
# print(X.shape, Y.shape, X_valid.shape, Y_valid.shape)
# (60000, 784) (60000, 10) (10000, 784) (10000, 10)

backend = set_backend("triton" if "triton" in available_backends() else "numpy")
layout = NetworkLayout.from_sizes((784, 256, 64, 10))
store = ParameterStore(layout, backend)
glorot_normal_(store, np.random.default_rng(0))

BATCH_SIZE = 32
EPOCHS = 10
trainer = Trainer(layout, store, backend, batch_size=BATCH_SIZE, learning_rate=0.001, l2_lambda=0.7)
store.to_device()
trainer.set_data(X, Y, eval_size=X_valid.shape[0], eval_x=X_valid, eval_y=Y_valid)

results = trainer.run(EPOCHS, progress=True)
print(f"final test set accuracy is {results[-1].accuracy:.4f}")
print("per-epoch accuracy:", " ".join(f"{r.accuracy:.4f}" for r in results))
trainer.release()
