from .accuracy import _count_hits
from .dense import _dense_forward, _relu_backward
from .loss import _output_delta
from .update import _apply_update, _bias_grad, _weight_grad
from ._common import _fill_

__all__ = [
    "_apply_update",
    "_bias_grad",
    "_count_hits",
    "_dense_forward",
    "_fill_",
    "_output_delta",
    "_relu_backward",
    "_weight_grad",
]
