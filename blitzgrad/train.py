import logging
import math

import numpy as np

from .errors import NumericalError
from .nn import onecold
from .tensor import no_grad

logger = logging.getLogger(__name__)


def train(loss, data, opt, cb=None):
    """
    One pass over ``data``: for each batch ``d``, loss(*d) -> backward -> opt.step().

    Returns the per-batch loss values.
    """
    losses = []
    for i, d in enumerate(data):
        if not isinstance(d, tuple):
            d = (d,)

        opt.zero_grad()
        l = loss(*d)
        value = float(l)
        if not math.isfinite(value):
            raise NumericalError(f"loss is {value} at batch {i}")

        l.backward()
        opt.step()

        losses.append(value)
        logger.debug("batch %d loss %.6f", i, value)
        if cb is not None:
            cb()

    return losses


def accuracy(model, x, y, classes=None):
    # fraction of rows where the predicted class matches the target class
    with no_grad():
        pred = model(x)
    return float(np.mean(onecold(pred, classes) == onecold(y, classes)))
