import numpy as np

from .nn import onehot
from .tensor import Tensor


def _batch_size(t: Tensor) -> int:
    return t.shape[0] if t.ndim > 1 else 1


def _as_target(target, like: Tensor) -> Tensor:
    if isinstance(target, Tensor):
        return target
    target = np.asarray(target) if not hasattr(target, "shape") else target
    # integer class labels (N,) -> one-hot (N, C)
    if target.ndim == like.ndim - 1 and target.dtype.kind in "iu":
        target = onehot(target, like.shape[-1])
    return Tensor(like._xp.asarray(target, dtype=like.dtype))


def crossentropy(probs: Tensor, target) -> Tensor:
    """
    probs: Tensor (N, C) of probabilities (e.g. softmax output), or (C,)
    target: (N, C) distribution or (N,) int labels
    returns scalar Tensor, mean over the batch of -sum(target * log(probs))
    """
    Y = _as_target(target, probs)
    return -(Y * probs.log()).sum() * (1.0 / _batch_size(probs))


def logitcrossentropy(logits: Tensor, target) -> Tensor:
    """Same as crossentropy(softmax(logits), target) but stable for large logits."""
    Y = _as_target(target, logits)

    # log-softmax per sample
    logp = logits - logits.logsumexp(axis=-1, keepdims=True)
    return -(Y * logp).sum() * (1.0 / _batch_size(logits))


def logitbinarycrossentropy(logits: Tensor, target) -> Tensor:
    z = logits
    t = _as_target(target, logits)
    return (z.relu() - z * t + (1 + (-z.abs()).exp()).log()).mean()


def mse(pred: Tensor, target) -> Tensor:
    err = pred - target
    return (err ** 2).mean()
