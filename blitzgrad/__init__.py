import logging

from .errors import AutogradError, DeviceMismatch, NumericalError, ShapeMismatch, UntrackedRootError
from .tensor import Tensor, enable_grad, no_grad
from .tracker import backward, derivative, grad, gradient, param, track
from .nn import (
    Chain,
    Conv2d,
    Dense,
    Flatten,
    MaxPool2d,
    Module,
    identity,
    onecold,
    onehot,
    params,
    relu,
    sigmoid,
    softmax,
    tanh,
)
from .losses import crossentropy, logitbinarycrossentropy, logitcrossentropy, mse
from .optim import SGD, Momentum, Optimizer, update
from .train import accuracy, train

logging.getLogger(__name__).addHandler(logging.NullHandler())

__version__ = "0.1.0"
