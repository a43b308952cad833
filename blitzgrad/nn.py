import numpy as np

from .device import get_xp, to_numpy
from .tensor import Tensor


def identity(x):
    return x

def relu(x: Tensor) -> Tensor:
    return x.relu()

def sigmoid(x: Tensor) -> Tensor:
    return x.sigmoid()

def tanh(x: Tensor) -> Tensor:
    return x.tanh()

def softmax(x: Tensor, axis=-1) -> Tensor:
    return (x - x.logsumexp(axis=axis, keepdims=True)).exp()


class Module:
    def parameters(self):
        params = []
        seen = set()

        def collect(obj):
            if isinstance(obj, Tensor):
                if obj.requires_grad and id(obj) not in seen:
                    seen.add(id(obj))
                    params.append(obj)
            elif isinstance(obj, Module):
                for v in obj.__dict__.values():
                    collect(v)
            elif isinstance(obj, (list, tuple)):
                for v in obj:
                    collect(v)
            elif isinstance(obj, dict):
                for v in obj.values():
                    collect(v)

        for v in self.__dict__.values():
            collect(v)

        return params

    def zero_grad(self):
        for p in self.parameters():
            p.zero_grad()

    def to(self, device):
        """Move every parameter onto ``device`` in place and return self."""

        def move(obj):
            if isinstance(obj, Tensor):
                return obj.to(device)
            if isinstance(obj, Module):
                obj.to(device)
                return obj
            if isinstance(obj, list):
                return [move(v) for v in obj]
            if isinstance(obj, tuple):
                return tuple(move(v) for v in obj)
            if isinstance(obj, dict):
                return {k: move(v) for k, v in obj.items()}
            return obj

        for k, v in list(self.__dict__.items()):
            setattr(self, k, move(v))
        return self


def params(model: Module):
    return model.parameters()


class Dense(Module):
    # y = activation(x @ W + b); x is (in_dim,) or (N, in_dim)
    def __init__(self, in_dim, out_dim, activation=identity, device="cpu"):
        xp = get_xp(device)
        scale = np.sqrt(2.0 / (in_dim + out_dim))
        W = np.random.randn(in_dim, out_dim) * scale
        b = np.zeros((out_dim,))

        self.W = Tensor(xp.asarray(W), requires_grad=True)
        self.b = Tensor(xp.asarray(b), requires_grad=True)
        self.activation = activation

    def __call__(self, x) -> Tensor:
        x = x if isinstance(x, Tensor) else Tensor(x)
        return self.activation((x @ self.W) + self.b)

    def __repr__(self):
        in_dim, out_dim = self.W.shape
        return f"Dense({in_dim}, {out_dim}, {getattr(self.activation, '__name__', self.activation)})"


class Conv2d(Module):
    # NCHW input, weight (out_channels, in_channels, k, k)
    def __init__(self, in_channels, out_channels, kernel_size, activation=identity,
                 stride=1, padding=0, bias=True, device="cpu"):
        xp = get_xp(device)
        self.stride = stride
        self.padding = padding
        self.activation = activation

        scale = np.sqrt(2.0 / (in_channels * kernel_size * kernel_size))
        W = np.random.randn(out_channels, in_channels, kernel_size, kernel_size) * scale
        self.W = Tensor(xp.asarray(W), requires_grad=True)
        self.b = Tensor(xp.zeros((out_channels,)), requires_grad=True) if bias else None

    def __call__(self, x) -> Tensor:
        x = x if isinstance(x, Tensor) else Tensor(x)
        y = x.conv2d(self.W, self.b, stride=self.stride, padding=self.padding)
        return self.activation(y)

    def __repr__(self):
        O, C, k, _ = self.W.shape
        return f"Conv2d(({k}, {k}), {C}=>{O}, stride={self.stride}, padding={self.padding})"


class MaxPool2d(Module):
    def __init__(self, kernel_size=2, stride=None, padding=0):
        self.kernel_size = kernel_size
        self.stride = stride
        self.padding = padding

    def __call__(self, x) -> Tensor:
        x = x if isinstance(x, Tensor) else Tensor(x)
        return x.maxpool2d(self.kernel_size, self.stride, self.padding)

    def __repr__(self):
        return f"MaxPool2d({self.kernel_size})"


class Flatten(Module):
    # (N, ...) -> (N, prod(...))
    def __call__(self, x) -> Tensor:
        x = x if isinstance(x, Tensor) else Tensor(x)
        return x.reshape(x.shape[0], -1)

    def __repr__(self):
        return "Flatten()"


class Chain(Module):
    def __init__(self, *layers):
        self.layers = list(layers)

    def __call__(self, x):
        for layer in self.layers:
            x = layer(x)
        return x

    def __getitem__(self, i):
        if isinstance(i, slice):
            return Chain(*self.layers[i])
        return self.layers[i]

    def __len__(self):
        return len(self.layers)

    def __repr__(self):
        inner = ", ".join(getattr(l, "__name__", None) or repr(l) for l in self.layers)
        return f"Chain({inner})"


def onehot(labels, classes):
    """
    labels: sequence of N labels
    classes: number of classes, or the ordered sequence of possible labels
    returns float array (N, C)
    """
    classes = list(range(classes)) if isinstance(classes, int) else list(classes)
    index = {c: i for i, c in enumerate(classes)}

    labels = np.atleast_1d(to_numpy(labels)).tolist() if hasattr(labels, "shape") else list(labels)
    Y = np.zeros((len(labels), len(classes)))
    for n, label in enumerate(labels):
        if label not in index:
            raise ValueError(f"label {label!r} not in classes {classes}")
        Y[n, index[label]] = 1.0
    return Y


def onecold(y, classes=None):
    """Index (or label from ``classes``) of the largest entry along the last axis."""
    data = to_numpy(y.data if isinstance(y, Tensor) else y)
    idx = np.argmax(data, axis=-1)
    if classes is None:
        return idx
    return np.asarray(list(classes))[idx]
