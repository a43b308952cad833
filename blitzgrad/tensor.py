import contextlib
import logging
import numbers

import numpy as np

from .device import check_same_device, device_of, get_xp_from_array, move, to_numpy
from .errors import NumericalError, ShapeMismatch, UntrackedRootError

logger = logging.getLogger(__name__)

# dtype that integer/bool inputs are promoted to
DEFAULT_DTYPE = np.float64


def _as_array(data):
    xp = get_xp_from_array(data)
    arr = data if isinstance(data, xp.ndarray) else xp.asarray(data)
    if arr.dtype.kind != "f":
        arr = arr.astype(DEFAULT_DTYPE)
    return arr


@contextlib.contextmanager
def _numerics(op):
    # surface divide-by-zero and invalid results instead of silently producing inf/nan
    try:
        with np.errstate(divide="raise", invalid="raise"):
            yield
    except FloatingPointError as e:
        raise NumericalError(f"{op}: {e}") from e


def _has_nan(x):
    xp = get_xp_from_array(x)
    return bool(xp.isnan(x).any())


def _broadcast_shape(op, a, b):
    try:
        return np.broadcast_shapes(a.shape, b.shape)
    except ValueError as e:
        raise ShapeMismatch(f"{op}: cannot broadcast {a.shape} with {b.shape}") from e


def _normalize_axes(axis, ndim):
    if axis is None:
        return tuple(range(ndim))
    if isinstance(axis, int):
        axis = (axis,)
    return tuple(sorted(a % ndim for a in axis))


def _keepdims_shape(shape, axis):
    axes = _normalize_axes(axis, len(shape))
    return tuple(1 if i in axes else s for i, s in enumerate(shape))


def _reduced_shape(shape, axis):
    axes = _normalize_axes(axis, len(shape))
    return tuple(s for i, s in enumerate(shape) if i not in axes)


def _unbroadcast(grad, shape):
    """Sum ``grad`` over the dimensions broadcasting added so it matches ``shape``."""
    if grad.shape == shape:
        return grad

    # leading dims that broadcasting prepended, plus size-1 dims that were stretched
    lead = grad.ndim - len(shape)
    axes = tuple(range(lead)) + tuple(
        lead + i for i, s in enumerate(shape) if s == 1 and grad.shape[lead + i] != 1
    )
    if axes:
        grad = grad.sum(axis=axes, keepdims=True)
    return grad.reshape(shape)


def _matmul_shape(a_shape, b_shape):
    batch = np.broadcast_shapes(a_shape[:-2], b_shape[:-2])
    return tuple(batch) + (a_shape[-2], b_shape[-1])


def _window_indices(xp, H, W, kH, kW, stride):
    # (kH*kW, out_h*out_w) row/col indices of every sliding window
    out_h = (H - kH) // stride + 1
    out_w = (W - kW) // stride + 1
    if out_h <= 0 or out_w <= 0:
        raise ShapeMismatch(f"window {kH}x{kW} does not fit input {H}x{W}")

    i0 = xp.repeat(xp.arange(kH), kW)
    i1 = stride * xp.repeat(xp.arange(out_h), out_w)
    j0 = xp.tile(xp.arange(kW), kH)
    j1 = stride * xp.tile(xp.arange(out_w), out_h)

    i = i0.reshape(-1, 1) + i1.reshape(1, -1)
    j = j0.reshape(-1, 1) + j1.reshape(1, -1)
    return i, j, out_h, out_w


def _toposort(root):
    # iterative post-order DFS: every node lands after all of its inputs
    topo = []
    visited = set()
    stack = [(root, False)]
    while stack:
        v, expanded = stack.pop()
        if expanded:
            topo.append(v)
            continue
        if v in visited:
            continue
        visited.add(v)
        stack.append((v, True))
        for child in v._prev:
            if child.requires_grad and child not in visited:
                stack.append((child, False))
    return topo


def _propagate(root, seed, create_graph=False):
    """
    Walk the graph under ``root`` in reverse topological order.

    Returns (topo, grads) where grads maps every reached tensor to its fully
    accumulated gradient tensor. Nothing is written to ``.grad`` here.
    """
    topo = _toposort(root)
    logger.debug("backward from %s through %d nodes", root._op or "leaf", len(topo))

    grads = {root: seed}
    with _grad_mode(create_graph):
        for v in reversed(topo):
            # a freed intermediate has lost its inputs
            if v._freed:
                raise UntrackedRootError(
                    f"graph under an intermediate of shape {v.shape} was already freed "
                    "by a previous backward(); use retain_graph=True"
                )
            g = grads.get(v)
            if g is None:
                continue

            for hook in v._hooks:
                res = hook(g.data)
                if res is not None:
                    res = Tensor(res)
                    if res.shape != v.shape:
                        raise ShapeMismatch(f"hook returned grad {res.shape} for tensor {v.shape}")
                    g = res
            grads[v] = g

            if v._backward is None:
                continue

            parent_grads = v._backward(g)
            for parent, pg in zip(v._prev, parent_grads):
                if pg is None or not parent.requires_grad:
                    continue
                if pg.shape != parent.shape:
                    raise ShapeMismatch(
                        f"{v._op} backward produced grad of shape {pg.shape} "
                        f"for operand of shape {parent.shape}"
                    )
                grads[parent] = pg if parent not in grads else grads[parent] + pg

    for v, g in grads.items():
        if _has_nan(g.data):
            raise NumericalError(f"NaN gradient reached {v._op or 'leaf'} of shape {v.shape}")

    return topo, grads


@contextlib.contextmanager
def _grad_mode(enabled):
    prev = Tensor._grad_enabled
    Tensor._grad_enabled = enabled
    try:
        yield
    finally:
        Tensor._grad_enabled = prev


def no_grad():
    """Context in which operations record no graph."""
    return _grad_mode(False)


def enable_grad():
    return _grad_mode(True)


#tensor holds the value, its gradient, who created it and how to push gradients back
class Tensor:
    _grad_enabled = True

    # make numpy defer to our reflected operators (ndarray + Tensor -> Tensor.__radd__)
    __array_ufunc__ = None

    def __init__(self, data, requires_grad=False):
        if isinstance(data, Tensor):
            data = data.data
        self.data = _as_array(data)
        self.grad = None
        self.requires_grad = requires_grad

        # producing operation: kind, operands, and grad_out -> grads_in
        self._op = ""
        self._prev = ()
        self._backward = None

        self._hooks = []
        self._is_leaf = True
        self._freed = False

    @staticmethod
    def _make(data, parents, op, backward):
        requires_grad = Tensor._grad_enabled and any(p.requires_grad for p in parents)
        out = Tensor(data, requires_grad=requires_grad)
        if requires_grad:
            out._op = op
            out._prev = tuple(parents)
            out._backward = backward
            out._is_leaf = False
        return out

    def _coerce(self, other):
        if isinstance(other, Tensor):
            return other
        if isinstance(other, (int, float)):
            return Tensor(self._xp.asarray(other, dtype=self.dtype))
        return Tensor(self._xp.asarray(other))

    @property
    def _xp(self):
        return get_xp_from_array(self.data)

    @property
    def shape(self):
        return tuple(self.data.shape)

    @property
    def ndim(self):
        return self.data.ndim

    @property
    def size(self):
        return self.data.size

    @property
    def dtype(self):
        return self.data.dtype

    @property
    def device(self):
        return device_of(self.data)

    @property
    def is_leaf(self):
        return self._is_leaf

    @property
    def T(self):
        return self.transpose()

    def __repr__(self):
        op = f", op={self._op!r}" if self._op else ""
        return f"Tensor({self.data!r}, requires_grad={self.requires_grad}{op})"

    def __len__(self):
        return len(self.data)

    def item(self):
        if self.data.size != 1:
            raise ShapeMismatch(f"item() needs a single-element tensor, got shape {self.shape}")
        return to_numpy(self.data).reshape(()).item()

    def __float__(self):
        return float(self.item())

    def numpy(self):
        return to_numpy(self.data)

    def to(self, device):
        """Copy onto ``device``; the copy is a new leaf with the same requires_grad."""
        data = move(self.data, device)
        if data is self.data:
            return self
        return Tensor(data, requires_grad=self.requires_grad)

    # ---- graph / gradient bookkeeping ----

    def backward(self, grad=None, retain_graph=False):
        if not self.requires_grad:
            raise UntrackedRootError("backward() called on a tensor that does not require grad")
        if self._freed:
            raise UntrackedRootError(
                "graph was already freed by a previous backward(); use retain_graph=True"
            )

        seed = self._seed(grad)
        topo, grads = _propagate(self, seed)

        # commit only once the whole traversal succeeded
        for v in topo:
            g = grads.get(v)
            if g is None:
                continue
            v.grad = g.data.copy() if v.grad is None else v.grad + g.data

        if not retain_graph:
            for v in topo:
                v._free()

    def _seed(self, grad):
        if grad is None:
            if self.data.size != 1:
                raise ShapeMismatch(
                    f"backward() can only be called on a scalar loss without a seed, got shape {self.shape}"
                )
            return Tensor(self._xp.ones_like(self.data))

        seed = grad if isinstance(grad, Tensor) else Tensor(self._xp.asarray(grad, dtype=self.dtype))
        if seed.shape != self.shape:
            raise ShapeMismatch(f"seed of shape {seed.shape} for root of shape {self.shape}")
        return seed

    def _free(self):
        self._op = ""
        self._prev = ()
        self._backward = None
        if not self._is_leaf:
            self._freed = True

    def zero_grad(self):
        self.grad = None

    def detach(self):
        return Tensor(self.data, requires_grad=False)

    def register_hook(self, fn):
        """``fn(grad_array)`` runs on this tensor's accumulated grad; a non-None return replaces it."""
        self._hooks.append(fn)
        return fn

    # ---- arithmetic ----

    def __add__(self, other):
        other = self._coerce(other)
        check_same_device("add", self.data, other.data)
        _broadcast_shape("add", self, other)
        with _numerics("add"):
            data = self.data + other.data

        def _backward(g):
            return (
                _unbroadcast(g, self.shape) if self.requires_grad else None,
                _unbroadcast(g, other.shape) if other.requires_grad else None,
            )

        return Tensor._make(data, (self, other), "add", _backward)

    def __sub__(self, other):
        other = self._coerce(other)
        check_same_device("sub", self.data, other.data)
        _broadcast_shape("sub", self, other)
        with _numerics("sub"):
            data = self.data - other.data

        def _backward(g):
            return (
                _unbroadcast(g, self.shape) if self.requires_grad else None,
                _unbroadcast(-g, other.shape) if other.requires_grad else None,
            )

        return Tensor._make(data, (self, other), "sub", _backward)

    def __mul__(self, other):
        other = self._coerce(other)
        check_same_device("mul", self.data, other.data)
        _broadcast_shape("mul", self, other)
        with _numerics("mul"):
            data = self.data * other.data

        def _backward(g):
            return (
                _unbroadcast(g * other, self.shape) if self.requires_grad else None,
                _unbroadcast(g * self, other.shape) if other.requires_grad else None,
            )

        return Tensor._make(data, (self, other), "mul", _backward)

    def __truediv__(self, other):
        other = self._coerce(other)
        check_same_device("div", self.data, other.data)
        _broadcast_shape("div", self, other)
        with _numerics("div"):
            data = self.data / other.data

        def _backward(g):
            return (
                _unbroadcast(g / other, self.shape) if self.requires_grad else None,
                _unbroadcast(-(g * self) / (other * other), other.shape) if other.requires_grad else None,
            )

        return Tensor._make(data, (self, other), "div", _backward)

    def __neg__(self):
        data = -self.data

        def _backward(g):
            return (-g,)

        return Tensor._make(data, (self,), "neg", _backward)

    def __pow__(self, p):
        if not isinstance(p, numbers.Number):
            raise TypeError(f"exponent must be a number, got {type(p).__name__}")
        with _numerics("pow"):
            data = self.data ** p

        def _backward(g):
            if p == 0:
                return (Tensor(self._xp.zeros_like(self.data)),)
            return (g * (p * self ** (p - 1)),)

        return Tensor._make(data, (self,), f"pow{p}", _backward)

    def __matmul__(self, other):
        other = self._coerce(other)
        check_same_device("matmul", self.data, other.data)
        try:
            data = self.data @ other.data
        except ValueError as e:
            raise ShapeMismatch(f"matmul: cannot multiply {self.shape} by {other.shape}") from e

        def _backward(g):
            # promote vectors like numpy does: (n,) @ B -> (1,n) @ B, A @ (n,) -> A @ (n,1)
            a = self if self.ndim > 1 else self.reshape((1,) + self.shape)
            b = other if other.ndim > 1 else other.reshape(other.shape + (1,))
            g2 = g.reshape(_matmul_shape(a.shape, b.shape))

            ga = gb = None
            if self.requires_grad:
                ga = _unbroadcast(g2 @ b.swapaxes(-1, -2), a.shape).reshape(self.shape)
            if other.requires_grad:
                gb = _unbroadcast(a.swapaxes(-1, -2) @ g2, b.shape).reshape(other.shape)
            return ga, gb

        return Tensor._make(data, (self, other), "matmul", _backward)

    __radd__ = __add__
    __rmul__ = __mul__

    def __rsub__(self, other):
        return self._coerce(other) - self

    def __rtruediv__(self, other):
        return self._coerce(other) / self

    def __rmatmul__(self, other):
        return self._coerce(other) @ self

    # ---- elementwise functions ----

    def exp(self):
        with _numerics("exp"):
            data = self._xp.exp(self.data)

        def _backward(g):
            return (g * out,)

        out = Tensor._make(data, (self,), "exp", _backward)
        return out

    def log(self):
        with _numerics("log"):
            data = self._xp.log(self.data)

        def _backward(g):
            return (g / self,)

        return Tensor._make(data, (self,), "log", _backward)

    def sqrt(self):
        with _numerics("sqrt"):
            data = self._xp.sqrt(self.data)

        def _backward(g):
            return (g * 0.5 / out,)

        out = Tensor._make(data, (self,), "sqrt", _backward)
        return out

    def sin(self):
        with _numerics("sin"):
            data = self._xp.sin(self.data)

        def _backward(g):
            return (g * self.cos(),)

        return Tensor._make(data, (self,), "sin", _backward)

    def cos(self):
        with _numerics("cos"):
            data = self._xp.cos(self.data)

        def _backward(g):
            return (-(g * self.sin()),)

        return Tensor._make(data, (self,), "cos", _backward)

    def tan(self):
        with _numerics("tan"):
            data = self._xp.tan(self.data)

        def _backward(g):
            return (g * (1.0 + out * out),)

        out = Tensor._make(data, (self,), "tan", _backward)
        return out

    def tanh(self):
        data = self._xp.tanh(self.data)

        def _backward(g):
            return (g * (1.0 - out * out),)

        out = Tensor._make(data, (self,), "tanh", _backward)
        return out

    def sigmoid(self):
        xp = self._xp
        # split by sign so exp never overflows
        pos = self.data >= 0
        z = xp.exp(-xp.abs(self.data))
        data = xp.where(pos, 1.0 / (1.0 + z), z / (1.0 + z)).astype(self.dtype)

        def _backward(g):
            return (g * out * (1.0 - out),)

        out = Tensor._make(data, (self,), "sigmoid", _backward)
        return out

    def relu(self):
        mask = (self.data > 0).astype(self.dtype)
        data = self.data * mask

        def _backward(g):
            return (g * Tensor(mask),)

        return Tensor._make(data, (self,), "relu", _backward)

    def abs(self):
        sign = self._xp.sign(self.data)
        data = self._xp.abs(self.data)

        def _backward(g):
            return (g * Tensor(sign),)

        return Tensor._make(data, (self,), "abs", _backward)

    # ---- reductions ----

    def sum(self, axis=None, keepdims=False):
        if isinstance(axis, list):
            axis = tuple(axis)
        data = self.data.sum(axis=axis, keepdims=keepdims)

        def _backward(g):
            if not keepdims:
                g = g.reshape(_keepdims_shape(self.shape, axis))
            return (g.broadcast_to(self.shape),)

        return Tensor._make(data, (self,), "sum", _backward)

    def mean(self, axis=None, keepdims=False):
        axes = _normalize_axes(axis, self.ndim)
        n = 1
        for a in axes:
            n *= self.shape[a]
        return self.sum(axis=axis, keepdims=keepdims) * (1.0 / n)

    def max(self, axis=None, keepdims=False):
        xp = self._xp
        kshape = _keepdims_shape(self.shape, axis)
        m = self.data.max(axis=axis, keepdims=True)

        # ties share the gradient evenly
        mask = (self.data == m).astype(self.dtype)
        weights = mask / mask.sum(axis=axis, keepdims=True)
        data = m if keepdims else m.reshape(_reduced_shape(self.shape, axis))

        def _backward(g):
            return (g.reshape(kshape) * Tensor(weights),)

        return Tensor._make(xp.asarray(data), (self,), "max", _backward)

    def logsumexp(self, axis=None, keepdims=False):
        xp = self._xp
        kshape = _keepdims_shape(self.shape, axis)
        m = self.data.max(axis=axis, keepdims=True)
        with _numerics("logsumexp"):
            lse = xp.log(xp.exp(self.data - m).sum(axis=axis, keepdims=True)) + m
        data = lse if keepdims else lse.reshape(_reduced_shape(self.shape, axis))

        def _backward(g):
            # d lse / dx = softmax(x)
            return (g.reshape(kshape) * (self - out.reshape(kshape)).exp(),)

        out = Tensor._make(data, (self,), "logsumexp", _backward)
        return out

    # ---- shape ----

    def reshape(self, *shape):
        if len(shape) == 1 and isinstance(shape[0], (tuple, list)):
            shape = tuple(shape[0])
        try:
            data = self.data.reshape(shape)
        except ValueError as e:
            raise ShapeMismatch(f"cannot reshape {self.shape} to {shape}") from e

        def _backward(g):
            return (g.reshape(self.shape),)

        return Tensor._make(data, (self,), "reshape", _backward)

    def transpose(self, *axes):
        if len(axes) == 1 and isinstance(axes[0], (tuple, list)):
            axes = tuple(axes[0])
        if not axes:
            axes = tuple(reversed(range(self.ndim)))
        inverse = tuple(int(i) for i in np.argsort(axes))
        data = self.data.transpose(axes)

        def _backward(g):
            return (g.transpose(inverse),)

        return Tensor._make(data, (self,), "transpose", _backward)

    def swapaxes(self, a1, a2):
        axes = list(range(self.ndim))
        axes[a1], axes[a2] = axes[a2], axes[a1]
        return self.transpose(tuple(axes))

    def broadcast_to(self, shape):
        shape = tuple(shape)
        try:
            data = self._xp.broadcast_to(self.data, shape).copy()
        except ValueError as e:
            raise ShapeMismatch(f"cannot broadcast {self.shape} to {shape}") from e

        def _backward(g):
            return (_unbroadcast(g, self.shape),)

        return Tensor._make(data, (self,), "broadcast", _backward)

    def __getitem__(self, idx):
        idx = _plain_index(idx)
        data = self.data[idx]

        def _backward(g):
            return (g._index_add(idx, self.shape),)

        return Tensor._make(data, (self,), "index", _backward)

    def _index_add(self, idx, shape):
        # scatter-add into zeros(shape); the adjoint of indexing
        xp = self._xp
        data = xp.zeros(shape, dtype=self.dtype)
        xp.add.at(data, idx, self.data)

        def _backward(g):
            return (g[idx],)

        return Tensor._make(data, (self,), "index_add", _backward)

    def pad2d(self, padding, value=0.0):
        """Pad the last two dimensions by ``padding`` on every side."""
        p = int(padding)
        if p == 0:
            return self
        H, W = self.shape[-2:]
        widths = ((0, 0),) * (self.ndim - 2) + ((p, p), (p, p))
        data = self._xp.pad(self.data, widths, mode="constant", constant_values=value)
        inner = (slice(None),) * (self.ndim - 2) + (slice(p, p + H), slice(p, p + W))

        def _backward(g):
            return (g[inner],)

        return Tensor._make(data, (self,), "pad2d", _backward)

    # ---- convolution / pooling (NCHW) ----

    def conv2d(self, w, b=None, stride=1, padding=0):
        w = self._coerce(w)
        if self.ndim != 4 or w.ndim != 4:
            raise ShapeMismatch(f"conv2d expects NCHW input and OIHW weight, got {self.shape} and {w.shape}")
        check_same_device("conv2d", self.data, w.data)

        x = self.pad2d(padding)
        N, C, H, W = x.shape
        O, C_w, kH, kW = w.shape
        if C != C_w:
            raise ShapeMismatch(f"conv2d: input has {C} channels, weight expects {C_w}")

        i, j, out_h, out_w = _window_indices(self._xp, H, W, kH, kW, stride)

        # im2col: (N, C, kH*kW, L) -> (N, C*kH*kW, L)
        cols = x[:, :, i, j].reshape(N, C * kH * kW, out_h * out_w)
        out = w.reshape(O, C * kH * kW) @ cols
        out = out.reshape(N, O, out_h, out_w)

        if b is not None:
            out = out + self._coerce(b).reshape(1, O, 1, 1)
        return out

    def maxpool2d(self, kernel_size=2, stride=None, padding=0):
        if self.ndim != 4:
            raise ShapeMismatch(f"maxpool2d expects NCHW input, got {self.shape}")
        stride = kernel_size if stride is None else stride

        x = self.pad2d(padding, value=-np.inf)
        N, C, H, W = x.shape
        i, j, out_h, out_w = _window_indices(self._xp, H, W, kernel_size, kernel_size, stride)

        cols = x[:, :, i, j]                  # (N, C, k*k, L)
        out = cols.max(axis=2)                # (N, C, L)
        return out.reshape(N, C, out_h, out_w)


def _plain_index(idx):
    # tensors used as indices are read as their raw arrays
    if isinstance(idx, Tensor):
        return idx.data
    if isinstance(idx, tuple):
        return tuple(i.data if isinstance(i, Tensor) else i for i in idx)
    return idx
