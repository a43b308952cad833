"""
Functional front end to the engine: mark values as tracked, run backward,
read gradients, and differentiate plain Python functions.

    >>> float(derivative(lambda x: 3 * x ** 2 + 2 * x + 1, 5.0))   # 6x + 2
    32.0
"""
from .errors import ShapeMismatch
from .tensor import Tensor, _grad_mode, _propagate


def track(value) -> Tensor:
    """Wrap ``value`` as a leaf that collects gradients."""
    data = value.data if isinstance(value, Tensor) else value
    return Tensor(data, requires_grad=True)


param = track


def backward(root: Tensor, seed=None, retain_graph=False):
    root.backward(seed, retain_graph=retain_graph)


def grad(value: Tensor):
    """Accumulated gradient of ``value``, or None if backward never reached it."""
    return value.grad


def gradient(f, *args):
    """
    Gradients of the scalar ``f(*args)`` with respect to every argument.

    Plain numbers/arrays are tracked as fresh leaves and the gradients come
    back detached. Tensors that already require grad (e.g. the argument of an
    enclosing ``gradient``) are used as-is and the gradients keep their graph,
    so calls can be nested for higher derivatives. No ``.grad`` slot is touched.
    """
    nested = False
    inputs = []
    for a in args:
        if isinstance(a, Tensor) and a.requires_grad:
            nested = nested or Tensor._grad_enabled
            inputs.append(a)
        else:
            inputs.append(track(a))

    with _grad_mode(True):
        y = f(*inputs)
    if not isinstance(y, Tensor):
        y = Tensor(y)

    if y.size != 1:
        raise ShapeMismatch(f"gradient() needs a scalar-valued function, got shape {y.shape}")

    xp = y._xp
    if not y.requires_grad:
        # f ignored its inputs
        return tuple(Tensor(xp.zeros_like(t.data)) for t in inputs)

    _, grads = _propagate(y, Tensor(xp.ones_like(y.data)), create_graph=nested)

    out = []
    for t in inputs:
        g = grads.get(t)
        if g is None:
            g = Tensor(t._xp.zeros_like(t.data))
        out.append(g if nested else g.detach())
    return tuple(out)


def derivative(f, x):
    """df/dx for a function of one argument."""
    return gradient(f, x)[0]
