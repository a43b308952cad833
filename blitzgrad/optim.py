import logging

from .tensor import Tensor

logger = logging.getLogger(__name__)


def update(p: Tensor, delta):
    """In place ``p += delta``, then clear p's gradient slot."""
    delta = delta.data if isinstance(delta, Tensor) else delta
    p.data += p._xp.asarray(delta, dtype=p.dtype)
    p.grad = None


class Optimizer:
    def __init__(self, params):
        self.params = list(params)

    def zero_grad(self):
        for p in self.params:
            p.grad = None

    def step(self):
        raise NotImplementedError

    def __call__(self):
        self.step()

    def clip_grad_norm_(self, max_norm):
        total_sq = 0.0
        for p in self.params:
            if p.grad is None:
                continue
            g = p.grad
            total_sq += float((g * g).sum())
        total_norm = total_sq ** 0.5

        if total_norm > max_norm:
            logger.debug("clipping grad norm %.4g to %.4g", total_norm, max_norm)
            scale = max_norm / total_norm
            for p in self.params:
                if p.grad is None:
                    continue
                p.grad = p.grad * scale

        return total_norm


class SGD(Optimizer):
    # updates are in place; every step leaves grads empty for the next backward
    def __init__(self, params, lr=1e-2):
        super().__init__(params)
        self.lr = lr

    def step(self):
        for p in self.params:
            if p.grad is None:
                continue
            p.data -= self.lr * p.grad
            p.grad = None


class Momentum(Optimizer):
    # v = rho * v - lr * g ; p += v
    def __init__(self, params, lr=1e-2, rho=0.9):
        super().__init__(params)
        self.lr = lr
        self.rho = rho

        # state
        self.v = [p._xp.zeros_like(p.data) for p in self.params]

    def step(self):
        for i, p in enumerate(self.params):
            if p.grad is None:
                continue
            self.v[i] = self.rho * self.v[i] - self.lr * p.grad
            p.data += self.v[i]
            p.grad = None
