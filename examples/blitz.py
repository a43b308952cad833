import math

import numpy as np

from blitzgrad import (
    SGD, Chain, Dense, Tensor, backward, crossentropy, derivative, grad,
    gradient, param, params, relu, softmax, train, update,
)

# Arrays
x = Tensor(np.random.rand(5, 3))
print("shape:", x.shape, "size:", x.size)
print("x + 1:\n", (x + 1).data)
print("times table:\n", (Tensor(np.arange(1.0, 6.0).reshape(5, 1)) * np.arange(1.0, 6.0)).data)

W = Tensor(np.random.randn(5, 10))
print("W @ x:", (W @ np.random.rand(10)).data)

# Derivatives
f = lambda x: 3 * x ** 2 + 2 * x + 1
df = lambda x: derivative(f, x)
ddf = lambda x: derivative(df, x)
print("f(5) =", float(f(Tensor(5.0))), " df(5) =", float(df(5)), " ddf(5) =", float(ddf(5)))

def mysin(x):
    return sum((-1) ** k * x ** (1 + 2 * k) / math.factorial(1 + 2 * k) for k in range(6))

print("mysin'(0.5) =", float(derivative(mysin, 0.5)), " cos(0.5) =", math.cos(0.5))

# Gradients of several inputs
myloss = lambda W, b, x: (W @ x + b).sum()
gW, gb, gx = gradient(myloss, np.random.randn(3, 5), np.zeros(3), np.random.rand(5))
print("dW:\n", gW.data, "\ndb:", gb.data, "\ndx:", gx.data)

# Tracked parameters
W = param(np.random.randn(3, 5))
b = param(np.zeros(3))
y = (W @ np.random.rand(5) + b).sum()
backward(y)
print("grad(W):\n", grad(W), "\ngrad(b):", grad(b))

# Layers
m = Chain(Dense(10, 5, relu), Dense(5, 2), softmax)
loss = lambda x, y=(0.5, 0.5): crossentropy(m(x), list(y))
l = loss(np.random.rand(10))
l.backward()
print("param grad shapes:", [p.grad.shape for p in params(m)])

# Plain gradient descent
eta = 0.1
for p in params(m):
    update(p, -eta * grad(p))

# Optimiser + training loop
opt = SGD(params(m), lr=0.01)
data, labels = np.random.rand(100, 10), np.full((100, 2), 0.5)
losses = train(lambda x, y: crossentropy(m(x), y), [(data, labels)] * 5, opt)
print("losses:", [round(v, 4) for v in losses])
