import numpy as np

from blitzgrad import (
    Chain, Conv2d, Dense, Flatten, MaxPool2d, Momentum, Tensor,
    accuracy, crossentropy, onehot, relu, softmax, train,
)

# Synthetic stand-in for a small image dataset: 10 classes of noisy 3x32x32
# templates, so the script runs without downloading anything.
np.random.seed(0)
templates = np.random.rand(10, 3, 32, 32)

def make_batch(n):
    labels = np.random.randint(0, 10, size=n)
    X = templates[labels] + 0.3 * np.random.randn(n, 3, 32, 32)
    return Tensor(X), onehot(labels, 10)

train_set = [make_batch(32) for _ in range(10)]
valX, valY = make_batch(100)

m = Chain(
    Conv2d(3, 16, 5, relu),
    MaxPool2d(2),
    Conv2d(16, 8, 5, relu),
    MaxPool2d(2),
    Flatten(),
    Dense(200, 120),
    Dense(120, 84),
    Dense(84, 10),
    softmax,
)

loss = lambda x, y: crossentropy(m(x), y)
opt = Momentum(m.parameters(), lr=0.01)

epochs = 3
for epoch in range(epochs):
    losses = train(loss, train_set, opt)
    print(epoch, "loss", round(float(np.mean(losses)), 4), "val acc", accuracy(m, valX, valY))

print("final accuracy:", accuracy(m, valX, valY))
