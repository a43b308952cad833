import numpy as np
import pytest

from blitzgrad.nn import Chain, Conv2d, Dense, Flatten, MaxPool2d, onecold, onehot, params, relu, softmax
from blitzgrad.losses import crossentropy
from blitzgrad.tensor import Tensor

def test_dense_matches_formula():
    np.random.seed(0)
    m = Dense(10, 5)
    x = np.random.rand(10)
    y = m(x)
    assert y.shape == (5,)
    assert np.allclose(y.data, x @ m.W.data + m.b.data)

def test_dense_batch_and_params():
    m = Dense(4, 3, relu)
    y = m(Tensor(np.random.randn(8, 4)))
    assert y.shape == (8, 3)
    assert np.all(y.data >= 0)
    ps = params(m)
    assert len(ps) == 2
    assert ps[0] is m.W and ps[1] is m.b

def test_chain_gradients_reach_every_parameter():
    np.random.seed(1)
    m = Chain(Dense(10, 5, relu), Dense(5, 2), softmax)
    x = np.random.rand(10)

    loss = crossentropy(m(x), [0.5, 0.5])
    loss.backward()

    ps = m.parameters()
    assert len(ps) == 4
    for p in ps:
        assert p.grad is not None
        assert p.grad.shape == p.shape

def test_chain_indexing():
    d1, d2 = Dense(3, 3), Dense(3, 1)
    m = Chain(d1, d2)
    assert len(m) == 2
    assert m[0] is d1
    assert isinstance(m[1:], Chain) and m[1:][0] is d2

def test_shared_parameters_counted_once():
    d = Dense(2, 2)
    m = Chain(d, d)
    assert len(m.parameters()) == 2

def test_softmax_rows_sum_to_one():
    z = Tensor(np.random.randn(4, 6) * 10)
    p = softmax(z)
    assert np.allclose(p.data.sum(axis=1), 1.0)

def test_small_cnn_shapes():
    np.random.seed(0)
    m = Chain(
        Conv2d(3, 4, 5, relu),
        MaxPool2d(2),
        Conv2d(4, 2, 3, relu),
        MaxPool2d(2),
        Flatten(),
        Dense(2 * 2 * 2, 10),
        softmax,
    )
    x = Tensor(np.random.rand(2, 3, 16, 16))
    y = m(x)
    assert y.shape == (2, 10)
    assert np.allclose(y.data.sum(axis=1), 1.0)

    crossentropy(y, np.array([1, 7])).backward()
    assert all(p.grad is not None for p in m.parameters())

def test_layers_accept_raw_arrays():
    np.random.seed(2)
    x = np.random.rand(2, 1, 6, 6)
    assert Conv2d(1, 3, 3)(x).shape == (2, 3, 4, 4)
    assert MaxPool2d(2)(x).shape == (2, 1, 3, 3)
    assert Flatten()(x).shape == (2, 36)

def test_onehot_onecold():
    Y = onehot([2, 0, 1], 3)
    assert Y.shape == (3, 3)
    assert np.allclose(Y, np.eye(3)[[2, 0, 1]])
    assert list(onecold(Y)) == [2, 0, 1]

    labels = ["cat", "dog", "frog"]
    Y = onehot(["dog", "frog"], labels)
    assert list(onecold(Tensor(Y), labels)) == ["dog", "frog"]

    with pytest.raises(ValueError):
        onehot(["horse"], labels)

def test_module_to_cpu_is_noop():
    m = Dense(2, 2)
    W = m.W
    assert m.to("cpu") is m
    assert m.W is W
    assert m.W.device == "cpu"

def main():
    test_dense_matches_formula()
    test_dense_batch_and_params()
    test_chain_gradients_reach_every_parameter()
    test_chain_indexing()
    test_shared_parameters_counted_once()
    test_softmax_rows_sum_to_one()
    test_small_cnn_shapes()
    test_layers_accept_raw_arrays()
    test_onehot_onecold()
    test_module_to_cpu_is_noop()
    print("[OK] nn tests passed")

if __name__ == "__main__":
    main()
