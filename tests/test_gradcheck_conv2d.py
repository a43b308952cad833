import numpy as np
from blitzgrad.tensor import Tensor

def rel_error(a, b, eps=1e-12):
    return np.max(np.abs(a - b) / np.maximum(eps, np.abs(a) + np.abs(b)))

def numeric_grad(param: Tensor, compute_loss, eps=1e-5):
    g = np.zeros_like(param.data, dtype=float)
    it = np.nditer(param.data, flags=["multi_index"], op_flags=["readwrite"])
    while not it.finished:
        idx = it.multi_index
        old = param.data[idx]

        param.data[idx] = old + eps
        L_pos = float(compute_loss().data)

        param.data[idx] = old - eps
        L_neg = float(compute_loss().data)

        param.data[idx] = old
        g[idx] = (L_pos - L_neg) / (2 * eps)
        it.iternext()
    return g

def test_conv2d_forward_shape():
    np.random.seed(0)

    x = Tensor(np.random.randn(2, 3, 7, 7), requires_grad=True)
    w = Tensor(np.random.randn(4, 3, 3, 3), requires_grad=True)
    b = Tensor(np.random.randn(4,), requires_grad=True)

    y = x.conv2d(w, b, stride=2, padding=1)
    assert y.data.shape == (2, 4, 4, 4), y.data.shape

def test_conv2d_matches_direct_loop():
    np.random.seed(1)
    x = np.random.randn(1, 2, 4, 4)
    w = np.random.randn(3, 2, 2, 2)

    y = Tensor(x).conv2d(Tensor(w), stride=1, padding=0).data

    ref = np.zeros((1, 3, 3, 3))
    for o in range(3):
        for r in range(3):
            for c in range(3):
                ref[0, o, r, c] = np.sum(x[0, :, r:r + 2, c:c + 2] * w[o])
    assert np.allclose(y, ref)

def test_conv2d_gradcheck():
    np.random.seed(0)

    # small shapes so numeric grad is not too slow
    x = Tensor(np.random.randn(1, 2, 5, 5), requires_grad=True)
    w = Tensor(np.random.randn(3, 2, 3, 3), requires_grad=True)
    b = Tensor(np.random.randn(3,), requires_grad=True)
    r = np.random.randn(1, 3, 5, 5)

    def compute_loss():
        y = x.conv2d(w, b, stride=1, padding=1)
        return (y * r).sum()  # scalar

    x.zero_grad(); w.zero_grad(); b.zero_grad()
    L = compute_loss()
    L.backward()

    gx_auto = x.grad.copy()
    gw_auto = w.grad.copy()
    gb_auto = b.grad.copy()

    gx_num = numeric_grad(x, compute_loss, eps=1e-5)
    gw_num = numeric_grad(w, compute_loss, eps=1e-5)
    gb_num = numeric_grad(b, compute_loss, eps=1e-5)

    ex = rel_error(gx_auto, gx_num)
    ew = rel_error(gw_auto, gw_num)
    eb = rel_error(gb_auto, gb_num)

    assert ex < 1e-4, ex
    assert ew < 1e-4, ew
    assert eb < 1e-4, eb

def test_maxpool2d_shape():
    np.random.seed(0)
    x = Tensor(np.random.randn(2, 3, 7, 7), requires_grad=False)
    y = x.maxpool2d(kernel_size=2, stride=2, padding=0)
    assert y.data.shape == (2, 3, 3, 3), y.data.shape

def test_maxpool2d_gradcheck():
    np.random.seed(0)

    x = Tensor(np.random.randn(1, 2, 5, 5), requires_grad=True)

    def compute_loss():
        y = x.maxpool2d(kernel_size=2, stride=2, padding=0)   # (1,2,2,2)
        return (y * y).sum()

    x.zero_grad()
    L = compute_loss()
    L.backward()
    g_auto = x.grad.copy()
    g_num = numeric_grad(x, compute_loss, eps=1e-6)

    err = rel_error(g_auto, g_num)
    assert err < 1e-5, f"maxpool2d gradcheck failed: {err}"

def test_maxpool2d_padding_ignores_border():
    x = Tensor(-np.ones((1, 1, 2, 2)), requires_grad=True)
    y = x.maxpool2d(kernel_size=2, stride=2, padding=1)
    assert y.shape == (1, 1, 2, 2)
    assert np.allclose(y.data, -1.0)
    y.sum().backward()
    assert np.allclose(x.grad, 1.0)

def main():
    test_conv2d_forward_shape()
    test_conv2d_matches_direct_loop()
    test_conv2d_gradcheck()
    test_maxpool2d_shape()
    test_maxpool2d_gradcheck()
    test_maxpool2d_padding_ignores_border()
    print("[OK] conv2d/maxpool2d gradcheck passed")

if __name__ == "__main__":
    main()
