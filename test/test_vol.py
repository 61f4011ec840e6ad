# can be run with the command ...\package> python -m pytest
import numpy as np
import pytest

from clear_convnet import Vol


def test_layout_is_channel_interleaved():
    V = Vol(3, 2, 4, 0.0)
    V.set(2, 1, 3, 7.0)
    # ((sx * y) + x) * depth + d
    assert V.w[((3 * 1) + 2) * 4 + 3] == 7.0
    assert V.get(2, 1, 3) == 7.0
    assert V.as_array()[1, 2, 3] == 7.0


def test_grad_accessors():
    V = Vol(2, 2, 2, 1.0)
    V.set_grad(1, 0, 1, 2.0)
    V.add_grad(1, 0, 1, 0.5)
    assert V.get_grad(1, 0, 1) == 2.5
    assert V.dw.sum() == 2.5
    assert len(V.dw) == len(V.w)


def test_constant_fill_and_zero_grads():
    V = Vol(2, 3, 4, 1.5)
    assert V.w.shape == (24,)
    assert np.all(V.w == 1.5)
    assert np.all(V.dw == 0.0)


def test_random_init_is_scaled_by_fan_in():
    rng = np.random.default_rng(0)
    V = Vol(10, 10, 10, rng=rng)
    # std sqrt(1/1000) ~ 0.0316
    assert abs(np.std(V.w) - np.sqrt(1.0 / 1000)) < 0.005
    assert abs(np.mean(V.w)) < 0.005


def test_random_init_is_reproducible_with_seeded_generator():
    a = Vol(3, 3, 2, rng=np.random.default_rng(7))
    b = Vol(3, 3, 2, rng=np.random.default_rng(7))
    assert np.array_equal(a.w, b.w)


def test_from_array_1d_and_3d():
    V = Vol.from_array([1.0, 2.0, 3.0])
    assert (V.sx, V.sy, V.depth) == (1, 1, 3)
    assert np.array_equal(V.w, [1.0, 2.0, 3.0])

    img = np.arange(2 * 3 * 4, dtype=float).reshape(2, 3, 4)  # (sy, sx, depth)
    V = Vol.from_array(img)
    assert (V.sx, V.sy, V.depth) == (3, 2, 4)
    assert V.get(2, 1, 3) == img[1, 2, 3]

    with pytest.raises(ValueError):
        Vol.from_array(np.zeros((2, 2)))


def test_clone_copies_weights_not_storage():
    V = Vol.from_array([1.0, -2.0])
    V.dw[:] = 5.0
    C = V.clone()
    assert np.array_equal(C.w, V.w)
    assert np.all(C.dw == 0.0)
    C.w[0] = 100.0
    assert V.w[0] == 1.0


def test_clone_and_zero():
    V = Vol(2, 2, 3, rng=np.random.default_rng(1))
    Z = V.clone_and_zero()
    assert (Z.sx, Z.sy, Z.depth) == (2, 2, 3)
    assert np.all(Z.w == 0.0) and np.all(Z.dw == 0.0)


def test_add_from_and_scaled():
    a = Vol.from_array([1.0, 2.0])
    b = Vol.from_array([10.0, 20.0])
    a.add_from(b)
    assert np.array_equal(a.w, [11.0, 22.0])
    a.add_from_scaled(b, -0.5)
    assert np.array_equal(a.w, [6.0, 12.0])
    a.set_const(3.0)
    assert np.array_equal(a.w, [3.0, 3.0])


def test_json_round_trip_drops_gradients():
    V = Vol(2, 1, 3, rng=np.random.default_rng(3))
    V.dw[:] = 1.0
    record = V.to_json()
    assert set(record) == {'sx', 'sy', 'depth', 'w'}
    W = Vol.from_json(record)
    assert (W.sx, W.sy, W.depth) == (2, 1, 3)
    assert np.array_equal(W.w, V.w)
    assert np.all(W.dw == 0.0)


def test_from_json_rejects_wrong_length():
    with pytest.raises(ValueError):
        Vol.from_json({'sx': 2, 'sy': 2, 'depth': 1, 'w': [0.0, 1.0]})
