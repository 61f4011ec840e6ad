import numpy as np
import pytest

from clear_convnet import DropoutLayer, Vol


def test_prediction_mode_scales_and_is_deterministic():
    layer = DropoutLayer(in_sx=1, in_sy=1, in_depth=4, drop_prob=0.25,
                         rng=np.random.default_rng(0))
    V = Vol.from_array([4.0, -8.0, 1.0, 0.0])
    first = layer.forward(V).w.copy()
    second = layer.forward(V).w.copy()
    assert np.array_equal(first, [1.0, -2.0, 0.25, 0.0])
    assert np.array_equal(first, second)
    assert not layer.dropped.any()
    # The input is not scaled in place
    assert np.array_equal(V.w, [4.0, -8.0, 1.0, 0.0])


def test_training_mode_drops_units():
    layer = DropoutLayer(in_sx=10, in_sy=10, in_depth=10, drop_prob=0.5,
                         rng=np.random.default_rng(1))
    V = Vol(10, 10, 10, 1.0)
    out = layer.forward(V, is_training=True)
    assert layer.dropped.shape == (1000,)
    assert np.all(out.w[layer.dropped] == 0.0)
    assert np.all(out.w[~layer.dropped] == 1.0)
    assert 400 < layer.dropped.sum() < 600


def test_backward_blocks_dropped_units():
    layer = DropoutLayer(in_sx=1, in_sy=1, in_depth=50, drop_prob=0.5,
                         rng=np.random.default_rng(2))
    V = Vol(1, 1, 50, 1.0)
    layer.forward(V, is_training=True)
    layer.out_act.dw = np.full(50, 3.0)
    layer.backward()
    assert np.all(V.dw[layer.dropped] == 0.0)
    assert np.all(V.dw[~layer.dropped] == 3.0)


def test_prediction_backward_passes_gradient_through():
    layer = DropoutLayer(in_sx=1, in_sy=1, in_depth=3)
    V = Vol.from_array([1.0, 2.0, 3.0])
    layer.forward(V, is_training=True)
    layer.forward(V)  # a prediction pass clears the mask of the training pass
    layer.out_act.dw = np.array([1.0, 2.0, 3.0])
    layer.backward()
    assert np.array_equal(V.dw, [1.0, 2.0, 3.0])


def test_seeded_generators_give_the_same_mask():
    masks = []
    for _ in range(2):
        layer = DropoutLayer(in_sx=2, in_sy=2, in_depth=4, rng=np.random.default_rng(5))
        layer.forward(Vol(2, 2, 4, 1.0), is_training=True)
        masks.append(layer.dropped.copy())
    assert np.array_equal(masks[0], masks[1])


def test_dropout_json_round_trip():
    layer = DropoutLayer(in_sx=2, in_sy=3, in_depth=4, drop_prob=0.3)
    record = layer.to_json()
    assert record['drop_prob'] == 0.3
    loaded = DropoutLayer.from_json(record)
    assert loaded.drop_prob == 0.3
    assert (loaded.in_sx, loaded.in_sy, loaded.in_depth) == (2, 3, 4)
    assert loaded.dropped.shape == (24,) and not loaded.dropped.any()
    out = loaded.forward(Vol(2, 3, 4, 2.0))
    assert out.w == pytest.approx(np.full(24, 0.6))
