import numpy as np
import pytest

from clear_convnet import ConvLayer, FullyConnLayer, Vol


def loss_of(layer, V, G):
    """Scalar loss sum(out * G), so d(loss)/d(out) == G."""
    return float(np.sum(layer.forward(V).w * G))


def analytic_grads(layer, V, G):
    layer.forward(V)
    layer.out_act.dw = G.copy()
    layer.backward()
    return V.dw.copy()


def numeric_grad(f, arr, i, eps=1e-5):
    old = arr[i]
    arr[i] = old + eps
    plus = f()
    arr[i] = old - eps
    minus = f()
    arr[i] = old
    return (plus - minus) / (2 * eps)


@pytest.mark.parametrize("in_sx,sx,stride,pad,expected", [
    (5, 3, 1, 0, 3),
    (5, 3, 1, 1, 5),
    (7, 3, 2, 0, 3),
    (6, 3, 2, 0, 2),  # the last application would run off the input and is trimmed
    (6, 3, 2, 1, 3),
])
def test_conv_output_size(in_sx, sx, stride, pad, expected):
    layer = ConvLayer(in_sx=in_sx, in_sy=in_sx, in_depth=2, sx=sx, filters=4,
                      stride=stride, pad=pad, rng=np.random.default_rng(0))
    assert (layer.out_sx, layer.out_sy, layer.out_depth) == (expected, expected, 4)
    out = layer.forward(Vol(in_sx, in_sx, 2, rng=np.random.default_rng(1)))
    assert (out.sx, out.sy, out.depth) == (expected, expected, 4)


def test_conv_defaults():
    layer = ConvLayer(in_sx=4, in_sy=6, in_depth=3, sx=3, filters=2)
    assert layer.sy == 3 and layer.stride == 1 and layer.pad == 0
    assert layer.l1_decay_mul == 0.0 and layer.l2_decay_mul == 1.0
    assert len(layer.filters) == 2
    assert (layer.filters[0].sx, layer.filters[0].sy, layer.filters[0].depth) == (3, 3, 3)
    assert np.all(layer.biases.w == 0.0)
    assert (layer.out_sx, layer.out_sy) == (2, 4)


def test_conv_forward_matches_direct_sum():
    rng = np.random.default_rng(2)
    layer = ConvLayer(in_sx=4, in_sy=3, in_depth=2, sx=3, sy=2, filters=2, stride=1, pad=1,
                      bias_pref=0.5, rng=rng)
    V = Vol(4, 3, 2, rng=rng)
    out = layer.forward(V)

    for d, f in enumerate(layer.filters):
        for ay in range(layer.out_sy):
            for ax in range(layer.out_sx):
                expected = 0.5
                x, y = ax - 1, ay - 1
                for fy in range(f.sy):
                    for fx in range(f.sx):
                        ox, oy = x + fx, y + fy
                        if 0 <= ox < V.sx and 0 <= oy < V.sy:
                            for fd in range(f.depth):
                                expected += f.get(fx, fy, fd) * V.get(ox, oy, fd)
                assert out.get(ax, ay, d) == pytest.approx(expected)


@pytest.mark.parametrize("stride,pad", [(1, 0), (1, 1), (2, 1), (2, 0)])
def test_conv_gradient_check(stride, pad):
    rng = np.random.default_rng(3)
    layer = ConvLayer(in_sx=5, in_sy=4, in_depth=2, sx=3, filters=3, stride=stride, pad=pad,
                      bias_pref=0.1, rng=rng)
    V = Vol(5, 4, 2, rng=rng)
    G = rng.normal(size=layer.out_sx * layer.out_sy * layer.out_depth)

    dV = analytic_grads(layer, V, G)
    f = lambda: loss_of(layer, V, G)

    for i in range(V.w.size):
        assert dV[i] == pytest.approx(numeric_grad(f, V.w, i), abs=1e-6)
    for filt in layer.filters:
        for i in range(filt.w.size):
            assert filt.dw[i] == pytest.approx(numeric_grad(f, filt.w, i), abs=1e-6)
    for i in range(layer.biases.w.size):
        assert layer.biases.dw[i] == pytest.approx(numeric_grad(f, layer.biases.w, i), abs=1e-6)


def test_conv_backward_accumulates_parameter_grads_and_resets_input_grads():
    rng = np.random.default_rng(4)
    layer = ConvLayer(in_sx=3, in_sy=3, in_depth=1, sx=2, filters=1, rng=rng)
    V = Vol(3, 3, 1, rng=rng)
    G = np.ones(layer.out_sx * layer.out_sy)

    first = analytic_grads(layer, V, G)
    filter_grad = layer.filters[0].dw.copy()
    second = analytic_grads(layer, V, G)

    assert np.allclose(first, second)
    assert np.allclose(layer.filters[0].dw, 2 * filter_grad)
    assert np.allclose(layer.biases.dw, [2 * G.sum()])


def test_fc_forward_is_dot_product_plus_bias():
    rng = np.random.default_rng(5)
    layer = FullyConnLayer(in_sx=2, in_sy=2, in_depth=3, num_neurons=4, bias_pref=0.2, rng=rng)
    assert layer.num_inputs == 12
    assert (layer.out_sx, layer.out_sy, layer.out_depth) == (1, 1, 4)
    V = Vol(2, 2, 3, rng=rng)
    out = layer.forward(V)
    for i, f in enumerate(layer.filters):
        assert out.w[i] == pytest.approx(np.dot(f.w, V.w) + 0.2)


def test_fc_accepts_filters_as_synonym():
    layer = FullyConnLayer(in_sx=1, in_sy=1, in_depth=3, filters=5)
    assert layer.out_depth == 5
    with pytest.raises(ValueError):
        FullyConnLayer(in_sx=1, in_sy=1, in_depth=3)


def test_fc_gradient_check():
    rng = np.random.default_rng(6)
    layer = FullyConnLayer(in_sx=2, in_sy=1, in_depth=3, num_neurons=4, rng=rng)
    V = Vol(2, 1, 3, rng=rng)
    G = rng.normal(size=4)

    dV = analytic_grads(layer, V, G)
    f = lambda: loss_of(layer, V, G)

    for i in range(V.w.size):
        assert dV[i] == pytest.approx(numeric_grad(f, V.w, i), abs=1e-6)
    for filt in layer.filters:
        for i in range(filt.w.size):
            assert filt.dw[i] == pytest.approx(numeric_grad(f, filt.w, i), abs=1e-6)
    assert np.allclose(layer.biases.dw, G)


def test_params_and_grads_share_storage_and_decay():
    layer = FullyConnLayer(in_sx=1, in_sy=1, in_depth=2, num_neurons=3,
                           l1_decay_mul=0.5, l2_decay_mul=2.0)
    pg = layer.get_params_and_grads()
    assert len(pg) == 4
    for record, f in zip(pg[:3], layer.filters):
        assert record['params'] is f.w
        assert record['grads'] is f.dw
        assert record['l1_decay_mul'] == 0.5
        assert record['l2_decay_mul'] == 2.0
    assert pg[3]['params'] is layer.biases.w
    assert pg[3]['l1_decay_mul'] == 0.0 and pg[3]['l2_decay_mul'] == 0.0

    # An in-place update by a trainer is seen by the next forward pass
    V = Vol.from_array([1.0, 1.0])
    pg[3]['params'] += 10.0
    out = layer.forward(V)
    for i, f in enumerate(layer.filters):
        assert out.w[i] == pytest.approx(f.w.sum() + 10.0)


def test_conv_json_round_trip():
    rng = np.random.default_rng(8)
    layer = ConvLayer(in_sx=4, in_sy=4, in_depth=2, sx=3, filters=2, stride=1, pad=1,
                      l1_decay_mul=0.1, l2_decay_mul=0.3, rng=rng)
    record = layer.to_json()
    assert record['layer_type'] == 'conv'
    for key in ('sx', 'sy', 'stride', 'in_depth', 'pad', 'l1_decay_mul', 'l2_decay_mul',
                'filters', 'biases', 'out_sx', 'out_sy', 'out_depth'):
        assert key in record

    loaded = ConvLayer.from_json(record)
    V = Vol(4, 4, 2, rng=rng)
    assert np.array_equal(loaded.forward(V).w, layer.forward(V).w)
    assert loaded.l1_decay_mul == 0.1 and loaded.l2_decay_mul == 0.3
    assert all(np.all(f.dw == 0.0) for f in loaded.filters)


def test_fc_from_json_defaults():
    layer = FullyConnLayer(in_sx=1, in_sy=1, in_depth=2, num_neurons=2)
    record = layer.to_json()
    del record['l1_decay_mul'], record['l2_decay_mul']
    loaded = FullyConnLayer.from_json(record)
    assert loaded.l1_decay_mul == 1.0 and loaded.l2_decay_mul == 1.0
    assert loaded.num_inputs == 2


def test_from_json_rejects_other_layer_type():
    record = FullyConnLayer(in_sx=1, in_sy=1, in_depth=2, num_neurons=2).to_json()
    with pytest.raises(ValueError):
        ConvLayer.from_json(record)
