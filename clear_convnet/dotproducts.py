# clear_convnet/dotproducts.py

"""
Layers that compute dot products between their input and learnable filters.

- ConvLayer slides each filter over the (zero padded) input, sharing weights
  across spatial positions.
- FullyConnLayer takes one full dot product of the flattened input per output.

Both keep one Vol per output channel in `filters` and a 1x1xout_depth Vol of
biases, and both accumulate parameter gradients into the `dw` arrays of those
Vols during backward. Zeroing parameter gradients between updates is the
trainer's job.
"""

from typing import Dict, List, Optional
import logging
import numpy as np

from .layer import Layer, params_and_grads, window_output_size
from .vol import Vol


class DotproductsLayer(Layer):
    """Shared storage, weight decay settings and serialization for conv and fc."""

    def __init__(self, in_sx, in_sy, in_depth, l1_decay_mul=0.0, l2_decay_mul=1.0):
        super().__init__(in_sx, in_sy, in_depth)
        self.l1_decay_mul = l1_decay_mul
        self.l2_decay_mul = l2_decay_mul
        self.filters: List[Vol] = []
        self.biases: Optional[Vol] = None

    def _filter_bank(self) -> np.ndarray:
        """Stacks filter weights as (out_depth, sy, sx, depth). A copy, not a view."""
        return np.stack([f.as_array() for f in self.filters])

    def get_params_and_grads(self) -> List[Dict]:
        response = [params_and_grads(f.w, f.dw, self.l1_decay_mul, self.l2_decay_mul)
                    for f in self.filters]
        # biases are never regularized
        response.append(params_and_grads(self.biases.w, self.biases.dw, 0.0, 0.0))
        return response

    def num_params(self) -> int:
        return sum(f.w.size for f in self.filters) + self.biases.w.size

    def to_json(self) -> Dict:
        json = super().to_json()
        json['l1_decay_mul'] = self.l1_decay_mul
        json['l2_decay_mul'] = self.l2_decay_mul
        json['filters'] = [f.to_json() for f in self.filters]
        json['biases'] = self.biases.to_json()
        return json

    def _load_json(self, json: Dict):
        self.l1_decay_mul = json.get('l1_decay_mul', 1.0)
        self.l2_decay_mul = json.get('l2_decay_mul', 1.0)
        self.filters = [Vol.from_json(f) for f in json['filters']]
        self.biases = Vol.from_json(json['biases'])


class ConvLayer(DotproductsLayer):
    """
    2D convolution over a Vol.

    Each of the `filters` output channels owns a sx x sy x in_depth filter. The
    input is zero padded by `pad` on every side and filters are applied every
    `stride` positions. Output size per axis is
    floor((in + 2 * pad - filter) / stride + 1): a last application that would
    run past the padded border is dropped, not padded further.
    """
    layer_type = 'conv'
    needs_rng = True

    def __init__(self, in_sx, in_sy, in_depth, sx, filters, sy=None, stride=1, pad=0,
                 l1_decay_mul=0.0, l2_decay_mul=1.0, bias_pref=0.0,
                 rng: Optional[np.random.Generator] = None):
        super().__init__(in_sx, in_sy, in_depth, l1_decay_mul, l2_decay_mul)
        self.out_depth = filters
        self.sx = sx  # filter size, odd sizes keep the output centered
        self.sy = sy if sy is not None else sx
        self.stride = stride
        self.pad = pad

        self.out_sx = window_output_size(in_sx, self.sx, stride, pad)
        self.out_sy = window_output_size(in_sy, self.sy, stride, pad)

        if rng is None:
            rng = np.random.default_rng()
        self.filters = [Vol(self.sx, self.sy, in_depth, rng=rng) for _ in range(self.out_depth)]
        self.biases = Vol(1, 1, self.out_depth, bias_pref)

        logging.debug(
            f"ConvLayer created: input {in_sx}x{in_sy}x{in_depth}, {filters} filters of "
            f"{self.sx}x{self.sy}, stride={stride}, pad={pad} -> "
            f"output {self.out_sx}x{self.out_sy}x{self.out_depth}"
        )

    def _padded(self, arr: np.ndarray) -> np.ndarray:
        p = self.pad
        return np.pad(arr, ((p, p), (p, p), (0, 0)), mode='constant')

    def forward(self, V: Vol, is_training: bool = False) -> Vol:
        self.in_act = V
        A = Vol(self.out_sx, self.out_sy, self.out_depth, 0.0)
        out = A.as_array()

        V_padded = self._padded(V.as_array())
        W = self._filter_bank()  # (out_depth, sy, sx, in_depth)
        b = self.biases.w

        for ay in range(self.out_sy):
            y = ay * self.stride
            for ax in range(self.out_sx):
                x = ax * self.stride
                # Receptive field in padded coordinates, shape (sy, sx, in_depth)
                window = V_padded[y:y + self.sy, x:x + self.sx, :]
                # Sum over all filter positions and input channels, for every filter at once
                out[ay, ax, :] = np.tensordot(W, window, axes=3) + b

        self.out_act = A
        return self.out_act

    def backward(self):
        V = self._zero_input_grad()
        V_padded = self._padded(V.as_array())
        dV_padded = np.zeros_like(V_padded)
        W = self._filter_bank()
        dW = np.zeros_like(W)
        dA = self.out_act.grad_array()  # (out_sy, out_sx, out_depth)

        for ay in range(self.out_sy):
            y = ay * self.stride
            for ax in range(self.out_sx):
                x = ax * self.stride
                chain_grad = dA[ay, ax, :]  # one value per filter
                window = V_padded[y:y + self.sy, x:x + self.sx, :]
                # Every filter weight saw this window once
                dW += chain_grad[:, None, None, None] * window[None, :, :, :]
                # Every input value in the window fed every filter
                dV_padded[y:y + self.sy, x:x + self.sx, :] += np.tensordot(chain_grad, W, axes=1)

        for f, df in zip(self.filters, dW):
            f.dw += df.reshape(-1)
        self.biases.dw += dA.sum(axis=(0, 1))

        # Gradients that landed on the zero padding have nowhere to go
        p = self.pad
        V.dw = dV_padded[p:p + V.sy, p:p + V.sx, :].reshape(-1).copy()

    def to_json(self) -> Dict:
        json = super().to_json()
        json.update({
            'sx': self.sx,
            'sy': self.sy,
            'stride': self.stride,
            'in_depth': self.in_depth,
            'pad': self.pad,
        })
        return json

    def _load_json(self, json: Dict):
        super()._load_json(json)
        self.sx = json['sx']
        self.sy = json['sy']
        self.stride = json['stride']
        self.in_depth = json['in_depth']
        self.pad = json.get('pad', 0)


class FullyConnLayer(DotproductsLayer):
    """
    Fully connected layer.

    The input volume is treated as a flat vector of num_inputs = in_sx * in_sy * in_depth
    values. The output is a 1x1x`num_neurons` volume.
    """
    layer_type = 'fc'
    needs_rng = True

    def __init__(self, in_sx, in_sy, in_depth, num_neurons=None, filters=None,
                 l1_decay_mul=0.0, l2_decay_mul=1.0, bias_pref=0.0,
                 rng: Optional[np.random.Generator] = None):
        super().__init__(in_sx, in_sy, in_depth, l1_decay_mul, l2_decay_mul)
        # 'filters' is accepted as a synonym of 'num_neurons'
        self.out_depth = num_neurons if num_neurons is not None else filters
        if self.out_depth is None:
            raise ValueError("Fully connected layer requires 'num_neurons'.")
        self.num_inputs = in_sx * in_sy * in_depth
        self.out_sx = 1
        self.out_sy = 1

        if rng is None:
            rng = np.random.default_rng()
        self.filters = [Vol(1, 1, self.num_inputs, rng=rng) for _ in range(self.out_depth)]
        self.biases = Vol(1, 1, self.out_depth, bias_pref)

        logging.debug(f"FullyConnLayer created: {self.num_inputs} inputs -> {self.out_depth} neurons")

    def forward(self, V: Vol, is_training: bool = False) -> Vol:
        self.in_act = V
        A = Vol(1, 1, self.out_depth, 0.0)
        W = np.stack([f.w for f in self.filters])  # (out_depth, num_inputs)
        A.w = W @ V.w + self.biases.w
        self.out_act = A
        return self.out_act

    def backward(self):
        V = self._zero_input_grad()
        chain_grad = self.out_act.dw  # (out_depth,)

        for f, g in zip(self.filters, chain_grad):
            V.dw += f.w * g  # grad wrt input data
            f.dw += V.w * g  # grad wrt params
        self.biases.dw += chain_grad

    def to_json(self) -> Dict:
        json = super().to_json()
        json['num_inputs'] = self.num_inputs
        return json

    def _load_json(self, json: Dict):
        super()._load_json(json)
        self.num_inputs = json['num_inputs']
