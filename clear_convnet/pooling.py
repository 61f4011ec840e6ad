# clear_convnet/pooling.py

"""Max pooling over spatial windows, applied to every channel independently."""

from typing import Dict
import numpy as np

from .layer import Layer, window_output_size
from .vol import Vol


class PoolLayer(Layer):
    """
    Max pooling layer.

    Windows are `sx` x `sy` (sy defaults to sx), applied every `stride` positions
    (default 2) over the input padded by `pad` (default 0). The output size uses
    the same trimmed formula as ConvLayer.

    For every output unit the absolute (x, y) input coordinate of the winning
    value is stored in `switchx` / `switchy`, in output memory order, so that
    backward can route gradients without searching the window again. Padding
    never wins a window. A window lying entirely in the padding outputs 0 and
    records the switch (-1, -1).
    """
    layer_type = 'pool'

    def __init__(self, in_sx, in_sy, in_depth, sx, sy=None, stride=2, pad=0):
        super().__init__(in_sx, in_sy, in_depth)
        self.sx = sx  # filter size
        self.sy = sy if sy is not None else sx
        self.stride = stride
        self.pad = pad

        self.out_depth = in_depth
        self.out_sx = window_output_size(in_sx, self.sx, stride, pad)
        self.out_sy = window_output_size(in_sy, self.sy, stride, pad)

        self._reset_switches()

    def _reset_switches(self):
        n = self.out_sx * self.out_sy * self.out_depth
        self.switchx = np.zeros(n, dtype=int)
        self.switchy = np.zeros(n, dtype=int)

    def forward(self, V: Vol, is_training: bool = False) -> Vol:
        self.in_act = V
        A = Vol(self.out_sx, self.out_sy, self.out_depth, 0.0)
        out = A.as_array()
        switchx = self.switchx.reshape(self.out_sy, self.out_sx, self.out_depth)
        switchy = self.switchy.reshape(self.out_sy, self.out_sx, self.out_depth)

        p = self.pad
        # Pad with -inf so padded positions can never be the max
        V_padded = np.pad(V.as_array(), ((p, p), (p, p), (0, 0)),
                          mode='constant', constant_values=-np.inf)

        for ay in range(self.out_sy):
            y = ay * self.stride
            for ax in range(self.out_sx):
                x = ax * self.stride
                if not (x - p < V.sx and x - p + self.sx > 0 and y - p < V.sy and y - p + self.sy > 0):
                    # Window lies entirely in the padding: output 0, no winner
                    out[ay, ax, :] = 0.0
                    switchx[ay, ax, :] = -1
                    switchy[ay, ax, :] = -1
                    continue
                window = V_padded[y:y + self.sy, x:x + self.sx, :]
                # Scan x-major so ties resolve to the smallest x, then smallest y
                scan = window.transpose(1, 0, 2).reshape(-1, self.out_depth)
                best = np.argmax(scan, axis=0)
                out[ay, ax, :] = scan[best, np.arange(self.out_depth)]
                switchx[ay, ax, :] = x - p + best // self.sy
                switchy[ay, ax, :] = y - p + best % self.sy

        self.out_act = A
        return self.out_act

    def backward(self):
        # No parameters, only the gradient w.r.t. the input
        V = self._zero_input_grad()
        d = np.tile(np.arange(self.out_depth), self.out_sx * self.out_sy)
        # A window lying entirely in the padding has no winner inside the input
        inside = ((self.switchx >= 0) & (self.switchx < V.sx) &
                  (self.switchy >= 0) & (self.switchy < V.sy))
        winners = ((V.sx * self.switchy) + self.switchx) * V.depth + d
        # Overlapping windows (stride < size) can pick the same input, so accumulate
        np.add.at(V.dw, winners[inside], self.out_act.dw[inside])

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
        self.sx = json['sx']
        self.sy = json['sy']
        self.stride = json['stride']
        self.in_depth = json['in_depth']
        self.pad = json.get('pad', 0)
        self._reset_switches()
