# clear_convnet/activations.py

"""
Nonlinearity layers.

Relu, Sigmoid and Tanh act elementwise and keep the input shape. Maxout takes
the maximum over groups of `group_size` consecutive channels, so its output
depth is floor(in_depth / group_size).

Forward never writes into the input volume: the previous layer still owns it
and may need its values during its own backward pass.
"""

from typing import Dict
import logging
import numpy as np

from .layer import ElementwiseLayer, Layer
from .vol import Vol


class ReluLayer(ElementwiseLayer):
    """
    Rectified Linear Unit.

    Mathematical form:
        forward: y = max(0, x)
        backward: dx = dy where y > 0, else 0
    """
    layer_type = 'relu'

    def forward(self, V: Vol, is_training: bool = False) -> Vol:
        self.in_act = V
        V2 = V.clone()
        V2.w[V2.w < 0] = 0.0  # threshold at 0
        self.out_act = V2
        return self.out_act

    def backward(self):
        V = self.in_act
        V2 = self.out_act
        # The threshold is on the output, so units sitting exactly at 0 get no gradient
        V.dw = np.where(V2.w <= 0, 0.0, V2.dw)


class SigmoidLayer(ElementwiseLayer):
    """
    Logistic sigmoid, output in (0, 1).

    Mathematical form:
        forward: y = 1 / (1 + e^-x)
        backward: dx = y * (1 - y) * dy
    """
    layer_type = 'sigmoid'

    def forward(self, V: Vol, is_training: bool = False) -> Vol:
        self.in_act = V
        V2 = V.clone_and_zero()
        # Clip input to avoid overflow in exp(-x) for large negative x
        V2.w = 1.0 / (1.0 + np.exp(-np.clip(V.w, -500, 500)))
        self.out_act = V2
        return self.out_act

    def backward(self):
        V = self.in_act
        y = self.out_act.w
        V.dw = y * (1.0 - y) * self.out_act.dw


class TanhLayer(ElementwiseLayer):
    """
    Hyperbolic tangent, output in (-1, 1).

    Mathematical form:
        forward: y = tanh(x) = (e^2x - 1) / (e^2x + 1)
        backward: dx = (1 - y^2) * dy
    """
    layer_type = 'tanh'

    def forward(self, V: Vol, is_training: bool = False) -> Vol:
        self.in_act = V
        V2 = V.clone_and_zero()
        V2.w = np.tanh(V.w)
        self.out_act = V2
        return self.out_act

    def backward(self):
        V = self.in_act
        y = self.out_act.w
        V.dw = (1.0 - y * y) * self.out_act.dw


class MaxoutLayer(Layer):
    """
    Maxout over groups of consecutive channels.

    At every spatial position, channels [i * group_size, (i + 1) * group_size)
    of the input produce output channel i. The index of the winning input
    channel is stored in `switches` (one entry per output unit, in output
    memory order) and backward routes the whole upstream gradient to it.
    Trailing channels that do not fill a complete group are ignored.
    """
    layer_type = 'maxout'

    def __init__(self, in_sx, in_sy, in_depth, group_size=2):
        super().__init__(in_sx, in_sy, in_depth)
        if group_size < 1 or group_size > in_depth:
            raise ValueError(f"Maxout group_size must be between 1 and the input depth {in_depth}, "
                             f"got {group_size}")
        self.group_size = group_size
        self.out_sx = in_sx
        self.out_sy = in_sy
        self.out_depth = int(np.floor(in_depth / group_size))
        if in_depth % group_size != 0:
            logging.warning(
                f"Maxout input depth {in_depth} is not divisible by group_size "
                f"{group_size}; the last {in_depth % group_size} channel(s) are ignored."
            )
        self.switches = np.zeros(self.out_sx * self.out_sy * self.out_depth, dtype=int)

    def _groups(self, flat: np.ndarray, depth: int) -> np.ndarray:
        """Reshapes a flat buffer to (positions, out_depth, group_size)."""
        used = self.out_depth * self.group_size
        per_position = flat.reshape(-1, depth)[:, :used]
        return per_position.reshape(-1, self.out_depth, self.group_size)

    def forward(self, V: Vol, is_training: bool = False) -> Vol:
        self.in_act = V
        V2 = Vol(self.out_sx, self.out_sy, self.out_depth, 0.0)

        groups = self._groups(V.w, V.depth)
        # argmax keeps the first of equal values, so ties go to the lowest channel
        winner = np.argmax(groups, axis=2)  # (positions, out_depth)
        V2.w = np.take_along_axis(groups, winner[:, :, None], axis=2).reshape(-1)

        base = np.arange(self.out_depth) * self.group_size  # first channel of each group
        self.switches = (base[None, :] + winner).reshape(-1)

        self.out_act = V2
        return self.out_act

    def backward(self):
        V = self._zero_input_grad()
        V2 = self.out_act
        num_positions = V2.sx * V2.sy
        # Absolute flat index of the winning input for each output unit
        position = np.repeat(np.arange(num_positions), self.out_depth)
        winners = position * V.depth + self.switches
        V.dw[winners] = V2.dw

    def to_json(self) -> Dict:
        json = super().to_json()
        json['group_size'] = self.group_size
        return json

    def _load_json(self, json: Dict):
        self.group_size = json['group_size']
        self.switches = np.zeros(self.out_sx * self.out_sy * self.out_depth, dtype=int)
