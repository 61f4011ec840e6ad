# clear_convnet/dropout.py

"""Dropout layer."""

from typing import Dict, Optional
import numpy as np

from .layer import ElementwiseLayer
from .vol import Vol


class DropoutLayer(ElementwiseLayer):
    """
    Randomly zeroes units while training.

    In training mode each unit is dropped independently with probability
    `drop_prob` and the survivors pass through unchanged; the boolean mask is
    kept in `dropped` for backward. In prediction mode nothing is dropped and
    every unit is multiplied by `drop_prob` instead (activations are scaled
    down at prediction time, not up at training time).
    """
    layer_type = 'dropout'
    needs_rng = True

    def __init__(self, in_sx, in_sy, in_depth, drop_prob=0.5,
                 rng: Optional[np.random.Generator] = None):
        super().__init__(in_sx, in_sy, in_depth)
        self.drop_prob = drop_prob
        self.rng = rng if rng is not None else np.random.default_rng()
        self.dropped = np.zeros(self.out_sx * self.out_sy * self.out_depth, dtype=bool)

    def forward(self, V: Vol, is_training: bool = False) -> Vol:
        self.in_act = V
        V2 = V.clone()
        if is_training:
            self.dropped = self.rng.random(V.w.size) < self.drop_prob
            V2.w[self.dropped] = 0.0
        else:
            self.dropped = np.zeros(V.w.size, dtype=bool)
            V2.w *= self.drop_prob
        self.out_act = V2
        return self.out_act

    def backward(self):
        V = self.in_act
        chain_grad = self.out_act.dw
        # Dropped units did not contribute, so they get no gradient
        V.dw = np.where(self.dropped, 0.0, chain_grad)

    def to_json(self) -> Dict:
        json = super().to_json()
        json['drop_prob'] = self.drop_prob
        return json

    def _load_json(self, json: Dict):
        super()._load_json(json)
        self.drop_prob = json['drop_prob']
        self.rng = np.random.default_rng()
        self.dropped = np.zeros(self.out_sx * self.out_sy * self.out_depth, dtype=bool)
