# clear_convnet/normalization.py

"""
Local response normalization across channels.

Every value is divided by a power of the summed squares of its neighbours
along the depth axis at the same (x, y):

    S(x, y, i) = k + (alpha / n) * sum_j a(x, y, j)^2,  j in [i - n//2, i + n//2] ∩ [0, depth)
    out(x, y, i) = a(x, y, i) / S(x, y, i)^beta
"""

from typing import Dict
import logging
import numpy as np

from .layer import ElementwiseLayer
from .vol import Vol


class LocalResponseNormalizationLayer(ElementwiseLayer):
    """
    Cross-channel local response normalization.

    Args:
        k: Additive constant of the denominator.
        n: Number of channels in the normalization window. Should be odd so the
           window is centered on the normalized channel.
        alpha: Scale of the summed squares.
        beta: Exponent of the denominator.

    The denominators S are cached in `S_cache_` by forward and reused by backward.
    """
    layer_type = 'lrn'

    def __init__(self, in_sx, in_sy, in_depth, k=2.0, n=5, alpha=1e-4, beta=0.75):
        super().__init__(in_sx, in_sy, in_depth)
        self.k = k
        self.n = n
        self.alpha = alpha
        self.beta = beta
        if n % 2 == 0:
            logging.warning(f"LRN window n={n} is even; it should be odd to be centered.")
        self.S_cache_ = None

    def _window(self, i: int, depth: int):
        half = self.n // 2
        return max(0, i - half), min(i + half, depth - 1) + 1

    def forward(self, V: Vol, is_training: bool = False) -> Vol:
        self.in_act = V
        a = V.w.reshape(-1, V.depth)  # (positions, depth)
        squares = a * a

        S = np.empty_like(a)
        for i in range(V.depth):
            lo, hi = self._window(i, V.depth)
            S[:, i] = squares[:, lo:hi].sum(axis=1)
        S = self.k + (self.alpha / self.n) * S

        self.S_cache_ = V.clone_and_zero()
        self.S_cache_.w = S.reshape(-1)

        A = V.clone_and_zero()
        A.w = (a / S ** self.beta).reshape(-1)
        self.out_act = A
        return self.out_act

    def backward(self):
        V = self._zero_input_grad()
        a = V.w.reshape(-1, V.depth)
        S = self.S_cache_.w.reshape(-1, V.depth)
        chain_grad = self.out_act.dw.reshape(-1, V.depth)
        dV = V.dw.reshape(-1, V.depth)  # view, writes land in V.dw

        SB = S ** self.beta
        # d out_i / d a_j = [i == j] / S_i^beta - 2 * beta * (alpha / n) * a_i * a_j * S_i^(-beta - 1)
        direct = chain_grad / SB
        coupling = chain_grad * a * (2.0 * self.beta * self.alpha / self.n) * S ** (-self.beta - 1.0)
        dV += direct
        for i in range(V.depth):
            lo, hi = self._window(i, V.depth)
            dV[:, lo:hi] -= coupling[:, i:i + 1] * a[:, lo:hi]

    def to_json(self) -> Dict:
        json = super().to_json()
        json.update({'k': self.k, 'n': self.n, 'alpha': self.alpha, 'beta': self.beta})
        return json

    def _load_json(self, json: Dict):
        super()._load_json(json)
        self.k = json['k']
        self.n = json['n']
        self.alpha = json['alpha']
        self.beta = json['beta']
        self.S_cache_ = None
