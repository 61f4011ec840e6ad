# clear_convnet/vol.py

"""
Vol - the 3D volume of numbers that flows through a network.

A Vol holds activations `w` and the gradients `dw` of some scalar loss with
respect to those activations. Both are flat float64 arrays of length
sx * sy * depth, indexed as ((sx * y) + x) * depth + d, so the channels of a
single (x, y) position sit next to each other in memory. Every layer relies
on that layout.
"""

from typing import Dict, Optional, Sequence, Union
import numpy as np


class Vol:
    """
    A volume of activations with a parallel array of gradients.

    Attributes:
        sx (int): Width.
        sy (int): Height.
        depth (int): Number of channels.
        w (np.ndarray): Activations, shape (sx * sy * depth,).
        dw (np.ndarray): Gradients w.r.t. `w`, same shape, zero at creation.
    """

    def __init__(
        self,
        sx: int,
        sy: int,
        depth: int,
        c: Optional[float] = None,
        rng: Optional[np.random.Generator] = None,
    ):
        """
        Creates a volume and initializes its weights.

        Args:
            sx: Width of the volume.
            sy: Height of the volume.
            depth: Number of channels.
            c: Constant fill value. When None, weights are drawn from a zero-mean
               Gaussian with std sqrt(1 / (sx * sy * depth)), so that a unit fed by
               this volume starts with roughly unit output variance.
            rng: Generator used for the random initialization.
        """
        self.sx = int(sx)
        self.sy = int(sy)
        self.depth = int(depth)
        n = self.sx * self.sy * self.depth

        if c is None:
            if rng is None:
                rng = np.random.default_rng()
            scale = np.sqrt(1.0 / n) if n > 0 else 0.0
            self.w = rng.normal(0.0, scale, n)
        else:
            self.w = np.full(n, float(c))
        self.dw = np.zeros(n)

    @classmethod
    def from_array(cls, values: Union[Sequence[float], np.ndarray]) -> "Vol":
        """
        Wraps explicit values in a volume.

        A 1D sequence becomes a 1x1xN volume. A 3D array is read as
        (height, width, depth), which matches the flat memory order.
        """
        arr = np.asarray(values, dtype=float)
        if arr.ndim == 1:
            vol = cls(1, 1, arr.shape[0], 0.0)
        elif arr.ndim == 3:
            sy, sx, depth = arr.shape
            vol = cls(sx, sy, depth, 0.0)
        else:
            raise ValueError(f"Expected a 1D or 3D array, got shape {arr.shape}")
        vol.w = arr.reshape(-1).copy()
        return vol

    def _index(self, x: int, y: int, d: int) -> int:
        return ((self.sx * y) + x) * self.depth + d

    def get(self, x: int, y: int, d: int) -> float:
        return self.w[self._index(x, y, d)]

    def set(self, x: int, y: int, d: int, v: float):
        self.w[self._index(x, y, d)] = v

    def add(self, x: int, y: int, d: int, v: float):
        self.w[self._index(x, y, d)] += v

    def get_grad(self, x: int, y: int, d: int) -> float:
        return self.dw[self._index(x, y, d)]

    def set_grad(self, x: int, y: int, d: int, v: float):
        self.dw[self._index(x, y, d)] = v

    def add_grad(self, x: int, y: int, d: int, v: float):
        self.dw[self._index(x, y, d)] += v

    def clone_and_zero(self) -> "Vol":
        """Returns a volume of the same shape with zero weights and gradients."""
        return Vol(self.sx, self.sy, self.depth, 0.0)

    def clone(self) -> "Vol":
        """Returns a copy of the weights. Gradients of the copy start at zero."""
        V = Vol(self.sx, self.sy, self.depth, 0.0)
        V.w = self.w.copy()
        return V

    def add_from(self, V: "Vol"):
        self.w += V.w

    def add_from_scaled(self, V: "Vol", a: float):
        self.w += a * V.w

    def set_const(self, a: float):
        self.w.fill(a)

    def as_array(self) -> np.ndarray:
        """View of the weights shaped (sy, sx, depth). Writes go through to `w`."""
        return self.w.reshape(self.sy, self.sx, self.depth)

    def grad_array(self) -> np.ndarray:
        """View of the gradients shaped (sy, sx, depth)."""
        return self.dw.reshape(self.sy, self.sx, self.depth)

    def to_json(self) -> Dict:
        """Serializes dimensions and weights. Gradients are not persisted."""
        return {
            'sx': self.sx,
            'sy': self.sy,
            'depth': self.depth,
            'w': self.w.tolist(),
        }

    @classmethod
    def from_json(cls, json: Dict) -> "Vol":
        V = cls(json['sx'], json['sy'], json['depth'], 0.0)
        w = np.asarray(json['w'], dtype=float)
        if w.shape != V.w.shape:
            raise ValueError(
                f"Serialized volume has {w.size} weights, expected "
                f"{V.sx}x{V.sy}x{V.depth}={V.w.size}"
            )
        V.w = w.copy()
        return V

    def __repr__(self):
        return f"Vol(sx={self.sx}, sy={self.sy}, depth={self.depth})"
