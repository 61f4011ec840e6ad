# clear_convnet/layer.py

"""
Base classes shared by every layer type, plus the input layer.

A layer reads the `w` of its input Vol in forward() and keeps a reference to
it in `in_act`. In backward() it reads the gradient that the next layer wrote
into `out_act.dw` and writes the gradient w.r.t. its input into `in_act.dw`.
The output Vol of layer i is the very same object as the input Vol of layer
i + 1, so gradients travel down the network without any copying.
"""

from typing import Dict, List
import logging
import numpy as np

from .vol import Vol


def params_and_grads(params: np.ndarray, grads: np.ndarray,
                     l1_decay_mul: float = 0.0, l2_decay_mul: float = 0.0) -> Dict:
    """
    Bundles a parameter array with its gradient array for a trainer.

    The arrays are the layer's own storage, so an update written into
    `params` is seen by the next forward pass.
    """
    return {
        'params': params,
        'grads': grads,
        'l1_decay_mul': l1_decay_mul,
        'l2_decay_mul': l2_decay_mul,
    }


def window_output_size(in_size: int, size: int, stride: int, pad: int) -> int:
    """
    Number of window applications along one axis: floor((in + 2 * pad - size) / stride + 1).

    A last application that would run past the padded border is trimmed.

    Raises:
        ValueError: If the window or the stride is not positive, the padding is
                    negative, or the window does not fit the padded input once.
    """
    if size < 1 or stride < 1:
        raise ValueError(f"Window size and stride must be positive, got size={size}, stride={stride}")
    if pad < 0:
        raise ValueError(f"Padding must not be negative, got pad={pad}")
    out_size = (in_size + 2 * pad - size) // stride + 1
    if out_size < 1:
        raise ValueError(f"A window of {size} does not fit an input of {in_size} padded by {pad}")
    return out_size


class Layer:
    """
    Abstract base class for all layers in the network.

    Subclasses set `layer_type` to the tag used in layer definitions and in
    serialized networks.
    """
    layer_type = None

    def __init__(self, in_sx=None, in_sy=None, in_depth=None):
        self.in_sx = in_sx
        self.in_sy = in_sy
        self.in_depth = in_depth
        self.out_sx = None
        self.out_sy = None
        self.out_depth = None
        self.in_act = None   # Vol seen by the last forward pass
        self.out_act = None  # Vol produced by the last forward pass

    def forward(self, V: Vol, is_training: bool = False) -> Vol:
        """Computes the output volume for input `V`."""
        raise NotImplementedError("Each layer must implement its own forward pass.")

    def backward(self):
        """Writes d(loss)/d(input) into `in_act.dw` using `out_act.dw`."""
        raise NotImplementedError("Each layer must implement its own backward pass.")

    def get_params_and_grads(self) -> List[Dict]:
        """Layers without learnable parameters expose nothing to the trainer."""
        return []

    def to_json(self) -> Dict:
        return {
            'layer_type': self.layer_type,
            'out_sx': self.out_sx,
            'out_sy': self.out_sy,
            'out_depth': self.out_depth,
        }

    @classmethod
    def from_json(cls, json: Dict) -> "Layer":
        """
        Rebuilds a layer from the record produced by `to_json`.

        The constructor is bypassed: shapes and weights come from the record and
        caches such as switches or dropout masks are re-created as zeros.
        """
        if json.get('layer_type') != cls.layer_type:
            raise ValueError(f"Cannot load a '{json.get('layer_type')}' record "
                             f"into {cls.__name__}")
        layer = cls.__new__(cls)
        Layer.__init__(layer)
        layer.out_sx = json['out_sx']
        layer.out_sy = json['out_sy']
        layer.out_depth = json['out_depth']
        layer._load_json(json)
        return layer

    def _load_json(self, json: Dict):
        """Restores the variant-specific part of a serialized layer."""

    def _zero_input_grad(self) -> Vol:
        V = self.in_act
        V.dw = np.zeros_like(V.w)
        return V

    def __repr__(self):
        return (f"{self.__class__.__name__}(out_sx={self.out_sx}, "
                f"out_sy={self.out_sy}, out_depth={self.out_depth})")


class ElementwiseLayer(Layer):
    """A parameterless layer whose output has exactly the shape of its input."""

    def __init__(self, in_sx, in_sy, in_depth):
        super().__init__(in_sx, in_sy, in_depth)
        self.out_sx = in_sx
        self.out_sy = in_sy
        self.out_depth = in_depth

    def _load_json(self, json: Dict):
        self.in_sx = self.out_sx
        self.in_sy = self.out_sy
        self.in_depth = self.out_depth


class InputLayer(Layer):
    """
    Declares the size of the volumes fed to the network.

    Forward is the identity and backward does nothing; the layer only exists so
    that the next layer can read its input dimensions.
    """
    layer_type = 'input'

    def __init__(self, out_sx=None, out_sy=None, out_depth=None,
                 width=None, height=None, depth=None, sx=None, sy=None):
        super().__init__()
        self.out_depth = _first_given(out_depth, depth)
        if self.out_depth is None:
            raise ValueError("Input layer requires 'out_depth' (or 'depth').")
        # spatial dimensions default to 1
        self.out_sx = _first_given(out_sx, sx, width, default=1)
        self.out_sy = _first_given(out_sy, sy, height, default=1)
        logging.debug(f"InputLayer created: {self.out_sx}x{self.out_sy}x{self.out_depth}")

    def forward(self, V: Vol, is_training: bool = False) -> Vol:
        self.in_act = V
        self.out_act = V
        return self.out_act

    def backward(self):
        pass


def _first_given(*values, default=None):
    for v in values:
        if v is not None:
            return v
    return default
