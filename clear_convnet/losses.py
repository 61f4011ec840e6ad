# clear_convnet/losses.py

"""
Loss layers.

One of these is always the last layer of a network. They are the only layers
whose backward() takes an argument (the target) and returns a value (the
loss), and the only layers that seed gradients instead of consuming them.
"""

from numbers import Number
from typing import Dict, Mapping, Sequence, Union
import numpy as np

from .errors import ClassIndexError, InvalidCostTypeError
from .layer import Layer
from .vol import Vol

RegressionTarget = Union[float, Sequence[float], np.ndarray, Mapping[str, float]]


class LossLayer(Layer):
    """Flattens its input into `num_inputs` scores and emits a 1x1xnum_inputs volume."""

    def __init__(self, in_sx, in_sy, in_depth):
        super().__init__(in_sx, in_sy, in_depth)
        self.num_inputs = in_sx * in_sy * in_depth
        self.out_depth = self.num_inputs
        self.out_sx = 1
        self.out_sy = 1

    def _class_index(self, y) -> int:
        if isinstance(y, bool) or not isinstance(y, Number):
            raise InvalidCostTypeError()
        if isinstance(y, float) and not float(y).is_integer():
            raise InvalidCostTypeError(f"Class index must be an integer, got {y}")
        index = int(y)
        if not 0 <= index < self.out_depth:
            raise ClassIndexError(
                f"Class index {index} is out of range for {self.out_depth} classes"
            )
        return index

    def to_json(self) -> Dict:
        json = super().to_json()
        json['num_inputs'] = self.num_inputs
        return json

    def _load_json(self, json: Dict):
        self.num_inputs = json['num_inputs']


class SoftmaxLayer(LossLayer):
    """
    Softmax classifier over N classes (0 .. N-1) with negative log likelihood loss.

    Forward turns the N incoming scores into probabilities, subtracting the max
    score before exponentiating so large scores cannot overflow.
    """
    layer_type = 'softmax'

    def __init__(self, in_sx, in_sy, in_depth):
        super().__init__(in_sx, in_sy, in_depth)
        self.es = None  # probabilities of the last forward pass

    def forward(self, V: Vol, is_training: bool = False) -> Vol:
        self.in_act = V
        A = Vol(1, 1, self.out_depth, 0.0)

        amax = np.max(V.w)
        es = np.exp(V.w - amax)
        es /= np.sum(es)

        A.w = es.copy()
        self.es = es  # save these for backprop
        self.out_act = A
        return self.out_act

    def backward(self, y: int) -> float:
        """
        Seeds d(loss)/d(scores) = p - onehot(y) and returns -log(p[y]).

        log(0) is not guarded: a vanishing probability yields an infinite loss.
        """
        index = self._class_index(y)
        x = self.in_act
        indicator = np.zeros(self.out_depth)
        indicator[index] = 1.0
        x.dw = -(indicator - self.es)
        return float(-np.log(self.es[index]))

    def _load_json(self, json: Dict):
        super()._load_json(json)
        self.es = None


class RegressionLayer(LossLayer):
    """
    L2 regression loss, 0.5 * sum_i (x_i - y_i)^2 over the regressed dimensions.

    The target can be:
        - a sequence of num_inputs values, regressing every dimension;
        - a single number, regressing dimension 0 only;
        - a mapping {'dim': i, 'val': v}, regressing dimension i towards v.
    Dimensions that are not regressed receive zero gradient.
    """
    layer_type = 'regression'

    def forward(self, V: Vol, is_training: bool = False) -> Vol:
        self.in_act = V
        self.out_act = V
        return V  # identity function

    def backward(self, y: RegressionTarget) -> float:
        x = self._zero_input_grad()
        loss = 0.0
        if isinstance(y, Mapping):
            i = int(y['dim'])
            dy = x.w[i] - y['val']
            x.dw[i] = dy
            loss += 0.5 * dy * dy
        elif isinstance(y, Number):
            # a single regressed value
            dy = x.w[0] - y
            x.dw[0] = dy
            loss += 0.5 * dy * dy
        else:
            target = np.asarray(y, dtype=float).reshape(-1)
            if target.size != self.num_inputs:
                raise ValueError(f"Regression target has {target.size} values, "
                                 f"expected {self.num_inputs}")
            dy = x.w - target
            x.dw = dy
            loss += float(0.5 * np.sum(dy * dy))
        return float(loss)


class SVMLayer(LossLayer):
    """
    Multiclass hinge loss (structured SVM with margin 1).

    The score of the correct class should beat every other score by at least 1;
    each violating class i adds (x_i - x_y + 1) to the loss.
    """
    layer_type = 'svm'

    def forward(self, V: Vol, is_training: bool = False) -> Vol:
        self.in_act = V
        self.out_act = V  # nothing to do, output raw scores
        return V

    def backward(self, y: int) -> float:
        index = self._class_index(y)
        x = self._zero_input_grad()
        margin = 1.0

        ydiff = x.w - x.w[index] + margin
        ydiff[index] = 0.0  # the correct class never violates against itself
        violating = ydiff > 0

        x.dw[violating] += 1.0
        x.dw[index] -= np.count_nonzero(violating)
        return float(np.sum(ydiff[violating]))
