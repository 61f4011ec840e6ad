# clear_convnet/network.py

"""
Net - a linear stack of layers built from declarative layer definitions.

A network is described by a list of dicts, each with a 'type' tag and the
options of that layer type. The first definition must be the input layer and
the last one a loss layer. Convenience keys are expanded before the layers
are built (see `desugar`):

    [{'type': 'input', 'out_sx': 8, 'out_sy': 8, 'out_depth': 1},
     {'type': 'conv', 'sx': 3, 'filters': 8, 'pad': 1, 'activation': 'relu'},
     {'type': 'pool', 'sx': 2, 'stride': 2},
     {'type': 'fc', 'num_neurons': 20, 'activation': 'tanh', 'drop_prob': 0.5},
     {'type': 'softmax', 'num_classes': 10}]
"""

from numbers import Number
from typing import Dict, List, Mapping, Optional, Sequence, Type
import json as jsonlib
import logging
import numpy as np

from .activations import MaxoutLayer, ReluLayer, SigmoidLayer, TanhLayer
from .dotproducts import ConvLayer, FullyConnLayer
from .dropout import DropoutLayer
from .errors import ConfigurationError, InvalidCostTypeError, UnsupportedLossLayerError
from .layer import InputLayer, Layer
from .losses import RegressionLayer, RegressionTarget, SoftmaxLayer, SVMLayer
from .normalization import LocalResponseNormalizationLayer
from .pooling import PoolLayer
from .vol import Vol

# Dictionary mapping layer type tags to their classes
LAYER_TYPES: Dict[str, Type[Layer]] = {
    'input': InputLayer,
    'conv': ConvLayer,
    'fc': FullyConnLayer,
    'pool': PoolLayer,
    'relu': ReluLayer,
    'sigmoid': SigmoidLayer,
    'tanh': TanhLayer,
    'maxout': MaxoutLayer,
    'dropout': DropoutLayer,
    'lrn': LocalResponseNormalizationLayer,
    'softmax': SoftmaxLayer,
    'svm': SVMLayer,
    'regression': RegressionLayer,
}

LOSS_TYPES = ('softmax', 'svm', 'regression')
ACTIVATION_TYPES = ('relu', 'sigmoid', 'tanh', 'maxout')


def get_layer_class(layer_type: str) -> Type[Layer]:
    """
    Looks up the layer class for a type tag.

    Raises:
        ConfigurationError: If the tag is not a known layer type.
    """
    if layer_type not in LAYER_TYPES:
        raise ConfigurationError(
            f"Unknown layer type '{layer_type}'. "
            f"Available types: {list(LAYER_TYPES.keys())}"
        )
    return LAYER_TYPES[layer_type]


def desugar(defs: Sequence[Mapping]) -> List[Dict]:
    """
    Expands convenience keys of layer definitions into explicit layers.

    - A loss definition ('softmax', 'svm', 'regression') gets a fully connected
      layer with `num_classes` neurons inserted in front of it.
    - 'fc' and 'conv' definitions without 'bias_pref' get 0.0, or 0.1 when their
      activation is relu, so relu units start out active.
    - An 'activation' key appends the matching nonlinearity layer ('maxout'
      carries 'group_size', default 2).
    - A 'drop_prob' key on anything but a dropout layer appends a dropout layer.

    The input definitions are not modified. The returned definitions carry no
    convenience keys and map one to one onto layers.

    Raises:
        ConfigurationError: On a definition without 'type', a loss definition
                            without 'num_classes' or an unsupported activation.
    """
    new_defs = []
    for i, original in enumerate(defs):
        d = dict(original)
        layer_type = d.get('type')
        if layer_type is None:
            raise ConfigurationError(f"Layer definition {i} has no 'type': {original}")

        if layer_type in LOSS_TYPES:
            if d.get('num_classes') is None:
                raise ConfigurationError(f"Loss layer '{layer_type}' requires 'num_classes'.")
            # there is no reason the user should have to add this fc layer by hand
            new_defs.append({'type': 'fc', 'num_neurons': d.pop('num_classes')})

        activation = d.pop('activation', None)
        group_size = d.pop('group_size', None) if layer_type != 'maxout' else None
        drop_prob = d.pop('drop_prob', None) if layer_type != 'dropout' else None

        if layer_type in ('fc', 'conv') and d.get('bias_pref') is None:
            d['bias_pref'] = 0.1 if activation == 'relu' else 0.0

        new_defs.append(d)

        if activation is not None:
            if activation not in ACTIVATION_TYPES:
                raise ConfigurationError(
                    f"Unsupported activation '{activation}'. "
                    f"Available activations: {list(ACTIVATION_TYPES)}"
                )
            if activation == 'maxout':
                new_defs.append({'type': 'maxout',
                                 'group_size': group_size if group_size is not None else 2})
            else:
                new_defs.append({'type': activation})

        if drop_prob is not None:
            new_defs.append({'type': 'dropout', 'drop_prob': drop_prob})

    return new_defs


class Net:
    """
    A network of layers in a simple linear order.

    The first layer is always an InputLayer and the last one a loss layer
    (softmax, svm or regression). A forward pass threads one Vol through every
    layer; a backward pass seeds the gradient at the loss layer and walks back
    to the input, leaving parameter gradients in place for a trainer to read
    through `get_params_and_grads`.
    """

    def __init__(self, layer_defs: Optional[Sequence[Mapping]] = None,
                 rng: Optional[np.random.Generator] = None):
        """
        Args:
            layer_defs: Layer definitions to build immediately. Without them the
                        network stays empty until `make_layers` is called.
            rng: Generator used for weight initialization and dropout sampling.
                 Pass a seeded generator for reproducible networks.
        """
        self.rng = rng if rng is not None else np.random.default_rng()
        self.layers: List[Layer] = []
        if layer_defs is not None:
            self.make_layers(layer_defs)

    def make_layers(self, defs: Sequence[Mapping]):
        """
        Builds the layers from a list of definitions, replacing any existing ones.

        Raises:
            ConfigurationError: If the definitions do not describe a valid network.
        """
        if len(defs) < 2:
            raise ConfigurationError("At least one input layer and one loss layer are required.")
        if defs[0].get('type') != 'input':
            raise ConfigurationError("First layer must be the input layer, to declare size of inputs.")

        defs = desugar(defs)
        if defs[-1].get('type') not in LOSS_TYPES:
            raise ConfigurationError(
                f"Last layer must be a loss layer {list(LOSS_TYPES)}, got '{defs[-1].get('type')}'."
            )

        layers: List[Layer] = []
        for i, d in enumerate(defs):
            d = dict(d)
            layer_cls = get_layer_class(d.pop('type'))
            if i > 0:
                prev = layers[i - 1]
                d['in_sx'] = prev.out_sx
                d['in_sy'] = prev.out_sy
                d['in_depth'] = prev.out_depth
            if getattr(layer_cls, 'needs_rng', False):
                d['rng'] = self.rng
            try:
                layer = layer_cls(**d)
            except (TypeError, ValueError) as e:
                raise ConfigurationError(
                    f"Invalid definition for layer {i} ({layer_cls.layer_type}): {e}"
                ) from e
            logging.debug(f"Layer {i} ({layer.layer_type}) output: "
                          f"{layer.out_sx}x{layer.out_sy}x{layer.out_depth}")
            layers.append(layer)

        self.layers = layers
        logging.info(f"Created network with layers: {[l.layer_type for l in self.layers]}")

    def forward(self, V: Vol, is_training: bool = False) -> Vol:
        """
        Forward propagates `V` through every layer.

        A trainer passes is_training=True; any other caller gets prediction mode.
        """
        act = V
        for i, layer in enumerate(self.layers):
            act = layer.forward(act, is_training)
            logging.debug(f"Forward pass - Layer {i} ({layer.layer_type}) output: "
                          f"{act.sx}x{act.sy}x{act.depth}")
        return act

    def _loss_backward(self, y) -> float:
        loss_layer = self.layers[-1]
        if isinstance(loss_layer, RegressionLayer):
            return loss_layer.backward(y)
        # softmax and svm only understand a class index
        if not isinstance(y, Number):
            raise InvalidCostTypeError()
        return loss_layer.backward(y)

    def backward(self, y: RegressionTarget) -> float:
        """
        Backpropagates from the loss layer, computing gradients wrt all parameters.

        Args:
            y: Target of the loss layer: a class index for softmax and svm, a
               vector, a number or {'dim', 'val'} for regression.

        Returns:
            The loss of the last forward pass.
        """
        loss = self._loss_backward(y)
        # walk back to the input layer, last layer already done
        for i in range(len(self.layers) - 2, -1, -1):
            self.layers[i].backward()
        logging.debug(f"Backward pass complete, loss={loss}")
        return loss

    def get_cost_loss(self, V: Vol, y: RegressionTarget) -> float:
        """Computes the loss of `V` against `y` in prediction mode."""
        self.forward(V, False)
        return self._loss_backward(y)

    def get_params_and_grads(self) -> List[Dict]:
        """
        Collects the parameter/gradient records of every layer, in layer order.

        A trainer applies updates positionally, so the order is stable across calls.
        """
        response = []
        for layer in self.layers:
            response.extend(layer.get_params_and_grads())
        return response

    def get_prediction(self) -> int:
        """
        Returns the index of the most probable class of the last forward pass.

        Raises:
            UnsupportedLossLayerError: If the last layer is not softmax.
            RuntimeError: If no forward pass has been run yet.
        """
        S = self.layers[-1] if self.layers else None
        if not isinstance(S, SoftmaxLayer):
            raise UnsupportedLossLayerError(
                "get_prediction assumes softmax as last layer of the net!"
            )
        if S.out_act is None:
            raise RuntimeError("Must call forward() before get_prediction().")
        return int(np.argmax(S.out_act.w))

    def to_json(self) -> Dict:
        return {'layers': [layer.to_json() for layer in self.layers]}

    @classmethod
    def from_json(cls, json: Mapping, rng: Optional[np.random.Generator] = None) -> "Net":
        """Rebuilds a network from `to_json` output. Gradients start at zero."""
        net = cls(rng=rng)
        for record in json['layers']:
            layer_cls = get_layer_class(record['layer_type'])
            layer = layer_cls.from_json(record)
            if isinstance(layer, DropoutLayer):
                layer.rng = net.rng
            net.layers.append(layer)
        return net

    def save(self, filename: str):
        """Writes the serialized network to a JSON file."""
        try:
            with open(filename, 'w') as f:
                jsonlib.dump(self.to_json(), f)
        except OSError as e:
            logging.error(f"Error saving network to {filename}: {e}")
            raise
        logging.info(f"Network saved to {filename}")

    @classmethod
    def load(cls, filename: str, rng: Optional[np.random.Generator] = None) -> "Net":
        """Reads a network written by `save`."""
        try:
            with open(filename) as f:
                data = jsonlib.load(f)
        except FileNotFoundError:
            logging.error(f"Network file not found: {filename}")
            raise
        except ValueError as e:
            logging.error(f"Error reading network file {filename}: {e}")
            raise ValueError(f"Could not load a network from {filename}") from e

        try:
            net = cls.from_json(data, rng=rng)
        except KeyError as e:
            logging.error(f"Missing expected key in network file {filename}: {e}")
            raise ValueError(f"Incompatible or incomplete network file: {filename}") from e
        logging.info(f"Network loaded successfully from {filename}")
        return net

    def summary(self) -> str:
        """
        Generates a text summary of the network architecture and parameters.

        Returns:
            A string containing the network summary.
        """
        summary_str = "\n" + "=" * 50 + "\n"
        summary_str += "Network Summary\n"
        summary_str += "=" * 50 + "\n"
        total_params = 0
        for i, layer in enumerate(self.layers):
            layer_params = sum(p['params'].size for p in layer.get_params_and_grads())
            total_params += layer_params
            summary_str += f"Layer {i}: {layer.__class__.__name__} ({layer.layer_type})\n"
            summary_str += f"  Output Shape: ({layer.out_sx}, {layer.out_sy}, {layer.out_depth})\n"
            summary_str += f"  Parameters: {layer_params}\n"
            summary_str += "-" * 50 + "\n"

        summary_str += f"Total Parameters: {total_params}\n"
        summary_str += "=" * 50 + "\n"
        return summary_str
