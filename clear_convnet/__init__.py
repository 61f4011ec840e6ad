"""
clear_convnet - a small convolutional network engine written with NumPy.

Volumes (Vol) flow forward through a linear stack of layers (Net) and
gradients flow back through the same objects, one example at a time.
"""
from .vol import Vol
from .layer import Layer, InputLayer, params_and_grads
from .dotproducts import ConvLayer, FullyConnLayer
from .activations import ReluLayer, SigmoidLayer, TanhLayer, MaxoutLayer
from .pooling import PoolLayer
from .dropout import DropoutLayer
from .normalization import LocalResponseNormalizationLayer
from .losses import SoftmaxLayer, RegressionLayer, SVMLayer
from .network import Net, desugar, get_layer_class, LAYER_TYPES
from .errors import (
    ConvNetError,
    ConfigurationError,
    InvalidCostTypeError,
    UnsupportedLossLayerError,
    ClassIndexError
)

__all__ = [
    'Vol',
    'Layer',
    'InputLayer',
    'params_and_grads',
    'ConvLayer',
    'FullyConnLayer',
    'ReluLayer',
    'SigmoidLayer',
    'TanhLayer',
    'MaxoutLayer',
    'PoolLayer',
    'DropoutLayer',
    'LocalResponseNormalizationLayer',
    'SoftmaxLayer',
    'RegressionLayer',
    'SVMLayer',
    'Net',
    'desugar',
    'get_layer_class',
    'LAYER_TYPES',
    'ConvNetError',
    'ConfigurationError',
    'InvalidCostTypeError',
    'UnsupportedLossLayerError',
    'ClassIndexError'
]
