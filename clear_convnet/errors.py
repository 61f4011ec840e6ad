# clear_convnet/errors.py

"""Exceptions raised by the network builder and the loss layers."""


class ConvNetError(Exception):
    """Base class for all errors raised by clear_convnet."""


class ConfigurationError(ConvNetError, ValueError):
    """A list of layer definitions cannot be turned into a network."""


class InvalidCostTypeError(ConvNetError, TypeError):
    """A loss layer that only accepts a class index received something else."""

    def __init__(self, message: str = "Invalid cost type"):
        super().__init__(message)


class UnsupportedLossLayerError(ConvNetError, RuntimeError):
    """An operation needs a different loss layer at the head of the network."""


class ClassIndexError(ConvNetError, IndexError):
    """A class index does not name one of the loss layer's outputs."""
