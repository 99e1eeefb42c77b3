"""
Layer composition and backpropagation engine built on numpy.
"""
from .base import LAYER_TYPES, Layer, build_layer
from .exceptions import (InvalidConfiguration, NetworkError, NumericDegenerate,
                         ShapeMismatch)

from . import neural_networks  # registers every layer kind

__version__ = "0.1.0"

__all__ = [
    'LAYER_TYPES',
    'Layer',
    'build_layer',
    'NetworkError',
    'ShapeMismatch',
    'InvalidConfiguration',
    'NumericDegenerate',
]
