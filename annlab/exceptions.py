"""
Exceptions raised by network layers and drivers.
"""


class NetworkError(Exception):
    """Base class for all errors raised by annlab."""


class ShapeMismatch(NetworkError, ValueError):
    """Input, output or parameter dimensions disagree."""


class InvalidConfiguration(NetworkError, ValueError):
    """A layer or network was configured with unusable settings."""


class NumericDegenerate(NetworkError, ValueError):
    """A numeric setting would make the computation degenerate."""
