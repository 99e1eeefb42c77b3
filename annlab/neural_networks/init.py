"""
Parameter initialization rules.

Every rule exposes ``initialize(shape)`` and draws from its own seeded
``numpy.random.Generator``.
"""
import numpy as np

from ..common.utils import check_random_state


def _fans(shape):
    if len(shape) == 1:
        return shape[0], shape[0]
    if len(shape) == 2:
        return shape[0], shape[1]
    # Convolution kernels: (out_channels, in_channels, kernel_h, kernel_w)
    receptive_field = int(np.prod(shape[2:]))
    return shape[1] * receptive_field, shape[0] * receptive_field


class RandomInitialization:
    """Uniform values in [low, high)."""

    def __init__(self, low=-1.0, high=1.0, random_state=None):
        if low >= high:
            raise ValueError(f"low ({low}) must be below high ({high})")
        self.low = low
        self.high = high
        self.rng = check_random_state(random_state)

    def initialize(self, shape):
        return self.rng.uniform(self.low, self.high, shape)


class ConstInitialization:
    """Every parameter set to the same value."""

    def __init__(self, value=0.0):
        self.value = value

    def initialize(self, shape):
        return np.full(shape, self.value, dtype=float)


class GaussianInitialization:
    """Normal draws with the given mean and standard deviation."""

    def __init__(self, mean=0.0, std=1.0, random_state=None):
        if std < 0:
            raise ValueError(f"std must be non-negative, got {std}")
        self.mean = mean
        self.std = std
        self.rng = check_random_state(random_state)

    def initialize(self, shape):
        return self.rng.normal(self.mean, self.std, shape)


class GlorotInitialization:
    """
    Initialization recommended by Glorot et al. (Xavier).

    Uniform in ``[-sqrt(6 / (fan_in + fan_out)), +...]`` by default, or
    normal with variance ``2 / (fan_in + fan_out)`` when ``uniform=False``.
    """

    def __init__(self, uniform=True, random_state=None):
        """
        Args:
            uniform (bool): Draw from a uniform instead of a normal distribution
            random_state (int, Generator, optional): Seed or generator
        """
        self.uniform = uniform
        self.rng = check_random_state(random_state)

    def initialize(self, shape):
        fan_in, fan_out = _fans(tuple(shape))
        if self.uniform:
            init_bound = np.sqrt(6.0 / (fan_in + fan_out))
            return self.rng.uniform(-init_bound, init_bound, shape)
        return self.rng.normal(0.0, np.sqrt(2.0 / (fan_in + fan_out)), shape)
