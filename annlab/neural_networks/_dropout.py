"""
Stochastic regularization layers.

Both layers draw a fresh mask on every non-deterministic forward call and
reuse it in the matching backward call. In deterministic mode they are the
identity.
"""
import numpy as np

from ..base import Layer, register_layer
from ..common.utils import check_random_state
from ..exceptions import NumericDegenerate


def _check_probability(p):
    if not 0.0 <= p < 1.0:
        raise NumericDegenerate(f"Dropout probability must lie in [0, 1), got {p}")
    return float(p)


@register_layer
class Dropout(Layer):
    """
    Inverted dropout.

    Each entry is dropped with probability ``p`` and survivors are scaled
    by ``1 / (1 - p)`` so the expected activation is unchanged.
    """
    _config_keys = ("p",)
    _step_attrs = ("mask",)

    def __init__(self, p=0.5, random_state=None):
        """
        Initialize the dropout layer.

        Args:
            p (float): Probability of dropping an entry, in [0, 1)
            random_state (int, Generator, optional): Seed or generator for the masks
        """
        super().__init__()
        self.p = _check_probability(p)
        self.rng = check_random_state(random_state)
        self.mask = None

    def forward(self, x, deterministic=False):
        x = np.asarray(x, dtype=float)
        if deterministic or self.p == 0.0:
            self.mask = None
            self.output = x
            return self.output

        self.mask = (self.rng.random(x.shape) >= self.p) / (1.0 - self.p)
        self.output = x * self.mask
        return self.output

    def backward(self, x, upstream_grad):
        self.delta = upstream_grad if self.mask is None else upstream_grad * self.mask
        return self.delta


@register_layer
class AlphaDropout(Layer):
    """
    Dropout for self-normalizing networks.

    Dropped entries are set to ``alpha`` (the negative saturation value of
    SELU) instead of zero, and an affine correction ``a * y + b`` restores
    the input mean and variance.
    """
    _config_keys = ("p", "alpha")
    _step_attrs = ("mask",)

    def __init__(self, p=0.5, alpha=-1.7580993408473766, random_state=None):
        super().__init__()
        self.p = _check_probability(p)
        self.alpha = float(alpha)
        self.rng = check_random_state(random_state)
        self.a = ((1.0 - self.p) * (1.0 + self.p * self.alpha ** 2)) ** -0.5
        self.b = -self.a * self.alpha * self.p
        self.mask = None

    def forward(self, x, deterministic=False):
        x = np.asarray(x, dtype=float)
        if deterministic:
            self.mask = None
            self.output = x
            return self.output

        self.mask = (self.rng.random(x.shape) >= self.p).astype(float)
        self.output = (x * self.mask + self.alpha * (1.0 - self.mask)) * self.a + self.b
        return self.output

    def backward(self, x, upstream_grad):
        if self.mask is None:
            self.delta = upstream_grad
        else:
            self.delta = upstream_grad * self.mask * self.a
        return self.delta
