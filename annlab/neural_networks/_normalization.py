"""
Batch and layer normalization.
"""
from collections import OrderedDict

import numpy as np

from ..base import Layer, register_layer
from ..common.utils import check_input
from ..exceptions import InvalidConfiguration, NumericDegenerate


def _normalize_backward(dxhat, xhat, inv_std, axis):
    # Gradient through (x - mean(x)) / sqrt(var(x) + eps) along ``axis``.
    n = dxhat.shape[axis]
    return inv_std / n * (n * dxhat
                          - np.sum(dxhat, axis=axis, keepdims=True)
                          - xhat * np.sum(dxhat * xhat, axis=axis, keepdims=True))


class _Normalization(Layer):
    _config_keys = ("size", "eps")

    def __init__(self, size, eps=1e-8):
        super().__init__()
        if int(size) <= 0:
            raise InvalidConfiguration(f"size must be positive, got {size}")
        if eps <= 0:
            raise NumericDegenerate(f"eps must be positive, got {eps}")
        self.size = int(size)
        self.eps = float(eps)

    def param_shapes(self):
        return OrderedDict(gamma=(self.size,), beta=(self.size,))

    def reset(self):
        """Start from the identity transform: scale 1, shift 0."""
        params = self.named_parameters()
        params["gamma"][...] = 1.0
        params["beta"][...] = 0.0

    def gradient(self, x, upstream_grad, gradient):
        grads = self._gradient_views(gradient)
        grads["gamma"] += np.sum(upstream_grad * self._xhat, axis=0)
        grads["beta"] += np.sum(upstream_grad, axis=0)


@register_layer
class BatchNorm(_Normalization):
    """
    Batch normalization over the sample axis.

    Training batches are normalized with their own mean and population
    variance; deterministic calls use the running statistics. Without
    ``momentum`` the running statistics are the cumulative average over
    every training batch seen since ``reset``; with it they are an
    exponential moving average.
    """
    _config_keys = ("size", "eps", "momentum")
    _step_attrs = ("_xhat", "_inv_std", "_deterministic")

    def __init__(self, size, eps=1e-8, momentum=None):
        """
        Initialize the batch normalization layer.

        Args:
            size (int): Number of features
            eps (float): Added to the variance before the square root
            momentum (float, optional): Weight of the newest batch in the
                running statistics
        """
        super().__init__(size, eps)
        if momentum is not None and not 0.0 < momentum <= 1.0:
            raise InvalidConfiguration(f"momentum must lie in (0, 1], got {momentum}")
        self.momentum = momentum
        self.running_mean = np.zeros(self.size)
        self.running_variance = np.ones(self.size)
        self.count = 0
        self._xhat = None
        self._inv_std = None
        self._deterministic = False

    def reset(self):
        super().reset()
        self.running_mean = np.zeros(self.size)
        self.running_variance = np.ones(self.size)
        self.count = 0

    def _update_running(self, mean, variance):
        self.count += 1
        weight = 1.0 / self.count if self.momentum is None else self.momentum
        self.running_mean += weight * (mean - self.running_mean)
        self.running_variance += weight * (variance - self.running_variance)

    def forward(self, x, deterministic=False):
        x = check_input(x, self.size, "BatchNorm")
        params = self.named_parameters()
        self._deterministic = deterministic
        if deterministic:
            mean, variance = self.running_mean, self.running_variance
        else:
            mean, variance = np.mean(x, axis=0), np.var(x, axis=0)
            self._update_running(mean, variance)

        self._inv_std = 1.0 / np.sqrt(variance + self.eps)
        self._xhat = (x - mean) * self._inv_std
        self.output = params["gamma"] * self._xhat + params["beta"]
        return self.output

    def backward(self, x, upstream_grad):
        dxhat = upstream_grad * self.named_parameters()["gamma"]
        if self._deterministic:
            # Running statistics do not depend on the batch.
            self.delta = dxhat * self._inv_std
        else:
            self.delta = _normalize_backward(dxhat, self._xhat, self._inv_std, axis=0)
        return self.delta


@register_layer
class LayerNorm(_Normalization):
    """
    Layer normalization: every sample is normalized over its own features.

    The same computation runs in both modes. ``mean`` and ``variance`` hold
    the per-sample statistics of the last forward call.
    """

    def __init__(self, size, eps=1e-8):
        super().__init__(size, eps)
        self.mean = None
        self.variance = None
        self._xhat = None

    def _normalize(self, x):
        mean = np.mean(x, axis=1, keepdims=True)
        variance = np.var(x, axis=1, keepdims=True)
        inv_std = 1.0 / np.sqrt(variance + self.eps)
        return (x - mean) * inv_std, inv_std, mean, variance

    def forward(self, x, deterministic=False):
        x = check_input(x, self.size, "LayerNorm")
        params = self.named_parameters()
        self._xhat, _, mean, variance = self._normalize(x)
        self.mean = mean.ravel()
        self.variance = variance.ravel()
        self.output = params["gamma"] * self._xhat + params["beta"]
        return self.output

    def backward(self, x, upstream_grad):
        x = check_input(x, self.size, "LayerNorm")
        xhat, inv_std, _, _ = self._normalize(x)
        dxhat = upstream_grad * self.named_parameters()["gamma"]
        self.delta = _normalize_backward(dxhat, xhat, inv_std, axis=1)
        return self.delta

    def gradient(self, x, upstream_grad, gradient):
        self._xhat = self._normalize(check_input(x, self.size, "LayerNorm"))[0]
        super().gradient(x, upstream_grad, gradient)
