"""
Neural network layers implementation.

Every layer consumes a batch of shape (n_samples, n_features). Activation
layers derive their derivative from the input they are handed in
``backward`` rather than from cached state, so a driver may replay the
backward pass of an earlier time step.
"""
from collections import OrderedDict

import numpy as np

from ..base import Layer, register_layer
from ..common.utils import check_input
from ..exceptions import InvalidConfiguration, ShapeMismatch


def sigmoid(x):
    """Numerically safe logistic function."""
    # Clip input to prevent overflow
    return 1.0 / (1.0 + np.exp(-np.clip(x, -500, 500)))


def log_softmax(x):
    shifted = x - np.max(x, axis=1, keepdims=True)
    return shifted - np.log(np.sum(np.exp(shifted), axis=1, keepdims=True))


def _check_size(name, value):
    if int(value) <= 0:
        raise InvalidConfiguration(f"{name} must be positive, got {value}")
    return int(value)


@register_layer
class Identity(Layer):
    """Pass-through layer."""

    def forward(self, x, deterministic=False):
        self.output = x
        return self.output

    def backward(self, x, upstream_grad):
        self.delta = upstream_grad
        return self.delta


@register_layer
class Linear(Layer):
    """
    Affine layer ``y = x W + b``.
    """
    _config_keys = ("in_features", "out_features")

    def __init__(self, in_features, out_features):
        """
        Initialize the linear layer.

        Args:
            in_features (int): Number of input features
            out_features (int): Number of output features
        """
        super().__init__()
        self.in_features = _check_size("in_features", in_features)
        self.out_features = _check_size("out_features", out_features)

    def param_shapes(self):
        return OrderedDict(weight=(self.in_features, self.out_features),
                           bias=(self.out_features,))

    def forward(self, x, deterministic=False):
        """
        Forward pass: x.dot(weight) + bias

        Args:
            x (ndarray): Input data of shape (batch_size, in_features)
            deterministic (bool): Unused, affine layers have no random state

        Returns:
            ndarray: Output of shape (batch_size, out_features)
        """
        x = check_input(x, self.in_features, "Linear")
        params = self.named_parameters()
        self.output = np.dot(x, params["weight"]) + params["bias"]
        return self.output

    def backward(self, x, upstream_grad):
        """
        Backward pass.

        Args:
            x (ndarray): Input of the matching forward call
            upstream_grad (ndarray): Gradient from the next layer

        Returns:
            ndarray: Gradient with respect to input
        """
        upstream_grad = check_input(upstream_grad, self.out_features, "Linear")
        self.delta = np.dot(upstream_grad, self.named_parameters()["weight"].T)
        return self.delta

    def gradient(self, x, upstream_grad, gradient):
        grads = self._gradient_views(gradient)
        grads["weight"] += np.dot(np.asarray(x).T, upstream_grad)
        grads["bias"] += np.sum(upstream_grad, axis=0)


@register_layer
class LinearNoBias(Layer):
    """Affine layer without bias, ``y = x W``."""
    _config_keys = ("in_features", "out_features")

    def __init__(self, in_features, out_features):
        super().__init__()
        self.in_features = _check_size("in_features", in_features)
        self.out_features = _check_size("out_features", out_features)

    def param_shapes(self):
        return OrderedDict(weight=(self.in_features, self.out_features))

    def forward(self, x, deterministic=False):
        x = check_input(x, self.in_features, "LinearNoBias")
        self.output = np.dot(x, self.named_parameters()["weight"])
        return self.output

    def backward(self, x, upstream_grad):
        upstream_grad = check_input(upstream_grad, self.out_features, "LinearNoBias")
        self.delta = np.dot(upstream_grad, self.named_parameters()["weight"].T)
        return self.delta

    def gradient(self, x, upstream_grad, gradient):
        self._gradient_views(gradient)["weight"] += np.dot(np.asarray(x).T, upstream_grad)


@register_layer
class Add(Layer):
    """Learned bias only, ``y = x + b``."""
    _config_keys = ("out_features",)

    def __init__(self, out_features):
        super().__init__()
        self.out_features = _check_size("out_features", out_features)

    def param_shapes(self):
        return OrderedDict(bias=(self.out_features,))

    def forward(self, x, deterministic=False):
        x = check_input(x, self.out_features, "Add")
        self.output = x + self.named_parameters()["bias"]
        return self.output

    def backward(self, x, upstream_grad):
        self.delta = upstream_grad
        return self.delta

    def gradient(self, x, upstream_grad, gradient):
        self._gradient_views(gradient)["bias"] += np.sum(upstream_grad, axis=0)


@register_layer
class Constant(Layer):
    """Emit a constant row for every sample, whatever the input."""
    _config_keys = ("out_features", "value")

    def __init__(self, out_features, value=0.0):
        super().__init__()
        self.out_features = _check_size("out_features", out_features)
        self.value = float(value)

    def forward(self, x, deterministic=False):
        x = np.asarray(x)
        self.output = np.full((x.shape[0], self.out_features), self.value)
        return self.output

    def backward(self, x, upstream_grad):
        self.delta = np.zeros(np.shape(x))
        return self.delta


@register_layer
class MultiplyConstant(Layer):
    """Scale the input by a fixed scalar."""
    _config_keys = ("scalar",)

    def __init__(self, scalar=1.0):
        super().__init__()
        self.scalar = float(scalar)

    def forward(self, x, deterministic=False):
        self.output = np.asarray(x, dtype=float) * self.scalar
        return self.output

    def backward(self, x, upstream_grad):
        self.delta = upstream_grad * self.scalar
        return self.delta


@register_layer
class Sigmoid(Layer):
    """Sigmoid activation layer."""

    def forward(self, x, deterministic=False):
        self.output = sigmoid(np.asarray(x, dtype=float))
        return self.output

    def backward(self, x, upstream_grad):
        # Sigmoid derivative: sigmoid(x) * (1 - sigmoid(x))
        s = sigmoid(np.asarray(x, dtype=float))
        self.delta = upstream_grad * s * (1 - s)
        return self.delta


@register_layer
class Tanh(Layer):
    """Tanh activation layer."""

    def forward(self, x, deterministic=False):
        self.output = np.tanh(x)
        return self.output

    def backward(self, x, upstream_grad):
        # Tanh derivative: 1 - tanh²(x)
        grad_input = np.array(upstream_grad, dtype=float)
        grad_input *= 1 - np.tanh(x) ** 2
        self.delta = grad_input
        return self.delta


@register_layer
class ReLU(Layer):
    """ReLU activation layer."""

    def forward(self, x, deterministic=False):
        output = np.array(x, dtype=float)
        np.maximum(output, 0, out=output)
        self.output = output
        return self.output

    def backward(self, x, upstream_grad):
        # ReLU derivative: gradient is 0 where input was <= 0
        grad_input = np.array(upstream_grad, dtype=float)
        grad_input[np.asarray(x) <= 0] = 0
        self.delta = grad_input
        return self.delta


@register_layer
class LeakyReLU(Layer):
    """Leaky ReLU, ``max(x, alpha * x)``."""
    _config_keys = ("alpha",)

    def __init__(self, alpha=0.03):
        super().__init__()
        self.alpha = float(alpha)

    def forward(self, x, deterministic=False):
        x = np.asarray(x, dtype=float)
        self.output = np.where(x > 0, x, self.alpha * x)
        return self.output

    def backward(self, x, upstream_grad):
        self.delta = upstream_grad * np.where(np.asarray(x) > 0, 1.0, self.alpha)
        return self.delta


@register_layer
class HardTanH(Layer):
    """Clamp the input to [min_value, max_value]."""
    _config_keys = ("max_value", "min_value")

    def __init__(self, max_value=1.0, min_value=-1.0):
        super().__init__()
        if min_value >= max_value:
            raise InvalidConfiguration(
                f"min_value ({min_value}) must be below max_value ({max_value})")
        self.max_value = float(max_value)
        self.min_value = float(min_value)

    def forward(self, x, deterministic=False):
        self.output = np.clip(x, self.min_value, self.max_value)
        return self.output

    def backward(self, x, upstream_grad):
        x = np.asarray(x)
        inside = (x > self.min_value) & (x < self.max_value)
        self.delta = upstream_grad * inside
        return self.delta


@register_layer
class LogSoftMax(Layer):
    """Log of the softmax over the feature axis."""

    def forward(self, x, deterministic=False):
        self.output = log_softmax(check_input(x, name="LogSoftMax"))
        return self.output

    def backward(self, x, upstream_grad):
        probs = np.exp(log_softmax(check_input(x, name="LogSoftMax")))
        self.delta = upstream_grad - probs * np.sum(upstream_grad, axis=1, keepdims=True)
        return self.delta


@register_layer
class Softmax(Layer):
    """Softmax activation layer."""

    def forward(self, x, deterministic=False):
        self.output = np.exp(log_softmax(check_input(x, name="Softmax")))
        return self.output

    def backward(self, x, upstream_grad):
        probs = np.exp(log_softmax(check_input(x, name="Softmax")))
        inner = np.sum(upstream_grad * probs, axis=1, keepdims=True)
        self.delta = probs * (upstream_grad - inner)
        return self.delta


@register_layer
class FlexibleReLU(Layer):
    """
    ReLU with a learned offset, ``max(x, 0) + alpha``.

    ``alpha`` is a single trainable scalar; ``reset`` sets it back to the
    value given at construction.
    """
    _config_keys = ("alpha",)

    def __init__(self, alpha=0.0):
        super().__init__()
        self.alpha = float(alpha)

    def param_shapes(self):
        return OrderedDict(alpha=(1,))

    def reset(self):
        self.named_parameters()["alpha"][...] = self.alpha

    def forward(self, x, deterministic=False):
        x = np.asarray(x, dtype=float)
        self.output = np.maximum(x, 0.0) + self.named_parameters()["alpha"][0]
        return self.output

    def backward(self, x, upstream_grad):
        self.delta = upstream_grad * (np.asarray(x) > 0)
        return self.delta

    def gradient(self, x, upstream_grad, gradient):
        self._gradient_views(gradient)["alpha"] += np.sum(upstream_grad)


@register_layer
class Select(Layer):
    """
    Pick one sample of the batch, optionally truncated to its first
    ``elements`` features (all of them when ``elements`` is 0).
    """
    _config_keys = ("index", "elements")

    def __init__(self, index, elements=0):
        super().__init__()
        if int(index) < 0 or int(elements) < 0:
            raise InvalidConfiguration(
                f"index and elements must be non-negative, got {index} and {elements}")
        self.index = int(index)
        self.elements = int(elements)

    def _columns(self, n_features):
        return slice(0, self.elements or n_features)

    def forward(self, x, deterministic=False):
        x = check_input(x, name="Select")
        if self.index >= x.shape[0]:
            raise ShapeMismatch(
                f"Select: index {self.index} is out of range for {x.shape[0]} samples")
        self.output = x[self.index:self.index + 1, self._columns(x.shape[1])]
        return self.output

    def backward(self, x, upstream_grad):
        x = np.asarray(x)
        self.delta = np.zeros(x.shape)
        self.delta[self.index:self.index + 1, self._columns(x.shape[1])] = upstream_grad
        return self.delta


@register_layer
class Join(Layer):
    """Flatten the whole batch into a single row."""

    def forward(self, x, deterministic=False):
        x = np.asarray(x, dtype=float)
        self.output = x.reshape(1, -1)
        return self.output

    def backward(self, x, upstream_grad):
        self.delta = np.reshape(upstream_grad, np.shape(x))
        return self.delta


@register_layer
class Lookup(Layer):
    """
    Embedding table.

    Every input entry is a 0-based row index into a ``(vocabulary_size,
    embedding_size)`` table. A sample of ``k`` indices maps to the
    concatenation of its ``k`` embeddings, so the output has
    ``k * embedding_size`` columns. Indices carry no gradient.
    """
    _config_keys = ("vocabulary_size", "embedding_size")

    def __init__(self, vocabulary_size, embedding_size):
        super().__init__()
        self.vocabulary_size = _check_size("vocabulary_size", vocabulary_size)
        self.embedding_size = _check_size("embedding_size", embedding_size)

    def param_shapes(self):
        return OrderedDict(weight=(self.vocabulary_size, self.embedding_size))

    def _indices(self, x):
        x = check_input(x, name="Lookup")
        indices = x.astype(int)
        if np.any(indices != x) or np.any(indices < 0) or np.any(indices >= self.vocabulary_size):
            raise ShapeMismatch(
                f"Lookup: indices must be integers in [0, {self.vocabulary_size})")
        return indices

    def forward(self, x, deterministic=False):
        indices = self._indices(x)
        table = self.named_parameters()["weight"]
        self.output = table[indices].reshape(indices.shape[0], -1)
        return self.output

    def backward(self, x, upstream_grad):
        self.delta = np.zeros(np.shape(x))
        return self.delta

    def gradient(self, x, upstream_grad, gradient):
        indices = self._indices(x)
        rows = np.reshape(upstream_grad, (-1, self.embedding_size))
        np.add.at(self._gradient_views(gradient)["weight"], indices.ravel(), rows)
