"""
Composite layers: a sequential pipeline and fan-out merge layers.

Every branch of a merge layer consumes the same input. The composite owns
its children exclusively; ``sublayers`` hands out borrowed references.
"""
import numpy as np

from ..base import Layer, register_layer
from ..common.utils import check_same_shape
from ..exceptions import InvalidConfiguration, ShapeMismatch


class _Composite(Layer):
    """Layer that owns an ordered list of child layers."""

    def __init__(self, layers=None):
        super().__init__()
        self._layers = []
        for layer in layers or ():
            self.add(layer)

    def add(self, layer):
        """
        Append a child layer.

        Args:
            layer (Layer): Layer to take ownership of

        Returns:
            The composite itself, so calls can be chained
        """
        if not isinstance(layer, Layer):
            raise InvalidConfiguration(f"Expected a Layer, got {type(layer).__name__}")
        if any(layer is owned for owned in self._layers):
            raise InvalidConfiguration(
                f"{type(layer).__name__} is already a child of this {type(self).__name__}")
        self._layers.append(layer)
        return self

    @property
    def sublayers(self):
        return tuple(self._layers)

    def __len__(self):
        return len(self._layers)

    def _check_children(self):
        if not self._layers:
            raise InvalidConfiguration(f"{type(self).__name__} has no layers.")

    def reset(self):
        self._check_children()
        super().reset()


@register_layer
class Sequential(_Composite):
    """
    Ordered pipeline; each child's output is the next child's input.

    Intermediate inputs of the last forward call and the errors of the last
    backward call are retained for ``gradient``.
    """
    _step_attrs = ("_inputs",)

    def __init__(self, layers=None):
        super().__init__(layers)
        self._inputs = []
        self._errors = []

    def forward(self, x, deterministic=False):
        self._check_children()
        self._inputs = []
        for layer in self._layers:
            self._inputs.append(x)
            x = layer.forward(x, deterministic=deterministic)
        self.output = x
        return self.output

    def backward(self, x, upstream_grad):
        self._errors = [None] * len(self._layers)
        for i in reversed(range(len(self._layers))):
            self._errors[i] = upstream_grad
            upstream_grad = self._layers[i].backward(self._inputs[i], upstream_grad)
        self.delta = upstream_grad
        return self.delta

    def gradient(self, x, upstream_grad, gradient):
        if len(self._errors) != len(self._layers):
            self.backward(x, upstream_grad)
        for layer, layer_input, error in zip(self._layers, self._inputs, self._errors):
            layer.gradient(layer_input, error, gradient)


@register_layer
class AddMerge(_Composite):
    """Elementwise sum of the branch outputs."""

    def forward(self, x, deterministic=False):
        self._check_children()
        outputs = [layer.forward(x, deterministic=deterministic) for layer in self._layers]
        for output in outputs[1:]:
            check_same_shape(outputs[0], output, "AddMerge")
        self.output = np.sum(outputs, axis=0)
        return self.output

    def backward(self, x, upstream_grad):
        # Every branch sees the same upstream gradient; their input gradients
        # are summed because the branches share one input.
        deltas = [layer.backward(x, upstream_grad) for layer in self._layers]
        self.delta = np.sum(deltas, axis=0)
        return self.delta

    def gradient(self, x, upstream_grad, gradient):
        for layer in self._layers:
            layer.gradient(x, upstream_grad, gradient)


@register_layer
class MultiplyMerge(_Composite):
    """Elementwise product of the branch outputs."""
    _step_attrs = ("_outputs",)

    def __init__(self, layers=None):
        super().__init__(layers)
        self._outputs = []

    def forward(self, x, deterministic=False):
        self._check_children()
        self._outputs = [layer.forward(x, deterministic=deterministic)
                         for layer in self._layers]
        for output in self._outputs[1:]:
            check_same_shape(self._outputs[0], output, "MultiplyMerge")
        self.output = np.prod(self._outputs, axis=0)
        return self.output

    def _branch_errors(self, upstream_grad):
        errors = []
        for i in range(len(self._outputs)):
            others = np.ones_like(upstream_grad, dtype=float)
            for j, output in enumerate(self._outputs):
                if j != i:
                    others = others * output
            errors.append(upstream_grad * others)
        return errors

    def backward(self, x, upstream_grad):
        errors = self._branch_errors(upstream_grad)
        deltas = [layer.backward(x, error) for layer, error in zip(self._layers, errors)]
        self.delta = np.sum(deltas, axis=0)
        return self.delta

    def gradient(self, x, upstream_grad, gradient):
        for layer, error in zip(self._layers, self._branch_errors(upstream_grad)):
            layer.gradient(x, error, gradient)


@register_layer
class Concat(_Composite):
    """Concatenate the branch outputs along the feature axis."""
    _step_attrs = ("_widths",)

    def __init__(self, layers=None):
        super().__init__(layers)
        self._widths = []

    def forward(self, x, deterministic=False):
        self._check_children()
        outputs = [layer.forward(x, deterministic=deterministic) for layer in self._layers]
        for output in outputs[1:]:
            if output.shape[0] != outputs[0].shape[0]:
                raise ShapeMismatch(
                    f"Concat: branch outputs have {outputs[0].shape[0]} and "
                    f"{output.shape[0]} rows")
        self._widths = [output.shape[1] for output in outputs]
        self.output = np.concatenate(outputs, axis=1)
        return self.output

    def _split(self, upstream_grad):
        upstream_grad = np.asarray(upstream_grad)
        if upstream_grad.shape[1] != sum(self._widths):
            raise ShapeMismatch(
                f"Concat: expected {sum(self._widths)} gradient columns, "
                f"got {upstream_grad.shape[1]}")
        return np.split(upstream_grad, np.cumsum(self._widths)[:-1], axis=1)

    def backward(self, x, upstream_grad):
        slices = self._split(upstream_grad)
        deltas = [layer.backward(x, part) for layer, part in zip(self._layers, slices)]
        self.delta = np.sum(deltas, axis=0)
        return self.delta

    def gradient(self, x, upstream_grad, gradient):
        for layer, part in zip(self._layers, self._split(upstream_grad)):
            layer.gradient(x, part, gradient)
