# pylint: disable=missing-docstring
import logging
from abc import abstractmethod
from collections import OrderedDict
from typing import Any, Dict, Iterator, Tuple

import numpy as np

from .common.arena import ParameterArena
from .exceptions import InvalidConfiguration, ShapeMismatch

logger = logging.getLogger(__name__)

# Closed set of layer kinds, filled by ``register_layer``.
LAYER_TYPES: Dict[str, type] = {}


def register_layer(cls):
    LAYER_TYPES[cls.__name__] = cls
    return cls


def build_layer(config: Dict[str, Any]) -> "Layer":
    """
    Rebuild a layer (and its sub-layers) from ``Layer.get_config()`` output.

    :param config: dictionary with a ``type`` key naming a registered layer kind
    :return: a new, unbound layer
    """
    config = dict(config)
    kind = config.pop("type")
    if kind not in LAYER_TYPES:
        raise InvalidConfiguration(f"Unknown layer type '{kind}'")
    children = config.pop("layers", [])
    layer = LAYER_TYPES[kind](**config)
    for child in children:
        layer.add(build_layer(child))
    return layer


class Layer:
    """
    Common contract of every layer: forward, backward, gradient, parameters.

    A layer owns no parameter memory of its own. ``bind`` reserves a region
    of a ``ParameterArena`` and the layer reads its weights back through
    ``(offset, size)`` on every access.
    """

    # Constructor arguments reported by get_params("non_trainable").
    _config_keys: Tuple[str, ...] = ()
    # Attributes written by forward and read back by backward or gradient.
    _step_attrs: Tuple[str, ...] = ()

    def __init__(self):
        self.output = None
        self.delta = None
        self._arena = None
        self._offset = 0

    # ---- parameter layout ----
    def param_shapes(self) -> "OrderedDict[str, Tuple[int, ...]]":
        return OrderedDict()

    @property
    def sublayers(self) -> Tuple["Layer", ...]:
        return ()

    @property
    def own_size(self) -> int:
        return int(sum(np.prod(shape) for shape in self.param_shapes().values()))

    @property
    def weight_size(self) -> int:
        return self.own_size + sum(layer.weight_size for layer in self.sublayers)

    def bind(self, arena: ParameterArena) -> None:
        self._arena = arena
        self._offset = arena.allocate(self.own_size)
        for layer in self.sublayers:
            layer.bind(arena)

    def _ensure_bound(self):
        if self._arena is None:
            arena = ParameterArena()
            self.bind(arena)
            arena.finalize()
            self.reset()

    @property
    def parameters(self) -> np.ndarray:
        """Flat, writable view of this layer's own parameters."""
        self._ensure_bound()
        return self._arena.view(self._offset, self.own_size)

    @parameters.setter
    def parameters(self, value):
        value = np.asarray(value, dtype=float).ravel()
        if value.size != self.own_size:
            raise ShapeMismatch(
                f"{type(self).__name__} has {self.own_size} parameters, "
                f"got {value.size}")
        self.parameters[...] = value

    def _unpack(self, flat):
        views, start = {}, 0
        for name, shape in self.param_shapes().items():
            size = int(np.prod(shape))
            views[name] = flat[start:start + size].reshape(shape)
            start += size
        return views

    def named_parameters(self) -> Dict[str, np.ndarray]:
        """Named views (weight, bias, ...) into the parameter region."""
        return self._unpack(self.parameters)

    def _gradient_views(self, gradient):
        self._ensure_bound()
        gradient = np.asarray(gradient)
        end = self._offset + self.own_size
        if gradient.ndim != 1 or gradient.size < end:
            raise ShapeMismatch(
                f"{type(self).__name__} needs a flat gradient of at least "
                f"{end} entries, got shape {gradient.shape}")
        return self._unpack(gradient[self._offset:end])

    def iter_layers(self) -> Iterator["Layer"]:
        yield self
        for layer in self.sublayers:
            yield from layer.iter_layers()

    # ---- execution ----
    def reset(self):
        """Hook called once parameters are bound and initialized."""
        for layer in self.sublayers:
            layer.reset()

    def reset_state(self, carry=False):
        """Start a new sequence; only recurrent cells keep per-step state."""
        for layer in self.sublayers:
            layer.reset_state(carry=carry)

    def save_step(self):
        """
        Snapshot the state the last forward call left for ``backward``.

        A recurrent driver takes one snapshot per time step and hands it back
        to ``load_step`` before replaying that step. Only the attributes
        named in ``_step_attrs`` are captured; forward calls rebind them
        rather than mutate them, so no copy is needed.
        """
        own = {name: getattr(self, name) for name in self._step_attrs}
        return own, [layer.save_step() for layer in self.sublayers]

    def load_step(self, snapshot):
        """Restore a snapshot taken by ``save_step``."""
        own, children = snapshot
        for name, value in own.items():
            setattr(self, name, value)
        for layer, child in zip(self.sublayers, children):
            layer.load_step(child)

    def forward(self, x, deterministic=False):
        """Forward pass through the layer."""
        raise NotImplementedError

    def backward(self, x, upstream_grad):
        """Backward pass: gradient of the loss with respect to ``x``."""
        raise NotImplementedError

    def gradient(self, x, upstream_grad, gradient):
        """Accumulate the parameter gradient into ``gradient`` (no-op by default)."""

    def __call__(self, x, deterministic=False):
        return self.forward(x, deterministic=deterministic)

    # ---- serialization ----
    def get_params(self, mode: str = "all") -> Dict[str, Any]:
        """
        Get parameters for this layer.

        :param mode: Specifies which parameters to return. Options are:
            - "all": configuration and trainable parameters.
            - "trainable": a copy of the flat parameter region (sub-layers included).
            - "non_trainable": configuration scalars only.
        :return: Dictionary of parameter names mapped to their values.
        """
        config = {key: getattr(self, key) for key in self._config_keys}
        trainable = {"parameters": self._subtree_parameters()}
        if mode == "all":
            return {**config, **trainable}
        if mode == "trainable":
            return trainable
        if mode == "non_trainable":
            return config

        raise ValueError(
            f"Invalid mode '{mode}'. Choose from 'all', 'trainable', or 'non_trainable'."
        )

    def _subtree_parameters(self):
        chunks = [layer.parameters.copy() for layer in self.iter_layers()]
        return np.concatenate(chunks) if chunks else np.zeros(0)

    def set_weights(self, flat):
        """Copy a flat vector (as returned by get_params("trainable")) into the subtree."""
        flat = np.asarray(flat, dtype=float).ravel()
        if flat.size != self.weight_size:
            raise ShapeMismatch(
                f"{type(self).__name__} has {self.weight_size} parameters, "
                f"got {flat.size}")
        start = 0
        for layer in self.iter_layers():
            size = layer.own_size
            layer.parameters = flat[start:start + size]
            start += size

    def get_config(self) -> Dict[str, Any]:
        config = {"type": type(self).__name__, **self.get_params("non_trainable")}
        if self.sublayers:
            config["layers"] = [layer.get_config() for layer in self.sublayers]
        return config

    def __repr__(self):
        args = ", ".join(f"{k}={v!r}" for k, v in self.get_params("non_trainable").items())
        return f"{type(self).__name__}({args})"


# pylint: disable=too-many-instance-attributes
class BaseNetwork:
    """
    Shared plumbing of the feed-forward and recurrent drivers: layer list,
    parameter arena, initialization and the optimizer entry points.
    """

    def __init__(self, loss, initializer, verbose=False):
        self.loss = loss
        self.initializer = initializer
        self.verbose = verbose
        self.layers = []
        self.predictors = None
        self.responses = None
        self._arena = None

    def add(self, layer: Layer) -> "BaseNetwork":
        if not isinstance(layer, Layer):
            raise InvalidConfiguration(f"Expected a Layer, got {type(layer).__name__}")
        self.layers.append(layer)
        self._arena = None
        return self

    def reset(self):
        """Allocate the parameter arena, bind every layer and initialize it."""
        if not self.layers:
            raise InvalidConfiguration("Network has no layers.")
        arena = ParameterArena()
        for layer in self.layers:
            layer.bind(arena)
        arena.finalize()
        for layer in self.layers:
            for sub in layer.iter_layers():
                for view in sub.named_parameters().values():
                    view[...] = self.initializer.initialize(view.shape)
            layer.reset()
        self._arena = arena
        logger.debug("%s: %d layers bound to an arena of %d parameters",
                     type(self).__name__, len(self.layers), len(arena))
        return self

    def _ensure_reset(self, parameters=None):
        if self._arena is None:
            self.reset()
        if parameters is not None and parameters is not self._arena.data:
            self._arena.relocate(parameters)

    @property
    def parameters(self) -> np.ndarray:
        self._ensure_reset()
        return self._arena.data

    @parameters.setter
    def parameters(self, value):
        self._ensure_reset()
        value = np.asarray(value, dtype=float).ravel()
        if value.size != self._arena.data.size:
            raise ShapeMismatch(
                f"Network has {self._arena.data.size} parameters, got {value.size}")
        self._arena.data[...] = value

    @property
    def num_functions(self) -> int:
        if self.predictors is None:
            raise ValueError("Network has no predictors; call train() first.")
        return self._n_samples()

    @abstractmethod
    def _n_samples(self) -> int:
        raise NotImplementedError

    @abstractmethod
    def shuffle(self, rng=None):
        raise NotImplementedError

    @abstractmethod
    def evaluate(self, parameters, begin, batch_size, deterministic=True) -> float:
        raise NotImplementedError

    @abstractmethod
    def gradient(self, parameters, begin, gradient, batch_size) -> float:
        raise NotImplementedError

    def train(self, X, y, optimizer=None):
        """
        Fit the network parameters with ``optimizer``.

        :param X: predictors
        :param y: responses
        :param optimizer: object exposing ``optimize(function, parameters)``
        :return: final objective value
        """
        self.predictors = np.asarray(X, dtype=float)
        self.responses = np.asarray(y)
        self._ensure_reset()
        if optimizer is None:
            # pylint: disable=import-outside-toplevel
            from .neural_networks.optimizers import AdamOptimizer
            optimizer = AdamOptimizer(verbose=self.verbose)
        return optimizer.optimize(self, self.parameters)

    def get_params(self, mode: str = "all") -> Any:
        if mode == "all":
            return {
                "layers": [layer.get_config() for layer in self.layers],
                "parameters": self.parameters.copy(),
                "loss": self.loss,
                "initializer": self.initializer,
                "verbose": self.verbose,
            }
        if mode == "trainable":
            return {"parameters": self.parameters.copy()}
        if mode == "non_trainable":
            return {"layers": [layer.get_config() for layer in self.layers],
                    "loss": self.loss, "initializer": self.initializer,
                    "verbose": self.verbose}

        raise ValueError(
            f"Invalid mode '{mode}'. Choose from 'all', 'trainable', or 'non_trainable'."
        )

    def set_params(self, **params):
        """Set the parameters of this network."""
        for param, value in params.items():
            if param == "parameters":
                self.parameters = value
            elif hasattr(self, param):
                setattr(self, param, value)
            else:
                raise ValueError(f"Invalid parameter {param}")
        return self
