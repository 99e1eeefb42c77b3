"""
Feed-forward network driver.
"""
import numpy as np

from ..base import BaseNetwork
from ..common.utils import batch_slice, check_input, check_random_state, to_numpy
from ..exceptions import ShapeMismatch
from .init import GlorotInitialization
from .losses import NegativeLogLikelihood


class FFN(BaseNetwork):
    """
    Feed-forward network: an ordered pipeline of layers ending in a loss.

    The optimizer drives training through ``evaluate`` and ``gradient``,
    which address minibatches of the stored predictors by offset.
    """

    def __init__(self, loss=None, initializer=None, verbose=False):
        """
        Initialize the network.

        Args:
            loss: Loss object exposing forward(output, target) and
                backward(output, target); NegativeLogLikelihood by default
            initializer: Object exposing initialize(shape);
                GlorotInitialization by default
            verbose (bool): Whether to print training progress
        """
        super().__init__(loss if loss is not None else NegativeLogLikelihood(),
                         initializer if initializer is not None else GlorotInitialization(),
                         verbose)
        self._inputs = []
        self._errors = []

    def _n_samples(self):
        return self.predictors.shape[0]

    def _check_data(self):
        if self.predictors is None or self.responses is None:
            raise ValueError("Network has no predictors; call train() first.")

    def shuffle(self, rng=None):
        """Permute the stored samples."""
        self._check_data()
        order = check_random_state(rng).permutation(self._n_samples())
        self.predictors = self.predictors[order]
        self.responses = self.responses[order]

    def forward(self, x, deterministic=True):
        """
        Run every layer in order, retaining the input of each.

        Args:
            x (ndarray): Input batch of shape (n_samples, n_features)
            deterministic (bool): Inference behavior of stochastic layers

        Returns:
            ndarray: Output of the last layer
        """
        self._ensure_reset()
        self._inputs = []
        for layer in self.layers:
            self._inputs.append(x)
            x = layer.forward(x, deterministic=deterministic)
        return x

    def backward(self, error):
        """
        Propagate a loss gradient back through the layers of the last forward call.

        Returns:
            ndarray: Gradient with respect to the network input
        """
        self._errors = [None] * len(self.layers)
        for i in reversed(range(len(self.layers))):
            self._errors[i] = error
            error = self.layers[i].backward(self._inputs[i], error)
        return error

    def _batch(self, begin, batch_size):
        self._check_data()
        return (batch_slice(self.predictors, begin, batch_size),
                batch_slice(self.responses, begin, batch_size))

    def evaluate(self, parameters, begin, batch_size, deterministic=True):
        """
        Loss of the minibatch ``[begin, begin + batch_size)``.

        Args:
            parameters (ndarray): Flat parameter vector
            begin (int): Index of the first sample
            batch_size (int): Number of samples
            deterministic (bool): Inference behavior of stochastic layers

        Returns:
            float: Loss of the minibatch
        """
        self._ensure_reset(parameters)
        x, y = self._batch(begin, batch_size)
        return self.loss.forward(self.forward(x, deterministic=deterministic), y)

    def gradient(self, parameters, begin, gradient, batch_size):
        """
        Overwrite ``gradient`` with the minibatch gradient and return the loss.

        Args:
            parameters (ndarray): Flat parameter vector
            begin (int): Index of the first sample
            gradient (ndarray): Output buffer shaped like ``parameters``
            batch_size (int): Number of samples

        Returns:
            float: Loss of the minibatch, evaluated in training mode
        """
        self._ensure_reset(parameters)
        if gradient.shape != self.parameters.shape:
            raise ShapeMismatch(
                f"Gradient buffer of shape {gradient.shape} does not match "
                f"{self.parameters.shape} parameters")
        x, y = self._batch(begin, batch_size)
        output = self.forward(x, deterministic=False)
        loss = self.loss.forward(output, y)

        gradient[...] = 0.0
        self.backward(self.loss.backward(output, y))
        for layer, layer_input, error in zip(self.layers, self._inputs, self._errors):
            layer.gradient(layer_input, error, gradient)
        return loss

    def train(self, X, y, optimizer=None):
        X, y = check_input(X, name="FFN"), to_numpy(y)
        if np.shape(y)[0] != np.shape(X)[0]:
            raise ShapeMismatch("X and y must have the same number of samples")
        return super().train(X, y, optimizer)

    def predict(self, X):
        """
        Deterministic network output for ``X``.

        Args:
            X (ndarray): Input of shape (n_samples, n_features)

        Returns:
            ndarray: Output of the last layer
        """
        return self.forward(check_input(X, name="FFN"), deterministic=True)
