"""
Recurrent network driver with truncated backpropagation through time.
"""
import logging
from collections import deque

import numpy as np

from ..base import BaseNetwork
from ..common.utils import check_random_state
from ..exceptions import InvalidConfiguration, ShapeMismatch
from ._recurrent import RecurrentCell
from .init import GlorotInitialization
from .losses import NegativeLogLikelihood

logger = logging.getLogger(__name__)


class RNN(BaseNetwork):
    """
    Unroll a layer pipeline over time-major sequences.

    Predictors have shape (n_steps, n_sequences, n_features). Every step runs
    through all layers; the layer inputs of the last ``rho`` steps are kept,
    together with a ``save_step`` snapshot of every layer, so the backward
    pass can revisit them in reverse order with the state each layer had at
    that step. Parameters are
    shared by every step, so the gradient of all retained steps lands in the
    same region.

    When a sequence is longer than ``rho`` (or than the ``rho`` of any cell)
    only the last steps are backpropagated: gradient flow stops at the window
    boundary.
    """

    def __init__(self, rho=None, single=False, loss=None, initializer=None,
                 stateful=False, verbose=False):
        """
        Initialize the recurrent network.

        Args:
            rho (int, optional): Number of steps to backpropagate through;
                unbounded when None
            single (bool): Score only the last step of each sequence
            loss: Loss object; NegativeLogLikelihood by default
            initializer: Initialization rule; GlorotInitialization by default
            stateful (bool): Carry the hidden state of the previous call into
                the next one instead of starting every sequence from zero
            verbose (bool): Whether to print training progress
        """
        super().__init__(loss if loss is not None else NegativeLogLikelihood(),
                         initializer if initializer is not None else GlorotInitialization(),
                         verbose)
        if rho is not None and int(rho) <= 0:
            raise InvalidConfiguration(f"rho must be positive, got {rho}")
        self.rho = None if rho is None else int(rho)
        self.single = single
        self.stateful = stateful
        self._step_inputs = deque(maxlen=self.rho)

    def _n_samples(self):
        return self.predictors.shape[1]

    def _check_data(self):
        if self.predictors is None or self.responses is None:
            raise ValueError("Network has no predictors; call train() first.")

    def _response_axis(self):
        return 0 if self.single else 1

    def shuffle(self, rng=None):
        """Permute the stored sequences."""
        self._check_data()
        order = check_random_state(rng).permutation(self._n_samples())
        self.predictors = self.predictors[:, order]
        self.responses = np.take(self.responses, order, axis=self._response_axis())

    def _window(self, n_steps):
        bounds = [n_steps]
        if self.rho is not None:
            bounds.append(self.rho)
        for layer in self.layers:
            for sub in layer.iter_layers():
                if isinstance(sub, RecurrentCell) and sub.rho is not None:
                    bounds.append(sub.rho)
        return min(bounds)

    def forward(self, sequence, deterministic=True):
        """
        Run the layers over every step of ``sequence``.

        Args:
            sequence (ndarray): Input of shape (n_steps, n_sequences, n_features)
            deterministic (bool): Inference behavior of stochastic layers

        Returns:
            ndarray: Outputs of shape (n_steps, n_sequences, n_outputs)
        """
        sequence = np.asarray(sequence, dtype=float)
        if sequence.ndim != 3:
            raise ShapeMismatch(
                "RNN expects a 3D array (n_steps, n_sequences, n_features), "
                f"got shape {sequence.shape}")
        self._ensure_reset()
        for layer in self.layers:
            layer.reset_state(carry=self.stateful)

        self._step_inputs = deque(maxlen=self.rho)
        outputs = []
        for step in sequence:
            inputs = []
            for layer in self.layers:
                inputs.append(step)
                step = layer.forward(step, deterministic=deterministic)
            self._step_inputs.append((inputs, [layer.save_step() for layer in self.layers]))
            outputs.append(step)
        return np.stack(outputs)

    def _batch(self, begin, batch_size):
        self._check_data()
        x = self.predictors[:, begin:begin + batch_size]
        if self.single:
            return x, self.responses[begin:begin + batch_size]
        return x, self.responses[:, begin:begin + batch_size]

    def _loss(self, outputs, y):
        if self.single:
            return self.loss.forward(outputs[-1], y)
        return float(sum(self.loss.forward(output, target)
                         for output, target in zip(outputs, y)))

    def evaluate(self, parameters, begin, batch_size, deterministic=True):
        """
        Summed loss over the steps of the sequences ``[begin, begin + batch_size)``.
        """
        self._ensure_reset(parameters)
        x, y = self._batch(begin, batch_size)
        return self._loss(self.forward(x, deterministic=deterministic), y)

    def gradient(self, parameters, begin, gradient, batch_size):
        """
        Overwrite ``gradient`` with the truncated BPTT gradient and return the loss.

        Args:
            parameters (ndarray): Flat parameter vector
            begin (int): Index of the first sequence
            gradient (ndarray): Output buffer shaped like ``parameters``
            batch_size (int): Number of sequences

        Returns:
            float: Loss of the minibatch, evaluated in training mode
        """
        self._ensure_reset(parameters)
        if gradient.shape != self.parameters.shape:
            raise ShapeMismatch(
                f"Gradient buffer of shape {gradient.shape} does not match "
                f"{self.parameters.shape} parameters")
        x, y = self._batch(begin, batch_size)
        outputs = self.forward(x, deterministic=False)
        loss = self._loss(outputs, y)

        n_steps = outputs.shape[0]
        window = self._window(n_steps)
        if window < n_steps:
            logger.debug("Truncating BPTT to the last %d of %d steps", window, n_steps)

        gradient[...] = 0.0
        for k in range(window):
            t = n_steps - 1 - k
            if not self.single:
                error = self.loss.backward(outputs[t], y[t])
            elif t == n_steps - 1:
                error = self.loss.backward(outputs[t], y)
            else:
                error = np.zeros_like(outputs[t])

            inputs, snapshots = self._step_inputs[-1 - k]
            for i in reversed(range(len(self.layers))):
                self.layers[i].load_step(snapshots[i])
                delta = self.layers[i].backward(inputs[i], error)
                self.layers[i].gradient(inputs[i], error, gradient)
                error = delta
        return loss

    def train(self, X, y, optimizer=None):
        if np.ndim(X) != 3:
            raise ShapeMismatch(
                f"RNN expects predictors of shape (n_steps, n_sequences, n_features), "
                f"got {np.shape(X)}")
        n_sequences = np.shape(X)[1]
        if np.shape(y)[self._response_axis()] != n_sequences:
            raise ShapeMismatch("X and y must have the same number of sequences")
        return super().train(X, y, optimizer)

    def predict(self, X):
        """
        Deterministic outputs for ``X``.

        Returns:
            ndarray: (n_steps, n_sequences, n_outputs), or the last step only
            when ``single`` is set
        """
        outputs = self.forward(X, deterministic=True)
        return outputs[-1] if self.single else outputs
