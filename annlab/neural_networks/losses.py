"""
Loss functions that seed the backward pass of a network.
"""
import numpy as np

from ..exceptions import ShapeMismatch


class NegativeLogLikelihood:
    """
    Negative log likelihood of integer class targets.

    Expects log-probabilities (e.g. the output of ``LogSoftMax``) of shape
    (n_samples, n_classes) and 0-based class indices. The loss is summed
    over the batch.
    """

    @staticmethod
    def _targets(x, target):
        target = np.asarray(target).reshape(-1).astype(int)
        if target.shape[0] != x.shape[0]:
            raise ShapeMismatch(
                f"Got {target.shape[0]} targets for {x.shape[0]} samples")
        if np.any(target < 0) or np.any(target >= x.shape[1]):
            raise ShapeMismatch(
                f"Class targets must lie in [0, {x.shape[1]}), got "
                f"[{target.min()}, {target.max()}]")
        return target

    def forward(self, x, target):
        """
        Compute the loss.

        Args:
            x (ndarray): Log-probabilities of shape (n_samples, n_classes)
            target (ndarray): Class indices of shape (n_samples,)

        Returns:
            float: Summed negative log likelihood
        """
        x = np.asarray(x, dtype=float)
        target = self._targets(x, target)
        return float(-np.sum(x[np.arange(x.shape[0]), target]))

    def backward(self, x, target):
        x = np.asarray(x, dtype=float)
        target = self._targets(x, target)
        grad = np.zeros_like(x)
        grad[np.arange(x.shape[0]), target] = -1.0
        return grad

    def __repr__(self):
        return "NegativeLogLikelihood()"


class MeanSquaredError:
    """
    Mean of the squared differences over every element.

    The loss is averaged over the minibatch, so minibatch gradients of a
    partition add up to the full-batch gradient only once each is weighted
    by its share of the samples.
    """

    @staticmethod
    def _check(x, target):
        x = np.asarray(x, dtype=float)
        target = np.asarray(target, dtype=float)
        if target.size != x.size:
            raise ShapeMismatch(
                f"Prediction shape {x.shape} does not match target shape {target.shape}")
        return x, target.reshape(x.shape)

    def forward(self, x, target):
        x, target = self._check(x, target)
        return float(np.mean((x - target) ** 2))

    def backward(self, x, target):
        x, target = self._check(x, target)
        return 2.0 * (x - target) / x.size

    def __repr__(self):
        return "MeanSquaredError()"
