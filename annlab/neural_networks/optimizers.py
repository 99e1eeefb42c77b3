"""
Minibatch optimizers for networks exposing ``evaluate``/``gradient``.

The optimizers only talk to a network through its two entry points,
``evaluate(parameters, begin, batch_size)`` and
``gradient(parameters, begin, gradient, batch_size)``, plus
``num_functions`` and ``shuffle``. Parameters are one flat vector updated
in place.
"""
import numpy as np

from ..common.utils import check_random_state


class _MinibatchOptimizer:
    """Shared minibatch loop; subclasses implement ``update``."""

    def __init__(self, lr, batch_size=32, max_iterations=100000, tolerance=1e-5,
                 shuffle=True, random_state=None, verbose=False):
        if batch_size <= 0:
            raise ValueError(f"batch_size must be positive, got {batch_size}")
        self.lr = lr
        self.batch_size = batch_size
        self.max_iterations = max_iterations
        self.tolerance = tolerance
        self.shuffle = shuffle
        self.random_state = random_state
        self.verbose = verbose
        self.n_iter_ = 0
        self.loss_curve_ = []

    def update(self, parameters, gradient):
        raise NotImplementedError

    def optimize(self, function, parameters):
        """
        Minimize ``function`` starting from ``parameters`` (updated in place).

        Args:
            function: Object exposing num_functions, shuffle, evaluate and gradient
            parameters (ndarray): Flat parameter vector

        Returns:
            float: Objective over all functions after the last update
        """
        rng = check_random_state(self.random_state)
        n_functions = function.num_functions
        batch_size = min(self.batch_size, n_functions)
        gradient = np.zeros_like(parameters)
        self.n_iter_ = 0
        self.loss_curve_ = []

        if self.shuffle:
            function.shuffle(rng)

        begin, epoch_loss, last_loss = 0, 0.0, np.inf
        # max_iterations == 0 means run until the tolerance is met
        while self.max_iterations == 0 or self.n_iter_ < self.max_iterations:
            effective = min(batch_size, n_functions - begin)
            epoch_loss += function.gradient(parameters, begin, gradient, effective)
            self.update(parameters, gradient)
            self.n_iter_ += 1
            begin += effective

            if begin >= n_functions:
                self.loss_curve_.append(epoch_loss)
                if self.verbose:
                    print(f"Epoch {len(self.loss_curve_)}, loss = {epoch_loss:.8f}")
                if abs(last_loss - epoch_loss) < self.tolerance:
                    break
                last_loss, epoch_loss, begin = epoch_loss, 0.0, 0
                if self.shuffle:
                    function.shuffle(rng)

        return function.evaluate(parameters, 0, n_functions)


class SGDOptimizer(_MinibatchOptimizer):
    """
    Stochastic Gradient Descent optimizer with momentum and Nesterov acceleration.
    """

    def __init__(self, lr=0.01, momentum=0.9, nesterov=True, **kwargs):
        """
        Initialize SGD optimizer.

        Args:
            lr (float): Learning rate
            momentum (float): Momentum factor
            nesterov (bool): Whether to apply Nesterov momentum
            **kwargs: batch_size, max_iterations, tolerance, shuffle,
                random_state and verbose of the minibatch loop
        """
        super().__init__(lr, **kwargs)
        self.momentum = momentum
        self.nesterov = nesterov
        self.velocity = None

    def update(self, parameters, gradient):
        """
        Update parameters using SGD with momentum.

        Args:
            parameters (ndarray): Flat parameter vector, updated in place
            gradient (ndarray): Gradient of the current minibatch

        Returns:
            ndarray: The updated parameters
        """
        # Initialize velocity if not exists
        if self.velocity is None or self.velocity.shape != parameters.shape:
            self.velocity = np.zeros_like(parameters)

        # Update velocity
        self.velocity = self.momentum * self.velocity - self.lr * gradient

        if self.nesterov:
            # Nesterov momentum
            parameters += self.momentum * self.velocity - self.lr * gradient
        else:
            # Standard momentum
            parameters += self.velocity

        return parameters


class AdamOptimizer(_MinibatchOptimizer):
    """
    Adam optimizer implementation.
    """

    def __init__(self, lr=0.001, beta1=0.9, beta2=0.999, epsilon=1e-8, **kwargs):
        """
        Initialize Adam optimizer.

        Args:
            lr (float): Learning rate
            beta1 (float): Exponential decay rate for first moment
            beta2 (float): Exponential decay rate for second moment
            epsilon (float): Small constant for numerical stability
            **kwargs: Settings of the minibatch loop
        """
        super().__init__(lr, **kwargs)
        self.beta1 = beta1
        self.beta2 = beta2
        self.epsilon = epsilon
        self.moments = None

    def update(self, parameters, gradient):
        """
        Update parameters using Adam optimization.

        Args:
            parameters (ndarray): Flat parameter vector, updated in place
            gradient (ndarray): Gradient of the current minibatch

        Returns:
            ndarray: The updated parameters
        """
        # Initialize moments if not exists
        if self.moments is None or self.moments['m'].shape != parameters.shape:
            self.moments = {
                'm': np.zeros_like(parameters),
                'v': np.zeros_like(parameters),
                't': 0
            }

        moments = self.moments
        moments['t'] += 1
        t = moments['t']

        # Update biased first moment estimate
        moments['m'] = self.beta1 * moments['m'] + (1 - self.beta1) * gradient
        # Update biased second raw moment estimate
        moments['v'] = self.beta2 * moments['v'] + (1 - self.beta2) * (gradient ** 2)

        # Compute bias-corrected moment estimates
        m_corrected = moments['m'] / (1 - self.beta1 ** t)
        v_corrected = moments['v'] / (1 - self.beta2 ** t)

        # Update parameters
        parameters -= self.lr * m_corrected / (np.sqrt(v_corrected) + self.epsilon)
        return parameters


def get_optimizer(solver='adam', **kwargs):
    """
    Factory function to get optimizer instances.

    Args:
        solver (str): Optimizer type ('sgd', 'adam')
        **kwargs: Optimizer-specific parameters

    Returns:
        Optimizer instance
    """
    if solver == 'sgd':
        return SGDOptimizer(**kwargs)
    if solver == 'adam':
        return AdamOptimizer(**kwargs)
    raise ValueError(f"Unknown solver: {solver}")
