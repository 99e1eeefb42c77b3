"""
conftest.py – finite-difference checkers shared by the test suite.
"""
import numpy as np
import pytest


def jacobian_error(layer, x, deterministic=True, eps=1e-6):
    """
    Largest absolute difference between the analytic Jacobian (one backward
    call per output entry) and a central finite-difference estimate.
    """
    x = np.array(x, dtype=float)
    output = np.array(layer.forward(x, deterministic=deterministic))

    analytic = np.zeros((output.size, x.size))
    for j in range(output.size):
        unit = np.zeros_like(output)
        unit.flat[j] = 1.0
        # Re-run forward so layers that cache batch state see this input.
        layer.forward(x, deterministic=deterministic)
        analytic[j] = np.asarray(layer.backward(x, unit)).ravel()

    numeric = np.zeros_like(analytic)
    for i in range(x.size):
        original = x.flat[i]
        x.flat[i] = original + eps
        plus = np.array(layer.forward(x, deterministic=deterministic)).ravel()
        x.flat[i] = original - eps
        minus = np.array(layer.forward(x, deterministic=deterministic)).ravel()
        x.flat[i] = original
        numeric[:, i] = (plus - minus) / (2 * eps)

    return np.max(np.abs(analytic - numeric))


def gradient_error(network, eps=1e-7):
    """
    Relative error ``||g - e|| / ||g + e||`` between the analytic parameter
    gradient ``g`` of a network over all of its stored samples and a central
    finite-difference estimate ``e``.
    """
    parameters = network.parameters
    n_functions = network.num_functions
    analytic = np.zeros_like(parameters)
    network.gradient(parameters, 0, analytic, n_functions)

    numeric = np.zeros_like(parameters)
    for i in range(parameters.size):
        original = parameters[i]
        parameters[i] = original + eps
        plus = network.evaluate(parameters, 0, n_functions, deterministic=False)
        parameters[i] = original - eps
        minus = network.evaluate(parameters, 0, n_functions, deterministic=False)
        parameters[i] = original
        numeric[i] = (plus - minus) / (2 * eps)

    denominator = np.linalg.norm(analytic + numeric)
    if denominator == 0:
        return 0.0
    return np.linalg.norm(analytic - numeric) / denominator


# ── Fixtures ─────────────────────────────────────────────────────
@pytest.fixture()
def rng():
    return np.random.default_rng(42)


@pytest.fixture()
def check_jacobian():
    return jacobian_error


@pytest.fixture()
def check_gradient():
    return gradient_error
