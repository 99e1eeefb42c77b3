import numpy as np
import pandas as pd

from ..exceptions import ShapeMismatch


def check_random_state(random_state=None):
    if isinstance(random_state, np.random.Generator):
        return random_state
    return np.random.default_rng(random_state)


def to_numpy(data):
    """Unwrap a pandas DataFrame or Series; anything else goes through ``np.asarray``."""
    if isinstance(data, (pd.DataFrame, pd.Series)):
        return data.values
    return np.asarray(data)


def check_input(x, n_features=None, name="layer"):
    """
    Validate a 2-D batch of shape (n_samples, n_features).

    Args:
        x (ndarray): Input batch
        n_features (int, optional): Expected number of columns
        name (str): Layer name used in error messages

    Returns:
        ndarray: The input as a float array
    """
    x = to_numpy(x).astype(float, copy=False)
    if x.ndim != 2:
        raise ShapeMismatch(
            f"{name} expects a 2D array (n_samples, n_features), got shape {x.shape}")
    if n_features is not None and x.shape[1] != n_features:
        raise ShapeMismatch(
            f"{name} expects {n_features} features, got {x.shape[1]}")
    return x


def check_same_shape(a, b, name="layer"):
    if a.shape != b.shape:
        raise ShapeMismatch(f"{name}: shape {a.shape} does not match {b.shape}")


def batch_slice(data, begin, batch_size, axis=0):
    """Select ``batch_size`` samples starting at ``begin`` along ``axis``."""
    index = [slice(None)] * data.ndim
    index[axis] = slice(begin, begin + batch_size)
    return data[tuple(index)]
