"""
Recurrent cells unrolled one time step per forward call.

A cell keeps a bounded history of per-step records (``rho`` steps). Each
``forward`` consumes one step; each ``backward`` pops the most recent record
and carries the hidden (and cell) state gradient to the step before it, so
backward calls must come in reverse time order. ``gradient`` adds the
contribution of the step handled by the last ``backward`` into the one
parameter region shared by every step.
"""
from collections import OrderedDict, deque

import numpy as np

from ..base import Layer, register_layer
from ..common.utils import check_input
from ..exceptions import InvalidConfiguration
from .layers import sigmoid


def fast_sigmoid(x):
    """
    Piecewise rational approximation of the logistic function.

    Returns:
        tuple: (value, derivative) evaluated at ``x``
    """
    half = np.asarray(x, dtype=float) / 2.0
    ax = np.abs(half)
    z = np.where(ax < 1.7, 1.5 * ax / (1.0 + ax),
                 np.where(ax < 3.0, 0.935409070603099 + 0.0458812946797165 * (ax - 1.7),
                          0.99505475368673))
    dz = np.where(ax < 1.7, 1.5 / (1.0 + ax) ** 2,
                  np.where(ax < 3.0, 0.0458812946797165, 0.0))
    return 0.5 * (np.sign(half) * z + 1.0), 0.25 * dz


def fast_tanh(x):
    """Approximate tanh as ``2 * fast_sigmoid(2x) - 1``; returns (value, derivative)."""
    value, derivative = fast_sigmoid(2.0 * np.asarray(x, dtype=float))
    return 2.0 * value - 1.0, 4.0 * derivative


class RecurrentCell(Layer):
    """
    Shared state handling of the recurrent cells.

    Subclasses define ``_step`` (one forward step, returning a record, the
    new state tuple and the output) and ``_step_backward`` (the matching
    backward step), plus ``_accumulate`` for the parameter gradient.
    """
    _config_keys = ("in_features", "out_features", "rho")
    _n_states = 1

    def __init__(self, in_features, out_features, rho=None):
        """
        Initialize the cell.

        Args:
            in_features (int): Size of each input step
            out_features (int): Size of the hidden state
            rho (int, optional): Number of steps kept for backpropagation
                through time; unbounded when None
        """
        super().__init__()
        if int(in_features) <= 0 or int(out_features) <= 0:
            raise InvalidConfiguration(
                f"Cell sizes must be positive, got ({in_features}, {out_features})")
        if rho is not None and int(rho) <= 0:
            raise InvalidConfiguration(f"rho must be positive, got {rho}")
        self.in_features = int(in_features)
        self.out_features = int(out_features)
        self.rho = None if rho is None else int(rho)
        self._steps = deque(maxlen=self.rho)
        self._state = None
        self._carry = None
        self._last = None

    @property
    def steps(self):
        """Number of forward steps currently retained for backward."""
        return len(self._steps)

    @property
    def state(self):
        return self._state

    def reset_state(self, carry=False):
        """
        Clear the step history.

        Args:
            carry (bool): Keep the last hidden (and cell) state as the
                initial state of the next sequence
        """
        if not carry:
            self._state = None
        self._steps.clear()
        self._carry = None
        self._last = None

    def reset(self):
        self.reset_state()

    def _zeros(self, n_samples):
        return tuple(np.zeros((n_samples, self.out_features))
                     for _ in range(self._n_states))

    def forward(self, x, deterministic=False):
        x = check_input(x, self.in_features, type(self).__name__)
        state = self._state
        if state is None or state[0].shape[0] != x.shape[0]:
            state = self._zeros(x.shape[0])
        record, self._state, output = self._step(x, state, self.named_parameters())
        self._steps.append(record)
        self._carry = None
        self.output = output
        return self.output

    def backward(self, x, upstream_grad):
        if not self._steps:
            raise ValueError(f"{type(self).__name__}.backward called without a "
                             "retained forward step")
        upstream_grad = check_input(upstream_grad, self.out_features, type(self).__name__)
        record = self._steps.pop()
        carry = self._carry if self._carry is not None else self._zeros(upstream_grad.shape[0])
        self.delta, self._carry, pre_activation = self._step_backward(
            record, upstream_grad, carry, self.named_parameters())
        self._last = (record, pre_activation)
        return self.delta

    def gradient(self, x, upstream_grad, gradient):
        if self._last is None:
            raise ValueError(f"{type(self).__name__}.gradient called before backward")
        self._accumulate(self._gradient_views(gradient), *self._last)

    def _step(self, x, state, params):
        raise NotImplementedError

    def _step_backward(self, record, upstream_grad, carry, params):
        raise NotImplementedError

    def _accumulate(self, grads, record, pre_activation):
        grads["input_weight"] += record["x"].T @ pre_activation
        grads["recurrent_weight"] += record["h_prev"].T @ pre_activation
        grads["bias"] += np.sum(pre_activation, axis=0)


@register_layer
class LSTM(RecurrentCell):
    """
    Long short-term memory cell with peephole connections.

    Gate columns are ordered input, forget, candidate, output. The input
    and forget gates peek at the previous cell state and the output gate
    at the new one.
    """
    _n_states = 2

    def param_shapes(self):
        n = self.out_features
        return OrderedDict(
            input_weight=(self.in_features, 4 * n),
            recurrent_weight=(n, 4 * n),
            bias=(4 * n,),
            peephole_input=(n,),
            peephole_forget=(n,),
            peephole_output=(n,))

    def _step(self, x, state, params):
        h_prev, c_prev = state
        n = self.out_features
        z = x @ params["input_weight"] + h_prev @ params["recurrent_weight"] + params["bias"]
        i = sigmoid(z[:, :n] + params["peephole_input"] * c_prev)
        f = sigmoid(z[:, n:2 * n] + params["peephole_forget"] * c_prev)
        g = np.tanh(z[:, 2 * n:3 * n])
        c = f * c_prev + i * g
        o = sigmoid(z[:, 3 * n:] + params["peephole_output"] * c)
        tanh_c = np.tanh(c)
        h = o * tanh_c
        record = dict(x=x, h_prev=h_prev, c_prev=c_prev, i=i, f=f, g=g, o=o,
                      c=c, tanh_c=tanh_c)
        return record, (h, c), h

    def _step_backward(self, record, upstream_grad, carry, params):
        dh_next, dc_next = carry
        i, f, g, o = record["i"], record["f"], record["g"], record["o"]
        dh = upstream_grad + dh_next

        dz_o = dh * record["tanh_c"] * o * (1 - o)
        dc = dh * o * (1 - record["tanh_c"] ** 2) + dz_o * params["peephole_output"] + dc_next
        dz_i = dc * g * i * (1 - i)
        dz_f = dc * record["c_prev"] * f * (1 - f)
        dz_g = dc * i * (1 - g ** 2)
        dz = np.hstack([dz_i, dz_f, dz_g, dz_o])

        dc_prev = dc * f + dz_i * params["peephole_input"] + dz_f * params["peephole_forget"]
        dh_prev = dz @ params["recurrent_weight"].T
        dx = dz @ params["input_weight"].T
        return dx, (dh_prev, dc_prev), dz

    def _accumulate(self, grads, record, pre_activation):
        super()._accumulate(grads, record, pre_activation)
        n = self.out_features
        grads["peephole_input"] += np.sum(pre_activation[:, :n] * record["c_prev"], axis=0)
        grads["peephole_forget"] += np.sum(pre_activation[:, n:2 * n] * record["c_prev"], axis=0)
        grads["peephole_output"] += np.sum(pre_activation[:, 3 * n:] * record["c"], axis=0)


@register_layer
class FastLSTM(RecurrentCell):
    """
    LSTM with fused gates, no peepholes and approximate non-linearities.

    ``fast_sigmoid`` and ``fast_tanh`` replace the exact functions. The
    backward pass is exact for these approximations, not for the true
    sigmoid, so finite-difference checks need a loose tolerance.
    """
    _n_states = 2

    def param_shapes(self):
        n = self.out_features
        return OrderedDict(
            input_weight=(self.in_features, 4 * n),
            recurrent_weight=(n, 4 * n),
            bias=(4 * n,))

    def _step(self, x, state, params):
        h_prev, c_prev = state
        n = self.out_features
        z = x @ params["input_weight"] + h_prev @ params["recurrent_weight"] + params["bias"]
        i, di = fast_sigmoid(z[:, :n])
        f, df = fast_sigmoid(z[:, n:2 * n])
        g, dg = fast_tanh(z[:, 2 * n:3 * n])
        o, do = fast_sigmoid(z[:, 3 * n:])
        c = f * c_prev + i * g
        tanh_c, dtanh_c = fast_tanh(c)
        h = o * tanh_c
        record = dict(x=x, h_prev=h_prev, c_prev=c_prev, i=i, f=f, g=g, o=o,
                      di=di, df=df, dg=dg, do=do, tanh_c=tanh_c, dtanh_c=dtanh_c)
        return record, (h, c), h

    def _step_backward(self, record, upstream_grad, carry, params):
        dh_next, dc_next = carry
        dh = upstream_grad + dh_next

        dz_o = dh * record["tanh_c"] * record["do"]
        dc = dh * record["o"] * record["dtanh_c"] + dc_next
        dz_i = dc * record["g"] * record["di"]
        dz_f = dc * record["c_prev"] * record["df"]
        dz_g = dc * record["i"] * record["dg"]
        dz = np.hstack([dz_i, dz_f, dz_g, dz_o])

        dc_prev = dc * record["f"]
        dh_prev = dz @ params["recurrent_weight"].T
        dx = dz @ params["input_weight"].T
        return dx, (dh_prev, dc_prev), dz


@register_layer
class GRU(RecurrentCell):
    """
    Gated recurrent unit.

    ``z`` is the update gate and ``r`` the reset gate; the candidate state
    ``n`` sees the previous state through ``r``, and the new state is
    ``z * h_prev + (1 - z) * n``.
    """

    def param_shapes(self):
        n = self.out_features
        return OrderedDict(
            input_weight=(self.in_features, 3 * n),
            recurrent_weight=(n, 2 * n),
            candidate_weight=(n, n),
            bias=(3 * n,))

    def _step(self, x, state, params):
        (h_prev,) = state
        n = self.out_features
        a = x @ params["input_weight"] + params["bias"]
        gates = sigmoid(a[:, :2 * n] + h_prev @ params["recurrent_weight"])
        z, r = gates[:, :n], gates[:, n:]
        candidate = np.tanh(a[:, 2 * n:] + (r * h_prev) @ params["candidate_weight"])
        h = z * h_prev + (1 - z) * candidate
        record = dict(x=x, h_prev=h_prev, z=z, r=r, n=candidate)
        return record, (h,), h

    def _step_backward(self, record, upstream_grad, carry, params):
        (dh_next,) = carry
        z, r, h_prev, candidate = record["z"], record["r"], record["h_prev"], record["n"]
        dh = upstream_grad + dh_next

        dz_n = dh * (1 - z) * (1 - candidate ** 2)
        d_reset_h = dz_n @ params["candidate_weight"].T
        dz_z = dh * (h_prev - candidate) * z * (1 - z)
        dz_r = d_reset_h * h_prev * r * (1 - r)
        dz = np.hstack([dz_z, dz_r, dz_n])

        dh_prev = dh * z + d_reset_h * r + dz[:, :2 * self.out_features] @ params["recurrent_weight"].T
        dx = dz @ params["input_weight"].T
        return dx, (dh_prev,), dz

    def _accumulate(self, grads, record, pre_activation):
        n = self.out_features
        grads["input_weight"] += record["x"].T @ pre_activation
        grads["bias"] += np.sum(pre_activation, axis=0)
        grads["recurrent_weight"] += record["h_prev"].T @ pre_activation[:, :2 * n]
        grads["candidate_weight"] += (record["r"] * record["h_prev"]).T @ pre_activation[:, 2 * n:]
