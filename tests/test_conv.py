"""Tests for the convolution layers."""
import numpy as np
import pytest

from annlab.exceptions import InvalidConfiguration, ShapeMismatch
from annlab.neural_networks import (FFN, AtrousConvolution, BilinearInterpolation, Convolution,
                                    Linear, LogSoftMax, TransposedConvolution)


def _with_kernel(layer, taps):
    """Zero every parameter, then set the given flat kernel entries."""
    params = np.zeros(layer.own_size)
    for index, value in taps.items():
        params[index] = value
    layer.parameters = params
    return layer


# ── Forward / backward reference values ──────────────────────────
class TestConvolutionValues:

    def test_two_taps(self):
        layer = _with_kernel(Convolution(1, 1, 3, 3, 4, 4), {0: 1.0, 8: 2.0})
        x = np.arange(16, dtype=float).reshape(1, -1)
        out = layer.forward(x)
        assert out.shape == (1, 4)
        assert np.sum(out) == pytest.approx(110.0)
        delta = layer.backward(x, out)
        assert np.sum(delta) == pytest.approx(330.0)

    def test_atrous(self):
        layer = _with_kernel(AtrousConvolution(1, 1, 3, 3, 7, 7, dilation_h=2, dilation_w=2),
                             {0: 1.0, 8: 2.0})
        x = np.arange(49, dtype=float).reshape(1, -1)
        out = layer.forward(x)
        assert (layer.output_height, layer.output_width) == (3, 3)
        assert np.sum(out) == pytest.approx(792.0)
        assert np.sum(layer.backward(x, out)) == pytest.approx(2376.0)

    def test_atrous_strided(self):
        layer = _with_kernel(AtrousConvolution(1, 1, 3, 3, 7, 7, 2, 2, stride_h=2, stride_w=2),
                             {0: 1.0, 3: 1.0, 6: 1.0})
        x = np.arange(49, dtype=float).reshape(1, -1)
        out = layer.forward(x)
        assert (layer.output_height, layer.output_width) == (2, 2)
        assert np.sum(out) == pytest.approx(264.0)
        assert np.sum(layer.backward(x, out)) == pytest.approx(792.0)

    def test_kernel_is_not_flipped(self):
        # A single tap at (0, 1) picks the right-hand neighbour.
        layer = _with_kernel(Convolution(1, 1, 2, 2, 2, 2), {1: 1.0})
        out = layer.forward(np.array([[1.0, 2.0, 3.0, 4.0]]))
        np.testing.assert_allclose(out, [[2.0]])

    def test_bias_per_output_map(self):
        layer = Convolution(1, 2, 1, 1, 2, 2)
        layer.parameters = [1.0, 1.0, 10.0, 20.0]
        out = layer.forward(np.zeros((1, 4)))
        np.testing.assert_allclose(out, [[10.0] * 4 + [20.0] * 4])

    def test_padding_output_size(self):
        layer = Convolution(2, 3, 3, 3, 5, 4, stride_h=2, pad_h=1, pad_w=1)
        assert (layer.output_height, layer.output_width) == (3, 4)
        assert layer.forward(np.ones((2, 40))).shape == (2, 36)


class TestTransposedConvolutionValues:

    def test_output_size(self):
        layer = TransposedConvolution(1, 1, 3, 3, 4, 4, stride_h=2, stride_w=2, pad_h=1, pad_w=1)
        assert (layer.output_height, layer.output_width) == (11, 11)

    def test_two_taps(self):
        layer = _with_kernel(TransposedConvolution(1, 1, 3, 3, 4, 4), {0: 1.0, 8: 2.0})
        x = np.arange(16, dtype=float).reshape(1, -1)
        out = layer.forward(x)
        assert out.shape == (1, 36)
        assert np.sum(out) == pytest.approx(360.0)
        assert np.sum(layer.backward(x, out)) == pytest.approx(720.0)

    @pytest.mark.parametrize("stride,pad", [(1, 0), (2, 0), (2, 1), (3, 2)])
    def test_forward_sum_is_product_of_sums(self, stride, pad, rng):
        layer = TransposedConvolution(2, 3, 3, 2, 4, 3, stride_h=stride, stride_w=stride,
                                      pad_h=pad, pad_w=pad)
        params = rng.uniform(-1, 1, layer.own_size)
        params[-3:] = 0.0
        layer.parameters = params
        x = rng.uniform(0, 1, (1, 24))
        images = x.reshape(2, 4, 3)
        weight = params[:-3].reshape(3, 2, 3, 2)
        expected = sum(np.sum(images[c]) * np.sum(weight[:, c]) for c in range(2))
        assert np.sum(layer.forward(x)) == pytest.approx(expected)

    def test_backward_is_adjoint(self, rng):
        layer = TransposedConvolution(2, 2, 3, 3, 3, 4, stride_h=2, stride_w=1, pad_h=1, pad_w=0)
        layer.parameters = rng.uniform(-1, 1, layer.own_size)
        x = rng.normal(size=(2, layer.in_features))
        g = rng.normal(size=(2, layer.out_features))
        bias_part = layer.forward(np.zeros_like(x))
        linear_part = layer.forward(x) - bias_part
        assert np.sum(linear_part * g) == pytest.approx(np.sum(x * layer.backward(x, g)))



class TestBilinearInterpolationValues:

    def test_upsample_two_by_two(self):
        layer = BilinearInterpolation(2, 2, 5, 5)
        out = layer.forward(np.array([[1.0, 2.0, 2.0, 3.0]]))
        expected = np.array([[1.0, 1.4, 1.8, 2.0, 2.0],
                             [1.4, 1.8, 2.2, 2.4, 2.4],
                             [1.8, 2.2, 2.6, 2.8, 2.8],
                             [2.0, 2.4, 2.8, 3.0, 3.0],
                             [2.0, 2.4, 2.8, 3.0, 3.0]])
        np.testing.assert_allclose(out, expected.reshape(1, 25), atol=1e-12)

    def test_same_size_is_identity(self, rng):
        layer = BilinearInterpolation(3, 4, 3, 4, channels=2)
        x = rng.normal(size=(2, 24))
        np.testing.assert_allclose(layer.forward(x), x)

    def test_backward_is_adjoint(self, rng):
        layer = BilinearInterpolation(3, 3, 7, 5, channels=2)
        x = rng.normal(size=(2, layer.in_features))
        g = rng.normal(size=(2, layer.out_features))
        assert np.sum(layer.forward(x) * g) == pytest.approx(np.sum(x * layer.backward(x, g)))

    def test_channels_are_independent(self, rng):
        layer = BilinearInterpolation(2, 2, 4, 4, channels=2)
        x = np.hstack([np.zeros((1, 4)), rng.normal(size=(1, 4))])
        assert np.all(layer.forward(x)[:, :16] == 0)

# ── Finite differences ───────────────────────────────────────────
CONV_FACTORIES = [
    ("plain", lambda: Convolution(1, 2, 3, 3, 5, 5)),
    ("strided_padded", lambda: Convolution(2, 2, 3, 2, 6, 5, stride_h=2, pad_h=1,
                                           dilation_w=2)),
    ("atrous", lambda: AtrousConvolution(1, 1, 2, 2, 5, 5, 2, 2)),
    ("transposed", lambda: TransposedConvolution(2, 1, 3, 3, 3, 3, stride_h=2,
                                                 stride_w=2, pad_h=1, pad_w=1)),
    ("bilinear", lambda: BilinearInterpolation(3, 2, 5, 4, channels=2)),
]


class TestConvolutionGradients:

    @pytest.mark.parametrize("name,factory", CONV_FACTORIES, ids=[n for n, _ in CONV_FACTORIES])
    def test_jacobian(self, name, factory, rng, check_jacobian):
        layer = factory()
        layer.parameters = rng.uniform(-1, 1, layer.own_size)
        x = rng.uniform(-1, 1, (2, layer.in_features))
        assert check_jacobian(layer, x) <= 1e-5

    @pytest.mark.parametrize("name,factory", CONV_FACTORIES, ids=[n for n, _ in CONV_FACTORIES])
    def test_network_gradient(self, name, factory, rng, check_gradient):
        conv = factory()
        model = FFN()
        model.add(conv).add(Linear(conv.out_features, 3)).add(LogSoftMax())
        model.predictors = rng.uniform(-1, 1, (4, conv.in_features))
        model.responses = np.array([0, 1, 2, 1])
        model.reset()
        assert check_gradient(model) <= 1e-3


# ── Configuration errors ─────────────────────────────────────────
class TestConvolutionErrors:

    def test_zero_kernel(self):
        with pytest.raises(InvalidConfiguration):
            Convolution(1, 1, 0, 3, 5, 5)

    def test_kernel_larger_than_input(self):
        with pytest.raises(InvalidConfiguration):
            Convolution(1, 1, 7, 7, 5, 5)

    def test_negative_padding(self):
        with pytest.raises(InvalidConfiguration):
            TransposedConvolution(1, 1, 3, 3, 4, 4, pad_h=-1)

    def test_bilinear_zero_size(self):
        with pytest.raises(InvalidConfiguration):
            BilinearInterpolation(2, 2, 0, 4)

    def test_wrong_input_width(self):
        with pytest.raises(ShapeMismatch):
            Convolution(1, 1, 3, 3, 4, 4).forward(np.ones((1, 15)))
