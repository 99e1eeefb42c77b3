"""Tests for the stochastic regularization layers."""
import numpy as np
import pytest

from annlab.exceptions import NumericDegenerate
from annlab.neural_networks import AlphaDropout, Dropout


# ── Dropout ──────────────────────────────────────────────────────
class TestDropout:

    @pytest.mark.parametrize("shape", [(1, 1), (4, 7), (50, 3)])
    def test_zero_probability_is_identity(self, shape, rng):
        layer = Dropout(p=0.0, random_state=0)
        x = rng.normal(size=shape)
        np.testing.assert_array_equal(layer.forward(x, deterministic=False), x)
        g = rng.normal(size=shape)
        np.testing.assert_array_equal(layer.backward(x, g), g)

    @pytest.mark.parametrize("p", [0.1, 0.5, 0.9])
    def test_deterministic_is_identity(self, p, rng):
        layer = Dropout(p=p, random_state=0)
        x = rng.normal(size=(10, 10))
        np.testing.assert_array_equal(layer.forward(x, deterministic=True), x)
        g = rng.normal(size=(10, 10))
        np.testing.assert_array_equal(layer.backward(x, g), g)

    def test_mean_is_preserved(self):
        p = 0.2
        layer = Dropout(p=p, random_state=1)
        x = np.full((1000, 1), 1 - p)
        out = layer.forward(x)
        assert abs(np.mean(out) - (1 - p)) <= 0.05

    def test_drop_rate(self):
        layer = Dropout(p=0.3, random_state=2)
        out = layer.forward(np.ones((200, 100)))
        assert np.mean(out == 0) == pytest.approx(0.3, abs=0.02)
        survivors = out[out != 0]
        np.testing.assert_allclose(survivors, 1 / 0.7)

    def test_backward_reuses_mask(self, rng):
        layer = Dropout(p=0.5, random_state=3)
        x = rng.normal(size=(6, 6))
        out = layer.forward(x)
        delta = layer.backward(x, np.ones_like(x))
        np.testing.assert_array_equal(delta == 0, out == 0)
        np.testing.assert_allclose(delta[delta != 0], 2.0)

    def test_seeded_masks_repeat(self, rng):
        x = rng.normal(size=(5, 5))
        first = Dropout(p=0.5, random_state=7).forward(x)
        second = Dropout(p=0.5, random_state=7).forward(x)
        np.testing.assert_array_equal(first, second)

    def test_saved_mask_is_restored(self, rng):
        layer = Dropout(p=0.5, random_state=9)
        x = rng.normal(size=(6, 6))
        first = layer.forward(x)
        snapshot = layer.save_step()
        layer.forward(x)
        layer.load_step(snapshot)
        delta = layer.backward(x, np.ones_like(x))
        np.testing.assert_array_equal(delta == 0, first == 0)

    @pytest.mark.parametrize("p", [-0.1, 1.0, 1.5])
    def test_invalid_probability(self, p):
        with pytest.raises(NumericDegenerate):
            Dropout(p=p)


# ── AlphaDropout ─────────────────────────────────────────────────
class TestAlphaDropout:

    def test_deterministic_is_identity(self, rng):
        layer = AlphaDropout(p=0.2, random_state=0)
        x = rng.normal(size=(8, 8))
        np.testing.assert_array_equal(layer.forward(x, deterministic=True), x)

    def test_affine_constants(self):
        layer = AlphaDropout(p=0.2)
        alpha = -1.7580993408473766
        expected_a = ((1 - 0.2) * (1 + 0.2 * alpha ** 2)) ** -0.5
        assert layer.a == pytest.approx(expected_a)
        assert layer.b == pytest.approx(-expected_a * alpha * 0.2)

    def test_dropped_entries_take_fixed_value(self, rng):
        layer = AlphaDropout(p=0.5, random_state=4)
        x = rng.normal(size=(20, 20))
        out = layer.forward(x)
        dropped = layer.mask == 0
        assert np.any(dropped)
        np.testing.assert_allclose(out[dropped], layer.alpha * layer.a + layer.b)
        np.testing.assert_allclose(out[~dropped], x[~dropped] * layer.a + layer.b)

    def test_preserves_mean_and_variance(self):
        rng = np.random.default_rng(5)
        layer = AlphaDropout(p=0.2, random_state=6)
        out = layer.forward(rng.normal(size=(400, 250)))
        assert np.mean(out) == pytest.approx(0.0, abs=0.02)
        assert np.var(out) == pytest.approx(1.0, abs=0.05)

    def test_backward(self, rng):
        layer = AlphaDropout(p=0.3, random_state=8)
        x = rng.normal(size=(4, 5))
        layer.forward(x)
        g = rng.normal(size=(4, 5))
        np.testing.assert_allclose(layer.backward(x, g), g * layer.mask * layer.a)

    def test_saved_mask_is_restored(self, rng):
        layer = AlphaDropout(p=0.4, random_state=10)
        x = rng.normal(size=(5, 5))
        layer.forward(x)
        mask = layer.mask
        snapshot = layer.save_step()
        layer.forward(x)
        layer.load_step(snapshot)
        assert layer.mask is mask

    def test_invalid_probability(self):
        with pytest.raises(NumericDegenerate):
            AlphaDropout(p=1.0)
