"""Tests for the feed-forward driver, losses, initializers and optimizers."""
import numpy as np
import pandas as pd
import pytest

from annlab.exceptions import ShapeMismatch
from annlab.neural_networks import (FFN, AdamOptimizer, ConstInitialization, Dropout,
                                    GaussianInitialization, GlorotInitialization, Linear,
                                    LogSoftMax, MeanSquaredError, NegativeLogLikelihood,
                                    RandomInitialization, ReLU, SGDOptimizer, Sigmoid,
                                    get_optimizer)


# ── Fixtures ─────────────────────────────────────────────────────
@pytest.fixture()
def blobs():
    rng = np.random.default_rng(0)
    centers = np.array([[2.0, 2.0], [-2.0, -2.0], [2.0, -2.0]])
    labels = np.repeat(np.arange(3), 20)
    X = centers[labels] + rng.normal(scale=0.5, size=(60, 2))
    return X, labels


def _classifier(initializer=None):
    model = FFN(initializer=initializer or GlorotInitialization(random_state=0))
    model.add(Linear(2, 8)).add(Sigmoid()).add(Linear(8, 3)).add(LogSoftMax())
    return model


# ── FFN ──────────────────────────────────────────────────────────
class TestFFN:

    def test_parameters_cover_every_layer(self):
        model = _classifier().reset()
        assert model.parameters.size == sum(layer.weight_size for layer in model.layers)
        assert model.parameters.size == 2 * 8 + 8 + 8 * 3 + 3

    def test_layers_alias_network_parameters(self):
        model = _classifier().reset()
        model.parameters[:] = 0.0
        assert np.all(model.layers[0].parameters == 0.0)
        model.layers[2].named_parameters()["bias"][...] = 1.5
        assert np.all(model.parameters[-3:] == 1.5)

    def test_evaluate_uses_supplied_parameters(self, blobs):
        X, y = blobs
        model = _classifier().reset()
        model.predictors, model.responses = X, y
        zeros = np.zeros_like(model.parameters)
        # All-zero parameters give uniform class probabilities.
        assert model.evaluate(zeros, 0, 10) == pytest.approx(10 * np.log(3))
        assert model.parameters is zeros

    def test_gradient_overwrites_buffer(self, blobs):
        X, y = blobs
        model = _classifier().reset()
        model.predictors, model.responses = X, y
        first = np.full_like(model.parameters, 99.0)
        model.gradient(model.parameters, 0, first, 5)
        second = np.zeros_like(model.parameters)
        model.gradient(model.parameters, 0, second, 5)
        np.testing.assert_allclose(first, second)

    def test_gradient_check(self, blobs, check_gradient):
        X, y = blobs
        model = FFN(initializer=GlorotInitialization(random_state=1))
        model.add(Linear(2, 5)).add(ReLU()).add(Linear(5, 3)).add(LogSoftMax())
        model.predictors, model.responses = X[::6], y[::6]
        model.reset()
        assert check_gradient(model) <= 1e-4

    def test_minibatch_gradients_sum_to_full(self, blobs):
        X, y = blobs
        model = _classifier().reset()
        model.predictors, model.responses = X, y
        full = np.zeros_like(model.parameters)
        model.gradient(model.parameters, 0, full, 60)
        parts = np.zeros_like(model.parameters)
        for begin in range(0, 60, 20):
            part = np.zeros_like(model.parameters)
            model.gradient(model.parameters, begin, part, 20)
            parts += part
        np.testing.assert_allclose(parts, full)

    def test_mean_squared_error_gradients_weight_by_batch_share(self):
        rng = np.random.default_rng(7)
        X, y = rng.normal(size=(12, 3)), rng.normal(size=(12, 2))
        model = FFN(loss=MeanSquaredError(), initializer=GlorotInitialization(random_state=0))
        model.add(Linear(3, 4)).add(Sigmoid()).add(Linear(4, 2))
        model.predictors, model.responses = X, y
        model.reset()
        full = np.zeros_like(model.parameters)
        model.gradient(model.parameters, 0, full, 12)
        weighted = np.zeros_like(model.parameters)
        plain = np.zeros_like(model.parameters)
        for begin, size in ((0, 3), (3, 9)):
            part = np.zeros_like(model.parameters)
            model.gradient(model.parameters, begin, part, size)
            weighted += part * size / 12
            plain += part
        np.testing.assert_allclose(weighted, full)
        assert not np.allclose(plain, full)

    def test_wrong_gradient_buffer(self, blobs):
        X, y = blobs
        model = _classifier().reset()
        model.predictors, model.responses = X, y
        with pytest.raises(ShapeMismatch):
            model.gradient(model.parameters, 0, np.zeros(3), 5)

    def test_num_functions_requires_data(self):
        with pytest.raises(ValueError):
            _ = _classifier().num_functions

    def test_shuffle_keeps_pairs(self, blobs):
        X, y = blobs
        model = _classifier()
        model.predictors, model.responses = X.copy(), y.copy()
        model.shuffle(np.random.default_rng(1))
        assert not np.array_equal(model.predictors, X)
        for row, label in zip(model.predictors, model.responses):
            index = np.flatnonzero(np.all(X == row, axis=1))[0]
            assert y[index] == label

    def test_train_classifier(self, blobs):
        X, y = blobs
        model = _classifier()
        model.predictors, model.responses = X, y
        before = model.evaluate(model.parameters, 0, 60)
        after = model.train(X, y, AdamOptimizer(lr=0.05, batch_size=10, max_iterations=600,
                                                random_state=0))
        assert after < before / 4
        accuracy = np.mean(np.argmax(model.predict(X), axis=1) == y)
        assert accuracy >= 0.95

    def test_train_regression_with_sgd(self):
        rng = np.random.default_rng(3)
        X = rng.uniform(-1, 1, (40, 3))
        y = X @ np.array([[1.0], [-2.0], [0.5]]) + 0.3
        model = FFN(loss=MeanSquaredError(), initializer=GaussianInitialization(0, 0.1, 0))
        model.add(Linear(3, 1))
        model.train(X, y, SGDOptimizer(lr=0.1, momentum=0.5, batch_size=40,
                                       max_iterations=2000, tolerance=1e-12))
        weights = model.layers[0].named_parameters()
        np.testing.assert_allclose(weights["weight"].ravel(), [1.0, -2.0, 0.5], atol=1e-3)
        np.testing.assert_allclose(weights["bias"], [0.3], atol=1e-3)

    def test_dropout_only_in_training(self, blobs):
        X, y = blobs
        model = FFN(initializer=GlorotInitialization(random_state=0))
        model.add(Linear(2, 8)).add(Dropout(0.5, random_state=0)).add(Linear(8, 3)).add(LogSoftMax())
        model.predictors, model.responses = X, y
        np.testing.assert_array_equal(model.predict(X), model.predict(X))
        assert model.evaluate(model.parameters, 0, 60, deterministic=False) != \
            model.evaluate(model.parameters, 0, 60)

    def test_train_accepts_dataframes(self, blobs):
        X, y = blobs
        frame = pd.DataFrame(X, columns=["x0", "x1"])
        model = _classifier()
        model.train(frame, pd.Series(y), SGDOptimizer(max_iterations=3, shuffle=False))
        assert isinstance(model.predictors, np.ndarray)
        np.testing.assert_array_equal(model.predict(frame), model.predict(X))

    def test_train_rejects_mismatched_samples(self, blobs):
        X, y = blobs
        with pytest.raises(ShapeMismatch):
            _classifier().train(X, y[:10])

    def test_get_and_set_params(self):
        model = _classifier().reset()
        params = model.get_params()
        assert [layer["type"] for layer in params["layers"]] == \
            ["Linear", "Sigmoid", "Linear", "LogSoftMax"]
        model.set_params(parameters=np.ones(model.parameters.size), verbose=True)
        assert np.all(model.get_params("trainable")["parameters"] == 1.0)
        assert model.verbose is True
        with pytest.raises(ValueError):
            model.set_params(learning_rate=0.1)


# ── Losses ───────────────────────────────────────────────────────
class TestLosses:

    def test_negative_log_likelihood(self):
        log_probs = np.log(np.array([[0.7, 0.2, 0.1], [0.1, 0.1, 0.8]]))
        loss = NegativeLogLikelihood()
        assert loss.forward(log_probs, [0, 2]) == pytest.approx(-np.log(0.7) - np.log(0.8))
        np.testing.assert_array_equal(loss.backward(log_probs, [0, 2]),
                                      [[-1.0, 0.0, 0.0], [0.0, 0.0, -1.0]])

    @pytest.mark.parametrize("target", [[0, 3], [-1, 0], [0]])
    def test_negative_log_likelihood_bad_targets(self, target):
        with pytest.raises(ShapeMismatch):
            NegativeLogLikelihood().forward(np.zeros((2, 3)), target)

    def test_mean_squared_error(self):
        loss = MeanSquaredError()
        x = np.array([[1.0, 2.0], [3.0, 4.0]])
        target = np.array([[1.0, 0.0], [3.0, 2.0]])
        assert loss.forward(x, target) == pytest.approx(2.0)
        np.testing.assert_allclose(loss.backward(x, target), [[0.0, 1.0], [0.0, 1.0]])

    def test_mean_squared_error_shape(self):
        with pytest.raises(ShapeMismatch):
            MeanSquaredError().forward(np.zeros((2, 2)), np.zeros(3))


# ── Initializers ─────────────────────────────────────────────────
class TestInitializers:

    def test_glorot_bounds(self):
        values = GlorotInitialization(random_state=0).initialize((30, 20))
        assert np.max(np.abs(values)) <= np.sqrt(6.0 / 50)

    def test_glorot_kernel_fans(self):
        values = GlorotInitialization(random_state=0).initialize((4, 2, 3, 3))
        assert values.shape == (4, 2, 3, 3)
        assert np.max(np.abs(values)) <= np.sqrt(6.0 / (18 + 36))

    def test_glorot_normal(self):
        values = GlorotInitialization(uniform=False, random_state=0).initialize((200, 200))
        assert np.std(values) == pytest.approx(np.sqrt(2.0 / 400), rel=0.05)

    def test_random_range(self):
        values = RandomInitialization(-0.5, 0.25, random_state=1).initialize((100,))
        assert values.min() >= -0.5 and values.max() < 0.25

    def test_const(self):
        np.testing.assert_array_equal(ConstInitialization(0.5).initialize((2, 3)),
                                      np.full((2, 3), 0.5))

    def test_seeded_networks_match(self):
        first = _classifier(GlorotInitialization(random_state=5)).reset()
        second = _classifier(GlorotInitialization(random_state=5)).reset()
        np.testing.assert_array_equal(first.parameters, second.parameters)


# ── Optimizers ───────────────────────────────────────────────────
class TestOptimizers:

    def test_sgd_plain_step(self):
        optimizer = SGDOptimizer(lr=0.5, momentum=0.0, nesterov=False)
        parameters = np.array([1.0, 2.0])
        optimizer.update(parameters, np.array([1.0, -1.0]))
        np.testing.assert_allclose(parameters, [0.5, 2.5])

    def test_sgd_momentum(self):
        optimizer = SGDOptimizer(lr=0.1, momentum=0.9, nesterov=False)
        parameters = np.zeros(1)
        optimizer.update(parameters, np.ones(1))
        optimizer.update(parameters, np.ones(1))
        # v1 = -0.1, v2 = 0.9 * -0.1 - 0.1
        np.testing.assert_allclose(parameters, [-0.1 - 0.19])

    def test_sgd_nesterov(self):
        optimizer = SGDOptimizer(lr=0.1, momentum=0.9, nesterov=True)
        parameters = np.zeros(1)
        optimizer.update(parameters, np.ones(1))
        np.testing.assert_allclose(parameters, [0.9 * -0.1 - 0.1])

    def test_adam_first_step(self):
        optimizer = AdamOptimizer(lr=0.01)
        parameters = np.zeros(3)
        optimizer.update(parameters, np.array([5.0, -0.2, 0.0]))
        np.testing.assert_allclose(parameters, [-0.01, 0.01, 0.0], atol=1e-8)

    def test_factory(self):
        assert isinstance(get_optimizer('sgd', lr=0.2), SGDOptimizer)
        assert isinstance(get_optimizer('adam'), AdamOptimizer)
        with pytest.raises(ValueError):
            get_optimizer('lbfgs')

    def test_iteration_limit(self, blobs):
        X, y = blobs
        optimizer = SGDOptimizer(lr=0.01, batch_size=7, max_iterations=13)
        _classifier().train(X, y, optimizer)
        assert optimizer.n_iter_ == 13

    def test_verbose_prints_epochs(self, blobs, capsys):
        X, y = blobs
        optimizer = AdamOptimizer(batch_size=30, max_iterations=4, verbose=True)
        _classifier().train(X, y, optimizer)
        assert capsys.readouterr().out.count("Epoch") == 2
