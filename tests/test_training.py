"""
Unit tests for parameter-shift gradients, circuit library, optimizers and
the variational classifier.
"""

import math

import numpy as np
import pytest
from pydantic import ValidationError

from quantumcore.backends.local_backend import LocalBackend
from quantumcore.cancellation import CancellationToken
from quantumcore.circuits import gates
from quantumcore.circuits.circuit import Circuit
from quantumcore.exceptions import InvalidArgumentError
from quantumcore.simulator.statevector import StatevectorEngine
from quantumcore.training.circuit_library import (
    AnsatzKind,
    FeatureMapKind,
    create_ansatz,
    create_feature_map,
)
from quantumcore.training.optimizers import AdamOptimizer, SGDOptimizer, create_optimizer
from quantumcore.training.parameter_shift import finite_difference_gradient, parameter_shift_gradient
from quantumcore.training.vqc import (
    ClassificationReport,
    ConfusionMatrix,
    OneVsRestClassifier,
    RegressionReport,
    RegressionResult,
    TrainingConfig,
    VariationalClassifier,
    VariationalRegressor,
    binary_cross_entropy,
    r_squared,
)


@pytest.fixture
def two_clusters():
    """Twelve two-feature samples in two well-separated clusters."""
    class_zero = [0.20, 0.25, 0.30, 0.35, 0.40, 0.45]
    class_one = [2.55, 2.60, 2.65, 2.70, 2.75, 2.80]
    features = np.array([[x, 0.1] for x in class_zero + class_one])
    labels = np.array([0] * 6 + [1] * 6)
    return features, labels


def expectation_z_ry(params):
    """<Z> after RY(theta) on |0>, i.e. cos(theta)."""
    engine = StatevectorEngine()
    state = engine.run(Circuit(1).add(gates.ry(0, float(params[0]))))
    return engine.expectation_z(state, 0)


class TestParameterShift:
    """Test parameter-shift differentiation."""

    @pytest.mark.parametrize("theta", [0.0, 0.4, 1.3, math.pi / 2, 2.7, -2.2])
    def test_matches_analytic_gradient(self, theta):
        gradient = parameter_shift_gradient(expectation_z_ry, [theta], max_workers=1)
        assert gradient[0] == pytest.approx(-math.sin(theta), abs=1e-6)

    @pytest.mark.parametrize("theta", [0.4, 2.7])
    def test_matches_finite_difference(self, theta):
        shift = parameter_shift_gradient(expectation_z_ry, [theta], max_workers=2)
        finite = finite_difference_gradient(expectation_z_ry, [theta])
        assert shift[0] == pytest.approx(finite[0], abs=1e-4)

    def test_arbitrary_shift(self):
        gradient = parameter_shift_gradient(expectation_z_ry, [0.9], shift=0.3, max_workers=1)
        assert gradient[0] == pytest.approx(-math.sin(0.9), abs=1e-6)

    def test_array_valued_function(self):
        """Vector-valued functions yield a (params x outputs) Jacobian."""
        def fn(params):
            return np.array([math.cos(params[0]), math.sin(params[0]) * math.cos(params[1])])

        jacobian = parameter_shift_gradient(fn, [0.5, 1.1], max_workers=4)
        assert jacobian.shape == (2, 2)
        np.testing.assert_allclose(jacobian[:, 0], [-math.sin(0.5), 0.0], atol=1e-9)
        np.testing.assert_allclose(
            jacobian[:, 1], [math.cos(0.5) * math.cos(1.1), -math.sin(0.5) * math.sin(1.1)], atol=1e-9
        )

    def test_failure(self):
        with pytest.raises(InvalidArgumentError, match="non-empty"):
            parameter_shift_gradient(expectation_z_ry, [])

        with pytest.raises(InvalidArgumentError, match="multiple of pi"):
            parameter_shift_gradient(expectation_z_ry, [0.1], shift=math.pi)


class TestCircuitLibrary:
    """Test feature maps and ansatze."""

    @pytest.mark.parametrize("kind,reps,expected", [
        (AnsatzKind.REAL_AMPLITUDES, 1, 3),
        (AnsatzKind.REAL_AMPLITUDES, 2, 6),
        (AnsatzKind.EFFICIENT_SU2, 1, 6),
        ("efficient_su2", 3, 18),
    ])
    def test_parameter_counts(self, kind, reps, expected):
        ansatz = create_ansatz(kind, 3, reps)
        circuit = ansatz.build(np.linspace(0.1, 1.0, expected))

        assert ansatz.parameter_count == expected
        # One rotation per trainable parameter
        assert circuit.parameter_count == expected
        assert circuit.count_ops()["CNOT"] == 2 * reps

    def test_angle_feature_map(self):
        circuit = create_feature_map(FeatureMapKind.ANGLE, 2).build([0.3, 0.7])
        assert [g.angle for g in circuit] == [0.3, 0.7]

    def test_zz_feature_map(self):
        circuit = create_feature_map("zz", 3, reps=2).build([0.1, 0.2, 0.3])
        ops = circuit.count_ops()
        assert ops["H"] == 6
        assert ops["CNOT"] == 2 * 2 * 3

    def test_failure(self):
        with pytest.raises(InvalidArgumentError, match="Unknown ansatz"):
            create_ansatz("hardware_efficient", 2)

        with pytest.raises(InvalidArgumentError, match="Unknown feature map"):
            create_feature_map("amplitude", 2)

        with pytest.raises(InvalidArgumentError, match="expects 2 features"):
            create_feature_map(FeatureMapKind.ANGLE, 2).build([0.1])

        with pytest.raises(InvalidArgumentError, match="expects 4 parameters"):
            create_ansatz(AnsatzKind.REAL_AMPLITUDES, 2, reps=2).build([0.1])


class TestOptimizers:
    """Test update rules."""

    def test_sgd_step(self):
        optimizer = SGDOptimizer(learning_rate=0.5)
        params = optimizer.step(np.array([1.0, -1.0]), np.array([2.0, -4.0]))
        np.testing.assert_allclose(params, [0.0, 1.0])

    def test_adam_first_step(self):
        """Bias correction makes the first step ~ learning_rate * sign(gradient)."""
        optimizer = AdamOptimizer(learning_rate=0.1, num_params=2)
        params = optimizer.step(np.zeros(2), np.array([3.0, -0.01]))
        np.testing.assert_allclose(params, [-0.1, 0.1], atol=1e-6)
        assert optimizer.t == 1

    def test_create_optimizer(self):
        assert isinstance(create_optimizer("sgd", 0.1, 3), SGDOptimizer)
        adam = create_optimizer("adam", 0.1, 3, adam={"beta1": 0.8, "beta2": 0.99, "epsilon": 1e-6})
        assert adam.beta1 == 0.8

    def test_failure(self):
        with pytest.raises(InvalidArgumentError, match="Unknown optimizer"):
            create_optimizer("rmsprop", 0.1, 3)

        with pytest.raises(InvalidArgumentError, match="learning_rate must be positive"):
            SGDOptimizer(0.0)

        with pytest.raises(InvalidArgumentError, match="does not match"):
            AdamOptimizer(0.1, 2).step(np.zeros(2), np.zeros(3))


class TestTrainingConfig:
    """Test the immutable training configuration."""

    def test_defaults_from_settings(self):
        config = TrainingConfig()
        assert config.learning_rate > 0
        assert config.optimizer == "sgd"
        assert config.shots is None
        assert config.adam.beta1 == 0.9

    def test_frozen(self):
        config = TrainingConfig()
        with pytest.raises(ValidationError):
            config.learning_rate = 1.0

    def test_validation_failure(self):
        with pytest.raises(ValidationError):
            TrainingConfig(learning_rate=-0.1)

        with pytest.raises(ValidationError):
            TrainingConfig(optimizer="rmsprop")

        with pytest.raises(ValidationError):
            TrainingConfig(max_epochs=-1)

        with pytest.raises(ValidationError):
            TrainingConfig(adam={"beta1": 1.0})


class TestMetrics:
    """Test loss and classification metrics."""

    def test_binary_cross_entropy_clipped(self):
        assert binary_cross_entropy(np.array([1.0, 0.0]), np.array([1, 0])) == pytest.approx(0.0, abs=1e-6)
        assert math.isfinite(binary_cross_entropy(np.array([0.0]), np.array([1])))

    def test_classification_report(self):
        matrix = ConfusionMatrix.from_labels([1, 1, 0, 0, 1], [1, 0, 0, 1, 1])
        report = ClassificationReport(confusion_matrix=matrix)

        assert (matrix.true_positive, matrix.true_negative, matrix.false_positive, matrix.false_negative) == (2, 1, 1, 1)
        assert report.accuracy == pytest.approx(3 / 5)
        assert report.precision == pytest.approx(2 / 3)
        assert report.recall == pytest.approx(2 / 3)
        assert report.f1 == pytest.approx(2 / 3)

    def test_undefined_metrics_are_zero(self):
        report = ClassificationReport(ConfusionMatrix.from_labels([0, 0], [0, 0]))
        assert report.accuracy == 1.0
        assert report.precision == 0.0
        assert report.recall == 0.0
        assert report.f1 == 0.0
        assert set(report.to_dict()) == {"accuracy", "precision", "recall", "f1"}


class TestVariationalClassifier:
    """Test VQC forward pass and training loop."""

    @pytest.fixture
    def config(self):
        return TrainingConfig(learning_rate=0.3, max_epochs=5, convergence_threshold=1e-6, max_workers=2)

    @pytest.fixture
    def classifier(self, config):
        return VariationalClassifier(
            num_qubits=2,
            feature_map=FeatureMapKind.ANGLE,
            ansatz=AnsatzKind.REAL_AMPLITUDES,
            reps=1,
            backend=LocalBackend(),
            config=config,
        )

    def test_probability_closed_form(self, classifier):
        """With one CNOT after RY layers, P(q0 = 1) = sin^2((x0 + theta0) / 2)."""
        p = classifier.probability([0.4, 1.0], [0.3, -0.8])
        assert p == pytest.approx(math.sin(0.35) ** 2)

    def test_probability_from_shots(self):
        clf = VariationalClassifier(2, backend=LocalBackend(), config=TrainingConfig(shots=20000, seed=4))
        p = clf.probability([0.4, 1.0], [0.3, -0.8])
        assert p == pytest.approx(math.sin(0.35) ** 2, abs=0.02)

    def test_training_improves_accuracy(self, classifier, two_clusters):
        """Two clusters, 5 epochs: accuracy rises and loss never increases."""
        features, labels = two_clusters
        result = classifier.fit(features, labels, initial_parameters=[-1.2, 0.0])

        assert result.epochs_run == 5
        assert len(result.loss_history) == 5
        assert result.accuracy_history[0] == pytest.approx(7 / 12)
        assert result.accuracy_history[-1] == 1.0
        assert result.accuracy_history[-1] > result.accuracy_history[0]
        assert all(b <= a + 1e-9 for a, b in zip(result.loss_history, result.loss_history[1:]))
        assert result.train_accuracy == 1.0
        assert result.converged is False
        assert result.cancelled is False

        # The second qubit never reaches the readout qubit
        assert result.parameters[1] == pytest.approx(0.0)

    def test_predict_and_evaluate(self, classifier, two_clusters):
        features, labels = two_clusters
        classifier.fit(features, labels, initial_parameters=[-1.2, 0.0])

        predictions = classifier.predict(features)
        assert [p.label for p in predictions] == labels.tolist()
        assert all(0.0 <= p.probability <= 1.0 for p in predictions)

        report = classifier.evaluate(features, labels)
        assert report.accuracy == 1.0
        assert report.f1 == 1.0

    def test_zero_epochs_returns_initial_parameters(self, two_clusters):
        features, labels = two_clusters
        clf = VariationalClassifier(
            2, backend=LocalBackend(), config=TrainingConfig(max_epochs=0, seed=3)
        )

        result = clf.fit(features, labels)

        np.testing.assert_array_equal(result.parameters, clf.initial_parameters())
        assert result.loss_history == []
        assert result.accuracy_history == []
        assert result.epochs_run == 0
        assert result.converged is False

    def test_convergence_stops_early(self, two_clusters):
        features, labels = two_clusters
        clf = VariationalClassifier(
            2, backend=LocalBackend(),
            config=TrainingConfig(learning_rate=0.3, max_epochs=50, convergence_threshold=10.0),
        )

        result = clf.fit(features, labels, initial_parameters=[-1.2, 0.0])

        assert result.converged is True
        assert len(result.loss_history) == 2
        assert result.epochs_run == 1

    def test_cancellation_returns_current_parameters(self, classifier, two_clusters):
        features, labels = two_clusters
        token = CancellationToken()
        token.cancel()

        result = classifier.fit(features, labels, initial_parameters=[-1.2, 0.0], cancel_token=token)

        assert result.cancelled is True
        assert result.epochs_run == 0
        np.testing.assert_allclose(result.parameters, [-1.2, 0.0])

    def test_adam_mini_batches(self, two_clusters):
        features, labels = two_clusters
        config = TrainingConfig(optimizer="adam", learning_rate=0.2, max_epochs=3, batch_size=4, seed=0)
        clf = VariationalClassifier(2, ansatz="efficient_su2", backend=LocalBackend(), config=config)

        result = clf.fit(features, labels)

        assert clf.parameter_count == 4
        assert result.parameters.shape == (4,)
        assert result.epochs_run == 3
        assert len(result.accuracy_history) == 3

    def test_fit_validation(self, classifier, two_clusters):
        features, labels = two_clusters

        with pytest.raises(InvalidArgumentError, match="must be 0 or 1"):
            classifier.fit(features, labels * 2)

        with pytest.raises(InvalidArgumentError, match="Expected 2 features"):
            classifier.fit(features[:, :1], labels)

        with pytest.raises(InvalidArgumentError, match="same length"):
            classifier.fit(features, labels[:-1])

        with pytest.raises(InvalidArgumentError, match="cannot be empty"):
            classifier.fit(np.empty((0, 2)), [])

        with pytest.raises(InvalidArgumentError, match="initial parameters"):
            classifier.fit(features, labels, initial_parameters=[0.1])

    def test_predict_requires_parameters(self, classifier, two_clusters):
        features, _ = two_clusters
        with pytest.raises(InvalidArgumentError, match="no trained parameters"):
            classifier.predict(features)


class TestVariationalRegressor:
    """Test VQC regression: scaled readout, MSE training and R²."""

    @pytest.fixture
    def ramp(self):
        """Five one-feature samples whose targets follow sin^2((x + 0.4) / 2)."""
        features = np.array([[-0.4 + k * math.pi / 4] for k in range(5)])
        targets = np.sin((features[:, 0] + 0.4) / 2) ** 2
        return features, targets

    def make_regressor(self, **kwargs):
        config = TrainingConfig(learning_rate=2.0, max_epochs=20, convergence_threshold=1e-10)
        return VariationalRegressor(1, backend=LocalBackend(), config=config, **kwargs)

    def test_training_recovers_offset(self, ramp):
        features, targets = ramp
        regressor = self.make_regressor()

        result = regressor.fit(features, targets, initial_parameters=[0.0])

        assert result.value_range == (pytest.approx(0.0), pytest.approx(1.0))
        assert result.parameters[0] == pytest.approx(0.4, abs=0.01)
        assert result.train_r_squared > 0.999
        assert result.train_mse < 1e-4
        assert result.final_loss == result.loss_history[-1]
        assert all(b <= a + 1e-12 for a, b in zip(result.loss_history, result.loss_history[1:]))
        assert result.cancelled is False

    def test_predict_uses_value_range(self, ramp):
        features, targets = ramp
        regressor = self.make_regressor(value_range=(10.0, 30.0))

        values = regressor.predict(features, params=[0.4])
        np.testing.assert_allclose(values, 10.0 + 20.0 * targets, atol=1e-9)

        report = regressor.evaluate(features, 10.0 + 20.0 * targets, params=[0.4])
        assert isinstance(report, RegressionReport)
        assert report.mse == pytest.approx(0.0, abs=1e-12)
        assert report.r_squared == pytest.approx(1.0)

    def test_fixed_range_survives_fit(self, ramp):
        features, targets = ramp
        regressor = self.make_regressor(value_range=(-1.0, 2.0))
        regressor.config = TrainingConfig(max_epochs=0)

        result = regressor.fit(features, targets, initial_parameters=[0.0])

        assert result.value_range == (-1.0, 2.0)
        assert result.loss_history == []
        assert result.train_r_squared is None

    def test_cancellation_returns_initial_parameters(self, ramp):
        features, targets = ramp
        token = CancellationToken()
        token.cancel()

        result = self.make_regressor().fit(features, targets, initial_parameters=[0.1], cancel_token=token)

        assert isinstance(result, RegressionResult)
        assert result.cancelled is True
        assert result.epochs_run == 0
        np.testing.assert_allclose(result.parameters, [0.1])

    def test_r_squared(self):
        assert r_squared([1.0, 2.0, 3.0], [1.0, 2.0, 3.0]) == pytest.approx(1.0)
        assert r_squared([1.0, 2.0, 3.0], [2.0, 2.0, 2.0]) == pytest.approx(0.0)
        # Constant targets have no variance to explain
        assert r_squared([5.0, 5.0], [4.0, 6.0]) == 1.0

    def test_validation(self, ramp):
        features, targets = ramp
        regressor = self.make_regressor()

        with pytest.raises(InvalidArgumentError, match="1-D"):
            regressor.fit(features, targets.reshape(-1, 1))

        with pytest.raises(InvalidArgumentError, match="finite"):
            regressor.fit(features, np.append(targets[:-1], np.nan))

        with pytest.raises(InvalidArgumentError, match="same length"):
            regressor.fit(features, targets[:-1])

        with pytest.raises(InvalidArgumentError, match="value range"):
            regressor.predict(features, params=[0.0])

        with pytest.raises(InvalidArgumentError, match="low <= high"):
            self.make_regressor(value_range=(1.0, 0.0))


class TestOneVsRestClassifier:
    """Test multi-class extension."""

    @pytest.fixture
    def three_classes(self):
        features = np.array([[x, y] for x, y in [
            (0.2, 0.2), (0.3, 0.1), (0.25, 0.3),
            (1.5, 1.6), (1.6, 1.5), (1.55, 1.4),
            (2.8, 2.9), (2.9, 2.7), (2.7, 2.8),
        ]])
        labels = np.array([0, 0, 0, 1, 1, 1, 2, 2, 2])
        return features, labels

    def test_fit_predict_evaluate(self, three_classes):
        features, labels = three_classes
        ovr = OneVsRestClassifier(
            2,
            backend=LocalBackend(),
            config=TrainingConfig(learning_rate=0.3, max_epochs=2, seed=1),
        )

        results = ovr.fit(features, labels)
        assert sorted(results) == [0, 1, 2]
        assert ovr.classes == [0, 1, 2]

        predictions = ovr.predict(features)
        assert len(predictions) == 9
        for prediction in predictions:
            assert prediction.label in (0, 1, 2)
            assert set(prediction.class_probabilities) == {0, 1, 2}
            assert prediction.probability == max(prediction.class_probabilities.values())

        report = ovr.evaluate(features, labels)
        assert report.labels == [0, 1, 2]
        assert report.confusion_matrix.shape == (3, 3)
        assert report.confusion_matrix.sum() == 9
        assert 0.0 <= report.accuracy <= 1.0

    def test_failure(self, three_classes):
        features, _ = three_classes
        ovr = OneVsRestClassifier(2, backend=LocalBackend())

        with pytest.raises(InvalidArgumentError, match="has not been fitted"):
            ovr.predict(features)

        with pytest.raises(InvalidArgumentError, match="at least two classes"):
            ovr.fit(features, [0] * 9)
