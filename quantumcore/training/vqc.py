"""
Variational Quantum Classifier (VQC) and regressor for quantumcore.

A binary classifier whose model is a parameterized circuit:

    |ψ(x, θ)⟩ = ansatz(θ) · feature_map(x) |0...0⟩
    p(x, θ)   = P(qubit 0 measured as |1⟩)
    label     = 1 if p >= 0.5 else 0

Training minimizes mean binary cross-entropy

    L(θ) = -1/m Σᵢ [ yᵢ·log pᵢ + (1-yᵢ)·log(1-pᵢ) ]

by gradient descent. The gradient uses the chain rule, with each ∂pᵢ/∂θⱼ
obtained exactly by the parameter-shift rule:

    ∂L/∂θⱼ = 1/m Σᵢ (∂ℓ/∂pᵢ) · (∂pᵢ/∂θⱼ),   ∂ℓ/∂p = (p - y) / (p·(1-p))

Training Loop
-------------
Each epoch:
    1. Evaluate loss and accuracy at the current parameters (recorded)
    2. Stop if |loss_prev - loss| < convergence_threshold
    3. Compute gradients (all shifted circuits in parallel) and update once
       per batch (full batch unless batch_size is set)

max_epochs = 0 returns the initial parameters with an empty history. A
CancellationToken stops training between updates and returns the current
parameters with cancelled = True.

Regression
----------
VariationalRegressor reuses the same circuit and epoch loop, mapping the
readout onto a value range (low, high) taken from the training targets:

    value = low + p·(high - low),   L(θ) = 1/m Σᵢ (valueᵢ - yᵢ)²

Its fit() reports training MSE and R² (1.0 when the targets are constant).

Example:
    >>> clf = VariationalClassifier(num_qubits=2, config=TrainingConfig(learning_rate=0.3, max_epochs=20))
    >>> result = clf.fit(x_train, y_train)
    >>> report = clf.evaluate(x_test, y_test)
    >>> print(f"accuracy={report.accuracy:.2f} f1={report.f1:.2f}")
"""

from dataclasses import dataclass, field
from typing import Callable, Dict, List, Literal, Optional, Sequence, Tuple, Union
import logging
import math

import numpy as np
from pydantic import BaseModel, ConfigDict, Field

from quantumcore.backends.backend_base import BackendBase
from quantumcore.backends.registry import resolve_backend
from quantumcore.cancellation import CancellationToken
from quantumcore.circuits.circuit import Circuit
from quantumcore.config import settings
from quantumcore.exceptions import InvalidArgumentError
from quantumcore.training.circuit_library import (
    AnsatzKind,
    FeatureMapKind,
    create_ansatz,
    create_feature_map,
)
from quantumcore.training.optimizers import create_optimizer
from quantumcore.training.parameter_shift import parameter_shift_gradient

logger = logging.getLogger(__name__)

# Probabilities are clipped to [EPSILON, 1 - EPSILON] inside log()
EPSILON = 1e-7


# =============================================================================
# Configuration
# =============================================================================

class AdamConfig(BaseModel):
    """Adam moment-decay rates and numerical epsilon."""

    model_config = ConfigDict(frozen=True)

    beta1: float = Field(default=0.9, ge=0.0, lt=1.0)
    beta2: float = Field(default=0.999, ge=0.0, lt=1.0)
    epsilon: float = Field(default=1e-8, gt=0.0)


class TrainingConfig(BaseModel):
    """
    Immutable training configuration.

    Unset fields fall back to settings.training, so environment variables
    (QCORE_TRAINING_*) change the defaults without code changes.

    Attributes:
        learning_rate: Step size η
        max_epochs: Epoch budget (0 = return the initial parameters)
        convergence_threshold: Stop when |loss_prev - loss| is below this
        shots: Shots per probability estimate (None = exact probabilities)
        optimizer: 'sgd' or 'adam'
        adam: Adam hyperparameters (ignored for sgd)
        batch_size: Mini-batch size (None = full batch)
        seed: Seed for initial parameters, batch shuffling and sampling
        max_workers: Threads for parameter-shift evaluations
    """

    model_config = ConfigDict(frozen=True)

    learning_rate: float = Field(default_factory=lambda: settings.training.learning_rate, gt=0.0)
    max_epochs: int = Field(default_factory=lambda: settings.training.max_epochs, ge=0)
    convergence_threshold: float = Field(
        default_factory=lambda: settings.training.convergence_threshold, ge=0.0
    )
    shots: Optional[int] = Field(default=None, ge=1)
    optimizer: Literal["sgd", "adam"] = "sgd"
    adam: AdamConfig = Field(default_factory=AdamConfig)
    batch_size: Optional[int] = Field(default=None, ge=1)
    seed: Optional[int] = None
    max_workers: Optional[int] = Field(default_factory=lambda: settings.training.max_workers, ge=1)


# =============================================================================
# Results
# =============================================================================

@dataclass
class TrainingResult:
    """
    Outcome of VariationalClassifier.fit().

    Attributes:
        parameters: Final trained parameters
        loss_history: Loss at the start of each epoch
        accuracy_history: Training accuracy at the start of each epoch
        converged: Whether the loss change dropped below the threshold
        epochs_run: Number of parameter-update epochs completed
        cancelled: Whether training stopped on a CancellationToken
        train_accuracy: Accuracy of the final parameters on the training set
    """
    parameters: np.ndarray
    loss_history: List[float] = field(default_factory=list)
    accuracy_history: List[float] = field(default_factory=list)
    converged: bool = False
    epochs_run: int = 0
    cancelled: bool = False
    train_accuracy: Optional[float] = None

    @property
    def final_loss(self) -> Optional[float]:
        return self.loss_history[-1] if self.loss_history else None


@dataclass(frozen=True)
class Prediction:
    label: int
    probability: float


@dataclass(frozen=True)
class ConfusionMatrix:
    """Binary confusion counts (positive class = 1)."""
    true_positive: int
    true_negative: int
    false_positive: int
    false_negative: int

    @classmethod
    def from_labels(cls, actual: Sequence[int], predicted: Sequence[int]) -> "ConfusionMatrix":
        pairs = list(zip(actual, predicted))
        return cls(
            true_positive=sum(1 for a, p in pairs if a == 1 and p == 1),
            true_negative=sum(1 for a, p in pairs if a == 0 and p == 0),
            false_positive=sum(1 for a, p in pairs if a == 0 and p == 1),
            false_negative=sum(1 for a, p in pairs if a == 1 and p == 0),
        )

    @property
    def total(self) -> int:
        return self.true_positive + self.true_negative + self.false_positive + self.false_negative


@dataclass(frozen=True)
class ClassificationReport:
    """Metrics derived purely from a confusion matrix (0 when undefined)."""
    confusion_matrix: ConfusionMatrix

    @property
    def accuracy(self) -> float:
        cm = self.confusion_matrix
        return (cm.true_positive + cm.true_negative) / cm.total if cm.total else 0.0

    @property
    def precision(self) -> float:
        cm = self.confusion_matrix
        predicted_positive = cm.true_positive + cm.false_positive
        return cm.true_positive / predicted_positive if predicted_positive else 0.0

    @property
    def recall(self) -> float:
        cm = self.confusion_matrix
        actual_positive = cm.true_positive + cm.false_negative
        return cm.true_positive / actual_positive if actual_positive else 0.0

    @property
    def f1(self) -> float:
        p, r = self.precision, self.recall
        return 2 * p * r / (p + r) if (p + r) else 0.0

    def to_dict(self) -> Dict[str, float]:
        return {
            'accuracy': self.accuracy,
            'precision': self.precision,
            'recall': self.recall,
            'f1': self.f1,
        }


# =============================================================================
# Loss
# =============================================================================

def binary_cross_entropy(probabilities: np.ndarray, labels: np.ndarray) -> float:
    p = np.clip(probabilities, EPSILON, 1.0 - EPSILON)
    return float(-np.mean(labels * np.log(p) + (1 - labels) * np.log(1.0 - p)))


def binary_cross_entropy_derivative(probabilities: np.ndarray, labels: np.ndarray) -> np.ndarray:
    """∂ℓ/∂p per sample."""
    p = np.clip(probabilities, EPSILON, 1.0 - EPSILON)
    return (p - labels) / (p * (1.0 - p))


def mean_squared_error(predicted: np.ndarray, targets: np.ndarray) -> float:
    return float(np.mean((np.asarray(predicted) - np.asarray(targets)) ** 2))


def r_squared(targets: Sequence[float], predicted: Sequence[float]) -> float:
    """Coefficient of determination; 1.0 when the targets have no variance."""
    y = np.asarray(targets, dtype=float)
    ss_tot = float(np.sum((y - y.mean()) ** 2))
    if ss_tot == 0.0:
        return 1.0
    ss_res = float(np.sum((y - np.asarray(predicted, dtype=float)) ** 2))
    return 1.0 - ss_res / ss_tot


# =============================================================================
# Shared model machinery
# =============================================================================

class VariationalModel:
    """
    Parameterized circuit whose raw output is p = P(qubit 0 = |1⟩).

    Subclasses supply the per-sample loss on p and its derivative ∂ℓ/∂p;
    the parameter-shift gradient and the epoch loop are shared.

    Args:
        num_qubits: Register width; also the number of features per sample
        feature_map: FeatureMapKind (or its value)
        ansatz: AnsatzKind (or its value)
        reps: Ansatz repetitions
        feature_map_reps: Feature map repetitions
        backend: Backend instance or kind (default: from settings)
        config: TrainingConfig (default: TrainingConfig())
    """

    log_name = "VQC"
    target_name = "labels"

    def __init__(
        self,
        num_qubits: int,
        feature_map: Union[FeatureMapKind, str] = FeatureMapKind.ANGLE,
        ansatz: Union[AnsatzKind, str] = AnsatzKind.REAL_AMPLITUDES,
        reps: int = 1,
        feature_map_reps: int = 1,
        backend: Union[BackendBase, str, None] = None,
        config: Optional[TrainingConfig] = None
    ):
        self.num_qubits = num_qubits
        self.feature_map = create_feature_map(feature_map, num_qubits, feature_map_reps)
        self.ansatz = create_ansatz(ansatz, num_qubits, reps)
        self.backend = resolve_backend(backend)
        self.config = config or TrainingConfig()
        self.parameters: Optional[np.ndarray] = None

    @property
    def parameter_count(self) -> int:
        return self.ansatz.parameter_count

    def initial_parameters(self, seed: Optional[int] = None) -> np.ndarray:
        rng = np.random.default_rng(self.config.seed if seed is None else seed)
        return rng.uniform(-math.pi, math.pi, size=self.parameter_count)

    def build_circuit(self, features: Sequence[float], params: Sequence[float]) -> Circuit:
        return self.feature_map.build(features) + self.ansatz.build(params)

    # =========================================================================
    # Forward pass
    # =========================================================================

    def probability(self, features: Sequence[float], params: Sequence[float]) -> float:
        """P(qubit 0 = |1⟩) for one sample."""
        handle = self.backend.execute(self.build_circuit(features, params), seed=self.config.seed)
        if self.config.shots is None and self.backend.supports_exact_probabilities:
            probs = self.backend.probabilities(handle)
            return float(probs[1::2].sum())
        distribution = self.backend.run_shots(handle, self.config.shots or settings.simulator.default_shots,
                                              seed=self.config.seed)
        return distribution.marginal_probability(0)

    def forward(self, features: np.ndarray, params: Sequence[float]) -> np.ndarray:
        return np.array([self.probability(x, params) for x in features])

    def _loss_from_probabilities(self, probabilities: np.ndarray, targets: np.ndarray) -> float:
        raise NotImplementedError

    def _loss_derivative(self, probabilities: np.ndarray, targets: np.ndarray) -> np.ndarray:
        raise NotImplementedError

    def loss(self, features: np.ndarray, targets: np.ndarray, params: Sequence[float]) -> float:
        return self._loss_from_probabilities(self.forward(features, params), targets)

    def gradient(self, features: np.ndarray, targets: np.ndarray, params: np.ndarray) -> np.ndarray:
        """∂L/∂θ via chain rule over parameter-shift derivatives of each pᵢ."""
        probabilities = self.forward(features, params)
        jacobian = parameter_shift_gradient(
            lambda theta: self.forward(features, theta),
            params,
            max_workers=self.config.max_workers,
        )  # shape (num_params, num_samples)
        return jacobian @ self._loss_derivative(probabilities, targets) / len(targets)

    # =========================================================================
    # Training
    # =========================================================================

    def _validate_features(self, features, num_targets: int) -> np.ndarray:
        x = np.asarray(features, dtype=float)
        if x.ndim != 2:
            raise InvalidArgumentError(f"features must be 2-D (samples x features), got shape {x.shape}")
        if len(x) == 0:
            raise InvalidArgumentError("Training set cannot be empty")
        if len(x) != num_targets:
            raise InvalidArgumentError(f"Features and {self.target_name} must have same length")
        if x.shape[1] != self.num_qubits:
            raise InvalidArgumentError(f"Expected {self.num_qubits} features per sample, got {x.shape[1]}")
        return x

    def _start_parameters(self, initial_parameters: Optional[Sequence[float]]) -> np.ndarray:
        if initial_parameters is None:
            return self.initial_parameters()
        params = np.asarray(initial_parameters, dtype=float).copy()
        if params.shape != (self.parameter_count,):
            raise InvalidArgumentError(
                f"Expected {self.parameter_count} initial parameters, got {params.shape}"
            )
        return params

    def _train(
        self,
        x: np.ndarray,
        y: np.ndarray,
        params: np.ndarray,
        result,
        cancel_token: Optional[CancellationToken] = None,
        record: Optional[Callable[[np.ndarray], None]] = None
    ) -> np.ndarray:
        """
        Epoch loop shared by every model.

        Per epoch: loss at the current parameters (recorded, plus ``record``
        for model-specific metrics), convergence check, then one optimizer
        step per batch. Mutates ``result`` and returns the final parameters.
        """
        config = self.config
        optimizer = create_optimizer(
            config.optimizer, config.learning_rate, self.parameter_count, adam=config.adam.model_dump()
        )
        rng = np.random.default_rng(config.seed)

        logger.info(
            f"Starting {self.log_name} training: {len(x)} samples, {self.parameter_count} parameters, "
            f"optimizer={config.optimizer}, lr={config.learning_rate}, max_epochs={config.max_epochs}"
        )

        for epoch in range(config.max_epochs):
            if cancel_token is not None and cancel_token.is_cancelled:
                result.cancelled = True
                logger.warning(f"{self.log_name} training cancelled before epoch {epoch}")
                break

            probabilities = self.forward(x, params)
            loss = self._loss_from_probabilities(probabilities, y)
            result.loss_history.append(loss)
            if record is not None:
                record(probabilities)
            logger.debug(f"Epoch {epoch:3d}: loss={loss:.6f}")

            if len(result.loss_history) >= 2:
                change = abs(result.loss_history[-2] - loss)
                if change < config.convergence_threshold:
                    result.converged = True
                    logger.info(f"{self.log_name} converged at epoch {epoch} (loss change {change:.2e})")
                    break

            if config.batch_size is None:
                batches = [np.arange(len(x))]
            else:
                order = rng.permutation(len(x))
                batches = [order[i:i + config.batch_size] for i in range(0, len(x), config.batch_size)]

            for batch in batches:
                if cancel_token is not None and cancel_token.is_cancelled:
                    result.cancelled = True
                    break
                grad = self.gradient(x[batch], y[batch], params)
                params = optimizer.step(params, grad)

            if result.cancelled:
                logger.warning(f"{self.log_name} training cancelled during epoch {epoch}")
                break
            result.epochs_run += 1

        result.parameters = params
        self.parameters = params
        if not result.converged and not result.cancelled and config.max_epochs > 0:
            logger.warning(f"{self.log_name} did not converge within {config.max_epochs} epochs")
        return params

    def _resolve_params(self, params: Optional[Sequence[float]]) -> np.ndarray:
        if params is not None:
            return np.asarray(params, dtype=float)
        if self.parameters is None:
            raise InvalidArgumentError(
                f"{type(self).__name__} has no trained parameters; call fit() or pass params"
            )
        return self.parameters


# =============================================================================
# Classifier
# =============================================================================

class VariationalClassifier(VariationalModel):
    """
    Binary variational quantum classifier: label = 1 if p >= 0.5.

    Constructor arguments are those of VariationalModel.
    """

    def _loss_from_probabilities(self, probabilities, targets):
        return binary_cross_entropy(probabilities, targets)

    def _loss_derivative(self, probabilities, targets):
        return binary_cross_entropy_derivative(probabilities, targets)

    def _validate_dataset(self, features, labels):
        y = np.asarray(labels, dtype=int)
        x = self._validate_features(features, len(y))
        if not np.isin(y, (0, 1)).all():
            raise InvalidArgumentError("Binary classifier labels must be 0 or 1")
        return x, y

    def fit(
        self,
        features,
        labels,
        initial_parameters: Optional[Sequence[float]] = None,
        cancel_token: Optional[CancellationToken] = None
    ) -> TrainingResult:
        """
        Train on a labeled dataset.

        Args:
            features: Array of shape (samples, num_qubits)
            labels: 0/1 labels
            initial_parameters: Starting θ (default: uniform in [-π, π))
            cancel_token: Cooperative cancellation

        Returns:
            TrainingResult; the trained parameters are also stored on the
            classifier for predict()/evaluate()
        """
        x, y = self._validate_dataset(features, labels)
        params = self._start_parameters(initial_parameters)
        result = TrainingResult(parameters=params)

        def record_accuracy(probabilities):
            result.accuracy_history.append(float(np.mean((probabilities >= 0.5).astype(int) == y)))

        params = self._train(x, y, params, result, cancel_token, record_accuracy)
        if self.config.max_epochs > 0:
            predictions = self.forward(x, params) >= 0.5
            result.train_accuracy = float(np.mean(predictions.astype(int) == y))

        logger.info(
            f"VQC training finished: epochs={result.epochs_run}, final loss={result.final_loss}, "
            f"train accuracy={result.train_accuracy}"
        )
        return result

    # =========================================================================
    # Inference
    # =========================================================================

    def predict(self, features, params: Optional[Sequence[float]] = None) -> List[Prediction]:
        theta = self._resolve_params(params)
        x = np.asarray(features, dtype=float)
        return [
            Prediction(label=int(p >= 0.5), probability=float(p))
            for p in self.forward(x, theta)
        ]

    def evaluate(self, features, labels, params: Optional[Sequence[float]] = None) -> ClassificationReport:
        predictions = self.predict(features, params)
        matrix = ConfusionMatrix.from_labels([int(v) for v in labels], [p.label for p in predictions])
        return ClassificationReport(confusion_matrix=matrix)


# =============================================================================
# Regression
# =============================================================================

@dataclass
class RegressionResult:
    """
    Outcome of VariationalRegressor.fit().

    Attributes:
        parameters: Final trained parameters
        value_range: (low, high) that p in [0, 1] is mapped onto
        loss_history: Mean squared error at the start of each epoch
        converged: Whether the loss change dropped below the threshold
        epochs_run: Number of parameter-update epochs completed
        cancelled: Whether training stopped on a CancellationToken
        train_mse: MSE of the final parameters on the training set
        train_r_squared: R² of the final parameters on the training set
    """
    parameters: np.ndarray
    value_range: Tuple[float, float]
    loss_history: List[float] = field(default_factory=list)
    converged: bool = False
    epochs_run: int = 0
    cancelled: bool = False
    train_mse: Optional[float] = None
    train_r_squared: Optional[float] = None

    @property
    def final_loss(self) -> Optional[float]:
        return self.loss_history[-1] if self.loss_history else None


@dataclass(frozen=True)
class RegressionReport:
    mse: float
    r_squared: float


class VariationalRegressor(VariationalModel):
    """
    Variational regressor: value = low + p·(high - low).

    The value range is taken from the training targets unless fixed at
    construction. Loss is mean squared error; the chain rule gives

        ∂ℓ/∂p = 2·(value - y)·(high - low)

    Args:
        num_qubits: Register width / features per sample
        value_range: Fixed (low, high) output range (default: target min/max)
        **model_kwargs: Passed to VariationalModel
    """

    log_name = "VQC regression"
    target_name = "targets"

    def __init__(self, num_qubits: int, value_range: Optional[Tuple[float, float]] = None, **model_kwargs):
        super().__init__(num_qubits, **model_kwargs)
        if value_range is not None:
            low, high = (float(v) for v in value_range)
            if not (math.isfinite(low) and math.isfinite(high)) or low > high:
                raise InvalidArgumentError(f"value_range must be finite with low <= high, got {value_range}")
            value_range = (low, high)
        self._fixed_range = value_range
        self.value_range: Optional[Tuple[float, float]] = value_range

    def _scale(self, probabilities: np.ndarray) -> np.ndarray:
        low, high = self.value_range
        return low + probabilities * (high - low)

    def _loss_from_probabilities(self, probabilities, targets):
        return mean_squared_error(self._scale(probabilities), targets)

    def _loss_derivative(self, probabilities, targets):
        low, high = self.value_range
        return 2.0 * (self._scale(probabilities) - targets) * (high - low)

    def _validate_dataset(self, features, targets):
        y = np.asarray(targets, dtype=float)
        if y.ndim != 1:
            raise InvalidArgumentError(f"targets must be 1-D, got shape {y.shape}")
        x = self._validate_features(features, len(y))
        if not np.isfinite(y).all():
            raise InvalidArgumentError("Regression targets must be finite")
        return x, y

    def fit(
        self,
        features,
        targets,
        initial_parameters: Optional[Sequence[float]] = None,
        cancel_token: Optional[CancellationToken] = None
    ) -> RegressionResult:
        """Train on continuous targets; stores parameters and value range for predict()."""
        x, y = self._validate_dataset(features, targets)
        if self._fixed_range is None:
            self.value_range = (float(y.min()), float(y.max()))
        params = self._start_parameters(initial_parameters)
        result = RegressionResult(parameters=params, value_range=self.value_range)

        params = self._train(x, y, params, result, cancel_token)
        if self.config.max_epochs > 0:
            predicted = self._scale(self.forward(x, params))
            result.train_mse = mean_squared_error(predicted, y)
            result.train_r_squared = r_squared(y, predicted)

        logger.info(
            f"VQC regression finished: epochs={result.epochs_run}, final MSE={result.final_loss}, "
            f"R²={result.train_r_squared}"
        )
        return result

    def predict(self, features, params: Optional[Sequence[float]] = None) -> np.ndarray:
        theta = self._resolve_params(params)
        if self.value_range is None:
            raise InvalidArgumentError("VariationalRegressor has no value range; call fit() or pass value_range")
        return self._scale(self.forward(np.asarray(features, dtype=float), theta))

    def evaluate(self, features, targets, params: Optional[Sequence[float]] = None) -> RegressionReport:
        y = np.asarray(targets, dtype=float)
        predicted = self.predict(features, params)
        return RegressionReport(mse=mean_squared_error(predicted, y), r_squared=r_squared(y, predicted))


# =============================================================================
# Multi-class
# =============================================================================

@dataclass(frozen=True)
class MultiClassPrediction:
    label: int
    probability: float
    class_probabilities: Dict[int, float]


@dataclass
class MultiClassReport:
    """Accuracy plus a (true x predicted) confusion matrix over sorted labels."""
    labels: List[int]
    confusion_matrix: np.ndarray

    @property
    def accuracy(self) -> float:
        total = self.confusion_matrix.sum()
        return float(np.trace(self.confusion_matrix) / total) if total else 0.0


class OneVsRestClassifier:
    """
    Multi-class classification from one binary VQC per class.

    Class c's classifier learns "is c" vs "is not c"; prediction picks the
    class whose classifier reports the highest probability.

    Args:
        num_qubits: Register width / features per sample
        **classifier_kwargs: Passed to every VariationalClassifier
    """

    def __init__(self, num_qubits: int, **classifier_kwargs):
        self.num_qubits = num_qubits
        self.classifier_kwargs = classifier_kwargs
        self.classifiers: Dict[int, VariationalClassifier] = {}
        self.results: Dict[int, TrainingResult] = {}

    @property
    def classes(self) -> List[int]:
        return sorted(self.classifiers)

    def fit(self, features, labels, cancel_token: Optional[CancellationToken] = None) -> Dict[int, TrainingResult]:
        y = np.asarray(labels, dtype=int)
        classes = sorted(set(y.tolist()))
        if len(classes) < 2:
            raise InvalidArgumentError(f"Need at least two classes, got {classes}")

        for cls in classes:
            if cancel_token is not None and cancel_token.is_cancelled:
                logger.warning(f"One-vs-rest training cancelled before class {cls}")
                break
            clf = VariationalClassifier(self.num_qubits, **self.classifier_kwargs)
            logger.info(f"Training one-vs-rest classifier for class {cls}")
            self.results[cls] = clf.fit(features, (y == cls).astype(int), cancel_token=cancel_token)
            self.classifiers[cls] = clf
        return self.results

    def predict(self, features) -> List[MultiClassPrediction]:
        if not self.classifiers:
            raise InvalidArgumentError("OneVsRestClassifier has not been fitted")
        x = np.asarray(features, dtype=float)
        per_class = {cls: clf.forward(x, clf.parameters) for cls, clf in self.classifiers.items()}

        predictions = []
        for i in range(len(x)):
            scores = {cls: float(probs[i]) for cls, probs in per_class.items()}
            best = max(scores, key=lambda c: (scores[c], -c))
            predictions.append(MultiClassPrediction(label=best, probability=scores[best], class_probabilities=scores))
        return predictions

    def evaluate(self, features, labels) -> MultiClassReport:
        y = [int(v) for v in labels]
        predicted = [p.label for p in self.predict(features)]
        all_labels = sorted(set(y) | set(self.classes))
        position = {label: k for k, label in enumerate(all_labels)}
        matrix = np.zeros((len(all_labels), len(all_labels)), dtype=int)
        for actual, guess in zip(y, predicted):
            matrix[position[actual], position[guess]] += 1
        return MultiClassReport(labels=all_labels, confusion_matrix=matrix)
