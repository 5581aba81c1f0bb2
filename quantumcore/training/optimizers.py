"""
Gradient-descent update rules for variational training.

Optimizers are small stateful objects created once per training run:

    optimizer = create_optimizer(config, num_params)
    params = optimizer.step(params, gradient)
"""

from typing import Optional
import logging

import numpy as np

from quantumcore.exceptions import InvalidArgumentError

logger = logging.getLogger(__name__)


class SGDOptimizer:
    """θ ← θ - η·g"""

    name = "sgd"

    def __init__(self, learning_rate: float):
        if learning_rate <= 0:
            raise InvalidArgumentError(f"learning_rate must be positive, got {learning_rate}")
        self.learning_rate = learning_rate

    def step(self, params: np.ndarray, gradient: np.ndarray) -> np.ndarray:
        return params - self.learning_rate * gradient


class AdamOptimizer:
    """
    Adam (Kingma & Ba, 2015) with bias-corrected moment estimates.

        m ← β₁·m + (1-β₁)·g
        v ← β₂·v + (1-β₂)·g²
        θ ← θ - η · m̂ / (√v̂ + ε),   m̂ = m/(1-β₁ᵗ), v̂ = v/(1-β₂ᵗ)
    """

    name = "adam"

    def __init__(
        self,
        learning_rate: float,
        num_params: int,
        beta1: float = 0.9,
        beta2: float = 0.999,
        epsilon: float = 1e-8
    ):
        if learning_rate <= 0:
            raise InvalidArgumentError(f"learning_rate must be positive, got {learning_rate}")
        if not (0.0 <= beta1 < 1.0 and 0.0 <= beta2 < 1.0):
            raise InvalidArgumentError(f"Adam betas must be in [0, 1), got ({beta1}, {beta2})")
        self.learning_rate = learning_rate
        self.beta1 = beta1
        self.beta2 = beta2
        self.epsilon = epsilon
        self.m = np.zeros(num_params)
        self.v = np.zeros(num_params)
        self.t = 0

    def step(self, params: np.ndarray, gradient: np.ndarray) -> np.ndarray:
        if gradient.shape != self.m.shape:
            raise InvalidArgumentError(
                f"Gradient of shape {gradient.shape} does not match optimizer state {self.m.shape}"
            )
        self.t += 1
        self.m = self.beta1 * self.m + (1.0 - self.beta1) * gradient
        self.v = self.beta2 * self.v + (1.0 - self.beta2) * gradient ** 2
        m_hat = self.m / (1.0 - self.beta1 ** self.t)
        v_hat = self.v / (1.0 - self.beta2 ** self.t)
        return params - self.learning_rate * m_hat / (np.sqrt(v_hat) + self.epsilon)


def create_optimizer(name: str, learning_rate: float, num_params: int, adam: Optional[dict] = None):
    """Build the optimizer named in a TrainingConfig."""
    if name == "sgd":
        return SGDOptimizer(learning_rate)
    if name == "adam":
        return AdamOptimizer(learning_rate, num_params, **(adam or {}))
    raise InvalidArgumentError(f"Unknown optimizer '{name}'. Valid: ['sgd', 'adam']")
