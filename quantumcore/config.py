"""
Configuration Management for quantumcore.

This module provides a type-safe, validated configuration system using Pydantic.
Configuration values are loaded from environment variables or .env file with
defaults suitable for local simulation.

Usage:
    >>> from quantumcore.config import settings
    >>> print(settings.simulator.max_qubits)
    >>> print(settings.qaoa.optimizer)
    >>> print(settings.training.learning_rate)
"""

import logging
from typing import Literal, Optional

from pydantic import Field, computed_field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


# =============================================================================
# Simulator Configuration
# =============================================================================

class SimulatorConfig(BaseSettings):
    """
    Statevector simulator and backend configuration.

    Controls the default backend, the dense-simulation capacity limit and the
    numerical invariants checked after every gate application.

    Environment Variables:
        QCORE_SIM_BACKEND: Default backend kind (local, pennylane)
        QCORE_SIM_MAX_QUBITS: Hard qubit limit for dense simulation (default: 24)
        QCORE_SIM_NORMALIZATION_TOLERANCE: Allowed norm drift (default: 1e-6)
        QCORE_SIM_DEFAULT_SHOTS: Shots when the caller gives none (default: 1024)

    Example:
        >>> sim_config = SimulatorConfig()
        >>> print(sim_config.max_qubits)  # 24
        >>> print(sim_config.max_statevector_mb)  # 256.0
    """

    # Backend used when callers do not pass one explicitly
    backend: Literal["local", "pennylane"] = Field(
        default="local",
        description="Default execution backend: local (numpy engine) or pennylane (default.qubit)"
    )

    # Dense statevector of n qubits needs 16 * 2^n bytes
    max_qubits: int = Field(
        default=24,
        ge=1,
        le=34,
        description="Maximum qubits for dense double-precision simulation"
    )

    # Norm drift beyond this signals a simulator defect
    normalization_tolerance: float = Field(
        default=1e-6,
        gt=0.0,
        le=1e-2,
        description="Maximum |sum |amp|^2 - 1| tolerated after a gate"
    )

    check_normalization: bool = Field(
        default=True,
        description="Verify the norm invariant after every gate application"
    )

    default_shots: int = Field(
        default=1024,
        ge=1,
        le=10_000_000,
        description="Number of shots used when the caller does not specify one"
    )

    # Thread count for splitting shot sampling into independent chunks
    sampling_workers: int = Field(
        default=1,
        ge=1,
        le=64,
        description="Worker threads used to sample independent shot chunks"
    )

    # Fraction of currently available memory a statevector may claim
    memory_safety_fraction: float = Field(
        default=0.5,
        gt=0.0,
        le=1.0,
        description="Fraction of available RAM a single statevector may use"
    )

    @computed_field
    @property
    def max_statevector_mb(self) -> float:
        """Memory footprint of the largest allowed statevector in megabytes."""
        return (16 * 2 ** self.max_qubits) / (1024 * 1024)

    model_config = SettingsConfigDict(
        env_prefix="QCORE_SIM_",
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore"
    )


# =============================================================================
# Grover Configuration
# =============================================================================

class GroverConfig(BaseSettings):
    """
    Grover search driver defaults.

    Environment Variables:
        QCORE_GROVER_SHOTS: Measurement shots after amplification (default: 1024)
        QCORE_GROVER_TOP_K: Scored candidates returned to the caller (default: 5)
    """

    shots: int = Field(
        default=1024,
        ge=1,
        description="Measurement shots taken after the Grover iterations"
    )

    top_k: int = Field(
        default=5,
        ge=1,
        description="Number of scored candidates reported in a GroverResult"
    )

    model_config = SettingsConfigDict(
        env_prefix="QCORE_GROVER_",
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore"
    )


# =============================================================================
# QAOA Configuration
# =============================================================================

class QaoaConfig(BaseSettings):
    """
    QAOA solver defaults.

    The classical angle optimizer is scipy's COBYLA by default. It is
    derivative-free, so each iteration costs one circuit evaluation, and it
    behaves well on the periodic, noisy landscapes QAOA produces.

    Environment Variables:
        QCORE_QAOA_LAYERS: Number of QAOA layers p (default: 1)
        QCORE_QAOA_SHOTS: Decoding shots (default: 1000)
        QCORE_QAOA_OPTIMIZER: scipy.optimize.minimize method (default: COBYLA)
        QCORE_QAOA_MAX_ITERATIONS: Optimizer iteration budget (default: 100)
        QCORE_QAOA_TOLERANCE: Optimizer stopping tolerance (default: 1e-4)
        QCORE_QAOA_NUM_STARTS: Independent multi-start trials (default: 1)
        QCORE_QAOA_INIT_STRATEGY: How starting angles are chosen (default: standard)
        QCORE_QAOA_STRATEGY: How trials are organised (default: multi_start)
    """

    layers: int = Field(default=1, ge=1, le=20, description="QAOA depth p")

    shots: int = Field(default=1000, ge=1, description="Shots used to decode the final state")

    optimizer: Literal["COBYLA", "Nelder-Mead", "Powell"] = Field(
        default="COBYLA",
        description="Derivative-free scipy method for the (gamma, beta) outer loop"
    )

    max_iterations: int = Field(default=100, ge=1, description="Optimizer iteration budget")

    tolerance: float = Field(default=1e-4, gt=0.0, description="Optimizer stopping tolerance")

    num_starts: int = Field(default=1, ge=1, le=64, description="Independent random starts")

    init_strategy: Literal["random_uniform", "standard", "ramp", "previous_optimal"] = Field(
        default="standard",
        description="Initial angle scheme: uniform [0, pi], gamma [0, pi/2] / beta [0, pi/4], "
                    "deterministic layer ramp, or warm start from given angles"
    )

    strategy: Literal["single_run", "multi_start", "layer_by_layer", "adaptive"] = Field(
        default="multi_start",
        description="Trial organisation for the outer loop"
    )

    max_workers: Optional[int] = Field(
        default=None,
        ge=1,
        description="Thread pool size for multi-start trials (None = executor default)"
    )

    model_config = SettingsConfigDict(
        env_prefix="QCORE_QAOA_",
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore"
    )


# =============================================================================
# Training Configuration
# =============================================================================

class TrainingDefaults(BaseSettings):
    """
    Defaults for variational classifier training.

    These seed quantumcore.training.vqc.TrainingConfig when a caller builds a
    config without explicit values.

    Environment Variables:
        QCORE_TRAINING_LEARNING_RATE (default: 0.1)
        QCORE_TRAINING_MAX_EPOCHS (default: 50)
        QCORE_TRAINING_CONVERGENCE_THRESHOLD (default: 1e-4)
        QCORE_TRAINING_MAX_WORKERS (default: None)
    """

    learning_rate: float = Field(default=0.1, gt=0.0, le=10.0)

    max_epochs: int = Field(default=50, ge=0)

    convergence_threshold: float = Field(default=1e-4, ge=0.0)

    max_workers: Optional[int] = Field(
        default=None,
        ge=1,
        description="Thread pool size for parameter-shift evaluations"
    )

    model_config = SettingsConfigDict(
        env_prefix="QCORE_TRAINING_",
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore"
    )


# =============================================================================
# Logging Configuration
# =============================================================================

class LoggingConfig(BaseSettings):
    """
    Logging configuration applied by configure_logging().

    Environment Variables:
        QCORE_LOG_LEVEL: DEBUG, INFO, WARNING, ERROR, CRITICAL (default: INFO)
        QCORE_LOG_FORMAT: logging format string
    """

    level: Literal["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"] = Field(
        default="INFO",
        description="Logging level"
    )

    format: str = Field(
        default="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
        description="Log record format"
    )

    @field_validator("level", mode="before")
    @classmethod
    def normalize_level(cls, v):
        """Accept lower-case level names from the environment."""
        if isinstance(v, str):
            return v.upper()
        return v

    model_config = SettingsConfigDict(
        env_prefix="QCORE_LOG_",
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore"
    )


# =============================================================================
# Global Settings Container
# =============================================================================

class Settings(BaseSettings):
    """
    Global settings container.

    Aggregates all configuration sections into a single settings object
    for convenient access throughout the package.

    Usage:
        >>> from quantumcore.config import settings
        >>> shots = settings.grover.shots
        >>> optimizer = settings.qaoa.optimizer
    """

    simulator: SimulatorConfig = Field(default_factory=SimulatorConfig)

    grover: GroverConfig = Field(default_factory=GroverConfig)

    qaoa: QaoaConfig = Field(default_factory=QaoaConfig)

    training: TrainingDefaults = Field(default_factory=TrainingDefaults)

    logging: LoggingConfig = Field(default_factory=LoggingConfig)

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore"
    )


def configure_logging(config: Optional[LoggingConfig] = None) -> None:
    """
    Configure root logging from LoggingConfig.

    Library modules only create module loggers; the host application (or a
    test session) calls this once to decide where records go.

    Args:
        config: Logging section to apply (default: settings.logging)
    """
    config = config or settings.logging
    logging.basicConfig(
        level=getattr(logging, config.level),
        format=config.format
    )


# =============================================================================
# Global Configuration Instance
# =============================================================================

# Singleton settings instance - import this throughout the package
settings = Settings()
