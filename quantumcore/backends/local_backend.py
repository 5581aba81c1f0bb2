"""
Local backend on top of the numpy statevector engine.
"""

from dataclasses import dataclass
from typing import Optional, Sequence
import logging

import numpy as np

from quantumcore.backends.backend_base import BackendBase
from quantumcore.circuits.gates import Gate
from quantumcore.simulator.measurement import MeasurementOutcome, ShotDistribution
from quantumcore.simulator.statevector import Statevector, StatevectorEngine

logger = logging.getLogger(__name__)


@dataclass
class LocalHandle:
    """Register prepared by LocalBackend: the statevector and its RNG."""
    state: Statevector
    rng: np.random.Generator

    @property
    def num_qubits(self) -> int:
        return self.state.num_qubits


class LocalBackend(BackendBase):
    """
    Executes circuits in-process with StatevectorEngine.

    Args:
        engine: Engine to use (default: StatevectorEngine() from settings)

    Example:
        >>> backend = LocalBackend()
        >>> handle = backend.initialize(1, seed=3)
        >>> backend.apply_gate(handle, gates.h(0))
        >>> backend.probabilities(handle)
        array([0.5, 0.5])
    """

    def __init__(self, engine: Optional[StatevectorEngine] = None):
        self.engine = engine or StatevectorEngine()
        super().__init__(backend_type='local')

    @property
    def name(self) -> str:
        return "local-statevector"

    def initialize(self, qubit_count: int, seed: Optional[int] = None) -> LocalHandle:
        state = self.engine.initialize(qubit_count)
        return LocalHandle(state=state, rng=np.random.default_rng(seed))

    def apply_gate(self, handle: LocalHandle, gate: Gate) -> None:
        self.engine.apply_gate(gate, handle.state)

    def measure(self, handle: LocalHandle, qubits: Sequence[int]) -> MeasurementOutcome:
        outcome, _ = self.engine.measure_and_collapse(qubits, handle.state, handle.rng)
        return outcome

    def run_shots(self, handle: LocalHandle, shots: int, seed: Optional[int] = None) -> ShotDistribution:
        return self.engine.sample_shots(handle.state, shots, seed=seed)

    def probabilities(self, handle: LocalHandle) -> np.ndarray:
        return self.engine.probabilities(handle.state)

    def expectation_z(self, handle: LocalHandle, qubit: int) -> float:
        return self.engine.expectation_z(handle.state, qubit)

    def get_backend_info(self):
        info = super().get_backend_info()
        info['max_qubits'] = self.engine.max_qubits
        info['sampling_workers'] = self.engine.sampling_workers
        return info
