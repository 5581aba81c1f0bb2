"""
Abstract base class for all execution backends in quantumcore.

Algorithm layers (Grover, QAOA, variational training) never touch a
statevector directly. They go through this contract, which keeps them
independent of where a circuit actually runs.

The Backend Contract
--------------------
Every backend exposes the same small set of operations over an opaque,
backend-specific *handle* representing one prepared register:

    initialize(qubit_count, seed)   -> handle   (register in |0...0>)
    apply_gate(handle, gate)                    (one gate, in order)
    measure(handle, qubits)         -> MeasurementOutcome (collapsing)
    run_shots(handle, shots, seed)  -> ShotDistribution   (non-destructive)
    probabilities(handle)           -> np.ndarray         (exact, if supported)
    name                            -> str

A handle is owned by exactly one execution. Backends hold configuration
only, so one backend instance can serve several threads as long as each
thread works on its own handle.

Example Usage
-------------
```python
from quantumcore.backends.registry import create_backend
from quantumcore.circuits import gates
from quantumcore.circuits.circuit import Circuit

backend = create_backend()              # kind from settings.simulator.backend
bell = Circuit(2).add(gates.h(0), gates.cnot(0, 1))

handle = backend.execute(bell, seed=7)
counts = backend.run_shots(handle, shots=1000, seed=7)
print(counts.most_common(2))            # [('00', ~500), ('11', ~500)]
```
"""

from abc import ABC, abstractmethod
from typing import Any, Dict, Optional, Sequence
import logging

import numpy as np

from quantumcore.circuits.circuit import Circuit
from quantumcore.circuits.gates import Gate, GateKind
from quantumcore.exceptions import InvalidArgumentError
from quantumcore.simulator.measurement import MeasurementOutcome, ShotDistribution

logger = logging.getLogger(__name__)


class BackendBase(ABC):
    """
    Abstract base class for circuit execution backends.

    Subclasses implement the register-level operations; execute() and
    get_backend_info() are provided on top of them.

    Attributes:
        backend_type (str): 'local', 'pennylane' or 'remote'
        supports_mid_circuit_measurement (bool): Whether measure() is usable
        supports_exact_probabilities (bool): Whether probabilities() is usable
    """

    supports_mid_circuit_measurement = True
    supports_exact_probabilities = True

    def __init__(self, backend_type: str):
        if not backend_type or not isinstance(backend_type, str):
            raise InvalidArgumentError("backend_type must be a non-empty string")
        self.backend_type = backend_type.lower()
        logger.info(f"Initialized {self.backend_type} backend: {self.name}")

    # ========================================================================
    # Abstract Methods - Must be implemented by subclasses
    # ========================================================================

    @property
    @abstractmethod
    def name(self) -> str:
        """Human-readable backend identifier."""
        pass

    @abstractmethod
    def initialize(self, qubit_count: int, seed: Optional[int] = None) -> Any:
        """
        Prepare a fresh register in |0...0>.

        Args:
            qubit_count: Register width
            seed: Seed for the handle's own RNG (used by measure())

        Returns:
            Backend-specific handle

        Raises:
            InvalidArgumentError: If qubit_count < 1
            CapacityExceededError: If the register cannot be simulated
        """
        pass

    @abstractmethod
    def apply_gate(self, handle: Any, gate: Gate) -> None:
        """Apply one gate to the register behind handle."""
        pass

    @abstractmethod
    def measure(self, handle: Any, qubits: Sequence[int]) -> MeasurementOutcome:
        """Measure the given qubits, collapsing the register."""
        pass

    @abstractmethod
    def run_shots(self, handle: Any, shots: int, seed: Optional[int] = None) -> ShotDistribution:
        """Sample the full register shots times without collapsing it."""
        pass

    @abstractmethod
    def probabilities(self, handle: Any) -> np.ndarray:
        """Exact Born-rule probabilities over all basis states."""
        pass

    # ========================================================================
    # Concrete Methods - Provided for all backends
    # ========================================================================

    def execute(self, circuit: Circuit, seed: Optional[int] = None) -> Any:
        """
        Initialize a register and apply every gate of the circuit.

        Args:
            circuit: Circuit to run
            seed: Seed passed through to initialize()

        Returns:
            Handle holding the prepared state
        """
        if not isinstance(circuit, Circuit):
            raise InvalidArgumentError(f"Expected a Circuit, got {type(circuit).__name__}")
        handle = self.initialize(circuit.qubit_count, seed=seed)
        for gate in circuit.gates:
            self.apply_gate(handle, gate)
        logger.debug(
            f"{self.name}: executed {len(circuit)} gates on {circuit.qubit_count} qubits"
        )
        return handle

    def get_backend_info(self) -> Dict[str, Any]:
        """
        Describe the backend's capabilities.

        Returns:
            {
                'backend_type': str,
                'name': str,
                'supported_gates': List[str],
                'capabilities': {
                    'mid_circuit_measurement': bool,
                    'exact_probabilities': bool,
                }
            }
        """
        return {
            'backend_type': self.backend_type,
            'name': self.name,
            'supported_gates': [kind.name for kind in GateKind],
            'capabilities': {
                'mid_circuit_measurement': self.supports_mid_circuit_measurement,
                'exact_probabilities': self.supports_exact_probabilities,
            },
        }

    def close(self) -> None:
        """Release backend resources. Local backends hold none."""
        pass

    def __enter__(self):
        return self

    def __exit__(self, exc_type, exc_val, exc_tb):
        self.close()
        return False

    def __repr__(self) -> str:
        return f"{self.__class__.__name__}(name='{self.name}')"
