"""
PennyLane Backend for quantumcore.

Runs quantumcore circuits on a PennyLane statevector device
(default.qubit). Gates applied to a handle are recorded and replayed inside a
QNode that returns qml.state(), so the device is used exactly as a
PennyLane user would use it and results can be cross-checked against the
local numpy engine.

Wire Ordering
-------------
PennyLane treats wire 0 as the most significant bit of a basis index;
quantumcore treats qubit 0 as the least significant. Qubit q is therefore
placed on wire (n - 1 - q), which makes the two statevectors identical
element for element without any reordering.

Measurement
-----------
A collapsing measurement needs the post-measurement state to continue the
circuit. The backend computes the collapsed amplitudes classically and
re-prepares them on the next replay with qml.StatePrep, after which only
the gates applied since the measurement are replayed.
"""

from dataclasses import dataclass, field
from typing import Dict, List, Optional, Sequence
import logging
import threading

import numpy as np

from quantumcore.backends.backend_base import BackendBase
from quantumcore.circuits.gates import Gate, GateKind
from quantumcore.exceptions import BackendUnavailableError, InvalidQubitIndexError
from quantumcore.simulator.measurement import MeasurementOutcome, ShotDistribution
from quantumcore.simulator.statevector import Statevector, StatevectorEngine

# Pennylane imports
try:
    import pennylane as qml
    PENNYLANE_AVAILABLE = True
except ImportError:
    PENNYLANE_AVAILABLE = False
    logging.warning(
        "Pennylane not installed. PennyLaneBackend will not be available. "
        "Install with: pip install pennylane"
    )

logger = logging.getLogger(__name__)


@dataclass
class PennyLaneHandle:
    """Recorded program for one register on the PennyLane device."""
    num_qubits: int
    rng: np.random.Generator
    operations: List[Gate] = field(default_factory=list)
    initial_state: Optional[np.ndarray] = None
    _cached_state: Optional[np.ndarray] = None


class PennyLaneBackend(BackendBase):
    """
    Backend that executes on a PennyLane device.

    Args:
        device_name: PennyLane device string (default: 'default.qubit')
        engine: Engine used for capacity checks and classical collapse
        device_kwargs: Extra keyword arguments forwarded to qml.device()

    Raises:
        BackendUnavailableError: If PennyLane is not installed
    """

    def __init__(
        self,
        device_name: str = 'default.qubit',
        engine: Optional[StatevectorEngine] = None,
        **device_kwargs
    ):
        if not PENNYLANE_AVAILABLE:
            raise BackendUnavailableError(
                "Pennylane is required for PennyLaneBackend. Install with: pip install pennylane"
            )
        self.device_name = device_name
        self.device_kwargs = device_kwargs
        self.engine = engine or StatevectorEngine()
        self._devices: Dict[int, object] = {}
        self._device_lock = threading.Lock()
        super().__init__(backend_type='pennylane')

    @property
    def name(self) -> str:
        return f"pennylane:{self.device_name}"

    def _get_device(self, num_qubits: int):
        """Create (or reuse) a device with the requested number of wires."""
        with self._device_lock:
            device = self._devices.get(num_qubits)
            if device is None:
                logger.debug(f"Creating Pennylane device: {self.device_name} with {num_qubits} wires")
                device = qml.device(self.device_name, wires=num_qubits, **self.device_kwargs)
                self._devices[num_qubits] = device
            return device

    # ========================================================================
    # Register operations
    # ========================================================================

    def initialize(self, qubit_count: int, seed: Optional[int] = None) -> PennyLaneHandle:
        self.engine.check_capacity(qubit_count)
        return PennyLaneHandle(num_qubits=int(qubit_count), rng=np.random.default_rng(seed))

    def apply_gate(self, handle: PennyLaneHandle, gate: Gate) -> None:
        for q in gate.qubits:
            if q >= handle.num_qubits:
                raise InvalidQubitIndexError(q, handle.num_qubits)
        handle.operations.append(gate)
        handle._cached_state = None

    def measure(self, handle: PennyLaneHandle, qubits: Sequence[int]) -> MeasurementOutcome:
        state = Statevector(handle.num_qubits, self._state(handle).copy())
        outcome, collapsed = self.engine.measure_and_collapse(qubits, state, handle.rng)
        handle.initial_state = collapsed.amplitudes
        handle.operations = []
        handle._cached_state = collapsed.amplitudes
        return outcome

    def run_shots(self, handle: PennyLaneHandle, shots: int, seed: Optional[int] = None) -> ShotDistribution:
        state = Statevector(handle.num_qubits, self._state(handle))
        return self.engine.sample_shots(state, shots, seed=seed)

    def probabilities(self, handle: PennyLaneHandle) -> np.ndarray:
        amps = self._state(handle)
        return amps.real ** 2 + amps.imag ** 2

    def get_backend_info(self):
        info = super().get_backend_info()
        info['device'] = self.device_name
        info['pennylane_version'] = qml.__version__
        return info

    # ========================================================================
    # Replay
    # ========================================================================

    def _state(self, handle: PennyLaneHandle) -> np.ndarray:
        if handle._cached_state is None:
            handle._cached_state = self._replay(handle)
        return handle._cached_state

    def _replay(self, handle: PennyLaneHandle) -> np.ndarray:
        n = handle.num_qubits
        device = self._get_device(n)
        operations = list(handle.operations)
        initial_state = handle.initial_state

        @qml.qnode(device)
        def program():
            if initial_state is not None:
                qml.StatePrep(initial_state, wires=range(n))
            for gate in operations:
                _apply_operation(gate, n)
            return qml.state()

        state = np.asarray(program(), dtype=np.complex128)
        logger.debug(f"{self.name}: replayed {len(operations)} gates on {n} wires")
        return state


def _apply_operation(gate: Gate, num_qubits: int) -> None:
    """Queue the PennyLane operation equivalent to a quantumcore gate."""
    wires = [num_qubits - 1 - q for q in gate.qubits]
    kind = gate.kind

    if kind == GateKind.H:
        qml.Hadamard(wires=wires[0])
    elif kind == GateKind.X:
        qml.PauliX(wires=wires[0])
    elif kind == GateKind.Y:
        qml.PauliY(wires=wires[0])
    elif kind == GateKind.Z:
        qml.PauliZ(wires=wires[0])
    elif kind == GateKind.RX:
        qml.RX(gate.angle, wires=wires[0])
    elif kind == GateKind.RY:
        qml.RY(gate.angle, wires=wires[0])
    elif kind == GateKind.RZ:
        qml.RZ(gate.angle, wires=wires[0])
    elif kind == GateKind.CNOT:
        qml.CNOT(wires=wires)
    elif kind == GateKind.CZ:
        qml.CZ(wires=wires)
    elif kind == GateKind.SWAP:
        qml.SWAP(wires=wires)
    elif kind == GateKind.CCX:
        qml.Toffoli(wires=wires)
    elif kind == GateKind.MCZ:
        if len(wires) == 1:
            qml.PauliZ(wires=wires[0])
        else:
            qml.ctrl(qml.PauliZ, control=wires[:-1])(wires=wires[-1])
    else:
        raise BackendUnavailableError(f"Gate {kind.name} has no PennyLane mapping")
