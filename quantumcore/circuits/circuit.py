"""
Immutable circuit description.

A Circuit is a qubit count plus an ordered tuple of gates. Circuits are never
mutated: every builder method returns a new Circuit, and a feature-map
circuit followed by an ansatz circuit is expressed as composition:

    >>> from quantumcore.circuits import gates
    >>> from quantumcore.circuits.circuit import Circuit
    >>> feature_map = Circuit(2).add(gates.ry(0, 0.3), gates.ry(1, 1.1))
    >>> ansatz = Circuit(2).add(gates.ry(0, 0.5), gates.cnot(0, 1))
    >>> model = feature_map + ansatz
    >>> len(model)
    4
"""

from dataclasses import dataclass, field
from typing import Iterable, Iterator, Sequence, Tuple

import numpy as np

from quantumcore.circuits.gates import Gate, h
from quantumcore.exceptions import InvalidArgumentError, InvalidQubitIndexError


@dataclass(frozen=True)
class Circuit:
    """
    Immutable quantum circuit.

    Attributes:
        qubit_count: Number of qubits in the register (>= 1)
        gates: Ordered gates; every index is validated against qubit_count

    Raises:
        InvalidArgumentError: If qubit_count < 1 or a gate is not a Gate
        InvalidQubitIndexError: If a gate references a qubit >= qubit_count
    """
    qubit_count: int
    gates: Tuple[Gate, ...] = field(default_factory=tuple)

    def __post_init__(self):
        if isinstance(self.qubit_count, bool) or not isinstance(self.qubit_count, (int, np.integer)):
            raise InvalidArgumentError(f"qubit_count must be an int, got {self.qubit_count!r}")
        if self.qubit_count < 1:
            raise InvalidArgumentError(f"qubit_count must be >= 1, got {self.qubit_count}")
        object.__setattr__(self, "qubit_count", int(self.qubit_count))

        gate_tuple = tuple(self.gates)
        for gate in gate_tuple:
            if not isinstance(gate, Gate):
                raise InvalidArgumentError(f"Circuit gates must be Gate instances, got {gate!r}")
            if gate.max_qubit >= self.qubit_count:
                raise InvalidQubitIndexError(gate.max_qubit, self.qubit_count)
        object.__setattr__(self, "gates", gate_tuple)

    # =========================================================================
    # Composition
    # =========================================================================

    def add(self, *new_gates: Gate) -> "Circuit":
        """Return a new circuit with the gates appended."""
        return Circuit(self.qubit_count, self.gates + tuple(new_gates))

    def extend(self, new_gates: Iterable[Gate]) -> "Circuit":
        return Circuit(self.qubit_count, self.gates + tuple(new_gates))

    def compose(self, other: "Circuit") -> "Circuit":
        """
        Append another circuit acting on the same register.

        Raises:
            InvalidArgumentError: If the qubit counts differ
        """
        if not isinstance(other, Circuit):
            raise InvalidArgumentError(f"Can only compose with a Circuit, got {type(other).__name__}")
        if other.qubit_count != self.qubit_count:
            raise InvalidArgumentError(
                f"Cannot compose circuits on {self.qubit_count} and {other.qubit_count} qubits"
            )
        return Circuit(self.qubit_count, self.gates + other.gates)

    def __add__(self, other: "Circuit") -> "Circuit":
        return self.compose(other)

    def __len__(self) -> int:
        return len(self.gates)

    def __iter__(self) -> Iterator[Gate]:
        return iter(self.gates)

    # =========================================================================
    # Introspection
    # =========================================================================

    @property
    def parameter_count(self) -> int:
        """Number of rotation gates (angle-carrying gates) in the circuit."""
        return sum(1 for gate in self.gates if gate.is_parameterized)

    def count_ops(self) -> dict:
        counts = {}
        for gate in self.gates:
            counts[gate.kind.name] = counts.get(gate.kind.name, 0) + 1
        return counts

    def depth(self) -> int:
        """
        Circuit depth: the longest chain of gates sharing qubits.

        Each gate is placed one layer after the deepest layer of any qubit it
        touches.
        """
        layer_of_qubit = [0] * self.qubit_count
        for gate in self.gates:
            layer = max(layer_of_qubit[q] for q in gate.qubits) + 1
            for q in gate.qubits:
                layer_of_qubit[q] = layer
        return max(layer_of_qubit) if self.gates else 0

    def __str__(self) -> str:
        body = "; ".join(str(gate) for gate in self.gates)
        return f"Circuit(qubits={self.qubit_count}, gates=[{body}])"


# =============================================================================
# Common sub-circuits
# =============================================================================

def hadamard_layer(qubit_count: int, qubits: Sequence[int] = None) -> Circuit:
    """Hadamard on every qubit (or the given subset): uniform superposition from |0...0>."""
    targets = range(qubit_count) if qubits is None else qubits
    return Circuit(qubit_count, tuple(h(q) for q in targets))
