"""
Feature maps and variational ansatze for classifiers.

A model circuit is a feature map (encodes one sample's features, no
trainable parameters) composed with an ansatz (trainable rotations):

    model(x, θ) = feature_map(x) + ansatz(θ)

Every trainable parameter appears in exactly one rotation gate, which is
what makes the parameter-shift rule exact.

    ┌──────────────────┬──────────────────────────────────────────────┬──────────────┐
    │ Kind             │ Structure (per repetition)                   │ Parameters   │
    ├──────────────────┼──────────────────────────────────────────────┼──────────────┤
    │ ANGLE            │ RY(xᵢ) on qubit i                            │ -            │
    │ ZZ               │ H, RZ(2xᵢ); CNOT·RZ(2(π-xᵢ)(π-xⱼ))·CNOT       │ -            │
    │ REAL_AMPLITUDES  │ RY layer, CNOT ladder                        │ reps·n       │
    │ EFFICIENT_SU2    │ RY + RZ layer, CNOT ladder                   │ 2·reps·n     │
    └──────────────────┴──────────────────────────────────────────────┴──────────────┘
"""

from enum import Enum
from typing import Sequence
import math

from quantumcore.circuits import gates
from quantumcore.circuits.circuit import Circuit
from quantumcore.exceptions import InvalidArgumentError


class FeatureMapKind(Enum):
    ANGLE = "angle"
    ZZ = "zz"


class AnsatzKind(Enum):
    REAL_AMPLITUDES = "real_amplitudes"
    EFFICIENT_SU2 = "efficient_su2"


# =============================================================================
# Feature maps
# =============================================================================

class FeatureMap:
    """Encodes a feature vector into rotations on one qubit per feature."""

    kind: FeatureMapKind

    def __init__(self, num_qubits: int, reps: int = 1):
        if num_qubits < 1:
            raise InvalidArgumentError(f"num_qubits must be >= 1, got {num_qubits}")
        if reps < 1:
            raise InvalidArgumentError(f"reps must be >= 1, got {reps}")
        self.num_qubits = num_qubits
        self.reps = reps

    def _check(self, features: Sequence[float]) -> None:
        if len(features) != self.num_qubits:
            raise InvalidArgumentError(
                f"{self.kind.value} feature map expects {self.num_qubits} features, got {len(features)}"
            )

    def build(self, features: Sequence[float]) -> Circuit:
        raise NotImplementedError


class AngleFeatureMap(FeatureMap):
    kind = FeatureMapKind.ANGLE

    def build(self, features: Sequence[float]) -> Circuit:
        self._check(features)
        layer = tuple(gates.ry(i, float(x)) for i, x in enumerate(features))
        return Circuit(self.num_qubits, layer * self.reps)


class ZZFeatureMap(FeatureMap):
    """Second-order Pauli-Z evolution over every feature pair."""

    kind = FeatureMapKind.ZZ

    def build(self, features: Sequence[float]) -> Circuit:
        self._check(features)
        n = self.num_qubits
        circuit_gates = []
        for _ in range(self.reps):
            for i, x in enumerate(features):
                circuit_gates.append(gates.h(i))
                circuit_gates.append(gates.rz(i, 2.0 * float(x)))
            for i in range(n):
                for j in range(i + 1, n):
                    angle = 2.0 * (math.pi - float(features[i])) * (math.pi - float(features[j]))
                    circuit_gates.extend((gates.cnot(i, j), gates.rz(j, angle), gates.cnot(i, j)))
        return Circuit(n, tuple(circuit_gates))


# =============================================================================
# Ansatze
# =============================================================================

class Ansatz:
    """Trainable circuit: parameter_count rotations, each used once."""

    kind: AnsatzKind
    rotations_per_qubit = 1

    def __init__(self, num_qubits: int, reps: int = 1):
        if num_qubits < 1:
            raise InvalidArgumentError(f"num_qubits must be >= 1, got {num_qubits}")
        if reps < 1:
            raise InvalidArgumentError(f"reps must be >= 1, got {reps}")
        self.num_qubits = num_qubits
        self.reps = reps

    @property
    def parameter_count(self) -> int:
        return self.reps * self.num_qubits * self.rotations_per_qubit

    def _check(self, params: Sequence[float]) -> None:
        if len(params) != self.parameter_count:
            raise InvalidArgumentError(
                f"{self.kind.value} ansatz expects {self.parameter_count} parameters, got {len(params)}"
            )

    def _entangle(self):
        return tuple(gates.cnot(i, i + 1) for i in range(self.num_qubits - 1))

    def build(self, params: Sequence[float]) -> Circuit:
        raise NotImplementedError


class RealAmplitudes(Ansatz):
    kind = AnsatzKind.REAL_AMPLITUDES

    def build(self, params: Sequence[float]) -> Circuit:
        self._check(params)
        n = self.num_qubits
        circuit_gates = []
        for rep in range(self.reps):
            circuit_gates.extend(gates.ry(q, float(params[rep * n + q])) for q in range(n))
            circuit_gates.extend(self._entangle())
        return Circuit(n, tuple(circuit_gates))


class EfficientSU2(Ansatz):
    kind = AnsatzKind.EFFICIENT_SU2
    rotations_per_qubit = 2

    def build(self, params: Sequence[float]) -> Circuit:
        self._check(params)
        n = self.num_qubits
        circuit_gates = []
        for rep in range(self.reps):
            base = rep * 2 * n
            for q in range(n):
                circuit_gates.append(gates.ry(q, float(params[base + 2 * q])))
                circuit_gates.append(gates.rz(q, float(params[base + 2 * q + 1])))
            circuit_gates.extend(self._entangle())
        return Circuit(n, tuple(circuit_gates))


_FEATURE_MAPS = {
    FeatureMapKind.ANGLE: AngleFeatureMap,
    FeatureMapKind.ZZ: ZZFeatureMap,
}

_ANSATZE = {
    AnsatzKind.REAL_AMPLITUDES: RealAmplitudes,
    AnsatzKind.EFFICIENT_SU2: EfficientSU2,
}


def create_feature_map(kind, num_qubits: int, reps: int = 1) -> FeatureMap:
    """Resolve a FeatureMapKind (or its value) into a feature map."""
    try:
        kind = FeatureMapKind(kind)
    except ValueError:
        raise InvalidArgumentError(f"Unknown feature map: {kind!r}")
    return _FEATURE_MAPS[kind](num_qubits, reps)


def create_ansatz(kind, num_qubits: int, reps: int = 1) -> Ansatz:
    """Resolve an AnsatzKind (or its value) into an ansatz."""
    try:
        kind = AnsatzKind(kind)
    except ValueError:
        raise InvalidArgumentError(f"Unknown ansatz: {kind!r}")
    return _ANSATZE[kind](num_qubits, reps)
