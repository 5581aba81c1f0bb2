"""
Gate model for quantumcore circuits.

A Gate is an immutable record tagged by GateKind. Each kind carries only the
qubit indices and the numeric parameter it needs:

    ┌────────────┬───────────────────────────┬───────────┐
    │ Kind       │ Qubits                    │ Angle     │
    ├────────────┼───────────────────────────┼───────────┤
    │ H X Y Z    │ (target,)                 │ -         │
    │ RX RY RZ   │ (target,)                 │ radians   │
    │ CNOT CZ    │ (control, target)         │ -         │
    │ SWAP       │ (a, b)                    │ -         │
    │ CCX        │ (control1, control2, tgt) │ -         │
    │ MCZ        │ (q0, ..., qk)             │ -         │
    └────────────┴───────────────────────────┴───────────┘

MCZ flips the phase of basis states where every listed qubit is |1>. It is
symmetric in its qubits, so the last one is called the target only for
readability. Grover oracles and the diffusion operator are built from it.

Gates are validated structurally on construction (arity, distinct qubits,
finite angles). Range checks against a register size happen when a gate is
placed into a Circuit or applied to a statevector.
"""

from dataclasses import dataclass
from enum import Enum
from typing import Optional, Tuple
import math

import numpy as np

from quantumcore.exceptions import InvalidArgumentError


class GateKind(Enum):
    """Closed set of supported gate variants."""
    H = "h"
    X = "x"
    Y = "y"
    Z = "z"
    RX = "rx"
    RY = "ry"
    RZ = "rz"
    CNOT = "cnot"
    CZ = "cz"
    SWAP = "swap"
    CCX = "ccx"
    MCZ = "mcz"


# Number of qubits each kind acts on (None = variable, at least one)
GATE_ARITY = {
    GateKind.H: 1,
    GateKind.X: 1,
    GateKind.Y: 1,
    GateKind.Z: 1,
    GateKind.RX: 1,
    GateKind.RY: 1,
    GateKind.RZ: 1,
    GateKind.CNOT: 2,
    GateKind.CZ: 2,
    GateKind.SWAP: 2,
    GateKind.CCX: 3,
    GateKind.MCZ: None,
}

ROTATION_KINDS = frozenset({GateKind.RX, GateKind.RY, GateKind.RZ})


@dataclass(frozen=True)
class Gate:
    """
    Immutable gate record.

    Prefer the module-level constructors (h, rx, cnot, ...) over building
    Gate directly.

    Attributes:
        kind: Gate variant
        qubits: Qubit indices in variant order (controls first, target last)
        angle: Rotation angle in radians for RX/RY/RZ, None otherwise
    """
    kind: GateKind
    qubits: Tuple[int, ...]
    angle: Optional[float] = None

    def __post_init__(self):
        if not isinstance(self.kind, GateKind):
            raise InvalidArgumentError(f"Unknown gate kind: {self.kind!r}")

        qubits = tuple(self.qubits)
        object.__setattr__(self, "qubits", qubits)

        arity = GATE_ARITY[self.kind]
        if arity is None:
            if len(qubits) < 1:
                raise InvalidArgumentError(f"{self.kind.name} needs at least one qubit")
        elif len(qubits) != arity:
            raise InvalidArgumentError(
                f"{self.kind.name} acts on {arity} qubit(s), got {len(qubits)}: {qubits}"
            )

        for q in qubits:
            if isinstance(q, bool) or not isinstance(q, (int, np.integer)):
                raise InvalidArgumentError(f"Qubit index must be an int, got {q!r}")
            if q < 0:
                raise InvalidArgumentError(f"Qubit index must be non-negative, got {q}")
        qubits = tuple(int(q) for q in qubits)
        object.__setattr__(self, "qubits", qubits)

        if len(set(qubits)) != len(qubits):
            raise InvalidArgumentError(
                f"{self.kind.name} requires distinct qubits, got {qubits}"
            )

        if self.kind in ROTATION_KINDS:
            if self.angle is None:
                raise InvalidArgumentError(f"{self.kind.name} requires an angle")
            angle = float(self.angle)
            if not math.isfinite(angle):
                raise InvalidArgumentError(f"{self.kind.name} angle must be finite, got {self.angle}")
            object.__setattr__(self, "angle", angle)
        elif self.angle is not None:
            raise InvalidArgumentError(f"{self.kind.name} takes no angle")

    @property
    def is_parameterized(self) -> bool:
        return self.kind in ROTATION_KINDS

    @property
    def max_qubit(self) -> int:
        return max(self.qubits)

    def with_angle(self, angle: float) -> "Gate":
        """Return a copy of a rotation gate with a different angle."""
        if not self.is_parameterized:
            raise InvalidArgumentError(f"{self.kind.name} has no angle to replace")
        return Gate(self.kind, self.qubits, angle)

    def __str__(self) -> str:
        qubits = ", ".join(str(q) for q in self.qubits)
        if self.angle is not None:
            return f"{self.kind.name}({qubits}; {self.angle:.6f})"
        return f"{self.kind.name}({qubits})"


# =============================================================================
# Constructors
# =============================================================================

def h(qubit: int) -> Gate:
    return Gate(GateKind.H, (qubit,))


def x(qubit: int) -> Gate:
    return Gate(GateKind.X, (qubit,))


def y(qubit: int) -> Gate:
    return Gate(GateKind.Y, (qubit,))


def z(qubit: int) -> Gate:
    return Gate(GateKind.Z, (qubit,))


def rx(qubit: int, angle: float) -> Gate:
    return Gate(GateKind.RX, (qubit,), angle)


def ry(qubit: int, angle: float) -> Gate:
    return Gate(GateKind.RY, (qubit,), angle)


def rz(qubit: int, angle: float) -> Gate:
    return Gate(GateKind.RZ, (qubit,), angle)


def cnot(control: int, target: int) -> Gate:
    return Gate(GateKind.CNOT, (control, target))


def cz(control: int, target: int) -> Gate:
    return Gate(GateKind.CZ, (control, target))


def swap(a: int, b: int) -> Gate:
    return Gate(GateKind.SWAP, (a, b))


def ccx(control1: int, control2: int, target: int) -> Gate:
    return Gate(GateKind.CCX, (control1, control2, target))


def mcz(*qubits: int) -> Gate:
    """Multi-controlled Z: phase -1 on states where all given qubits are |1>."""
    return Gate(GateKind.MCZ, tuple(qubits))
