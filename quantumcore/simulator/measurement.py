"""
Measurement result records.

Bitstring convention
--------------------
Qubit q is bit q of a basis-state index (little-endian). A full-register
bitstring is written most-significant qubit first, so for three qubits the
index 6 (qubits 1 and 2 set) is "110" and qubit 0 is the LAST character:

    bitstring[num_qubits - 1 - q]  ->  value of qubit q

This matches format(index, "0{n}b") and the convention used by most
gate-model toolkits.
"""

from dataclasses import dataclass, field
from typing import Dict, List, Sequence, Tuple

import numpy as np

from quantumcore.exceptions import InvalidArgumentError, InvalidQubitIndexError


def index_to_bitstring(index: int, num_qubits: int) -> str:
    return format(int(index), f"0{num_qubits}b")


def bitstring_to_bits(bitstring: str) -> List[int]:
    """Bitstring to a per-qubit list [x_0, x_1, ..., x_{n-1}] (qubit order)."""
    return [int(ch) for ch in reversed(bitstring)]


def bits_to_bitstring(bits: Sequence[int]) -> str:
    """Per-qubit list [x_0, ..., x_{n-1}] to a bitstring (qubit n-1 first)."""
    return "".join(str(int(b)) for b in reversed(list(bits)))


@dataclass(frozen=True)
class MeasurementOutcome:
    """
    Result of measuring a subset of qubits.

    Attributes:
        qubits: Measured qubits in the order they were requested
        bits: Observed value for each measured qubit (same order as qubits)
        probability: Born-rule probability of this outcome before collapse
    """
    qubits: Tuple[int, ...]
    bits: Tuple[int, ...]
    probability: float

    @property
    def bitstring(self) -> str:
        """Outcome bits in request order (qubits[0] first)."""
        return "".join(str(b) for b in self.bits)

    def value_of(self, qubit: int) -> int:
        return self.bits[self.qubits.index(qubit)]


@dataclass(frozen=True)
class ShotDistribution:
    """
    Observed counts over repeated samples of one prepared state.

    Attributes:
        num_qubits: Register width; every key has this many characters
        shots: Total number of samples
        counts: bitstring -> number of times observed (zero counts omitted)
    """
    num_qubits: int
    shots: int
    counts: Dict[str, int] = field(default_factory=dict)

    @classmethod
    def from_index_counts(cls, index_counts: np.ndarray, num_qubits: int) -> "ShotDistribution":
        """Build from a dense count array indexed by basis state."""
        nonzero = np.flatnonzero(index_counts)
        counts = {
            index_to_bitstring(i, num_qubits): int(index_counts[i])
            for i in nonzero
        }
        return cls(num_qubits=num_qubits, shots=int(np.sum(index_counts)), counts=counts)

    def probability(self, bitstring: str) -> float:
        """Empirical frequency of a bitstring."""
        if self.shots == 0:
            return 0.0
        return self.counts.get(bitstring, 0) / self.shots

    def frequencies(self) -> Dict[str, float]:
        return {b: c / self.shots for b, c in self.counts.items()}

    def most_common(self, k: int = None) -> List[Tuple[str, int]]:
        """Bitstrings sorted by descending count (ties broken by bitstring)."""
        ordered = sorted(self.counts.items(), key=lambda item: (-item[1], item[0]))
        return ordered if k is None else ordered[:k]

    def marginal_probability(self, qubit: int) -> float:
        """Fraction of shots in which the given qubit was measured as |1>."""
        if not 0 <= qubit < self.num_qubits:
            raise InvalidQubitIndexError(qubit, self.num_qubits)
        if self.shots == 0:
            return 0.0
        position = self.num_qubits - 1 - qubit
        ones = sum(c for b, c in self.counts.items() if b[position] == "1")
        return ones / self.shots

    def index_counts(self) -> Dict[int, int]:
        """Counts keyed by integer basis-state index."""
        return {int(b, 2): c for b, c in self.counts.items()}

    def merge(self, other: "ShotDistribution") -> "ShotDistribution":
        """Combine two distributions sampled from the same register."""
        if other.num_qubits != self.num_qubits:
            raise InvalidArgumentError(
                f"Cannot merge distributions over {self.num_qubits} and {other.num_qubits} qubits"
            )
        merged = dict(self.counts)
        for b, c in other.counts.items():
            merged[b] = merged.get(b, 0) + c
        return ShotDistribution(self.num_qubits, self.shots + other.shots, merged)
