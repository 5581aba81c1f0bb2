"""
Dense Statevector Engine for quantumcore.

This module is the numerical core every algorithm layer ultimately runs on.
It owns a complex amplitude vector of length 2^n and applies gates to it with
local, in-place numpy updates instead of building 2^n x 2^n matrices.

Key Features:
    - In-place O(2^n) application of every supported gate
    - Norm invariant checked after each gate (NormalizationError on drift)
    - Capacity guard against unchecked allocations (qubit limit + free RAM)
    - Seeded multinomial shot sampling, optionally split across threads
    - Collapsing partial measurement for sequential-measurement algorithms

How Single-Qubit Gates Are Applied
----------------------------------
For a 2x2 unitary [[a, b], [c, d]] on qubit q, the amplitude vector is viewed
as a (high, 2, low) tensor where low = 2^q. The middle axis is the value of
qubit q, so the update is:

    new[:, 0, :] = a * old[:, 0, :] + b * old[:, 1, :]
    new[:, 1, :] = c * old[:, 0, :] + d * old[:, 1, :]

Controlled and permutation gates (CNOT, SWAP, CCX) swap amplitude pairs
selected by bit masks; phase gates (CZ, MCZ) negate the masked amplitudes.

Example:
    >>> from quantumcore.circuits import gates
    >>> engine = StatevectorEngine()
    >>> state = engine.initialize(2)
    >>> engine.apply_gate(gates.h(0), state)
    >>> engine.apply_gate(gates.cnot(0, 1), state)
    >>> engine.probabilities(state)  # Bell state
    array([0.5, 0. , 0. , 0.5])
"""

from concurrent.futures import ThreadPoolExecutor
from typing import Optional, Sequence, Tuple, Union
import logging
import math

import numpy as np
import psutil

from quantumcore.circuits.circuit import Circuit
from quantumcore.circuits.gates import Gate, GateKind
from quantumcore.config import settings
from quantumcore.exceptions import (
    CapacityExceededError,
    InvalidArgumentError,
    InvalidQubitIndexError,
    NormalizationError,
)
from quantumcore.simulator.measurement import (
    MeasurementOutcome,
    ShotDistribution,
    index_to_bitstring,
)

logger = logging.getLogger(__name__)

SeedLike = Union[None, int, np.random.SeedSequence]

_SQRT_HALF = 1.0 / math.sqrt(2.0)

# Fixed 2x2 matrices as (a, b, c, d) for [[a, b], [c, d]]
_FIXED_MATRICES = {
    GateKind.H: (_SQRT_HALF, _SQRT_HALF, _SQRT_HALF, -_SQRT_HALF),
    GateKind.X: (0.0, 1.0, 1.0, 0.0),
    GateKind.Y: (0.0, -1j, 1j, 0.0),
    GateKind.Z: (1.0, 0.0, 0.0, -1.0),
}


def _rotation_matrix(kind: GateKind, theta: float) -> Tuple[complex, complex, complex, complex]:
    """RX/RY/RZ(theta) = exp(-i theta P / 2) as (a, b, c, d)."""
    c = math.cos(theta / 2.0)
    s = math.sin(theta / 2.0)
    if kind == GateKind.RX:
        return (c, -1j * s, -1j * s, c)
    if kind == GateKind.RY:
        return (c, -s, s, c)
    return (complex(c, -s), 0.0, 0.0, complex(c, s))


class Statevector:
    """
    Owned dense amplitude vector for an n-qubit register.

    A Statevector is created by StatevectorEngine.initialize(), mutated in
    place gate by gate, and discarded once measurement or expectation
    computation finishes. It is never shared between two executions; copy()
    produces an independent vector when a caller needs a snapshot.

    Attributes:
        num_qubits: Register width n
        amplitudes: complex128 array of length 2^n (little-endian qubit order)
    """

    def __init__(self, num_qubits: int, amplitudes: Optional[np.ndarray] = None):
        self.num_qubits = num_qubits
        if amplitudes is None:
            amplitudes = np.zeros(1 << num_qubits, dtype=np.complex128)
            amplitudes[0] = 1.0
        else:
            amplitudes = np.ascontiguousarray(amplitudes, dtype=np.complex128)
            if amplitudes.shape != (1 << num_qubits,):
                raise InvalidArgumentError(
                    f"Amplitude vector of shape {amplitudes.shape} does not match "
                    f"{num_qubits} qubits (expected ({1 << num_qubits},))"
                )
        self.amplitudes = amplitudes

    @property
    def dimension(self) -> int:
        return self.amplitudes.shape[0]

    def norm_squared(self) -> float:
        return float(np.vdot(self.amplitudes, self.amplitudes).real)

    def amplitude(self, bitstring: str) -> complex:
        return complex(self.amplitudes[int(bitstring, 2)])

    def copy(self) -> "Statevector":
        return Statevector(self.num_qubits, self.amplitudes.copy())

    def __repr__(self) -> str:
        return f"Statevector(num_qubits={self.num_qubits}, norm²={self.norm_squared():.12f})"


class StatevectorEngine:
    """
    Classical statevector simulator.

    The engine holds configuration only; all quantum state lives in the
    Statevector objects it creates, so a single engine instance can serve
    concurrent executions as long as each owns its own Statevector.

    Attributes:
        max_qubits (int): Hard limit on register width
        normalization_tolerance (float): Allowed |norm² - 1| after a gate
        check_normalization (bool): Whether to verify the norm after each gate
        sampling_workers (int): Threads used to sample independent shot chunks
        memory_safety_fraction (float): Share of free RAM one vector may use

    Capacity Model:
        A dense double-precision statevector needs 16 * 2^n bytes:
        - 20 qubits: 16 MB
        - 24 qubits: 256 MB
        - 28 qubits: 4 GB
        initialize() checks both max_qubits and currently available memory
        (via psutil) before allocating anything.
    """

    def __init__(
        self,
        max_qubits: Optional[int] = None,
        normalization_tolerance: Optional[float] = None,
        check_normalization: Optional[bool] = None,
        sampling_workers: Optional[int] = None,
        memory_safety_fraction: Optional[float] = None
    ):
        config = settings.simulator
        self.max_qubits = config.max_qubits if max_qubits is None else max_qubits
        self.normalization_tolerance = (
            config.normalization_tolerance if normalization_tolerance is None
            else normalization_tolerance
        )
        self.check_normalization = (
            config.check_normalization if check_normalization is None else check_normalization
        )
        self.sampling_workers = config.sampling_workers if sampling_workers is None else sampling_workers
        self.memory_safety_fraction = (
            config.memory_safety_fraction if memory_safety_fraction is None
            else memory_safety_fraction
        )

        if self.max_qubits < 1:
            raise InvalidArgumentError(f"max_qubits must be >= 1, got {self.max_qubits}")
        if self.sampling_workers < 1:
            raise InvalidArgumentError(f"sampling_workers must be >= 1, got {self.sampling_workers}")

        logger.debug(
            f"StatevectorEngine initialized: max_qubits={self.max_qubits}, "
            f"tolerance={self.normalization_tolerance}, workers={self.sampling_workers}"
        )

    # =========================================================================
    # Allocation
    # =========================================================================

    def check_capacity(self, num_qubits: int) -> None:
        """
        Verify a register of num_qubits can be simulated densely.

        Raises:
            InvalidArgumentError: If num_qubits < 1
            CapacityExceededError: If num_qubits exceeds max_qubits or the
                vector would not fit in the allowed share of free memory
        """
        if isinstance(num_qubits, bool) or not isinstance(num_qubits, (int, np.integer)):
            raise InvalidArgumentError(f"qubit count must be an int, got {num_qubits!r}")
        if num_qubits < 1:
            raise InvalidArgumentError(f"qubit count must be >= 1, got {num_qubits}")

        if num_qubits > self.max_qubits:
            raise CapacityExceededError(
                f"{num_qubits} qubits exceeds the dense simulation limit of "
                f"{self.max_qubits} qubits"
            )

        required_bytes = 16 * (1 << int(num_qubits))
        available_bytes = psutil.virtual_memory().available
        allowed_bytes = available_bytes * self.memory_safety_fraction
        if required_bytes > allowed_bytes:
            raise CapacityExceededError(
                f"Statevector for {num_qubits} qubits needs {required_bytes / 2**20:.1f} MB, "
                f"only {allowed_bytes / 2**20:.1f} MB allowed "
                f"({self.memory_safety_fraction:.0%} of available memory)"
            )

    def initialize(self, num_qubits: int) -> Statevector:
        """Allocate |0...0> after checking capacity."""
        self.check_capacity(num_qubits)
        return Statevector(int(num_qubits))

    # =========================================================================
    # Gate application
    # =========================================================================

    def apply_gate(self, gate: Gate, state: Statevector) -> Statevector:
        """
        Apply one gate to the statevector in place.

        Args:
            gate: Gate to apply
            state: Statevector owned by the caller (mutated)

        Returns:
            The same Statevector instance, for chaining

        Raises:
            InvalidArgumentError: If gate is not a Gate
            InvalidQubitIndexError: If the gate touches a qubit >= state.num_qubits
            NormalizationError: If the norm drifts beyond tolerance afterwards
        """
        if not isinstance(gate, Gate):
            raise InvalidArgumentError(f"Expected a Gate, got {gate!r}")
        for q in gate.qubits:
            if q >= state.num_qubits:
                raise InvalidQubitIndexError(q, state.num_qubits)

        kind = gate.kind
        if kind in _FIXED_MATRICES:
            self._apply_single_qubit(state, gate.qubits[0], _FIXED_MATRICES[kind])
        elif kind in (GateKind.RX, GateKind.RY, GateKind.RZ):
            self._apply_single_qubit(state, gate.qubits[0], _rotation_matrix(kind, gate.angle))
        elif kind == GateKind.CNOT:
            control, target = gate.qubits
            self._apply_controlled_flip(state, (control,), target)
        elif kind == GateKind.CCX:
            c1, c2, target = gate.qubits
            self._apply_controlled_flip(state, (c1, c2), target)
        elif kind in (GateKind.CZ, GateKind.MCZ):
            self._apply_phase_flip(state, gate.qubits)
        elif kind == GateKind.SWAP:
            self._apply_swap(state, *gate.qubits)
        else:
            raise InvalidArgumentError(f"Unsupported gate kind: {kind}")

        if self.check_normalization:
            self._verify_norm(state, gate)
        return state

    def apply_circuit(self, circuit: Circuit, state: Statevector) -> Statevector:
        """Apply every gate of a circuit in order."""
        if circuit.qubit_count != state.num_qubits:
            raise InvalidArgumentError(
                f"Circuit on {circuit.qubit_count} qubits cannot run on a "
                f"{state.num_qubits}-qubit statevector"
            )
        for gate in circuit.gates:
            self.apply_gate(gate, state)
        return state

    def run(self, circuit: Circuit) -> Statevector:
        """Initialize |0...0> and apply the circuit."""
        state = self.initialize(circuit.qubit_count)
        return self.apply_circuit(circuit, state)

    def _apply_single_qubit(self, state: Statevector, qubit: int, matrix) -> None:
        a, b, c, d = matrix
        view = state.amplitudes.reshape(-1, 2, 1 << qubit)
        amp0 = view[:, 0, :].copy()
        amp1 = view[:, 1, :].copy()
        view[:, 0, :] = a * amp0 + b * amp1
        view[:, 1, :] = c * amp0 + d * amp1

    @staticmethod
    def _indices(state: Statevector) -> np.ndarray:
        return np.arange(state.dimension, dtype=np.int64)

    def _apply_controlled_flip(self, state: Statevector, controls: Sequence[int], target: int) -> None:
        # Swap |..c=1..t=0..> with |..c=1..t=1..> for every control-satisfied pair
        idx = self._indices(state)
        control_mask = 0
        for c in controls:
            control_mask |= 1 << c
        target_mask = 1 << target
        selected = idx[((idx & control_mask) == control_mask) & ((idx & target_mask) == 0)]
        partner = selected | target_mask
        amps = state.amplitudes
        amps[selected], amps[partner] = amps[partner], amps[selected]

    def _apply_phase_flip(self, state: Statevector, qubits: Sequence[int]) -> None:
        idx = self._indices(state)
        mask = 0
        for q in qubits:
            mask |= 1 << q
        state.amplitudes[(idx & mask) == mask] *= -1.0

    def _apply_swap(self, state: Statevector, a: int, b: int) -> None:
        idx = self._indices(state)
        mask_a = 1 << a
        mask_b = 1 << b
        selected = idx[((idx & mask_a) != 0) & ((idx & mask_b) == 0)]
        partner = selected ^ mask_a ^ mask_b
        amps = state.amplitudes
        amps[selected], amps[partner] = amps[partner], amps[selected]

    def _verify_norm(self, state: Statevector, gate: Gate) -> None:
        drift = abs(state.norm_squared() - 1.0)
        if drift > self.normalization_tolerance:
            raise NormalizationError(
                f"Statevector norm drifted by {drift:.3e} after {gate} "
                f"(tolerance {self.normalization_tolerance:.1e})"
            )

    # =========================================================================
    # Readout
    # =========================================================================

    def probabilities(self, state: Statevector) -> np.ndarray:
        """Born-rule probabilities |amplitude|² for every basis state."""
        amps = state.amplitudes
        return amps.real ** 2 + amps.imag ** 2

    def expectation_z(self, state: Statevector, qubit: int) -> float:
        """<Z_q> = P(q = 0) - P(q = 1)."""
        if not 0 <= qubit < state.num_qubits:
            raise InvalidQubitIndexError(qubit, state.num_qubits)
        probs = self.probabilities(state)
        ones = (self._indices(state) >> qubit) & 1
        return float(np.sum(probs[ones == 0]) - np.sum(probs[ones == 1]))

    def sample_shots(
        self,
        state: Statevector,
        shots: int,
        seed: SeedLike = None,
        workers: Optional[int] = None
    ) -> ShotDistribution:
        """
        Sample computational-basis outcomes without disturbing the state.

        Shots are independent draws from the same fixed distribution, so they
        can be split into chunks sampled on separate threads. Each chunk gets
        its own child SeedSequence, which keeps results reproducible for a
        given (seed, workers) pair.

        Args:
            state: Statevector to sample (read-only)
            shots: Number of samples (>= 1)
            seed: RNG seed or SeedSequence (None = fresh entropy)
            workers: Thread count (default: engine's sampling_workers)

        Returns:
            ShotDistribution with counts over full-register bitstrings
        """
        if isinstance(shots, bool) or not isinstance(shots, (int, np.integer)) or shots < 1:
            raise InvalidArgumentError(f"shots must be a positive integer, got {shots!r}")

        probs = self.probabilities(state)
        probs = probs / probs.sum()
        seed_seq = seed if isinstance(seed, np.random.SeedSequence) else np.random.SeedSequence(seed)
        workers = self.sampling_workers if workers is None else workers

        if workers <= 1 or shots < workers:
            counts = np.random.default_rng(seed_seq).multinomial(int(shots), probs)
        else:
            base, extra = divmod(int(shots), workers)
            chunk_sizes = [base + (1 if i < extra else 0) for i in range(workers)]
            child_seeds = seed_seq.spawn(workers)

            def sample_chunk(args):
                size, child = args
                return np.random.default_rng(child).multinomial(size, probs)

            with ThreadPoolExecutor(max_workers=workers) as executor:
                counts = sum(executor.map(sample_chunk, zip(chunk_sizes, child_seeds)))

        return ShotDistribution.from_index_counts(counts, state.num_qubits)

    def measure_and_collapse(
        self,
        qubits: Sequence[int],
        state: Statevector,
        rng: Union[np.random.Generator, SeedLike] = None
    ) -> Tuple[MeasurementOutcome, Statevector]:
        """
        Projectively measure a subset of qubits and collapse the state.

        The outcome is drawn from the marginal distribution of the measured
        qubits. Amplitudes inconsistent with the outcome are zeroed and the
        remainder renormalized, so later gates act on the post-measurement
        state.

        Args:
            qubits: Distinct qubits to measure (order defines outcome order)
            state: Statevector to collapse (mutated)
            rng: numpy Generator or seed

        Returns:
            (MeasurementOutcome, state): observed bits with their probability,
            and the same Statevector after collapse
        """
        qubits = tuple(int(q) for q in qubits)
        if not qubits:
            raise InvalidArgumentError("At least one qubit must be measured")
        if len(set(qubits)) != len(qubits):
            raise InvalidArgumentError(f"Measured qubits must be distinct, got {qubits}")
        for q in qubits:
            if not 0 <= q < state.num_qubits:
                raise InvalidQubitIndexError(q, state.num_qubits)

        generator = rng if isinstance(rng, np.random.Generator) else np.random.default_rng(rng)

        idx = self._indices(state)
        outcome_keys = np.zeros_like(idx)
        for position, q in enumerate(qubits):
            outcome_keys |= ((idx >> q) & 1) << position

        probs = self.probabilities(state)
        marginal = np.bincount(outcome_keys, weights=probs, minlength=1 << len(qubits))
        marginal = marginal / marginal.sum()
        outcome = int(generator.choice(marginal.shape[0], p=marginal))
        probability = float(marginal[outcome])

        state.amplitudes[outcome_keys != outcome] = 0.0
        state.amplitudes /= np.linalg.norm(state.amplitudes)

        bits = tuple((outcome >> position) & 1 for position in range(len(qubits)))
        logger.debug(f"Measured qubits {qubits} -> {bits} (p={probability:.6f})")
        return MeasurementOutcome(qubits=qubits, bits=bits, probability=probability), state

    def most_probable(self, state: Statevector, k: int = 1):
        """The k most probable basis states as (bitstring, probability) pairs."""
        probs = self.probabilities(state)
        order = np.argsort(-probs, kind="stable")[:k]
        return [(index_to_bitstring(i, state.num_qubits), float(probs[i])) for i in order]
