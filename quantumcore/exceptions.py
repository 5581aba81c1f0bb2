"""
Exception hierarchy for the quantumcore execution core.

Every failure raised by the simulator, the backends and the algorithm layers
derives from QuantumCoreException, so callers can branch on a single base
class or on the exact precondition that failed.

Error Taxonomy
--------------
- InvalidQubitIndexError: gate or measurement references a qubit outside
  the register
- CapacityExceededError: qubit count too large for a dense statevector
- NormalizationError: the statevector norm drifted; a simulator defect,
  never a user error
- InvalidArgumentError: malformed gate, circuit, Hamiltonian or config
- BackendUnavailableError: a non-local backend cannot serve the request
- OracleEvaluationError: a Grover oracle raised while scoring candidates

Non-convergence and low QAOA fill rates are deliberately NOT exceptions.
They are reported as attributes on the returned result objects.
"""


class QuantumCoreException(Exception):
    """Base exception for all quantumcore errors."""
    pass


class InvalidQubitIndexError(QuantumCoreException, IndexError):
    """Raised when a gate or measurement references an out-of-range qubit."""

    def __init__(self, qubit: int, num_qubits: int):
        self.qubit = qubit
        self.num_qubits = num_qubits
        super().__init__(
            f"Invalid qubit index {qubit}: register has {num_qubits} qubits "
            f"(valid range 0..{num_qubits - 1})"
        )


class CapacityExceededError(QuantumCoreException):
    """Raised when a dense statevector would not fit the configured limits."""
    pass


class NormalizationError(QuantumCoreException):
    """Raised when the statevector norm drifts beyond tolerance."""
    pass


class InvalidArgumentError(QuantumCoreException, ValueError):
    """Raised for malformed gates, circuits, Hamiltonians or configuration."""
    pass


class BackendUnavailableError(QuantumCoreException):
    """Raised when a backend cannot execute the request (timeouts, unsupported ops)."""
    pass


class OracleEvaluationError(QuantumCoreException):
    """Raised when a caller-supplied Grover oracle fails on a candidate."""

    def __init__(self, bitstring: str, cause: Exception):
        self.bitstring = bitstring
        super().__init__(f"Oracle failed on candidate {bitstring}: {cause}")
