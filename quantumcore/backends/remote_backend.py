"""
Abstract contract for remote (hosted simulator or hardware) backends.

No concrete provider ships with quantumcore. This module fixes the job-based
contract such a provider has to meet so the algorithm layers can target it
unchanged:

    submit_circuit(circuit, shots) -> job_id
    get_job_status(job_id)         -> JobStatus
    get_result(job_id)             -> ShotDistribution
    cancel_job(job_id)             -> bool

On top of it, run_circuit_async() submits a circuit, polls until the job
finishes and enforces a timeout. When the timeout elapses, or the awaiting
task is cancelled, the remote job is cancelled as well so no work is left
running on the provider.

Remote devices return samples only. Mid-circuit measurement and exact
probabilities are not part of the contract and raise
BackendUnavailableError.

Example:
    >>> backend = MyProviderBackend(...)
    >>> result = asyncio.run(backend.run_circuit_async(circuit, shots=2000, timeout_seconds=30))
    >>> result.most_common(3)
"""

from abc import abstractmethod
from dataclasses import dataclass
from enum import Enum
from typing import Optional, Sequence
import asyncio
import logging

from quantumcore.backends.backend_base import BackendBase
from quantumcore.circuits.circuit import Circuit
from quantumcore.circuits.gates import Gate
from quantumcore.exceptions import BackendUnavailableError, InvalidArgumentError
from quantumcore.simulator.measurement import MeasurementOutcome, ShotDistribution

logger = logging.getLogger(__name__)


class JobStatus(Enum):
    """Remote job status enum."""
    QUEUED = "queued"
    RUNNING = "running"
    COMPLETED = "completed"
    FAILED = "failed"
    CANCELLED = "cancelled"


TERMINAL_STATUSES = frozenset({JobStatus.COMPLETED, JobStatus.FAILED, JobStatus.CANCELLED})


@dataclass
class RemoteHandle:
    """Circuit accumulated locally until shots are requested."""
    circuit: Circuit


class RemoteBackend(BackendBase):
    """
    Abstract base class for job-based remote backends.

    Subclasses implement the four job methods; everything else is provided.

    Attributes:
        provider_name (str): Name of the provider
        timeout_seconds (float): Default wait limit for run_circuit_async()
        poll_interval (float): Seconds between status polls
    """

    supports_mid_circuit_measurement = False
    supports_exact_probabilities = False

    def __init__(self, provider_name: str, timeout_seconds: float = 300.0, poll_interval: float = 1.0):
        if timeout_seconds <= 0:
            raise InvalidArgumentError(f"timeout_seconds must be positive, got {timeout_seconds}")
        if poll_interval <= 0:
            raise InvalidArgumentError(f"poll_interval must be positive, got {poll_interval}")
        self.provider_name = provider_name
        self.timeout_seconds = timeout_seconds
        self.poll_interval = poll_interval
        super().__init__(backend_type='remote')

    @property
    def name(self) -> str:
        return f"remote:{self.provider_name}"

    # ========================================================================
    # Job API - implemented by providers
    # ========================================================================

    @abstractmethod
    def submit_circuit(self, circuit: Circuit, shots: int) -> str:
        """
        Submit a circuit for execution.

        Returns:
            Job ID for tracking execution

        Raises:
            BackendUnavailableError: If submission fails
        """
        pass

    @abstractmethod
    def get_job_status(self, job_id: str) -> JobStatus:
        pass

    @abstractmethod
    def get_result(self, job_id: str) -> ShotDistribution:
        """Counts of a COMPLETED job."""
        pass

    @abstractmethod
    def cancel_job(self, job_id: str) -> bool:
        """
        Cancel a submitted job.

        Returns:
            True if cancellation successful, False otherwise
        """
        pass

    # ========================================================================
    # Async execution
    # ========================================================================

    async def run_circuit_async(
        self,
        circuit: Circuit,
        shots: int,
        timeout_seconds: Optional[float] = None,
        poll_interval: Optional[float] = None
    ) -> ShotDistribution:
        """
        Submit a circuit and await its counts.

        Args:
            circuit: Circuit to run
            shots: Number of shots
            timeout_seconds: Wait limit (default: self.timeout_seconds)
            poll_interval: Poll period (default: self.poll_interval)

        Returns:
            ShotDistribution of the completed job

        Raises:
            BackendUnavailableError: On timeout (the job is cancelled first)
                or when the job ends FAILED/CANCELLED
            asyncio.CancelledError: If the awaiting task is cancelled (the
                remote job is cancelled before re-raising)
        """
        timeout = self.timeout_seconds if timeout_seconds is None else timeout_seconds
        interval = self.poll_interval if poll_interval is None else poll_interval

        job_id = self.submit_circuit(circuit, shots)
        logger.info(f"{self.name}: submitted job {job_id} ({shots} shots, timeout {timeout}s)")

        try:
            return await asyncio.wait_for(self._wait_for_job(job_id, interval), timeout=timeout)
        except asyncio.TimeoutError:
            self._cancel_quietly(job_id)
            raise BackendUnavailableError(
                f"{self.name}: job {job_id} did not finish within {timeout}s and was cancelled"
            )
        except asyncio.CancelledError:
            self._cancel_quietly(job_id)
            raise

    async def _wait_for_job(self, job_id: str, interval: float) -> ShotDistribution:
        while True:
            status = self.get_job_status(job_id)
            if status == JobStatus.COMPLETED:
                logger.info(f"{self.name}: job {job_id} completed")
                return self.get_result(job_id)
            if status in TERMINAL_STATUSES:
                raise BackendUnavailableError(f"{self.name}: job {job_id} ended with status {status.value}")
            await asyncio.sleep(interval)

    def _cancel_quietly(self, job_id: str) -> None:
        cancelled = self.cancel_job(job_id)
        if cancelled:
            logger.warning(f"{self.name}: cancelled job {job_id}")
        else:
            logger.warning(f"{self.name}: could not cancel job {job_id}")

    # ========================================================================
    # Backend contract
    # ========================================================================

    def initialize(self, qubit_count: int, seed: Optional[int] = None) -> RemoteHandle:
        return RemoteHandle(circuit=Circuit(qubit_count))

    def apply_gate(self, handle: RemoteHandle, gate: Gate) -> None:
        handle.circuit = handle.circuit.add(gate)

    def run_shots(self, handle: RemoteHandle, shots: int, seed: Optional[int] = None) -> ShotDistribution:
        """Blocking wrapper around run_circuit_async() for synchronous callers."""
        return asyncio.run(self.run_circuit_async(handle.circuit, shots))

    def measure(self, handle: RemoteHandle, qubits: Sequence[int]) -> MeasurementOutcome:
        raise BackendUnavailableError(f"{self.name} does not support mid-circuit measurement")

    def probabilities(self, handle: RemoteHandle):
        raise BackendUnavailableError(f"{self.name} returns samples only, not exact probabilities")
