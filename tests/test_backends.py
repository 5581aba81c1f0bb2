"""
Unit tests for backends (local, PennyLane, remote job contract) and selection.
"""

import asyncio
import itertools
import math

import numpy as np
import pytest

from quantumcore.backends.backend_base import BackendBase
from quantumcore.backends.local_backend import LocalBackend
from quantumcore.backends.pennylane_backend import PENNYLANE_AVAILABLE
from quantumcore.backends.registry import BackendKind, create_backend, resolve_backend
from quantumcore.backends.remote_backend import JobStatus, RemoteBackend
from quantumcore.circuits import gates
from quantumcore.circuits.circuit import Circuit
from quantumcore.exceptions import (
    BackendUnavailableError,
    InvalidArgumentError,
    InvalidQubitIndexError,
)
from quantumcore.simulator.measurement import ShotDistribution


def mixed_circuit() -> Circuit:
    """Three-qubit circuit touching every gate kind."""
    return Circuit(3).add(
        gates.h(0), gates.ry(1, 0.7), gates.rx(2, -1.3),
        gates.cnot(0, 1), gates.rz(1, 0.4), gates.cz(1, 2),
        gates.y(2), gates.swap(0, 2), gates.ccx(0, 1, 2),
        gates.x(1), gates.z(0), gates.mcz(0, 1, 2), gates.h(2),
    )


class FakeRemoteBackend(RemoteBackend):
    """In-memory provider whose job statuses follow a script."""

    def __init__(self, statuses, **kwargs):
        super().__init__(provider_name="fake", **kwargs)
        self._statuses = iter(statuses)
        self._last = JobStatus.QUEUED
        self.submitted = []
        self.cancelled = []

    def submit_circuit(self, circuit, shots):
        self.submitted.append((circuit, shots))
        return f"job-{len(self.submitted)}"

    def get_job_status(self, job_id):
        self._last = next(self._statuses, self._last)
        return self._last

    def get_result(self, job_id):
        circuit, shots = self.submitted[-1]
        return ShotDistribution(circuit.qubit_count, shots, {"0" * circuit.qubit_count: shots})

    def cancel_job(self, job_id):
        self.cancelled.append(job_id)
        return True


class TestLocalBackend:
    """Test LocalBackend."""

    @pytest.fixture
    def backend(self):
        return LocalBackend()

    def test_execute_and_probabilities(self, backend):
        handle = backend.execute(Circuit(2).add(gates.h(0), gates.cnot(0, 1)), seed=1)
        np.testing.assert_allclose(backend.probabilities(handle), [0.5, 0, 0, 0.5], atol=1e-12)
        assert backend.expectation_z(handle, 0) == pytest.approx(0.0)

    def test_run_shots(self, backend):
        handle = backend.execute(Circuit(2).add(gates.x(1)))
        distribution = backend.run_shots(handle, 100, seed=3)
        assert distribution.counts == {"10": 100}

    def test_measure_collapses_handle(self, backend):
        handle = backend.execute(Circuit(2).add(gates.h(0), gates.cnot(0, 1)), seed=5)
        outcome = backend.measure(handle, [1])
        probs = backend.probabilities(handle)
        assert probs[3 if outcome.bits[0] else 0] == pytest.approx(1.0)

        # Gates keep acting on the post-measurement state
        backend.apply_gate(handle, gates.x(0))
        assert backend.probabilities(handle)[2 if outcome.bits[0] else 1] == pytest.approx(1.0)

    def test_apply_gate_failure(self, backend):
        handle = backend.initialize(1)
        with pytest.raises(InvalidQubitIndexError):
            backend.apply_gate(handle, gates.h(1))

        with pytest.raises(InvalidArgumentError, match="Expected a Circuit"):
            backend.execute("not a circuit")

    def test_backend_info(self, backend):
        info = backend.get_backend_info()
        assert info["backend_type"] == "local"
        assert info["name"] == "local-statevector"
        assert info["capabilities"] == {"mid_circuit_measurement": True, "exact_probabilities": True}
        assert "MCZ" in info["supported_gates"]
        assert info["max_qubits"] >= 1

    def test_context_manager(self):
        with LocalBackend() as backend:
            assert isinstance(backend, BackendBase)


class TestRegistry:
    """Test backend selection."""

    def test_create_backend_success(self):
        assert isinstance(create_backend(BackendKind.LOCAL), LocalBackend)
        assert isinstance(create_backend("LOCAL"), LocalBackend)
        assert isinstance(create_backend(), BackendBase)

    def test_create_backend_failure(self):
        with pytest.raises(InvalidArgumentError, match="Unknown backend kind"):
            create_backend("braket")

    def test_resolve_backend_passthrough(self):
        backend = LocalBackend()
        assert resolve_backend(backend) is backend
        assert isinstance(resolve_backend("local"), LocalBackend)


@pytest.mark.skipif(not PENNYLANE_AVAILABLE, reason="pennylane not installed")
class TestPennyLaneBackend:
    """Cross-check PennyLane execution against the local engine."""

    @pytest.fixture
    def backend(self):
        from quantumcore.backends.pennylane_backend import PennyLaneBackend
        return PennyLaneBackend()

    def test_probability_parity(self, backend):
        circuit = mixed_circuit()
        local = LocalBackend()

        expected = local.probabilities(local.execute(circuit))
        actual = backend.probabilities(backend.execute(circuit))
        np.testing.assert_allclose(actual, expected, atol=1e-9)

    def test_rotation_parity(self, backend):
        local = LocalBackend()
        for theta in (0.0, 0.3, math.pi / 2, 2.9):
            circuit = Circuit(2).add(gates.ry(0, theta), gates.rx(1, theta / 2), gates.cnot(1, 0))
            expected = local.probabilities(local.execute(circuit))
            actual = backend.probabilities(backend.execute(circuit))
            np.testing.assert_allclose(actual, expected, atol=1e-9)

    def test_measure_then_continue(self, backend):
        handle = backend.execute(Circuit(2).add(gates.h(0), gates.cnot(0, 1)), seed=11)
        outcome = backend.measure(handle, [0])
        bit = outcome.bits[0]
        assert outcome.probability == pytest.approx(0.5)

        backend.apply_gate(handle, gates.x(1))
        probs = backend.probabilities(handle)
        # |bb> after collapse, then qubit 1 flipped
        expected_index = bit | ((1 - bit) << 1)
        assert probs[expected_index] == pytest.approx(1.0)

    def test_run_shots(self, backend):
        handle = backend.execute(Circuit(1).add(gates.x(0)))
        assert backend.run_shots(handle, 50, seed=0).counts == {"1": 50}

    def test_backend_info(self, backend):
        info = backend.get_backend_info()
        assert info["backend_type"] == "pennylane"
        assert info["device"] == "default.qubit"

    def test_create_backend_pennylane(self):
        assert create_backend(BackendKind.PENNYLANE).backend_type == "pennylane"


class TestRemoteBackend:
    """Test the async job contract with a scripted provider."""

    @pytest.fixture
    def circuit(self):
        return Circuit(2).add(gates.h(0))

    def test_run_circuit_async_success(self, circuit):
        backend = FakeRemoteBackend([JobStatus.QUEUED, JobStatus.RUNNING, JobStatus.COMPLETED])

        result = asyncio.run(backend.run_circuit_async(circuit, 64, poll_interval=0.001))

        assert result.shots == 64
        assert result.counts == {"00": 64}
        assert backend.cancelled == []

    def test_timeout_cancels_job(self, circuit):
        backend = FakeRemoteBackend(itertools.repeat(JobStatus.RUNNING))

        with pytest.raises(BackendUnavailableError, match="did not finish"):
            asyncio.run(backend.run_circuit_async(circuit, 10, timeout_seconds=0.05, poll_interval=0.01))

        assert backend.cancelled == ["job-1"]

    def test_task_cancellation_cancels_job(self, circuit):
        backend = FakeRemoteBackend(itertools.repeat(JobStatus.RUNNING))

        async def scenario():
            task = asyncio.create_task(
                backend.run_circuit_async(circuit, 10, timeout_seconds=5.0, poll_interval=0.01)
            )
            await asyncio.sleep(0.05)
            task.cancel()
            with pytest.raises(asyncio.CancelledError):
                await task

        asyncio.run(scenario())
        assert backend.cancelled == ["job-1"]

    def test_failed_job(self, circuit):
        backend = FakeRemoteBackend([JobStatus.RUNNING, JobStatus.FAILED])

        with pytest.raises(BackendUnavailableError, match="failed"):
            asyncio.run(backend.run_circuit_async(circuit, 10, poll_interval=0.001))

    def test_synchronous_contract(self, circuit):
        backend = FakeRemoteBackend([JobStatus.COMPLETED], poll_interval=0.001)
        handle = backend.execute(circuit)

        assert backend.run_shots(handle, 8).counts == {"00": 8}
        assert backend.submitted[0][0] == circuit

        with pytest.raises(BackendUnavailableError, match="mid-circuit"):
            backend.measure(handle, [0])
        with pytest.raises(BackendUnavailableError, match="samples only"):
            backend.probabilities(handle)

        info = backend.get_backend_info()
        assert info["capabilities"] == {"mid_circuit_measurement": False, "exact_probabilities": False}

    def test_invalid_configuration(self):
        with pytest.raises(InvalidArgumentError, match="timeout_seconds must be positive"):
            FakeRemoteBackend([], timeout_seconds=0)
