"""
Unit tests for QUBO encoding, reference problems and the QAOA solver.
"""

import itertools
from types import SimpleNamespace

import networkx as nx
import numpy as np
import pytest

from quantumcore.backends.local_backend import LocalBackend
from quantumcore.cancellation import CancellationToken
from quantumcore.exceptions import InvalidArgumentError
from quantumcore.problems.maxcut import MaxCutProblem
from quantumcore.problems.network_flow import NetworkFlowProblem
from quantumcore.problems.problem_base import SolutionQuality
from quantumcore.qaoa.qaoa_solver import (
    InitializationStrategy,
    OptimizationStrategy,
    ParameterBounds,
    QaoaSolver,
    QaoaStatus,
)
from quantumcore.qaoa.qubo import QuboBuilder, QuboHamiltonian


def all_assignments(n):
    return [list(bits) for bits in itertools.product([0, 1], repeat=n)]


@pytest.fixture
def supply_chain():
    """Two suppliers, two customers, one unit of demand each."""
    return NetworkFlowProblem(
        sources=["S1", "S2"],
        sinks=["C1", "C2"],
        edges=[("S1", "C1", 10), ("S1", "C2", 15), ("S2", "C1", 12), ("S2", "C2", 8)],
        supplies={"S1": 1, "S2": 1},
    )


class TestQuboHamiltonian:
    """Test QUBO canonicalization and evaluation."""

    def test_canonicalization(self):
        qubo = QuboHamiltonian(3, linear={0: 1.0, 2: 0.0}, quadratic={(2, 0): 1.5, (1, 1): 2.0})

        assert qubo.linear == {0: 1.0, 1: 2.0}
        assert qubo.quadratic == {(0, 2): 1.5}
        assert qubo.num_terms == 3

    def test_validation_failure(self):
        with pytest.raises(InvalidArgumentError, match="undefined"):
            QuboHamiltonian(2, linear={2: 1.0})

        # Undefined variables are argument errors, catchable as ValueError
        with pytest.raises(ValueError, match="undefined"):
            QuboHamiltonian(2, quadratic={(0, 5): 1.0})

        with pytest.raises(InvalidArgumentError, match="positive integer"):
            QuboHamiltonian(0)

        with pytest.raises(InvalidArgumentError, match="finite"):
            QuboHamiltonian(1, linear={0: float("inf")})

        qubo = QuboHamiltonian(2, linear={0: 1.0})
        with pytest.raises(InvalidArgumentError, match="expected 2"):
            qubo.evaluate([1])
        with pytest.raises(InvalidArgumentError, match="binary"):
            qubo.evaluate([1, 2])

    def test_frozen(self):
        qubo = QuboHamiltonian(1)
        with pytest.raises(Exception):
            qubo.offset = 3.0

    def test_evaluate_all_matches_evaluate(self):
        qubo = QuboHamiltonian(3, linear={0: -1.0, 2: 0.5}, quadratic={(0, 1): 2.0, (1, 2): -3.0}, offset=0.25)
        values = qubo.evaluate_all()

        for index in range(8):
            bits = [(index >> i) & 1 for i in range(3)]
            assert values[index] == pytest.approx(qubo.evaluate(bits))

    def test_matrix_round_trip(self):
        matrix = np.array([[1.0, 2.0], [0.0, -3.0]])
        qubo = QuboHamiltonian.from_matrix(matrix, offset=1.0)

        assert qubo.evaluate([1, 1]) == pytest.approx(1.0 + 2.0 - 3.0 + 1.0)
        np.testing.assert_allclose(qubo.to_matrix(), matrix)

    def test_brute_force_minimum(self):
        qubo = QuboBuilder(2).add_linear(0, -1.0).add_linear(1, 2.0).add_quadratic(0, 1, 3.0).build()
        assert qubo.brute_force_minimum() == ([1, 0], -1.0)

    def test_ising_energies_match(self):
        """x = (1 - z) / 2 gives identical energies for every assignment."""
        qubo = QuboHamiltonian(3, linear={0: 2.0, 1: -1.0}, quadratic={(0, 2): 4.0, (1, 2): -2.0}, offset=1.0)
        ising = qubo.to_ising()

        for bits in all_assignments(3):
            spins = [1 - 2 * b for b in bits]
            assert ising.energy(spins) == pytest.approx(qubo.evaluate(bits))


class TestQuboBuilder:
    """Test penalty construction."""

    def test_equality_constraint(self):
        qubo = QuboBuilder(3).add_equality_constraint([0, 1, 2], 1, weight=5.0).build()

        for bits in all_assignments(3):
            expected = 5.0 * (sum(bits) - 1) ** 2
            assert qubo.evaluate(bits) == pytest.approx(expected)

    def test_weighted_equality_constraint(self):
        qubo = QuboBuilder(2).add_equality_constraint([0, 1], 0, weight=1.0, coefficients=[1.0, -1.0]).build()

        assert qubo.evaluate([1, 1]) == pytest.approx(0.0)
        assert qubo.evaluate([1, 0]) == pytest.approx(1.0)

    def test_at_most_one_constraint(self):
        qubo = QuboBuilder(3).add_at_most_one_constraint([0, 1, 2], weight=2.0).build()

        for bits in all_assignments(3):
            assert (qubo.evaluate(bits) == 0.0) == (sum(bits) <= 1)

    def test_at_most_constraint_with_slack(self):
        builder = QuboBuilder(4)
        builder.add_at_most_constraint([0, 1, 2, 3], limit=2, weight=3.0)
        qubo = builder.build()

        assert qubo.num_variables == 6
        for bits in all_assignments(4):
            best = min(qubo.evaluate(bits + slack) for slack in all_assignments(2))
            if sum(bits) <= 2:
                assert best == pytest.approx(0.0)
            else:
                assert best > 0.0

    def test_builder_failure(self):
        with pytest.raises(InvalidArgumentError, match="undefined"):
            QuboBuilder(2).add_linear(2, 1.0)

        with pytest.raises(InvalidArgumentError, match="non-negative"):
            QuboBuilder(2).add_equality_constraint([0, 1], 1, weight=-1.0)


class TestMaxCutProblem:
    """Test the MaxCut reference problem."""

    @pytest.fixture
    def triangle(self):
        return MaxCutProblem.from_edges([(0, 1, 1.0), (1, 2, 1.0), (2, 0, 1.0)])

    def test_triangle(self, triangle):
        assert triangle.calculate_cost([0, 1, 0]) == -2.0
        assert triangle.cut_value([0, 0, 0]) == 0.0
        assert triangle.get_optimal_solution_brute_force() == ([1, 0, 0], 2.0)

    def test_hamiltonian_equals_negative_cut(self, triangle):
        qubo = triangle.to_hamiltonian()
        for bits in all_assignments(3):
            assert qubo.evaluate(bits) == pytest.approx(triangle.calculate_cost(bits))

    def test_generate(self):
        problem = MaxCutProblem(num_nodes=6)
        problem.generate(seed=42, edge_probability=0.3)

        assert problem.is_generated
        assert nx.is_connected(problem.to_graph())
        assert all(1.0 <= w <= 10.0 for w in problem.edge_weights.values())
        metadata = problem.get_metadata()
        assert metadata["problem_type"] == "maxcut"
        assert metadata["is_connected"] is True

    def test_failure(self):
        with pytest.raises(InvalidArgumentError, match="at least 2"):
            MaxCutProblem(num_nodes=1)

        with pytest.raises(InvalidArgumentError, match="Self-loop"):
            MaxCutProblem.from_edges([(0, 0, 1.0)])

        with pytest.raises(InvalidArgumentError, match="Self-loop"):
            MaxCutProblem.from_edges([(0, 1, 1.0), (2, 2, 1.0)])

        with pytest.raises(ValueError, match="not generated"):
            MaxCutProblem(num_nodes=3).to_hamiltonian()

        problem = MaxCutProblem(num_nodes=3)
        with pytest.raises(InvalidArgumentError, match="edge_probability"):
            problem.generate(edge_probability=1.5)


class TestNetworkFlowProblem:
    """Test the network flow encoder."""

    def test_graph_roles(self, supply_chain):
        graph = supply_chain.to_graph()
        assert graph.nodes["S1"]["role"] == "source"
        assert graph.nodes["C2"]["role"] == "sink"
        assert graph["S2"]["C2"]["cost"] == 8.0
        assert supply_chain.penalty_weight == 46.0

    def test_brute_force_selects_cheapest_feasible(self, supply_chain):
        bits, value = supply_chain.to_hamiltonian().brute_force_minimum()

        assert bits == [1, 0, 0, 1]
        assert value == pytest.approx(18.0)
        assert supply_chain.validate_solution(bits)
        assert supply_chain.calculate_cost(bits) == 18.0

    def test_partial_solution_quality(self, supply_chain):
        quality = supply_chain.evaluate_solution([1, 0, 0, 0])

        assert quality.feasible is False
        assert quality.fill_rate == pytest.approx(0.5)
        assert quality.cost == 10.0

    def test_zero_demand_is_fully_filled(self):
        """With nothing demanded the empty routing is feasible and complete."""
        problem = NetworkFlowProblem(
            sources=["S"], sinks=["T"], edges=[("S", "T", 1)], demands={"T": 0}
        )
        quality = problem.evaluate_solution([0])

        assert quality.feasible is True
        assert quality.fill_rate == 1.0
        assert quality.cost == 0.0

    def test_over_supply_is_infeasible(self, supply_chain):
        assert supply_chain.validate_solution([1, 1, 0, 0]) is False
        assert supply_chain.demand_satisfied([1, 1, 1, 1]) == 2.0

    def test_intermediate_conservation(self):
        problem = NetworkFlowProblem(
            sources=["S"],
            sinks=["T"],
            edges=[("S", "M", 1), ("M", "T", 1), ("S", "T", 5)],
        )
        assert problem.intermediate_nodes == ["M"]
        assert problem.to_hamiltonian().brute_force_minimum()[0] == [1, 1, 0]
        assert problem.validate_solution([0, 1, 0]) is False

    def test_slack_variables_are_stripped(self):
        problem = NetworkFlowProblem(
            sources=["S"],
            sinks=["A", "B", "C"],
            edges=[("S", "A", 1), ("S", "B", 2), ("S", "C", 3)],
            demands={"A": 1, "B": 1, "C": 0},
            supplies={"S": 2},
        )
        qubo = problem.to_hamiltonian()

        assert qubo.num_variables > problem.problem_size
        assert problem.decision_variables([1, 1, 0, 1, 0]) == [1, 1, 0]

    def test_failure(self):
        with pytest.raises(InvalidArgumentError, match="no edges"):
            NetworkFlowProblem(sources=["S"], sinks=["T"], edges=[])

        with pytest.raises(InvalidArgumentError, match="both source and sink"):
            NetworkFlowProblem(sources=["S"], sinks=["S"], edges=[("S", "S", 1)])

        with pytest.raises(InvalidArgumentError, match="unknown sink"):
            NetworkFlowProblem(sources=["S"], sinks=["T"], edges=[("S", "T", 1)], demands={"X": 1})

        with pytest.raises(InvalidArgumentError, match="Duplicate edge"):
            NetworkFlowProblem(sources=["S"], sinks=["T"], edges=[("S", "T", 1), ("S", "T", 2)])


class TestQaoaSolver:
    """Test QAOA circuit construction, optimization and decoding."""

    @pytest.fixture
    def trivial_qubo(self):
        """Unique optimum x = [0, 1]."""
        return QuboHamiltonian(2, linear={0: 1.0, 1: -1.0})

    def test_build_circuit(self, trivial_qubo):
        solver = QaoaSolver(backend=LocalBackend(), layers=2, seed=0)
        ising = solver.normalized_ising(trivial_qubo)
        circuit = solver.build_circuit(ising, [0.1, 0.2, 0.3, 0.4])

        assert ising.max_coefficient == pytest.approx(1.0)
        assert circuit.count_ops() == {"H": 2, "RZ": 4, "RX": 4}

        with pytest.raises(InvalidArgumentError, match="Expected 4 angles"):
            solver.build_circuit(ising, [0.1, 0.2])

    def test_expected_cost_at_zero_angles(self, trivial_qubo):
        """Zero angles leave the uniform superposition: the mean objective."""
        solver = QaoaSolver(backend=LocalBackend(), layers=1)
        value = solver.expected_cost(trivial_qubo, [0.0, 0.0])
        assert value == pytest.approx(np.mean(trivial_qubo.evaluate_all()))

    def test_initial_angles_in_range(self):
        solver = QaoaSolver(backend=LocalBackend(), layers=3, seed=4)
        angles = solver.initial_angles(0)

        assert angles.shape == (6,)
        assert np.all((angles[0::2] >= 0) & (angles[0::2] <= np.pi / 2))
        assert np.all((angles[1::2] >= 0) & (angles[1::2] <= np.pi / 4))
        np.testing.assert_array_equal(angles, solver.initial_angles(0))

    @pytest.mark.parametrize("layers", [1, 2, 3])
    def test_decodes_trivial_optimum(self, trivial_qubo, layers):
        solver = QaoaSolver(backend=LocalBackend(), layers=layers, shots=1000, seed=5)
        result = solver.solve(trivial_qubo)

        assert result.solution == [0, 1]
        assert result.bitstring == "10"
        assert result.objective == pytest.approx(-1.0)
        assert result.num_layers == layers
        assert len(result.angles) == 2 * layers
        assert result.evaluations == len(result.expectation_history)
        assert result.expectation <= np.mean(trivial_qubo.evaluate_all()) + 1e-9
        assert result.status in (QaoaStatus.CONVERGED, QaoaStatus.MAX_ITERATIONS)

    def test_supply_chain_routing(self, supply_chain):
        """The cheapest compatible edges (S1,C1)=10 and (S2,C2)=8 are selected."""
        solver = QaoaSolver(backend=LocalBackend(), layers=2, shots=2000, num_starts=2, seed=7)
        result = solver.solve_problem(supply_chain)

        assert result.solution == [1, 0, 0, 1]
        assert result.feasible is True
        assert result.fill_rate == pytest.approx(1.0)
        assert supply_chain.calculate_cost(result.solution) == 18.0
        assert result.objective == pytest.approx(18.0)
        assert result.candidates[0].solution[:4] == [1, 0, 0, 1]

    def test_maxcut_square(self):
        problem = MaxCutProblem.from_edges([(0, 1, 1.0), (1, 2, 1.0), (2, 3, 1.0), (3, 0, 1.0)])
        result = QaoaSolver(backend=LocalBackend(), layers=2, shots=1000, seed=3).solve_problem(problem)

        assert problem.cut_value(result.solution) == 4.0
        assert result.feasible is True
        assert result.fill_rate is None

    def test_partial_fill_rate_reported(self, trivial_qubo):
        """Low fill rates are attributes on the result, never exceptions."""
        solver = QaoaSolver(backend=LocalBackend(), layers=1, seed=2)
        result = solver.solve(trivial_qubo, quality_fn=lambda bits: SolutionQuality(feasible=False, fill_rate=0.5))

        assert result.feasible is False
        assert result.fill_rate == 0.5

    def test_cancellation_returns_best_so_far(self, trivial_qubo):
        token = CancellationToken()
        token.cancel()
        solver = QaoaSolver(backend=LocalBackend(), layers=1, shots=500, seed=1)

        result = solver.solve(trivial_qubo, cancel_token=token, initial_angles=[0.3, 0.2])

        assert result.cancelled is True
        assert result.status == QaoaStatus.CANCELLED
        assert result.converged is False
        assert result.evaluations == 1
        assert result.angles == pytest.approx([0.3, 0.2])
        assert result.distribution.shots == 500

    def test_solve_failure(self, trivial_qubo):
        solver = QaoaSolver(backend=LocalBackend(), layers=1)

        with pytest.raises(InvalidArgumentError, match="initial angles"):
            solver.solve(trivial_qubo, initial_angles=[0.1, 0.2, 0.3])

        with pytest.raises(InvalidArgumentError, match="QuboHamiltonian"):
            solver.solve({0: 1.0})

        with pytest.raises(InvalidArgumentError, match="layers"):
            QaoaSolver(backend=LocalBackend(), layers=0)


class TestQaoaStrategies:
    """Test initialization schemes, trial organisation and angle bounds."""

    @pytest.fixture
    def trivial_qubo(self):
        return QuboHamiltonian(2, linear={0: 1.0, 1: -1.0})

    @staticmethod
    def scripted_minimize(solver, monkeypatch, converges):
        """Replace the scipy call with one evaluation and a fixed verdict."""
        budgets = []

        def fake_minimize(objective, x0, max_iterations):
            budgets.append(max_iterations)
            value = objective(np.asarray(x0, dtype=float))
            return SimpleNamespace(success=converges, x=np.asarray(x0, dtype=float), fun=value)

        monkeypatch.setattr(solver, "_minimize", fake_minimize)
        return budgets

    def test_random_uniform_range(self):
        solver = QaoaSolver(backend=LocalBackend(), layers=4, seed=2, init_strategy="random_uniform")
        angles = solver.initial_angles(0)

        assert solver.init_strategy == InitializationStrategy.RANDOM_UNIFORM
        assert np.all((angles >= 0) & (angles <= np.pi))

    def test_ramp_is_deterministic(self):
        solver = QaoaSolver(backend=LocalBackend(), layers=2, init_strategy=InitializationStrategy.RAMP)
        angles = solver.initial_angles(0)

        np.testing.assert_allclose(angles, [np.pi / 4, 0.075 * np.pi, np.pi / 2, 0.15 * np.pi])
        np.testing.assert_array_equal(angles, solver.initial_angles(5))

    def test_previous_optimal(self):
        solver = QaoaSolver(backend=LocalBackend(), layers=2, init_strategy="previous_optimal")

        np.testing.assert_allclose(solver.initial_angles(0), [0.5, 0.3, 0.5, 0.3])
        np.testing.assert_allclose(
            solver.initial_angles(3, previous=[0.1, 0.2, 0.3, 0.4]), [0.1, 0.2, 0.3, 0.4]
        )
        with pytest.raises(InvalidArgumentError, match="previous angles"):
            solver.initial_angles(0, previous=[0.1])

    def test_previous_optimal_warm_starts_every_trial(self, trivial_qubo, monkeypatch):
        solver = QaoaSolver(
            backend=LocalBackend(), layers=1, num_starts=3, init_strategy="previous_optimal"
        )
        starts = []
        original = solver.expected_cost

        def spy(hamiltonian, angles, **kwargs):
            starts.append(list(angles))
            return original(hamiltonian, angles, **kwargs)

        monkeypatch.setattr(solver, "expected_cost", spy)
        self.scripted_minimize(solver, monkeypatch, converges=True)
        solver.solve(trivial_qubo, initial_angles=[0.7, 0.1])

        assert starts == [[0.7, 0.1]] * 3

    def test_single_run_ignores_num_starts(self, trivial_qubo, monkeypatch):
        solver = QaoaSolver(
            backend=LocalBackend(), layers=1, num_starts=4, max_iterations=30,
            strategy="single_run", seed=1,
        )
        budgets = self.scripted_minimize(solver, monkeypatch, converges=True)
        result = solver.solve(trivial_qubo)

        assert budgets == [30]
        assert result.evaluations == 1
        assert result.status == QaoaStatus.CONVERGED

    def test_multi_start_runs_every_start(self, trivial_qubo, monkeypatch):
        solver = QaoaSolver(backend=LocalBackend(), layers=1, num_starts=3, max_iterations=30, seed=1)
        budgets = self.scripted_minimize(solver, monkeypatch, converges=False)
        result = solver.solve(trivial_qubo)

        assert solver.strategy == OptimizationStrategy.MULTI_START
        assert budgets == [30, 30, 30]
        assert result.evaluations == 3
        assert result.status == QaoaStatus.MAX_ITERATIONS

    @pytest.mark.parametrize("converges,expected_runs", [(True, 1), (False, 4)])
    def test_adaptive_falls_back_to_multi_start(self, trivial_qubo, monkeypatch, converges, expected_runs):
        """A stalled first run triggers three fresh starts, each on half the budget."""
        solver = QaoaSolver(
            backend=LocalBackend(), layers=1, max_iterations=40, strategy="adaptive", seed=3
        )
        budgets = self.scripted_minimize(solver, monkeypatch, converges=converges)
        result = solver.solve(trivial_qubo)

        assert budgets == [20] * expected_runs
        assert result.evaluations == expected_runs
        assert result.converged is converges

    def test_layer_by_layer_freezes_earlier_layers(self, trivial_qubo, monkeypatch):
        solver = QaoaSolver(
            backend=LocalBackend(), layers=2, shots=1000, max_iterations=60,
            strategy=OptimizationStrategy.LAYER_BY_LAYER, seed=5,
        )
        calls = []
        original = solver.expected_cost

        def spy(hamiltonian, angles, **kwargs):
            calls.append(np.array(angles, dtype=float))
            return original(hamiltonian, angles, **kwargs)

        monkeypatch.setattr(solver, "expected_cost", spy)
        result = solver.solve(trivial_qubo)

        # First layer is fitted while the second one is still the identity
        np.testing.assert_array_equal(calls[0][2:], [0.0, 0.0])
        second_layer = next(i for i, angles in enumerate(calls) if np.any(angles[2:] != 0.0))
        for angles in calls[second_layer:]:
            np.testing.assert_array_equal(angles[:2], calls[second_layer][:2])

        assert result.evaluations == len(calls) == len(result.expectation_history)
        assert result.solution == [0, 1]
        assert len(result.angles) == 4

    def test_bounds_respected(self, trivial_qubo):
        bounds = ParameterBounds(gamma_min=0.0, gamma_max=1.0, beta_min=0.0, beta_max=0.5)
        solver = QaoaSolver(
            backend=LocalBackend(), layers=2, optimizer="Powell", bounds=bounds, seed=4,
            init_strategy="random_uniform",
        )
        result = solver.solve(trivial_qubo)

        angles = np.array(result.angles)
        assert np.all((angles[0::2] >= 0.0) & (angles[0::2] <= 1.0 + 1e-12))
        assert np.all((angles[1::2] >= 0.0) & (angles[1::2] <= 0.5 + 1e-12))
        assert result.solution == [0, 1]

    def test_bounds_helpers(self):
        bounds = ParameterBounds()

        assert bounds.for_layers(2) == [(0.0, np.pi), (0.0, np.pi / 2)] * 2
        np.testing.assert_allclose(bounds.clip([4.0, -1.0, 1.0, 1.0]), [np.pi, 0.0, 1.0, 1.0])

    def test_strategy_failure(self):
        with pytest.raises(InvalidArgumentError, match="min < max"):
            ParameterBounds(gamma_min=1.0, gamma_max=1.0)

        with pytest.raises(InvalidArgumentError, match="finite"):
            ParameterBounds(beta_max=float("inf"))

        with pytest.raises(InvalidArgumentError, match="Unknown QAOA strategy"):
            QaoaSolver(backend=LocalBackend(), strategy="annealing")

        with pytest.raises(InvalidArgumentError, match="ParameterBounds"):
            QaoaSolver(backend=LocalBackend(), bounds=(0.0, 1.0))
