"""
QAOA Solver for QUBO problems in quantumcore.

The Quantum Approximate Optimization Algorithm is a hybrid loop:

    QUANTUM PART (backend):
        |ψ(γ, β)⟩ = Π_k [ U_M(β_k) U_C(γ_k) ] H^n |0...0⟩
        E(γ, β)   = Σ_x P(x) f(x)        expected QUBO objective

    CLASSICAL PART (scipy.optimize.minimize):
        propose new (γ, β) from E, repeat until converged or out of budget

    DECODING:
        sample the final state, score every sampled bitstring with the
        classical QUBO, keep the best

Circuit
-------
The QUBO is converted to Ising form H = Σ hᵢZᵢ + Σ JᵢⱼZᵢZⱼ and the
coefficients are divided by their largest magnitude, so one γ range works
for any problem scale:

    Cost layer   U_C(γ):  RZ(2γ·hᵢ) on each qubit i
                          CNOT(i,j) · RZ_j(2γ·Jᵢⱼ) · CNOT(i,j) per coupling
    Mixer layer  U_M(β):  RX(2β) on each qubit

Angles are laid out [γ₁, β₁, γ₂, β₂, ..., γₚ, βₚ].

Optimization
------------
COBYLA (derivative-free) by default. The OptimizationStrategy decides how
trials are organised:

    SINGLE_RUN      one trial over all 2p angles
    MULTI_START     num_starts trials, run concurrently in a thread pool
    LAYER_BY_LAYER  optimize (γₖ, βₖ) one layer at a time with earlier
                    layers frozen and later ones at zero (identity), each
                    layer getting max_iterations // p of the budget
    ADAPTIVE        one run on half the budget; if it does not converge,
                    three fresh starts on the other half

Starting angles follow the InitializationStrategy; optional ParameterBounds
box every angle. The best angles seen across every evaluation of every
trial are kept. A CancellationToken stops all trials at their next
evaluation and the solver decodes from the best angles found so far.

Example:
    >>> qubo = QuboHamiltonian(2, linear={0: 1.0, 1: -1.0})
    >>> result = QaoaSolver(layers=1, seed=5).solve(qubo)
    >>> result.solution
    [0, 1]
"""

from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass, field
from enum import Enum
from typing import Callable, Dict, List, Optional, Sequence, Tuple, Union
import logging
import math
import threading

import numpy as np
from scipy.optimize import minimize

from quantumcore.backends.backend_base import BackendBase
from quantumcore.backends.registry import resolve_backend
from quantumcore.cancellation import CancellationToken
from quantumcore.circuits import gates
from quantumcore.circuits.circuit import Circuit, hadamard_layer
from quantumcore.config import settings
from quantumcore.exceptions import InvalidArgumentError
from quantumcore.problems.problem_base import ProblemBase, SolutionQuality
from quantumcore.qaoa.qubo import IsingHamiltonian, QuboHamiltonian
from quantumcore.simulator.measurement import ShotDistribution, bitstring_to_bits

logger = logging.getLogger(__name__)

# Initial angle ranges for random starts (normalized cost Hamiltonian)
GAMMA_RANGE = (0.0, math.pi / 2)
BETA_RANGE = (0.0, math.pi / 4)


class QaoaStatus(Enum):
    CONVERGED = "converged"
    MAX_ITERATIONS = "max_iterations"
    CANCELLED = "cancelled"


class InitializationStrategy(Enum):
    """How a trial's starting angles are chosen."""
    RANDOM_UNIFORM = "random_uniform"       # γ, β uniform in [0, π]
    STANDARD = "standard"                   # γ in [0, π/2], β in [0, π/4]
    RAMP = "ramp"                           # deterministic, angles grow with layer index
    PREVIOUS_OPTIMAL = "previous_optimal"   # warm start from caller-supplied angles


class OptimizationStrategy(Enum):
    """How optimizer trials are organised."""
    SINGLE_RUN = "single_run"
    MULTI_START = "multi_start"
    LAYER_BY_LAYER = "layer_by_layer"
    ADAPTIVE = "adaptive"


# Warm-start fallback when PREVIOUS_OPTIMAL has nothing to start from
DEFAULT_WARM_ANGLES = (0.5, 0.3)

# ADAPTIVE falls back to this many fresh starts when its first run stalls
ADAPTIVE_FALLBACK_STARTS = 3


@dataclass(frozen=True)
class ParameterBounds:
    """
    Box constraints on (γ, β), shared by every layer.

    Handed to scipy.optimize.minimize as ``bounds=``. COBYLA, Nelder-Mead
    and Powell all accept simple bounds. Starting points are clipped into
    the box before each run.
    """
    gamma_min: float = 0.0
    gamma_max: float = math.pi
    beta_min: float = 0.0
    beta_max: float = math.pi / 2

    def __post_init__(self):
        values = (self.gamma_min, self.gamma_max, self.beta_min, self.beta_max)
        if not all(math.isfinite(v) for v in values):
            raise InvalidArgumentError(f"Angle bounds must be finite, got {values}")
        if self.gamma_min >= self.gamma_max or self.beta_min >= self.beta_max:
            raise InvalidArgumentError(f"Angle bounds need min < max, got {values}")

    def for_layers(self, layers: int) -> List[Tuple[float, float]]:
        return [(self.gamma_min, self.gamma_max), (self.beta_min, self.beta_max)] * layers

    def clip(self, angles: Sequence[float]) -> np.ndarray:
        angles = np.asarray(angles, dtype=float)
        low, high = np.array(self.for_layers(len(angles) // 2)).T
        return np.clip(angles, low, high)


@dataclass(frozen=True)
class QaoaCandidate:
    """A sampled bitstring scored with the classical QUBO."""
    bitstring: str
    solution: List[int]
    objective: float
    count: int


@dataclass
class QaoaResult:
    """
    Outcome of a QAOA run.

    Attributes:
        solution: Best sampled assignment [x₀, ..., xₙ₋₁]
        bitstring: The same assignment as a register bitstring
        objective: QUBO value of solution
        angles: Best angles [γ₁, β₁, ..., γₚ, βₚ]
        expectation: Expected QUBO value at angles
        expectation_history: Expected value at every evaluation of the
            winning trial, in order
        evaluations: Circuit evaluations across all trials
        converged: Whether the winning trial's optimizer reported success
        status: CONVERGED, MAX_ITERATIONS or CANCELLED
        feasible: Domain feasibility from the quality function (None if none given)
        fill_rate: Share of demand served (None if not applicable)
        distribution: Decoding samples
        num_layers: QAOA depth p
        candidates: Distinct sampled assignments, best objective first
    """
    solution: List[int]
    bitstring: str
    objective: float
    angles: List[float]
    expectation: float
    evaluations: int
    converged: bool
    status: QaoaStatus
    num_layers: int
    expectation_history: List[float] = field(default_factory=list)
    feasible: Optional[bool] = None
    fill_rate: Optional[float] = None
    distribution: Optional[ShotDistribution] = None
    candidates: List[QaoaCandidate] = field(default_factory=list)

    @property
    def cancelled(self) -> bool:
        return self.status == QaoaStatus.CANCELLED


class _Cancelled(Exception):
    """Raised inside the objective to unwind scipy when cancellation is requested."""


@dataclass
class _TrialResult:
    start: int
    best_angles: np.ndarray
    best_value: float
    history: List[float]
    evaluations: int
    converged: bool
    cancelled: bool


QualityFn = Callable[[List[int]], SolutionQuality]


class QaoaSolver:
    """
    QAOA solver over QuboHamiltonian objectives.

    Args:
        backend: Backend instance or kind (default: from settings)
        layers: QAOA depth p (default: settings.qaoa.layers)
        shots: Decoding shots (default: settings.qaoa.shots)
        optimizer: scipy method name (default: settings.qaoa.optimizer)
        max_iterations: Optimizer budget per trial
        tolerance: Optimizer stopping tolerance
        num_starts: Independent random starts
        max_workers: Thread pool size for the starts
        optimization_shots: Estimate the expectation from this many shots
            instead of exact probabilities (None = exact)
        seed: Seed for initial angles and sampling
        init_strategy: Starting angle scheme (default: settings.qaoa.init_strategy)
        strategy: Trial organisation (default: settings.qaoa.strategy)
        bounds: Optional box constraints on every (γ, β) pair
    """

    def __init__(
        self,
        backend: Union[BackendBase, str, None] = None,
        layers: Optional[int] = None,
        shots: Optional[int] = None,
        optimizer: Optional[str] = None,
        max_iterations: Optional[int] = None,
        tolerance: Optional[float] = None,
        num_starts: Optional[int] = None,
        max_workers: Optional[int] = None,
        optimization_shots: Optional[int] = None,
        seed: Optional[int] = None,
        init_strategy: Union[InitializationStrategy, str, None] = None,
        strategy: Union[OptimizationStrategy, str, None] = None,
        bounds: Optional[ParameterBounds] = None
    ):
        config = settings.qaoa
        self.backend = resolve_backend(backend)
        self.layers = config.layers if layers is None else layers
        self.shots = config.shots if shots is None else shots
        self.optimizer = config.optimizer if optimizer is None else optimizer
        self.max_iterations = config.max_iterations if max_iterations is None else max_iterations
        self.tolerance = config.tolerance if tolerance is None else tolerance
        self.num_starts = config.num_starts if num_starts is None else num_starts
        self.max_workers = config.max_workers if max_workers is None else max_workers
        self.optimization_shots = optimization_shots
        self.seed = seed
        self.bounds = bounds

        try:
            self.init_strategy = InitializationStrategy(
                config.init_strategy if init_strategy is None else init_strategy
            )
            self.strategy = OptimizationStrategy(config.strategy if strategy is None else strategy)
        except ValueError as e:
            raise InvalidArgumentError(f"Unknown QAOA strategy: {e}") from e
        if bounds is not None and not isinstance(bounds, ParameterBounds):
            raise InvalidArgumentError(f"bounds must be ParameterBounds, got {type(bounds).__name__}")

        if self.layers < 1:
            raise InvalidArgumentError(f"layers must be >= 1, got {self.layers}")
        if self.shots < 1:
            raise InvalidArgumentError(f"shots must be >= 1, got {self.shots}")
        if self.max_iterations < 1:
            raise InvalidArgumentError(f"max_iterations must be >= 1, got {self.max_iterations}")
        if self.num_starts < 1:
            raise InvalidArgumentError(f"num_starts must be >= 1, got {self.num_starts}")
        if optimization_shots is not None and optimization_shots < 1:
            raise InvalidArgumentError(f"optimization_shots must be >= 1, got {optimization_shots}")

        logger.info(
            f"QaoaSolver: p={self.layers}, optimizer={self.optimizer}, "
            f"strategy={self.strategy.value}, init={self.init_strategy.value}, "
            f"starts={self.num_starts}, backend={self.backend.name}"
        )

    # =========================================================================
    # Circuit construction
    # =========================================================================

    @staticmethod
    def normalized_ising(hamiltonian: QuboHamiltonian) -> IsingHamiltonian:
        """Ising form with coefficients scaled so the largest |h| or |J| is 1."""
        ising = hamiltonian.to_ising()
        scale = ising.max_coefficient
        if scale == 0.0:
            return ising
        return IsingHamiltonian(
            num_qubits=ising.num_qubits,
            fields={i: h / scale for i, h in ising.fields.items()},
            couplings={k: j / scale for k, j in ising.couplings.items()},
            offset=ising.offset / scale,
        )

    def build_circuit(self, ising: IsingHamiltonian, angles: Sequence[float]) -> Circuit:
        """QAOA ansatz for already-normalized Ising coefficients."""
        if len(angles) != 2 * self.layers:
            raise InvalidArgumentError(
                f"Expected {2 * self.layers} angles for p={self.layers}, got {len(angles)}"
            )
        n = ising.num_qubits
        circuit_gates = list(hadamard_layer(n).gates)
        for layer in range(self.layers):
            gamma, beta = float(angles[2 * layer]), float(angles[2 * layer + 1])

            for i, h in ising.fields.items():
                circuit_gates.append(gates.rz(i, 2.0 * gamma * h))
            for (i, j), coupling in ising.couplings.items():
                circuit_gates.append(gates.cnot(i, j))
                circuit_gates.append(gates.rz(j, 2.0 * gamma * coupling))
                circuit_gates.append(gates.cnot(i, j))

            for q in range(n):
                circuit_gates.append(gates.rx(q, 2.0 * beta))
        return Circuit(n, tuple(circuit_gates))

    # =========================================================================
    # Cost evaluation
    # =========================================================================

    def expected_cost(
        self,
        hamiltonian: QuboHamiltonian,
        angles: Sequence[float],
        seed: Optional[int] = None,
        _ising: Optional[IsingHamiltonian] = None,
        _values: Optional[np.ndarray] = None
    ) -> float:
        """
        Expected QUBO objective of the QAOA state at the given angles.

        Exact (Σ P(x)·f(x)) when the backend exposes probabilities and
        optimization_shots is None, otherwise estimated from samples.
        """
        ising = _ising if _ising is not None else self.normalized_ising(hamiltonian)
        circuit = self.build_circuit(ising, angles)
        handle = self.backend.execute(circuit)

        if self.optimization_shots is None and self.backend.supports_exact_probabilities:
            values = _values if _values is not None else hamiltonian.evaluate_all()
            return float(np.dot(self.backend.probabilities(handle), values))

        shots = self.optimization_shots or self.shots
        distribution = self.backend.run_shots(handle, shots, seed=seed)
        total = sum(
            count * hamiltonian.evaluate(bitstring_to_bits(bitstring))
            for bitstring, count in distribution.counts.items()
        )
        return total / distribution.shots

    def initial_angles(
        self,
        start: int,
        layers: Optional[int] = None,
        previous: Optional[Sequence[float]] = None
    ) -> np.ndarray:
        """
        Starting angles for one trial under the configured InitializationStrategy.

        Random schemes draw from seed + start. RAMP is deterministic:
        γₖ = (π/2)·(k+1)/p and βₖ = 0.15π·(k+1)/p. PREVIOUS_OPTIMAL returns
        ``previous``, or 0.5/0.3 per layer when nothing was supplied.
        """
        p = self.layers if layers is None else layers
        angles = np.empty(2 * p)
        rng = np.random.default_rng(None if self.seed is None else self.seed + start)

        if self.init_strategy == InitializationStrategy.RANDOM_UNIFORM:
            angles[0::2] = rng.uniform(0.0, math.pi, size=p)
            angles[1::2] = rng.uniform(0.0, math.pi, size=p)
        elif self.init_strategy == InitializationStrategy.STANDARD:
            angles[0::2] = rng.uniform(*GAMMA_RANGE, size=p)
            angles[1::2] = rng.uniform(*BETA_RANGE, size=p)
        elif self.init_strategy == InitializationStrategy.RAMP:
            factors = np.arange(1, p + 1) / p
            angles[0::2] = 0.5 * math.pi * factors
            angles[1::2] = 0.15 * math.pi * factors
        elif previous is not None:
            if len(previous) != 2 * p:
                raise InvalidArgumentError(f"Expected {2 * p} previous angles, got {len(previous)}")
            angles[:] = np.asarray(previous, dtype=float)
        else:
            angles[0::2], angles[1::2] = DEFAULT_WARM_ANGLES
        return angles

    # =========================================================================
    # Solve
    # =========================================================================

    def solve(
        self,
        hamiltonian: QuboHamiltonian,
        quality_fn: Optional[QualityFn] = None,
        cancel_token: Optional[CancellationToken] = None,
        initial_angles: Optional[Sequence[float]] = None
    ) -> QaoaResult:
        """
        Minimize a QUBO with QAOA.

        Args:
            hamiltonian: Objective to minimize
            quality_fn: Optional domain judge for the decoded assignment
            cancel_token: Cooperative cancellation
            initial_angles: Starting angles for the first trial

        Returns:
            QaoaResult; low fill rates and non-convergence are reported in the
            result, never raised

        Raises:
            InvalidArgumentError: On malformed angles or configuration
            CapacityExceededError: If the register is too large to simulate
        """
        if not isinstance(hamiltonian, QuboHamiltonian):
            raise InvalidArgumentError(f"Expected a QuboHamiltonian, got {type(hamiltonian).__name__}")
        if initial_angles is not None and len(initial_angles) != 2 * self.layers:
            raise InvalidArgumentError(
                f"Expected {2 * self.layers} initial angles for p={self.layers}, got {len(initial_angles)}"
            )

        # Fail fast before spawning trials
        self.backend.initialize(hamiltonian.num_variables)

        ising = self.normalized_ising(hamiltonian)
        values = hamiltonian.evaluate_all() if self.optimization_shots is None else None

        logger.info(
            f"Starting QAOA: {hamiltonian.num_variables} qubits, "
            f"{len(ising.fields)} fields, {len(ising.couplings)} couplings"
        )

        def start_angles(start):
            # Caller angles seed the first trial; PREVIOUS_OPTIMAL warm-starts every trial
            if initial_angles is not None and start == 0:
                return np.asarray(initial_angles, dtype=float)
            return self.initial_angles(start, previous=initial_angles)

        def run(start, budget=self.max_iterations):
            return self._run_trial(
                hamiltonian, ising, values, start, start_angles(start), cancel_token, budget
            )

        if self.strategy == OptimizationStrategy.SINGLE_RUN:
            trials = [run(0)]
        elif self.strategy == OptimizationStrategy.MULTI_START:
            trials = self._run_parallel(run, range(self.num_starts))
        elif self.strategy == OptimizationStrategy.LAYER_BY_LAYER:
            trials = [self._run_trial(
                hamiltonian, ising, values, 0, np.zeros(2 * self.layers), cancel_token,
                self.max_iterations, layer_by_layer=True, previous=initial_angles,
            )]
        else:
            budget = max(1, self.max_iterations // 2)
            trials = [run(0, budget)]
            if not trials[0].converged and not trials[0].cancelled:
                logger.info(
                    f"QAOA adaptive: first run did not converge, trying "
                    f"{ADAPTIVE_FALLBACK_STARTS} fresh starts"
                )
                fallback = range(1, ADAPTIVE_FALLBACK_STARTS + 1)
                trials += self._run_parallel(lambda start: run(start, budget), fallback)

        best = min(trials, key=lambda t: t.best_value)
        evaluations = sum(t.evaluations for t in trials)
        if any(t.cancelled for t in trials):
            status = QaoaStatus.CANCELLED
        elif best.converged:
            status = QaoaStatus.CONVERGED
        else:
            status = QaoaStatus.MAX_ITERATIONS

        if status == QaoaStatus.MAX_ITERATIONS:
            logger.warning(f"QAOA did not converge within {self.max_iterations} iterations")
        logger.info(
            f"QAOA optimization finished: status={status.value}, best expectation "
            f"{best.best_value:.6f} (trial {best.start}), {evaluations} evaluations"
        )

        return self._decode(hamiltonian, ising, best, evaluations, status, quality_fn)

    def solve_problem(
        self,
        problem: ProblemBase,
        cancel_token: Optional[CancellationToken] = None,
        initial_angles: Optional[Sequence[float]] = None
    ) -> QaoaResult:
        """Solve a reference problem, reporting its feasibility and fill rate."""
        result = self.solve(
            problem.to_hamiltonian(),
            quality_fn=problem.evaluate_solution,
            cancel_token=cancel_token,
            initial_angles=initial_angles,
        )
        result.solution = problem.decision_variables(result.solution)
        return result

    def _run_trial(
        self,
        hamiltonian: QuboHamiltonian,
        ising: IsingHamiltonian,
        values: Optional[np.ndarray],
        start: int,
        x0: np.ndarray,
        cancel_token: Optional[CancellationToken],
        max_iterations: int,
        layer_by_layer: bool = False,
        previous: Optional[Sequence[float]] = None
    ) -> _TrialResult:
        history: List[float] = []
        best = {'value': math.inf, 'angles': x0.copy()}
        lock = threading.Lock()
        sample_seed = None if self.seed is None else self.seed + 1000 + start

        def objective(angles):
            if history and cancel_token is not None and cancel_token.is_cancelled:
                raise _Cancelled()
            value = self.expected_cost(hamiltonian, angles, seed=sample_seed, _ising=ising, _values=values)
            with lock:
                history.append(value)
                if value < best['value']:
                    best['value'] = value
                    best['angles'] = np.array(angles, dtype=float)
            logger.debug(f"QAOA trial {start} eval {len(history)}: E={value:+.6f} best={best['value']:+.6f}")
            return value

        converged = False
        cancelled = False
        try:
            if layer_by_layer:
                converged = self._optimize_layers(objective, start, previous)
            else:
                converged = bool(self._minimize(objective, x0, max_iterations).success)
        except _Cancelled:
            cancelled = True
            logger.warning(f"QAOA trial {start} cancelled after {len(history)} evaluations")

        return _TrialResult(
            start=start,
            best_angles=best['angles'],
            best_value=best['value'],
            history=history,
            evaluations=len(history),
            converged=converged,
            cancelled=cancelled,
        )

    def _minimize(self, objective: Callable[[np.ndarray], float], x0: np.ndarray, max_iterations: int):
        kwargs = {}
        if self.bounds is not None:
            kwargs['bounds'] = self.bounds.for_layers(len(x0) // 2)
            x0 = self.bounds.clip(x0)
        return minimize(
            objective,
            x0,
            method=self.optimizer,
            tol=self.tolerance,
            options={'maxiter': max_iterations},
            **kwargs
        )

    def _optimize_layers(
        self,
        objective: Callable[[np.ndarray], float],
        start: int,
        previous: Optional[Sequence[float]]
    ) -> bool:
        """Fit one (γ, β) pair at a time; layers not yet reached stay at zero."""
        angles = np.zeros(2 * self.layers)
        budget = max(1, self.max_iterations // self.layers)
        converged = True

        for layer in range(self.layers):
            window = slice(2 * layer, 2 * layer + 2)
            if previous is not None:
                angles[window] = np.asarray(previous, dtype=float)[window]
            else:
                angles[window] = self.initial_angles(start + layer + 1, layers=1)

            def layer_objective(pair):
                full = angles.copy()
                full[window] = pair
                return objective(full)

            result = self._minimize(layer_objective, angles[window].copy(), budget)
            angles[window] = result.x
            converged = converged and bool(result.success)
            logger.debug(
                f"QAOA layer {layer + 1}/{self.layers}: gamma={result.x[0]:.4f}, "
                f"beta={result.x[1]:.4f}, E={float(result.fun):+.6f}"
            )
        return converged

    def _run_parallel(self, run: Callable[[int], _TrialResult], starts) -> List[_TrialResult]:
        starts = list(starts)
        if len(starts) == 1:
            return [run(starts[0])]
        with ThreadPoolExecutor(max_workers=self.max_workers) as executor:
            return list(executor.map(run, starts))

    def _decode(
        self,
        hamiltonian: QuboHamiltonian,
        ising: IsingHamiltonian,
        trial: _TrialResult,
        evaluations: int,
        status: QaoaStatus,
        quality_fn: Optional[QualityFn]
    ) -> QaoaResult:
        circuit = self.build_circuit(ising, trial.best_angles)
        handle = self.backend.execute(circuit, seed=self.seed)
        distribution = self.backend.run_shots(handle, self.shots, seed=self.seed)

        candidates = []
        for bitstring, count in distribution.counts.items():
            bits = bitstring_to_bits(bitstring)
            candidates.append(QaoaCandidate(
                bitstring=bitstring,
                solution=bits,
                objective=hamiltonian.evaluate(bits),
                count=count,
            ))
        candidates.sort(key=lambda c: (c.objective, -c.count, c.bitstring))
        best = candidates[0]

        feasible = None
        fill_rate = None
        if quality_fn is not None:
            quality = quality_fn(best.solution)
            feasible, fill_rate = quality.feasible, quality.fill_rate
            if not feasible or (fill_rate is not None and fill_rate < 1.0):
                fill_text = "n/a" if fill_rate is None else f"{fill_rate:.0%}"
                logger.warning(
                    f"QAOA returned a partial solution: feasible={feasible}, fill rate={fill_text}"
                )

        logger.info(
            f"QAOA decoded {len(candidates)} distinct bitstrings from {distribution.shots} shots; "
            f"best {best.bitstring} objective {best.objective:.6f}"
        )

        return QaoaResult(
            solution=list(best.solution),
            bitstring=best.bitstring,
            objective=best.objective,
            angles=[float(a) for a in trial.best_angles],
            expectation=trial.best_value,
            expectation_history=list(trial.history),
            evaluations=evaluations,
            converged=trial.converged and status != QaoaStatus.CANCELLED,
            status=status,
            num_layers=self.layers,
            feasible=feasible,
            fill_rate=fill_rate,
            distribution=distribution,
            candidates=candidates,
        )
