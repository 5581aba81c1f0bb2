"""
Grover Search Driver for quantumcore.

Amplitude amplification over an indexed candidate set. The caller supplies an
oracle that judges one candidate at a time; the driver evaluates it
classically on every real candidate, compiles a phase oracle for the marked
positions, runs the optimal number of Grover iterations on a backend, and
interprets the measured distribution.

Candidate Encoding
------------------
Candidates are indexed 0..N-1 and encoded as basis states of
n = ceil(log2 N) qubits. When N is not a power of two the register is padded
to 2^n states; padding positions are never evaluated by the oracle and never
marked, so they can only appear as measurement noise.

The oracle receives the candidate's bitstring (n characters, qubit n-1
first, i.e. format(position, "0{n}b")) and may return:

    bool                    -> marked or not
    int / float             -> a score; every candidate reaching
                               score_threshold (default: the best score)
                               is marked
    OracleVerdict(m, score) -> explicit decision plus a score for ranking

Circuit Structure
-----------------
    H^n  ->  [ Oracle  ->  Diffusion ] x k  ->  measure

    Oracle     (per marked state b): X on qubits where b has a 0,
               MCZ over all qubits, same X again  => phase -1 on |b>
    Diffusion  H^n X^n MCZ X^n H^n                 => 2|s><s| - I

k = floor(pi/4 * sqrt(N_padded / M)), where M is the expected number of
matches (caller hint, else the number of marked candidates, else 1).

Classical Short Circuit
-----------------------
If the caller passes a precheck that already knows the answer, or N <= 1,
no circuit is built: the result has iterations == 0 and
solved_classically == True.

Example:
    >>> search = GroverSearch(seed=11)
    >>> result = search.search(lambda b: b == "0101", num_candidates=16)
    >>> result.position, result.iterations, result.matched
    (5, 3, True)
"""

from dataclasses import dataclass, field
from numbers import Real
from typing import Any, Callable, List, Optional, Sequence, Tuple, Union
import logging
import math

import numpy as np

from quantumcore.backends.backend_base import BackendBase
from quantumcore.backends.registry import resolve_backend
from quantumcore.circuits import gates
from quantumcore.circuits.circuit import Circuit, hadamard_layer
from quantumcore.config import settings
from quantumcore.exceptions import InvalidArgumentError, OracleEvaluationError
from quantumcore.simulator.measurement import ShotDistribution, index_to_bitstring

logger = logging.getLogger(__name__)


# =============================================================================
# Result Types
# =============================================================================

@dataclass(frozen=True)
class OracleVerdict:
    """Explicit oracle answer: whether the candidate matches, and its score."""
    match: bool
    score: float = 0.0


@dataclass(frozen=True)
class ScoredCandidate:
    """A measured candidate with its classical evaluation."""
    position: int
    bitstring: str
    score: float
    matched: bool
    count: int
    item: Any = None


@dataclass
class GroverResult:
    """
    Outcome of a Grover search.

    Attributes:
        position: Index of the returned candidate
        bitstring: Register encoding of position
        item: shortlist[position] when a shortlist was searched
        iterations: Grover iterations applied (0 when solved classically)
        matched: Whether the returned candidate satisfies the oracle
        solved_classically: True when no circuit was executed
        success_probability: Exact probability mass on marked states after
            amplification (estimated from shots on sample-only backends)
        candidates: Top-K measured candidates, best first
        distribution: Raw measurement counts (None when solved classically)
        num_qubits: Register width
        marked_count: Number of candidates the oracle marked
    """
    position: int
    bitstring: str
    iterations: int
    matched: bool
    solved_classically: bool
    success_probability: float
    num_qubits: int
    marked_count: int = 0
    item: Any = None
    candidates: List[ScoredCandidate] = field(default_factory=list)
    distribution: Optional[ShotDistribution] = None


OracleResult = Union[bool, Real, OracleVerdict]


# =============================================================================
# Grover Search
# =============================================================================

class GroverSearch:
    """
    Grover search driver.

    Args:
        backend: Backend instance or kind (default: from settings)
        shots: Measurement shots after amplification (default: settings.grover.shots)
        top_k: Candidates reported in the result (default: settings.grover.top_k)
        seed: Seed for measurement sampling
    """

    def __init__(
        self,
        backend: Union[BackendBase, str, None] = None,
        shots: Optional[int] = None,
        top_k: Optional[int] = None,
        seed: Optional[int] = None
    ):
        self.backend = resolve_backend(backend)
        self.shots = settings.grover.shots if shots is None else shots
        self.top_k = settings.grover.top_k if top_k is None else top_k
        self.seed = seed

        if self.shots < 1:
            raise InvalidArgumentError(f"shots must be >= 1, got {self.shots}")
        if self.top_k < 1:
            raise InvalidArgumentError(f"top_k must be >= 1, got {self.top_k}")

    @staticmethod
    def optimal_iterations(num_states: int, num_marked: int = 1) -> int:
        """
        floor(pi/4 * sqrt(N/M)) Grover iterations.

        Returns 0 when M >= N (amplification cannot help).

        Raises:
            InvalidArgumentError: If N or M is not positive
        """
        if num_states < 1:
            raise InvalidArgumentError(f"Number of states must be positive, got {num_states}")
        if num_marked < 1:
            raise InvalidArgumentError(f"Number of marked states must be positive, got {num_marked}")
        if num_marked >= num_states:
            return 0
        return int(math.floor(math.pi / 4.0 * math.sqrt(num_states / num_marked)))

    # =========================================================================
    # Circuit construction
    # =========================================================================

    @staticmethod
    def oracle_circuit(num_qubits: int, marked_positions: Sequence[int]) -> Circuit:
        """Phase oracle flipping the sign of every marked basis state."""
        all_qubits = tuple(range(num_qubits))
        circuit = Circuit(num_qubits)
        for position in marked_positions:
            zero_qubits = [q for q in all_qubits if not (position >> q) & 1]
            flips = tuple(gates.x(q) for q in zero_qubits)
            circuit = circuit.extend(flips + (gates.mcz(*all_qubits),) + flips)
        return circuit

    @staticmethod
    def diffusion_circuit(num_qubits: int) -> Circuit:
        """Inversion about the mean: H X MCZ X H."""
        all_qubits = tuple(range(num_qubits))
        h_layer = tuple(gates.h(q) for q in all_qubits)
        x_layer = tuple(gates.x(q) for q in all_qubits)
        return Circuit(num_qubits, h_layer + x_layer + (gates.mcz(*all_qubits),) + x_layer + h_layer)

    def build_circuit(self, num_qubits: int, marked_positions: Sequence[int], iterations: int) -> Circuit:
        circuit = hadamard_layer(num_qubits)
        iteration = self.oracle_circuit(num_qubits, marked_positions) + self.diffusion_circuit(num_qubits)
        for _ in range(iterations):
            circuit = circuit + iteration
        return circuit

    # =========================================================================
    # Search
    # =========================================================================

    def search(
        self,
        oracle: Callable[[str], OracleResult],
        num_candidates: Optional[int] = None,
        shortlist: Optional[Sequence[Any]] = None,
        precheck: Optional[Callable[[], Optional[int]]] = None,
        expected_matches: Optional[int] = None,
        iterations: Optional[int] = None,
        score_threshold: Optional[float] = None,
        top_k: Optional[int] = None
    ) -> GroverResult:
        """
        Search candidates for one the oracle accepts.

        Args:
            oracle: Callable judging one candidate bitstring
            num_candidates: Size of the candidate index space
            shortlist: Explicit candidate items (position i is shortlist[i]);
                mutually exclusive with num_candidates
            precheck: Optional classical shortcut returning a position or None
            expected_matches: Hint for M in the iteration formula
            iterations: Override the iteration count
            score_threshold: Minimum numeric score counted as a match
            top_k: Override the number of reported candidates

        Returns:
            GroverResult (best-effort: matched is False when no marked
            candidate was measured)

        Raises:
            InvalidArgumentError: On inconsistent arguments
            OracleEvaluationError: If the oracle raises on any candidate
            CapacityExceededError: If the register is too large to simulate
        """
        num_candidates = self._resolve_candidate_count(num_candidates, shortlist)
        if expected_matches is not None and expected_matches < 1:
            raise InvalidArgumentError(f"expected_matches must be >= 1, got {expected_matches}")
        if iterations is not None and iterations < 0:
            raise InvalidArgumentError(f"iterations must be >= 0, got {iterations}")
        top_k = self.top_k if top_k is None else top_k

        num_qubits = max(1, (num_candidates - 1).bit_length())

        def item_at(position: int):
            return shortlist[position] if shortlist is not None else None

        # Step 1: classical short circuit
        if precheck is not None:
            answer = precheck()
            if answer is not None:
                if not 0 <= answer < num_candidates:
                    raise InvalidArgumentError(
                        f"precheck returned position {answer} outside 0..{num_candidates - 1}"
                    )
                logger.info(f"Grover precheck resolved the search classically: position {answer}")
                return self._classical_result(answer, num_qubits, True, item_at(answer))

        if num_candidates == 1:
            match, _ = self._judge(oracle, index_to_bitstring(0, num_qubits), score_threshold, single=True)
            logger.info("Grover search over a single candidate resolved classically")
            return self._classical_result(0, num_qubits, match, item_at(0))

        # Step 2: evaluate the oracle on every real candidate
        scores, matches = self._evaluate_oracle(oracle, num_candidates, num_qubits, score_threshold)
        marked = [p for p in range(num_candidates) if matches[p]]

        num_states = 1 << num_qubits
        if iterations is None:
            m = expected_matches or len(marked) or 1
            iterations = self.optimal_iterations(num_states, m)
        if not marked:
            logger.warning(
                f"Oracle marked none of {num_candidates} candidates; "
                f"measuring the unamplified superposition"
            )

        logger.info(
            f"Grover search: N={num_candidates} (padded {num_states}), "
            f"{num_qubits} qubits, {len(marked)} marked, {iterations} iterations"
        )

        # Step 3: amplify and measure
        circuit = self.build_circuit(num_qubits, marked, iterations)
        handle = self.backend.execute(circuit, seed=self.seed)
        distribution = self.backend.run_shots(handle, self.shots, seed=self.seed)

        if self.backend.supports_exact_probabilities:
            probs = self.backend.probabilities(handle)
            success_probability = float(sum(probs[p] for p in marked))
        else:
            counts = distribution.index_counts()
            success_probability = sum(counts.get(p, 0) for p in marked) / distribution.shots

        # Step 4: interpret
        candidates = self._rank_candidates(distribution, scores, matches, num_candidates, item_at)
        if candidates:
            best = candidates[0]
            position, matched = best.position, best.matched
        else:
            # Only padding was observed; fall back to the best-scoring candidate
            position = int(np.argmax(scores))
            matched = bool(matches[position])

        if not matched:
            logger.warning(
                f"No marked candidate measured in {self.shots} shots; "
                f"returning best-effort position {position}"
            )

        return GroverResult(
            position=position,
            bitstring=index_to_bitstring(position, num_qubits),
            iterations=iterations,
            matched=matched,
            solved_classically=False,
            success_probability=success_probability,
            num_qubits=num_qubits,
            marked_count=len(marked),
            item=item_at(position),
            candidates=candidates[:top_k],
            distribution=distribution,
        )

    # =========================================================================
    # Helpers
    # =========================================================================

    @staticmethod
    def _resolve_candidate_count(num_candidates: Optional[int], shortlist: Optional[Sequence[Any]]) -> int:
        if (num_candidates is None) == (shortlist is None):
            raise InvalidArgumentError("Pass exactly one of num_candidates or shortlist")
        count = len(shortlist) if shortlist is not None else num_candidates
        if isinstance(count, bool) or not isinstance(count, (int, np.integer)) or count < 1:
            raise InvalidArgumentError(f"Candidate count must be a positive integer, got {count!r}")
        return int(count)

    @staticmethod
    def _call_oracle(oracle: Callable[[str], OracleResult], bitstring: str) -> OracleResult:
        try:
            return oracle(bitstring)
        except Exception as e:
            raise OracleEvaluationError(bitstring, e) from e

    def _judge(self, oracle, bitstring, score_threshold, single=False) -> Tuple[bool, float]:
        verdict = self._call_oracle(oracle, bitstring)
        explicit, score = _normalize_verdict(verdict, bitstring)
        if explicit is not None:
            return explicit, score
        if score_threshold is None:
            # A lone numeric candidate trivially holds the best score
            return single, score
        return score >= score_threshold, score

    def _evaluate_oracle(
        self,
        oracle: Callable[[str], OracleResult],
        num_candidates: int,
        num_qubits: int,
        score_threshold: Optional[float]
    ) -> Tuple[np.ndarray, np.ndarray]:
        scores = np.zeros(num_candidates, dtype=float)
        explicit: List[Optional[bool]] = []
        for position in range(num_candidates):
            bitstring = index_to_bitstring(position, num_qubits)
            match, score = _normalize_verdict(self._call_oracle(oracle, bitstring), bitstring)
            explicit.append(match)
            scores[position] = score

        numeric = [p for p in range(num_candidates) if explicit[p] is None]
        threshold = score_threshold
        if numeric and threshold is None:
            threshold = float(max(scores[p] for p in numeric))

        matches = np.array(
            [explicit[p] if explicit[p] is not None else bool(scores[p] >= threshold)
             for p in range(num_candidates)],
            dtype=bool
        )
        logger.debug(f"Oracle evaluated {num_candidates} candidates, {int(matches.sum())} marked")
        return scores, matches

    def _rank_candidates(
        self,
        distribution: ShotDistribution,
        scores: np.ndarray,
        matches: np.ndarray,
        num_candidates: int,
        item_at: Callable[[int], Any]
    ) -> List[ScoredCandidate]:
        measured = []
        for position, count in distribution.index_counts().items():
            if position >= num_candidates:
                continue
            measured.append(ScoredCandidate(
                position=position,
                bitstring=index_to_bitstring(position, distribution.num_qubits),
                score=float(scores[position]),
                matched=bool(matches[position]),
                count=count,
                item=item_at(position),
            ))
        measured.sort(key=lambda c: (not c.matched, -c.score, -c.count, c.position))
        return measured

    @staticmethod
    def _classical_result(position: int, num_qubits: int, matched: bool, item: Any) -> GroverResult:
        return GroverResult(
            position=position,
            bitstring=index_to_bitstring(position, num_qubits),
            iterations=0,
            matched=matched,
            solved_classically=True,
            success_probability=1.0 if matched else 0.0,
            num_qubits=num_qubits,
            marked_count=1 if matched else 0,
            item=item,
        )


def _normalize_verdict(verdict: OracleResult, bitstring: str) -> Tuple[Optional[bool], float]:
    """(explicit match or None for score-only, score)."""
    if isinstance(verdict, OracleVerdict):
        return bool(verdict.match), float(verdict.score)
    if isinstance(verdict, (bool, np.bool_)):
        return bool(verdict), 1.0 if verdict else 0.0
    if isinstance(verdict, (Real, np.number)):
        score = float(verdict)
        if not math.isfinite(score):
            raise OracleEvaluationError(bitstring, ValueError(f"non-finite score {verdict}"))
        return None, score
    raise OracleEvaluationError(
        bitstring, TypeError(f"oracle returned unsupported type {type(verdict).__name__}")
    )
