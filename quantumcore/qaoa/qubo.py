"""
QUBO Hamiltonians for quantumcore.

A QUBO (Quadratic Unconstrained Binary Optimization) objective over binary
variables x ∈ {0,1}^n:

    f(x) = offset + Σᵢ aᵢ xᵢ + Σᵢ<ⱼ bᵢⱼ xᵢ xⱼ

QuboHamiltonian is the single source of truth for a combinatorial problem:
the QAOA cost unitary is derived from it (via to_ising) and every sampled
bitstring is scored against it (via evaluate), so the quantum and classical
views can never disagree.

QUBO to Ising
-------------
Quantum circuits act on Z eigenvalues zᵢ ∈ {+1, -1} with |0> ↦ +1, so

    xᵢ = (1 - zᵢ) / 2

Substituting gives H = offset' + Σᵢ hᵢ Zᵢ + Σᵢ<ⱼ Jᵢⱼ ZᵢZⱼ with

    hᵢ  = -aᵢ/2 - Σⱼ bᵢⱼ/4
    Jᵢⱼ =  bᵢⱼ/4
    offset' = offset + Σᵢ aᵢ/2 + Σᵢ<ⱼ bᵢⱼ/4

Constraints as Penalties
------------------------
QuboBuilder folds hard constraints into the objective as weighted squared
violations, e.g. an equality Σ xᵢ = k becomes P·(Σ xᵢ - k)². With P larger
than any achievable objective improvement, every feasible assignment scores
below every infeasible one.

Example:
    >>> builder = QuboBuilder(2)
    >>> builder.add_linear(0, -1.0).add_linear(1, 2.0).add_quadratic(0, 1, 3.0)
    >>> qubo = builder.build()
    >>> qubo.brute_force_minimum()
    ([1, 0], -1.0)
"""

from dataclasses import dataclass, field
from typing import Dict, List, Optional, Sequence, Tuple
import logging
import math

import numpy as np

from quantumcore.exceptions import InvalidArgumentError

logger = logging.getLogger(__name__)

# Exhaustive evaluation beyond this is refused (2^n rows)
MAX_ENUMERATION_VARIABLES = 26


@dataclass(frozen=True)
class IsingHamiltonian:
    """H = offset + Σ hᵢ Zᵢ + Σ Jᵢⱼ ZᵢZⱼ over spins zᵢ ∈ {+1, -1}."""
    num_qubits: int
    fields: Dict[int, float]
    couplings: Dict[Tuple[int, int], float]
    offset: float = 0.0

    def energy(self, spins: Sequence[int]) -> float:
        total = self.offset
        for i, h in self.fields.items():
            total += h * spins[i]
        for (i, j), coupling in self.couplings.items():
            total += coupling * spins[i] * spins[j]
        return float(total)

    @property
    def max_coefficient(self) -> float:
        """Largest |h| or |J|; 0 for a constant Hamiltonian."""
        magnitudes = [abs(v) for v in self.fields.values()] + [abs(v) for v in self.couplings.values()]
        return max(magnitudes, default=0.0)


@dataclass(frozen=True)
class QuboHamiltonian:
    """
    Immutable QUBO objective.

    Attributes:
        num_variables: Number of binary variables n
        linear: variable -> weight aᵢ
        quadratic: (i, j) with i < j -> weight bᵢⱼ
        offset: Constant term

    Construction canonicalizes the terms: (j, i) keys become (i, j), (i, i)
    keys fold into linear (x² = x), zero weights are dropped. Indices outside
    [0, num_variables) raise InvalidArgumentError.
    """
    num_variables: int
    linear: Dict[int, float] = field(default_factory=dict)
    quadratic: Dict[Tuple[int, int], float] = field(default_factory=dict)
    offset: float = 0.0

    def __post_init__(self):
        n = self.num_variables
        if isinstance(n, bool) or not isinstance(n, (int, np.integer)) or n < 1:
            raise InvalidArgumentError(f"num_variables must be a positive integer, got {n!r}")
        n = int(n)
        object.__setattr__(self, "num_variables", n)

        linear: Dict[int, float] = {}
        quadratic: Dict[Tuple[int, int], float] = {}

        def check(i):
            if isinstance(i, bool) or not isinstance(i, (int, np.integer)):
                raise InvalidArgumentError(f"Variable index must be an int, got {i!r}")
            if not 0 <= i < n:
                raise InvalidArgumentError(f"Variable index {i} is undefined: Hamiltonian has {n} variables")
            return int(i)

        def check_weight(w):
            w = float(w)
            if not math.isfinite(w):
                raise InvalidArgumentError(f"QUBO weights must be finite, got {w}")
            return w

        for i, w in dict(self.linear).items():
            i = check(i)
            linear[i] = linear.get(i, 0.0) + check_weight(w)

        for key, w in dict(self.quadratic).items():
            i, j = key
            i, j = check(i), check(j)
            w = check_weight(w)
            if i == j:
                linear[i] = linear.get(i, 0.0) + w
                continue
            pair = (i, j) if i < j else (j, i)
            quadratic[pair] = quadratic.get(pair, 0.0) + w

        object.__setattr__(self, "linear", {i: w for i, w in sorted(linear.items()) if w != 0.0})
        object.__setattr__(self, "quadratic", {k: w for k, w in sorted(quadratic.items()) if w != 0.0})
        object.__setattr__(self, "offset", check_weight(self.offset))

    # =========================================================================
    # Construction helpers
    # =========================================================================

    @classmethod
    def from_matrix(cls, matrix: np.ndarray, offset: float = 0.0) -> "QuboHamiltonian":
        """
        Build from a QUBO matrix Q with f(x) = xᵀQx + offset.

        Diagonal entries become linear weights; Qᵢⱼ and Qⱼᵢ are summed into
        the (i, j) coupling, so both upper-triangular and symmetric matrices
        are accepted.
        """
        q = np.asarray(matrix, dtype=float)
        if q.ndim != 2 or q.shape[0] != q.shape[1] or q.shape[0] == 0:
            raise InvalidArgumentError(f"QUBO matrix must be square and non-empty, got shape {q.shape}")
        n = q.shape[0]
        linear = {i: q[i, i] for i in range(n)}
        quadratic = {
            (i, j): q[i, j] + q[j, i]
            for i in range(n) for j in range(i + 1, n)
        }
        return cls(num_variables=n, linear=linear, quadratic=quadratic, offset=offset)

    def to_matrix(self) -> np.ndarray:
        """Upper-triangular QUBO matrix (offset not included)."""
        q = np.zeros((self.num_variables, self.num_variables))
        for i, w in self.linear.items():
            q[i, i] = w
        for (i, j), w in self.quadratic.items():
            q[i, j] = w
        return q

    # =========================================================================
    # Classical evaluation
    # =========================================================================

    def evaluate(self, bits: Sequence[int]) -> float:
        """
        Objective value of one assignment [x₀, ..., xₙ₋₁].

        Raises:
            InvalidArgumentError: If bits has the wrong length or non-binary values
        """
        if len(bits) != self.num_variables:
            raise InvalidArgumentError(
                f"Assignment has {len(bits)} values, expected {self.num_variables}"
            )
        x = [int(b) for b in bits]
        if any(b not in (0, 1) for b in x):
            raise InvalidArgumentError(f"Assignment must be binary, got {list(bits)}")

        total = self.offset
        for i, w in self.linear.items():
            total += w * x[i]
        for (i, j), w in self.quadratic.items():
            total += w * x[i] * x[j]
        return float(total)

    def evaluate_all(self) -> np.ndarray:
        """
        Objective value of every assignment, indexed by basis state.

        Entry k holds f(x) with xᵢ = bit i of k, the same little-endian
        convention the statevector uses, so the result can be dotted with
        Born-rule probabilities directly.
        """
        n = self.num_variables
        if n > MAX_ENUMERATION_VARIABLES:
            raise InvalidArgumentError(
                f"Refusing to enumerate 2^{n} assignments (limit {MAX_ENUMERATION_VARIABLES} variables)"
            )
        idx = np.arange(1 << n, dtype=np.int64)

        def bit(i):
            return ((idx >> i) & 1).astype(float)

        values = np.full(1 << n, self.offset)
        for i, w in self.linear.items():
            values += w * bit(i)
        for (i, j), w in self.quadratic.items():
            values += w * (((idx >> i) & (idx >> j)) & 1)
        return values

    def brute_force_minimum(self) -> Tuple[List[int], float]:
        """Exact minimizer by enumeration (ties: lowest basis index)."""
        values = self.evaluate_all()
        best = int(np.argmin(values))
        bits = [(best >> i) & 1 for i in range(self.num_variables)]
        return bits, float(values[best])

    # =========================================================================
    # Ising form
    # =========================================================================

    def to_ising(self) -> IsingHamiltonian:
        """Spin Hamiltonian with identical energies under xᵢ = (1 - zᵢ)/2."""
        fields: Dict[int, float] = {}
        couplings: Dict[Tuple[int, int], float] = {}
        offset = self.offset

        for i, a in self.linear.items():
            fields[i] = fields.get(i, 0.0) - a / 2.0
            offset += a / 2.0

        for (i, j), b in self.quadratic.items():
            couplings[(i, j)] = b / 4.0
            fields[i] = fields.get(i, 0.0) - b / 4.0
            fields[j] = fields.get(j, 0.0) - b / 4.0
            offset += b / 4.0

        return IsingHamiltonian(
            num_qubits=self.num_variables,
            fields={i: h for i, h in fields.items() if h != 0.0},
            couplings={k: v for k, v in couplings.items() if v != 0.0},
            offset=offset,
        )

    @property
    def num_terms(self) -> int:
        return len(self.linear) + len(self.quadratic)

    def __repr__(self) -> str:
        return (
            f"QuboHamiltonian(num_variables={self.num_variables}, "
            f"linear_terms={len(self.linear)}, quadratic_terms={len(self.quadratic)}, "
            f"offset={self.offset})"
        )


class QuboBuilder:
    """
    Mutable accumulator producing a QuboHamiltonian.

    Methods return self so terms can be chained. Variables can be added after
    construction (e.g. slack bits for inequality constraints) with
    add_variable().
    """

    def __init__(self, num_variables: int):
        if num_variables < 1:
            raise InvalidArgumentError(f"num_variables must be >= 1, got {num_variables}")
        self.num_variables = num_variables
        self._linear: Dict[int, float] = {}
        self._quadratic: Dict[Tuple[int, int], float] = {}
        self._offset = 0.0

    def _check(self, i: int) -> None:
        if not 0 <= i < self.num_variables:
            raise InvalidArgumentError(f"Variable index {i} is undefined: builder has {self.num_variables} variables")

    def add_variable(self) -> int:
        """Append a new binary variable and return its index."""
        self.num_variables += 1
        return self.num_variables - 1

    def add_offset(self, value: float) -> "QuboBuilder":
        self._offset += value
        return self

    def add_linear(self, i: int, weight: float) -> "QuboBuilder":
        self._check(i)
        self._linear[i] = self._linear.get(i, 0.0) + weight
        return self

    def add_quadratic(self, i: int, j: int, weight: float) -> "QuboBuilder":
        self._check(i)
        self._check(j)
        if i == j:
            return self.add_linear(i, weight)
        key = (i, j) if i < j else (j, i)
        self._quadratic[key] = self._quadratic.get(key, 0.0) + weight
        return self

    def add_equality_constraint(
        self,
        variables: Sequence[int],
        target: float,
        weight: float,
        coefficients: Optional[Sequence[float]] = None
    ) -> "QuboBuilder":
        """
        Penalize violations of Σ cᵢ xᵢ = target with weight·(Σ cᵢ xᵢ - target)².

        Expanded with xᵢ² = xᵢ:
            Σ cᵢ² xᵢ + 2 Σᵢ<ⱼ cᵢcⱼ xᵢxⱼ - 2·target·Σ cᵢ xᵢ + target²
        """
        if weight < 0:
            raise InvalidArgumentError(f"Penalty weight must be non-negative, got {weight}")
        coefficients = [1.0] * len(variables) if coefficients is None else list(coefficients)
        if len(coefficients) != len(variables):
            raise InvalidArgumentError("coefficients and variables must have the same length")

        for idx, (i, ci) in enumerate(zip(variables, coefficients)):
            self.add_linear(i, weight * (ci * ci - 2.0 * target * ci))
            for j, cj in zip(variables[idx + 1:], coefficients[idx + 1:]):
                self.add_quadratic(i, j, 2.0 * weight * ci * cj)
        self._offset += weight * target * target
        return self

    def add_at_most_one_constraint(self, variables: Sequence[int], weight: float) -> "QuboBuilder":
        """Penalize every selected pair: weight·Σᵢ<ⱼ xᵢxⱼ (zero iff at most one is set)."""
        if weight < 0:
            raise InvalidArgumentError(f"Penalty weight must be non-negative, got {weight}")
        for idx, i in enumerate(variables):
            for j in variables[idx + 1:]:
                self.add_quadratic(i, j, weight)
        return self

    def add_at_most_constraint(self, variables: Sequence[int], limit: int, weight: float) -> "QuboBuilder":
        """
        Penalize Σ xᵢ > limit.

        limit == 1 uses the pairwise form; limit >= len(variables) needs no
        penalty; anything in between adds binary slack variables s with
        Σ xᵢ + Σ 2ᵏ sₖ = limit.
        """
        if limit < 0:
            raise InvalidArgumentError(f"limit must be >= 0, got {limit}")
        if limit >= len(variables):
            return self
        if limit == 0:
            for i in variables:
                self.add_linear(i, weight)
            return self
        if limit == 1:
            return self.add_at_most_one_constraint(variables, weight)

        slack_bits = int(limit).bit_length()
        slack = [self.add_variable() for _ in range(slack_bits)]
        slack_coefficients = [float(1 << k) for k in range(slack_bits)]
        # Cap the top slack bit so the slack range is exactly 0..limit
        slack_coefficients[-1] = float(limit - ((1 << (slack_bits - 1)) - 1))
        logger.debug(f"Added {slack_bits} slack variables for at-most-{limit} constraint")
        return self.add_equality_constraint(
            list(variables) + slack,
            float(limit),
            weight,
            coefficients=[1.0] * len(variables) + slack_coefficients,
        )

    def build(self) -> QuboHamiltonian:
        return QuboHamiltonian(
            num_variables=self.num_variables,
            linear=dict(self._linear),
            quadratic=dict(self._quadratic),
            offset=self._offset,
        )
