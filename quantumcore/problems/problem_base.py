"""
Abstract base class for reference optimization problems in quantumcore.

Problems translate a small combinatorial instance into the core's
QuboHamiltonian and, in the other direction, judge a decoded bitstring in
domain terms. The QAOA solver only needs the two hooks:

    to_hamiltonian()            -> QuboHamiltonian  (what to minimize)
    evaluate_solution(solution) -> SolutionQuality  (is it usable, how complete)

Problem Representations
-----------------------
1. **Graph Representation (NetworkX)**:
   - Natural form for flow and partitioning problems
   - Used for metadata (density, degrees) and for building the encoding

2. **QUBO Representation**:
   - Objective plus constraint penalties over binary variables
   - Single source of truth for both the QAOA cost unitary and the
     classical scoring of sampled bitstrings

Example Usage
-------------
```python
from quantumcore.problems.maxcut import MaxCutProblem
from quantumcore.qaoa.qaoa_solver import QaoaSolver

problem = MaxCutProblem.from_edges([(0, 1, 1.0), (1, 2, 1.0), (2, 0, 1.0)])
result = QaoaSolver(layers=2, seed=3).solve_problem(problem)

print(result.solution, problem.calculate_cost(result.solution))
print(result.feasible, result.fill_rate)
```
"""

from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import Any, Dict, List, Optional

import networkx as nx

from quantumcore.qaoa.qubo import QuboHamiltonian


@dataclass(frozen=True)
class SolutionQuality:
    """
    Domain verdict on a decoded assignment.

    Attributes:
        feasible: Whether every hard constraint holds
        fill_rate: Share of required demand served (None when not applicable)
        cost: Domain objective of the assignment (lower is better)
    """
    feasible: bool
    fill_rate: Optional[float] = None
    cost: Optional[float] = None


class ProblemBase(ABC):
    """
    Abstract base class for optimization problems.

    Attributes:
        problem_type (str): Type identifier ('maxcut', 'network_flow')
        problem_size (int): Number of binary decision variables
        complexity_class (str): Computational complexity ('P', 'NP-hard')

    Subclass Implementation Requirements:
        - Set _problem_type, _problem_size, _complexity_class in __init__
        - Set _generated = True once the instance holds data
        - Make to_hamiltonian() agree with calculate_cost() on feasible
          assignments (up to a constant)
    """

    def __init__(self):
        self._problem_type: str = "unknown"
        self._problem_size: int = 0
        self._complexity_class: str = "unknown"
        self._generated: bool = False

    @property
    def problem_type(self) -> str:
        return self._problem_type

    @property
    def problem_size(self) -> int:
        """Number of binary decision variables (excluding encoder slack bits)."""
        return self._problem_size

    @property
    def complexity_class(self) -> str:
        return self._complexity_class

    @property
    def is_generated(self) -> bool:
        """True once the instance holds data (generated or loaded)."""
        return self._generated

    def _require_generated(self) -> None:
        if not self._generated:
            raise ValueError("Problem not generated. Call generate() first.")

    # =========================================================================
    # Abstract Methods - Must be implemented by subclasses
    # =========================================================================

    @abstractmethod
    def validate_solution(self, solution: List[int]) -> bool:
        """
        Check format and hard constraints of a candidate assignment.

        Returns False (never raises) for malformed or infeasible solutions.
        """
        pass

    @abstractmethod
    def calculate_cost(self, solution: List[int]) -> float:
        """
        Domain objective of a solution (lower is better).

        Raises:
            ValueError: If the solution is malformed
        """
        pass

    @abstractmethod
    def to_graph(self) -> nx.Graph:
        pass

    @abstractmethod
    def to_hamiltonian(self) -> QuboHamiltonian:
        """
        QUBO encoding of the problem.

        Variables 0..problem_size-1 are the decision variables in the order
        solutions use; any slack variables follow them.
        """
        pass

    @abstractmethod
    def get_metadata(self) -> Dict[str, Any]:
        pass

    # =========================================================================
    # Optional Helper Methods (can be overridden)
    # =========================================================================

    def evaluate_solution(self, solution: List[int]) -> SolutionQuality:
        """
        Judge a decoded assignment.

        The default reports feasibility from validate_solution() and the
        domain cost; problems with a notion of partial service override it
        to add a fill rate.
        """
        decision = list(solution)[:self.problem_size]
        feasible = self.validate_solution(decision)
        cost = self.calculate_cost(decision) if len(decision) == self.problem_size else None
        return SolutionQuality(feasible=feasible, cost=cost)

    def decision_variables(self, solution: List[int]) -> List[int]:
        """Drop encoder slack variables from a full Hamiltonian assignment."""
        return [int(b) for b in list(solution)[:self.problem_size]]

    def __repr__(self) -> str:
        status = "generated" if self._generated else "not generated"
        return (
            f"{self.__class__.__name__}("
            f"type='{self.problem_type}', "
            f"size={self.problem_size}, "
            f"complexity='{self.complexity_class}', "
            f"status='{status}')"
        )

    def __str__(self) -> str:
        return (
            f"{self.problem_type.upper()} Problem "
            f"(size={self.problem_size}, {self.complexity_class})"
        )
