"""
MaxCut Problem Implementation.

Problem Definition:
    Given an undirected weighted graph G = (V, E), partition V into two sets
    so that the total weight of edges crossing the partition is maximized:

        MaxCut(G) = max_{S⊆V} Σ_{(u,v)∈E, u∈S, v∉S} w(u,v)

QUBO Formulation:
    For x_u, x_v ∈ {0, 1}, an edge is cut iff x_u ⊕ x_v = 1, and

        x_u ⊕ x_v = x_u + x_v - 2·x_u·x_v

    Minimizing the negated cut gives

        f(x) = Σ_{(u,v)∈E} w(u,v)·(2·x_u·x_v - x_u - x_v)

    i.e. linear weight -Σ_v w(u,v) on each node and quadratic weight
    2·w(u,v) on each edge. There are no constraints, so every assignment is
    feasible and the QAOA objective equals calculate_cost() exactly.

Example Usage:
    >>> problem = MaxCutProblem.from_edges([(0, 1, 1.0), (1, 2, 1.0), (2, 0, 1.0)])
    >>> problem.calculate_cost([0, 1, 0])
    -2.0
    >>> problem.get_optimal_solution_brute_force()
    ([1, 0, 0], 2.0)
"""

from typing import Any, Dict, List, Optional, Sequence, Tuple
import logging

import networkx as nx
import numpy as np

from quantumcore.exceptions import InvalidArgumentError
from quantumcore.problems.problem_base import ProblemBase
from quantumcore.qaoa.qubo import QuboBuilder, QuboHamiltonian

logger = logging.getLogger(__name__)


class MaxCutProblem(ProblemBase):
    """
    MaxCut graph partitioning problem.

    Attributes:
        num_nodes (int): Number of nodes in the graph
        graph (nx.Graph): Weighted graph (after generate() or from_edges())
        edge_weights (Dict[Tuple[int, int], float]): (u, v) with u < v -> weight
    """

    def __init__(self, num_nodes: int):
        super().__init__()

        if num_nodes < 2:
            raise InvalidArgumentError("num_nodes must be at least 2")

        self._problem_type = "maxcut"
        self._problem_size = num_nodes
        self._complexity_class = "NP-hard"

        self.num_nodes = num_nodes
        self.graph: Optional[nx.Graph] = None
        self.edge_weights: Dict[Tuple[int, int], float] = {}

    @classmethod
    def from_edges(cls, edges: Sequence[Tuple[int, int, float]], num_nodes: Optional[int] = None) -> "MaxCutProblem":
        """
        Build an instance from explicit (u, v, weight) edges.

        Args:
            edges: Weighted edges over nodes 0..num_nodes-1
            num_nodes: Node count (default: 1 + largest node index)
        """
        if not edges:
            raise InvalidArgumentError("MaxCut needs at least one edge")
        for u, v, _ in edges:
            if u == v:
                raise InvalidArgumentError(f"Self-loop ({u}, {v}) cannot be cut")
        if num_nodes is None:
            num_nodes = 1 + max(max(u, v) for u, v, _ in edges)

        problem = cls(num_nodes)
        graph = nx.Graph()
        graph.add_nodes_from(range(num_nodes))
        for u, v, weight in edges:
            if not (0 <= u < num_nodes and 0 <= v < num_nodes):
                raise InvalidArgumentError(f"Edge ({u}, {v}) references a node outside 0..{num_nodes - 1}")
            graph.add_edge(u, v, weight=float(weight))
        problem._set_graph(graph)
        return problem

    def generate(
        self,
        seed: Optional[int] = None,
        edge_probability: float = 0.5,
        weight_range: Tuple[float, float] = (1.0, 10.0),
        **kwargs
    ) -> None:
        """
        Generate a connected Erdős-Rényi graph G(n, p) with uniform weights.

        Args:
            seed: Random seed for reproducibility
            edge_probability: Probability of edge existence (0 < p < 1)
            weight_range: (min_weight, max_weight) for edge weights

        Raises:
            InvalidArgumentError: If parameters are out of valid ranges
        """
        if not (0.0 < edge_probability < 1.0):
            raise InvalidArgumentError("edge_probability must be in (0, 1)")
        if weight_range[0] <= 0 or weight_range[1] <= weight_range[0]:
            raise InvalidArgumentError("weight_range must be (min, max) with 0 < min < max")

        rng = np.random.default_rng(seed)
        graph = nx.erdos_renyi_graph(self.num_nodes, edge_probability, seed=seed)

        # Connect consecutive components so the cut is meaningful
        if not nx.is_connected(graph):
            components = [sorted(c) for c in nx.connected_components(graph)]
            for left, right in zip(components, components[1:]):
                graph.add_edge(int(rng.choice(left)), int(rng.choice(right)))

        min_weight, max_weight = weight_range
        for u, v in graph.edges():
            graph[u][v]['weight'] = float(rng.uniform(min_weight, max_weight))

        self._set_graph(graph)
        logger.debug(f"Generated MaxCut instance: {self.num_nodes} nodes, {len(self.edge_weights)} edges")

    def _set_graph(self, graph: nx.Graph) -> None:
        self.graph = graph
        self.edge_weights = {
            (min(u, v), max(u, v)): data['weight'] for u, v, data in graph.edges(data=True)
        }
        self._generated = True

    def validate_solution(self, solution: List[int]) -> bool:
        if not self._generated:
            return False
        if len(solution) != self.num_nodes:
            return False
        return all(x in (0, 1) for x in solution)

    def calculate_cost(self, solution: List[int]) -> float:
        """Negative cut weight (lower is better)."""
        if not self.validate_solution(solution):
            raise ValueError("Invalid solution")
        cut_value = sum(w for (u, v), w in self.edge_weights.items() if solution[u] != solution[v])
        return -float(cut_value)

    def cut_value(self, solution: List[int]) -> float:
        return -self.calculate_cost(solution)

    def to_graph(self) -> nx.Graph:
        self._require_generated()
        return self.graph

    def to_hamiltonian(self) -> QuboHamiltonian:
        self._require_generated()
        builder = QuboBuilder(self.num_nodes)
        for (u, v), weight in self.edge_weights.items():
            builder.add_quadratic(u, v, 2.0 * weight)
            builder.add_linear(u, -weight)
            builder.add_linear(v, -weight)
        return builder.build()

    def get_optimal_solution_brute_force(self) -> Tuple[List[int], float]:
        """Optimal partition and its cut value by exhaustive enumeration."""
        bits, value = self.to_hamiltonian().brute_force_minimum()
        return bits, -value

    def get_metadata(self) -> Dict[str, Any]:
        self._require_generated()
        degrees = [d for _, d in self.graph.degree()]
        weights = list(self.edge_weights.values())
        return {
            'problem_type': self.problem_type,
            'problem_size': self.problem_size,
            'complexity_class': self.complexity_class,
            'num_edges': len(self.edge_weights),
            'graph_density': nx.density(self.graph),
            'avg_degree': float(np.mean(degrees)) if degrees else 0.0,
            'total_weight': float(sum(weights)),
            'is_connected': nx.is_connected(self.graph),
        }
