"""
Spectral draft layout (pivot MDS with a PCA projection).

Steps:
1. Unify: connect every component to the largest one with synthetic edges
2. Simplify: compound nodes collapse onto a representative leaf
3. Pivots: MaxMin (farthest-point) sampling over BFS hop distances
4. PCA: top-2 eigenvectors of the pivot covariance via power iteration
   with deflation, then projection of the centered distance matrix
5. Cleanup: synthetic edges removed, compound bounds refreshed
"""

import logging
import math
import time
from collections import deque
from dataclasses import dataclass, field
from typing import Optional, TYPE_CHECKING

import numpy as np

from .analysis import find_connected_components, highest_degree_node
from .models import LayoutConfig

if TYPE_CHECKING:
    from .graph import GraphModel, LayoutEdge

logger = logging.getLogger(__name__)

UNREACHABLE_PENALTY = 1.5   # Unreachable nodes sit at 1.5x the pivot's farthest hop
NORM_EPSILON = 1e-9
SYNTHETIC_EDGE_PREFIX = "__unify__"


@dataclass
class CalculationGraph:
    """Leaf-only view of the graph used for distance computations."""
    node_ids: list[str] = field(default_factory=list)
    adjacency: list[list[int]] = field(default_factory=list)

    def __len__(self) -> int:
        return len(self.node_ids)


# --- Graph Preparation ---

def unify_components(graph: "GraphModel") -> list["LayoutEdge"]:
    """
    Connect all components into one with synthetic edges.

    Each smaller component's highest-degree node is linked to the highest-
    degree node of the largest component. Parent/child links count as
    connections, so a compound and its children form one component.

    Returns:
        The synthetic edges that were added
    """
    components = find_connected_components(graph, include_hierarchy=True)
    if len(components) <= 1:
        return []

    components.sort(key=lambda c: c.size, reverse=True)
    main_center = highest_degree_node(graph, components[0].node_ids)

    added = []
    for component in components[1:]:
        center = highest_degree_node(graph, component.node_ids)
        edge = graph.add_edge(
            main_center, center,
            edge_id=f"{SYNTHETIC_EDGE_PREFIX}{main_center}-{center}",
            synthetic=True,
        )
        if edge is not None:
            added.append(edge)
    return added


def build_calculation_graph(graph: "GraphModel") -> CalculationGraph:
    """
    Collapse compound nodes onto representative leaves.

    Edges are remapped onto representatives; edges whose endpoints share a
    representative are dropped.
    """
    node_ids = [n.id for n in graph.nodes.values() if not n.children]
    index = {node_id: i for i, node_id in enumerate(node_ids)}
    neighbors: list[set[int]] = [set() for _ in node_ids]

    for edge in graph.edges.values():
        a = index[graph.representative(edge.source)]
        b = index[graph.representative(edge.target)]
        if a == b:
            continue
        neighbors[a].add(b)
        neighbors[b].add(a)

    return CalculationGraph(node_ids=node_ids, adjacency=[sorted(s) for s in neighbors])


# --- Pivot MDS ---

def pivot_count(n: int, min_pivots: int = 50, max_pivots: Optional[int] = None) -> int:
    """Number of pivots: all nodes for small graphs, else max(min_pivots, sqrt(n))."""
    k = n if n <= min_pivots else max(min_pivots, int(math.sqrt(n)))
    if max_pivots is not None:
        k = min(k, max_pivots)
    return max(1, min(k, n))


def bfs_distances(adjacency: list[list[int]], source: int) -> np.ndarray:
    """
    Hop distances from `source`.

    Unreachable nodes get 1.5x the largest reachable distance (1.0 when the
    source reaches nothing), so the distance row stays finite.
    """
    distances = np.full(len(adjacency), -1.0)
    distances[source] = 0.0
    queue = deque([source])
    while queue:
        current = queue.popleft()
        next_distance = distances[current] + 1
        for neighbor in adjacency[current]:
            if distances[neighbor] < 0:
                distances[neighbor] = next_distance
                queue.append(neighbor)

    unreachable = distances < 0
    if unreachable.any():
        local_max = distances.max()
        distances[unreachable] = UNREACHABLE_PENALTY * local_max if local_max > 0 else 1.0
    return distances


def select_pivots(
    adjacency: list[list[int]],
    k: int,
    rng: np.random.Generator,
) -> tuple[list[int], np.ndarray]:
    """
    MaxMin pivot selection.

    The first pivot is drawn from `rng`; each next pivot is the unused node
    farthest from its nearest chosen pivot (lowest index wins ties).

    Returns:
        (pivot indices, k x n distance matrix)
    """
    n = len(adjacency)
    k = min(k, n)
    distances = np.empty((k, n))
    nearest = np.full(n, np.inf)
    used = np.zeros(n, dtype=bool)
    pivots: list[int] = []

    current = int(rng.integers(n))
    for i in range(k):
        used[current] = True
        pivots.append(current)
        row = bfs_distances(adjacency, current)
        distances[i] = row
        np.minimum(nearest, row, out=nearest)
        if i + 1 == k:
            break

        candidates = np.where(used, -1.0, nearest)
        current = int(np.argmax(candidates))
        if candidates[current] <= 0:
            current = int(np.flatnonzero(~used)[0])

    return pivots, distances


def power_iteration(
    matrix: np.ndarray,
    iterations: int,
    rng: np.random.Generator,
    tolerance: Optional[float] = None,
) -> tuple[float, np.ndarray]:
    """
    Dominant eigenpair of a symmetric matrix.

    Runs at most `iterations` multiplications. With a tolerance, it stops
    early once the Rayleigh quotient changes by less than
    tolerance * max(1, |quotient|) between steps.

    Returns:
        (eigenvalue, unit eigenvector)
    """
    vector = rng.random(matrix.shape[0]) - 0.5
    norm = np.linalg.norm(vector)
    if norm > NORM_EPSILON:
        vector /= norm

    previous = None
    for _ in range(iterations):
        product = matrix @ vector
        norm = np.linalg.norm(product)
        if norm <= NORM_EPSILON:
            break
        vector = product / norm
        if tolerance is not None:
            rayleigh = float(vector @ matrix @ vector)
            if previous is not None and abs(rayleigh - previous) <= tolerance * max(1.0, abs(rayleigh)):
                break
            previous = rayleigh

    return float(vector @ matrix @ vector), vector


def principal_components(
    distances: np.ndarray,
    iterations: int,
    rng: np.random.Generator,
    tolerance: Optional[float] = None,
) -> tuple[np.ndarray, tuple[float, float]]:
    """
    Project a k x n distance matrix onto its top-2 principal axes.

    Rows are centered, the k x k covariance is decomposed by power iteration,
    and the second axis comes from the deflated covariance
    cov - lambda1 * v1 v1^T.

    Returns:
        (n x 2 coordinates, (lambda1, lambda2))
    """
    centered = distances - distances.mean(axis=1, keepdims=True)
    n = centered.shape[1]
    covariance = centered @ centered.T / n

    lambda1, v1 = power_iteration(covariance, iterations, rng, tolerance)
    deflated = covariance - lambda1 * np.outer(v1, v1)
    lambda2, v2 = power_iteration(deflated, iterations, rng, tolerance)

    coords = np.column_stack((v1 @ centered, v2 @ centered))
    return coords, (lambda1, lambda2)


# --- Embedder ---

class SpectralEmbedder:
    """
    One-shot global layout of a GraphModel.

    Must not run while the force simulation is stepping the same graph;
    callers serialize access (see LayoutSession).
    """

    def __init__(self, config: Optional[LayoutConfig] = None, rng: Optional[np.random.Generator] = None):
        self.config = config or LayoutConfig()
        self._rng = rng or np.random.default_rng(self.config.random_seed)
        self.last_pivots: list[str] = []
        self.last_eigenvalues: tuple[float, float] = (0.0, 0.0)
        self.last_layout: dict[str, tuple[float, float]] = {}

    def run(self, graph: "GraphModel") -> bool:
        """
        Place every non-fixed leaf by pivot MDS.

        Returns:
            True if coordinates were applied, False for graphs with fewer
            than two leaves (only cleanup runs then)
        """
        started = time.perf_counter()
        unify_components(graph)
        try:
            calc = build_calculation_graph(graph)
            n = len(calc)
            if n < 2:
                return False

            k = pivot_count(n, self.config.min_pivots, self.config.max_pivots)
            pivots, distances = select_pivots(calc.adjacency, k, self._rng)
            coords, eigenvalues = principal_components(
                distances,
                self.config.eigen_iterations,
                self._rng,
                self.config.eigen_tolerance,
            )
            self.last_pivots = [calc.node_ids[p] for p in pivots]
            self.last_eigenvalues = eigenvalues
            self._apply_coordinates(graph, calc.node_ids, coords)
        finally:
            graph.remove_synthetic_edges()
            graph.update_compound_bounds()

        logger.info(
            "Spectral draft placed %d nodes with %d pivots in %.1f ms",
            n, len(pivots), (time.perf_counter() - started) * 1000,
        )
        return True

    def _apply_coordinates(self, graph: "GraphModel", node_ids: list[str], coords: np.ndarray):
        scale = self.config.spectral_scaling_factor
        noise = (self._rng.random((len(node_ids), 2)) - 0.5) * self.config.spectral_jitter
        self.last_layout = {}

        for i, node_id in enumerate(node_ids):
            x = float(coords[i, 0] * scale + noise[i, 0])
            y = float(coords[i, 1] * scale + noise[i, 1])
            if not (math.isfinite(x) and math.isfinite(y)):
                continue
            # Fixed nodes keep their place but their draft position is kept for rigid fits
            self.last_layout[node_id] = (x, y)
            node = graph.nodes[node_id]
            if node.fixed:
                continue
            node.x = x
            node.y = y
            node.reset_motion()
