"""
Layered (Sugiyama-style) draft layout for directed graphs.

Steps:
- Break cycles by reversing DFS back edges
- Assign layers by longest path from the sources
- Reduce crossings with alternating barycenter sweeps
- Pack each layer left to right using node widths, layers top to bottom
- Re-orient for the requested flow direction

Compound nodes are laid out through their representative leaf and re-fit
around their children afterwards.
"""

import logging
from collections import defaultdict
from typing import TYPE_CHECKING

from .models import LayoutDirection
from .transform import apply_direction

if TYPE_CHECKING:
    from .graph import GraphModel

logger = logging.getLogger(__name__)

# Default layout parameters
DEFAULT_LAYER_SEPARATION = 100.0
DEFAULT_NODE_SEPARATION = 50.0
CROSSING_SWEEPS = 4


def directed_edges(graph: "GraphModel") -> tuple[list[str], list[tuple[str, str]]]:
    """Leaf ids and deduplicated directed edges between representatives."""
    node_ids = [n.id for n in graph.nodes.values() if not n.children]
    seen: set[tuple[str, str]] = set()
    edges: list[tuple[str, str]] = []
    for edge in graph.edges.values():
        source = graph.representative(edge.source)
        target = graph.representative(edge.target)
        if source == target or (source, target) in seen:
            continue
        seen.add((source, target))
        edges.append((source, target))
    return node_ids, edges


def remove_cycles(node_ids: list[str], edges: list[tuple[str, str]]) -> list[tuple[str, str]]:
    """
    Return an acyclic edge list by reversing back edges found by DFS.

    Args:
        node_ids: All nodes, in visiting order
        edges: Directed edges (source, target)

    Returns:
        Edges with every back edge reversed
    """
    successors: dict[str, list[str]] = defaultdict(list)
    for source, target in edges:
        successors[source].append(target)

    state: dict[str, int] = {}  # 1 = on stack, 2 = done
    back_edges: set[tuple[str, str]] = set()

    for root in node_ids:
        if root in state:
            continue
        state[root] = 1
        stack = [(root, iter(successors[root]))]
        while stack:
            node, children = stack[-1]
            child = next(children, None)
            if child is None:
                state[node] = 2
                stack.pop()
                continue
            child_state = state.get(child)
            if child_state == 1:
                back_edges.add((node, child))
            elif child_state is None:
                state[child] = 1
                stack.append((child, iter(successors[child])))

    return [(t, s) if (s, t) in back_edges else (s, t) for s, t in edges]


def assign_layers(node_ids: list[str], edges: list[tuple[str, str]]) -> dict[str, int]:
    """Longest-path layering of a DAG; sources sit on layer 0."""
    indegree = {nid: 0 for nid in node_ids}
    successors: dict[str, list[str]] = defaultdict(list)
    for source, target in edges:
        successors[source].append(target)
        indegree[target] += 1

    layer = {nid: 0 for nid in node_ids}
    ready = [nid for nid in node_ids if indegree[nid] == 0]
    while ready:
        current = ready.pop(0)
        for target in successors[current]:
            layer[target] = max(layer[target], layer[current] + 1)
            indegree[target] -= 1
            if indegree[target] == 0:
                ready.append(target)
    return layer


def order_layers(
    layers: list[list[str]],
    edges: list[tuple[str, str]],
    sweeps: int = CROSSING_SWEEPS,
) -> list[list[str]]:
    """
    Reorder nodes within layers by the barycenter heuristic.

    Sweeps alternate downward (ordering by predecessors) and upward
    (ordering by successors); nodes without neighbours keep their slot.
    """
    predecessors: dict[str, list[str]] = defaultdict(list)
    successors: dict[str, list[str]] = defaultdict(list)
    for source, target in edges:
        predecessors[target].append(source)
        successors[source].append(target)

    layers = [list(layer) for layer in layers]
    for sweep in range(sweeps):
        downward = sweep % 2 == 0
        position = {nid: i for layer in layers for i, nid in enumerate(layer)}
        indices = range(1, len(layers)) if downward else range(len(layers) - 2, -1, -1)
        neighbours = predecessors if downward else successors

        for index in indices:
            def barycenter(node_id: str) -> float:
                linked = [position[n] for n in neighbours[node_id] if n in position]
                if not linked:
                    return float(position[node_id])
                return sum(linked) / len(linked)

            layers[index].sort(key=barycenter)
            for i, node_id in enumerate(layers[index]):
                position[node_id] = i

    return layers


def hierarchical_layout(
    graph: "GraphModel",
    direction: LayoutDirection = LayoutDirection.TOP_BOTTOM,
    layer_separation: float = DEFAULT_LAYER_SEPARATION,
    node_separation: float = DEFAULT_NODE_SEPARATION,
) -> bool:
    """
    Arrange leaves in layers following edge direction.

    Args:
        graph: Graph to lay out (modified in-place; fixed nodes stay put)
        direction: Flow direction applied after the top-to-bottom layout
        layer_separation: Gap between consecutive layers
        node_separation: Gap between neighbours within a layer

    Returns:
        True if a layout was applied, False for graphs with fewer than 2 leaves
    """
    node_ids, edges = directed_edges(graph)
    if len(node_ids) < 2:
        graph.update_compound_bounds()
        return False

    dag = remove_cycles(node_ids, edges)
    layer_of = assign_layers(node_ids, dag)
    layer_count = max(layer_of.values()) + 1
    layers: list[list[str]] = [[] for _ in range(layer_count)]
    for node_id in node_ids:
        layers[layer_of[node_id]].append(node_id)
    layers = order_layers(layers, dag)

    y = 0.0
    for layer in layers:
        nodes = [graph.nodes[nid] for nid in layer]
        total_width = sum(n.width for n in nodes) + node_separation * (len(nodes) - 1)
        layer_height = max(n.height for n in nodes)
        cursor = -total_width / 2
        for node in nodes:
            if not node.fixed:
                node.x = cursor + node.width / 2
                node.y = y + layer_height / 2
                node.reset_motion()
            cursor += node.width + node_separation
        y += layer_height + layer_separation

    apply_direction(graph, direction)
    graph.update_compound_bounds()
    logger.info("Hierarchical draft placed %d nodes in %d layers", len(node_ids), layer_count)
    return True
