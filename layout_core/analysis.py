"""
Graph analysis - Connectivity and summary utilities for the layout graph.

Provides the connected-component search used to unify disconnected graphs
before distance-based layout, plus a structural summary for the API.
"""

from collections import deque
from dataclasses import dataclass, field
from typing import TYPE_CHECKING, Iterable

if TYPE_CHECKING:
    from .graph import GraphModel


@dataclass
class ConnectedComponent:
    """A connected component in the layout graph."""
    node_ids: list[str] = field(default_factory=list)
    edge_count: int = 0

    @property
    def size(self) -> int:
        return len(self.node_ids)


@dataclass
class NodeConnectionInfo:
    """Connection information for a single node."""
    node_id: str
    incoming: int = 0   # Edges pointing to this node
    outgoing: int = 0   # Edges pointing from this node

    @property
    def total(self) -> int:
        return self.incoming + self.outgoing


@dataclass
class LayoutSummary:
    """Structural summary of the graph and its current layout."""
    total_nodes: int
    total_edges: int
    compound_nodes: int
    hypernodes: int
    fixed_nodes: int
    connected_components: int
    bounds: tuple[float, float, float, float] | None
    most_connected_nodes: list[NodeConnectionInfo]
    orphan_count: int

    def to_dict(self) -> dict:
        """Convert to dictionary for JSON serialization."""
        return {
            "total_nodes": self.total_nodes,
            "total_edges": self.total_edges,
            "compound_nodes": self.compound_nodes,
            "hypernodes": self.hypernodes,
            "fixed_nodes": self.fixed_nodes,
            "connected_components": self.connected_components,
            "bounds": list(self.bounds) if self.bounds else None,
            "most_connected_nodes": [
                {
                    "id": n.node_id,
                    "connections": n.total,
                    "incoming": n.incoming,
                    "outgoing": n.outgoing
                }
                for n in self.most_connected_nodes
            ],
            "orphan_count": self.orphan_count
        }


def find_connected_components(graph: "GraphModel", include_hierarchy: bool = False) -> list[ConnectedComponent]:
    """
    Find all connected components of the graph using BFS.

    Edges are treated as undirected; synthetic edges count like real ones.
    Components come out in node insertion order of their first member.

    Args:
        graph: The graph to analyze
        include_hierarchy: Also treat parent/child links as connections

    Returns:
        List of ConnectedComponent objects
    """
    if not graph.nodes:
        return []

    visited: set[str] = set()
    components: list[ConnectedComponent] = []

    for start_node in graph.nodes:
        if start_node in visited:
            continue

        component_nodes: list[str] = []
        component_edges: set[str] = set()
        visited.add(start_node)
        queue = deque([start_node])

        while queue:
            current = queue.popleft()
            component_nodes.append(current)

            for edge in graph.edges_of(current):
                component_edges.add(edge.id)
                neighbor = edge.target if edge.source == current else edge.source
                if neighbor not in visited:
                    visited.add(neighbor)
                    queue.append(neighbor)

            if include_hierarchy:
                node = graph.nodes[current]
                relatives = list(node.children)
                if node.parent is not None:
                    relatives.append(node.parent)
                for relative in relatives:
                    if relative not in visited:
                        visited.add(relative)
                        queue.append(relative)

        components.append(ConnectedComponent(
            node_ids=component_nodes,
            edge_count=len(component_edges)
        ))

    return components


def highest_degree_node(graph: "GraphModel", node_ids: Iterable[str]) -> str:
    """Node with the most real edges; the first one wins ties."""
    best_id = None
    best_degree = -1
    for node_id in node_ids:
        degree = graph.degree(node_id)
        if degree > best_degree:
            best_id, best_degree = node_id, degree
    if best_id is None:
        raise ValueError("No nodes given")
    return best_id


def calculate_node_connections(graph: "GraphModel") -> dict[str, NodeConnectionInfo]:
    """
    Calculate connection counts for all nodes (synthetic edges excluded).

    Args:
        graph: The graph to analyze

    Returns:
        Dictionary mapping node_id to NodeConnectionInfo
    """
    connections = {node_id: NodeConnectionInfo(node_id=node_id) for node_id in graph.nodes}

    for edge in graph.edges.values():
        if edge.synthetic:
            continue
        if edge.source in connections:
            connections[edge.source].outgoing += 1
        if edge.target in connections:
            connections[edge.target].incoming += 1

    return connections


def summarize_layout(graph: "GraphModel", top_n: int = 5) -> LayoutSummary:
    """
    Generate a structural summary of the graph.

    Args:
        graph: The graph to summarize
        top_n: Number of top connected nodes to include

    Returns:
        LayoutSummary object with all analysis results
    """
    nodes = list(graph.nodes.values())
    connections = calculate_node_connections(graph)

    sorted_by_connections = sorted(
        connections.values(),
        key=lambda x: x.total,
        reverse=True
    )
    most_connected = [n for n in sorted_by_connections[:top_n] if n.total > 0]

    return LayoutSummary(
        total_nodes=len(nodes),
        total_edges=sum(1 for e in graph.edges.values() if not e.synthetic),
        compound_nodes=sum(1 for n in nodes if n.is_compound),
        hypernodes=sum(1 for n in nodes if n.hypernode),
        fixed_nodes=sum(1 for n in nodes if n.fixed),
        connected_components=len(find_connected_components(graph)),
        bounds=graph.graph_bounds(),
        most_connected_nodes=most_connected,
        orphan_count=sum(1 for n in connections.values() if n.total == 0)
    )
