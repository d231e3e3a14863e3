"""
Graph model - The mutable in-memory graph the layout engine works on.

This module implements:
- Node/edge records with physics bookkeeping (velocity, forces, adaptive speed)
- O(1) lookups via id dictionaries and an edges-by-node index
- Reconciliation against the collaborator's node/edge lists by id
- A parent/child forest stored as id references with cycle rejection
- Compound bounds recomputed bottom-up from children
"""

import logging
import math
import random
from dataclasses import dataclass, field
from typing import Iterable, Optional

from .models import NodeSpec, EdgeSpec
from .validation import IssueSeverity, ValidationIssue

logger = logging.getLogger(__name__)

# Default node geometry
DEFAULT_NODE_SIZE = 30.0
COMPOUND_PADDING = 10.0
NEW_NODE_SPREAD = 100.0  # New nodes land at (rand - 0.5) * spread around the origin


@dataclass(eq=False)
class LayoutNode:
    """A node in the layout graph. `x`/`y` are the center of its box."""
    id: str
    x: float = 0.0
    y: float = 0.0
    mass: float = 1.0
    width: float = DEFAULT_NODE_SIZE
    height: float = DEFAULT_NODE_SIZE
    fixed: bool = False        # Excluded from physics (dragged or pinned)
    pinned: bool = False       # Held by a fixed constraint; survives drag release
    hypernode: bool = False    # Stands in for an n-ary relationship
    fixed_size: bool = False   # Size supplied by the collaborator
    parent: Optional[str] = None
    children: list[str] = field(default_factory=list)
    # Physics state
    vx: float = 0.0
    vy: float = 0.0
    fx: float = 0.0
    fy: float = 0.0
    prev_fx: float = 0.0
    prev_fy: float = 0.0
    swinging: float = 0.0
    traction: float = 0.0

    @property
    def radius(self) -> float:
        return max(self.width, self.height) / 2

    @property
    def is_compound(self) -> bool:
        return bool(self.children)

    def center(self) -> tuple[float, float]:
        """Get the center point of the node."""
        return (self.x, self.y)

    def bounds(self) -> tuple[float, float, float, float]:
        """Get the bounding box (left, top, right, bottom)."""
        half_w = self.width / 2
        half_h = self.height / 2
        return (self.x - half_w, self.y - half_h, self.x + half_w, self.y + half_h)

    def reset_motion(self):
        """Clear velocity and adaptive-speed history."""
        self.vx = self.vy = 0.0
        self.fx = self.fy = 0.0
        self.prev_fx = self.prev_fy = 0.0
        self.swinging = self.traction = 0.0


@dataclass(eq=False)
class LayoutEdge:
    """A binary spring between two nodes."""
    id: str
    source: str
    target: str
    strength: float = 1.0
    synthetic: bool = False  # Added by the engine; never survives a phase


@dataclass
class SyncReport:
    """Outcome of a reconcile call."""
    added: list[str] = field(default_factory=list)
    updated: list[str] = field(default_factory=list)
    removed: list[str] = field(default_factory=list)
    edge_count: int = 0
    issues: list[ValidationIssue] = field(default_factory=list)

    def to_dict(self) -> dict:
        """Convert to dictionary for JSON serialization."""
        return {
            "added": self.added,
            "updated": self.updated,
            "removed": self.removed,
            "edge_count": self.edge_count,
            "issues": [issue.to_dict() for issue in self.issues],
        }


class GraphModel:
    """
    Mutable graph of nodes, edges and the compound hierarchy.

    Nodes live in an id-keyed arena; parent/children are id references,
    so the hierarchy can always be checked for cycles before it changes.
    """

    def __init__(self, rng: Optional[random.Random] = None):
        self.nodes: dict[str, LayoutNode] = {}
        self.edges: dict[str, LayoutEdge] = {}
        self._edges_by_node: dict[str, set[str]] = {}
        self._rng = rng or random.Random()

    def __len__(self) -> int:
        return len(self.nodes)

    def __contains__(self, node_id: str) -> bool:
        return node_id in self.nodes

    def get_node(self, node_id: str) -> Optional[LayoutNode]:
        """Get a node by ID (O(1) lookup)."""
        return self.nodes.get(node_id)

    # --- Index Management ---

    def _index_edge(self, edge: LayoutEdge):
        self.edges[edge.id] = edge
        self._edges_by_node.setdefault(edge.source, set()).add(edge.id)
        self._edges_by_node.setdefault(edge.target, set()).add(edge.id)

    def _unindex_edge(self, edge: LayoutEdge):
        self.edges.pop(edge.id, None)
        if edge.source in self._edges_by_node:
            self._edges_by_node[edge.source].discard(edge.id)
        if edge.target in self._edges_by_node:
            self._edges_by_node[edge.target].discard(edge.id)

    # --- Node Operations ---

    def add_node(self, node: LayoutNode) -> LayoutNode:
        """Insert a node (replacing any node with the same id)."""
        if node.id in self.nodes:
            self.remove_node(node.id)
        self.nodes[node.id] = node
        self._edges_by_node.setdefault(node.id, set())
        return node

    def remove_node(self, node_id: str) -> bool:
        """Remove a node, its incident edges and its hierarchy links."""
        node = self.nodes.pop(node_id, None)
        if node is None:
            return False

        for edge_id in list(self._edges_by_node.get(node_id, ())):
            edge = self.edges.get(edge_id)
            if edge:
                self._unindex_edge(edge)
        self._edges_by_node.pop(node_id, None)

        if node.parent and node.parent in self.nodes:
            siblings = self.nodes[node.parent].children
            if node_id in siblings:
                siblings.remove(node_id)
        for child_id in node.children:
            child = self.nodes.get(child_id)
            if child:
                child.parent = None
        return True

    # --- Edge Operations ---

    def add_edge(self, source: str, target: str, strength: float = 1.0,
                 edge_id: Optional[str] = None, synthetic: bool = False) -> Optional[LayoutEdge]:
        """Add an edge between two existing, distinct nodes."""
        if source not in self.nodes or target not in self.nodes or source == target:
            return None
        edge = LayoutEdge(
            id=edge_id or f"{source}-{target}",
            source=source,
            target=target,
            strength=strength,
            synthetic=synthetic,
        )
        existing = self.edges.get(edge.id)
        if existing:
            self._unindex_edge(existing)
        self._index_edge(edge)
        return edge

    def remove_edge(self, edge_id: str) -> bool:
        """Delete an edge."""
        edge = self.edges.get(edge_id)
        if edge is None:
            return False
        self._unindex_edge(edge)
        return True

    def remove_synthetic_edges(self) -> int:
        """Drop every engine-added edge; returns how many were removed."""
        synthetic = [e for e in self.edges.values() if e.synthetic]
        for edge in synthetic:
            self.remove_edge(edge.id)
        return len(synthetic)

    def edges_of(self, node_id: str) -> list[LayoutEdge]:
        """Edges incident to a node."""
        return [self.edges[eid] for eid in self._edges_by_node.get(node_id, ()) if eid in self.edges]

    def neighbors(self, node_id: str) -> set[str]:
        """Ids of nodes sharing an edge with `node_id`."""
        result = set()
        for edge in self.edges_of(node_id):
            result.add(edge.target if edge.source == node_id else edge.source)
        return result

    def degree(self, node_id: str) -> int:
        """Number of non-synthetic incident edges."""
        return sum(1 for edge in self.edges_of(node_id) if not edge.synthetic)

    # --- Reconciliation ---

    def reconcile(
        self,
        nodes: Iterable[NodeSpec],
        edges: Iterable[EdgeSpec],
        default_size: float = DEFAULT_NODE_SIZE,
    ) -> SyncReport:
        """
        Make the graph match the given node and edge sets by id.

        Unchanged nodes keep their position and velocity; new nodes without a
        position get a small random offset around the origin. The hierarchy and
        the edge set are rebuilt from scratch. Malformed entries are dropped and
        reported, never raised.

        Args:
            nodes: Node specs from the collaborator
            edges: Edge specs from the collaborator
            default_size: Width/height of nodes without an explicit size

        Returns:
            SyncReport listing added/updated/removed ids and dropped input
        """
        report = SyncReport()

        specs: dict[str, NodeSpec] = {}
        for spec in nodes:
            if spec.id in specs:
                report.issues.append(ValidationIssue(
                    IssueSeverity.WARNING, "Duplicate node id ignored", node_id=spec.id))
                continue
            specs[spec.id] = spec

        # Remove stale nodes
        for node_id in [nid for nid in self.nodes if nid not in specs]:
            self.remove_node(node_id)
            report.removed.append(node_id)

        # Add or update
        for spec in specs.values():
            node = self.nodes.get(spec.id)
            if node is None:
                node = LayoutNode(
                    id=spec.id,
                    x=spec.x if spec.x is not None else (self._rng.random() - 0.5) * NEW_NODE_SPREAD,
                    y=spec.y if spec.y is not None else (self._rng.random() - 0.5) * NEW_NODE_SPREAD,
                )
                self.add_node(node)
                report.added.append(spec.id)
            else:
                report.updated.append(spec.id)

            node.mass = spec.mass if spec.mass is not None else 1.0
            node.hypernode = spec.hypernode
            node.fixed_size = spec.fixed_size is not None
            if spec.fixed_size is not None:
                node.width, node.height = spec.fixed_size
            else:
                node.width = node.height = default_size

        # Rebuild hierarchy
        for node in self.nodes.values():
            node.parent = None
            node.children = []
        for spec in specs.values():
            if spec.parent_id is None:
                continue
            if not self.set_parent(spec.id, spec.parent_id):
                report.issues.append(ValidationIssue(
                    IssueSeverity.WARNING,
                    f"Parent '{spec.parent_id}' rejected (unknown, self or cycle)",
                    node_id=spec.id,
                ))

        # Rebuild edges
        for edge in list(self.edges.values()):
            self._unindex_edge(edge)
        for spec in edges:
            if spec.source_id not in self.nodes or spec.target_id not in self.nodes:
                report.issues.append(ValidationIssue(
                    IssueSeverity.ERROR, "Edge references unknown node", edge_id=spec.key))
                continue
            if spec.source_id == spec.target_id:
                report.issues.append(ValidationIssue(
                    IssueSeverity.INFO, "Self-loop edge ignored", edge_id=spec.key))
                continue
            if spec.key in self.edges:
                report.issues.append(ValidationIssue(
                    IssueSeverity.WARNING, "Duplicate edge id ignored", edge_id=spec.key))
                continue
            self.add_edge(spec.source_id, spec.target_id, spec.strength, edge_id=spec.key)

        report.edge_count = len(self.edges)
        self.update_compound_bounds()

        if report.issues:
            logger.warning("Graph sync dropped %d input item(s)", len(report.issues))
        logger.debug("Graph sync: +%d ~%d -%d nodes, %d edges",
                     len(report.added), len(report.updated), len(report.removed), report.edge_count)
        return report

    # --- Hierarchy ---

    def is_ancestor(self, ancestor_id: str, node_id: str) -> bool:
        """True if `ancestor_id` appears on the parent chain of `node_id`."""
        seen: set[str] = set()
        current = self.nodes.get(node_id)
        while current is not None and current.parent is not None:
            if current.parent == ancestor_id:
                return True
            if current.parent in seen:
                break
            seen.add(current.parent)
            current = self.nodes.get(current.parent)
        return False

    def set_parent(self, child_id: str, parent_id: Optional[str]) -> bool:
        """
        Move `child_id` under `parent_id` (or to the top level when None).

        Returns False and leaves the forest unchanged when either node is
        unknown, when child == parent, or when the child is an ancestor of
        the parent (the assignment would close a cycle).
        """
        child = self.nodes.get(child_id)
        if child is None:
            return False
        if parent_id is not None:
            if parent_id == child_id or parent_id not in self.nodes:
                return False
            if self.is_ancestor(child_id, parent_id):
                return False

        if child.parent and child.parent in self.nodes:
            old_siblings = self.nodes[child.parent].children
            if child_id in old_siblings:
                old_siblings.remove(child_id)
        child.parent = parent_id
        if parent_id is not None:
            self.nodes[parent_id].children.append(child_id)
        return True

    def descendants(self, node_id: str) -> list[str]:
        """All descendants of a node, depth first."""
        result: list[str] = []
        stack = list(reversed(self.nodes[node_id].children)) if node_id in self.nodes else []
        while stack:
            current = stack.pop()
            result.append(current)
            stack.extend(reversed(self.nodes[current].children))
        return result

    def representative(self, node_id: str) -> str:
        """First leaf descendant of a compound node (the node itself for leaves)."""
        current = self.nodes[node_id]
        while current.children:
            current = self.nodes[current.children[0]]
        return current.id

    def roots(self) -> list[LayoutNode]:
        return [n for n in self.nodes.values() if n.parent is None]

    def leaves(self) -> list[LayoutNode]:
        return [n for n in self.nodes.values() if not n.children]

    def translate(self, node_id: str, dx: float, dy: float):
        """Move a node together with all of its descendants."""
        for nid in [node_id] + self.descendants(node_id):
            node = self.nodes[nid]
            node.x += dx
            node.y += dy

    # --- Bounds ---

    def update_bounds_from_children(self, node_id: str):
        """
        Recompute a compound node's box from its children, bottom-up.

        Descendant compounds are refreshed first, so the resulting box
        encloses every descendant box plus padding.
        """
        node = self.nodes.get(node_id)
        if node is None or not node.children:
            return

        left = top = math.inf
        right = bottom = -math.inf
        for child_id in node.children:
            self.update_bounds_from_children(child_id)
            c_left, c_top, c_right, c_bottom = self.nodes[child_id].bounds()
            left = min(left, c_left)
            top = min(top, c_top)
            right = max(right, c_right)
            bottom = max(bottom, c_bottom)

        if not all(math.isfinite(v) for v in (left, top, right, bottom)):
            return
        node.width = right - left + 2 * COMPOUND_PADDING
        node.height = bottom - top + 2 * COMPOUND_PADDING
        node.x = (left + right) / 2
        node.y = (top + bottom) / 2

    def update_compound_bounds(self):
        """Refresh every compound box in the forest."""
        for root in self.roots():
            self.update_bounds_from_children(root.id)

    def graph_bounds(self) -> Optional[tuple[float, float, float, float]]:
        """Union of all node boxes, or None for an empty graph."""
        if not self.nodes:
            return None
        boxes = [n.bounds() for n in self.nodes.values()]
        return (
            min(b[0] for b in boxes),
            min(b[1] for b in boxes),
            max(b[2] for b in boxes),
            max(b[3] for b in boxes),
        )

    # --- Bulk State ---

    def positions(self) -> dict[str, tuple[float, float]]:
        """Copy of every node center."""
        return {n.id: (n.x, n.y) for n in self.nodes.values()}

    def reset_motion(self):
        """Zero velocities and adaptive-speed history for every node."""
        for node in self.nodes.values():
            node.reset_motion()
