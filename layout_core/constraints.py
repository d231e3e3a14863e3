"""
Constraint enforcement - Position corrections for user-declared relationships.

Supported constraints:
- Alignment: nodes share an x (vertical) or y (horizontal) coordinate
- Relative ordering: node A stays left of / above node B, optionally with a gap
- Pins: nodes held in place, optionally at a given position

Enforcement is a fixed point: applying it twice gives the same positions as
applying it once.
"""

import logging
from collections import defaultdict
from dataclasses import dataclass, field
from typing import Any, Iterable, Optional, TYPE_CHECKING

from pydantic import ValidationError

from .errors import ConstraintCycleError
from .models import ConstraintSpec, ConstraintType
from .validation import IssueSeverity, ValidationIssue

if TYPE_CHECKING:
    from .graph import GraphModel, LayoutNode

logger = logging.getLogger(__name__)

TOLERANCE = 1e-6  # Moves smaller than this are not applied

# Constraint type -> axis whose coordinate it constrains
_AXIS = {
    ConstraintType.ALIGN_VERTICAL: "x",
    ConstraintType.ALIGN_HORIZONTAL: "y",
    ConstraintType.RELATIVE_LEFT_RIGHT: "x",
    ConstraintType.RELATIVE_TOP_BOTTOM: "y",
}


@dataclass
class AlignmentGroup:
    """Nodes that must share one coordinate."""
    axis: str
    node_ids: list[str]


@dataclass
class RelativePair:
    """`before` must not come after `after` along `axis` (plus `gap`)."""
    axis: str
    before: str
    after: str
    gap: float = 0.0


@dataclass
class PinnedNode:
    """A node held in place, optionally moved to a target first."""
    node_id: str
    x: Optional[float] = None
    y: Optional[float] = None


@dataclass
class ConstraintSet:
    """Constraints resolved against a graph; unknown ids already removed."""
    alignments: list[AlignmentGroup] = field(default_factory=list)
    relatives: list[RelativePair] = field(default_factory=list)
    pins: list[PinnedNode] = field(default_factory=list)
    issues: list[ValidationIssue] = field(default_factory=list)

    def __len__(self) -> int:
        return len(self.alignments) + len(self.relatives) + len(self.pins)

    def to_dict(self) -> dict:
        """Convert to dictionary for JSON serialization."""
        return {
            "alignments": len(self.alignments),
            "relatives": len(self.relatives),
            "pins": len(self.pins),
            "issues": [issue.to_dict() for issue in self.issues],
        }


def _unique_known(node_ids: Iterable[str], graph: "GraphModel") -> list[str]:
    seen: set[str] = set()
    result = []
    for node_id in node_ids:
        if node_id in graph.nodes and node_id not in seen:
            seen.add(node_id)
            result.append(node_id)
    return result


def _optional_float(value: Any) -> Optional[float]:
    try:
        return float(value) if value is not None else None
    except (TypeError, ValueError):
        return None


def compile_constraints(specs: Iterable[ConstraintSpec | dict], graph: "GraphModel") -> ConstraintSet:
    """
    Resolve constraint specs against the graph.

    Unknown and duplicate node ids are dropped; constraints left with too few
    nodes are skipped. A relative constraint over more than two nodes chains
    consecutive pairs. Nothing here raises on bad input.

    Args:
        specs: ConstraintSpec objects or plain dicts
        graph: Graph whose node ids are valid

    Returns:
        ConstraintSet ready for enforcement
    """
    result = ConstraintSet()

    for raw in specs:
        if isinstance(raw, ConstraintSpec):
            spec = raw
        else:
            try:
                spec = ConstraintSpec.model_validate(raw)
            except ValidationError as e:
                result.issues.append(ValidationIssue(
                    IssueSeverity.ERROR, f"Malformed constraint ignored: {e.errors()[0]['msg']}"))
                continue

        node_ids = _unique_known(spec.node_ids, graph)
        dropped = [nid for nid in spec.node_ids if nid not in graph.nodes]
        for node_id in dropped:
            result.issues.append(ValidationIssue(
                IssueSeverity.WARNING, f"{spec.type.value} constraint references unknown node", node_id=node_id))

        if spec.type == ConstraintType.FIXED:
            x = _optional_float(spec.params.get("x"))
            y = _optional_float(spec.params.get("y"))
            result.pins.extend(PinnedNode(node_id=nid, x=x, y=y) for nid in node_ids)
            continue

        if len(node_ids) < 2:
            result.issues.append(ValidationIssue(
                IssueSeverity.INFO, f"{spec.type.value} constraint needs at least 2 known nodes"))
            continue

        axis = _AXIS[spec.type]
        if spec.type in (ConstraintType.ALIGN_VERTICAL, ConstraintType.ALIGN_HORIZONTAL):
            result.alignments.append(AlignmentGroup(axis=axis, node_ids=node_ids))
        else:
            gap = _optional_float(spec.params.get("gap")) or 0.0
            for before, after in zip(node_ids, node_ids[1:]):
                result.relatives.append(RelativePair(axis=axis, before=before, after=after, gap=gap))

    return result


def release_pins(graph: "GraphModel", keep_fixed: Iterable[str] = ()):
    """Unpin every node; nodes in `keep_fixed` (e.g. being dragged) stay fixed."""
    keep = set(keep_fixed)
    for node in graph.nodes.values():
        if node.pinned:
            node.pinned = False
            node.fixed = node.id in keep


# --- Helpers ---

def _coord(node: "LayoutNode", axis: str) -> float:
    return node.x if axis == "x" else node.y


def _shift(graph: "GraphModel", node_id: str, axis: str, delta: float):
    if axis == "x":
        graph.translate(node_id, delta, 0.0)
    else:
        graph.translate(node_id, 0.0, delta)


class _DisjointSet:
    def __init__(self):
        self._parent: dict[str, str] = {}

    def find(self, item: str) -> str:
        self._parent.setdefault(item, item)
        root = item
        while self._parent[root] != root:
            root = self._parent[root]
        while self._parent[item] != root:
            self._parent[item], item = root, self._parent[item]
        return root

    def union(self, a: str, b: str):
        root_a, root_b = self.find(a), self.find(b)
        if root_a != root_b:
            self._parent[root_b] = root_a

    def groups(self) -> list[list[str]]:
        members: dict[str, list[str]] = defaultdict(list)
        for item in self._parent:
            members[self.find(item)].append(item)
        return list(members.values())


class ConstraintEnforcer:
    """
    Applies alignment, relative-ordering and pin constraints to a graph.

    Per axis, overlapping alignment groups are merged and snapped to their
    mean (or to the mean of their fixed members). Relative constraints are
    then solved on blocks of aligned nodes: blocks are visited in topological
    order and successors pushed forward, after which free predecessors are
    pulled back in front of fixed successors. A cycle of relative
    constraints skips that axis.
    """

    def enforce(self, graph: "GraphModel", constraints: ConstraintSet) -> int:
        """
        Correct positions in-place.

        Args:
            graph: Graph to correct
            constraints: Compiled constraints for this graph

        Returns:
            Number of nodes that moved
        """
        moved: set[str] = set()
        self._apply_pins(graph, constraints.pins, moved)

        for axis in ("x", "y"):
            groups = self._merged_groups(graph, constraints.alignments, axis)
            self._align(graph, groups, axis, moved)

            pairs = [p for p in constraints.relatives
                     if p.axis == axis and p.before in graph.nodes and p.after in graph.nodes]
            if not pairs:
                continue
            try:
                self._order(graph, groups, pairs, axis, moved)
            except ConstraintCycleError as e:
                logger.warning("Skipping relative constraints: %s", e)

        graph.update_compound_bounds()
        return len(moved)

    # --- Pins ---

    def _apply_pins(self, graph: "GraphModel", pins: list[PinnedNode], moved: set[str]):
        for pin in pins:
            node = graph.nodes.get(pin.node_id)
            if node is None:
                continue
            dx = pin.x - node.x if pin.x is not None else 0.0
            dy = pin.y - node.y if pin.y is not None else 0.0
            if abs(dx) > TOLERANCE or abs(dy) > TOLERANCE:
                graph.translate(node.id, dx, dy)
                moved.add(node.id)
            node.pinned = True
            node.fixed = True
            node.vx = node.vy = 0.0

    # --- Alignment ---

    def _merged_groups(self, graph: "GraphModel", alignments: list[AlignmentGroup], axis: str) -> list[list[str]]:
        disjoint = _DisjointSet()
        for group in alignments:
            if group.axis != axis:
                continue
            members = [nid for nid in group.node_ids if nid in graph.nodes]
            for node_id in members:
                disjoint.find(node_id)
            for a, b in zip(members, members[1:]):
                disjoint.union(a, b)
        return [g for g in disjoint.groups() if len(g) > 1]

    def _align(self, graph: "GraphModel", groups: list[list[str]], axis: str, moved: set[str]):
        for members in groups:
            nodes = [graph.nodes[nid] for nid in members]
            values = [_coord(n, axis) for n in nodes]
            if max(values) - min(values) <= TOLERANCE:
                continue

            anchors = [v for n, v in zip(nodes, values) if n.fixed]
            target = sum(anchors) / len(anchors) if anchors else sum(values) / len(values)
            for node, value in zip(nodes, values):
                if node.fixed:
                    continue
                delta = target - value
                if abs(delta) > TOLERANCE:
                    _shift(graph, node.id, axis, delta)
                    moved.add(node.id)

    # --- Relative Ordering ---

    def _order(
        self,
        graph: "GraphModel",
        groups: list[list[str]],
        pairs: list[RelativePair],
        axis: str,
        moved: set[str],
    ):
        blocks: list[list[str]] = []
        block_of: dict[str, int] = {}
        for members in groups:
            for node_id in members:
                block_of[node_id] = len(blocks)
            blocks.append(members)
        for pair in pairs:
            for node_id in (pair.before, pair.after):
                if node_id not in block_of:
                    block_of[node_id] = len(blocks)
                    blocks.append([node_id])

        successors: list[dict[int, float]] = [{} for _ in blocks]
        for pair in pairs:
            a, b = block_of[pair.before], block_of[pair.after]
            if a == b:
                logger.debug("Relative constraint %s -> %s inside one aligned block ignored",
                             pair.before, pair.after)
                continue
            successors[a][b] = max(successors[a].get(b, pair.gap), pair.gap)

        order = self._topological_order(successors, blocks, axis)

        current = [sum(_coord(graph.nodes[nid], axis) for nid in members) / len(members) for members in blocks]
        anchored = [any(graph.nodes[nid].fixed for nid in members) for members in blocks]
        target = list(current)

        # Push successors forward
        for u in order:
            for v, gap in successors[u].items():
                if not anchored[v] and target[u] + gap > target[v] + TOLERANCE:
                    target[v] = target[u] + gap

        # Pull free predecessors in front of anchored successors
        for u in reversed(order):
            if anchored[u]:
                continue
            for v, gap in successors[u].items():
                if target[u] + gap > target[v] + TOLERANCE:
                    target[u] = target[v] - gap

        for index, members in enumerate(blocks):
            delta = target[index] - current[index]
            if abs(delta) <= TOLERANCE:
                continue
            for node_id in members:
                if graph.nodes[node_id].fixed:
                    continue
                _shift(graph, node_id, axis, delta)
                moved.add(node_id)

    @staticmethod
    def _topological_order(successors: list[dict[int, float]], blocks: list[list[str]], axis: str) -> list[int]:
        """Kahn's algorithm; raises ConstraintCycleError if blocks remain."""
        indegree = [0] * len(successors)
        for edges in successors:
            for v in edges:
                indegree[v] += 1

        ready = [i for i, d in enumerate(indegree) if d == 0]
        order: list[int] = []
        while ready:
            u = ready.pop(0)
            order.append(u)
            for v in successors[u]:
                indegree[v] -= 1
                if indegree[v] == 0:
                    ready.append(v)

        if len(order) < len(successors):
            stuck = [nid for i, d in enumerate(indegree) if d > 0 for nid in blocks[i]]
            raise ConstraintCycleError(axis, stuck)
        return order
