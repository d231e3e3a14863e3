"""
Coordinate mappings applied by the transform phase.

Provides:
- Rigid (rotation or reflection) Procrustes fits between point sets
- Restoring a saved layout, with unknown nodes following the rigid fit
- Constraint-guided fits (pins, alignment targets, majority reflection)
- Direction flips for top-bottom / bottom-top / left-right / right-left flow

All functions move non-fixed leaves only and refresh compound bounds.
"""

import logging
import math
from dataclasses import dataclass
from typing import Optional, TYPE_CHECKING

from .models import LayoutDirection

if TYPE_CHECKING:
    from .constraints import ConstraintSet, RelativePair
    from .graph import GraphModel

logger = logging.getLogger(__name__)

Point = tuple[float, float]


@dataclass
class RigidTransform:
    """p' = M (p - source_centroid) + target_centroid, M a rotation or reflection."""
    cos: float = 1.0
    sin: float = 0.0
    reflect: bool = False
    source_centroid: Point = (0.0, 0.0)
    target_centroid: Point = (0.0, 0.0)

    def apply(self, x: float, y: float) -> Point:
        px = x - self.source_centroid[0]
        py = y - self.source_centroid[1]
        if self.reflect:
            qx = self.cos * px + self.sin * py
            qy = self.sin * px - self.cos * py
        else:
            qx = self.cos * px - self.sin * py
            qy = self.sin * px + self.cos * py
        return qx + self.target_centroid[0], qy + self.target_centroid[1]


def _centroid(points: list[Point]) -> Point:
    return (sum(p[0] for p in points) / len(points), sum(p[1] for p in points) / len(points))


def fit_rigid(sources: list[Point], targets: list[Point]) -> RigidTransform:
    """
    Orthogonal Procrustes fit mapping `sources` onto `targets`.

    Tries the best rotation and the best reflection and keeps whichever
    correlates better. One point gives a pure translation; none gives identity.
    """
    if not sources or len(sources) != len(targets):
        return RigidTransform()
    source_centroid = _centroid(sources)
    target_centroid = _centroid(targets)
    if len(sources) == 1:
        return RigidTransform(source_centroid=source_centroid, target_centroid=target_centroid)

    hxx = hxy = hyx = hyy = 0.0
    for (sx, sy), (tx, ty) in zip(sources, targets):
        sx -= source_centroid[0]
        sy -= source_centroid[1]
        tx -= target_centroid[0]
        ty -= target_centroid[1]
        hxx += sx * tx
        hxy += sx * ty
        hyx += sy * tx
        hyy += sy * ty

    rotation_score = math.hypot(hxx + hyy, hxy - hyx)
    reflection_score = math.hypot(hxx - hyy, hxy + hyx)
    if reflection_score > rotation_score:
        theta = math.atan2(hxy + hyx, hxx - hyy)
        reflect = True
    else:
        theta = math.atan2(hxy - hyx, hxx + hyy)
        reflect = False

    return RigidTransform(
        cos=math.cos(theta),
        sin=math.sin(theta),
        reflect=reflect,
        source_centroid=source_centroid,
        target_centroid=target_centroid,
    )


def _movable_leaves(graph: "GraphModel"):
    return [n for n in graph.nodes.values() if not n.children and not n.fixed]


def apply_rigid(graph: "GraphModel", transform: RigidTransform) -> int:
    """Map every non-fixed leaf through `transform`."""
    leaves = _movable_leaves(graph)
    for node in leaves:
        node.x, node.y = transform.apply(node.x, node.y)
    graph.update_compound_bounds()
    return len(leaves)


# --- Saved Layouts ---

def apply_saved_layout(graph: "GraphModel", saved: dict[str, Point]) -> int:
    """
    Restore saved positions.

    Leaves present in `saved` go to their saved position; the others follow
    the rigid fit from current to saved positions of the shared leaves, so
    they keep their place relative to the restored nodes.

    Returns:
        Number of leaves moved
    """
    shared = [n for n in graph.nodes.values() if not n.children and n.id in saved]
    transform = fit_rigid([(n.x, n.y) for n in shared], [saved[n.id] for n in shared])

    moved = 0
    for node in _movable_leaves(graph):
        if node.id in saved:
            node.x, node.y = saved[node.id]
        elif shared:
            node.x, node.y = transform.apply(node.x, node.y)
        else:
            continue
        node.reset_motion()
        moved += 1

    graph.update_compound_bounds()
    return moved


# --- Constraint-Guided Fits ---

def majority_reflection(graph: "GraphModel", relatives: list["RelativePair"]) -> list[str]:
    """
    Mirror the layout on every axis where most relative constraints are violated.

    Returns:
        Axes that were mirrored
    """
    bounds = graph.graph_bounds()
    if bounds is None:
        return []

    mirrored = []
    for axis in ("x", "y"):
        satisfied = violated = 0
        for pair in relatives:
            if pair.axis != axis or pair.before not in graph.nodes or pair.after not in graph.nodes:
                continue
            before = graph.nodes[pair.before]
            after = graph.nodes[pair.after]
            if (before.x <= after.x) if axis == "x" else (before.y <= after.y):
                satisfied += 1
            else:
                violated += 1
        if violated <= satisfied:
            continue

        center = (bounds[0] + bounds[2]) / 2 if axis == "x" else (bounds[1] + bounds[3]) / 2
        for node in _movable_leaves(graph):
            if axis == "x":
                node.x = 2 * center - node.x
            else:
                node.y = 2 * center - node.y
        mirrored.append(axis)

    if mirrored:
        graph.update_compound_bounds()
    return mirrored


def constraint_guided_fit(
    graph: "GraphModel",
    constraints: "ConstraintSet",
    draft_positions: Optional[dict[str, Point]] = None,
) -> str:
    """
    Rigidly move the layout toward its constraints before enforcement.

    - Two or more pinned nodes with known draft positions: fit draft -> pin
    - Otherwise alignment groups: fit current -> snapped positions, then
      mirror axes where most relative constraints are violated
    - Otherwise only relative constraints: majority reflection

    Returns:
        Short description of what was applied ("none" if nothing)
    """
    draft_positions = draft_positions or {}
    pinned = [p.node_id for p in constraints.pins
              if p.node_id in graph.nodes and p.node_id in draft_positions]
    if len(pinned) >= 2:
        sources = [draft_positions[nid] for nid in pinned]
        targets = [(graph.nodes[nid].x, graph.nodes[nid].y) for nid in pinned]
        apply_rigid(graph, fit_rigid(sources, targets))
        return "pins"

    if constraints.alignments:
        sources: list[Point] = []
        targets: list[Point] = []
        for group in constraints.alignments:
            members = [graph.nodes[nid] for nid in group.node_ids if nid in graph.nodes]
            if len(members) < 2:
                continue
            if group.axis == "x":
                mean_x = sum(n.x for n in members) / len(members)
                targets.extend((mean_x, n.y) for n in members)
            else:
                mean_y = sum(n.y for n in members) / len(members)
                targets.extend((n.x, mean_y) for n in members)
            sources.extend((n.x, n.y) for n in members)
        if sources:
            apply_rigid(graph, fit_rigid(sources, targets))
        mirrored = majority_reflection(graph, constraints.relatives) if constraints.relatives else []
        return "alignment" + (f"+mirror:{''.join(mirrored)}" if mirrored else "")

    if constraints.relatives:
        mirrored = majority_reflection(graph, constraints.relatives)
        return f"mirror:{''.join(mirrored)}" if mirrored else "none"

    return "none"


# --- Direction ---

def apply_direction(graph: "GraphModel", direction: LayoutDirection) -> bool:
    """
    Re-orient the layout for a flow direction.

    top_bottom is the identity; bottom_top maps (x, y) -> (x, -y),
    left_right -> (y, x) and right_left -> (-y, x).
    """
    direction = LayoutDirection(direction)
    if direction == LayoutDirection.TOP_BOTTOM:
        return False

    for node in _movable_leaves(graph):
        x, y = node.x, node.y
        if direction == LayoutDirection.BOTTOM_TOP:
            node.x, node.y = x, -y
        elif direction == LayoutDirection.LEFT_RIGHT:
            node.x, node.y = y, x
        else:
            node.x, node.y = -y, x
    graph.update_compound_bounds()
    return True
