"""
Force simulation for the interactive layout.

Every tick runs the same steps:
- Gravity pulls non-fixed nodes toward the origin
- Repulsion pushes nodes apart (Barnes-Hut or exact pairwise)
- Springs pull connected nodes toward their ideal length
- ForceAtlas2-style adaptive speed slows nodes that oscillate
- Euler integration with damping

Implementations only differ in how repulsion is computed, so the tick is a
template method on ForceSimulator and subclasses supply `_apply_repulsion`.
"""

import logging
import math
from abc import ABC, abstractmethod
from typing import TYPE_CHECKING

from .models import PhysicsOptions, SolverType
from .quadtree import QuadTree, pairwise_force

if TYPE_CHECKING:
    from .graph import LayoutNode, LayoutEdge

logger = logging.getLogger(__name__)

DEFAULT_DT = 0.032             # Seconds; also the upper bound used by the polish loop
HYPERNODE_REPULSION_MASS = 0.1  # Hypernodes barely repel so n-ary stars stay compact
SPRING_LENGTH_FACTOR = 5.0     # idealLength = rA + rB + minDistance * factor
MIN_GLOBAL_SPEED = 0.01
MAX_GLOBAL_SPEED = 10.0
STALLED_GLOBAL_SPEED = 0.1     # Used when nothing swings at all


def repulsion_mass(node: "LayoutNode") -> float:
    return HYPERNODE_REPULSION_MASS if node.hypernode else node.mass


def ideal_length(a: "LayoutNode", b: "LayoutNode", options: PhysicsOptions) -> float:
    """Rest length of the spring between two nodes."""
    return a.radius + b.radius + options.min_distance * SPRING_LENGTH_FACTOR


def direct_repulsion(
    target: "LayoutNode",
    nodes: list["LayoutNode"],
    options: PhysicsOptions,
) -> tuple[float, float]:
    """Exact O(n) sum of pairwise repulsion on `target`."""
    fx = fy = 0.0
    target_mass = repulsion_mass(target)
    for body in nodes:
        if body is target or not (math.isfinite(body.x) and math.isfinite(body.y)):
            continue
        bx, by = pairwise_force(target, target_mass, body, repulsion_mass(body),
                                options.repulsion, options.min_distance)
        fx += bx
        fy += by
    return fx, fy


class ForceSimulator(ABC):
    """
    One force-directed integration step over a set of nodes and edges.

    After each tick `global_speed` and `max_displacement` describe how much
    the layout moved, which polish bursts use to stop early.
    """

    def __init__(self):
        self.global_speed = STALLED_GLOBAL_SPEED
        self.max_displacement = 0.0
        self.ticks = 0

    @abstractmethod
    def _apply_repulsion(self, nodes: list["LayoutNode"], options: PhysicsOptions):
        """Add repulsion to fx/fy of every non-fixed node."""

    def tick(
        self,
        nodes: list["LayoutNode"],
        edges: list["LayoutEdge"],
        options: PhysicsOptions,
        dt: float = DEFAULT_DT,
    ) -> list["LayoutNode"]:
        """
        Advance the simulation by one step.

        Args:
            nodes: Nodes to move (modified in-place)
            edges: Springs between them; edges with unknown endpoints are ignored
            options: Physics constants for this tick
            dt: Time step in seconds

        Returns:
            The same list of nodes (modified in-place)
        """
        self.max_displacement = 0.0
        if not nodes:
            return nodes

        for node in nodes:
            node.fx = node.fy = 0.0

        self._apply_gravity(nodes, options)
        self._apply_repulsion(nodes, options)
        self._apply_springs(nodes, edges, options)
        speed = self._adapt_speed(nodes, options)
        self._integrate(nodes, options, dt, speed)

        self.ticks += 1
        if logger.isEnabledFor(logging.DEBUG):
            logger.debug("tick %d: speed=%.4f max_disp=%.4f", self.ticks, speed, self.max_displacement)
        return nodes

    # --- Force Steps ---

    def _apply_gravity(self, nodes: list["LayoutNode"], options: PhysicsOptions):
        gravity = options.gravity
        for node in nodes:
            if node.fixed:
                continue
            node.fx -= node.x * gravity * node.mass
            node.fy -= node.y * gravity * node.mass

    def _apply_springs(self, nodes: list["LayoutNode"], edges: list["LayoutEdge"], options: PhysicsOptions):
        node_map = {n.id: n for n in nodes}
        for edge in edges:
            a = node_map.get(edge.source)
            b = node_map.get(edge.target)
            if a is None or b is None or a is b or a.fixed or b.fixed:
                continue

            dx = b.x - a.x
            dy = b.y - a.y
            dist = math.hypot(dx, dy)
            if dist == 0.0:
                continue

            multiplier = options.hypernode_spring_multiplier if (a.hypernode or b.hypernode) else 1.0
            force = (dist - ideal_length(a, b, options)) * options.spring * edge.strength * multiplier
            fx = dx / dist * force
            fy = dy / dist * force
            a.fx += fx
            a.fy += fy
            b.fx -= fx
            b.fy -= fy

    def _adapt_speed(self, nodes: list["LayoutNode"], options: PhysicsOptions) -> float:
        """Compute swinging/traction per node and the resulting global speed."""
        global_swinging = 0.0
        global_traction = 0.0
        for node in nodes:
            if node.fixed:
                continue
            node.swinging = math.hypot(node.fx - node.prev_fx, node.fy - node.prev_fy)
            node.traction = math.hypot(node.fx + node.prev_fx, node.fy + node.prev_fy) / 2
            global_swinging += node.mass * node.swinging
            global_traction += node.mass * node.traction
            node.prev_fx = node.fx
            node.prev_fy = node.fy

        if global_swinging > 0:
            speed = options.tolerance * global_traction / global_swinging
            speed = min(MAX_GLOBAL_SPEED, max(MIN_GLOBAL_SPEED, speed))
        else:
            speed = STALLED_GLOBAL_SPEED
        self.global_speed = speed
        return speed

    def _integrate(self, nodes: list["LayoutNode"], options: PhysicsOptions, dt: float, speed: float):
        damping = options.damping
        for node in nodes:
            if node.fixed:
                node.vx = node.vy = 0.0
                continue

            local_speed = speed / (1 + speed * math.sqrt(node.swinging))
            node.vx = (node.vx + node.fx / node.mass * dt) * damping
            node.vy = (node.vy + node.fy / node.mass * dt) * damping
            step_x = node.vx * dt * local_speed
            step_y = node.vy * dt * local_speed
            node.x += step_x
            node.y += step_y
            self.max_displacement = max(self.max_displacement, math.hypot(step_x, step_y))


class BarnesHutSimulator(ForceSimulator):
    """Default simulator: repulsion through a per-tick quadtree."""

    def __init__(self):
        super().__init__()
        self._tree = QuadTree()

    def _apply_repulsion(self, nodes: list["LayoutNode"], options: PhysicsOptions):
        if options.repulsion == 0:
            return
        self._tree.build(nodes, mass_of=repulsion_mass)
        for node in nodes:
            if node.fixed:
                continue
            fx, fy = self._tree.apply_repulsion(node, options, target_mass=repulsion_mass(node))
            node.fx += fx
            node.fy += fy


class DirectSimulator(ForceSimulator):
    """Reference simulator: exact O(n^2) pairwise repulsion."""

    def _apply_repulsion(self, nodes: list["LayoutNode"], options: PhysicsOptions):
        if options.repulsion == 0:
            return
        for node in nodes:
            if node.fixed:
                continue
            fx, fy = direct_repulsion(node, nodes, options)
            node.fx += fx
            node.fy += fy


def create_simulator(solver: SolverType | str = SolverType.BARNES_HUT) -> ForceSimulator:
    """
    Create a simulator for the given solver type.

    Args:
        solver: "barnes_hut" or "direct"

    Returns:
        A fresh ForceSimulator
    """
    solver = SolverType(solver)
    if solver == SolverType.DIRECT:
        return DirectSimulator()
    return BarnesHutSimulator()
