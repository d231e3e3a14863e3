"""
Barnes-Hut quadtree used to approximate long-range repulsion.

The tree is rebuilt from scratch every tick. Cells live in an arena of
parallel lists addressed by integer handles; `reset` rewinds the arena so
the lists are reused across ticks instead of reallocated.

Each cell stores:
- its square boundary (left, top, side)
- aggregated mass and mass-weighted center of mass of its subtree
- either a body list (leaf) or the handle of its first of four children
"""

import math
from typing import Callable, Iterable, Optional, TYPE_CHECKING

if TYPE_CHECKING:
    from .graph import LayoutNode
    from .models import PhysicsOptions

NO_CHILD = -1
MAX_DEPTH = 30              # Deeper inserts share one bucket leaf
DISTANCE_EPSILON = 0.1      # Zero distances are clamped to this
COLLISION_STIFFNESS = 10.0  # Overlap push, relative to repulsion
ROOT_PADDING_SCALE = 1.2
ROOT_PADDING = 100.0


def pairwise_force(
    target: "LayoutNode",
    target_mass: float,
    body: "LayoutNode",
    body_mass: float,
    repulsion: float,
    min_distance: float,
) -> tuple[float, float]:
    """
    Direct repulsive force of `body` on `target`.

    Inverse-distance repulsion plus a collision term once the two boxes
    come closer than the sum of their radii plus `min_distance`.
    """
    dx = target.x - body.x
    dy = target.y - body.y
    dist = math.hypot(dx, dy)
    if dist == 0.0:
        # Coincident bodies separate along x, ordered by id
        ux, uy = (1.0, 0.0) if target.id > body.id else (-1.0, 0.0)
    else:
        ux, uy = dx / dist, dy / dist
    dist = max(dist, DISTANCE_EPSILON)

    magnitude = repulsion * target_mass * body_mass / dist
    min_allowed = target.radius + body.radius + min_distance
    if dist < min_allowed:
        magnitude += (min_allowed - dist) * repulsion * COLLISION_STIFFNESS
    return ux * magnitude, uy * magnitude


class QuadTree:
    """
    Arena-backed Barnes-Hut quadtree.

    Usage per tick:
        tree.build(nodes)
        fx, fy = tree.apply_repulsion(node, options)
    """

    def __init__(self):
        self._left: list[float] = []
        self._top: list[float] = []
        self._side: list[float] = []
        self._mass: list[float] = []
        self._com_x: list[float] = []
        self._com_y: list[float] = []
        self._child: list[int] = []
        self._depth: list[int] = []
        self._bodies: list[Optional[list[tuple["LayoutNode", float]]]] = []
        self._count = 0
        self.rejected = 0  # Bodies refused since the last reset

    # --- Arena ---

    def _allocate(self, left: float, top: float, side: float, depth: int) -> int:
        handle = self._count
        if handle == len(self._left):
            self._left.append(left)
            self._top.append(top)
            self._side.append(side)
            self._mass.append(0.0)
            self._com_x.append(0.0)
            self._com_y.append(0.0)
            self._child.append(NO_CHILD)
            self._depth.append(depth)
            self._bodies.append(None)
        else:
            self._left[handle] = left
            self._top[handle] = top
            self._side[handle] = side
            self._mass[handle] = 0.0
            self._com_x[handle] = 0.0
            self._com_y[handle] = 0.0
            self._child[handle] = NO_CHILD
            self._depth[handle] = depth
            self._bodies[handle] = None
        self._count += 1
        return handle

    def reset(self, left: float, top: float, side: float):
        """Drop every cell and start over with an empty root square."""
        self._count = 0
        self.rejected = 0
        self._allocate(left, top, side, 0)

    def build(
        self,
        nodes: Iterable["LayoutNode"],
        mass_of: Optional[Callable[["LayoutNode"], float]] = None,
    ) -> "QuadTree":
        """
        Reset the tree around `nodes` and insert all of them.

        Args:
            nodes: Bodies to insert
            mass_of: Optional override for a body's mass (defaults to node.mass)

        Returns:
            self, for chaining
        """
        nodes = list(nodes)
        finite = [n for n in nodes if math.isfinite(n.x) and math.isfinite(n.y)]
        if not finite:
            self.reset(-ROOT_PADDING / 2, -ROOT_PADDING / 2, ROOT_PADDING)
            self.rejected = len(nodes)
            return self

        min_x = min(n.x for n in finite)
        max_x = max(n.x for n in finite)
        min_y = min(n.y for n in finite)
        max_y = max(n.y for n in finite)
        side = max(max_x - min_x, max_y - min_y) * ROOT_PADDING_SCALE + ROOT_PADDING
        center_x = (min_x + max_x) / 2
        center_y = (min_y + max_y) / 2
        self.reset(center_x - side / 2, center_y - side / 2, side)

        for node in nodes:
            self.insert(node, mass_of(node) if mass_of else None)
        return self

    # --- Geometry ---

    def _contains(self, handle: int, x: float, y: float) -> bool:
        left = self._left[handle]
        top = self._top[handle]
        side = self._side[handle]
        return left <= x <= left + side and top <= y <= top + side

    def _subdivide(self, handle: int):
        half = self._side[handle] / 2
        left = self._left[handle]
        top = self._top[handle]
        depth = self._depth[handle] + 1
        # NW, NE, SW, SE are allocated contiguously
        first = self._allocate(left, top, half, depth)
        self._allocate(left + half, top, half, depth)
        self._allocate(left, top + half, half, depth)
        self._allocate(left + half, top + half, half, depth)
        self._child[handle] = first

    def _quadrant(self, handle: int, x: float, y: float) -> int:
        half = self._side[handle] / 2
        index = 0
        if x >= self._left[handle] + half:
            index += 1
        if y >= self._top[handle] + half:
            index += 2
        return self._child[handle] + index

    def _add_mass(self, handle: int, x: float, y: float, mass: float):
        total = self._mass[handle] + mass
        if total > 0:
            self._com_x[handle] = (self._com_x[handle] * self._mass[handle] + x * mass) / total
            self._com_y[handle] = (self._com_y[handle] * self._mass[handle] + y * mass) / total
        self._mass[handle] = total

    # --- Insertion ---

    def insert(self, node: "LayoutNode", mass: Optional[float] = None) -> bool:
        """
        Insert a body, re-weighting every cell on its path.

        Returns False (and counts the body as rejected) when its position is
        non-finite or outside the root square.
        """
        body_mass = node.mass if mass is None else mass
        x, y = node.x, node.y
        if self._count == 0 or not (math.isfinite(x) and math.isfinite(y)) or not self._contains(0, x, y):
            self.rejected += 1
            return False

        handle = 0
        while True:
            if self._child[handle] == NO_CHILD:
                bodies = self._bodies[handle]
                if bodies is None:
                    self._bodies[handle] = [(node, body_mass)]
                    self._mass[handle] = body_mass
                    self._com_x[handle] = x
                    self._com_y[handle] = y
                    return True
                if self._depth[handle] >= MAX_DEPTH:
                    bodies.append((node, body_mass))
                    self._add_mass(handle, x, y, body_mass)
                    return True

                # Occupied leaf: push the resident body one level down
                resident, resident_mass = bodies[0]
                self._bodies[handle] = None
                self._subdivide(handle)
                quadrant = self._quadrant(handle, resident.x, resident.y)
                self._bodies[quadrant] = [(resident, resident_mass)]
                self._mass[quadrant] = resident_mass
                self._com_x[quadrant] = resident.x
                self._com_y[quadrant] = resident.y

            self._add_mass(handle, x, y, body_mass)
            handle = self._quadrant(handle, x, y)

    # --- Force Queries ---

    def apply_repulsion(
        self,
        target: "LayoutNode",
        options: "PhysicsOptions",
        theta: Optional[float] = None,
        target_mass: Optional[float] = None,
    ) -> tuple[float, float]:
        """
        Net repulsive force on `target` from every other body in the tree.

        Leaves are summed exactly. An internal cell that does not contain the
        target is collapsed into one body at its center of mass when
        side / distance < theta; otherwise its children are visited.

        Args:
            target: Node to compute the force for
            options: Physics options (repulsion, min_distance, default theta)
            theta: Accuracy override; 0 forces the exact pairwise sum
            target_mass: Mass override for the target

        Returns:
            (fx, fy) force on the target
        """
        if self._count == 0:
            return 0.0, 0.0
        theta = options.barnes_hut_theta if theta is None else theta
        mass = target.mass if target_mass is None else target_mass
        repulsion = options.repulsion
        min_distance = options.min_distance

        fx = fy = 0.0
        stack = [0]
        while stack:
            handle = stack.pop()
            first_child = self._child[handle]

            if first_child == NO_CHILD:
                bodies = self._bodies[handle]
                if bodies is None:
                    continue
                for body, body_mass in bodies:
                    if body is target:
                        continue
                    bx, by = pairwise_force(target, mass, body, body_mass, repulsion, min_distance)
                    fx += bx
                    fy += by
                continue

            dx = target.x - self._com_x[handle]
            dy = target.y - self._com_y[handle]
            dist = math.hypot(dx, dy)
            if (dist > 0 and self._side[handle] / dist < theta
                    and not self._contains(handle, target.x, target.y)):
                magnitude = repulsion * mass * self._mass[handle] / max(dist, DISTANCE_EPSILON)
                fx += dx / dist * magnitude
                fy += dy / dist * magnitude
                continue

            stack.extend((first_child, first_child + 1, first_child + 2, first_child + 3))

        return fx, fy

    # --- Properties ---

    @property
    def total_mass(self) -> float:
        """Aggregated mass of the root cell."""
        return self._mass[0] if self._count else 0.0

    @property
    def center_of_mass(self) -> tuple[float, float]:
        if not self._count:
            return (0.0, 0.0)
        return (self._com_x[0], self._com_y[0])

    @property
    def cell_count(self) -> int:
        """Cells in use since the last reset."""
        return self._count

    @property
    def capacity(self) -> int:
        """Cells allocated in the arena (reused across resets)."""
        return len(self._left)

    def cell_masses(self) -> list[tuple[float, list[float]]]:
        """(mass, child masses) for every internal cell; used to audit aggregation."""
        result = []
        for handle in range(self._count):
            first = self._child[handle]
            if first != NO_CHILD:
                result.append((self._mass[handle], [self._mass[first + i] for i in range(4)]))
        return result
