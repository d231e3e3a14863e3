"""
Layout Session - Thread-safe facade over one graph and its pipeline.

This module implements:
- Graph and constraint sync from the collaborating application
- Hot-swappable physics options
- Continuous polish on a background thread, cancellable between ticks
- Drag handling (fixed while dragged, release burst afterwards)
- Named saved layouts for the transform phase
- A periodic snapshot publisher with change callbacks

Every mutation of the graph happens under one re-entrant lock, so the
continuous loop, one-shot phases, syncs and drags never interleave within
a tick.
"""

import logging
import random
import threading
from dataclasses import dataclass
from typing import Any, Callable, Iterable, Optional

from pydantic import ValidationError

from .analysis import summarize_layout
from .constraints import ConstraintSet, compile_constraints, release_pins
from .graph import GraphModel, SyncReport
from .models import (
    ConstraintSpec, EdgeSpec, LayoutConfig, LayoutPhase, NodePosition, NodeSpec,
    PhysicsOptions, PhysicsOptionsUpdate, PipelineState, PositionSnapshot,
)
from .pipeline import LayoutPipeline, PhaseResult
from .validation import IssueSeverity, ValidationIssue, validate_layout, validation_summary

logger = logging.getLogger(__name__)

DEFAULT_SNAPSHOT_HZ = 30.0
DEFAULT_TICK_INTERVAL = 0.016  # Pause between continuous polish ticks (seconds)

SnapshotCallback = Callable[[PositionSnapshot], None]


@dataclass
class ConstraintReport:
    """Outcome of a constraint sync."""
    constraints: ConstraintSet
    moved: int = 0

    def to_dict(self) -> dict:
        """Convert to dictionary for JSON serialization."""
        return {**self.constraints.to_dict(), "moved": self.moved}


def _parse_specs(items: Iterable[Any], model, issues: list[ValidationIssue], kind: str) -> list:
    """Validate dicts into `model`, reporting malformed entries instead of raising."""
    specs = []
    for item in items:
        if isinstance(item, model):
            specs.append(item)
            continue
        try:
            specs.append(model.model_validate(item))
        except ValidationError as e:
            issues.append(ValidationIssue(IssueSeverity.ERROR, f"Malformed {kind} ignored: {e.errors()[0]['msg']}"))
    return specs


class LayoutSession:
    """
    Owns a GraphModel, its constraints and the LayoutPipeline running on it.

    Features:
    - Single writer lock shared by syncs, phases, drags and polish ticks
    - Continuous polish thread checking a stop event before every tick
    - Snapshot publisher notifying callbacks when the revision changed

    Call `start()` to run the publisher and `close()` to stop everything;
    the session can be used as a context manager.
    """

    def __init__(
        self,
        options: Optional[PhysicsOptions] = None,
        config: Optional[LayoutConfig] = None,
        snapshot_hz: float = DEFAULT_SNAPSHOT_HZ,
        tick_interval: float = DEFAULT_TICK_INTERVAL,
    ):
        config = config or LayoutConfig()
        self.graph = GraphModel(rng=random.Random(config.random_seed))
        self.pipeline = LayoutPipeline(self.graph, options, config)
        self._snapshot_hz = snapshot_hz
        self._tick_interval = tick_interval

        self._lock = threading.RLock()
        self._constraint_specs: list = []
        self._dragging: set[str] = set()
        self._revision = 0
        self._published_revision = -1
        self._last_snapshot = PositionSnapshot()
        self._on_snapshot_callbacks: list[SnapshotCallback] = []

        self._polish_thread: Optional[threading.Thread] = None
        self._polish_stop = threading.Event()
        self._publisher_thread: Optional[threading.Thread] = None
        self._shutdown = threading.Event()

    # --- Properties ---

    @property
    def options(self) -> PhysicsOptions:
        return self.pipeline.options

    @property
    def config(self) -> LayoutConfig:
        return self.pipeline.config

    @property
    def state(self) -> PipelineState:
        return self.pipeline.state

    @property
    def current_phase(self) -> Optional[LayoutPhase]:
        return self.pipeline.current_phase

    @property
    def is_polishing(self) -> bool:
        return self._polish_thread is not None and self._polish_thread.is_alive()

    @property
    def revision(self) -> int:
        return self._revision

    @property
    def dragging(self) -> set[str]:
        return set(self._dragging)

    def _touch(self):
        """Mark positions as changed; called with the lock held."""
        self._revision += 1

    # --- Inputs ---

    def sync_graph(self, nodes: Iterable[NodeSpec | dict], edges: Iterable[EdgeSpec | dict]) -> SyncReport:
        """
        Reconcile the graph with the collaborator's nodes and edges.

        Existing nodes keep their positions; constraints are recompiled
        against the new node set and enforced.

        Args:
            nodes: NodeSpec objects or dicts (camelCase keys accepted)
            edges: EdgeSpec objects or dicts

        Returns:
            SyncReport with added/updated/removed ids and dropped input
        """
        issues: list[ValidationIssue] = []
        node_specs = _parse_specs(nodes, NodeSpec, issues, "node")
        edge_specs = _parse_specs(edges, EdgeSpec, issues, "edge")

        with self._lock:
            report = self.graph.reconcile(node_specs, edge_specs, default_size=2 * self.options.node_base_radius)
            self._dragging &= set(self.graph.nodes)
            if self._constraint_specs:
                self._apply_constraints()
            self._touch()

        report.issues = issues + report.issues
        return report

    def sync_constraints(self, constraints: Iterable[ConstraintSpec | dict]) -> ConstraintReport:
        """
        Replace the constraint set and enforce it immediately.

        Malformed constraints and unknown node ids are reported, not raised.
        """
        with self._lock:
            self._constraint_specs = list(constraints)
            report = self._apply_constraints()
            self._touch()

        if report.constraints.issues:
            logger.warning("Constraint sync dropped %d item(s)", len(report.constraints.issues))
        return report

    def _apply_constraints(self) -> ConstraintReport:
        release_pins(self.graph, keep_fixed=self._held_ids())
        compiled = compile_constraints(self._constraint_specs, self.graph)
        self.pipeline.set_constraints(compiled)
        moved = self.pipeline.enforce()
        return ConstraintReport(constraints=compiled, moved=moved)

    def set_physics_options(self, options: PhysicsOptions | PhysicsOptionsUpdate | dict) -> PhysicsOptions:
        """
        Swap the physics options; the next tick uses them.

        Accepts full options, a partial update, or a dict of either.
        """
        if isinstance(options, dict):
            options = PhysicsOptionsUpdate.model_validate(options)
        with self._lock:
            if isinstance(options, PhysicsOptionsUpdate):
                options = options.apply_to(self.pipeline.options)
            self.pipeline.set_options(options)
        logger.debug("Physics options updated: %s", options.model_dump(mode='json'))
        return options

    # --- Phases ---

    def run_phase(self, phase: LayoutPhase | str, **params) -> PhaseResult:
        """
        Run one phase to completion, queued behind the current tick.

        Args:
            phase: Phase name or enum
            **params: layout, ticks, direction (see LayoutPipeline.run_phase)

        Raises:
            ValueError: Unknown phase or saved layout name
            InvalidTransitionError: Another phase is running
        """
        with self._lock:
            result = self.pipeline.run_phase(phase, should_stop=self._shutdown.is_set, **params)
            self._touch()
        return result

    def run_all(self) -> list[PhaseResult]:
        """Run every phase in order as one uninterrupted sequence."""
        with self._lock:
            results = self.pipeline.run_all(should_stop=self._shutdown.is_set)
            self._touch()
        return results

    def start_polish(self) -> bool:
        """
        Start continuous polish on a background thread.

        Returns:
            False if it was already running
        """
        with self._lock:
            if self.is_polishing:
                return False
            self.pipeline.begin_continuous()
            self._polish_stop.clear()
            self._polish_thread = threading.Thread(target=self._polish_loop, name="layout-polish", daemon=True)
            self._polish_thread.start()
        logger.info("Continuous polish started")
        return True

    def stop_polish(self, wait: bool = True) -> bool:
        """
        Stop continuous polish.

        With `wait`, returns only after the loop has exited, so no tick is in
        progress afterwards.

        Returns:
            False if polish was not running
        """
        thread = self._polish_thread
        if thread is None:
            return False
        self._polish_stop.set()
        if wait and thread is not threading.current_thread():
            thread.join()
        with self._lock:
            self.pipeline.end_continuous()
            self._polish_thread = None
        logger.info("Continuous polish stopped")
        return True

    def _polish_loop(self):
        while not self._polish_stop.is_set():
            with self._lock:
                if self._polish_stop.is_set():
                    break
                self.pipeline.step()
                self._touch()
            if self._polish_stop.wait(self._tick_interval):
                break

    # --- Drag ---

    def _drag_group(self, node_id: str) -> list[str]:
        """A dragged node plus its descendants; all are held by the pointer."""
        return [node_id] + self.graph.descendants(node_id)

    def _held_ids(self) -> set[str]:
        held: set[str] = set()
        for node_id in self._dragging:
            held.update(self._drag_group(node_id))
        return held

    def on_drag_start(self, node_id: str) -> bool:
        """Fix a node and its descendants so the pointer owns their positions. Unknown ids return False."""
        with self._lock:
            if node_id not in self.graph.nodes:
                return False
            for nid in self._drag_group(node_id):
                node = self.graph.nodes[nid]
                node.fixed = True
                node.vx = node.vy = 0.0
            self._dragging.add(node_id)
            self._touch()
        return True

    def on_drag(self, node_id: str, dx: float, dy: float) -> bool:
        """
        Move a dragged node (and its descendants) by a pointer delta.

        Free direct neighbours are pulled along by config.drag_follow_share
        of the delta. When continuous polish is off, a few ticks run so the
        rest of the graph settles around them.
        """
        with self._lock:
            if node_id not in self.graph.nodes:
                return False
            if node_id not in self._dragging:
                self.on_drag_start(node_id)
            self.graph.translate(node_id, dx, dy)
            self._pull_neighbours(node_id, dx, dy)
            if not self.is_polishing and self.config.drag_follow_ticks:
                self.pipeline.polish(ticks=self.config.drag_follow_ticks, energy=1.0, enforce=False)
            self.graph.update_compound_bounds()
            self._touch()
        return True

    def _pull_neighbours(self, node_id: str, dx: float, dy: float) -> int:
        """Translate free neighbours of the drag group by a share of the pointer delta."""
        share = self.config.drag_follow_share
        if not share:
            return 0
        group = set(self._drag_group(node_id))
        followers = set()
        for nid in group:
            followers |= self.graph.neighbors(nid)
        followers -= group
        # A follower that contains the group or sits inside another follower is moved with it
        followers = {
            f for f in followers
            if not self.graph.nodes[f].fixed
            and not any(self.graph.is_ancestor(f, nid) for nid in group)
            and not any(self.graph.is_ancestor(other, f) for other in followers)
        }
        for follower in followers:
            self.graph.translate(follower, dx * share, dy * share)
        return len(followers)

    def on_drag_end(self, node_id: str) -> bool:
        """Release a dragged node and run a settling burst. Pinned nodes stay fixed."""
        with self._lock:
            if node_id not in self.graph.nodes:
                return False
            self._dragging.discard(node_id)
            held = self._held_ids()
            for nid in self._drag_group(node_id):
                node = self.graph.nodes[nid]
                node.fixed = node.pinned or nid in held
                node.reset_motion()
            self.pipeline.polish(
                ticks=self.config.drag_release_ticks,
                energy=self.config.burst_energy,
                should_stop=self._shutdown.is_set,
            )
            self._touch()
        return True

    # --- Saved Layouts ---

    def save_layout(self, name: str) -> int:
        """Save current leaf positions under `name` (replacing any previous one)."""
        with self._lock:
            positions = {n.id: (n.x, n.y) for n in self.graph.leaves()}
            self.pipeline.saved_layouts[name] = positions
        logger.info("Saved layout '%s' with %d nodes", name, len(positions))
        return len(positions)

    def list_saved_layouts(self) -> dict[str, int]:
        """Saved layout names with their node counts."""
        with self._lock:
            return {name: len(positions) for name, positions in self.pipeline.saved_layouts.items()}

    def delete_saved_layout(self, name: str):
        with self._lock:
            if name not in self.pipeline.saved_layouts:
                raise ValueError(f"Unknown saved layout: {name}")
            del self.pipeline.saved_layouts[name]

    # --- Read Model ---

    def _build_snapshot(self) -> PositionSnapshot:
        return PositionSnapshot(
            revision=self._revision,
            state=self.pipeline.state,
            nodes=tuple(
                NodePosition(id=n.id, x=n.x, y=n.y, width=n.width, height=n.height, fixed=n.fixed)
                for n in self.graph.nodes.values()
            ),
        )

    def position_snapshot(self) -> PositionSnapshot:
        """Immutable copy of every node position, taken between ticks."""
        with self._lock:
            return self._build_snapshot()

    @property
    def last_snapshot(self) -> PositionSnapshot:
        """Most recently published snapshot."""
        return self._last_snapshot

    def summary(self) -> dict:
        """Structural summary plus layout validation results."""
        with self._lock:
            summary = summarize_layout(self.graph).to_dict()
            issues = validate_layout(self.graph)
        summary["validation"] = validation_summary(issues)
        summary["state"] = self.pipeline.state.value
        return summary

    # --- Snapshot Publishing ---

    def on_snapshot(self, callback: SnapshotCallback):
        """Register a callback for newly published snapshots."""
        self._on_snapshot_callbacks.append(callback)

    def remove_snapshot_callback(self, callback: SnapshotCallback):
        if callback in self._on_snapshot_callbacks:
            self._on_snapshot_callbacks.remove(callback)

    def publish(self) -> Optional[PositionSnapshot]:
        """
        Publish a snapshot if positions changed since the last one.

        Callbacks run outside the lock.

        Returns:
            The new snapshot, or None if nothing changed
        """
        with self._lock:
            if self._revision == self._published_revision:
                return None
            snapshot = self._build_snapshot()
            self._published_revision = self._revision
            self._last_snapshot = snapshot

        for callback in list(self._on_snapshot_callbacks):
            try:
                callback(snapshot)
            except Exception:
                logger.exception("Snapshot callback failed")
        return snapshot

    def _publisher_loop(self):
        period = 1.0 / self._snapshot_hz
        while not self._shutdown.wait(period):
            self.publish()

    # --- Lifecycle ---

    def start(self):
        """Start the snapshot publisher (no-op if running)."""
        if self._publisher_thread is not None and self._publisher_thread.is_alive():
            return
        self._shutdown.clear()
        self._publisher_thread = threading.Thread(
            target=self._publisher_loop, name="layout-snapshots", daemon=True)
        self._publisher_thread.start()

    def close(self):
        """Stop continuous polish and the publisher; the graph is left between ticks."""
        self._shutdown.set()
        self.stop_polish()
        thread = self._publisher_thread
        if thread is not None and thread is not threading.current_thread():
            thread.join()
        self._publisher_thread = None

    def __enter__(self) -> "LayoutSession":
        self.start()
        return self

    def __exit__(self, *exc_info):
        self.close()
