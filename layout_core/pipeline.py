"""
Layout pipeline - The phase state machine driving one graph.

Phases, run individually or chained by `run_all`:
- randomize: scatter non-fixed leaves
- draft: global layout (spectral or hierarchical)
- transform: saved layout / constraint-guided fit, then flow direction
- enforce: apply the compiled constraints
- polish: bounded burst of force-simulation ticks

States are Idle, Running(phase) and Polishing. Polishing is entered and
left explicitly by the owner of the continuous loop; one-shot phases may run
while polishing and return to it afterwards. The pipeline itself is not
thread-safe: callers serialize access (see LayoutSession).
"""

import logging
import random
import time
from contextlib import contextmanager
from dataclasses import dataclass
from typing import Callable, Optional

import numpy as np

from .constraints import ConstraintEnforcer, ConstraintSet
from .errors import InvalidTransitionError
from .graph import GraphModel, LayoutEdge, LayoutNode
from .hierarchical import hierarchical_layout
from .models import (
    DraftStrategy, LayoutConfig, LayoutDirection, LayoutPhase, PhysicsOptions, PipelineState
)
from .physics import DEFAULT_DT, ForceSimulator, create_simulator
from .spectral import SpectralEmbedder
from .transform import Point, apply_direction, apply_saved_layout, constraint_guided_fit

logger = logging.getLogger(__name__)

MIN_SETTLE_TICKS = 10  # Bursts never stop early before this many ticks


@dataclass
class PhaseResult:
    """Outcome of one phase run."""
    phase: LayoutPhase
    changed: bool
    ticks: int = 0
    duration_ms: float = 0.0
    detail: str = ""

    def to_dict(self) -> dict:
        """Convert to dictionary for JSON serialization."""
        return {
            "phase": self.phase.value,
            "changed": self.changed,
            "ticks": self.ticks,
            "duration_ms": round(self.duration_ms, 3),
            "detail": self.detail,
        }


class LayoutPipeline:
    """
    Runs layout phases against a GraphModel.

    Holds the constraint set, the physics options, the simulator and the
    named saved layouts used by the transform phase.
    """

    def __init__(
        self,
        graph: GraphModel,
        options: Optional[PhysicsOptions] = None,
        config: Optional[LayoutConfig] = None,
        simulator: Optional[ForceSimulator] = None,
    ):
        self.graph = graph
        self.options = options or PhysicsOptions()
        self.config = config or LayoutConfig()
        self.simulator = simulator or create_simulator(self.options.solver)
        self.constraints = ConstraintSet()
        self.enforcer = ConstraintEnforcer()
        self.embedder = SpectralEmbedder(self.config, rng=np.random.default_rng(self.config.random_seed))
        self.saved_layouts: dict[str, dict[str, Point]] = {}
        self.draft_positions: dict[str, Point] = {}

        self._rng = random.Random(self.config.random_seed)
        self._state = PipelineState.IDLE
        self._phase: Optional[LayoutPhase] = None

    # --- State ---

    @property
    def state(self) -> PipelineState:
        return self._state

    @property
    def current_phase(self) -> Optional[LayoutPhase]:
        """Phase being run, None unless the state is RUNNING."""
        return self._phase

    def begin_continuous(self):
        """Enter the Polishing state."""
        if self._state == PipelineState.RUNNING:
            raise InvalidTransitionError(f"Cannot start polishing while {self._phase.value} is running")
        self._state = PipelineState.POLISHING

    def end_continuous(self):
        """Leave the Polishing state."""
        if self._state == PipelineState.POLISHING:
            self._state = PipelineState.IDLE

    @contextmanager
    def _running(self, phase: LayoutPhase):
        if self._state == PipelineState.RUNNING:
            raise InvalidTransitionError(
                f"Cannot run {phase.value} while {self._phase.value} is running")
        previous = self._state
        self._state = PipelineState.RUNNING
        self._phase = phase
        try:
            yield
        finally:
            self._state = previous
            self._phase = None

    def set_options(self, options: PhysicsOptions):
        """Swap the physics options; a solver change replaces the simulator."""
        if options.solver != self.options.solver:
            self.simulator = create_simulator(options.solver)
        self.options = options

    def set_constraints(self, constraints: ConstraintSet):
        self.constraints = constraints

    # --- Phases ---

    def run_phase(
        self,
        phase: LayoutPhase | str,
        layout: Optional[str] = None,
        ticks: Optional[int] = None,
        direction: Optional[LayoutDirection] = None,
        should_stop: Optional[Callable[[], bool]] = None,
    ) -> PhaseResult:
        """
        Run a single phase to completion.

        Args:
            phase: Phase to run (enum or its string value)
            layout: Saved layout name (transform only)
            ticks: Burst length (polish only; defaults to config.burst_ticks)
            direction: Flow direction (transform only; defaults to config.direction)
            should_stop: Polled before every polish tick

        Returns:
            PhaseResult describing what happened

        Raises:
            ValueError: Unknown phase or saved layout name
            InvalidTransitionError: Another phase is running
        """
        try:
            phase = LayoutPhase(phase)
        except ValueError:
            raise ValueError(f"Unknown phase: {phase}") from None

        with self._running(phase):
            started = time.perf_counter()
            if len(self.graph) < 2:
                if layout is not None and layout not in self.saved_layouts:
                    raise ValueError(f"Unknown saved layout: {layout}")
                self.graph.update_compound_bounds()
                return PhaseResult(phase=phase, changed=False, detail="skipped: fewer than 2 nodes")

            ran = 0
            if phase == LayoutPhase.RANDOMIZE:
                changed = self.randomize() > 0
                detail = ""
            elif phase == LayoutPhase.DRAFT:
                changed = self.draft()
                detail = self.config.draft_strategy.value
            elif phase == LayoutPhase.TRANSFORM:
                detail = self.transform(layout=layout, direction=direction)
                changed = detail != "none"
            elif phase == LayoutPhase.ENFORCE:
                moved = self.enforce()
                changed = moved > 0
                detail = f"{moved} moved"
            else:
                ran = self.polish(ticks=ticks, should_stop=should_stop)
                changed = ran > 0
                detail = f"speed={self.simulator.global_speed:.4f}"

            result = PhaseResult(
                phase=phase,
                changed=changed,
                ticks=ran,
                duration_ms=(time.perf_counter() - started) * 1000,
                detail=detail,
            )

        logger.info("Phase %s finished on %d nodes in %.1f ms (%s)",
                    phase.value, len(self.graph), result.duration_ms, detail or "ok")
        return result

    def run_all(self, should_stop: Optional[Callable[[], bool]] = None) -> list[PhaseResult]:
        """Chain randomize, draft, transform, enforce and a polish burst."""
        return [
            self.run_phase(phase, should_stop=should_stop if phase == LayoutPhase.POLISH else None)
            for phase in LayoutPhase
        ]

    def randomize(self) -> int:
        """Scatter non-fixed leaves uniformly inside the configured extents."""
        extent_x = self.config.randomize_extent_x
        extent_y = self.config.randomize_extent_y
        moved = 0
        for node in self.graph.leaves():
            if node.fixed:
                continue
            node.x = (self._rng.random() * 2 - 1) * extent_x
            node.y = (self._rng.random() * 2 - 1) * extent_y
            node.reset_motion()
            moved += 1
        self.graph.update_compound_bounds()
        return moved

    def draft(self) -> bool:
        """Run the configured global layout and remember the draft positions."""
        self.graph.reset_motion()
        if self.config.draft_strategy == DraftStrategy.HIERARCHICAL:
            # Flow direction is applied by the transform phase
            changed = hierarchical_layout(
                self.graph,
                LayoutDirection.TOP_BOTTOM,
                self.config.layer_separation,
                self.config.node_separation,
            )
            self.draft_positions = {n.id: (n.x, n.y) for n in self.graph.leaves()}
        else:
            changed = self.embedder.run(self.graph)
            self.draft_positions = dict(self.embedder.last_layout)
        return changed

    def transform(self, layout: Optional[str] = None, direction: Optional[LayoutDirection] = None) -> str:
        """
        Apply a saved layout, or fit the draft to the constraints and orient it.

        A restored layout is taken as-is; the flow direction only applies to
        drafts.

        Returns:
            Comma-separated description of what was applied ("none" if nothing)
        """
        if layout is not None:
            saved = self.saved_layouts.get(layout)
            if saved is None:
                raise ValueError(f"Unknown saved layout: {layout}")
            moved = apply_saved_layout(self.graph, saved)
            return f"layout:{layout} ({moved} moved)"

        applied = []
        fit = constraint_guided_fit(self.graph, self.constraints, self.draft_positions)
        if fit != "none":
            applied.append(fit)
        direction = LayoutDirection(direction or self.config.direction)
        if apply_direction(self.graph, direction):
            applied.append(direction.value)
        return ",".join(applied) or "none"

    def enforce(self) -> int:
        """Apply the current constraint set; returns the number of nodes moved."""
        moved = self.enforcer.enforce(self.graph, self.constraints)
        self.graph.update_compound_bounds()
        return moved

    def polish(
        self,
        ticks: Optional[int] = None,
        should_stop: Optional[Callable[[], bool]] = None,
        energy: Optional[float] = None,
        enforce: bool = True,
    ) -> int:
        """
        Run a bounded burst of simulation ticks.

        The time step starts at `energy` x DEFAULT_DT and cools linearly to
        DEFAULT_DT over the burst. After MIN_SETTLE_TICKS the burst stops
        early once no node moves more than config.settle_threshold in a tick.

        Args:
            ticks: Burst length (defaults to config.burst_ticks)
            should_stop: Polled before every tick; True cancels the burst
            energy: Initial time step multiplier (defaults to config.burst_energy)
            enforce: Re-apply constraints after the burst

        Returns:
            Number of ticks actually run
        """
        ticks = self.config.burst_ticks if ticks is None else ticks
        energy = self.config.burst_energy if energy is None else energy
        nodes, edges = self._physics_view()

        ran = 0
        for i in range(ticks):
            if should_stop is not None and should_stop():
                logger.debug("Polish burst cancelled after %d ticks", ran)
                break
            progress = i / (ticks - 1) if ticks > 1 else 1.0
            scale = energy + (1.0 - energy) * progress
            self.simulator.tick(nodes, edges, self.options, DEFAULT_DT * scale)
            ran += 1
            if ran >= MIN_SETTLE_TICKS and self.simulator.max_displacement < self.config.settle_threshold:
                logger.debug("Polish burst settled after %d ticks", ran)
                break

        if enforce and len(self.constraints):
            self.enforcer.enforce(self.graph, self.constraints)
        self.graph.update_compound_bounds()
        return ran

    def step(self, dt: float = DEFAULT_DT):
        """One continuous-polish tick followed by constraint enforcement."""
        nodes, edges = self._physics_view()
        self.simulator.tick(nodes, edges, self.options, dt)
        if len(self.constraints):
            self.enforcer.enforce(self.graph, self.constraints)
        self.graph.update_compound_bounds()

    def _physics_view(self) -> tuple[list[LayoutNode], list[LayoutEdge]]:
        """Leaves and the edges between them; compound endpoints map to representatives."""
        nodes = self.graph.leaves()
        edges = []
        for edge in self.graph.edges.values():
            source = self.graph.representative(edge.source)
            target = self.graph.representative(edge.target)
            if source == target:
                continue
            if source == edge.source and target == edge.target:
                edges.append(edge)
            else:
                edges.append(LayoutEdge(id=edge.id, source=source, target=target, strength=edge.strength))
        return nodes, edges
