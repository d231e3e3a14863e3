"""
Graph Layout Core - Models, physics, spectral drafting and constraints.

This package provides the layout engine used by the HTTP service, the CLI
and the MCP tools, so every surface runs the same phases on the same graph.
"""

from .models import (
    # Enums
    SolverType,
    ConstraintType,
    LayoutPhase,
    PipelineState,
    LayoutDirection,
    DraftStrategy,
    # Configuration
    PhysicsOptions,
    PhysicsOptionsUpdate,
    LayoutConfig,
    # Input / output models
    NodeSpec,
    EdgeSpec,
    ConstraintSpec,
    NodePosition,
    PositionSnapshot,
)

from .errors import LayoutError, ConstraintCycleError, InvalidTransitionError
from .graph import GraphModel, LayoutNode, LayoutEdge, SyncReport
from .quadtree import QuadTree
from .physics import ForceSimulator, BarnesHutSimulator, DirectSimulator, create_simulator
from .spectral import SpectralEmbedder
from .constraints import ConstraintEnforcer, ConstraintSet, compile_constraints
from .hierarchical import hierarchical_layout
from .validation import validate_layout, ValidationIssue, IssueSeverity
from .analysis import summarize_layout, find_connected_components
from .pipeline import LayoutPipeline, PhaseResult
from .session import LayoutSession, ConstraintReport

__all__ = [
    # Enums
    "SolverType",
    "ConstraintType",
    "LayoutPhase",
    "PipelineState",
    "LayoutDirection",
    "DraftStrategy",
    # Configuration
    "PhysicsOptions",
    "PhysicsOptionsUpdate",
    "LayoutConfig",
    # Models
    "NodeSpec",
    "EdgeSpec",
    "ConstraintSpec",
    "NodePosition",
    "PositionSnapshot",
    # Errors
    "LayoutError",
    "ConstraintCycleError",
    "InvalidTransitionError",
    # Graph
    "GraphModel",
    "LayoutNode",
    "LayoutEdge",
    "SyncReport",
    # Engine
    "QuadTree",
    "ForceSimulator",
    "BarnesHutSimulator",
    "DirectSimulator",
    "create_simulator",
    "SpectralEmbedder",
    "ConstraintEnforcer",
    "ConstraintSet",
    "compile_constraints",
    "hierarchical_layout",
    # Validation
    "validate_layout",
    "ValidationIssue",
    "IssueSeverity",
    # Analysis
    "summarize_layout",
    "find_connected_components",
    # Orchestration
    "LayoutPipeline",
    "PhaseResult",
    "LayoutSession",
    "ConstraintReport",
]
