"""
Core data models for the layout engine.

These models define the engine's external schema:
- Physics options and layout configuration (hot-swappable, no identity)
- Node/edge/constraint specs pushed in by the collaborating application
- Immutable position snapshots handed back to the rendering layer

Field Naming Convention:
- Python-side names are snake_case (`source_id`, `parent_id`, `node_ids`)
- For UI clients, camelCase keys (`sourceId`, `parentId`, `nodeIds`, ...) are
  accepted on input and converted
"""

from enum import Enum
from typing import Optional, Any
from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator


class SolverType(str, Enum):
    """Force solver implementations."""
    BARNES_HUT = "barnes_hut"  # Quadtree-approximated repulsion (default)
    DIRECT = "direct"          # O(n^2) pairwise reference


class ConstraintType(str, Enum):
    """Kinds of user-declared layout constraints."""
    ALIGN_VERTICAL = "align_vertical"        # Same x coordinate
    ALIGN_HORIZONTAL = "align_horizontal"    # Same y coordinate
    RELATIVE_LEFT_RIGHT = "relative_left_right"
    RELATIVE_TOP_BOTTOM = "relative_top_bottom"
    FIXED = "fixed"                          # Pin nodes in place


class LayoutPhase(str, Enum):
    """Pipeline phases, in their natural chaining order."""
    RANDOMIZE = "randomize"
    DRAFT = "draft"
    TRANSFORM = "transform"
    ENFORCE = "enforce"
    POLISH = "polish"


class PipelineState(str, Enum):
    """States of the layout pipeline."""
    IDLE = "idle"
    RUNNING = "running"
    POLISHING = "polishing"


class LayoutDirection(str, Enum):
    """Flow direction for hierarchical drafts and the transform phase."""
    TOP_BOTTOM = "top_bottom"
    BOTTOM_TOP = "bottom_top"
    LEFT_RIGHT = "left_right"
    RIGHT_LEFT = "right_left"


class DraftStrategy(str, Enum):
    """Global layout used by the draft phase."""
    SPECTRAL = "spectral"
    HIERARCHICAL = "hierarchical"


# Accepted spellings for constraint types coming from older clients
CONSTRAINT_TYPE_ALIASES = {
    "ALIGN_VERTICAL": ConstraintType.ALIGN_VERTICAL,
    "ALIGN_HORIZONTAL": ConstraintType.ALIGN_HORIZONTAL,
    "RELATIVE_LR": ConstraintType.RELATIVE_LEFT_RIGHT,
    "RELATIVE_TB": ConstraintType.RELATIVE_TOP_BOTTOM,
    "FIXED": ConstraintType.FIXED,
}

# camelCase -> snake_case keys accepted on input
_CAMEL_KEYS = {
    "parentId": "parent_id",
    "fixedSize": "fixed_size",
    "sourceId": "source_id",
    "targetId": "target_id",
    "nodeIds": "node_ids",
    "isHypernode": "hypernode",
}


def _convert_camel_keys(data: Any) -> Any:
    if isinstance(data, dict):
        data = dict(data)
        for camel, snake in _CAMEL_KEYS.items():
            if camel in data and snake not in data:
                data[snake] = data.pop(camel)
    return data


# --- Configuration ---

class PhysicsOptions(BaseModel):
    """Tunable constants of the force simulation."""
    gravity: float = Field(default=0.05, ge=0)
    repulsion: float = Field(default=50.0, ge=0)
    spring: float = Field(default=1.0, ge=0)
    damping: float = Field(default=0.9, ge=0, le=1)
    min_distance: float = Field(default=2.0, ge=0)
    barnes_hut_theta: float = Field(default=1.2, ge=0)  # Smaller = more accurate, slower
    tolerance: float = Field(default=1.0, gt=0)  # Adaptive-speed damping
    node_base_radius: float = Field(default=15.0, gt=0)
    hypernode_spring_multiplier: float = Field(default=3.0, ge=0)
    solver: SolverType = SolverType.BARNES_HUT


class PhysicsOptionsUpdate(BaseModel):
    """Partial update for physics options (only provided fields change)."""
    gravity: Optional[float] = Field(default=None, ge=0)
    repulsion: Optional[float] = Field(default=None, ge=0)
    spring: Optional[float] = Field(default=None, ge=0)
    damping: Optional[float] = Field(default=None, ge=0, le=1)
    min_distance: Optional[float] = Field(default=None, ge=0)
    barnes_hut_theta: Optional[float] = Field(default=None, ge=0)
    tolerance: Optional[float] = Field(default=None, gt=0)
    node_base_radius: Optional[float] = Field(default=None, gt=0)
    hypernode_spring_multiplier: Optional[float] = Field(default=None, ge=0)
    solver: Optional[SolverType] = None

    def apply_to(self, options: PhysicsOptions) -> PhysicsOptions:
        """Return a copy of `options` with this update's fields applied."""
        return options.model_copy(update=self.model_dump(exclude_none=True))


class LayoutConfig(BaseModel):
    """Settings of the one-shot phases and polish bursts."""
    # Spectral draft
    spectral_scaling_factor: float = 50.0
    spectral_jitter: float = 50.0
    min_pivots: int = Field(default=50, ge=2)
    max_pivots: Optional[int] = Field(default=None, ge=2)
    eigen_iterations: int = Field(default=20, ge=1)
    eigen_tolerance: Optional[float] = 1e-9  # None = always run the full iteration count
    # Randomize
    randomize_extent_x: float = 400.0
    randomize_extent_y: float = 300.0
    # Polish bursts
    burst_ticks: int = Field(default=60, ge=0)
    burst_energy: float = Field(default=1.5, ge=1)
    drag_release_ticks: int = Field(default=40, ge=0)
    drag_follow_ticks: int = Field(default=5, ge=0)
    drag_follow_share: float = Field(default=0.5, ge=0, le=1)  # Share of the pointer delta given to neighbours
    settle_threshold: float = Field(default=0.01, ge=0)
    # Draft / transform shape
    draft_strategy: DraftStrategy = DraftStrategy.SPECTRAL
    direction: LayoutDirection = LayoutDirection.TOP_BOTTOM
    layer_separation: float = 100.0
    node_separation: float = 50.0
    random_seed: Optional[int] = 123


# --- Collaborator input ---

class NodeSpec(BaseModel):
    """A node as known by the collaborating application."""
    id: str
    mass: Optional[float] = Field(default=None, gt=0)
    fixed_size: Optional[tuple[float, float]] = None  # (width, height) overriding default sizing
    parent_id: Optional[str] = None
    hypernode: bool = False
    x: Optional[float] = None  # Initial position for newly created nodes
    y: Optional[float] = None

    @model_validator(mode='before')
    @classmethod
    def convert_camel_case(cls, data: Any) -> Any:
        return _convert_camel_keys(data)

    @field_validator('fixed_size', mode='before')
    @classmethod
    def square_from_scalar(cls, value: Any) -> Any:
        """Allow a single number for square nodes."""
        if isinstance(value, (int, float)):
            return (value, value)
        if isinstance(value, dict):
            return (value.get("width"), value.get("height"))
        return value


class EdgeSpec(BaseModel):
    """A binary edge; n-ary relationships arrive as hypernode stars."""
    id: Optional[str] = None  # Defaults to "source-target"
    source_id: str
    target_id: str
    strength: float = Field(default=1.0, ge=0)

    @model_validator(mode='before')
    @classmethod
    def convert_camel_case(cls, data: Any) -> Any:
        data = _convert_camel_keys(data)
        if isinstance(data, dict):
            # Accept the plain source/target spelling too
            if "source" in data and "source_id" not in data:
                data["source_id"] = data.pop("source")
            if "target" in data and "target_id" not in data:
                data["target_id"] = data.pop("target")
        return data

    @property
    def key(self) -> str:
        return self.id or f"{self.source_id}-{self.target_id}"


class ConstraintSpec(BaseModel):
    """A constraint referencing nodes by id."""
    type: ConstraintType
    node_ids: list[str] = Field(default_factory=list)
    params: dict[str, Any] = Field(default_factory=dict)

    @model_validator(mode='before')
    @classmethod
    def convert_legacy_fields(cls, data: Any) -> Any:
        """Convert camelCase keys and legacy upper-case type names."""
        data = _convert_camel_keys(data)
        if isinstance(data, dict) and isinstance(data.get("type"), str):
            raw = data["type"]
            if raw in CONSTRAINT_TYPE_ALIASES:
                data["type"] = CONSTRAINT_TYPE_ALIASES[raw]
            else:
                data["type"] = raw.lower()
        return data


# --- Read model ---

class NodePosition(BaseModel):
    """Position of one node at snapshot time."""
    model_config = ConfigDict(frozen=True)

    id: str
    x: float
    y: float
    width: float
    height: float
    fixed: bool


class PositionSnapshot(BaseModel):
    """Immutable copy of all node positions taken at a consistent point."""
    model_config = ConfigDict(frozen=True)

    revision: int = 0
    state: PipelineState = PipelineState.IDLE
    nodes: tuple[NodePosition, ...] = ()

    def by_id(self) -> dict[str, NodePosition]:
        """Index positions by node id."""
        return {p.id: p for p in self.nodes}

    def to_json_dict(self) -> dict:
        """Convert to a JSON-serializable dict."""
        return self.model_dump(mode='json')


# --- API Request/Response Models ---

class SyncGraphRequest(BaseModel):
    """Request body for replacing the graph."""
    nodes: list[dict] = Field(default_factory=list)  # Parsed per item by the session
    edges: list[dict] = Field(default_factory=list)


class SyncConstraintsRequest(BaseModel):
    """Request body for replacing the constraint set."""
    constraints: list[dict] = Field(default_factory=list)


class RunPhaseRequest(BaseModel):
    """Optional parameters for a single phase run."""
    layout: Optional[str] = None   # Saved layout name for the transform phase
    ticks: Optional[int] = Field(default=None, ge=0)  # Polish burst length
    direction: Optional[LayoutDirection] = None


class DragRequest(BaseModel):
    """Pointer delta for a drag move."""
    dx: float = 0.0
    dy: float = 0.0


class SaveLayoutRequest(BaseModel):
    """Request body for saving the current positions under a name."""
    name: str = Field(min_length=1)
