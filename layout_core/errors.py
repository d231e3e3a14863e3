"""
Exception types raised inside the layout engine.

Malformed graph input never raises; these cover internal control flow
(constraint cycles) and misuse of the phase state machine.
"""


class LayoutError(Exception):
    """Base class for layout engine errors."""


class ConstraintCycleError(LayoutError):
    """Relative constraints on one axis form a cycle and cannot be ordered."""

    def __init__(self, axis: str, node_ids: list[str]):
        self.axis = axis
        self.node_ids = node_ids
        super().__init__(f"Relative constraints on {axis} axis form a cycle through {sorted(node_ids)}")


class InvalidTransitionError(LayoutError):
    """A phase was requested while the pipeline is busy with another one."""
