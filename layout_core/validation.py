"""
Layout validation - Issue records and layout invariant checks.

Provides the issue type used to report dropped sync input, plus a checker
that inspects a laid-out graph for broken invariants (non-finite positions,
compounds not enclosing their descendants, hierarchy cycles).
"""

import math
from dataclasses import dataclass
from enum import Enum
from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from .graph import GraphModel

# Slack allowed when comparing compound boxes against descendants
CONTAINMENT_TOLERANCE = 1e-6


class IssueSeverity(str, Enum):
    """Severity levels for validation issues."""
    ERROR = "error"      # Input dropped or invariant broken
    WARNING = "warning"  # Input partially ignored
    INFO = "info"        # Informational, may be intentional


@dataclass
class ValidationIssue:
    """A single issue found in sync input or in a layout."""
    severity: IssueSeverity
    message: str
    node_id: str | None = None
    edge_id: str | None = None

    def to_dict(self) -> dict:
        """Convert to dictionary for JSON serialization."""
        result = {
            "type": self.severity.value,
            "message": self.message
        }
        if self.node_id:
            result["node_id"] = self.node_id
        if self.edge_id:
            result["edge_id"] = self.edge_id
        return result


def validate_layout(graph: "GraphModel") -> list[ValidationIssue]:
    """
    Check a graph's current layout for broken invariants.

    Checks for:
    - Non-finite node positions or sizes - ERROR
    - Compound boxes not containing a descendant box - ERROR
    - Parent chains that loop - ERROR
    - Nodes without any edge - INFO
    - Empty graph - INFO

    Args:
        graph: The graph to inspect

    Returns:
        List of ValidationIssue objects
    """
    issues: list[ValidationIssue] = []

    if not graph.nodes:
        issues.append(ValidationIssue(
            severity=IssueSeverity.INFO,
            message="Graph has no nodes"
        ))
        return issues

    for node in graph.nodes.values():
        if not all(math.isfinite(v) for v in (node.x, node.y, node.width, node.height)):
            issues.append(ValidationIssue(
                severity=IssueSeverity.ERROR,
                message="Node has a non-finite position or size",
                node_id=node.id
            ))

    # Hierarchy must be a forest
    for node in graph.nodes.values():
        if node.parent is not None and graph.is_ancestor(node.id, node.id):
            issues.append(ValidationIssue(
                severity=IssueSeverity.ERROR,
                message="Parent chain forms a cycle",
                node_id=node.id
            ))

    # Compound containment
    for node in graph.nodes.values():
        if not node.children:
            continue
        left, top, right, bottom = node.bounds()
        for descendant_id in graph.descendants(node.id):
            d_left, d_top, d_right, d_bottom = graph.nodes[descendant_id].bounds()
            if (d_left < left - CONTAINMENT_TOLERANCE or d_top < top - CONTAINMENT_TOLERANCE
                    or d_right > right + CONTAINMENT_TOLERANCE or d_bottom > bottom + CONTAINMENT_TOLERANCE):
                issues.append(ValidationIssue(
                    severity=IssueSeverity.ERROR,
                    message=f"Compound box does not contain descendant {descendant_id}",
                    node_id=node.id
                ))

    isolated = [n.id for n in graph.nodes.values() if not graph.edges_of(n.id) and not n.children]
    if isolated:
        issues.append(ValidationIssue(
            severity=IssueSeverity.INFO,
            message=f"Nodes without edges: {', '.join(sorted(isolated))}"
        ))

    return issues


def validation_summary(issues: list[ValidationIssue]) -> dict:
    """
    Create a summary of validation issues.

    Args:
        issues: List of validation issues

    Returns:
        Dictionary with counts by severity
    """
    return {
        "total": len(issues),
        "errors": len([i for i in issues if i.severity == IssueSeverity.ERROR]),
        "warnings": len([i for i in issues if i.severity == IssueSeverity.WARNING]),
        "info": len([i for i in issues if i.severity == IssueSeverity.INFO]),
        "valid": len([i for i in issues if i.severity == IssueSeverity.ERROR]) == 0
    }
