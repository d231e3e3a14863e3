import logging

import pytest

from layout_core import (
    ConstraintEnforcer, ConstraintSpec, ConstraintType, GraphModel, IssueSeverity, NodeSpec,
    compile_constraints,
)
from layout_core.constraints import release_pins


def make_graph(positions):
    graph = GraphModel()
    graph.reconcile([NodeSpec(id=nid, x=x, y=y) for nid, (x, y) in positions.items()], [])
    return graph


def enforce(graph, specs):
    constraints = compile_constraints(specs, graph)
    return ConstraintEnforcer().enforce(graph, constraints), constraints


def position(graph, node_id):
    node = graph.nodes[node_id]
    return node.x, node.y


def test_vertical_alignment_snaps_to_mean():
    graph = make_graph({"a": (0, 0), "b": (10, 50), "c": (20, 100)})

    moved, _ = enforce(graph, [{"type": "align_vertical", "node_ids": ["a", "b", "c"]}])

    assert moved == 2
    assert [graph.nodes[n].x for n in "abc"] == [10, 10, 10]
    assert [graph.nodes[n].y for n in "abc"] == [0, 50, 100]


def test_fixed_member_anchors_alignment():
    graph = make_graph({"a": (0, 0), "b": (30, 10), "c": (90, 20)})
    graph.nodes["a"].fixed = True

    enforce(graph, [{"type": "align_horizontal", "node_ids": ["a", "b", "c"]}])
    enforce(graph, [{"type": "align_vertical", "node_ids": ["a", "b", "c"]}])

    assert [position(graph, n) for n in "abc"] == [(0, 0), (0, 0), (0, 0)]


def test_overlapping_alignments_merge():
    graph = make_graph({"a": (0, 0), "b": (30, 0), "c": (60, 0)})

    enforce(graph, [
        {"type": "align_vertical", "node_ids": ["a", "b"]},
        {"type": "align_vertical", "node_ids": ["b", "c"]},
    ])

    assert {graph.nodes[n].x for n in "abc"} == {30}


def test_relative_left_right_orders_nodes():
    graph = make_graph({"a": (50, 0), "b": (0, 0)})

    enforce(graph, [{"type": "relative_left_right", "node_ids": ["a", "b"]}])

    assert graph.nodes["a"].x <= graph.nodes["b"].x


def test_relative_chain_respects_gap():
    graph = make_graph({"a": (100, 0), "b": (0, 0), "c": (50, 0)})

    enforce(graph, [{"type": "relative_left_right", "node_ids": ["a", "b", "c"], "params": {"gap": 10}}])

    assert [graph.nodes[n].x for n in "abc"] == [100, 110, 120]


def test_free_predecessor_moves_in_front_of_fixed_successor():
    graph = make_graph({"a": (100, 0), "b": (0, 0)})
    graph.nodes["b"].fixed = True

    enforce(graph, [{"type": "relative_top_bottom", "node_ids": ["a", "b"], "params": {"gap": 10}}])
    enforce(graph, [{"type": "relative_left_right", "node_ids": ["a", "b"], "params": {"gap": 10}}])

    assert position(graph, "b") == (0, 0)
    assert graph.nodes["a"].x == -10


def test_enforcement_is_idempotent():
    graph = make_graph({"a": (0, 0), "b": (40, 70), "c": (-30, 20), "d": (10, -50)})
    specs = [
        {"type": "align_vertical", "node_ids": ["a", "b"]},
        {"type": "relative_top_bottom", "node_ids": ["b", "c", "d"], "params": {"gap": 25}},
        {"type": "relative_left_right", "node_ids": ["c", "a"]},
    ]
    constraints = compile_constraints(specs, graph)
    enforcer = ConstraintEnforcer()

    enforcer.enforce(graph, constraints)
    first = {n: position(graph, n) for n in graph.nodes}
    moved_again = enforcer.enforce(graph, constraints)

    assert moved_again == 0
    assert {n: position(graph, n) for n in graph.nodes} == first


def test_relative_cycle_is_skipped_without_raising(caplog):
    graph = make_graph({"a": (0, 0), "b": (10, 0)})

    with caplog.at_level(logging.WARNING, logger="layout_core.constraints"):
        moved, _ = enforce(graph, [
            {"type": "relative_left_right", "node_ids": ["a", "b"]},
            {"type": "relative_left_right", "node_ids": ["b", "a"]},
        ])

    assert moved == 0
    assert position(graph, "a") == (0, 0)
    assert "Skipping relative constraints" in caplog.text


def test_fixed_constraint_pins_nodes():
    graph = make_graph({"a": (0, 0), "b": (10, 10)})

    moved, constraints = enforce(graph, [{"type": "fixed", "node_ids": ["a", "b"], "params": {"x": 5, "y": 6}}])

    assert moved == 2
    assert len(constraints.pins) == 2
    for node_id in "ab":
        node = graph.nodes[node_id]
        assert (node.x, node.y) == (5, 6)
        assert node.pinned and node.fixed


def test_release_pins_keeps_dragged_nodes_fixed():
    graph = make_graph({"a": (0, 0), "b": (10, 10)})
    enforce(graph, [{"type": "fixed", "node_ids": ["a", "b"]}])

    release_pins(graph, keep_fixed=["b"])

    assert not graph.nodes["a"].pinned and not graph.nodes["a"].fixed
    assert not graph.nodes["b"].pinned and graph.nodes["b"].fixed


def test_unknown_ids_are_reported_and_duplicates_dropped():
    graph = make_graph({"a": (0, 0), "b": (10, 10)})

    constraints = compile_constraints([
        {"type": "align_vertical", "node_ids": ["a", "ghost", "a", "b"]},
        {"type": "align_horizontal", "node_ids": ["a", "ghost"]},
    ], graph)

    assert [group.node_ids for group in constraints.alignments] == [["a", "b"]]
    severities = [issue.severity for issue in constraints.issues]
    assert severities.count(IssueSeverity.WARNING) == 2
    assert severities.count(IssueSeverity.INFO) == 1


def test_legacy_type_names_and_camel_case_keys():
    spec = ConstraintSpec.model_validate({"type": "RELATIVE_LR", "nodeIds": ["a", "b"]})

    assert spec.type == ConstraintType.RELATIVE_LEFT_RIGHT
    assert spec.node_ids == ["a", "b"]


def test_malformed_constraint_becomes_error_issue():
    graph = make_graph({"a": (0, 0)})

    constraints = compile_constraints([{"type": "spiral", "node_ids": ["a"]}], graph)

    assert len(constraints) == 0
    assert constraints.issues[0].severity == IssueSeverity.ERROR


@pytest.mark.parametrize("gap", [None, "wide"])
def test_missing_or_bad_gap_defaults_to_zero(gap):
    graph = make_graph({"a": (0, 0), "b": (10, 0)})

    constraints = compile_constraints(
        [{"type": "relative_left_right", "node_ids": ["a", "b"], "params": {"gap": gap}}], graph)

    assert constraints.relatives[0].gap == 0.0
