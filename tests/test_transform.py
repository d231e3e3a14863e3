import math

import pytest

from layout_core import ConstraintEnforcer, GraphModel, LayoutDirection, NodeSpec, compile_constraints
from layout_core.constraints import RelativePair
from layout_core.transform import (
    apply_direction, apply_saved_layout, constraint_guided_fit, fit_rigid, majority_reflection,
)


def make_graph(positions):
    graph = GraphModel()
    graph.reconcile([NodeSpec(id=nid, x=x, y=y) for nid, (x, y) in positions.items()], [])
    return graph


def assert_point(actual, expected):
    assert actual[0] == pytest.approx(expected[0], abs=1e-9)
    assert actual[1] == pytest.approx(expected[1], abs=1e-9)


def test_fit_recovers_rotation_and_translation():
    angle = math.radians(30)
    sources = [(0.0, 0.0), (10.0, 0.0), (3.0, 7.0), (-4.0, 2.0)]
    targets = [
        (math.cos(angle) * x - math.sin(angle) * y + 5.0, math.sin(angle) * x + math.cos(angle) * y - 2.0)
        for x, y in sources
    ]

    transform = fit_rigid(sources, targets)

    assert not transform.reflect
    for source, target in zip(sources, targets):
        assert_point(transform.apply(*source), target)


def test_fit_prefers_reflection_when_it_matches():
    sources = [(0.0, 0.0), (10.0, 2.0), (3.0, 7.0)]
    targets = [(x, -y) for x, y in sources]

    transform = fit_rigid(sources, targets)

    assert transform.reflect
    for source, target in zip(sources, targets):
        assert_point(transform.apply(*source), target)


def test_fit_degenerate_inputs():
    assert fit_rigid([], []).apply(3.0, 4.0) == (3.0, 4.0)
    assert_point(fit_rigid([(1.0, 1.0)], [(4.0, -1.0)]).apply(0.0, 0.0), (3.0, -2.0))


def test_saved_layout_restores_known_nodes_and_fits_the_rest():
    graph = make_graph({"a": (0, 0), "b": (10, 0), "c": (0, 10)})

    moved = apply_saved_layout(graph, {"a": (100.0, 100.0), "b": (100.0, 110.0), "gone": (0.0, 0.0)})

    assert moved == 3
    assert (graph.nodes["a"].x, graph.nodes["a"].y) == (100.0, 100.0)
    assert (graph.nodes["b"].x, graph.nodes["b"].y) == (100.0, 110.0)
    assert_point((graph.nodes["c"].x, graph.nodes["c"].y), (90.0, 100.0))


def test_saved_layout_leaves_fixed_nodes_alone():
    graph = make_graph({"a": (0, 0), "b": (10, 0)})
    graph.nodes["a"].fixed = True

    apply_saved_layout(graph, {"a": (50.0, 50.0), "b": (60.0, 50.0)})

    assert (graph.nodes["a"].x, graph.nodes["a"].y) == (0, 0)
    assert (graph.nodes["b"].x, graph.nodes["b"].y) == (60.0, 50.0)


def test_pins_drive_the_rigid_fit():
    graph = make_graph({"p1": (0, 10), "p2": (-10, 0), "n3": (5, 5)})
    constraints = compile_constraints([{"type": "fixed", "node_ids": ["p1", "p2"]}], graph)
    ConstraintEnforcer().enforce(graph, constraints)
    draft = {"p1": (10.0, 0.0), "p2": (0.0, 10.0), "n3": (5.0, 5.0)}

    detail = constraint_guided_fit(graph, constraints, draft)

    assert detail == "pins"
    assert (graph.nodes["p1"].x, graph.nodes["p1"].y) == (0, 10)
    assert_point((graph.nodes["n3"].x, graph.nodes["n3"].y), (-5.0, 5.0))


def test_majority_reflection_mirrors_violated_axis():
    graph = make_graph({"a": (10, 0), "b": (-10, 0), "c": (20, 0), "d": (0, 0)})
    relatives = [
        RelativePair(axis="x", before="a", after="b"),
        RelativePair(axis="x", before="c", after="d"),
        RelativePair(axis="x", before="d", after="a"),
    ]

    mirrored = majority_reflection(graph, relatives)

    assert mirrored == ["x"]
    assert graph.nodes["a"].x < graph.nodes["b"].x
    assert graph.nodes["c"].x < graph.nodes["d"].x


def test_fit_without_constraints_does_nothing():
    graph = make_graph({"a": (1, 2), "b": (3, 4)})

    assert constraint_guided_fit(graph, compile_constraints([], graph)) == "none"
    assert (graph.nodes["a"].x, graph.nodes["a"].y) == (1, 2)


@pytest.mark.parametrize("direction, expected", [
    (LayoutDirection.BOTTOM_TOP, (10, -20)),
    (LayoutDirection.LEFT_RIGHT, (20, 10)),
    (LayoutDirection.RIGHT_LEFT, (-20, 10)),
])
def test_direction_mapping(direction, expected):
    graph = make_graph({"a": (10, 20), "pinned": (5, 5)})
    graph.nodes["pinned"].fixed = True

    assert apply_direction(graph, direction)

    assert (graph.nodes["a"].x, graph.nodes["a"].y) == expected
    assert (graph.nodes["pinned"].x, graph.nodes["pinned"].y) == (5, 5)


def test_top_bottom_is_identity():
    graph = make_graph({"a": (10, 20)})

    assert not apply_direction(graph, "top_bottom")
    assert (graph.nodes["a"].x, graph.nodes["a"].y) == (10, 20)
