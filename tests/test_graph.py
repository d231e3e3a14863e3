import random

from layout_core import GraphModel, NodeSpec, EdgeSpec, IssueSeverity, validate_layout
from layout_core.graph import COMPOUND_PADDING, LayoutNode


def make_graph(node_ids, edges=()):
    graph = GraphModel(rng=random.Random(1))
    graph.reconcile(
        [NodeSpec(id=nid) for nid in node_ids],
        [EdgeSpec(source_id=s, target_id=t) for s, t in edges],
    )
    return graph


def test_reconcile_adds_updates_and_removes():
    graph = make_graph(["a", "b", "c"], [("a", "b")])
    graph.nodes["a"].x, graph.nodes["a"].y = 12.0, -7.0

    report = graph.reconcile(
        [NodeSpec(id="a"), NodeSpec(id="b"), NodeSpec(id="d", x=5, y=6)],
        [EdgeSpec(source_id="a", target_id="d")],
    )

    assert report.added == ["d"]
    assert sorted(report.updated) == ["a", "b"]
    assert report.removed == ["c"]
    assert (graph.nodes["a"].x, graph.nodes["a"].y) == (12.0, -7.0)
    assert (graph.nodes["d"].x, graph.nodes["d"].y) == (5, 6)
    assert set(graph.edges) == {"a-d"}


def test_new_nodes_land_near_origin():
    graph = make_graph([f"n{i}" for i in range(20)])
    for node in graph.nodes.values():
        assert -50 <= node.x <= 50
        assert -50 <= node.y <= 50


def test_reconcile_reports_malformed_edges_instead_of_raising():
    graph = GraphModel()
    report = graph.reconcile(
        [NodeSpec(id="a"), NodeSpec(id="b"), NodeSpec(id="a")],
        [
            EdgeSpec(source_id="a", target_id="missing"),
            EdgeSpec(source_id="a", target_id="a"),
            EdgeSpec(id="e1", source_id="a", target_id="b"),
            EdgeSpec(id="e1", source_id="b", target_id="a"),
        ],
    )

    severities = sorted(issue.severity.value for issue in report.issues)
    assert severities == ["error", "info", "warning", "warning"]
    assert set(graph.edges) == {"e1"}
    assert report.edge_count == 1


def test_camel_case_input_is_accepted():
    node = NodeSpec.model_validate({"id": "a", "parentId": "p", "fixedSize": 40, "isHypernode": True})
    edge = EdgeSpec.model_validate({"sourceId": "a", "targetId": "b"})

    assert node.parent_id == "p"
    assert node.fixed_size == (40, 40)
    assert node.hypernode is True
    assert edge.key == "a-b"


def test_fixed_size_and_default_size():
    graph = GraphModel()
    graph.reconcile([NodeSpec(id="a", fixed_size=(80, 20)), NodeSpec(id="b")], [], default_size=24)

    assert (graph.nodes["a"].width, graph.nodes["a"].height) == (80, 20)
    assert graph.nodes["a"].radius == 40
    assert (graph.nodes["b"].width, graph.nodes["b"].height) == (24, 24)


def test_set_parent_rejects_cycles():
    graph = make_graph(["a", "b", "c"])
    assert graph.set_parent("b", "a")
    assert graph.set_parent("c", "b")

    assert not graph.set_parent("a", "c")
    assert not graph.set_parent("a", "a")
    assert not graph.set_parent("a", "missing")
    assert graph.nodes["a"].parent is None
    assert graph.descendants("a") == ["b", "c"]


def test_reconcile_drops_parent_cycle_with_warning():
    graph = GraphModel()
    report = graph.reconcile(
        [NodeSpec(id="a", parent_id="b"), NodeSpec(id="b", parent_id="a")],
        [],
    )

    assert len(report.issues) == 1
    assert report.issues[0].severity == IssueSeverity.WARNING
    assert not any(i.severity == IssueSeverity.ERROR for i in validate_layout(graph))


def test_compound_bounds_contain_children():
    graph = GraphModel()
    graph.reconcile(
        [
            NodeSpec(id="group"),
            NodeSpec(id="inner", parent_id="group"),
            NodeSpec(id="a", parent_id="inner", x=0, y=0),
            NodeSpec(id="b", parent_id="inner", x=100, y=40),
            NodeSpec(id="c", parent_id="group", x=-60, y=200),
        ],
        [],
    )

    group = graph.nodes["group"]
    left, top, right, bottom = group.bounds()
    for child_id in graph.descendants("group"):
        c_left, c_top, c_right, c_bottom = graph.nodes[child_id].bounds()
        assert left <= c_left and top <= c_top and right >= c_right and bottom >= c_bottom

    inner = graph.nodes["inner"]
    assert inner.width == 100 + 30 + 2 * COMPOUND_PADDING
    assert graph.representative("group") == "a"


def test_translate_moves_descendants():
    graph = GraphModel()
    graph.reconcile(
        [NodeSpec(id="p"), NodeSpec(id="a", parent_id="p", x=1, y=2), NodeSpec(id="b", x=0, y=0)],
        [],
    )

    graph.translate("p", 10, -5)

    assert (graph.nodes["a"].x, graph.nodes["a"].y) == (11, -3)
    assert (graph.nodes["b"].x, graph.nodes["b"].y) == (0, 0)


def test_remove_node_drops_incident_edges_and_links():
    graph = make_graph(["a", "b", "c"], [("a", "b"), ("b", "c")])
    graph.set_parent("c", "b")

    assert graph.remove_node("b")

    assert graph.edges == {}
    assert graph.edges_of("a") == []
    assert graph.nodes["c"].parent is None
    assert not graph.remove_node("b")


def test_synthetic_edges_do_not_count_as_degree():
    graph = make_graph(["a", "b", "c"], [("a", "b")])
    graph.add_edge("a", "c", edge_id="tmp", synthetic=True)

    assert graph.degree("a") == 1
    assert graph.neighbors("a") == {"b", "c"}
    assert graph.remove_synthetic_edges() == 1
    assert set(graph.edges) == {"a-b"}


def test_add_edge_refuses_self_loops_and_unknown_nodes():
    graph = make_graph(["a"])

    assert graph.add_edge("a", "a") is None
    assert graph.add_edge("a", "zzz") is None


def test_validate_layout_flags_non_finite_positions():
    graph = GraphModel()
    graph.add_node(LayoutNode(id="a", x=float("nan")))
    graph.add_node(LayoutNode(id="b"))

    errors = [i for i in validate_layout(graph) if i.severity == IssueSeverity.ERROR]
    assert [i.node_id for i in errors] == ["a"]
