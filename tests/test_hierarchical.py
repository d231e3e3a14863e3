from layout_core import EdgeSpec, GraphModel, LayoutDirection, NodeSpec, hierarchical_layout
from layout_core.hierarchical import assign_layers, order_layers, remove_cycles


def make_graph(node_ids, edges):
    graph = GraphModel()
    graph.reconcile(
        [NodeSpec(id=nid) for nid in node_ids],
        [EdgeSpec(source_id=s, target_id=t) for s, t in edges],
    )
    return graph


def test_chain_flows_top_to_bottom():
    graph = make_graph(["a", "b", "c"], [("a", "b"), ("b", "c")])

    assert hierarchical_layout(graph)

    ys = [graph.nodes[n].y for n in "abc"]
    assert ys[0] < ys[1] < ys[2]
    assert ys[1] - ys[0] == 30 + 100


def test_cycles_are_broken_before_layering():
    node_ids = ["a", "b", "c"]
    dag = remove_cycles(node_ids, [("a", "b"), ("b", "c"), ("c", "a")])

    assert ("a", "c") in dag
    assert assign_layers(node_ids, dag) == {"a": 0, "b": 1, "c": 2}


def test_barycenter_sweeps_untangle_crossing():
    layers = order_layers([["a", "b"], ["d", "c"]], [("a", "c"), ("b", "d")])

    assert layers == [["a", "b"], ["c", "d"]]


def test_siblings_are_separated_by_width_and_gap():
    graph = make_graph(["root", "left", "right"], [("root", "left"), ("root", "right")])

    hierarchical_layout(graph)

    left, right = graph.nodes["left"], graph.nodes["right"]
    assert left.y == right.y
    assert abs(right.x - left.x) == 30 + 50
    assert graph.nodes["root"].x == 0


def test_left_right_direction_flows_along_x():
    graph = make_graph(["a", "b", "c"], [("a", "b"), ("b", "c")])

    hierarchical_layout(graph, direction=LayoutDirection.LEFT_RIGHT)

    xs = [graph.nodes[n].x for n in "abc"]
    assert xs[0] < xs[1] < xs[2]


def test_fixed_nodes_stay_put():
    graph = make_graph(["a", "b"], [("a", "b")])
    graph.nodes["a"].x, graph.nodes["a"].y = 300.0, 300.0
    graph.nodes["a"].fixed = True

    hierarchical_layout(graph)

    assert (graph.nodes["a"].x, graph.nodes["a"].y) == (300.0, 300.0)


def test_single_node_is_not_laid_out():
    graph = make_graph(["solo"], [])

    assert not hierarchical_layout(graph)
