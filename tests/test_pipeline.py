import math
import random

import pytest

from layout_core import (
    EdgeSpec, GraphModel, InvalidTransitionError, IssueSeverity, LayoutConfig, LayoutPhase,
    LayoutPipeline, NodeSpec, PipelineState, SolverType, compile_constraints, validate_layout,
)


def make_pipeline(node_ids, edges=(), config=None):
    graph = GraphModel(rng=random.Random(4))
    graph.reconcile(
        [NodeSpec(id=nid) for nid in node_ids],
        [EdgeSpec(source_id=s, target_id=t) for s, t in edges],
    )
    return LayoutPipeline(graph, config=config)


def ring(count):
    node_ids = [f"n{i}" for i in range(count)]
    edges = [(node_ids[i], node_ids[(i + 1) % count]) for i in range(count)]
    return node_ids, edges


@pytest.mark.parametrize("node_ids", [[], ["solo"]])
@pytest.mark.parametrize("phase", list(LayoutPhase))
def test_tiny_graphs_are_skipped(node_ids, phase):
    pipeline = make_pipeline(node_ids)

    result = pipeline.run_phase(phase)

    assert result.changed is False
    assert result.phase == phase
    assert pipeline.state == PipelineState.IDLE


def test_run_all_chains_phases_in_order():
    pipeline = make_pipeline(*ring(12))

    results = pipeline.run_all()

    assert [r.phase for r in results] == list(LayoutPhase)
    assert pipeline.state == PipelineState.IDLE
    assert pipeline.current_phase is None
    for node in pipeline.graph.nodes.values():
        assert math.isfinite(node.x) and math.isfinite(node.y)
    assert not [i for i in validate_layout(pipeline.graph) if i.severity == IssueSeverity.ERROR]


def test_constraints_hold_after_polish():
    pipeline = make_pipeline(*ring(8))
    pipeline.set_constraints(compile_constraints(
        [{"type": "align_vertical", "node_ids": ["n0", "n4"]},
         {"type": "relative_top_bottom", "node_ids": ["n2", "n6"], "params": {"gap": 40}}],
        pipeline.graph,
    ))

    pipeline.run_all()

    nodes = pipeline.graph.nodes
    assert nodes["n0"].x == pytest.approx(nodes["n4"].x, abs=1e-6)
    assert nodes["n6"].y - nodes["n2"].y >= 40 - 1e-6


def test_phase_cannot_start_while_another_runs():
    pipeline = make_pipeline(*ring(5))

    def reenter():
        pipeline.run_phase(LayoutPhase.ENFORCE)
        return False

    with pytest.raises(InvalidTransitionError):
        pipeline.run_phase(LayoutPhase.POLISH, ticks=5, should_stop=reenter)

    assert pipeline.state == PipelineState.IDLE


def test_one_shot_phase_returns_to_polishing():
    pipeline = make_pipeline(*ring(5))
    pipeline.begin_continuous()

    pipeline.run_phase("enforce")

    assert pipeline.state == PipelineState.POLISHING
    pipeline.end_continuous()
    assert pipeline.state == PipelineState.IDLE


def test_unknown_phase_and_layout_raise_value_error():
    pipeline = make_pipeline(*ring(4))

    with pytest.raises(ValueError, match="Unknown phase"):
        pipeline.run_phase("explode")
    with pytest.raises(ValueError, match="Unknown saved layout"):
        pipeline.run_phase("transform", layout="missing")
    assert pipeline.state == PipelineState.IDLE


def test_saved_layout_round_trip():
    pipeline = make_pipeline(*ring(6))
    pipeline.run_all()
    pipeline.saved_layouts["before"] = pipeline.graph.positions()
    expected = pipeline.graph.positions()

    pipeline.run_phase("randomize")
    result = pipeline.run_phase("transform", layout="before")

    assert result.changed
    for node_id, (x, y) in expected.items():
        node = pipeline.graph.nodes[node_id]
        assert (node.x, node.y) == (x, y)


def test_polish_respects_tick_budget_and_cancellation():
    pipeline = make_pipeline(*ring(6))

    assert pipeline.polish(ticks=0) == 0
    assert pipeline.polish(ticks=50, should_stop=lambda: True) == 0
    assert 0 < pipeline.polish(ticks=15) <= 15


def test_hierarchical_draft_then_direction():
    config = LayoutConfig(draft_strategy="hierarchical", direction="left_right")
    pipeline = make_pipeline(["a", "b", "c"], [("a", "b"), ("b", "c")], config=config)

    draft = pipeline.run_phase("draft")
    ys = [pipeline.graph.nodes[n].y for n in "abc"]
    transform = pipeline.run_phase("transform")
    xs = [pipeline.graph.nodes[n].x for n in "abc"]

    assert draft.detail == "hierarchical"
    assert ys[0] < ys[1] < ys[2]
    assert "left_right" in transform.detail
    assert xs[0] < xs[1] < xs[2]


def test_solver_change_replaces_simulator():
    pipeline = make_pipeline(*ring(4))
    before = pipeline.simulator

    pipeline.set_options(pipeline.options.model_copy(update={"solver": SolverType.DIRECT}))

    assert pipeline.simulator is not before
    assert type(pipeline.simulator).__name__ == "DirectSimulator"


def assert_compounds_contain_descendants(graph):
    for node in graph.nodes.values():
        if not node.children:
            continue
        left, top, right, bottom = node.bounds()
        for descendant_id in graph.descendants(node.id):
            d_left, d_top, d_right, d_bottom = graph.nodes[descendant_id].bounds()
            assert left <= d_left + 1e-6 and top <= d_top + 1e-6
            assert right >= d_right - 1e-6 and bottom >= d_bottom - 1e-6


@pytest.mark.parametrize("phase", [LayoutPhase.ENFORCE, LayoutPhase.POLISH])
def test_compound_boxes_follow_moved_children(phase):
    graph = GraphModel(rng=random.Random(4))
    graph.reconcile(
        [
            NodeSpec(id="outer"),
            NodeSpec(id="inner", parent_id="outer"),
            NodeSpec(id="a", parent_id="inner", x=0, y=0),
            NodeSpec(id="b", parent_id="inner", x=40, y=20),
            NodeSpec(id="c", parent_id="outer", x=-40, y=60),
            NodeSpec(id="d", x=200, y=0),
        ],
        [EdgeSpec(source_id="a", target_id="b"), EdgeSpec(source_id="b", target_id="c"),
         EdgeSpec(source_id="c", target_id="d")],
    )
    pipeline = LayoutPipeline(graph)
    pipeline.set_constraints(compile_constraints(
        [{"type": "relative_left_right", "node_ids": ["d", "a"], "params": {"gap": 300}}], graph))

    pipeline.run_phase(phase)

    assert graph.nodes["a"].x - graph.nodes["d"].x >= 300 - 1e-6
    assert_compounds_contain_descendants(graph)
    assert not [i for i in validate_layout(graph) if i.severity == IssueSeverity.ERROR]
