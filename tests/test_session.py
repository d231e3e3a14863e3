import threading
import time

import pytest
from pydantic import ValidationError

from layout_core import (
    IssueSeverity, LayoutConfig, LayoutSession, PhysicsOptions, PhysicsOptionsUpdate, PipelineState, SolverType,
)


def ring_input(count):
    nodes = [{"id": f"n{i}"} for i in range(count)]
    edges = [{"sourceId": f"n{i}", "targetId": f"n{(i + 1) % count}"} for i in range(count)]
    return nodes, edges


@pytest.fixture
def session():
    session = LayoutSession(tick_interval=0.001)
    session.sync_graph(*ring_input(6))
    yield session
    session.close()


def wait_for(condition, timeout=5.0):
    deadline = time.monotonic() + timeout
    while time.monotonic() < deadline:
        if condition():
            return True
        time.sleep(0.005)
    return condition()


def test_sync_reports_malformed_input_and_keeps_positions():
    with LayoutSession() as session:
        session.sync_graph([{"id": "a"}, {"id": "b"}], [{"sourceId": "a", "targetId": "b"}])
        session.graph.nodes["a"].x = 123.0

        report = session.sync_graph(
            [{"id": "a"}, {"id": "b"}, {"mass": 2}],
            [{"sourceId": "a", "targetId": "b"}, {"sourceId": "a"}],
        )

        assert [i.severity for i in report.issues[:2]] == [IssueSeverity.ERROR, IssueSeverity.ERROR]
        assert session.graph.nodes["a"].x == 123.0
        assert session.graph.nodes["b"].width == 2 * session.options.node_base_radius


def test_constraint_sync_enforces_immediately(session):
    report = session.sync_constraints([{"type": "align_vertical", "nodeIds": ["n0", "n3", "ghost"]}])

    assert report.to_dict()["alignments"] == 1
    assert len(report.constraints.issues) == 1
    assert session.graph.nodes["n0"].x == pytest.approx(session.graph.nodes["n3"].x)


def test_drag_moves_node_by_pointer_delta(session):
    node = session.graph.nodes["n1"]
    start = (node.x, node.y)

    assert session.on_drag_start("n1")
    assert session.on_drag("n1", 25.0, -10.0)

    assert (node.x, node.y) == (start[0] + 25.0, start[1] - 10.0)
    assert node.fixed
    assert session.dragging == {"n1"}

    assert session.on_drag_end("n1")
    assert not node.fixed
    assert session.dragging == set()


def test_pinned_node_stays_fixed_after_drag(session):
    session.sync_constraints([{"type": "fixed", "node_ids": ["n2"]}])

    session.on_drag("n2", 10.0, 10.0)
    session.on_drag_end("n2")

    assert session.graph.nodes["n2"].fixed


def test_unknown_drag_targets_are_ignored(session):
    assert not session.on_drag_start("ghost")
    assert not session.on_drag("ghost", 1.0, 1.0)
    assert not session.on_drag_end("ghost")


def test_continuous_polish_start_and_stop(session):
    revision = session.revision

    assert session.start_polish()
    assert not session.start_polish()
    assert session.state == PipelineState.POLISHING
    assert wait_for(lambda: session.revision > revision + 3)

    assert session.stop_polish()
    assert session.state == PipelineState.IDLE
    assert not session.is_polishing
    stopped_at = session.revision
    time.sleep(0.05)
    assert session.revision == stopped_at
    assert not session.stop_polish()


def test_one_shot_phase_during_polish(session):
    session.start_polish()
    try:
        result = session.run_phase("enforce")
        assert result.phase.value == "enforce"
        assert session.state == PipelineState.POLISHING
    finally:
        session.stop_polish()


def test_snapshot_is_frozen(session):
    snapshot = session.position_snapshot()

    assert len(snapshot.nodes) == 6
    assert snapshot.revision == session.revision
    assert snapshot.by_id()["n1"].x == session.graph.nodes["n1"].x
    with pytest.raises(ValidationError):
        snapshot.revision = 99
    with pytest.raises(ValidationError):
        snapshot.nodes[0].x = 1.0


def test_publish_only_on_change(session):
    received = []

    def broken(_snapshot):
        raise RuntimeError("listener bug")

    session.on_snapshot(broken)
    session.on_snapshot(received.append)

    first = session.publish()
    assert first is not None
    assert session.publish() is None
    assert session.last_snapshot is first

    session.run_phase("randomize")
    second = session.publish()

    assert received == [first, second]
    assert second.revision > first.revision

    session.remove_snapshot_callback(received.append)
    session.on_drag("n0", 1.0, 0.0)
    session.publish()
    assert len(received) == 2


def test_publisher_thread_delivers_snapshots():
    received = []
    with LayoutSession(snapshot_hz=200) as session:
        session.on_snapshot(received.append)
        session.sync_graph(*ring_input(3))
        assert wait_for(lambda: received and len(received[-1].nodes) == 3)


def test_physics_options_accept_partial_updates(session):
    options = session.set_physics_options({"gravity": 0.2, "solver": "direct"})

    assert options.gravity == 0.2
    assert options.repulsion == PhysicsOptions().repulsion
    assert session.options.solver == SolverType.DIRECT

    session.set_physics_options(PhysicsOptionsUpdate(repulsion=10))
    assert session.options.gravity == 0.2
    assert session.options.repulsion == 10

    with pytest.raises(ValidationError):
        session.set_physics_options({"damping": 3})


def test_saved_layouts(session):
    assert session.save_layout("first") == 6
    assert session.list_saved_layouts() == {"first": 6}

    session.run_phase("randomize")
    session.run_phase("transform", layout="first")

    session.delete_saved_layout("first")
    assert session.list_saved_layouts() == {}
    with pytest.raises(ValueError):
        session.delete_saved_layout("first")


def test_run_all_and_summary(session):
    results = session.run_all()

    assert [r.phase.value for r in results] == ["randomize", "draft", "transform", "enforce", "polish"]
    summary = session.summary()
    assert summary["state"] == "idle"
    assert summary["validation"]["valid"]


def test_dragging_compound_keeps_it_under_pointer():
    with LayoutSession() as session:
        session.sync_graph(
            [{"id": "g"}, {"id": "a", "parentId": "g", "x": 0, "y": 0},
             {"id": "b", "parentId": "g", "x": 60, "y": 0}, {"id": "c", "x": 0, "y": 120}],
            [{"sourceId": "a", "targetId": "b"}, {"sourceId": "b", "targetId": "c"}],
        )
        group = session.graph.nodes["g"]
        start = group.center()

        session.on_drag_start("g")
        session.on_drag("g", 100.0, 0.0)

        assert abs(group.x - (start[0] + 100.0)) < 1e-6
        assert abs(group.y - start[1]) < 1e-6
        assert session.graph.nodes["a"].fixed and session.graph.nodes["b"].fixed

        session.on_drag_end("g")
        assert not any(session.graph.nodes[n].fixed for n in "gab")


def test_drag_end_keeps_pinned_children_fixed():
    with LayoutSession() as session:
        session.sync_graph([{"id": "g"}, {"id": "a", "parentId": "g"}, {"id": "b", "parentId": "g"}], [])
        session.sync_constraints([{"type": "fixed", "node_ids": ["a"]}])

        session.on_drag("g", 5.0, 5.0)
        session.on_drag_end("g")

        assert session.graph.nodes["a"].fixed
        assert not session.graph.nodes["b"].fixed


def test_neighbours_follow_the_pointer():
    config = LayoutConfig(drag_follow_ticks=0, drag_follow_share=0.5)
    with LayoutSession(config=config) as session:
        session.sync_graph(
            [{"id": "a", "x": 0, "y": 0}, {"id": "b", "x": 40, "y": 0},
             {"id": "c", "x": 0, "y": 80}, {"id": "far", "x": 300, "y": 0}],
            [{"sourceId": "a", "targetId": "b"}, {"sourceId": "a", "targetId": "c"}],
        )
        session.sync_constraints([{"type": "fixed", "node_ids": ["c"]}])

        for _ in range(4):
            session.on_drag("a", -20.0, 0.0)

        nodes = session.graph.nodes
        assert (nodes["a"].x, nodes["b"].x) == (-80.0, 0.0)
        assert (nodes["c"].x, nodes["c"].y) == (0.0, 80.0)
        assert nodes["far"].x == 300.0


def test_neighbour_follows_with_physics_ticks():
    with LayoutSession() as session:
        session.sync_graph([{"id": "a", "x": 0, "y": 0}, {"id": "b", "x": 40, "y": 0}],
                           [{"sourceId": "a", "targetId": "b"}])
        session.set_physics_options({"gravity": 0, "repulsion": 0})

        for _ in range(20):
            session.on_drag("a", -20.0, 0.0)

        assert session.graph.nodes["b"].x < 39.0


def test_options_swap_waits_for_running_tick(session):
    acquired = []

    def swap():
        session.set_physics_options({"solver": "direct"})
        acquired.append(session.options.solver)

    with session._lock:
        worker = threading.Thread(target=swap)
        worker.start()
        worker.join(0.05)
        assert acquired == []
        assert session.options.solver == SolverType.BARNES_HUT
    worker.join()

    assert acquired == [SolverType.DIRECT]
