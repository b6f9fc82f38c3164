import pytest

from buildrun.model import Step
from buildrun.plan import build_graph, build_plan, step_dependencies, topo_levels


def _step(index, step_id=None, wait_for=()):
    return Step(
        index=index,
        id=step_id or f"step-{index}",
        image="alpine",
        wait_for=tuple(wait_for),
        has_explicit_id=step_id is not None,
    )


def _ids(stages):
    return [[s.id for s in stage] for stage in stages]


def test_steps_run_in_order_by_default():
    steps = [_step(0, "a"), _step(1, "b"), _step(2, "c")]
    assert _ids(build_plan(steps)) == [["a"], ["b"], ["c"]]


def test_default_waits_for_every_earlier_step():
    steps = [_step(0, "a"), _step(1, "b", ["-"]), _step(2, "c")]
    assert step_dependencies(steps)[2] == [0, 1]
    assert _ids(build_plan(steps)) == [["a", "b"], ["c"]]


def test_explicit_wait_for():
    steps = [
        _step(0, "fetch"),
        _step(1, "pull", ["-"]),
        _step(2, "test", ["fetch"]),
        _step(3, "lint", ["fetch"]),
    ]
    assert _ids(build_plan(steps)) == [["fetch", "pull"], ["test", "lint"]]


def test_unknown_wait_for():
    steps = [_step(0, "a"), _step(1, "b", ["missing"])]
    with pytest.raises(ValueError, match="missing"):
        build_plan(steps)


def test_positional_ids_cannot_be_waited_on():
    steps = [_step(0), _step(1, "b", ["step-0"])]
    with pytest.raises(ValueError):
        build_plan(steps)


def test_graph_counts_edges_once():
    steps = [_step(0, "a"), _step(1, "b", ["a", "a"])]
    adj, indeg = build_graph(steps)
    assert adj[0] == {1}
    assert indeg[1] == 1


def test_topo_levels_detects_cycles():
    adj = {0: {1}, 1: {0}}
    indeg = {0: 1, 1: 1}
    with pytest.raises(ValueError, match="cycle"):
        topo_levels(adj, indeg)
