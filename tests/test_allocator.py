import pytest

from batcher.policy.allocator import AllocStatus, allocate, fill_divisible
from batcher.state import STAGES, Node, StageRequest

UNIT = {"hack": 1.0, "grow": 1.0, "weaken": 1.0}


def make_nodes(**sizes):
    return [Node(name, float(ram)) for name, ram in sizes.items()]


def assert_reconciles(res, req):
    for stage in STAGES:
        assert res.threads(stage) == req.get(stage), stage


def test_grow_goes_to_smallest_single_node_that_fits():
    req = StageRequest(hack=5, weaken1=3, grow=15, weaken2=2)
    res = allocate(req, make_nodes(a=10, b=20, c=40), UNIT)

    assert res.status is AllocStatus.OK
    assert res.assignment["grow"] == [("b", 15)]
    assert res.assignment["hack"] == [("a", 5)]
    assert res.assignment["weaken1"] == [("a", 3)]
    assert res.assignment["weaken2"] == [("a", 2)]
    assert res.shadow == {"a": 0.0, "b": 5.0, "c": 40.0}


def test_hack_split_is_degraded():
    req = StageRequest(hack=10)
    res = allocate(req, make_nodes(a=4, b=4, c=4), UNIT)
    assert res.status is AllocStatus.OK_DEGRADED
    assert res.assignment["hack"] == [("a", 4), ("b", 4), ("c", 2)]
    assert_reconciles(res, req)


def test_hack_split_can_be_disallowed():
    res = allocate(StageRequest(hack=10), make_nodes(a=4, b=4, c=4), UNIT, allow_split_hack=False)
    assert res.status is AllocStatus.FAILED
    assert res.reason["stage"] == "hack"
    assert res.reason["available"] == 4
    assert res.reason["split_allowed"] is False


def test_hack_beyond_aggregate_capacity_fails():
    res = allocate(StageRequest(hack=13), make_nodes(a=4, b=4, c=4), UNIT)
    assert not res.ok
    assert res.reason == {"stage": "hack", "required": 13, "available": 12}


def test_grow_is_never_split():
    res = allocate(StageRequest(grow=5), make_nodes(a=4, b=4), UNIT)
    assert res.status is AllocStatus.FAILED
    assert res.reason["stage"] == "grow"
    assert res.reason["required"] == 5
    assert res.reason["available"] == 4
    assert all(p == [] for p in res.assignment.values())


def test_weaken_overflow_reports_remaining_threads():
    res = allocate(StageRequest(weaken1=2, weaken2=1), make_nodes(a=2), UNIT)
    assert res.status is AllocStatus.FAILED
    assert res.reason["stage"] == "weaken2"
    assert res.reason["overflow"] == {"weaken1": 0, "weaken2": 1}
    assert res.reason["available"] == 2


def test_weaken1_is_placed_before_weaken2_on_each_node():
    res = allocate(StageRequest(weaken1=3, weaken2=3), make_nodes(a=4, b=4), UNIT)
    assert res.ok
    assert res.assignment["weaken1"] == [("a", 3)]
    assert res.assignment["weaken2"] == [("a", 1), ("b", 2)]


def test_failed_allocation_leaves_shadow_untouched():
    shadow = {"a": 3.0, "b": 1.0}
    res = allocate(StageRequest(grow=5), make_nodes(a=10, b=10), UNIT, shadow=shadow)
    assert not res.ok
    assert res.shadow == shadow
    assert shadow == {"a": 3.0, "b": 1.0}


def test_shadow_chains_consecutive_batches():
    nodes = make_nodes(a=10)
    req = StageRequest(grow=4, weaken1=1)

    first = allocate(req, nodes, UNIT)
    assert first.ok and first.shadow == {"a": 5.0}
    second = allocate(req, nodes, UNIT, shadow=first.shadow)
    assert second.ok and second.shadow == {"a": 0.0}
    third = allocate(req, nodes, UNIT, shadow=second.shadow)
    assert not third.ok
    # live nodes never change
    assert nodes[0].free == 10.0
    assert first.shadow == {"a": 5.0}


def test_reserved_capacity_is_subtracted():
    nodes = [Node("home", 16.0, reserved=12.0, klass="home")]
    res = allocate(StageRequest(weaken1=5), nodes, UNIT)
    assert not res.ok
    assert res.reason["available"] == 4


def test_mixed_costs_fit_exactly():
    nodes = make_nodes(a=16, b=32, c=64)
    costs = {"hack": 1.6, "grow": 1.75, "weaken": 1.75}
    req = StageRequest(hack=4, weaken1=2, grow=6, weaken2=3)
    res = allocate(req, nodes, costs)

    # grow (10.5) on the 16 node, hack (6.4) no longer fits beside it
    assert res.status is AllocStatus.OK
    assert res.assignment["grow"] == [("a", 6)]
    assert res.assignment["hack"] == [("b", 4)]
    assert_reconciles(res, req)
    assert res.shadow["a"] == pytest.approx(0.25)
    assert res.shadow["b"] == pytest.approx(22.1)
    assert res.shadow["c"] == pytest.approx(64.0)


def test_mixed_costs_split_hack_over_small_nodes():
    nodes = make_nodes(a=16, b=5, c=5, d=5, e=5)
    costs = {"hack": 1.6, "grow": 1.75, "weaken": 1.75}
    req = StageRequest(hack=4, weaken1=2, grow=6, weaken2=3)
    res = allocate(req, nodes, costs)

    assert res.status is AllocStatus.OK_DEGRADED
    assert res.assignment["grow"] == [("a", 6)]
    assert res.assignment["hack"] == [("b", 3), ("c", 1)]
    assert_reconciles(res, req)
    for name, free in res.shadow.items():
        assert free >= 0.0, name


def test_zero_request_is_ok_and_empty():
    res = allocate(StageRequest(), make_nodes(a=1), UNIT)
    assert res.status is AllocStatus.OK
    assert all(p == [] for p in res.assignment.values())


def test_non_positive_cost_is_rejected():
    with pytest.raises(ValueError):
        allocate(StageRequest(hack=1), make_nodes(a=4), {"hack": 0.0, "grow": 1.0, "weaken": 1.0})


def test_describe_and_as_dict():
    res = allocate(StageRequest(grow=5), make_nodes(a=4), UNIT)
    assert "cannot place 5 grow threads" in res.describe()
    d = res.as_dict()
    assert d["status"] == "failed"
    assert d["reason"]["stage"] == "grow"


def test_fill_divisible_prefers_largest_nodes():
    placements, shadow = fill_divisible(7, make_nodes(a=2, b=5, c=3), 1.0)
    assert placements == [("b", 5), ("c", 2)]
    assert shadow == {"a": 2.0, "b": 0.0, "c": 1.0}


def test_fill_divisible_places_what_fits():
    placements, shadow = fill_divisible(20, make_nodes(a=2, b=3), 1.0, shadow={"b": 1.0})
    assert placements == [("a", 2), ("b", 1)]
    assert shadow == {"a": 0.0, "b": 0.0}
