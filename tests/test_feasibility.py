import pytest

from batcher.feasibility import (
    COMFORTABLE,
    DEGRADED,
    FEASIBLE,
    INFEASIBLE,
    batch_feasibility,
    capacity_histogram,
    feasibility_report,
    simulate_chain,
)
from batcher.state import Node, StageRequest


def test_full_saturation_does_not_fit(make_host, prepared):
    host = make_host({"a": 256, "b": 256, "c": 256}, {"t": prepared})
    row = batch_feasibility(host, "t", 0.5)
    assert row["max_saturation"] == 13
    assert row["saturation"] == 13
    assert row["batch_ram"] == pytest.approx(126.9)
    assert row["valid"] == INFEASIBLE


def test_small_cap_is_comfortable(make_host, prepared):
    host = make_host({"a": 256, "b": 256, "c": 256}, {"t": prepared})
    row = batch_feasibility(host, "t", 0.5, max_batches=3)
    assert row["saturation"] == 3
    assert row["cycle_ram"] == pytest.approx(3 * 126.9)
    assert row["valid"] == COMFORTABLE


def test_tight_cap_is_simulated(make_host, prepared):
    host = make_host({"a": 256, "b": 256, "c": 256}, {"t": prepared})
    row = batch_feasibility(host, "t", 0.5, max_batches=5)
    assert row["valid"] == FEASIBLE
    assert row["profit_per_sec"] == pytest.approx((5 / 13) * (50 / 300) * 1000, abs=1e-3)
    assert row["profit_per_ram"] == pytest.approx(50 / 126.9, abs=1e-3)
    assert row["max_contiguous_ram"] == pytest.approx(52 * 1.7)


def test_split_hack_marks_report_degraded(make_host, prepared):
    host = make_host({"n1": 64, "n2": 64}, {"t": prepared})
    row = batch_feasibility(host, "t", 0.5, max_batches=1)
    assert row["valid"] == DEGRADED


def test_prep_time_uses_current_state(make_host, unprepared):
    host = make_host({"a": 256}, {"t": unprepared})
    row = batch_feasibility(host, "t", 0.5)
    # baseline weaken time is 4s, the drifted target takes twice as long
    assert row["cycle_ms"] == pytest.approx(4000.0)
    assert row["prep_ms"] == pytest.approx(8000.0)


def test_simulate_chain_stops_at_first_failure():
    nodes = [Node("a", 10.0)]
    costs = {"hack": 1.0, "grow": 1.0, "weaken": 1.0}
    assert simulate_chain(StageRequest(grow=4), nodes, costs, 2) == (FEASIBLE, 2)
    assert simulate_chain(StageRequest(grow=4), nodes, costs, 3) == (INFEASIBLE, 2)


def test_report_filters_and_sorts(make_host, prepared):
    rich = {**prepared, "max_money": 1000, "money": 1000}
    host = make_host({"a": 256, "b": 256, "c": 256}, {"poor": prepared, "rich": rich})

    assert feasibility_report(host, 0.5) == []

    rows = feasibility_report(host, 0.5, max_batches=3)
    assert [r["target"] for r in rows] == ["rich", "poor"]

    rows = feasibility_report(host, 0.5, include_invalid=True, limit=1)
    assert len(rows) == 1


def test_capacity_histogram():
    nodes = [Node("a", 64.0), Node("b", 128.0), Node("c", 64.0), Node("h", 96.0, reserved=32.0)]
    assert capacity_histogram(nodes) == [(64.0, 3), (128.0, 1)]
