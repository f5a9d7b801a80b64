import pytest

from batcher.dispatch import (
    BATCH_STEP,
    Dispatcher,
    LaunchFailed,
    NegativeOffset,
    batch_duration,
    finish_times,
    stage_offsets,
)
from batcher.host import Host
from batcher.state import Target


def make_target(hack=1000.0, grow=3200.0, weaken=4000.0):
    return Target("t", 5.0, 5.0, 100.0, 100.0, hack, grow, weaken)


class RecordingHost(Host):
    """Records launches; `fail_on` names a stage payload whose launch yields no handle."""

    def __init__(self, fail_on=None, stage_ok=True):
        self.calls = []
        self.fail_on = fail_on
        self.stage_ok = stage_ok

    def weaken_effect(self, threads):
        return threads * 0.05

    def hack_security(self, threads):
        return threads * 0.002

    def grow_security(self, threads):
        return threads * 0.004

    def hack_threads_for(self, target, amount):
        return amount

    def grow_threads_for(self, target, multiplier):
        return multiplier

    def target(self, name, baseline=False):
        return make_target()

    def nodes(self, include_home=False):
        return []

    def stage_payload(self, node, payload):
        return self.stage_ok

    def launch(self, node, payload, threads, target, offset_ms):
        if payload == self.fail_on:
            return None
        self.calls.append((payload, node, threads, offset_ms))
        return len(self.calls)

    def sleep(self, ms):
        pass


def test_offsets_and_finish_order():
    t = make_target()
    offsets = stage_offsets(t)
    assert offsets == {"hack": 2925.0, "weaken1": 0.0, "grow": 875.0, "weaken2": 150.0}

    finish = finish_times(t)
    order = [finish["hack"], finish["weaken1"], finish["grow"], finish["weaken2"]]
    assert order == sorted(order)
    for a, b in zip(order, order[1:]):
        assert b - a >= BATCH_STEP
    assert batch_duration(t) == 4150.0


def test_negative_offset_is_rejected():
    with pytest.raises(ValueError):
        stage_offsets(make_target(hack=5000.0))


def test_dispatch_launches_every_placement_in_stage_order():
    host = RecordingHost()
    assignment = {
        "hack": [("a", 3), ("b", 2)],
        "weaken1": [("a", 1)],
        "grow": [("c", 4)],
        "weaken2": [("c", 0), ("a", 1)],
    }
    duration, handles = Dispatcher(host, verbose=False).dispatch(assignment, make_target())

    assert duration == 4150.0
    assert handles == [1, 2, 3, 4, 5]
    assert host.calls == [
        ("hack.js", "a", 3, 2925.0),
        ("hack.js", "b", 2, 2925.0),
        ("weak.js", "a", 1, 0.0),
        ("grow.js", "c", 4, 875.0),
        ("weak.js", "a", 1, 150.0),
    ]


def test_launch_without_handle_raises():
    host = RecordingHost(fail_on="grow.js")
    with pytest.raises(LaunchFailed) as exc:
        Dispatcher(host, verbose=False).dispatch({"grow": [("c", 4)]}, make_target())
    assert exc.value.stage == "grow"
    assert exc.value.node == "c"
    assert exc.value.threads == 4


def test_unstaged_payload_raises():
    host = RecordingHost(stage_ok=False)
    with pytest.raises(LaunchFailed):
        Dispatcher(host, verbose=False).dispatch({"weaken1": [("a", 1)]}, make_target())
    assert host.calls == []


def test_offsets_only_checked_for_launched_stages():
    flat = make_target(hack=1000.0, grow=1000.0, weaken=1000.0)
    offsets = stage_offsets(flat, stages=["weaken1", "grow", "weaken2"])
    assert offsets["grow"] == 75.0
    assert set(finish_times(flat, stages=["weaken1", "grow"])) == {"weaken1", "grow"}

    with pytest.raises(NegativeOffset) as exc:
        stage_offsets(flat)
    assert exc.value.offsets == {"hack": -75.0}


def test_dispatch_without_hack_tolerates_short_weaken():
    host = RecordingHost()
    flat = make_target(hack=1000.0, grow=1000.0, weaken=1000.0)
    assignment = {"hack": [("a", 0)], "weaken1": [("a", 2)], "grow": [("b", 3)]}
    duration, handles = Dispatcher(host, verbose=False).dispatch(assignment, flat)
    assert duration == 1150.0
    assert [c[0] for c in host.calls] == ["weak.js", "grow.js"]
