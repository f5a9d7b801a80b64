import pathlib
import sys

import pytest

ROOT = pathlib.Path(__file__).resolve().parents[1]
if str(ROOT) not in sys.path:
    sys.path.insert(0, str(ROOT))

from batcher.state import Node, NodePool
from sim.host import SimHost


@pytest.fixture()
def make_host():
    """Build a SimHost over in-memory nodes: make_host({"a": 64}, {"t": {...}})."""

    def _make(nodes, targets, **kw):
        pool = NodePool(nodes_dir=None, nodes=[Node(name, float(ram)) for name, ram in nodes.items()])
        return SimHost(pool, targets, **kw)

    return _make


@pytest.fixture()
def unprepared():
    # security 10/5, money 50/100
    return {
        "min_security": 5,
        "security": 10,
        "max_money": 100,
        "money": 50,
        "base_hack_ms": 1000,
        "hack_percent": 0.01,
        "growth_rate": 0.05,
    }


@pytest.fixture()
def prepared(unprepared):
    return {**unprepared, "security": 5, "money": 100}
