#!/usr/bin/env python3
# -*- coding: utf-8 -*-
"""
batcher/feasibility.py — can the pool sustain a saturated cycle on a target?

For every target the report evaluates one batch at baseline (min security,
max money), scales it by the window saturation and checks it against the
pool. When the answer is not obvious it chains `allocate` calls through the
shadow map, one per batch in the window, without touching live state.

Validity
--------
-1  infeasible (not enough capacity, or a chained allocation failed)
 0  feasible
 1  feasible, but at least one batch had to split hack (degraded)
 2  feasible by a wide margin (cycle ram * 1.5 < pool ram), not simulated
"""

from __future__ import annotations

from collections import Counter
from typing import Any, Dict, List, Optional, Tuple

from .dispatch import BATCH_STEP
from .planner import batch_ram, batch_threads, max_contiguous_ram
from .policy.allocator import allocate
from .solver import UnreachableEffect
from .state import Node

INFEASIBLE = -1
FEASIBLE = 0
DEGRADED = 1
COMFORTABLE = 2

WIDE_MARGIN = 1.5


def simulate_chain(
    request,
    nodes: List[Node],
    costs: Dict[str, float],
    count: int,
    allow_split_hack: bool = True,
) -> Tuple[int, int]:
    """Allocate `count` identical batches back to back; returns (validity, batches placed)."""
    shadow: Dict[str, float] = {}
    state = FEASIBLE
    for i in range(count):
        res = allocate(request, nodes, costs, allow_split_hack=allow_split_hack, shadow=shadow)
        if not res.ok:
            return INFEASIBLE, i
        if res.degraded:
            state = DEGRADED
        shadow = res.shadow
    return state, count


def batch_feasibility(
    host,
    target: str,
    percent: float,
    include_home: bool = False,
    max_batches: Optional[int] = None,
    step_ms: float = BATCH_STEP,
    nodes: Optional[List[Node]] = None,
) -> Dict[str, Any]:
    interval = 4.0 * step_ms
    t = host.target(target, baseline=True)
    prep_ms = host.target(target).weaken_time
    nodes = nodes if nodes is not None else host.nodes(include_home=include_home)
    costs = host.stage_costs()
    total = sum(n.usable for n in nodes)

    base_sat = int(t.weaken_time // interval)
    sat = base_sat if max_batches is None or max_batches < 0 else min(base_sat, max_batches)

    try:
        req = batch_threads(host, t, percent)
    except UnreachableEffect as e:
        return {"target": target, "valid": INFEASIBLE, "error": str(e)}

    ram = batch_ram(req, costs)
    cycle_ram = sat * ram
    profit = t.max_money * percent
    profit_per_sec = 0.0
    if base_sat > 0:
        profit_per_sec = host.hack_chance(t) * (sat / base_sat) * (profit / interval) * 1000.0

    if cycle_ram > total:
        valid = INFEASIBLE
    elif cycle_ram * WIDE_MARGIN < total:
        valid = COMFORTABLE
    else:
        valid, _ = simulate_chain(req, nodes, costs, sat)

    return {
        "target": target,
        "prep_ms": round(prep_ms, 3),
        "cycle_ms": round(t.weaken_time, 3),
        "saturation": sat,
        "max_saturation": base_sat,
        "threads": req.as_dict(),
        "batch_ram": round(ram, 4),
        "cycle_ram": round(cycle_ram, 4),
        "max_contiguous_ram": round(max_contiguous_ram(req, costs), 4),
        "profit_per_sec": round(profit_per_sec, 4),
        "profit_per_ram": round(profit / ram, 4) if ram > 0 else 0.0,
        "valid": valid,
    }


def feasibility_report(
    host,
    percent: float,
    include_home: bool = False,
    max_batches: Optional[int] = None,
    sort_by: str = "sec",
    include_invalid: bool = False,
    limit: Optional[int] = None,
) -> List[Dict[str, Any]]:
    nodes = host.nodes(include_home=include_home)
    rows = []
    for name in host.target_names():
        row = batch_feasibility(host, name, percent, include_home, max_batches, nodes=nodes)
        if row["valid"] == INFEASIBLE and not include_invalid:
            continue
        rows.append(row)

    key = "profit_per_ram" if sort_by == "ram" else "profit_per_sec"
    rows.sort(key=lambda r: r.get(key, 0.0), reverse=True)
    if limit is not None and limit >= 0:
        rows = rows[:limit]
    return rows


def capacity_histogram(nodes: List[Node]) -> List[Tuple[float, int]]:
    """[(usable ram, node count), ...] ascending."""
    counts = Counter(round(n.usable, 4) for n in nodes)
    return sorted(counts.items())
