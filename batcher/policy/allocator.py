#!/usr/bin/env python3
# -*- coding: utf-8 -*-
"""
batcher/policy/allocator.py — smallest-fit packer for HWGW stage threads.

What it does
------------
- Packs one StageRequest onto nodes, scanning them smallest free capacity first
  so large nodes stay available for requests that cannot be split.
- Grow must land on a single node (splitting grow loses growth).
- Hack prefers a single node; when none fits it is spread greedily and the
  result is flagged OK_DEGRADED.
- Both weaken stages are freely divisible and filled in one last pass.
- Works on a shadow capacity map: a FAILED result never changes it, a
  successful one returns an updated copy so calls can be chained to model
  several consecutive batches without touching live state.

Key API
-------
res = allocate(request, nodes, costs, allow_split_hack=True, shadow=None)
res.status        AllocStatus.OK | OK_DEGRADED | FAILED
res.assignment    {"hack": [(node, threads), ...], "weaken1": [...], ...}
res.shadow        {node: free capacity after placement}
res.reason        {"stage", "required", "available", ...} when FAILED

placements, shadow = fill_divisible(threads, nodes, cost, shadow=None)

Notes
-----
- Capacity comparisons carry the same 1e-9 slack the capacity checks in
  state.py use.
- No external dependencies.
"""

from __future__ import annotations

import math
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Dict, Iterable, List, Optional, Tuple

from batcher.state import STAGE_KIND, STAGES, Node, StageRequest

EPS = 1e-9

Placement = Tuple[str, int]


class AllocStatus(str, Enum):
    OK = "ok"
    OK_DEGRADED = "ok_degraded"
    FAILED = "failed"


@dataclass
class AllocationResult:
    status: AllocStatus
    assignment: Dict[str, List[Placement]] = field(default_factory=dict)
    shadow: Dict[str, float] = field(default_factory=dict)
    reason: Optional[Dict[str, Any]] = None

    @property
    def ok(self) -> bool:
        return self.status is not AllocStatus.FAILED

    @property
    def degraded(self) -> bool:
        return self.status is AllocStatus.OK_DEGRADED

    def threads(self, stage: str) -> int:
        return sum(t for _, t in self.assignment.get(stage, []))

    def describe(self) -> str:
        if self.reason is None:
            return self.status.value
        r = self.reason
        return (
            f"cannot place {r.get('required')} {r.get('stage')} threads "
            f"(max available={r.get('available')})"
        )

    def as_dict(self) -> Dict[str, Any]:
        return {
            "status": self.status.value,
            "assignment": {s: [[n, t] for n, t in p] for s, p in self.assignment.items()},
            "shadow": {k: round(v, 4) for k, v in self.shadow.items()},
            "reason": self.reason,
        }


def _threads_fitting(free: float, cost: float) -> int:
    if cost <= 0:
        raise ValueError(f"per-thread cost must be positive, got {cost}")
    return max(0, int(math.floor((free + EPS) / cost)))


def _free_view(nodes: Iterable[Node], shadow: Dict[str, float]) -> Dict[str, float]:
    return {n.name: safe_free(shadow.get(n.name, n.free)) for n in nodes}


def safe_free(v: float) -> float:
    return max(0.0, float(v))


def _ascending(free: Dict[str, float]) -> List[str]:
    return sorted(free, key=lambda name: (free[name], name))


def _failed(shadow_in: Dict[str, float], stage: str, required: int, available: int, **extra) -> AllocationResult:
    return AllocationResult(
        status=AllocStatus.FAILED,
        assignment={s: [] for s in STAGES},
        shadow=dict(shadow_in),
        reason={"stage": stage, "required": required, "available": available, **extra},
    )


def allocate(
    request: StageRequest,
    nodes: Iterable[Node],
    costs: Dict[str, float],
    allow_split_hack: bool = True,
    shadow: Optional[Dict[str, float]] = None,
) -> AllocationResult:
    shadow_in = dict(shadow or {})
    free = _free_view(nodes, shadow_in)
    order = _ascending(free)
    assignment: Dict[str, List[Placement]] = {s: [] for s in STAGES}
    degraded = False

    def place(stage: str, name: str, threads: int):
        assignment[stage].append((name, threads))
        free[name] = max(0.0, free[name] - threads * costs[STAGE_KIND[stage]])

    # grow: one node or nothing
    grow = request.grow
    if grow:
        cost = costs["grow"]
        chosen = next((n for n in order if _threads_fitting(free[n], cost) >= grow), None)
        if chosen is None:
            best = max((_threads_fitting(free[n], cost) for n in order), default=0)
            return _failed(shadow_in, "grow", grow, best)
        place("grow", chosen, grow)

    # hack: smallest single node that holds everything, else spread
    hack = request.hack
    if hack:
        cost = costs["hack"]
        chosen = next((n for n in order if _threads_fitting(free[n], cost) >= hack), None)
        if chosen is not None:
            place("hack", chosen, hack)
        else:
            best = max((_threads_fitting(free[n], cost) for n in order), default=0)
            if not allow_split_hack:
                return _failed(shadow_in, "hack", hack, best, split_allowed=False)
            total = sum(_threads_fitting(free[n], cost) for n in order)
            if total < hack:
                return _failed(shadow_in, "hack", hack, total)
            remaining = hack
            for n in order:
                k = min(_threads_fitting(free[n], cost), remaining)
                if k > 0:
                    place("hack", n, k)
                    remaining -= k
                if remaining == 0:
                    break
            degraded = len(assignment["hack"]) > 1

    # weakens: one pass, weaken1 before weaken2 on every node
    w1, w2 = request.weaken1, request.weaken2
    wcost = costs["weaken"]
    weaken_capacity = sum(_threads_fitting(free[n], wcost) for n in order)
    for n in order:
        if not (w1 or w2):
            break
        t = _threads_fitting(free[n], wcost)
        if w1 and t:
            k = min(t, w1)
            place("weaken1", n, k)
            w1 -= k
            t -= k
        if w2 and t:
            k = min(t, w2)
            place("weaken2", n, k)
            w2 -= k

    if w1 or w2:
        return _failed(
            shadow_in,
            "weaken1" if w1 else "weaken2",
            request.weaken1 + request.weaken2,
            weaken_capacity,
            overflow={"weaken1": w1, "weaken2": w2},
        )

    shadow_out = dict(shadow_in)
    shadow_out.update(free)
    return AllocationResult(
        status=AllocStatus.OK_DEGRADED if degraded else AllocStatus.OK,
        assignment=assignment,
        shadow=shadow_out,
    )


def fill_divisible(
    threads: int,
    nodes: Iterable[Node],
    cost: float,
    shadow: Optional[Dict[str, float]] = None,
    largest_first: bool = True,
) -> Tuple[List[Placement], Dict[str, float]]:
    """Place up to `threads` threads wherever they fit; returns (placements, shadow)."""
    shadow_in = dict(shadow or {})
    free = _free_view(nodes, shadow_in)
    order = _ascending(free)
    if largest_first:
        order.reverse()

    placements: List[Placement] = []
    remaining = max(0, int(threads))
    for n in order:
        if remaining == 0:
            break
        k = min(_threads_fitting(free[n], cost), remaining)
        if k > 0:
            placements.append((n, k))
            free[n] = max(0.0, free[n] - k * cost)
            remaining -= k

    shadow_out = dict(shadow_in)
    shadow_out.update(free)
    return placements, shadow_out
