#!/usr/bin/env python3
# -*- coding: utf-8 -*-
"""
batcher/planner.py — thread counts for one HWGW batch or one prep pass.

Public API
----------
req = batch_threads(host, target, percent)   # full hack/weaken/grow/weaken batch
req = prep_threads(host, target)             # convergence pass, hack fixed at 0
ram = batch_ram(req, costs)                  # capacity units one batch occupies
big = max_contiguous_ram(req, costs)         # largest single-stage footprint

Both planners are pure: they read a Target snapshot and the host's effect
functions, and never touch nodes or launch anything.
"""

from __future__ import annotations

import math
from typing import Dict

from .solver import DEFAULT_TOLERANCE, weaken_threads_needed
from .state import STAGE_KIND, STAGES, StageRequest, Target

GROW_SAFETY = 1.1


def batch_threads(
    host,
    target: Target,
    percent: float,
    grow_safety: float = GROW_SAFETY,
    tolerance: float = DEFAULT_TOLERANCE,
) -> StageRequest:
    if not (0.0 < percent <= 1.0):
        raise ValueError(f"hack percent must be in (0, 1], got {percent}")

    hack_amt = target.max_money * percent
    hack = int(math.floor(host.hack_threads_for(target, hack_amt)))
    weaken1 = weaken_threads_needed(host, host.hack_security(hack), tolerance)

    # over count grow: the solver tolerance and rounding otherwise leave money short
    remaining = max(target.max_money - hack_amt, 1.0)
    grow = int(math.ceil(grow_safety * host.grow_threads_for(target, target.max_money / remaining)))
    weaken2 = weaken_threads_needed(host, host.grow_security(grow), tolerance)

    return StageRequest(hack=max(0, hack), weaken1=weaken1, grow=max(0, grow), weaken2=weaken2)


def prep_threads(host, target: Target, tolerance: float = DEFAULT_TOLERANCE) -> StageRequest:
    weaken1 = weaken_threads_needed(host, target.security_gap, tolerance)
    if target.money >= target.max_money:
        grow = 0
    else:
        grow = int(math.ceil(host.grow_threads_for(target, target.max_money / max(target.money, 1.0))))
    weaken2 = weaken_threads_needed(host, host.grow_security(grow), tolerance) if grow else 0
    return StageRequest(hack=0, weaken1=weaken1, grow=max(0, grow), weaken2=weaken2)


def stage_ram(req: StageRequest, costs: Dict[str, float]) -> Dict[str, float]:
    return {s: req.get(s) * costs[STAGE_KIND[s]] for s in STAGES}


def batch_ram(req: StageRequest, costs: Dict[str, float]) -> float:
    return sum(stage_ram(req, costs).values())


def max_contiguous_ram(req: StageRequest, costs: Dict[str, float]) -> float:
    return max(stage_ram(req, costs).values())
