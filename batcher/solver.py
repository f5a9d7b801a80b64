#!/usr/bin/env python3
# -*- coding: utf-8 -*-
"""
batcher/solver.py — minimal thread count that reaches a desired effect.

solve_threads(f, amt) returns the smallest integer t with f(t) >= amt, found by
bisection between 1 and CEIL_THREADS. The result never undershoots; overshoot
is bounded by the per-thread granularity of f (tolerance, default 0.05 which
is the security removed by one weaken thread).
"""

from __future__ import annotations

import math
from typing import Callable

CEIL_THREADS = 100_000
MAX_ITERATIONS = 20
DEFAULT_TOLERANCE = 0.05


class UnreachableEffect(ValueError):
    """The requested effect needs more than CEIL_THREADS threads."""

    def __init__(self, amount: float, max_effect: float, ceil: int):
        self.amount = amount
        self.max_effect = max_effect
        self.ceil = ceil
        super().__init__(
            f"effect {amount:.4f} is unreachable: {ceil} threads only reach {max_effect:.4f}"
        )


def solve_threads(
    f: Callable[[float], float],
    amt: float,
    tolerance: float = DEFAULT_TOLERANCE,
    ceil: int = CEIL_THREADS,
) -> int:
    if amt <= 0:
        return 0

    top = f(ceil)
    if top < amt:
        raise UnreachableEffect(amt, top, ceil)

    lo, hi = 1.0, float(ceil)
    t = None
    for _ in range(MAX_ITERATIONS):
        if lo >= hi:
            break
        mid = (lo + hi) / 2.0
        d = f(mid) - amt
        if 0 <= d < tolerance:
            t = math.ceil(mid)
            break
        if d > 0:
            hi = mid
        else:
            lo = mid
    if t is None:
        t = math.ceil((lo + hi) / 2.0)

    # bisection works on reals; settle on the integer boundary
    t = max(1, min(int(t), ceil))
    while t < ceil and f(t) < amt:
        t += 1
    while t > 1 and f(t - 1) >= amt:
        t -= 1
    return t


def weaken_threads_needed(host, amount: float, tolerance: float = DEFAULT_TOLERANCE) -> int:
    """Weaken threads that bring security down by at least `amount`."""
    return solve_threads(host.weaken_effect, amount, tolerance)
