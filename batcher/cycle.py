#!/usr/bin/env python3
# -*- coding: utf-8 -*-
"""
batcher/cycle.py — prep loop and saturated HWGW cycle controller.

States
------
PREPARING → CYCLING → (FATAL | TERMINATED)

PREPARING
    Re-measure the target; once security and money are inside the tolerance
    band switch to CYCLING. Otherwise plan a weaken/grow/weaken pass, allocate,
    dispatch and sleep until it lands. When the whole correction does not fit,
    run a partial pass (all weaken threads plus as many grow threads as fit).
    Allocation failures here are retried after a backoff, up to
    max_prep_retries.

CYCLING
    Each pass reads the weaken time W, issues floor(W / BATCH_INTERVAL)
    batches (optionally capped) BATCH_INTERVAL apart, then sleeps out the rest
    of the window. Any failed allocation or launch aborts the controller.

Usage
-----
ctl = CycleController(host, "n00dles", percent=0.5, max_batches=4)
summary = ctl.run(max_passes=10)
"""

from __future__ import annotations

import math
from typing import Any, Dict, List, Optional, Tuple

from .dispatch import Dispatcher, LaunchFailed, NegativeOffset
from .planner import batch_threads, prep_threads
from .policy.allocator import AllocationResult, AllocStatus, allocate, fill_divisible
from .solver import UnreachableEffect
from .state import STAGES, StageRequest, Target

PREPARING = "PREPARING"
CYCLING = "CYCLING"
FATAL = "FATAL"
TERMINATED = "TERMINATED"

DEFAULTS = {
    "step_ms": 75.0,                 # gap between stage completions
    "prep_pad_ms": 100.0,            # extra wait after a prep pass lands
    "prep_security_tolerance": 0.05, # one weaken thread
    "prep_money_tolerance": 0.05,    # fraction of max money
    "max_prep_retries": 5,
    "prep_backoff_ms": 1000.0,
    "grow_safety": 1.1,
}


class CycleAborted(RuntimeError):
    def __init__(self, msg: str, state: str, reason: Optional[Dict[str, Any]] = None):
        self.state = state
        self.reason = reason
        super().__init__(msg)


def saturation(weaken_time: float, batch_interval: float, max_batches: Optional[int] = None) -> Tuple[int, int]:
    """Return (base, capped): how many batches fit in one weaken window."""
    base = max(0, int(math.floor(weaken_time / batch_interval)))
    if max_batches is None or max_batches < 0:
        return base, base
    return base, min(base, int(max_batches))


class CycleController:
    def __init__(
        self,
        host,
        target: str,
        percent: float = 0.5,
        max_batches: Optional[int] = None,
        include_home: bool = False,
        allow_split_hack: bool = True,
        verbose: bool = True,
        **cfg,
    ):
        if not (0.0 < percent <= 1.0):
            raise ValueError(f"percent must be in (0, 1], got {percent}")
        self.host = host
        self.target_name = target
        self.percent = float(percent)
        self.max_batches = max_batches if (max_batches is not None and max_batches >= 0) else None
        self.include_home = include_home
        self.allow_split_hack = allow_split_hack
        self.verbose = verbose
        self.cfg = {**DEFAULTS, **cfg}

        self.step_ms = float(self.cfg["step_ms"])
        self.batch_interval = 4.0 * self.step_ms
        self.dispatcher = Dispatcher(host, step_ms=self.step_ms, verbose=verbose)

        self.state = PREPARING
        self._stop_requested = False
        self.passes: List[Dict[str, Any]] = []
        self.prep_passes = 0

    # -------- lifecycle --------

    def log(self, msg: str):
        if self.verbose:
            print(f"[cycle] {msg}")

    def stop(self):
        """Tear down before the next planning pass; launched tasks keep running."""
        self._stop_requested = True

    def _check_stop(self) -> bool:
        if self._stop_requested:
            self.state = TERMINATED
            self.log("terminated")
            return True
        return False

    def _fatal(self, msg: str, reason: Optional[Dict[str, Any]] = None):
        self.state = FATAL
        self.log(f"ERROR: {msg}")
        raise CycleAborted(msg, FATAL, reason)

    # -------- helpers --------

    def _target(self) -> Target:
        return self.host.target(self.target_name)

    def in_band(self, t: Target) -> bool:
        sec_ok = t.security_gap < float(self.cfg["prep_security_tolerance"])
        money_ok = t.money_gap <= float(self.cfg["prep_money_tolerance"]) * t.max_money
        return sec_ok and money_ok

    def _allocate(self, req: StageRequest, **kw) -> AllocationResult:
        nodes = self.host.nodes(include_home=self.include_home)
        return allocate(req, nodes, self.host.stage_costs(), **kw)

    def _partial_prep(self, req: StageRequest) -> AllocationResult:
        """Weaken the whole security gap, then fit as much grow as the pool allows."""
        nodes = self.host.nodes(include_home=self.include_home)
        costs = self.host.stage_costs()
        res = allocate(StageRequest(weaken1=req.weaken1), nodes, costs)
        if not res.ok:
            return res
        grow, shadow = fill_divisible(req.grow, nodes, costs["grow"], shadow=res.shadow)
        res.assignment["grow"] = grow
        res.shadow = shadow
        if res.threads("weaken1") + res.threads("grow") == 0:
            best = max((n.free for n in nodes), default=0.0)
            return AllocationResult(
                status=AllocStatus.FAILED,
                assignment={s: [] for s in STAGES},
                reason={"stage": "grow", "required": req.grow, "available": int(best // costs["grow"])},
            )
        self.log(
            f"partial prep: {res.threads('grow')}/{req.grow} grow threads over "
            f"{len(grow)} nodes"
        )
        return res

    # -------- PREPARING --------

    def prep(self) -> int:
        """Drive the target to baseline; returns the number of passes dispatched."""
        self.state = PREPARING
        retries = 0
        while True:
            if self._check_stop():
                return self.prep_passes

            t = self._target()
            if self.in_band(t):
                self.log(
                    f"prepared {t.name}: security {t.security:.3f}/{t.min_security} "
                    f"money {t.money:,.0f}/{t.max_money:,.0f}"
                )
                self.state = CYCLING
                return self.prep_passes

            try:
                req = prep_threads(self.host, t)
            except UnreachableEffect as e:
                self._fatal(f"prep of {t.name} is unreachable: {e}")

            res = self._allocate(req)
            if not res.ok:
                res = self._partial_prep(req)
            if not res.ok:
                retries += 1
                max_retries = int(self.cfg["max_prep_retries"])
                if retries > max_retries:
                    self._fatal(
                        f"unable to prepare {t.name} after {max_retries} retries: {res.describe()}",
                        res.reason,
                    )
                self.log(f"WARN: prep allocation failed ({res.describe()}), retry {retries}/{max_retries}")
                self.host.sleep(float(self.cfg["prep_backoff_ms"]))
                continue

            retries = 0
            try:
                duration, _ = self.dispatcher.dispatch(res.assignment, t)
            except LaunchFailed as e:
                self._fatal(f"prep launch failed: {e}", {"stage": e.stage, "node": e.node, "required": e.threads})
            except NegativeOffset as e:
                self._fatal(
                    f"prep of {t.name} cannot be timed: {e}",
                    {"stage": e.stage, "offsets": e.offsets, "durations": e.durations},
                )
            self.prep_passes += 1
            self.log(
                f"prep pass {self.prep_passes}: w1={res.threads('weaken1')} "
                f"g={res.threads('grow')} w2={res.threads('weaken2')}, next check in {duration:.0f}ms"
            )
            self.host.sleep(duration + float(self.cfg["prep_pad_ms"]))

    # -------- CYCLING --------

    def cycle_once(self) -> Dict[str, Any]:
        t = self._target()
        base, sat = saturation(t.weaken_time, self.batch_interval, self.max_batches)
        self.log(f"starting cycle with a saturation of {sat} (max {base})")

        if sat == 0:
            window = t.weaken_time + 2.0 * self.step_ms
            self.log(f"WARN: weaken time {t.weaken_time:.0f}ms is shorter than one batch interval")
            self.host.sleep(window)
            summary = {"saturation": 0, "base_saturation": base, "batches": 0, "degraded": 0, "duration_ms": window}
            self.passes.append(summary)
            return summary

        issued = 0
        degraded = 0
        run_time = 0.0
        for i in range(sat):
            t = self._target()
            try:
                req = batch_threads(self.host, t, self.percent, grow_safety=float(self.cfg["grow_safety"]))
            except UnreachableEffect as e:
                self._fatal(f"batch for {t.name} is unreachable: {e}")

            res = self._allocate(req, allow_split_hack=self.allow_split_hack)
            if not res.ok:
                self._fatal(f"unable to run batch step ({i} batches are active): {res.describe()}", res.reason)
            if res.degraded:
                degraded += 1
                self.log(f"WARN: hacking will occur over {len(res.assignment['hack'])} nodes")

            try:
                run_time, _ = self.dispatcher.dispatch(res.assignment, t)
            except LaunchFailed as e:
                self._fatal(
                    f"launch failed ({i} batches are active): {e}",
                    {"stage": e.stage, "node": e.node, "required": e.threads},
                )
            except NegativeOffset as e:
                self._fatal(
                    f"batch for {t.name} cannot be timed ({i} batches are active): {e}",
                    {"stage": e.stage, "offsets": e.offsets, "durations": e.durations},
                )
            issued += 1
            self.host.sleep(self.batch_interval)

        # wait out the rest of the window so the next pass sees a fresh W
        if base > sat:
            self.host.sleep((base - sat) * self.batch_interval)

        summary = {
            "saturation": sat,
            "base_saturation": base,
            "batches": issued,
            "degraded": degraded,
            "duration_ms": run_time,
        }
        self.passes.append(summary)
        self.log(f"completed cycle r={run_time:.0f}ms")
        return summary

    def run(self, max_passes: Optional[int] = None) -> Dict[str, Any]:
        self.prep()
        if self.state == TERMINATED:
            return self.summary()

        done = 0
        while max_passes is None or done < max_passes:
            if self._check_stop():
                break
            self.cycle_once()
            done += 1
        if self.state == CYCLING and max_passes is not None and done >= max_passes:
            self.state = TERMINATED
        return self.summary()

    def summary(self) -> Dict[str, Any]:
        return {
            "target": self.target_name,
            "state": self.state,
            "prep_passes": self.prep_passes,
            "passes": list(self.passes),
            "batches": sum(p["batches"] for p in self.passes),
        }
