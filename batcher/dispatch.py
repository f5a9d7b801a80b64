#!/usr/bin/env python3
# -*- coding: utf-8 -*-
"""
batcher/dispatch.py — launch offsets and task launch for one batch.

Every stage is started with an extra delay so the four stages finish STEP
apart, in order, inside one weaken window W:

    hack     offset W - hack_time - STEP   finishes at W - STEP
    weaken1  offset 0                      finishes at W
    grow     offset W - grow_time + STEP   finishes at W + STEP
    weaken2  offset 2 * STEP               finishes at W + 2 * STEP

The batch is reported as lasting W + 2 * STEP.
"""

from __future__ import annotations

from typing import Any, Dict, Iterable, List, Tuple

from .state import STAGE_KIND, STAGES, Target

BATCH_STEP = 75.0  # ms between stage completions

PAYLOADS = {"hack": "hack.js", "grow": "grow.js", "weaken": "weak.js"}


class LaunchFailed(RuntimeError):
    """The host created no process for a placement that passed allocation."""

    def __init__(self, stage: str, node: str, threads: int):
        self.stage = stage
        self.node = node
        self.threads = threads
        super().__init__(f"unable to launch {threads} {stage} threads on {node}")


class NegativeOffset(ValueError):
    """A stage would have to start before the batch does (host durations out of order)."""

    def __init__(self, target: Target, offsets: Dict[str, float]):
        self.offsets = offsets
        self.stage = next(iter(offsets))
        self.durations = {
            "hack": target.hack_time,
            "grow": target.grow_time,
            "weaken": target.weaken_time,
        }
        super().__init__(
            f"negative launch offsets {offsets} for {target.name}: "
            f"weaken={target.weaken_time} grow={target.grow_time} hack={target.hack_time}"
        )


def stage_offsets(
    target: Target,
    step_ms: float = BATCH_STEP,
    stages: Iterable[str] = STAGES,
) -> Dict[str, float]:
    """Launch delay per stage; only `stages` (the ones being launched) must be non-negative."""
    w = target.weaken_time
    offsets = {
        "hack": w - target.hack_time - step_ms,
        "weaken1": 0.0,
        "grow": w - target.grow_time + step_ms,
        "weaken2": 2.0 * step_ms,
    }
    bad = {s: offsets[s] for s in stages if offsets[s] < 0}
    if bad:
        raise NegativeOffset(target, bad)
    return offsets


def finish_times(
    target: Target,
    step_ms: float = BATCH_STEP,
    stages: Iterable[str] = STAGES,
) -> Dict[str, float]:
    stages = list(stages)
    offsets = stage_offsets(target, step_ms, stages)
    return {s: offsets[s] + target.duration(STAGE_KIND[s]) for s in stages}


def batch_duration(target: Target, step_ms: float = BATCH_STEP) -> float:
    return target.weaken_time + 2.0 * step_ms


class Dispatcher:
    def __init__(self, host, step_ms: float = BATCH_STEP, verbose: bool = True):
        self.host = host
        self.step_ms = float(step_ms)
        self.verbose = verbose

    def log(self, msg: str):
        if self.verbose:
            print(f"[dispatch] {msg}")

    def dispatch(self, assignment: Dict[str, List[Tuple[str, int]]], target: Target) -> Tuple[float, List[Any]]:
        """Launch every (stage, node, threads) placement; returns (duration_ms, handles)."""
        used = [s for s in STAGES if any(t > 0 for _, t in assignment.get(s) or [])]
        offsets = stage_offsets(target, self.step_ms, used)
        handles: List[Any] = []
        for stage in STAGES:
            payload = PAYLOADS[STAGE_KIND[stage]]
            for node, threads in assignment.get(stage) or []:
                if threads <= 0:
                    continue
                if not self.host.stage_payload(node, payload):
                    raise LaunchFailed(stage, node, threads)
                handle = self.host.launch(node, payload, threads, target.name, offsets[stage])
                if handle is None:
                    raise LaunchFailed(stage, node, threads)
                handles.append(handle)
        duration = batch_duration(target, self.step_ms)
        self.log(f"{target.name}: {len(handles)} tasks, done in {duration:.0f}ms")
        return duration, handles
