#!/usr/bin/env python3
"""
In-memory host for the HWGW batcher.

- Loads nodes (nodes/*.yaml) into a NodePool and targets from sim/targets.yaml.
- Runs on a virtual millisecond clock: sleep(ms) advances it and lands every
  task whose finish time has passed, in finish order.
- A launched task holds its ram on the node from launch until it finishes
  (including its start delay), like a real process sleeping before it acts.
- Stage effects use the usual per-thread constants:
    hack    steals hack_percent * (100 - sec) / 100 of money per thread, +0.002 sec/thread
    grow    money *= (1 + growth_rate * (100 - sec) / 100) ** threads,  +0.004 sec/thread
    weaken  -0.05 sec/thread, floored at min security
- Durations: hack = base_hack_ms * (1 + (sec - min_sec) / min_sec),
  grow = 3.2 * hack, weaken = 4 * hack.

Usage:
  host = SimHost.from_paths("nodes", "sim/targets.yaml")
  python3 -m sim.host --nodes nodes --targets sim/targets.yaml   # print a snapshot
"""

from __future__ import annotations

import argparse
import heapq
import json
import math
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Dict, List, Optional

from batcher.host import DEFAULT_STAGE_COSTS, Host
from batcher.state import Node, NodePool, Target, clamp, load_targets, safe_float

ROOT = Path(__file__).resolve().parent.parent
DEFAULT_NODES_DIR = ROOT / "nodes"
DEFAULT_TARGETS_PATH = ROOT / "sim" / "targets.yaml"

DEFAULTS = {
    "hack_security_per_thread": 0.002,
    "grow_security_per_thread": 0.004,
    "weaken_per_thread": 0.05,
    "grow_time_mult": 3.2,
    "weaken_time_mult": 4.0,
    "max_security": 100.0,
}

PAYLOAD_KIND = {"hack.js": "hack", "grow.js": "grow", "weak.js": "weaken"}


@dataclass(order=True)
class SimTask:
    finish_ms: float
    pid: int
    kind: str = field(compare=False)
    node: str = field(compare=False)
    target: str = field(compare=False)
    threads: int = field(compare=False)
    start_ms: float = field(compare=False)
    reservation_id: str = field(compare=False)


def target_from_yaml(obj: Dict[str, Any]) -> Dict[str, Any]:
    min_sec = max(1.0, safe_float(obj.get("min_security"), 1.0))
    max_money = safe_float(obj.get("max_money"), 0.0)
    return {
        "name": str(obj.get("name")),
        "min_security": min_sec,
        "security": max(min_sec, safe_float(obj.get("security"), min_sec)),
        "max_money": max_money,
        "money": clamp(safe_float(obj.get("money"), max_money), 0.0, max_money),
        "base_hack_ms": safe_float(obj.get("base_hack_ms"), 1000.0),
        "hack_percent": safe_float(obj.get("hack_percent"), 0.002),
        "growth_rate": safe_float(obj.get("growth_rate"), 0.03),
        "hack_chance": clamp(safe_float(obj.get("hack_chance"), 1.0), 0.0, 1.0),
    }


class SimHost(Host):
    def __init__(
        self,
        pool: NodePool,
        targets: Dict[str, Dict[str, Any]],
        stage_costs: Optional[Dict[str, float]] = None,
        verbose: bool = False,
        **cfg,
    ):
        self.pool = pool
        self.targets = {name: target_from_yaml({"name": name, **t}) for name, t in targets.items()}
        self.costs = {**DEFAULT_STAGE_COSTS, **(stage_costs or {})}
        self.verbose = verbose
        self.cfg = {**DEFAULTS, **cfg}

        self.clock_ms: float = 0.0
        self._tasks: List[SimTask] = []
        self._pid = 1
        self.staged: Dict[str, set] = {}
        self.launched: List[SimTask] = []
        self.completed: List[SimTask] = []

    @classmethod
    def from_paths(
        cls,
        nodes_dir: str | Path = DEFAULT_NODES_DIR,
        targets_path: str | Path = DEFAULT_TARGETS_PATH,
        **kw,
    ) -> "SimHost":
        return cls(NodePool(nodes_dir=nodes_dir), load_targets(targets_path), **kw)

    def log(self, msg: str):
        if self.verbose:
            print(f"[sim] t={self.clock_ms:.0f} {msg}")

    # ---------- target model ----------

    def _t(self, name: str) -> Dict[str, Any]:
        t = self.targets.get(name)
        if t is None:
            raise KeyError(f"unknown target '{name}'")
        return t

    def _hack_time(self, t: Dict[str, Any], security: float) -> float:
        return t["base_hack_ms"] * (1.0 + (security - t["min_security"]) / t["min_security"])

    def _hack_fraction(self, security: float, hack_percent: float) -> float:
        return max(0.0, hack_percent * (100.0 - security) / 100.0)

    def _growth(self, security: float, growth_rate: float) -> float:
        return max(0.0, growth_rate * (100.0 - security) / 100.0)

    def target(self, name: str, baseline: bool = False) -> Target:
        t = self._t(name)
        sec = t["min_security"] if baseline else t["security"]
        money = t["max_money"] if baseline else t["money"]
        hack = self._hack_time(t, sec)
        return Target(
            name=name,
            security=sec,
            min_security=t["min_security"],
            money=money,
            max_money=t["max_money"],
            hack_time=hack,
            grow_time=hack * self.cfg["grow_time_mult"],
            weaken_time=hack * self.cfg["weaken_time_mult"],
        )

    def target_names(self) -> List[str]:
        return sorted(self.targets)

    def set_target(self, name: str, **changes) -> None:
        t = self._t(name)
        for k, v in changes.items():
            if k in t:
                t[k] = v

    # ---------- effects ----------

    def weaken_effect(self, threads: float) -> float:
        return max(0.0, threads) * self.cfg["weaken_per_thread"]

    def hack_security(self, threads: float) -> float:
        return max(0.0, threads) * self.cfg["hack_security_per_thread"]

    def grow_security(self, threads: float) -> float:
        return max(0.0, threads) * self.cfg["grow_security_per_thread"]

    def hack_threads_for(self, target: Target, amount: float) -> float:
        pct = self._hack_fraction(target.security, self._t(target.name)["hack_percent"])
        if amount <= 0 or pct <= 0 or target.money <= 0:
            return 0.0
        return amount / (target.money * pct)

    def grow_threads_for(self, target: Target, multiplier: float) -> float:
        if multiplier <= 1.0:
            return 0.0
        rate = self._growth(target.security, self._t(target.name)["growth_rate"])
        if rate <= 0:
            raise ValueError(f"{target.name} cannot grow at security {target.security}")
        return math.log(multiplier) / math.log1p(rate)

    def hack_chance(self, target: Target) -> float:
        return self._t(target.name)["hack_chance"]

    # ---------- nodes ----------

    def nodes(self, include_home: bool = False) -> List[Node]:
        return self.pool.nodes(include_home=include_home)

    def stage_costs(self) -> Dict[str, float]:
        return dict(self.costs)

    # ---------- execution ----------

    def stage_payload(self, node: str, payload: str) -> bool:
        if self.pool.get_node(node) is None or payload not in PAYLOAD_KIND:
            return False
        self.staged.setdefault(node, set()).add(payload)
        return True

    def launch(self, node: str, payload: str, threads: int, target: str, offset_ms: float) -> Optional[int]:
        kind = PAYLOAD_KIND.get(payload)
        if kind is None or payload not in self.staged.get(node, set()) or threads <= 0:
            return None
        t = self._t(target)
        rid = self.pool.reserve({"node": node, "ram": threads * self.costs[kind]})
        if rid is None:
            self.log(f"WARN: no room for {threads} {kind} threads on {node}")
            return None

        hack = self._hack_time(t, t["security"])
        duration = {
            "hack": hack,
            "grow": hack * self.cfg["grow_time_mult"],
            "weaken": hack * self.cfg["weaken_time_mult"],
        }[kind]
        task = SimTask(
            finish_ms=self.clock_ms + max(0.0, offset_ms) + duration,
            pid=self._pid,
            kind=kind,
            node=node,
            target=target,
            threads=threads,
            start_ms=self.clock_ms,
            reservation_id=rid,
        )
        self._pid += 1
        heapq.heappush(self._tasks, task)
        self.launched.append(task)
        return task.pid

    def _apply(self, task: SimTask) -> None:
        t = self._t(task.target)
        if task.kind == "hack":
            frac = min(1.0, self._hack_fraction(t["security"], t["hack_percent"]) * task.threads)
            t["money"] = max(0.0, t["money"] - t["money"] * frac)
            t["security"] = min(self.cfg["max_security"], t["security"] + self.hack_security(task.threads))
        elif task.kind == "grow":
            mult = (1.0 + self._growth(t["security"], t["growth_rate"])) ** task.threads
            t["money"] = min(t["max_money"], max(t["money"], 1.0) * mult)
            t["security"] = min(self.cfg["max_security"], t["security"] + self.grow_security(task.threads))
        else:
            t["security"] = max(t["min_security"], t["security"] - self.weaken_effect(task.threads))
        self.log(f"{task.kind} x{task.threads} on {task.node} landed: sec={t['security']:.3f} money={t['money']:.0f}")

    def sleep(self, ms: float) -> None:
        until = self.clock_ms + max(0.0, float(ms))
        while self._tasks and self._tasks[0].finish_ms <= until:
            task = heapq.heappop(self._tasks)
            self.clock_ms = max(self.clock_ms, task.finish_ms)
            self._apply(task)
            self.pool.release(task.node, task.reservation_id)
            self.completed.append(task)
        self.clock_ms = until

    def now(self) -> float:
        return self.clock_ms

    @property
    def running(self) -> List[SimTask]:
        return sorted(self._tasks)

    def snapshot(self) -> Dict[str, Any]:
        snap = self.pool.snapshot()
        snap["clock_ms"] = self.clock_ms
        snap["targets"] = [self.target(n).as_dict() for n in self.target_names()]
        snap["running"] = len(self._tasks)
        return snap


def main():
    ap = argparse.ArgumentParser(description="HWGW batcher — simulated host snapshot")
    ap.add_argument("--nodes", default=str(DEFAULT_NODES_DIR), help="Directory of node YAML files")
    ap.add_argument("--targets", default=str(DEFAULT_TARGETS_PATH), help="Targets YAML")
    args = ap.parse_args()
    host = SimHost.from_paths(args.nodes, args.targets)
    print(json.dumps(host.snapshot(), indent=2))


if __name__ == "__main__":
    main()
