#!/usr/bin/env python3
# -*- coding: utf-8 -*-
"""
batcher/state.py — Node pool and target snapshots for the HWGW batcher.

Responsibilities
---------------
- Load per-node descriptors:          ./nodes/*.yaml
- Load target descriptors:           ./sim/targets.yaml
- Maintain a thread-safe capacity view: max ram, used ram, reservation floor
- Offer a compact API for the planner/allocator/API:
    • nodes(include_home)        → List[Node] (copies, safe to mutate)
    • reserve(req)               → reservation_id or None
    • release(node, res_id)      → bool
    • snapshot()                 → dict (nodes, totals, ts)

Design notes
------------
- A node's reservation floor is *additive*: free = max_ram - used_ram - reserved.
  The same rule is applied to every node class, including "home".
- Only non-stdlib dep is PyYAML.
- Target snapshots are immutable; the host produces a fresh one per query.

Node YAML
---------
name: pserv-01
class: worker          # "home" marks the reserved, opt-in class
memory:
  ram_gb: 64
  reserved_gb: 0
"""

from __future__ import annotations

import copy
import threading
import time
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Dict, Iterable, List, Optional

import yaml


HOME_CLASS = "home"

# stage name -> capacity class used for per-thread cost lookups
STAGES = ("hack", "weaken1", "grow", "weaken2")
STAGE_KIND = {"hack": "hack", "weaken1": "weaken", "grow": "grow", "weaken2": "weaken"}


# ----------------------------- helpers -----------------------------

def safe_float(x: Any, default: float = 0.0) -> float:
    try:
        return float(x)
    except Exception:
        return default


def safe_int(x: Any, default: int = 0) -> int:
    try:
        return int(x)
    except Exception:
        return default


def utc_ms() -> int:
    return int(time.time() * 1000)


def clamp(x: float, lo: float, hi: float) -> float:
    return max(lo, min(hi, x))


# ----------------------------- data classes -----------------------------

@dataclass
class Node:
    """A compute unit with finite memory-like capacity."""
    name: str
    max_ram: float
    used_ram: float = 0.0
    reserved: float = 0.0
    klass: str = "worker"
    reservations: Dict[str, float] = field(default_factory=dict)  # res_id -> ram

    @property
    def usable(self) -> float:
        """Capacity that can ever be allocated (total minus reservation floor)."""
        return max(0.0, self.max_ram - self.reserved)

    @property
    def free(self) -> float:
        return max(0.0, self.max_ram - self.used_ram - self.reserved)

    @property
    def is_home(self) -> bool:
        return self.klass == HOME_CLASS

    def as_dict(self) -> Dict[str, Any]:
        return {
            "name": self.name,
            "class": self.klass,
            "max_ram": round(self.max_ram, 4),
            "used_ram": round(self.used_ram, 4),
            "reserved": round(self.reserved, 4),
            "free": round(self.free, 4),
            "reservations": len(self.reservations),
        }


@dataclass(frozen=True)
class Target:
    """Read-only snapshot of a target's state and stage durations (ms)."""
    name: str
    security: float
    min_security: float
    money: float
    max_money: float
    hack_time: float
    grow_time: float
    weaken_time: float

    @property
    def security_gap(self) -> float:
        return max(0.0, self.security - self.min_security)

    @property
    def money_gap(self) -> float:
        return max(0.0, self.max_money - self.money)

    def duration(self, kind: str) -> float:
        if kind == "hack":
            return self.hack_time
        if kind == "grow":
            return self.grow_time
        if kind == "weaken":
            return self.weaken_time
        raise ValueError(f"unknown stage kind '{kind}'")

    def as_dict(self) -> Dict[str, Any]:
        return {
            "name": self.name,
            "security": round(self.security, 4),
            "min_security": self.min_security,
            "money": round(self.money, 2),
            "max_money": self.max_money,
            "hack_time": round(self.hack_time, 3),
            "grow_time": round(self.grow_time, 3),
            "weaken_time": round(self.weaken_time, 3),
        }


@dataclass(frozen=True)
class StageRequest:
    """Thread count per stage of one batch; zero means the stage is skipped."""
    hack: int = 0
    weaken1: int = 0
    grow: int = 0
    weaken2: int = 0

    def __post_init__(self):
        for name in STAGES:
            v = getattr(self, name)
            if not isinstance(v, int) or isinstance(v, bool) or v < 0:
                raise ValueError(f"{name} threads must be a non-negative int, got {v!r}")

    def get(self, stage: str) -> int:
        return getattr(self, stage)

    def as_dict(self) -> Dict[str, int]:
        return {s: getattr(self, s) for s in STAGES}

    @property
    def total_threads(self) -> int:
        return sum(self.as_dict().values())


# ----------------------------- target descriptors -----------------------------

def load_targets(path: str | Path) -> Dict[str, Dict[str, Any]]:
    """Load sim/targets.yaml → {name: descriptor}. Missing file → {}."""
    p = Path(path)
    if not p.exists():
        return {}
    try:
        raw = yaml.safe_load(p.read_text(encoding="utf-8")) or {}
    except Exception as e:
        print(f"[state] WARN: failed to load targets {p}: {e}")
        return {}
    items = raw.get("targets") if isinstance(raw, dict) else raw
    out: Dict[str, Dict[str, Any]] = {}
    for t in items or []:
        name = (t or {}).get("name")
        if not name:
            continue
        out[name] = dict(t)
    return out


# ----------------------------- Node pool -----------------------------

class NodePool:
    def __init__(
        self,
        nodes_dir: Optional[str | Path] = "nodes",
        nodes: Optional[Iterable[Node]] = None,
    ):
        self.nodes_dir = Path(nodes_dir) if nodes_dir else None
        self._lock = threading.RLock()
        self.nodes_by_name: Dict[str, Node] = {}
        self._res_seq: int = 1

        if nodes is not None:
            for n in nodes:
                self.nodes_by_name[n.name] = n
        elif self.nodes_dir is not None:
            self._load_nodes_locked()

    # -------- loads --------

    def _load_nodes_locked(self):
        """Load ./nodes/*.yaml into nodes_by_name."""
        with self._lock:
            nodes: Dict[str, Node] = {}
            for f in sorted(self.nodes_dir.glob("*.yaml")):
                try:
                    data = yaml.safe_load(f.read_text(encoding="utf-8")) or {}
                    node = node_from_yaml(data)
                    if node is None:
                        continue
                    nodes[node.name] = node
                except Exception as e:
                    print(f"[state] WARN: failed to load node {f.name}: {e}")
            self.nodes_by_name = nodes

    def add(self, node: Node) -> None:
        with self._lock:
            self.nodes_by_name[node.name] = node

    # -------- public API (read) --------

    def get_node(self, name: str) -> Optional[Node]:
        with self._lock:
            return self.nodes_by_name.get(name)

    def nodes(self, include_home: bool = False) -> List[Node]:
        """Fresh copies of every eligible node with ram > 0."""
        with self._lock:
            out = []
            for n in self.nodes_by_name.values():
                if n.max_ram <= 0:
                    continue
                if n.is_home and not include_home:
                    continue
                out.append(copy.deepcopy(n))
            return out

    def total_capacity(self, include_home: bool = False) -> float:
        return sum(n.usable for n in self.nodes(include_home))

    def snapshot(self) -> Dict[str, Any]:
        with self._lock:
            nodes = [n.as_dict() for n in self.nodes_by_name.values()]
            return {
                "ts": utc_ms(),
                "nodes": nodes,
                "total_ram": round(sum(n["max_ram"] for n in nodes), 4),
                "free_ram": round(sum(n["free"] for n in nodes), 4),
            }

    # -------- reservations --------

    def reserve(self, req: Dict[str, Any]) -> Optional[str]:
        """
        Reserve ram on a specific node.

        req example: {"node": "pserv-01", "ram": 17.5}
        """
        with self._lock:
            node_name = req.get("node")
            if not node_name:
                return None
            n = self.nodes_by_name.get(node_name)
            if not n:
                return None
            need = safe_float(req.get("ram"), 0.0)
            if need <= 0 or n.free + 1e-9 < need:
                return None

            n.used_ram += need
            rid = f"res-{self._res_seq:07d}"
            self._res_seq += 1
            n.reservations[rid] = need
            return rid

    def release(self, node_name: str, reservation_id: str) -> bool:
        with self._lock:
            n = self.nodes_by_name.get(node_name)
            if not n:
                return False
            ram = n.reservations.pop(reservation_id, None)
            if ram is None:
                return False
            n.used_ram = max(0.0, n.used_ram - ram)
            return True


def node_from_yaml(data: Dict[str, Any]) -> Optional[Node]:
    name = data.get("name")
    if not name:
        return None
    mem = data.get("memory", {}) or {}
    return Node(
        name=str(name),
        max_ram=safe_float(mem.get("ram_gb"), 0.0),
        used_ram=safe_float(mem.get("used_gb"), 0.0),
        reserved=safe_float(mem.get("reserved_gb"), 0.0),
        klass=str(data.get("class") or "worker"),
    )
