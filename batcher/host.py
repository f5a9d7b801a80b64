#!/usr/bin/env python3
# -*- coding: utf-8 -*-
"""
batcher/host.py — capabilities the batcher consumes from its host environment.

The core never simulates a target or launches processes itself. Everything
that touches the outside world goes through a Host:

- effect functions      weaken_effect / hack_security / grow_security
- inverse planning      hack_threads_for / grow_threads_for
- live queries          target(name) / nodes(include_home) / stage_costs()
- execution             stage_payload / launch / sleep / now

sim/host.py provides an in-memory implementation for dry runs and tests.
"""

from __future__ import annotations

from abc import ABC, abstractmethod
from typing import Any, Dict, List, Optional

from .state import Node, Target


DEFAULT_STAGE_COSTS = {"hack": 1.70, "grow": 1.75, "weaken": 1.75}


class Host(ABC):
    # ---------- effects (monotone non-decreasing in threads) ----------

    @abstractmethod
    def weaken_effect(self, threads: float) -> float:
        """Security removed by `threads` weaken threads."""

    @abstractmethod
    def hack_security(self, threads: float) -> float:
        """Security added by `threads` hack threads."""

    @abstractmethod
    def grow_security(self, threads: float) -> float:
        """Security added by `threads` grow threads."""

    # ---------- inverse planning ----------

    @abstractmethod
    def hack_threads_for(self, target: Target, amount: float) -> float:
        """Real-valued hack threads needed to steal `amount` from `target`."""

    @abstractmethod
    def grow_threads_for(self, target: Target, multiplier: float) -> float:
        """Real-valued grow threads needed to multiply the target's money."""

    def hack_chance(self, target: Target) -> float:
        return 1.0

    # ---------- live queries ----------

    @abstractmethod
    def target(self, name: str, baseline: bool = False) -> Target:
        """Fresh snapshot; baseline=True reports it at min security / max money."""

    def target_names(self) -> List[str]:
        return []

    @abstractmethod
    def nodes(self, include_home: bool = False) -> List[Node]:
        """Fresh capacity view of every eligible node."""

    def stage_costs(self) -> Dict[str, float]:
        return dict(DEFAULT_STAGE_COSTS)

    # ---------- execution ----------

    def stage_payload(self, node: str, payload: str) -> bool:
        """Make `payload` runnable on `node` (copy the script over)."""
        return True

    @abstractmethod
    def launch(
        self, node: str, payload: str, threads: int, target: str, offset_ms: float
    ) -> Optional[Any]:
        """Start a task; returns a handle, or None when no process was created."""

    @abstractmethod
    def sleep(self, ms: float) -> None:
        """Cooperative suspension."""

    def now(self) -> float:
        return 0.0
