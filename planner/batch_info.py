#!/usr/bin/env python3
# -*- coding: utf-8 -*-
"""
planner/batch_info.py — which targets can the pool cycle, and how well?

Usage
-----
python3 -m planner.batch_info -p 0.5
python3 -m planner.batch_info -p 0.25 -s 8 --sort ram --all --limit 5
python3 -m planner.batch_info --remote http://127.0.0.1:8080

Columns follow batcher/feasibility.py: validity is -1 infeasible,
0 feasible, 1 degraded (hack split), 2 comfortably feasible.
"""

from __future__ import annotations

import argparse
import os
import sys
from typing import Any, Dict, List, Optional

import requests
from rich.console import Console
from rich.table import Table

from batcher.feasibility import capacity_histogram, feasibility_report
from sim.host import DEFAULT_NODES_DIR, DEFAULT_TARGETS_PATH, SimHost

console = Console()

VALIDITY = {
    -1: "[red]no[/red]",
    0: "[green]yes[/green]",
    1: "[yellow]split[/yellow]",
    2: "[green]easy[/green]",
}


def print_report(rows: List[Dict[str, Any]], total_ram: float):
    tbl = Table(title=f"Batch Feasibility (pool ram {total_ram:,.1f})")
    tbl.add_column("Target", style="bold")
    tbl.add_column("Prep (s)", justify="right")
    tbl.add_column("Cycle (s)", justify="right")
    tbl.add_column("Sat", justify="right")
    tbl.add_column("Batch ram", justify="right")
    tbl.add_column("Cycle ram", justify="right")
    tbl.add_column("Largest stage", justify="right")
    tbl.add_column("$/s", justify="right")
    tbl.add_column("$/ram", justify="right")
    tbl.add_column("Valid", justify="center")

    for r in rows:
        if r.get("error"):
            tbl.add_row(r["target"], "—", "—", "—", "—", "—", "—", "—", "—", VALIDITY[-1])
            continue
        tbl.add_row(
            r["target"],
            f"{r['prep_ms'] / 1000:.1f}",
            f"{r['cycle_ms'] / 1000:.1f}",
            f"{r['saturation']}/{r['max_saturation']}",
            f"{r['batch_ram']:,.1f}",
            f"{r['cycle_ram']:,.1f}",
            f"{r['max_contiguous_ram']:,.1f}",
            f"{r['profit_per_sec']:,.0f}",
            f"{r['profit_per_ram']:,.0f}",
            VALIDITY.get(r["valid"], str(r["valid"])),
        )
    console.print(tbl)


def print_histogram(hist):
    tbl = Table(title="Node capacity")
    tbl.add_column("Usable ram", justify="right")
    tbl.add_column("Nodes", justify="right")
    for ram, count in hist:
        tbl.add_row(f"{ram:,.1f}", str(count))
    console.print(tbl)


def report_remote(base_url: str, payload: Dict[str, Any]) -> Dict[str, Any]:
    r = requests.post(f"{base_url.rstrip('/')}/feasibility", json=payload, timeout=60)
    j = r.json()
    if not j.get("ok"):
        raise RuntimeError(f"remote /feasibility error: {j}")
    return j["data"]


def main():
    ap = argparse.ArgumentParser(description="HWGW batcher — per-target cycle feasibility")
    ap.add_argument("-p", "--percent", type=float, default=0.5, help="Fraction of max money per batch")
    ap.add_argument("-s", "--max-batches", type=int, default=-1, help="Cap batches per window (-1 = saturate)")
    ap.add_argument("--include-home", action="store_true", help="Count the home node")
    ap.add_argument("--sort", default="sec", choices=["sec", "ram"], help="Rank by profit per second or per ram")
    ap.add_argument("--all", action="store_true", help="Show infeasible targets too")
    ap.add_argument("--limit", type=int, default=-1, help="Show at most N rows")
    ap.add_argument("--nodes", default=str(DEFAULT_NODES_DIR), help="Node YAML directory")
    ap.add_argument("--targets", default=str(DEFAULT_TARGETS_PATH), help="Target YAML")
    ap.add_argument("--remote", default=os.environ.get("BATCHER_REMOTE"), help="Base URL of batcher/api")
    args = ap.parse_args()

    if not (0.0 < args.percent <= 1.0):
        print(f"error: --percent must be in (0, 1], got {args.percent}", file=sys.stderr)
        sys.exit(2)

    max_batches: Optional[int] = None if args.max_batches < 0 else args.max_batches
    try:
        if args.remote:
            data = report_remote(args.remote, {
                "percent": args.percent,
                "include_home": args.include_home,
                "max_batches": max_batches,
                "sort": args.sort,
                "include_invalid": args.all,
                "limit": args.limit,
            })
            rows, total = data["rows"], data["total_ram"]
            hist = None
        else:
            host = SimHost.from_paths(args.nodes, args.targets)
            rows = feasibility_report(
                host,
                args.percent,
                include_home=args.include_home,
                max_batches=max_batches,
                sort_by=args.sort,
                include_invalid=args.all,
                limit=args.limit,
            )
            nodes = host.nodes(include_home=args.include_home)
            total = sum(n.usable for n in nodes)
            hist = capacity_histogram(nodes)
    except Exception as e:
        print(f"error: feasibility report failed: {e}", file=sys.stderr)
        sys.exit(1)

    if hist:
        print_histogram(hist)
    if not rows:
        console.print("[yellow]no feasible targets[/yellow] (use --all to list every target)")
        return
    print_report(rows, total)


if __name__ == "__main__":
    main()
