#!/usr/bin/env python3
# -*- coding: utf-8 -*-
"""
planner/run_batch.py — prep a target and run saturated HWGW cycles (local or remote).

Usage
-----
# Local: drive the controller against the simulated host
python3 -m planner.run_batch n00dles -p 0.5 -s 4 --passes 3

# Let batches use the home node too, never split hack
python3 -m planner.run_batch joesguns -p 0.25 --include-home --no-split-hack

# Remote: ask a running batcher/api.py what the next batch would look like
python3 -m planner.run_batch n00dles --remote http://127.0.0.1:8080 --dry-run

Options
-------
TARGET                Target name (see sim/targets.yaml)
-p, --percent F       Fraction of max money each batch steals, in (0, 1] (default 0.5)
-s, --max-batches N   Cap batches per window; -1 means saturate (default -1)
--include-home        Allow placements on the home node
--no-split-hack       Fail instead of spreading hack over several nodes
--passes N            Cycle passes to run after prep (default 1)
--nodes DIR           Node YAML directory (local mode)
--targets PATH        Target YAML (local mode)
--remote URL          With --dry-run, POSTs to {URL}/plan (default $BATCHER_REMOTE)
--dry-run             Plan the next batch only; required with --remote (the API never launches)
--quiet               Only print the summary
--out PATH            Save the JSON summary here
"""

from __future__ import annotations

import argparse
import json
import os
import sys
from pathlib import Path
from typing import Any, Dict, Optional

import requests
from rich.console import Console
from rich.table import Table

from batcher.cycle import CycleAborted, CycleController
from sim.host import DEFAULT_NODES_DIR, DEFAULT_TARGETS_PATH, SimHost

console = Console()


def print_summary(summary: Dict[str, Any]):
    tbl = Table(title=f"Cycle Summary — {summary.get('target')}", show_lines=False)
    tbl.add_column("Pass", style="bold", justify="right")
    tbl.add_column("Saturation", justify="right")
    tbl.add_column("Batches", justify="right")
    tbl.add_column("Degraded", justify="right")
    tbl.add_column("Duration (ms)", justify="right")

    for i, p in enumerate(summary.get("passes") or [], start=1):
        tbl.add_row(
            str(i),
            f"{p.get('saturation')}/{p.get('base_saturation')}",
            str(p.get("batches")),
            str(p.get("degraded")),
            f"{p.get('duration_ms', 0):.0f}",
        )
    console.print(tbl)
    console.print(
        f"state=[b]{summary.get('state')}[/b]  prep passes={summary.get('prep_passes')}  "
        f"batches={summary.get('batches')}"
    )


def print_plan(plan: Dict[str, Any]):
    alloc = plan.get("allocation") or {}
    tbl = Table(title=f"Next Batch — {plan.get('target')}", show_lines=False)
    tbl.add_column("Stage", style="bold")
    tbl.add_column("Threads", justify="right")
    tbl.add_column("Offset (ms)", justify="right")
    tbl.add_column("Nodes", style="dim")

    offsets = plan.get("offsets_ms") or {}
    assignment = alloc.get("assignment") or {}
    for stage, threads in (plan.get("threads") or {}).items():
        nodes = ", ".join(f"{n}×{t}" for n, t in assignment.get(stage) or []) or "—"
        tbl.add_row(stage, str(threads), f"{offsets.get(stage, 0):.0f}", nodes)
    console.print(tbl)
    status = alloc.get("status")
    colour = "green" if status == "ok" else ("yellow" if status == "ok_degraded" else "red")
    console.print(f"allocation: [{colour}]{status}[/{colour}]  batch ram={plan.get('batch_ram')}")
    if alloc.get("reason"):
        console.print(f"[red]reason:[/red] {alloc['reason']}")


def plan_remote(
    base_url: str,
    target: str,
    percent: float,
    include_home: bool,
    allow_split_hack: bool,
) -> Dict[str, Any]:
    base = base_url.rstrip("/")
    payload = {
        "target": target,
        "percent": percent,
        "include_home": include_home,
        "allow_split_hack": allow_split_hack,
    }
    r = requests.post(f"{base}/plan", json=payload, timeout=60)
    j = r.json()
    if not j.get("ok"):
        raise RuntimeError(f"remote /plan error: {j}")
    return j["data"]


def run_local(
    target: str,
    percent: float,
    max_batches: Optional[int],
    include_home: bool,
    allow_split_hack: bool,
    passes: int,
    nodes_dir: str,
    targets_path: str,
    verbose: bool,
) -> Dict[str, Any]:
    host = SimHost.from_paths(nodes_dir, targets_path, verbose=False)
    if target not in host.target_names():
        raise KeyError(f"unknown target '{target}' (known: {', '.join(host.target_names()) or 'none'})")
    ctl = CycleController(
        host,
        target,
        percent=percent,
        max_batches=max_batches,
        include_home=include_home,
        allow_split_hack=allow_split_hack,
        verbose=verbose,
    )
    try:
        summary = ctl.run(max_passes=max(1, int(passes)))
    except CycleAborted as e:
        summary = ctl.summary()
        summary["error"] = str(e)
        summary["reason"] = e.reason
    summary["clock_ms"] = host.now()
    return summary


def usage_error(args) -> Optional[str]:
    if not (0.0 < args.percent <= 1.0):
        return f"--percent must be in (0, 1], got {args.percent}"
    # the API only plans, it never launches
    if args.remote and not args.dry_run:
        return "--remote only plans the next batch; add --dry-run"
    if args.dry_run and not args.remote:
        return "--dry-run needs --remote or BATCHER_REMOTE (local runs drive the simulated host)"
    return None


def main():
    ap = argparse.ArgumentParser(description="HWGW batcher — prep and cycle a target")
    ap.add_argument("target", help="Target name")
    ap.add_argument("-p", "--percent", type=float, default=0.5, help="Fraction of max money per batch")
    ap.add_argument("-s", "--max-batches", type=int, default=-1, help="Cap batches per window (-1 = saturate)")
    ap.add_argument("--include-home", action="store_true", help="Allow placements on the home node")
    ap.add_argument("--no-split-hack", action="store_true", help="Never spread hack over several nodes")
    ap.add_argument("--passes", type=int, default=1, help="Cycle passes after prep")
    ap.add_argument("--nodes", default=str(DEFAULT_NODES_DIR), help="Node YAML directory")
    ap.add_argument("--targets", default=str(DEFAULT_TARGETS_PATH), help="Target YAML")
    ap.add_argument("--remote", default=None, help="Base URL of batcher/api (with --dry-run)")
    ap.add_argument("--dry-run", action="store_true", help="Plan the next batch via --remote, launch nothing")
    ap.add_argument("--quiet", action="store_true", help="Only print the summary")
    ap.add_argument("--out", default=None, help="Write JSON summary to this path")
    args = ap.parse_args()
    if args.dry_run and not args.remote:
        args.remote = os.environ.get("BATCHER_REMOTE")

    err = usage_error(args)
    if err:
        print(f"error: {err}", file=sys.stderr)
        sys.exit(2)

    max_batches = None if args.max_batches < 0 else args.max_batches
    try:
        if args.dry_run:
            result = plan_remote(
                args.remote,
                args.target,
                args.percent,
                include_home=args.include_home,
                allow_split_hack=not args.no_split_hack,
            )
            print_plan(result)
        else:
            result = run_local(
                args.target,
                args.percent,
                max_batches,
                include_home=args.include_home,
                allow_split_hack=not args.no_split_hack,
                passes=args.passes,
                nodes_dir=args.nodes,
                targets_path=args.targets,
                verbose=not args.quiet,
            )
            print_summary(result)
    except Exception as e:
        print(f"error: batch run failed: {e}", file=sys.stderr)
        sys.exit(1)

    if args.out:
        outp = Path(args.out)
        try:
            outp.parent.mkdir(parents=True, exist_ok=True)
            outp.write_text(json.dumps(result, indent=2), encoding="utf-8")
            console.print(f"[green]Saved results →[/green] {outp}")
        except Exception as e:
            print(f"warn: failed to write --out file: {e}", file=sys.stderr)

    if result.get("error"):
        console.print(f"[red]aborted:[/red] {result['error']}")
        sys.exit(1)


if __name__ == "__main__":
    main()
