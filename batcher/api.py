#!/usr/bin/env python3
# -*- coding: utf-8 -*-
"""
batcher/api.py — Flask API for HWGW batch planning (dry runs only)

Endpoints
---------
GET  /health
GET  /snapshot
POST /plan               { target, percent?, include_home?, allow_split_hack?, prep? }
POST /feasibility        { percent?, include_home?, max_batches?, sort?, include_invalid?, limit? }

Nothing here launches tasks: /plan answers "what would the next batch look
like", /feasibility chains allocations through a shadow map.

Run
---
export FLASK_APP=batcher.api:app
flask run -h 0.0.0.0 -p 8080

or:

python3 -m batcher.api --host 0.0.0.0 --port 8080
"""

from __future__ import annotations

import argparse
import os
import time
from collections import deque
from typing import Any, Deque, Dict

from flask import Flask, jsonify, request

from sim.host import DEFAULT_NODES_DIR, DEFAULT_TARGETS_PATH, SimHost

from .dispatch import BATCH_STEP, NegativeOffset, batch_duration, finish_times, stage_offsets
from .feasibility import feasibility_report
from .planner import batch_ram, batch_threads, prep_threads
from .policy.allocator import allocate
from .solver import UnreachableEffect
from .state import STAGES, safe_float, safe_int

# -----------------------------------
# App singletons
# -----------------------------------

HOST = SimHost.from_paths(
    os.environ.get("BATCHER_NODES_DIR", str(DEFAULT_NODES_DIR)),
    os.environ.get("BATCHER_TARGETS", str(DEFAULT_TARGETS_PATH)),
)

RECENT_PLANS: Deque[Dict[str, Any]] = deque(maxlen=200)

app = Flask(__name__)


# -----------------------------------
# Helpers
# -----------------------------------


def _ok(data: Any, status: int = 200):
    return jsonify({"ok": True, "data": data}), status


def _err(msg: str, status: int = 400, **extra):
    return jsonify({"ok": False, "error": msg, **extra}), status


def _percent(body: Dict[str, Any]) -> float:
    p = safe_float(body.get("percent"), 0.5)
    if not (0.0 < p <= 1.0):
        raise ValueError(f"percent must be in (0, 1], got {p}")
    return p


# -----------------------------------
# Routes
# -----------------------------------


@app.get("/health")
def health():
    return _ok({"ts": int(time.time() * 1000)})


@app.get("/snapshot")
def snapshot():
    return _ok(HOST.snapshot())


@app.post("/plan")
def plan():
    """
    Plan the next batch (or prep pass) for a target without launching it.
    Body:
    {
      "target": "n00dles",
      "percent": 0.5,
      "include_home": false,
      "allow_split_hack": true,
      "prep": false
    }
    """
    if not request.is_json:
        return _err("expected JSON body")
    body = request.get_json() or {}
    name = body.get("target")
    if not name:
        return _err("missing 'target'")
    if name not in HOST.target_names():
        return _err(f"unknown target '{name}'", status=404)

    try:
        percent = _percent(body)
    except ValueError as e:
        return _err(str(e))

    include_home = bool(body.get("include_home", False))
    allow_split = bool(body.get("allow_split_hack", True))
    is_prep = bool(body.get("prep", False))

    target = HOST.target(name)
    try:
        req = prep_threads(HOST, target) if is_prep else batch_threads(HOST, target, percent)
    except UnreachableEffect as e:
        return _err(str(e), status=422)

    costs = HOST.stage_costs()
    res = allocate(req, HOST.nodes(include_home=include_home), costs, allow_split_hack=allow_split)
    used = [s for s in STAGES if req.get(s) > 0]
    try:
        offsets = stage_offsets(target, BATCH_STEP, used)
        finish = finish_times(target, BATCH_STEP, used)
    except NegativeOffset as e:
        return _err(str(e), status=422, stage=e.stage, durations=e.durations)

    resp = {
        "target": name,
        "percent": percent,
        "prep": is_prep,
        "threads": req.as_dict(),
        "batch_ram": round(batch_ram(req, costs), 4),
        "allocation": res.as_dict(),
        "offsets_ms": {s: offsets[s] for s in used},
        "finish_ms": finish,
        "duration_ms": batch_duration(target, BATCH_STEP),
        "infeasible": not res.ok,
        "ts": int(time.time() * 1000),
    }
    RECENT_PLANS.appendleft(resp)
    return _ok(resp)


@app.get("/plans")
def plans():
    return _ok(list(RECENT_PLANS))


@app.post("/feasibility")
def feasibility():
    """
    Rank every target by how well a saturated cycle fits the pool.
    Body: { percent?, include_home?, max_batches?, sort?: "sec"|"ram", include_invalid?, limit? }
    """
    if not request.is_json:
        return _err("expected JSON body")
    body = request.get_json() or {}
    try:
        percent = _percent(body)
    except ValueError as e:
        return _err(str(e))

    include_home = bool(body.get("include_home", False))
    max_batches = body.get("max_batches")
    rows = feasibility_report(
        HOST,
        percent,
        include_home=include_home,
        max_batches=None if max_batches is None else safe_int(max_batches, -1),
        sort_by=str(body.get("sort") or "sec"),
        include_invalid=bool(body.get("include_invalid", False)),
        limit=safe_int(body.get("limit"), -1),
    )
    total = sum(n.usable for n in HOST.nodes(include_home=include_home))
    return _ok({"rows": rows, "total_ram": round(total, 4)})


# -----------------------------------
# CLI entrypoint
# -----------------------------------


def main():
    ap = argparse.ArgumentParser(description="HWGW batcher API")
    ap.add_argument("--host", default=os.environ.get("BATCHER_API_HOST", "127.0.0.1"))
    ap.add_argument(
        "--port", type=int, default=int(os.environ.get("BATCHER_API_PORT", "8080"))
    )
    ap.add_argument("--debug", action="store_true")
    args = ap.parse_args()
    app.run(host=args.host, port=args.port, debug=args.debug)


if __name__ == "__main__":
    main()
