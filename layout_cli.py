#!/usr/bin/env python3
"""Graph layout CLI - subcommands for the layout service, plus an offline `layout` run."""

import argparse
import json
import os
import sys
import urllib.request
import urllib.error
import urllib.parse

API_BASE = os.environ.get("GRAPH_LAYOUT_API", "http://127.0.0.1:8765/api")


def _json_out(data):
    print(json.dumps(data))
    sys.exit(0)


def _api_request(method, endpoint, data=None, params=None):
    """Make a request to the layout backend."""
    url = f"{API_BASE}{endpoint}"

    if params:
        filtered = {k: v for k, v in params.items() if v is not None}
        if filtered:
            url = f"{url}?{urllib.parse.urlencode(filtered)}"

    headers = {"Content-Type": "application/json"}
    body = json.dumps(data).encode() if data is not None else None

    req = urllib.request.Request(url, data=body, headers=headers, method=method)

    try:
        with urllib.request.urlopen(req, timeout=30) as response:
            return json.loads(response.read().decode())
    except urllib.error.HTTPError as e:
        error_body = e.read().decode()
        try:
            error_data = json.loads(error_body)
            _json_out({"status": "error", "error": f"API error: {error_data.get('detail', 'Unknown error')}"})
        except json.JSONDecodeError:
            _json_out({"status": "error", "error": f"API error ({e.code}): {error_body}"})
    except urllib.error.URLError as e:
        _json_out({"status": "error", "error": f"Connection failed: {e.reason}. Is the layout backend running?"})


def _load_json_file(path):
    """Read a JSON document, exiting with an error payload if unreadable."""
    try:
        with open(path) as f:
            return json.load(f)
    except (OSError, json.JSONDecodeError) as e:
        _json_out({"status": "error", "error": f"Cannot read {path}: {e}"})


def _drop_none(data):
    return {k: v for k, v in data.items() if v is not None}


# ── Service ──────────────────────────────────────────────────────────────────

def cmd_health(args):
    _json_out(_api_request("GET", "/health"))


def cmd_state(args):
    _json_out(_api_request("GET", "/state"))


# ── Sync ─────────────────────────────────────────────────────────────────────

def cmd_sync(args):
    document = _load_json_file(args.file)
    _json_out(_api_request("POST", "/graph/sync", data={
        "nodes": document.get("nodes", []),
        "edges": document.get("edges", []),
    }))


def cmd_constraints(args):
    document = _load_json_file(args.file)
    constraints = document if isinstance(document, list) else document.get("constraints", [])
    _json_out(_api_request("POST", "/constraints/sync", data={"constraints": constraints}))


def cmd_options(args):
    update = _drop_none({
        "gravity": args.gravity,
        "repulsion": args.repulsion,
        "spring": args.spring,
        "damping": args.damping,
        "min_distance": args.min_distance,
        "barnes_hut_theta": args.theta,
        "solver": args.solver,
    })
    if not update:
        _json_out(_api_request("GET", "/options"))
    _json_out(_api_request("PATCH", "/options", data=update))


# ── Layout ───────────────────────────────────────────────────────────────────

def cmd_phase(args):
    _json_out(_api_request("POST", f"/phases/{args.phase}", data=_drop_none({
        "layout": args.layout,
        "ticks": args.ticks,
        "direction": args.direction,
    })))


def cmd_run_all(args):
    _json_out(_api_request("POST", "/layout/run-all"))


def cmd_polish(args):
    endpoint = "/polish/start" if args.action == "start" else "/polish/stop"
    _json_out(_api_request("POST", endpoint))


def cmd_drag(args):
    node = urllib.parse.quote(args.node_id, safe="")
    _api_request("POST", f"/drag/{node}/start")
    _api_request("POST", f"/drag/{node}", data={"dx": args.dx, "dy": args.dy})
    _json_out(_api_request("POST", f"/drag/{node}/end"))


# ── Read Model ───────────────────────────────────────────────────────────────

def cmd_snapshot(args):
    _json_out(_api_request("GET", "/snapshot"))


def cmd_summary(args):
    _json_out(_api_request("GET", "/graph/summary"))


# ── Saved Layouts ────────────────────────────────────────────────────────────

def cmd_save_layout(args):
    _json_out(_api_request("POST", "/layouts", data={"name": args.name}))


def cmd_layouts(args):
    if args.delete:
        _json_out(_api_request("DELETE", f"/layouts/{urllib.parse.quote(args.delete, safe='')}"))
    _json_out(_api_request("GET", "/layouts"))


# ── Offline ──────────────────────────────────────────────────────────────────

def cmd_layout(args):
    """Run the whole pipeline in-process on a JSON graph and print the snapshot."""
    from layout_core import LayoutConfig, LayoutSession, PhysicsOptions

    document = _load_json_file(args.file)
    config = LayoutConfig.model_validate(_drop_none({
        **document.get("config", {}),
        "draft_strategy": args.strategy,
        "direction": args.direction,
        "burst_ticks": args.ticks,
        "random_seed": args.seed,
    }))
    options = PhysicsOptions.model_validate(document.get("options", {}))

    with LayoutSession(options=options, config=config) as session:
        sync = session.sync_graph(document.get("nodes", []), document.get("edges", []))
        constraints = session.sync_constraints(document.get("constraints", []))
        results = session.run_all()
        snapshot = session.position_snapshot()

    _json_out({
        "status": "ok",
        "sync": sync.to_dict(),
        "constraints": constraints.to_dict(),
        "phases": [r.to_dict() for r in results],
        "snapshot": snapshot.to_json_dict(),
    })


# ── Main ─────────────────────────────────────────────────────────────────────

def main():
    parser = argparse.ArgumentParser(description="Graph layout CLI")
    sub = parser.add_subparsers(dest="command", required=True)

    # Service
    sub.add_parser("health")
    sub.add_parser("state")

    # Sync
    p = sub.add_parser("sync")
    p.add_argument("--file", required=True, help="JSON file with nodes and edges")

    p = sub.add_parser("constraints")
    p.add_argument("--file", required=True, help="JSON file with a constraints list")

    p = sub.add_parser("options")
    p.add_argument("--gravity", type=float, default=None)
    p.add_argument("--repulsion", type=float, default=None)
    p.add_argument("--spring", type=float, default=None)
    p.add_argument("--damping", type=float, default=None)
    p.add_argument("--min-distance", type=float, default=None)
    p.add_argument("--theta", type=float, default=None)
    p.add_argument("--solver", choices=["barnes_hut", "direct"], default=None)

    # Layout
    p = sub.add_parser("phase")
    p.add_argument("phase", choices=["randomize", "draft", "transform", "enforce", "polish"])
    p.add_argument("--layout", default=None)
    p.add_argument("--ticks", type=int, default=None)
    p.add_argument("--direction", default=None)

    sub.add_parser("run-all")

    p = sub.add_parser("polish")
    p.add_argument("action", choices=["start", "stop"])

    p = sub.add_parser("drag")
    p.add_argument("--node-id", required=True)
    p.add_argument("--dx", type=float, default=0.0)
    p.add_argument("--dy", type=float, default=0.0)

    # Read model
    sub.add_parser("snapshot")
    sub.add_parser("summary")

    # Saved layouts
    p = sub.add_parser("save-layout")
    p.add_argument("--name", required=True)

    p = sub.add_parser("layouts")
    p.add_argument("--delete", default=None, metavar="NAME")

    # Offline
    p = sub.add_parser("layout")
    p.add_argument("file", help="JSON file with nodes, edges and optional constraints/options/config")
    p.add_argument("--strategy", choices=["spectral", "hierarchical"], default=None)
    p.add_argument("--direction", choices=["top_bottom", "bottom_top", "left_right", "right_left"], default=None)
    p.add_argument("--ticks", type=int, default=None)
    p.add_argument("--seed", type=int, default=None)

    args = parser.parse_args()

    cmd_map = {
        "health": cmd_health,
        "state": cmd_state,
        "sync": cmd_sync,
        "constraints": cmd_constraints,
        "options": cmd_options,
        "phase": cmd_phase,
        "run-all": cmd_run_all,
        "polish": cmd_polish,
        "drag": cmd_drag,
        "snapshot": cmd_snapshot,
        "summary": cmd_summary,
        "save-layout": cmd_save_layout,
        "layouts": cmd_layouts,
        "layout": cmd_layout,
    }
    cmd_map[args.command](args)


if __name__ == "__main__":
    main()
