#!/usr/bin/env python3
"""
Graph Layout MCP Server

Provides MCP tools for AI agents to drive the layout service.
All position changes are streamed to rendering clients via WebSocket.
"""

import json
import os
from typing import Optional

import httpx
from mcp.server.fastmcp import FastMCP

# Backend API URL
API_BASE = os.environ.get("GRAPH_LAYOUT_API", "http://127.0.0.1:8765/api")

# Create MCP server
mcp = FastMCP("graph-layout")


# --- HTTP Client Helper ---

def api_request(method: str, endpoint: str, **kwargs) -> dict:
    """Make a request to the layout backend."""
    url = f"{API_BASE}{endpoint}"
    with httpx.Client(timeout=30.0) as client:
        if method == "GET":
            response = client.get(url, params=kwargs.get("params"))
        elif method == "POST":
            response = client.post(url, json=kwargs.get("json"))
        elif method == "PATCH":
            response = client.patch(url, json=kwargs.get("json"))
        elif method == "DELETE":
            response = client.delete(url)
        else:
            raise ValueError(f"Unknown method: {method}")

        if response.status_code >= 400:
            error = response.json().get("detail", "Unknown error")
            raise Exception(f"API error: {error}")

        return response.json()


# ============================================================================
# INSPECTION TOOLS
# ============================================================================

@mcp.tool()
def layout_get_state() -> str:
    """
    Get the layout pipeline state.

    Returns the state (idle/running/polishing), the running phase, whether
    continuous polish is on, and node/edge/constraint counts.
    """
    result = api_request("GET", "/state")
    return json.dumps(result, indent=2)


@mcp.tool()
def layout_get_positions() -> str:
    """
    Get a consistent snapshot of every node position.

    Each entry has id, x, y (box center), width, height and fixed.
    """
    result = api_request("GET", "/snapshot")
    return json.dumps(result, indent=2)


@mcp.tool()
def layout_summarize() -> str:
    """
    Get a structural summary of the graph.

    Includes counts of nodes, edges, compounds, hypernodes and pinned nodes,
    connected components, bounds, the most connected nodes and layout
    validation results. Use this before deciding which phase to run.
    """
    result = api_request("GET", "/graph/summary")
    return json.dumps(result, indent=2)


# ============================================================================
# SYNC TOOLS
# ============================================================================

@mcp.tool()
def layout_sync_graph(nodes: list[dict], edges: list[dict]) -> str:
    """
    Replace the graph with the given nodes and edges.

    Args:
        nodes: [{id, mass?, fixedSize?, parentId?, isHypernode?}]
        edges: [{id?, sourceId, targetId, strength?}]

    Nodes that already exist keep their positions. Dropped input (unknown
    endpoints, self-loops, duplicates, parent cycles) is listed in the report.
    """
    result = api_request("POST", "/graph/sync", json={"nodes": nodes, "edges": edges})
    return json.dumps(result, indent=2)


@mcp.tool()
def layout_sync_constraints(constraints: list[dict]) -> str:
    """
    Replace the constraint set and enforce it.

    Args:
        constraints: [{type, nodeIds, params?}] where type is one of
            align_vertical, align_horizontal, relative_left_right,
            relative_top_bottom, fixed. Relative constraints accept a
            `gap` param; fixed accepts `x`/`y`.
    """
    result = api_request("POST", "/constraints/sync", json={"constraints": constraints})
    return json.dumps(result, indent=2)


@mcp.tool()
def layout_set_options(
    gravity: Optional[float] = None,
    repulsion: Optional[float] = None,
    spring: Optional[float] = None,
    damping: Optional[float] = None,
    min_distance: Optional[float] = None,
    barnes_hut_theta: Optional[float] = None,
    solver: Optional[str] = None,
) -> str:
    """
    Change physics options. Only provided values change; the next tick uses them.

    Args:
        gravity: Pull toward the origin
        repulsion: Node-node repulsion strength
        spring: Edge spring stiffness
        damping: Velocity damping per tick (0-1)
        min_distance: Minimum separation used for spring lengths and clamping
        barnes_hut_theta: Approximation threshold (smaller = more exact)
        solver: "barnes_hut" or "direct"
    """
    update = {
        "gravity": gravity,
        "repulsion": repulsion,
        "spring": spring,
        "damping": damping,
        "min_distance": min_distance,
        "barnes_hut_theta": barnes_hut_theta,
        "solver": solver,
    }
    result = api_request("PATCH", "/options", json={k: v for k, v in update.items() if v is not None})
    return json.dumps(result, indent=2)


# ============================================================================
# LAYOUT TOOLS
# ============================================================================

@mcp.tool()
def layout_run_phase(
    phase: str,
    layout: Optional[str] = None,
    ticks: Optional[int] = None,
    direction: Optional[str] = None,
) -> str:
    """
    Run a single layout phase.

    Args:
        phase: randomize, draft, transform, enforce or polish
        layout: Saved layout to restore (transform only)
        ticks: Burst length (polish only)
        direction: top_bottom, bottom_top, left_right or right_left (transform only)
    """
    body = {"layout": layout, "ticks": ticks, "direction": direction}
    result = api_request("POST", f"/phases/{phase}", json={k: v for k, v in body.items() if v is not None})
    return json.dumps(result, indent=2)


@mcp.tool()
def layout_run_all() -> str:
    """
    Lay out the graph from scratch.

    Runs randomize, draft, transform, enforce and a polish burst in order.
    """
    result = api_request("POST", "/layout/run-all")
    return json.dumps(result, indent=2)


@mcp.tool()
def layout_polish(running: bool = True) -> str:
    """
    Turn continuous polish on or off.

    Args:
        running: True to start the simulation, False to stop it
    """
    result = api_request("POST", "/polish/start" if running else "/polish/stop")
    return json.dumps(result, indent=2)


@mcp.tool()
def layout_move_node(node_id: str, dx: float, dy: float) -> str:
    """
    Move a node as if dragged by the user, then let neighbours settle.

    Args:
        node_id: Node to move
        dx: Horizontal offset
        dy: Vertical offset
    """
    api_request("POST", f"/drag/{node_id}/start")
    api_request("POST", f"/drag/{node_id}", json={"dx": dx, "dy": dy})
    result = api_request("POST", f"/drag/{node_id}/end")
    return json.dumps(result, indent=2)


# ============================================================================
# SAVED LAYOUT TOOLS
# ============================================================================

@mcp.tool()
def layout_save(name: str) -> str:
    """
    Save current positions under a name.

    Args:
        name: Saved layout name (replaces an existing one)

    Restore it later with layout_run_phase("transform", layout=name).
    """
    result = api_request("POST", "/layouts", json={"name": name})
    return json.dumps(result, indent=2)


@mcp.tool()
def layout_list_saved() -> str:
    """List saved layouts with their node counts."""
    result = api_request("GET", "/layouts")
    return json.dumps(result, indent=2)


@mcp.tool()
def layout_delete_saved(name: str) -> str:
    """
    Delete a saved layout.

    Args:
        name: Saved layout name
    """
    result = api_request("DELETE", f"/layouts/{name}")
    return json.dumps(result, indent=2)


# ============================================================================
# MAIN
# ============================================================================

if __name__ == "__main__":
    mcp.run()
