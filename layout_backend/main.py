"""
Graph Layout Backend - FastAPI Application

This is the main entry point for the layout service.
It provides:
- REST API for graph/constraint sync, physics options, phases and drags
- WebSocket endpoint streaming position snapshots (~30 Hz while changing)
- Saved layouts for the transform phase
- CORS configuration for local frontend development

All engine calls run in a worker thread so the event loop never waits on
the session's writer lock.
"""
import asyncio
import logging
from contextlib import asynccontextmanager
from typing import Optional

from fastapi import FastAPI, WebSocket, WebSocketDisconnect, HTTPException
from fastapi.middleware.cors import CORSMiddleware

from layout_core import (
    InvalidTransitionError, LayoutPhase, LayoutSession, PhysicsOptionsUpdate, PositionSnapshot
)
from layout_core.models import (
    DragRequest, RunPhaseRequest, SaveLayoutRequest, SyncConstraintsRequest, SyncGraphRequest
)

from .config import CONFIG
from .websocket_manager import positions_message, ws_manager

logger = logging.getLogger(__name__)

layout_session = LayoutSession(snapshot_hz=CONFIG.snapshot_hz, tick_interval=CONFIG.tick_interval)


# --- Snapshot notification ---
# Bridge between the session's publisher thread and async WebSocket broadcasts

async def snapshot_broadcaster(event: asyncio.Event):
    """Background task that pushes published snapshots to WebSocket clients."""
    while True:
        await event.wait()
        event.clear()
        await ws_manager.notify_positions(layout_session.last_snapshot)


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Lifespan handler for startup/shutdown tasks."""
    loop = asyncio.get_running_loop()
    snapshot_event = asyncio.Event()

    def on_snapshot(snapshot: PositionSnapshot):
        loop.call_soon_threadsafe(snapshot_event.set)

    session = layout_session
    session.on_snapshot(on_snapshot)
    session.start()
    broadcaster_task = asyncio.create_task(snapshot_broadcaster(snapshot_event))

    yield

    # Cleanup
    broadcaster_task.cancel()
    try:
        await broadcaster_task
    except asyncio.CancelledError:
        pass
    session.remove_snapshot_callback(on_snapshot)
    await asyncio.to_thread(session.close)


# --- FastAPI App ---

app = FastAPI(
    title="Graph Layout API",
    description="Interactive force-directed layout engine for node-link diagrams",
    version="1.0.0",
    lifespan=lifespan
)

# CORS for local development
app.add_middleware(
    CORSMiddleware,
    allow_origins=["http://localhost:5173", "http://localhost:3000", "http://127.0.0.1:5173"],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


# --- Health Check ---

@app.get("/api/health")
async def health_check():
    """Health check endpoint."""
    return {"status": "ok", "connections": ws_manager.connection_count}


# --- Session State ---

@app.get("/api/state")
async def get_state():
    """Get the pipeline state and graph size."""
    session = layout_session
    phase = session.current_phase
    return {
        "success": True,
        "state": session.state.value,
        "phase": phase.value if phase else None,
        "polishing": session.is_polishing,
        "revision": session.revision,
        "nodes": len(session.graph.nodes),
        "edges": len(session.graph.edges),
        "constraints": len(session.pipeline.constraints),
        "dragging": sorted(session.dragging),
    }


# --- Sync ---

@app.post("/api/graph/sync")
async def sync_graph(request: SyncGraphRequest):
    """Replace the graph; unchanged nodes keep their positions."""
    report = await asyncio.to_thread(layout_session.sync_graph, request.nodes, request.edges)
    return {"success": True, "report": report.to_dict()}


@app.post("/api/constraints/sync")
async def sync_constraints(request: SyncConstraintsRequest):
    """Replace the constraint set and enforce it."""
    report = await asyncio.to_thread(layout_session.sync_constraints, request.constraints)
    return {"success": True, "report": report.to_dict()}


# --- Physics Options ---

@app.get("/api/options")
async def get_options():
    """Get the physics options and layout configuration."""
    return {
        "success": True,
        "options": layout_session.options.model_dump(mode='json'),
        "config": layout_session.config.model_dump(mode='json'),
    }


@app.patch("/api/options")
async def update_options(request: PhysicsOptionsUpdate):
    """Hot-swap physics options; only provided fields change."""
    options = await asyncio.to_thread(layout_session.set_physics_options, request)
    return {"success": True, "options": options.model_dump(mode='json')}


# --- Polish ---

@app.post("/api/polish/start")
async def start_polish():
    """Start continuous polish."""
    try:
        started = await asyncio.to_thread(layout_session.start_polish)
    except InvalidTransitionError as e:
        raise HTTPException(status_code=409, detail=str(e))
    return {"success": True, "started": started}


@app.post("/api/polish/stop")
async def stop_polish():
    """Stop continuous polish; returns after the current tick."""
    stopped = await asyncio.to_thread(layout_session.stop_polish)
    return {"success": True, "stopped": stopped}


# --- Phases ---

@app.post("/api/phases/{phase}")
async def run_phase(phase: str, request: Optional[RunPhaseRequest] = None):
    """Run one phase to completion."""
    request = request or RunPhaseRequest()
    try:
        phase = LayoutPhase(phase)
    except ValueError:
        raise HTTPException(status_code=400, detail=f"Unknown phase: {phase}")

    try:
        result = await asyncio.to_thread(
            layout_session.run_phase,
            phase,
            layout=request.layout,
            ticks=request.ticks,
            direction=request.direction,
        )
    except InvalidTransitionError as e:
        raise HTTPException(status_code=409, detail=str(e))
    except ValueError as e:
        raise HTTPException(status_code=404, detail=str(e))
    return {"success": True, "result": result.to_dict()}


@app.post("/api/layout/run-all")
async def run_all():
    """Run randomize, draft, transform, enforce and a polish burst."""
    try:
        results = await asyncio.to_thread(layout_session.run_all)
    except InvalidTransitionError as e:
        raise HTTPException(status_code=409, detail=str(e))
    return {"success": True, "results": [r.to_dict() for r in results]}


# --- Drag ---

@app.post("/api/drag/{node_id}/start")
async def drag_start(node_id: str):
    """Pick up a node; it stays fixed until released."""
    if await asyncio.to_thread(layout_session.on_drag_start, node_id):
        return {"success": True}
    raise HTTPException(status_code=404, detail="Node not found")


@app.post("/api/drag/{node_id}")
async def drag_move(node_id: str, request: DragRequest):
    """Move a dragged node by a pointer delta."""
    if await asyncio.to_thread(layout_session.on_drag, node_id, request.dx, request.dy):
        return {"success": True}
    raise HTTPException(status_code=404, detail="Node not found")


@app.post("/api/drag/{node_id}/end")
async def drag_end(node_id: str):
    """Release a node and let its neighbourhood settle."""
    if await asyncio.to_thread(layout_session.on_drag_end, node_id):
        return {"success": True}
    raise HTTPException(status_code=404, detail="Node not found")


# --- Read Model ---

@app.get("/api/snapshot")
async def get_snapshot():
    """Get a consistent copy of every node position."""
    snapshot = await asyncio.to_thread(layout_session.position_snapshot)
    return {"success": True, "snapshot": snapshot.to_json_dict()}


@app.get("/api/graph/summary")
async def summarize_graph():
    """
    Get a structural summary of the graph.

    Returns node/edge counts, compounds, hypernodes, components, bounds,
    most connected nodes and layout validation counts.
    """
    summary = await asyncio.to_thread(layout_session.summary)
    return {"success": True, "summary": summary}


# --- Saved Layouts ---

@app.post("/api/layouts")
async def save_layout(request: SaveLayoutRequest):
    """Save current positions under a name."""
    count = await asyncio.to_thread(layout_session.save_layout, request.name)
    return {"success": True, "name": request.name, "nodes": count}


@app.get("/api/layouts")
async def list_layouts():
    """List saved layouts with their node counts."""
    layouts = await asyncio.to_thread(layout_session.list_saved_layouts)
    return {"success": True, "layouts": layouts}


@app.delete("/api/layouts/{name}")
async def delete_layout(name: str):
    """Delete a saved layout."""
    try:
        await asyncio.to_thread(layout_session.delete_saved_layout, name)
    except ValueError as e:
        raise HTTPException(status_code=404, detail=str(e))
    return {"success": True}


# --- WebSocket ---

@app.websocket("/ws")
async def websocket_endpoint(websocket: WebSocket):
    """
    WebSocket endpoint for real-time updates.

    Clients get the current snapshot on connect, then a `positions`
    message for every published revision.
    """
    await ws_manager.connect(websocket)

    try:
        snapshot = await asyncio.to_thread(layout_session.position_snapshot)
        await websocket.send_json(positions_message(snapshot))
        while True:
            data = await websocket.receive_text()
            if data == "ping":
                await websocket.send_text('{"type": "pong"}')
    except WebSocketDisconnect:
        await ws_manager.disconnect(websocket)
    except Exception:
        logger.exception("WebSocket connection failed")
        await ws_manager.disconnect(websocket)


# --- Run with uvicorn ---

def main():
    import uvicorn

    logging.basicConfig(
        level=CONFIG.log_level.upper(),
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )
    uvicorn.run(app, host=CONFIG.host, port=CONFIG.port)


if __name__ == "__main__":
    main()
