"""
REST and WebSocket routes for GraphSync.

Every graph route is scoped by the project the caller's session token
resolves to. Path and body identifiers name entities inside that project,
never the project itself, except for the project routes which check the
named project against the session.
"""

import json
import logging
import time
from typing import Any

from fastapi import APIRouter, Depends, WebSocket, WebSocketDisconnect

from ..auth import SessionContext, SessionResolver
from ..errors import ValidationError
from ..realtime import BroadcastRouter
from ..realtime.handler import ConnectionHandler
from ..store import GraphStore
from ..sync import SyncEngine
from .dependencies import get_engine, get_router, get_session, get_store
from .schemas import EdgeIn, ImportIn, NodeIn, ProjectCreateIn

logger = logging.getLogger(__name__)

router = APIRouter(tags=["GraphSync"])
ws_router = APIRouter()


def _now_ms() -> int:
    return int(time.time() * 1000)


# --- Status ---


@router.get("/status")
async def status(broadcast: BroadcastRouter = Depends(get_router)) -> dict[str, Any]:
    """Liveness plus the number of open realtime connections."""
    return {
        "status": "ok",
        "timestamp": _now_ms(),
        "connected_clients": broadcast.connection_count,
    }


# --- Projects ---


@router.post("/projects", status_code=201)
async def create_project(
    body: ProjectCreateIn,
    store: GraphStore = Depends(get_store),
) -> dict[str, Any]:
    project, token = await store.create_project(body.name, body.description)
    return {"success": True, "project": project.to_dict(), "token": token}


@router.get("/projects")
async def list_projects(
    store: GraphStore = Depends(get_store),
    broadcast: BroadcastRouter = Depends(get_router),
) -> dict[str, Any]:
    """List projects with their live connected-client counts."""
    projects = await store.list_projects()
    live = broadcast.counts()
    return {
        "projects": [{**p.to_dict(), "connected_clients": live.get(p.id, 0)} for p in projects]
    }


@router.get("/projects/current")
async def current_project(session: SessionContext = Depends(get_session)) -> dict[str, Any]:
    return {"project": session.project.to_dict()}


@router.post("/projects/{project_id}/join")
async def join_project(project_id: str, store: GraphStore = Depends(get_store)) -> dict[str, Any]:
    """Mint a new session token for an existing project."""
    token = await store.create_session(project_id)
    project = await store.get_project(project_id)
    return {"success": True, "project": project.to_dict(), "token": token}


@router.delete("/projects/{project_id}")
async def delete_project(
    project_id: str,
    session: SessionContext = Depends(get_session),
    engine: SyncEngine = Depends(get_engine),
) -> dict[str, Any]:
    SessionResolver.require_project(session, project_id)
    await engine.delete_project(project_id)
    return {"success": True, "id": project_id}


@router.get("/stats")
async def stats(
    session: SessionContext = Depends(get_session),
    store: GraphStore = Depends(get_store),
) -> dict[str, Any]:
    return await store.get_stats(session.project_id)


# --- Graph reads ---


@router.get("/graph")
async def get_graph(
    session: SessionContext = Depends(get_session),
    engine: SyncEngine = Depends(get_engine),
) -> dict[str, Any]:
    return (await engine.snapshot(session.project_id)).to_dict()


@router.get("/nodes")
async def get_nodes(
    session: SessionContext = Depends(get_session),
    store: GraphStore = Depends(get_store),
) -> dict[str, Any]:
    return {"nodes": [n.to_dict() for n in await store.get_nodes(session.project_id)]}


@router.get("/edges")
async def get_edges(
    session: SessionContext = Depends(get_session),
    store: GraphStore = Depends(get_store),
) -> dict[str, Any]:
    return {"edges": [e.to_dict() for e in await store.get_edges(session.project_id)]}


# --- Nodes ---


@router.post("/nodes")
async def create_node(
    body: NodeIn,
    session: SessionContext = Depends(get_session),
    engine: SyncEngine = Depends(get_engine),
) -> dict[str, Any]:
    node = await engine.save_node(body.to_record(), session.project_id)
    return {"success": True, "id": node.id, "node": node.to_dict()}


@router.put("/nodes/{node_id}")
async def update_node(
    node_id: str,
    body: NodeIn,
    session: SessionContext = Depends(get_session),
    engine: SyncEngine = Depends(get_engine),
) -> dict[str, Any]:
    if body.id != node_id:
        raise ValidationError("Node ID in URL must match the ID in the request body")
    node = await engine.save_node(body.to_record(), session.project_id)
    return {"success": True, "id": node.id, "node": node.to_dict()}


@router.delete("/nodes/{node_id}")
async def delete_node(
    node_id: str,
    session: SessionContext = Depends(get_session),
    engine: SyncEngine = Depends(get_engine),
) -> dict[str, Any]:
    result = await engine.delete_node(node_id, session.project_id)
    return {
        "success": True,
        "id": node_id,
        "nodes_deleted": result.nodes_deleted,
        "edges_deleted": result.edges_deleted,
    }


# --- Edges ---


@router.post("/edges")
async def create_edge(
    body: EdgeIn,
    session: SessionContext = Depends(get_session),
    engine: SyncEngine = Depends(get_engine),
) -> dict[str, Any]:
    edge = await engine.save_edge(body.to_record(), session.project_id)
    return {"success": True, "id": edge.id, "edge": edge.to_dict()}


@router.put("/edges/{edge_id}")
async def update_edge(
    edge_id: str,
    body: EdgeIn,
    session: SessionContext = Depends(get_session),
    engine: SyncEngine = Depends(get_engine),
) -> dict[str, Any]:
    if body.id != edge_id:
        raise ValidationError("Edge ID in URL must match the ID in the request body")
    edge = await engine.save_edge(body.to_record(), session.project_id)
    return {"success": True, "id": edge.id, "edge": edge.to_dict()}


@router.delete("/edges/{edge_id}")
async def delete_edge(
    edge_id: str,
    session: SessionContext = Depends(get_session),
    engine: SyncEngine = Depends(get_engine),
) -> dict[str, Any]:
    await engine.delete_edge(edge_id, session.project_id)
    return {"success": True, "id": edge_id}


# --- Sync ---


@router.get("/changes/{timestamp}")
async def get_changes(
    timestamp: str,
    session: SessionContext = Depends(get_session),
    engine: SyncEngine = Depends(get_engine),
) -> dict[str, Any]:
    """Rows written after ``timestamp``; unparseable values mean 0."""
    return (await engine.changes_since(timestamp, session.project_id)).to_dict()


@router.get("/sync/timestamp")
async def get_sync_timestamp(
    session: SessionContext = Depends(get_session),
    engine: SyncEngine = Depends(get_engine),
) -> dict[str, Any]:
    return {"timestamp": await engine.watermark(session.project_id)}


@router.post("/import")
async def import_graph(
    body: ImportIn,
    session: SessionContext = Depends(get_session),
    engine: SyncEngine = Depends(get_engine),
) -> dict[str, Any]:
    result = await engine.import_graph(
        [n.to_record() for n in body.nodes],
        [e.to_record() for e in body.edges],
        session.project_id,
    )
    return {"success": True, "node_count": result.node_count, "edge_count": result.edge_count}


@router.post("/clear")
async def clear_project(
    session: SessionContext = Depends(get_session),
    engine: SyncEngine = Depends(get_engine),
) -> dict[str, Any]:
    timestamp = await engine.clear(session.project_id)
    return {"success": True, "timestamp": timestamp}


# --- Realtime ---


@ws_router.websocket("/ws")
async def realtime(websocket: WebSocket) -> None:
    """Project rooms over WebSocket, see realtime.handler."""
    await websocket.accept()
    state = websocket.app.state
    handler = ConnectionHandler(websocket, state.router, state.resolver, state.engine)
    handler.open()

    try:
        while True:
            message = await websocket.receive()
            if message["type"] == "websocket.disconnect":
                raise WebSocketDisconnect(message.get("code", 1000))

            text = message.get("text")
            if text is None:
                await handler.send_error("Frame must be JSON text", "VALIDATION_ERROR")
                continue
            try:
                raw = json.loads(text)
            except ValueError:
                await handler.send_error("Frame is not valid JSON", "VALIDATION_ERROR")
                continue
            await handler.handle_frame(raw)
    except WebSocketDisconnect:
        logger.debug("Realtime client disconnected", extra={"connection_id": handler.connection_id})
    finally:
        await handler.close()

