"""
API routes for the graphledger HTTP gateway.

Each route validates its input, calls one core operation and wraps the
result. The core never raises to these handlers; failures arrive as
False/None and are mapped to HTTP status codes here.

Invariants:
    - Handlers are ``async def`` and call the store on the event loop, so
      requests against the single SQLite connection run one at a time.
      A plain ``def`` handler would run in the thread pool and race other
      requests on that connection.
"""

import logging
from typing import Any

from fastapi import APIRouter, Depends, HTTPException, Query, Request
from fastapi.responses import JSONResponse
from pydantic import BaseModel, Field

from ..context import Actor
from ..restore import RestoreEngine
from ..store import ALLOWED_STATUSES, GraphStore

logger = logging.getLogger(__name__)

router = APIRouter(tags=["graphledger"])

ALLOWED_CATEGORIES = ("business", "application", "infrastructure")
ALLOWED_TYPES = ("server", "database", "application", "network")


# --- Request Models ---


class NodeCreateRequest(BaseModel):
    """Request to create a node."""

    id: str = Field(..., min_length=1, description="Node ID")
    data: dict[str, Any] = Field(..., description="Node payload (category and type required)")


class NodeUpdateRequest(BaseModel):
    """Request to replace a node's data."""

    data: dict[str, Any] = Field(..., description="New node payload")


class EdgeCreateRequest(BaseModel):
    """Request to create an edge."""

    id: str = Field(..., min_length=1, description="Edge ID")
    source: str = Field(..., min_length=1, description="Source node ID")
    target: str = Field(..., min_length=1, description="Target node ID")
    data: dict[str, Any] | None = Field(None, description="Edge payload")


class StatusRequest(BaseModel):
    """Request to set a node status."""

    status: str = Field(..., description="One of the allowed statuses")


class BackupRequest(BaseModel):
    """Request to take a backup."""

    name: str | None = Field(None, description="Backup name (generated when omitted)")


class RestoreEntityRequest(BaseModel):
    """Request to reverse one audit entry."""

    entity_type: str = Field(..., description="node or edge")
    entity_id: str = Field(..., description="Entity ID")
    audit_log_id: int = Field(..., description="Audit entry to reverse")


class RestoreTimestampRequest(BaseModel):
    """Request to reverse everything after a point in time."""

    timestamp: str = Field(..., description="UTC timestamp, e.g. 2024-01-31 12:00:00")


# --- Dependencies ---


def get_store(request: Request) -> GraphStore:
    """Get graph store from app state."""
    return request.app.state.store


def get_restorer(request: Request) -> RestoreEngine:
    """Get restore engine from app state."""
    return request.app.state.restorer


def get_actor(request: Request) -> Actor:
    """Actor resolved by the request middleware."""
    return getattr(request.state, "actor", None) or Actor()


def ok(message: str | None = None, data: Any = None) -> dict[str, Any]:
    body: dict[str, Any] = {"success": True}
    if message:
        body["message"] = message
    if data is not None:
        body["data"] = data
    return body


def _check_choice(data: dict[str, Any], key: str, allowed: tuple[str, ...], required: bool) -> None:
    label = key.capitalize()
    if key not in data:
        if required:
            raise HTTPException(
                status_code=400,
                detail=f"{label} is required. Allowed values: {', '.join(allowed)}",
            )
        return
    if not data[key]:
        raise HTTPException(
            status_code=400,
            detail=f"{label} cannot be empty. Allowed values: {', '.join(allowed)}",
        )
    if data[key] not in allowed:
        raise HTTPException(
            status_code=400,
            detail=f"Invalid {key}. Allowed values: {', '.join(allowed)}",
        )


# --- Graph Routes ---


@router.get("/graph")
async def get_graph(store: GraphStore = Depends(get_store)):
    """Full graph snapshot, nodes and edges in creation order."""
    return ok(data=store.get())


# --- Node Routes ---


@router.post("/nodes")
async def create_node(
    request: NodeCreateRequest,
    store: GraphStore = Depends(get_store),
    actor: Actor = Depends(get_actor),
):
    _check_choice(request.data, "category", ALLOWED_CATEGORIES, required=True)
    _check_choice(request.data, "type", ALLOWED_TYPES, required=True)

    if not store.add_node(request.id, request.data, actor=actor):
        raise HTTPException(status_code=409, detail="Node already exists or could not be created")
    return ok("Node created successfully", {"id": request.id})


@router.get("/nodes/{node_id}")
async def get_node(node_id: str, store: GraphStore = Depends(get_store)):
    return ok(data={"exists": store.node_exists(node_id), "id": node_id})


@router.put("/nodes/{node_id}")
async def update_node(
    node_id: str,
    request: NodeUpdateRequest,
    store: GraphStore = Depends(get_store),
    actor: Actor = Depends(get_actor),
):
    _check_choice(request.data, "category", ALLOWED_CATEGORIES, required=False)
    _check_choice(request.data, "type", ALLOWED_TYPES, required=False)

    if not store.update_node(node_id, request.data, actor=actor):
        raise HTTPException(status_code=404, detail="Node not found")
    return ok("Node updated successfully", {"id": node_id})


@router.delete("/nodes/{node_id}")
async def delete_node(
    node_id: str,
    store: GraphStore = Depends(get_store),
    actor: Actor = Depends(get_actor),
):
    """Delete a node and every edge touching it."""
    if not store.remove_node(node_id, actor=actor):
        raise HTTPException(status_code=404, detail="Node not found")
    return ok("Node deleted successfully", {"id": node_id})


# --- Edge Routes ---


@router.post("/edges")
async def create_edge(
    request: EdgeCreateRequest,
    store: GraphStore = Depends(get_store),
    actor: Actor = Depends(get_actor),
):
    if not store.add_edge(
        request.id, request.source, request.target, request.data or {}, actor=actor
    ):
        raise HTTPException(status_code=400, detail="Edge creation failed")
    return ok("Edge created successfully", {"id": request.id})


@router.get("/edges/{edge_id}")
async def get_edge(edge_id: str, store: GraphStore = Depends(get_store)):
    return ok(data={"exists": store.edge_exists_by_id(edge_id), "id": edge_id})


@router.delete("/edges/from/{source}")
async def delete_edges_from(
    source: str,
    store: GraphStore = Depends(get_store),
    actor: Actor = Depends(get_actor),
):
    """Delete every edge leaving a node; succeeds when none match."""
    if not store.remove_edges_from(source, actor=actor):
        raise HTTPException(status_code=500, detail="Failed to delete edges")
    return ok("Edges deleted successfully", {"source": source})


@router.delete("/edges/{edge_id}")
async def delete_edge(
    edge_id: str,
    store: GraphStore = Depends(get_store),
    actor: Actor = Depends(get_actor),
):
    if not store.remove_edge(edge_id, actor=actor):
        raise HTTPException(status_code=404, detail="Edge not found")
    return ok("Edge deleted successfully", {"id": edge_id})


# --- Status Routes ---


@router.get("/nodes/{node_id}/status")
async def get_node_status(node_id: str, store: GraphStore = Depends(get_store)):
    status = store.statuses.current(node_id)
    if status is None:
        raise HTTPException(status_code=404, detail="No status found for node")
    return ok(data=status.to_dict())


@router.post("/nodes/{node_id}/status")
async def set_node_status(
    node_id: str,
    request: StatusRequest,
    store: GraphStore = Depends(get_store),
    actor: Actor = Depends(get_actor),
):
    if request.status not in ALLOWED_STATUSES:
        raise HTTPException(
            status_code=400,
            detail=f"Invalid status. Allowed values: {', '.join(ALLOWED_STATUSES)}",
        )
    if not store.statuses.set_status(node_id, request.status, actor=actor):
        raise HTTPException(
            status_code=404, detail="Failed to set node status (node may not exist)"
        )
    return ok("Node status set successfully", {"node_id": node_id, "status": request.status})


@router.get("/nodes/{node_id}/status/history")
async def get_node_status_history(node_id: str, store: GraphStore = Depends(get_store)):
    return ok(data={"history": [s.to_dict() for s in store.statuses.history(node_id)]})


@router.get("/status")
async def get_all_statuses(store: GraphStore = Depends(get_store)):
    """Current status of every node that has one."""
    return ok(data={"statuses": [s.to_dict() for s in store.statuses.all_current()]})


@router.get("/status/allowed")
async def get_allowed_statuses():
    return ok(data={"statuses": list(ALLOWED_STATUSES)})


# --- Backup & Audit Routes ---


@router.post("/backup")
async def create_backup(
    request: BackupRequest | None = None,
    store: GraphStore = Depends(get_store),
    actor: Actor = Depends(get_actor),
):
    result = store.create_backup(request.name if request else None, actor=actor)
    if not result.success:
        return JSONResponse(
            status_code=500,
            content={"success": False, "error": "Backup failed", "details": result.to_dict()},
        )
    return ok("Backup created successfully", result.to_dict())


@router.get("/audit")
async def get_audit_history(
    entity_type: str | None = Query(None, description="Filter by entity type"),
    entity_id: str | None = Query(None, description="Filter by entity ID"),
    store: GraphStore = Depends(get_store),
):
    """Audit entries, newest first."""
    entries = store.get_audit_history(entity_type, entity_id)
    return ok(data={"audit_log": [e.to_dict() for e in entries]})


# --- Restore Routes ---


@router.post("/restore/entity")
async def restore_entity(
    request: RestoreEntityRequest,
    restorer: RestoreEngine = Depends(get_restorer),
    actor: Actor = Depends(get_actor),
):
    """Reverse one audit entry. A backup is taken first."""
    if not restorer.restore_entity(
        request.entity_type, request.entity_id, request.audit_log_id, actor=actor
    ):
        raise HTTPException(status_code=400, detail="Restore failed")
    return ok("Entity restored successfully")


@router.post("/restore/timestamp")
async def restore_to_timestamp(
    request: RestoreTimestampRequest,
    restorer: RestoreEngine = Depends(get_restorer),
    actor: Actor = Depends(get_actor),
):
    """Reverse every node and edge change after a timestamp. A backup is taken first."""
    if not restorer.restore_to_timestamp(request.timestamp, actor=actor):
        raise HTTPException(status_code=400, detail="Restore failed")
    return ok("Graph restored to timestamp successfully")
