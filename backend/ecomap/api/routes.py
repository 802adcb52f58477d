import asyncio
import functools
import logging
from typing import Any, AsyncGenerator, Dict, Optional

from fastapi import APIRouter, Body, File, HTTPException, Request, Response, UploadFile
from fastapi.responses import StreamingResponse

from ecomap.api.serializers import serialize_map, serialize_maps, serialize_state, sse_event
from ecomap.config import get_settings
from ecomap.ir.ecosystem import EcosystemMap
from ecomap.ir.errors import NotFound
from ecomap.schemas import CreateMapRequest, HealthResponse, RenameRequest
from ecomap.session.controller import MapSession, SessionState

log = logging.getLogger(__name__)

router = APIRouter()

KEEPALIVE_SECONDS = 15.0


def get_session(request: Request) -> MapSession:
    return request.app.state.session


def offer_latest(queue: asyncio.Queue, state: SessionState) -> None:
    """Keep only the newest state for a slow SSE client."""
    if queue.full():
        queue.get_nowait()
    queue.put_nowait(state)


def persisted(result: Optional[EcosystemMap]) -> dict:
    """Writes return None while the store is in fail-soft mode."""
    if result is None:
        raise HTTPException(status_code=503, detail="Store unavailable, change was not persisted")
    return serialize_map(result)


@router.get("/health", response_model=HealthResponse)
def health(request: Request):
    settings = get_settings()
    return HealthResponse(
        status="ok",
        store_available=get_session(request).store.available,
        vision_configured=bool(settings.vision_api_key),
    )


# ============================================================
# READS
# ============================================================

@router.get("/maps")
def list_maps(request: Request):
    """Maps of the latest snapshot, most recently updated first"""
    return serialize_maps(get_session(request).list_maps())


@router.get("/maps/current")
def current_map(request: Request):
    current = get_session(request).get_current_map()
    if current is None:
        raise HTTPException(status_code=404, detail="No map selected")
    return serialize_map(current)


@router.get("/maps/stream")
async def stream_maps(request: Request):
    """
    Stream session states as Server-Sent Events.

    Each connection gets its own session (and selection); every store
    change yields one full snapshot event.
    """
    session = MapSession(get_session(request).store, extractor=get_session(request).extractor)
    queue: asyncio.Queue = asyncio.Queue(maxsize=1)
    session.on_state_change(functools.partial(offer_latest, queue))

    async def event_generator() -> AsyncGenerator[str, None]:
        await session.start()
        try:
            while True:
                if await request.is_disconnected():
                    break
                try:
                    state = await asyncio.wait_for(queue.get(), timeout=KEEPALIVE_SECONDS)
                except asyncio.TimeoutError:
                    yield ": keep-alive\n\n"
                    continue
                yield sse_event(serialize_state(state))
        finally:
            await session.close()

    return StreamingResponse(
        event_generator(),
        media_type="text/event-stream",
        headers={
            "Cache-Control": "no-cache",
            "Connection": "keep-alive",
        }
    )


@router.get("/maps/{map_id}")
async def get_map(map_id: str, request: Request):
    found = await get_session(request).store.get(map_id)
    if found is None:
        raise NotFound(map_id)
    return serialize_map(found)


@router.post("/maps/{map_id}/select")
async def select_map(map_id: str, request: Request):
    return serialize_map(await get_session(request).select_map(map_id))


# ============================================================
# WRITES
# ============================================================

@router.post("/maps", status_code=201)
async def create_map(request: Request, body: CreateMapRequest):
    session = get_session(request)
    document = body.model_dump()
    if not document.get("section"):
        document["section"] = session.store.section
    return persisted(await session.create_or_replace_map(document))


@router.put("/maps/{map_id}")
async def replace_map(map_id: str, request: Request, body: Dict[str, Any] = Body(...)):
    document = {**body, "id": map_id}
    return persisted(await get_session(request).create_or_replace_map(document))


@router.patch("/maps/{map_id}")
async def patch_map(map_id: str, request: Request, fields: Dict[str, Any] = Body(...)):
    return persisted(await get_session(request).patch_map(map_id, fields))


@router.post("/maps/{map_id}/rename")
async def rename_map(map_id: str, request: Request, body: RenameRequest):
    return persisted(await get_session(request).rename_map(map_id, body.name))


@router.delete("/maps/{map_id}", status_code=204)
async def delete_map(map_id: str, request: Request):
    await get_session(request).delete_map(map_id)
    return Response(status_code=204)


# ============================================================
# NODE / EDGE EDITING
# ============================================================

@router.post("/maps/{map_id}/nodes")
async def add_node(map_id: str, request: Request, node: Dict[str, Any] = Body(...)):
    return persisted(await get_session(request).add_node(map_id, node))


@router.patch("/maps/{map_id}/nodes/{node_id}")
async def update_node(map_id: str, node_id: str, request: Request, fields: Dict[str, Any] = Body(...)):
    return persisted(await get_session(request).update_node(map_id, node_id, fields))


@router.delete("/maps/{map_id}/nodes/{node_id}")
async def remove_node(map_id: str, node_id: str, request: Request):
    return persisted(await get_session(request).remove_node(map_id, node_id))


@router.post("/maps/{map_id}/edges")
async def add_edge(map_id: str, request: Request, edge: Dict[str, Any] = Body(...)):
    return persisted(await get_session(request).add_edge(map_id, edge))


@router.patch("/maps/{map_id}/edges/{edge_id}")
async def update_edge(map_id: str, edge_id: str, request: Request, fields: Dict[str, Any] = Body(...)):
    return persisted(await get_session(request).update_edge(map_id, edge_id, fields))


@router.delete("/maps/{map_id}/edges/{edge_id}")
async def remove_edge(map_id: str, edge_id: str, request: Request):
    return persisted(await get_session(request).remove_edge(map_id, edge_id))


# ============================================================
# IMPORT - Image to candidate map
# ============================================================

@router.post("/maps/import")
async def import_map(
    request: Request,
    file: UploadFile = File(...),
    save: bool = False,
    map_id: Optional[str] = None,
):
    """
    Extract a candidate map from an uploaded diagram image.

    The candidate is returned unsaved unless save=true; map_id re-imports
    over an existing map.
    """
    session = get_session(request)
    image = await file.read()
    candidate = await session.import_from_image(image)

    if not save:
        return {"status": "draft", "map": serialize_map(candidate)}

    saved = await session.save_candidate(candidate, map_id=map_id)
    return {"status": "saved", "map": persisted(saved)}
