"""
Session HTTP routes — GET    /api/session
                       PUT    /api/session
                       DELETE /api/session
                       GET    /api/session/sync

The durable store behind these routes is the shared copy every device
reconciles against. PUT is a plain save (no server-side merge); the server's
own SyncOrchestrator is nudged afterwards so its in-memory session picks the
write up immediately instead of on the next tick.

Bodies are serialized with model_dump_json() rather than JSONResponse because
probe temperatures may be NaN, which the stdlib encoder behind JSONResponse
refuses.
"""
from __future__ import annotations

import asyncio
import logging
from typing import Any, Optional

from fastapi import APIRouter, Body, Header, HTTPException, Request, Response
from pydantic import BaseModel

from grillmon.session.backends import DEVICE_HEADER
from grillmon.session.schemas import (
    SessionClearedResponse,
    SessionMissingResponse,
    SessionPutRequest,
    SessionResponse,
    SessionSavedResponse,
)
from grillmon.store import WriteStatus

router = APIRouter(prefix="/api", tags=["session"])
logger = logging.getLogger(__name__)


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------

def _json(model: BaseModel, status_code: int = 200) -> Response:
    return Response(
        content=model.model_dump_json(by_alias=True),
        status_code=status_code,
        media_type="application/json",
    )


def _now(request: Request):
    return request.app.state.clock()


# ---------------------------------------------------------------------------
# Endpoints
# ---------------------------------------------------------------------------

@router.get("/session")
async def get_session(request: Request) -> Response:
    """
    Returns the current durable session.
      200: {session, lastSync}
      404: {session: null, message: "No session found"} — missing or expired
    """
    store = request.app.state.session_store
    session = await asyncio.to_thread(store.load)
    if session is None:
        return _json(SessionMissingResponse(), status_code=404)
    return _json(SessionResponse(session=session, last_sync=_now(request)))


@router.put("/session")
async def put_session(
    request: Request,
    payload: dict[str, Any] = Body(...),
    device_id: Optional[str] = Header(default=None, alias=DEVICE_HEADER),
) -> Response:
    """
    Replace the durable session with the uploaded one.
      200: {session, saved: true, lastSync} — session carries the new lastSaved
      400: body without a session id
      422: malformed session
    """
    raw = payload.get("session")
    if not isinstance(raw, dict) or not raw.get("id"):
        raise HTTPException(status_code=400, detail="Invalid session data")

    # pydantic ValidationError is a ValueError → 422 via the global handler
    put = SessionPutRequest.model_validate(payload)

    store = request.app.state.session_store
    result = await asyncio.to_thread(store.save, put.session, device_id)
    if result.status is WriteStatus.locked:
        raise HTTPException(status_code=500, detail="Session store busy, retry shortly")
    if not result.ok:
        raise HTTPException(status_code=500, detail="Failed to save session")

    logger.info("Session uploaded session_id=%s device_id=%s", put.session.id, device_id)

    orchestrator = getattr(request.app.state, "session_sync", None)
    if orchestrator is not None:
        await orchestrator.sync_now(force=True)

    return _json(SessionSavedResponse(session=result.session, last_sync=_now(request)))


@router.delete("/session")
async def delete_session(request: Request) -> Response:
    """Delete the durable session and its backups. Idempotent."""
    store = request.app.state.session_store
    if not await asyncio.to_thread(store.clear, True):
        raise HTTPException(status_code=500, detail="Failed to clear session")

    manager = getattr(request.app.state, "session_manager", None)
    if manager is not None:
        manager.discard()

    return _json(SessionClearedResponse(last_sync=_now(request)))


@router.get("/session/sync")
async def get_sync_status(request: Request) -> Response:
    """State of the server's own sync loop (IDLE / SYNCING, last run, last error)."""
    orchestrator = getattr(request.app.state, "session_sync", None)
    if orchestrator is None:
        raise HTTPException(status_code=404, detail="Sync is not running")
    return _json(orchestrator.status())
