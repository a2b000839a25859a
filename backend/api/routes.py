"""REST API routes for Just Send."""

import asyncio
import logging
import os
from urllib.parse import quote

from fastapi import APIRouter, HTTPException, Response
from pydantic import BaseModel

from config import APP_ID
from errors import (
    ArtifactReleasedError,
    InvalidCodeError,
    JustSendError,
    SessionBusyError,
    SessionStateError,
)
from signaling.session import SessionState
from transfer.sources import PathSource

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api")

# These will be injected by main.py at startup
_session_manager = None
_relay = None
_batch_task: asyncio.Task | None = None


def init_routes(session_manager, relay) -> None:
    """Inject service dependencies into the routes module."""
    global _session_manager, _relay, _batch_task
    _session_manager = session_manager
    _relay = relay
    _batch_task = None


# --- Devices ---

@router.get("/devices")
async def list_devices():
    """Return the devices registered with the relay, without ourselves."""
    return {"devices": _session_manager.visible_devices}


# --- Session ---

class ConnectBody(BaseModel):
    peer_id: str


class CodeBody(BaseModel):
    code: str | None = None


class DigitBody(BaseModel):
    digit: str


@router.get("/session")
async def get_session():
    session = _session_manager.session
    return {"session": session.info().model_dump(mode="json") if session else None}


@router.post("/session")
async def connect(body: ConnectBody):
    """Offer a connection to a device; the remote must enter the code."""
    try:
        info = await _session_manager.establish_connection(body.peer_id)
    except SessionBusyError as e:
        raise HTTPException(status_code=409, detail=str(e))
    except SessionStateError as e:
        raise HTTPException(status_code=400, detail=str(e))
    except JustSendError as e:
        raise HTTPException(status_code=502, detail=str(e))
    return {"session": info.model_dump(mode="json")}


@router.delete("/session")
async def leave():
    closed = await _session_manager.close_connection()
    return {"status": "closed" if closed else "idle"}


@router.post("/session/code")
async def submit_code(body: CodeBody):
    try:
        _session_manager.submit_code(body.code)
    except InvalidCodeError as e:
        raise HTTPException(status_code=400, detail=str(e))
    except SessionStateError as e:
        raise HTTPException(status_code=409, detail=str(e))
    return {"status": "submitted"}


@router.post("/session/code/digit")
async def enter_digit(body: DigitBody):
    """Type one digit of the pairing code; submit with an empty body afterwards."""
    try:
        entered = _session_manager.enter_code_digit(body.digit)
    except InvalidCodeError as e:
        raise HTTPException(status_code=400, detail=str(e))
    except SessionStateError as e:
        raise HTTPException(status_code=409, detail=str(e))
    return {"entered": entered}


@router.post("/session/code/backspace")
async def erase_digit():
    try:
        entered = _session_manager.erase_code_digit()
    except SessionStateError as e:
        raise HTTPException(status_code=409, detail=str(e))
    return {"entered": entered}


@router.post("/session/code/cancel")
async def cancel_code():
    cancelled = _session_manager.cancel_code()
    return {"status": "cancelled" if cancelled else "idle"}


# --- Transfers ---

class SendBody(BaseModel):
    file_paths: list[str]


async def _run_batch(sources: list[PathSource]) -> None:
    """Task wrapper for sending one batch."""
    try:
        await _session_manager.send_files(sources)
    except JustSendError as e:
        logger.error(f"Batch of {len(sources)} file(s) failed: {e}")


@router.post("/transfers")
async def send_files(body: SendBody):
    """Send files from absolute paths on this machine, in the given order."""
    global _batch_task

    session = _session_manager.session
    if session is None or session.state != SessionState.CONNECTED:
        raise HTTPException(status_code=409, detail="No connected session")
    if (_batch_task and not _batch_task.done()) or session.engine.is_sending:
        raise HTTPException(status_code=409, detail="Already sending")

    sources = []
    for path in body.file_paths:
        if os.path.isfile(path):
            sources.append(PathSource(path))
        else:
            logger.warning(f"Skipping invalid file path: {path}")

    if not sources:
        raise HTTPException(status_code=400, detail="No valid files selected")

    _batch_task = asyncio.create_task(_run_batch(sources))
    return {
        "files": [{"name": s.name, "size": s.size, "mime": s.mime} for s in sources],
        "message": f"Sending {len(sources)} file(s)",
    }


@router.get("/transfers")
async def get_progress():
    """Current send, batch and receive progress of the session."""
    session = _session_manager.session
    engine = session.engine if session else None

    def dump(progress):
        return progress.model_dump() if progress else None

    return {
        "sending": bool(engine and engine.is_sending),
        "send": dump(engine.send_progress if engine else None),
        "batch": dump(engine.batch_progress if engine else None),
        "receive": dump(engine.receive_progress if engine else None),
    }


# --- Received files ---

def _received_files():
    session = _session_manager.session
    if session is None or session.engine is None:
        return []
    return session.engine.received_files


@router.get("/received")
async def list_received():
    return {"files": [f.model_dump() for f in _received_files()]}


@router.get("/received/{file_id}")
async def download_received(file_id: str):
    session = _session_manager.session
    artifact = session.engine.find_received(file_id) if session and session.engine else None
    if artifact is None:
        raise HTTPException(status_code=404, detail="File not found")
    try:
        data = artifact.read()
    except ArtifactReleasedError as e:
        raise HTTPException(status_code=404, detail=str(e))
    return Response(
        content=data,
        media_type=artifact.mime,
        headers={
            "Content-Disposition": f"attachment; filename*=UTF-8''{quote(artifact.name)}",
        },
    )


# --- Settings ---

@router.get("/settings")
async def get_settings():
    return {
        "app_id": APP_ID,
        "device_name": _session_manager.local_name,
        "relay_url": _relay.url if _relay else None,
        "relay_connected": bool(_relay and _relay.connected),
    }
