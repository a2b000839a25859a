"""WebSocket handler for real-time session and transfer events."""

import asyncio
import json
import logging

from fastapi import WebSocket

from signaling.session import SessionInfo, SessionObserver
from transfer.models import Progress, ReceivedFile

logger = logging.getLogger(__name__)


class ConnectionManager:
    """Manages WebSocket connections and broadcasts events."""

    def __init__(self) -> None:
        self._connections: list[WebSocket] = []
        self._lock = asyncio.Lock()

    async def connect(self, websocket: WebSocket) -> None:
        await websocket.accept()
        async with self._lock:
            self._connections.append(websocket)
        logger.info(f"WebSocket client connected. Total: {len(self._connections)}")

    async def disconnect(self, websocket: WebSocket) -> None:
        async with self._lock:
            if websocket in self._connections:
                self._connections.remove(websocket)
        logger.info(f"WebSocket client disconnected. Total: {len(self._connections)}")

    async def broadcast(self, event: str, data) -> None:
        """Broadcast an event to all connected WebSocket clients."""
        message = json.dumps({"event": event, "data": data})
        async with self._lock:
            dead: list[WebSocket] = []
            for ws in self._connections:
                try:
                    await ws.send_text(message)
                except Exception:
                    dead.append(ws)
            for ws in dead:
                self._connections.remove(ws)


class EventBroadcaster(SessionObserver):
    """SessionObserver that forwards every callback to WebSocket clients."""

    def __init__(self, connections: ConnectionManager) -> None:
        self._connections = connections

    async def _emit(self, event: str, data) -> None:
        try:
            await self._connections.broadcast(event, data)
        except Exception as e:
            logger.error(f"Event broadcast error: {e}")

    async def on_devices(self, devices: list[str]) -> None:
        await self._emit("devices", devices)

    async def on_code_requested(self, session: SessionInfo) -> None:
        await self._emit("code_requested", session.model_dump(mode="json"))

    async def on_verification_code(self, code: str) -> None:
        await self._emit("verification_code", {"code": code})

    async def on_connected(self, session: SessionInfo) -> None:
        await self._emit("session_connected", session.model_dump(mode="json"))

    async def on_session_closed(self, session: SessionInfo) -> None:
        await self._emit("session_closed", session.model_dump(mode="json"))

    async def on_error(self, reason: str) -> None:
        await self._emit("notification", {"type": "error", "message": reason})

    async def on_send_progress(self, progress: Progress) -> None:
        await self._emit("send_progress", progress.model_dump())

    async def on_batch_progress(self, progress: Progress) -> None:
        await self._emit("batch_progress", progress.model_dump())

    async def on_receive_progress(self, progress: Progress) -> None:
        await self._emit("receive_progress", progress.model_dump())

    async def on_file_received(self, file: ReceivedFile) -> None:
        await self._emit("file_received", file.model_dump())
        await self._emit("notification", {
            "type": "success",
            "message": f"'{file.name}' received successfully!",
        })
