"""
Just Send FastAPI application entry point.

Connects to the signaling relay and starts the session manager on
startup, serves the REST API and the WebSocket event stream.
"""

import logging
from contextlib import asynccontextmanager

from fastapi import FastAPI, WebSocket, WebSocketDisconnect
from fastapi.middleware.cors import CORSMiddleware

from api.routes import init_routes, router
from api.websocket import ConnectionManager, EventBroadcaster
from config import API_HOST, API_PORT
from discovery.identity import IdentityService
from discovery.relay import RelayClient
from errors import RelayConnectionError
from rtc.webrtc import WebRTCChannel
from signaling.session import SessionManager

# --- Logging ---
logging.basicConfig(
    level=logging.INFO,
    format="%(asctime)s [%(levelname)s] %(name)s: %(message)s",
)
logger = logging.getLogger(__name__)

# --- Service singletons ---
identity = IdentityService()
ws_manager = ConnectionManager()
relay = RelayClient(
    identity.name,
    on_message=lambda raw: session_manager.handle_message(raw),
)
session_manager = SessionManager(
    relay=relay,
    identity=identity,
    channel_factory=WebRTCChannel,
    observer=EventBroadcaster(ws_manager),
)


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Start/stop background services."""
    logger.info("Starting Just Send services...")

    try:
        await relay.start()
    except RelayConnectionError as e:
        # The API stays up so the UI can report the failure.
        logger.error(f"Relay unavailable: {e}")

    logger.info(f"Just Send ready. API: {API_HOST}:{API_PORT}, name: {identity.name}")
    try:
        yield
    finally:
        logger.info("Shutting down Just Send services...")
        await session_manager.stop()
        await relay.stop()


# --- FastAPI app ---
app = FastAPI(
    title="Just Send",
    version="1.0.0",
    lifespan=lifespan,
)

app.add_middleware(
    CORSMiddleware,
    allow_origins=[
        "http://localhost:5173", "http://127.0.0.1:5173",
    ],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

# Inject services into routes
init_routes(session_manager, relay)
app.include_router(router)


@app.websocket("/ws")
async def websocket_endpoint(websocket: WebSocket):
    await ws_manager.connect(websocket)
    try:
        while True:
            # Keep the connection alive; we don't expect client messages
            await websocket.receive_text()
    except WebSocketDisconnect:
        await ws_manager.disconnect(websocket)
    except Exception:
        await ws_manager.disconnect(websocket)


def run() -> None:
    import uvicorn

    uvicorn.run(
        app,
        host=API_HOST,
        port=API_PORT,
        log_level="info",
    )


if __name__ == "__main__":
    run()
