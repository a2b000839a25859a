"""
WebSocket client for the signaling relay.

The relay is how devices find each other: after we register our name it
broadcasts `bucket_update` lists of every registered device and forwards
signaling messages between them. Delivery is best effort and unordered
across message types; the session manager copes with that.
"""

import asyncio
import logging
from typing import Awaitable, Callable

import websockets
from pydantic import BaseModel
from websockets.exceptions import ConnectionClosed, WebSocketException

from config import RELAY_MAX_RETRIES, RELAY_RETRY_INTERVAL, RELAY_URL
from errors import RelayConnectionError
from signaling import codec
from signaling.messages import RegisterMessage

logger = logging.getLogger(__name__)

MessageHandler = Callable[[str], Awaitable[None]]


class RelayClient:
    """Connects to the relay, registers our name and pumps messages."""

    def __init__(
        self,
        name: str,
        on_message: MessageHandler,
        url: str = RELAY_URL,
        retry_interval: float = RELAY_RETRY_INTERVAL,
        max_retries: int = RELAY_MAX_RETRIES,
    ) -> None:
        self._name = name
        self._on_message = on_message
        self._url = url
        self._retry_interval = retry_interval
        self._max_retries = max_retries
        self._ws = None
        self._reader_task: asyncio.Task | None = None

    @property
    def url(self) -> str:
        return self._url

    @property
    def connected(self) -> bool:
        return self._ws is not None

    async def start(self) -> None:
        """Connect with bounded retries, register, and start reading."""
        last_error: Exception | None = None
        for attempt in range(1, self._max_retries + 1):
            try:
                self._ws = await websockets.connect(self._url)
                break
            except (OSError, WebSocketException, asyncio.TimeoutError) as e:
                last_error = e
                logger.warning(
                    f"Relay connection attempt {attempt}/{self._max_retries} failed: {e}"
                )
                if attempt < self._max_retries:
                    await asyncio.sleep(self._retry_interval)
        else:
            raise RelayConnectionError(
                f"Could not reach relay at {self._url}: {last_error}"
            )

        await self.send(RegisterMessage(name=self._name))
        self._reader_task = asyncio.create_task(self._read_loop())
        logger.info(f"Registered with relay {self._url} as {self._name}")

    async def send(self, message: BaseModel) -> None:
        if self._ws is None:
            raise RelayConnectionError("Relay not connected")
        try:
            await self._ws.send(codec.encode(message))
        except ConnectionClosed as e:
            raise RelayConnectionError(f"Relay connection closed: {e}") from e

    async def _read_loop(self) -> None:
        try:
            async for raw in self._ws:
                try:
                    await self._on_message(raw)
                except Exception as e:
                    logger.error(f"Relay message handler error: {e}", exc_info=True)
        except ConnectionClosed as e:
            logger.warning(f"Relay connection closed: {e}")
        finally:
            self._ws = None

    async def stop(self) -> None:
        ws = self._ws
        if self._reader_task:
            self._reader_task.cancel()
            try:
                await self._reader_task
            except asyncio.CancelledError:
                pass
            self._reader_task = None
        if ws is not None:
            await ws.close()
        self._ws = None
        logger.info("Relay client stopped")
