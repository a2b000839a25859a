"""
Point-to-point channel contract.

A PeerChannel is the ordered, reliable byte channel a session opens to
its peer once signaling agrees. The transfer engine only uses the
methods defined here; concrete channels adapt a real transport to them.

Inbound frames are queued and handed to the frame handler by a single
pump task, so the handler never runs concurrently with itself and sees
frames in arrival order.
"""

import asyncio
import logging
from abc import ABC, abstractmethod
from typing import Any, Awaitable, Callable

logger = logging.getLogger(__name__)

Frame = str | bytes
FrameHandler = Callable[[Frame], Awaitable[None]]
CloseHandler = Callable[[], Awaitable[None]]
CandidateHandler = Callable[[dict[str, Any]], Awaitable[None]]


class PeerChannel(ABC):
    """Base class for channels; subclasses provide the transport."""

    def __init__(self) -> None:
        self._frame_handler: FrameHandler | None = None
        self._close_handlers: list[CloseHandler] = []
        self._candidate_handler: CandidateHandler | None = None
        self._inbox: asyncio.Queue[Frame] = asyncio.Queue()
        self._pump_task: asyncio.Task | None = None
        self._callback_tasks: set[asyncio.Task] = set()
        self._closed = False

    # --- Handler registration ---

    def on_frame(self, handler: FrameHandler) -> None:
        self._frame_handler = handler

    def on_close(self, handler: CloseHandler) -> None:
        self._close_handlers.append(handler)

    def on_local_candidate(self, handler: CandidateHandler) -> None:
        self._candidate_handler = handler

    @property
    def closed(self) -> bool:
        return self._closed

    # --- Helpers for subclasses ---

    def _deliver(self, frame: Frame) -> None:
        """Queue an inbound frame for the frame handler."""
        if self._closed:
            return
        self._inbox.put_nowait(frame)
        if self._pump_task is None or self._pump_task.done():
            self._pump_task = asyncio.get_running_loop().create_task(self._pump())

    async def _pump(self) -> None:
        while True:
            frame = await self._inbox.get()
            try:
                if self._frame_handler:
                    await self._frame_handler(frame)
            except Exception as e:
                logger.error(f"Frame handler error: {e}", exc_info=True)
            finally:
                self._inbox.task_done()

    def _spawn(self, coro: Awaitable[None]) -> None:
        task = asyncio.ensure_future(coro)
        self._callback_tasks.add(task)
        task.add_done_callback(self._callback_tasks.discard)

    def _emit_local_candidate(self, candidate: dict[str, Any]) -> None:
        """For adapters that trickle local candidates; WebRTCChannel embeds them in the SDP instead."""
        if self._candidate_handler and not self._closed:
            self._spawn(self._candidate_handler(candidate))

    def _mark_closed(self) -> None:
        """Record that the channel is gone and notify close handlers once."""
        if self._closed:
            return
        self._closed = True
        for handler in self._close_handlers:
            self._spawn(handler())

    async def _stop_pump(self) -> None:
        if self._pump_task:
            self._pump_task.cancel()
            try:
                await self._pump_task
            except asyncio.CancelledError:
                pass
            self._pump_task = None

    async def join_inbox(self) -> None:
        """Wait until every queued inbound frame has been handled."""
        await self._inbox.join()

    # --- Signaling ---

    @abstractmethod
    async def create_offer(self) -> str:
        """Create the data channel and return the local offer SDP."""

    @abstractmethod
    async def accept_offer(self, sdp: str) -> str:
        """Apply a remote offer and return the local answer SDP."""

    @abstractmethod
    async def accept_answer(self, sdp: str) -> None:
        """Apply the remote answer to a local offer."""

    @abstractmethod
    async def add_ice_candidate(self, candidate: dict[str, Any]) -> None:
        """Apply a remote ICE candidate (RTCIceCandidateInit shape)."""

    # --- Data ---

    @property
    @abstractmethod
    def is_open(self) -> bool:
        ...

    @abstractmethod
    async def wait_open(self, timeout: float | None = None) -> None:
        """Block until the channel can carry data; ChannelClosedError otherwise."""

    @abstractmethod
    def send_text(self, text: str) -> None:
        ...

    @abstractmethod
    def send_bytes(self, data: bytes) -> None:
        ...

    @abstractmethod
    def buffered_bytes(self) -> int:
        """Bytes handed to the channel but not yet flushed to the network."""

    @abstractmethod
    async def wait_drained(self, threshold: int) -> None:
        """Block until buffered_bytes() <= threshold; ChannelClosedError if closed."""

    @abstractmethod
    async def close(self) -> None:
        ...
