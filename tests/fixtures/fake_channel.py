"""
In-process PeerChannel implementations for tests.

LoopbackChannel pairs two ends: frames sent on one end are buffered and
delivered in order to the other by a flusher task, so buffered_bytes()
and wait_drained() behave like a real congested channel.

ScriptedChannel lets a test set the buffered byte count and the drain
signal by hand.
"""

import asyncio
from typing import Any

from errors import ChannelClosedError
from rtc.channel import Frame, PeerChannel


def frame_size(frame: Frame) -> int:
    return len(frame.encode("utf-8")) if isinstance(frame, str) else len(frame)


class LoopbackChannel(PeerChannel):
    def __init__(self) -> None:
        super().__init__()
        self.peer: "LoopbackChannel | None" = None
        self.sent: list[Frame] = []
        self.candidates: list[dict[str, Any]] = []
        self.remote_sdp: str | None = None
        self._opened = asyncio.Event()
        self._outbox: asyncio.Queue[Frame] = asyncio.Queue()
        self._flusher: asyncio.Task | None = None
        self._buffered = 0
        self._low_threshold = 0
        self._drained = asyncio.Event()

    @classmethod
    def pair(cls) -> tuple["LoopbackChannel", "LoopbackChannel"]:
        a, b = cls(), cls()
        a.peer, b.peer = b, a
        return a, b

    def open(self) -> None:
        """Open both ends."""
        self._opened.set()
        if self.peer:
            self.peer._opened.set()

    # --- Signaling ---

    async def create_offer(self) -> str:
        return "v=0 offer"

    async def accept_offer(self, sdp: str) -> str:
        self.remote_sdp = sdp
        return "v=0 answer"

    async def accept_answer(self, sdp: str) -> None:
        self.remote_sdp = sdp
        self.open()

    async def add_ice_candidate(self, candidate: dict[str, Any]) -> None:
        self.candidates.append(candidate)

    # --- Data ---

    @property
    def is_open(self) -> bool:
        return self._opened.is_set() and not self.closed

    async def wait_open(self, timeout: float | None = None) -> None:
        try:
            await asyncio.wait_for(self._opened.wait(), timeout)
        except asyncio.TimeoutError:
            raise ChannelClosedError("Timed out waiting for the data channel")
        if self.closed:
            raise ChannelClosedError("Data channel closed")

    def _send(self, frame: Frame) -> None:
        if not self.is_open:
            raise ChannelClosedError("Channel not open")
        self.sent.append(frame)
        self._buffered += frame_size(frame)
        self._outbox.put_nowait(frame)
        if self._flusher is None or self._flusher.done():
            self._flusher = asyncio.get_running_loop().create_task(self._flush())

    def send_text(self, text: str) -> None:
        self._send(text)

    def send_bytes(self, data: bytes) -> None:
        self._send(bytes(data))

    async def _flush(self) -> None:
        while True:
            frame = await self._outbox.get()
            await asyncio.sleep(0)
            self._buffered -= frame_size(frame)
            if self.peer is not None and not self.peer.closed:
                self.peer._deliver(frame)
            if self._buffered <= self._low_threshold:
                self._drained.set()
            self._outbox.task_done()

    def buffered_bytes(self) -> int:
        return self._buffered

    async def wait_drained(self, threshold: int) -> None:
        self._low_threshold = threshold
        while True:
            if self.closed:
                raise ChannelClosedError("Data channel closed")
            self._drained.clear()
            if self._buffered <= threshold:
                return
            await self._drained.wait()

    async def close(self) -> None:
        if self.closed:
            return
        self._mark_closed()
        self._drained.set()
        if self._flusher:
            self._flusher.cancel()
        await self._stop_pump()
        if self.peer is not None and not self.peer.closed:
            await self.peer.close()

    async def settle(self) -> None:
        """Wait until everything sent has been delivered and handled."""
        if not self.closed:
            await self._outbox.join()
        if self.peer is not None and not self.peer.closed:
            await self.peer.join_inbox()


class ScriptedChannel(PeerChannel):
    """Records sends; buffered level and drain signal are set by the test."""

    def __init__(self, buffered: int = 0) -> None:
        super().__init__()
        self.sent: list[Frame] = []
        self.buffered = buffered
        self.drain_waits = 0
        self._drained = asyncio.Event()
        self._open = True

    async def create_offer(self) -> str:
        return "v=0 offer"

    async def accept_offer(self, sdp: str) -> str:
        return "v=0 answer"

    async def accept_answer(self, sdp: str) -> None:
        pass

    async def add_ice_candidate(self, candidate: dict[str, Any]) -> None:
        pass

    @property
    def is_open(self) -> bool:
        return self._open and not self.closed

    async def wait_open(self, timeout: float | None = None) -> None:
        if not self.is_open:
            raise ChannelClosedError("Channel not open")

    def send_text(self, text: str) -> None:
        if not self.is_open:
            raise ChannelClosedError("Channel not open")
        self.sent.append(text)

    def send_bytes(self, data: bytes) -> None:
        if not self.is_open:
            raise ChannelClosedError("Channel not open")
        self.sent.append(bytes(data))

    def buffered_bytes(self) -> int:
        return self.buffered

    def drain(self, level: int = 0) -> None:
        self.buffered = level
        self._drained.set()

    async def wait_drained(self, threshold: int) -> None:
        self.drain_waits += 1
        while self.buffered > threshold:
            if self.closed:
                raise ChannelClosedError("Data channel closed")
            self._drained.clear()
            await self._drained.wait()
        if self.closed:
            raise ChannelClosedError("Data channel closed")

    async def close(self) -> None:
        self._open = False
        self._mark_closed()
        self._drained.set()
        await self._stop_pump()
