"""
WebRTC data channel adapter built on aiortc.

aiortc gathers ICE candidates while setting the local description and
embeds them in the SDP, so this channel never trickles local candidates;
remote candidates trickled by browser peers are still applied.
"""

import asyncio
import logging
from typing import Any

from aiortc import (
    RTCConfiguration,
    RTCDataChannel,
    RTCIceServer,
    RTCPeerConnection,
    RTCSessionDescription,
)
from aiortc.sdp import candidate_from_sdp

from config import CHANNEL_LABEL, HIGH_WATER_MARK, STUN_URLS
from errors import ChannelClosedError
from rtc.channel import PeerChannel

logger = logging.getLogger(__name__)


def parse_candidate(candidate: dict[str, Any]):
    """
    Convert a browser RTCIceCandidateInit dict into an aiortc candidate.

    Returns None for the empty end-of-candidates marker.
    """
    line = (candidate.get("candidate") or "").strip()
    if not line:
        return None
    if line.startswith("candidate:"):
        line = line[len("candidate:"):]
    ice = candidate_from_sdp(line)
    ice.sdpMid = candidate.get("sdpMid")
    ice.sdpMLineIndex = candidate.get("sdpMLineIndex")
    if ice.sdpMid is None and ice.sdpMLineIndex is None:
        ice.sdpMLineIndex = 0
    return ice


class WebRTCChannel(PeerChannel):
    """PeerChannel over an RTCPeerConnection with one ordered data channel."""

    def __init__(self, stun_urls: list[str] | None = None) -> None:
        super().__init__()
        urls = STUN_URLS if stun_urls is None else stun_urls
        self._pc = RTCPeerConnection(
            RTCConfiguration(iceServers=[RTCIceServer(urls=url) for url in urls])
        )
        self._channel: RTCDataChannel | None = None
        self._opened = asyncio.Event()
        self._drained = asyncio.Event()
        self._gone = asyncio.Event()

        @self._pc.on("datachannel")
        def on_datachannel(channel: RTCDataChannel) -> None:
            self._attach(channel)

        @self._pc.on("connectionstatechange")
        async def on_connectionstatechange() -> None:
            state = self._pc.connectionState
            logger.debug(f"Peer connection state: {state}")
            if state in ("failed", "closed"):
                self._on_gone()

    def _attach(self, channel: RTCDataChannel) -> None:
        self._channel = channel
        channel.bufferedAmountLowThreshold = HIGH_WATER_MARK

        @channel.on("open")
        def on_open() -> None:
            logger.info("DataChannel open")
            self._opened.set()

        @channel.on("close")
        def on_close() -> None:
            logger.info("DataChannel closed")
            self._on_gone()

        @channel.on("message")
        def on_message(message: str | bytes) -> None:
            self._deliver(message)

        @channel.on("bufferedamountlow")
        def on_bufferedamountlow() -> None:
            self._drained.set()

        if channel.readyState == "open":
            self._opened.set()

    def _on_gone(self) -> None:
        self._gone.set()
        self._mark_closed()

    async def _wait_event(self, event: asyncio.Event, timeout: float | None) -> None:
        waiters = [
            asyncio.ensure_future(event.wait()),
            asyncio.ensure_future(self._gone.wait()),
        ]
        try:
            done, _ = await asyncio.wait(
                waiters, timeout=timeout, return_when=asyncio.FIRST_COMPLETED
            )
        finally:
            for waiter in waiters:
                waiter.cancel()
        if not done:
            raise ChannelClosedError("Timed out waiting for the data channel")
        if self._gone.is_set():
            raise ChannelClosedError("Data channel closed")

    # --- Signaling ---

    async def create_offer(self) -> str:
        self._attach(self._pc.createDataChannel(CHANNEL_LABEL, ordered=True))
        offer = await self._pc.createOffer()
        await self._pc.setLocalDescription(offer)
        return self._pc.localDescription.sdp

    async def accept_offer(self, sdp: str) -> str:
        await self._pc.setRemoteDescription(RTCSessionDescription(sdp=sdp, type="offer"))
        answer = await self._pc.createAnswer()
        await self._pc.setLocalDescription(answer)
        return self._pc.localDescription.sdp

    async def accept_answer(self, sdp: str) -> None:
        await self._pc.setRemoteDescription(RTCSessionDescription(sdp=sdp, type="answer"))

    async def add_ice_candidate(self, candidate: dict[str, Any]) -> None:
        ice = parse_candidate(candidate)
        if ice is not None:
            await self._pc.addIceCandidate(ice)

    # --- Data ---

    @property
    def is_open(self) -> bool:
        return (
            not self.closed
            and self._channel is not None
            and self._channel.readyState == "open"
        )

    async def wait_open(self, timeout: float | None = None) -> None:
        if self.is_open:
            return
        await self._wait_event(self._opened, timeout)

    def _require_open(self) -> RTCDataChannel:
        if not self.is_open:
            raise ChannelClosedError("Channel not open")
        return self._channel

    def send_text(self, text: str) -> None:
        self._require_open().send(text)

    def send_bytes(self, data: bytes) -> None:
        self._require_open().send(data)

    def buffered_bytes(self) -> int:
        return self._channel.bufferedAmount if self._channel else 0

    async def wait_drained(self, threshold: int) -> None:
        channel = self._require_open()
        channel.bufferedAmountLowThreshold = threshold
        while True:
            self._drained.clear()
            if self.buffered_bytes() <= threshold:
                return
            await self._wait_event(self._drained, None)

    async def close(self) -> None:
        if self._channel is not None:
            self._channel.close()
        await self._pc.close()
        self._on_gone()
        await self._stop_pump()
