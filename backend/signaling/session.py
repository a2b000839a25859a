"""
Peer session state machine.

Owns the lifecycle of a single pairing: offer, code verification,
answer, an established channel, and teardown. Relay messages come in
through handle_message(); everything the UI needs to know goes out
through a SessionObserver.

Initiator:  idle -> awaiting_answer -> connected -> closed
Responder:  idle -> awaiting_verification -> connected -> closed
Any non-idle state may end in `error` when a local step fails.
"""

import asyncio
import logging
from enum import Enum
from typing import Any, Callable, Sequence

from pydantic import BaseModel

from config import CHANNEL_OPEN_TIMEOUT
from errors import (
    PairingCancelledError,
    RelayConnectionError,
    SessionBusyError,
    SessionStateError,
    TransferBusyError,
)
from rtc.channel import PeerChannel
from signaling import codec
from signaling.messages import (
    AnswerMessage,
    AuthErrorMessage,
    BucketUpdateMessage,
    CloseMessage,
    IceCandidateMessage,
    OfferMessage,
    RegisterMessage,
    VerificationCodeMessage,
)
from signaling.pairing import PairingPrompt
from transfer.engine import TransferEngine, TransferObserver
from transfer.sources import FileSource

logger = logging.getLogger(__name__)


class SessionState(str, Enum):
    IDLE = "idle"
    AWAITING_ANSWER = "awaiting_answer"
    AWAITING_VERIFICATION = "awaiting_verification"
    CONNECTED = "connected"
    CLOSED = "closed"
    ERROR = "error"


TERMINAL_STATES = frozenset({SessionState.CLOSED, SessionState.ERROR})


class PeerRole(str, Enum):
    INITIATOR = "initiator"
    RESPONDER = "responder"


class SessionInfo(BaseModel):
    """Snapshot of a session, exposed to the frontend."""
    local_id: str
    remote_id: str
    role: PeerRole
    state: SessionState
    code: str | None = None
    display_code: str | None = None
    channel_open: bool = False
    sending: bool = False


class SessionObserver(TransferObserver):
    """Session and transfer callbacks. Every method is a no-op by default."""

    async def on_devices(self, devices: list[str]) -> None:
        pass

    async def on_code_requested(self, session: SessionInfo) -> None:
        pass

    async def on_verification_code(self, code: str) -> None:
        pass

    async def on_connected(self, session: SessionInfo) -> None:
        pass

    async def on_session_closed(self, session: SessionInfo) -> None:
        pass

    async def on_error(self, reason: str) -> None:
        pass


class PeerSession:
    """
    One pairing with one remote device.

    `sender` and `receiver` keep the names in offer order (initiator
    first) on both sides, so close messages can be matched against them
    whichever side sent them.
    """

    def __init__(self, role: PeerRole, sender: str, receiver: str) -> None:
        self.role = role
        self.sender = sender
        self.receiver = receiver
        self.state = SessionState.IDLE
        self.channel: PeerChannel | None = None
        self.engine: TransferEngine | None = None
        self.code: str | None = None
        self.display_code: str | None = None
        self.pending_candidates: list[dict[str, Any]] = []

    @property
    def local_id(self) -> str:
        return self.sender if self.role == PeerRole.INITIATOR else self.receiver

    @property
    def remote_id(self) -> str:
        return self.receiver if self.role == PeerRole.INITIATOR else self.sender

    @property
    def active(self) -> bool:
        return self.state not in TERMINAL_STATES

    def matches(self, a: str, b: str) -> bool:
        """True if the two names are this session's pair, in either order."""
        return {a, b} == {self.sender, self.receiver}

    def info(self) -> SessionInfo:
        return SessionInfo(
            local_id=self.local_id,
            remote_id=self.remote_id,
            role=self.role,
            state=self.state,
            code=self.code,
            display_code=self.display_code,
            channel_open=bool(self.channel and self.channel.is_open),
            sending=bool(self.engine and self.engine.is_sending),
        )

    def __repr__(self) -> str:
        return f"PeerSession({self.role.value}, {self.sender!r}->{self.receiver!r}, {self.state.value})"


class SessionManager:
    """
    Holds at most one active PeerSession and drives it.

    Args:
        relay: object with `async send(message)` delivering to the relay.
        identity: object with a `name` attribute, our display name.
        channel_factory: callable returning a fresh PeerChannel.
        observer: receives session and transfer callbacks.
    """

    def __init__(
        self,
        relay,
        identity,
        channel_factory: Callable[[], PeerChannel],
        observer: SessionObserver | None = None,
    ) -> None:
        self._relay = relay
        self._identity = identity
        self._channel_factory = channel_factory
        self._observer = observer or SessionObserver()
        self._pairing = PairingPrompt()
        self._session: PeerSession | None = None
        self._tasks: set[asyncio.Task] = set()
        self.devices: list[str] = []

        self._handlers = {
            "register": self._on_register,
            "bucket_update": self._on_bucket_update,
            "offer": self._on_offer,
            "answer": self._on_answer,
            "ice_candidate": self._on_ice_candidate,
            "verification_code": self._on_verification_code,
            "auth_error": self._on_auth_error,
            "close": self._on_close,
        }

    @property
    def local_name(self) -> str:
        return self._identity.name

    @property
    def session(self) -> PeerSession | None:
        """The active session, if any."""
        if self._session and self._session.active:
            return self._session
        return None

    @property
    def last_session(self) -> PeerSession | None:
        """The most recent session, active or not."""
        return self._session

    @property
    def pairing(self) -> PairingPrompt:
        return self._pairing

    @property
    def visible_devices(self) -> list[str]:
        return [d for d in self.devices if d != self.local_name]

    def _spawn(self, coro) -> asyncio.Task:
        task = asyncio.get_running_loop().create_task(coro)
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)
        return task

    async def _send(self, message: BaseModel) -> bool:
        """Send to the relay. Delivery is best effort; failures are logged."""
        try:
            await self._relay.send(message)
            return True
        except Exception as e:
            logger.error(f"Failed to send '{message.type}' to relay: {e}")
            return False

    # --- Inbound relay messages ---

    async def handle_message(self, raw) -> None:
        """Route one relay message. Malformed messages are dropped."""
        message = codec.decode(raw)
        if message is None:
            return
        await self._handlers[message.type](message)

    async def _on_register(self, message: RegisterMessage) -> None:
        logger.debug(f"Ignoring 'register' echo for {message.name}")

    async def _on_bucket_update(self, message: BucketUpdateMessage) -> None:
        self.devices = list(message.devices)
        await self._observer.on_devices(self.visible_devices)

    async def _on_offer(self, message: OfferMessage) -> None:
        local = self.local_name
        if message.receiver != local:
            logger.warning(f"Dropping offer addressed to {message.receiver!r}, we are {local!r}")
            return

        current = self.session
        if current is not None:
            if current.sender == message.sender and current.receiver == message.receiver:
                logger.debug(f"Ignoring duplicate offer from {message.sender}")
                return
            logger.warning(f"Refusing offer from {message.sender}: already paired with {current.remote_id}")
            await self._send(CloseMessage(sender=local, receiver=message.sender))
            return

        session = PeerSession(PeerRole.RESPONDER, sender=message.sender, receiver=message.receiver)
        session.state = SessionState.AWAITING_VERIFICATION
        self._session = session
        logger.info(f"Offer received from {message.sender}; waiting for pairing code")
        # The challenge can block for a long time; keep routing other messages.
        self._spawn(self._verify_and_answer(session, message))

    async def _verify_and_answer(self, session: PeerSession, offer: OfferMessage) -> None:
        await self._observer.on_code_requested(session.info())
        try:
            code = await self._pairing.challenge()
        except PairingCancelledError:
            if session.active:
                logger.info(f"Pairing with {offer.sender} cancelled")
                await self._teardown(session, notify_remote=True)
            return

        if not session.active:
            return
        session.code = code

        try:
            channel = self._open_channel(session)
            sdp = await channel.accept_offer(offer.sdp)
        except Exception as e:
            logger.error(f"Failed to answer offer from {offer.sender}: {e}")
            await self._teardown(session, notify_remote=True, final_state=SessionState.ERROR)
            return
        if not session.active:
            return

        session.state = SessionState.CONNECTED
        await self._send(AnswerMessage(
            sdp=sdp,
            code=code,
            sender=offer.sender,
            receiver=offer.receiver,
        ))
        await self._flush_candidates(session)
        logger.info(f"Answered offer from {offer.sender}")
        await self._observer.on_connected(session.info())

    async def _on_answer(self, message: AnswerMessage) -> None:
        session = self.session
        if (
            session is None
            or session.role != PeerRole.INITIATOR
            or session.state != SessionState.AWAITING_ANSWER
        ):
            logger.debug(f"Ignoring answer from {message.sender}: no offer pending")
            return
        if message.sender != session.sender or message.receiver != session.receiver:
            logger.warning(f"Ignoring answer for {message.sender}->{message.receiver}")
            return

        try:
            await session.channel.accept_answer(message.sdp)
        except Exception as e:
            logger.error(f"Failed to apply answer from {session.remote_id}: {e}")
            await self._teardown(session, notify_remote=True, final_state=SessionState.ERROR)
            return
        if not session.active:
            return

        session.code = message.code
        session.display_code = None
        session.state = SessionState.CONNECTED
        await self._flush_candidates(session)
        logger.info(f"Connected to {session.remote_id}")
        await self._observer.on_connected(session.info())

    async def _on_verification_code(self, message: VerificationCodeMessage) -> None:
        session = self.session
        if session is not None:
            session.display_code = message.code
        await self._observer.on_verification_code(message.code)

    async def _on_ice_candidate(self, message: IceCandidateMessage) -> None:
        session = self.session
        if session is None:
            logger.debug("Dropping ICE candidate: no session")
            return
        if session.state != SessionState.CONNECTED or session.channel is None:
            session.pending_candidates.append(message.candidate)
            return
        await self._apply_candidate(session, message.candidate)

    async def _on_auth_error(self, message: AuthErrorMessage) -> None:
        logger.warning(f"Relay reported auth error: {message.reason}")
        await self._observer.on_error(message.reason)
        session = self.session
        if session is not None:
            # The remote issued the error, so it needs no close from us.
            await self._teardown(session, notify_remote=False)

    async def _on_close(self, message: CloseMessage) -> None:
        session = self.session
        if session is None:
            logger.debug(f"Ignoring close from {message.sender}: no active session")
            return
        if not session.matches(message.sender, message.receiver):
            logger.warning(f"Ignoring close for {message.sender}/{message.receiver}")
            return
        logger.info(f"Peer {session.remote_id} closed the session")
        await self._teardown(session, notify_remote=False)

    # --- Channel wiring ---

    def _open_channel(self, session: PeerSession) -> PeerChannel:
        channel = self._channel_factory()
        engine = TransferEngine(channel, self._observer)
        session.channel = channel
        session.engine = engine

        async def on_close() -> None:
            await self._on_channel_closed(session)

        async def on_local_candidate(candidate: dict[str, Any]) -> None:
            if session.active:
                await self._send(IceCandidateMessage(
                    candidate=candidate,
                    sender=session.local_id,
                    receiver=session.remote_id,
                    to=session.remote_id,
                ))

        channel.on_frame(engine.receive_frame)
        channel.on_close(on_close)
        channel.on_local_candidate(on_local_candidate)
        return channel

    async def _apply_candidate(self, session: PeerSession, candidate: dict[str, Any]) -> None:
        try:
            await session.channel.add_ice_candidate(candidate)
        except Exception as e:
            logger.warning(f"Failed to add ICE candidate: {e}")

    async def _flush_candidates(self, session: PeerSession) -> None:
        pending, session.pending_candidates = session.pending_candidates, []
        for candidate in pending:
            await self._apply_candidate(session, candidate)

    async def _on_channel_closed(self, session: PeerSession) -> None:
        if session.active:
            logger.warning(f"Channel to {session.remote_id} closed unexpectedly")
            await self._teardown(session, notify_remote=True)

    # --- Local operations ---

    async def establish_connection(self, remote_id: str) -> SessionInfo:
        """Offer a connection to remote_id. Raises SessionBusyError if already paired."""
        if self.session is not None:
            raise SessionBusyError(f"Already paired with {self.session.remote_id}")
        local = self.local_name
        if remote_id == local:
            raise SessionStateError("Cannot connect to ourselves")

        session = PeerSession(PeerRole.INITIATOR, sender=local, receiver=remote_id)
        self._session = session
        try:
            channel = self._open_channel(session)
            sdp = await channel.create_offer()
        except Exception as e:
            logger.error(f"Failed to create offer for {remote_id}: {e}")
            await self._teardown(session, notify_remote=False, final_state=SessionState.ERROR)
            raise
        if not session.active:
            raise SessionStateError("Session closed while creating the offer")

        session.state = SessionState.AWAITING_ANSWER
        sent = await self._send(OfferMessage(sdp=sdp, sender=local, receiver=remote_id))
        if not sent:
            await self._teardown(session, notify_remote=False, final_state=SessionState.ERROR)
            raise RelayConnectionError("Could not deliver offer to relay")
        logger.info(f"Offer sent to {remote_id}")
        return session.info()

    def submit_code(self, code: str | None = None) -> str:
        """Resolve the pending pairing challenge."""
        return self._pairing.submit(code)

    def enter_code_digit(self, digit: str) -> int:
        """Type one digit of the pairing code. Returns how many are entered."""
        return len(self._pairing.enter_digit(digit))

    def erase_code_digit(self) -> int:
        return len(self._pairing.backspace())

    def cancel_code(self) -> bool:
        """Cancel the pending pairing challenge; the remote is told to close."""
        return self._pairing.cancel()

    async def send_files(self, files: Sequence[FileSource]) -> None:
        """Send a batch over the connected session's channel."""
        session = self.session
        if session is None or session.state != SessionState.CONNECTED:
            raise SessionStateError("No connected session")
        if session.engine.is_sending:
            raise TransferBusyError("Already sending; new batch rejected")
        await session.channel.wait_open(timeout=CHANNEL_OPEN_TIMEOUT)
        await session.engine.send_files(files)

    async def close_connection(self, reverse_sender: bool = False) -> bool:
        """
        Leave the active session and tell the remote.

        The close carries the pair in offer order (initiator as sender);
        reverse_sender=True swaps them. The remote matches either order.
        Returns False if there was nothing to close.
        """
        session = self.session
        if session is None:
            return False
        await self._teardown(session, notify_remote=True, reverse_sender=reverse_sender)
        return True

    async def stop(self) -> None:
        """Close any session and cancel background tasks."""
        await self.close_connection()
        for task in list(self._tasks):
            task.cancel()
        if self._tasks:
            await asyncio.gather(*self._tasks, return_exceptions=True)

    # --- Teardown ---

    async def _teardown(
        self,
        session: PeerSession,
        notify_remote: bool,
        final_state: SessionState = SessionState.CLOSED,
        reverse_sender: bool = False,
    ) -> None:
        if not session.active:
            return
        previous = session.state
        session.state = final_state
        self._pairing.cancel()

        if session.engine is not None:
            session.engine.close()
        if session.channel is not None:
            try:
                await session.channel.close()
            except Exception as e:
                logger.warning(f"Error closing channel: {e}")

        if notify_remote and session.sender and session.receiver:
            if reverse_sender:
                sender, receiver = session.receiver, session.sender
            else:
                sender, receiver = session.sender, session.receiver
            await self._send(CloseMessage(sender=sender, receiver=receiver))

        info = session.info()
        session.sender = ""
        session.receiver = ""
        session.pending_candidates.clear()
        logger.info(
            f"Session with {info.remote_id} ended ({previous.value} -> {final_state.value})"
        )
        await self._observer.on_session_closed(info)
