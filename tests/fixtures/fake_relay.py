"""Relay stand-ins for session tests."""

import asyncio

from pydantic import BaseModel

from signaling import codec
from signaling.session import SessionObserver


class RecordingRelay:
    """Collects everything a SessionManager sends to the relay."""

    def __init__(self) -> None:
        self.sent: list[BaseModel] = []
        self.fail = False

    async def send(self, message: BaseModel) -> None:
        if self.fail:
            raise ConnectionError("relay down")
        self.sent.append(message)

    def of_type(self, msg_type: str) -> list[BaseModel]:
        return [m for m in self.sent if m.type == msg_type]


class RelayHub:
    """
    Routes messages between SessionManagers by receiver name, the way
    the real relay does, delivering each one asynchronously as JSON.
    """

    def __init__(self) -> None:
        self.managers: dict = {}
        self.log: list[tuple[str, BaseModel]] = []
        self._tasks: set[asyncio.Task] = set()

    def endpoint(self, name: str) -> "HubRelay":
        return HubRelay(self, name)

    def attach(self, name: str, manager) -> None:
        self.managers[name] = manager

    def route(self, origin: str, message: BaseModel) -> None:
        self.log.append((origin, message))
        target = getattr(message, "receiver", None) or getattr(message, "to", None)
        if target == origin:
            # Responders reply in offer order (answer, close), so the peer is the sender field.
            target = getattr(message, "sender", None)
        manager = self.managers.get(target)
        if manager is None:
            return
        task = asyncio.get_running_loop().create_task(
            manager.handle_message(codec.encode(message))
        )
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)

    def sent_by(self, origin: str, msg_type: str) -> list[BaseModel]:
        return [m for o, m in self.log if o == origin and m.type == msg_type]

    async def settle(self) -> None:
        for _ in range(20):
            if self._tasks:
                await asyncio.gather(*list(self._tasks), return_exceptions=True)
            await asyncio.sleep(0)


class HubRelay:
    def __init__(self, hub: RelayHub, name: str) -> None:
        self._hub = hub
        self._name = name

    async def send(self, message: BaseModel) -> None:
        self._hub.route(self._name, message)


class RecordingObserver(SessionObserver):
    """Keeps every callback as (event, payload)."""

    def __init__(self) -> None:
        self.events: list[tuple[str, object]] = []
        self.files = []

    def named(self, event: str) -> list:
        return [payload for name, payload in self.events if name == event]

    async def on_devices(self, devices):
        self.events.append(("devices", devices))

    async def on_code_requested(self, session):
        self.events.append(("code_requested", session))

    async def on_verification_code(self, code):
        self.events.append(("verification_code", code))

    async def on_connected(self, session):
        self.events.append(("connected", session))

    async def on_session_closed(self, session):
        self.events.append(("closed", session))

    async def on_error(self, reason):
        self.events.append(("error", reason))

    async def on_send_progress(self, progress):
        self.events.append(("send_progress", progress))

    async def on_batch_progress(self, progress):
        self.events.append(("batch_progress", progress))

    async def on_receive_progress(self, progress):
        self.events.append(("receive_progress", progress))

    async def on_file_received(self, file):
        self.events.append(("file_received", file))
        self.files.append(file)
