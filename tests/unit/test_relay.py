"""
Tests for discovery/relay.py against a local websockets server
"""
import asyncio
import json

import pytest
import websockets

from discovery.relay import RelayClient
from errors import RelayConnectionError
from signaling import codec
from signaling.messages import BucketUpdateMessage, CloseMessage


@pytest.fixture
async def relay_server():
    """A relay that records what it receives and greets with a device list."""
    received: list[dict] = []

    async def handler(ws):
        await ws.send(codec.encode(BucketUpdateMessage(devices=["alice", "bob"])))
        async for message in ws:
            received.append(json.loads(message))

    async with websockets.serve(handler, "127.0.0.1", 0) as server:
        port = server.sockets[0].getsockname()[1]
        yield f"ws://127.0.0.1:{port}", received


async def wait_for(predicate, timeout: float = 5.0) -> None:
    async def poll():
        while not predicate():
            await asyncio.sleep(0.01)
    await asyncio.wait_for(poll(), timeout)


async def test_register_and_receive(relay_server):
    url, received = relay_server
    inbound: list[str] = []

    async def on_message(raw):
        inbound.append(raw)

    client = RelayClient("alice", on_message, url=url)
    await client.start()
    assert client.connected

    await wait_for(lambda: received and inbound)
    assert received[0] == {"type": "register", "name": "alice"}
    assert isinstance(codec.decode(inbound[0]), BucketUpdateMessage)

    await client.send(CloseMessage(sender="alice", receiver="bob"))
    await wait_for(lambda: len(received) == 2)
    assert received[1] == {"type": "close", "sender": "alice", "receiver": "bob"}

    await client.stop()
    assert not client.connected


async def test_handler_errors_do_not_stop_reading(relay_server):
    url, received = relay_server
    calls = 0

    async def on_message(raw):
        nonlocal calls
        calls += 1
        raise RuntimeError("boom")

    client = RelayClient("alice", on_message, url=url)
    await client.start()
    await wait_for(lambda: calls == 1)
    assert client.connected
    await client.stop()


async def test_gives_up_after_retries(caplog):
    async def on_message(raw):
        pass

    client = RelayClient(
        "alice", on_message, url="ws://127.0.0.1:1", retry_interval=0, max_retries=2,
    )
    with pytest.raises(RelayConnectionError):
        await client.start()
    assert not client.connected
    assert "attempt 2/2" in caplog.text


async def test_send_before_start():
    async def on_message(raw):
        pass

    client = RelayClient("alice", on_message, url="ws://127.0.0.1:1")
    with pytest.raises(RelayConnectionError):
        await client.send(CloseMessage(sender="alice", receiver="bob"))
