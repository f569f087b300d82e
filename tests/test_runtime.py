import asyncio
import json

import pytest
import pytest_asyncio
from websockets.asyncio.client import connect

from odali.server.runtime import SessionServer


@pytest_asyncio.fixture
async def server(coordinator):
    srv = SessionServer(coordinator, "127.0.0.1", 0)
    await srv.start()
    yield srv
    await srv.stop()


def _url(server):
    return f"ws://127.0.0.1:{server.port}"


async def _send(ws, event, **data):
    await ws.send(json.dumps({"event": event, "data": data}))


async def _recv(ws):
    return json.loads(await asyncio.wait_for(ws.recv(), timeout=2))


async def _register(ws, username):
    await _send(ws, "register", username=username)
    return await _recv(ws)


async def _wait_until(predicate, timeout=2.0):
    deadline = asyncio.get_running_loop().time() + timeout
    while not predicate():
        if asyncio.get_running_loop().time() > deadline:
            raise AssertionError("condition not reached")
        await asyncio.sleep(0.01)


@pytest.mark.asyncio
async def test_register_creates_account_and_presence(server, coordinator):
    async with connect(_url(server)) as ws:
        ack = await _register(ws, " Carol")
        assert ack == {"event": "registered", "data": {"username": "carol"}}
        assert "carol" in coordinator.identities
        assert coordinator.presence.is_online("carol")
    await _wait_until(lambda: not coordinator.presence.is_online("carol"))


@pytest.mark.asyncio
async def test_events_before_register_are_rejected(server):
    async with connect(_url(server)) as ws:
        await _send(ws, "callUser", **{"from": "a", "to": "b", "roomName": "r"})
        reply = await _recv(ws)
        assert reply["event"] == "error" and reply["data"]["code"] == "NOT_REGISTERED"


@pytest.mark.asyncio
async def test_malformed_frame_keeps_connection_open(server):
    async with connect(_url(server)) as ws:
        await ws.send("{nope")
        assert (await _recv(ws))["data"]["code"] == "BAD_FRAME"
        assert (await _register(ws, "dave"))["event"] == "registered"


@pytest.mark.asyncio
async def test_chat_is_persisted_and_delivered(server, coordinator):
    await coordinator.register("alice", "pw1")
    await coordinator.register("bob", "pw2")
    await coordinator.direct_add("alice", "bob")

    async with connect(_url(server)) as alice, connect(_url(server)) as bob:
        await _register(alice, "alice")
        await _register(bob, "bob")
        await _send(alice, "chatMessage", **{"from": "alice", "to": "bob", "text": "hi", "time": 0})
        delivered = await _recv(bob)

    assert delivered["event"] == "chatMessage"
    assert delivered["data"]["from"] == "alice" and delivered["data"]["text"] == "hi"
    assert [m.text for m in await coordinator.conversation("bob", "alice")] == ["hi"]


@pytest.mark.asyncio
async def test_chat_to_non_friend_and_spoofed_sender(server, coordinator):
    async with connect(_url(server)) as ws:
        await _register(ws, "alice")
        await coordinator.register("bob", "pw")
        await _send(ws, "chatMessage", **{"from": "alice", "to": "bob", "text": "hi"})
        assert (await _recv(ws))["data"]["code"] == "NOT_FRIENDS"
        await _send(ws, "chatMessage", **{"from": "bob", "to": "alice", "text": "hi"})
        assert (await _recv(ws))["data"]["code"] == "SENDER_MISMATCH"


@pytest.mark.asyncio
async def test_call_and_answer_are_relayed(server):
    async with connect(_url(server)) as alice, connect(_url(server)) as bob:
        await _register(alice, "alice")
        await _register(bob, "bob")

        await _send(alice, "callUser", **{"from": "alice", "to": "bob", "roomName": "room-1"})
        assert await _recv(bob) == {"event": "incomingCall", "data": {"from": "alice", "roomName": "room-1"}}

        await _send(bob, "answerCall", **{"from": "bob", "to": "alice", "roomName": "room-1", "accepted": True})
        assert await _recv(alice) == {
            "event": "callAnswered",
            "data": {"from": "bob", "roomName": "room-1", "accepted": True},
        }


@pytest.mark.asyncio
async def test_reconnect_survives_late_disconnect(server, coordinator):
    first = await connect(_url(server))
    await _register(first, "alice")
    async with connect(_url(server)) as second:
        await _register(second, "alice")
        await first.close()
        await asyncio.sleep(0.1)
        assert coordinator.presence.is_online("alice")

        await coordinator.register("bob", "pw")
        await coordinator.request_friendship("bob", "alice")
        assert await _recv(second) == {"event": "friendRequest", "data": {"from": "bob"}}


@pytest.mark.asyncio
async def test_replaced_session_cannot_speak_for_the_user(server, coordinator):
    await coordinator.register("alice", "pw1")
    await coordinator.register("bob", "pw2")
    await coordinator.direct_add("alice", "bob")

    async with connect(_url(server)) as old, connect(_url(server)) as new:
        await _register(old, "alice")
        await _register(new, "alice")

        await _send(old, "chatMessage", **{"from": "alice", "to": "bob", "text": "stale"})
        reply = await _recv(old)
        assert reply["event"] == "error" and reply["data"]["code"] == "SESSION_REPLACED"

        await _send(old, "callUser", **{"from": "alice", "to": "bob", "roomName": "r"})
        assert (await _recv(old))["data"]["code"] == "SESSION_REPLACED"

    assert await coordinator.conversation("alice", "bob") == []
