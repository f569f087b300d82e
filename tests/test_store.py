import aiosqlite
import pytest
import pytest_asyncio

from odali.core.coordinator import Coordinator
from odali.core.store import PersistenceGateway


@pytest_asyncio.fixture
async def gateway(tmp_path, verifier):
    gw = PersistenceGateway(tmp_path / "state" / "odali.db", verifier)
    await gw.open()
    yield gw
    await gw.close()


@pytest.mark.asyncio
async def test_restore_without_saved_state_starts_empty(gateway):
    identities, messages = await gateway.restore()
    assert len(identities) == 0
    assert len(messages) == 0


@pytest.mark.asyncio
async def test_every_mutation_is_written_through(tmp_path, gateway, verifier, clock):
    coord = await Coordinator.restore(gateway, clock=lambda: clock["now"])
    await coord.register("alice", "pw1")
    await coord.register("bob", "pw2")
    await coord.request_friendship("alice", "bob")
    await coord.accept_friendship("bob", "alice")
    await coord.send_message("alice", "bob", "hi")
    await gateway.close()

    reopened = PersistenceGateway(tmp_path / "state" / "odali.db", verifier)
    await reopened.open()
    try:
        identities, messages = await reopened.restore()
    finally:
        await reopened.close()

    assert identities.get("alice").friends == {"bob"}
    assert identities.get("bob").incoming == set()
    assert identities.verify("bob", "pw2").username == "bob"
    assert [(m.sender, m.text, m.created_at) for m in messages] == [("alice", "hi", clock["now"])]


@pytest.mark.asyncio
@pytest.mark.parametrize(
    "body",
    [
        b"{broken",
        b'{"users":{"alice":{"last_read":{"bob":"yesterday"}}},"messages":[]}',
        b'{"users":{},"messages":[{"id":"x"}]}',
        b'["not", "an", "object"]',
    ],
)
async def test_unreadable_record_starts_empty(tmp_path, verifier, body):
    path = tmp_path / "odali.db"
    gw = PersistenceGateway(path, verifier)
    await gw.open()
    await gw.close()
    async with aiosqlite.connect(str(path)) as db:
        await db.execute("INSERT INTO snapshots(id, body, saved_at) VALUES(1, ?, 0)", (body,))
        await db.commit()

    gw = PersistenceGateway(path, verifier)
    await gw.open()
    try:
        identities, messages = await gw.restore()
    finally:
        await gw.close()
    assert len(identities) == 0 and len(messages) == 0


@pytest.mark.asyncio
async def test_write_failure_is_logged_not_raised(tmp_path, verifier, caplog):
    """A closed database must not fail the caller; the in-memory state stays put."""
    gw = PersistenceGateway(tmp_path / "odali.db", verifier)
    coord = Coordinator(verifier=verifier, gateway=gw)

    await coord.register("alice", "pw1")
    await gw.flush()

    assert "alice" in coord.identities
    assert "was not persisted" in caplog.text


@pytest.mark.asyncio
async def test_snapshot_clears_dirty_flags(gateway, verifier):
    coord = Coordinator(verifier=verifier, gateway=gateway)
    await coord.register("alice", "pw1")
    assert coord.identities.dirty is False
    await gateway.flush()
