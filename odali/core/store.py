from __future__ import annotations

import asyncio
import logging
from pathlib import Path
from typing import Optional, Set, Tuple

import aiosqlite
import orjson
import pydantic

from .identity import CredentialVerifier, IdentityStore
from .messages import RETENTION_MS, MessageLog, now_ms

log = logging.getLogger("odali.store")

SCHEMA = """
CREATE TABLE IF NOT EXISTS snapshots(
    id       INTEGER PRIMARY KEY CHECK (id = 1),
    body     BLOB    NOT NULL,
    saved_at INTEGER NOT NULL
);
"""


class PersistenceGateway:
    """Write-through snapshots of the identity map and message log.

    The whole state is one record in a single-row SQLite table. ``snapshot``
    serializes synchronously (so the record matches the state at call time) and
    hands the write to a background task; callers never wait on disk.
    """

    def __init__(
        self,
        path: Path | str,
        verifier: CredentialVerifier,
        *,
        retention_ms: int = RETENTION_MS,
    ) -> None:
        self.path = Path(path)
        self.verifier = verifier
        self.retention_ms = retention_ms
        self._db: Optional[aiosqlite.Connection] = None
        self._write_lock = asyncio.Lock()
        self._pending: Set[asyncio.Task] = set()
        self._version = 0
        self._written = 0

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    async def open(self) -> None:
        self.path.parent.mkdir(parents=True, exist_ok=True)
        self._db = await aiosqlite.connect(str(self.path))
        await self._db.executescript(SCHEMA)
        await self._db.commit()
        log.info("Opened state database %s", self.path)

    async def close(self) -> None:
        await self.flush()
        if self._db is not None:
            await self._db.close()
            self._db = None

    async def flush(self) -> None:
        """Wait for every scheduled write to finish."""
        while self._pending:
            await asyncio.gather(*list(self._pending), return_exceptions=True)

    # ------------------------------------------------------------------
    # Snapshot / restore
    # ------------------------------------------------------------------

    @staticmethod
    def encode(identities: IdentityStore, messages: MessageLog) -> bytes:
        return orjson.dumps({"users": identities.to_dict(), "messages": messages.to_list()})

    def snapshot(self, identities: IdentityStore, messages: MessageLog) -> None:
        blob = self.encode(identities, messages)
        identities.dirty = False
        messages.dirty = False
        self._version += 1
        task = asyncio.create_task(self._write(self._version, blob), name=f"snapshot-{self._version}")
        self._pending.add(task)
        task.add_done_callback(self._pending.discard)

    async def _write(self, version: int, blob: bytes) -> None:
        async with self._write_lock:
            if version <= self._written:
                return
            try:
                if self._db is None:
                    raise RuntimeError("state database is not open")
                await self._db.execute(
                    """INSERT INTO snapshots(id, body, saved_at) VALUES(1, ?, ?)
                       ON CONFLICT(id) DO UPDATE SET body=excluded.body, saved_at=excluded.saved_at""",
                    (blob, now_ms()),
                )
                await self._db.commit()
                self._written = version
            except Exception:
                log.exception("Snapshot %d was not persisted; in-memory state stays authoritative", version)

    async def restore(self) -> Tuple[IdentityStore, MessageLog]:
        identities = IdentityStore(self.verifier)
        empty = (identities, MessageLog(identities, retention_ms=self.retention_ms))
        if self._db is None:
            raise RuntimeError("state database is not open")

        cur = await self._db.execute("SELECT body FROM snapshots WHERE id = 1")
        row = await cur.fetchone()
        await cur.close()
        if not row:
            log.info("No saved state in %s, starting empty", self.path)
            return empty

        try:
            data = orjson.loads(row[0])
            identities = IdentityStore.from_dict(data.get("users") or {}, self.verifier)
            messages = MessageLog.from_list(
                data.get("messages") or [], identities, retention_ms=self.retention_ms
            )
        except (
            orjson.JSONDecodeError,
            pydantic.ValidationError,
            AttributeError,
            TypeError,
            ValueError,
        ):
            log.exception("Saved state in %s is unreadable, starting empty", self.path)
            return empty

        log.info("Restored %d account(s) and %d message(s)", len(identities), len(messages))
        return identities, messages


__all__ = ["PersistenceGateway"]
