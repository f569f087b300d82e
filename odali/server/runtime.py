from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass, field
from typing import Any, Dict, Optional

import orjson
from websockets.asyncio.server import Server, ServerConnection, serve
from websockets.exceptions import ConnectionClosed

from odali.core.coordinator import Coordinator
from odali.core.errors import AuthorizationError, OdaliError
from odali.core.events import (
    AnswerCall,
    CallUser,
    ClientEvent,
    ErrorEvent,
    Registered,
    RegisterSession,
    SendChat,
    ServerEvent,
    build_frame,
    parse_client_frame,
)
from odali.core.identity import normalize_username

log = logging.getLogger("odali.server.runtime")


@dataclass(eq=False)
class Connection:
    """One live websocket; doubles as the session handle stored in presence."""

    websocket: ServerConnection
    username: Optional[str] = None
    send_lock: asyncio.Lock = field(default_factory=asyncio.Lock)

    async def send(self, frame: Dict[str, Any]) -> None:
        text = orjson.dumps(frame).decode("utf-8")
        async with self.send_lock:
            await self.websocket.send(text)


class SessionServer:
    """Bidirectional session surface: register, chat, call signaling."""

    def __init__(self, coordinator: Coordinator, host: str = "0.0.0.0", port: int = 3001) -> None:
        self.coordinator = coordinator
        self.listen_host = host
        self.listen_port = port
        self._server: Optional[Server] = None

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    async def start(self) -> None:
        self._server = await serve(self._handle_connection, self.listen_host, self.listen_port)
        log.info("Session server listening on ws://%s:%d", self.listen_host, self.port)

    async def stop(self) -> None:
        if self._server is not None:
            self._server.close()
            await self._server.wait_closed()
            self._server = None

    @property
    def port(self) -> int:
        if self._server is None:
            return self.listen_port
        sock = next(iter(self._server.sockets))
        return sock.getsockname()[1]

    # ------------------------------------------------------------------
    # Connection handling
    # ------------------------------------------------------------------

    async def _handle_connection(self, websocket: ServerConnection) -> None:
        conn = Connection(websocket=websocket)
        log.debug("Accepted connection from %s", _fmt_remote(websocket))
        try:
            async for raw in websocket:
                try:
                    event = parse_client_frame(raw)
                except ValueError:
                    await self._send(conn, ErrorEvent(code="BAD_FRAME", detail="invalid event frame"))
                    continue
                try:
                    await self._dispatch(conn, event)
                except OdaliError as exc:
                    await self._send(conn, ErrorEvent(code=exc.code, detail=exc.detail))
        except ConnectionClosed:
            pass
        finally:
            await self._on_disconnect(conn)

    async def _dispatch(self, conn: Connection, event: ClientEvent) -> None:
        if isinstance(event, RegisterSession):
            await self._handle_register(conn, event)
            return
        if conn.username is None:
            raise AuthorizationError("send register first", code="NOT_REGISTERED")
        if self.coordinator.presence.lookup(conn.username) is not conn:
            raise AuthorizationError(
                "a newer session took over this user", code="SESSION_REPLACED", status=403
            )

        if isinstance(event, SendChat):
            self._check_sender(conn, event.from_)
            await self.coordinator.send_message(conn.username, event.to, event.text)
        elif isinstance(event, CallUser):
            self._check_sender(conn, event.from_)
            await self.coordinator.relay_call(conn.username, event.to, event.room_name)
        elif isinstance(event, AnswerCall):
            self._check_sender(conn, event.from_)
            await self.coordinator.relay_answer(
                conn.username, event.to, event.room_name, event.accepted
            )

    async def _handle_register(self, conn: Connection, event: RegisterSession) -> None:
        previous = conn.username
        username = await self.coordinator.connect_session(event.username, conn)
        if previous is not None and previous != username:
            await self.coordinator.disconnect_session(previous, conn)
        conn.username = username
        await self._send(conn, Registered(username=username))

    async def _on_disconnect(self, conn: Connection) -> None:
        if conn.username:
            await self.coordinator.disconnect_session(conn.username, conn)
            log.info("Session for %s closed", conn.username)

    @staticmethod
    def _check_sender(conn: Connection, claimed: str) -> None:
        if normalize_username(claimed, field_name="from") != conn.username:
            raise AuthorizationError(
                "from does not match the registered session", code="SENDER_MISMATCH", status=403
            )

    @staticmethod
    async def _send(conn: Connection, event: ServerEvent) -> None:
        await conn.send(build_frame(event))


def _fmt_remote(websocket: ServerConnection) -> str:
    peer = websocket.remote_address
    if isinstance(peer, tuple):
        return f"{peer[0]}:{peer[1]}"
    return str(peer)


__all__ = ["Connection", "SessionServer"]
