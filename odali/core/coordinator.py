from __future__ import annotations

import asyncio
import contextlib
import logging
from typing import Any, Callable, Dict, List, Optional, Tuple

from .credentials import ScryptVerifier
from .errors import NotFoundError, ValidationError, not_friends
from .events import CallAnswered, ChatDelivered, IncomingCall
from .identity import CredentialVerifier, IdentityStore, normalize_username
from .messages import RETENTION_MS, Message, MessageLog, now_ms
from .presence import PresenceRegistry, SessionHandle
from .relationships import Outcome, RelationshipEngine
from .relay import EventRelay
from .store import PersistenceGateway

log = logging.getLogger("odali.coordinator")

PREVIEW_LENGTH = 80
DEFAULT_SWEEP_SECS = 3600


class Coordinator:
    """Owns every piece of shared state and serializes access to it.

    One asyncio.Lock guards the identity store, presence registry and message
    log together. Mutations run without awaiting while the lock is held, so an
    abandoned caller can never leave a half-applied transition behind. Event
    delivery and disk writes happen after the lock is released.

    Usernames are normalized here, once, at the entry of every public method.
    """

    def __init__(
        self,
        identities: Optional[IdentityStore] = None,
        messages: Optional[MessageLog] = None,
        *,
        verifier: Optional[CredentialVerifier] = None,
        gateway: Optional[PersistenceGateway] = None,
        clock: Callable[[], int] = now_ms,
        retention_ms: int = RETENTION_MS,
    ) -> None:
        self.verifier = verifier if verifier is not None else ScryptVerifier()
        self.identities = identities if identities is not None else IdentityStore(self.verifier)
        self.messages = (
            messages
            if messages is not None
            else MessageLog(self.identities, retention_ms=retention_ms)
        )
        self.relationships = RelationshipEngine(self.identities)
        self.presence = PresenceRegistry()
        self.relay = EventRelay(self.presence)
        self.gateway = gateway
        self.clock = clock
        self._lock = asyncio.Lock()
        self._sweeper: Optional[asyncio.Task] = None

    @classmethod
    async def restore(cls, gateway: PersistenceGateway, **kwargs: Any) -> "Coordinator":
        identities, messages = await gateway.restore()
        return cls(identities, messages, verifier=gateway.verifier, gateway=gateway, **kwargs)

    def _persist(self, *, force: bool = False) -> None:
        if self.gateway is None:
            return
        if force or self.identities.dirty or self.messages.dirty:
            self.gateway.snapshot(self.identities, self.messages)

    # ------------------------------------------------------------------
    # Accounts
    # ------------------------------------------------------------------

    async def register(self, username: Any, password: Any) -> str:
        username = normalize_username(username)
        password = _require_text(password, "password")
        async with self._lock:
            self.identities.register(username, password)
            self._persist()
        return username

    async def login(self, username: Any, password: Any) -> str:
        username = normalize_username(username)
        password = _require_text(password, "password")
        async with self._lock:
            self.identities.verify(username, password)
        return username

    # ------------------------------------------------------------------
    # Relationships
    # ------------------------------------------------------------------

    async def list_relationships(self, username: Any) -> Dict[str, List[str]]:
        username = normalize_username(username)
        async with self._lock:
            return self.relationships.list_relationships(username)

    async def request_friendship(self, from_: Any, to: Any) -> Outcome:
        return await self._transition(self.relationships.request_friendship, from_, to)

    async def accept_friendship(self, from_: Any, to: Any) -> Outcome:
        return await self._transition(self.relationships.accept_friendship, from_, to)

    async def decline_friendship(self, from_: Any, to: Any) -> Outcome:
        return await self._transition(self.relationships.decline_friendship, from_, to)

    async def direct_add(self, from_: Any, to: Any) -> Tuple[Outcome, List[str], List[str]]:
        a = normalize_username(from_, field_name="from")
        b = normalize_username(to, field_name="to")
        async with self._lock:
            outcome = self.relationships.direct_add(a, b)
            friends_a = sorted(self.identities.require(a).friends)
            friends_b = sorted(self.identities.require(b).friends)
            self._persist()
        await self.relay.notify_all(outcome.notifications)
        return outcome, friends_a, friends_b

    async def _transition(self, step: Callable[[str, str], Outcome], from_: Any, to: Any) -> Outcome:
        a = normalize_username(from_, field_name="from")
        b = normalize_username(to, field_name="to")
        async with self._lock:
            outcome = step(a, b)
            self._persist()
        await self.relay.notify_all(outcome.notifications)
        return outcome

    # ------------------------------------------------------------------
    # Sessions
    # ------------------------------------------------------------------

    async def connect_session(self, username: Any, handle: SessionHandle) -> str:
        username = normalize_username(username)
        async with self._lock:
            self.identities.ensure(username)
            self.presence.register_session(username, handle)
            self._persist()
        return username

    async def disconnect_session(self, username: str, handle: SessionHandle) -> bool:
        async with self._lock:
            return self.presence.unregister_if_current(username, handle)

    # ------------------------------------------------------------------
    # Messaging
    # ------------------------------------------------------------------

    async def send_message(self, sender: Any, recipient: Any, text: Any, *, now: Optional[int] = None) -> Message:
        sender = normalize_username(sender, field_name="from")
        recipient = normalize_username(recipient, field_name="to")
        async with self._lock:
            message = self.messages.append(
                sender, recipient, text, now=self.clock() if now is None else now
            )
            self._persist()
        await self.relay.notify(
            recipient, ChatDelivered(from_=sender, text=message.text, time=message.created_at)
        )
        return message

    async def conversation(self, username: Any, contact: Any) -> List[Message]:
        """Messages between two friends; reading them marks them read."""
        username = normalize_username(username)
        contact = normalize_username(contact, field_name="contact")
        async with self._lock:
            self.identities.require(username)
            if contact not in self.identities:
                raise NotFoundError(f"unknown contact {contact}", code="UNKNOWN_RECIPIENT")
            if not self.relationships.are_friends(username, contact):
                raise not_friends(username, contact)
            found = self.messages.conversation(username, contact)
            if found:
                self.identities.mark_read(username, contact, max(m.id for m in found))
                self._persist()
        return found

    async def contacts(self, username: Any) -> List[Dict[str, Any]]:
        username = normalize_username(username)
        async with self._lock:
            account = self.identities.require(username)
            entries = []
            for contact in self.messages.contacts_of(username):
                last = self.messages.last_between(username, contact)
                since = account.last_read.get(contact, 0)
                entries.append(
                    {
                        "id": contact,
                        "displayName": contact,
                        "lastMessagePreview": last.text[:PREVIEW_LENGTH] if last else None,
                        "lastMessageAt": last.created_at if last else None,
                        "unreadCount": self.messages.unread_count(username, contact, since),
                    }
                )
        entries.sort(key=lambda e: (-(e["lastMessageAt"] or 0), e["id"]))
        return entries

    async def prune(self, now: Optional[int] = None) -> int:
        async with self._lock:
            removed = self.messages.prune_expired(self.clock() if now is None else now)
            self._persist()
        return removed

    # ------------------------------------------------------------------
    # Call signaling (relay only, nothing is stored)
    # ------------------------------------------------------------------

    async def relay_call(self, from_: Any, to: Any, room_name: Any) -> bool:
        a = normalize_username(from_, field_name="from")
        b = normalize_username(to, field_name="to")
        room = _require_text(room_name, "roomName")
        return await self.relay.notify(b, IncomingCall(from_=a, room_name=room))

    async def relay_answer(self, from_: Any, to: Any, room_name: Any, accepted: bool) -> bool:
        a = normalize_username(from_, field_name="from")
        b = normalize_username(to, field_name="to")
        room = _require_text(room_name, "roomName")
        return await self.relay.notify(
            b, CallAnswered(from_=a, room_name=room, accepted=bool(accepted))
        )

    # ------------------------------------------------------------------
    # Periodic sweep
    # ------------------------------------------------------------------

    def start_sweeper(self, interval_secs: float = DEFAULT_SWEEP_SECS) -> None:
        if self._sweeper is None:
            self._sweeper = asyncio.create_task(self._sweep_loop(interval_secs), name="ttl-sweep")

    async def stop_sweeper(self) -> None:
        if self._sweeper is not None:
            self._sweeper.cancel()
            with contextlib.suppress(asyncio.CancelledError):
                await self._sweeper
            self._sweeper = None

    async def sweep_once(self) -> int:
        async with self._lock:
            removed = self.messages.prune_expired(self.clock())
            self._persist(force=True)
        return removed

    async def _sweep_loop(self, interval_secs: float) -> None:
        while True:
            await asyncio.sleep(max(1.0, interval_secs))
            try:
                await self.sweep_once()
            except Exception:
                log.exception("TTL sweep failed")

    async def close(self) -> None:
        await self.stop_sweeper()
        if self.gateway is not None:
            await self.gateway.close()


def _require_text(value: Any, field_name: str) -> str:
    if not isinstance(value, str) or not value:
        raise ValidationError(f"{field_name} is required")
    return value


__all__ = ["Coordinator"]
