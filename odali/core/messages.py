from __future__ import annotations

import itertools
import logging
import time
from typing import Any, Dict, Iterable, List, Optional, Set

from pydantic import BaseModel, ConfigDict

from .errors import NotFoundError, ValidationError, not_friends
from .identity import IdentityStore

log = logging.getLogger("odali.messages")

MAX_TEXT_LENGTH = 2000
RETENTION_MS = 2 * 24 * 60 * 60 * 1000


def now_ms() -> int:
    """Milliseconds since the Unix epoch."""

    return int(time.time() * 1000)


class Message(BaseModel):
    """One persisted chat message. Immutable once created."""

    id: int
    sender: str
    recipient: str
    text: str
    created_at: int

    model_config = ConfigDict(frozen=True)

    def involves(self, a: str, b: str) -> bool:
        return {self.sender, self.recipient} == {a, b}

    def peer_of(self, username: str) -> Optional[str]:
        if self.sender == username:
            return self.recipient
        if self.recipient == username:
            return self.sender
        return None


class MessageLog:
    """Append-only, TTL-pruned message store.

    Messages are kept in insertion order; ids increase monotonically, so the
    (created_at, id) sort key is stable across restarts.
    """

    def __init__(
        self,
        identities: IdentityStore,
        *,
        retention_ms: int = RETENTION_MS,
        messages: Iterable[Message] = (),
    ) -> None:
        self.identities = identities
        self.retention_ms = retention_ms
        self._messages: List[Message] = list(messages)
        # read markers hold ids, so new ids must stay above them even after a prune
        marked = (mark for account in identities for mark in account.last_read.values())
        start = max(max((m.id for m in self._messages), default=0), max(marked, default=0)) + 1
        self._ids = itertools.count(start)
        self.dirty = False

    def __len__(self) -> int:
        return len(self._messages)

    def __iter__(self):
        return iter(self._messages)

    def append(self, sender: str, recipient: str, text: str, *, now: int | None = None) -> Message:
        if not isinstance(text, str) or not text.strip():
            raise ValidationError("message text is required", code="EMPTY_TEXT")
        if recipient not in self.identities:
            raise NotFoundError(f"unknown recipient {recipient}", code="UNKNOWN_RECIPIENT")
        account = self.identities.get(sender)
        if account is None or recipient not in account.friends:
            raise not_friends(sender, recipient)

        message = Message(
            id=next(self._ids),
            sender=sender,
            recipient=recipient,
            text=text[:MAX_TEXT_LENGTH],
            created_at=now_ms() if now is None else now,
        )
        self._messages.append(message)
        self.dirty = True
        return message

    def conversation(self, a: str, b: str) -> List[Message]:
        found = [m for m in self._messages if m.involves(a, b)]
        found.sort(key=lambda m: (m.created_at, m.id))
        return found

    def last_between(self, a: str, b: str) -> Optional[Message]:
        conv = self.conversation(a, b)
        return conv[-1] if conv else None

    def unread_count(self, username: str, contact: str, since_id: int) -> int:
        return sum(
            1
            for m in self._messages
            if m.sender == contact and m.recipient == username and m.id > since_id
        )

    def contacts_of(self, username: str) -> Set[str]:
        account = self.identities.get(username)
        contacts: Set[str] = set(account.friends) if account else set()
        for m in self._messages:
            peer = m.peer_of(username)
            if peer is not None:
                contacts.add(peer)
        contacts.discard(username)
        return contacts

    def prune_expired(self, now: int | None = None) -> int:
        now = now_ms() if now is None else now
        kept = [m for m in self._messages if now - m.created_at <= self.retention_ms]
        removed = len(self._messages) - len(kept)
        if removed:
            self._messages = kept
            self.dirty = True
            log.info("Pruned %d expired message(s)", removed)
        return removed

    def to_list(self) -> List[Dict[str, Any]]:
        return [m.model_dump() for m in self._messages]

    @classmethod
    def from_list(
        cls,
        raw: Iterable[Dict[str, Any]],
        identities: IdentityStore,
        *,
        retention_ms: int = RETENTION_MS,
    ) -> "MessageLog":
        return cls(identities, retention_ms=retention_ms, messages=[Message(**m) for m in raw or []])


__all__ = ["MAX_TEXT_LENGTH", "RETENTION_MS", "Message", "MessageLog", "now_ms"]
