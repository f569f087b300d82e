from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Any, Dict, Iterator, Optional, Protocol, Set

from .errors import (
    AuthorizationError,
    ConflictError,
    NotFoundError,
    ValidationError,
    unknown_user,
)

log = logging.getLogger("odali.identity")


class CredentialVerifier(Protocol):
    def hash(self, password: str) -> str: ...

    def verify(self, password: str, credential: str | None) -> bool: ...


def normalize_username(value: Any, *, field_name: str = "username") -> str:
    """Trim + lower-case an identity key.

    This is the only place identities are normalized; callers at the edges
    (coordinator entry points) run it once and pass the result downstream.
    """
    if not isinstance(value, str):
        raise ValidationError(f"{field_name} is required")
    key = value.strip().lower()
    if not key:
        raise ValidationError(f"{field_name} is required")
    return key


@dataclass(slots=True)
class Account:
    username: str
    credential: Optional[str] = None
    friends: Set[str] = field(default_factory=set)
    incoming: Set[str] = field(default_factory=set)
    outgoing: Set[str] = field(default_factory=set)
    last_read: Dict[str, int] = field(default_factory=dict)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "credential": self.credential,
            "friends": sorted(self.friends),
            "incoming": sorted(self.incoming),
            "outgoing": sorted(self.outgoing),
            "last_read": dict(self.last_read),
        }

    @classmethod
    def from_dict(cls, username: str, data: Dict[str, Any]) -> "Account":
        return cls(
            username=username,
            credential=data.get("credential"),
            friends=set(data.get("friends") or []),
            incoming=set(data.get("incoming") or []),
            outgoing=set(data.get("outgoing") or []),
            last_read={k: int(v) for k, v in (data.get("last_read") or {}).items()},
        )


class IdentityStore:
    """username -> Account. Keys are assumed to be normalized already."""

    def __init__(self, verifier: CredentialVerifier) -> None:
        self.verifier = verifier
        self._accounts: Dict[str, Account] = {}
        self.dirty = False

    def __contains__(self, username: str) -> bool:
        return username in self._accounts

    def __iter__(self) -> Iterator[Account]:
        return iter(self._accounts.values())

    def __len__(self) -> int:
        return len(self._accounts)

    def get(self, username: str) -> Optional[Account]:
        return self._accounts.get(username)

    def require(self, username: str) -> Account:
        account = self._accounts.get(username)
        if account is None:
            raise unknown_user(username)
        return account

    def ensure(self, username: str) -> Account:
        account = self._accounts.get(username)
        if account is None:
            account = Account(username=username)
            self._accounts[username] = account
            self.dirty = True
            log.info("Created account %s on first reference", username)
        return account

    def register(self, username: str, password: str) -> Account:
        account = self._accounts.get(username)
        # lazily created accounts (no credential yet) can be claimed once
        if account is not None and account.credential is not None:
            raise ConflictError(f"{username} already exists")
        credential = self.verifier.hash(password)
        if account is None:
            account = Account(username=username, credential=credential)
            self._accounts[username] = account
        else:
            account.credential = credential
        self.dirty = True
        log.info("Registered %s", username)
        return account

    def verify(self, username: str, password: str) -> Account:
        account = self._accounts.get(username)
        if account is None:
            raise NotFoundError(f"unknown user {username}", code="UNKNOWN_USER")
        if not self.verifier.verify(password, account.credential):
            raise AuthorizationError("bad credential")
        return account

    def mark_read(self, username: str, contact: str, message_id: int) -> None:
        account = self.require(username)
        if account.last_read.get(contact, 0) < message_id:
            account.last_read[contact] = message_id
            self.dirty = True

    def to_dict(self) -> Dict[str, Any]:
        return {name: acc.to_dict() for name, acc in sorted(self._accounts.items())}

    @classmethod
    def from_dict(cls, data: Dict[str, Any], verifier: CredentialVerifier) -> "IdentityStore":
        store = cls(verifier)
        for name, raw in (data or {}).items():
            store._accounts[name] = Account.from_dict(name, raw or {})
        return store


__all__ = ["Account", "CredentialVerifier", "IdentityStore", "normalize_username"]
