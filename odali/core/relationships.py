from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Dict, List, Optional, Tuple

from .errors import StateConflictError, self_reference
from .events import FriendAccepted, FriendRequest, FriendUpdate, ServerEvent
from .identity import Account, IdentityStore

log = logging.getLogger("odali.relationships")

Notification = Tuple[str, ServerEvent]


@dataclass
class Outcome:
    """Result of a friend-state transition.

    ``notifications`` are (username, event) pairs for the relay; the engine
    never talks to sessions itself.
    """

    ok: bool = True
    info: Optional[str] = None
    notifications: List[Notification] = field(default_factory=list)
    changed: bool = False


class RelationshipEngine:
    """Friend-request state machine over an IdentityStore.

    All methods take normalized usernames and run synchronously; callers hold
    the coordinator lock so each transition is applied in one step.
    """

    def __init__(self, identities: IdentityStore) -> None:
        self.identities = identities

    def _pair(self, from_: str, to: str) -> Tuple[Account, Account]:
        if from_ == to:
            raise self_reference(from_)
        return self.identities.require(from_), self.identities.require(to)

    # ------------------------------------------------------------------
    # Transitions
    # ------------------------------------------------------------------

    def request_friendship(self, from_: str, to: str) -> Outcome:
        requester, target = self._pair(from_, to)

        if to in requester.friends:
            return Outcome(info=f"{from_} and {to} are already friends")
        if to in requester.outgoing or to in requester.incoming:
            return Outcome(info=f"a request between {from_} and {to} is already pending")

        requester.outgoing.add(to)
        target.incoming.add(from_)
        self.identities.dirty = True
        log.info("Friend request %s -> %s", from_, to)
        return Outcome(changed=True, notifications=[(to, FriendRequest(from_=from_))])

    def accept_friendship(self, from_: str, to: str) -> Outcome:
        """``from_`` accepts the pending request that ``to`` sent."""
        acceptor, requester = self._pair(from_, to)
        if to not in acceptor.incoming:
            raise StateConflictError(f"no pending request from {to} to {from_}")

        _link(acceptor, requester)
        self.identities.dirty = True
        log.info("Friend request %s -> %s accepted", to, from_)
        return Outcome(
            changed=True,
            notifications=[
                (from_, FriendUpdate(user=to)),
                (to, FriendUpdate(user=from_)),
                (to, FriendAccepted(from_=from_)),
            ],
        )

    def decline_friendship(self, from_: str, to: str) -> Outcome:
        """``from_`` declines the pending request that ``to`` sent."""
        decliner, requester = self._pair(from_, to)
        if to not in decliner.incoming:
            raise StateConflictError(f"no pending request from {to} to {from_}")

        decliner.incoming.discard(to)
        requester.outgoing.discard(from_)
        # a crossed request in the other direction goes too
        decliner.outgoing.discard(to)
        requester.incoming.discard(from_)
        self.identities.dirty = True
        log.info("Friend request %s -> %s declined", to, from_)
        return Outcome(changed=True, notifications=[(to, FriendUpdate(user=from_))])

    def direct_add(self, from_: str, to: str) -> Outcome:
        a, b = self._pair(from_, to)
        if to in a.friends:
            return Outcome(info=f"{from_} and {to} are already friends")

        _link(a, b)
        self.identities.dirty = True
        log.info("Direct friendship %s <-> %s", from_, to)
        return Outcome(
            changed=True,
            notifications=[(from_, FriendUpdate(user=to)), (to, FriendUpdate(user=from_))],
        )

    # ------------------------------------------------------------------
    # Reads
    # ------------------------------------------------------------------

    def list_relationships(self, username: str) -> Dict[str, List[str]]:
        account = self.identities.require(username)
        return {
            "friends": sorted(account.friends),
            "incoming": sorted(account.incoming),
            "outgoing": sorted(account.outgoing),
        }

    def are_friends(self, a: str, b: str) -> bool:
        account = self.identities.get(a)
        return account is not None and b in account.friends


def _link(a: Account, b: Account) -> None:
    """Make a and b mutual friends and drop every pending edge between them."""
    a.incoming.discard(b.username)
    a.outgoing.discard(b.username)
    b.incoming.discard(a.username)
    b.outgoing.discard(a.username)
    a.friends.add(b.username)
    b.friends.add(a.username)


__all__ = ["Notification", "Outcome", "RelationshipEngine"]
