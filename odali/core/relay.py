from __future__ import annotations

import logging
from typing import Iterable

from websockets.exceptions import ConnectionClosed

from .events import ServerEvent, build_frame
from .presence import PresenceRegistry
from .relationships import Notification

log = logging.getLogger("odali.relay")


class EventRelay:
    """At-most-once delivery to live sessions.

    Offline targets are dropped silently; there is no queue and no retry.
    Durable state (pending requests, the message log) is the record of truth,
    events are only a nudge for whoever happens to be connected.
    """

    def __init__(self, presence: PresenceRegistry) -> None:
        self.presence = presence

    async def notify(self, username: str, event: ServerEvent) -> bool:
        session = self.presence.lookup(username)
        if session is None:
            log.debug("Dropped %s for offline user %s", event.event, username)
            return False
        try:
            await session.send(build_frame(event))
        except (ConnectionClosed, OSError):
            log.debug("Dropped %s for %s: session closing", event.event, username)
            return False
        return True

    async def notify_all(self, notifications: Iterable[Notification]) -> int:
        delivered = 0
        for username, event in notifications:
            if await self.notify(username, event):
                delivered += 1
        return delivered


__all__ = ["EventRelay"]
