from __future__ import annotations

import logging
from typing import Any, Dict, Optional, Protocol


"""
Presence registry
-----------------
Maps a normalized username to the live session currently speaking for it.

  • register_session: last writer wins; the previous handle (if any) is returned
  • unregister_if_current: guarded removal, only drops the mapping if it still
    points at the handle that is going away

The guard matters when a user reconnects before the old socket's close is
processed: the late disconnect of session A must not evict session B.
"""


log = logging.getLogger("odali.presence")


class SessionHandle(Protocol):
    async def send(self, frame: Dict[str, Any]) -> None: ...


class PresenceRegistry:
    def __init__(self) -> None:
        self._sessions: Dict[str, SessionHandle] = {}

    def register_session(self, username: str, handle: SessionHandle) -> Optional[SessionHandle]:
        previous = self._sessions.get(username)
        self._sessions[username] = handle
        if previous is not None and previous is not handle:
            log.info("Session for %s replaced by a newer connection", username)
        else:
            log.info("User %s is live", username)
        return previous

    def lookup(self, username: str) -> Optional[SessionHandle]:
        return self._sessions.get(username)

    def unregister_if_current(self, username: str, handle: SessionHandle) -> bool:
        current = self._sessions.get(username)
        if current is handle:
            del self._sessions[username]
            log.info("User %s went offline", username)
            return True
        log.debug("Ignored stale disconnect for %s", username)
        return False

    def is_online(self, username: str) -> bool:
        return username in self._sessions

    def __len__(self) -> int:
        return len(self._sessions)


__all__ = ["PresenceRegistry", "SessionHandle"]
