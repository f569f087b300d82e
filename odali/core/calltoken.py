from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Optional

from twilio.jwt.access_token import AccessToken
from twilio.jwt.access_token.grants import VideoGrant

from .errors import ConfigurationError, ValidationError

log = logging.getLogger("odali.calltoken")

DEFAULT_TTL_SECS = 3600


@dataclass(slots=True)
class CallTokenIssuer:
    """Issues short-lived video-room access tokens through the Twilio SDK.

    The token carries a single VideoGrant for the requested room.
    """

    account_sid: Optional[str] = None
    api_key_sid: Optional[str] = None
    api_key_secret: Optional[str] = None
    ttl_secs: int = DEFAULT_TTL_SECS

    @property
    def configured(self) -> bool:
        return bool(self.account_sid and self.api_key_sid and self.api_key_secret)

    def issue(self, identity: str, room: str) -> str:
        if not identity or not room:
            raise ValidationError("identity and room are required")
        if not self.configured:
            log.error("Call token requested but provider credentials are not configured")
            raise ConfigurationError("call token provider is not configured")

        token = AccessToken(
            self.account_sid,
            self.api_key_sid,
            self.api_key_secret,
            identity=identity,
            ttl=self.ttl_secs,
        )
        token.add_grant(VideoGrant(room=room))
        log.info("Issued call token for %s in room %s", identity, room)
        return token.to_jwt()


__all__ = ["CallTokenIssuer", "DEFAULT_TTL_SECS"]
