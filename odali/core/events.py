from __future__ import annotations

from typing import Annotated, Any, Dict, Literal, Union

import orjson
from pydantic import BaseModel, ConfigDict, Field, TypeAdapter


"""
Session event variants
----------------------
Every frame on the bidirectional channel is ``{"event": <name>, "data": {...}}``.
Each event name maps to exactly one pydantic model below; frames are validated
once, here, and the rest of the code only ever sees typed objects.
"""


class _Event(BaseModel):
    model_config = ConfigDict(populate_by_name=True, frozen=True)


# ---------------------------------------------------------------------------
# Server -> client
# ---------------------------------------------------------------------------

class FriendRequest(_Event):
    event: Literal["friendRequest"] = "friendRequest"
    from_: str = Field(alias="from")


class FriendUpdate(_Event):
    event: Literal["friendUpdate"] = "friendUpdate"
    user: str


class FriendAccepted(_Event):
    event: Literal["friendAccepted"] = "friendAccepted"
    from_: str = Field(alias="from")


class ChatDelivered(_Event):
    event: Literal["chatMessage"] = "chatMessage"
    from_: str = Field(alias="from")
    text: str
    time: int


class IncomingCall(_Event):
    event: Literal["incomingCall"] = "incomingCall"
    from_: str = Field(alias="from")
    room_name: str = Field(alias="roomName")


class CallAnswered(_Event):
    event: Literal["callAnswered"] = "callAnswered"
    from_: str = Field(alias="from")
    room_name: str = Field(alias="roomName")
    accepted: bool


class Registered(_Event):
    event: Literal["registered"] = "registered"
    username: str


class ErrorEvent(_Event):
    event: Literal["error"] = "error"
    code: str
    detail: str


ServerEvent = Union[
    FriendRequest,
    FriendUpdate,
    FriendAccepted,
    ChatDelivered,
    IncomingCall,
    CallAnswered,
    Registered,
    ErrorEvent,
]


# ---------------------------------------------------------------------------
# Client -> server
# ---------------------------------------------------------------------------

class RegisterSession(_Event):
    event: Literal["register"]
    username: str


class SendChat(_Event):
    event: Literal["chatMessage"]
    from_: str = Field(alias="from")
    to: str
    text: str
    time: Any = None  # client clock, informational only


class CallUser(_Event):
    event: Literal["callUser"]
    from_: str = Field(alias="from")
    to: str
    room_name: str = Field(alias="roomName", min_length=1)


class AnswerCall(_Event):
    event: Literal["answerCall"]
    from_: str = Field(alias="from")
    to: str
    room_name: str = Field(alias="roomName", min_length=1)
    accepted: bool


ClientEvent = Annotated[
    Union[RegisterSession, SendChat, CallUser, AnswerCall],
    Field(discriminator="event"),
]

_client_events: TypeAdapter[ClientEvent] = TypeAdapter(ClientEvent)


# ---------------------------------------------------------------------------
# Frame helpers
# ---------------------------------------------------------------------------

def build_frame(event: ServerEvent) -> Dict[str, Any]:
    """Turn a server event into its wire dict."""

    return {"event": event.event, "data": event.model_dump(by_alias=True, exclude={"event"})}


def parse_client_frame(raw: str | bytes) -> ClientEvent:
    """Validate an inbound frame. Raises ValueError on anything malformed."""

    obj = orjson.loads(raw)
    if not isinstance(obj, dict):
        raise ValueError("frame must be an object")
    data = obj.get("data") or {}
    if not isinstance(data, dict):
        raise ValueError("frame data must be an object")
    return _client_events.validate_python({**data, "event": obj.get("event")})


__all__ = [
    "FriendRequest",
    "FriendUpdate",
    "FriendAccepted",
    "ChatDelivered",
    "IncomingCall",
    "CallAnswered",
    "Registered",
    "ErrorEvent",
    "ServerEvent",
    "RegisterSession",
    "SendChat",
    "CallUser",
    "AnswerCall",
    "ClientEvent",
    "build_frame",
    "parse_client_frame",
]
