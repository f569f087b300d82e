from __future__ import annotations

import logging
from typing import Any, Dict, Optional

from fastapi import Depends, FastAPI, Header, Request
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from pydantic import BaseModel, ConfigDict, Field

from odali.core.calltoken import CallTokenIssuer
from odali.core.coordinator import Coordinator
from odali.core.errors import AuthorizationError, OdaliError, ValidationError

log = logging.getLogger("odali.server.http")


# ---------------------------------------------------------------------------
# Request bodies. Fields are optional; the coordinator reports missing values
# as 400 MISSING_FIELD.
# ---------------------------------------------------------------------------

class Credentials(BaseModel):
    username: Optional[str] = None
    password: Optional[str] = None


class FriendPair(BaseModel):
    from_: Optional[str] = Field(default=None, alias="from")
    to: Optional[str] = None

    model_config = ConfigDict(populate_by_name=True)


class OutgoingMessage(BaseModel):
    to: Optional[str] = None
    text: Optional[str] = None


class VideoTokenRequest(BaseModel):
    identity: Optional[str] = None
    room_name: Optional[str] = Field(default=None, alias="roomName")

    model_config = ConfigDict(populate_by_name=True)


def bearer_username(authorization: Optional[str] = Header(default=None)) -> str:
    """The bearer token is the username; the upstream verifier has vouched for it."""
    if not authorization:
        raise AuthorizationError("missing bearer token", code="UNAUTHENTICATED")
    scheme, _, token = authorization.partition(" ")
    if scheme.lower() != "bearer" or not token.strip():
        raise AuthorizationError("missing bearer token", code="UNAUTHENTICATED")
    return token.strip()


def create_app(coordinator: Coordinator, issuer: Optional[CallTokenIssuer] = None) -> FastAPI:
    app = FastAPI(title="Odali")
    app.state.coordinator = coordinator
    app.state.issuer = issuer or CallTokenIssuer()
    app.add_middleware(CORSMiddleware, allow_origins=["*"], allow_methods=["*"], allow_headers=["*"])

    @app.exception_handler(OdaliError)
    async def _odali_error(_request: Request, exc: OdaliError) -> JSONResponse:
        if exc.status >= 500:
            log.error("%s: %s", exc.code, exc.detail)
        return JSONResponse(exc.to_payload(), status_code=exc.status)

    @app.exception_handler(RequestValidationError)
    async def _malformed_body(_request: Request, exc: RequestValidationError) -> JSONResponse:
        log.debug("Rejected malformed request: %s", exc.errors())
        return JSONResponse({"error": "MISSING_FIELD", "detail": "malformed request body"}, status_code=400)

    # ------------------------------------------------------------------
    # Health
    # ------------------------------------------------------------------

    @app.get("/")
    @app.get("/health")
    async def health() -> Dict[str, Any]:
        return {"status": "ok"}

    # ------------------------------------------------------------------
    # Accounts
    # ------------------------------------------------------------------

    @app.post("/register")
    async def register(body: Credentials) -> Dict[str, Any]:
        username = await coordinator.register(body.username, body.password)
        return {"username": username}

    @app.post("/login")
    async def login(body: Credentials) -> Dict[str, Any]:
        username = await coordinator.login(body.username, body.password)
        return {"username": username}

    # ------------------------------------------------------------------
    # Friends
    # ------------------------------------------------------------------

    @app.get("/friends")
    async def friends(username: Optional[str] = None) -> Dict[str, Any]:
        return await coordinator.list_relationships(username)

    @app.post("/friends/request")
    async def friend_request(body: FriendPair) -> Dict[str, Any]:
        outcome = await coordinator.request_friendship(body.from_, body.to)
        reply: Dict[str, Any] = {"ok": outcome.ok}
        if outcome.info:
            reply["info"] = outcome.info
        return reply

    @app.post("/friends/accept")
    async def friend_accept(body: FriendPair) -> Dict[str, Any]:
        outcome = await coordinator.accept_friendship(body.from_, body.to)
        return {"ok": outcome.ok}

    @app.post("/friends/decline")
    async def friend_decline(body: FriendPair) -> Dict[str, Any]:
        outcome = await coordinator.decline_friendship(body.from_, body.to)
        return {"ok": outcome.ok}

    @app.post("/friends/add")
    async def friend_add(body: FriendPair) -> Dict[str, Any]:
        outcome, friends_of_from, friends_of_to = await coordinator.direct_add(body.from_, body.to)
        return {"ok": outcome.ok, "friendsOfFrom": friends_of_from, "friendsOfTo": friends_of_to}

    # ------------------------------------------------------------------
    # Messaging (bearer-authenticated)
    # ------------------------------------------------------------------

    @app.get("/contacts")
    async def contacts(user: str = Depends(bearer_username)) -> list:
        return await coordinator.contacts(user)

    @app.get("/messages/{contact_id}")
    async def conversation(contact_id: str, user: str = Depends(bearer_username)) -> list:
        found = await coordinator.conversation(user, contact_id)
        return [m.model_dump() for m in found]

    @app.post("/messages")
    async def send_message(body: OutgoingMessage, user: str = Depends(bearer_username)) -> Dict[str, Any]:
        message = await coordinator.send_message(user, body.to, body.text)
        return {"ok": True, "message": message.model_dump()}

    # ------------------------------------------------------------------
    # Call tokens
    # ------------------------------------------------------------------

    @app.api_route("/token", methods=["GET", "POST"])
    async def token(request: Request) -> Dict[str, Any]:
        body: Dict[str, Any] = {}
        if request.method == "POST" and await request.body():
            try:
                parsed = await request.json()
            except ValueError as exc:
                raise ValidationError("request body must be JSON") from exc
            if isinstance(parsed, dict):
                body = parsed
        identity = body.get("identity") or request.query_params.get("identity")
        room = body.get("room") or request.query_params.get("room")
        log.info("Token request for identity=%s room=%s", identity, room)
        return {"token": app.state.issuer.issue(identity, room)}

    @app.post("/video-token")
    async def video_token(body: VideoTokenRequest) -> Dict[str, Any]:
        return {"token": app.state.issuer.issue(body.identity, body.room_name)}

    return app


__all__ = ["create_app", "bearer_username"]
