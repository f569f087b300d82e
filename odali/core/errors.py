from __future__ import annotations

from typing import Any, Dict


class OdaliError(Exception):
    """Base class for failures that are reported back to the caller.

    Every subclass carries an HTTP-ish ``status`` and a stable machine ``code``;
    both surfaces (HTTP and session) turn these into structured error replies.
    """

    status: int = 500
    code: str = "INTERNAL"

    def __init__(self, detail: str, *, code: str | None = None) -> None:
        super().__init__(detail)
        self.detail = detail
        if code is not None:
            self.code = code

    def to_payload(self) -> Dict[str, Any]:
        return {"error": self.code, "detail": self.detail}


class ValidationError(OdaliError):
    status = 400
    code = "MISSING_FIELD"


class NotFoundError(OdaliError):
    status = 404
    code = "UNKNOWN_USER"


class ConflictError(OdaliError):
    status = 409
    code = "ALREADY_EXISTS"


class AuthorizationError(OdaliError):
    status = 401
    code = "BAD_CREDENTIAL"

    def __init__(self, detail: str, *, code: str | None = None, status: int | None = None) -> None:
        super().__init__(detail, code=code)
        if status is not None:
            self.status = status


class StateConflictError(OdaliError):
    status = 400
    code = "NO_SUCH_REQUEST"


class ConfigurationError(OdaliError):
    status = 500
    code = "MISCONFIGURED"


def self_reference(username: str) -> ValidationError:
    return ValidationError(f"{username} cannot befriend themselves", code="SELF_REFERENCE")


def unknown_user(username: str) -> NotFoundError:
    return NotFoundError(f"unknown user {username}", code="UNKNOWN_USER")


def not_friends(a: str, b: str) -> AuthorizationError:
    return AuthorizationError(f"{a} and {b} are not friends", code="NOT_FRIENDS", status=403)


__all__ = [
    "OdaliError",
    "ValidationError",
    "NotFoundError",
    "ConflictError",
    "AuthorizationError",
    "StateConflictError",
    "ConfigurationError",
    "self_reference",
    "unknown_user",
    "not_friends",
]
