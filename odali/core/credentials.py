from __future__ import annotations

import base64
import os

from cryptography.exceptions import InvalidKey
from cryptography.hazmat.primitives.kdf.scrypt import Scrypt

_B64_PAD = {0: "", 2: "==", 3: "="}

SCHEME = "scrypt"
SALT_BYTES = 16
KEY_BYTES = 32


def b64url(data: bytes) -> str:
    return base64.urlsafe_b64encode(data).rstrip(b"=").decode("ascii")


def b64url_decode(value: str) -> bytes:
    pad = _B64_PAD[len(value) % 4]
    return base64.urlsafe_b64decode(value + pad)


class ScryptVerifier:
    """Opaque credential verifier backed by scrypt.

    Stored credentials look like ``scrypt$<salt>$<key>``; nothing outside this
    class needs to understand the format.
    """

    def __init__(self, *, n: int = 2**14, r: int = 8, p: int = 1) -> None:
        self.n = n
        self.r = r
        self.p = p

    def _kdf(self, salt: bytes) -> Scrypt:
        return Scrypt(salt=salt, length=KEY_BYTES, n=self.n, r=self.r, p=self.p)

    def hash(self, password: str) -> str:
        salt = os.urandom(SALT_BYTES)
        key = self._kdf(salt).derive(password.encode("utf-8"))
        return f"{SCHEME}${b64url(salt)}${b64url(key)}"

    def verify(self, password: str, credential: str | None) -> bool:
        if not credential:
            return False
        try:
            scheme, salt_b64, key_b64 = credential.split("$", 2)
            salt = b64url_decode(salt_b64)
            key = b64url_decode(key_b64)
        except (ValueError, KeyError):
            return False
        if scheme != SCHEME:
            return False
        try:
            self._kdf(salt).verify(password.encode("utf-8"), key)
            return True
        except InvalidKey:
            return False


__all__ = ["ScryptVerifier", "b64url", "b64url_decode"]
