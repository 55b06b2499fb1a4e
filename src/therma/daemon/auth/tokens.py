"""HS256 bearer tokens: verification and development issuance."""

from __future__ import annotations

import base64
import binascii
import hashlib
import hmac
import json
import os
import time
from typing import Callable

from ..errors import Unauthorized

# Shorter secrets are rejected at construction
_MIN_SECRET_LEN = 32


def _b64_url_encode(data: bytes) -> str:
    return base64.urlsafe_b64encode(data).rstrip(b"=").decode("ascii")


def _b64_url_decode(data: str) -> bytes:
    padding = "=" * (-len(data) % 4)
    return base64.urlsafe_b64decode(data + padding)


def _sign(message: bytes, secret: str) -> bytes:
    return hmac.new(secret.encode("utf-8"), message, hashlib.sha256).digest()


class TokenVerifier:
    """Verifies HS256 JWTs and returns the user id claim.

    The user id is read from ``user_id`` or, failing that, ``sub``. ``exp``
    is mandatory.
    """

    def __init__(self, secret: str, clock: Callable[[], float] = time.time):
        if len(secret or "") < _MIN_SECRET_LEN:
            raise ValueError(f"JWT secret must be at least {_MIN_SECRET_LEN} characters")
        self._secret = secret
        self._clock = clock

    @classmethod
    def from_env(cls, env_name: str = "THERMA_JWT_SECRET") -> "TokenVerifier":
        return cls((os.getenv(env_name) or "").strip())

    def issue(self, user_id: str, ttl_seconds: int = 3600, **claims) -> str:
        payload = {**claims, "user_id": user_id, "sub": user_id, "exp": int(self._clock()) + ttl_seconds}
        header = {"alg": "HS256", "typ": "JWT"}
        header_b64 = _b64_url_encode(json.dumps(header, separators=(",", ":")).encode("utf-8"))
        payload_b64 = _b64_url_encode(json.dumps(payload, separators=(",", ":")).encode("utf-8"))
        signing_input = f"{header_b64}.{payload_b64}".encode("ascii")
        return f"{header_b64}.{payload_b64}.{_b64_url_encode(_sign(signing_input, self._secret))}"

    def verify(self, token: str) -> str:
        parts = (token or "").split(".")
        if len(parts) != 3:
            raise Unauthorized(details="malformed token")
        header_b64, payload_b64, signature_b64 = parts

        try:
            header = json.loads(_b64_url_decode(header_b64))
            payload = json.loads(_b64_url_decode(payload_b64))
            signature = _b64_url_decode(signature_b64)
        except (binascii.Error, ValueError) as exc:
            raise Unauthorized(details="malformed token") from exc

        if not isinstance(header, dict) or header.get("alg") != "HS256":
            raise Unauthorized(details="unsupported token algorithm")
        expected = _sign(f"{header_b64}.{payload_b64}".encode("ascii"), self._secret)
        if not hmac.compare_digest(signature, expected):
            raise Unauthorized(details="invalid signature")
        if not isinstance(payload, dict):
            raise Unauthorized(details="malformed claims")

        exp = payload.get("exp")
        if not isinstance(exp, (int, float)) or self._clock() >= exp:
            raise Unauthorized(details="token expired")

        user_id = payload.get("user_id") or payload.get("sub")
        if not isinstance(user_id, str) or not user_id.strip():
            raise Unauthorized(details="missing user id claim")
        return user_id.strip()
