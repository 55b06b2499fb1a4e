"""AES-GCM encryption service for local runs without KMS.

The encryption context is bound as associated data, so ciphertext made
under one context fails authentication under another, as with KMS.
"""

from __future__ import annotations

import base64
import binascii
import os
from typing import Mapping

from cryptography.exceptions import InvalidTag
from cryptography.hazmat.primitives.ciphers.aead import AESGCM

from ..errors import EncryptionFailed
from ..utils.deterministic import canonical_json

_NONCE_BYTES = 12


def generate_data_key() -> str:
    """New base64 256-bit key suitable for ``THERMA_LOCAL_DATA_KEY``."""
    return base64.b64encode(AESGCM.generate_key(bit_length=256)).decode("ascii")


class LocalEncryptionService:
    def __init__(self, key: bytes):
        if len(key) not in (16, 24, 32):
            raise ValueError("Local data key must be 128, 192 or 256 bits")
        self._aead = AESGCM(key)

    @classmethod
    def from_env(cls, env_name: str = "THERMA_LOCAL_DATA_KEY") -> "LocalEncryptionService":
        raw = (os.getenv(env_name) or "").strip()
        if not raw:
            raise ValueError(f"{env_name} is required for the local encryption backend")
        try:
            key = base64.b64decode(raw, validate=True)
        except (binascii.Error, ValueError) as exc:
            raise ValueError(f"{env_name} must be base64") from exc
        return cls(key)

    @staticmethod
    def _aad(context: Mapping[str, str]) -> bytes:
        return canonical_json(dict(context)).encode("utf-8")

    def encrypt(self, plaintext: bytes, context: Mapping[str, str]) -> bytes:
        nonce = os.urandom(_NONCE_BYTES)
        return nonce + self._aead.encrypt(nonce, plaintext, self._aad(context))

    def decrypt(self, ciphertext: bytes, context: Mapping[str, str]) -> bytes:
        if len(ciphertext) <= _NONCE_BYTES:
            raise EncryptionFailed("Failed to decrypt PHI", details="ciphertext too short")
        nonce, body = ciphertext[:_NONCE_BYTES], ciphertext[_NONCE_BYTES:]
        try:
            return self._aead.decrypt(nonce, body, self._aad(context))
        except InvalidTag as exc:
            raise EncryptionFailed("Failed to decrypt PHI", details="authentication failed") from exc
