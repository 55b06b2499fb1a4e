"""Field-level PHI encryption boundary."""

from __future__ import annotations

import base64
import binascii
from typing import Mapping, Protocol

from ..errors import EncryptionFailed
from ..utils.logging_config import StructuredLogger

logger = StructuredLogger(__name__)

# Bound to every call; decryption under any other context is refused.
PHI_ENCRYPTION_CONTEXT: dict[str, str] = {
    "Purpose": "PHI-Encryption",
    "Service": "Therma-Backend",
}


class EncryptionService(Protocol):
    """Envelope encryption service keyed by an externally provisioned key.

    Implementations raise ``EncryptionFailed`` for every failure kind
    (network, permission, key state, tampered ciphertext).
    """

    def encrypt(self, plaintext: bytes, context: Mapping[str, str]) -> bytes:
        ...

    def decrypt(self, ciphertext: bytes, context: Mapping[str, str]) -> bytes:
        ...


class PHICipher:
    """Encrypts single string fields and string arrays.

    Ciphertext is base64 text. The empty string maps to itself without a
    service call. Array variants are all-or-nothing.
    """

    def __init__(self, service: EncryptionService, context: Mapping[str, str] | None = None):
        self._service = service
        self._context = dict(context or PHI_ENCRYPTION_CONTEXT)

    def encrypt(self, plaintext: str) -> str:
        if plaintext == "":
            return ""
        blob = self._service.encrypt(plaintext.encode("utf-8"), self._context)
        return base64.b64encode(blob).decode("ascii")

    def decrypt(self, ciphertext: str) -> str:
        if ciphertext == "":
            return ""
        try:
            blob = base64.b64decode(ciphertext, validate=True)
        except (binascii.Error, ValueError) as exc:
            raise EncryptionFailed("Failed to decode ciphertext", details=str(exc)) from exc
        plaintext = self._service.decrypt(blob, self._context)
        try:
            return plaintext.decode("utf-8")
        except UnicodeDecodeError as exc:
            raise EncryptionFailed("Decrypted value is not valid UTF-8") from exc

    def encrypt_many(self, plaintexts: list[str]) -> list[str]:
        out: list[str] = []
        for i, plaintext in enumerate(plaintexts):
            try:
                out.append(self.encrypt(plaintext))
            except EncryptionFailed as exc:
                logger.error("Array encryption failed", index=i, size=len(plaintexts))
                raise EncryptionFailed(f"Failed to encrypt array element {i}", details=exc.details) from exc
        return out

    def decrypt_many(self, ciphertexts: list[str]) -> list[str]:
        out: list[str] = []
        for i, ciphertext in enumerate(ciphertexts):
            try:
                out.append(self.decrypt(ciphertext))
            except EncryptionFailed as exc:
                logger.error("Array decryption failed", index=i, size=len(ciphertexts))
                raise EncryptionFailed(f"Failed to decrypt array element {i}", details=exc.details) from exc
        return out
