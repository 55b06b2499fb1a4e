"""Shared fakes for the therma test suite."""

from datetime import datetime, timedelta, UTC

import pytest

from therma.daemon.encryption import PHI_ENCRYPTION_CONTEXT
from therma.daemon.errors import EncryptionFailed


class FakeEncryptionService:
    """Reversible stand-in for KMS that records calls and enforces the context."""

    def __init__(self, fail_on: bytes | None = None):
        self.fail_on = fail_on
        self.encrypt_calls = 0
        self.decrypt_calls = 0
        self.contexts = []

    def encrypt(self, plaintext, context):
        self.encrypt_calls += 1
        self.contexts.append(dict(context))
        if self.fail_on is not None and plaintext == self.fail_on:
            raise EncryptionFailed("Failed to encrypt PHI", details="AccessDeniedException")
        return b"ct:" + plaintext[::-1]

    def decrypt(self, ciphertext, context):
        self.decrypt_calls += 1
        self.contexts.append(dict(context))
        if dict(context) != PHI_ENCRYPTION_CONTEXT or not ciphertext.startswith(b"ct:"):
            raise EncryptionFailed("Failed to decrypt PHI", details="InvalidCiphertextException")
        return ciphertext[3:][::-1]


class MutableClock:
    def __init__(self, start: datetime):
        self.now = start

    def __call__(self) -> datetime:
        return self.now

    def advance(self, **kwargs) -> None:
        self.now = self.now + timedelta(**kwargs)


@pytest.fixture
def clock():
    return MutableClock(datetime(2024, 3, 14, 12, 0, tzinfo=UTC))


@pytest.fixture
def fake_encryption():
    return FakeEncryptionService()


@pytest.fixture
def jwt_secret():
    return "test-secret-that-is-at-least-32-characters"
