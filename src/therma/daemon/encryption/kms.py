"""AWS KMS encryption service."""

from __future__ import annotations

from typing import Mapping

import boto3
from botocore.exceptions import BotoCoreError, ClientError

from ..errors import EncryptionFailed
from ..utils.logging_config import StructuredLogger

logger = StructuredLogger(__name__)


def _describe(exc: Exception) -> str:
    if isinstance(exc, ClientError):
        return str(exc.response.get("Error", {}).get("Code", "ClientError"))
    return type(exc).__name__


class KmsEncryptionService:
    def __init__(self, key_id: str, client=None, region_name: str | None = None):
        if not key_id:
            raise ValueError("KMS_KEY_ID is required for the kms encryption backend")
        self.key_id = key_id
        self._client = client or boto3.client("kms", region_name=region_name)

    def encrypt(self, plaintext: bytes, context: Mapping[str, str]) -> bytes:
        try:
            result = self._client.encrypt(
                KeyId=self.key_id,
                Plaintext=plaintext,
                EncryptionContext=dict(context),
            )
        except (ClientError, BotoCoreError) as exc:
            logger.error("KMS encrypt failed", error_code=_describe(exc))
            raise EncryptionFailed("Failed to encrypt PHI", details=_describe(exc)) from exc
        return result["CiphertextBlob"]

    def decrypt(self, ciphertext: bytes, context: Mapping[str, str]) -> bytes:
        try:
            result = self._client.decrypt(
                CiphertextBlob=ciphertext,
                EncryptionContext=dict(context),
            )
        except (ClientError, BotoCoreError) as exc:
            logger.error("KMS decrypt failed", error_code=_describe(exc))
            raise EncryptionFailed("Failed to decrypt PHI", details=_describe(exc)) from exc
        return result["Plaintext"]

    def validate_key(self) -> dict:
        """Confirm the key exists and is usable; returns its metadata."""
        try:
            result = self._client.describe_key(KeyId=self.key_id)
        except (ClientError, BotoCoreError) as exc:
            raise EncryptionFailed(f"Failed to validate KMS key {self.key_id}", details=_describe(exc)) from exc
        metadata = result.get("KeyMetadata", {})
        if not metadata.get("Enabled", False):
            raise EncryptionFailed(
                f"KMS key {self.key_id} is not enabled",
                details=str(metadata.get("KeyState", "unknown")),
            )
        return metadata

    def get_key_policy(self) -> str:
        """Key policy document, for audits."""
        try:
            result = self._client.get_key_policy(KeyId=self.key_id, PolicyName="default")
        except (ClientError, BotoCoreError) as exc:
            raise EncryptionFailed("Failed to get key policy", details=_describe(exc)) from exc
        return result["Policy"]
