"""PHI encryption boundary and encryption service backends."""

from .cipher import PHI_ENCRYPTION_CONTEXT, EncryptionService, PHICipher
from .kms import KmsEncryptionService
from .local import LocalEncryptionService, generate_data_key

__all__ = [
    "PHI_ENCRYPTION_CONTEXT",
    "EncryptionService",
    "PHICipher",
    "KmsEncryptionService",
    "LocalEncryptionService",
    "generate_data_key",
]
