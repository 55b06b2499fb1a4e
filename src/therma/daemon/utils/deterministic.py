"""Deterministic serialization and fingerprint helpers."""

import hashlib
import json
from typing import Any


def canonical_json(value: Any) -> str:
    """Serialize data into stable JSON (sorted keys, no whitespace)."""
    return json.dumps(value, sort_keys=True, separators=(",", ":"), ensure_ascii=True)


def fingerprint(*parts: str) -> str:
    """SHA-256 hex digest over one or more string parts.

    Each part is fed as ``<byte length>:<utf-8 bytes>``, so no choice of
    part contents can make two different part sequences hash alike
    (``("a:b", "c")`` and ``("a", "b:c")`` differ).
    """
    h = hashlib.sha256()
    for part in parts:
        encoded = part.encode("utf-8")
        h.update(str(len(encoded)).encode("ascii"))
        h.update(b":")
        h.update(encoded)
    return h.hexdigest()


def key_prefix(key: str, length: int = 12) -> str:
    """Short, log-safe form of a fingerprint."""
    return key[:length]
