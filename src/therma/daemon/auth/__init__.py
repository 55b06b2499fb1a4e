"""Therma authentication package: token verification and middleware.

Re-exports public API:
    from .auth import TokenVerifier, get_user_from_token
"""

from .middleware import get_user_from_token
from .tokens import TokenVerifier

__all__ = [
    "TokenVerifier",
    "get_user_from_token",
]
