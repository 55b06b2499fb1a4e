"""Therma database package: connection and schema.

Re-exports public API so consumers can use:
    from .db import get_db_connection, init_db
"""

from .connection import get_db_connection, get_db_dsn, redacted_dsn
from .schema import init_db

__all__ = [
    "get_db_dsn",
    "get_db_connection",
    "redacted_dsn",
    "init_db",
]
