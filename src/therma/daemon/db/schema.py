"""Schema initialization for the journal entry store."""

from ..utils.logging_config import StructuredLogger
from .connection import get_db_connection, get_db_dsn, redacted_dsn

logger = StructuredLogger(__name__)


def init_db(dsn: str | None = None):
    """Create the entries table if it does not exist."""
    dsn = dsn or get_db_dsn()
    logger.info("Initializing database", dsn=redacted_dsn(dsn))
    with get_db_connection(dsn) as conn:
        conn.execute("""
            CREATE TABLE IF NOT EXISTS journal_entries (
                id TEXT PRIMARY KEY,
                user_id TEXT NOT NULL,
                payload JSONB NOT NULL,
                encrypted BOOLEAN NOT NULL,
                created_at TIMESTAMPTZ NOT NULL DEFAULT CURRENT_TIMESTAMP
            )
        """)
        conn.execute(
            "CREATE INDEX IF NOT EXISTS idx_journal_entries_user ON journal_entries (user_id, created_at)"
        )
        conn.commit()
    logger.info("Database initialized")
