from __future__ import annotations

MIGRATIONS: tuple[tuple[int, str], ...] = (
    (
        1,
        """
        -- interaction records, tickets and reports share one document collection
        CREATE TABLE IF NOT EXISTS interactions (
            pk TEXT PRIMARY KEY,
            doc JSONB NOT NULL,
            stored_at TIMESTAMP NOT NULL DEFAULT CURRENT_TIMESTAMP
        );
        CREATE INDEX IF NOT EXISTS idx_interactions_platform_time
            ON interactions((doc->>'platform'), (doc->>'timestamp'));
        CREATE INDEX IF NOT EXISTS idx_interactions_user_time
            ON interactions((doc->>'userId'), (doc->>'timestamp'));

        CREATE TABLE IF NOT EXISTS backups (
            pk TEXT PRIMARY KEY,
            doc JSONB NOT NULL,
            stored_at TIMESTAMP NOT NULL DEFAULT CURRENT_TIMESTAMP
        );
        CREATE INDEX IF NOT EXISTS idx_backups_time
            ON backups((doc->>'timestamp'));
        """,
    ),
    (
        2,
        """
        CREATE INDEX IF NOT EXISTS idx_interactions_type_time
            ON interactions((doc->>'type'), (doc->>'timestamp'));
        """,
    ),
)

__all__ = ["MIGRATIONS"]
