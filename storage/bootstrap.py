from __future__ import annotations

from threading import RLock
from typing import Iterable, Optional

import psycopg2
from psycopg2.extensions import connection as Connection

from config.config import settings
from core.errors import StoreError
from utils.logger import get_logger

from .migrations import MIGRATIONS
from .postgres import Storage, translate_error

LOGGER = get_logger(__name__)

_storage_instance: Optional[Storage] = None
_storage_lock = RLock()

_LEDGER_DDL = "CREATE TABLE IF NOT EXISTS schema_migrations (version INTEGER PRIMARY KEY)"


def init_storage(*, database_url: Optional[str] = None) -> Storage:
    """
    Initialise the storage singleton with PostgreSQL. Ensures migrations are applied.
    """
    global _storage_instance

    if _storage_instance is not None:
        return _storage_instance

    with _storage_lock:
        if _storage_instance is not None:
            return _storage_instance

        db_url = database_url or settings.DATABASE_URL

        try:
            conn = psycopg2.connect(db_url)
            conn.autocommit = False
            _apply_migrations(conn)
        except psycopg2.Error as exc:
            raise translate_error(exc) from exc

        _storage_instance = Storage(conn=conn)
        LOGGER.info("Storage initialised")
        return _storage_instance


def close_storage() -> None:
    """Close the connection; the next init_storage() opens a fresh one."""
    global _storage_instance

    with _storage_lock:
        if _storage_instance is None:
            return
        try:
            _storage_instance.close()
        except psycopg2.Error as exc:
            LOGGER.warning(f"Failed to close storage cleanly: {exc}")
        _storage_instance = None


def pending_migrations(applied: Iterable[int]) -> list[tuple[int, str]]:
    """Migrations not yet recorded, in ascending version order."""
    done = set(applied)
    return sorted((m for m in MIGRATIONS if m[0] not in done), key=lambda m: m[0])


def _apply_migrations(conn: Connection) -> None:
    cur = conn.cursor()
    try:
        cur.execute(_LEDGER_DDL)
        cur.execute("SELECT version FROM schema_migrations")
        todo = pending_migrations(row[0] for row in cur.fetchall())
        conn.commit()
    finally:
        cur.close()

    if not todo:
        LOGGER.debug("Schema is up to date")
        return

    # Each version commits on its own so a failure leaves earlier ones recorded.
    for version, sql in todo:
        cur = conn.cursor()
        try:
            cur.execute(sql)
            cur.execute("INSERT INTO schema_migrations(version) VALUES (%s)", (version,))
            conn.commit()
        except psycopg2.Error:
            conn.rollback()
            LOGGER.error(f"Migration {version} failed; schema left at the previous version")
            raise
        finally:
            cur.close()
        LOGGER.info(f"Schema migrated to version {version}")


__all__ = ["init_storage", "close_storage", "pending_migrations", "StoreError"]
