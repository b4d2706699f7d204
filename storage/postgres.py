from __future__ import annotations

import asyncio
import contextlib
from threading import RLock
from typing import Any, Iterator, List, Mapping, Sequence

import psycopg2
import psycopg2.errors
import psycopg2.extras
from psycopg2 import sql
from psycopg2.extensions import connection as Connection

from core.errors import InvalidInput, StoreError, StoreErrorKind
from utils.logger import get_logger

from .interfaces import INDEXES, Item, Key, KeyCondition, RecordStore

LOGGER = get_logger(__name__)

INTERACTIONS_TABLE = "interactions"
BACKUPS_TABLE = "backups"

_THROTTLING_ERRORS: tuple[type[Exception], ...] = (
    psycopg2.errors.QueryCanceled,
    psycopg2.errors.LockNotAvailable,
    psycopg2.errors.SerializationFailure,
    psycopg2.errors.DeadlockDetected,
    psycopg2.errors.TooManyConnections,
    psycopg2.OperationalError,
)


def translate_error(exc: psycopg2.Error) -> StoreError:
    if isinstance(exc, _THROTTLING_ERRORS):
        kind = StoreErrorKind.THROTTLED
    else:
        kind = StoreErrorKind.UNKNOWN
    return StoreError(kind, f"{type(exc).__name__}: {exc}".strip())


class Storage:
    """
    Entry point for the PostgreSQL-backed document collections.
    One connection, serialised through a shared lock.
    """

    def __init__(self, *, conn: Connection):
        self._conn = conn
        self._lock = RLock()
        self.interactions: RecordStore = PostgresRecordStore(
            conn, self._lock, INTERACTIONS_TABLE, key_fields=("id",)
        )
        self.backups: RecordStore = PostgresRecordStore(
            conn, self._lock, BACKUPS_TABLE, key_fields=("backupId",)
        )

    def close(self) -> None:
        with self._lock:
            self._conn.close()


class _PostgresRepoBase:
    def __init__(self, conn: Connection, lock: RLock):
        self._conn = conn
        self._lock = lock

    @contextlib.contextmanager
    def _cursor(self) -> Iterator[psycopg2.extras.RealDictCursor]:
        with self._lock:
            cur = self._conn.cursor(cursor_factory=psycopg2.extras.RealDictCursor)
            try:
                yield cur
                self._conn.commit()
            except psycopg2.Error as exc:
                self._conn.rollback()
                raise translate_error(exc) from exc
            except Exception:
                self._conn.rollback()
                raise
            finally:
                cur.close()


class PostgresRecordStore(_PostgresRepoBase):
    """
    Document collection: one JSONB document per primary key.

    Secondary indexes are expression indexes over document fields, so
    `query()` behaves like a partition + sort-key range lookup.
    """

    def __init__(self, conn: Connection, lock: RLock, table: str, *, key_fields: Sequence[str]):
        super().__init__(conn, lock)
        self.table = table
        self.key_fields = tuple(key_fields)
        self._table = sql.Identifier(table)

    def _pk(self, key: Key) -> str:
        try:
            return "#".join(str(key[name]) for name in self.key_fields)
        except KeyError as exc:
            raise InvalidInput(f"{self.table}: key is missing field {exc}") from exc

    # -- sync implementations, executed in a worker thread ---------------

    def _get(self, key: Key) -> Item | None:
        with self._cursor() as cur:
            cur.execute(
                sql.SQL("SELECT doc FROM {} WHERE pk = %s").format(self._table),
                (self._pk(key),),
            )
            row = cur.fetchone()
        return dict(row["doc"]) if row else None

    def _put(self, item: Item) -> None:
        pk = self._pk(item)
        with self._cursor() as cur:
            cur.execute(
                sql.SQL(
                    """
                    INSERT INTO {} (pk, doc) VALUES (%s, %s)
                    ON CONFLICT (pk) DO UPDATE SET doc = EXCLUDED.doc
                    """
                ).format(self._table),
                (pk, psycopg2.extras.Json(item)),
            )

    def _update(self, key: Key, patch: Mapping[str, Any]) -> Item:
        with self._cursor() as cur:
            cur.execute(
                sql.SQL("UPDATE {} SET doc = doc || %s WHERE pk = %s RETURNING doc").format(self._table),
                (psycopg2.extras.Json(dict(patch)), self._pk(key)),
            )
            row = cur.fetchone()
        if not row:
            raise StoreError(StoreErrorKind.NOT_FOUND, f"{self.table}: no item with key {dict(key)}")
        return dict(row["doc"])

    def _delete(self, key: Key) -> None:
        with self._cursor() as cur:
            cur.execute(
                sql.SQL("DELETE FROM {} WHERE pk = %s").format(self._table),
                (self._pk(key),),
            )

    def _query(
        self,
        index_name: str,
        condition: KeyCondition,
        filter: Mapping[str, Any] | None,
    ) -> List[Item]:
        index = INDEXES.get(index_name)
        if index is None:
            raise InvalidInput(f"Unknown index {index_name!r}")

        partition = sql.SQL("doc->>{}").format(sql.Literal(index.partition_field))
        sort = sql.SQL("doc->>{}").format(sql.Literal(index.sort_field))

        clauses = [sql.SQL("{} = %s").format(partition)]
        params: List[Any] = [condition.partition]
        if condition.start is not None:
            clauses.append(sql.SQL("{} >= %s").format(sort))
            params.append(condition.start)
        if condition.end is not None:
            clauses.append(sql.SQL("{} <= %s").format(sort))
            params.append(condition.end)
        if filter:
            clauses.append(sql.SQL("doc @> %s"))
            params.append(psycopg2.extras.Json(dict(filter)))

        statement = sql.SQL("SELECT doc FROM {} WHERE {} ORDER BY {} ASC").format(
            self._table, sql.SQL(" AND ").join(clauses), sort
        )
        with self._cursor() as cur:
            cur.execute(statement, params)
            rows = cur.fetchall()
        return [dict(row["doc"]) for row in rows]

    def _scan(self, page_size: int) -> List[Item]:
        if page_size <= 0:
            raise InvalidInput("page_size must be positive")

        items: List[Item] = []
        last_pk: str | None = None
        pages = 0
        while True:
            with self._cursor() as cur:
                if last_pk is None:
                    cur.execute(
                        sql.SQL("SELECT pk, doc FROM {} ORDER BY pk LIMIT %s").format(self._table),
                        (page_size,),
                    )
                else:
                    cur.execute(
                        sql.SQL("SELECT pk, doc FROM {} WHERE pk > %s ORDER BY pk LIMIT %s").format(
                            self._table
                        ),
                        (last_pk, page_size),
                    )
                rows = cur.fetchall()
            pages += 1
            items.extend(dict(row["doc"]) for row in rows)
            if len(rows) < page_size:
                break
            last_pk = rows[-1]["pk"]

        LOGGER.debug(f"Scanned {len(items)} items from {self.table} in {pages} page(s)")
        return items

    # -- async interface --------------------------------------------------

    async def get(self, key: Key) -> Item | None:
        return await asyncio.to_thread(self._get, key)

    async def put(self, item: Item) -> None:
        await asyncio.to_thread(self._put, item)

    async def update(self, key: Key, patch: Mapping[str, Any]) -> Item:
        return await asyncio.to_thread(self._update, key, patch)

    async def delete(self, key: Key) -> None:
        await asyncio.to_thread(self._delete, key)

    async def query(
        self,
        index_name: str,
        condition: KeyCondition,
        filter: Mapping[str, Any] | None = None,
    ) -> Sequence[Item]:
        return await asyncio.to_thread(self._query, index_name, condition, filter)

    async def scan(self, page_size: int = 1000) -> Sequence[Item]:
        return await asyncio.to_thread(self._scan, page_size)


__all__ = ["Storage", "PostgresRecordStore", "translate_error", "INTERACTIONS_TABLE", "BACKUPS_TABLE"]
