from datetime import datetime, timezone
from threading import RLock
from unittest.mock import MagicMock

import psycopg2
import psycopg2.errors
import pytest
from google.api_core import exceptions as gcs_exceptions

from core.errors import InvalidInput, ObjectStoreError, ObjectStoreErrorKind, StoreError, StoreErrorKind
from storage.bootstrap import _apply_migrations, pending_migrations
from storage.interfaces import USER_TIMESTAMP_INDEX, KeyCondition
from storage.migrations import MIGRATIONS
from storage.objects import GCSObjectStore
from storage.postgres import PostgresRecordStore, translate_error


@pytest.fixture
def conn():
    connection = MagicMock()
    connection.cursor.return_value = MagicMock()
    return connection


@pytest.fixture
def store(conn):
    return PostgresRecordStore(conn, RLock(), "interactions", key_fields=("id",))


def cursor_of(conn):
    return conn.cursor.return_value


@pytest.mark.parametrize(
    "exc, kind",
    [
        (psycopg2.errors.QueryCanceled("statement timeout"), StoreErrorKind.THROTTLED),
        (psycopg2.errors.DeadlockDetected("deadlock"), StoreErrorKind.THROTTLED),
        (psycopg2.OperationalError("server closed the connection"), StoreErrorKind.THROTTLED),
        (psycopg2.errors.UniqueViolation("duplicate key"), StoreErrorKind.UNKNOWN),
    ],
)
def test_translate_error(exc, kind):
    error = translate_error(exc)
    assert error.kind is kind


async def test_get_and_put(store, conn):
    cursor_of(conn).fetchone.return_value = {"doc": {"id": "a", "content": "hi"}}

    assert await store.get({"id": "a"}) == {"id": "a", "content": "hi"}
    await store.put({"id": "b", "content": "yo"})

    params = cursor_of(conn).execute.call_args.args[1]
    assert params[0] == "b"
    assert conn.commit.call_count == 2


async def test_get_missing(store, conn):
    cursor_of(conn).fetchone.return_value = None
    assert await store.get({"id": "nope"}) is None


async def test_update_missing_row(store, conn):
    cursor_of(conn).fetchone.return_value = None
    with pytest.raises(StoreError) as info:
        await store.update({"id": "nope"}, {"status": "closed"})
    assert info.value.kind is StoreErrorKind.NOT_FOUND


async def test_driver_error_rolls_back(store, conn):
    cursor_of(conn).execute.side_effect = psycopg2.errors.LockNotAvailable("lock timeout")

    with pytest.raises(StoreError) as info:
        await store.put({"id": "a"})

    assert info.value.kind is StoreErrorKind.THROTTLED
    conn.rollback.assert_called_once()
    conn.commit.assert_not_called()
    cursor_of(conn).close.assert_called_once()


async def test_key_missing_field(store):
    with pytest.raises(InvalidInput):
        await store.put({"content": "no id"})


async def test_query_unknown_index(store):
    with pytest.raises(InvalidInput):
        await store.query("no-such-index", KeyCondition(partition="x"))


async def test_query_passes_bounds_and_filter(store, conn):
    cursor_of(conn).fetchall.return_value = [{"doc": {"id": "t1"}}]

    items = await store.query(
        USER_TIMESTAMP_INDEX.name,
        KeyCondition(partition="42", start="2024-01-01", end="2024-02-01"),
        filter={"type": "ticket"},
    )

    assert items == [{"id": "t1"}]
    params = cursor_of(conn).execute.call_args.args[1]
    assert params[:3] == ["42", "2024-01-01", "2024-02-01"]
    assert params[3].adapted == {"type": "ticket"}


async def test_scan_pages_by_key(store, conn):
    cursor_of(conn).fetchall.side_effect = [
        [{"pk": "a", "doc": {"id": "a"}}, {"pk": "b", "doc": {"id": "b"}}],
        [{"pk": "c", "doc": {"id": "c"}}],
    ]

    items = await store.scan(page_size=2)

    assert [item["id"] for item in items] == ["a", "b", "c"]
    second_params = cursor_of(conn).execute.call_args_list[1].args[1]
    assert second_params == ("b", 2)


async def test_scan_rejects_bad_page_size(store):
    with pytest.raises(InvalidInput):
        await store.scan(page_size=0)


# -- object store ------------------------------------------------------------------


@pytest.fixture
def gcs_client():
    client = MagicMock()
    bucket = client.bucket.return_value
    bucket.blob.return_value = MagicMock()
    return client


def blob_of(client):
    return client.bucket.return_value.blob.return_value


async def test_upload_returns_signed_url(gcs_client):
    blob_of(gcs_client).generate_signed_url.return_value = "https://signed"
    objects = GCSObjectStore("bucket", client=gcs_client)

    assert await objects.upload("exports/a.csv", b"x,y", content_type="text/csv") == "https://signed"
    blob_of(gcs_client).upload_from_string.assert_called_once_with(b"x,y", content_type="text/csv")
    assert blob_of(gcs_client).generate_signed_url.call_args.kwargs["version"] == "v4"


@pytest.mark.parametrize(
    "exc, kind",
    [
        (gcs_exceptions.NotFound("gone"), ObjectStoreErrorKind.NOT_FOUND),
        (gcs_exceptions.Forbidden("denied"), ObjectStoreErrorKind.ACCESS_DENIED),
        (gcs_exceptions.InternalServerError("boom"), ObjectStoreErrorKind.UNKNOWN),
    ],
)
async def test_download_errors_are_translated(gcs_client, exc, kind):
    blob_of(gcs_client).download_as_bytes.side_effect = exc
    objects = GCSObjectStore("bucket", client=gcs_client)

    with pytest.raises(ObjectStoreError) as info:
        await objects.download("backups/x.json.gz.enc")
    assert info.value.kind is kind


async def test_list(gcs_client):
    created = datetime(2024, 1, 1, tzinfo=timezone.utc)
    blob = MagicMock()
    blob.name = "backups/a.json.gz.enc"
    blob.size = 10
    blob.time_created = created
    gcs_client.list_blobs.return_value = iter([blob])
    objects = GCSObjectStore("bucket", client=gcs_client)

    [info] = await objects.list("backups/")

    assert (info.name, info.size, info.created_at) == ("backups/a.json.gz.enc", 10, created)
    assert gcs_client.list_blobs.call_args.kwargs["prefix"] == "backups/"


# -- migrations --------------------------------------------------------------------


def test_pending_migrations_skips_applied():
    versions = [version for version, _ in MIGRATIONS]
    assert [v for v, _ in pending_migrations(versions[:1])] == versions[1:]
    assert pending_migrations(versions) == []


def test_apply_migrations_records_each_version(conn):
    cursor_of(conn).fetchall.return_value = [(MIGRATIONS[0][0],)]

    _apply_migrations(conn)

    inserts = [
        c.args[1] for c in cursor_of(conn).execute.call_args_list if "INSERT INTO schema_migrations" in c.args[0]
    ]
    assert inserts == [(version,) for version, _ in MIGRATIONS[1:]]
    assert conn.commit.call_count == len(MIGRATIONS)


def test_failed_migration_rolls_back(conn):
    cursor_of(conn).fetchall.return_value = []
    cursor_of(conn).execute.side_effect = [None, None, psycopg2.errors.SyntaxError("bad sql")]

    with pytest.raises(psycopg2.Error):
        _apply_migrations(conn)

    conn.rollback.assert_called_once()
    assert conn.commit.call_count == 1
