import json
from datetime import timedelta

import pytest

from core import codec
from core.backup import BackupEngine, artifact_path, backup_id_for, serialize_snapshot
from core.errors import (
    BackupNotFound,
    CorruptSnapshot,
    InvalidInput,
    SnapshotTooLarge,
    StoreError,
    StoreErrorKind,
    TagMismatch,
)
from core.events import BackupFailed, BackupSucceeded, EventBus
from core.types import BackupStatus, InteractionRecord, InteractionType, Platform, to_iso

from conftest import FIXED_NOW


@pytest.fixture
def bus(collector):
    return EventBus([collector])


@pytest.fixture
def engine(records, backups, objects, key, bus):
    return BackupEngine(
        records=records,
        backups=backups,
        objects=objects,
        key=key,
        events=bus,
        page_size=2,
        clock=lambda: FIXED_NOW,
    )


async def _seed(records, count=3):
    created = []
    for i in range(count):
        record = InteractionRecord.create(
            f"user{i}",
            Platform.TELEGRAM,
            InteractionType.MESSAGE,
            {"text": f"hello {i}"} if i % 2 else f"hello {i}",
            now=FIXED_NOW - timedelta(minutes=i),
        )
        await records.put(record.to_item())
        created.append(record)
    return created


async def test_backup_and_restore_three_records(engine, records, backups, objects, collector):
    originals = await _seed(records)

    metadata = await engine.perform_backup()

    assert metadata.record_count == 3
    assert metadata.status is BackupStatus.SUCCESS
    assert metadata.size > 0
    assert metadata.backup_id == backup_id_for(FIXED_NOW)
    assert metadata.path == artifact_path(metadata.backup_id)
    assert metadata.path.startswith("backups/") and metadata.path.endswith(".json.gz.enc")
    assert metadata.size == len(objects.objects[metadata.path])
    assert records.scan_calls == [2]

    stored = await backups.get({"backupId": metadata.backup_id})
    assert stored["status"] == "success"
    assert stored["recordCount"] == 3
    assert stored["bucketName"] == "test-bucket"

    restored = await engine.restore(metadata.backup_id)
    assert sorted(restored, key=lambda r: r.id) == sorted(originals, key=lambda r: r.id)

    succeeded = collector.of_type(BackupSucceeded)
    assert succeeded == [BackupSucceeded(backup_id=metadata.backup_id, size=metadata.size, records=3)]


async def test_backup_of_empty_store(engine):
    metadata = await engine.perform_backup()
    assert metadata.record_count == 0
    assert await engine.restore(metadata.backup_id) == []


async def test_artifact_is_encrypted_gzip_json(engine, records, objects, key):
    await _seed(records, 1)
    metadata = await engine.perform_backup()

    artifact = objects.objects[metadata.path]
    assert b"hello" not in artifact
    plaintext = codec.decode(artifact, key)
    assert isinstance(json.loads(plaintext), list)


async def test_upload_failure_publishes_failed_and_writes_no_metadata(engine, records, backups, objects, collector):
    await _seed(records)
    objects.fail_upload = RuntimeError("bucket unavailable")

    with pytest.raises(RuntimeError, match="bucket unavailable"):
        await engine.perform_backup()

    assert backups.items == {}
    assert collector.of_type(BackupSucceeded) == []
    assert collector.of_type(BackupFailed) == [BackupFailed(error="bucket unavailable")]


async def test_metadata_failure_removes_uploaded_artifact(engine, records, backups, objects, collector):
    await _seed(records)
    backups.fail_put = StoreError(StoreErrorKind.THROTTLED, "slow down")

    with pytest.raises(StoreError):
        await engine.perform_backup()

    assert objects.objects == {}
    assert len(objects.deleted) == 1
    assert len(collector.of_type(BackupFailed)) == 1


async def test_snapshot_size_bound(records, backups, objects, key, bus, collector):
    await _seed(records)
    engine = BackupEngine(
        records=records, backups=backups, objects=objects, key=key, events=bus,
        max_snapshot_bytes=64, clock=lambda: FIXED_NOW,
    )
    with pytest.raises(SnapshotTooLarge):
        await engine.perform_backup()
    assert objects.objects == {}
    assert len(collector.of_type(BackupFailed)) == 1


def test_serialize_snapshot_is_json_array():
    data = serialize_snapshot([{"a": 1}, {"b": "é"}], 1024)
    assert json.loads(data) == [{"a": 1}, {"b": "é"}]
    assert serialize_snapshot([], 2) == b"[]"


async def test_restore_unknown_backup(engine):
    with pytest.raises(BackupNotFound):
        await engine.restore("backup_missing")


async def test_restore_missing_artifact(engine, records, objects):
    await _seed(records)
    metadata = await engine.perform_backup()
    del objects.objects[metadata.path]

    with pytest.raises(BackupNotFound):
        await engine.restore(metadata.backup_id)


async def test_restore_tampered_artifact(engine, records, objects):
    await _seed(records)
    metadata = await engine.perform_backup()
    artifact = bytearray(objects.objects[metadata.path])
    artifact[20] ^= 0x01
    objects.objects[metadata.path] = bytes(artifact)

    with pytest.raises(TagMismatch):
        await engine.restore(metadata.backup_id)


async def test_restore_rejects_non_list_snapshot(engine, backups, objects, key):
    path = artifact_path("backup_odd")
    objects.objects[path] = codec.encode(b'{"not": "a list"}', key)
    objects.created[path] = FIXED_NOW
    await backups.put({"backupId": "backup_odd", "timestamp": to_iso(FIXED_NOW), "path": path})

    with pytest.raises(CorruptSnapshot):
        await engine.restore("backup_odd")


async def test_restore_skips_non_interaction_documents(engine, records):
    await _seed(records, 2)
    await records.put({"id": "report_x", "type": "report", "timestamp": to_iso(FIXED_NOW), "platformStats": {}})
    metadata = await engine.perform_backup()

    assert len(await engine.restore(metadata.backup_id)) == 2
    assert len(await engine.restore_items(metadata.backup_id)) == 3


async def test_reload_writes_documents_back(engine, records):
    await _seed(records)
    metadata = await engine.perform_backup()
    records.items.clear()

    assert await engine.reload(metadata.backup_id) == 3
    assert len(records.items) == 3


async def _put_backup(backups, objects, backup_id, age_days):
    moment = FIXED_NOW - timedelta(days=age_days)
    path = artifact_path(backup_id)
    objects.objects[path] = b"artifact"
    objects.created[path] = moment
    await backups.put(
        {
            "backupId": backup_id,
            "timestamp": to_iso(moment),
            "status": "success",
            "recordCount": 1,
            "size": 8,
            "bucketName": "test-bucket",
            "path": path,
        }
    )
    return path


async def test_cleanup_retention_window(engine, backups, objects):
    await _put_backup(backups, objects, "backup_day0", 0)
    await _put_backup(backups, objects, "backup_day29", 29)
    old_path = await _put_backup(backups, objects, "backup_day31", 31)

    result = await engine.cleanup_old_backups(30)

    assert result.deleted_count == 1
    assert result.orphaned_artifacts == 0
    assert set(backups.items) == {"backup_day0", "backup_day29"}
    assert old_path not in objects.objects


async def test_cleanup_tolerates_missing_artifact(engine, backups, objects):
    path = await _put_backup(backups, objects, "backup_old", 40)
    del objects.objects[path]

    result = await engine.cleanup_old_backups(30)

    assert result.deleted_count == 1
    assert backups.items == {}


async def test_cleanup_sweeps_orphaned_artifacts(engine, backups, objects):
    await _put_backup(backups, objects, "backup_recent", 1)
    objects.objects["backups/backup_stray.json.gz.enc"] = b"x"
    objects.created["backups/backup_stray.json.gz.enc"] = FIXED_NOW - timedelta(days=45)
    objects.objects["backups/backup_fresh_stray.json.gz.enc"] = b"x"
    objects.created["backups/backup_fresh_stray.json.gz.enc"] = FIXED_NOW
    objects.objects["exports/old.csv"] = b"x"
    objects.created["exports/old.csv"] = FIXED_NOW - timedelta(days=90)

    result = await engine.cleanup_old_backups(30)

    assert result.deleted_count == 0
    assert result.orphaned_artifacts == 1
    assert "backups/backup_stray.json.gz.enc" not in objects.objects
    assert "backups/backup_fresh_stray.json.gz.enc" in objects.objects
    assert "exports/old.csv" in objects.objects


async def test_cleanup_uses_configured_default(records, backups, objects, key, bus):
    engine = BackupEngine(
        records=records, backups=backups, objects=objects, key=key, events=bus,
        retention_days=7, clock=lambda: FIXED_NOW,
    )
    await _put_backup(backups, objects, "backup_week", 8)
    assert (await engine.cleanup_old_backups()).deleted_count == 1


@pytest.mark.parametrize("bad", [-1, 1.5, "30", True])
async def test_cleanup_rejects_invalid_retention(engine, bad):
    with pytest.raises(InvalidInput):
        await engine.cleanup_old_backups(bad)


async def test_restore_with_malformed_metadata(engine, backups):
    await backups.put({"backupId": "backup_bad", "timestamp": to_iso(FIXED_NOW)})

    with pytest.raises(InvalidInput, match="Malformed backup metadata"):
        await engine.restore("backup_bad")
