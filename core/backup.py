"""
Encrypted snapshot pipeline for the interaction store.

perform_backup:  scan -> serialise -> gzip + AES-256-GCM -> upload -> metadata -> event
restore:         metadata -> download -> verify + decrypt -> gunzip -> records
cleanup:         expired metadata rows + their artifacts, then orphaned artifacts
"""
from __future__ import annotations

import asyncio
import json
from datetime import datetime, timedelta
from typing import Any, Callable, Dict, List, Optional, Sequence

from core import codec
from core.errors import (
    BackupNotFound,
    CorruptSnapshot,
    InvalidInput,
    ObjectStoreError,
    ObjectStoreErrorKind,
    SnapshotTooLarge,
)
from core.events import BackupFailed, BackupSucceeded, EventBus
from core.types import (
    BackupMetadata,
    BackupStatus,
    CleanupResult,
    InteractionRecord,
    to_iso,
    utc_now,
)
from storage.interfaces import Item, ObjectStore, RecordStore
from utils.logger import get_logger

LOGGER = get_logger(__name__)

BACKUP_PREFIX = "backups/"
ARTIFACT_SUFFIX = ".json.gz.enc"
DEFAULT_MAX_SNAPSHOT_BYTES = 256 * 1024 * 1024

_RECORD_FIELDS = ("id", "userId", "platform", "type", "content", "timestamp")


def backup_id_for(moment: datetime) -> str:
    return f"backup_{moment.strftime('%Y%m%dT%H%M%S%fZ')}"


def artifact_path(backup_id: str) -> str:
    return f"{BACKUP_PREFIX}{backup_id}{ARTIFACT_SUFFIX}"


def serialize_snapshot(items: Sequence[Item], max_bytes: int) -> bytes:
    """JSON array of documents, refusing to grow past max_bytes."""
    chunks: List[bytes] = [b"["]
    size = 1
    for index, item in enumerate(items):
        chunk = json.dumps(item, separators=(",", ":"), ensure_ascii=False).encode("utf-8")
        size += len(chunk) + (1 if index else 0)
        if size + 1 > max_bytes:
            raise SnapshotTooLarge(
                f"Snapshot exceeds {max_bytes} bytes after {index} of {len(items)} records"
            )
        if index:
            chunks.append(b",")
        chunks.append(chunk)
    chunks.append(b"]")
    return b"".join(chunks)


def deserialize_snapshot(data: bytes) -> List[Item]:
    try:
        items = json.loads(data.decode("utf-8"))
    except (UnicodeDecodeError, json.JSONDecodeError) as exc:
        raise CorruptSnapshot(f"Snapshot is not valid JSON: {exc}") from exc
    if not isinstance(items, list) or not all(isinstance(item, dict) for item in items):
        raise CorruptSnapshot("Snapshot is not a list of documents")
    return items


def is_interaction_item(item: Item) -> bool:
    return all(name in item for name in _RECORD_FIELDS)


class BackupEngine:
    def __init__(
        self,
        *,
        records: RecordStore,
        backups: RecordStore,
        objects: ObjectStore,
        key: bytes,
        events: Optional[EventBus] = None,
        page_size: int = 1000,
        max_snapshot_bytes: int = DEFAULT_MAX_SNAPSHOT_BYTES,
        retention_days: int = 30,
        clock: Callable[[], datetime] = utc_now,
    ):
        self._records = records
        self._backups = backups
        self._objects = objects
        self._key = key
        self._events = events or EventBus()
        self._page_size = page_size
        self._max_snapshot_bytes = max_snapshot_bytes
        self._retention_days = retention_days
        self._clock = clock

    async def perform_backup(self) -> BackupMetadata:
        """
        Take a full encrypted snapshot of the interaction store.

        Not idempotent: every call produces a new artifact. On any failure a
        BackupFailed event is published and the error re-raised; no metadata
        row is written for failed runs.
        """
        now = self._clock()
        backup_id = backup_id_for(now)
        path = artifact_path(backup_id)

        try:
            items = await self._records.scan(page_size=self._page_size)
            snapshot = serialize_snapshot(items, self._max_snapshot_bytes)
            artifact = codec.encode(snapshot, self._key)
            url = await self._objects.upload(path, artifact)

            metadata = BackupMetadata(
                backup_id=backup_id,
                timestamp=to_iso(now),
                status=BackupStatus.SUCCESS,
                record_count=len(items),
                size=len(artifact),
                bucket_name=self._objects.bucket_name,
                path=path,
                url=url,
            )
            try:
                await self._backups.put(metadata.to_item())
            except Exception:
                await self._discard_artifact(path)
                raise
        except Exception as exc:
            LOGGER.error(f"Backup {backup_id} failed: {exc}", exc_info=True)
            await self._events.publish(BackupFailed(error=str(exc)))
            raise

        LOGGER.info(
            f"Backup {backup_id} stored: {metadata.record_count} records, "
            f"{metadata.size} bytes, crc {codec.fingerprint(artifact)}"
        )
        await self._events.publish(
            BackupSucceeded(backup_id=backup_id, size=metadata.size, records=metadata.record_count)
        )
        return metadata

    async def _discard_artifact(self, path: str) -> None:
        try:
            await self._objects.delete(path)
        except ObjectStoreError as exc:
            LOGGER.warning(f"Could not remove unreferenced artifact {path}: {exc}")

    async def restore_items(self, backup_id: str) -> List[Item]:
        """Every document in the snapshot, interactions and otherwise."""
        row = await self._backups.get({"backupId": backup_id})
        if row is None:
            raise BackupNotFound(f"No backup metadata for {backup_id}")
        metadata = BackupMetadata.from_item(row)

        try:
            artifact = await self._objects.download(metadata.path)
        except ObjectStoreError as exc:
            if exc.kind is ObjectStoreErrorKind.NOT_FOUND:
                raise BackupNotFound(f"Artifact {metadata.path} is missing") from exc
            raise

        return deserialize_snapshot(codec.decode(artifact, self._key))

    async def restore(self, backup_id: str) -> List[InteractionRecord]:
        items = await self.restore_items(backup_id)
        records = [InteractionRecord.from_item(item) for item in items if is_interaction_item(item)]
        skipped = len(items) - len(records)
        LOGGER.info(f"Restored {len(records)} records from {backup_id} (skipped {skipped} other documents)")
        return records

    async def reload(self, backup_id: str) -> int:
        """Write a snapshot back into the record store. Existing documents are overwritten."""
        items = await self.restore_items(backup_id)
        for item in items:
            await self._records.put(item)
        LOGGER.info(f"Reloaded {len(items)} documents from {backup_id}")
        return len(items)

    async def cleanup_old_backups(self, retention_days: Optional[int] = None) -> CleanupResult:
        days = self._retention_days if retention_days is None else retention_days
        if isinstance(days, bool) or not isinstance(days, int) or days < 0:
            raise InvalidInput(f"retention_days must be a non-negative integer, got {days!r}")

        cutoff = self._clock() - timedelta(days=days)
        cutoff_iso = to_iso(cutoff)

        rows = await self._backups.scan(page_size=self._page_size)
        expired = [row for row in rows if str(row.get("timestamp", "")) < cutoff_iso]

        await asyncio.gather(*(self._expire(row) for row in expired))

        known_paths = {row.get("path") for row in rows}
        orphaned = await self._sweep_orphans(known_paths, cutoff)

        LOGGER.info(
            f"Backup cleanup: removed {len(expired)} expired backups and "
            f"{orphaned} orphaned artifacts older than {days} days"
        )
        return CleanupResult(deleted_count=len(expired), orphaned_artifacts=orphaned)

    async def _expire(self, row: Dict[str, Any]) -> None:
        await self._backups.delete({"backupId": row["backupId"]})
        path = row.get("path")
        if not path:
            return
        try:
            await self._objects.delete(path)
        except ObjectStoreError as exc:
            if exc.kind is not ObjectStoreErrorKind.NOT_FOUND:
                LOGGER.warning(f"Failed to delete artifact {path}: {exc}")

    async def _sweep_orphans(self, known_paths: set, cutoff: datetime) -> int:
        try:
            objects = await self._objects.list(prefix=BACKUP_PREFIX)
        except ObjectStoreError as exc:
            LOGGER.warning(f"Could not list {BACKUP_PREFIX} for orphan sweep: {exc}")
            return 0

        orphans = [
            obj.name
            for obj in objects
            if obj.name not in known_paths and obj.created_at < cutoff
        ]
        removed = 0
        for name in orphans:
            try:
                await self._objects.delete(name)
                removed += 1
            except ObjectStoreError as exc:
                if exc.kind is ObjectStoreErrorKind.NOT_FOUND:
                    continue
                LOGGER.warning(f"Failed to delete orphaned artifact {name}: {exc}")
        return removed


__all__ = [
    "BackupEngine",
    "backup_id_for",
    "artifact_path",
    "serialize_snapshot",
    "deserialize_snapshot",
    "is_interaction_item",
]
