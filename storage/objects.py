from __future__ import annotations

import asyncio
import contextlib
from datetime import datetime, timedelta, timezone
from typing import Iterator, List, Optional

from google.api_core import exceptions as gcs_exceptions
from google.cloud import storage as gcs

from core.errors import ObjectStoreError, ObjectStoreErrorKind
from utils.logger import get_logger

from .interfaces import ObjectInfo

LOGGER = get_logger(__name__)

SIGNED_URL_TTL = timedelta(hours=24)


@contextlib.contextmanager
def _translated(path: str) -> Iterator[None]:
    try:
        yield
    except gcs_exceptions.NotFound as exc:
        raise ObjectStoreError(ObjectStoreErrorKind.NOT_FOUND, f"{path}: {exc.message}") from exc
    except (gcs_exceptions.Forbidden, gcs_exceptions.Unauthorized) as exc:
        raise ObjectStoreError(ObjectStoreErrorKind.ACCESS_DENIED, f"{path}: {exc.message}") from exc
    except gcs_exceptions.GoogleAPIError as exc:
        raise ObjectStoreError(ObjectStoreErrorKind.UNKNOWN, f"{path}: {exc}") from exc


class GCSObjectStore:
    """
    Google Cloud Storage bucket behind the async ObjectStore protocol.
    The client library is blocking, so every call runs in a worker thread.
    """

    def __init__(self, bucket_name: str, *, client: Optional[gcs.Client] = None):
        self.bucket_name = bucket_name
        self._client = client or gcs.Client()
        self._bucket = self._client.bucket(bucket_name)

    def _upload(self, path: str, data: bytes, content_type: str) -> str:
        blob = self._bucket.blob(path)
        with _translated(path):
            blob.upload_from_string(data, content_type=content_type)
            url = blob.generate_signed_url(
                version="v4",
                expiration=SIGNED_URL_TTL,
                method="GET",
            )
        LOGGER.info(f"Uploaded gs://{self.bucket_name}/{path} ({len(data)} bytes)")
        return url

    def _download(self, path: str) -> bytes:
        with _translated(path):
            return self._bucket.blob(path).download_as_bytes()

    def _list(self, prefix: str) -> List[ObjectInfo]:
        with _translated(prefix or "/"):
            blobs = list(self._client.list_blobs(self._bucket, prefix=prefix or None))
        return [
            ObjectInfo(
                name=blob.name,
                size=int(blob.size or 0),
                created_at=blob.time_created or datetime.fromtimestamp(0, tz=timezone.utc),
            )
            for blob in blobs
        ]

    def _delete(self, path: str) -> None:
        with _translated(path):
            self._bucket.blob(path).delete()

    async def upload(
        self,
        path: str,
        data: bytes,
        content_type: str = "application/octet-stream",
    ) -> str:
        return await asyncio.to_thread(self._upload, path, data, content_type)

    async def download(self, path: str) -> bytes:
        return await asyncio.to_thread(self._download, path)

    async def list(self, prefix: str = "") -> List[ObjectInfo]:
        return await asyncio.to_thread(self._list, prefix)

    async def delete(self, path: str) -> None:
        await asyncio.to_thread(self._delete, path)

    def close(self) -> None:
        self._client.close()


__all__ = ["GCSObjectStore", "SIGNED_URL_TTL"]
