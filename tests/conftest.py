import os

os.environ.setdefault("LOG_TO_FILE", "false")

import dataclasses
from datetime import datetime, timezone
from typing import Any, Dict, List, Mapping, Optional
from unittest.mock import AsyncMock

import httpx
import pytest
import pytest_asyncio

from bot.context import AppContext
from config.config import settings
from core.errors import ObjectStoreError, ObjectStoreErrorKind, StoreError, StoreErrorKind
from storage.interfaces import INDEXES, ObjectInfo

TEST_KEY = bytes(range(32))
FIXED_NOW = datetime(2024, 1, 15, 12, 0, 0, tzinfo=timezone.utc)


class InMemoryRecordStore:
    """Dict-backed RecordStore with the same query semantics as the PostgreSQL store."""

    def __init__(self, key_fields=("id",)):
        self.key_fields = tuple(key_fields)
        self.items: Dict[str, Dict[str, Any]] = {}
        self.fail_put: Optional[Exception] = None
        self.scan_calls: List[int] = []

    def _pk(self, key: Mapping[str, Any]) -> str:
        return "#".join(str(key[name]) for name in self.key_fields)

    async def get(self, key):
        item = self.items.get(self._pk(key))
        return dict(item) if item is not None else None

    async def put(self, item):
        if self.fail_put is not None:
            raise self.fail_put
        self.items[self._pk(item)] = dict(item)

    async def update(self, key, patch):
        pk = self._pk(key)
        if pk not in self.items:
            raise StoreError(StoreErrorKind.NOT_FOUND, f"no item {pk}")
        self.items[pk].update(patch)
        return dict(self.items[pk])

    async def delete(self, key):
        self.items.pop(self._pk(key), None)

    async def query(self, index_name, condition, filter=None):
        index = INDEXES[index_name]
        matches = [
            dict(item)
            for item in self.items.values()
            if item.get(index.partition_field) == condition.partition
            and condition.matches_sort(item.get(index.sort_field))
            and all(item.get(k) == v for k, v in (filter or {}).items())
        ]
        return sorted(matches, key=lambda item: item.get(index.sort_field) or "")

    async def scan(self, page_size=1000):
        self.scan_calls.append(page_size)
        return [dict(self.items[pk]) for pk in sorted(self.items)]


class InMemoryObjectStore:
    def __init__(self, bucket_name="test-bucket", clock=lambda: FIXED_NOW):
        self.bucket_name = bucket_name
        self.objects: Dict[str, bytes] = {}
        self.created: Dict[str, datetime] = {}
        self.content_types: Dict[str, str] = {}
        self.fail_upload: Optional[Exception] = None
        self.deleted: List[str] = []
        self._clock = clock

    async def upload(self, path, data, content_type="application/octet-stream"):
        if self.fail_upload is not None:
            raise self.fail_upload
        self.objects[path] = bytes(data)
        self.created[path] = self._clock()
        self.content_types[path] = content_type
        return f"https://storage.example/{self.bucket_name}/{path}?X-Goog-Signature=test"

    async def download(self, path):
        if path not in self.objects:
            raise ObjectStoreError(ObjectStoreErrorKind.NOT_FOUND, path)
        return self.objects[path]

    async def list(self, prefix=""):
        return [
            ObjectInfo(name=name, size=len(data), created_at=self.created[name])
            for name, data in sorted(self.objects.items())
            if name.startswith(prefix)
        ]

    async def delete(self, path):
        if path not in self.objects:
            raise ObjectStoreError(ObjectStoreErrorKind.NOT_FOUND, path)
        del self.objects[path]
        self.created.pop(path, None)
        self.deleted.append(path)


class EventCollector:
    def __init__(self):
        self.events: List[Any] = []

    async def __call__(self, event):
        self.events.append(event)

    def of_type(self, cls):
        return [e for e in self.events if isinstance(e, cls)]


class OutboundRecorder:
    """httpx.MockTransport handler that records every outbound request."""

    def __init__(self, status_code: int = 200):
        self.requests: List[httpx.Request] = []
        self.status_code = status_code

    def __call__(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        return httpx.Response(self.status_code, json={"ok": True})


@pytest.fixture
def key():
    return TEST_KEY


@pytest.fixture
def records():
    return InMemoryRecordStore(("id",))


@pytest.fixture
def backups():
    return InMemoryRecordStore(("backupId",))


@pytest.fixture
def objects():
    return InMemoryObjectStore()


@pytest.fixture
def collector():
    return EventCollector()


@pytest.fixture
def outbound():
    return OutboundRecorder()


@pytest.fixture
def test_settings():
    return dataclasses.replace(
        settings,
        API_KEY="test-api-key",
        META_VERIFY_TOKEN="verify-me",
        TELEGRAM_WEBHOOK_SECRET="",
        WHATSAPP_TOKEN="wa-token",
        FACEBOOK_TOKEN="fb-token",
        INSTAGRAM_TOKEN="ig-token",
        META_API_VERSION="v17.0",
        META_API_BASE_URL="https://graph.facebook.com",
        DISCORD_NOTIFICATION_WEBHOOK_URL="https://discord.example/api/webhooks/alerts",
        DISCORD_REPORTS_WEBHOOK_URL="https://discord.example/api/webhooks/reports",
        MODERATION_DENY_LIST=("badword1", "badword2"),
        BACKUP_RETENTION_DAYS=30,
    )


@pytest.fixture
def telegram_bot():
    bot = AsyncMock()
    bot.send_message = AsyncMock()
    return bot


@pytest_asyncio.fixture
async def app_context(test_settings, records, backups, objects, key, telegram_bot, outbound, collector):
    http = httpx.AsyncClient(transport=httpx.MockTransport(outbound))
    context = AppContext.from_stores(
        config=test_settings,
        records=records,
        backups=backups,
        objects=objects,
        key=key,
        telegram_bot=telegram_bot,
        http=http,
    )
    context.events.subscribe(collector)
    yield context
    await http.aclose()
