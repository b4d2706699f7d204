from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime
from typing import Any, Dict, Mapping, Optional, Protocol, Sequence

Item = Dict[str, Any]
Key = Mapping[str, Any]


@dataclass(frozen=True, slots=True)
class SecondaryIndex:
    name: str
    partition_field: str
    sort_field: str = "timestamp"


PLATFORM_TIMESTAMP_INDEX = SecondaryIndex("platform-timestamp-index", "platform")
USER_TIMESTAMP_INDEX = SecondaryIndex("user-timestamp-index", "userId")
TYPE_TIMESTAMP_INDEX = SecondaryIndex("type-timestamp-index", "type")

INDEXES: Mapping[str, SecondaryIndex] = {
    index.name: index
    for index in (PLATFORM_TIMESTAMP_INDEX, USER_TIMESTAMP_INDEX, TYPE_TIMESTAMP_INDEX)
}


@dataclass(frozen=True, slots=True)
class KeyCondition:
    """Partition equality plus an optional inclusive range on the sort field."""
    partition: str
    start: Optional[str] = None
    end: Optional[str] = None

    def matches_sort(self, value: Optional[str]) -> bool:
        if value is None:
            return self.start is None and self.end is None
        if self.start is not None and value < self.start:
            return False
        if self.end is not None and value > self.end:
            return False
        return True


@dataclass(frozen=True, slots=True)
class ObjectInfo:
    name: str
    size: int
    created_at: datetime


class RecordStore(Protocol):
    key_fields: Sequence[str]

    async def get(self, key: Key) -> Item | None: ...

    async def put(self, item: Item) -> None: ...

    async def update(self, key: Key, patch: Mapping[str, Any]) -> Item: ...

    async def delete(self, key: Key) -> None: ...

    async def query(
        self,
        index_name: str,
        condition: KeyCondition,
        filter: Mapping[str, Any] | None = None,
    ) -> Sequence[Item]: ...

    async def scan(self, page_size: int = 1000) -> Sequence[Item]: ...


class ObjectStore(Protocol):
    bucket_name: str

    async def upload(
        self,
        path: str,
        data: bytes,
        content_type: str = "application/octet-stream",
    ) -> str: ...

    async def download(self, path: str) -> bytes: ...

    async def list(self, prefix: str = "") -> Sequence[ObjectInfo]: ...

    async def delete(self, path: str) -> None: ...
