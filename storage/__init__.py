from __future__ import annotations

from .bootstrap import close_storage, init_storage
from .interfaces import (
    INDEXES,
    PLATFORM_TIMESTAMP_INDEX,
    TYPE_TIMESTAMP_INDEX,
    USER_TIMESTAMP_INDEX,
    Item,
    Key,
    KeyCondition,
    ObjectInfo,
    ObjectStore,
    RecordStore,
)

__all__ = [
    "init_storage",
    "close_storage",
    "INDEXES",
    "PLATFORM_TIMESTAMP_INDEX",
    "USER_TIMESTAMP_INDEX",
    "TYPE_TIMESTAMP_INDEX",
    "Item",
    "Key",
    "KeyCondition",
    "ObjectInfo",
    "ObjectStore",
    "RecordStore",
]
