from __future__ import annotations

import csv
import io
import json
from dataclasses import dataclass
from typing import Any, Dict, Sequence

from core.errors import InvalidInput
from core.types import Platform
from storage.interfaces import PLATFORM_TIMESTAMP_INDEX, Item, KeyCondition, ObjectStore, RecordStore
from utils.logger import get_logger

LOGGER = get_logger(__name__)

EXPORT_PREFIX = "exports/"
CSV_HEADER = ("User ID", "Platform", "Type", "Timestamp", "Content")


@dataclass(frozen=True)
class ExportResult:
    url: str
    filename: str
    record_count: int

    def to_item(self) -> Dict[str, Any]:
        return {
            "success": True,
            "url": self.url,
            "filename": self.filename,
            "recordCount": self.record_count,
        }


def _content_cell(content: Any) -> str:
    if isinstance(content, str):
        return content
    if isinstance(content, (dict, list)):
        return json.dumps(content, ensure_ascii=False)
    return str(content)


def render_csv(items: Sequence[Item]) -> str:
    buffer = io.StringIO()
    writer = csv.writer(buffer)
    writer.writerow(CSV_HEADER)
    for item in items:
        writer.writerow(
            [
                item.get("userId", ""),
                item.get("platform", ""),
                item.get("type", ""),
                item.get("timestamp", ""),
                _content_cell(item.get("content")),
            ]
        )
    return buffer.getvalue()


class CsvExporter:
    def __init__(self, records: RecordStore, objects: ObjectStore):
        self._records = records
        self._objects = objects

    async def export(self, platform: str, start_date: str, end_date: str) -> ExportResult:
        if not platform or not start_date or not end_date:
            raise InvalidInput("Missing required parameters: platform, startDate, endDate")
        try:
            platform_value = Platform(platform).value
        except ValueError as exc:
            raise InvalidInput(f"Unknown platform {platform!r}") from exc

        items = await self._records.query(
            PLATFORM_TIMESTAMP_INDEX.name,
            KeyCondition(partition=platform_value, start=start_date, end=end_date),
        )
        filename = f"export_{platform_value}_{start_date}_{end_date}.csv"
        url = await self._objects.upload(
            f"{EXPORT_PREFIX}{filename}",
            render_csv(items).encode("utf-8"),
            content_type="text/csv",
        )
        LOGGER.info(f"Exported {len(items)} {platform_value} records to {filename}")
        return ExportResult(url=url, filename=filename, record_count=len(items))


__all__ = ["CsvExporter", "ExportResult", "render_csv", "CSV_HEADER", "EXPORT_PREFIX"]
