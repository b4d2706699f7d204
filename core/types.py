from __future__ import annotations

import time
import uuid
from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Dict, List, Mapping, Optional, Union

from core.errors import InvalidInput


class Platform(str, Enum):
    DISCORD = "discord"
    TELEGRAM = "telegram"
    WHATSAPP = "whatsapp"
    FACEBOOK = "facebook"
    INSTAGRAM = "instagram"


class InteractionType(str, Enum):
    MESSAGE = "message"
    COMMAND = "command"
    REACTION = "reaction"
    TICKET = "ticket"
    POSTBACK = "postback"


class BackupStatus(str, Enum):
    SUCCESS = "success"
    FAILURE = "failure"


class ReportPeriod(str, Enum):
    WEEKLY = "weekly"
    DAILY = "daily"

    @property
    def days(self) -> int:
        return 7 if self is ReportPeriod.WEEKLY else 1


class Severity(str, Enum):
    INFO = "info"
    WARNING = "warning"
    ERROR = "error"


def utc_now() -> datetime:
    return datetime.now(timezone.utc)


def to_iso(moment: datetime) -> str:
    """ISO-8601 with millisecond precision and a trailing Z, sortable as text."""
    if moment.tzinfo is None:
        moment = moment.replace(tzinfo=timezone.utc)
    moment = moment.astimezone(timezone.utc)
    return moment.isoformat(timespec="milliseconds").replace("+00:00", "Z")


def parse_iso(value: str) -> datetime:
    try:
        parsed = datetime.fromisoformat(value.replace("Z", "+00:00"))
    except (AttributeError, ValueError) as exc:
        raise InvalidInput(f"Not an ISO-8601 timestamp: {value!r}") from exc
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed


def new_interaction_id(platform: Platform) -> str:
    return f"{platform.value}_{int(time.time() * 1000)}_{uuid.uuid4().hex[:9]}"


@dataclass(frozen=True)
class InteractionRecord:
    """One user action on one platform. Never mutated after creation."""
    id: str
    user_id: str
    platform: Platform
    type: InteractionType
    content: Any
    timestamp: str
    metadata: Optional[Dict[str, Any]] = None

    @classmethod
    def create(
        cls,
        user_id: str,
        platform: Platform,
        type: InteractionType,
        content: Any,
        metadata: Optional[Dict[str, Any]] = None,
        now: Optional[datetime] = None,
    ) -> "InteractionRecord":
        return cls(
            id=new_interaction_id(platform),
            user_id=str(user_id),
            platform=platform,
            type=type,
            content=content,
            timestamp=to_iso(now or utc_now()),
            metadata=metadata,
        )

    def to_item(self) -> Dict[str, Any]:
        item: Dict[str, Any] = {
            "id": self.id,
            "userId": self.user_id,
            "platform": self.platform.value,
            "type": self.type.value,
            "content": self.content,
            "timestamp": self.timestamp,
        }
        if self.metadata is not None:
            item["metadata"] = self.metadata
        return item

    @classmethod
    def from_item(cls, item: Mapping[str, Any]) -> "InteractionRecord":
        try:
            return cls(
                id=str(item["id"]),
                user_id=str(item["userId"]),
                platform=Platform(item["platform"]),
                type=InteractionType(item["type"]),
                content=item.get("content"),
                timestamp=str(item["timestamp"]),
                metadata=item.get("metadata"),
            )
        except (KeyError, ValueError, TypeError) as exc:
            raise InvalidInput(f"Not an interaction record: {exc}") from exc


@dataclass(frozen=True)
class BackupMetadata:
    backup_id: str
    timestamp: str
    status: BackupStatus
    record_count: int
    size: int
    bucket_name: str
    path: str
    url: Optional[str] = None

    def to_item(self) -> Dict[str, Any]:
        item: Dict[str, Any] = {
            "backupId": self.backup_id,
            "timestamp": self.timestamp,
            "status": self.status.value,
            "recordCount": self.record_count,
            "size": self.size,
            "bucketName": self.bucket_name,
            "path": self.path,
        }
        if self.url is not None:
            item["url"] = self.url
        return item

    @classmethod
    def from_item(cls, item: Mapping[str, Any]) -> "BackupMetadata":
        try:
            return cls(
                backup_id=item["backupId"],
                timestamp=item["timestamp"],
                status=BackupStatus(item.get("status", BackupStatus.SUCCESS.value)),
                record_count=int(item.get("recordCount", 0)),
                size=int(item.get("size", 0)),
                bucket_name=item.get("bucketName", ""),
                path=item["path"],
                url=item.get("url"),
            )
        except (KeyError, ValueError, TypeError) as exc:
            raise InvalidInput(f"Malformed backup metadata: {exc}") from exc


@dataclass(frozen=True)
class CleanupResult:
    deleted_count: int
    orphaned_artifacts: int = 0


@dataclass(frozen=True)
class PlatformStats:
    total_interactions: int
    unique_users: int
    message_count: int
    command_count: int
    engagement_rate: float

    def to_item(self) -> Dict[str, Any]:
        return {
            "totalInteractions": self.total_interactions,
            "uniqueUsers": self.unique_users,
            "messageCount": self.message_count,
            "commandCount": self.command_count,
            "engagementRate": self.engagement_rate,
        }


@dataclass(frozen=True)
class WeeklyReport:
    timestamp: str
    period: ReportPeriod
    platform_stats: Dict[str, PlatformStats]
    total_interactions: int

    def to_item(self) -> Dict[str, Any]:
        return {
            "timestamp": self.timestamp,
            "period": self.period.value,
            "platformStats": {name: stats.to_item() for name, stats in self.platform_stats.items()},
            "totalInteractions": self.total_interactions,
        }


@dataclass(frozen=True)
class UserEngagement:
    total_interactions: int
    active_hours: List[int]
    engagement_score: float
    interaction_types: Dict[str, int]
    platform_distribution: Dict[str, int]


@dataclass(frozen=True)
class PerformanceReport:
    avg_response_time: float
    p95_response_time: float
    error_rate: float
    success_rate: float
    sample_count: int

    def to_item(self) -> Dict[str, Any]:
        return {
            "avgResponseTime": self.avg_response_time,
            "p95ResponseTime": self.p95_response_time,
            "errorRate": self.error_rate,
            "successRate": self.success_rate,
            "sampleCount": self.sample_count,
        }


# Inbound message variants. Webhook payloads are parsed into exactly one of these.

@dataclass(frozen=True)
class TextMessage:
    platform: Platform
    sender_id: str
    text: str
    chat_id: Optional[str] = None
    is_private: bool = True
    is_reply: bool = False
    reply_address: Optional[str] = None


@dataclass(frozen=True)
class CommandMessage:
    platform: Platform
    sender_id: str
    command: str
    args: List[str] = field(default_factory=list)
    chat_id: Optional[str] = None
    is_private: bool = True


@dataclass(frozen=True)
class CallbackAction:
    platform: Platform
    sender_id: str
    data: str
    chat_id: Optional[str] = None


@dataclass(frozen=True)
class AttachmentMessage:
    platform: Platform
    sender_id: str
    attachment_types: List[str]
    text: Optional[str] = None
    reply_address: Optional[str] = None


@dataclass(frozen=True)
class Postback:
    platform: Platform
    sender_id: str
    payload: Dict[str, Any]


@dataclass(frozen=True)
class DiscordPing:
    pass


@dataclass(frozen=True)
class DiscordCommand:
    user_id: str
    name: str
    subcommand: Optional[str] = None
    options: Dict[str, Any] = field(default_factory=dict)


InboundMessage = Union[
    TextMessage,
    CommandMessage,
    CallbackAction,
    AttachmentMessage,
    Postback,
    DiscordPing,
    DiscordCommand,
]
