from __future__ import annotations

import asyncio
from collections import Counter
from datetime import datetime, timedelta
from typing import Callable, Dict, Iterable, List, Mapping, Optional, Sequence

from core.errors import InvalidInput
from core.events import EventBus, ReportGenerated
from core.types import (
    InteractionType,
    Platform,
    PlatformStats,
    ReportPeriod,
    UserEngagement,
    WeeklyReport,
    parse_iso,
    to_iso,
    utc_now,
)
from storage.interfaces import (
    PLATFORM_TIMESTAMP_INDEX,
    USER_TIMESTAMP_INDEX,
    Item,
    KeyCondition,
    RecordStore,
)
from utils.logger import get_logger

LOGGER = get_logger(__name__)

REPORT_TYPE = "report"


def platform_stats(items: Sequence[Item]) -> PlatformStats:
    unique_users = len({item.get("userId") for item in items})
    types = Counter(item.get("type") for item in items)
    return PlatformStats(
        total_interactions=len(items),
        unique_users=unique_users,
        message_count=types[InteractionType.MESSAGE.value],
        command_count=types[InteractionType.COMMAND.value],
        engagement_rate=len(items) / max(unique_users, 1),
    )


def build_report(
    items_by_platform: Mapping[str, Sequence[Item]],
    period: ReportPeriod,
    *,
    now: Optional[datetime] = None,
) -> WeeklyReport:
    stats = {name: platform_stats(items) for name, items in items_by_platform.items()}
    return WeeklyReport(
        timestamp=to_iso(now or utc_now()),
        period=period,
        platform_stats=stats,
        total_interactions=sum(s.total_interactions for s in stats.values()),
    )


def active_hours(items: Iterable[Item]) -> List[int]:
    """Distinct UTC hours of day (0-23) with at least one interaction."""
    hours = set()
    for item in items:
        try:
            hours.add(parse_iso(str(item.get("timestamp"))).hour)
        except InvalidInput:
            continue
    return sorted(hours)


def engagement_score(total_interactions: int, active_hour_count: int) -> float:
    interaction_score = min(total_interactions / 10, 60)
    spread_score = active_hour_count / 24 * 40
    return min(interaction_score + spread_score, 100)


def _distribution(items: Iterable[Item], field: str) -> Dict[str, int]:
    return dict(Counter(str(item.get(field) or "unknown") for item in items))


def type_distribution(items: Iterable[Item]) -> Dict[str, int]:
    return _distribution(items, "type")


def platform_distribution(items: Iterable[Item]) -> Dict[str, int]:
    return _distribution(items, "platform")


class Analytics:
    """Reports and engagement figures computed from the interaction store."""

    def __init__(
        self,
        records: RecordStore,
        *,
        events: Optional[EventBus] = None,
        clock: Callable[[], datetime] = utc_now,
    ):
        self._records = records
        self._events = events or EventBus()
        self._clock = clock

    async def _window(self, index_name: str, partition: str, days: int) -> List[Item]:
        start = to_iso(self._clock() - timedelta(days=days))
        items = await self._records.query(index_name, KeyCondition(partition=partition, start=start))
        return list(items)

    async def platform_stats_for(self, platform: Platform | str, days: int) -> PlatformStats:
        try:
            platform = Platform(platform)
        except ValueError as exc:
            raise InvalidInput(f"Unknown platform {platform!r}") from exc
        if days < 1:
            raise InvalidInput("days must be at least 1")
        items = await self._window(PLATFORM_TIMESTAMP_INDEX.name, platform.value, days)
        return platform_stats(items)

    async def generate_report(self, period: ReportPeriod = ReportPeriod.WEEKLY) -> WeeklyReport:
        platforms = list(Platform)
        windows = await asyncio.gather(
            *(self._window(PLATFORM_TIMESTAMP_INDEX.name, p.value, period.days) for p in platforms)
        )
        report = build_report(
            {p.value: items for p, items in zip(platforms, windows)},
            period,
            now=self._clock(),
        )

        document = {"id": f"report_{report.timestamp}", "type": REPORT_TYPE, **report.to_item()}
        await self._records.put(document)
        LOGGER.info(
            f"Generated {period.value} report: {report.total_interactions} interactions "
            f"across {len(platforms)} platforms"
        )

        await self._events.publish(ReportGenerated(report=report))
        return report

    async def user_engagement(self, user_id: str, days: int = 30) -> UserEngagement:
        items = await self._window(USER_TIMESTAMP_INDEX.name, str(user_id), days)
        hours = active_hours(items)
        return UserEngagement(
            total_interactions=len(items),
            active_hours=hours,
            engagement_score=engagement_score(len(items), len(hours)),
            interaction_types=type_distribution(items),
            platform_distribution=platform_distribution(items),
        )


__all__ = [
    "Analytics",
    "platform_stats",
    "build_report",
    "active_hours",
    "engagement_score",
    "type_distribution",
    "platform_distribution",
    "REPORT_TYPE",
]
