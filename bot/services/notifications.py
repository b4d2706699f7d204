"""
Operator notifications delivered as Discord webhook embeds.
Alerts and backup results go to the notification channel; performance and
activity reports go to the reports channel.
"""
from __future__ import annotations

from typing import Any, Dict, List, Optional

import httpx

from core.events import (
    AlertRaised,
    BackupFailed,
    BackupSucceeded,
    Event,
    PerformanceMeasured,
    ReportGenerated,
)
from core.types import PerformanceReport, Severity, WeeklyReport, to_iso, utc_now
from utils.logger import get_logger

LOGGER = get_logger(__name__)

SEVERITY_COLORS: Dict[Severity, int] = {
    Severity.INFO: 0x0099FF,
    Severity.WARNING: 0xFFAA00,
    Severity.ERROR: 0xFF0000,
}
SUCCESS_COLOR = 0x2ECC71
FAILURE_COLOR = 0xE74C3C


def alert_embed(title: str, message: str, severity: Severity = Severity.INFO) -> Dict[str, Any]:
    return {
        "title": title,
        "description": message,
        "color": SEVERITY_COLORS[Severity(severity)],
        "timestamp": to_iso(utc_now()),
    }


def backup_embed(
    success: bool,
    *,
    size: Optional[int] = None,
    records: Optional[int] = None,
    error: Optional[str] = None,
) -> Dict[str, Any]:
    fields: List[Dict[str, Any]] = []
    if success and size is not None:
        fields.append({"name": "Backup Size", "value": f"{size / 1024 / 1024:.2f} MB", "inline": True})
    if success and records is not None:
        fields.append({"name": "Records", "value": str(records), "inline": True})

    embed: Dict[str, Any] = {
        "title": "✅ Backup Successful" if success else "❌ Backup Failed",
        "color": SUCCESS_COLOR if success else FAILURE_COLOR,
        "timestamp": to_iso(utc_now()),
    }
    if error:
        embed["description"] = f"Error: {error}"
    if fields:
        embed["fields"] = fields
    return embed


def performance_embed(report: PerformanceReport) -> Dict[str, Any]:
    return {
        "title": "⚡ Platform Performance Report",
        "fields": [
            {
                "name": "Response Time",
                "value": f"Avg: {report.avg_response_time:.0f}ms\nP95: {report.p95_response_time:.0f}ms",
                "inline": True,
            },
            {"name": "Error Rate", "value": f"{report.error_rate * 100:.1f}%", "inline": True},
            {"name": "Success Rate", "value": f"{report.success_rate * 100:.1f}%", "inline": True},
        ],
        "timestamp": to_iso(utc_now()),
    }


def report_embed(report: WeeklyReport) -> Dict[str, Any]:
    fields = [
        {
            "name": platform.capitalize(),
            "value": (
                f"Interactions: {stats.total_interactions}\n"
                f"Users: {stats.unique_users}\n"
                f"Messages: {stats.message_count}\n"
                f"Commands: {stats.command_count}\n"
                f"Engagement: {stats.engagement_rate:.2f}"
            ),
            "inline": True,
        }
        for platform, stats in report.platform_stats.items()
    ]
    return {
        "title": f"📊 {report.period.value.capitalize()} Activity Report",
        "description": f"Total interactions: {report.total_interactions}",
        "color": SEVERITY_COLORS[Severity.INFO],
        "fields": fields,
        "timestamp": report.timestamp,
    }


class DiscordNotifier:
    """
    Posts embeds to Discord webhooks. An unset URL disables that channel.
    Delivery failures are logged, never raised.
    """

    def __init__(
        self,
        notification_url: str = "",
        reports_url: str = "",
        *,
        client: Optional[httpx.AsyncClient] = None,
    ):
        self.notification_url = notification_url
        self.reports_url = reports_url
        self._client = client or httpx.AsyncClient(timeout=10.0)
        self._owns_client = client is None

    async def _send(self, url: str, embed: Dict[str, Any]) -> bool:
        if not url:
            LOGGER.debug(f"Webhook not configured, dropping embed {embed.get('title')!r}")
            return False
        try:
            response = await self._client.post(url, json={"embeds": [embed]})
            response.raise_for_status()
            LOGGER.info(f"Sent Discord notification {embed.get('title')!r}")
            return True
        except Exception as e:
            LOGGER.error(f"Failed to send Discord notification {embed.get('title')!r}: {e}")
            return False

    async def send_alert(self, title: str, message: str, severity: Severity = Severity.INFO) -> bool:
        return await self._send(self.notification_url, alert_embed(title, message, severity))

    async def send_backup_result(
        self,
        success: bool,
        *,
        size: Optional[int] = None,
        records: Optional[int] = None,
        error: Optional[str] = None,
    ) -> bool:
        embed = backup_embed(success, size=size, records=records, error=error)
        return await self._send(self.notification_url, embed)

    async def send_performance_report(self, report: PerformanceReport) -> bool:
        return await self._send(self.reports_url, performance_embed(report))

    async def send_report(self, report: WeeklyReport) -> bool:
        return await self._send(self.reports_url, report_embed(report))

    async def handle_event(self, event: Event) -> None:
        if isinstance(event, BackupSucceeded):
            await self.send_backup_result(True, size=event.size, records=event.records)
        elif isinstance(event, BackupFailed):
            await self.send_backup_result(False, error=event.error)
        elif isinstance(event, ReportGenerated):
            await self.send_report(event.report)
        elif isinstance(event, PerformanceMeasured):
            await self.send_performance_report(event.report)
        elif isinstance(event, AlertRaised):
            await self.send_alert(event.title, event.message, event.severity)

    async def aclose(self) -> None:
        if self._owns_client:
            await self._client.aclose()


__all__ = [
    "DiscordNotifier",
    "alert_embed",
    "backup_embed",
    "performance_embed",
    "report_embed",
    "SEVERITY_COLORS",
    "SUCCESS_COLOR",
    "FAILURE_COLOR",
]
