import json

import httpx
import pytest

from bot.services.notifications import (
    FAILURE_COLOR,
    SEVERITY_COLORS,
    SUCCESS_COLOR,
    DiscordNotifier,
    backup_embed,
    performance_embed,
)
from core.events import AlertRaised, BackupFailed, BackupSucceeded, PerformanceMeasured, ReportGenerated
from core.types import PerformanceReport, PlatformStats, ReportPeriod, Severity, WeeklyReport

ALERTS = "https://discord.example/api/webhooks/alerts"
REPORTS = "https://discord.example/api/webhooks/reports"


@pytest.fixture
async def notifier(outbound):
    client = httpx.AsyncClient(transport=httpx.MockTransport(outbound))
    yield DiscordNotifier(ALERTS, REPORTS, client=client)
    await client.aclose()


def _embed(request):
    body = json.loads(request.content)
    assert list(body) == ["embeds"]
    return body["embeds"][0]


async def test_alert_goes_to_notification_channel(notifier, outbound):
    assert await notifier.send_alert("Disk", "almost full", Severity.WARNING) is True

    request = outbound.requests[0]
    assert str(request.url) == ALERTS
    embed = _embed(request)
    assert embed["title"] == "Disk"
    assert embed["description"] == "almost full"
    assert embed["color"] == SEVERITY_COLORS[Severity.WARNING]


async def test_backup_success_event(notifier, outbound):
    await notifier.handle_event(BackupSucceeded(backup_id="b", size=3 * 1024 * 1024, records=12))

    embed = _embed(outbound.requests[0])
    assert embed["color"] == SUCCESS_COLOR
    assert {"name": "Backup Size", "value": "3.00 MB", "inline": True} in embed["fields"]
    assert {"name": "Records", "value": "12", "inline": True} in embed["fields"]


async def test_backup_failure_event(notifier, outbound):
    await notifier.handle_event(BackupFailed(error="bucket unavailable"))

    embed = _embed(outbound.requests[0])
    assert embed["color"] == FAILURE_COLOR
    assert embed["description"] == "Error: bucket unavailable"
    assert "fields" not in embed


async def test_reports_go_to_reports_channel(notifier, outbound):
    report = WeeklyReport(
        timestamp="2024-01-15T12:00:00.000Z",
        period=ReportPeriod.WEEKLY,
        platform_stats={"discord": PlatformStats(4, 2, 3, 1, 2.0)},
        total_interactions=4,
    )
    perf = PerformanceReport(120.0, 480.0, 0.02, 0.98, 50)

    await notifier.handle_event(ReportGenerated(report=report))
    await notifier.handle_event(PerformanceMeasured(report=perf))

    assert [str(r.url) for r in outbound.requests] == [REPORTS, REPORTS]
    assert _embed(outbound.requests[0])["fields"][0]["name"] == "Discord"
    assert _embed(outbound.requests[1])["title"] == "⚡ Platform Performance Report"


async def test_alert_event(notifier, outbound):
    await notifier.handle_event(AlertRaised(title="Scheduled Tasks Failed", message="boom", severity=Severity.ERROR))
    assert _embed(outbound.requests[0])["color"] == SEVERITY_COLORS[Severity.ERROR]


async def test_unconfigured_channel_is_skipped(outbound):
    client = httpx.AsyncClient(transport=httpx.MockTransport(outbound))
    notifier = DiscordNotifier("", "", client=client)

    assert await notifier.send_alert("t", "m") is False
    assert outbound.requests == []
    await client.aclose()


async def test_delivery_failure_is_not_raised():
    def refuse(request):
        return httpx.Response(500, json={"message": "nope"})

    client = httpx.AsyncClient(transport=httpx.MockTransport(refuse))
    notifier = DiscordNotifier(ALERTS, REPORTS, client=client)

    assert await notifier.send_backup_result(False, error="x") is False
    await client.aclose()


def test_embed_builders():
    assert backup_embed(True, size=0, records=0)["title"] == "✅ Backup Successful"
    fields = performance_embed(PerformanceReport(10.4, 99.6, 0.02, 0.98, 3))["fields"]
    assert fields[0]["value"] == "Avg: 10ms\nP95: 100ms"
    assert fields[1]["value"] == "2.0%"
