"""
Side-effect boundary between core operations and notification transports.

Core services publish events after they finish; subscribers (the Discord
notifier, tests) react to them. A failing subscriber is logged and never
propagates back into the operation that published the event.
"""
from __future__ import annotations

from dataclasses import dataclass
from typing import Awaitable, Callable, List, Optional, Union

from core.types import PerformanceReport, Severity, WeeklyReport
from utils.logger import get_logger

LOGGER = get_logger(__name__)


@dataclass(frozen=True)
class BackupSucceeded:
    backup_id: str
    size: int
    records: int


@dataclass(frozen=True)
class BackupFailed:
    error: str


@dataclass(frozen=True)
class ReportGenerated:
    report: WeeklyReport


@dataclass(frozen=True)
class PerformanceMeasured:
    report: PerformanceReport


@dataclass(frozen=True)
class AlertRaised:
    title: str
    message: str
    severity: Severity = Severity.INFO


Event = Union[BackupSucceeded, BackupFailed, ReportGenerated, PerformanceMeasured, AlertRaised]
EventHandler = Callable[[Event], Awaitable[None]]


class EventBus:
    def __init__(self, handlers: Optional[List[EventHandler]] = None):
        self._handlers: List[EventHandler] = list(handlers or [])

    def subscribe(self, handler: EventHandler) -> None:
        self._handlers.append(handler)

    async def publish(self, event: Event) -> None:
        for handler in list(self._handlers):
            try:
                await handler(event)
            except Exception as e:
                LOGGER.error(
                    f"Event handler {getattr(handler, '__qualname__', handler)!r} "
                    f"failed on {type(event).__name__}: {e}",
                    exc_info=True,
                )


__all__ = [
    "BackupSucceeded",
    "BackupFailed",
    "ReportGenerated",
    "PerformanceMeasured",
    "AlertRaised",
    "Event",
    "EventHandler",
    "EventBus",
]
