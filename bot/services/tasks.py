"""
Scheduled task dispatcher. Called by an external scheduler through the
HTTP route or the command line.
"""
from __future__ import annotations

import asyncio
from enum import Enum
from typing import Any, Awaitable, Callable, Dict

from core.analytics import Analytics
from core.backup import BackupEngine
from core.errors import InvalidInput
from core.events import AlertRaised, EventBus
from core.monitoring import PerformanceTracker, run_monitor
from core.types import ReportPeriod, Severity, to_iso, utc_now
from utils.logger import get_logger

LOGGER = get_logger(__name__)


class TaskType(str, Enum):
    BACKUP = "backup"
    REPORT = "report"
    CLEANUP = "cleanup"
    MONITOR = "monitor"
    ALL = "all"


class TaskRunner:
    def __init__(
        self,
        *,
        backup: BackupEngine,
        analytics: Analytics,
        tracker: PerformanceTracker,
        events: EventBus,
        max_response_ms: float,
        error_threshold: float,
    ):
        self._backup = backup
        self._analytics = analytics
        self._tracker = tracker
        self._events = events
        self._max_response_ms = max_response_ms
        self._error_threshold = error_threshold

    def _jobs(self, period: ReportPeriod) -> Dict[TaskType, Callable[[], Awaitable[Any]]]:
        return {
            TaskType.BACKUP: self._backup.perform_backup,
            TaskType.REPORT: lambda: self._analytics.generate_report(period),
            TaskType.CLEANUP: self._backup.cleanup_old_backups,
            TaskType.MONITOR: self._monitor,
        }

    async def _monitor(self):
        return await run_monitor(
            self._tracker,
            self._events,
            max_response_ms=self._max_response_ms,
            error_threshold=self._error_threshold,
        )

    async def _dispatch(self, task_type: str, period: str) -> None:
        try:
            task = TaskType(task_type)
        except ValueError as exc:
            raise InvalidInput(f"Unknown task type: {task_type}") from exc
        try:
            jobs = self._jobs(ReportPeriod(period))
        except ValueError as exc:
            raise InvalidInput(f"Unknown report period: {period}") from exc

        if task is TaskType.ALL:
            await asyncio.gather(*(run() for run in jobs.values()))
        else:
            await jobs[task]()

    async def run_task(
        self,
        task_type: str = "all",
        notify_on_completion: bool = False,
        period: str = ReportPeriod.WEEKLY.value,
    ) -> Dict[str, Any]:
        """
        Run one task, or all of them concurrently.

        Args:
            task_type: a TaskType value
            notify_on_completion: publish an INFO alert once everything succeeded
            period: report window, a ReportPeriod value; only the report task reads it
        """
        LOGGER.info(f"Running scheduled task(s): {task_type}")
        try:
            await self._dispatch(task_type, period)
        except Exception as e:
            LOGGER.error(f"Error executing scheduled task(s) {task_type}: {e}", exc_info=True)
            await self._events.publish(
                AlertRaised(
                    title="Scheduled Tasks Failed",
                    message=f"Error executing task(s): {e}",
                    severity=Severity.ERROR,
                )
            )
            raise

        if notify_on_completion:
            await self._events.publish(
                AlertRaised(
                    title="Scheduled Tasks Complete",
                    message=f"Successfully completed scheduled task(s): {task_type}",
                    severity=Severity.INFO,
                )
            )
        return {"success": True, "taskType": task_type, "timestamp": to_iso(utc_now())}


__all__ = ["TaskRunner", "TaskType"]
