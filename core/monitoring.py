from __future__ import annotations

import threading
from collections import deque
from dataclasses import dataclass
from typing import Deque, List, Optional

import numpy as np

from core.events import AlertRaised, EventBus, PerformanceMeasured
from core.types import PerformanceReport, Severity
from utils.logger import get_logger

LOGGER = get_logger(__name__)


@dataclass(frozen=True, slots=True)
class Sample:
    platform: str
    duration_ms: float
    ok: bool


class PerformanceTracker:
    """Rolling window of request timings, newest `max_samples` kept."""

    def __init__(self, max_samples: int = 1000):
        self._samples: Deque[Sample] = deque(maxlen=max_samples)
        self._lock = threading.Lock()

    def record(self, platform: str, duration_ms: float, ok: bool = True) -> None:
        with self._lock:
            self._samples.append(Sample(platform, float(duration_ms), bool(ok)))

    def __len__(self) -> int:
        return len(self._samples)

    def report(self, platform: Optional[str] = None) -> PerformanceReport:
        with self._lock:
            samples = [s for s in self._samples if platform is None or s.platform == platform]

        if not samples:
            return PerformanceReport(
                avg_response_time=0.0,
                p95_response_time=0.0,
                error_rate=0.0,
                success_rate=1.0,
                sample_count=0,
            )

        durations = np.fromiter((s.duration_ms for s in samples), dtype=float, count=len(samples))
        errors = sum(1 for s in samples if not s.ok)
        error_rate = errors / len(samples)
        return PerformanceReport(
            avg_response_time=float(durations.mean()),
            p95_response_time=float(np.percentile(durations, 95)),
            error_rate=error_rate,
            success_rate=1 - error_rate,
            sample_count=len(samples),
        )

    def check_degradation(self, max_response_ms: float, error_threshold: float) -> List[str]:
        report = self.report()
        issues: List[str] = []
        if report.sample_count == 0:
            return issues
        if report.p95_response_time > max_response_ms:
            issues.append(
                f"P95 response time {report.p95_response_time:.0f}ms exceeds {max_response_ms:.0f}ms"
            )
        if report.error_rate > error_threshold:
            issues.append(
                f"Error rate {report.error_rate * 100:.1f}% exceeds {error_threshold * 100:.1f}%"
            )
        return issues


async def run_monitor(
    tracker: PerformanceTracker,
    events: EventBus,
    *,
    max_response_ms: float,
    error_threshold: float,
) -> PerformanceReport:
    """Publish the current performance figures and alert on degradation."""
    report = tracker.report()
    await events.publish(PerformanceMeasured(report=report))

    issues = tracker.check_degradation(max_response_ms, error_threshold)
    if issues:
        LOGGER.warning(f"Performance degradation: {'; '.join(issues)}")
        await events.publish(
            AlertRaised(
                title="Performance Degradation",
                message="System is experiencing performance issues:\n"
                + "\n".join(f"- {issue}" for issue in issues),
                severity=Severity.WARNING,
            )
        )
    else:
        LOGGER.info(f"Performance OK over {report.sample_count} samples")
    return report


__all__ = ["PerformanceTracker", "Sample", "run_monitor"]
