"""Bot services: rate limiting, notifications, scheduled tasks, exports."""
from .rate_limiter import RateLimiter
from .notifications import DiscordNotifier
from .tasks import TaskRunner, TaskType
from .export import CsvExporter, ExportResult

__all__ = [
    "RateLimiter",
    "DiscordNotifier",
    "TaskRunner",
    "TaskType",
    "CsvExporter",
    "ExportResult",
]
