"""
In-memory rate limiter for inbound webhook traffic.
Counts actions per user over a trailing one-minute window.
"""
from __future__ import annotations

import threading
import time
from typing import Callable, Dict, List, Mapping, Optional

from utils.logger import get_logger

LOGGER = get_logger(__name__)

WINDOW_MS = 60_000
CLEANUP_INTERVAL_MS = 60_000
DEFAULT_LIMIT = 10

DEFAULT_LIMITS: Mapping[str, int] = {
    "message": 30,
    "command": 10,
    "export": 2,
}


def _now_ms() -> int:
    return int(time.time() * 1000)


class RateLimiter:
    """
    Per-user action limiter.

    Limits (per 60 s):
    - message: 30
    - command: 10
    - export: 2
    - anything else: 10

    Key: "{user_id}:{action}"
    Value: list of epoch-ms timestamps of admitted requests

    A refused request is not recorded. Expired timestamps are dropped on
    every check; empty windows are removed by cleanup(), which also runs
    once a minute and whenever the map grows past max_keys.
    """

    def __init__(
        self,
        limits: Optional[Mapping[str, int]] = None,
        *,
        max_keys: int = 100_000,
        clock: Callable[[], int] = _now_ms,
    ):
        self._limits: Dict[str, int] = dict(DEFAULT_LIMITS if limits is None else limits)
        self._windows: Dict[str, List[int]] = {}
        self._lock = threading.Lock()
        self._max_keys = max_keys
        self._clock = clock
        self._last_cleanup = clock()

    def limit_for(self, action: str) -> int:
        return self._limits.get(action, DEFAULT_LIMIT)

    def is_allowed(self, user_id: str, action: str) -> bool:
        """
        Returns:
            True if the action is admitted (and recorded), False if over the limit
        """
        now = self._clock()
        key = f"{user_id}:{action}"
        limit = self.limit_for(action)

        with self._lock:
            if now - self._last_cleanup > CLEANUP_INTERVAL_MS or len(self._windows) > self._max_keys:
                self._cleanup_locked(now)

            recent = [ts for ts in self._windows.get(key, ()) if now - ts < WINDOW_MS]

            if len(recent) >= limit:
                self._windows[key] = recent
                LOGGER.warning(f"Rate limit exceeded: key={key}, count={len(recent)}, limit={limit}")
                return False

            recent.append(now)
            self._windows[key] = recent
            return True

    def cleanup(self) -> int:
        """Drop expired timestamps and empty windows. Returns the number of removed keys."""
        with self._lock:
            return self._cleanup_locked(self._clock())

    def _cleanup_locked(self, now: int) -> int:
        keys_to_remove = []

        for key, timestamps in self._windows.items():
            timestamps[:] = [ts for ts in timestamps if now - ts < WINDOW_MS]
            if not timestamps:
                keys_to_remove.append(key)

        for key in keys_to_remove:
            del self._windows[key]

        self._last_cleanup = now
        if keys_to_remove:
            LOGGER.debug(f"Cleaned up {len(keys_to_remove)} inactive rate limit entries")
        return len(keys_to_remove)

    def get_stats(self) -> dict:
        now = self._clock()
        with self._lock:
            active_users = {
                key.rsplit(":", 1)[0]
                for key, timestamps in self._windows.items()
                if any(now - ts < WINDOW_MS for ts in timestamps)
            }
            return {
                "total_keys": len(self._windows),
                "active_users_1m": len(active_users),
            }


__all__ = ["RateLimiter", "DEFAULT_LIMITS", "DEFAULT_LIMIT", "WINDOW_MS"]
