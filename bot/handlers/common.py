"""Admission checks and persistence shared by every platform adapter."""
from __future__ import annotations

from typing import Any, Dict, Optional, Sequence

from bot.services.rate_limiter import RateLimiter
from core.types import InteractionRecord, InteractionType, Platform
from filters.moderation import check_message
from storage.interfaces import RecordStore
from utils.logger import get_logger

LOGGER = get_logger(__name__)

RATE_LIMITED_REPLY = "You are sending messages too quickly. Please wait a moment."
PROFANITY_REPLY = "Your message contains inappropriate content."
SPAM_REPLY = "Your message has been flagged as spam."
HELP_REPLY = "Available commands:\n- help: Show this message"
DEFAULT_REPLY = "Message received. How can I help you?"

_REFUSALS = {"profanity": PROFANITY_REPLY, "spam": SPAM_REPLY}


class InteractionGate:
    def __init__(
        self,
        rate_limiter: RateLimiter,
        records: RecordStore,
        *,
        deny_list: Optional[Sequence[str]] = None,
    ):
        self._rate_limiter = rate_limiter
        self._records = records
        self._deny_list = deny_list

    def check(self, platform: Platform, user_id: str, text: Optional[str], action: str = "message") -> Optional[str]:
        """
        Rate limit, then profanity, then spam.

        Returns:
            The refusal reply to send, or None if the message is admitted
        """
        if not self._rate_limiter.is_allowed(f"{platform.value}:{user_id}", action):
            return RATE_LIMITED_REPLY
        failed = check_message(text, self._deny_list) if text else None
        if failed:
            LOGGER.info(f"Rejected {platform.value} message from {user_id}: {failed}")
            return _REFUSALS[failed]
        return None

    async def record(
        self,
        platform: Platform,
        user_id: str,
        type: InteractionType,
        content: Any,
        metadata: Optional[Dict[str, Any]] = None,
    ) -> InteractionRecord:
        record = InteractionRecord.create(user_id, platform, type, content, metadata)
        await self._records.put(record.to_item())
        return record


__all__ = [
    "InteractionGate",
    "RATE_LIMITED_REPLY",
    "PROFANITY_REPLY",
    "SPAM_REPLY",
    "HELP_REPLY",
    "DEFAULT_REPLY",
]
