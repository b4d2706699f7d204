"""
Content moderation: deny-list profanity check, spam heuristics and a
simple user trust score.
"""
from __future__ import annotations

import re
from dataclasses import dataclass
from datetime import datetime
from typing import Iterable, Optional, Sequence

from config.config import settings
from core.errors import InvalidInput
from core.types import parse_iso, utc_now

SPAM_PATTERNS: tuple[re.Pattern[str], ...] = (
    re.compile(r"(\w+)\1{4,}", re.IGNORECASE),    # same word run 5+ times
    re.compile(r"(https?://[^\s]+[\s]*){5,}"),    # 5+ links
    re.compile(r"(.)\1{4,}"),                     # same character 5+ times
)


def _check_text(content: object) -> str:
    if not isinstance(content, str):
        raise InvalidInput(f"Expected text, got {type(content).__name__}")
    return content


def is_profanity_free(content: str, deny_list: Optional[Iterable[str]] = None) -> bool:
    lowered = _check_text(content).lower()
    words = settings.MODERATION_DENY_LIST if deny_list is None else deny_list
    return not any(word.lower() in lowered for word in words if word)


def is_not_spam(content: str) -> bool:
    text = _check_text(content)
    return not any(pattern.search(text) for pattern in SPAM_PATTERNS)


@dataclass(frozen=True)
class UserStanding:
    user_id: str
    created_at: str
    reputation_score: float = 0.0
    violations: int = 0


def calculate_trust_score(user: UserStanding, *, now: Optional[datetime] = None) -> float:
    """Score in [0, 100]: base 50, up to +20 for account age, +0.2 per reputation point, -10 per violation."""
    now = now or utc_now()
    age_days = (now - parse_iso(user.created_at)).total_seconds() / 86400

    score = 50.0
    score += min(age_days / 30 * 10, 20)
    score += (user.reputation_score or 0) * 0.2
    score -= (user.violations or 0) * 10
    return max(0.0, min(100.0, score))


def check_message(content: str, deny_list: Optional[Sequence[str]] = None) -> Optional[str]:
    """Name of the first failed check, or None if the text passes."""
    if not is_profanity_free(content, deny_list):
        return "profanity"
    if not is_not_spam(content):
        return "spam"
    return None


__all__ = [
    "SPAM_PATTERNS",
    "is_profanity_free",
    "is_not_spam",
    "UserStanding",
    "calculate_trust_score",
    "check_message",
]
