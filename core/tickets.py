"""
Support tickets. Stored as documents of type "ticket" alongside interaction
records, so they are reachable through the user and type indexes.
"""
from __future__ import annotations

import time
import uuid
from datetime import datetime
from enum import Enum
from typing import Any, Callable, Dict, List, Optional

from core.errors import StoreError, StoreErrorKind, TicketNotFound
from core.types import InteractionType, Platform, to_iso, utc_now
from storage.interfaces import USER_TIMESTAMP_INDEX, Item, KeyCondition, RecordStore
from utils.logger import get_logger

LOGGER = get_logger(__name__)

TICKET_CATEGORIES: Dict[str, str] = {
    "tech": "Technical Support",
    "account": "Account Issues",
    "feature": "Feature Request",
    "other": "Other",
}


class TicketStatus(str, Enum):
    OPEN = "open"
    IN_PROGRESS = "in_progress"
    RESOLVED = "resolved"
    CLOSED = "closed"


def new_ticket_id() -> str:
    return f"TICKET_{int(time.time() * 1000)}_{uuid.uuid4().hex[:5]}"


class TicketService:
    def __init__(self, records: RecordStore, *, clock: Callable[[], datetime] = utc_now):
        self._records = records
        self._clock = clock

    async def create_ticket(
        self,
        *,
        user_id: str,
        platform: Platform,
        subject: str,
        description: str,
        category: str = "other",
        priority: str = "medium",
    ) -> Item:
        now = to_iso(self._clock())
        ticket: Item = {
            "id": new_ticket_id(),
            "type": InteractionType.TICKET.value,
            "userId": str(user_id),
            "platform": platform.value,
            "subject": subject,
            "description": description,
            "category": category,
            "status": TicketStatus.OPEN.value,
            "priority": priority,
            "responses": [],
            "createdAt": now,
            "updatedAt": now,
            "timestamp": now,
        }
        await self._records.put(ticket)
        LOGGER.info(f"Ticket {ticket['id']} opened by {platform.value}:{user_id} ({category})")
        return ticket

    async def get_ticket(self, ticket_id: str) -> Optional[Item]:
        item = await self._records.get({"id": ticket_id})
        if item is None or item.get("type") != InteractionType.TICKET.value:
            return None
        return item

    async def _update(self, ticket_id: str, patch: Dict[str, Any]) -> Item:
        try:
            return await self._records.update({"id": ticket_id}, patch)
        except StoreError as exc:
            if exc.kind is StoreErrorKind.NOT_FOUND:
                raise TicketNotFound(f"Ticket {ticket_id} not found") from exc
            raise

    async def add_response(self, ticket_id: str, *, user_id: str, content: str, is_staff: bool = False) -> Item:
        ticket = await self.get_ticket(ticket_id)
        if ticket is None:
            raise TicketNotFound(f"Ticket {ticket_id} not found")

        now = to_iso(self._clock())
        response = {"userId": str(user_id), "content": content, "timestamp": now, "isStaff": is_staff}
        responses = list(ticket.get("responses") or []) + [response]
        return await self._update(ticket_id, {"responses": responses, "updatedAt": now})

    async def update_status(self, ticket_id: str, status: TicketStatus, comment: Optional[str] = None) -> Item:
        patch: Dict[str, Any] = {"status": TicketStatus(status).value, "updatedAt": to_iso(self._clock())}
        if comment:
            patch["statusComment"] = comment
        return await self._update(ticket_id, patch)

    async def get_user_tickets(self, user_id: str, status: Optional[TicketStatus] = None) -> List[Item]:
        filter: Dict[str, Any] = {"type": InteractionType.TICKET.value}
        if status is not None:
            filter["status"] = TicketStatus(status).value
        items = await self._records.query(
            USER_TIMESTAMP_INDEX.name,
            KeyCondition(partition=str(user_id)),
            filter=filter,
        )
        return list(items)


def format_ticket(ticket: Item) -> str:
    category = TICKET_CATEGORIES.get(ticket.get("category", ""), ticket.get("category", ""))
    lines = [
        f"Ticket #{ticket['id']}",
        f"Subject: {ticket.get('subject', '')}",
        f"Category: {category}",
        f"Status: {ticket.get('status', '')}",
        f"Created: {ticket.get('createdAt', '')}",
    ]
    description = ticket.get("description")
    if description:
        lines.append(f"\n{description}")
    for response in ticket.get("responses") or []:
        lines.append(f"\n[{response.get('timestamp', '')}] {response.get('content', '')}")
    return "\n".join(lines)


__all__ = ["TicketService", "TicketStatus", "TICKET_CATEGORIES", "new_ticket_id", "format_ticket"]
