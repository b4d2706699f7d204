"""
Discord HTTP interactions endpoint: /stats and /ticket (new, list).
Replies are returned inline as interaction responses.
"""
from __future__ import annotations

from typing import Any, Dict, List, Optional

from core.analytics import Analytics
from core.tickets import TicketService
from core.types import DiscordCommand, DiscordPing, InteractionType, Platform, to_iso, utc_now
from utils.logger import get_logger

from .common import InteractionGate
from .payloads import parse_discord_interaction

LOGGER = get_logger(__name__)

PONG = 1
CHANNEL_MESSAGE_WITH_SOURCE = 4
EPHEMERAL = 1 << 6


def message_response(
    content: Optional[str] = None,
    *,
    embeds: Optional[List[Dict[str, Any]]] = None,
    ephemeral: bool = True,
) -> Dict[str, Any]:
    data: Dict[str, Any] = {}
    if content is not None:
        data["content"] = content
    if embeds:
        data["embeds"] = embeds
    if ephemeral:
        data["flags"] = EPHEMERAL
    return {"type": CHANNEL_MESSAGE_WITH_SOURCE, "data": data}


class DiscordHandler:
    def __init__(self, *, gate: InteractionGate, tickets: TicketService, analytics: Analytics):
        self._gate = gate
        self._tickets = tickets
        self._analytics = analytics

    async def handle(self, body: Any) -> Optional[Dict[str, Any]]:
        """Interaction response body, or None for interaction types the bot ignores."""
        interaction = parse_discord_interaction(body)
        if isinstance(interaction, DiscordPing):
            return {"type": PONG}
        if isinstance(interaction, DiscordCommand):
            return await self.on_command(interaction)
        return None

    async def on_command(self, command: DiscordCommand) -> Dict[str, Any]:
        refusal = self._gate.check(Platform.DISCORD, command.user_id, None, action="command")
        if refusal:
            return message_response(refusal)

        await self._gate.record(Platform.DISCORD, command.user_id, InteractionType.COMMAND, command.name)

        if command.name == "stats":
            return await self._stats(command)
        if command.name == "ticket":
            return await self._ticket(command)
        return message_response("Unknown command")

    async def _stats(self, command: DiscordCommand) -> Dict[str, Any]:
        stats = await self._analytics.user_engagement(command.user_id)
        embed = {
            "title": "📊 Your Engagement Stats",
            "fields": [
                {"name": "Total Interactions", "value": str(stats.total_interactions), "inline": True},
                {
                    "name": "Active Hours",
                    "value": ", ".join(f"{h}:00" for h in stats.active_hours) or "-",
                    "inline": True,
                },
                {"name": "Engagement Score", "value": f"{stats.engagement_score:.1f}/100", "inline": True},
            ],
            "timestamp": to_iso(utc_now()),
        }
        return message_response(embeds=[embed])

    async def _ticket(self, command: DiscordCommand) -> Dict[str, Any]:
        if command.subcommand in ("new", "create"):
            subject = command.options.get("subject")
            description = command.options.get("description")
            if not subject or not description:
                return message_response("Missing required options: subject, description")
            ticket = await self._tickets.create_ticket(
                user_id=command.user_id,
                platform=Platform.DISCORD,
                subject=str(subject),
                description=str(description),
                category=str(command.options.get("category") or "other"),
            )
            return message_response(f"Ticket created! #{ticket['id']}")

        if command.subcommand == "list":
            tickets = await self._tickets.get_user_tickets(command.user_id)
            if not tickets:
                return message_response("You have no open tickets.")
            embed = {
                "title": "🎫 Your Tickets",
                "fields": [
                    {
                        "name": f"Ticket #{t['id']}",
                        "value": "\n".join(
                            [
                                f"Status: {t.get('status')}",
                                f"Subject: {t.get('subject')}",
                                f"Category: {t.get('category')}",
                            ]
                        ),
                    }
                    for t in tickets
                ],
            }
            return message_response(embeds=[embed])

        return message_response("Unknown subcommand")


__all__ = ["DiscordHandler", "message_response", "PONG", "CHANNEL_MESSAGE_WITH_SOURCE", "EPHEMERAL"]
