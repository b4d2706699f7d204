"""
Telegram webhook adapter.
/ticket new  - pick a category, then reply with the description
/ticket list - list own tickets, with view, respond and close buttons
/stats       - personal engagement figures (private chats only)
"""
from __future__ import annotations

import time
from dataclasses import dataclass
from typing import Any, Callable, Dict, List, Optional

from telegram import Bot, InlineKeyboardButton, InlineKeyboardMarkup

from core.analytics import Analytics
from core.errors import TicketNotFound
from core.tickets import TICKET_CATEGORIES, TicketService, TicketStatus, format_ticket
from core.types import CallbackAction, CommandMessage, InteractionType, Platform, TextMessage
from utils.logger import get_logger

from .common import InteractionGate
from .payloads import parse_telegram_update

LOGGER = get_logger(__name__)

UNKNOWN_COMMAND_REPLY = "Unknown command. Available commands:\n/ticket new\n/ticket list\n/stats"
UNKNOWN_TICKET_COMMAND_REPLY = "Unknown ticket command. Available commands: /ticket new, /ticket list"
SELECT_CATEGORY_REPLY = "Please select a ticket category:"
DESCRIBE_TICKET_REPLY = "Please reply to this message with your ticket description."
RESPOND_TICKET_REPLY = "Please reply to this message with your response."
NO_TICKETS_REPLY = "You have no open tickets."
RESPONSE_ADDED_REPLY = "Response added to ticket."
TICKET_NOT_FOUND_REPLY = "Ticket not found."

PENDING_TTL_SECONDS = 15 * 60
MAX_PENDING = 10_000


@dataclass(slots=True)
class PendingTicket:
    """What the user's next reply-to message completes."""
    category: Optional[str] = None
    responding_to: Optional[str] = None
    created_at: float = 0.0


def category_keyboard() -> InlineKeyboardMarkup:
    return InlineKeyboardMarkup(
        [
            [InlineKeyboardButton(label, callback_data=f"ticket:category:{code}")]
            for code, label in TICKET_CATEGORIES.items()
        ]
    )


def ticket_list_keyboard(tickets: List[Dict[str, Any]]) -> InlineKeyboardMarkup:
    return InlineKeyboardMarkup(
        [
            [
                InlineKeyboardButton(f"View #{t['id']}", callback_data=f"ticket:view:{t['id']}"),
                InlineKeyboardButton("Respond", callback_data=f"ticket:respond:{t['id']}"),
                InlineKeyboardButton("Close", callback_data=f"ticket:close:{t['id']}"),
            ]
            for t in tickets
        ]
    )


class TelegramHandler:
    def __init__(
        self,
        *,
        bot: Optional[Bot],
        gate: InteractionGate,
        tickets: TicketService,
        analytics: Analytics,
        pending: Optional[Dict[str, PendingTicket]] = None,
        pending_ttl: float = PENDING_TTL_SECONDS,
        max_pending: int = MAX_PENDING,
        clock: Callable[[], float] = time.monotonic,
    ):
        self._bot = bot
        self._gate = gate
        self._tickets = tickets
        self._analytics = analytics
        self.pending: Dict[str, PendingTicket] = pending if pending is not None else {}
        self._pending_ttl = pending_ttl
        self._max_pending = max_pending
        self._clock = clock

    def remember(self, user_id: str, pending: PendingTicket) -> None:
        """Store what the user's next reply completes, dropping stale or excess entries."""
        now = self._clock()
        pending.created_at = now
        self.pending.pop(user_id, None)
        self._purge_pending(now)
        while self.pending and len(self.pending) >= self._max_pending:
            # dicts keep insertion order, so the first key is the oldest
            del self.pending[next(iter(self.pending))]
        self.pending[user_id] = pending

    def pending_for(self, user_id: str) -> Optional[PendingTicket]:
        pending = self.pending.get(user_id)
        if pending is not None and self._clock() - pending.created_at > self._pending_ttl:
            del self.pending[user_id]
            LOGGER.debug(f"Pending ticket state for {user_id} expired")
            return None
        return pending

    def _purge_pending(self, now: float) -> None:
        expired = [uid for uid, p in self.pending.items() if now - p.created_at > self._pending_ttl]
        for uid in expired:
            del self.pending[uid]

    async def handle(self, body: Any) -> None:
        message = parse_telegram_update(body)
        if message is None:
            return

        if isinstance(message, CallbackAction):
            await self.on_callback(message)
        elif isinstance(message, CommandMessage):
            await self.on_command(message)
        elif isinstance(message, TextMessage):
            await self.on_text(message)

    async def reply(self, chat_id: Optional[str], text: str, reply_markup: Optional[InlineKeyboardMarkup] = None) -> None:
        if self._bot is None or chat_id is None:
            LOGGER.warning(f"Telegram bot not configured, reply to {chat_id} dropped")
            return
        try:
            await self._bot.send_message(chat_id=chat_id, text=text, reply_markup=reply_markup)
        except Exception as e:
            LOGGER.error(f"Failed to send Telegram message to {chat_id}: {e}")

    # -- commands -----------------------------------------------------------

    async def on_command(self, message: CommandMessage) -> None:
        refusal = self._gate.check(Platform.TELEGRAM, message.sender_id, None, action="command")
        if refusal:
            await self.reply(message.chat_id, refusal)
            return

        await self._gate.record(
            Platform.TELEGRAM,
            message.sender_id,
            InteractionType.COMMAND,
            " ".join(["/" + message.command, *message.args]),
        )

        if message.command == "ticket":
            await self._ticket_command(message, message.args[0].lower() if message.args else "help")
        elif message.command == "stats":
            if message.is_private:
                await self._send_stats(message)
        else:
            await self.reply(message.chat_id, UNKNOWN_COMMAND_REPLY)

    async def _ticket_command(self, message: CommandMessage, subcommand: str) -> None:
        if subcommand == "new":
            await self.reply(message.chat_id, SELECT_CATEGORY_REPLY, reply_markup=category_keyboard())
            return

        if subcommand == "list":
            tickets = await self._tickets.get_user_tickets(message.sender_id)
            if not tickets:
                await self.reply(message.chat_id, NO_TICKETS_REPLY)
                return
            text = "\n\n".join(
                f"🎫 #{t['id']}\nStatus: {t.get('status')}\nSubject: {t.get('subject')}" for t in tickets
            )
            await self.reply(message.chat_id, text, reply_markup=ticket_list_keyboard(tickets))
            return

        await self.reply(message.chat_id, UNKNOWN_TICKET_COMMAND_REPLY)

    async def _send_stats(self, message: CommandMessage) -> None:
        stats = await self._analytics.user_engagement(message.sender_id)
        hours = ", ".join(f"{h}:00" for h in stats.active_hours)
        await self.reply(
            message.chat_id,
            "📊 Your Engagement Stats\n\n"
            f"Total Interactions: {stats.total_interactions}\n"
            f"Active Hours: {hours}\n"
            f"Engagement Score: {stats.engagement_score:.1f}/100",
        )

    # -- callbacks ----------------------------------------------------------

    async def on_callback(self, action: CallbackAction) -> None:
        parts = action.data.split(":", 2)
        if len(parts) != 3 or parts[0] != "ticket":
            LOGGER.debug(f"Ignoring callback data {action.data!r}")
            return
        _, verb, value = parts

        if verb == "category":
            self.remember(action.sender_id, PendingTicket(category=value))
            await self.reply(action.chat_id, DESCRIBE_TICKET_REPLY)
        elif verb == "view":
            ticket = await self._tickets.get_ticket(value)
            if ticket is None:
                await self.reply(action.chat_id, TICKET_NOT_FOUND_REPLY)
                return
            await self.reply(action.chat_id, format_ticket(ticket))
        elif verb == "respond":
            self.remember(action.sender_id, PendingTicket(responding_to=value))
            await self.reply(action.chat_id, RESPOND_TICKET_REPLY)
        elif verb == "close":
            await self._close_ticket(action, value)

    async def _close_ticket(self, action: CallbackAction, ticket_id: str) -> None:
        ticket = await self._tickets.get_ticket(ticket_id)
        # users may only close their own tickets
        if ticket is None or str(ticket.get("userId")) != action.sender_id:
            await self.reply(action.chat_id, TICKET_NOT_FOUND_REPLY)
            return
        await self._tickets.update_status(ticket_id, TicketStatus.CLOSED, comment="Closed by user")
        LOGGER.info(f"Ticket {ticket_id} closed by {action.sender_id}")
        await self.reply(action.chat_id, f"Ticket #{ticket_id} closed.")

    # -- plain text ---------------------------------------------------------

    async def on_text(self, message: TextMessage) -> None:
        pending = self.pending_for(message.sender_id) if message.is_reply else None
        if pending is not None:
            await self._complete_pending(message, pending)
            return

        refusal = self._gate.check(Platform.TELEGRAM, message.sender_id, message.text)
        if refusal:
            await self.reply(message.chat_id, refusal)
            return

        await self._gate.record(Platform.TELEGRAM, message.sender_id, InteractionType.MESSAGE, message.text)

    async def _complete_pending(self, message: TextMessage, pending: PendingTicket) -> None:
        user_id = message.sender_id
        if pending.category:
            ticket = await self._tickets.create_ticket(
                user_id=user_id,
                platform=Platform.TELEGRAM,
                subject=message.text.split("\n", 1)[0] or "No subject",
                description=message.text,
                category=pending.category,
            )
            self.pending.pop(user_id, None)
            await self.reply(
                message.chat_id,
                f"Ticket created! #{ticket['id']}\nUse /ticket list to view your tickets.",
            )
            return

        if pending.responding_to:
            self.pending.pop(user_id, None)
            try:
                await self._tickets.add_response(pending.responding_to, user_id=user_id, content=message.text)
            except TicketNotFound:
                await self.reply(message.chat_id, TICKET_NOT_FOUND_REPLY)
                return
            await self.reply(message.chat_id, RESPONSE_ADDED_REPLY)


__all__ = ["TelegramHandler", "PendingTicket", "category_keyboard"]
