"""Platform webhook adapters."""
from __future__ import annotations

from .common import InteractionGate
from .discord import DiscordHandler
from .meta import GraphApiClient, MetaHandler
from .telegram import PendingTicket, TelegramHandler

__all__ = [
    "InteractionGate",
    "DiscordHandler",
    "GraphApiClient",
    "MetaHandler",
    "PendingTicket",
    "TelegramHandler",
]
