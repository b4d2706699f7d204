"""
Meta webhook adapter for Facebook Messenger, Instagram and WhatsApp.
Replies go out through the Graph API.
"""
from __future__ import annotations

import secrets
from typing import Any, Dict, Mapping, Optional

import httpx

from core.errors import AuthenticationError, InvalidInput
from core.types import (
    AttachmentMessage,
    InboundMessage,
    InteractionType,
    Platform,
    Postback,
    TextMessage,
)
from utils.logger import get_logger

from .common import DEFAULT_REPLY, HELP_REPLY, InteractionGate
from .payloads import parse_meta_event

LOGGER = get_logger(__name__)


class GraphApiClient:
    """Send-API calls. Failures are logged; the webhook is still acknowledged."""

    def __init__(
        self,
        client: httpx.AsyncClient,
        *,
        tokens: Mapping[Platform, str],
        base_url: str = "https://graph.facebook.com",
        api_version: str = "v17.0",
    ):
        self._client = client
        self._tokens = dict(tokens)
        self._base = f"{base_url.rstrip('/')}/{api_version}"

    def build_request(
        self,
        platform: Platform,
        recipient_id: str,
        text: str,
        reply_address: Optional[str] = None,
    ) -> Optional[tuple[str, Dict[str, Any]]]:
        if platform is Platform.WHATSAPP:
            if not reply_address:
                return None
            return (
                f"{self._base}/{reply_address}/messages",
                {"messaging_product": "whatsapp", "to": recipient_id, "text": {"body": text}},
            )
        return (
            f"{self._base}/me/messages",
            {"recipient": {"id": recipient_id}, "message": {"text": text}},
        )

    async def send_text(
        self,
        platform: Platform,
        recipient_id: str,
        text: str,
        reply_address: Optional[str] = None,
    ) -> bool:
        token = self._tokens.get(platform)
        request = self.build_request(platform, recipient_id, text, reply_address)
        if not token or request is None:
            LOGGER.warning(f"{platform.value} reply to {recipient_id} dropped: no token or phone number id")
            return False

        url, payload = request
        try:
            response = await self._client.post(url, params={"access_token": token}, json=payload)
            response.raise_for_status()
            return True
        except httpx.HTTPError as e:
            LOGGER.error(f"Failed to send {platform.value} message to {recipient_id}: {e}")
            return False


class MetaHandler:
    def __init__(self, *, gate: InteractionGate, graph: GraphApiClient, verify_token: str):
        self._gate = gate
        self._graph = graph
        self._verify_token = verify_token

    def verify(self, mode: Optional[str], token: Optional[str], challenge: Optional[str]) -> str:
        """Webhook subscription handshake; returns the challenge to echo back."""
        if not challenge:
            raise InvalidInput("Missing challenge parameter")
        supplied = (token or "").encode("utf-8")
        if (
            mode != "subscribe"
            or not self._verify_token
            or not secrets.compare_digest(supplied, self._verify_token.encode("utf-8"))
        ):
            raise AuthenticationError("Webhook verification token mismatch")
        return challenge

    async def handle(self, body: Any) -> int:
        messages = parse_meta_event(body)
        for message in messages:
            await self.dispatch(message)
        return len(messages)

    async def dispatch(self, message: InboundMessage) -> None:
        if isinstance(message, Postback):
            await self._gate.record(message.platform, message.sender_id, InteractionType.POSTBACK, message.payload)
        elif isinstance(message, TextMessage):
            await self._on_text(message)
        elif isinstance(message, AttachmentMessage):
            await self._on_attachment(message)

    async def _on_text(self, message: TextMessage) -> None:
        refusal = self._gate.check(message.platform, message.sender_id, message.text)
        if refusal:
            await self._reply(message, refusal)
            return

        await self._gate.record(
            message.platform,
            message.sender_id,
            InteractionType.MESSAGE,
            message.text,
            {"messageType": "text"},
        )
        reply = HELP_REPLY if "help" in message.text.lower() else DEFAULT_REPLY
        await self._reply(message, reply)

    async def _on_attachment(self, message: AttachmentMessage) -> None:
        refusal = self._gate.check(message.platform, message.sender_id, message.text)
        if refusal:
            await self._reply(message, refusal)
            return

        await self._gate.record(
            message.platform,
            message.sender_id,
            InteractionType.MESSAGE,
            message.text or "",
            {"messageType": "attachment", "attachmentTypes": list(message.attachment_types)},
        )
        await self._reply(message, DEFAULT_REPLY)

    async def _reply(self, message: TextMessage | AttachmentMessage, text: str) -> None:
        await self._graph.send_text(message.platform, message.sender_id, text, message.reply_address)


__all__ = ["MetaHandler", "GraphApiClient"]
