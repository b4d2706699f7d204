"""
Boundary parsing of webhook bodies into inbound message variants.

Bodies that do not validate raise InvalidInput. Well-formed updates the bot
has no use for (edited messages, stickers, echoes) parse to None / [].
"""
from __future__ import annotations

from typing import Any, Dict, List, Optional

from pydantic import BaseModel, ConfigDict, Field, ValidationError

from core.errors import InvalidInput
from core.types import (
    AttachmentMessage,
    CallbackAction,
    CommandMessage,
    DiscordCommand,
    DiscordPing,
    InboundMessage,
    Platform,
    Postback,
    TextMessage,
)


class _Payload(BaseModel):
    model_config = ConfigDict(extra="ignore", populate_by_name=True)


# --- Telegram -----------------------------------------------------------------

class TelegramUser(_Payload):
    id: int
    is_bot: bool = False


class TelegramChat(_Payload):
    id: int
    type: str = "private"


class TelegramMessage(_Payload):
    message_id: int
    from_user: Optional[TelegramUser] = Field(default=None, alias="from")
    chat: TelegramChat
    text: Optional[str] = None
    reply_to_message: Optional[Dict[str, Any]] = None


class TelegramCallbackQuery(_Payload):
    id: str
    from_user: TelegramUser = Field(alias="from")
    data: Optional[str] = None
    message: Optional[TelegramMessage] = None


class TelegramUpdate(_Payload):
    update_id: int
    message: Optional[TelegramMessage] = None
    callback_query: Optional[TelegramCallbackQuery] = None


def parse_telegram_update(body: Any) -> Optional[InboundMessage]:
    try:
        update = TelegramUpdate.model_validate(body)
    except ValidationError as exc:
        raise InvalidInput(f"Malformed Telegram update: {exc.error_count()} error(s)") from exc

    query = update.callback_query
    if query is not None:
        if not query.data:
            return None
        chat_id = query.message.chat.id if query.message else query.from_user.id
        return CallbackAction(
            platform=Platform.TELEGRAM,
            sender_id=str(query.from_user.id),
            data=query.data,
            chat_id=str(chat_id),
        )

    message = update.message
    if message is None or message.text is None or message.from_user is None:
        return None

    sender_id = str(message.from_user.id)
    chat_id = str(message.chat.id)
    is_private = message.chat.type == "private"
    text = message.text

    if text.startswith("/"):
        parts = text[1:].split()
        if not parts:
            return None
        command = parts[0].split("@", 1)[0].lower()
        return CommandMessage(
            platform=Platform.TELEGRAM,
            sender_id=sender_id,
            command=command,
            args=parts[1:],
            chat_id=chat_id,
            is_private=is_private,
        )

    return TextMessage(
        platform=Platform.TELEGRAM,
        sender_id=sender_id,
        text=text,
        chat_id=chat_id,
        is_private=is_private,
        is_reply=message.reply_to_message is not None,
    )


# --- Discord interactions -------------------------------------------------------

DISCORD_PING = 1
DISCORD_APPLICATION_COMMAND = 2
DISCORD_SUB_COMMAND = 1


class DiscordUser(_Payload):
    id: str


class DiscordMember(_Payload):
    user: DiscordUser


class DiscordOption(_Payload):
    name: str
    type: int
    value: Any = None
    options: List["DiscordOption"] = Field(default_factory=list)


DiscordOption.model_rebuild()


class DiscordCommandData(_Payload):
    name: str
    options: List[DiscordOption] = Field(default_factory=list)


class DiscordInteraction(_Payload):
    type: int
    data: Optional[DiscordCommandData] = None
    member: Optional[DiscordMember] = None
    user: Optional[DiscordUser] = None


def parse_discord_interaction(body: Any) -> Optional[InboundMessage]:
    try:
        interaction = DiscordInteraction.model_validate(body)
    except ValidationError as exc:
        raise InvalidInput(f"Malformed Discord interaction: {exc.error_count()} error(s)") from exc

    if interaction.type == DISCORD_PING:
        return DiscordPing()
    if interaction.type != DISCORD_APPLICATION_COMMAND:
        return None

    # guild interactions carry member.user, DMs carry user
    user = interaction.member.user if interaction.member else interaction.user
    if interaction.data is None or user is None:
        raise InvalidInput("Discord command interaction without data or user")

    subcommand = None
    options = interaction.data.options
    for option in options:
        if option.type == DISCORD_SUB_COMMAND:
            subcommand = option.name
            options = option.options
            break

    return DiscordCommand(
        user_id=user.id,
        name=interaction.data.name,
        subcommand=subcommand,
        options={option.name: option.value for option in options},
    )


# --- Meta (Facebook, Instagram, WhatsApp) ---------------------------------------

class MetaSender(_Payload):
    id: str


class MetaMessage(_Payload):
    mid: Optional[str] = None
    text: Optional[str] = None
    is_echo: bool = False
    attachments: Optional[List[Dict[str, Any]]] = None


class MetaMessaging(_Payload):
    sender: MetaSender
    message: Optional[MetaMessage] = None
    postback: Optional[Dict[str, Any]] = None


class WhatsAppText(_Payload):
    body: str


class WhatsAppMessage(_Payload):
    from_number: str = Field(alias="from")
    type: str = "text"
    text: Optional[WhatsAppText] = None
    timestamp: Optional[str] = None


class WhatsAppMetadata(_Payload):
    phone_number_id: Optional[str] = None


class WhatsAppValue(_Payload):
    messages: List[WhatsAppMessage] = Field(default_factory=list)
    metadata: Optional[WhatsAppMetadata] = None


class WhatsAppChange(_Payload):
    value: Optional[WhatsAppValue] = None


class MetaEntry(_Payload):
    id: Optional[str] = None
    messaging: List[MetaMessaging] = Field(default_factory=list)
    changes: List[WhatsAppChange] = Field(default_factory=list)


class MetaWebhook(_Payload):
    object: str
    entry: List[MetaEntry] = Field(default_factory=list)


_MESSENGER_OBJECTS = {
    "page": Platform.FACEBOOK,
    "instagram": Platform.INSTAGRAM,
}


def _parse_messaging(platform: Platform, event: MetaMessaging) -> Optional[InboundMessage]:
    sender_id = event.sender.id
    message = event.message
    if message is not None:
        if message.is_echo:
            return None
        if message.attachments:
            return AttachmentMessage(
                platform=platform,
                sender_id=sender_id,
                attachment_types=[str(a.get("type", "unknown")) for a in message.attachments],
                text=message.text,
            )
        if message.text is not None:
            return TextMessage(platform=platform, sender_id=sender_id, text=message.text)
        return None

    if event.postback is not None and platform is Platform.FACEBOOK:
        return Postback(platform=platform, sender_id=sender_id, payload=event.postback)
    return None


def _parse_whatsapp(message: WhatsAppMessage, phone_number_id: Optional[str]) -> InboundMessage:
    if message.text is not None:
        return TextMessage(
            platform=Platform.WHATSAPP,
            sender_id=message.from_number,
            text=message.text.body,
            reply_address=phone_number_id,
        )
    return AttachmentMessage(
        platform=Platform.WHATSAPP,
        sender_id=message.from_number,
        attachment_types=[message.type],
        reply_address=phone_number_id,
    )


def parse_meta_event(body: Any) -> List[InboundMessage]:
    try:
        webhook = MetaWebhook.model_validate(body)
    except ValidationError as exc:
        raise InvalidInput(f"Malformed Meta webhook: {exc.error_count()} error(s)") from exc

    inbound: List[InboundMessage] = []

    platform = _MESSENGER_OBJECTS.get(webhook.object)
    if platform is not None:
        for entry in webhook.entry:
            for event in entry.messaging:
                parsed = _parse_messaging(platform, event)
                if parsed is not None:
                    inbound.append(parsed)

    elif webhook.object == "whatsapp_business_account":
        for entry in webhook.entry:
            for change in entry.changes:
                if change.value is None:
                    continue
                phone_number_id = change.value.metadata.phone_number_id if change.value.metadata else None
                for message in change.value.messages:
                    inbound.append(_parse_whatsapp(message, phone_number_id))

    return inbound


__all__ = [
    "parse_telegram_update",
    "parse_discord_interaction",
    "parse_meta_event",
    "DISCORD_PING",
    "DISCORD_APPLICATION_COMMAND",
]
