import pytest

from bot.handlers.discord import CHANNEL_MESSAGE_WITH_SOURCE, EPHEMERAL, message_response
from bot.handlers.payloads import parse_discord_interaction
from core.errors import InvalidInput
from core.types import DiscordCommand


def command(name, *, sub=None, options=None, user="u-1", dm=False):
    opts = [{"name": k, "type": 3, "value": v} for k, v in (options or {}).items()]
    if sub:
        opts = [{"name": sub, "type": 1, "options": opts}]
    body = {"type": 2, "data": {"name": name, "options": opts}}
    if dm:
        body["user"] = {"id": user}
    else:
        body["member"] = {"user": {"id": user}}
    return body


async def test_ping(app_context):
    assert await app_context.discord.handle({"type": 1}) == {"type": 1}


async def test_ignored_interaction_type(app_context):
    assert await app_context.discord.handle({"type": 3, "data": {"name": "button"}}) is None


def test_parse_subcommand_and_dm_user():
    parsed = parse_discord_interaction(command("ticket", sub="new", options={"subject": "S"}, dm=True))
    assert parsed == DiscordCommand(user_id="u-1", name="ticket", subcommand="new", options={"subject": "S"})


def test_command_without_user_is_rejected():
    with pytest.raises(InvalidInput):
        parse_discord_interaction({"type": 2, "data": {"name": "stats"}})


async def test_ticket_new(app_context, records):
    response = await app_context.discord.handle(
        command("ticket", sub="new", options={"subject": "Crash", "description": "App crashes", "category": "tech"})
    )

    assert response["type"] == CHANNEL_MESSAGE_WITH_SOURCE
    assert response["data"]["flags"] == EPHEMERAL
    [ticket] = [item for item in records.items.values() if item["type"] == "ticket"]
    assert response["data"]["content"] == f"Ticket created! #{ticket['id']}"
    assert ticket["platform"] == "discord"
    assert ticket["category"] == "tech"

    commands = [item for item in records.items.values() if item["type"] == "command"]
    assert [c["content"] for c in commands] == ["ticket"]


async def test_ticket_new_missing_options(app_context, records):
    response = await app_context.discord.handle(command("ticket", sub="create", options={"subject": "Only"}))
    assert response["data"]["content"].startswith("Missing required options")
    assert not [item for item in records.items.values() if item["type"] == "ticket"]


async def test_ticket_list(app_context):
    empty = await app_context.discord.handle(command("ticket", sub="list"))
    assert empty["data"]["content"] == "You have no open tickets."

    await app_context.discord.handle(
        command("ticket", sub="new", options={"subject": "A", "description": "B"})
    )
    listed = await app_context.discord.handle(command("ticket", sub="list"))
    [embed] = listed["data"]["embeds"]
    assert len(embed["fields"]) == 1
    assert "Subject: A" in embed["fields"][0]["value"]


async def test_stats(app_context):
    response = await app_context.discord.handle(command("stats"))
    [embed] = response["data"]["embeds"]
    assert embed["fields"][0] == {"name": "Total Interactions", "value": "1", "inline": True}


async def test_unknown_command_and_subcommand(app_context):
    assert (await app_context.discord.handle(command("dance")))["data"]["content"] == "Unknown command"
    assert (await app_context.discord.handle(command("ticket", sub="close")))["data"]["content"] == "Unknown subcommand"


async def test_command_rate_limit(app_context, records):
    for _ in range(10):
        await app_context.discord.handle(command("dance"))
    response = await app_context.discord.handle(command("dance"))

    assert response["data"]["content"].startswith("You are sending messages too quickly")
    assert len(records.items) == 10


def test_message_response_public():
    assert message_response("hi", ephemeral=False) == {"type": 4, "data": {"content": "hi"}}
