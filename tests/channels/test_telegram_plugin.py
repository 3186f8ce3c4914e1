"""Tests for TelegramPlugin."""

from datetime import datetime, timezone
from unittest.mock import AsyncMock, MagicMock

import pytest
from telegram.error import NetworkError

from relaybot.channels.envelope import InboundMessage
from relaybot.channels.plugins.telegram.config import TelegramConfig
from relaybot.channels.plugins.telegram.plugin import (
    TelegramPlugin,
    split_message,
    to_inbound,
)

# Token format: digits:rest (e.g. 123456:ABC). No real API calls are made.
FAKE_TOKEN = "123456:AAHdqTcvCH1vGWJxfSeofSAs0K5P"


def fake_message(text="hello", caption=None, thread_id=None):
    msg = MagicMock()
    msg.from_user.id = 789
    msg.chat_id = -100123
    msg.message_id = 456
    msg.message_thread_id = thread_id
    msg.text = text
    msg.caption = caption
    msg.date = datetime(2021, 1, 1, tzinfo=timezone.utc)
    msg.to_dict.return_value = {"message_id": 456}
    return msg


@pytest.fixture
def plugin():
    plugin = TelegramPlugin(TelegramConfig(bot_token=FAKE_TOKEN))
    plugin._app = MagicMock()
    plugin._app.bot.send_message = AsyncMock()
    return plugin


def test_to_inbound_text_message():
    inbound = to_inbound(fake_message(thread_id=12))

    assert inbound.channel == "telegram"
    assert inbound.room_id == "-100123"
    assert inbound.sender == "789"
    assert inbound.event_id == "456"
    assert inbound.thread_id == "12"
    assert inbound.content.msgtype == "text"
    assert inbound.content.body == "hello"
    assert inbound.raw == {"message_id": 456}


def test_to_inbound_non_text_message():
    inbound = to_inbound(fake_message(text=None, caption="a photo"))

    assert inbound.content.msgtype == "other"
    assert inbound.content.body == "a photo"
    assert inbound.thread_id is None


def test_split_message_short_body():
    assert split_message("hi", limit=10) == ["hi"]


def test_split_message_prefers_line_breaks():
    assert split_message("aaaa\nbbbb\ncc", limit=10) == ["aaaa\nbbbb", "cc"]


def test_split_message_hard_cut():
    assert split_message("a" * 25, limit=10) == ["a" * 10, "a" * 10, "a" * 5]


@pytest.mark.asyncio
async def test_on_update_forwards_to_handler(plugin):
    handler = AsyncMock()
    plugin.set_inbound_handler(handler)
    update = MagicMock()
    update.effective_message = fake_message()

    await plugin._on_update(update, None)

    handler.assert_awaited_once()
    inbound = handler.await_args.args[0]
    assert isinstance(inbound, InboundMessage)
    assert inbound.content.body == "hello"


@pytest.mark.asyncio
async def test_on_update_without_message_is_ignored(plugin):
    handler = AsyncMock()
    plugin.set_inbound_handler(handler)
    update = MagicMock()
    update.effective_message = None

    await plugin._on_update(update, None)

    handler.assert_not_awaited()


@pytest.mark.asyncio
async def test_send_text_replies_to_message(plugin):
    await plugin.send_text("-100123", "4", thread_id="12", reply_to="456")

    kwargs = plugin._app.bot.send_message.await_args.kwargs
    assert kwargs["chat_id"] == -100123
    assert kwargs["text"] == "4"
    assert kwargs["disable_notification"] is False
    assert kwargs["reply_parameters"].message_id == 456
    assert "message_thread_id" not in kwargs


@pytest.mark.asyncio
async def test_send_notice_is_silent(plugin):
    await plugin.send_notice("42", "Sorry", thread_id="7")

    kwargs = plugin._app.bot.send_message.await_args.kwargs
    assert kwargs["disable_notification"] is True
    assert kwargs["message_thread_id"] == 7


@pytest.mark.asyncio
async def test_send_failure_is_logged_not_raised(plugin):
    plugin._app.bot.send_message.side_effect = NetworkError("down")

    await plugin.send_text("42", "hello")


@pytest.mark.asyncio
async def test_send_before_start_raises():
    plugin = TelegramPlugin(TelegramConfig(bot_token=FAKE_TOKEN))
    with pytest.raises(RuntimeError, match="not started"):
        await plugin.send_text("42", "hello")


def test_identity_before_start_is_none():
    assert TelegramPlugin(TelegramConfig(bot_token=FAKE_TOKEN)).identity is None


def test_verify_webhook_no_secret():
    plugin = TelegramPlugin(TelegramConfig(bot_token=FAKE_TOKEN))
    assert plugin.verify_webhook({}) is True


def test_verify_webhook_case_insensitive_header():
    plugin = TelegramPlugin(TelegramConfig(bot_token=FAKE_TOKEN, webhook_secret="s3"))
    assert plugin.verify_webhook({"x-telegram-bot-api-secret-token": "s3"}) is True
    assert plugin.verify_webhook({"X-Telegram-Bot-Api-Secret-Token": "nope"}) is False
    assert plugin.verify_webhook({}) is False
