"""Telegram channel plugin using python-telegram-bot (v22)."""

from __future__ import annotations

import asyncio
import contextlib
from datetime import datetime, timezone
from typing import Any, Optional

from telegram import ChatMember, Message, ReplyParameters, Update
from telegram.constants import MessageLimit
from telegram.error import TelegramError
from telegram.ext import (
    Application,
    ApplicationBuilder,
    ChatMemberHandler,
    ContextTypes,
    MessageHandler,
    filters,
)

from relaybot.channels.base import ChannelCapabilities, ChannelMeta, InboundHandler
from relaybot.channels.envelope import TEXT_MSGTYPE, InboundMessage, MessageContent
from relaybot.infra.logging_config import get_logger
from .config import TelegramConfig

logger = get_logger("telegram")

SECRET_HEADER = "X-Telegram-Bot-Api-Secret-Token"
OTHER_MSGTYPE = "other"


def split_message(body: str, limit: int = MessageLimit.MAX_TEXT_LENGTH) -> list[str]:
    """Split a reply into chunks Telegram accepts, preferring line breaks."""
    chunks: list[str] = []
    rest = body
    while len(rest) > limit:
        cut = rest.rfind("\n", 0, limit)
        if cut <= 0:
            cut = limit
        chunks.append(rest[:cut])
        rest = rest[cut:].lstrip("\n")
    if rest:
        chunks.append(rest)
    return chunks


def to_inbound(msg: Message) -> InboundMessage:
    """Normalize a Telegram message into the envelope the dispatch engine expects."""
    sender = str(msg.from_user.id) if msg.from_user else "unknown"
    text = msg.text
    return InboundMessage(
        channel="telegram",
        room_id=str(msg.chat_id),
        sender=sender,
        event_id=str(msg.message_id),
        thread_id=str(msg.message_thread_id) if msg.message_thread_id else None,
        content=MessageContent(
            msgtype=TEXT_MSGTYPE if text else OTHER_MSGTYPE,
            body=text or msg.caption or "",
        ),
        timestamp=datetime.fromtimestamp(msg.date.timestamp(), tz=timezone.utc),
        raw=msg.to_dict(),
    )


class TelegramPlugin:
    id = "telegram"
    meta = ChannelMeta(label="Telegram", docs="/channels/telegram")
    capabilities = ChannelCapabilities(
        chat_types=["direct", "group", "channel", "thread"],
        supports_webhook=True,
        supports_polling=True,
        supports_threads=True,
        supports_notices=True,
    )

    def __init__(self, cfg: TelegramConfig) -> None:
        self.cfg = cfg
        self._app: Optional[Application] = None
        self._polling_task: Optional[asyncio.Task[None]] = None
        self._handler: Optional[InboundHandler] = None

    @property
    def identity(self) -> Optional[str]:
        if self._app is None:
            return None
        return str(self._app.bot.id)

    @property
    def webhook_mode(self) -> bool:
        return self.cfg.mode == "webhook"

    def set_inbound_handler(self, handler: InboundHandler) -> None:
        self._handler = handler

    async def start(self) -> None:
        builder = ApplicationBuilder().token(self.cfg.bot_token).concurrent_updates(True)
        if self.webhook_mode:
            builder = builder.updater(None)
        self._app = builder.build()
        self._app.add_handler(
            MessageHandler(filters.ALL & ~filters.UpdateType.EDITED, self._on_update)
        )
        if self.cfg.welcome_text:
            self._app.add_handler(
                ChatMemberHandler(self._on_membership, ChatMemberHandler.MY_CHAT_MEMBER)
            )
        await self._app.initialize()
        logger.info("Telegram bot %s initialized (%s mode)", self.identity, self.cfg.mode)

        if not self.webhook_mode:
            self._polling_task = asyncio.create_task(self._run_polling())

    async def stop(self) -> None:
        if self._app is None:
            return
        if self._polling_task is not None:
            try:
                await self._app.updater.stop()
                await self._app.stop()
            except RuntimeError:
                pass
            self._polling_task.cancel()
            with contextlib.suppress(asyncio.CancelledError):
                await self._polling_task
        await self._app.shutdown()

    async def _run_polling(self) -> None:
        assert self._app is not None
        await self._app.start()
        await self._app.updater.start_polling()

    async def _on_update(
        self, update: Update, _context: ContextTypes.DEFAULT_TYPE
    ) -> None:
        msg = update.effective_message
        if msg is None:
            return
        inbound = to_inbound(msg)
        logger.info(
            "Received %s message %s from %s in chat %s",
            inbound.content.msgtype,
            inbound.event_id,
            inbound.sender,
            inbound.room_id,
        )
        if self._handler is None:
            logger.warning("No inbound handler bound; dropping message %s", inbound.event_id)
            return
        await self._handler(inbound)

    async def _on_membership(
        self, update: Update, _context: ContextTypes.DEFAULT_TYPE
    ) -> None:
        change = update.my_chat_member
        if change is None or not self.cfg.welcome_text:
            return
        joined = change.new_chat_member.status in (
            ChatMember.MEMBER,
            ChatMember.ADMINISTRATOR,
        ) and change.old_chat_member.status in (ChatMember.LEFT, ChatMember.BANNED)
        if joined:
            logger.info("Added to chat %s; sending welcome", change.chat.id)
            await self.send_text(str(change.chat.id), self.cfg.welcome_text)

    async def send_text(
        self,
        room_id: str,
        body: str,
        *,
        thread_id: Optional[str] = None,
        reply_to: Optional[str] = None,
    ) -> None:
        await self._send(room_id, body, thread_id=thread_id, reply_to=reply_to)

    async def send_notice(
        self,
        room_id: str,
        body: str,
        *,
        thread_id: Optional[str] = None,
        reply_to: Optional[str] = None,
    ) -> None:
        await self._send(
            room_id, body, thread_id=thread_id, reply_to=reply_to, silent=True
        )

    async def _send(
        self,
        room_id: str,
        body: str,
        *,
        thread_id: Optional[str],
        reply_to: Optional[str],
        silent: bool = False,
    ) -> None:
        if self._app is None:
            raise RuntimeError("Telegram plugin not started")
        if not body:
            return
        kwargs: dict[str, Any] = {"disable_notification": silent}
        if reply_to:
            # Replies land in the replied-to message's topic on their own
            kwargs["reply_parameters"] = ReplyParameters(
                message_id=int(reply_to), allow_sending_without_reply=True
            )
        elif thread_id:
            kwargs["message_thread_id"] = int(thread_id)
        try:
            for chunk in split_message(body):
                await self._app.bot.send_message(chat_id=int(room_id), text=chunk, **kwargs)
        except TelegramError as e:
            logger.error("Failed to deliver message to chat %s: %s", room_id, e)

    def verify_webhook(self, request_headers: Optional[dict[str, str]] = None) -> bool:
        """Validate X-Telegram-Bot-Api-Secret-Token if a webhook secret is configured."""
        expected = self.cfg.webhook_secret
        if not expected:
            return True
        header_lower = SECRET_HEADER.lower()
        for key, value in (request_headers or {}).items():
            if key.lower() == header_lower:
                return value == expected
        return False

    async def process_webhook_update(self, payload: dict[str, Any]) -> None:
        if self._app is None:
            raise RuntimeError("Telegram plugin not started")
        update = Update.de_json(payload, self._app.bot)
        if update is None:
            raise ValueError("Invalid Telegram update")
        await self._app.process_update(update)
