from __future__ import annotations

import asyncio
from typing import Awaitable, Callable, Optional, TypeVar

from relaybot.channels.base import ChannelPlugin
from relaybot.channels.envelope import (
    Failure,
    InboundMessage,
    OutboundResult,
    Suppressed,
    TextReply,
)
from relaybot.config import Settings, get_settings
from relaybot.core.errors import EmptyResponse, FailureKind, RateLimited, RelayError
from relaybot.core.session_key import build_conversation_key
from relaybot.infra.logging_config import get_logger
from relaybot.schemas.session import ConversationSession, SessionMode
from relaybot.services.session_store import SessionStore
from relaybot.workers.llm import LLMBackend

logger = get_logger("dispatch")

T = TypeVar("T")


class DispatchEngine:
    """
    Turns each inbound chat message into exactly one reply or one notice.

    Messages sharing a conversation key are processed one at a time in arrival
    order; messages of different conversations interleave freely.
    """

    def __init__(
        self,
        transport: ChannelPlugin,
        backend: LLMBackend,
        store: SessionStore,
        settings: Optional[Settings] = None,
        assistant_id: Optional[str] = None,
        bot_user_id: Optional[str] = None,
    ) -> None:
        self._transport = transport
        self._backend = backend
        self._store = store
        self._settings = settings or get_settings()
        self._mode = self._settings.session_mode
        self._granularity = self._settings.context_granularity
        self._assistant_id = assistant_id or self._settings.assistant_id
        self._bot_user_id = bot_user_id or self._settings.bot_user_id
        self._locks: dict[str, asyncio.Lock] = {}
        if self._mode is SessionMode.ASSISTANT and not self._assistant_id:
            raise ValueError("Assistant mode needs an assistant id")

    @property
    def bot_identity(self) -> Optional[str]:
        return self._bot_user_id or self._transport.identity

    async def handle(self, msg: InboundMessage) -> OutboundResult:
        """Dispatch one inbound message and deliver the outcome to its room.

        Delivery happens under the conversation lock, so replies of one
        conversation reach the room in arrival order.
        """
        suppressed = self._suppression(msg)
        if suppressed is not None:
            return suppressed
        key = build_conversation_key(msg, self._granularity)
        async with self._lock_for(key):
            result = await self._process(key, msg)
            await self._deliver(msg, result)
        return result

    async def dispatch(self, msg: InboundMessage) -> OutboundResult:
        suppressed = self._suppression(msg)
        if suppressed is not None:
            return suppressed
        key = build_conversation_key(msg, self._granularity)
        async with self._lock_for(key):
            return await self._process(key, msg)

    def _suppression(self, msg: InboundMessage) -> Optional[Suppressed]:
        if msg.sender == self.bot_identity:
            return Suppressed(reason="own message")
        if not msg.is_text:
            return Suppressed(reason=f"unsupported msgtype {msg.content.msgtype}")
        return None

    async def _process(self, key: str, msg: InboundMessage) -> OutboundResult:
        try:
            session = await self._store.get_or_create(key, self._mode)
            if session.mode is SessionMode.ASSISTANT:
                content = await self._run_assistant(session, msg.content.body)
            else:
                content = await self._run_stateless(msg.content.body)
            if not content or not content.strip():
                raise EmptyResponse("Backend returned no content")
            await self._store.touch(key)
        except RelayError as e:
            logger.warning(
                "Dispatch failed for %s (%s): %s", key, e.kind.value, e
            )
            return Failure(kind=e.kind, detail=str(e))
        except Exception as e:
            logger.exception("Unexpected error while dispatching for %s", key)
            return Failure(kind=FailureKind.BACKEND_ERROR, detail=str(e))
        return TextReply(body=content)

    def _lock_for(self, key: str) -> asyncio.Lock:
        lock = self._locks.get(key)
        if lock is None:
            lock = self._locks[key] = asyncio.Lock()
        return lock

    async def _run_stateless(self, body: str) -> Optional[str]:
        messages = [
            {"role": "system", "content": self._settings.system_preamble},
            {"role": "user", "content": body},
        ]
        return await self._call(
            lambda: self._backend.complete_chat(
                messages,
                model=self._settings.llm_model,
                temperature=self._settings.llm_temperature,
                max_tokens=self._settings.llm_max_tokens,
            )
        )

    async def _run_assistant(self, session: ConversationSession, body: str) -> Optional[str]:
        thread_id = session.backend_thread_id
        if thread_id is None:
            created = await self._call(self._backend.create_thread)
            thread_id = await self._store.attach_thread_id(session.key, created)
            logger.info("Session %s bound to thread %s", session.key, thread_id)

        await self._call(lambda: self._backend.append_message(thread_id, "user", body))
        run = await self._call(
            lambda: self._backend.create_run(
                thread_id,
                self._assistant_id,
                self._settings.run_instructions,
                max_prompt_tokens=self._settings.llm_max_prompt_tokens,
                max_completion_tokens=self._settings.llm_max_tokens,
            )
        )
        return await self._call(lambda: self._backend.extract_reply(run))

    async def _call(self, operation: Callable[[], Awaitable[T]]) -> T:
        """Run one backend operation, retrying it with backoff while rate limited."""
        attempt = 0
        while True:
            try:
                return await operation()
            except RateLimited:
                if attempt >= self._settings.rate_limit_retries:
                    raise
                delay = self._settings.rate_limit_backoff_seconds * 2**attempt
                attempt += 1
                logger.info("Rate limited; retry %d in %.1fs", attempt, delay)
                await asyncio.sleep(delay)

    def notice_for(self, failure: Failure) -> str:
        if failure.kind is FailureKind.RUN_TIMED_OUT:
            return self._settings.timeout_notice
        if failure.kind is FailureKind.EMPTY_RESPONSE:
            return self._settings.empty_response_notice
        return self._settings.apology_notice

    async def _deliver(self, msg: InboundMessage, result: OutboundResult) -> None:
        try:
            if isinstance(result, TextReply):
                await self._transport.send_text(
                    msg.room_id, result.body, thread_id=msg.thread_id, reply_to=msg.event_id
                )
            elif isinstance(result, Failure):
                await self._transport.send_notice(
                    msg.room_id,
                    self.notice_for(result),
                    thread_id=msg.thread_id,
                    reply_to=msg.event_id,
                )
        except Exception:
            logger.exception("Delivery to room %s failed", msg.room_id)
