"""SessionStore: get_or_create, attach_thread_id and touch for conversation sessions."""

from __future__ import annotations

import asyncio
import json
from abc import ABC, abstractmethod
from datetime import datetime, timezone
from typing import Optional

from pydantic import ValidationError
from redis.asyncio import Redis

from relaybot.config import Settings
from relaybot.infra.logging_config import get_logger
from relaybot.schemas.session import ConversationSession, SessionMode

logger = get_logger("session_store")

SESSION_KEY_TEMPLATE = "{namespace}:session:{key}"
THREAD_KEY_TEMPLATE = "{namespace}:session:{key}:thread"


def _check_thread_allowed(session: Optional[ConversationSession], key: str) -> None:
    if session is None:
        raise KeyError(f"No session for conversation {key}")
    if session.mode is not SessionMode.ASSISTANT:
        raise ValueError(
            f"Session {key} is {session.mode.value}; only assistant sessions own a backend thread"
        )


class SessionStore(ABC):
    """
    Contract for session storage. Every operation is atomic per key.

    attach_thread_id returns the thread id in effect after the call: the given
    one if the session had none, otherwise the one already attached.
    """

    @abstractmethod
    async def get(self, key: str) -> Optional[ConversationSession]: ...

    @abstractmethod
    async def get_or_create(self, key: str, mode: SessionMode) -> ConversationSession: ...

    @abstractmethod
    async def attach_thread_id(self, key: str, thread_id: str) -> str: ...

    @abstractmethod
    async def touch(self, key: str) -> Optional[ConversationSession]: ...

    async def close(self) -> None:
        return None


class InMemorySessionStore(SessionStore):
    """Process-lifetime sessions. The same object is returned for a key every time."""

    def __init__(self) -> None:
        self._sessions: dict[str, ConversationSession] = {}
        self._lock = asyncio.Lock()

    async def get(self, key: str) -> Optional[ConversationSession]:
        return self._sessions.get(key)

    async def get_or_create(self, key: str, mode: SessionMode) -> ConversationSession:
        async with self._lock:
            session = self._sessions.get(key)
            if session is None:
                session = ConversationSession(key=key, mode=mode)
                self._sessions[key] = session
                logger.info("Created %s session %s", mode.value, key)
            return session

    async def attach_thread_id(self, key: str, thread_id: str) -> str:
        async with self._lock:
            session = self._sessions.get(key)
            _check_thread_allowed(session, key)
            if session.backend_thread_id is None:
                session.backend_thread_id = thread_id
            elif session.backend_thread_id != thread_id:
                logger.warning(
                    "Session %s already bound to thread %s; ignoring %s",
                    key,
                    session.backend_thread_id,
                    thread_id,
                )
            return session.backend_thread_id

    async def touch(self, key: str) -> Optional[ConversationSession]:
        async with self._lock:
            session = self._sessions.get(key)
            if session is not None:
                session.last_active_at = datetime.now(timezone.utc)
            return session


class RedisSessionStore(SessionStore):
    """
    Sessions persisted as JSON blobs in Redis.

    Creation and thread binding both use SET NX, so concurrent callers (even in
    different processes) agree on a single session and a single backend thread.
    The thread id lives under its own key and is never overwritten by touch().
    """

    def __init__(self, redis: Redis, namespace: str = "relaybot") -> None:
        self._redis = redis
        self._namespace = namespace

    def _session_key(self, key: str) -> str:
        return SESSION_KEY_TEMPLATE.format(namespace=self._namespace, key=key)

    def _thread_key(self, key: str) -> str:
        return THREAD_KEY_TEMPLATE.format(namespace=self._namespace, key=key)

    async def _load(self, key: str) -> Optional[ConversationSession]:
        raw = await self._redis.get(self._session_key(key))
        if raw is None:
            return None
        try:
            data = json.loads(raw)
            data["backend_thread_id"] = await self._redis.get(self._thread_key(key))
            return ConversationSession.model_validate(data)
        except (json.JSONDecodeError, TypeError, ValidationError):
            logger.warning("Discarding malformed session payload for %s", key)
            await self._redis.delete(self._session_key(key), self._thread_key(key))
            return None

    async def _save(self, session: ConversationSession, *, only_new: bool = False) -> bool:
        payload = session.model_dump_json(exclude={"backend_thread_id"})
        if only_new:
            return bool(await self._redis.set(self._session_key(session.key), payload, nx=True))
        await self._redis.set(self._session_key(session.key), payload)
        return True

    async def get(self, key: str) -> Optional[ConversationSession]:
        return await self._load(key)

    async def get_or_create(self, key: str, mode: SessionMode) -> ConversationSession:
        # a second pass recreates a session whose stored payload was discarded
        for _ in range(2):
            created = await self._save(
                ConversationSession(key=key, mode=mode), only_new=True
            )
            if created:
                logger.info("Created %s session %s", mode.value, key)
            session = await self._load(key)
            if session is not None:
                return session
        raise RuntimeError(f"Session {key} could not be created")

    async def attach_thread_id(self, key: str, thread_id: str) -> str:
        session = await self._load(key)
        _check_thread_allowed(session, key)
        if await self._redis.set(self._thread_key(key), thread_id, nx=True):
            return thread_id
        existing = await self._redis.get(self._thread_key(key))
        logger.warning(
            "Session %s already bound to thread %s; ignoring %s", key, existing, thread_id
        )
        return existing

    async def touch(self, key: str) -> Optional[ConversationSession]:
        session = await self._load(key)
        if session is None:
            return None
        session.last_active_at = datetime.now(timezone.utc)
        await self._save(session)
        return session

    async def close(self) -> None:
        await self._redis.aclose()


def build_session_store(settings: Settings) -> SessionStore:
    if settings.session_store == "redis":
        logger.info(
            "Using Redis session store at %s:%s (namespace %s)",
            settings.redis_host,
            settings.redis_port,
            settings.redis_namespace,
        )
        redis = Redis(
            host=settings.redis_host,
            port=settings.redis_port,
            decode_responses=True,
        )
        return RedisSessionStore(redis, namespace=settings.redis_namespace)
    logger.info("Using in-memory session store")
    return InMemorySessionStore()
