from relaybot.services.session_store import (
    InMemorySessionStore,
    RedisSessionStore,
    SessionStore,
    build_session_store,
)

__all__ = [
    "InMemorySessionStore",
    "RedisSessionStore",
    "SessionStore",
    "build_session_store",
]
