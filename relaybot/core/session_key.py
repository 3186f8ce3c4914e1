"""Conversation key derivation from an inbound message."""

from __future__ import annotations

from relaybot.channels.envelope import InboundMessage
from relaybot.config import ContextGranularity


def build_conversation_key(
    msg: InboundMessage, granularity: ContextGranularity = "room"
) -> str:
    """
    Build a deterministic conversation key from an inbound message.

    Room granularity: {channel}:{room_id}, shared by everyone in the room.
    Per-thread granularity: {channel}:{room_id}:thread:{thread_id} when the
    message belongs to a chat thread; messages outside any thread fall back to
    the room key. Each key maps to at most one backend thread.
    """
    key = f"{msg.channel}:{msg.room_id}"
    if granularity == "per-thread" and msg.thread_id:
        key = f"{key}:thread:{msg.thread_id}"
    return key
