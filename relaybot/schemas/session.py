"""Pydantic schemas for conversation sessions."""

from __future__ import annotations

from datetime import datetime, timezone
from enum import Enum
from typing import Optional

from pydantic import BaseModel, Field


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class SessionMode(str, Enum):
    """Backend mode of a session, fixed when the session is created."""

    STATELESS = "stateless"
    ASSISTANT = "assistant"


class ConversationSession(BaseModel):
    """
    Continuity state for one conversation key.

    ``backend_thread_id`` is only ever set for assistant sessions, and only once:
    all later messages of the conversation are appended to that backend thread.
    """

    key: str
    mode: SessionMode
    backend_thread_id: Optional[str] = None
    created_at: datetime = Field(default_factory=_utcnow)
    last_active_at: datetime = Field(default_factory=_utcnow)
