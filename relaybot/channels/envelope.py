"""
Normalized message contracts between channel plugins and the dispatch engine.

Channels convert platform updates into ``InboundMessage``; the engine answers
every inbound message with exactly one ``OutboundResult``.
"""

from __future__ import annotations

from datetime import datetime, timezone
from typing import Annotated, Any, Literal, Optional, Union

from pydantic import BaseModel, Field

from relaybot.core.errors import FailureKind

TEXT_MSGTYPE = "text"


class MessageContent(BaseModel):
    msgtype: str = TEXT_MSGTYPE
    body: str = ""


class InboundMessage(BaseModel):
    """One chat message as seen by the bot (channel -> core)."""

    channel: str
    room_id: str
    sender: str
    event_id: Optional[str] = None
    thread_id: Optional[str] = None
    content: MessageContent
    timestamp: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))
    raw: dict[str, Any] = Field(default_factory=dict)

    @property
    def is_text(self) -> bool:
        return self.content.msgtype == TEXT_MSGTYPE


class TextReply(BaseModel):
    type: Literal["text"] = "text"
    body: str


class Suppressed(BaseModel):
    """No reply warranted (own echo, non-text message)."""

    type: Literal["suppressed"] = "suppressed"
    reason: str = ""


class Failure(BaseModel):
    type: Literal["failure"] = "failure"
    kind: FailureKind
    detail: str = ""


OutboundResult = Annotated[
    Union[TextReply, Suppressed, Failure], Field(discriminator="type")
]
