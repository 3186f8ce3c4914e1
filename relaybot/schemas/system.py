"""Grouped, non-sensitive configuration exposed for troubleshooting."""

from __future__ import annotations

from typing import Optional

from pydantic import BaseModel


class AppGroup(BaseModel):
    name: str
    log_level: str
    port: int


class BackendGroup(BaseModel):
    model: str
    temperature: float
    max_tokens: int
    api_base: Optional[str] = None
    api_key_set: bool


class ConversationGroup(BaseModel):
    conversation_mode: str
    session_mode: str
    context_granularity: str
    threads_enabled: bool
    run_poll_interval_seconds: float
    run_timeout_seconds: float


class SessionStoreGroup(BaseModel):
    backend: str
    redis_host: Optional[str] = None
    redis_port: Optional[int] = None
    namespace: Optional[str] = None


class ChannelGroup(BaseModel):
    id: str
    label: str
    mode: Optional[str] = None


class SystemSettingsGrouped(BaseModel):
    app: AppGroup
    backend: BackendGroup
    conversation: ConversationGroup
    session_store: SessionStoreGroup
    channels: list[ChannelGroup]
