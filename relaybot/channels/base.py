from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Awaitable, Callable, Optional, Protocol

from .envelope import InboundMessage

InboundHandler = Callable[[InboundMessage], Awaitable[Any]]


@dataclass(frozen=True)
class ChannelMeta:
    label: str
    docs: Optional[str] = None


@dataclass(frozen=True)
class ChannelCapabilities:
    chat_types: list[str]
    supports_webhook: bool = False
    supports_polling: bool = False
    supports_threads: bool = False
    supports_notices: bool = False


class ChannelPlugin(Protocol):
    """Transport handle: delivers inbound messages to the core and sends replies."""

    id: str
    meta: ChannelMeta
    capabilities: ChannelCapabilities

    @property
    def identity(self) -> Optional[str]: ...

    def set_inbound_handler(self, handler: InboundHandler) -> None: ...

    async def start(self) -> None: ...
    async def stop(self) -> None: ...

    async def send_text(
        self,
        room_id: str,
        body: str,
        *,
        thread_id: Optional[str] = None,
        reply_to: Optional[str] = None,
    ) -> None: ...

    async def send_notice(
        self,
        room_id: str,
        body: str,
        *,
        thread_id: Optional[str] = None,
        reply_to: Optional[str] = None,
    ) -> None: ...
