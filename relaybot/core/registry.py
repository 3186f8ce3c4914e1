from __future__ import annotations

from typing import Dict

from relaybot.channels.base import ChannelPlugin
from relaybot.infra.logging_config import get_logger

logger = get_logger("registry")


class PluginRegistry:
    def __init__(self) -> None:
        self._channels: Dict[str, ChannelPlugin] = {}

    def register_channel(self, plugin: ChannelPlugin) -> None:
        if plugin.id in self._channels:
            raise ValueError(f"Channel plugin already registered: {plugin.id}")
        self._channels[plugin.id] = plugin

    def get_channel(self, channel_id: str) -> ChannelPlugin | None:
        return self._channels.get(channel_id)

    def list_channels(self) -> list[ChannelPlugin]:
        return list(self._channels.values())

    async def start_all(self) -> None:
        for plugin in self._channels.values():
            logger.info("Starting channel %s", plugin.id)
            await plugin.start()

    async def stop_all(self) -> None:
        """Stop channels in reverse start order; one failing channel does not block the rest."""
        for plugin in reversed(list(self._channels.values())):
            try:
                await plugin.stop()
            except Exception:
                logger.exception("Error stopping channel %s", plugin.id)
