"""Process wiring: builds the store, backend, channels and dispatch engine once at startup."""

from __future__ import annotations

from typing import Optional

from relaybot.channels.plugins.telegram.config import TelegramConfig
from relaybot.channels.plugins.telegram.plugin import TelegramPlugin
from relaybot.config import Settings
from relaybot.core.dispatch import DispatchEngine
from relaybot.core.registry import PluginRegistry
from relaybot.infra.logging_config import get_logger
from relaybot.schemas.session import SessionMode
from relaybot.services.session_store import SessionStore, build_session_store
from relaybot.workers.llm import LLMBackend, build_llm_backend_from_env

logger = get_logger("app_state")


class AppState:
    def __init__(
        self,
        settings: Settings,
        store: Optional[SessionStore] = None,
        backend: Optional[LLMBackend] = None,
    ) -> None:
        self.settings = settings
        self.registry = PluginRegistry()
        self.store = store or build_session_store(settings)
        self.backend = backend or build_llm_backend_from_env(settings)
        self.engines: dict[str, DispatchEngine] = {}

    async def start(self) -> None:
        assistant_id = await self._resolve_assistant_id()

        if self.settings.telegram_enabled:
            plugin = TelegramPlugin(
                TelegramConfig(
                    bot_token=self.settings.telegram_bot_token,
                    mode=self.settings.telegram_mode,
                    webhook_secret=self.settings.telegram_webhook_secret,
                    welcome_text=(
                        self.settings.welcome_text if self.settings.welcome_enabled else None
                    ),
                )
            )
            self.registry.register_channel(plugin)
        else:
            logger.warning("No channel enabled; set TELEGRAM_ENABLED=true to receive messages")

        # The transport handle is injected into its engine before any update can arrive
        for plugin in self.registry.list_channels():
            engine = DispatchEngine(
                transport=plugin,
                backend=self.backend,
                store=self.store,
                settings=self.settings,
                assistant_id=assistant_id,
            )
            plugin.set_inbound_handler(engine.handle)
            self.engines[plugin.id] = engine

        await self.registry.start_all()
        logger.info(
            "Relay started: model=%s, mode=%s, context=%s",
            self.settings.llm_model,
            self.settings.conversation_mode,
            self.settings.context_granularity,
        )

    async def stop(self) -> None:
        await self.registry.stop_all()
        await self.store.close()

    async def _resolve_assistant_id(self) -> Optional[str]:
        if self.settings.session_mode is not SessionMode.ASSISTANT:
            return None
        if self.settings.assistant_id:
            return self.settings.assistant_id
        logger.info("ASSISTANT_ID not set; creating assistant %s", self.settings.assistant_name)
        return await self.backend.ensure_assistant(
            name=self.settings.assistant_name,
            instructions=self.settings.assistant_instructions,
            model=self.settings.llm_model,
        )
