from fastapi import APIRouter, Depends

from relaybot.core.app_state import AppState
from relaybot.routers.utils import get_app_state
from relaybot.schemas.system import (
    AppGroup,
    BackendGroup,
    ChannelGroup,
    ConversationGroup,
    SessionStoreGroup,
    SystemSettingsGrouped,
)

router = APIRouter(
    prefix="/system",
    tags=["system"],
    responses={404: {"description": "Not found"}},
)


@router.get("/health")
def health() -> dict[str, str]:
    return {"status": "ok"}


@router.get("/settings", response_model=SystemSettingsGrouped)
def get_system_settings(
    state: AppState = Depends(get_app_state),
) -> SystemSettingsGrouped:
    """Return grouped, non-sensitive system configuration settings for troubleshooting."""
    s = state.settings

    store_group = SessionStoreGroup(backend=s.session_store)
    if s.session_store == "redis":
        store_group = SessionStoreGroup(
            backend=s.session_store,
            redis_host=s.redis_host,
            redis_port=s.redis_port,
            namespace=s.redis_namespace,
        )

    channels = [
        ChannelGroup(
            id=plugin.id,
            label=plugin.meta.label,
            mode=getattr(getattr(plugin, "cfg", None), "mode", None),
        )
        for plugin in state.registry.list_channels()
    ]

    return SystemSettingsGrouped(
        app=AppGroup(name=s.app_name, log_level=s.log_level, port=s.port),
        backend=BackendGroup(
            model=s.llm_model,
            temperature=s.llm_temperature,
            max_tokens=s.llm_max_tokens,
            api_base=s.llm_api_base,
            api_key_set=bool(s.llm_api_key),
        ),
        conversation=ConversationGroup(
            conversation_mode=s.conversation_mode,
            session_mode=s.session_mode.value,
            context_granularity=s.context_granularity,
            threads_enabled=s.threads_enabled,
            run_poll_interval_seconds=s.run_poll_interval_seconds,
            run_timeout_seconds=s.run_timeout_seconds,
        ),
        session_store=store_group,
        channels=channels,
    )
