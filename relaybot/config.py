from pathlib import Path
from typing import Literal, Optional

from dotenv import load_dotenv
from pydantic import Field, model_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

from relaybot.constants.default_system_prompt import DefaultSystemPrompt, Notices
from relaybot.schemas.session import SessionMode

# Project root (parent of relaybot/) - used so .env is found regardless of cwd
_PROJECT_ROOT = Path(__file__).resolve().parent.parent

# Explicitly load .env into os.environ so it works in tests and subprocesses
load_dotenv(_PROJECT_ROOT / ".env")

ConversationMode = Literal["room", "per-thread", "assistant"]
ContextGranularity = Literal["room", "per-thread"]


class Settings(BaseSettings):
    app_name: str = "relaybot"
    log_level: str = Field(default="INFO", json_schema_extra={"env": "LOG_LEVEL"})
    host: str = Field(default="0.0.0.0", json_schema_extra={"env": "HOST"})
    port: int = Field(default=8000, json_schema_extra={"env": "PORT"})

    # LLM / LiteLLM
    llm_model: str = Field(
        default="gpt-4o-mini", json_schema_extra={"env": "LLM_MODEL"}
    )
    llm_temperature: float = Field(
        default=0.8, ge=0.0, le=2.0, json_schema_extra={"env": "LLM_TEMPERATURE"}
    )
    llm_max_tokens: int = Field(
        default=1024, gt=0, json_schema_extra={"env": "LLM_MAX_TOKENS"}
    )
    llm_max_prompt_tokens: Optional[int] = Field(
        default=None, json_schema_extra={"env": "LLM_MAX_PROMPT_TOKENS"}
    )
    llm_api_key: Optional[str] = Field(
        default=None, json_schema_extra={"env": "LLM_API_KEY"}
    )
    llm_api_base: Optional[str] = Field(
        default=None, json_schema_extra={"env": "LLM_API_BASE"}
    )
    system_preamble: str = Field(
        default=DefaultSystemPrompt.CONTENT,
        json_schema_extra={"env": "SYSTEM_PREAMBLE"},
    )

    # Conversation handling
    conversation_mode: ConversationMode = Field(
        default="room", json_schema_extra={"env": "CONVERSATION_MODE"}
    )
    assistant_context: ContextGranularity = Field(
        default="room", json_schema_extra={"env": "ASSISTANT_CONTEXT"}
    )
    threads_enabled: bool = Field(
        default=True, json_schema_extra={"env": "THREADS_ENABLED"}
    )
    bot_user_id: Optional[str] = Field(
        default=None, json_schema_extra={"env": "BOT_USER_ID"}
    )

    # Assistant threads
    assistant_id: Optional[str] = Field(
        default=None, json_schema_extra={"env": "ASSISTANT_ID"}
    )
    assistant_name: str = Field(
        default="relaybot", json_schema_extra={"env": "ASSISTANT_NAME"}
    )
    assistant_instructions: str = Field(
        default=DefaultSystemPrompt.CONTENT,
        json_schema_extra={"env": "ASSISTANT_INSTRUCTIONS"},
    )
    run_instructions: Optional[str] = Field(
        default=None, json_schema_extra={"env": "RUN_INSTRUCTIONS"}
    )
    run_poll_interval_seconds: float = Field(
        default=1.0, json_schema_extra={"env": "RUN_POLL_INTERVAL_SECONDS"}
    )
    run_timeout_seconds: float = Field(
        default=60.0, json_schema_extra={"env": "RUN_TIMEOUT_SECONDS"}
    )
    rate_limit_retries: int = Field(
        default=0, ge=0, json_schema_extra={"env": "RATE_LIMIT_RETRIES"}
    )
    rate_limit_backoff_seconds: float = Field(
        default=2.0, ge=0.0, json_schema_extra={"env": "RATE_LIMIT_BACKOFF_SECONDS"}
    )

    # User-visible notices
    apology_notice: str = Field(
        default=Notices.APOLOGY, json_schema_extra={"env": "APOLOGY_NOTICE"}
    )
    timeout_notice: str = Field(
        default=Notices.TIMEOUT, json_schema_extra={"env": "TIMEOUT_NOTICE"}
    )
    empty_response_notice: str = Field(
        default=Notices.EMPTY_RESPONSE,
        json_schema_extra={"env": "EMPTY_RESPONSE_NOTICE"},
    )

    # Session storage
    session_store: Literal["memory", "redis"] = Field(
        default="memory", json_schema_extra={"env": "SESSION_STORE"}
    )
    redis_host: str = Field(
        default="localhost", json_schema_extra={"env": "REDIS_HOST"}
    )
    redis_port: int = Field(default=6379, json_schema_extra={"env": "REDIS_PORT"})
    redis_namespace: str = Field(
        default="relaybot", json_schema_extra={"env": "REDIS_NAMESPACE"}
    )

    # Telegram
    telegram_enabled: bool = Field(
        default=False, json_schema_extra={"env": "TELEGRAM_ENABLED"}
    )
    telegram_bot_token: Optional[str] = Field(
        default=None, json_schema_extra={"env": "TELEGRAM_BOT_TOKEN"}
    )
    telegram_mode: Literal["polling", "webhook"] = Field(
        default="polling", json_schema_extra={"env": "TELEGRAM_MODE"}
    )
    telegram_webhook_secret: Optional[str] = Field(
        default=None, json_schema_extra={"env": "TELEGRAM_WEBHOOK_SECRET"}
    )
    welcome_enabled: bool = Field(
        default=False, json_schema_extra={"env": "WELCOME_ENABLED"}
    )
    welcome_text: str = Field(
        default=Notices.WELCOME, json_schema_extra={"env": "WELCOME_TEXT"}
    )

    model_config = SettingsConfigDict(
        env_file=str(_PROJECT_ROOT / ".env"),
        env_file_encoding="utf-8",
        extra="ignore",
    )

    @model_validator(mode="after")
    def check_consistency(self) -> "Settings":
        """Reject settings that would run the bot in an inconsistent mode."""
        if self.context_granularity == "per-thread" and not self.threads_enabled:
            raise ValueError(
                "Per-thread conversation context requires THREADS_ENABLED=true; "
                "use CONVERSATION_MODE=room or ASSISTANT_CONTEXT=room instead"
            )
        if self.run_poll_interval_seconds <= 0:
            raise ValueError("RUN_POLL_INTERVAL_SECONDS must be positive")
        if self.run_timeout_seconds < self.run_poll_interval_seconds:
            raise ValueError(
                "RUN_TIMEOUT_SECONDS must not be smaller than RUN_POLL_INTERVAL_SECONDS"
            )
        if self.telegram_enabled and not self.telegram_bot_token:
            raise ValueError("TELEGRAM_BOT_TOKEN must be set when TELEGRAM_ENABLED=true")
        return self

    @property
    def session_mode(self) -> SessionMode:
        """Backend mode new sessions are created with."""
        if self.conversation_mode == "assistant":
            return SessionMode.ASSISTANT
        return SessionMode.STATELESS

    @property
    def context_granularity(self) -> ContextGranularity:
        if self.conversation_mode == "assistant":
            return self.assistant_context
        return "per-thread" if self.conversation_mode == "per-thread" else "room"


def get_settings() -> Settings:
    """Get application settings with required environment variables."""
    return Settings()
