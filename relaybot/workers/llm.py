from __future__ import annotations

import asyncio
from contextlib import contextmanager
from typing import Any, Iterator, List, Optional

import httpx
import openai
from openai import AsyncOpenAI
from pydantic_ai import Agent
from pydantic_ai.exceptions import AgentRunError, ModelHTTPError, UnexpectedModelBehavior
from pydantic_ai.messages import (
    ModelRequest,
    ModelResponse,
    SystemPromptPart,
    TextPart,
    UserPromptPart,
)
from pydantic_ai.models import Model
from pydantic_ai.models.openai import OpenAIChatModel
from pydantic_ai.providers.litellm import LiteLLMProvider
from pydantic_ai.settings import ModelSettings

from relaybot.config import Settings, get_settings
from relaybot.core.errors import (
    BackendUnavailable,
    MalformedResponse,
    RateLimited,
    RelayError,
    RunTimedOut,
)
from relaybot.infra.logging_config import get_logger

logger = get_logger("llm")

TERMINAL_RUN_STATUSES = frozenset(
    {"completed", "failed", "cancelled", "expired", "incomplete"}
)
RATE_LIMIT_ERROR_CODE = "rate_limit_exceeded"


@contextmanager
def _backend_errors(operation: str) -> Iterator[None]:
    """Translate provider and SDK exceptions into the relay error taxonomy."""
    try:
        yield
    except RelayError:
        raise
    except openai.RateLimitError as e:
        raise RateLimited(f"{operation}: {e}") from e
    except ModelHTTPError as e:
        if e.status_code == 429:
            raise RateLimited(f"{operation}: {e}") from e
        raise BackendUnavailable(f"{operation}: {e}") from e
    except UnexpectedModelBehavior as e:
        raise MalformedResponse(f"{operation}: {e}") from e
    except (openai.APIError, AgentRunError) as e:
        raise BackendUnavailable(f"{operation}: {e}") from e


def _history_to_message_list(history: List[dict[str, str]]) -> List[Any]:
    """Convert list of {role, content} to pydantic_ai ModelMessage list for message_history."""
    out: List[Any] = []
    for item in history:
        role = item.get("role", "user")
        content = (item.get("content") or "").strip()
        if not content:
            continue
        if role == "user":
            out.append(ModelRequest(parts=[UserPromptPart(content=content)]))
        elif role == "assistant":
            out.append(ModelResponse(parts=[TextPart(content=content)]))
        elif role == "system":
            out.append(ModelRequest(parts=[SystemPromptPart(content=content)]))
    return out


def _text_of(message: Any) -> Optional[str]:
    """Join the text blocks of an assistant-thread message."""
    texts = []
    for block in message.content or []:
        if getattr(block, "type", None) != "text":
            continue
        text = getattr(block, "text", None)
        value = getattr(text, "value", None)
        if value is None:
            raise MalformedResponse(f"Text block without value in message {message.id}")
        texts.append(value)
    return "\n".join(texts) if texts else None


class LLMBackend:
    """
    Client for the two backend operation families: stateless chat completion
    and stateful assistant threads. Holds no conversation state; continuity
    lives in the session store.
    """

    def __init__(
        self,
        api_key: Optional[str] = None,
        api_base: Optional[str] = None,
        chat_model: Optional[Model] = None,
        client: Optional[AsyncOpenAI] = None,
        poll_interval: float = 1.0,
        run_timeout: float = 60.0,
        http_client: Optional[httpx.AsyncClient] = None,
    ) -> None:
        self._api_key = api_key
        self._api_base = api_base
        self._http_client = http_client
        self._provider: Optional[LiteLLMProvider] = None
        self._chat_model = chat_model
        self._client = client
        self._poll_interval = poll_interval
        self._run_timeout = run_timeout
        self._agent: Agent[None, str] = Agent(output_type=str)

    def _get_provider(self) -> LiteLLMProvider:
        if self._provider is None:
            # The SDK never resends a request
            client = AsyncOpenAI(
                base_url=self._api_base,
                api_key=self._api_key or "litellm-placeholder",
                max_retries=0,
                http_client=self._http_client,
            )
            self._provider = LiteLLMProvider(openai_client=client)
        return self._provider

    def _get_client(self) -> AsyncOpenAI:
        if self._client is None:
            self._client = self._get_provider().client
        return self._client

    def _model_for(self, model_name: str) -> Model:
        if self._chat_model is not None:
            return self._chat_model
        return OpenAIChatModel(model_name, provider=self._get_provider())

    # -- stateless completion -------------------------------------------------

    async def complete_chat(
        self,
        messages: List[dict[str, str]],
        model: str,
        temperature: float,
        max_tokens: int,
    ) -> Optional[str]:
        """
        Send a bounded message list and return the generated content.

        The last message is the prompt; earlier ones (e.g. the system preamble)
        are passed as message history. Returns None when the model produced no text.
        """
        if not messages:
            raise ValueError("complete_chat needs at least one message")
        prompt = messages[-1].get("content") or ""
        history = _history_to_message_list(messages[:-1])
        with _backend_errors("complete_chat"):
            result = await self._agent.run(
                prompt,
                model=self._model_for(model),
                message_history=history or None,
                model_settings=ModelSettings(temperature=temperature, max_tokens=max_tokens),
            )
        output = result.output
        if output is None:
            return None
        if not isinstance(output, str):
            raise MalformedResponse(f"complete_chat: unexpected output type {type(output).__name__}")
        return output or None

    # -- assistant threads ------------------------------------------------------

    async def ensure_assistant(self, name: str, instructions: str, model: str) -> str:
        """Create an assistant to run threads against and return its id."""
        with _backend_errors("create_assistant"):
            assistant = await self._get_client().beta.assistants.create(
                name=name,
                instructions=instructions,
                model=model,
            )
        logger.info("Assistant created: %s", assistant.id)
        return assistant.id

    async def create_thread(self) -> str:
        with _backend_errors("create_thread"):
            thread = await self._get_client().beta.threads.create()
        logger.info("Thread created: %s", thread.id)
        return thread.id

    async def append_message(self, thread_id: str, role: str, content: str) -> str:
        with _backend_errors("append_message"):
            message = await self._get_client().beta.threads.messages.create(
                thread_id,
                role=role,
                content=content,
            )
        logger.debug("Message %s added to thread %s", message.id, thread_id)
        return message.id

    async def create_run(
        self,
        thread_id: str,
        assistant_id: str,
        instructions: Optional[str] = None,
        max_prompt_tokens: Optional[int] = None,
        max_completion_tokens: Optional[int] = None,
    ) -> Any:
        """
        Start a run on the thread and poll it until it reaches a terminal state.

        Raises RunTimedOut (after cancelling the run) if the run is still active
        when the polling ceiling is reached.
        """
        params: dict[str, Any] = {"assistant_id": assistant_id}
        if instructions:
            params["instructions"] = instructions
        if max_prompt_tokens:
            params["max_prompt_tokens"] = max_prompt_tokens
        if max_completion_tokens:
            params["max_completion_tokens"] = max_completion_tokens

        with _backend_errors("create_run"):
            run = await self._get_client().beta.threads.runs.create(thread_id=thread_id, **params)

        try:
            run = await asyncio.wait_for(
                self._poll_run(thread_id, run), timeout=self._run_timeout
            )
        except asyncio.TimeoutError:
            await self._cancel_run(thread_id, run.id)
            raise RunTimedOut(
                f"Run {run.id} on thread {thread_id} not finished after {self._run_timeout}s"
            ) from None

        logger.info("Run %s finished with status %s", run.id, run.status)
        if run.status == "failed":
            last_error = getattr(run, "last_error", None)
            if getattr(last_error, "code", None) == RATE_LIMIT_ERROR_CODE:
                raise RateLimited(f"create_run: run {run.id} failed: {last_error.message}")
        return run

    async def _poll_run(self, thread_id: str, run: Any) -> Any:
        while run.status not in TERMINAL_RUN_STATUSES:
            await asyncio.sleep(self._poll_interval)
            with _backend_errors("retrieve_run"):
                run = await self._get_client().beta.threads.runs.retrieve(
                    run.id, thread_id=thread_id
                )
        return run

    async def _cancel_run(self, thread_id: str, run_id: str) -> None:
        # An active run blocks further messages on the thread
        try:
            await self._get_client().beta.threads.runs.cancel(run_id, thread_id=thread_id)
        except openai.APIError as e:
            logger.warning("Could not cancel run %s on thread %s: %s", run_id, thread_id, e)

    async def extract_reply(self, run: Any) -> Optional[str]:
        """Return the newest assistant message text produced by a completed run."""
        if run.status != "completed":
            logger.warning(
                "Run %s ended as %s: %s", run.id, run.status, getattr(run, "last_error", None)
            )
            return None
        with _backend_errors("list_messages"):
            page = await self._get_client().beta.threads.messages.list(
                run.thread_id,
                run_id=run.id,
                order="desc",
            )
            for message in page.data:
                if message.role == "assistant":
                    text = _text_of(message)
                    if text:
                        return text
        return None


def build_llm_backend_from_env(settings: Optional[Settings] = None) -> LLMBackend:
    settings = settings or get_settings()
    logger.info(
        "LLM backend config: model=%s, api_key=%s, api_base=%s, mode=%s",
        settings.llm_model,
        "set" if settings.llm_api_key else "not set",
        settings.llm_api_base or "(default)",
        settings.conversation_mode,
    )
    if not settings.llm_api_key:
        logger.warning(
            "LLM_API_KEY is not set; set it to a valid OpenAI or LiteLLM API key to avoid 401 errors."
        )
    return LLMBackend(
        api_key=settings.llm_api_key,
        api_base=settings.llm_api_base,
        poll_interval=settings.run_poll_interval_seconds,
        run_timeout=settings.run_timeout_seconds,
    )
