"""Tests for LLMBackend."""

from types import SimpleNamespace

import httpx
import openai
import pytest
from pydantic_ai.exceptions import ModelHTTPError
from pydantic_ai.messages import ModelResponse, SystemPromptPart, TextPart, UserPromptPart
from pydantic_ai.models.function import AgentInfo, FunctionModel

from relaybot.core.errors import (
    BackendUnavailable,
    MalformedResponse,
    RateLimited,
    RunTimedOut,
)
from relaybot.workers.llm import LLMBackend
from tests.fixtures.backend_fixtures import make_messages_page, make_run

PREAMBLE = "You are a test bot."


def chat_messages(body: str = "2+2?"):
    return [
        {"role": "system", "content": PREAMBLE},
        {"role": "user", "content": body},
    ]


def make_backend(openai_client=None, chat_model=None, **kwargs) -> LLMBackend:
    kwargs.setdefault("poll_interval", 0.01)
    kwargs.setdefault("run_timeout", 0.5)
    return LLMBackend(client=openai_client, chat_model=chat_model, **kwargs)


@pytest.mark.asyncio
async def test_complete_chat_returns_content():
    seen = {}

    def reply(messages, info: AgentInfo) -> ModelResponse:
        parts = [part for message in messages for part in message.parts]
        seen["system"] = [p.content for p in parts if isinstance(p, SystemPromptPart)]
        seen["user"] = [p.content for p in parts if isinstance(p, UserPromptPart)]
        return ModelResponse(parts=[TextPart(content="4")])

    backend = make_backend(chat_model=FunctionModel(reply))

    content = await backend.complete_chat(
        chat_messages(), model="test-model", temperature=0.2, max_tokens=64
    )

    assert content == "4"
    assert seen["system"] == [PREAMBLE]
    assert seen["user"] == ["2+2?"]


@pytest.mark.asyncio
async def test_complete_chat_rate_limited():
    def throttled(messages, info):
        raise ModelHTTPError(status_code=429, model_name="test-model")

    backend = make_backend(chat_model=FunctionModel(throttled))

    with pytest.raises(RateLimited):
        await backend.complete_chat(chat_messages(), "test-model", 0.2, 64)


@pytest.mark.asyncio
async def test_complete_chat_server_error_is_unavailable():
    def broken(messages, info):
        raise ModelHTTPError(status_code=503, model_name="test-model")

    backend = make_backend(chat_model=FunctionModel(broken))

    with pytest.raises(BackendUnavailable):
        await backend.complete_chat(chat_messages(), "test-model", 0.2, 64)


@pytest.mark.asyncio
async def test_complete_chat_needs_messages():
    backend = make_backend(chat_model=FunctionModel(lambda m, i: None))
    with pytest.raises(ValueError):
        await backend.complete_chat([], "test-model", 0.2, 64)


@pytest.mark.asyncio
async def test_thread_operations(openai_client):
    backend = make_backend(openai_client)

    thread_id = await backend.create_thread()
    message_id = await backend.append_message(thread_id, "user", "hello")

    assert thread_id == "thread_1"
    assert message_id == "msg_1"
    openai_client.beta.threads.messages.create.assert_awaited_once_with(
        "thread_1", role="user", content="hello"
    )


@pytest.mark.asyncio
async def test_create_run_polls_until_terminal(openai_client):
    openai_client.beta.threads.runs.retrieve.side_effect = [
        make_run("in_progress"),
        make_run("in_progress"),
        make_run("completed"),
    ]
    backend = make_backend(openai_client)

    run = await backend.create_run(
        "thread_1", "asst_1", "Be brief.", max_prompt_tokens=500, max_completion_tokens=100
    )

    assert run.status == "completed"
    assert openai_client.beta.threads.runs.retrieve.await_count == 3
    openai_client.beta.threads.runs.create.assert_awaited_once_with(
        thread_id="thread_1",
        assistant_id="asst_1",
        instructions="Be brief.",
        max_prompt_tokens=500,
        max_completion_tokens=100,
    )


@pytest.mark.asyncio
async def test_create_run_already_terminal_skips_polling(openai_client):
    openai_client.beta.threads.runs.create.return_value = make_run("completed")
    backend = make_backend(openai_client)

    run = await backend.create_run("thread_1", "asst_1")

    assert run.status == "completed"
    openai_client.beta.threads.runs.retrieve.assert_not_awaited()


@pytest.mark.asyncio
async def test_create_run_times_out_and_cancels(openai_client):
    openai_client.beta.threads.runs.retrieve.return_value = make_run("in_progress")
    backend = make_backend(openai_client, poll_interval=0.01, run_timeout=0.03)

    with pytest.raises(RunTimedOut):
        await backend.create_run("thread_1", "asst_1")

    openai_client.beta.threads.runs.cancel.assert_awaited_once_with(
        "run_1", thread_id="thread_1"
    )


@pytest.mark.asyncio
async def test_failed_run_with_rate_limit_error(openai_client):
    last_error = SimpleNamespace(code="rate_limit_exceeded", message="slow down")
    openai_client.beta.threads.runs.retrieve.return_value = make_run(
        "failed", last_error=last_error
    )
    backend = make_backend(openai_client)

    with pytest.raises(RateLimited):
        await backend.create_run("thread_1", "asst_1")


@pytest.mark.asyncio
async def test_extract_reply_returns_assistant_text(openai_client):
    backend = make_backend(openai_client)

    reply = await backend.extract_reply(make_run("completed"))

    assert reply == "4"
    openai_client.beta.threads.messages.list.assert_awaited_once_with(
        "thread_1", run_id="run_1", order="desc"
    )


@pytest.mark.asyncio
async def test_extract_reply_skips_user_messages(openai_client):
    openai_client.beta.threads.messages.list.return_value = make_messages_page(
        "question", role="user"
    )
    backend = make_backend(openai_client)

    assert await backend.extract_reply(make_run("completed")) is None


@pytest.mark.asyncio
@pytest.mark.parametrize("status", ["failed", "cancelled", "expired", "incomplete"])
async def test_extract_reply_of_unsuccessful_run_is_none(openai_client, status):
    backend = make_backend(openai_client)

    assert await backend.extract_reply(make_run(status)) is None
    openai_client.beta.threads.messages.list.assert_not_awaited()


@pytest.mark.asyncio
async def test_extract_reply_text_block_without_value(openai_client):
    broken = SimpleNamespace(
        id="msg_1",
        role="assistant",
        content=[SimpleNamespace(type="text", text=None)],
    )
    openai_client.beta.threads.messages.list.return_value = SimpleNamespace(data=[broken])
    backend = make_backend(openai_client)

    with pytest.raises(MalformedResponse):
        await backend.extract_reply(make_run("completed"))


@pytest.mark.asyncio
async def test_openai_rate_limit_is_translated(openai_client):
    request = httpx.Request("POST", "https://api.example.test/v1/threads")
    response = httpx.Response(429, request=request)
    openai_client.beta.threads.create.side_effect = openai.RateLimitError(
        "Too many requests", response=response, body=None
    )
    backend = make_backend(openai_client)

    with pytest.raises(RateLimited):
        await backend.create_thread()


@pytest.mark.asyncio
async def test_openai_connection_error_is_translated(openai_client):
    request = httpx.Request("POST", "https://api.example.test/v1/threads")
    openai_client.beta.threads.messages.create.side_effect = openai.APIConnectionError(
        request=request
    )
    backend = make_backend(openai_client)

    with pytest.raises(BackendUnavailable, match="append_message"):
        await backend.append_message("thread_1", "user", "hello")


@pytest.mark.asyncio
async def test_ensure_assistant(openai_client):
    backend = make_backend(openai_client)

    assistant_id = await backend.ensure_assistant("relaybot", "Be helpful.", "gpt-4o-mini")

    assert assistant_id == "asst_new"
    openai_client.beta.assistants.create.assert_awaited_once_with(
        name="relaybot", instructions="Be helpful.", model="gpt-4o-mini"
    )


@pytest.mark.asyncio
async def test_throttled_append_is_sent_once():
    requests = []

    def handler(request: httpx.Request) -> httpx.Response:
        requests.append(request)
        return httpx.Response(429, json={"error": {"message": "slow down"}})

    http_client = httpx.AsyncClient(transport=httpx.MockTransport(handler))
    backend = LLMBackend(
        api_key="test-key",
        api_base="https://api.example.test/v1",
        http_client=http_client,
    )

    with pytest.raises(RateLimited):
        await backend.append_message("thread_1", "user", "hello")

    assert len(requests) == 1
    assert requests[0].url.path == "/v1/threads/thread_1/messages"
    await http_client.aclose()
