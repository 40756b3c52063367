import asyncio

import pytest
from langchain_core.messages import AIMessage, AIMessageChunk, SystemMessage

from consult_agent.config import ModelConfig
from consult_agent.errors import ModelInvocationError
from consult_agent.llm.client import (
    ChatMessage,
    LangChainModelClient,
    ModelRequest,
    to_invocation_error,
)
from consult_agent.llm.fallback import OfflineModelClient


class FakeChatModel:
    """Stands in for a LangChain chat model."""

    def __init__(self, reply: AIMessage | None = None, error: Exception | None = None) -> None:
        self.reply = reply
        self.error = error
        self.received = []

    async def ainvoke(self, messages):
        self.received.append(messages)
        if self.error is not None:
            raise self.error
        return self.reply

    async def astream(self, messages):
        for text in ("Hel", "lo"):
            yield AIMessageChunk(content=text)
        yield AIMessageChunk(
            content="",
            usage_metadata={"input_tokens": 7, "output_tokens": 2, "total_tokens": 9},
            response_metadata={"model_name": "gpt-5-mini-2025"},
        )


class SlowChatModel:
    async def ainvoke(self, messages):
        await asyncio.sleep(30)


class ProviderError(Exception):
    def __init__(self, status_code: int) -> None:
        super().__init__(f"upstream said {status_code} with secret details")
        self.status_code = status_code


def _request() -> ModelRequest:
    return ModelRequest(
        messages=(
            ChatMessage(role="system", content="be brief"),
            ChatMessage(role="user", content="hi"),
        )
    )


@pytest.mark.asyncio
async def test_invoke_reads_usage_and_reported_model() -> None:
    reply = AIMessage(
        content="Hi there",
        usage_metadata={
            "input_tokens": 12,
            "output_tokens": 30,
            "total_tokens": 42,
            "output_token_details": {"reasoning": 20},
        },
        response_metadata={"model_name": "gpt-5-2025-08-07", "finish_reason": "stop"},
    )
    chat_model = FakeChatModel(reply)
    client = LangChainModelClient(ModelConfig(model="gpt-5"), chat_model=chat_model)

    response = await client.invoke(_request())

    assert response.content == "Hi there"
    assert response.model == "gpt-5-2025-08-07"
    assert response.tokens_used.prompt == 12
    assert response.tokens_used.completion == 30
    assert response.tokens_used.total == 42
    assert response.tokens_used.reasoning == 20
    assert isinstance(chat_model.received[0][0], SystemMessage)


@pytest.mark.asyncio
async def test_invoke_maps_provider_errors() -> None:
    client = LangChainModelClient(ModelConfig(), chat_model=FakeChatModel(error=ProviderError(503)))

    with pytest.raises(ModelInvocationError) as excinfo:
        await client.invoke(_request())

    assert excinfo.value.status == 503
    assert excinfo.value.retryable is True
    assert "secret" not in excinfo.value.message


@pytest.mark.asyncio
async def test_invoke_timeout_is_retryable() -> None:
    client = LangChainModelClient(
        ModelConfig(request_timeout_seconds=0.05), chat_model=SlowChatModel()
    )

    with pytest.raises(ModelInvocationError) as excinfo:
        await client.invoke(_request())

    assert excinfo.value.retryable is True
    assert excinfo.value.provider_code == "timeout"


@pytest.mark.asyncio
async def test_stream_yields_deltas_then_final_response() -> None:
    client = LangChainModelClient(ModelConfig(), chat_model=FakeChatModel())

    events = [event async for event in client.stream(_request())]

    assert [event.delta for event in events[:-1]] == ["Hel", "lo"]
    final = events[-1].response
    assert final is not None
    assert final.content == "Hello"
    assert final.model == "gpt-5-mini-2025"
    assert final.tokens_used.total == 9


def test_client_errors_are_not_retryable() -> None:
    error = to_invocation_error(ProviderError(400))

    assert error.status == 400
    assert error.retryable is False
    assert error.message == "Model provider returned status 400"
    assert to_invocation_error(ConnectionResetError()).retryable is True


@pytest.mark.asyncio
async def test_offline_client_acknowledges_query_and_context() -> None:
    client = OfflineModelClient()
    request = ModelRequest(
        messages=(
            ChatMessage(role="system", content="sys"),
            ChatMessage(
                role="user",
                content="# Relevant Context\n\n## memory\n\nnote\n\n---\n\n# Query\n\nShould we shard?",
            ),
        )
    )

    response = await client.invoke(request)

    assert response.model == "offline"
    assert "Query received: Should we shard?" in response.content
    assert "memory" in response.content
    assert response.tokens_used.total == response.tokens_used.prompt + response.tokens_used.completion

    events = [event async for event in client.stream(request)]
    assert "".join(event.delta for event in events) == response.content
    assert events[-1].response == response


def test_bound_chat_models_are_keyed_by_reasoning_effort() -> None:
    client = LangChainModelClient(ModelConfig(model="gpt-5", api_key="sk-test"))

    def _request(effort: str | None) -> ModelRequest:
        return ModelRequest(messages=(ChatMessage(role="user", content="hi"),), reasoning_effort=effort)

    low = client._model_for(_request("low"))
    high = client._model_for(_request("high"))

    assert low is not high
    assert client._model_for(_request("low")) is low
    assert client._model_for(_request(None)) is not low
