"""Model-invocation contract and the LangChain-backed client."""

from __future__ import annotations

import asyncio
import logging
from collections.abc import AsyncIterator
from dataclasses import dataclass, field
from typing import Any, Literal, Protocol

from langchain_core.messages import AIMessage, BaseMessage, HumanMessage, SystemMessage

from consult_agent.config import ModelConfig
from consult_agent.errors import ModelInvocationError, is_retryable_status
from consult_agent.types import TokenUsage

logger = logging.getLogger(__name__)

Role = Literal["system", "user", "assistant"]


@dataclass(frozen=True, slots=True)
class ChatMessage:
    role: Role
    content: str


@dataclass(frozen=True, slots=True)
class ModelRequest:
    messages: tuple[ChatMessage, ...]
    model: str | None = None
    max_tokens: int | None = None
    temperature: float | None = None
    reasoning_effort: str | None = None


@dataclass(frozen=True, slots=True)
class ModelResponse:
    content: str
    model: str
    tokens_used: TokenUsage
    finish_reason: str = "stop"


@dataclass(frozen=True, slots=True)
class ModelStreamEvent:
    """Either a text delta or, as the last event, the complete response."""

    delta: str = ""
    response: ModelResponse | None = field(default=None)


class ModelClient(Protocol):
    """Minimal model-invocation contract used by the orchestrator."""

    @property
    def default_model(self) -> str:
        """Model used when a request names none."""

    async def invoke(self, request: ModelRequest) -> ModelResponse:
        """Run one completion. Raises `ModelInvocationError` on failure."""

    def stream(self, request: ModelRequest) -> AsyncIterator[ModelStreamEvent]:
        """Yield text deltas, then one event carrying the final response."""


_RETRYABLE_CODES = frozenset({"ECONNRESET", "ETIMEDOUT", "timeout", "connection_error"})


def to_invocation_error(exc: BaseException) -> ModelInvocationError:
    """Translate a provider exception into a sanitized `ModelInvocationError`."""

    if isinstance(exc, ModelInvocationError):
        return exc
    if isinstance(exc, TimeoutError):
        return ModelInvocationError(
            "Model invocation timed out", code="timeout", retryable=True
        )

    status = getattr(exc, "status_code", None) or getattr(exc, "status", None)
    status = status if isinstance(status, int) else None
    code = getattr(exc, "code", None)
    code = code if isinstance(code, str) else None
    name = exc.__class__.__name__
    connection_failure = name in ("APIConnectionError", "APITimeoutError") or isinstance(
        exc, ConnectionError
    )

    retryable = is_retryable_status(status) or connection_failure or code in _RETRYABLE_CODES
    if status is not None:
        message = f"Model provider returned status {status}"
    elif connection_failure:
        message = "Could not reach the model provider"
    else:
        message = "Model invocation failed"
    return ModelInvocationError(message, status=status, code=code, retryable=retryable)


class LangChainModelClient:
    """Adapts a LangChain chat model to the `ModelClient` contract.

    The chat model defaults to `ChatOpenAI`. Token usage is read from the
    message's `usage_metadata`, and the reported model name from
    `response_metadata`, since a backend may substitute the requested model.
    """

    def __init__(self, config: ModelConfig, *, chat_model: Any | None = None) -> None:
        self.config = config
        self._chat_model = chat_model
        self._bound: dict[tuple[str, int, float | None, str | None], Any] = {}

    @property
    def default_model(self) -> str:
        return self.config.model

    async def invoke(self, request: ModelRequest) -> ModelResponse:
        model = request.model or self.config.model
        chat_model = self._model_for(request)
        messages = _to_langchain_messages(request.messages)
        logger.info(
            "LLM request",
            extra={"model": model, "prompt_chars": sum(len(m.content) for m in request.messages)},
        )
        try:
            message = await asyncio.wait_for(
                chat_model.ainvoke(messages), timeout=self.config.request_timeout_seconds
            )
        except Exception as exc:
            error = to_invocation_error(exc)
            logger.warning(
                "LLM request failed",
                extra={"model": model, "status": error.status, "retryable": error.retryable},
            )
            raise error from exc

        response = ModelResponse(
            content=_message_text(message),
            model=_reported_model(message, model),
            tokens_used=_usage_from_message(message),
            finish_reason=str(
                (getattr(message, "response_metadata", None) or {}).get("finish_reason", "stop")
            ),
        )
        logger.info(
            "LLM response",
            extra={"model": response.model, "total_tokens": response.tokens_used.total},
        )
        return response

    async def stream(self, request: ModelRequest) -> AsyncIterator[ModelStreamEvent]:
        model = request.model or self.config.model
        chat_model = self._model_for(request)
        messages = _to_langchain_messages(request.messages)

        parts: list[str] = []
        aggregate: Any | None = None
        try:
            async with asyncio.timeout(self.config.request_timeout_seconds):
                async for chunk in chat_model.astream(messages):
                    aggregate = chunk if aggregate is None else aggregate + chunk
                    text = _message_text(chunk)
                    if text:
                        parts.append(text)
                        yield ModelStreamEvent(delta=text)
        except Exception as exc:
            error = to_invocation_error(exc)
            logger.warning(
                "LLM stream failed",
                extra={"model": model, "status": error.status, "retryable": error.retryable},
            )
            raise error from exc

        yield ModelStreamEvent(
            response=ModelResponse(
                content="".join(parts),
                model=_reported_model(aggregate, model),
                tokens_used=_usage_from_message(aggregate),
            )
        )

    def _model_for(self, request: ModelRequest) -> Any:
        model = request.model or self.config.model
        max_tokens = request.max_tokens or self.config.max_tokens
        temperature = (
            request.temperature if request.temperature is not None else self.config.temperature
        )
        if self._chat_model is not None:
            return self._chat_model

        key = (model, max_tokens, temperature, request.reasoning_effort)
        if key not in self._bound:
            from langchain_openai import ChatOpenAI

            kwargs: dict[str, Any] = {
                "model": model,
                "max_tokens": max_tokens,
                "max_retries": 0,
                "stream_usage": True,
            }
            if temperature is not None:
                kwargs["temperature"] = temperature
            if self.config.api_key:
                kwargs["api_key"] = self.config.api_key
            if request.reasoning_effort:
                kwargs["reasoning_effort"] = request.reasoning_effort
            self._bound[key] = ChatOpenAI(**kwargs)
        return self._bound[key]


def _to_langchain_messages(messages: tuple[ChatMessage, ...]) -> list[BaseMessage]:
    converted: list[BaseMessage] = []
    for message in messages:
        if message.role == "system":
            converted.append(SystemMessage(content=message.content))
        elif message.role == "assistant":
            converted.append(AIMessage(content=message.content))
        else:
            converted.append(HumanMessage(content=message.content))
    return converted


def _message_text(message: Any) -> str:
    if message is None:
        return ""
    content = getattr(message, "content", message)
    if isinstance(content, list):
        parts: list[str] = []
        for item in content:
            if isinstance(item, dict):
                if item.get("type", "text") == "text" and "text" in item:
                    parts.append(str(item["text"]))
            else:
                parts.append(str(item))
        return "".join(parts)
    return str(content)


def _reported_model(message: Any, requested: str) -> str:
    metadata = getattr(message, "response_metadata", None) or {}
    return str(metadata.get("model_name") or metadata.get("model") or requested)


def _usage_from_message(message: Any) -> TokenUsage:
    usage = getattr(message, "usage_metadata", None) or {}
    prompt = int(usage.get("input_tokens", 0) or 0)
    completion = int(usage.get("output_tokens", 0) or 0)
    details = usage.get("output_token_details") or {}
    reasoning = int(details.get("reasoning", 0) or 0)
    total = int(usage.get("total_tokens", 0) or 0) or prompt + completion
    return TokenUsage(
        prompt=prompt,
        completion=completion,
        total=total,
        reasoning=reasoning or None,
    )
