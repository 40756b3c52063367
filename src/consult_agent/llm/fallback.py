"""Deterministic model client used when no external LLM is configured."""

from __future__ import annotations

import re
from collections.abc import AsyncIterator

from consult_agent.llm.client import ModelRequest, ModelResponse, ModelStreamEvent
from consult_agent.obs.tracing import estimate_token_count
from consult_agent.types import TokenUsage

_HEADING = re.compile(r"^#{2,3} (?P<title>.+)$", flags=re.MULTILINE)


class OfflineModelClient:
    """Answers without calling a provider.

    Keeps the same contract as `LangChainModelClient` and is useful for local
    or offline environments where `OPENAI_API_KEY` is not configured. The reply
    restates the query and lists the context sections it was given, so callers
    can see what a real model would have received.
    """

    def __init__(self, model: str = "offline") -> None:
        self._model = model

    @property
    def default_model(self) -> str:
        return self._model

    async def invoke(self, request: ModelRequest) -> ModelResponse:
        prompt = "\n".join(message.content for message in request.messages)
        user_prompt = next(
            (m.content for m in reversed(request.messages) if m.role == "user"), ""
        )
        answer = _build_answer(user_prompt)
        prompt_tokens = estimate_token_count(prompt)
        completion_tokens = estimate_token_count(answer)
        return ModelResponse(
            content=answer,
            model=self._model,
            tokens_used=TokenUsage(
                prompt=prompt_tokens,
                completion=completion_tokens,
                total=prompt_tokens + completion_tokens,
            ),
            finish_reason="stop",
        )

    async def stream(self, request: ModelRequest) -> AsyncIterator[ModelStreamEvent]:
        response = await self.invoke(request)
        for line in response.content.splitlines(keepends=True):
            yield ModelStreamEvent(delta=line)
        yield ModelStreamEvent(response=response)


def _build_answer(user_prompt: str) -> str:
    query = user_prompt.rsplit("# Query", 1)[-1].strip()
    sections = [match.group("title").strip() for match in _HEADING.finditer(user_prompt)]

    lines = ["No language model is configured; returning an offline acknowledgement."]
    if query:
        lines.append(f"Query received: {query.splitlines()[0][:200]}")
    if sections:
        lines.append("Context sections available: " + ", ".join(sections))
    else:
        lines.append("No supporting context was gathered.")
    return "\n".join(lines)
