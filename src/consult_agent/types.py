"""Shared domain models."""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any


@dataclass(slots=True)
class ClientBudgetState:
    """Per-client admission bookkeeping for one rolling window."""

    request_count: int
    tokens_consumed: int
    window_start: float
    last_request_at: float


@dataclass(frozen=True, slots=True)
class CacheEntry:
    """A cached, serialized result with its absolute expiry time."""

    value: str
    expires_at: float


@dataclass(frozen=True, slots=True)
class ContextChunk:
    """One unit of material contributed by a single context source."""

    source: str
    content: str
    relevance: float
    metadata: dict[str, Any] = field(default_factory=dict)
    token_count: int | None = None


@dataclass(frozen=True, slots=True)
class ConsultationContext:
    """Merged gathering result. `total_tokens` never exceeds the budget used."""

    query: str
    chunks: tuple[ContextChunk, ...] = ()
    total_tokens: int = 0
    sources_used: tuple[str, ...] = ()

    @property
    def is_empty(self) -> bool:
        return not self.chunks


@dataclass(frozen=True, slots=True)
class TokenUsage:
    prompt: int = 0
    completion: int = 0
    total: int = 0
    reasoning: int | None = None

    def to_dict(self) -> dict[str, int]:
        data = {"prompt": self.prompt, "completion": self.completion, "total": self.total}
        if self.reasoning:
            data["reasoning"] = self.reasoning
        return data

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "TokenUsage":
        return cls(
            prompt=int(data.get("prompt", 0)),
            completion=int(data.get("completion", 0)),
            total=int(data.get("total", 0)),
            reasoning=data.get("reasoning"),
        )


@dataclass(frozen=True, slots=True)
class ConsultationResult:
    """Work product of one orchestration call; cached by value."""

    response: str
    model: str
    tokens_used: TokenUsage
    context_sources: tuple[str, ...] = ()
    cost: float = 0.0

    def to_dict(self) -> dict[str, Any]:
        return {
            "response": self.response,
            "model": self.model,
            "tokensUsed": self.tokens_used.to_dict(),
            "contextSources": list(self.context_sources),
            "cost": self.cost,
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "ConsultationResult":
        return cls(
            response=str(data["response"]),
            model=str(data["model"]),
            tokens_used=TokenUsage.from_dict(data.get("tokensUsed", {})),
            context_sources=tuple(data.get("contextSources", ())),
            cost=float(data.get("cost", 0.0)),
        )


@dataclass(slots=True)
class ToolTrace:
    """Trace record for an executed tool call."""

    name: str
    input_payload: dict[str, Any]
    output_preview: str
    latency_ms: float
    succeeded: bool = True
