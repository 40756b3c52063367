"""Cost accounting, usage ledger and timing helpers."""

from __future__ import annotations

import re
import threading
import time
import uuid
from collections import deque
from dataclasses import dataclass, field
from datetime import datetime, timezone

from consult_agent.types import TokenUsage

_TOKEN_PATTERN = re.compile(r"\w+|[^\w\s]", flags=re.UNICODE)


@dataclass(frozen=True, slots=True)
class ModelPricing:
    """Token pricing for one model (USD per 1M tokens)."""

    input_per_1m: float
    output_per_1m: float
    reasoning_per_1m: float | None = None


DEFAULT_PRICING: dict[str, ModelPricing] = {
    "gpt-5": ModelPricing(input_per_1m=2.5, output_per_1m=10.0, reasoning_per_1m=5.0),
    "gpt-5-mini": ModelPricing(input_per_1m=0.15, output_per_1m=0.6),
    "gpt-5-nano": ModelPricing(input_per_1m=0.08, output_per_1m=0.3),
    "gpt-5-pro": ModelPricing(input_per_1m=5.0, output_per_1m=15.0, reasoning_per_1m=10.0),
    "gpt-5-codex": ModelPricing(input_per_1m=3.0, output_per_1m=12.0, reasoning_per_1m=6.0),
}


@dataclass(slots=True)
class CostModel:
    """Per-model rate table.

    Estimates are informational only; nothing gates on them. Unknown models
    are billed at the default model's rates, and reasoning tokens fall back
    to the input rate when a model has no dedicated reasoning rate.
    """

    pricing: dict[str, ModelPricing] = field(default_factory=lambda: dict(DEFAULT_PRICING))
    default_model: str = "gpt-5"

    def rates_for(self, model: str) -> ModelPricing:
        return self.pricing.get(model) or self.pricing[self.default_model]

    def estimate_cost(self, tokens_used: TokenUsage, model: str) -> float:
        rates = self.rates_for(model)
        input_cost = (tokens_used.prompt / 1_000_000) * rates.input_per_1m
        output_cost = (tokens_used.completion / 1_000_000) * rates.output_per_1m
        reasoning_cost = 0.0
        if tokens_used.reasoning:
            reasoning_rate = (
                rates.reasoning_per_1m
                if rates.reasoning_per_1m is not None
                else rates.input_per_1m
            )
            reasoning_cost = (tokens_used.reasoning / 1_000_000) * reasoning_rate
        return input_cost + output_cost + reasoning_cost


@dataclass(slots=True)
class UsageRecord:
    record_id: str
    timestamp_utc: str
    tool_name: str
    model: str
    tokens_used: TokenUsage
    estimated_cost_usd: float
    latency_ms: float
    cache_hit: bool
    context_sources: tuple[str, ...]


class UsageLedger:
    """Bounded in-memory record of completed consultations."""

    def __init__(self, max_records: int = 1000) -> None:
        self._records: deque[UsageRecord] = deque(maxlen=max_records)
        self._lock = threading.Lock()

    def record(
        self,
        *,
        tool_name: str,
        model: str,
        tokens_used: TokenUsage,
        estimated_cost_usd: float,
        latency_ms: float,
        cache_hit: bool,
        context_sources: tuple[str, ...] = (),
    ) -> UsageRecord:
        record = UsageRecord(
            record_id=str(uuid.uuid4()),
            timestamp_utc=datetime.now(timezone.utc).isoformat(),
            tool_name=tool_name,
            model=model,
            tokens_used=tokens_used,
            estimated_cost_usd=estimated_cost_usd,
            latency_ms=latency_ms,
            cache_hit=cache_hit,
            context_sources=context_sources,
        )
        with self._lock:
            self._records.append(record)
        return record

    def list_recent(self, limit: int = 20) -> list[UsageRecord]:
        with self._lock:
            return list(self._records)[-limit:]

    def summary(self) -> dict[str, float | int]:
        """Aggregate usage metrics for dashboard display."""
        with self._lock:
            records = list(self._records)
        total = len(records)
        if total == 0:
            return {
                "total_requests": 0,
                "cache_hits": 0,
                "avg_latency_ms": 0.0,
                "p95_latency_ms": 0.0,
                "total_prompt_tokens": 0,
                "total_completion_tokens": 0,
                "total_estimated_cost_usd": 0.0,
            }

        latencies = sorted(record.latency_ms for record in records)
        p95_index = max(0, int((len(latencies) * 0.95) - 1))
        return {
            "total_requests": total,
            "cache_hits": sum(1 for record in records if record.cache_hit),
            "avg_latency_ms": sum(latencies) / total,
            "p95_latency_ms": latencies[p95_index],
            "total_prompt_tokens": sum(record.tokens_used.prompt for record in records),
            "total_completion_tokens": sum(record.tokens_used.completion for record in records),
            "total_estimated_cost_usd": sum(record.estimated_cost_usd for record in records),
        }


class Timer:
    """Simple context timer used by the orchestrator and registry."""

    def __init__(self) -> None:
        self._start = 0.0
        self.elapsed_ms = 0.0

    def __enter__(self) -> "Timer":
        self._start = time.perf_counter()
        return self

    def __exit__(self, exc_type: object, exc: object, tb: object) -> None:
        self.elapsed_ms = (time.perf_counter() - self._start) * 1000.0


def estimate_token_count(text: str) -> int:
    return len(_TOKEN_PATTERN.findall(text))
