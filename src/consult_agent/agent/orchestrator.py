"""Sequences admission, context, cache and model invocation for one request."""

from __future__ import annotations

import json
import logging
from collections.abc import AsyncIterator
from dataclasses import dataclass, replace

from consult_agent.admission.rate_limiter import RateLimiter
from consult_agent.cache.response_cache import ResponseCache
from consult_agent.config import CacheConfig
from consult_agent.context.gatherer import ContextGatherer, format_context
from consult_agent.errors import AdmissionRejectedError, ModelInvocationError
from consult_agent.llm.client import ChatMessage, ModelClient, ModelRequest, ModelResponse
from consult_agent.obs.logging import safe_preview
from consult_agent.obs.tracing import CostModel, Timer, UsageLedger, estimate_token_count
from consult_agent.types import ConsultationResult

logger = logging.getLogger(__name__)

_REPLAY_CHUNK_CHARS = 50


@dataclass(frozen=True, slots=True)
class ConsultationOptions:
    tool_name: str = "unknown"
    client_id: str | None = None
    gather_context: bool = True
    preferred_model: str | None = None
    additional_context: str | None = None
    bypass_cache: bool = False
    max_tokens: int | None = None
    temperature: float | None = None
    reasoning_effort: str | None = None


@dataclass(frozen=True, slots=True)
class _Prepared:
    model: str
    user_prompt: str
    cache_key: str | None
    context_sources: tuple[str, ...]
    estimated_tokens: int


class ConsultationOrchestrator:
    """Runs one consultation end to end.

    Order of operations: admission check, context gathering, prompt rendering,
    cache lookup, model invocation, cost estimate, cache write. The cache key
    includes the rendered context, so a hit still pays for gathering but skips
    the model call. A gatherer failure degrades to empty context; admission
    rejection and model failures propagate as distinct error types.
    """

    def __init__(
        self,
        *,
        model_client: ModelClient,
        context_gatherer: ContextGatherer | None = None,
        rate_limiter: RateLimiter | None = None,
        cache: ResponseCache | None = None,
        cost_model: CostModel | None = None,
        usage_ledger: UsageLedger | None = None,
        default_max_tokens: int = 1024,
    ) -> None:
        self.model_client = model_client
        self.context_gatherer = context_gatherer
        self.rate_limiter = rate_limiter
        self.cache = cache
        self.cost_model = cost_model or CostModel()
        self.usage_ledger = usage_ledger or UsageLedger()
        self.default_max_tokens = default_max_tokens

    async def run(
        self,
        query: str,
        system_prompt: str,
        options: ConsultationOptions | None = None,
    ) -> ConsultationResult:
        options = options or ConsultationOptions()
        with Timer() as timer:
            prepared = await self._prepare(query, system_prompt, options)

            cached = self._cache_lookup(prepared)
            if cached is not None:
                result = replace(cached, context_sources=prepared.context_sources)
            else:
                try:
                    response = await self._invoke(system_prompt, prepared, options)
                except ModelInvocationError:
                    self._release_estimate(options, prepared)
                    raise
                result = self._build_result(response, prepared)

        self._finish(options, prepared, result, timer, cache_hit=cached is not None)
        return result

    def stream(
        self,
        query: str,
        system_prompt: str,
        options: ConsultationOptions | None = None,
    ) -> "ConsultationStream":
        """Streaming variant of `run`.

        Iterate the returned object for text deltas; once exhausted its
        `result` attribute holds the final `ConsultationResult`.
        """

        return ConsultationStream(self, query, system_prompt, options or ConsultationOptions())

    async def _prepare(
        self, query: str, system_prompt: str, options: ConsultationOptions
    ) -> _Prepared:
        model = options.preferred_model or self.model_client.default_model
        max_tokens = options.max_tokens or self.default_max_tokens

        estimated_tokens = (
            estimate_token_count(system_prompt)
            + estimate_token_count(query)
            + estimate_token_count(options.additional_context or "")
            + max_tokens
        )
        if options.client_id is not None and self.rate_limiter is not None:
            if self.context_gatherer is not None and options.gather_context:
                # Planned context only fills the headroom left under the ceiling.
                headroom = self.rate_limiter.config.max_tokens_per_request - estimated_tokens
                estimated_tokens += min(self.context_gatherer.planned_tokens(), max(0, headroom))
            if not self.rate_limiter.admit(options.client_id, estimated_tokens):
                raise AdmissionRejectedError(
                    client_id=options.client_id, estimated_tokens=estimated_tokens
                )

        logger.info(
            "Starting consultation",
            extra={"tool": options.tool_name, "model": model, "query": safe_preview(query, 120)},
        )

        context_text = ""
        context_sources: tuple[str, ...] = ()
        if options.gather_context and self.context_gatherer is not None:
            try:
                context = await self.context_gatherer.gather(query)
            except Exception as exc:
                logger.warning(
                    "Failed to gather context, proceeding without it",
                    extra={"tool": options.tool_name, "error": repr(exc)},
                )
            else:
                context_text = format_context(context)
                context_sources = context.sources_used

        user_prompt = render_user_prompt(query, context_text, options.additional_context)

        cache_key = None
        if self._cache_enabled(options):
            cache_key = self.cache.generate_key(
                options.tool_name, model, system_prompt + user_prompt, context_text
            )

        return _Prepared(
            model=model,
            user_prompt=user_prompt,
            cache_key=cache_key,
            context_sources=context_sources,
            estimated_tokens=estimated_tokens,
        )

    def _cache_enabled(self, options: ConsultationOptions) -> bool:
        return self.cache is not None and self.cache.config.enabled and not options.bypass_cache

    def _cache_lookup(self, prepared: _Prepared) -> ConsultationResult | None:
        if prepared.cache_key is None or self.cache is None:
            return None
        raw = self.cache.get(prepared.cache_key)
        if raw is None:
            return None
        try:
            return ConsultationResult.from_dict(json.loads(raw))
        except (ValueError, KeyError, TypeError):
            logger.warning("Discarding unreadable cache entry", extra={"key": prepared.cache_key})
            return None

    def _request(
        self, system_prompt: str, prepared: _Prepared, options: ConsultationOptions
    ) -> ModelRequest:
        return ModelRequest(
            messages=(
                ChatMessage(role="system", content=system_prompt),
                ChatMessage(role="user", content=prepared.user_prompt),
            ),
            model=prepared.model,
            max_tokens=options.max_tokens,
            temperature=options.temperature,
            reasoning_effort=options.reasoning_effort,
        )

    async def _invoke(
        self, system_prompt: str, prepared: _Prepared, options: ConsultationOptions
    ) -> ModelResponse:
        request = self._request(system_prompt, prepared, options)
        try:
            return await self.model_client.invoke(request)
        except ModelInvocationError:
            raise
        except Exception as exc:
            logger.exception("Unexpected model client failure", extra={"tool": options.tool_name})
            raise ModelInvocationError("Model invocation failed") from exc

    def _build_result(self, response: ModelResponse, prepared: _Prepared) -> ConsultationResult:
        return ConsultationResult(
            response=response.content,
            model=response.model,
            tokens_used=response.tokens_used,
            context_sources=prepared.context_sources,
            cost=self.cost_model.estimate_cost(response.tokens_used, response.model),
        )

    def _release_estimate(self, options: ConsultationOptions, prepared: _Prepared) -> None:
        """Reconcile to zero: cache hits and failed calls consume no model tokens."""
        if options.client_id is not None and self.rate_limiter is not None:
            self.rate_limiter.reconcile(
                options.client_id, 0, estimated_tokens=prepared.estimated_tokens
            )

    def _finish(
        self,
        options: ConsultationOptions,
        prepared: _Prepared,
        result: ConsultationResult,
        timer: Timer,
        *,
        cache_hit: bool,
    ) -> None:
        if not cache_hit:
            if options.client_id is not None and self.rate_limiter is not None:
                self.rate_limiter.reconcile(
                    options.client_id,
                    result.tokens_used.total,
                    estimated_tokens=prepared.estimated_tokens,
                )
            if prepared.cache_key is not None and self.cache is not None:
                self.cache.set(
                    prepared.cache_key,
                    json.dumps(result.to_dict()),
                    self.cache.config.consultation_ttl_seconds,
                )
        else:
            self._release_estimate(options, prepared)

        self.usage_ledger.record(
            tool_name=options.tool_name,
            model=result.model,
            tokens_used=result.tokens_used,
            estimated_cost_usd=0.0 if cache_hit else result.cost,
            latency_ms=timer.elapsed_ms,
            cache_hit=cache_hit,
            context_sources=result.context_sources,
        )
        logger.info(
            "Consultation complete",
            extra={
                "tool": options.tool_name,
                "model": result.model,
                "tokens_used": result.tokens_used.total,
                "cost": result.cost,
                "cache_hit": cache_hit,
            },
        )


class ConsultationStream:
    """Async iterator of response text; `result` is set once iteration ends."""

    def __init__(
        self,
        orchestrator: ConsultationOrchestrator,
        query: str,
        system_prompt: str,
        options: ConsultationOptions,
    ) -> None:
        self._orchestrator = orchestrator
        self._query = query
        self._system_prompt = system_prompt
        self._options = options
        self.result: ConsultationResult | None = None

    def __aiter__(self) -> AsyncIterator[str]:
        return self._iterate()

    async def _iterate(self) -> AsyncIterator[str]:
        orchestrator = self._orchestrator
        options = self._options
        with Timer() as timer:
            prepared = await orchestrator._prepare(self._query, self._system_prompt, options)

            cached = orchestrator._cache_lookup(prepared)
            if cached is not None:
                for start in range(0, len(cached.response), _REPLAY_CHUNK_CHARS):
                    yield cached.response[start : start + _REPLAY_CHUNK_CHARS]
                result = replace(cached, context_sources=prepared.context_sources)
            else:
                request = orchestrator._request(self._system_prompt, prepared, options)
                response: ModelResponse | None = None
                try:
                    async for event in orchestrator.model_client.stream(request):
                        if event.response is not None:
                            response = event.response
                        elif event.delta:
                            yield event.delta
                    if response is None:
                        raise ModelInvocationError("Model stream ended without a final response")
                except ModelInvocationError:
                    orchestrator._release_estimate(options, prepared)
                    raise
                except Exception as exc:
                    logger.exception(
                        "Unexpected model stream failure", extra={"tool": options.tool_name}
                    )
                    orchestrator._release_estimate(options, prepared)
                    raise ModelInvocationError("Model invocation failed") from exc
                result = orchestrator._build_result(response, prepared)

        orchestrator._finish(options, prepared, result, timer, cache_hit=cached is not None)
        self.result = result


def render_user_prompt(query: str, context_text: str, additional_context: str | None) -> str:
    parts: list[str] = []
    if context_text:
        parts.append("# Relevant Context\n\n" + context_text)
        parts.append("\n---\n")
    if additional_context:
        parts.append("# Additional Context\n\n" + additional_context)
        parts.append("\n---\n")
    parts.append("# Query\n\n" + query)
    return "\n".join(parts)
