"""FastAPI entrypoint for tool, batch, health and metrics endpoints."""

from __future__ import annotations

import asyncio
import contextlib
import logging
from collections.abc import AsyncIterator
from dataclasses import asdict
from typing import Any

from fastapi import FastAPI, Header, HTTPException, Request
from fastapi.responses import JSONResponse
from pydantic import ValidationError

from consult_agent.admission.rate_limiter import RateLimiter
from consult_agent.agent.batch import BatchExecutor
from consult_agent.agent.orchestrator import ConsultationOrchestrator
from consult_agent.agent.registry import ToolRegistry
from consult_agent.agent.tools import register_consultation_tools
from consult_agent.cache.response_cache import ResponseCache
from consult_agent.config import ConsultantConfig, load_config_from_env
from consult_agent.context.gatherer import ContextGatherer
from consult_agent.context.sources import FileContextSource, MemoryContextSource
from consult_agent.errors import (
    AdmissionRejectedError,
    BatchValidationError,
    ModelInvocationError,
    error_payload,
)
from consult_agent.llm.client import LangChainModelClient, ModelClient
from consult_agent.llm.fallback import OfflineModelClient
from consult_agent.obs.logging import setup_logging

logger = logging.getLogger(__name__)


def _create_model_client(config: ConsultantConfig) -> ModelClient:
    if not config.model.api_key:
        return OfflineModelClient()
    return LangChainModelClient(config.model)


def create_app(
    config: ConsultantConfig | None = None,
    *,
    model_client: ModelClient | None = None,
    context_gatherer: ContextGatherer | None = None,
) -> FastAPI:
    config = config or load_config_from_env()
    client = model_client or _create_model_client(config)

    if context_gatherer is None:
        context_gatherer = ContextGatherer(config.context)
        context_gatherer.register_source(FileContextSource(config.context.workspace_root))
        context_gatherer.register_source(MemoryContextSource())

    rate_limiter = RateLimiter(config.rate_limit)
    cache = ResponseCache(config.cache)
    orchestrator = ConsultationOrchestrator(
        model_client=client,
        context_gatherer=context_gatherer if config.context.enabled else None,
        rate_limiter=rate_limiter,
        cache=cache,
        default_max_tokens=config.model.max_tokens,
    )
    registry = ToolRegistry()
    register_consultation_tools(registry, orchestrator)
    batch_executor = BatchExecutor(registry, max_items=config.batch.max_items)

    async def _maintenance() -> None:
        while True:
            await asyncio.sleep(config.maintenance_interval_seconds)
            swept = rate_limiter.sweep()
            pruned = cache.prune()
            logger.debug(
                "Maintenance sweep", extra={"clients_swept": swept, "cache_pruned": pruned}
            )

    @contextlib.asynccontextmanager
    async def lifespan(_: FastAPI) -> AsyncIterator[None]:
        setup_logging(config.logging)
        task = asyncio.create_task(_maintenance())
        try:
            yield
        finally:
            task.cancel()
            with contextlib.suppress(asyncio.CancelledError):
                await task

    app = FastAPI(title="Consultation Service", version="0.1.0", lifespan=lifespan)
    app.state.config = config
    app.state.orchestrator = orchestrator
    app.state.registry = registry
    app.state.batch_executor = batch_executor

    @app.exception_handler(AdmissionRejectedError)
    async def _admission_rejected(_: Request, exc: AdmissionRejectedError) -> JSONResponse:
        return JSONResponse(status_code=429, content=error_payload(exc))

    @app.exception_handler(ModelInvocationError)
    async def _model_failed(_: Request, exc: ModelInvocationError) -> JSONResponse:
        return JSONResponse(status_code=503 if exc.retryable else 502, content=error_payload(exc))

    @app.exception_handler(BatchValidationError)
    async def _batch_invalid(_: Request, exc: BatchValidationError) -> JSONResponse:
        return JSONResponse(status_code=422, content=error_payload(exc))

    @app.get("/health")
    def health() -> dict[str, Any]:
        return {
            "status": "ok",
            "llm_configured": not isinstance(client, OfflineModelClient),
            "model_mode": "offline" if isinstance(client, OfflineModelClient) else "langchain",
            "context_sources": context_gatherer.source_names(),
            "tools": [name.value for name in registry.names()],
            "cache": asdict(cache.stats()),
        }

    @app.post("/tools/{tool_name}")
    async def run_tool(
        tool_name: str,
        payload: dict[str, Any],
        x_client_id: str = Header(default="anonymous"),
    ) -> dict[str, Any]:
        if tool_name not in registry:
            raise HTTPException(status_code=404, detail=f"Unknown tool: {tool_name}")
        try:
            return await registry.execute(tool_name, payload, client_id=x_client_id)
        except ValidationError as exc:
            raise HTTPException(
                status_code=422,
                detail=exc.errors(include_url=False, include_context=False, include_input=False),
            ) from exc

    @app.post("/batch")
    async def run_batch(
        payload: dict[str, Any],
        x_client_id: str = Header(default="anonymous"),
    ) -> dict[str, Any]:
        response = await batch_executor.run_batch(payload, client_id=x_client_id)
        return response.to_wire()

    @app.get("/metrics")
    def metrics() -> dict[str, Any]:
        return {
            **orchestrator.usage_ledger.summary(),
            "cache": asdict(cache.stats()),
            "tracked_clients": len(rate_limiter),
        }

    return app


app = create_app()
