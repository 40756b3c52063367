"""Concurrent fan-out of independent tool requests."""

from __future__ import annotations

import asyncio
import logging
from typing import Any, Literal

from pydantic import BaseModel, ConfigDict, Field, ValidationError
from pydantic.alias_generators import to_camel

from consult_agent.agent.registry import ToolName, ToolRegistry
from consult_agent.errors import BatchValidationError, describe_error

logger = logging.getLogger(__name__)

MAX_BATCH_ITEMS = 10


class _WireModel(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


class BatchRequestItem(_WireModel):
    tool_name: ToolName
    input: dict[str, Any] = Field(default_factory=dict)
    request_id: str | None = None


class BatchRequest(_WireModel):
    requests: list[BatchRequestItem] = Field(min_length=1, max_length=MAX_BATCH_ITEMS)


class BatchResponseItem(_WireModel):
    request_id: str | None = None
    tool_name: ToolName
    status: Literal["fulfilled", "rejected"]
    result: Any | None = None
    error: str | None = None


class BatchSummary(_WireModel):
    total: int
    success: int
    failure: int


class BatchResponse(_WireModel):
    batch_results: list[BatchResponseItem]
    summary: BatchSummary

    def to_wire(self) -> dict[str, Any]:
        return self.model_dump(mode="json", by_alias=True, exclude_none=True)


class BatchExecutor:
    """Runs 1..N tool requests concurrently with per-item failure isolation.

    Shape problems (size, unknown or unregistered tools) reject the whole
    batch before anything runs. After that, every item's error is caught
    locally and reported as a `rejected` item; siblings are never cancelled.
    """

    def __init__(self, registry: ToolRegistry, *, max_items: int = MAX_BATCH_ITEMS) -> None:
        self.registry = registry
        self.max_items = min(max_items, MAX_BATCH_ITEMS)

    def validate(self, payload: BatchRequest | dict[str, Any]) -> BatchRequest:
        if isinstance(payload, BatchRequest):
            batch = payload
        else:
            try:
                batch = BatchRequest.model_validate(payload)
            except ValidationError as exc:
                raise BatchValidationError(_validation_message(exc)) from exc

        if not 1 <= len(batch.requests) <= self.max_items:
            raise BatchValidationError(
                f"Batch must contain between 1 and {self.max_items} requests"
            )
        unregistered = sorted(
            {item.tool_name.value for item in batch.requests if item.tool_name not in self.registry}
        )
        if unregistered:
            raise BatchValidationError(f"Unknown tool(s): {', '.join(unregistered)}")
        return batch

    async def run_batch(
        self,
        payload: BatchRequest | dict[str, Any],
        *,
        client_id: str | None = None,
    ) -> BatchResponse:
        batch = self.validate(payload)
        logger.info(
            "Executing batch consultation",
            extra={
                "batch_size": len(batch.requests),
                "tools": [item.tool_name.value for item in batch.requests],
            },
        )

        results = await asyncio.gather(
            *(
                self._run_item(index, item, client_id)
                for index, item in enumerate(batch.requests)
            )
        )

        success = sum(1 for item in results if item.status == "fulfilled")
        summary = BatchSummary(total=len(results), success=success, failure=len(results) - success)
        logger.info(
            "Batch consultation completed",
            extra={"total": summary.total, "success": summary.success, "failure": summary.failure},
        )
        return BatchResponse(batch_results=list(results), summary=summary)

    async def _run_item(
        self, index: int, item: BatchRequestItem, client_id: str | None
    ) -> BatchResponseItem:
        correlation = item.request_id or index
        try:
            result = await self.registry.execute(item.tool_name, item.input, client_id=client_id)
        except ValidationError as exc:
            error = _validation_message(exc)
        except Exception as exc:
            error = describe_error(exc)
        else:
            return BatchResponseItem(
                request_id=item.request_id,
                tool_name=item.tool_name,
                status="fulfilled",
                result=result,
            )

        logger.warning(
            "Batch request item failed",
            extra={"tool": item.tool_name.value, "request_id": correlation, "error": error},
        )
        return BatchResponseItem(
            request_id=item.request_id,
            tool_name=item.tool_name,
            status="rejected",
            error=error,
        )


def _validation_message(exc: ValidationError) -> str:
    problems = []
    for err in exc.errors():
        location = ".".join(str(part) for part in err["loc"])
        problems.append(f"{location}: {err['msg']}" if location else err["msg"])
    return "; ".join(problems)
