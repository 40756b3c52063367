"""Tool registry built on Pydantic v2 models."""

from __future__ import annotations

import logging
from collections.abc import Awaitable, Callable
from enum import Enum
from time import perf_counter
from typing import Any

from pydantic import BaseModel, ConfigDict, Field

from consult_agent.obs.logging import safe_preview
from consult_agent.types import ToolTrace

logger = logging.getLogger(__name__)


class ToolName(str, Enum):
    """Closed set of tools that can be dispatched by name."""

    CONSULT = "consult"
    THINK_ABOUT_PLAN = "think-about-plan"
    SUGGEST_ALTERNATIVE = "suggest-alternative"
    IMPROVE_COPY = "improve-copy"
    SOLVE_PROBLEM = "solve-problem"


ToolHandler = Callable[[BaseModel, str | None], Awaitable[dict[str, Any]]]


class ToolSpec(BaseModel):
    """Declarative tool specification for registration and validation."""

    model_config = ConfigDict(arbitrary_types_allowed=True)

    name: ToolName
    description: str
    args_schema: type[BaseModel]
    handler: ToolHandler
    tags: list[str] = Field(default_factory=list)

    async def invoke(self, payload: dict[str, Any], client_id: str | None = None) -> dict[str, Any]:
        data = self.args_schema.model_validate(payload)
        return await self.handler(data, client_id)


class ToolRegistry:
    """Maps each `ToolName` to one uniform async `execute(input) -> result`."""

    def __init__(self) -> None:
        self._tools: dict[ToolName, ToolSpec] = {}
        self._observer: Callable[[ToolTrace], None] | None = None

    def register(self, spec: ToolSpec) -> None:
        if spec.name in self._tools:
            raise ValueError(f"Tool already registered: {spec.name.value}")
        self._tools[spec.name] = spec

    def set_observer(self, observer: Callable[[ToolTrace], None] | None) -> None:
        """Set an optional callback invoked after each tool execution."""
        self._observer = observer

    def get(self, name: ToolName | str) -> ToolSpec:
        try:
            return self._tools[ToolName(name)]
        except (KeyError, ValueError):
            raise KeyError(f"Unknown tool: {getattr(name, 'value', name)}") from None

    def __contains__(self, name: object) -> bool:
        try:
            return ToolName(name) in self._tools
        except ValueError:
            return False

    async def execute(
        self,
        name: ToolName | str,
        payload: dict[str, Any],
        *,
        client_id: str | None = None,
    ) -> dict[str, Any]:
        spec = self.get(name)
        start = perf_counter()
        succeeded = False
        output: dict[str, Any] = {}
        try:
            output = await spec.invoke(payload, client_id)
            succeeded = True
            return output
        finally:
            if self._observer is not None:
                self._notify(
                    ToolTrace(
                        name=spec.name.value,
                        input_payload=payload,
                        output_preview=safe_preview(output.get("text", ""), 320),
                        latency_ms=(perf_counter() - start) * 1000.0,
                        succeeded=succeeded,
                    )
                )

    def _notify(self, trace: ToolTrace) -> None:
        # Observer failures never change the tool's outcome.
        try:
            self._observer(trace)
        except Exception:
            logger.exception("Tool observer failed", extra={"tool": trace.name})

    def names(self) -> list[ToolName]:
        return list(self._tools)

    def specs(self) -> list[ToolSpec]:
        return list(self._tools.values())
