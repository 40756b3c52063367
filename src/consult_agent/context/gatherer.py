"""Fan-out aggregation of context from independent sources."""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Sequence

from consult_agent.config import ContextConfig
from consult_agent.context.sources import ContextSource
from consult_agent.obs.logging import safe_preview
from consult_agent.obs.tracing import Timer, estimate_token_count
from consult_agent.types import ConsultationContext, ContextChunk

logger = logging.getLogger(__name__)


class ContextGatherer:
    """Queries every enabled source concurrently and merges under a token budget.

    A source that raises or exceeds its timeout contributes nothing and is
    absent from `sources_used`; it never fails the gather. Registration order
    breaks relevance ties so the merge is deterministic regardless of which
    source finishes first.
    """

    def __init__(self, config: ContextConfig | None = None) -> None:
        self.config = config or ContextConfig()
        self._sources: dict[str, ContextSource] = {}

    def register_source(self, source: ContextSource) -> None:
        if source.name in self._sources:
            raise ValueError(f"Context source already registered: {source.name}")
        self._sources[source.name] = source
        logger.info("Context source registered", extra={"source": source.name})

    def source_names(self) -> list[str]:
        return list(self._sources)

    def planned_tokens(self, preferred_sources: Sequence[str] | None = None) -> int:
        """Upper bound on what a gather could pull in, capped by the budget."""
        total = sum(source.estimate_tokens() for source in self._enabled(preferred_sources))
        return min(total, self.config.max_context_tokens)

    async def gather(
        self,
        query: str,
        *,
        max_tokens: int | None = None,
        preferred_sources: Sequence[str] | None = None,
    ) -> ConsultationContext:
        budget = self.config.max_context_tokens
        if max_tokens is not None:
            budget = max(0, min(max_tokens, budget))
        logger.debug("Starting context gathering", extra={"query": safe_preview(query)})

        with Timer() as timer:
            sources = self._enabled(preferred_sources)
            results = await asyncio.gather(
                *(self._gather_one(source, query) for source in sources)
            )

            ranked: list[tuple[float, int, int, ContextChunk]] = []
            for order, chunks in enumerate(results):
                for position, chunk in enumerate(chunks):
                    ranked.append((-chunk.relevance, order, position, chunk))
            ranked.sort(key=lambda item: item[:3])

            selected: list[ContextChunk] = []
            total_tokens = 0
            for *_, chunk in ranked:
                chunk_tokens = self._chunk_tokens(chunk)
                if total_tokens + chunk_tokens > budget:
                    continue
                selected.append(chunk)
                total_tokens += chunk_tokens

        contributing = {chunk.source for chunk in selected}
        sources_used = tuple(source.name for source in sources if source.name in contributing)

        logger.info(
            "Context gathered",
            extra={
                "sources_used": list(sources_used),
                "total_tokens": total_tokens,
                "chunks_dropped": len(ranked) - len(selected),
                "duration_ms": round(timer.elapsed_ms, 2),
            },
        )
        return ConsultationContext(
            query=query,
            chunks=tuple(selected),
            total_tokens=total_tokens,
            sources_used=sources_used,
        )

    def _enabled(self, preferred_sources: Sequence[str] | None) -> list[ContextSource]:
        if preferred_sources:
            return [self._sources[name] for name in preferred_sources if name in self._sources]
        disabled = set(self.config.disabled_sources)
        return [source for name, source in self._sources.items() if name not in disabled]

    @staticmethod
    async def _query_source(source: ContextSource, query: str) -> list[ContextChunk]:
        if not await source.is_available():
            logger.debug("Context source unavailable", extra={"source": source.name})
            return []
        return await source.gather(query)

    async def _gather_one(self, source: ContextSource, query: str) -> list[ContextChunk]:
        # One time box covers both the availability check and the gather.
        try:
            chunks = await asyncio.wait_for(
                self._query_source(source, query), timeout=self.config.source_timeout_seconds
            )
        except TimeoutError:
            logger.warning(
                "Context source timed out",
                extra={"source": source.name, "timeout_s": self.config.source_timeout_seconds},
            )
            return []
        except Exception as exc:
            logger.warning(
                "Failed to gather from source",
                extra={"source": source.name, "error": repr(exc)},
            )
            return []
        # Chunks are attributed to the source that produced them.
        return [chunk for chunk in chunks if chunk.source == source.name]

    @staticmethod
    def _chunk_tokens(chunk: ContextChunk) -> int:
        if chunk.token_count is not None:
            return chunk.token_count
        return estimate_token_count(chunk.content)


def format_context(context: ConsultationContext) -> str:
    """Render included chunks grouped by source, in `sources_used` order."""

    if context.is_empty:
        return ""

    sections: list[str] = []
    for source in context.sources_used:
        parts = [f"## {source}"]
        for chunk in context.chunks:
            if chunk.source != source:
                continue
            filepath = chunk.metadata.get("filepath")
            if isinstance(filepath, str):
                parts.append(f"### {filepath}\n```\n{chunk.content}\n```")
            else:
                parts.append(chunk.content)
        sections.append("\n\n".join(parts))
    return "\n\n---\n\n".join(sections)
