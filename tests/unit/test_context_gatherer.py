import asyncio

import pytest

from consult_agent.config import ContextConfig
from consult_agent.context.gatherer import ContextGatherer, format_context
from consult_agent.context.sources import ContextSource
from consult_agent.types import ConsultationContext, ContextChunk


class StaticSource(ContextSource):
    def __init__(self, name: str, chunks: list[tuple[float, int]], *, estimate: int = 0) -> None:
        self.name = name
        self._chunks = [
            ContextChunk(source=name, content=f"{name}-{index}", relevance=relevance, token_count=tokens)
            for index, (relevance, tokens) in enumerate(chunks)
        ]
        self._estimate = estimate

    def estimate_tokens(self) -> int:
        return self._estimate

    async def gather(self, query: str) -> list[ContextChunk]:
        return list(self._chunks)


class FailingSource(ContextSource):
    name = "broken"

    def estimate_tokens(self) -> int:
        return 100

    async def gather(self, query: str) -> list[ContextChunk]:
        raise RuntimeError("index offline")


class HangingSource(ContextSource):
    name = "slow"

    def estimate_tokens(self) -> int:
        return 100

    async def gather(self, query: str) -> list[ContextChunk]:
        await asyncio.sleep(30)
        return [ContextChunk(source=self.name, content="late", relevance=1.0, token_count=1)]


class UnavailableSource(StaticSource):
    async def is_available(self) -> bool:
        return False


def _gatherer(*sources: ContextSource, **config: object) -> ContextGatherer:
    gatherer = ContextGatherer(ContextConfig(**{"source_timeout_seconds": 0.05, **config}))
    for source in sources:
        gatherer.register_source(source)
    return gatherer


@pytest.mark.asyncio
async def test_failing_and_hanging_sources_are_isolated() -> None:
    gatherer = _gatherer(
        FailingSource(),
        HangingSource(),
        StaticSource("memory", [(0.9, 10)]),
    )

    context = await gatherer.gather("what did we decide about caching?")

    assert context.sources_used == ("memory",)
    assert [chunk.content for chunk in context.chunks] == ["memory-0"]
    assert context.total_tokens == 10


@pytest.mark.asyncio
async def test_budget_is_never_exceeded_and_smaller_chunks_still_fit() -> None:
    gatherer = _gatherer(
        StaticSource("a", [(0.9, 60), (0.8, 50), (0.7, 30)]),
    )

    context = await gatherer.gather("q", max_tokens=100)

    assert [chunk.content for chunk in context.chunks] == ["a-0", "a-2"]
    assert context.total_tokens == 90


@pytest.mark.asyncio
async def test_relevance_ties_break_by_registration_order() -> None:
    gatherer = _gatherer(
        StaticSource("first", [(0.5, 1)]),
        StaticSource("second", [(0.5, 1), (0.8, 1)]),
    )

    context = await gatherer.gather("q")

    assert [chunk.content for chunk in context.chunks] == ["second-1", "first-0", "second-0"]
    assert context.sources_used == ("first", "second")


@pytest.mark.asyncio
async def test_crowded_out_source_is_not_reported_as_used() -> None:
    gatherer = _gatherer(
        StaticSource("big", [(0.9, 95)]),
        StaticSource("small", [(0.1, 10)]),
    )

    context = await gatherer.gather("q", max_tokens=100)

    assert context.sources_used == ("big",)


@pytest.mark.asyncio
async def test_disabled_preferred_and_unavailable_sources() -> None:
    gatherer = _gatherer(
        StaticSource("file", [(0.9, 1)]),
        StaticSource("memory", [(0.8, 1)]),
        UnavailableSource("web", [(1.0, 1)]),
        disabled_sources=["file"],
    )

    assert (await gatherer.gather("q")).sources_used == ("memory",)
    assert (await gatherer.gather("q", preferred_sources=["file"])).sources_used == ("file",)


@pytest.mark.asyncio
async def test_all_sources_failing_yields_empty_context() -> None:
    gatherer = _gatherer(FailingSource(), HangingSource())

    context = await gatherer.gather("q")

    assert context.is_empty
    assert context.total_tokens == 0
    assert context.sources_used == ()
    assert format_context(context) == ""


def test_duplicate_source_names_are_rejected() -> None:
    gatherer = _gatherer(StaticSource("memory", []))
    with pytest.raises(ValueError):
        gatherer.register_source(StaticSource("memory", []))


def test_planned_tokens_is_capped_by_budget() -> None:
    gatherer = _gatherer(
        StaticSource("a", [], estimate=700),
        StaticSource("b", [], estimate=600),
        max_context_tokens=1000,
    )

    assert gatherer.planned_tokens() == 1000
    assert gatherer.planned_tokens(["b"]) == 600


def test_format_context_groups_chunks_by_source() -> None:
    context = ConsultationContext(
        query="q",
        chunks=(
            ContextChunk(source="file", content="x = 1", relevance=0.9, metadata={"filepath": "a.py"}),
            ContextChunk(source="memory", content="Use WAL mode", relevance=0.5),
        ),
        total_tokens=6,
        sources_used=("file", "memory"),
    )

    rendered = format_context(context)

    assert rendered == "## file\n\n### a.py\n```\nx = 1\n```\n\n---\n\n## memory\n\nUse WAL mode"


class SlowToCheckSource(StaticSource):
    async def is_available(self) -> bool:
        await asyncio.sleep(0.07)
        return True

    async def gather(self, query: str) -> list[ContextChunk]:
        await asyncio.sleep(0.07)
        return await super().gather(query)


@pytest.mark.asyncio
async def test_per_call_budget_cannot_exceed_configured_budget() -> None:
    gatherer = _gatherer(
        StaticSource("a", [(0.9, 60), (0.8, 60), (0.7, 60)]),
        max_context_tokens=100,
    )

    widened = await gatherer.gather("q", max_tokens=1000)
    assert widened.total_tokens == 60

    empty = await gatherer.gather("q", max_tokens=0)
    assert empty.total_tokens == 0
    assert empty.chunks == ()
    assert empty.sources_used == ()


@pytest.mark.asyncio
async def test_availability_check_shares_the_source_time_box() -> None:
    gatherer = _gatherer(
        SlowToCheckSource("slow-check", [(0.9, 1)]),
        StaticSource("memory", [(0.5, 1)]),
        source_timeout_seconds=0.1,
    )

    context = await gatherer.gather("q")

    assert context.sources_used == ("memory",)
