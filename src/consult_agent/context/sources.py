"""Context source contract and bundled source implementations."""

from __future__ import annotations

import asyncio
import logging
import re
from abc import ABC, abstractmethod
from collections.abc import Iterable
from dataclasses import dataclass, field
from pathlib import Path

from consult_agent.errors import ContextSourceError
from consult_agent.obs.tracing import estimate_token_count
from consult_agent.types import ContextChunk

logger = logging.getLogger(__name__)


class ContextSource(ABC):
    """An independent, fallible contributor of background material."""

    name: str

    @abstractmethod
    async def gather(self, query: str) -> list[ContextChunk]:
        """Return chunks relevant to `query`. May raise or hang; callers time-box it."""

    @abstractmethod
    def estimate_tokens(self) -> int:
        """Cheap, non-blocking upper bound on the tokens this source may contribute."""

    async def is_available(self) -> bool:
        return True


_PATH_PATTERNS = (
    re.compile(r"file:([^\s`'\"]+)", flags=re.IGNORECASE),
    re.compile(r"`([^`\s]+\.[A-Za-z]{2,})`"),
    re.compile(r"\"([^\"\s]+\.[A-Za-z]{2,})\""),
    re.compile(r"'([^'\s]+\.[A-Za-z]{2,})'"),
    re.compile(r"(?:^|\s)([A-Za-z0-9_\-./]+\.[A-Za-z]{2,})(?=[\s,;:)!?]|\.(?:\s|$)|$)"),
)


class FileContextSource(ContextSource):
    """Reads workspace files that the query mentions by path.

    Paths are recognised as bare `dir/name.ext` tokens, `file:` prefixes and
    quoted or back-ticked names. Only files under `root` are read; missing or
    unreadable files are skipped.
    """

    name = "file"

    def __init__(
        self,
        root: str | Path = ".",
        *,
        max_file_bytes: int = 200_000,
        max_files: int = 8,
    ) -> None:
        self.root = Path(root).resolve()
        self.max_file_bytes = max_file_bytes
        self.max_files = max_files

    def estimate_tokens(self) -> int:
        # Roughly four bytes per token.
        return (self.max_file_bytes // 4) * self.max_files

    async def gather(self, query: str) -> list[ContextChunk]:
        chunks: list[ContextChunk] = []
        for relative in extract_file_paths(query)[: self.max_files]:
            path = (self.root / relative).resolve()
            if not path.is_relative_to(self.root):
                logger.warning("Skipping path outside workspace", extra={"filepath": relative})
                continue
            try:
                content = await asyncio.to_thread(self._read, path)
            except (OSError, UnicodeDecodeError) as exc:
                logger.warning(
                    "Failed to read file",
                    extra={"filepath": relative, "error": str(exc)},
                )
                continue

            chunks.append(
                ContextChunk(
                    source=self.name,
                    content=content,
                    relevance=_file_relevance(relative, query, content),
                    metadata={"filepath": relative, "size": len(content)},
                )
            )
        return chunks

    def _read(self, path: Path) -> str:
        if not path.is_file():
            raise FileNotFoundError(str(path))
        with path.open("r", encoding="utf-8") as handle:
            return handle.read(self.max_file_bytes)


def extract_file_paths(query: str) -> list[str]:
    paths: list[str] = []
    for pattern in _PATH_PATTERNS:
        for match in pattern.finditer(query):
            candidate = match.group(1).rstrip(".")
            if candidate and candidate not in paths:
                paths.append(candidate)
    return paths


def _file_relevance(filepath: str, query: str, content: str) -> float:
    relevance = 0.5
    if filepath.lower() in query.lower():
        relevance += 0.3
    if len(content) < 10_000:
        relevance += 0.1
    if len(content) > 50_000:
        relevance -= 0.2
    return max(0.0, min(1.0, relevance))


@dataclass(frozen=True, slots=True)
class MemoryNote:
    """A recorded project decision, pattern or lesson."""

    title: str
    body: str
    kind: str = "decision"
    tags: tuple[str, ...] = field(default_factory=tuple)


class MemoryContextSource(ContextSource):
    """Project memory ranked by lexical overlap with the query."""

    name = "memory"

    def __init__(self, notes: Iterable[MemoryNote] = (), *, top_k: int = 5) -> None:
        self._notes: list[MemoryNote] = list(notes)
        self.top_k = top_k

    def add(self, note: MemoryNote) -> None:
        self._notes.append(note)

    def estimate_tokens(self) -> int:
        ranked = sorted(
            (estimate_token_count(_render_note(note)) for note in self._notes), reverse=True
        )
        return sum(ranked[: self.top_k])

    async def gather(self, query: str) -> list[ContextChunk]:
        query_terms = set(query.lower().split())
        if not query_terms:
            raise ContextSourceError("Empty query cannot be matched against memory")

        scored: list[tuple[float, MemoryNote]] = []
        for note in self._notes:
            note_terms = set(f"{note.title} {note.body} {' '.join(note.tags)}".lower().split())
            overlap = len(query_terms & note_terms) / max(1, len(query_terms))
            if overlap > 0:
                scored.append((overlap, note))

        scored.sort(key=lambda item: item[0], reverse=True)
        return [
            ContextChunk(
                source=self.name,
                content=_render_note(note),
                relevance=min(1.0, score),
                metadata={"title": note.title, "kind": note.kind},
            )
            for score, note in scored[: self.top_k]
        ]


def _render_note(note: MemoryNote) -> str:
    return f"**{note.title}** ({note.kind})\n{note.body}"
