"""Cross-session knowledge sink.

A long-lived, append-only log of noteworthy findings (currently: error
patterns that repeated three or more times in one turn) that outlives
individual sessions. ``ralph recall`` searches it.

Writing to the sink is strictly best effort: :func:`record_error_patterns`
logs and swallows every sink failure, so a broken sink can never change
the outcome of a turn.
"""

import logging
import re
from collections.abc import Sequence
from pathlib import Path
from typing import Protocol

from pydantic import BaseModel, Field, ValidationError

from ralph.lib.history import append_jsonl, load_jsonl
from ralph.lib.paths import knowledge_path
from ralph.loop.errors import KnowledgeSinkUnavailableError
from ralph.loop.memory import similarity, utc_now
from ralph.loop.models import ExecutionSignals

logger = logging.getLogger(__name__)

SIGNIFICANT_ERROR_COUNT = 3
HIGH_IMPORTANCE_COUNT = 5
DUPLICATE_RELEVANCE = 0.8

_WORD_RE = re.compile(r"[a-z0-9]+")


class KnowledgeEntry(BaseModel):
    title: str
    content: str
    tags: list[str] = Field(default_factory=list)
    importance: int = Field(default=5, ge=1, le=10)
    session_id: str | None = None
    created_at: str = Field(default_factory=utc_now)


class KnowledgeMatch(BaseModel):
    entry: KnowledgeEntry
    relevance: float = Field(ge=0.0, le=1.0)


class KnowledgeSink(Protocol):
    def search(
        self, query: str, *, tags: Sequence[str] = (), limit: int = 5
    ) -> list[KnowledgeMatch]: ...

    def store(self, entry: KnowledgeEntry) -> None: ...


def slugify(text: str) -> str:
    return "-".join(_WORD_RE.findall(text.lower()))


def relevance(query: str, entry: KnowledgeEntry) -> float:
    """Score an entry against a free-text query.

    The higher of title similarity and the share of query words found
    anywhere in the entry.
    """
    words = set(_WORD_RE.findall(query.lower()))
    haystack = set(_WORD_RE.findall(f"{entry.title} {entry.content}".lower()))
    overlap = len(words & haystack) / len(words) if words else 0.0
    return max(similarity(query, entry.title), overlap)


class FileKnowledgeSink:
    """Knowledge sink backed by a JSON Lines file."""

    def __init__(self, path: Path | None = None) -> None:
        self.path = path or knowledge_path()

    def entries(self) -> list[KnowledgeEntry]:
        try:
            return [KnowledgeEntry.model_validate(r) for r in load_jsonl(self.path)]
        except (OSError, UnicodeDecodeError, ValidationError) as e:
            raise KnowledgeSinkUnavailableError(
                f"Cannot read knowledge file {self.path}: {e}"
            ) from e

    def search(
        self, query: str, *, tags: Sequence[str] = (), limit: int = 5
    ) -> list[KnowledgeMatch]:
        """Best matches first; entries must carry every requested tag."""
        required = set(tags)
        matches = [
            KnowledgeMatch(entry=entry, relevance=round(relevance(query, entry), 4))
            for entry in self.entries()
            if required.issubset(entry.tags)
        ]
        matches.sort(key=lambda m: (m.relevance, m.entry.created_at), reverse=True)
        return [m for m in matches if m.relevance > 0][:limit]

    def store(self, entry: KnowledgeEntry) -> None:
        try:
            append_jsonl(entry, self.path)
        except OSError as e:
            raise KnowledgeSinkUnavailableError(
                f"Cannot write knowledge file {self.path}: {e}"
            ) from e


def record_error_patterns(
    signals: ExecutionSignals,
    sink: KnowledgeSink,
    session_id: str | None = None,
    *,
    min_count: int = SIGNIFICANT_ERROR_COUNT,
    duplicate_relevance: float = DUPLICATE_RELEVANCE,
) -> int:
    """Write significant repeated errors through to the sink.

    Patterns already stored with relevance at or above
    ``duplicate_relevance`` are skipped. Sink failures are logged, not raised.

    Returns:
        Number of entries stored.
    """
    stored = 0
    try:
        for repeated in signals.repeated_errors:
            if repeated.count < min_count:
                continue
            title = f"Repeated Error: {repeated.label}"
            existing = sink.search(title, tags=["ralph", "error-pattern"], limit=1)
            if existing and existing[0].relevance >= duplicate_relevance:
                continue

            sample = next(
                (e.sample for e in signals.errors if e.label == repeated.label), "N/A"
            )
            sink.store(
                KnowledgeEntry(
                    title=title,
                    content=(
                        f"Error pattern occurred {repeated.count} times in a single "
                        f"iteration.\n\nType: {repeated.label}\nSample: {sample}\n\n"
                        "This is a significant blocker that required recovery mode."
                    ),
                    tags=["ralph", "error-pattern", slugify(repeated.label)],
                    importance=9 if repeated.count >= HIGH_IMPORTANCE_COUNT else 7,
                    session_id=session_id,
                )
            )
            stored += 1
    except KnowledgeSinkUnavailableError as e:
        logger.warning("Knowledge sink unavailable, skipping write-through: %s", e)
    return stored
