"""Session Memory Store: durable record of one session's progress.

The record survives host-side context truncation and restarts, so the
agent can be reminded of its original objective, what it already tried
and what it learned.

Field semantics:
- ``original_objective``: write-once; later writes are ignored
- ``current_status`` / ``next_actions``: single current value, overwritten
- ``accomplished`` / ``failed_attempts`` / ``key_learnings``: append-only,
  capped to the most recent entries

Every store failure surfaces as :class:`MemoryStoreUnavailableError`;
callers fall back to the bare prompt text and keep looping.

Examples:
    Record progress for a session::

        >>> store = FileMemoryStore(Path("/tmp/memory"))
        >>> store.create_or_get_objective("s1", "Build a todo API")
        'Build a todo API'
        >>> store.create_or_get_objective("s1", "Something else")
        'Build a todo API'
        >>> store.append_accomplishment("s1", 1, "Modified 2 file(s)")
        >>> store.read("s1").accomplished[0].description
        'Modified 2 file(s)'
"""

import difflib
import logging
from collections.abc import Callable, Sequence
from datetime import datetime, timezone
from pathlib import Path
from typing import Protocol

from pydantic import ValidationError

from ralph.lib.history import load_document, save_document
from ralph.lib.paths import memory_dir, session_file_name
from ralph.loop.errors import MemoryStoreUnavailableError
from ralph.loop.models import (
    Accomplishment,
    ExecutionSignals,
    FailedAttempt,
    LoopState,
    SessionRecord,
    StrategyDecision,
    SuiteOutcome,
)

logger = logging.getLogger(__name__)

MAX_ITEMS = 20
LEARNING_SIMILARITY = 0.9


def utc_now() -> str:
    return datetime.now(timezone.utc).isoformat(timespec="seconds")


def normalize_text(text: str) -> str:
    return " ".join(text.lower().split())


def similarity(a: str, b: str) -> float:
    """Case- and whitespace-insensitive similarity ratio in [0, 1]."""
    return difflib.SequenceMatcher(None, normalize_text(a), normalize_text(b)).ratio()


def is_near_duplicate(text: str, existing: Sequence[str], threshold: float) -> bool:
    norm = normalize_text(text)
    return any(
        normalize_text(item) == norm or similarity(item, text) >= threshold
        for item in existing
    )


class MemoryStore(Protocol):
    """Contract the loop requires from a session memory backend."""

    def create_or_get_objective(self, session_id: str, text: str) -> str: ...

    def append_accomplishment(
        self, session_id: str, iteration: int, description: str
    ) -> None: ...

    def append_failure(
        self,
        session_id: str,
        iteration: int,
        description: str,
        learning: str | None = None,
    ) -> None: ...

    def append_learning(self, session_id: str, text: str) -> bool: ...

    def set_status(self, session_id: str, text: str) -> None: ...

    def set_next_actions(self, session_id: str, actions: Sequence[str]) -> None: ...

    def set_iteration(self, session_id: str, iteration: int) -> None: ...

    def read(self, session_id: str) -> SessionRecord | None: ...


class FileMemoryStore:
    """One JSON document per session under a directory.

    Each operation is an independent read-modify-write of the session
    document. The host serializes turns, so there is a single writer per
    session.
    """

    def __init__(
        self,
        root: Path | None = None,
        *,
        max_items: int = MAX_ITEMS,
        learning_similarity: float = LEARNING_SIMILARITY,
    ) -> None:
        self.root = root or memory_dir()
        self.max_items = max_items
        self.learning_similarity = learning_similarity

    # -- Persistence ----------------------------------------------------------

    def path_for(self, session_id: str) -> Path:
        try:
            return self.root / session_file_name(session_id)
        except ValueError as e:
            raise MemoryStoreUnavailableError(str(e)) from e

    def read(self, session_id: str) -> SessionRecord | None:
        """Return the session record, or None if the session is unknown."""
        path = self.path_for(session_id)
        try:
            data = load_document(path)
            return SessionRecord.model_validate(data) if data is not None else None
        except (OSError, ValueError, ValidationError) as e:
            raise MemoryStoreUnavailableError(
                f"Cannot read session record {path}: {e}"
            ) from e

    def _write(self, record: SessionRecord) -> None:
        path = self.path_for(record.session_id)
        try:
            save_document(record, path)
        except OSError as e:
            raise MemoryStoreUnavailableError(
                f"Cannot write session record {path}: {e}"
            ) from e

    def _update(
        self, session_id: str, mutate: Callable[[SessionRecord], None]
    ) -> SessionRecord:
        now = utc_now()
        record = self.read(session_id) or SessionRecord(
            session_id=session_id, started_at=now, last_updated=now
        )
        mutate(record)
        record.last_updated = now
        record.accomplished = record.accomplished[-self.max_items :]
        record.failed_attempts = record.failed_attempts[-self.max_items :]
        record.key_learnings = record.key_learnings[-self.max_items :]
        self._write(record)
        return record

    # -- Operations -----------------------------------------------------------

    def create_or_get_objective(self, session_id: str, text: str) -> str:
        """Store ``text`` as the objective unless one already exists."""
        existing = self.read(session_id)
        if existing is not None and existing.original_objective is not None:
            return existing.original_objective

        def set_objective(record: SessionRecord) -> None:
            record.original_objective = text

        self._update(session_id, set_objective)
        logger.info("Recorded objective for session %s", session_id)
        return text

    def append_accomplishment(
        self, session_id: str, iteration: int, description: str
    ) -> None:
        def append(record: SessionRecord) -> None:
            record.current_iteration = max(record.current_iteration, iteration)
            record.accomplished.append(
                Accomplishment(iteration=iteration, description=description)
            )

        self._update(session_id, append)

    def append_failure(
        self,
        session_id: str,
        iteration: int,
        description: str,
        learning: str | None = None,
    ) -> None:
        def append(record: SessionRecord) -> None:
            record.current_iteration = max(record.current_iteration, iteration)
            record.failed_attempts.append(
                FailedAttempt(
                    iteration=iteration, description=description, learning=learning
                )
            )

        self._update(session_id, append)

    def append_learning(self, session_id: str, text: str) -> bool:
        """Append a learning unless a near-duplicate is already stored.

        Returns:
            True if the learning was appended.
        """
        text = text.strip()
        if not text:
            return False
        existing = self.read(session_id)
        if existing is not None and is_near_duplicate(
            text, existing.key_learnings, self.learning_similarity
        ):
            logger.debug("Skipping duplicate learning for %s: %s", session_id, text)
            return False

        def append(record: SessionRecord) -> None:
            record.key_learnings.append(text)

        self._update(session_id, append)
        return True

    def set_status(self, session_id: str, text: str) -> None:
        def overwrite(record: SessionRecord) -> None:
            record.current_status = text

        self._update(session_id, overwrite)

    def set_next_actions(self, session_id: str, actions: Sequence[str]) -> None:
        def overwrite(record: SessionRecord) -> None:
            record.next_actions = [a.strip() for a in actions if a.strip()]

        self._update(session_id, overwrite)

    def set_iteration(self, session_id: str, iteration: int) -> None:
        def overwrite(record: SessionRecord) -> None:
            record.current_iteration = iteration

        self._update(session_id, overwrite)


# =============================================================================
# PER-TURN UPDATE
# =============================================================================


def summarize_progress(signals: ExecutionSignals) -> str:
    """One-line description of what a turn achieved."""
    parts: list[str] = []

    if signals.files_modified:
        parts.append(f"Modified {len(signals.files_modified)} file(s)")

    if signals.tests_run:
        match signals.test_outcome:
            case SuiteOutcome.PASSED:
                parts.append("tests passing")
            case SuiteOutcome.FAILED:
                parts.append("tests failing")
            case SuiteOutcome.MIXED:
                parts.append("tests inconclusive (pass and fail both reported)")
            case _:
                parts.append("tests run")

    if signals.phase_completions:
        parts.append(f"completed: {', '.join(signals.phase_completions)}")

    return "; ".join(parts) if parts else "Made progress"


def update_from_signals(
    store: MemoryStore,
    state: LoopState,
    signals: ExecutionSignals,
    decision: StrategyDecision,
) -> SessionRecord | None:
    """Record one turn in session memory and return the updated record.

    Raises:
        MemoryStoreUnavailableError: If any store operation fails.
    """
    session_id = state.session_id
    iteration = state.iteration

    store.create_or_get_objective(session_id, state.prompt_text)
    store.set_iteration(session_id, iteration)

    if signals.meaningful_changes:
        summary = summarize_progress(signals)
        store.append_accomplishment(session_id, iteration, summary)
    else:
        summary = "No meaningful changes detected"

    if signals.errors and not signals.meaningful_changes:
        store.append_failure(
            session_id,
            iteration,
            f"Encountered {len(signals.errors)} error(s)",
            learning=str(signals.errors[0].label),
        )

    store.set_status(
        session_id, f"Iteration {iteration} [{decision.strategy}]: {summary}"
    )
    return store.read(session_id)


# =============================================================================
# MARKDOWN VIEW
# =============================================================================


def render_markdown(record: SessionRecord) -> str:
    """Human-readable view of a session record."""
    lines = [
        "---",
        f"session_id: {record.session_id}",
        f"started_at: {record.started_at}",
        f"last_updated: {record.last_updated}",
        f"current_iteration: {record.current_iteration}",
        "---",
        "",
        "## Original Objective",
        "",
        record.original_objective or "_Not recorded_",
        "",
        "## Current Status",
        "",
        record.current_status or "_No status yet_",
        "",
        "## Accomplished",
        "",
    ]
    lines += [f"- [Iteration {a.iteration}] {a.description}" for a in record.accomplished]
    lines += ["", "## Failed Attempts", ""]
    for attempt in record.failed_attempts:
        suffix = f" (learning: {attempt.learning})" if attempt.learning else ""
        lines.append(f"- [Iteration {attempt.iteration}] {attempt.description}{suffix}")
    lines += ["", "## Next Actions", ""]
    lines += [f"{i}. {action}" for i, action in enumerate(record.next_actions, 1)]
    lines += ["", "## Key Learnings", ""]
    lines += [f"- {learning}" for learning in record.key_learnings]
    lines.append("")
    return "\n".join(lines)
