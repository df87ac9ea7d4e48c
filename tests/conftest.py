"""Shared test fixtures.

Add fixtures here that are used across multiple test files.
"""

import json
from collections.abc import Callable
from pathlib import Path

import pytest

from ralph.lib import paths
from ralph.lib.notify import NullNotifier
from ralph.loop.config import Settings, settings
from ralph.loop.knowledge import FileKnowledgeSink
from ralph.loop.memory import FileMemoryStore
from ralph.loop.models import LoopState
from ralph.loop.orchestrator import LoopOrchestrator

type Record = dict[str, object]


@pytest.fixture
def state_dir(tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> Path:
    """Point every loop path at a temporary ``.claude`` directory."""
    directory = tmp_path / ".claude"
    monkeypatch.setattr(paths, "STATE_DIR", directory)
    return directory


@pytest.fixture
def cfg() -> Settings:
    """Default settings, isolated from the singleton."""
    return settings.model_copy(
        update={"knowledge_enabled": True, "track_progress": False}
    )


@pytest.fixture
def make_state() -> Callable[..., LoopState]:
    """Factory for loop states with sensible defaults."""

    def make(**overrides: object) -> LoopState:
        fields: dict[str, object] = {
            "iteration": 1,
            "session_id": "ralph-test-session",
            "started_at": "2026-01-01T12:00:00Z",
            "prompt_text": "Build a todo API",
        }
        fields.update(overrides)
        return LoopState.model_validate(fields)

    return make


def message_record(role: str, *content: object) -> Record:
    """One Claude Code transcript line."""
    return {"type": role, "message": {"role": role, "content": list(content)}}


@pytest.fixture
def assistant() -> Callable[..., Record]:
    """Factory for assistant transcript records from text and raw blocks."""

    def make(*content: object) -> Record:
        blocks = [{"type": "text", "text": c} if isinstance(c, str) else c for c in content]
        return message_record("assistant", *blocks)

    return make


@pytest.fixture
def user() -> Callable[..., Record]:
    """Factory for user transcript records."""

    def make(*content: object) -> Record:
        return message_record("user", *content)

    return make


@pytest.fixture
def write_transcript(tmp_path: Path) -> Callable[..., Path]:
    """Write transcript records as JSONL and return the file path."""

    def write(*records: Record, name: str = "transcript.jsonl") -> Path:
        path = tmp_path / name
        path.write_text(
            "\n".join(json.dumps(r) for r in records) + "\n", encoding="utf-8"
        )
        return path

    return write


@pytest.fixture
def orchestrator(state_dir: Path, cfg: Settings) -> LoopOrchestrator:
    """Orchestrator with file-backed collaborators under ``state_dir``."""
    return LoopOrchestrator(
        cfg,
        memory_store=FileMemoryStore(state_dir / "ralph" / "memory"),
        knowledge_sink=FileKnowledgeSink(state_dir / "ralph" / "knowledge.jsonl"),
        notifier=NullNotifier(),
    )
