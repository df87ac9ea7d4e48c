"""Tests for the loop state file, nudge mailbox and checkpoint marker."""

from collections.abc import Callable
from datetime import datetime, timezone
from pathlib import Path

import pytest

from ralph.loop.errors import StateCorruptedError
from ralph.loop.models import (
    CheckpointMode,
    LoopState,
    Progress,
    Strategy,
    StrategyState,
)
from ralph.loop.state import (
    CheckpointMarker,
    NudgeMailbox,
    clear_state,
    load_state,
    new_loop_state,
    parse_scalar,
    parse_state,
    render_state,
    save_state,
)

LEGACY_STATE = """\
---
active: true
iteration: 7
max_iterations: 20
completion_promise: "ALL TESTS PASS"
started_at: "2026-01-01T12:00:00Z"
session_id: "ralph-20260101120000-abcd1234"
checkpoint_interval: 5
checkpoint_mode: "pause"
strategy:
  current: "focused"
  changed_at: 6
progress:
  stuck_count: 2
  last_meaningful_change: 5
  velocity: 0.5
phases: []
---
Fix the failing tests
"""


class TestCodec:
    """Tests for the frontmatter codec."""

    def test_round_trip(self, make_state: Callable[..., LoopState]) -> None:
        """Rendering then parsing yields the same state."""
        state = make_state(
            iteration=12,
            max_iterations=50,
            completion_promise='Say "done": all green',
            checkpoint_interval=10,
            checkpoint_mode=CheckpointMode.PAUSE,
            strategy=StrategyState(current=Strategy.RECOVERY, changed_at=11),
            progress=Progress(stuck_count=3, last_meaningful_change=8),
            prompt_text="Line one\n\n---\nLine three",
        )
        assert parse_state(render_state(state)) == state

    def test_reads_legacy_layout(self) -> None:
        """Unknown progress fields and phases are ignored."""
        state = parse_state(LEGACY_STATE)

        assert state.iteration == 7
        assert state.completion_promise == "ALL TESTS PASS"
        assert state.checkpoint_mode is CheckpointMode.PAUSE
        assert state.strategy.current is Strategy.FOCUSED
        assert state.progress.stuck_count == 2
        assert state.prompt_text == "Fix the failing tests"

    @pytest.mark.parametrize(
        ("raw", "expected"),
        [
            ("null", None),
            ("", None),
            ("true", True),
            ('"a \\"b\\""', 'a "b"'),
            ("'it''s'", "it's"),
            ("bare text", "bare text"),
        ],
    )
    def test_parse_scalar(self, raw: str, expected: object) -> None:
        """Scalars decode to python values."""
        assert parse_scalar(raw) == expected


class TestCorruption:
    """Tests for malformed state documents."""

    @pytest.mark.parametrize(
        "text",
        [
            "no frontmatter here",
            "---\niteration: 1\nmax_iterations: 0\n",
            "---\niteration: abc\nmax_iterations: 0\n---\nprompt",
            "---\niteration: -1\nmax_iterations: 0\n---\nprompt",
            "---\niteration: 3\n---\nprompt",
            "---\niteration: 0\nmax_iterations: 0\n---\nprompt",
            "---\niteration: 1\nmax_iterations: 0\n!!!\n---\nprompt",
            '---\niteration: 1\nmax_iterations: 0\ncheckpoint_mode: "sometimes"\n---\np',
        ],
    )
    def test_raises_state_corrupted(self, text: str) -> None:
        """Malformed documents raise StateCorruptedError."""
        with pytest.raises(StateCorruptedError):
            parse_state(text)


class TestStateFile:
    """Tests for loading and saving the state file."""

    def test_missing_file(self, state_dir: Path) -> None:
        """No file means no active loop."""
        assert load_state() is None

    def test_save_and_load(
        self, state_dir: Path, make_state: Callable[..., LoopState]
    ) -> None:
        """Saved state is loaded back from the default location."""
        state = make_state(iteration=4)
        path = save_state(state)

        assert path == state_dir / "ralph-loop.local.md"
        assert load_state() == state

    def test_inactive_is_not_loaded(
        self, state_dir: Path, make_state: Callable[..., LoopState]
    ) -> None:
        """An inactive state counts as no loop."""
        save_state(make_state(active=False))
        assert load_state() is None

    def test_undecodable_file(self, state_dir: Path) -> None:
        """A state file that is not valid UTF-8 counts as corrupted."""
        state_dir.mkdir(parents=True)
        path = state_dir / "ralph-loop.local.md"
        path.write_bytes(b"---\niteration: 1\nmax_iterations: 0\n---\n\xff\xfe bad")

        with pytest.raises(StateCorruptedError, match="Cannot read state file"):
            load_state()

    def test_clear(self, state_dir: Path, make_state: Callable[..., LoopState]) -> None:
        """Clearing removes the marker and tolerates a missing file."""
        save_state(make_state())
        clear_state()
        clear_state()
        assert load_state() is None


class TestNewLoopState:
    """Tests for fresh loop states."""

    def test_defaults(self) -> None:
        """A new loop starts at iteration 1 in explore."""
        now = datetime(2026, 3, 4, 5, 6, 7, tzinfo=timezone.utc)
        state = new_loop_state("  Build a todo API ", completion_promise="", now=now)

        assert state.iteration == 1
        assert state.prompt_text == "Build a todo API"
        assert state.completion_promise is None
        assert state.started_at == "2026-03-04T05:06:07Z"
        assert state.session_id.startswith("ralph-")
        assert state.strategy.current is Strategy.EXPLORE

    def test_empty_prompt(self) -> None:
        """An empty prompt is rejected."""
        with pytest.raises(ValueError, match="No prompt"):
            new_loop_state("   ")


class TestNudgeMailbox:
    """Tests for the one-shot mailbox."""

    def test_peek_then_clear(self, state_dir: Path) -> None:
        """Peeking keeps the nudge until it is cleared."""
        mailbox = NudgeMailbox()
        mailbox.post("  Focus on auth  ")

        assert mailbox.peek() == "Focus on auth"
        assert mailbox.peek() == "Focus on auth"
        mailbox.clear()
        assert mailbox.peek() is None

    def test_post_replaces(self, state_dir: Path) -> None:
        """Only the latest undelivered nudge is kept."""
        mailbox = NudgeMailbox()
        mailbox.post("first")
        mailbox.post("second")
        assert mailbox.peek() == "second"

    def test_blank_file_is_empty(self, tmp_path: Path) -> None:
        """Whitespace-only mailboxes hold nothing."""
        path = tmp_path / "nudge.md"
        path.write_text("\n  \n", encoding="utf-8")
        assert NudgeMailbox(path).peek() is None

    def test_undecodable_nudge_discarded(self, tmp_path: Path) -> None:
        """A nudge that is not valid UTF-8 reads as empty and is removed."""
        path = tmp_path / "nudge.md"
        path.write_bytes(b"\xff\xfe focus")

        assert NudgeMailbox(path).peek() is None
        assert not path.exists()


class TestCheckpointMarker:
    """Tests for the pause marker."""

    def test_set_and_clear(self, state_dir: Path) -> None:
        """The marker is a presence flag with review instructions."""
        marker = CheckpointMarker()
        assert not marker.is_set

        marker.set(10)
        assert marker.is_set
        content = marker.path.read_text(encoding="utf-8")
        assert "# Checkpoint at Iteration 10" in content
        assert "ralph checkpoint continue" in content

        assert marker.clear() is True
        assert marker.clear() is False
