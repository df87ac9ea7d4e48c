"""Tests for the session memory store."""

from collections.abc import Callable
from pathlib import Path

import pytest

from ralph.loop.errors import MemoryStoreUnavailableError
from ralph.loop.memory import (
    FileMemoryStore,
    render_markdown,
    similarity,
    summarize_progress,
    update_from_signals,
)
from ralph.loop.models import (
    ErrorHit,
    ErrorLabel,
    ExecutionSignals,
    LoopState,
    Strategy,
    StrategyDecision,
)

SESSION = "ralph-test-session"


@pytest.fixture
def store(tmp_path: Path) -> FileMemoryStore:
    return FileMemoryStore(tmp_path / "memory")


def explore_decision() -> StrategyDecision:
    return StrategyDecision(strategy=Strategy.EXPLORE, reason="r", action="continue")


class TestObjective:
    """Tests for the write-once objective."""

    def test_first_write_wins(self, store: FileMemoryStore) -> None:
        """A later objective never replaces the first."""
        assert store.create_or_get_objective(SESSION, "Build a todo API") == (
            "Build a todo API"
        )
        assert store.create_or_get_objective(SESSION, "Rewrite in Rust") == (
            "Build a todo API"
        )

        record = store.read(SESSION)
        assert record is not None
        assert record.original_objective == "Build a todo API"

    def test_sessions_are_isolated(self, store: FileMemoryStore) -> None:
        """Objectives are per session."""
        store.create_or_get_objective("a", "first")
        store.create_or_get_objective("b", "second")
        assert store.create_or_get_objective("a", "x") == "first"

    def test_empty_objective_is_kept(self, store: FileMemoryStore) -> None:
        """An empty first objective is still written once."""
        assert store.create_or_get_objective(SESSION, "") == ""
        assert store.create_or_get_objective(SESSION, "Build a todo API") == ""

    def test_set_after_other_writes(self, store: FileMemoryStore) -> None:
        """A record created by other operations still accepts its objective."""
        store.set_status(SESSION, "Iteration 1 [explore]")
        record = store.read(SESSION)
        assert record is not None and record.original_objective is None
        assert store.create_or_get_objective(SESSION, "Build it") == "Build it"


class TestAppendOnlyLists:
    """Tests for capped append-only lists."""

    def test_accomplishments_capped(self, store: FileMemoryStore) -> None:
        """Only the 20 most recent accomplishments are kept."""
        for i in range(25):
            store.append_accomplishment(SESSION, i, f"step {i}")

        record = store.read(SESSION)
        assert record is not None
        assert len(record.accomplished) == 20
        assert record.accomplished[0].description == "step 5"
        assert record.current_iteration == 24

    def test_failures_capped(self, store: FileMemoryStore) -> None:
        """Failed attempts keep their learning tag and are capped."""
        for i in range(22):
            store.append_failure(SESSION, i, f"fail {i}", learning="Syntax error")

        record = store.read(SESSION)
        assert record is not None
        assert len(record.failed_attempts) == 20
        assert record.failed_attempts[-1].learning == "Syntax error"

    def test_learnings_capped(self, tmp_path: Path) -> None:
        """Distinct learnings are capped at the configured size."""
        store = FileMemoryStore(tmp_path, max_items=3)
        for word in ["alpha", "bravo", "charlie", "delta"]:
            assert store.append_learning(SESSION, f"Use {word} {word} {word}")

        record = store.read(SESSION)
        assert record is not None
        assert len(record.key_learnings) == 3
        assert record.key_learnings[0] == "Use bravo bravo bravo"


class TestLearnings:
    """Tests for learning deduplication."""

    def test_exact_duplicate_skipped(self, store: FileMemoryStore) -> None:
        """Case and whitespace differences still count as duplicates."""
        assert store.append_learning(SESSION, "Run migrations before tests")
        assert not store.append_learning(SESSION, "run  migrations before TESTS")

    def test_near_duplicate_skipped(self, store: FileMemoryStore) -> None:
        """Highly similar learnings are skipped."""
        assert store.append_learning(SESSION, "Run migrations before the tests")
        assert not store.append_learning(SESSION, "Run migrations before the test")

    def test_blank_skipped(self, store: FileMemoryStore) -> None:
        """Blank learnings are ignored."""
        assert not store.append_learning(SESSION, "   ")
        assert store.read(SESSION) is None

    def test_similarity_bounds(self) -> None:
        """Similarity is 1 for normalized equals and low for unrelated text."""
        assert similarity("Hello  World", "hello world") == 1.0
        assert similarity("abc", "xyz") == 0.0


class TestOverwrites:
    """Tests for single-valued fields."""

    def test_status_and_actions_overwrite(self, store: FileMemoryStore) -> None:
        """Status and next actions keep only the latest value."""
        store.set_status(SESSION, "first")
        store.set_status(SESSION, "second")
        store.set_next_actions(SESSION, ["a", " ", "b"])
        store.set_next_actions(SESSION, ["c"])

        record = store.read(SESSION)
        assert record is not None
        assert record.current_status == "second"
        assert record.next_actions == ["c"]


class TestFailures:
    """Tests for store unavailability."""

    def test_invalid_session_id(self, store: FileMemoryStore) -> None:
        """Session ids that escape the directory are rejected."""
        with pytest.raises(MemoryStoreUnavailableError):
            store.read("../etc/passwd")

    def test_corrupted_document(self, store: FileMemoryStore) -> None:
        """Unreadable documents surface as store unavailability."""
        store.root.mkdir(parents=True)
        (store.root / f"{SESSION}.json").write_text("[1, 2]", encoding="utf-8")
        with pytest.raises(MemoryStoreUnavailableError):
            store.read(SESSION)


class TestUpdateFromSignals:
    """Tests for the per-turn memory update."""

    def test_progress_recorded(
        self, store: FileMemoryStore, make_state: Callable[..., LoopState]
    ) -> None:
        """A productive turn adds an accomplishment and a status line."""
        signals = ExecutionSignals(
            files_modified=["src/a.py", "src/b.py"],
            tests_run=True,
            tests_passed=True,
            meaningful_changes=True,
        )
        record = update_from_signals(
            store, make_state(iteration=3), signals, explore_decision()
        )

        assert record is not None
        assert record.original_objective == "Build a todo API"
        assert record.accomplished[-1].description == (
            "Modified 2 file(s); tests passing"
        )
        assert record.current_status == (
            "Iteration 3 [explore]: Modified 2 file(s); tests passing"
        )
        assert record.failed_attempts == []

    def test_errors_without_progress_recorded_as_failure(
        self, store: FileMemoryStore, make_state: Callable[..., LoopState]
    ) -> None:
        """Errors in an unproductive turn become a failed attempt."""
        signals = ExecutionSignals(
            errors=[ErrorHit(label=ErrorLabel.SYNTAX, sample="SyntaxError: x")]
        )
        record = update_from_signals(
            store, make_state(iteration=2), signals, explore_decision()
        )

        assert record is not None
        assert record.accomplished == []
        assert record.failed_attempts[0].description == "Encountered 1 error(s)"
        assert record.failed_attempts[0].learning == "Syntax error"
        assert record.current_status.endswith("No meaningful changes detected")


class TestSummaries:
    """Tests for text renderings."""

    def test_mixed_tests_are_inconclusive(self) -> None:
        """Conflicting test evidence is reported as such."""
        signals = ExecutionSignals(
            tests_run=True, tests_passed=True, tests_failed=True, meaningful_changes=True
        )
        assert "inconclusive" in summarize_progress(signals)

    def test_phase_completions(self) -> None:
        """Milestones are listed."""
        signals = ExecutionSignals(phase_completions=["setup", "phase-1"])
        assert summarize_progress(signals) == "completed: setup, phase-1"

    def test_render_markdown(self, store: FileMemoryStore) -> None:
        """The markdown view lists every section."""
        store.create_or_get_objective(SESSION, "Build a todo API")
        store.append_failure(SESSION, 2, "Broke the build", learning="Syntax error")
        store.set_next_actions(SESSION, ["Write tests"])
        record = store.read(SESSION)
        assert record is not None

        markdown = render_markdown(record)
        assert "## Original Objective\n\nBuild a todo API" in markdown
        assert "- [Iteration 2] Broke the build (learning: Syntax error)" in markdown
        assert "1. Write tests" in markdown
