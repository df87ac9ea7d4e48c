"""Loop Orchestrator: the per-stop state machine.

Invoked once each time the agent tries to stop. It either lets the stop
through (ALLOW, which ends the session) or blocks it and hands the agent
a freshly assembled directive for the next turn (BLOCK).

Decision order:
1. No active loop -> ALLOW
2. Corrupted state -> abandon, ALLOW
3. Iteration cap reached -> summary, ALLOW
4. Trace missing or without agent text -> abandon, ALLOW
5. Completion promise matched exactly -> summary, ALLOW
6. Otherwise analyze -> strategy -> memory -> directive, BLOCK
7. Checkpoint gate on the outcome of 6 (pause or annotate)

:meth:`LoopOrchestrator.on_turn_end` computes the decision from explicit
inputs. :meth:`LoopOrchestrator.handle_stop` is the file-driven wrapper
used by the hooks: it loads the state file and nudge mailbox, then
persists the next state, marker, summary and dashboard.

Every failure is fail-open. Nothing raised here reaches the host; the
worst case is an ALLOW that ends the session.

Examples:
    Drive one turn from files::

        >>> orchestrator = LoopOrchestrator()
        >>> decision = orchestrator.handle_stop(Path("/tmp/transcript.jsonl"))
        >>> decision.to_hook_output()["systemMessage"]
        '🔄 Ralph #4 [explore] | Done? <promise>DONE</promise>'
"""

import logging
import re
from collections.abc import Sequence
from pathlib import Path

from ralph.lib.notify import DesktopNotifier, Notifier, NullNotifier
from ralph.lib.trace import TranscriptMessage, last_assistant_message, load_transcript
from ralph.loop.analyzer import analyze
from ralph.loop.config import Settings, settings
from ralph.loop.context import build_directive
from ralph.loop.errors import (
    EmptyTurnError,
    MemoryStoreUnavailableError,
    RalphError,
    StateCorruptedError,
    TraceUnavailableError,
)
from ralph.loop.knowledge import FileKnowledgeSink, KnowledgeSink, record_error_patterns
from ralph.loop.memory import FileMemoryStore, MemoryStore, update_from_signals
from ralph.loop.models import (
    CheckpointMode,
    Decision,
    ExecutionSignals,
    LoopState,
    Progress,
    SessionRecord,
    Strategy,
    StrategyDecision,
    StrategyState,
    TerminationReason,
)
from ralph.loop.state import (
    CheckpointMarker,
    NudgeMailbox,
    clear_state,
    load_state,
    save_state,
)
from ralph.loop.status import RunStatus, update_status
from ralph.loop.strategy import StrategyThresholds, decide
from ralph.loop.summary import write_summary

logger = logging.getLogger(__name__)

PROMISE_RE = re.compile(r"<promise>(.*?)</promise>", re.DOTALL)


# =============================================================================
# PURE HELPERS
# =============================================================================


def extract_promise(text: str) -> str | None:
    """Inner text of the first ``<promise>`` tag, whitespace-normalized."""
    match = PROMISE_RE.search(text)
    if match is None:
        return None
    return " ".join(match.group(1).split())


def promise_fulfilled(state: LoopState, last_text: str) -> bool:
    """Exact, case-sensitive match against the configured promise."""
    if not state.completion_promise:
        return False
    promise = extract_promise(last_text)
    return bool(promise) and promise == state.completion_promise


def is_checkpoint(iteration: int, interval: int) -> bool:
    """Whether the turn after ``iteration`` lands on a checkpoint."""
    return interval > 0 and (iteration + 1) % interval == 0


def max_iterations_reached(state: LoopState) -> bool:
    return state.max_iterations > 0 and state.iteration >= state.max_iterations


def load_turn(trace_path: Path | None) -> list[TranscriptMessage]:
    """Load the turn's trace.

    Raises:
        TraceUnavailableError: If the trace is missing or unreadable.
    """
    if trace_path is None or not trace_path.is_file():
        raise TraceUnavailableError(f"Transcript not found: {trace_path}")
    try:
        return load_transcript(trace_path)
    except (OSError, UnicodeDecodeError) as e:
        raise TraceUnavailableError(f"Cannot read transcript {trace_path}: {e}") from e


def last_agent_text(messages: Sequence[TranscriptMessage]) -> str:
    """Text of the most recent agent message.

    Raises:
        EmptyTurnError: If there is no agent message or it has no text.
    """
    message = last_assistant_message(messages)
    if message is None:
        raise EmptyTurnError("No assistant messages in transcript")
    text = message.text
    if not text.strip():
        raise EmptyTurnError("Empty assistant message")
    return text


def status_message(
    next_iteration: int,
    strategy: Strategy,
    state: LoopState,
    signals: ExecutionSignals,
    *,
    nudge_delivered: bool = False,
    checkpoint: bool = False,
) -> str:
    """One-line status shown to the operator alongside a BLOCK."""
    message = f"🔄 Ralph #{next_iteration} [{strategy}]"
    if signals.errors:
        message += f" | ⚠️ {len(signals.errors)} error(s)"
    if state.completion_promise:
        message += f" | Done? <promise>{state.completion_promise}</promise>"
    if nudge_delivered:
        message += " | 📬 Nudge received"
    if checkpoint:
        message += " | 📍 Checkpoint"
    return message


def paused_decision(iteration: int, marker_path: Path) -> Decision:
    """BLOCK returned while a pause-mode checkpoint awaits the operator."""
    return Decision(
        decision="block",
        directive=(
            f"Checkpoint reached. Review {marker_path} and run "
            "`ralph checkpoint continue` when ready."
        ),
        status_message=(
            f"⏸️ Checkpoint at iteration {iteration}. "
            "Run `ralph checkpoint continue` to resume."
        ),
        checkpoint=True,
    )


def advance_state(
    state: LoopState, strategy: Strategy, signals: ExecutionSignals, track_progress: bool
) -> LoopState:
    """State for the next turn: iteration + 1 and the decided strategy."""
    next_iteration = state.iteration + 1
    update: dict[str, object] = {"iteration": next_iteration}

    if strategy is not state.strategy.current:
        update["strategy"] = StrategyState(current=strategy, changed_at=state.iteration)

    if track_progress:
        if signals.meaningful_changes:
            update["progress"] = Progress(
                stuck_count=0, last_meaningful_change=state.iteration
            )
        else:
            update["progress"] = state.progress.model_copy(
                update={"stuck_count": state.progress.stuck_count + 1}
            )

    return state.model_copy(update=update)


# =============================================================================
# ORCHESTRATOR
# =============================================================================


class LoopOrchestrator:
    """Sequences the loop components for one attempted stop.

    Collaborators are injected; each defaults to its file-backed
    implementation under the configured state directory.
    """

    def __init__(
        self,
        cfg: Settings | None = None,
        memory_store: MemoryStore | None = None,
        knowledge_sink: KnowledgeSink | None = None,
        notifier: Notifier | None = None,
        *,
        state_path: Path | None = None,
        mailbox: NudgeMailbox | None = None,
        marker: CheckpointMarker | None = None,
    ) -> None:
        self.cfg = cfg or settings
        self.memory_store = memory_store or FileMemoryStore(
            max_items=self.cfg.max_memory_items,
            learning_similarity=self.cfg.learning_similarity,
        )
        self.knowledge_sink = knowledge_sink or FileKnowledgeSink()
        self.notifier = notifier or (
            DesktopNotifier() if self.cfg.notifications_enabled else NullNotifier()
        )
        self.thresholds = StrategyThresholds.from_settings(self.cfg)
        self.state_path = state_path
        self.mailbox = mailbox or NudgeMailbox()
        self.marker = marker or CheckpointMarker()

    # -- Core decision ----------------------------------------------------------

    def on_turn_end(
        self,
        state: LoopState | None,
        trace_path: Path | None,
        nudge: str | None = None,
    ) -> Decision:
        """Decide what happens after the agent's attempted stop.

        Returns:
            The decision. Terminal decisions carry ``termination_reason``;
            BLOCK decisions carry ``next_state`` for the caller to persist.
        """
        if state is None or not state.active:
            return Decision.allow()

        if max_iterations_reached(state):
            logger.info("Max iterations (%d) reached", state.max_iterations)
            return Decision.allow(
                reason=TerminationReason.MAX_ITERATIONS,
                status_message=(
                    f"🛑 Ralph loop: Max iterations ({state.max_iterations}) reached."
                ),
            )

        try:
            messages = load_turn(trace_path)
        except TraceUnavailableError as e:
            logger.warning("Abandoning loop: %s", e)
            return Decision.allow(reason=TerminationReason.ERROR)

        return self.evaluate(state, messages, nudge)

    def evaluate(
        self,
        state: LoopState,
        messages: Sequence[TranscriptMessage],
        nudge: str | None = None,
    ) -> Decision:
        """Decide from an already parsed trace (steps 3 to 7)."""
        if max_iterations_reached(state):
            return Decision.allow(reason=TerminationReason.MAX_ITERATIONS)

        try:
            last_text = last_agent_text(messages)
        except EmptyTurnError as e:
            logger.warning("Abandoning loop: %s", e)
            return Decision.allow(reason=TerminationReason.ERROR)

        if promise_fulfilled(state, last_text):
            logger.info("Detected <promise>%s</promise>", state.completion_promise)
            return Decision.allow(
                reason=TerminationReason.PROMISE,
                status_message=(
                    f"✅ Ralph loop: Detected <promise>{state.completion_promise}</promise>"
                ),
            )

        signals = analyze(messages)
        if self.cfg.knowledge_enabled:
            self._write_through(state, signals)

        strategy = decide(state, signals, self.thresholds)
        record = self._update_memory(state, signals, strategy)
        next_state = advance_state(
            state, strategy.strategy, signals, self.cfg.track_progress
        )

        checkpoint = is_checkpoint(state.iteration, state.checkpoint_interval)
        if checkpoint and state.checkpoint_mode is CheckpointMode.PAUSE:
            paused = paused_decision(next_state.iteration, self.marker.path)
            return paused.model_copy(
                update={
                    "next_state": next_state,
                    "strategy": strategy,
                    "signals": signals,
                }
            )

        delivered = bool(nudge and nudge.strip())
        directive = build_directive(
            state,
            strategy,
            record,
            signals,
            nudge if delivered else None,
            max_next_actions=self.cfg.max_next_actions,
            max_learnings=self.cfg.max_learnings_shown,
            max_errors=self.cfg.max_errors_shown,
        )
        return Decision(
            decision="block",
            directive=directive,
            status_message=status_message(
                next_state.iteration,
                strategy.strategy,
                state,
                signals,
                nudge_delivered=delivered,
                checkpoint=checkpoint,
            ),
            next_state=next_state,
            strategy=strategy,
            signals=signals,
            checkpoint=checkpoint,
            nudge_delivered=delivered,
        )

    def _write_through(self, state: LoopState, signals: ExecutionSignals) -> None:
        # Best effort: no sink failure may change the turn decision
        try:
            record_error_patterns(
                signals,
                self.knowledge_sink,
                state.session_id or None,
                duplicate_relevance=self.cfg.knowledge_similarity,
            )
        except Exception as e:
            logger.warning("Knowledge write-through failed, continuing: %s", e)

    def _update_memory(
        self, state: LoopState, signals: ExecutionSignals, strategy: StrategyDecision
    ) -> SessionRecord | None:
        if not state.session_id:
            return None
        try:
            return update_from_signals(self.memory_store, state, signals, strategy)
        except MemoryStoreUnavailableError as e:
            logger.warning("Session memory unavailable, using bare prompt: %s", e)
            return None

    def read_record(self, session_id: str) -> SessionRecord | None:
        if not session_id:
            return None
        try:
            return self.memory_store.read(session_id)
        except MemoryStoreUnavailableError as e:
            logger.warning("Session memory unavailable: %s", e)
            return None

    # -- File-driven wrapper ----------------------------------------------------

    def handle_stop(self, trace_path: Path | None) -> Decision:
        """Run one stop against the state files and persist the outcome.

        Never raises: any loop or IO failure yields an ALLOW.
        """
        try:
            return self._handle_stop(trace_path)
        except (RalphError, OSError) as e:
            logger.error("Ralph stop hook failed, allowing stop: %s", e)
            return Decision.allow(reason=TerminationReason.ERROR)

    def _handle_stop(self, trace_path: Path | None) -> Decision:
        try:
            state = load_state(self.state_path)
        except StateCorruptedError as e:
            logger.warning("⚠️ Ralph loop: State file corrupted (%s), abandoning", e)
            clear_state(self.state_path)
            return Decision.allow(reason=TerminationReason.ERROR)

        if state is None:
            return Decision.allow()

        if self.marker.is_set:
            logger.info("Checkpoint pending at iteration %d", state.iteration)
            return paused_decision(state.iteration, self.marker.path)

        decision = self.on_turn_end(state, trace_path, self.mailbox.peek())

        if decision.termination_reason is not None:
            self.finish(state, decision.termination_reason)
            return decision

        if decision.next_state is not None:
            save_state(decision.next_state, self.state_path)
        if decision.nudge_delivered:
            self.mailbox.clear()
        self._after_block(state, decision)
        return decision

    def _after_block(self, state: LoopState, decision: Decision) -> None:
        paused = decision.checkpoint and state.checkpoint_mode is CheckpointMode.PAUSE
        next_iteration = state.iteration + 1

        if decision.signals is not None and decision.strategy is not None:
            update_status(
                state,
                decision.signals,
                decision.strategy,
                RunStatus.PAUSED if paused else RunStatus.RUNNING,
            )

        if paused:
            self.marker.set(next_iteration)
            self.notifier.send(
                "Ralph checkpoint",
                f"Paused at iteration {next_iteration}; review and continue",
                urgency="critical",
            )
        elif decision.checkpoint:
            self.notifier.send("Ralph checkpoint", f"Reached iteration {next_iteration}")

        strategy = decision.strategy
        if (
            strategy is not None
            and strategy.strategy is Strategy.RECOVERY
            and strategy.action == "switch"
        ):
            self.notifier.send("Ralph recovery", strategy.reason, urgency="critical")

    def finish(self, state: LoopState, reason: TerminationReason) -> None:
        """End the session: write the summary and clear the loop files."""
        write_summary(reason, self.read_record(state.session_id), state.iteration)
        clear_state(self.state_path)
        self.marker.clear()
        match reason:
            case TerminationReason.PROMISE:
                self.notifier.send(
                    "Ralph complete", f"Task completed at iteration {state.iteration}!"
                )
            case TerminationReason.MAX_ITERATIONS:
                self.notifier.send(
                    "Ralph stopped", f"Max iterations ({state.max_iterations}) reached"
                )
            case _:
                pass

    def cancel(self) -> LoopState | None:
        """Cancel the active loop, if any, writing a cancelled summary."""
        try:
            state = load_state(self.state_path)
        except StateCorruptedError as e:
            logger.warning("Clearing corrupted state: %s", e)
            clear_state(self.state_path)
            return None
        if state is None:
            return None
        self.finish(state, TerminationReason.CANCELLED)
        return state
