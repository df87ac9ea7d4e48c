"""Data model for the adaptive loop.

The key pattern is:
1. LoopState and SessionRecord are owned by the caller and passed in by value
2. ExecutionSignals and StrategyDecision are recomputed fresh every turn
3. Decision is the only thing the orchestrator hands back to the host
"""

from enum import StrEnum
from typing import Any, Literal, Self

from pydantic import BaseModel, ConfigDict, Field


class Strategy(StrEnum):
    """Behavioral mode guiding the next turn."""

    EXPLORE = "explore"
    FOCUSED = "focused"
    CLEANUP = "cleanup"
    RECOVERY = "recovery"


class CheckpointMode(StrEnum):
    PAUSE = "pause"
    NOTIFY = "notify"


class TerminationReason(StrEnum):
    PROMISE = "promise"
    MAX_ITERATIONS = "max_iterations"
    CANCELLED = "cancelled"
    ERROR = "error"


class ErrorLabel(StrEnum):
    """Closed set of failure classes the analyzer reports."""

    COMPILATION = "TypeScript compilation error"
    SYNTAX = "Syntax error"
    PYTHON_IMPORT = "Python import error"
    TEST_FAILURE = "Test failure"
    TIMEOUT = "Timeout error"
    FILE_NOT_FOUND = "File not found"
    PERMISSION = "Permission error"
    MODULE_RESOLUTION = "Module resolution error"
    UNDEFINED_REFERENCE = "Undefined reference error"
    STACK_OVERFLOW = "Stack overflow"


class SuiteOutcome(StrEnum):
    """Combined reading of the three independent test flags."""

    NONE = "none"
    PASSED = "passed"
    FAILED = "failed"
    MIXED = "mixed"


# =============================================================================
# LOOP STATE
# =============================================================================


class StrategyState(BaseModel):
    model_config = ConfigDict(frozen=True)

    current: Strategy = Strategy.EXPLORE
    changed_at: int = Field(default=0, ge=0, description="Iteration of last switch")


class Progress(BaseModel):
    model_config = ConfigDict(frozen=True)

    stuck_count: int = Field(default=0, ge=0)
    last_meaningful_change: int = Field(default=0, ge=0)


class LoopState(BaseModel):
    """Persistent loop state, read at turn start and rewritten at turn end.

    Immutable: the orchestrator returns an updated copy rather than
    mutating the caller's instance. ``prompt_text`` is the operator's
    literal instruction and never changes over a session.
    """

    model_config = ConfigDict(frozen=True)

    active: bool = True
    iteration: int = Field(default=1, ge=1)
    max_iterations: int = Field(default=0, ge=0, description="0 = unlimited")
    completion_promise: str | None = None
    started_at: str = ""
    session_id: str = ""
    checkpoint_interval: int = Field(default=0, ge=0, description="0 = disabled")
    checkpoint_mode: CheckpointMode = CheckpointMode.NOTIFY
    strategy: StrategyState = Field(default_factory=StrategyState)
    progress: Progress = Field(default_factory=Progress)
    prompt_text: str = ""


# =============================================================================
# EXECUTION SIGNALS
# =============================================================================


class ErrorHit(BaseModel):
    label: ErrorLabel
    sample: str = Field(description="Context around the match, at most ~100 chars")


class RepeatedError(BaseModel):
    label: ErrorLabel
    count: int = Field(ge=2)


class ExecutionSignals(BaseModel):
    """Structured signals extracted from one turn's trace."""

    errors: list[ErrorHit] = Field(default_factory=list)
    repeated_errors: list[RepeatedError] = Field(
        default_factory=list, description="Labels seen twice or more, count desc"
    )
    files_modified: list[str] = Field(default_factory=list)
    tests_run: bool = False
    tests_passed: bool = False
    tests_failed: bool = False
    phase_completions: list[str] = Field(default_factory=list)
    meaningful_changes: bool = False

    @property
    def test_outcome(self) -> SuiteOutcome:
        """Test result reading; conflicting evidence is reported as MIXED."""
        if self.tests_passed and self.tests_failed:
            return SuiteOutcome.MIXED
        if self.tests_passed:
            return SuiteOutcome.PASSED
        if self.tests_failed:
            return SuiteOutcome.FAILED
        return SuiteOutcome.NONE

    @property
    def top_repeated_error(self) -> RepeatedError | None:
        return self.repeated_errors[0] if self.repeated_errors else None


# =============================================================================
# SESSION RECORD
# =============================================================================


class Accomplishment(BaseModel):
    iteration: int
    description: str


class FailedAttempt(BaseModel):
    iteration: int
    description: str
    learning: str | None = None


class SessionRecord(BaseModel):
    """Durable record of one session's progress."""

    session_id: str
    started_at: str
    last_updated: str
    current_iteration: int = 0
    original_objective: str | None = Field(
        default=None, description="Write-once; None until set"
    )
    current_status: str = ""
    accomplished: list[Accomplishment] = Field(default_factory=list)
    failed_attempts: list[FailedAttempt] = Field(default_factory=list)
    next_actions: list[str] = Field(default_factory=list)
    key_learnings: list[str] = Field(default_factory=list)


# =============================================================================
# DECISIONS
# =============================================================================


class StrategyDecision(BaseModel):
    strategy: Strategy
    reason: str
    action: Literal["continue", "switch"]
    guidance: list[str] = Field(default_factory=list)


class Decision(BaseModel):
    """Outcome of one orchestrator invocation.

    ``decision``, ``directive`` and ``status_message`` are what the host
    sees. The remaining fields tell the caller what to persist.
    """

    decision: Literal["allow", "block"]
    directive: str | None = None
    status_message: str | None = None
    termination_reason: TerminationReason | None = None
    next_state: LoopState | None = None
    strategy: StrategyDecision | None = None
    signals: ExecutionSignals | None = None
    checkpoint: bool = False
    nudge_delivered: bool = False

    @classmethod
    def allow(
        cls,
        *,
        reason: TerminationReason | None = None,
        status_message: str | None = None,
    ) -> Self:
        return cls(
            decision="allow",
            termination_reason=reason,
            status_message=status_message,
        )

    @property
    def is_block(self) -> bool:
        return self.decision == "block"

    def to_hook_output(self) -> dict[str, Any]:
        """Render the decision as Claude Code Stop-hook JSON."""
        output: dict[str, Any] = {}
        if self.is_block:
            output["decision"] = "block"
            output["reason"] = self.directive or ""
        if self.status_message:
            output["systemMessage"] = self.status_message
        return output
