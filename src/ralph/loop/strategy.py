"""Strategy Engine: pick the behavioral mode for the next turn.

The phase progression approximates the diminishing returns of
unsupervised iteration: broad exploration, then commitment, then a forced
wrap-up. The recovery override interrupts pathological loops (the same
failure repeating, or no progress for several turns).

Recovery is recomputed from the current turn's signals every time, with
no cooldown, so a condition sitting exactly at a threshold can flip the
strategy back and forth between turns.

Usage:
    from ralph.loop.strategy import decide

    decision = decide(state, signals)
    decision.strategy, decision.action
"""

from typing import Self

from pydantic import BaseModel, Field

from ralph.loop.config import Settings, settings
from ralph.loop.models import ExecutionSignals, LoopState, Strategy, StrategyDecision


class StrategyThresholds(BaseModel):
    """Iteration windows and recovery triggers."""

    explore_end: int = Field(default=10, ge=0)
    focused_end: int = Field(default=35, ge=0)
    repeated_error: int = Field(default=3, ge=1)
    stuck: int = Field(default=5, ge=1)

    @classmethod
    def from_settings(cls, cfg: Settings) -> Self:
        return cls(
            explore_end=cfg.explore_end,
            focused_end=cfg.focused_end,
            repeated_error=cfg.repeated_error_threshold,
            stuck=cfg.stuck_threshold,
        )


GUIDANCE: dict[Strategy, list[str]] = {
    Strategy.EXPLORE: [
        "Explore the problem space broadly",
        "Try different approaches to understand the task",
        "Don't commit to a single solution yet",
        "Document what you learn for later iterations",
    ],
    Strategy.FOCUSED: [
        "Commit to the best approach identified during exploration",
        "Implement incrementally with tests",
        "If stuck on an approach, pivot quickly",
        "Track progress against milestones",
    ],
    Strategy.CLEANUP: [
        "Focus on finishing incomplete work",
        "Fix remaining bugs and edge cases",
        "Ensure all tests pass",
        "Prepare final deliverables",
        "Time is limited - prioritize ruthlessly",
    ],
    Strategy.RECOVERY: [
        "STOP and analyze what's going wrong",
        "Review failed attempts in memory",
        "Try a fundamentally different approach",
        "Consider simplifying the problem",
    ],
}


def base_strategy(iteration: int, thresholds: StrategyThresholds) -> Strategy:
    """Phase strategy as a function of the iteration number alone."""
    if iteration <= thresholds.explore_end:
        return Strategy.EXPLORE
    if iteration <= thresholds.focused_end:
        return Strategy.FOCUSED
    return Strategy.CLEANUP


def guidance_for(strategy: Strategy, signals: ExecutionSignals) -> list[str]:
    """Ordered checklist for a strategy.

    Recovery names the most frequent repeated error right after the
    generic "change approach" items.
    """
    guidance = list(GUIDANCE[strategy])
    top = signals.top_repeated_error
    if strategy is Strategy.RECOVERY and top is not None:
        guidance.insert(3, f"Focus on fixing: {top.label} ({top.count} occurrences)")
    return guidance


def _phase_reason(
    strategy: Strategy, iteration: int, switching: bool, thresholds: StrategyThresholds
) -> str:
    if not switching:
        return f"Continuing {strategy} phase (iteration {iteration})"
    match strategy:
        case Strategy.EXPLORE:
            window = f"iterations 1-{thresholds.explore_end}"
            return f"Iteration {iteration}: Exploration phase ({window})"
        case Strategy.FOCUSED:
            window = f"iterations {thresholds.explore_end + 1}-{thresholds.focused_end}"
            return f"Iteration {iteration}: Focused implementation phase ({window})"
        case _:
            window = f"iterations {thresholds.focused_end + 1}+"
            return f"Iteration {iteration}: Cleanup phase ({window})"


def decide(
    state: LoopState,
    signals: ExecutionSignals,
    thresholds: StrategyThresholds | None = None,
) -> StrategyDecision:
    """Combine loop state and turn signals into a strategy decision."""
    limits = thresholds or StrategyThresholds.from_settings(settings)
    current = state.strategy.current
    iteration = state.iteration

    repeated = [e for e in signals.repeated_errors if e.count >= limits.repeated_error]
    stuck = state.progress.stuck_count >= limits.stuck

    if repeated or stuck:
        if repeated:
            top = repeated[0]
            reason = f'Detected {top.count}x repeated "{top.label}" errors'
        else:
            reason = (
                f"Stuck for {state.progress.stuck_count} iterations "
                "without meaningful progress"
            )
        return StrategyDecision(
            strategy=Strategy.RECOVERY,
            reason=reason,
            action="continue" if current is Strategy.RECOVERY else "switch",
            guidance=guidance_for(Strategy.RECOVERY, signals),
        )

    strategy = base_strategy(iteration, limits)
    switching = strategy is not current
    reason = _phase_reason(strategy, iteration, switching, limits)

    if signals.meaningful_changes:
        reason += " - making progress"
    elif iteration > 1:
        reason += " - no meaningful changes detected, consider adjusting approach"

    return StrategyDecision(
        strategy=strategy,
        reason=reason,
        action="switch" if switching else "continue",
        guidance=guidance_for(strategy, signals),
    )
