"""Context Builder: assemble the literal next-turn directive.

Sections appear in a fixed order and each is omitted entirely when its
data source is absent:

1. Banner (iteration, strategy)
2. One-time priority instruction (nudge)
3. Mission (recorded objective, else the prompt text)
4. Current status
5. Next actions
6. Strategy guidance (always)
7. Key learnings
8. Recent errors
9. Completion reminder
10. Divider, then the verbatim prompt text

The directive always ends with the operator's prompt text, byte for
byte, however much scaffolding precedes it.
"""

from ralph.loop.models import (
    ErrorHit,
    ExecutionSignals,
    LoopState,
    SessionRecord,
    StrategyDecision,
)

DIVIDER = "═" * 50
SECTION_DIVIDER = "─" * 40

MAX_NEXT_ACTIONS = 5
MAX_LEARNINGS = 5
MAX_ERRORS = 3


def unique_errors(errors: list[ErrorHit], limit: int = MAX_ERRORS) -> list[ErrorHit]:
    """First hit per label, in trace order, at most ``limit``."""
    seen: dict[str, ErrorHit] = {}
    for hit in errors:
        seen.setdefault(hit.label, hit)
    return list(seen.values())[:limit]


def build_directive(
    state: LoopState,
    decision: StrategyDecision,
    record: SessionRecord | None = None,
    signals: ExecutionSignals | None = None,
    nudge: str | None = None,
    *,
    max_next_actions: int = MAX_NEXT_ACTIONS,
    max_learnings: int = MAX_LEARNINGS,
    max_errors: int = MAX_ERRORS,
) -> str:
    """Build the directive for the turn after ``state.iteration``.

    ``record`` is None when session memory is unavailable; memory-derived
    sections are then left out and the mission falls back to the prompt.
    """
    lines: list[str] = [
        DIVIDER,
        f"   RALPH ITERATION {state.iteration}",
        f"   Strategy: {decision.strategy.upper()}",
        DIVIDER,
        "",
    ]

    if nudge and nudge.strip():
        lines += [
            "## PRIORITY INSTRUCTION (ONE-TIME)",
            "",
            nudge.strip(),
            "",
            SECTION_DIVIDER,
            "",
        ]

    mission = (record.original_objective if record else "") or state.prompt_text
    lines += ["## YOUR MISSION", "", mission or "_No objective recorded_", ""]

    if record and record.current_status:
        lines += ["## CURRENT STATUS", "", record.current_status, ""]

    if record and record.next_actions and max_next_actions > 0:
        lines += ["## NEXT ACTIONS", ""]
        for i, action in enumerate(record.next_actions[:max_next_actions], 1):
            lines.append(f"{i}. {action}")
        lines.append("")

    lines += [
        "## STRATEGY GUIDANCE",
        "",
        f"_Phase: {decision.strategy} - {decision.reason}_",
        "",
    ]
    lines += [f"- {item}" for item in decision.guidance]
    lines.append("")

    if record and record.key_learnings and max_learnings > 0:
        lines += ["## KEY LEARNINGS", ""]
        lines += [f"- {learning}" for learning in record.key_learnings[-max_learnings:]]
        lines.append("")

    if signals and signals.errors and max_errors > 0:
        lines += ["## RECENT ERRORS (fix these!)", ""]
        for hit in unique_errors(signals.errors, max_errors):
            lines.append(f"- {hit.label}: {hit.sample}")
        lines.append("")

    if state.completion_promise:
        lines += [
            SECTION_DIVIDER,
            "",
            "**COMPLETION:** When done, output: "
            f"`<promise>{state.completion_promise}</promise>`",
            "_Only output this when the statement is TRUE!_",
            "",
        ]

    lines += [DIVIDER, ""]
    return "\n".join(lines) + "\n" + state.prompt_text
