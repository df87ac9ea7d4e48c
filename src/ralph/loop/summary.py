"""Session summary written once when a loop terminates.

The summary is built from the session record, so it reflects everything
memory kept even if the agent's context was compacted along the way.

Examples:
    Label how a session ended::

        >>> outcome_for(TerminationReason.PROMISE, None).label
        'COMPLETED'
"""

import logging
from datetime import datetime, timezone
from pathlib import Path

from pydantic import BaseModel

from ralph.lib.paths import summary_file
from ralph.loop.models import SessionRecord, TerminationReason

logger = logging.getLogger(__name__)


class Outcome(BaseModel):
    emoji: str
    label: str
    description: str


def outcome_for(reason: TerminationReason | None, record: SessionRecord | None) -> Outcome:
    """Classify a terminated session.

    Hitting the iteration cap counts as PARTIAL when accomplishments
    outnumber failures, INCOMPLETE otherwise.
    """
    match reason:
        case TerminationReason.PROMISE:
            return Outcome(
                emoji="✅",
                label="COMPLETED",
                description="Loop ended successfully via completion promise",
            )
        case TerminationReason.CANCELLED:
            return Outcome(
                emoji="⏹️", label="CANCELLED", description="Loop was manually cancelled"
            )
        case TerminationReason.MAX_ITERATIONS:
            accomplished = len(record.accomplished) if record else 0
            failed = len(record.failed_attempts) if record else 0
            if accomplished > failed:
                return Outcome(
                    emoji="⚠️",
                    label="PARTIAL",
                    description="Max iterations reached with partial progress",
                )
            return Outcome(
                emoji="❌",
                label="INCOMPLETE",
                description="Max iterations reached without completion",
            )
        case TerminationReason.ERROR:
            return Outcome(
                emoji="💥", label="ERROR", description="Loop terminated due to error"
            )
        case _:
            return Outcome(
                emoji="❓", label="UNKNOWN", description="Loop ended for unknown reason"
            )


RECOMMENDATIONS: dict[str, list[str]] = {
    "COMPLETED": [
        "Review the implemented solution for edge cases",
        "Consider adding tests if not already present",
        "Document any API changes or new features",
    ],
    "PARTIAL": [
        "Review failed attempts to avoid repeating mistakes",
        "Consider breaking the task into smaller subtasks",
        "Check if the original objective needs refinement",
    ],
    "CANCELLED": [
        "Determine if the task is still needed",
        "Consider what prompted the cancellation",
        "Review partial progress before starting again",
    ],
}
RECOMMENDATIONS["INCOMPLETE"] = RECOMMENDATIONS["PARTIAL"]


def recommendations(outcome: Outcome, record: SessionRecord | None) -> list[str]:
    items = list(RECOMMENDATIONS.get(outcome.label, []))
    failed = len(record.failed_attempts) if record else 0
    if outcome.label in ("PARTIAL", "INCOMPLETE") and failed > 3:
        items.append("Multiple failures suggest the approach may need rethinking")
    return items


def render_summary(
    reason: TerminationReason | None,
    record: SessionRecord | None,
    final_iteration: int | None = None,
    now: datetime | None = None,
) -> str:
    outcome = outcome_for(reason, record)
    generated = (now or datetime.now(timezone.utc)).isoformat(timespec="seconds")
    accomplished = record.accomplished if record else []
    learnings = record.key_learnings if record else []
    failed = len(record.failed_attempts) if record else 0

    lines = [
        f"# Ralph Session Summary {outcome.emoji}",
        "",
        f"_Generated: {generated}_",
        "",
        "## Outcome",
        "",
        f"**Status:** {outcome.label}",
        f"**Reason:** {outcome.description}",
    ]
    if final_iteration:
        lines.append(f"**Total Iterations:** {final_iteration}")
    lines.append("")

    if record and record.original_objective:
        lines += ["## Original Objective", "", record.original_objective, ""]
    if record and record.current_status:
        lines += ["## Final Status", "", record.current_status, ""]

    lines += ["## Accomplishments", ""]
    if accomplished:
        lines += [f"- {a.description}" for a in accomplished]
    else:
        lines.append("_No accomplishments recorded_")
    lines.append("")

    lines += [
        "## Statistics",
        "",
        "| Metric | Value |",
        "|--------|-------|",
        f"| Iterations | {final_iteration or 'Unknown'} |",
        f"| Accomplishments | {len(accomplished)} |",
        f"| Failed Attempts | {failed} |",
        f"| Learnings | {len(learnings)} |",
        "",
    ]

    if learnings:
        lines += ["## Key Learnings", ""]
        lines += [f"- {learning}" for learning in learnings]
        lines.append("")

    lines += ["## Recommendations for Next Session", ""]
    lines += [f"- {item}" for item in recommendations(outcome, record)]
    lines += ["", "---", "", "_Run `ralph memory` for the full session history._", ""]
    return "\n".join(lines)


def write_summary(
    reason: TerminationReason | None,
    record: SessionRecord | None,
    final_iteration: int | None = None,
    path: Path | None = None,
) -> Path | None:
    """Write the summary file; failures are logged and return None."""
    target = path or summary_file()
    try:
        target.parent.mkdir(parents=True, exist_ok=True)
        target.write_text(
            render_summary(reason, record, final_iteration), encoding="utf-8"
        )
    except OSError as e:
        logger.warning("Could not write session summary %s: %s", target, e)
        return None
    logger.info("Wrote session summary to %s (%s)", target, reason)
    return target
