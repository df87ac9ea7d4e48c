"""Status dashboard rewritten after every turn.

The dashboard is a markdown snapshot for an operator watching the loop:
an overview table, a progress bar when the loop is capped, a rolling log
of recent turns and the current turn's error patterns and changed files.
The rolling log itself lives in ``.claude/ralph/activity.json`` so it
survives between hook processes.
"""

import logging
import math
from datetime import datetime, timezone
from enum import StrEnum
from pathlib import Path

from pydantic import BaseModel, Field, ValidationError

from ralph.lib.history import load_document, save_document
from ralph.lib.paths import data_dir, status_file
from ralph.loop.models import ExecutionSignals, LoopState, StrategyDecision

logger = logging.getLogger(__name__)

MAX_ACTIVITY_ENTRIES = 10
MAX_ERROR_PATTERNS = 5
MAX_FILES_SHOWN = 10
PROGRESS_BAR_WIDTH = 20


class RunStatus(StrEnum):
    RUNNING = "running"
    PAUSED = "paused"
    COMPLETED = "completed"
    STOPPED = "stopped"


STATUS_EMOJI = {
    RunStatus.RUNNING: "🔄",
    RunStatus.PAUSED: "⏸️",
    RunStatus.COMPLETED: "✅",
    RunStatus.STOPPED: "❌",
}


class ActivityEntry(BaseModel):
    iteration: int
    time: str
    action: str
    status: str = Field(description="OK, RETRY or ERROR")


class ActivityLog(BaseModel):
    entries: list[ActivityEntry] = Field(default_factory=list)


def activity_path() -> Path:
    return data_dir() / "activity.json"


def load_activity(path: Path | None = None) -> list[ActivityEntry]:
    target = path or activity_path()
    try:
        data = load_document(target)
        return ActivityLog.model_validate(data).entries if data else []
    except (OSError, ValueError, ValidationError) as e:
        logger.warning("Ignoring unreadable activity log %s: %s", target, e)
        return []


def activity_status(signals: ExecutionSignals) -> str:
    if signals.errors:
        return "RETRY" if signals.meaningful_changes else "ERROR"
    return "OK"


def activity_entry(
    iteration: int,
    signals: ExecutionSignals,
    decision: StrategyDecision,
    now: datetime | None = None,
) -> ActivityEntry:
    """Describe one turn in a single short phrase."""
    if signals.tests_run:
        if signals.tests_passed and not signals.tests_failed:
            action = "Tests passed"
        elif signals.tests_failed:
            action = "Tests failed"
        else:
            action = "Tests run"
    elif signals.files_modified:
        action = f"Modified {len(signals.files_modified)} file(s)"
    elif signals.phase_completions:
        action = f"Completed {', '.join(signals.phase_completions)}"
    elif decision.action == "switch":
        action = f"Strategy: {decision.strategy}"
    else:
        action = "Working..."

    stamp = now or datetime.now(timezone.utc)
    return ActivityEntry(
        iteration=iteration,
        time=stamp.strftime("%H:%M:%S"),
        action=action,
        status=activity_status(signals),
    )


def format_duration(seconds: int) -> str:
    hours, rest = divmod(max(seconds, 0), 3600)
    minutes, secs = divmod(rest, 60)
    if hours:
        return f"{hours}h {minutes}m {secs}s"
    if minutes:
        return f"{minutes}m {secs}s"
    return f"{secs}s"


def runtime_seconds(started_at: str, now: datetime | None = None) -> int:
    try:
        start = datetime.fromisoformat(started_at.replace("Z", "+00:00"))
    except ValueError:
        return 0
    if start.tzinfo is None:
        start = start.replace(tzinfo=timezone.utc)
    return int(((now or datetime.now(timezone.utc)) - start).total_seconds())


def next_checkpoint(iteration: int, interval: int) -> int | None:
    if interval <= 0:
        return None
    return math.ceil(iteration / interval) * interval


def progress_bar(iteration: int, max_iterations: int) -> str:
    fraction = min(iteration / max_iterations, 1.0)
    filled = round(fraction * PROGRESS_BAR_WIDTH)
    bar = "█" * filled + "░" * (PROGRESS_BAR_WIDTH - filled)
    return f"{bar} {round(fraction * 100)}%"


def render_status(
    state: LoopState,
    signals: ExecutionSignals,
    decision: StrategyDecision,
    activity: list[ActivityEntry],
    run_status: RunStatus = RunStatus.RUNNING,
    now: datetime | None = None,
) -> str:
    moment = now or datetime.now(timezone.utc)
    iteration = f"{state.iteration}"
    if state.max_iterations > 0:
        iteration += f" / {state.max_iterations}"

    lines = [
        f"# Ralph Status {STATUS_EMOJI[run_status]}",
        "",
        f"_Last updated: {moment.isoformat(timespec='seconds')}_",
        "",
        "## Overview",
        "",
        "| Metric | Value |",
        "|--------|-------|",
        f"| Status | **{run_status.upper()}** |",
        f"| Iteration | {iteration} |",
        f"| Phase | {decision.strategy} |",
        f"| Runtime | {format_duration(runtime_seconds(state.started_at, moment))} |",
    ]
    checkpoint = next_checkpoint(state.iteration, state.checkpoint_interval)
    if checkpoint:
        lines.append(f"| Next Checkpoint | Iteration {checkpoint} |")
    lines += [f"| Errors | {len(signals.errors)} |", ""]

    if state.max_iterations > 0:
        lines += [
            f"## Progress: {progress_bar(state.iteration, state.max_iterations)}",
            "",
        ]

    lines += ["## Recent Activity", ""]
    if not activity:
        lines.append("_No activity yet_")
    else:
        lines += ["| Iter | Time | Action | Status |", "|------|------|--------|--------|"]
        icons = {"OK": "✅", "RETRY": "🔄"}
        for entry in activity:
            icon = icons.get(entry.status, "❌")
            lines.append(
                f"| {entry.iteration} | {entry.time} | {entry.action} | {icon} |"
            )
    lines.append("")

    patterns = list(dict.fromkeys(hit.label for hit in signals.errors))
    if patterns:
        lines += ["## Error Patterns", ""]
        lines += [f"- {label}" for label in patterns[:MAX_ERROR_PATTERNS]]
        lines.append("")

    if signals.files_modified:
        lines += ["## Files Changed", ""]
        lines += [f"- `{path}`" for path in signals.files_modified[:MAX_FILES_SHOWN]]
        lines.append("")

    lines += [
        "---",
        "",
        "**Commands:**",
        "- `ralph status` - Refresh this view",
        "- `ralph nudge <instruction>` - Send guidance",
        "- `ralph cancel` - Stop the loop",
        "",
    ]
    return "\n".join(lines)


def update_status(
    state: LoopState,
    signals: ExecutionSignals,
    decision: StrategyDecision,
    run_status: RunStatus = RunStatus.RUNNING,
    path: Path | None = None,
    log_path: Path | None = None,
) -> Path | None:
    """Record the turn in the activity log and rewrite the dashboard.

    Best effort: IO failures are logged and return None.
    """
    target = path or status_file()
    log_target = log_path or activity_path()
    entry = activity_entry(state.iteration, signals, decision)
    activity = [entry, *load_activity(log_target)][:MAX_ACTIVITY_ENTRIES]
    try:
        save_document(ActivityLog(entries=activity), log_target)
        target.parent.mkdir(parents=True, exist_ok=True)
        target.write_text(
            render_status(state, signals, decision, activity, run_status),
            encoding="utf-8",
        )
    except OSError as e:
        logger.warning("Could not update status dashboard %s: %s", target, e)
        return None
    return target
