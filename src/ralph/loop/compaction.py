"""Context that survives host-side compaction.

Before the host compacts the conversation, the essentials of the session
record (objective, status, next actions, learnings) are written to a
preserve file. When a session resumes, a context block is rebuilt from
the live session record, falling back to the preserve file when memory
is unavailable; the preserve file is consumed either way.
"""

import logging
from pathlib import Path

from ralph.lib.paths import compact_preserve_file
from ralph.loop.models import LoopState, SessionRecord

logger = logging.getLogger(__name__)


def record_sections(record: SessionRecord) -> list[str]:
    lines = [
        "## Original Objective",
        "",
        record.original_objective or "_Not found_",
        "",
        "## Current Status",
        "",
        record.current_status or "_Not found_",
        "",
    ]
    if record.next_actions:
        lines += ["## Next Actions", ""]
        lines += [f"{i}. {a}" for i, a in enumerate(record.next_actions, 1)]
        lines.append("")
    if record.key_learnings:
        lines += ["## Key Learnings", ""]
        lines += [f"- {learning}" for learning in record.key_learnings]
        lines.append("")
    return lines


def render_preserved(record: SessionRecord) -> str:
    lines = [
        "# Ralph Context (Preserved for Compaction)",
        "",
        "_This file was auto-generated before compaction to preserve critical context._",
        "",
        *record_sections(record),
        "---",
        "_After compaction, run `ralph memory` for the full history._",
        "",
    ]
    return "\n".join(lines)


def preserve_context(record: SessionRecord | None, path: Path | None = None) -> Path | None:
    """Write the preserve file; returns None when there is nothing to keep."""
    if record is None:
        return None
    target = path or compact_preserve_file()
    target.parent.mkdir(parents=True, exist_ok=True)
    target.write_text(render_preserved(record), encoding="utf-8")
    logger.info("📋 Ralph: Preserved context for compaction in %s", target)
    return target


def resume_context(
    state: LoopState, record: SessionRecord | None, path: Path | None = None
) -> str:
    """Context block reinjected when a session resumes mid-loop."""
    target = path or compact_preserve_file()
    lines = [
        "# Ralph Session Context",
        "",
        f"**You are in an active Ralph loop at iteration {state.iteration}.**",
        f"**Session ID:** {state.session_id}",
        "",
    ]

    if record is not None:
        lines += ["_Context restored from session memory:_", "", *record_sections(record)]
    elif target.exists():
        lines += [
            "_Context reference from pre-compact preservation:_",
            "",
            target.read_text(encoding="utf-8"),
        ]
    else:
        lines += ["_Note: session memory is unavailable._", ""]

    lines += ["", "---"]
    if state.completion_promise:
        lines.append(
            "Continue working on the task. When complete, output: "
            f"`<promise>{state.completion_promise}</promise>`"
        )
    else:
        lines.append("Continue working on the task.")

    target.unlink(missing_ok=True)
    return "\n".join(lines)
