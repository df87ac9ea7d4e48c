"""Centralized path constants and helpers for loop state files.

All loop-related paths are routed through this module. Every file lives
under a single state directory (``.claude/`` in the working directory by
default) so the host agent and the operator share one location:

    .claude/ralph-loop.local.md        loop state (frontmatter + prompt)
    .claude/RALPH_NUDGE.md             one-shot operator instruction
    .claude/RALPH_CHECKPOINT.md        checkpoint marker (pause mode)
    .claude/RALPH_STATUS.md            status dashboard
    .claude/RALPH_SUMMARY.md           summary written on termination
    .claude/RALPH_COMPACT_PRESERVE.md  context preserved before compaction
    .claude/ralph/memory/<session_id>.json
    .claude/ralph/knowledge.jsonl

The state directory can be overridden via :func:`configure`::

    from ralph.lib.paths import configure
    configure(state_dir=Path("/tmp/project/.claude"))

Examples:
    Override paths for testing::

        >>> from ralph.lib.paths import configure, state_file
        >>> configure(state_dir=Path("/tmp/test/.claude"))
        >>> state_file()
        PosixPath('/tmp/test/.claude/ralph-loop.local.md')

    Generate a session identifier::

        >>> new_session_id()  # doctest: +SKIP
        'ralph-20260101120000-1a2b3c4d'
"""

import re
import secrets
from datetime import datetime
from pathlib import Path

# -- Mutable path state -------------------------------------------------------
# Relative to the working directory of the hook process; overridable via configure().

STATE_DIR = Path(".claude")


def configure(*, state_dir: Path | None = None) -> None:
    """Override the state directory.

    Call before any loop operations. All derived paths update
    automatically since they read from this value.
    """
    global STATE_DIR  # noqa: PLW0603

    if state_dir is not None:
        STATE_DIR = state_dir


# -- Public path accessors ----------------------------------------------------


def state_dir() -> Path:
    """Return the state directory (``./.claude`` by default)."""
    return STATE_DIR


def state_file() -> Path:
    """Loop state file; its presence is the active-loop marker."""
    return STATE_DIR / "ralph-loop.local.md"


def nudge_file() -> Path:
    return STATE_DIR / "RALPH_NUDGE.md"


def checkpoint_file() -> Path:
    return STATE_DIR / "RALPH_CHECKPOINT.md"


def status_file() -> Path:
    return STATE_DIR / "RALPH_STATUS.md"


def summary_file() -> Path:
    return STATE_DIR / "RALPH_SUMMARY.md"


def compact_preserve_file() -> Path:
    return STATE_DIR / "RALPH_COMPACT_PRESERVE.md"


def data_dir() -> Path:
    """Directory for machine-readable loop data: ``.claude/ralph/``."""
    return STATE_DIR / "ralph"


def memory_dir() -> Path:
    """Directory for session records: ``.claude/ralph/memory/``."""
    return data_dir() / "memory"


def knowledge_path() -> Path:
    """Cross-session knowledge file: ``.claude/ralph/knowledge.jsonl``."""
    return data_dir() / "knowledge.jsonl"


# -- Identifiers ----------------------------------------------------------------

SESSION_ID_FMT = "%Y%m%d%H%M%S"
SESSION_ID_RE = re.compile(r"^[A-Za-z0-9_.-]+$")


def new_session_id(now: datetime | None = None) -> str:
    """Return a fresh ``ralph-<timestamp>-<hex>`` session identifier."""
    stamp = (now or datetime.now()).strftime(SESSION_ID_FMT)
    return f"ralph-{stamp}-{secrets.token_hex(4)}"


def session_file_name(session_id: str) -> str:
    """Map a session id to a safe file name.

    Raises:
        ValueError: If the id contains path separators or other
            characters that could escape the memory directory.
    """
    if not SESSION_ID_RE.match(session_id) or session_id in {".", ".."}:
        raise ValueError(f"Invalid session id: {session_id!r}")
    return f"{session_id}.json"
