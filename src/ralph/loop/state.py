"""Loop state file, nudge mailbox and checkpoint marker.

The state file is markdown with a small frontmatter header (flat
``key: value`` pairs plus one level of nesting) followed by the literal
prompt::

    ---
    active: true
    iteration: 3
    max_iterations: 20
    completion_promise: "DONE"
    ...
    strategy:
      current: "explore"
      changed_at: 0
    ---

    Build a todo API

Its presence is the active-loop marker. Malformed fields raise
:class:`StateCorruptedError` so the orchestrator can abandon the session
instead of hanging the host.

Usage:
    from ralph.loop.state import load_state, save_state, NudgeMailbox

    state = load_state()
    nudge = NudgeMailbox().peek()
"""

import json
import logging
import os
import re
from datetime import datetime, timezone
from pathlib import Path
from typing import Any

from pydantic import ValidationError

from ralph.lib.paths import checkpoint_file, new_session_id, nudge_file, state_file
from ralph.lib.retry import with_retry
from ralph.loop.errors import StateCorruptedError
from ralph.loop.models import CheckpointMode, LoopState

logger = logging.getLogger(__name__)

FRONTMATTER_DELIM = "---"
NUMERIC_FIELDS = frozenset(
    {
        "iteration",
        "max_iterations",
        "checkpoint_interval",
        "changed_at",
        "stuck_count",
        "last_meaningful_change",
    }
)
_LINE_RE = re.compile(r"^(?P<indent>\s*)(?P<key>[A-Za-z_][\w]*):\s*(?P<value>.*)$")
_INT_RE = re.compile(r"^\d+$")


# =============================================================================
# FRONTMATTER CODEC
# =============================================================================


def parse_scalar(raw: str) -> Any:
    """Decode a frontmatter value: quoted string, null, bool or bare text."""
    value = raw.strip()
    if value in ("", "null", "~"):
        return None
    if value in ("true", "false"):
        return value == "true"
    if value.startswith('"') and value.endswith('"') and len(value) >= 2:
        try:
            return json.loads(value)
        except json.JSONDecodeError:
            return value[1:-1]
    if value.startswith("'") and value.endswith("'") and len(value) >= 2:
        return value[1:-1].replace("''", "'")
    if value == "[]":
        return []
    return value


def split_frontmatter(text: str) -> tuple[str, str]:
    """Split a document into ``(frontmatter, body)``.

    Raises:
        StateCorruptedError: If the document has no closed frontmatter.
    """
    lines = text.split("\n")
    if not lines or lines[0].strip() != FRONTMATTER_DELIM:
        raise StateCorruptedError("State file has no frontmatter")
    for i, line in enumerate(lines[1:], 1):
        if line.strip() == FRONTMATTER_DELIM:
            header = "\n".join(lines[1:i])
            body = "\n".join(lines[i + 1 :])
            if body.startswith("\n"):
                body = body[1:]
            if body.endswith("\n"):
                body = body[:-1]
            return header, body
    raise StateCorruptedError("State file frontmatter is not closed")


def parse_frontmatter(header: str) -> dict[str, Any]:
    """Parse ``key: value`` lines with one level of nesting."""
    data: dict[str, Any] = {}
    parent: str | None = None
    for line in header.split("\n"):
        if not line.strip() or line.lstrip().startswith("#"):
            continue
        match = _LINE_RE.match(line)
        if not match:
            raise StateCorruptedError(f"Unparseable state line: {line!r}")
        key, raw = match["key"], match["value"]
        nested = bool(match["indent"])

        if nested and parent is not None:
            data[parent][key] = _field_value(key, raw)
        elif not raw.strip():
            parent = key
            data[key] = {}
        else:
            parent = None
            data[key] = _field_value(key, raw)
    return data


def _field_value(key: str, raw: str) -> Any:
    value = parse_scalar(raw)
    if key in NUMERIC_FIELDS:
        text = str(value) if value is not None else ""
        if not _INT_RE.match(text):
            raise StateCorruptedError(f"State field {key} is not a number: {raw!r}")
        return int(text)
    return value


def parse_state(text: str) -> LoopState:
    """Decode a state document.

    Raises:
        StateCorruptedError: If required numbers are missing or malformed,
            or the fields do not form a valid :class:`LoopState`.
    """
    header, body = split_frontmatter(text)
    data = parse_frontmatter(header)
    for required in ("iteration", "max_iterations"):
        if required not in data:
            raise StateCorruptedError(f"State field {required} is missing")
    data.pop("phases", None)
    data.setdefault("progress", {}).pop("velocity", None)
    try:
        return LoopState.model_validate({**data, "prompt_text": body})
    except ValidationError as e:
        raise StateCorruptedError(f"Invalid loop state: {e}") from e


def _quote(value: str | None) -> str:
    return "null" if value is None else json.dumps(value, ensure_ascii=False)


def render_state(state: LoopState) -> str:
    """Encode a state document; inverse of :func:`parse_state`."""
    header = [
        FRONTMATTER_DELIM,
        f"active: {'true' if state.active else 'false'}",
        f"iteration: {state.iteration}",
        f"max_iterations: {state.max_iterations}",
        f"completion_promise: {_quote(state.completion_promise)}",
        f"started_at: {_quote(state.started_at)}",
        f"session_id: {_quote(state.session_id)}",
        f"checkpoint_interval: {state.checkpoint_interval}",
        f"checkpoint_mode: {_quote(state.checkpoint_mode.value)}",
        "strategy:",
        f"  current: {_quote(state.strategy.current.value)}",
        f"  changed_at: {state.strategy.changed_at}",
        "progress:",
        f"  stuck_count: {state.progress.stuck_count}",
        f"  last_meaningful_change: {state.progress.last_meaningful_change}",
        FRONTMATTER_DELIM,
    ]
    return "\n".join(header) + "\n\n" + state.prompt_text + "\n"


# =============================================================================
# STATE FILE
# =============================================================================


def load_state(path: Path | None = None) -> LoopState | None:
    """Read the active loop state.

    Returns:
        The state, or None when no loop is active (no file, or
        ``active: false``).

    Raises:
        StateCorruptedError: If the file exists but cannot be decoded.
    """
    target = path or state_file()
    if not target.exists():
        return None
    try:
        text = target.read_text(encoding="utf-8")
    except (OSError, UnicodeDecodeError) as e:
        raise StateCorruptedError(f"Cannot read state file {target}: {e}") from e
    state = parse_state(text)
    return state if state.active else None


@with_retry()
def save_state(state: LoopState, path: Path | None = None) -> Path:
    """Atomically rewrite the state file."""
    target = path or state_file()
    target.parent.mkdir(parents=True, exist_ok=True)
    tmp_path = target.with_name(f"{target.name}.tmp.{os.getpid()}")
    tmp_path.write_text(render_state(state), encoding="utf-8")
    os.replace(tmp_path, target)
    return target


def new_loop_state(
    prompt: str,
    *,
    max_iterations: int = 0,
    completion_promise: str | None = None,
    checkpoint_interval: int = 0,
    checkpoint_mode: CheckpointMode = CheckpointMode.NOTIFY,
    now: datetime | None = None,
) -> LoopState:
    """Fresh state for a loop starting at iteration 1.

    Raises:
        ValueError: If the prompt is empty.
    """
    prompt = prompt.strip()
    if not prompt:
        raise ValueError("No prompt provided")
    moment = now or datetime.now(timezone.utc)
    return LoopState(
        iteration=1,
        max_iterations=max_iterations,
        completion_promise=completion_promise or None,
        started_at=moment.strftime("%Y-%m-%dT%H:%M:%SZ"),
        session_id=new_session_id(),
        checkpoint_interval=checkpoint_interval,
        checkpoint_mode=checkpoint_mode,
        prompt_text=prompt,
    )


def clear_state(path: Path | None = None) -> None:
    """Remove the active-loop marker, ending the session."""
    target = path or state_file()
    target.unlink(missing_ok=True)
    logger.info("Cleared loop state %s", target)


# =============================================================================
# NUDGE MAILBOX
# =============================================================================


class NudgeMailbox:
    """Single-slot mailbox for a one-time operator instruction.

    The orchestrator peeks the nudge while building a directive and
    clears it only once the directive carrying it is delivered, so each
    nudge reaches the agent at most once. Posting replaces any
    undelivered nudge.
    """

    def __init__(self, path: Path | None = None) -> None:
        self.path = path or nudge_file()

    def post(self, text: str) -> None:
        self.path.parent.mkdir(parents=True, exist_ok=True)
        self.path.write_text(text.strip() + "\n", encoding="utf-8")

    def peek(self) -> str | None:
        if not self.path.exists():
            return None
        try:
            content = self.path.read_text(encoding="utf-8").strip()
        except UnicodeDecodeError as e:
            logger.warning("Discarding undecodable nudge %s: %s", self.path, e)
            self.clear()
            return None
        return content or None

    def clear(self) -> None:
        self.path.unlink(missing_ok=True)


# =============================================================================
# CHECKPOINT MARKER
# =============================================================================

CHECKPOINT_TEMPLATE = """\
# Checkpoint at Iteration {iteration}

Ralph has paused for your review.

## How to Continue

1. Review the status: `cat {status_path}`
2. Review the memory: `ralph memory`
3. Optionally send guidance: `ralph nudge "your instruction"`
4. Resume: `ralph checkpoint continue`

Or to stop: `ralph cancel`
"""


class CheckpointMarker:
    """Presence flag for pause-mode checkpoints.

    Only an external actor removing the marker resumes the loop; there
    is no timeout.
    """

    def __init__(self, path: Path | None = None) -> None:
        self.path = path or checkpoint_file()

    @property
    def is_set(self) -> bool:
        return self.path.exists()

    def set(self, iteration: int, status_path: Path | None = None) -> None:
        self.path.parent.mkdir(parents=True, exist_ok=True)
        self.path.write_text(
            CHECKPOINT_TEMPLATE.format(
                iteration=iteration,
                status_path=status_path or self.path.with_name("RALPH_STATUS.md"),
            ),
            encoding="utf-8",
        )

    def clear(self) -> bool:
        """Remove the marker; returns whether one was present."""
        present = self.is_set
        self.path.unlink(missing_ok=True)
        return present
