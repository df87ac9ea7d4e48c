"""Transcript parsing utilities.

Reads the JSONL transcript a Claude Code session writes (one JSON record
per line) into role-tagged messages whose content is a list of Claude
Agent SDK content blocks. Used by the trace analyzer and the loop
orchestrator.

Two text views are exposed per message:

- **Narrative text** (``TranscriptMessage.text``): only ``TextBlock``
  content, i.e. what the agent actually said.
- **Full content** (``TranscriptMessage.full_content``): narrative text
  plus JSON-serialized tool payloads, for pattern matching over
  everything that happened in the turn.

Examples:
    Load a transcript and read the last thing the agent said::

        >>> messages = load_transcript(Path("/tmp/session.jsonl"))
        >>> last = last_assistant_message(messages)
        >>> last.text if last else None
        'All tests pass. <promise>DONE</promise>'

    Truncate a sample for display::

        >>> truncate_str("x" * 120, max_len=100)[-3:]
        '...'
"""

from __future__ import annotations

import json
import logging
from collections.abc import Iterable, Sequence
from pathlib import Path
from typing import Literal

from claude_agent_sdk import (
    ContentBlock,
    TextBlock,
    ThinkingBlock,
    ToolResultBlock,
    ToolUseBlock,
)
from pydantic import BaseModel, ConfigDict, Field

logger = logging.getLogger(__name__)

type Role = Literal["user", "assistant", "system"]

ROLES: frozenset[str] = frozenset({"user", "assistant", "system"})


# ---------------------------------------------------------------------------
# Content normalization
# ---------------------------------------------------------------------------


def normalize_content(content: str | Sequence[object] | None) -> str:
    """Convert tool result content blocks to a plain string."""
    if content is None:
        return ""
    if isinstance(content, list):
        texts: list[str] = [
            str(item.get("text", ""))
            for item in content
            if isinstance(item, dict) and item.get("type") == "text"
        ]
        return "\n".join(texts)
    return str(content)


def truncate_str(value: str, max_len: int = 500) -> str:
    """Truncate a string to max_len, appending '...' if trimmed."""
    if len(value) > max_len:
        return value[:max_len] + "..."
    return value


# ---------------------------------------------------------------------------
# Block parsing / serialization
# ---------------------------------------------------------------------------


def parse_block(raw: object) -> ContentBlock | None:
    """Build an SDK content block from a raw transcript dict.

    Unknown block types return None and are dropped by the caller.
    """
    if isinstance(raw, str):
        return TextBlock(text=raw)
    if not isinstance(raw, dict):
        return None

    match raw.get("type"):
        case "text":
            return TextBlock(text=str(raw.get("text", "")))
        case "thinking":
            return ThinkingBlock(
                thinking=str(raw.get("thinking", "")),
                signature=str(raw.get("signature", "")),
            )
        case "tool_use":
            tool_input = raw.get("input")
            return ToolUseBlock(
                id=str(raw.get("id", "")),
                name=str(raw.get("name", "")),
                input=tool_input if isinstance(tool_input, dict) else {},
            )
        case "tool_result":
            return ToolResultBlock(
                tool_use_id=str(raw.get("tool_use_id", "")),
                content=raw.get("content"),
                is_error=raw.get("is_error"),
            )
        case _:
            return None


def serialize_block(block: ContentBlock) -> str:
    """Render a block as text for pattern matching.

    Text blocks contribute their text verbatim; every other block is
    JSON-serialized so tool names and inputs are searchable.
    """
    match block:
        case TextBlock():
            return block.text
        case ThinkingBlock():
            return json.dumps({"type": "thinking", "thinking": block.thinking})
        case ToolUseBlock():
            return json.dumps(
                {"type": "tool_use", "name": block.name, "input": block.input},
                default=str,
            )
        case ToolResultBlock():
            return json.dumps(
                {
                    "type": "tool_result",
                    "content": normalize_content(block.content),
                    "is_error": bool(block.is_error),
                }
            )
        case _:
            return str(block)


# ---------------------------------------------------------------------------
# Messages
# ---------------------------------------------------------------------------


class TranscriptMessage(BaseModel):
    """A single role-tagged turn message."""

    model_config = ConfigDict(arbitrary_types_allowed=True)

    role: Role
    blocks: list[ContentBlock] = Field(default_factory=list)

    @property
    def text(self) -> str:
        """Agent-authored narrative text (text blocks only)."""
        return "\n".join(
            block.text for block in self.blocks if isinstance(block, TextBlock)
        )

    @property
    def full_content(self) -> str:
        """Narrative text plus serialized tool payloads."""
        return "\n".join(serialize_block(block) for block in self.blocks)

    @property
    def tool_uses(self) -> list[ToolUseBlock]:
        return [block for block in self.blocks if isinstance(block, ToolUseBlock)]


def _message_role(record: dict[str, object]) -> str | None:
    message = record.get("message")
    if isinstance(message, dict) and message.get("role") in ROLES:
        return str(message["role"])
    for key in ("role", "type"):
        if record.get(key) in ROLES:
            return str(record[key])
    return None


def parse_transcript_line(line: str) -> TranscriptMessage | None:
    """Parse one JSONL record, returning None for anything unusable."""
    try:
        record = json.loads(line)
    except json.JSONDecodeError:
        return None
    if not isinstance(record, dict):
        return None

    role = _message_role(record)
    message = record.get("message")
    if role is None or not isinstance(message, dict):
        return None

    raw_content = message.get("content")
    raw_blocks: list[object] = (
        raw_content if isinstance(raw_content, list) else [raw_content]
    )
    blocks = [b for b in (parse_block(raw) for raw in raw_blocks) if b is not None]
    return TranscriptMessage(role=role, blocks=blocks)  # type: ignore[arg-type]


def parse_transcript(lines: Iterable[str]) -> list[TranscriptMessage]:
    """Parse transcript lines, skipping blank and malformed records."""
    messages: list[TranscriptMessage] = []
    for line in lines:
        if not line.strip():
            continue
        parsed = parse_transcript_line(line)
        if parsed is not None:
            messages.append(parsed)
    return messages


def load_transcript(path: Path) -> list[TranscriptMessage]:
    """Read and parse a JSONL transcript file.

    Raises:
        OSError: If the file cannot be read.
    """
    content = path.read_text(encoding="utf-8")
    messages = parse_transcript(content.splitlines())
    logger.debug("Parsed %d messages from %s", len(messages), path)
    return messages


def last_assistant_message(
    messages: Sequence[TranscriptMessage],
) -> TranscriptMessage | None:
    """Return the most recent agent-authored message, if any."""
    for message in reversed(messages):
        if message.role == "assistant":
            return message
    return None
