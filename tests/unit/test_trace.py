"""Tests for transcript parsing."""

import json
from pathlib import Path

import pytest
from claude_agent_sdk import TextBlock, ToolResultBlock, ToolUseBlock

from ralph.lib.trace import (
    TranscriptMessage,
    last_assistant_message,
    load_transcript,
    parse_block,
    parse_transcript,
    parse_transcript_line,
    truncate_str,
)


class TestParseBlock:
    """Tests for raw block conversion."""

    def test_plain_string_is_text(self) -> None:
        """A bare string becomes a text block."""
        block = parse_block("hello")
        assert isinstance(block, TextBlock)
        assert block.text == "hello"

    def test_tool_use(self) -> None:
        """Tool use blocks keep name and input."""
        block = parse_block(
            {"type": "tool_use", "id": "t1", "name": "Write", "input": {"file_path": "a/b"}}
        )
        assert isinstance(block, ToolUseBlock)
        assert block.name == "Write"
        assert block.input == {"file_path": "a/b"}

    def test_tool_result(self) -> None:
        """Tool result blocks keep content and error flag."""
        block = parse_block(
            {"type": "tool_result", "tool_use_id": "t1", "content": "ok", "is_error": True}
        )
        assert isinstance(block, ToolResultBlock)
        assert block.is_error is True

    def test_unknown_type_dropped(self) -> None:
        """Unknown block types are ignored."""
        assert parse_block({"type": "image"}) is None
        assert parse_block(42) is None


class TestParseTranscript:
    """Tests for JSONL transcript parsing."""

    def test_skips_malformed_lines(self) -> None:
        """Malformed and role-less lines are skipped."""
        lines = [
            "not json",
            json.dumps({"type": "summary", "summary": "x"}),
            json.dumps(
                {"type": "assistant", "message": {"role": "assistant", "content": "hi"}}
            ),
            "",
        ]
        messages = parse_transcript(lines)

        assert len(messages) == 1
        assert messages[0].role == "assistant"
        assert messages[0].text == "hi"

    def test_role_from_message(self) -> None:
        """The nested message role wins over the record type."""
        line = json.dumps({"type": "x", "message": {"role": "user", "content": []}})
        parsed = parse_transcript_line(line)
        assert parsed is not None
        assert parsed.role == "user"

    def test_load_missing_file_raises(self, tmp_path: Path) -> None:
        """Reading a missing transcript raises OSError."""
        with pytest.raises(OSError):
            load_transcript(tmp_path / "missing.jsonl")


class TestTranscriptMessage:
    """Tests for message text views."""

    def test_text_excludes_tool_payloads(self) -> None:
        """Narrative text only includes text blocks."""
        message = TranscriptMessage(
            role="assistant",
            blocks=[
                TextBlock(text="Writing file"),
                ToolUseBlock(id="t1", name="Write", input={"file_path": "src/app.py"}),
            ],
        )
        assert message.text == "Writing file"
        assert "src/app.py" in message.full_content
        assert len(message.tool_uses) == 1

    def test_last_assistant_message(self) -> None:
        """The most recent assistant message is returned."""
        messages = [
            TranscriptMessage(role="assistant", blocks=[TextBlock(text="first")]),
            TranscriptMessage(role="assistant", blocks=[TextBlock(text="second")]),
            TranscriptMessage(role="user", blocks=[TextBlock(text="reply")]),
        ]
        last = last_assistant_message(messages)
        assert last is not None
        assert last.text == "second"

    def test_no_assistant_message(self) -> None:
        """No assistant message yields None."""
        messages = [TranscriptMessage(role="user", blocks=[TextBlock(text="hi")])]
        assert last_assistant_message(messages) is None


def test_truncate_str() -> None:
    """Long strings are cut and marked."""
    assert truncate_str("abc", max_len=5) == "abc"
    assert truncate_str("abcdef", max_len=3) == "abc..."
