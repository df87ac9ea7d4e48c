"""Library utilities for the adaptive loop.

This package contains reusable, **parametric** abstractions configured
through function arguments. Loop semantics belong in ralph.loop.

Modules:
- history: JSON document and JSON Lines persistence (model-agnostic)
- notify: Desktop notifications through the platform notifier
- paths: Centralized path constants (configurable via configure())
- retry: Retry decorator for transient IO failures
- trace: Claude Code transcript parsing into SDK content blocks
"""

from ralph.lib.history import append_jsonl, load_document, load_jsonl, save_document
from ralph.lib.notify import DesktopNotifier, Notifier, NullNotifier
from ralph.lib.paths import configure, new_session_id
from ralph.lib.retry import with_retry
from ralph.lib.trace import (
    TranscriptMessage,
    last_assistant_message,
    load_transcript,
    parse_transcript,
)

__all__ = [
    "DesktopNotifier",
    "Notifier",
    "NullNotifier",
    "TranscriptMessage",
    "append_jsonl",
    "configure",
    "last_assistant_message",
    "load_document",
    "load_jsonl",
    "load_transcript",
    "new_session_id",
    "parse_transcript",
    "save_document",
    "with_retry",
]
