"""Loop error taxonomy.

Every failure the adaptive loop can detect maps to one of two outcomes:

- Abandon the session and allow the agent to stop
  (:class:`StateCorruptedError`, :class:`TraceUnavailableError`,
  :class:`EmptyTurnError`).
- Keep looping with a less rich directive
  (:class:`MemoryStoreUnavailableError`, :class:`KnowledgeSinkUnavailableError`).

None of them is ever allowed to reach the host process.
"""


class RalphError(Exception):
    """Base class for all loop errors."""


class StateCorruptedError(RalphError):
    """The loop state file has malformed or missing required fields."""


class TraceUnavailableError(RalphError):
    """The turn's transcript is missing or unreadable."""


class EmptyTurnError(RalphError):
    """The transcript holds no usable agent-authored message."""


class MemoryStoreUnavailableError(RalphError):
    """The session memory store could not be read or written."""


class KnowledgeSinkUnavailableError(RalphError):
    """The cross-session knowledge sink could not be read or written."""
