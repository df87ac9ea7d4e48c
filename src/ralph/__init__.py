"""Adaptive agent-turn loop.

This package keeps a Claude agent iterating on a task: every time the
agent tries to stop, the loop analyzes what happened in the turn, picks a
strategy for the next one, records progress in session memory and feeds
back a freshly assembled directive.

Structure:
- ralph/loop/: The adaptive control loop
  - analyzer.py: Trace Analyzer (signals from a turn's transcript)
  - strategy.py: Strategy Engine (explore / focused / cleanup / recovery)
  - memory.py: Session Memory Store
  - context.py: Context Builder (next-turn directive)
  - orchestrator.py: Loop Orchestrator (allow / block decision)
  - config.py: Configuration via pydantic-settings
  - models.py: Data model
  - state.py: State file, nudge mailbox and checkpoint marker
  - knowledge.py: Cross-session knowledge sink
  - summary.py / status.py: Human-readable session summary and dashboard
  - compaction.py: Context preserved across host-side compaction
  - hooks.py: Claude Agent SDK hook adapters (Stop, PreCompact)

- ralph/lib/: Reusable, parametric utilities (paths, transcript parsing,
  JSON persistence, retry, notifications)

- ralph/cli/: The ``ralph`` command line entry point
"""
