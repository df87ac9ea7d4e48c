"""Hook adapters for the Claude Agent SDK.

Wires the loop into an SDK session:

Stop hooks:
- create_loop_stop_hook(): block the stop and feed the next directive

PreCompact hooks:
- create_precompact_hook(): preserve session memory before compaction

Composition:
- HooksConfig type alias for type-safe hook configuration
- merge_hooks() to compose multiple hook sources

Each adapter is an ``async`` callback, as the SDK requires, around the
synchronous orchestrator. None of them raises into the SDK.

Examples:
    Run an agent under the loop::

        >>> from ralph.loop.hooks import create_loop_stop_hook, create_precompact_hook
        >>> orchestrator = LoopOrchestrator()
        >>> hooks = merge_hooks(
        ...     create_loop_stop_hook(orchestrator),
        ...     create_precompact_hook(orchestrator),
        ... )
        >>> options = ClaudeAgentOptions(hooks=hooks)
"""

import logging
from pathlib import Path
from typing import cast

from claude_agent_sdk import HookInput, HookMatcher
from claude_agent_sdk.types import HookContext, HookEvent, SyncHookJSONOutput

from ralph.loop.compaction import preserve_context
from ralph.loop.errors import RalphError
from ralph.loop.models import Decision
from ralph.loop.orchestrator import LoopOrchestrator
from ralph.loop.state import load_state

logger = logging.getLogger(__name__)

type HooksConfig = dict[HookEvent, list[HookMatcher]]
"""Typed hook configuration for ClaudeAgentOptions.

Each key is a hook event type, and the value is a list of HookMatcher
instances that will be invoked for that event.
"""


def merge_hooks(base: HooksConfig, additional: HooksConfig) -> HooksConfig:
    """Merge two hook configurations.

    For each hook event type, combines the matchers from both configs.
    Base hooks run first, then additional hooks.
    """
    merged: HooksConfig = dict(base)

    for event in additional:
        if event in merged:
            merged[event] = merged[event] + additional[event]
        else:
            merged[event] = additional[event]

    return merged


def decision_hook_output(decision: Decision) -> SyncHookJSONOutput:
    """Translate a loop decision into Stop-hook output."""
    if decision.is_block:
        output = SyncHookJSONOutput(decision="block", reason=decision.directive or "")
        if decision.status_message:
            output["systemMessage"] = decision.status_message
        return output
    if decision.status_message:
        return SyncHookJSONOutput(systemMessage=decision.status_message)
    return SyncHookJSONOutput()


def create_loop_stop_hook(orchestrator: LoopOrchestrator) -> HooksConfig:
    """Create a Stop hook that keeps the agent iterating while a loop is active.

    Unlike a plain stop guard this ignores ``stop_hook_active``: the loop
    itself decides when to let go (promise, iteration cap, failure).
    """

    async def loop_stop_hook(
        input_data: HookInput,
        _tool_use_id: str | None,
        _context: HookContext,
    ) -> SyncHookJSONOutput:
        if input_data["hook_event_name"] != "Stop":
            return SyncHookJSONOutput()

        transcript = input_data.get("transcript_path")
        decision = orchestrator.handle_stop(Path(transcript) if transcript else None)
        return decision_hook_output(decision)

    return cast(
        HooksConfig,
        {
            "Stop": [HookMatcher(hooks=[loop_stop_hook])],
        },
    )


def create_precompact_hook(orchestrator: LoopOrchestrator) -> HooksConfig:
    """Create a PreCompact hook preserving session memory for the active loop."""

    async def precompact_hook(
        input_data: HookInput,
        _tool_use_id: str | None,
        _context: HookContext,
    ) -> SyncHookJSONOutput:
        if input_data["hook_event_name"] != "PreCompact":
            return SyncHookJSONOutput()

        try:
            state = load_state(orchestrator.state_path)
            if state is None:
                return SyncHookJSONOutput()
            path = preserve_context(orchestrator.read_record(state.session_id))
        except (RalphError, OSError) as e:
            logger.warning("Could not preserve context before compaction: %s", e)
            return SyncHookJSONOutput()

        if path is None:
            return SyncHookJSONOutput()
        return SyncHookJSONOutput(
            systemMessage=f"📋 Ralph: Preserved context for compaction in {path}"
        )

    return cast(
        HooksConfig,
        {
            "PreCompact": [HookMatcher(hooks=[precompact_hook])],
        },
    )
