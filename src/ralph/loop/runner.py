"""Headless loop runner on the Claude Agent SDK.

Runs the agent in-process with the loop's Stop and PreCompact hooks
attached, so the loop does not depend on a configured Claude Code
project. The SDK session keeps going for as long as the Stop hook
blocks; the single ResultMessage arrives once the loop lets go.

Examples:
    Run a fresh loop until its promise is met::

        >>> state = new_loop_state("Build a todo API", completion_promise="DONE")
        >>> result = await run_loop(state, LoopOrchestrator())
        >>> result.num_turns
        42
"""

import logging
from typing import Literal

from claude_agent_sdk import ClaudeAgentOptions, ClaudeSDKClient, TextBlock
from claude_agent_sdk.types import AssistantMessage, ResultMessage, SystemMessage
from rich.console import Console

from ralph.loop.hooks import create_loop_stop_hook, create_precompact_hook, merge_hooks
from ralph.loop.models import LoopState
from ralph.loop.orchestrator import LoopOrchestrator
from ralph.loop.state import save_state

logger = logging.getLogger(__name__)

console = Console(highlight=False)

type PermissionMode = Literal["default", "acceptEdits", "plan", "bypassPermissions"]


def build_options(
    orchestrator: LoopOrchestrator,
    *,
    model: str | None = None,
    permission_mode: PermissionMode | None = "acceptEdits",
    max_budget_usd: float | None = None,
) -> ClaudeAgentOptions:
    """Agent options with the loop hooks attached.

    Session persistence stays on: the Stop hook reads the transcript.
    """
    hooks = merge_hooks(
        create_loop_stop_hook(orchestrator),
        create_precompact_hook(orchestrator),
    )
    return ClaudeAgentOptions(
        model=model,
        system_prompt={"type": "preset", "preset": "claude_code"},
        permission_mode=permission_mode,
        max_budget_usd=max_budget_usd,
        hooks=hooks,
    )


async def run_loop(
    state: LoopState,
    orchestrator: LoopOrchestrator,
    *,
    model: str | None = None,
    permission_mode: PermissionMode | None = "acceptEdits",
    max_budget_usd: float | None = None,
) -> ResultMessage | None:
    """Persist ``state`` and drive the agent until the loop allows a stop."""
    save_state(state, orchestrator.state_path)
    options = build_options(
        orchestrator,
        model=model,
        permission_mode=permission_mode,
        max_budget_usd=max_budget_usd,
    )

    result: ResultMessage | None = None
    async with ClaudeSDKClient(options=options) as client:
        await client.query(state.prompt_text)
        async for message in client.receive_response():
            match message:
                case AssistantMessage():
                    for block in message.content:
                        if isinstance(block, TextBlock):
                            console.print(block.text, markup=False)
                case SystemMessage():
                    logger.info("System [%s]: %s", message.subtype, message.data)
                case ResultMessage():
                    result = message
                    if message.is_error:
                        logger.error("Agent error: %s", message.result)
                case _:
                    pass

    if result is not None:
        logger.info(
            "Loop session finished after %d turns (cost: $%.4f)",
            result.num_turns,
            result.total_cost_usd or 0,
        )
    return result
