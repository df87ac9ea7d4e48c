"""Ralph CLI: start, steer and inspect an adaptive agent loop.

The ``hook`` sub-commands are what Claude Code runs as command hooks:
they read the hook JSON on stdin and print hook JSON on stdout, so all
logging goes to stderr. Everything else is for the operator.

Usage:
    uv run ralph start Build a todo API --completion-promise DONE --max-iterations 20
    uv run ralph run Fix the failing tests --completion-promise "ALL TESTS PASS"
    uv run ralph nudge "Focus on the auth module first"
    uv run ralph checkpoint continue
    uv run ralph status
    uv run ralph recall "TypeScript compilation"
    uv run ralph cancel

Hook configuration (``.claude/settings.json``)::

    {"hooks": {"Stop": [{"hooks": [{"type": "command", "command": "ralph hook stop"}]}]}}
"""

import asyncio
import json
import logging
import sys
from pathlib import Path
from typing import Annotated, Any

import typer
from rich.console import Console
from rich.markdown import Markdown
from rich.table import Table

from ralph.lib.paths import configure, status_file
from ralph.loop.compaction import preserve_context, resume_context
from ralph.loop.config import settings
from ralph.loop.errors import RalphError, StateCorruptedError
from ralph.loop.knowledge import FileKnowledgeSink
from ralph.loop.memory import render_markdown
from ralph.loop.models import CheckpointMode, LoopState
from ralph.loop.orchestrator import LoopOrchestrator
from ralph.loop.runner import run_loop
from ralph.loop.state import (
    CheckpointMarker,
    NudgeMailbox,
    load_state,
    new_loop_state,
    save_state,
)
from ralph.version import RALPH_VERSION

logger = logging.getLogger(__name__)

console = Console()
err_console = Console(stderr=True)

app = typer.Typer(
    name="ralph",
    help="Adaptive agent loop",
    no_args_is_help=True,
    add_completion=False,
)
hook_app = typer.Typer(no_args_is_help=True)
checkpoint_app = typer.Typer(no_args_is_help=True)
app.add_typer(hook_app, name="hook", help="Claude Code hook entry points")
app.add_typer(checkpoint_app, name="checkpoint", help="Checkpoint control")


@app.callback(invoke_without_command=True)
def callback(
    ctx: typer.Context,
    state_dir: Annotated[
        Path | None,
        typer.Option("--state-dir", help="Loop state directory (default: .claude)"),
    ] = None,
    verbose: Annotated[
        bool,
        typer.Option("--verbose", "-v", help="Enable verbose logging"),
    ] = False,
) -> None:
    """Adaptive agent loop."""
    logging.basicConfig(
        level=logging.DEBUG if verbose else settings.log_level.upper(),
        stream=sys.stderr,
        format="%(levelname)s %(name)s: %(message)s",
    )
    configure(state_dir=state_dir or settings.state_dir)
    if ctx.invoked_subcommand is None:
        raise typer.Exit()


def _orchestrator() -> LoopOrchestrator:
    return LoopOrchestrator(settings)


def _require_state() -> LoopState:
    try:
        state = load_state()
    except StateCorruptedError as e:
        err_console.print(f"❌ Loop state is corrupted: {e}")
        raise typer.Exit(1) from e
    if state is None:
        err_console.print("No active Ralph loop.")
        raise typer.Exit(1)
    return state


def _read_hook_input() -> dict[str, Any]:
    raw = sys.stdin.read().strip()
    if not raw:
        return {}
    try:
        data = json.loads(raw)
    except json.JSONDecodeError as e:
        logger.warning("Ignoring malformed hook input: %s", e)
        return {}
    return data if isinstance(data, dict) else {}


# =============================================================================
# SESSION LIFECYCLE
# =============================================================================


@app.command()
def start(
    prompt: Annotated[list[str], typer.Argument(help="Task for the agent")],
    max_iterations: Annotated[
        int,
        typer.Option("--max-iterations", min=0, help="Stop after N iterations (0 = unlimited)"),
    ] = 0,
    completion_promise: Annotated[
        str | None,
        typer.Option("--completion-promise", help="Phrase that signals completion"),
    ] = None,
    checkpoint: Annotated[
        int,
        typer.Option("--checkpoint", min=0, help="Checkpoint every N iterations"),
    ] = 0,
    checkpoint_mode: Annotated[
        CheckpointMode,
        typer.Option("--checkpoint-mode", help="pause for review or just notify"),
    ] = CheckpointMode.NOTIFY,
) -> None:
    """Start a loop in the current project."""
    try:
        state = new_loop_state(
            " ".join(prompt),
            max_iterations=max_iterations,
            completion_promise=completion_promise,
            checkpoint_interval=checkpoint,
            checkpoint_mode=checkpoint_mode,
        )
    except ValueError as e:
        err_console.print(f"❌ Error: {e}")
        raise typer.Exit(1) from e

    save_state(state)
    CheckpointMarker().clear()
    orchestrator = _orchestrator()
    try:
        orchestrator.memory_store.create_or_get_objective(
            state.session_id, state.prompt_text
        )
    except RalphError as e:
        logger.warning("Could not record objective: %s", e)

    console.print("🔄 Ralph loop activated!")
    console.print(f"Session ID: {state.session_id}")
    console.print("Iteration: 1")
    console.print(f"Max iterations: {max_iterations or 'unlimited'}")
    if state.completion_promise:
        console.print(
            f"Completion promise: <promise>{state.completion_promise}</promise> "
            "(output it only when it is TRUE)"
        )
    if checkpoint:
        console.print(f"Checkpoint: every {checkpoint} iterations ({checkpoint_mode})")
    console.print()
    console.print(state.prompt_text, markup=False)


@app.command()
def run(
    prompt: Annotated[list[str], typer.Argument(help="Task for the agent")],
    max_iterations: Annotated[
        int,
        typer.Option("--max-iterations", min=0, help="Stop after N iterations (0 = unlimited)"),
    ] = 50,
    completion_promise: Annotated[
        str | None,
        typer.Option("--completion-promise", help="Phrase that signals completion"),
    ] = None,
    checkpoint: Annotated[
        int,
        typer.Option("--checkpoint", min=0, help="Notify every N iterations"),
    ] = 0,
    model: Annotated[
        str | None, typer.Option("--model", help="Model override")
    ] = None,
) -> None:
    """Run a loop headlessly through the Claude Agent SDK."""
    try:
        state = new_loop_state(
            " ".join(prompt),
            max_iterations=max_iterations,
            completion_promise=completion_promise,
            checkpoint_interval=checkpoint,
        )
    except ValueError as e:
        err_console.print(f"❌ Error: {e}")
        raise typer.Exit(1) from e

    console.print(f"🔄 Ralph headless run {state.session_id}")
    result = asyncio.run(
        run_loop(
            state,
            _orchestrator(),
            model=model or settings.model,
            max_budget_usd=settings.max_budget_usd,
        )
    )
    if result is None or result.is_error:
        raise typer.Exit(1)
    console.print(f"Done after {result.num_turns} turns")


@app.command()
def cancel() -> None:
    """Cancel the active loop and write a cancelled summary."""
    state = _orchestrator().cancel()
    if state is None:
        console.print("No active Ralph loop.")
        return
    console.print(f"⏹️ Cancelled Ralph loop at iteration {state.iteration}")


# =============================================================================
# STEERING
# =============================================================================


@app.command()
def nudge(
    text: Annotated[list[str], typer.Argument(help="One-time instruction")],
) -> None:
    """Send a one-time instruction, delivered with the next directive."""
    _require_state()
    instruction = " ".join(text).strip()
    if not instruction:
        err_console.print("❌ Error: No instruction provided")
        raise typer.Exit(1)
    NudgeMailbox().post(instruction)
    console.print("📬 Nudge queued for the next iteration")


@checkpoint_app.command("continue")
def checkpoint_continue() -> None:
    """Resume a loop paused at a checkpoint."""
    if CheckpointMarker().clear():
        console.print("▶️ Checkpoint cleared; the loop resumes on the next stop")
    else:
        console.print("No checkpoint pending.")


@app.command()
def plan(
    actions: Annotated[list[str], typer.Argument(help="Next actions, in order")],
) -> None:
    """Replace the session's next actions."""
    state = _require_state()
    try:
        _orchestrator().memory_store.set_next_actions(state.session_id, actions)
    except RalphError as e:
        err_console.print(f"❌ {e}")
        raise typer.Exit(1) from e
    console.print(f"Recorded {len(actions)} next action(s)")


@app.command()
def learn(
    text: Annotated[list[str], typer.Argument(help="Learning to remember")],
) -> None:
    """Record a key learning for the session."""
    state = _require_state()
    try:
        added = _orchestrator().memory_store.append_learning(
            state.session_id, " ".join(text)
        )
    except RalphError as e:
        err_console.print(f"❌ {e}")
        raise typer.Exit(1) from e
    console.print("Learning recorded" if added else "Similar learning already recorded")


# =============================================================================
# INSPECTION
# =============================================================================


@app.command()
def status() -> None:
    """Show the status dashboard."""
    path = status_file()
    if not path.exists():
        console.print("No status yet. Start a loop with `ralph start`.")
        return
    console.print(Markdown(path.read_text(encoding="utf-8")))


@app.command()
def memory() -> None:
    """Show the session memory of the active loop."""
    state = _require_state()
    record = _orchestrator().read_record(state.session_id)
    if record is None:
        console.print("No session memory recorded yet.")
        return
    console.print(Markdown(render_markdown(record)))


@app.command()
def recall(
    query: Annotated[list[str], typer.Argument(help="Search terms")],
    limit: Annotated[int, typer.Option("-n", "--limit", help="Max results")] = 5,
) -> None:
    """Search knowledge recorded by past sessions."""
    try:
        matches = FileKnowledgeSink().search(" ".join(query), limit=limit)
    except RalphError as e:
        err_console.print(f"❌ {e}")
        raise typer.Exit(1) from e

    if not matches:
        console.print("No matching knowledge found.")
        return

    table = Table(title=f"Recall: {' '.join(query)}")
    table.add_column("Relevance", justify="right")
    table.add_column("Title")
    table.add_column("Importance", justify="right")
    table.add_column("Session")
    for match in matches:
        table.add_row(
            f"{match.relevance:.0%}",
            match.entry.title,
            str(match.entry.importance),
            match.entry.session_id or "-",
        )
    console.print(table)


@app.command()
def version() -> None:
    """Print the ralph version."""
    console.print(RALPH_VERSION)


# =============================================================================
# HOOKS
# =============================================================================


@hook_app.command("stop")
def hook_stop() -> None:
    """Stop hook: print the loop decision as hook JSON."""
    payload = _read_hook_input()
    transcript = payload.get("transcript_path")
    decision = _orchestrator().handle_stop(Path(transcript) if transcript else None)
    typer.echo(json.dumps(decision.to_hook_output(), ensure_ascii=False))


@hook_app.command("precompact")
def hook_precompact() -> None:
    """PreCompact hook: preserve session memory before compaction."""
    _read_hook_input()
    try:
        state = load_state()
        if state is None:
            return
        path = preserve_context(_orchestrator().read_record(state.session_id))
    except (RalphError, OSError) as e:
        logger.warning("Could not preserve context before compaction: %s", e)
        return
    if path is not None:
        typer.echo(f"📋 Ralph: Preserved context for compaction in {path}")


@hook_app.command("resume")
def hook_resume() -> None:
    """SessionStart hook: print loop context for the resumed session."""
    _read_hook_input()
    try:
        state = load_state()
        if state is None:
            return
        record = _orchestrator().read_record(state.session_id)
        typer.echo(resume_context(state, record))
    except (RalphError, OSError) as e:
        logger.warning("Could not rebuild resume context: %s", e)


if __name__ == "__main__":
    app()
