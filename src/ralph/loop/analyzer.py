"""Trace Analyzer: structured signals from one turn's transcript.

Everything here is a pure function of the parsed messages. The signature
tables are ordered lists of ``(pattern, label)`` pairs evaluated in
priority order; callers may pass extended tables to :func:`analyze`.

Signals extracted:
- errors and repeated errors (the primary recovery trigger)
- files modified (from Write/Edit tool calls and narrative mentions)
- test run / passed / failed, as three independent flags
- phase completions (agent narrative only, never tool payloads)
- meaningful_changes, deliberately permissive since it feeds the stuck
  detector where missing real progress is worse than over-reporting it

Examples:
    Analyze a transcript file::

        >>> signals = analyze_transcript(Path("/tmp/session.jsonl"))
        >>> signals.repeated_errors[0].label
        <ErrorLabel.COMPILATION: 'TypeScript compilation error'>
"""

import logging
import re
from collections import Counter
from collections.abc import Sequence
from pathlib import Path

from ralph.lib.trace import TranscriptMessage, load_transcript, truncate_str
from ralph.loop.models import ErrorHit, ErrorLabel, ExecutionSignals, RepeatedError

logger = logging.getLogger(__name__)

type ErrorSignature = tuple[re.Pattern[str], ErrorLabel]
type PhaseSignature = tuple[re.Pattern[str], str]

SAMPLE_BEFORE = 20
SAMPLE_AFTER = 50
SAMPLE_MAX_LEN = 100


# =============================================================================
# SIGNATURE TABLES
# =============================================================================

ERROR_SIGNATURES: list[ErrorSignature] = [
    (re.compile(r"error TS\d+:", re.I), ErrorLabel.COMPILATION),
    (re.compile(r"SyntaxError:", re.I), ErrorLabel.SYNTAX),
    (re.compile(r"ModuleNotFoundError:|ImportError:", re.I), ErrorLabel.PYTHON_IMPORT),
    (re.compile(r"FAILED.*test", re.I), ErrorLabel.TEST_FAILURE),
    (re.compile(r"timed?\s*out", re.I), ErrorLabel.TIMEOUT),
    (re.compile(r"ENOENT:|FileNotFoundError:", re.I), ErrorLabel.FILE_NOT_FOUND),
    (re.compile(r"permission denied", re.I), ErrorLabel.PERMISSION),
    (re.compile(r"Cannot find module", re.I), ErrorLabel.MODULE_RESOLUTION),
    (
        re.compile(r"undefined is not|ReferenceError:|NameError:", re.I),
        ErrorLabel.UNDEFINED_REFERENCE,
    ),
    (
        re.compile(r"Maximum call stack|RecursionError:", re.I),
        ErrorLabel.STACK_OVERFLOW,
    ),
]

PHASE_SIGNATURES: list[PhaseSignature] = [
    (re.compile(r"phase\s+(?:1|one|first)\s+(?:complete|done|finished)", re.I), "phase-1"),
    (re.compile(r"phase\s+(?:2|two|second)\s+(?:complete|done|finished)", re.I), "phase-2"),
    (re.compile(r"phase\s+(?:3|three|third)\s+(?:complete|done|finished)", re.I), "phase-3"),
    (re.compile(r"implementation\s+(?:complete|done|finished)", re.I), "implementation"),
    (re.compile(r"tests?\s+(?:all\s+)?pass(?:ing|ed)?", re.I), "tests-passing"),
    (re.compile(r"refactor(?:ing)?\s+(?:complete|done|finished)", re.I), "refactoring"),
    (re.compile(r"setup\s+(?:complete|done|finished)", re.I), "setup"),
]

WRITE_TOOLS: frozenset[str] = frozenset({"Write", "Edit", "MultiEdit", "NotebookEdit"})
PATH_INPUT_KEYS = ("file_path", "filePath", "notebook_path", "path")

NARRATIVE_FILE_RE = re.compile(
    r"(?:Created|Updated|Modified|Wrote to|Edited)\s+(?:file\s+)?[`\"]([^`\"]+)[`\"]",
    re.I,
)

TEST_RUN_RE = re.compile(
    r"(?:npm\s+test|bun\s+test|pytest|jest|vitest|cargo\s+test|go\s+test)", re.I
)
TEST_PASS_RE = re.compile(
    r"(?:tests?\s+passed|all\s+tests?\s+pass|0\s+fail|PASS\s|passed:\s*\d+.*failed:\s*0)",
    re.I,
)
TEST_FAIL_RE = re.compile(r"(?:tests?\s+failed|FAIL\s|failed:\s*[1-9]|error:.*test)", re.I)


# =============================================================================
# EXTRACTORS
# =============================================================================


def error_sample(content: str, match: re.Match[str]) -> str:
    """Cut a short, single-line context sample around a match."""
    start = max(0, match.start() - SAMPLE_BEFORE)
    end = min(len(content), match.end() + SAMPLE_AFTER)
    sample = content[start:end].replace("\n", " ").strip()
    return truncate_str(sample, max_len=SAMPLE_MAX_LEN)


def find_errors(
    messages: Sequence[TranscriptMessage],
    signatures: Sequence[ErrorSignature] = ERROR_SIGNATURES,
) -> list[ErrorHit]:
    """Match every message against the signature table.

    Each label is recorded at most once per message, from the first
    signature (in table order) that matches.
    """
    hits: list[ErrorHit] = []
    for message in messages:
        content = message.full_content
        seen: set[ErrorLabel] = set()
        for pattern, label in signatures:
            if label in seen:
                continue
            match = pattern.search(content)
            if match:
                seen.add(label)
                hits.append(ErrorHit(label=label, sample=error_sample(content, match)))
    return hits


def find_repeated_errors(errors: Sequence[ErrorHit]) -> list[RepeatedError]:
    """Group hits by label, keeping labels seen at least twice."""
    counts = Counter(hit.label for hit in errors)
    # Counter preserves first-seen order, so equal counts keep trace order
    repeated = [
        RepeatedError(label=label, count=count)
        for label, count in counts.items()
        if count >= 2
    ]
    return sorted(repeated, key=lambda r: r.count, reverse=True)


def is_file_path(candidate: str) -> bool:
    return bool(candidate) and "/" in candidate and "undefined" not in candidate


def find_modified_files(messages: Sequence[TranscriptMessage]) -> list[str]:
    """Collect paths written or edited during the turn, deduplicated."""
    files: dict[str, None] = {}

    for message in messages:
        for tool_use in message.tool_uses:
            if tool_use.name not in WRITE_TOOLS:
                continue
            for key in PATH_INPUT_KEYS:
                value = tool_use.input.get(key)
                if isinstance(value, str) and is_file_path(value):
                    files[value] = None
                    break

        for match in NARRATIVE_FILE_RE.finditer(message.full_content):
            path = match.group(1)
            if is_file_path(path):
                files[path] = None

    return list(files)


def detect_test_status(messages: Sequence[TranscriptMessage]) -> tuple[bool, bool, bool]:
    """Return ``(run, passed, failed)``; the flags are independent."""
    tests_run = tests_passed = tests_failed = False
    for message in messages:
        content = message.full_content
        tests_run = tests_run or bool(TEST_RUN_RE.search(content))
        tests_passed = tests_passed or bool(TEST_PASS_RE.search(content))
        tests_failed = tests_failed or bool(TEST_FAIL_RE.search(content))
    return tests_run, tests_passed, tests_failed


def find_phase_completions(
    messages: Sequence[TranscriptMessage],
    signatures: Sequence[PhaseSignature] = PHASE_SIGNATURES,
) -> list[str]:
    """Milestones claimed in the agent's own narrative text."""
    phases: dict[str, None] = {}
    for message in messages:
        if message.role != "assistant":
            continue
        text = message.text
        for pattern, label in signatures:
            if pattern.search(text):
                phases[label] = None
    return list(phases)


# =============================================================================
# ENTRY POINTS
# =============================================================================


def analyze(
    messages: Sequence[TranscriptMessage],
    *,
    error_signatures: Sequence[ErrorSignature] = ERROR_SIGNATURES,
    phase_signatures: Sequence[PhaseSignature] = PHASE_SIGNATURES,
) -> ExecutionSignals:
    """Turn a parsed trace into :class:`ExecutionSignals`."""
    errors = find_errors(messages, error_signatures)
    files_modified = find_modified_files(messages)
    tests_run, tests_passed, tests_failed = detect_test_status(messages)
    phase_completions = find_phase_completions(messages, phase_signatures)

    return ExecutionSignals(
        errors=errors,
        repeated_errors=find_repeated_errors(errors),
        files_modified=files_modified,
        tests_run=tests_run,
        tests_passed=tests_passed,
        tests_failed=tests_failed,
        phase_completions=phase_completions,
        meaningful_changes=bool(files_modified or tests_run or phase_completions),
    )


def analyze_transcript(path: Path) -> ExecutionSignals:
    """Load a JSONL transcript and analyze it.

    Raises:
        OSError: If the transcript cannot be read.
    """
    signals = analyze(load_transcript(path))
    logger.debug(
        "Analyzed %s: %d errors, %d files, tests_run=%s",
        path,
        len(signals.errors),
        len(signals.files_modified),
        signals.tests_run,
    )
    return signals
