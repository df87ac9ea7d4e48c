"""JSON document storage and retrieval.

This module handles:
1. Writing pydantic models as JSON documents (atomically, via a temp file)
2. Loading documents back as raw dicts
3. Appending to and reading JSON Lines logs

The session memory store and the knowledge sink persist through these
helpers. All functions accept :class:`pydantic.BaseModel` instances and
return raw JSON dicts, with no dependency on domain-specific models.

Examples:
    Save and load a document::

        >>> from pydantic import BaseModel
        >>> class Record(BaseModel):
        ...     status: str
        >>> path = save_document(Record(status="done"), Path("/tmp/r.json"))
        >>> load_document(path)
        {'status': 'done'}

    Append to a JSON Lines log::

        >>> append_jsonl(Record(status="a"), Path("/tmp/log.jsonl"))
        >>> [r["status"] for r in load_jsonl(Path("/tmp/log.jsonl"))]
        ['a']
"""

import json
import logging
import os
from pathlib import Path

from pydantic import BaseModel

from ralph.lib.retry import with_retry

logger = logging.getLogger(__name__)

# Type alias for raw document JSON; schema varies by caller
type DocumentData = dict[str, object]


@with_retry()
def save_document(document: BaseModel, path: Path) -> Path:
    """Write a model to ``path`` as indented JSON.

    The write goes to a sibling temp file first and is moved into place
    with :func:`os.replace`, so readers never see a half-written file.

    Returns:
        Path to the saved file.
    """
    path.parent.mkdir(parents=True, exist_ok=True)
    tmp_path = path.with_name(f"{path.name}.tmp.{os.getpid()}")
    tmp_path.write_text(document.model_dump_json(indent=2), encoding="utf-8")
    os.replace(tmp_path, path)
    logger.debug("Saved document to %s", path)
    return path


@with_retry()
def load_document(path: Path) -> DocumentData | None:
    """Load a JSON document as a raw dict.

    Returns:
        The parsed dict, or None if the file does not exist.

    Raises:
        ValueError: If the file exists but is not a JSON object.
        OSError: If the file cannot be read after retries.
    """
    if not path.exists():
        return None
    data = json.loads(path.read_text(encoding="utf-8"))
    if not isinstance(data, dict):
        raise ValueError(f"Expected a JSON object in {path}")
    return data


@with_retry()
def append_jsonl(document: BaseModel, path: Path) -> None:
    """Append one model as a single JSON line."""
    path.parent.mkdir(parents=True, exist_ok=True)
    with path.open("a", encoding="utf-8") as f:
        f.write(document.model_dump_json() + "\n")


def load_jsonl(path: Path) -> list[DocumentData]:
    """Load all JSON object lines from ``path``.

    Malformed lines are skipped with a warning; a missing file yields an
    empty list.
    """
    if not path.exists():
        return []

    records: list[DocumentData] = []
    for lineno, line in enumerate(path.read_text(encoding="utf-8").splitlines(), 1):
        if not line.strip():
            continue
        try:
            data = json.loads(line)
        except json.JSONDecodeError as e:
            logger.warning("Skipping malformed line %d in %s: %s", lineno, path, e)
            continue
        if isinstance(data, dict):
            records.append(data)
    return records
