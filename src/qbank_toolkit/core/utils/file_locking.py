"""
Module: core.utils.file_locking

Purpose:
    Locked JSON documents shared between sessions: checkpoint files in a
    common directory and the merged diagnostics log. Built on portalocker
    so the same code locks on macOS, Windows and Linux.

Key Functions:
    - locked_file: Open a file with a portalocker lock held
    - locked_write_json: Replace a document (exclusive lock)
    - locked_read_json: Read a document (shared lock)
    - locked_update_json: Read, transform and rewrite a document in one lock

Dependencies:
    - portalocker: Cross-platform file locking

Used By:
    - core.utils.serialization: Checkpoint save/load
    - ingestion.diagnostics: Run report merging
"""

from __future__ import annotations

import json
import logging
from contextlib import contextmanager
from pathlib import Path
from typing import IO, Any, Callable, Dict, Iterator

import portalocker

logger = logging.getLogger(__name__)

JsonDocument = Dict[str, Any]


@contextmanager
def locked_file(path: Path, mode: str, *, shared: bool = False) -> Iterator[IO[str]]:
    """
    Open `path` and hold a lock for the duration of the block.

    Parent directories are created for writing modes. The lock is
    exclusive unless `shared` is set.
    """
    if "r" not in mode or "+" in mode:
        path.parent.mkdir(parents=True, exist_ok=True)
    flags = portalocker.LOCK_SH if shared else portalocker.LOCK_EX
    with open(path, mode, encoding="utf-8") as handle:
        portalocker.lock(handle, flags)
        try:
            yield handle
        finally:
            portalocker.unlock(handle)


def _rewrite(handle: IO[str], data: Any) -> None:
    # Truncate only once the lock is held
    handle.seek(0)
    handle.truncate()
    json.dump(data, handle, indent=2, ensure_ascii=False)
    handle.flush()


def locked_write_json(path: Path, data: Any) -> None:
    """Replace the JSON document at `path`."""
    with locked_file(path, "a") as handle:
        _rewrite(handle, data)
    logger.debug(f"Wrote {path.name}")


def locked_read_json(path: Path) -> Any:
    """
    Read the JSON document at `path`.

    Raises:
        FileNotFoundError: If the file does not exist.
        json.JSONDecodeError: If the content is not valid JSON.
    """
    if not path.exists():
        raise FileNotFoundError(f"File not found: {path}")
    with locked_file(path, "r", shared=True) as handle:
        return json.load(handle)


def locked_update_json(
    path: Path,
    transform: Callable[[JsonDocument], JsonDocument],
    default: Callable[[], JsonDocument] = dict,
) -> JsonDocument:
    """
    Apply `transform` to the document at `path` and write the result back.

    A missing or empty file starts from `default()`.

    Returns:
        The document that was written.
    """
    with locked_file(path, "a+") as handle:
        handle.seek(0)
        content = handle.read()
        current = json.loads(content) if content.strip() else default()
        updated = transform(current)
        _rewrite(handle, updated)
    logger.debug(f"Updated {path.name}")
    return updated
