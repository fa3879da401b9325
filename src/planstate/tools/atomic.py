"""Crash-safe file writes for plan records.

Every write lands in a uniquely named sibling temp file first and is then
renamed over the target with ``os.replace``.  A reader therefore observes the
old content or the new content, never a torn file.

``write_multiple_atomic`` extends this to a group of files: all temp files are
written before the first rename.  A failure while writing temp files leaves
every target untouched.  The rename sequence itself is not atomic across
files; a crash in the middle of it can leave a subset renamed.
"""

from __future__ import annotations

import json
import logging
import os
import shutil
import tempfile
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Callable, Iterable, Mapping

from ..errors import PersistenceError

__all__ = [
    "copy_tree",
    "dump_json",
    "read_json",
    "read_json_optional",
    "read_multiple",
    "write_atomic",
    "write_json",
    "write_multiple_atomic",
]

LOGGER = logging.getLogger(__name__)


@dataclass(slots=True)
class _PendingWrite:
    temp_path: Path
    target: Path


def _temp_sibling(target: Path) -> Path:
    """Create an empty, uniquely named temp file next to ``target``."""
    target.parent.mkdir(parents=True, exist_ok=True)
    fd, name = tempfile.mkstemp(prefix=f".{target.name}.tmp.", dir=target.parent)
    os.close(fd)
    return Path(name)


def _write_temp(target: Path, content: str | bytes, encoding: str) -> Path:
    temp_path = _temp_sibling(target)
    try:
        data = content.encode(encoding) if isinstance(content, str) else content
        with temp_path.open("wb") as handle:
            handle.write(data)
            handle.flush()
            os.fsync(handle.fileno())
    except BaseException:
        _discard(temp_path)
        raise
    return temp_path


def _discard(path: Path) -> None:
    try:
        path.unlink()
    except FileNotFoundError:
        pass
    except OSError as error:
        LOGGER.warning("Unable to remove temp file %s: %s", path, error)


def write_atomic(path: Path | str, content: str | bytes, *, encoding: str = "utf-8") -> None:
    """Write ``content`` to ``path`` so a crash never leaves a partial file."""
    target = Path(path)
    temp_path: Path | None = None
    try:
        temp_path = _write_temp(target, content, encoding)
        os.replace(temp_path, target)
    except OSError as error:
        if temp_path is not None:
            _discard(temp_path)
        raise PersistenceError(
            f"Failed to write {target} atomically: {error}",
            code="ATOMIC_WRITE_FAILURE",
            cause=error,
            details={"path": target.as_posix()},
        ) from error


def write_multiple_atomic(
    file_map: Mapping[Path | str, str | bytes],
    *,
    encoding: str = "utf-8",
) -> None:
    """Write a group of files so either every target is replaced or none is.

    Targets are only touched after every temp write succeeded.  Renames are
    performed in the mapping's iteration order.
    """
    pending: list[_PendingWrite] = []
    try:
        for raw_path, content in file_map.items():
            target = Path(raw_path)
            temp_path = _write_temp(target, content, encoding)
            pending.append(_PendingWrite(temp_path=temp_path, target=target))
    except OSError as error:
        for entry in pending:
            _discard(entry.temp_path)
        raise PersistenceError(
            f"Failed to write multiple files atomically: {error}",
            code="ATOMIC_WRITE_FAILURE",
            cause=error,
            details={"paths": [Path(item).as_posix() for item in file_map]},
        ) from error

    renamed: list[Path] = []
    for index, entry in enumerate(pending):
        try:
            os.replace(entry.temp_path, entry.target)
        except OSError as error:
            for remaining in pending[index:]:
                _discard(remaining.temp_path)
            raise PersistenceError(
                f"Rename of {entry.target} failed after {len(renamed)} of {len(pending)} file(s): {error}",
                code="ATOMIC_RENAME_FAILURE",
                cause=error,
                details={
                    "renamed": [item.as_posix() for item in renamed],
                    "failed": entry.target.as_posix(),
                },
            ) from error
        renamed.append(entry.target)


def read_json(path: Path | str) -> Any:
    """Load a JSON document, mapping I/O and decode failures to ``PersistenceError``."""
    source = Path(path)
    try:
        with source.open("r", encoding="utf-8") as handle:
            return json.load(handle)
    except FileNotFoundError as error:
        raise PersistenceError(
            f"File not found: {source}",
            code="FILE_NOT_FOUND",
            cause=error,
            details={"path": source.as_posix()},
        ) from error
    except json.JSONDecodeError as error:
        raise PersistenceError(
            f"Invalid JSON in file: {source}",
            code="INVALID_JSON",
            cause=error,
            details={"path": source.as_posix()},
        ) from error
    except OSError as error:
        raise PersistenceError(
            f"Unable to read {source}: {error}",
            code="READ_FAILURE",
            cause=error,
            details={"path": source.as_posix()},
        ) from error


def read_json_optional(path: Path | str) -> Any | None:
    """Return the decoded JSON at ``path`` or ``None`` when the file is absent."""
    source = Path(path)
    if not source.exists():
        return None
    return read_json(source)


def read_multiple(paths: Iterable[Path | str]) -> dict[Path, Any]:
    """Read several JSON files, failing with every unreadable path listed."""
    results: dict[Path, Any] = {}
    errors: dict[str, str] = {}
    for raw_path in paths:
        path = Path(raw_path)
        try:
            results[path] = read_json(path)
        except PersistenceError as error:
            errors[path.as_posix()] = error.message
    if errors:
        raise PersistenceError(
            "Failed to read some files",
            code="PARTIAL_READ_FAILURE",
            details={"errors": errors, "read": [path.as_posix() for path in results]},
        )
    return results


def write_json(path: Path | str, payload: Any, *, indent: int = 2) -> None:
    """Serialise ``payload`` and write it atomically."""
    write_atomic(path, dump_json(payload, indent=indent))


def dump_json(payload: Any, *, indent: int = 2) -> str:
    return json.dumps(payload, indent=indent, ensure_ascii=False) + "\n"


def copy_tree(
    source: Path,
    destination: Path,
    *,
    exclude: Callable[[Path], bool] | None = None,
) -> None:
    """Recursively copy ``source`` into ``destination`` (created if missing).

    ``exclude`` receives each top-level entry of ``source`` and may veto it.
    """
    destination.mkdir(parents=True, exist_ok=True)
    for entry in sorted(source.iterdir()):
        if exclude is not None and exclude(entry):
            continue
        target = destination / entry.name
        if entry.is_dir():
            shutil.copytree(entry, target, dirs_exist_ok=True)
        else:
            shutil.copy2(entry, target)
