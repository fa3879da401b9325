"""Timestamped backups of a plan directory and rollback-aware restore."""

from __future__ import annotations

import logging
import shutil
from dataclasses import dataclass
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Dict, List

from ..errors import BackupNotFoundError, PersistenceError
from .atomic import copy_tree

__all__ = [
    "BACKUP_DIR_NAME",
    "BACKUP_PREFIX",
    "DEFAULT_KEEP",
    "BackupInfo",
    "cleanup_old_backups",
    "create_backup",
    "list_backups",
    "restore_from_backup",
]

LOGGER = logging.getLogger(__name__)

BACKUP_DIR_NAME = ".backups"
BACKUP_PREFIX = "backup-"
DEFAULT_KEEP = 5


@dataclass(slots=True)
class BackupInfo:
    """A backup directory discovered under a plan's backup store."""

    name: str
    path: Path
    modified_at: datetime

    def to_dict(self) -> Dict[str, Any]:
        return {
            "name": self.name,
            "path": self.path.as_posix(),
            "modified_at": self.modified_at.isoformat(),
        }


def _exclude_backup_store(entry: Path) -> bool:
    return entry.name == BACKUP_DIR_NAME


def _backup_name(root: Path) -> str:
    stamp = datetime.now(timezone.utc).strftime("%Y%m%d-%H%M%S-%f")
    name = f"{BACKUP_PREFIX}{stamp}"
    suffix = 1
    while (root / name).exists():
        suffix += 1
        name = f"{BACKUP_PREFIX}{stamp}-{suffix}"
    return name


def create_backup(
    plan_dir: Path | str,
    *,
    keep: int = DEFAULT_KEEP,
    preserve: Path | None = None,
) -> Path:
    """Copy ``plan_dir`` (minus its backup store) into a new timestamped backup.

    ``preserve`` names a backup the retention sweep must not evict.
    """
    source = Path(plan_dir)
    if not source.is_dir():
        raise PersistenceError(
            f"Plan directory does not exist: {source}",
            code="PLAN_DIR_MISSING",
            details={"path": source.as_posix()},
        )

    backup_root = source / BACKUP_DIR_NAME
    backup_path: Path | None = None
    try:
        backup_root.mkdir(parents=True, exist_ok=True)
        backup_path = backup_root / _backup_name(backup_root)
        copy_tree(source, backup_path, exclude=_exclude_backup_store)
    except OSError as error:
        if backup_path is not None:
            shutil.rmtree(backup_path, ignore_errors=True)
        raise PersistenceError(
            f"Failed to create backup of {source}: {error}",
            code="BACKUP_FAILED",
            cause=error,
            details={"path": source.as_posix()},
        ) from error

    LOGGER.info("Created backup %s", backup_path)
    cleanup_old_backups(backup_root, keep=keep, preserve=preserve)
    return backup_path


def list_backups(plan_dir: Path | str) -> List[BackupInfo]:
    """Return the backups of ``plan_dir``, newest first."""
    backup_root = Path(plan_dir) / BACKUP_DIR_NAME
    if not backup_root.is_dir():
        return []
    backups: List[BackupInfo] = []
    for entry in backup_root.iterdir():
        if not entry.is_dir() or not entry.name.startswith(BACKUP_PREFIX):
            continue
        modified = datetime.fromtimestamp(entry.stat().st_mtime, tz=timezone.utc)
        backups.append(BackupInfo(name=entry.name, path=entry, modified_at=modified))
    backups.sort(key=lambda info: (info.modified_at, info.name), reverse=True)
    return backups


def cleanup_old_backups(
    backup_root: Path | str,
    *,
    keep: int = DEFAULT_KEEP,
    preserve: Path | None = None,
) -> List[Path]:
    """Delete all but the ``keep`` most recently modified backups.

    ``preserve`` counts toward ``keep``: when it falls outside the window it
    takes the place of the oldest backup that would otherwise survive.  The
    newest backup is always kept, so ``keep=1`` with an old ``preserve``
    leaves two.  Failures are logged and never raised; the removed paths are
    returned.
    """
    root = Path(backup_root)
    removed: List[Path] = []
    try:
        backups = list_backups(root.parent)
        window = max(keep, 1)
        retained = backups[:window]
        if preserve is not None:
            protected = preserve.resolve()
            for info in backups[window:]:
                if info.path.resolve() == protected:
                    retained = retained[: max(window - 1, 1)] + [info]
                    break
        retained_names = {info.name for info in retained}
        for info in backups:
            if info.name in retained_names:
                continue
            shutil.rmtree(info.path)
            removed.append(info.path)
    except OSError as error:
        LOGGER.warning("Failed to clean up old backups in %s: %s", root, error)
    return removed


def _clear_plan_dir(plan_dir: Path) -> None:
    for entry in plan_dir.iterdir():
        if _exclude_backup_store(entry):
            continue
        if entry.is_dir() and not entry.is_symlink():
            shutil.rmtree(entry)
        else:
            entry.unlink()


def restore_from_backup(backup_path: Path | str, *, keep: int = DEFAULT_KEEP) -> Path:
    """Replace the owning plan directory's contents with ``backup_path``.

    The current contents are snapshotted first (best effort).  If copying the
    backup in fails, the snapshot is restored; if that fails too, both errors
    are reported together.
    """
    source = Path(backup_path)
    if not source.is_dir():
        raise BackupNotFoundError(
            f"Backup does not exist: {source}",
            details={"path": source.as_posix()},
        )
    plan_dir = source.parent.parent

    safety_backup: Path | None = None
    try:
        safety_backup = create_backup(plan_dir, keep=keep, preserve=source)
    except PersistenceError as error:
        LOGGER.warning("Could not back up current state of %s before restore: %s", plan_dir, error)

    try:
        _clear_plan_dir(plan_dir)
        copy_tree(source, plan_dir)
    except OSError as error:
        if safety_backup is not None and safety_backup.is_dir():
            try:
                _clear_plan_dir(plan_dir)
                copy_tree(safety_backup, plan_dir)
            except OSError as rollback_error:
                raise PersistenceError(
                    f"Failed to restore from backup and rollback failed: {error} "
                    f"(rollback: {rollback_error})",
                    code="RESTORE_ROLLBACK_FAILED",
                    cause=error,
                    details={
                        "backup": source.as_posix(),
                        "rollback_source": safety_backup.as_posix(),
                        "rollback_error": f"{type(rollback_error).__name__}: {rollback_error}",
                    },
                ) from error
            LOGGER.warning("Restore of %s failed; rolled back to %s", plan_dir, safety_backup)
        raise PersistenceError(
            f"Failed to restore from backup: {error}",
            code="RESTORE_FAILED",
            cause=error,
            details={
                "backup": source.as_posix(),
                "rolled_back_to": safety_backup.as_posix() if safety_backup else None,
            },
        ) from error

    LOGGER.info("Restored %s from %s", plan_dir, source)
    return plan_dir
