"""Persistence primitives: atomic file writes and plan directory backups."""

from .atomic import read_json, read_json_optional, read_multiple, write_atomic, write_json, write_multiple_atomic
from .backups import BackupInfo, cleanup_old_backups, create_backup, list_backups, restore_from_backup

__all__ = [
    "BackupInfo",
    "cleanup_old_backups",
    "create_backup",
    "list_backups",
    "read_json",
    "read_json_optional",
    "read_multiple",
    "restore_from_backup",
    "write_atomic",
    "write_json",
    "write_multiple_atomic",
]
