"""Locate the backup root from a user supplied path."""

from __future__ import annotations

import os
import string
from pathlib import Path
from typing import Optional

from ..config import (
    BACKUP_SUBDIR_NAME,
    EXTRACTION_METADATA_NAME,
    MANIFEST_DB_NAME,
    MANIFEST_PLIST_NAME,
    MIN_HEX_BUCKETS,
    STATUS_PLIST_NAME,
)
from ..errors import AmbiguousBackupError, BackupPathError
from ..utils.logging import get_logger

logger = get_logger()

_HEX_DIGITS = frozenset(string.hexdigits)


def _is_hex_bucket(name: str) -> bool:
    return len(name) == 2 and all(char in _HEX_DIGITS for char in name)


def is_valid_backup_dir(path: Path) -> bool:
    """Return ``True`` when *path* looks like a hashed iOS backup root.

    ``Manifest.plist`` is mandatory. Beyond that the directory must hold
    ``Manifest.db``, ``Status.plist`` or more than ten two-character hex
    bucket directories.
    """

    if not (path / MANIFEST_PLIST_NAME).is_file():
        return False
    if (path / MANIFEST_DB_NAME).exists() or (path / STATUS_PLIST_NAME).exists():
        return True
    try:
        entries = list(os.scandir(path))
    except OSError:
        return False
    buckets = sum(1 for entry in entries if entry.is_dir() and _is_hex_bucket(entry.name))
    return buckets > MIN_HEX_BUCKETS


def is_extracted_backup_dir(path: Path) -> bool:
    return (path / EXTRACTION_METADATA_NAME).is_file()


def resolve_backup_path(input_path: Path | str, cwd: Optional[Path] = None) -> Path:
    """Walk common enclosing layouts to find the actual backup root.

    The input is returned as-is when it is already a backup or extracted
    root. Otherwise a ``Backup`` child is tried, then the single directory
    inside it. When nothing matches the input is returned unchanged so that
    :func:`validate_backup_directory` reports the problem, except when the
    input is the working directory, which gets a dedicated message.

    Raises
    ------
    AmbiguousBackupError
        Raised when ``Backup/`` holds several candidate directories.
    BackupPathError
        Raised when the working directory itself is not a backup.
    """

    path = Path(input_path)
    if is_valid_backup_dir(path) or is_extracted_backup_dir(path):
        return path

    backup_dir = path / BACKUP_SUBDIR_NAME
    if backup_dir.is_dir():
        if is_valid_backup_dir(backup_dir):
            logger.debug("Resolved backup root to %s", backup_dir)
            return backup_dir
        try:
            subdirs = sorted(child for child in backup_dir.iterdir() if child.is_dir())
        except OSError:
            subdirs = []
        if len(subdirs) > 1:
            raise AmbiguousBackupError(
                f"multiple backup directories found in {backup_dir} - "
                "please specify the exact backup directory path for safety"
            )
        if len(subdirs) == 1 and is_valid_backup_dir(subdirs[0]):
            logger.debug("Resolved backup root to %s", subdirs[0])
            return subdirs[0]

    working_dir = (cwd or Path.cwd()).resolve()
    if path.resolve() == working_dir:
        raise BackupPathError(
            "current directory does not contain iPhone backup files "
            "(Manifest.db or Manifest.plist not found) - please specify a valid backup directory path"
        )
    return path


def validate_backup_directory(path: Path) -> None:
    """Raise :class:`BackupPathError` unless *path* is a usable backup directory."""

    if not path.exists():
        raise BackupPathError(f"backup path does not exist: {path}")
    if not path.is_dir():
        raise BackupPathError(f"backup path is not a directory: {path}")
    if is_extracted_backup_dir(path):
        return
    if not (path / MANIFEST_PLIST_NAME).is_file():
        raise BackupPathError(
            "Manifest.plist not found - this doesn't appear to be an iPhone backup or extracted directory"
        )


def locate_backup(input_path: Path | str, cwd: Optional[Path] = None) -> Path:
    """Resolve and validate *input_path* in one step."""

    path = Path(input_path)
    if not path.exists():
        raise BackupPathError(f"backup path does not exist: {path}")
    if not path.is_dir():
        raise BackupPathError(f"backup path is not a directory: {path}")
    resolved = resolve_backup_path(path, cwd=cwd)
    validate_backup_directory(resolved)
    return resolved


__all__ = [
    "is_extracted_backup_dir",
    "is_valid_backup_dir",
    "locate_backup",
    "resolve_backup_path",
    "validate_backup_directory",
]
