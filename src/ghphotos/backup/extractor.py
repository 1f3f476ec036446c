"""Rebuild a readable ``<domain>/<relativePath>`` tree from a hashed backup."""

from __future__ import annotations

import shutil
import time
from dataclasses import dataclass, field
from pathlib import Path
from typing import Optional

from ..cancellation import CancellationToken
from ..config import DEFAULT_EXTRACT_OUTPUT, ExtractOptions
from ..errors import BackupPathError, EncryptedBackupError, GhPhotosError, VerificationError
from ..utils.hashutils import file_sha1, same_content
from ..utils.logging import get_logger
from ..utils.pathutils import is_within
from .locator import validate_backup_directory
from .manifest_db import FileRecord, ManifestDB, is_backup_encrypted
from .parser import ENCRYPTED_BACKUP_MESSAGE

logger = get_logger()

_PROGRESS_INTERVAL = 50


@dataclass
class ExtractSummary:
    total_files: int = 0
    extracted_files: int = 0
    skipped_files: int = 0
    failed_files: int = 0
    domains_found: int = 0
    total_size: int = 0
    extracted_size: int = 0
    duration: float = 0.0
    errors: list[str] = field(default_factory=list)


def verify_copy(source: Path, target: Path) -> None:
    """Raise :class:`VerificationError` unless both files have the same SHA-1."""

    source_hash = file_sha1(source)
    target_hash = file_sha1(target)
    if source_hash != target_hash:
        raise VerificationError(f"file hashes don't match (source: {source_hash}, target: {target_hash})")


class Extractor:
    """Copy every regular file listed in ``Manifest.db`` to its logical path.

    Only unencrypted backups are accepted. Per-file failures are counted in
    the returned :class:`ExtractSummary` and never abort the run.
    """

    def __init__(self, options: ExtractOptions) -> None:
        backup_root = Path(options.backup_path)
        validate_backup_directory(backup_root)
        if is_backup_encrypted(backup_root):
            raise EncryptedBackupError(ENCRYPTED_BACKUP_MESSAGE)
        self.manifest = ManifestDB.open(backup_root)
        try:
            self.manifest.validate_schema()
        except GhPhotosError:
            self.manifest.close()
            raise
        self.backup_root = backup_root
        self.output_path = Path(options.output_path or DEFAULT_EXTRACT_OUTPUT)
        self.options = options
        self.summary = ExtractSummary()

    def __enter__(self) -> "Extractor":
        return self

    def __exit__(self, *exc_info) -> None:
        self.close()

    def close(self) -> None:
        self.manifest.close()

    def target_path(self, record: FileRecord) -> Path:
        return self.output_path / record.domain / record.relative_path

    def extract(self, token: Optional[CancellationToken] = None) -> ExtractSummary:
        start = time.monotonic()
        logger.info("Starting backup extraction: backup_path=%s output_path=%s", self.backup_root, self.output_path)
        try:
            files = self.manifest.get_all_files(regular_only=True)
            self.summary.total_files = len(files)
            self.summary.domains_found = len({record.domain for record in files})
            logger.info("Found %d files in backup", len(files))
            self.output_path.mkdir(parents=True, exist_ok=True)

            total = len(files)
            for position, record in enumerate(files):
                if token is not None:
                    token.raise_if_cancelled()
                if self.options.progress and (position % _PROGRESS_INTERVAL == 0 or position == total - 1):
                    logger.info(
                        "Extracting files: %.1f%% (%d/%d) domain=%s file=%s",
                        (position + 1) / total * 100,
                        position + 1,
                        total,
                        record.domain,
                        Path(record.relative_path).name,
                    )
                logger.debug(
                    "Processing file domain=%s relative_path=%s file_id=%s",
                    record.domain,
                    record.relative_path,
                    record.file_id,
                )
                try:
                    self._extract_file(record)
                except (OSError, BackupPathError, VerificationError) as exc:
                    self.summary.failed_files += 1
                    self.summary.errors.append(f"Failed to extract {record.relative_path}: {exc}")
                    logger.warning(
                        "Failed to extract file domain=%s path=%s: %s", record.domain, record.relative_path, exc
                    )
        finally:
            self.summary.duration = time.monotonic() - start

        logger.info(
            "Backup extraction completed: total=%d extracted=%d skipped=%d failed=%d domains=%d",
            self.summary.total_files,
            self.summary.extracted_files,
            self.summary.skipped_files,
            self.summary.failed_files,
            self.summary.domains_found,
        )
        return self.summary

    def _extract_file(self, record: FileRecord) -> None:
        target = self.target_path(record)
        if not is_within(target, self.output_path):
            raise BackupPathError(f"path escapes the output directory: {record.domain}/{record.relative_path}")
        source = self.manifest.hashed_path(record.file_id)
        size = source.stat().st_size

        if self.options.skip_existing and target.exists():
            # With --verify an existing copy is only trusted when its content matches.
            if not self.options.verify or same_content(source, target):
                self.summary.skipped_files += 1
                return

        target.parent.mkdir(parents=True, exist_ok=True)
        shutil.copyfile(source, target)
        if self.options.verify:
            verify_copy(source, target)

        self.summary.extracted_files += 1
        self.summary.total_size += size
        self.summary.extracted_size += size


__all__ = ["ExtractSummary", "Extractor", "verify_copy"]
