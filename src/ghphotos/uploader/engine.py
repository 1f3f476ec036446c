"""Batch upload engine driving rclone over staged directory trees."""

from __future__ import annotations

import posixpath
import tempfile
from pathlib import Path
from typing import Callable, Iterable, Optional, Sequence

from ..cancellation import CancellationToken
from ..config import (
    BATCH_TIMEOUT_SEC,
    EXTRACTION_METADATA_NAME,
    LARGE_CHUNK_SIZE,
    MEDIUM_CHUNK_SIZE,
    MEDIUM_PLAN_LIMIT,
    PRESCAN_RECURSIVE_DIR_LIMIT,
    REMOTE_METADATA_DIR,
    SINGLE_CHUNK_LIMIT,
)
from ..errors import (
    AssetNotFoundError,
    ExternalToolError,
    ManifestInvalidError,
    UploadBatchError,
)
from ..manifest import OperationStatus
from ..planner import PlanEntry
from ..rclone.client import RcloneClient
from ..utils.console import echo
from ..utils.dates import filename_timestamp, parse_timestamp, utc_now
from ..utils.jsonio import read_json
from ..utils.logging import get_logger
from .staging import LinkStager, StageMethod, TargetCollisionError

logger = get_logger()

StatusCallback = Callable[[int, OperationStatus, str], None]
ProgressCallback = Callable[[int, int, str], None]

STAGING_PREFIX = "gh-photos-batch-"
VERIFY_PREFIX = "gh-photos-verify-"

# Runs with more entries than this report progress every
# ``_LARGE_RUN_INTERVAL`` files instead of every ``_SMALL_RUN_INTERVAL``.
_LARGE_RUN_THRESHOLD = 100
_LARGE_RUN_INTERVAL = 50
_SMALL_RUN_INTERVAL = 10
_TAIL_WINDOW = 5


def chunk_size_for(total: int) -> int:
    """Return the chunk size used for a plan of *total* upload entries."""

    if total <= SINGLE_CHUNK_LIMIT:
        return max(total, 1)
    if total <= MEDIUM_PLAN_LIMIT:
        return MEDIUM_CHUNK_SIZE
    return LARGE_CHUNK_SIZE


def chunk_entries(entries: Sequence[PlanEntry], size: int) -> list[list[PlanEntry]]:
    return [list(entries[start : start + size]) for start in range(0, len(entries), size)]


def target_directory(target_path: str) -> str:
    directory = posixpath.dirname(target_path)
    return "" if directory == "." else directory


def group_by_directory(entries: Iterable[PlanEntry]) -> dict[str, list[PlanEntry]]:
    """Group *entries* by remote directory, keeping plan order inside each group."""

    groups: dict[str, list[PlanEntry]] = {}
    for entry in entries:
        groups.setdefault(target_directory(entry.target_path), []).append(entry)
    return groups


class ProgressThrottle:
    """Decide which progress updates are worth emitting.

    The first and final updates always pass, as do the last few files of the
    run. In between an update passes whenever the completed count crosses a
    multiple of the reporting interval.
    """

    def __init__(self, total: int) -> None:
        self.total = total
        self.interval = _LARGE_RUN_INTERVAL if total > _LARGE_RUN_THRESHOLD else _SMALL_RUN_INTERVAL
        self._last: Optional[int] = None

    def should_emit(self, completed: int) -> bool:
        last = self._last
        if completed == 0 or completed >= self.total or completed > self.total - _TAIL_WINDOW:
            emit = completed != last
        elif last is None:
            emit = True
        else:
            emit = completed // self.interval > last // self.interval
        if emit:
            self._last = completed
        return emit


class UploadEngine:
    """Upload plan entries to a remote in chunks of per-directory batches.

    Entry statuses are reported through the ``on_status`` callback exactly
    once per attempted entry. Entries that were never attempted because the
    run was cancelled get no callback and stay ``pending``.
    """

    def __init__(
        self,
        client: RcloneClient,
        *,
        dry_run: bool = False,
        skip_existing: bool = True,
        batch_timeout: float = BATCH_TIMEOUT_SEC,
        stager: Optional[LinkStager] = None,
    ) -> None:
        self.client = client
        self.dry_run = dry_run
        self.skip_existing = skip_existing
        self.batch_timeout = batch_timeout
        self.stager = stager or LinkStager()

    # -- upload --------------------------------------------------------

    def upload(
        self,
        entries: Sequence[PlanEntry],
        on_status: StatusCallback,
        on_progress: Optional[ProgressCallback] = None,
        token: Optional[CancellationToken] = None,
    ) -> None:
        """Upload *entries*; raise :class:`UploadBatchError` if any entry failed.

        Raises
        ------
        OperationCancelledError
            Raised as soon as cancellation is observed. Entries of batches
            that already finished keep their reported status.
        UploadBatchError
            Raised after every chunk has been attempted when at least one
            entry failed.
        """

        total = len(entries)
        throttle = ProgressThrottle(total)

        def report(completed: int, label: str) -> None:
            if on_progress is not None and throttle.should_emit(completed):
                on_progress(completed, total, label)

        if self.dry_run:
            self._dry_run(entries, on_status, report)
            return
        if not entries:
            return

        size = chunk_size_for(total)
        chunks = chunk_entries(entries, size)
        logger.info("Uploading %d files in %d chunk(s) of up to %d", total, len(chunks), size)
        report(0, "Starting upload")

        completed = 0
        failed = 0
        for number, chunk in enumerate(chunks, start=1):
            if token is not None:
                token.raise_if_cancelled()
            logger.debug("Processing chunk %d/%d (%d files)", number, len(chunks), len(chunk))
            for directory, group in group_by_directory(chunk).items():
                if token is not None:
                    token.raise_if_cancelled()
                done, group_failed = self._upload_group(directory, group, on_status, token, completed, report)
                completed += done
                failed += group_failed
                report(completed, f"Uploaded {directory or '.'}")

        if failed:
            raise UploadBatchError(f"{failed} of {total} files failed to upload", failed_entries=failed)

    def _dry_run(self, entries: Sequence[PlanEntry], on_status: StatusCallback, report: Callable[[int, str], None]) -> None:
        for position, entry in enumerate(entries):
            report(position, entry.filename)
            echo(f"[DRY-RUN] Would upload: {entry.source_path} -> {self.client.remote_path(entry.target_path)}")
            on_status(entry.index, OperationStatus.UPLOADED, "")
        report(len(entries), "")

    def _upload_group(
        self,
        directory: str,
        group: list[PlanEntry],
        on_status: StatusCallback,
        token: Optional[CancellationToken],
        completed: int,
        report: Callable[[int, str], None],
    ) -> tuple[int, int]:
        """Stage and copy one directory group. Returns ``(attempted, failed)``."""

        failed = 0
        with tempfile.TemporaryDirectory(prefix=STAGING_PREFIX) as tmp:
            staging_root = Path(tmp)
            staged: list[PlanEntry] = []
            for entry in group:
                if token is not None:
                    token.raise_if_cancelled()
                try:
                    method = self.stager.link_or_copy(Path(entry.source_path), staging_root / entry.target_path)
                except AssetNotFoundError as exc:
                    logger.warning("Skipping %s: %s", entry.filename, exc)
                    on_status(entry.index, OperationStatus.MISSING, str(exc))
                    continue
                except TargetCollisionError as exc:
                    logger.error("Cannot stage %s: %s", entry.filename, exc)
                    on_status(entry.index, OperationStatus.FAILED, str(exc))
                    failed += 1
                    continue
                except OSError as exc:
                    logger.error("Cannot stage %s: %s", entry.filename, exc)
                    on_status(entry.index, OperationStatus.FAILED, f"staging failed: {exc}")
                    failed += 1
                    continue
                if method is StageMethod.DUPLICATE:
                    on_status(entry.index, OperationStatus.SKIPPED, "duplicate of another entry in this batch")
                    continue
                staged.append(entry)

            if not staged:
                return len(group), failed

            label = f"Uploading batch ({len(staged)} files)"

            def on_line(line: str) -> None:
                if "Transferred:" in line:
                    report(completed, label)

            logger.debug("Uploading %d files to %s", len(staged), self.client.remote_path(directory))
            try:
                self.client.copy(
                    str(staging_root),
                    self.client.remote_path(""),
                    ignore_existing=self.skip_existing,
                    token=token,
                    timeout=self.batch_timeout,
                    on_line=on_line,
                )
            except ExternalToolError as exc:
                message = f"batch upload failed: {exc}"
                logger.error("Batch upload of %d files to %s failed: %s", len(staged), directory or ".", exc)
                for entry in staged:
                    on_status(entry.index, OperationStatus.FAILED, message)
                return len(group), failed + len(staged)

            for entry in staged:
                on_status(entry.index, OperationStatus.UPLOADED, "")
        return len(group), failed

    # -- pre-scan ------------------------------------------------------

    def prescan(self, target_paths: Iterable[str], token: Optional[CancellationToken] = None) -> set[str]:
        """Return the paths listed on the remote below the directories of *target_paths*.

        Paths are relative to the remote's base path, as in ``target_path``.
        """

        directories = list(dict.fromkeys(target_directory(path) for path in target_paths))
        if not directories:
            return set()

        existing: set[str] = set()
        if len(directories) > PRESCAN_RECURSIVE_DIR_LIMIT:
            logger.info("Listing remote recursively to check %d directories", len(directories))
            try:
                names = self.client.lsf(self.client.remote_path(""), recursive=True, files_only=True)
            except ExternalToolError as exc:
                logger.warning("Remote listing failed, assuming nothing exists: %s", exc)
                return existing
            existing.update(name.strip("/") for name in names)
            return existing

        logger.info("Checking %d remote directories for existing files", len(directories))
        for directory in directories:
            if token is not None:
                token.raise_if_cancelled()
            try:
                names = self.client.lsf(self.client.remote_path(directory), files_only=True)
            except ExternalToolError as exc:
                logger.debug("Remote directory %s not listed: %s", directory or ".", exc)
                continue
            for name in names:
                existing.add(posixpath.join(directory, name) if directory else name)
        return existing

    # -- verification --------------------------------------------------

    def verify(
        self,
        entries: Iterable[PlanEntry],
        on_status: StatusCallback,
        token: Optional[CancellationToken] = None,
    ) -> int:
        """Check each entry against the remote one at a time. Returns the failure count."""

        failures = 0
        entries = list(entries)
        for position, entry in enumerate(entries, start=1):
            if token is not None:
                token.raise_if_cancelled()
            remote = self.client.remote_path(entry.target_path)
            if self.dry_run:
                echo(f"[DRY-RUN] Would verify: {remote}")
                continue
            logger.debug("Verifying %s (%d/%d)", entry.filename, position, len(entries))
            try:
                self._verify_entry(entry)
            except (ExternalToolError, AssetNotFoundError, OSError) as exc:
                logger.error("Verification failed for %s: %s", entry.source_path, exc)
                on_status(entry.index, OperationStatus.FAILED, "verification failed")
                failures += 1
            else:
                on_status(entry.index, OperationStatus.VERIFIED, "")
        return failures

    def _verify_entry(self, entry: PlanEntry) -> None:
        # Hashed backup files have no meaningful name, so the source is staged
        # under its target filename and checked one-way against the remote directory.
        filename = posixpath.basename(entry.target_path)
        with tempfile.TemporaryDirectory(prefix=VERIFY_PREFIX) as tmp:
            staged = Path(tmp) / filename
            self.stager.link_or_copy(Path(entry.source_path), staged)
            self.client.check(tmp, self.client.remote_path(target_directory(entry.target_path)), one_way=True)

    # -- startup -------------------------------------------------------

    def startup_self_test(self, backup_root: Path) -> None:
        """Probe the remote before uploading. Problems are logged as warnings."""

        if self.dry_run:
            logger.debug("Dry run: remote self-test skipped")
            return
        try:
            listing = self.client.lsd(self.client.base_remote)
        except ExternalToolError as exc:
            logger.warning("Remote connectivity test failed for %s: %s", self.client.base_remote, exc)
        else:
            logger.debug("Remote connectivity confirmed for %s: %s", self.client.base_remote, listing)

        metadata_path = backup_root / EXTRACTION_METADATA_NAME
        if not metadata_path.is_file():
            logger.debug("No extraction metadata found, skipping remote write test")
            return

        target = f"{REMOTE_METADATA_DIR}/extraction-metadata-{metadata_timestamp(metadata_path)}.json"
        remote = self.client.remote_path(target)
        try:
            self.client.copyto(str(metadata_path), remote, ignore_existing=True)
        except ExternalToolError as exc:
            logger.warning("Extraction metadata upload failed for %s: %s", remote, exc)
            return
        try:
            self.client.lsf(remote)
        except ExternalToolError as exc:
            logger.warning("Extraction metadata verification failed for %s: %s", remote, exc)
            return
        logger.info("Extraction metadata backup created: %s", remote)


def metadata_timestamp(metadata_path: Path) -> str:
    """Return the filename stamp of the sidecar's ``completed_at``, or of now."""

    try:
        document = read_json(metadata_path)
    except (OSError, ManifestInvalidError) as exc:
        logger.warning("Failed to read extraction metadata timestamp: %s", exc)
        return filename_timestamp(utc_now())
    completed = None
    if isinstance(document, dict):
        command = document.get("command_metadata")
        if isinstance(command, dict):
            completed = parse_timestamp(command.get("completed_at"))
    if completed is None:
        logger.warning("Extraction metadata has no completed_at, using current time")
        return filename_timestamp(utc_now())
    return filename_timestamp(completed)


__all__ = [
    "ProgressThrottle",
    "STAGING_PREFIX",
    "UploadEngine",
    "chunk_entries",
    "chunk_size_for",
    "group_by_directory",
    "metadata_timestamp",
    "target_directory",
]
