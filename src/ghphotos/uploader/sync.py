"""End-to-end ``sync`` run: parse, filter, plan, upload, verify, record."""

from __future__ import annotations

import time
from pathlib import Path
from typing import Optional

from ..audit import InvocationFlags, TrailManager
from ..backup.parser import BackupParser
from ..cancellation import CancellationToken
from ..config import SyncOptions
from ..errors import AuditWriteError, UploadBatchError
from ..manifest import Manifest, ManifestConfig, OperationStatus
from ..metadata import CommandMetadata
from ..models.asset import Asset
from ..planner import AssetFilter, FilterCounts, UploadAction, UploadPlan, create_upload_plan, print_upload_plan
from ..rclone.client import (
    RcloneClient,
    validate_rclone_installation,
    validate_remote,
    validate_remote_authentication,
)
from ..utils.logging import get_logger
from .engine import UploadEngine

logger = get_logger()


def invocation_flags(options: SyncOptions) -> InvocationFlags:
    return InvocationFlags(
        include_hidden=options.include_hidden,
        include_recently_deleted=options.include_recently_deleted,
        parallel=options.parallel,
        skip_existing=options.skip_existing,
        dry_run=options.dry_run,
        log_level=options.log_level,
        types=list(options.asset_types),
        start_date=options.start_date,
        end_date=options.end_date,
        verify=options.verify,
        checksum=options.checksum,
    )


class SyncRunner:
    """Run one sync with the stages executed strictly in sequence.

    Once a manifest exists the audit trail is written whatever the outcome,
    including cancellation. A failure to write it is only reported.
    """

    def __init__(
        self,
        options: SyncOptions,
        *,
        client: Optional[RcloneClient] = None,
        engine: Optional[UploadEngine] = None,
        trail: Optional[TrailManager] = None,
        validate_tools: bool = True,
    ) -> None:
        self.options = options
        self.client = client or RcloneClient(
            options.remote,
            parallel=options.parallel,
            verbose=options.log_level == "debug",
        )
        self.engine = engine or UploadEngine(
            self.client,
            dry_run=options.dry_run,
            skip_existing=options.skip_existing,
        )
        self.trail = trail or TrailManager()
        self.validate_tools = validate_tools
        self.metadata = CommandMetadata()
        self.assets: list[Asset] = []
        self.manifest: Optional[Manifest] = None
        self.plan: Optional[UploadPlan] = None
        self.filter_counts = FilterCounts()
        self.audit_path: Optional[Path] = None

    def _validate_tools(self) -> None:
        if self.options.dry_run or not self.validate_tools:
            return
        validate_rclone_installation(self.client)
        validate_remote(self.client)
        validate_remote_authentication(self.client)

    def _compute_checksums(self, assets: list[Asset], token: Optional[CancellationToken]) -> None:
        logger.info("Computing SHA-256 checksums for %d assets...", len(assets))
        for asset in assets:
            if token is not None:
                token.raise_if_cancelled()
            try:
                asset.compute_checksum()
            except (OSError, ValueError) as exc:
                logger.warning("Failed to compute checksum for %s: %s", asset.filename, exc)

    def prepare(self, token: Optional[CancellationToken] = None) -> UploadPlan:
        """Parse and filter the backup, then build the manifest and plan."""

        options = self.options
        with BackupParser.open(options.backup_path) as parser:
            backup_root = parser.backup_path
            assets = parser.parse_assets(token)

        self.metadata.set_backup_info(backup_root)
        backup = self.metadata.ios_backup
        self.trail.set_device_info(str(backup_root), backup.device_name, backup.device_uuid, backup.ios_version)
        self.trail.set_invocation(options.remote, invocation_flags(options))

        kept, self.filter_counts = AssetFilter(options).apply(assets, token)
        logger.info("%d assets remain after filtering (%d excluded)", len(kept), self.filter_counts.total)
        if options.checksum:
            self._compute_checksums(kept, token)
        for asset in kept:
            asset.target_path = asset.generate_target_path(options.path_granularity)
        self.assets = kept
        self.metadata.set_asset_counts(kept)

        manifest = Manifest.from_assets(kept, str(backup_root), options.remote, ManifestConfig.from_options(options))
        self.manifest = manifest

        existing: Optional[set[str]] = None
        if options.skip_existing and options.remote_prescan and not options.dry_run:
            existing = self.engine.prescan((entry.target_path for entry in manifest.entries), token)
            logger.info("Remote pre-scan found %d existing files", len(existing))

        plan = create_upload_plan(manifest, existing=existing, filter_counts=self.filter_counts, token=token)
        for item in plan.entries:
            if item.action is UploadAction.SKIP:
                manifest.update_entry(item.index, OperationStatus.SKIPPED)
            elif item.action is UploadAction.ERROR:
                manifest.update_entry(item.index, OperationStatus.MISSING, item.reason)
        self.plan = plan
        return plan

    def _on_progress(self, completed: int, total: int, label: str) -> None:
        percent = completed / total * 100 if total else 100.0
        logger.info("Upload progress: %d/%d (%.1f%%) %s", completed, total, percent, label)

    def run(self, token: Optional[CancellationToken] = None) -> Manifest:
        """Execute the whole sync and return the final manifest.

        Raises
        ------
        UploadBatchError
            Raised when at least one entry failed to upload.
        OperationCancelledError
            Raised when *token* is cancelled; unattempted entries stay pending.
        """

        options = self.options
        started = time.monotonic()
        self._validate_tools()
        try:
            plan = self.prepare(token)
            manifest = plan.manifest
            if options.dry_run:
                print_upload_plan(plan)
            self.engine.startup_self_test(Path(manifest.backup_path))

            batch_error: Optional[UploadBatchError] = None
            try:
                self.engine.upload(plan.uploads, manifest.update_entry, self._on_progress, token)
            except UploadBatchError as exc:
                batch_error = exc
            if options.verify:
                uploaded = [item for item in plan.uploads if item.entry.status is OperationStatus.UPLOADED]
                failures = self.engine.verify(uploaded, manifest.update_entry, token)
                if failures:
                    logger.warning("%d of %d uploads failed verification", failures, len(uploaded))
            if batch_error is not None:
                raise batch_error
            return manifest
        finally:
            if self.manifest is not None:
                self.manifest.summary.duration_seconds = time.monotonic() - started
                self.manifest.update_summary()
            self._finalize()

    def _finalize(self) -> None:
        manifest = self.manifest
        if manifest is None:
            # Nothing was planned, so there is no run worth recording.
            return
        for asset, entry in zip(self.assets, manifest.entries):
            self.trail.add_asset(asset, self.client.remote_path(entry.target_path), entry.status)
        try:
            self.audit_path = self.trail.finalize()
            logger.info("Audit trail saved to %s", self.audit_path)
            if self.options.save_audit_manifest:
                self.trail.save_additional_copy(Path(self.options.save_audit_manifest))
        except AuditWriteError as exc:
            logger.warning("Failed to write audit trail: %s", exc)

        if self.options.save_manifest:
            path = Path(self.options.save_manifest)
            try:
                manifest.save(path)
                self.metadata.save_to_manifest(path)
            except OSError as exc:
                logger.warning("Could not save manifest to %s: %s", path, exc)
            else:
                logger.info("Manifest saved to %s", path)

    def print_summaries(self) -> None:
        if self.manifest is not None:
            self.manifest.print_summary()
        self.metadata.print_summary()


__all__ = ["SyncRunner", "invocation_flags"]
