"""Asset filtering and upload plan construction."""

from __future__ import annotations

import os
from dataclasses import dataclass, field
from enum import Enum
from typing import Iterable, Optional

from .cancellation import CancellationToken
from .config import SyncOptions
from .manifest import Manifest, ManifestEntry, humanize_bytes
from .models.asset import Asset
from .utils.console import echo
from .utils.logging import get_logger
from .utils.pathutils import is_ignored

logger = get_logger()

_CANCEL_CHECK_INTERVAL = 500


class UploadAction(str, Enum):
    UPLOAD = "upload"
    SKIP = "skip"
    ERROR = "error"


@dataclass
class FilterCounts:
    """Assets removed by each filter. The categories never overlap."""

    hidden: int = 0
    recently_deleted: int = 0
    date_range: int = 0
    asset_type: int = 0
    ignored: int = 0

    @property
    def total(self) -> int:
        return self.hidden + self.recently_deleted + self.date_range + self.asset_type + self.ignored


class AssetFilter:
    """Apply the exclusion flags, date range, type allow-list and ignore patterns.

    Filters run in that order and the first one that rejects an asset is the
    one that counts it.
    """

    def __init__(self, options: SyncOptions) -> None:
        self.include_hidden = options.include_hidden
        self.include_recently_deleted = options.include_recently_deleted
        self.start_date = options.start_date
        self.end_date = options.end_date
        self.asset_types = [value for value in options.asset_types if value.strip()]
        self.ignore_patterns = [value for value in options.ignore_patterns if value]

    def _in_date_range(self, asset: Asset) -> bool:
        if self.start_date is None and self.end_date is None:
            return True
        created = asset.creation_date
        if created is None:
            return False
        if self.start_date is not None and created < self.start_date:
            return False
        if self.end_date is not None and created > self.end_date:
            return False
        return True

    def _type_allowed(self, asset: Asset) -> bool:
        if not self.asset_types:
            return True
        return any(asset.type.matches(value) for value in self.asset_types)

    def _ignored(self, asset: Asset) -> bool:
        if not self.ignore_patterns:
            return False
        return is_ignored(asset.source_path, self.ignore_patterns) or is_ignored(asset.filename, self.ignore_patterns)

    def apply(
        self, assets: Iterable[Asset], token: Optional[CancellationToken] = None
    ) -> tuple[list[Asset], FilterCounts]:
        counts = FilterCounts()
        kept: list[Asset] = []
        for position, asset in enumerate(assets, start=1):
            if token is not None and position % _CANCEL_CHECK_INTERVAL == 0:
                token.raise_if_cancelled()
            flags = asset.flags
            if flags.hidden and not self.include_hidden:
                counts.hidden += 1
            elif flags.recently_deleted and not self.include_recently_deleted:
                counts.recently_deleted += 1
            elif not self._in_date_range(asset):
                counts.date_range += 1
            elif not self._type_allowed(asset):
                counts.asset_type += 1
            elif self._ignored(asset):
                counts.ignored += 1
            else:
                kept.append(asset)

        if counts.hidden:
            logger.info("Excluding %d hidden assets (use --include-hidden to include them)", counts.hidden)
        if counts.recently_deleted:
            logger.info(
                "Excluding %d recently deleted assets (use --include-recently-deleted to include them)",
                counts.recently_deleted,
            )
        if counts.date_range:
            logger.info("Excluding %d assets outside the requested date range", counts.date_range)
        if counts.asset_type:
            logger.info("Excluding %d assets not matching --types %s", counts.asset_type, ",".join(self.asset_types))
        if counts.ignored:
            logger.info("Excluding %d assets matching ignore patterns", counts.ignored)
        return kept, counts


@dataclass
class PlanEntry:
    """One manifest entry plus the action the upload engine should take."""

    index: int
    entry: ManifestEntry
    action: UploadAction = UploadAction.UPLOAD
    reason: str = ""

    @property
    def source_path(self) -> str:
        return self.entry.source_path

    @property
    def target_path(self) -> str:
        return self.entry.target_path

    @property
    def filename(self) -> str:
        return self.entry.filename

    @property
    def file_size(self) -> int:
        return self.entry.file_size


@dataclass
class UploadPlan:
    manifest: Manifest
    entries: list[PlanEntry] = field(default_factory=list)
    filter_counts: FilterCounts = field(default_factory=FilterCounts)

    def with_action(self, action: UploadAction) -> list[PlanEntry]:
        return [entry for entry in self.entries if entry.action is action]

    @property
    def uploads(self) -> list[PlanEntry]:
        return self.with_action(UploadAction.UPLOAD)

    @property
    def skips(self) -> list[PlanEntry]:
        return self.with_action(UploadAction.SKIP)

    @property
    def errors(self) -> list[PlanEntry]:
        return self.with_action(UploadAction.ERROR)

    @property
    def upload_size(self) -> int:
        return sum(entry.file_size for entry in self.uploads)


def create_upload_plan(
    manifest: Manifest,
    existing: Optional[set[str]] = None,
    filter_counts: Optional[FilterCounts] = None,
    token: Optional[CancellationToken] = None,
) -> UploadPlan:
    """Build an :class:`UploadPlan` covering every entry of *manifest*.

    Entries whose target path is in *existing* (remote paths relative to the
    remote base) become ``skip``. Entries whose source file vanished since
    parsing, or that have no target path, become ``error``.
    """

    existing = existing or set()
    plan = UploadPlan(manifest=manifest, filter_counts=filter_counts or FilterCounts())
    for index, entry in enumerate(manifest.entries):
        if token is not None and index % _CANCEL_CHECK_INTERVAL == 0:
            token.raise_if_cancelled()
        if not entry.target_path:
            plan.entries.append(PlanEntry(index, entry, UploadAction.ERROR, "no target path"))
        elif not os.path.exists(entry.source_path):
            plan.entries.append(PlanEntry(index, entry, UploadAction.ERROR, "source file not found"))
        elif entry.target_path in existing:
            plan.entries.append(PlanEntry(index, entry, UploadAction.SKIP, "already exists"))
        else:
            plan.entries.append(PlanEntry(index, entry))

    logger.info(
        "Upload plan created: %d to upload, %d to skip, %d errors",
        len(plan.uploads),
        len(plan.skips),
        len(plan.errors),
    )
    return plan


def print_upload_plan(plan: UploadPlan) -> None:
    echo()
    echo("Upload Plan:", style="bold")
    echo("============")
    for item in plan.entries:
        if item.action is UploadAction.UPLOAD:
            echo(f"UPLOAD: {item.filename} -> {item.target_path} ({humanize_bytes(item.file_size)})")
        elif item.action is UploadAction.SKIP:
            echo(f"SKIP:   {item.filename} ({item.reason})", style="dim")
        else:
            echo(f"ERROR:  {item.filename} ({item.reason})", style="red")
    echo()
    echo("Summary:")
    echo(f"  Upload: {len(plan.uploads)} files ({humanize_bytes(plan.upload_size)})")
    echo(f"  Skip: {len(plan.skips)} files")
    echo(f"  Errors: {len(plan.errors)} files")
    if plan.filter_counts.total:
        echo(f"  Filtered out: {plan.filter_counts.total} assets")


__all__ = [
    "AssetFilter",
    "FilterCounts",
    "PlanEntry",
    "UploadAction",
    "UploadPlan",
    "create_upload_plan",
    "print_upload_plan",
]
