"""The plan manifest: every planned upload with its lifecycle status."""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from pathlib import Path
from typing import Any, Iterable, Mapping, Optional

from .config import DEFAULT_PATH_GRANULARITY, SyncOptions
from .models.asset import Asset, AssetFlags, AssetType, classify_by_extension
from .schemas import validate_document
from .utils.console import echo
from .utils.dates import format_cli_date, format_rfc3339, parse_cli_date, parse_timestamp, utc_now
from .utils.jsonio import read_json, write_json


class OperationStatus(str, Enum):
    PENDING = "pending"
    SKIPPED = "skipped"
    UPLOADED = "uploaded"
    FAILED = "failed"
    MISSING = "missing"
    VERIFIED = "verified"


# Statuses an entry may move to once it has left ``pending``.
_ALLOWED_TRANSITIONS: dict[OperationStatus, frozenset[OperationStatus]] = {
    OperationStatus.PENDING: frozenset(OperationStatus) - {OperationStatus.PENDING},
    OperationStatus.UPLOADED: frozenset({OperationStatus.VERIFIED, OperationStatus.FAILED}),
}


def can_transition(current: OperationStatus, new: OperationStatus) -> bool:
    return new in _ALLOWED_TRANSITIONS.get(current, frozenset())


def humanize_bytes(size: int) -> str:
    """Return *size* in binary units, e.g. ``1.5 KB`` or ``512 B``."""

    unit = 1024
    if size < unit:
        return f"{size} B"
    divisor, exponent = unit, 0
    remaining = size // unit
    while remaining >= unit:
        divisor *= unit
        exponent += 1
        remaining //= unit
    return f"{size / divisor:.1f} {'KMGTPE'[exponent]}B"


@dataclass
class ManifestConfig:
    include_hidden: bool = False
    include_recently_deleted: bool = False
    dry_run: bool = False
    skip_existing: bool = True
    verify: bool = False
    parallel: int = 1
    start_date: Optional[datetime] = None
    end_date: Optional[datetime] = None
    asset_types: list[str] = field(default_factory=list)
    path_granularity: str = DEFAULT_PATH_GRANULARITY

    @classmethod
    def from_options(cls, options: SyncOptions) -> "ManifestConfig":
        return cls(
            include_hidden=options.include_hidden,
            include_recently_deleted=options.include_recently_deleted,
            dry_run=options.dry_run,
            skip_existing=options.skip_existing,
            verify=options.verify,
            parallel=options.parallel,
            start_date=options.start_date,
            end_date=options.end_date,
            asset_types=list(options.asset_types),
            path_granularity=options.path_granularity,
        )

    def to_dict(self) -> dict[str, Any]:
        data: dict[str, Any] = {
            "include_hidden": self.include_hidden,
            "include_recently_deleted": self.include_recently_deleted,
            "dry_run": self.dry_run,
            "skip_existing": self.skip_existing,
            "verify": self.verify,
            "parallel": self.parallel,
            "path_granularity": self.path_granularity,
        }
        if self.start_date is not None:
            data["start_date"] = format_cli_date(self.start_date)
        if self.end_date is not None:
            data["end_date"] = format_cli_date(self.end_date)
        if self.asset_types:
            data["asset_types"] = list(self.asset_types)
        return data

    @classmethod
    def from_dict(cls, data: Optional[Mapping[str, Any]]) -> "ManifestConfig":
        data = data or {}
        return cls(
            include_hidden=bool(data.get("include_hidden", False)),
            include_recently_deleted=bool(data.get("include_recently_deleted", False)),
            dry_run=bool(data.get("dry_run", False)),
            skip_existing=bool(data.get("skip_existing", True)),
            verify=bool(data.get("verify", False)),
            parallel=int(data.get("parallel", 1) or 1),
            start_date=parse_cli_date(data.get("start_date"), option="start_date"),
            end_date=parse_cli_date(data.get("end_date"), end_of_day=True, option="end_date"),
            asset_types=list(data.get("asset_types") or []),
            path_granularity=str(data.get("path_granularity") or DEFAULT_PATH_GRANULARITY),
        )


@dataclass
class ManifestSummary:
    total_assets: int = 0
    processed_assets: int = 0
    skipped_assets: int = 0
    uploaded_assets: int = 0
    failed_assets: int = 0
    missing_assets: int = 0
    verified_assets: int = 0
    total_size: int = 0
    uploaded_size: int = 0
    duration_seconds: float = 0.0

    def to_dict(self) -> dict[str, Any]:
        return {
            "total_assets": self.total_assets,
            "processed_assets": self.processed_assets,
            "skipped_assets": self.skipped_assets,
            "uploaded_assets": self.uploaded_assets,
            "failed_assets": self.failed_assets,
            "missing_assets": self.missing_assets,
            "verified_assets": self.verified_assets,
            "total_size": self.total_size,
            "uploaded_size": self.uploaded_size,
            "duration_seconds": round(self.duration_seconds, 3),
        }


@dataclass
class ManifestEntry:
    source_path: str
    target_path: str
    filename: str
    asset_type: AssetType
    creation_date: Optional[datetime]
    file_size: int = 0
    checksum: str = ""
    mime_type: str = ""
    status: OperationStatus = OperationStatus.PENDING
    flags: AssetFlags = field(default_factory=AssetFlags)
    error: str = ""

    @classmethod
    def from_asset(cls, asset: Asset, target_path: str) -> "ManifestEntry":
        return cls(
            source_path=asset.source_path,
            target_path=target_path,
            filename=asset.filename,
            asset_type=asset.type,
            creation_date=asset.creation_date,
            file_size=asset.file_size,
            checksum=asset.checksum,
            mime_type=asset.mime_type,
            flags=asset.flags,
        )

    def to_dict(self) -> dict[str, Any]:
        data: dict[str, Any] = {
            "source_path": self.source_path,
            "target_path": self.target_path,
            "filename": self.filename,
            "asset_type": self.asset_type.value,
            "creation_date": format_rfc3339(self.creation_date) if self.creation_date else None,
            "file_size": self.file_size,
            "mime_type": self.mime_type,
            "status": self.status.value,
            "flags": self.flags.to_dict(),
        }
        if self.checksum:
            data["checksum"] = self.checksum
        if self.error:
            data["error"] = self.error
        return data

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> "ManifestEntry":
        filename = str(data.get("filename") or "")
        raw_type = data.get("asset_type")
        try:
            asset_type = AssetType.parse(raw_type) if raw_type else classify_by_extension(filename)
        except ValueError:
            asset_type = classify_by_extension(filename)
        return cls(
            source_path=str(data.get("source_path") or ""),
            target_path=str(data.get("target_path") or ""),
            filename=filename,
            asset_type=asset_type,
            creation_date=parse_timestamp(data.get("creation_date")),
            file_size=int(data.get("file_size") or 0),
            checksum=str(data.get("checksum") or ""),
            mime_type=str(data.get("mime_type") or ""),
            status=OperationStatus(data.get("status") or OperationStatus.PENDING.value),
            flags=AssetFlags.from_dict(data.get("flags")),
            error=str(data.get("error") or ""),
        )


class Manifest:
    """Ordered plan entries plus a summary kept current as entries change."""

    def __init__(
        self,
        backup_path: str,
        remote_target: str,
        config: Optional[ManifestConfig] = None,
        entries: Optional[Iterable[ManifestEntry]] = None,
        generated_at: Optional[datetime] = None,
    ) -> None:
        self.generated_at = generated_at or utc_now()
        self.backup_path = backup_path
        self.remote_target = remote_target
        self.config = config or ManifestConfig()
        self.entries: list[ManifestEntry] = list(entries or [])
        self.summary = ManifestSummary()
        self.update_summary()

    @classmethod
    def from_assets(
        cls,
        assets: Iterable[Asset],
        backup_path: str,
        remote_target: str,
        config: Optional[ManifestConfig] = None,
    ) -> "Manifest":
        config = config or ManifestConfig()
        entries = [
            ManifestEntry.from_asset(asset, asset.target_path or asset.generate_target_path(config.path_granularity))
            for asset in assets
        ]
        return cls(backup_path, remote_target, config=config, entries=entries)

    def update_entry(self, index: int, status: OperationStatus, error: str = "") -> None:
        """Move entry *index* to *status* and adjust the summary counters.

        Out of range indices are ignored. A transition that would move an
        entry backwards raises :class:`ValueError`.
        """

        if not 0 <= index < len(self.entries):
            return
        entry = self.entries[index]
        if entry.status is not status and not can_transition(entry.status, status):
            raise ValueError(f"invalid status transition {entry.status.value} -> {status.value}")
        self._tally(entry, -1)
        entry.status = status
        if error:
            entry.error = error
        self._tally(entry, 1)

    def update_summary(self) -> None:
        """Recompute every summary counter from the entries."""

        duration = self.summary.duration_seconds
        self.summary = ManifestSummary(total_assets=len(self.entries), duration_seconds=duration)
        for entry in self.entries:
            self.summary.total_size += entry.file_size
            self._tally(entry, 1)

    def _tally(self, entry: ManifestEntry, delta: int) -> None:
        summary = self.summary
        status = entry.status
        if status is OperationStatus.UPLOADED:
            summary.uploaded_assets += delta
            summary.uploaded_size += delta * entry.file_size
        elif status is OperationStatus.VERIFIED:
            summary.verified_assets += delta
            summary.uploaded_size += delta * entry.file_size
        elif status is OperationStatus.SKIPPED:
            summary.skipped_assets += delta
        elif status is OperationStatus.FAILED:
            summary.failed_assets += delta
        elif status is OperationStatus.MISSING:
            summary.missing_assets += delta
        if status is not OperationStatus.PENDING:
            summary.processed_assets += delta

    def get_filtered_entries(self, status: OperationStatus) -> list[ManifestEntry]:
        return [entry for entry in self.entries if entry.status is status]

    def to_dict(self) -> dict[str, Any]:
        return {
            "generated_at": format_rfc3339(self.generated_at),
            "backup_path": self.backup_path,
            "remote_target": self.remote_target,
            "config": self.config.to_dict(),
            "summary": self.summary.to_dict(),
            "entries": [entry.to_dict() for entry in self.entries],
        }

    def save(self, path: Path) -> None:
        write_json(path, self.to_dict())

    @classmethod
    def load(cls, path: Path) -> "Manifest":
        """Read and validate a manifest written by :meth:`save`."""

        data = read_json(path)
        validate_document("plan manifest", data)
        manifest = cls(
            backup_path=data["backup_path"],
            remote_target=data["remote_target"],
            config=ManifestConfig.from_dict(data.get("config")),
            entries=[ManifestEntry.from_dict(item) for item in data["entries"]],
            generated_at=parse_timestamp(data["generated_at"]),
        )
        manifest.summary.duration_seconds = float(data["summary"].get("duration_seconds", 0) or 0)
        return manifest

    def print_summary(self) -> None:
        summary = self.summary
        echo()
        echo("Manifest Summary:", style="bold")
        echo("=================")
        echo(f"Generated: {format_rfc3339(self.generated_at.replace(microsecond=0))}")
        echo(f"Backup Path: {self.backup_path}")
        echo(f"Remote Target: {self.remote_target}")
        echo()
        echo("Assets:")
        echo(f"  Total: {summary.total_assets}")
        echo(f"  Processed: {summary.processed_assets}")
        echo(f"  Uploaded: {summary.uploaded_assets}")
        echo(f"  Skipped: {summary.skipped_assets}")
        echo(f"  Failed: {summary.failed_assets}")
        echo(f"  Missing: {summary.missing_assets}")
        echo(f"  Verified: {summary.verified_assets}")
        echo()
        echo("Size:")
        echo(f"  Total: {humanize_bytes(summary.total_size)}")
        echo(f"  Uploaded: {humanize_bytes(summary.uploaded_size)}")
        if summary.duration_seconds > 0:
            echo()
            echo(f"Duration: {summary.duration_seconds:.0f}s")


__all__ = [
    "Manifest",
    "ManifestConfig",
    "ManifestEntry",
    "ManifestSummary",
    "OperationStatus",
    "can_transition",
    "humanize_bytes",
]
