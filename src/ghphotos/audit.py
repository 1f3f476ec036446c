"""Durable audit trail of sync runs kept under ``~/gh-photos``."""

from __future__ import annotations

import time
from dataclasses import dataclass, field
from datetime import datetime
from pathlib import Path
from typing import Any, Mapping, Optional

from .config import AUDIT_DIR_NAME, DEFAULT_LOG_LEVEL, LATEST_AUDIT_NAME, VERSION
from .errors import AuditWriteError
from .manifest import OperationStatus
from .models.asset import Asset
from .schemas import validate_document
from .utils import sysinfo
from .utils.dates import filename_timestamp, format_cli_date, format_rfc3339, parse_timestamp, utc_now
from .utils.jsonio import read_json, write_json
from .utils.logging import get_logger

logger = get_logger()

# Plan statuses folded into the three outcomes the audit trail records.
_AUDIT_STATUS = {
    OperationStatus.UPLOADED: "uploaded",
    OperationStatus.VERIFIED: "uploaded",
    OperationStatus.SKIPPED: "skipped",
    OperationStatus.FAILED: "failed",
}


def audit_status(status: OperationStatus) -> str:
    return _AUDIT_STATUS.get(status, status.value)


def audit_directory(home: Optional[Path] = None) -> Path:
    return (home or Path.home()) / AUDIT_DIR_NAME


def _optional_text(value: Any) -> Optional[str]:
    if value in (None, ""):
        return None
    return str(value)


@dataclass
class DeviceInfo:
    backup_path: str = ""
    device_name: Optional[str] = None
    device_uuid: Optional[str] = None
    ios_version: Optional[str] = None

    def to_dict(self) -> dict[str, Any]:
        data: dict[str, Any] = {"backup_path": self.backup_path}
        for key in ("device_name", "device_uuid", "ios_version"):
            value = getattr(self, key)
            if value is not None:
                data[key] = value
        return data

    @classmethod
    def from_dict(cls, data: Optional[Mapping[str, Any]]) -> "DeviceInfo":
        data = data or {}
        return cls(
            backup_path=str(data.get("backup_path") or ""),
            device_name=_optional_text(data.get("device_name")),
            device_uuid=_optional_text(data.get("device_uuid")),
            ios_version=_optional_text(data.get("ios_version")),
        )


@dataclass
class InvocationFlags:
    include_hidden: bool = False
    include_recently_deleted: bool = False
    parallel: int = 1
    skip_existing: bool = True
    dry_run: bool = False
    log_level: str = DEFAULT_LOG_LEVEL
    types: list[str] = field(default_factory=list)
    start_date: Optional[datetime] = None
    end_date: Optional[datetime] = None
    verify: bool = False
    checksum: bool = False

    def to_dict(self) -> dict[str, Any]:
        return {
            "include_hidden": self.include_hidden,
            "include_recently_deleted": self.include_recently_deleted,
            "parallel": self.parallel,
            "skip_existing": self.skip_existing,
            "dry_run": self.dry_run,
            "log_level": self.log_level,
            "types": list(self.types) or None,
            "start_date": format_rfc3339(self.start_date) if self.start_date else None,
            "end_date": format_rfc3339(self.end_date) if self.end_date else None,
            "verify": self.verify,
            "checksum": self.checksum,
        }

    @classmethod
    def from_dict(cls, data: Optional[Mapping[str, Any]]) -> "InvocationFlags":
        data = data or {}
        return cls(
            include_hidden=bool(data.get("include_hidden", False)),
            include_recently_deleted=bool(data.get("include_recently_deleted", False)),
            parallel=int(data.get("parallel") or 0),
            skip_existing=bool(data.get("skip_existing", False)),
            dry_run=bool(data.get("dry_run", False)),
            log_level=str(data.get("log_level") or ""),
            types=list(data.get("types") or []),
            start_date=parse_timestamp(data.get("start_date")),
            end_date=parse_timestamp(data.get("end_date")),
            verify=bool(data.get("verify", False)),
            checksum=bool(data.get("checksum", False)),
        )


@dataclass
class Invocation:
    remote: str = ""
    flags: InvocationFlags = field(default_factory=InvocationFlags)

    def to_dict(self) -> dict[str, Any]:
        return {"remote": self.remote, "flags": self.flags.to_dict()}

    @classmethod
    def from_dict(cls, data: Optional[Mapping[str, Any]]) -> "Invocation":
        data = data or {}
        return cls(remote=str(data.get("remote") or ""), flags=InvocationFlags.from_dict(data.get("flags")))


@dataclass
class AuditSummary:
    assets_total: int = 0
    assets_uploaded: int = 0
    assets_skipped: int = 0
    assets_failed: int = 0
    bytes_transferred: int = 0
    duration_seconds: float = 0.0

    def to_dict(self) -> dict[str, Any]:
        return {
            "assets_total": self.assets_total,
            "assets_uploaded": self.assets_uploaded,
            "assets_skipped": self.assets_skipped,
            "assets_failed": self.assets_failed,
            "bytes_transferred": self.bytes_transferred,
            "duration_seconds": round(self.duration_seconds, 3),
        }

    @classmethod
    def from_dict(cls, data: Optional[Mapping[str, Any]]) -> "AuditSummary":
        data = data or {}
        return cls(
            assets_total=int(data.get("assets_total") or 0),
            assets_uploaded=int(data.get("assets_uploaded") or 0),
            assets_skipped=int(data.get("assets_skipped") or 0),
            assets_failed=int(data.get("assets_failed") or 0),
            bytes_transferred=int(data.get("bytes_transferred") or 0),
            duration_seconds=float(data.get("duration_seconds") or 0),
        )


@dataclass
class AuditSystemInfo:
    os: str = ""
    hostname: str = ""
    arch: str = ""

    @classmethod
    def current(cls) -> "AuditSystemInfo":
        return cls(os=sysinfo.os_name(), hostname=sysinfo.hostname(), arch=sysinfo.arch())


@dataclass
class AuditAssetEntry:
    uuid: str
    local_path: str
    remote_path: str
    type: str
    status: str
    size_bytes: int = 0
    sha256: str = ""
    hidden: bool = False
    deleted: bool = False
    created_at: Optional[datetime] = None

    def to_dict(self) -> dict[str, Any]:
        data: dict[str, Any] = {
            "uuid": self.uuid,
            "local_path": self.local_path,
            "remote_path": self.remote_path,
            "size_bytes": self.size_bytes,
            "type": self.type,
            "hidden": self.hidden,
            "deleted": self.deleted,
            "created_at": format_rfc3339(self.created_at) if self.created_at else None,
            "status": self.status,
        }
        if self.sha256:
            data["sha256"] = self.sha256
        return data

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> "AuditAssetEntry":
        return cls(
            uuid=str(data["uuid"]),
            local_path=str(data["local_path"]),
            remote_path=str(data["remote_path"]),
            type=str(data["type"]),
            status=str(data["status"]),
            size_bytes=int(data.get("size_bytes") or 0),
            sha256=str(data.get("sha256") or ""),
            hidden=bool(data.get("hidden", False)),
            deleted=bool(data.get("deleted", False)),
            created_at=parse_timestamp(data.get("created_at")),
        )


@dataclass
class AuditTrail:
    run_id: str
    cli_version: str = VERSION
    device: DeviceInfo = field(default_factory=DeviceInfo)
    invocation: Invocation = field(default_factory=Invocation)
    summary: AuditSummary = field(default_factory=AuditSummary)
    system: AuditSystemInfo = field(default_factory=AuditSystemInfo.current)
    assets: list[AuditAssetEntry] = field(default_factory=list)

    def to_dict(self) -> dict[str, Any]:
        return {
            "metadata": {
                "run_id": self.run_id,
                "cli_version": self.cli_version,
                "device": self.device.to_dict(),
                "invocation": self.invocation.to_dict(),
                "summary": self.summary.to_dict(),
                "system": {"os": self.system.os, "hostname": self.system.hostname, "arch": self.system.arch},
            },
            "assets": [asset.to_dict() for asset in self.assets],
        }

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> "AuditTrail":
        metadata = data["metadata"]
        system = metadata.get("system") or {}
        return cls(
            run_id=str(metadata["run_id"]),
            cli_version=str(metadata["cli_version"]),
            device=DeviceInfo.from_dict(metadata.get("device")),
            invocation=Invocation.from_dict(metadata.get("invocation")),
            summary=AuditSummary.from_dict(metadata.get("summary")),
            system=AuditSystemInfo(
                os=str(system.get("os") or ""),
                hostname=str(system.get("hostname") or ""),
                arch=str(system.get("arch") or ""),
            ),
            assets=[AuditAssetEntry.from_dict(item) for item in data.get("assets") or []],
        )


class TrailManager:
    """Accumulate per-asset outcomes in memory and persist them on finalize."""

    def __init__(self, cli_version: str = VERSION, trail_dir: Optional[Path] = None) -> None:
        self.trail_dir = trail_dir or audit_directory()
        self.started_at = utc_now()
        self._started = time.monotonic()
        self.trail = AuditTrail(run_id=format_rfc3339(self.started_at.replace(microsecond=0)), cli_version=cli_version)

    def set_device_info(
        self,
        backup_path: str,
        device_name: Optional[str] = None,
        device_uuid: Optional[str] = None,
        ios_version: Optional[str] = None,
    ) -> None:
        self.trail.device = DeviceInfo(backup_path, device_name, device_uuid, ios_version)

    def set_invocation(self, remote: str, flags: InvocationFlags) -> None:
        self.trail.invocation = Invocation(remote=remote, flags=flags)

    def add_asset(self, asset: Asset, remote_path: str, status: OperationStatus) -> None:
        self.trail.assets.append(
            AuditAssetEntry(
                uuid=asset.id,
                local_path=asset.source_path,
                remote_path=remote_path,
                type=asset.type.audit_name,
                status=audit_status(status),
                size_bytes=asset.file_size,
                sha256=asset.checksum,
                hidden=asset.flags.hidden,
                deleted=asset.flags.recently_deleted,
                created_at=asset.creation_date,
            )
        )

    def calculate_summary(self) -> AuditSummary:
        summary = AuditSummary(duration_seconds=time.monotonic() - self._started)
        for asset in self.trail.assets:
            summary.assets_total += 1
            if asset.status == "uploaded":
                summary.assets_uploaded += 1
                summary.bytes_transferred += asset.size_bytes
            elif asset.status == "skipped":
                summary.assets_skipped += 1
            elif asset.status == "failed":
                summary.assets_failed += 1
        self.trail.summary = summary
        return summary

    @property
    def timestamped_path(self) -> Path:
        return self.trail_dir / f"manifest_{filename_timestamp(self.started_at)}.json"

    @property
    def latest_path(self) -> Path:
        return self.trail_dir / LATEST_AUDIT_NAME

    def _write(self, path: Path) -> None:
        try:
            path.parent.mkdir(parents=True, exist_ok=True)
            write_json(path, self.trail.to_dict())
        except OSError as exc:
            raise AuditWriteError(f"failed to write audit trail {path}: {exc}") from exc

    def finalize(self) -> Path:
        """Write the timestamped and latest trail files; return the timestamped path.

        Raises
        ------
        AuditWriteError
            Raised when either file cannot be written.
        """

        self.calculate_summary()
        timestamped = self.timestamped_path
        self._write(timestamped)
        self._write(self.latest_path)
        logger.debug("Audit trail written to %s", timestamped)
        return timestamped

    def save_additional_copy(self, path: Path) -> None:
        self._write(path)


def load_manifest(path: Path) -> AuditTrail:
    """Read and validate the audit trail stored at *path*."""

    data = read_json(path)
    validate_document("audit trail", data)
    return AuditTrail.from_dict(data)


def load_latest_manifest(home: Optional[Path] = None) -> AuditTrail:
    return load_manifest(audit_directory(home) / LATEST_AUDIT_NAME)


def build_sync_command(invocation: Invocation, source: str) -> str:
    """Render the ``sync`` command line that repeats *invocation* for *source*.

    >>> build_sync_command(Invocation("s3:bucket", InvocationFlags(parallel=1, skip_existing=False)), "/x")
    'sync /x s3:bucket'
    """

    flags = invocation.flags
    parts = ["sync", source, invocation.remote]
    if flags.include_hidden:
        parts.append("--include-hidden")
    if flags.include_recently_deleted:
        parts.append("--include-recently-deleted")
    if flags.parallel > 1:
        parts.append(f"--parallel={flags.parallel}")
    if flags.skip_existing:
        parts.append("--skip-existing")
    if flags.dry_run:
        parts.append("--dry-run")
    if flags.log_level and flags.log_level != DEFAULT_LOG_LEVEL:
        parts.append(f"--log-level={flags.log_level}")
    if flags.types:
        parts.append(f"--types={','.join(flags.types)}")
    if flags.start_date is not None:
        parts.append(f"--start-date={format_cli_date(flags.start_date)}")
    if flags.end_date is not None:
        parts.append(f"--end-date={format_cli_date(flags.end_date)}")
    if flags.verify:
        parts.append("--verify")
    if flags.checksum:
        parts.append("--checksum")
    return " ".join(parts)


__all__ = [
    "AuditAssetEntry",
    "AuditSummary",
    "AuditSystemInfo",
    "AuditTrail",
    "DeviceInfo",
    "Invocation",
    "InvocationFlags",
    "TrailManager",
    "audit_directory",
    "audit_status",
    "build_sync_command",
    "load_latest_manifest",
    "load_manifest",
]
