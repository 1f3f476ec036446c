"""Command metadata recorded next to extracted backups and after syncs."""

from __future__ import annotations

import json
import plistlib
from dataclasses import asdict, dataclass, field
from datetime import datetime
from pathlib import Path
from typing import Any, Iterable, Optional

from .backup.manifest_db import is_backup_encrypted
from .config import INFO_PLIST_NAME, MANIFEST_DB_NAME, VERSION
from .errors import GhPhotosError
from .models.asset import Asset, AssetType
from .utils import sysinfo
from .utils.console import echo
from .utils.dates import format_rfc3339, utc_now
from .utils.jsonio import write_json
from .utils.logging import get_logger

logger = get_logger()

_INFO_PLIST_KEYS = {
    "device_name": "Device Name",
    "device_model": "Product Type",
    "ios_version": "Product Version",
    "backup_date": "Date",
    "device_uuid": "Unique Identifier",
}


@dataclass
class SystemInfo:
    os: str = ""
    arch: str = ""
    version: str = ""
    hostname: str = ""

    @classmethod
    def current(cls) -> "SystemInfo":
        return cls(
            os=sysinfo.os_name(),
            arch=sysinfo.arch(),
            version=sysinfo.os_version(),
            hostname=sysinfo.hostname(),
        )


@dataclass
class IOSBackupInfo:
    backup_path: str = ""
    device_name: Optional[str] = None
    device_model: Optional[str] = None
    device_uuid: Optional[str] = None
    ios_version: Optional[str] = None
    backup_date: Optional[str] = None
    backup_type: str = "directory"
    is_encrypted: bool = False
    total_files: Optional[int] = None


@dataclass
class AssetCounts:
    photos: int = 0
    videos: int = 0
    live_photos: int = 0
    screenshots: int = 0
    burst: int = 0
    total: int = 0

    @classmethod
    def from_assets(cls, assets: Iterable[Asset]) -> "AssetCounts":
        counts = cls()
        for asset in assets:
            counts.total += 1
            if asset.type is AssetType.PHOTO:
                counts.photos += 1
            elif asset.type is AssetType.VIDEO:
                counts.videos += 1
            elif asset.type is AssetType.LIVE_PHOTO:
                counts.live_photos += 1
            elif asset.type is AssetType.SCREENSHOT:
                counts.screenshots += 1
            elif asset.type is AssetType.BURST:
                counts.burst += 1
        return counts


def _plist_text(value: Any) -> Optional[str]:
    if value is None:
        return None
    if isinstance(value, datetime):
        return format_rfc3339(value)
    text = str(value)
    return text or None


def read_info_plist(backup_root: Path) -> dict[str, Optional[str]]:
    """Return the device fields of ``Info.plist``.

    Raises ``OSError`` when the file is missing and ``plistlib.InvalidFileException``
    when it cannot be decoded.
    """

    with (backup_root / INFO_PLIST_NAME).open("rb") as handle:
        data = plistlib.load(handle)
    return {field_name: _plist_text(data.get(key)) for field_name, key in _INFO_PLIST_KEYS.items()}


@dataclass
class CommandMetadata:
    """Describes the machine, the backup and the assets of one command run."""

    completed_at: datetime = field(default_factory=utc_now)
    cli_version: str = VERSION
    system: SystemInfo = field(default_factory=SystemInfo.current)
    ios_backup: IOSBackupInfo = field(default_factory=IOSBackupInfo)
    asset_counts: AssetCounts = field(default_factory=AssetCounts)

    def set_backup_info(self, backup_root: Path) -> None:
        """Fill :attr:`ios_backup` from the files found in *backup_root*.

        Missing or unreadable device information only logs a warning.
        """

        info = self.ios_backup
        info.backup_path = str(backup_root)
        info.backup_type = "hashed" if (backup_root / MANIFEST_DB_NAME).is_file() else "directory"
        try:
            info.is_encrypted = is_backup_encrypted(backup_root)
        except GhPhotosError as exc:
            logger.debug("Could not read encryption flag: %s", exc)
        try:
            fields = read_info_plist(backup_root)
        except (OSError, plistlib.InvalidFileException, ValueError) as exc:
            logger.warning("Could not extract device info: %s", exc)
            return
        info.device_name = fields["device_name"]
        info.device_model = fields["device_model"]
        info.ios_version = fields["ios_version"]
        info.backup_date = fields["backup_date"]
        info.device_uuid = fields["device_uuid"]

    def set_asset_counts(self, assets: Iterable[Asset]) -> None:
        self.asset_counts = AssetCounts.from_assets(assets)

    def to_dict(self) -> dict[str, Any]:
        backup = {key: value for key, value in asdict(self.ios_backup).items() if value is not None}
        system = {key: value for key, value in asdict(self.system).items() if value}
        return {
            "completed_at": format_rfc3339(self.completed_at.replace(microsecond=0)),
            "cli_version": self.cli_version,
            "system": system,
            "ios_backup": backup,
            "asset_counts": asdict(self.asset_counts),
        }

    def print_summary(self) -> None:
        echo()
        echo("Command Metadata Summary:", style="bold")
        echo(f"  Completed at: {format_rfc3339(self.completed_at.replace(microsecond=0))}")
        echo(f"  CLI version: {self.cli_version}")
        system_line = f"  System: {self.system.os} {self.system.arch}"
        if self.system.version:
            system_line += f" ({self.system.version})"
        echo(system_line)

        backup = self.ios_backup
        if backup.backup_path:
            echo()
            echo("iOS Backup Info:", style="bold")
            echo(f"  Backup path: {backup.backup_path}")
            echo(f"  Backup type: {backup.backup_type}")
            echo(f"  Encrypted: {str(backup.is_encrypted).lower()}")
            for label, value in (
                ("Device name", backup.device_name),
                ("Device model", backup.device_model),
                ("iOS version", backup.ios_version),
                ("Backup date", backup.backup_date),
                ("Total files", backup.total_files),
            ):
                if value is not None:
                    echo(f"  {label}: {value}")

        counts = self.asset_counts
        if counts.total > 0:
            echo()
            echo("Asset Type Counts:", style="bold")
            echo(f"  Photos: {counts.photos}")
            echo(f"  Videos: {counts.videos}")
            echo(f"  Live Photos: {counts.live_photos}")
            echo(f"  Screenshots: {counts.screenshots}")
            echo(f"  Burst: {counts.burst}")
            echo(f"  Total: {counts.total}")

    def save_to_manifest(self, path: Path, assets: Optional[Iterable[Asset]] = None) -> None:
        """Merge this metadata into the JSON document at *path*.

        Existing keys are kept; a file that is not valid JSON is replaced.
        When *assets* is given it is stored under ``"assets"``.
        """

        document: dict[str, Any] = {}
        if path.exists():
            try:
                loaded = json.loads(path.read_text(encoding="utf-8"))
            except json.JSONDecodeError:
                loaded = None
            if isinstance(loaded, dict):
                document = loaded
        document["command_metadata"] = self.to_dict()
        if assets is not None:
            document["assets"] = [asset.to_dict() for asset in assets]
        write_json(path, document)


__all__ = [
    "AssetCounts",
    "CommandMetadata",
    "IOSBackupInfo",
    "SystemInfo",
    "read_info_plist",
]
