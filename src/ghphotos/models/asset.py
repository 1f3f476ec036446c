"""Asset records produced by the catalog reader or extraction metadata."""

from __future__ import annotations

import posixpath
from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from pathlib import Path
from typing import Any, Mapping, Optional

from ..config import DEFAULT_PATH_GRANULARITY
from ..utils.dates import format_rfc3339, parse_timestamp
from ..utils.hashutils import file_sha256


class AssetType(str, Enum):
    """Classification of an asset; the value doubles as the remote folder name."""

    PHOTO = "photos"
    VIDEO = "videos"
    SCREENSHOT = "screenshots"
    BURST = "burst"
    LIVE_PHOTO = "live_photos"

    @property
    def audit_name(self) -> str:
        """Singular form used in audit trails (``photo``, ``live_photo`` ...)."""

        return _AUDIT_NAMES[self]

    def matches(self, value: str) -> bool:
        """Case-insensitive match against the folder name or the singular form."""

        wanted = value.strip().lower()
        return wanted in (self.value, self.audit_name)

    @classmethod
    def parse(cls, value: str) -> "AssetType":
        for member in cls:
            if member.matches(value):
                return member
        raise ValueError(f"unknown asset type: {value!r}")


_AUDIT_NAMES = {
    AssetType.PHOTO: "photo",
    AssetType.VIDEO: "video",
    AssetType.SCREENSHOT: "screenshot",
    AssetType.BURST: "burst",
    AssetType.LIVE_PHOTO: "live_photo",
}

_VIDEO_EXTENSIONS = frozenset({".mov", ".mp4", ".m4v", ".avi", ".mkv", ".webm"})

_MIME_TYPES = {
    ".heic": "image/heif",
    ".heif": "image/heif",
    ".jpg": "image/jpeg",
    ".jpeg": "image/jpeg",
    ".png": "image/png",
    ".gif": "image/gif",
    ".bmp": "image/bmp",
    ".tiff": "image/tiff",
    ".tif": "image/tiff",
    ".webp": "image/webp",
    ".mov": "video/quicktime",
    ".mp4": "video/mp4",
    ".m4v": "video/mp4",
    ".avi": "video/avi",
    ".mkv": "video/x-matroska",
    ".webm": "video/webm",
}
DEFAULT_MIME_TYPE = "application/octet-stream"

# Extraction metadata written by older releases used Go-style field names.
_LEGACY_FLAG_KEYS = {
    "Hidden": "hidden",
    "RecentlyDeleted": "recently_deleted",
    "Screenshot": "screenshot",
    "Burst": "burst",
    "LivePhoto": "live_photo",
    "BurstID": "burst_id",
    "LivePhotoVideoID": "live_photo_pair_id",
}


def _extension(filename: str) -> str:
    return posixpath.splitext(filename.replace("\\", "/"))[1].lower()


def _parse_date(value: Any) -> Optional[datetime]:
    parsed = parse_timestamp(value) if isinstance(value, str) else None
    # Year 1 is the zero instant written for unknown dates.
    if parsed is not None and parsed.year <= 1:
        return None
    return parsed


def classify_by_extension(filename: str) -> AssetType:
    """Return :attr:`AssetType.VIDEO` for video extensions and photo otherwise."""

    if _extension(filename) in _VIDEO_EXTENSIONS:
        return AssetType.VIDEO
    return AssetType.PHOTO


def infer_mime_type(filename: str) -> str:
    return _MIME_TYPES.get(_extension(filename), DEFAULT_MIME_TYPE)


@dataclass(slots=True)
class AssetFlags:
    hidden: bool = False
    recently_deleted: bool = False
    screenshot: bool = False
    burst: bool = False
    live_photo: bool = False
    burst_id: Optional[str] = None
    live_photo_pair_id: Optional[str] = None

    def to_dict(self) -> dict[str, Any]:
        return {
            "hidden": self.hidden,
            "recently_deleted": self.recently_deleted,
            "screenshot": self.screenshot,
            "burst": self.burst,
            "live_photo": self.live_photo,
            "burst_id": self.burst_id,
            "live_photo_pair_id": self.live_photo_pair_id,
        }

    @classmethod
    def from_dict(cls, data: Optional[Mapping[str, Any]]) -> "AssetFlags":
        if not data:
            return cls()
        values: dict[str, Any] = {}
        for key, value in data.items():
            name = _LEGACY_FLAG_KEYS.get(key, key)
            if name in {"burst_id", "live_photo_pair_id"}:
                values[name] = str(value) if value not in (None, "") else None
            elif name in {"hidden", "recently_deleted", "screenshot", "burst", "live_photo"}:
                values[name] = bool(value)
        return cls(**values)


def classify_asset(filename: str, flags: AssetFlags) -> AssetType:
    """Resolve the asset type: screenshot, then live photo, then burst, then extension."""

    if flags.screenshot:
        return AssetType.SCREENSHOT
    if flags.live_photo:
        return AssetType.LIVE_PHOTO
    if flags.burst:
        return AssetType.BURST
    return classify_by_extension(filename)


@dataclass
class Asset:
    """A single photo or video from the device catalog."""

    id: str
    source_path: str
    filename: str
    type: AssetType
    creation_date: Optional[datetime]
    modified_date: Optional[datetime] = None
    flags: AssetFlags = field(default_factory=AssetFlags)
    file_size: int = 0
    checksum: str = ""
    mime_type: str = ""
    target_path: str = ""

    def is_valid(self) -> bool:
        return bool(self.id and self.source_path and self.filename and self.creation_date is not None)

    def should_exclude(self, include_hidden: bool, include_recently_deleted: bool) -> bool:
        """Return ``True`` when a hidden or trashed flag is set and not opted into."""

        if self.flags.hidden and not include_hidden:
            return True
        if self.flags.recently_deleted and not include_recently_deleted:
            return True
        return False

    def generate_target_path(self, granularity: str = DEFAULT_PATH_GRANULARITY) -> str:
        """Return the remote-relative path for this asset.

        ``day`` yields ``YYYY/MM/DD/<type>/<filename>``, ``month`` drops the
        day component and ``year`` keeps only the year. Separators are always
        forward slashes.
        """

        if self.creation_date is None:
            raise ValueError(f"asset {self.id} has no creation date")
        created = self.creation_date
        year = f"{created.year:04d}"
        month = f"{created.month:02d}"
        day = f"{created.day:02d}"
        if granularity == "year":
            parts = [year]
        elif granularity == "month":
            parts = [year, month]
        else:
            parts = [year, month, day]
        return posixpath.join(*parts, self.type.value, self.filename)

    def compute_checksum(self) -> str:
        """Compute and store the SHA-256 digest of the source file."""

        if not self.source_path:
            raise ValueError("source path is empty")
        self.checksum = file_sha256(Path(self.source_path))
        return self.checksum

    def enrich(self) -> None:
        """Fill in size and MIME type from the file on disk.

        Raises ``OSError`` when the source file does not exist.
        """

        self.file_size = Path(self.source_path).stat().st_size
        self.mime_type = infer_mime_type(self.filename)

    def to_dict(self) -> dict[str, Any]:
        data: dict[str, Any] = {
            "id": self.id,
            "source_path": self.source_path,
            "filename": self.filename,
            "type": self.type.value,
            "creation_date": format_rfc3339(self.creation_date) if self.creation_date else None,
            "modified_date": format_rfc3339(self.modified_date) if self.modified_date else None,
            "flags": self.flags.to_dict(),
            "file_size": self.file_size,
            "mime_type": self.mime_type,
        }
        if self.checksum:
            data["checksum"] = self.checksum
        if self.target_path:
            data["target_path"] = self.target_path
        return data

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> "Asset":
        filename = str(data.get("filename") or "")
        flags = AssetFlags.from_dict(data.get("flags"))
        raw_type = data.get("type")
        try:
            asset_type = AssetType.parse(raw_type) if raw_type else classify_asset(filename, flags)
        except ValueError:
            asset_type = classify_asset(filename, flags)
        return cls(
            id=str(data.get("id") or ""),
            source_path=str(data.get("source_path") or ""),
            filename=filename,
            type=asset_type,
            creation_date=_parse_date(data.get("creation_date")),
            modified_date=_parse_date(data.get("modified_date")),
            flags=flags,
            file_size=int(data.get("file_size") or 0),
            checksum=str(data.get("checksum") or ""),
            mime_type=str(data.get("mime_type") or ""),
            target_path=str(data.get("target_path") or ""),
        )


__all__ = [
    "Asset",
    "AssetFlags",
    "AssetType",
    "DEFAULT_MIME_TYPE",
    "classify_asset",
    "classify_by_extension",
    "infer_mime_type",
]
