"""Default configuration values for gh-photos."""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime, timezone
from pathlib import Path
from typing import Final, Optional

VERSION: Final[str] = "1.0.0"

# Core Data stores timestamps as seconds elapsed since this instant.
CORE_DATA_EPOCH: Final[datetime] = datetime(2001, 1, 1, tzinfo=timezone.utc)

# ---------------------------------------------------------------------------
# Backup layout
# ---------------------------------------------------------------------------

MANIFEST_PLIST_NAME: Final[str] = "Manifest.plist"
MANIFEST_DB_NAME: Final[str] = "Manifest.db"
STATUS_PLIST_NAME: Final[str] = "Status.plist"
INFO_PLIST_NAME: Final[str] = "Info.plist"
EXTRACTION_METADATA_NAME: Final[str] = "extraction-metadata.json"
BACKUP_SUBDIR_NAME: Final[str] = "Backup"

# A directory without Manifest.db or Status.plist still counts as a hashed
# backup once it holds more than this many two-character hex buckets.
MIN_HEX_BUCKETS: Final[int] = 10

# How far past the ``IsEncrypted`` key the boolean literal may appear.
ENCRYPTION_LOOKAHEAD_CHARS: Final[int] = 100

DEFAULT_EXTRACT_OUTPUT: Final[str] = "./extracted-backup"

PHOTOS_DB_PATTERNS: Final[tuple[str, ...]] = (
    "%Photos.sqlite",
    "%PhotoData/Photos.sqlite",
    "%Photos/Photos.sqlite",
    "%Media/PhotoData/Photos.sqlite",
)
PHOTOS_DB_DOMAINS: Final[tuple[str, ...]] = (
    "MediaDomain",
    "CameraRollDomain",
    "AppDomain-com.apple.mobileslideshow",
)
PHOTOS_DB_FALLBACK_PATHS: Final[tuple[str, ...]] = (
    "Library/Photos/Photos.sqlite",
    "PhotoData/Photos.sqlite",
    "Media/PhotoData/Photos.sqlite",
)
DCIM_FALLBACK_PATHS: Final[tuple[str, ...]] = (
    "DCIM",
    "Media/DCIM",
    "PhotoData/DCIM",
    "Library/Photos/DCIM",
)
MEDIA_DOMAIN_CANDIDATES: Final[tuple[str, ...]] = (
    "CameraRollDomain",
    "MediaDomain",
    "CameraRollDomain-Media",
    "Media",
)
DEFAULT_MEDIA_DOMAIN: Final[str] = "MediaDomain"

# Missing files below these directories are expected (derived renditions,
# caches) and are dropped without a warning.
QUIET_MISSING_MARKERS: Final[tuple[str, ...]] = ("derivatives", "Thumbnails", "PhotoData")

# ---------------------------------------------------------------------------
# Upload engine
# ---------------------------------------------------------------------------

SINGLE_CHUNK_LIMIT: Final[int] = 50
MEDIUM_PLAN_LIMIT: Final[int] = 500
MEDIUM_CHUNK_SIZE: Final[int] = 100
LARGE_CHUNK_SIZE: Final[int] = 200

# Above this many distinct target directories the pre-scan lists the whole
# remote once instead of one listing per directory.
PRESCAN_RECURSIVE_DIR_LIMIT: Final[int] = 50

BATCH_TIMEOUT_SEC: Final[float] = 30 * 60
PROCESS_POLL_INTERVAL_SEC: Final[float] = 0.1

RCLONE_EXECUTABLE: Final[str] = "rclone"
GOOGLE_DRIVE_MARKERS: Final[tuple[str, ...]] = ("gdrive", "google", "drive")
GOOGLE_DRIVE_BATCH_FLAGS: Final[tuple[str, ...]] = (
    "--fast-list",
    "--drive-chunk-size=256M",
    "--drive-upload-cutoff=256M",
    "--tpslimit=10",
)
REMOTE_METADATA_DIR: Final[str] = "metadata"

# ``2024-04-15T10-00-00Z``: RFC 3339 with characters that are unsafe in
# filenames replaced.
FILENAME_TIMESTAMP_FORMAT: Final[str] = "%Y-%m-%dT%H-%M-%SZ"

# ---------------------------------------------------------------------------
# Audit trail
# ---------------------------------------------------------------------------

AUDIT_DIR_NAME: Final[str] = "gh-photos"
LATEST_AUDIT_NAME: Final[str] = "manifest.json"

# ---------------------------------------------------------------------------
# Command line
# ---------------------------------------------------------------------------

VALID_LOG_LEVELS: Final[tuple[str, ...]] = ("debug", "info", "warn", "error")
DEFAULT_LOG_LEVEL: Final[str] = "info"
LOG_LEVEL_ENV_VAR: Final[str] = "LOG_LEVEL"
PATH_GRANULARITIES: Final[tuple[str, ...]] = ("year", "month", "day")
DEFAULT_PATH_GRANULARITY: Final[str] = "day"
CLI_DATE_FORMAT: Final[str] = "%Y-%m-%d"


@dataclass
class SyncOptions:
    """Options controlling a single ``sync`` run."""

    backup_path: Path
    remote: str
    include_hidden: bool = False
    include_recently_deleted: bool = False
    dry_run: bool = False
    skip_existing: bool = True
    verify: bool = False
    parallel: int = 1
    start_date: Optional[datetime] = None
    end_date: Optional[datetime] = None
    asset_types: list[str] = field(default_factory=list)
    ignore_patterns: list[str] = field(default_factory=list)
    path_granularity: str = DEFAULT_PATH_GRANULARITY
    save_manifest: Optional[Path] = None
    save_audit_manifest: Optional[Path] = None
    checksum: bool = False
    log_level: str = DEFAULT_LOG_LEVEL
    remote_prescan: bool = False


@dataclass
class ExtractOptions:
    """Options controlling an ``extract`` run."""

    backup_path: Path
    output_path: Path = Path(DEFAULT_EXTRACT_OUTPUT)
    skip_existing: bool = False
    verify: bool = False
    progress: bool = True
