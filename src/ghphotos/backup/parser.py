"""Turn a backup directory into a stream of :class:`~ghphotos.models.asset.Asset`.

Two layouts are supported. A *hashed* backup is what iTunes or Finder writes:
the photo catalog is read from ``Photos.sqlite`` and file bytes are found
through ``Manifest.db``. An *extracted* backup is the output of
``gh-photos extract``; its ``extraction-metadata.json`` sidecar already holds
the asset list and only the source paths need to be re-pointed at the
extracted tree.
"""

from __future__ import annotations

import os
from dataclasses import dataclass, field
from pathlib import Path
from typing import Optional, Union

from ..cancellation import CancellationToken
from ..config import (
    DCIM_FALLBACK_PATHS,
    DEFAULT_MEDIA_DOMAIN,
    EXTRACTION_METADATA_NAME,
    MANIFEST_DB_NAME,
    MEDIA_DOMAIN_CANDIDATES,
    PHOTOS_DB_FALLBACK_PATHS,
    QUIET_MISSING_MARKERS,
)
from ..errors import EncryptedBackupError, GhPhotosError, ManifestDBError, PhotosDatabaseError
from ..models.asset import Asset
from ..photos.database import PhotosDatabase, is_photos_database
from ..schemas import validate_document
from ..utils.jsonio import read_json
from ..utils.logging import get_logger
from ..utils.pathutils import to_posix
from .locator import resolve_backup_path, validate_backup_directory
from .manifest_db import ManifestDB, is_backup_encrypted

logger = get_logger()

ENCRYPTED_BACKUP_MESSAGE = (
    "encrypted backups are not supported - this tool only works with unencrypted iTunes/Finder backups"
)

_ENRICH_PROGRESS_INTERVAL = 100
_RESOLVE_PROGRESS_INTERVAL = 5000
_INDEX_PROGRESS_INTERVAL = 2000
_HASHED_MEDIA_DOMAIN = "CameraRollDomain"


@dataclass
class HashedSource:
    """An iTunes/Finder backup read through its catalog and file index."""

    photos_db: PhotosDatabase
    dcim_root: Path
    manifest: Optional[ManifestDB] = None


@dataclass
class ExtractedSource:
    """A tree produced by ``extract`` with its metadata sidecar."""

    metadata_path: Path
    media_domain: str
    assets: list[Asset] = field(default_factory=list)


BackupSource = Union[HashedSource, ExtractedSource]


def find_photos_database(backup_root: Path) -> Path:
    """Locate a valid ``Photos.sqlite`` for *backup_root*.

    ``Manifest.db`` is consulted first. Then the well known relative paths
    are tried and finally the whole tree is walked.

    Raises
    ------
    PhotosDatabaseError
        Raised when no candidate holds a ``ZASSET`` table.
    """

    if (backup_root / MANIFEST_DB_NAME).is_file():
        try:
            with ManifestDB.open(backup_root) as manifest:
                candidate = manifest.find_photos_database()
            if is_photos_database(candidate):
                logger.debug("Found Photos.sqlite via Manifest.db at %s", candidate)
                return candidate
            logger.debug("Photos.sqlite from Manifest.db at %s has no ZASSET table", candidate)
        except ManifestDBError as exc:
            logger.debug("Manifest.db lookup for Photos.sqlite failed: %s", exc)

    for relative in PHOTOS_DB_FALLBACK_PATHS:
        candidate = backup_root / relative
        if candidate.is_file() and is_photos_database(candidate):
            return candidate

    for dirpath, _dirnames, filenames in os.walk(backup_root):
        if "Photos.sqlite" in filenames:
            candidate = Path(dirpath) / "Photos.sqlite"
            if is_photos_database(candidate):
                return candidate
    raise PhotosDatabaseError("could not locate Photos.sqlite in backup directory")


def find_dcim_directory(backup_root: Path) -> Path:
    """Return the directory catalog ``ZDIRECTORY`` values are relative to.

    Hashed backups whose index lists media files use the backup root itself.
    """

    if (backup_root / MANIFEST_DB_NAME).is_file():
        try:
            with ManifestDB.open(backup_root) as manifest:
                if manifest.has_media_files():
                    return backup_root
        except ManifestDBError as exc:
            logger.debug("Manifest.db media check failed: %s", exc)

    for relative in DCIM_FALLBACK_PATHS:
        candidate = backup_root / relative
        if candidate.is_dir():
            return candidate

    for dirpath, dirnames, _filenames in os.walk(backup_root):
        if "DCIM" in dirnames:
            return Path(dirpath) / "DCIM"
    raise PhotosDatabaseError("could not locate DCIM directory in backup")


def find_media_domain(root: Path) -> str:
    """Pick the extracted domain directory that holds the camera roll."""

    existing = [name for name in MEDIA_DOMAIN_CANDIDATES if (root / name).is_dir()]
    for name in existing:
        if (root / name / "Media" / "DCIM").is_dir() or (root / name / "DCIM").is_dir():
            return name
    if existing:
        return existing[0]
    try:
        children = sorted(child.name for child in root.iterdir() if child.is_dir())
    except OSError:
        children = []
    for name in children:
        if "Domain" in name:
            return name
    return DEFAULT_MEDIA_DOMAIN


@dataclass
class MediaIndex:
    """Lookup tables built from one walk over the extracted DCIM trees."""

    by_filename: dict[str, list[str]] = field(default_factory=dict)
    by_dcim_path: dict[str, str] = field(default_factory=dict)
    file_count: int = 0


def build_media_index(root: Path, media_domain: str) -> MediaIndex:
    index = MediaIndex()
    domain_root = root / media_domain
    for media_root in (domain_root / "Media" / "DCIM", domain_root / "DCIM", domain_root / "Media" / "PhotoData"):
        if not media_root.is_dir():
            continue
        counted = 0
        for dirpath, _dirnames, filenames in os.walk(media_root):
            for name in filenames:
                full = os.path.join(dirpath, name)
                index.by_filename.setdefault(name, []).append(full)
                slashed = to_posix(full)
                marker = slashed.find("/DCIM/")
                if marker != -1:
                    index.by_dcim_path[slashed[marker + len("/DCIM/") :]] = full
                index.file_count += 1
                counted += 1
                if counted % _INDEX_PROGRESS_INTERVAL == 0:
                    logger.debug("Indexed %d files so far in %s...", counted, media_root)
    return index


def resolve_extracted_source_path(asset: Asset, root: Path, media_domain: str, index: MediaIndex) -> tuple[str, bool]:
    """Return ``(path, precise)`` for *asset* inside an extracted tree.

    ``precise`` is ``False`` when the path is only a guess under the primary
    DCIM root.
    """

    original = to_posix(asset.source_path)
    domain_root = root / media_domain
    if "DCIM" in original:
        marker = original.find("DCIM/")
        if marker != -1:
            found = index.by_dcim_path.get(original[marker + len("DCIM/") :])
            if found is not None:
                return found, True
        candidates = index.by_filename.get(asset.filename)
        if candidates:
            return candidates[0], True
        return str(domain_root / "Media" / "DCIM" / asset.filename), False

    media_path = domain_root / "Media" / asset.filename
    if media_path.exists():
        return str(media_path), True
    return str(domain_root / asset.filename), True


def _load_extracted_source(root: Path) -> ExtractedSource:
    metadata_path = root / EXTRACTION_METADATA_NAME
    try:
        document = read_json(metadata_path)
    except OSError as exc:
        raise PhotosDatabaseError(f"failed to read extraction metadata: {exc}") from exc
    validate_document("extraction metadata", document)
    assets = [Asset.from_dict(item) for item in document.get("assets") or []]

    media_domain = find_media_domain(root)
    logger.info("Detected extracted backup directory (%s). Preparing fast path index...", media_domain)
    index = build_media_index(root, media_domain)
    logger.info(
        "Indexing complete. %d media files indexed for fast lookup. Resolving asset paths...",
        index.file_count,
    )

    imprecise = 0
    total = len(assets)
    for position, asset in enumerate(assets, start=1):
        if position % _RESOLVE_PROGRESS_INTERVAL == 0:
            logger.debug("Resolved %d/%d assets (%.1f%%)", position, total, position / total * 100)
        asset.source_path, precise = resolve_extracted_source_path(asset, root, media_domain, index)
        if not precise:
            imprecise += 1
    if imprecise:
        logger.warning(
            "%d assets could not be precisely resolved via index; using fallback paths.", imprecise
        )
    logger.info("Asset path resolution complete. Proceeding with %d assets.", total)
    return ExtractedSource(metadata_path=metadata_path, media_domain=media_domain, assets=assets)


def _is_quiet_missing(path: str) -> bool:
    return any(marker in path for marker in QUIET_MISSING_MARKERS)


class BackupParser:
    """Parse assets out of a hashed or extracted backup.

    Use :meth:`open` rather than the constructor; it resolves the backup
    root, refuses encrypted backups and picks the source kind.
    """

    def __init__(self, backup_path: Path, source: BackupSource) -> None:
        self.backup_path = backup_path
        self.source = source

    @classmethod
    def open(cls, backup_path: Path | str) -> "BackupParser":
        root = resolve_backup_path(Path(backup_path))
        validate_backup_directory(root)

        if (root / EXTRACTION_METADATA_NAME).is_file():
            return cls(root, _load_extracted_source(root))

        if is_backup_encrypted(root):
            raise EncryptedBackupError(ENCRYPTED_BACKUP_MESSAGE)

        photos_path = find_photos_database(root)
        logger.debug("Using Photos database at %s", photos_path)
        photos_db = PhotosDatabase(photos_path)
        manifest: Optional[ManifestDB] = None
        try:
            dcim_root = find_dcim_directory(root)
            if (root / MANIFEST_DB_NAME).is_file():
                manifest = ManifestDB.open(root)
                manifest.validate_schema()
        except GhPhotosError:
            photos_db.close()
            if manifest is not None:
                manifest.close()
            raise
        return cls(root, HashedSource(photos_db=photos_db, dcim_root=dcim_root, manifest=manifest))

    @property
    def is_extracted(self) -> bool:
        return isinstance(self.source, ExtractedSource)

    def __enter__(self) -> "BackupParser":
        return self

    def __exit__(self, *exc_info) -> None:
        self.close()

    def close(self) -> None:
        if isinstance(self.source, HashedSource):
            self.source.photos_db.close()
            if self.source.manifest is not None:
                self.source.manifest.close()

    def parse_assets_for_extraction(self, token: Optional[CancellationToken] = None) -> list[Asset]:
        """Return catalog assets without touching the files they point to."""

        if isinstance(self.source, ExtractedSource):
            return list(self.source.assets)
        return self.source.photos_db.get_assets(self.source.dcim_root, token=token)

    def parse_assets(self, token: Optional[CancellationToken] = None) -> list[Asset]:
        """Return every valid asset whose file could be found and enriched."""

        source = self.source
        if isinstance(source, ExtractedSource):
            logger.info("Processing %d extracted assets...", len(source.assets))
            assets = list(source.assets)
        else:
            logger.info("Querying Photos database...")
            assets = source.photos_db.get_assets(source.dcim_root, token=token)
            logger.info("Found %d assets in Photos database, enriching with file information...", len(assets))
            if source.manifest is not None:
                self._resolve_hashed_paths(assets, source.manifest, source.dcim_root)

        valid: list[Asset] = []
        total = len(assets)
        for position, asset in enumerate(assets, start=1):
            if token is not None and position % _ENRICH_PROGRESS_INTERVAL == 0:
                token.raise_if_cancelled()
            if position % _ENRICH_PROGRESS_INTERVAL == 0 or position == total:
                logger.debug("Asset enrichment progress: %d/%d (%.1f%%)", position, total, position / total * 100)
            try:
                asset.enrich()
            except OSError as exc:
                if not _is_quiet_missing(asset.source_path):
                    logger.warning("Failed to enrich asset %s: source file not found: %s", asset.filename, exc)
                continue
            if asset.is_valid():
                valid.append(asset)
        logger.info("Asset enrichment completed. %d valid assets ready for upload.", len(valid))
        return valid

    @staticmethod
    def _resolve_hashed_paths(assets: list[Asset], manifest: ManifestDB, dcim_root: Path) -> None:
        root = str(dcim_root)
        for asset in assets:
            if os.path.exists(asset.source_path):
                continue
            relative = to_posix(os.path.relpath(asset.source_path, root))
            logical = f"Media/{relative}"
            hashed = manifest.lookup(_HASHED_MEDIA_DOMAIN, logical) or manifest.lookup(None, logical)
            if hashed is not None:
                asset.source_path = str(hashed)


__all__ = [
    "BackupParser",
    "BackupSource",
    "ENCRYPTED_BACKUP_MESSAGE",
    "ExtractedSource",
    "HashedSource",
    "MediaIndex",
    "build_media_index",
    "find_dcim_directory",
    "find_media_domain",
    "find_photos_database",
    "resolve_extracted_source_path",
]
