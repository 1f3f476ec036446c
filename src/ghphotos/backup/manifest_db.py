"""Access to a hashed backup's file index (``Manifest.db``)."""

from __future__ import annotations

import os
import sqlite3
from dataclasses import dataclass
from pathlib import Path
from typing import Final, Optional

from ..config import (
    ENCRYPTION_LOOKAHEAD_CHARS,
    MANIFEST_DB_NAME,
    MANIFEST_PLIST_NAME,
    PHOTOS_DB_DOMAINS,
    PHOTOS_DB_PATTERNS,
)
from ..errors import IndexSchemaError, ManifestDBError
from ..utils.logging import get_logger

logger = get_logger()

FILES_TABLE: Final[str] = "Files"
EXPECTED_COLUMNS: Final[dict[str, str]] = {
    "fileID": "TEXT",
    "domain": "TEXT",
    "relativePath": "TEXT",
    "flags": "INTEGER",
    "file": "BLOB",
}
REGULAR_FILE_FLAG: Final[int] = 1

_SELECT = "SELECT fileID, domain, relativePath, flags, file FROM Files"
_NOT_JOURNAL = "relativePath NOT LIKE '%-wal' AND relativePath NOT LIKE '%-shm'"


@dataclass(slots=True, frozen=True)
class FileRecord:
    """One row of the ``Files`` table."""

    file_id: str
    domain: str
    relative_path: str
    flags: int
    blob: Optional[bytes] = None

    @property
    def is_regular_file(self) -> bool:
        return self.flags == REGULAR_FILE_FLAG


def hashed_path(backup_root: Path | str, file_id: str) -> Path:
    """Return ``<root>/<id[0:2]>/<id>``, where the bytes of *file_id* live."""

    root = Path(backup_root)
    if len(file_id) < 2:
        return root / file_id
    return root / file_id[:2] / file_id


def is_backup_encrypted(backup_root: Path) -> bool:
    """Return ``True`` when ``Manifest.plist`` declares ``IsEncrypted`` as true.

    The plist is scanned as lower-cased text: the ``<true/>`` literal must
    follow the key within a short window.
    """

    plist_path = backup_root / MANIFEST_PLIST_NAME
    try:
        content = plist_path.read_bytes().decode("utf-8", errors="replace").lower()
    except OSError as exc:
        raise ManifestDBError(f"failed to read {MANIFEST_PLIST_NAME}: {exc}") from exc
    key = "<key>isencrypted</key>"
    position = content.find(key)
    if position < 0:
        return False
    window = content[position + len(key) : position + len(key) + ENCRYPTION_LOOKAHEAD_CHARS]
    return "<true/>" in window


def _record(row: tuple) -> FileRecord:
    file_id, domain, relative_path, flags, blob = row
    return FileRecord(
        file_id=str(file_id or ""),
        domain=str(domain or ""),
        relative_path=str(relative_path or ""),
        flags=int(flags or 0),
        blob=bytes(blob) if blob is not None else None,
    )


class ManifestDB:
    """Read-only view over ``Manifest.db``."""

    def __init__(self, backup_root: Path, conn: sqlite3.Connection) -> None:
        self.backup_root = backup_root
        self.path = backup_root / MANIFEST_DB_NAME
        self._conn: Optional[sqlite3.Connection] = conn

    @classmethod
    def open(cls, backup_root: Path | str) -> "ManifestDB":
        root = Path(backup_root)
        path = root / MANIFEST_DB_NAME
        if not path.is_file():
            raise ManifestDBError(f"Manifest.db not found at {path}")
        try:
            conn = sqlite3.connect(f"{path.resolve().as_uri()}?mode=ro", uri=True)
            conn.execute("SELECT 1 FROM sqlite_master LIMIT 1").fetchall()
        except sqlite3.DatabaseError as exc:
            raise ManifestDBError(f"failed to open Manifest.db: {exc}") from exc
        return cls(root, conn)

    def __enter__(self) -> "ManifestDB":
        return self

    def __exit__(self, *exc_info) -> None:
        self.close()

    def close(self) -> None:
        if self._conn is not None:
            self._conn.close()
            self._conn = None

    def _query(self, sql: str, params: tuple = ()) -> list[tuple]:
        if self._conn is None:
            raise ManifestDBError("Manifest.db is closed")
        try:
            return self._conn.execute(sql, params).fetchall()
        except sqlite3.DatabaseError as exc:
            raise ManifestDBError(f"failed to query {FILES_TABLE} table: {exc}") from exc

    def has_files_table(self) -> bool:
        rows = self._query(
            "SELECT COUNT(*) FROM sqlite_master WHERE type='table' AND lower(name)='files'"
        )
        return bool(rows and rows[0][0])

    def validate_schema(self) -> None:
        """Check the ``Files`` columns and their declared types.

        An index without a ``Files`` table is accepted so that empty fixture
        databases open cleanly; lookups against it then report "not found".

        Raises
        ------
        IndexSchemaError
            Raised when a required column is missing or has the wrong type.
        """

        if not self.has_files_table():
            logger.debug("Skipping schema validation for empty database")
            return
        rows = self._query("PRAGMA table_info('files')")
        found = {row[1]: str(row[2]).upper() for row in rows}
        for name, expected in EXPECTED_COLUMNS.items():
            if name not in found:
                raise IndexSchemaError(f"incompatible Manifest.db schema: required column {name} not found in files table")
            if found[name] != expected:
                raise IndexSchemaError(
                    f"incompatible Manifest.db schema: column {name} has type {found[name]}, expected {expected}"
                )

    def _first(self, where: str, params: tuple) -> Optional[FileRecord]:
        if not self.has_files_table():
            return None
        rows = self._query(
            f"{_SELECT} WHERE {where} AND {_NOT_JOURNAL} ORDER BY LENGTH(relativePath) ASC LIMIT 1",
            params,
        )
        return _record(rows[0]) if rows else None

    def find_file_by_path(self, pattern: str) -> Optional[FileRecord]:
        """Return the shortest entry whose ``relativePath`` is LIKE *pattern*."""

        return self._first("relativePath LIKE ?", (pattern,))

    def find_file_by_domain_and_name(self, domain: str, filename: str) -> Optional[FileRecord]:
        return self._first("domain = ? AND relativePath LIKE ?", (domain, f"%{filename}"))

    def find_file_by_domain_and_path(self, domain: Optional[str], relative_path: str) -> Optional[FileRecord]:
        """Exact ``relativePath`` lookup, optionally limited to one *domain*."""

        if domain is None:
            return self._first("relativePath = ?", (relative_path,))
        return self._first("domain = ? AND relativePath = ?", (domain, relative_path))

    def find_photos_database_record(self) -> Optional[FileRecord]:
        for pattern in PHOTOS_DB_PATTERNS:
            record = self.find_file_by_path(pattern)
            if record is not None:
                return record
        for domain in PHOTOS_DB_DOMAINS:
            record = self.find_file_by_domain_and_name(domain, "Photos.sqlite")
            if record is not None:
                return record
        return None

    def find_photos_database(self) -> Path:
        """Return the hashed on-disk path of ``Photos.sqlite``.

        Raises
        ------
        ManifestDBError
            Raised when the index has no entry for it or its file is missing.
        """

        record = self.find_photos_database_record()
        if record is None:
            raise ManifestDBError("Photos.sqlite not found in Manifest.db")
        path = self.hashed_path(record.file_id)
        if not path.is_file():
            raise ManifestDBError(f"Photos.sqlite file not found at computed path {path}")
        return path

    def list_photos_related_files(self) -> list[FileRecord]:
        if not self.has_files_table():
            return []
        rows = self._query(
            f"{_SELECT} WHERE ("
            "relativePath LIKE '%Photos%' OR relativePath LIKE '%PhotoData%' "
            "OR relativePath LIKE '%DCIM%' OR domain LIKE '%Media%' "
            "OR domain LIKE '%Photo%' OR domain LIKE '%Camera%'"
            f") AND {_NOT_JOURNAL} ORDER BY domain, relativePath"
        )
        return [_record(row) for row in rows]

    def get_domains(self) -> list[str]:
        if not self.has_files_table():
            return []
        return [str(row[0]) for row in self._query("SELECT DISTINCT domain FROM Files ORDER BY domain")]

    def has_media_files(self) -> bool:
        if not self.has_files_table():
            return False
        rows = self._query(
            "SELECT COUNT(*) FROM Files WHERE ("
            "relativePath LIKE '%/DCIM/%' OR relativePath LIKE '%/Media/%' "
            "OR relativePath LIKE '%/Photos/%' OR relativePath LIKE '%/PhotoData/%' "
            "OR relativePath LIKE '%.jpg' OR relativePath LIKE '%.jpeg' "
            "OR relativePath LIKE '%.heic' OR relativePath LIKE '%.png' "
            "OR relativePath LIKE '%.mov' OR relativePath LIKE '%.mp4' "
            "OR relativePath LIKE '%.m4v'"
            ") AND flags = ?",
            (REGULAR_FILE_FLAG,),
        )
        return bool(rows and rows[0][0] > 0)

    def get_all_files(self, *, regular_only: bool = False) -> list[FileRecord]:
        if not self.has_files_table():
            return []
        sql = _SELECT
        params: tuple = ()
        if regular_only:
            sql += " WHERE flags = ?"
            params = (REGULAR_FILE_FLAG,)
        sql += " ORDER BY domain, relativePath"
        return [_record(row) for row in self._query(sql, params)]

    def hashed_path(self, file_id: str) -> Path:
        return hashed_path(self.backup_root, file_id)

    def lookup(self, domain: Optional[str], relative_path: str) -> Optional[Path]:
        """Map a logical ``(domain, relativePath)`` to its hashed file, if present."""

        record = self.find_file_by_domain_and_path(domain, relative_path.replace(os.sep, "/"))
        if record is None:
            return None
        return self.hashed_path(record.file_id)


__all__ = [
    "EXPECTED_COLUMNS",
    "FileRecord",
    "ManifestDB",
    "hashed_path",
    "is_backup_encrypted",
]
