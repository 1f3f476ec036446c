from __future__ import annotations

from pathlib import Path

import pytest
from conftest import create_manifest_db, write_manifest_plist, write_status_plist

from ghphotos.backup.locator import (
    is_valid_backup_dir,
    locate_backup,
    resolve_backup_path,
    validate_backup_directory,
)
from ghphotos.backup.manifest_db import ManifestDB, hashed_path, is_backup_encrypted
from ghphotos.errors import (
    AmbiguousBackupError,
    BackupPathError,
    IndexSchemaError,
    ManifestDBError,
)


def _backup(root: Path) -> Path:
    root.mkdir(parents=True)
    write_manifest_plist(root)
    write_status_plist(root)
    return root


def test_valid_backup_needs_manifest_plist(tmp_path: Path) -> None:
    assert not is_valid_backup_dir(tmp_path)
    write_manifest_plist(tmp_path)
    assert not is_valid_backup_dir(tmp_path)
    for number in range(11):
        (tmp_path / f"{number:02x}").mkdir()
    assert is_valid_backup_dir(tmp_path)


def test_resolve_returns_backup_root_unchanged(tmp_path: Path) -> None:
    root = _backup(tmp_path / "device")
    assert resolve_backup_path(root) == root


def test_resolve_descends_into_single_backup(tmp_path: Path) -> None:
    root = _backup(tmp_path / "MobileSync" / "Backup" / "00008030-ABC")
    assert resolve_backup_path(tmp_path / "MobileSync") == root


def test_resolve_refuses_to_guess_between_backups(tmp_path: Path) -> None:
    _backup(tmp_path / "MobileSync" / "Backup" / "first")
    _backup(tmp_path / "MobileSync" / "Backup" / "second")
    with pytest.raises(AmbiguousBackupError, match="multiple backup directories"):
        resolve_backup_path(tmp_path / "MobileSync")


def test_resolve_working_directory_without_backup(tmp_path: Path) -> None:
    with pytest.raises(BackupPathError, match="current directory"):
        resolve_backup_path(tmp_path, cwd=tmp_path)


def test_validate_reports_missing_paths(tmp_path: Path) -> None:
    with pytest.raises(BackupPathError, match="does not exist"):
        validate_backup_directory(tmp_path / "missing")
    with pytest.raises(BackupPathError, match="Manifest.plist not found"):
        validate_backup_directory(tmp_path)
    (tmp_path / "extraction-metadata.json").write_text("{}")
    validate_backup_directory(tmp_path)


def test_locate_backup_rejects_files(tmp_path: Path) -> None:
    target = tmp_path / "file.txt"
    target.write_text("x")
    with pytest.raises(BackupPathError, match="not a directory"):
        locate_backup(target)


def test_encryption_detection(tmp_path: Path) -> None:
    write_manifest_plist(tmp_path, encrypted=True)
    assert is_backup_encrypted(tmp_path)
    write_manifest_plist(tmp_path, encrypted=False)
    assert not is_backup_encrypted(tmp_path)


def test_encryption_check_needs_manifest_plist(tmp_path: Path) -> None:
    with pytest.raises(ManifestDBError):
        is_backup_encrypted(tmp_path)


def test_hashed_path_uses_two_character_bucket(tmp_path: Path) -> None:
    assert hashed_path(tmp_path, "abcdef") == tmp_path / "ab" / "abcdef"


def test_manifest_db_finds_photos_database(tmp_path: Path) -> None:
    root = _backup(tmp_path / "backup")
    create_manifest_db(
        root,
        [
            ("CameraRollDomain", "Media", None),
            ("CameraRollDomain", "Media/PhotoData/Photos.sqlite", b"db"),
            ("CameraRollDomain", "Media/PhotoData/Photos.sqlite-wal", b"wal"),
            ("CameraRollDomain", "Media/DCIM/100APPLE/IMG_0001.JPG", b"jpg"),
            ("HomeDomain", "Library/Preferences/x.plist", b"plist"),
        ],
    )
    with ManifestDB.open(root) as manifest:
        manifest.validate_schema()
        assert manifest.get_domains() == ["CameraRollDomain", "HomeDomain"]
        assert len(manifest.get_all_files(regular_only=True)) == 4
        assert manifest.has_media_files()
        photos = manifest.find_photos_database()
        assert photos.read_bytes() == b"db"
        related = [record.relative_path for record in manifest.list_photos_related_files()]
        assert "Media/PhotoData/Photos.sqlite-wal" not in related
        assert "Media/DCIM/100APPLE/IMG_0001.JPG" in related
        found = manifest.lookup("CameraRollDomain", "Media/DCIM/100APPLE/IMG_0001.JPG")
        assert found is not None and found.read_bytes() == b"jpg"
        assert manifest.lookup(None, "Media/DCIM/missing.JPG") is None


def test_manifest_db_reports_missing_photos_database(tmp_path: Path) -> None:
    root = _backup(tmp_path / "backup")
    create_manifest_db(root, [("HomeDomain", "Library/x.plist", b"x")])
    with ManifestDB.open(root) as manifest, pytest.raises(ManifestDBError, match="not found in Manifest.db"):
        manifest.find_photos_database()


def test_manifest_db_schema_mismatch(tmp_path: Path) -> None:
    import sqlite3

    root = _backup(tmp_path / "backup")
    conn = sqlite3.connect(root / "Manifest.db")
    conn.execute("CREATE TABLE Files (fileID TEXT, domain TEXT, relativePath TEXT, flags TEXT, file BLOB)")
    conn.commit()
    conn.close()
    with ManifestDB.open(root) as manifest, pytest.raises(IndexSchemaError, match="flags has type TEXT"):
        manifest.validate_schema()


def test_manifest_db_missing(tmp_path: Path) -> None:
    with pytest.raises(ManifestDBError, match="Manifest.db not found"):
        ManifestDB.open(tmp_path)
