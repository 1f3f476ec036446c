import plistlib
import sqlite3
import sys
from pathlib import Path
from typing import Callable, Optional

import pytest

ROOT = Path(__file__).resolve().parents[1]
SRC = ROOT / "src"

if str(SRC) not in sys.path:
    sys.path.insert(0, str(SRC))

from ghphotos.utils.logging import get_logger  # noqa: E402

# Seconds between 2001-01-01 (Core Data epoch) and the start of a day.
DAY = 86400

ASSET_COLUMNS = (
    "Z_PK INTEGER PRIMARY KEY",
    "ZFILENAME TEXT",
    "ZDIRECTORY TEXT",
    "ZDATECREATED REAL",
    "ZMODIFICATIONDATE REAL",
    "ZHIDDEN INTEGER",
    "ZTRASHED INTEGER",
    "ZKINDSUBTYPE INTEGER",
    "ZBURSTIDENTIFIER TEXT",
    "ZISSCREENSHOT INTEGER",
)


@pytest.fixture(autouse=True)
def _reset_package_logging():
    """Drop handlers bound to streams that CliRunner closes after each test."""

    yield
    logger = get_logger()
    for handler in list(logger.handlers):
        logger.removeHandler(handler)


@pytest.fixture(autouse=True)
def _isolated_home(tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> Path:
    home = tmp_path / "home"
    home.mkdir()
    monkeypatch.setenv("HOME", str(home))
    monkeypatch.setenv("USERPROFILE", str(home))
    monkeypatch.delenv("LOG_LEVEL", raising=False)
    return home


def write_manifest_plist(root: Path, encrypted: bool = False) -> Path:
    path = root / "Manifest.plist"
    path.write_bytes(plistlib.dumps({"IsEncrypted": encrypted, "Version": "10.0"}))
    return path


def write_status_plist(root: Path) -> Path:
    path = root / "Status.plist"
    path.write_bytes(plistlib.dumps({"IsFullBackup": True, "SnapshotState": "finished"}))
    return path


def create_photos_db(path: Path, rows: list[dict]) -> Path:
    """Create a minimal ``Photos.sqlite`` whose ``ZASSET`` holds *rows*."""

    path.parent.mkdir(parents=True, exist_ok=True)
    conn = sqlite3.connect(path)
    try:
        conn.execute(f"CREATE TABLE ZASSET ({', '.join(ASSET_COLUMNS)})")
        for pk, row in enumerate(rows, start=1):
            conn.execute(
                "INSERT INTO ZASSET VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?)",
                (
                    row.get("pk", pk),
                    row["filename"],
                    row.get("directory", "100APPLE"),
                    row.get("created"),
                    row.get("modified", row.get("created")),
                    row.get("hidden", 0),
                    row.get("trashed", 0),
                    row.get("kind_subtype", 0),
                    row.get("burst"),
                    row.get("screenshot", 0),
                ),
            )
        conn.commit()
    finally:
        conn.close()
    return path


def create_manifest_db(root: Path, files: list[tuple[str, str, Optional[bytes]]]) -> Path:
    """Create ``Manifest.db`` and the hashed files it indexes.

    Each item is ``(domain, relative_path, content)``; ``None`` content
    records a directory entry.
    """

    path = root / "Manifest.db"
    conn = sqlite3.connect(path)
    try:
        conn.execute(
            "CREATE TABLE Files (fileID TEXT PRIMARY KEY, domain TEXT, relativePath TEXT, flags INTEGER, file BLOB)"
        )
        for number, (domain, relative_path, content) in enumerate(files):
            file_id = f"{number:02x}" + "ab" * 19
            flags = 2 if content is None else 1
            conn.execute(
                "INSERT INTO Files VALUES (?, ?, ?, ?, ?)",
                (file_id, domain, relative_path, flags, None),
            )
            if content is not None:
                bucket = root / file_id[:2]
                bucket.mkdir(parents=True, exist_ok=True)
                (bucket / file_id).write_bytes(content)
        conn.commit()
    finally:
        conn.close()
    return path


@pytest.fixture
def make_backup(tmp_path: Path) -> Callable[..., Path]:
    """Return a factory building a directory-style backup with real media files."""

    def factory(rows: list[dict], *, name: str = "backup", encrypted: bool = False) -> Path:
        root = tmp_path / name
        root.mkdir()
        write_manifest_plist(root, encrypted=encrypted)
        write_status_plist(root)
        create_photos_db(root / "PhotoData" / "Photos.sqlite", rows)
        for row in rows:
            if row.get("on_disk", True):
                media = root / "DCIM" / row.get("directory", "100APPLE") / row["filename"]
                media.parent.mkdir(parents=True, exist_ok=True)
                media.write_bytes(row.get("content", row["filename"].encode() * 4))
        return root

    return factory


@pytest.fixture
def three_asset_backup(make_backup: Callable[..., Path]) -> Path:
    return make_backup(
        [
            {"filename": "IMG_0001.HEIC", "created": DAY},
            {"filename": "IMG_0002.MOV", "created": 2 * DAY},
            {"filename": "IMG_0003.PNG", "created": 3 * DAY, "screenshot": 1},
        ]
    )


@pytest.fixture
def hashed_backup(tmp_path: Path) -> Path:
    """An iTunes-style backup: catalog and media reachable only through Manifest.db."""

    root = tmp_path / "hashed"
    root.mkdir()
    write_manifest_plist(root)
    catalog = create_photos_db(
        tmp_path / "catalog.sqlite",
        [
            {"filename": "IMG_0001.JPG", "directory": "DCIM/100APPLE", "created": DAY},
            {"filename": "IMG_0002.MOV", "directory": "DCIM/100APPLE", "created": 2 * DAY},
        ],
    )
    create_manifest_db(
        root,
        [
            ("CameraRollDomain", "Media/PhotoData/Photos.sqlite", catalog.read_bytes()),
            ("CameraRollDomain", "Media/DCIM/100APPLE/IMG_0001.JPG", b"jpeg bytes"),
            ("CameraRollDomain", "Media/DCIM/100APPLE/IMG_0002.MOV", b"movie bytes"),
            ("HomeDomain", "Library/Preferences/com.apple.springboard.plist", b"prefs"),
        ],
    )
    return root
