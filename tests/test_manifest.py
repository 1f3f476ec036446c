from __future__ import annotations

import json
import plistlib
from datetime import datetime, timezone
from pathlib import Path

import pytest

from ghphotos.errors import ManifestInvalidError
from ghphotos.manifest import (
    Manifest,
    ManifestConfig,
    OperationStatus,
    can_transition,
    humanize_bytes,
)
from ghphotos.metadata import CommandMetadata
from ghphotos.models.asset import Asset, AssetFlags, AssetType


def _assets() -> list[Asset]:
    created = datetime(2024, 4, 15, 10, 0, tzinfo=timezone.utc)
    return [
        Asset("1", "/b/DCIM/IMG_1.JPG", "IMG_1.JPG", AssetType.PHOTO, created, file_size=100),
        Asset("2", "/b/DCIM/IMG_2.MOV", "IMG_2.MOV", AssetType.VIDEO, created, file_size=300),
        Asset("3", "/b/DCIM/IMG_3.PNG", "IMG_3.PNG", AssetType.SCREENSHOT, created, file_size=50,
              flags=AssetFlags(screenshot=True)),
    ]


@pytest.mark.parametrize(
    ("size", "expected"),
    [(0, "0 B"), (1023, "1023 B"), (1536, "1.5 KB"), (5 * 1024 * 1024, "5.0 MB"), (3 * 1024**3, "3.0 GB")],
)
def test_humanize_bytes(size: int, expected: str) -> None:
    assert humanize_bytes(size) == expected


def test_status_transitions_only_move_forward() -> None:
    assert can_transition(OperationStatus.PENDING, OperationStatus.UPLOADED)
    assert can_transition(OperationStatus.UPLOADED, OperationStatus.VERIFIED)
    assert can_transition(OperationStatus.UPLOADED, OperationStatus.FAILED)
    assert not can_transition(OperationStatus.SKIPPED, OperationStatus.PENDING)
    assert not can_transition(OperationStatus.FAILED, OperationStatus.UPLOADED)


def test_summary_tracks_updates() -> None:
    manifest = Manifest.from_assets(_assets(), "/b", "gdrive:photos")
    assert manifest.summary.total_assets == 3
    assert manifest.summary.total_size == 450
    assert manifest.entries[0].target_path == "2024/04/15/photos/IMG_1.JPG"

    manifest.update_entry(0, OperationStatus.UPLOADED)
    manifest.update_entry(1, OperationStatus.FAILED, "batch upload failed: boom")
    manifest.update_entry(2, OperationStatus.SKIPPED)
    manifest.update_entry(0, OperationStatus.VERIFIED)
    manifest.update_entry(99, OperationStatus.FAILED)

    summary = manifest.summary
    assert summary.processed_assets == 3
    assert summary.verified_assets == 1
    assert summary.uploaded_assets == 0
    assert summary.uploaded_size == 100
    assert summary.failed_assets == 1
    assert summary.skipped_assets == 1
    assert manifest.entries[1].error == "batch upload failed: boom"
    assert [entry.filename for entry in manifest.get_filtered_entries(OperationStatus.FAILED)] == ["IMG_2.MOV"]


def test_backward_transition_is_rejected() -> None:
    manifest = Manifest.from_assets(_assets(), "/b", "gdrive:photos")
    manifest.update_entry(0, OperationStatus.SKIPPED)
    with pytest.raises(ValueError, match="skipped -> pending"):
        manifest.update_entry(0, OperationStatus.PENDING)


def test_updates_adjust_counters_without_rescanning(monkeypatch: pytest.MonkeyPatch) -> None:
    created = datetime(2024, 4, 15, 10, 0, tzinfo=timezone.utc)
    assets = [
        Asset(str(number), f"/b/DCIM/IMG_{number}.JPG", f"IMG_{number}.JPG", AssetType.PHOTO, created, file_size=2)
        for number in range(20_000)
    ]
    manifest = Manifest.from_assets(assets, "/b", "gdrive:photos")

    def rescan() -> None:
        raise AssertionError("update_entry must not rescan every entry")

    monkeypatch.setattr(manifest, "update_summary", rescan)
    for index in range(20_000):
        manifest.update_entry(index, OperationStatus.UPLOADED)
    for index in range(0, 20_000, 2):
        manifest.update_entry(index, OperationStatus.VERIFIED)
    manifest.update_entry(1, OperationStatus.UPLOADED)

    summary = manifest.summary
    assert summary.processed_assets == 20_000
    assert summary.uploaded_assets == 10_000
    assert summary.verified_assets == 10_000
    assert summary.uploaded_size == 40_000

    monkeypatch.undo()
    manifest.update_summary()
    assert manifest.summary.uploaded_assets == 10_000
    assert manifest.summary.verified_assets == 10_000


def test_save_and_load(tmp_path: Path) -> None:
    config = ManifestConfig(
        dry_run=True,
        start_date=datetime(2024, 1, 1, tzinfo=timezone.utc),
        asset_types=["photos"],
        path_granularity="month",
    )
    manifest = Manifest.from_assets(_assets(), "/b", "gdrive:photos", config)
    manifest.update_entry(1, OperationStatus.MISSING, "source file not found")
    manifest.summary.duration_seconds = 12.5
    path = tmp_path / "plan.json"
    manifest.save(path)

    loaded = Manifest.load(path)
    assert loaded.remote_target == "gdrive:photos"
    assert loaded.config.dry_run
    assert loaded.config.path_granularity == "month"
    assert loaded.config.start_date == config.start_date
    assert loaded.entries[0].target_path == "2024/04/photos/IMG_1.JPG"
    assert loaded.entries[1].status is OperationStatus.MISSING
    assert loaded.entries[2].flags.screenshot
    assert loaded.summary.missing_assets == 1
    assert loaded.summary.duration_seconds == 12.5


def test_load_rejects_invalid_document(tmp_path: Path) -> None:
    path = tmp_path / "plan.json"
    path.write_text(json.dumps({"backup_path": "/b"}))
    with pytest.raises(ManifestInvalidError, match="invalid plan manifest"):
        Manifest.load(path)
    path.write_text("{not json")
    with pytest.raises(ManifestInvalidError):
        Manifest.load(path)


def test_print_summary(capsys: pytest.CaptureFixture[str]) -> None:
    manifest = Manifest.from_assets(_assets(), "/b", "gdrive:photos")
    manifest.update_entry(0, OperationStatus.UPLOADED)
    manifest.print_summary()
    out = capsys.readouterr().out
    assert "Manifest Summary:" in out
    assert "Uploaded: 1" in out
    assert "Total: 450 B" in out


def test_command_metadata_reads_info_plist(tmp_path: Path) -> None:
    (tmp_path / "Manifest.plist").write_bytes(plistlib.dumps({"IsEncrypted": False}))
    (tmp_path / "Info.plist").write_bytes(
        plistlib.dumps(
            {
                "Device Name": "Alex's iPhone",
                "Product Type": "iPhone15,2",
                "Product Version": "17.4",
                "Unique Identifier": "00008030-ABC",
                "Date": datetime(2024, 4, 15, 10, 0),
            }
        )
    )
    metadata = CommandMetadata()
    metadata.set_backup_info(tmp_path)
    metadata.set_asset_counts(_assets())
    data = metadata.to_dict()

    backup = data["ios_backup"]
    assert backup["device_name"] == "Alex's iPhone"
    assert backup["ios_version"] == "17.4"
    assert backup["backup_date"] == "2024-04-15T10:00:00Z"
    assert backup["is_encrypted"] is False
    assert backup["backup_type"] == "directory"
    assert data["asset_counts"] == {
        "photos": 1,
        "videos": 1,
        "live_photos": 0,
        "screenshots": 1,
        "burst": 0,
        "total": 3,
    }


def test_command_metadata_tolerates_missing_info_plist(tmp_path: Path) -> None:
    metadata = CommandMetadata()
    metadata.set_backup_info(tmp_path)
    assert metadata.ios_backup.device_name is None
    assert "device_name" not in metadata.to_dict()["ios_backup"]


def test_save_to_manifest_merges_existing_keys(tmp_path: Path) -> None:
    path = tmp_path / "extraction-metadata.json"
    path.write_text(json.dumps({"custom": 1}))
    CommandMetadata().save_to_manifest(path, _assets()[:1])
    document = json.loads(path.read_text())
    assert document["custom"] == 1
    assert document["assets"][0]["filename"] == "IMG_1.JPG"
    assert document["command_metadata"]["cli_version"]
