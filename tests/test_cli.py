from __future__ import annotations

import json
from pathlib import Path

import pytest
from test_upload_engine import FakeClient
from typer.testing import CliRunner

from ghphotos import cli as cli_module
from ghphotos.cli import app
from ghphotos.config import VERSION
from ghphotos.uploader.sync import SyncRunner

runner = CliRunner()


def test_version() -> None:
    result = runner.invoke(app, ["version"])
    assert result.exit_code == 0
    assert f"gh-photos {VERSION}" in result.output


def test_validate_directory_backup(three_asset_backup: Path) -> None:
    result = runner.invoke(app, ["validate", str(three_asset_backup)])
    assert result.exit_code == 0, result.output
    assert "Valid iPhone backup directory structure" in result.output
    assert "Found and validated Photos.sqlite" in result.output
    assert "Backup validation completed successfully" in result.output


def test_validate_hashed_backup(hashed_backup: Path) -> None:
    result = runner.invoke(app, ["validate", str(hashed_backup)])
    assert result.exit_code == 0, result.output
    assert "Found Manifest.db" in result.output
    assert "CameraRollDomain" in result.output


def test_validate_refuses_encrypted_backup(make_backup) -> None:
    root = make_backup([{"filename": "IMG_0001.JPG", "created": 86400}], encrypted=True)
    result = runner.invoke(app, ["validate", str(root)])
    assert result.exit_code != 0
    assert "encrypted backups are not supported" in result.output


def test_validate_missing_path(tmp_path: Path) -> None:
    result = runner.invoke(app, ["validate", str(tmp_path / "nope")])
    assert result.exit_code == 1
    assert "backup path does not exist" in result.output


def test_list_table(three_asset_backup: Path) -> None:
    result = runner.invoke(app, ["list", str(three_asset_backup)])
    assert result.exit_code == 0, result.output
    assert "2001/01/02/photos/IMG_0001.HEIC" in result.output
    assert "2001/01/03/videos/IMG_0002.MOV" in result.output
    assert "2001/01/04/screenshots/IMG_0003.PNG" in result.output
    assert "[screenshot]" in result.output
    assert "3 assets" in result.output


def test_list_json_with_filters(three_asset_backup: Path) -> None:
    result = runner.invoke(
        app,
        [
            "list",
            str(three_asset_backup),
            "--format",
            "json",
            "--types",
            "videos,screenshots",
            "--path-granularity",
            "month",
            "--log-level",
            "error",
        ],
    )
    assert result.exit_code == 0, result.output
    assets = json.loads(result.stdout)
    assert [asset["filename"] for asset in assets] == ["IMG_0002.MOV", "IMG_0003.PNG"]
    assert assets[0]["target_path"] == "2001/01/videos/IMG_0002.MOV"


def test_list_rejects_unknown_type(three_asset_backup: Path) -> None:
    result = runner.invoke(app, ["list", str(three_asset_backup), "--types", "panoramas"])
    assert result.exit_code == 1
    assert "invalid asset type 'panoramas'" in result.output


def test_sync_requires_backup_and_remote() -> None:
    result = runner.invoke(app, ["sync"])
    assert result.exit_code == 1
    assert "sync requires <backup-path> and <remote>" in result.output


def test_sync_rejects_bad_date(three_asset_backup: Path) -> None:
    result = runner.invoke(app, ["sync", str(three_asset_backup), "gdrive:photos", "--start-date", "2024/01/01"])
    assert result.exit_code == 1
    assert "invalid start-date format" in result.output


def test_sync_dry_run_then_reuse_last_command(three_asset_backup: Path, _isolated_home: Path) -> None:
    first = runner.invoke(
        app, ["sync", str(three_asset_backup), "gdrive:photos/iphone", "--dry-run", "--types", "photos"]
    )
    assert first.exit_code == 0, first.output
    assert "[DRY-RUN] Would upload:" in first.output
    assert "gdrive:photos/iphone/2001/01/02/photos/IMG_0001.HEIC" in first.output
    assert "IMG_0002.MOV" not in first.output.split("Upload Plan:")[1]

    latest = _isolated_home / "gh-photos" / "manifest.json"
    trail = json.loads(latest.read_text())
    assert trail["metadata"]["invocation"]["flags"]["dry_run"] is True
    assert trail["metadata"]["invocation"]["flags"]["types"] == ["photos"]

    second = runner.invoke(app, ["sync", "--use-last-command"])
    assert second.exit_code == 0, second.output
    assert "Loaded configuration from last successful run" in second.output
    assert "[DRY-RUN] Would upload:" in second.output
    assert "gdrive:photos/iphone/2001/01/02/photos/IMG_0001.HEIC" in second.output


def test_use_last_command_without_history() -> None:
    result = runner.invoke(app, ["sync", "--use-last-command"])
    assert result.exit_code == 1
    assert "could not load last manifest" in result.output


def test_extract_then_list_extracted_tree(hashed_backup: Path, tmp_path: Path) -> None:
    output = tmp_path / "extracted"
    result = runner.invoke(app, ["extract", str(hashed_backup), str(output), "--no-progress"])
    assert result.exit_code == 0, result.output
    assert "Backup extraction completed successfully" in result.output
    assert (output / "CameraRollDomain" / "Media" / "DCIM" / "100APPLE" / "IMG_0001.JPG").read_bytes() == b"jpeg bytes"

    metadata = json.loads((output / "extraction-metadata.json").read_text())
    assert [asset["filename"] for asset in metadata["assets"]] == ["IMG_0001.JPG", "IMG_0002.MOV"]
    assert metadata["command_metadata"]["ios_backup"]["backup_type"] == "hashed"

    validated = runner.invoke(app, ["validate", str(output)])
    assert validated.exit_code == 0, validated.output
    assert "extracted backup directory" in validated.output

    listed = runner.invoke(app, ["list", str(output)])
    assert listed.exit_code == 0, listed.output
    assert "2001/01/02/photos/IMG_0001.JPG" in listed.output
    assert "2001/01/03/videos/IMG_0002.MOV" in listed.output


def test_extract_suggests_sync_command_from_history(
    hashed_backup: Path, three_asset_backup: Path, tmp_path: Path
) -> None:
    runner.invoke(app, ["sync", str(three_asset_backup), "s3:bucket", "--dry-run", "--parallel", "4"])
    output = tmp_path / "extracted"
    result = runner.invoke(app, ["extract", str(hashed_backup), str(output)])
    assert result.exit_code == 0, result.output
    assert f"gh-photos sync {output} s3:bucket --parallel=4 --skip-existing --dry-run" in result.output


def test_sync_cancelled_mid_run_exits_130(
    three_asset_backup: Path, _isolated_home: Path, monkeypatch: pytest.MonkeyPatch
) -> None:
    class CancellingRunner(SyncRunner):
        def __init__(self, options) -> None:
            self.fake = FakeClient(options.remote)
            super().__init__(options, client=self.fake, validate_tools=False)

        def run(self, token=None):
            self.fake.on_copy = lambda: token.cancel("operation cancelled by signal SIGINT")
            return super().run(token)

    monkeypatch.setattr(cli_module, "SyncRunner", CancellingRunner)
    result = runner.invoke(app, ["sync", str(three_asset_backup), "gdrive:photos"])

    assert result.exit_code == 130
    assert "operation cancelled by signal SIGINT" in result.output
    trail = json.loads((_isolated_home / "gh-photos" / "manifest.json").read_text())
    assert [asset["status"] for asset in trail["assets"]] == ["uploaded", "pending", "pending"]
