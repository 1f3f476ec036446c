from __future__ import annotations

import json
from pathlib import Path

import pytest
from conftest import DAY
from test_upload_engine import FakeClient

from ghphotos.audit import TrailManager
from ghphotos.cancellation import CancellationToken
from ghphotos.config import SyncOptions
from ghphotos.errors import OperationCancelledError, UploadBatchError
from ghphotos.manifest import Manifest, OperationStatus
from ghphotos.uploader.engine import UploadEngine
from ghphotos.uploader.sync import SyncRunner


def _runner(tmp_path: Path, options: SyncOptions, client: FakeClient) -> SyncRunner:
    engine = UploadEngine(client, dry_run=options.dry_run, skip_existing=options.skip_existing)
    trail = TrailManager(trail_dir=tmp_path / "trail")
    return SyncRunner(options, client=client, engine=engine, trail=trail, validate_tools=False)


def test_full_run_uploads_and_records(tmp_path: Path, three_asset_backup: Path) -> None:
    options = SyncOptions(
        backup_path=three_asset_backup,
        remote="gdrive:photos",
        save_manifest=tmp_path / "plan.json",
        checksum=True,
    )
    client = FakeClient()
    runner = _runner(tmp_path, options, client)

    manifest = runner.run()

    assert [entry.status for entry in manifest.entries] == [OperationStatus.UPLOADED] * 3
    assert [entry.target_path for entry in manifest.entries] == [
        "2001/01/02/photos/IMG_0001.HEIC",
        "2001/01/03/videos/IMG_0002.MOV",
        "2001/01/04/screenshots/IMG_0003.PNG",
    ]
    assert len(client.batches) == 3

    audit = json.loads((tmp_path / "trail" / "manifest.json").read_text())
    assert audit["metadata"]["summary"]["assets_uploaded"] == 3
    assert audit["metadata"]["invocation"]["remote"] == "gdrive:photos"
    assert audit["assets"][0]["remote_path"] == "gdrive:photos/2001/01/02/photos/IMG_0001.HEIC"
    assert len(audit["assets"][0]["sha256"]) == 64

    saved = Manifest.load(tmp_path / "plan.json")
    assert saved.summary.uploaded_assets == 3
    assert "command_metadata" in json.loads((tmp_path / "plan.json").read_text())


def test_prescan_turns_existing_files_into_skips(tmp_path: Path, make_backup) -> None:
    root = make_backup([{"filename": f"IMG_000{number}.JPG", "created": DAY} for number in range(1, 6)])
    client = FakeClient()
    client.listings["gdrive:photos/2001/01/02/photos"] = ["IMG_0001.JPG", "IMG_0004.JPG"]
    options = SyncOptions(backup_path=root, remote="gdrive:photos", remote_prescan=True)
    runner = _runner(tmp_path, options, client)

    manifest = runner.run()

    assert runner.plan is not None
    assert len(runner.plan.uploads) == 3
    assert len(runner.plan.skips) == 2
    assert manifest.summary.skipped_assets == 2
    assert manifest.summary.uploaded_assets == 3
    assert client.batches == [
        ["2001/01/02/photos/IMG_0002.JPG", "2001/01/02/photos/IMG_0003.JPG", "2001/01/02/photos/IMG_0005.JPG"]
    ]


def test_batch_failure_still_writes_audit(tmp_path: Path, three_asset_backup: Path) -> None:
    client = FakeClient(fail_dirs=("2001/01/03",))
    options = SyncOptions(backup_path=three_asset_backup, remote="gdrive:photos", verify=True)
    runner = _runner(tmp_path, options, client)

    with pytest.raises(UploadBatchError, match="1 of 3"):
        runner.run()

    statuses = [entry.status for entry in runner.manifest.entries]
    assert statuses == [OperationStatus.VERIFIED, OperationStatus.FAILED, OperationStatus.VERIFIED]
    audit = json.loads((tmp_path / "trail" / "manifest.json").read_text())
    assert [asset["status"] for asset in audit["assets"]] == ["uploaded", "failed", "uploaded"]


def test_dry_run_touches_nothing_remote(
    tmp_path: Path, three_asset_backup: Path, capsys: pytest.CaptureFixture[str]
) -> None:
    client = FakeClient()
    options = SyncOptions(backup_path=three_asset_backup, remote="gdrive:photos", dry_run=True, remote_prescan=True)
    runner = _runner(tmp_path, options, client)

    runner.run()

    out = capsys.readouterr().out
    assert "Upload Plan:" in out
    assert out.count("[DRY-RUN] Would upload:") == 3
    assert client.batches == []
    assert client.listed == []
    assert (tmp_path / "trail" / "manifest.json").exists()


def test_filters_apply_before_planning(tmp_path: Path, make_backup) -> None:
    root = make_backup(
        [
            {"filename": "IMG_0001.JPG", "created": DAY},
            {"filename": "IMG_0002.JPG", "created": DAY, "hidden": 1},
            {"filename": "IMG_0003.MOV", "created": DAY},
        ]
    )
    options = SyncOptions(backup_path=root, remote="gdrive:photos", asset_types=["videos"])
    runner = _runner(tmp_path, options, FakeClient())

    manifest = runner.run()

    assert [entry.filename for entry in manifest.entries] == ["IMG_0003.MOV"]
    assert runner.filter_counts.hidden == 1
    assert runner.filter_counts.asset_type == 1


def test_cancelled_before_planning_writes_no_audit(tmp_path: Path, three_asset_backup: Path) -> None:
    token = CancellationToken()
    token.cancel()
    runner = _runner(tmp_path, SyncOptions(backup_path=three_asset_backup, remote="gdrive:photos"), FakeClient())

    with pytest.raises(OperationCancelledError):
        runner.run(token)

    assert runner.manifest is None
    assert not (tmp_path / "trail").exists()


def test_cancellation_mid_upload_still_writes_audit(tmp_path: Path, three_asset_backup: Path) -> None:
    token = CancellationToken()
    client = FakeClient()
    client.on_copy = lambda: token.cancel("operation cancelled by signal SIGINT")
    runner = _runner(tmp_path, SyncOptions(backup_path=three_asset_backup, remote="gdrive:photos"), client)

    with pytest.raises(OperationCancelledError, match="SIGINT"):
        runner.run(token)

    assert len(client.batches) == 1
    assert [entry.status for entry in runner.manifest.entries] == [
        OperationStatus.UPLOADED,
        OperationStatus.PENDING,
        OperationStatus.PENDING,
    ]
    audit = json.loads((tmp_path / "trail" / "manifest.json").read_text())
    assert [asset["status"] for asset in audit["assets"]] == ["uploaded", "pending", "pending"]
    assert audit["metadata"]["summary"]["assets_uploaded"] == 1
