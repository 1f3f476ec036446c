from __future__ import annotations

from datetime import datetime, timezone
from pathlib import Path

import pytest

from ghphotos.cancellation import CancellationToken
from ghphotos.config import SyncOptions
from ghphotos.errors import OperationCancelledError
from ghphotos.manifest import Manifest
from ghphotos.planner import AssetFilter, UploadAction, create_upload_plan, print_upload_plan
from ghphotos.models.asset import Asset, AssetFlags, AssetType


def _asset(asset_id: str, filename: str, *, day: int = 15, asset_type: AssetType = AssetType.PHOTO,
           flags: AssetFlags | None = None, source_dir: str = "/b/DCIM/100APPLE") -> Asset:
    return Asset(
        id=asset_id,
        source_path=f"{source_dir}/{filename}",
        filename=filename,
        type=asset_type,
        creation_date=datetime(2024, 1, day, 12, 0, tzinfo=timezone.utc),
        flags=flags or AssetFlags(),
    )


def _options(**overrides) -> SyncOptions:
    return SyncOptions(backup_path=Path("/b"), remote="gdrive:photos", **overrides)


def test_default_filter_drops_hidden_and_deleted() -> None:
    assets = [
        _asset("1", "a.jpg"),
        _asset("2", "b.jpg", flags=AssetFlags(hidden=True)),
        _asset("3", "c.jpg", flags=AssetFlags(recently_deleted=True)),
        _asset("4", "d.jpg", flags=AssetFlags(hidden=True, recently_deleted=True)),
    ]
    kept, counts = AssetFilter(_options()).apply(assets)
    assert [asset.id for asset in kept] == ["1"]
    assert (counts.hidden, counts.recently_deleted) == (2, 1)
    assert counts.total == 3


def test_include_flags_keep_assets() -> None:
    assets = [_asset("2", "b.jpg", flags=AssetFlags(hidden=True, recently_deleted=True))]
    kept, counts = AssetFilter(_options(include_hidden=True, include_recently_deleted=True)).apply(assets)
    assert len(kept) == 1
    assert counts.total == 0


def test_date_range_is_inclusive_of_end_day() -> None:
    assets = [_asset(str(day), f"{day}.jpg", day=day) for day in (9, 10, 20, 21)]
    options = _options(
        start_date=datetime(2024, 1, 10, tzinfo=timezone.utc),
        end_date=datetime(2024, 1, 20, 23, 59, 59, 999999, tzinfo=timezone.utc),
    )
    kept, counts = AssetFilter(options).apply(assets)
    assert [asset.id for asset in kept] == ["10", "20"]
    assert counts.date_range == 2


def test_type_and_ignore_filters() -> None:
    assets = [
        _asset("1", "a.jpg"),
        _asset("2", "b.mov", asset_type=AssetType.VIDEO),
        _asset("3", "c.png", asset_type=AssetType.SCREENSHOT),
        _asset("4", "d.jpg", source_dir="/b/DCIM/Thumbnails"),
    ]
    options = _options(asset_types=["photo", "videos"], ignore_patterns=["Thumbnails/*"])
    kept, counts = AssetFilter(options).apply(assets)
    assert [asset.id for asset in kept] == ["1", "2"]
    assert counts.asset_type == 1
    assert counts.ignored == 1


def test_filter_observes_cancellation() -> None:
    token = CancellationToken()
    token.cancel()
    assets = [_asset(str(number), f"{number}.jpg") for number in range(600)]
    with pytest.raises(OperationCancelledError):
        AssetFilter(_options()).apply(assets, token)


def _manifest_with_files(tmp_path: Path, count: int) -> Manifest:
    assets = []
    for number in range(1, count + 1):
        source = tmp_path / f"IMG_{number:04d}.JPG"
        source.write_bytes(b"x" * number)
        asset = _asset(str(number), source.name, source_dir=str(tmp_path))
        asset.file_size = number
        asset.target_path = asset.generate_target_path()
        assets.append(asset)
    return Manifest.from_assets(assets, str(tmp_path), "gdrive:photos")


def test_plan_skips_prescanned_targets(tmp_path: Path) -> None:
    manifest = _manifest_with_files(tmp_path, 5)
    existing = {manifest.entries[0].target_path, manifest.entries[3].target_path}
    plan = create_upload_plan(manifest, existing=existing)

    assert len(plan.uploads) == 3
    assert len(plan.skips) == 2
    assert all(item.reason == "already exists" for item in plan.skips)
    assert plan.upload_size == 2 + 3 + 5


def test_plan_flags_vanished_sources(tmp_path: Path) -> None:
    manifest = _manifest_with_files(tmp_path, 2)
    Path(manifest.entries[1].source_path).unlink()
    manifest.entries[0].target_path = ""
    plan = create_upload_plan(manifest)
    assert [item.action for item in plan.entries] == [UploadAction.ERROR, UploadAction.ERROR]
    assert [item.reason for item in plan.entries] == ["no target path", "source file not found"]


def test_print_upload_plan(tmp_path: Path, capsys: pytest.CaptureFixture[str]) -> None:
    manifest = _manifest_with_files(tmp_path, 2)
    plan = create_upload_plan(manifest, existing={manifest.entries[1].target_path})
    print_upload_plan(plan)
    out = capsys.readouterr().out
    assert "UPLOAD: IMG_0001.JPG -> 2024/01/15/photos/IMG_0001.JPG (1 B)" in out
    assert "SKIP:   IMG_0002.JPG (already exists)" in out
    assert "Upload: 1 files (1 B)" in out
