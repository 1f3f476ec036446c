from __future__ import annotations

from datetime import datetime, timezone
from pathlib import Path

import pytest

from ghphotos.models.asset import (
    Asset,
    AssetFlags,
    AssetType,
    classify_asset,
    classify_by_extension,
    infer_mime_type,
)


def _asset(**overrides) -> Asset:
    values = dict(
        id="42",
        source_path="/backup/DCIM/100APPLE/IMG_0042.HEIC",
        filename="IMG_0042.HEIC",
        type=AssetType.PHOTO,
        creation_date=datetime(2024, 4, 15, 10, 0, tzinfo=timezone.utc),
    )
    values.update(overrides)
    return Asset(**values)


@pytest.mark.parametrize(
    ("granularity", "expected"),
    [
        ("day", "2024/04/15/photos/IMG_0042.HEIC"),
        ("month", "2024/04/photos/IMG_0042.HEIC"),
        ("year", "2024/photos/IMG_0042.HEIC"),
    ],
)
def test_target_path_granularity(granularity: str, expected: str) -> None:
    assert _asset().generate_target_path(granularity) == expected


def test_target_path_uses_type_folder() -> None:
    asset = _asset(type=AssetType.LIVE_PHOTO)
    assert asset.generate_target_path() == "2024/04/15/live_photos/IMG_0042.HEIC"


def test_target_path_requires_creation_date() -> None:
    with pytest.raises(ValueError):
        _asset(creation_date=None).generate_target_path()


def test_classification_priority() -> None:
    flags = AssetFlags(screenshot=True, live_photo=True, burst=True)
    assert classify_asset("IMG.PNG", flags) is AssetType.SCREENSHOT
    assert classify_asset("IMG.HEIC", AssetFlags(live_photo=True, burst=True)) is AssetType.LIVE_PHOTO
    assert classify_asset("IMG.HEIC", AssetFlags(burst=True)) is AssetType.BURST
    assert classify_asset("IMG.MOV", AssetFlags()) is AssetType.VIDEO
    assert classify_by_extension("clip.M4V") is AssetType.VIDEO
    assert classify_by_extension("IMG.JPG") is AssetType.PHOTO


def test_asset_type_accepts_singular_and_plural() -> None:
    assert AssetType.parse("Videos") is AssetType.VIDEO
    assert AssetType.parse("live_photo") is AssetType.LIVE_PHOTO
    assert AssetType.SCREENSHOT.audit_name == "screenshot"
    with pytest.raises(ValueError):
        AssetType.parse("panorama")


def test_should_exclude_respects_opt_ins() -> None:
    hidden = _asset(flags=AssetFlags(hidden=True))
    trashed = _asset(flags=AssetFlags(recently_deleted=True))
    assert hidden.should_exclude(False, False)
    assert not hidden.should_exclude(True, False)
    assert trashed.should_exclude(True, False)
    assert not trashed.should_exclude(False, True)


def test_is_valid_requires_creation_date() -> None:
    assert _asset().is_valid()
    assert not _asset(creation_date=None).is_valid()
    assert not _asset(source_path="").is_valid()


def test_enrich_and_checksum(tmp_path: Path) -> None:
    media = tmp_path / "IMG_0042.HEIC"
    media.write_bytes(b"abc")
    asset = _asset(source_path=str(media))
    asset.enrich()
    assert asset.file_size == 3
    assert asset.mime_type == "image/heif"
    assert asset.compute_checksum() == "ba7816bf8f01cfea414140de5dae2223b00361a396177a9cb410ff61f20015ad"


def test_enrich_missing_file_raises(tmp_path: Path) -> None:
    asset = _asset(source_path=str(tmp_path / "gone.jpg"))
    with pytest.raises(OSError):
        asset.enrich()


def test_from_dict_reads_legacy_flag_names() -> None:
    asset = Asset.from_dict(
        {
            "id": 7,
            "source_path": "/x/IMG_7.JPG",
            "filename": "IMG_7.JPG",
            "creation_date": "2023-01-02T03:04:05Z",
            "flags": {"Hidden": True, "LivePhoto": True},
        }
    )
    assert asset.id == "7"
    assert asset.flags.hidden
    assert asset.type is AssetType.LIVE_PHOTO
    assert asset.creation_date == datetime(2023, 1, 2, 3, 4, 5, tzinfo=timezone.utc)


def test_from_dict_treats_zero_time_as_unknown() -> None:
    asset = Asset.from_dict({"filename": "a.jpg", "creation_date": "0001-01-01T00:00:00Z"})
    assert asset.creation_date is None


def test_to_dict_round_trip() -> None:
    asset = _asset(file_size=10, mime_type="image/heif", checksum="ff", target_path="2024/04/15/photos/IMG_0042.HEIC")
    assert Asset.from_dict(asset.to_dict()) == asset


def test_mime_fallback() -> None:
    assert infer_mime_type("file.unknown") == "application/octet-stream"
