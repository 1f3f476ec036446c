"""Read-only access to the device photo catalog (``Photos.sqlite``).

The ``ZASSET`` table changed shape several times across iOS releases. Rather
than hard-coding one layout, :func:`detect_schema` inspects the available
columns and picks one expression per concern from :data:`COLUMN_CANDIDATES`.
:func:`build_asset_query` then assembles a single ``SELECT`` from the chosen
expressions so every iOS version yields the same projection.
"""

from __future__ import annotations

import os
import sqlite3
from dataclasses import dataclass
from pathlib import Path
from typing import Final, Optional

from ..cancellation import CancellationToken
from ..errors import CatalogSchemaError, PhotosDatabaseError, RowDecodeError
from ..models.asset import Asset, AssetFlags, classify_asset
from ..utils.dates import core_data_to_datetime
from ..utils.logging import get_logger

logger = get_logger()

ASSET_TABLE: Final[str] = "ZASSET"

# Candidate columns per concern, highest priority first.
COLUMN_CANDIDATES: Final[dict[str, tuple[str, ...]]] = {
    "creation": ("ZCREATIONDATE", "ZDATECREATED", "ZADDEDDATE"),
    "modification": ("ZMODIFICATIONDATE", "ZDATEMODIFIED", "ZMODIFIEDDATE"),
    "trashed": ("ZTRASHED", "ZTRASHEDSTATE"),
    "burst": ("ZBURSTIDENTIFIER", "ZAVALANCHEUUID"),
    "screenshot": ("ZISSCREENSHOT", "ZISDETECTEDSCREENSHOT"),
    "adjustments": ("ZHASADJUSTMENTS", "ZADJUSTMENTSSTATE"),
}

# Candidates that are projected through an expression instead of verbatim.
COLUMN_EXPRESSIONS: Final[dict[str, str]] = {
    "ZADJUSTMENTSSTATE": "CASE WHEN ZADJUSTMENTSSTATE > 0 THEN 1 ELSE 0 END",
}

# Expressions used when no candidate exists. ``modification`` falls back to
# the chosen creation column and ``creation`` has no fallback at all.
COLUMN_FALLBACKS: Final[dict[str, str]] = {
    "trashed": "COALESCE(ZTRASHEDSTATE, 0)",
    "burst": "NULL",
    "screenshot": "0",
    "adjustments": "0",
}

LIVE_PHOTO_KIND_SUBTYPE: Final[int] = 2

_PROGRESS_CHECK_INTERVAL = 1000


@dataclass(slots=True)
class SchemaInfo:
    """Column expressions chosen for one catalog."""

    creation_column: str
    modification_column: str
    trashed_column: str
    burst_column: str
    screenshot_column: str
    adjustments_column: str
    table_name: str = ASSET_TABLE


def _pick(concern: str, available: set[str]) -> Optional[str]:
    for candidate in COLUMN_CANDIDATES[concern]:
        if candidate in available:
            return COLUMN_EXPRESSIONS.get(candidate, candidate)
    return None


def select_columns(columns: list[str]) -> SchemaInfo:
    """Choose the column expressions for a ``ZASSET`` table with *columns*.

    Raises
    ------
    CatalogSchemaError
        Raised when none of the creation date candidates is present.
    """

    available = set(columns)
    creation = _pick("creation", available)
    if creation is None:
        raise CatalogSchemaError(f"no suitable creation date column found in {ASSET_TABLE} table")

    modification = _pick("modification", available)
    if modification is None:
        logger.debug("No modification date column found, using %s", creation)
        modification = creation

    resolved: dict[str, str] = {}
    for concern in ("trashed", "burst", "screenshot", "adjustments"):
        expression = _pick(concern, available)
        if expression is None:
            expression = COLUMN_FALLBACKS[concern]
            logger.debug("No %s column found, using fallback %s", concern, expression)
        resolved[concern] = expression

    return SchemaInfo(
        creation_column=creation,
        modification_column=modification,
        trashed_column=resolved["trashed"],
        burst_column=resolved["burst"],
        screenshot_column=resolved["screenshot"],
        adjustments_column=resolved["adjustments"],
    )


def build_asset_query(schema: SchemaInfo) -> str:
    """Return the ``SELECT`` that projects every catalog row uniformly."""

    return (
        "SELECT Z_PK, ZFILENAME, ZDIRECTORY, "
        f"{schema.creation_column}, {schema.modification_column}, ZHIDDEN, "
        f"{schema.trashed_column}, ZKINDSUBTYPE, {schema.burst_column}, "
        f"{schema.screenshot_column}, {schema.adjustments_column} "
        f"FROM {schema.table_name} "
        "WHERE ZFILENAME IS NOT NULL AND ZFILENAME != '' "
        f"ORDER BY {schema.creation_column} ASC"
    )


def _connect_read_only(path: Path) -> sqlite3.Connection:
    uri = f"{path.resolve().as_uri()}?mode=ro"
    return sqlite3.connect(uri, uri=True)


def _as_bool(value: object) -> bool:
    try:
        return value is not None and int(value) == 1  # type: ignore[call-overload]
    except (TypeError, ValueError):
        return False


class PhotosDatabase:
    """Connection to a single ``Photos.sqlite`` file."""

    def __init__(self, path: Path) -> None:
        self.path = Path(path)
        try:
            self._conn: Optional[sqlite3.Connection] = _connect_read_only(self.path)
        except sqlite3.Error as exc:
            raise PhotosDatabaseError(f"failed to open database {self.path}: {exc}") from exc
        try:
            self.ping()
        except PhotosDatabaseError:
            self.close()
            raise

    def __enter__(self) -> "PhotosDatabase":
        return self

    def __exit__(self, *exc_info) -> None:
        self.close()

    @property
    def connection(self) -> sqlite3.Connection:
        if self._conn is None:
            raise PhotosDatabaseError(f"database {self.path} is closed")
        return self._conn

    def close(self) -> None:
        if self._conn is not None:
            self._conn.close()
            self._conn = None

    def ping(self) -> None:
        try:
            self.connection.execute("SELECT 1 FROM sqlite_master LIMIT 1").fetchall()
        except sqlite3.DatabaseError as exc:
            raise PhotosDatabaseError(f"failed to ping database {self.path}: {exc}") from exc

    def table_columns(self, table: str = ASSET_TABLE) -> list[tuple[str, str, bool, bool]]:
        """Return ``(name, type, not_null, primary_key)`` for each column of *table*."""

        try:
            rows = self.connection.execute(f"PRAGMA table_info({table})").fetchall()
        except sqlite3.DatabaseError as exc:
            raise PhotosDatabaseError(f"failed to get {table} table info: {exc}") from exc
        return [(row[1], row[2], bool(row[3]), bool(row[5])) for row in rows]

    def detect_schema(self) -> SchemaInfo:
        columns = self.table_columns()
        if not columns:
            raise CatalogSchemaError(f"{ASSET_TABLE} table has no columns or doesn't exist")
        logger.debug(
            "Photos.sqlite %s table columns found: %s",
            ASSET_TABLE,
            ", ".join(name for name, _, _, _ in columns),
        )
        schema = select_columns([name for name, _, _, _ in columns])
        logger.debug(
            "Selected columns: creation=%s modification=%s trashed=%s burst=%s screenshot=%s adjustments=%s",
            schema.creation_column,
            schema.modification_column,
            schema.trashed_column,
            schema.burst_column,
            schema.screenshot_column,
            schema.adjustments_column,
        )
        return schema

    def get_assets(self, dcim_root: Path | str, token: Optional[CancellationToken] = None) -> list[Asset]:
        """Return every catalog asset, ordered by creation date.

        Source paths are composed as ``<dcim_root>/<ZDIRECTORY>/<ZFILENAME>``
        and are not checked for existence here.
        """

        schema = self.detect_schema()
        query = build_asset_query(schema)
        logger.debug("Generated Photos.sqlite query: %s", query)
        try:
            cursor = self.connection.execute(query)
        except sqlite3.DatabaseError as exc:
            raise CatalogSchemaError(
                f"failed to query assets (using schema with creation date column {schema.creation_column}): {exc}"
            ) from exc

        assets: list[Asset] = []
        root = os.fspath(dcim_root)
        for index, row in enumerate(cursor):
            if token is not None and index % _PROGRESS_CHECK_INTERVAL == 0:
                token.raise_if_cancelled()
            asset = self._row_to_asset(row, schema, root)
            if asset is not None:
                assets.append(asset)
        return assets

    @staticmethod
    def _row_to_asset(row: tuple, schema: SchemaInfo, dcim_root: str) -> Optional[Asset]:
        (
            pk,
            filename,
            directory,
            created_raw,
            modified_raw,
            hidden,
            trashed,
            kind_subtype,
            burst_id,
            is_screenshot,
            _has_adjustments,
        ) = row
        if not filename:
            return None
        try:
            created = core_data_to_datetime(float(created_raw)) if created_raw is not None else None
            modified = core_data_to_datetime(float(modified_raw)) if modified_raw is not None else None
        except (TypeError, ValueError, OverflowError) as exc:
            raise RowDecodeError(
                f"failed to scan row {pk} (using schema with creation date column {schema.creation_column}): {exc}"
            ) from exc
        if created is None:
            logger.debug("Skipping catalog row %s without a creation date", pk)
            return None

        burst_text = str(burst_id) if burst_id not in (None, "") else None
        flags = AssetFlags(
            hidden=_as_bool(hidden),
            recently_deleted=_as_bool(trashed),
            screenshot=_as_bool(is_screenshot),
            burst=burst_text is not None,
            live_photo=kind_subtype is not None and _as_int(kind_subtype) == LIVE_PHOTO_KIND_SUBTYPE,
            burst_id=burst_text,
        )
        source_path = os.path.abspath(os.path.join(dcim_root, str(directory or ""), str(filename)))
        return Asset(
            id=str(pk),
            source_path=source_path,
            filename=str(filename),
            type=classify_asset(str(filename), flags),
            creation_date=created,
            modified_date=modified,
            flags=flags,
        )


def _as_int(value: object) -> Optional[int]:
    try:
        return int(value)  # type: ignore[call-overload]
    except (TypeError, ValueError):
        return None


def validate_database(path: Path) -> None:
    """Raise :class:`PhotosDatabaseError` unless *path* holds a ``ZASSET`` table."""

    try:
        conn = _connect_read_only(Path(path))
    except sqlite3.Error as exc:
        raise PhotosDatabaseError(f"failed to open database: {exc}") from exc
    try:
        row = conn.execute(
            "SELECT COUNT(*) FROM sqlite_master WHERE type='table' AND name=?",
            (ASSET_TABLE,),
        ).fetchone()
    except sqlite3.DatabaseError as exc:
        raise PhotosDatabaseError(f"failed to check for {ASSET_TABLE} table: {exc}") from exc
    finally:
        conn.close()
    if not row or row[0] == 0:
        raise PhotosDatabaseError(
            f"{ASSET_TABLE} table not found - this doesn't appear to be a valid Photos.sqlite database"
        )


def is_photos_database(path: Path) -> bool:
    try:
        validate_database(path)
    except PhotosDatabaseError:
        return False
    return True


__all__ = [
    "ASSET_TABLE",
    "COLUMN_CANDIDATES",
    "COLUMN_EXPRESSIONS",
    "COLUMN_FALLBACKS",
    "PhotosDatabase",
    "SchemaInfo",
    "build_asset_query",
    "is_photos_database",
    "select_columns",
    "validate_database",
]
