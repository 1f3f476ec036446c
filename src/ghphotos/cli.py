"""Typer-based CLI entry point."""

from __future__ import annotations

import functools
import json
import os
import signal
from pathlib import Path
from typing import Callable, List, Optional

import typer

from .audit import build_sync_command, load_latest_manifest
from .backup.extractor import Extractor
from .backup.locator import resolve_backup_path, validate_backup_directory
from .backup.manifest_db import ManifestDB, is_backup_encrypted
from .backup.parser import ENCRYPTED_BACKUP_MESSAGE, BackupParser
from .cancellation import CancellationToken
from .config import (
    DEFAULT_EXTRACT_OUTPUT,
    DEFAULT_PATH_GRANULARITY,
    EXTRACTION_METADATA_NAME,
    MANIFEST_DB_NAME,
    PATH_GRANULARITIES,
    VERSION,
    ExtractOptions,
    SyncOptions,
)
from .errors import (
    ConfigurationError,
    EncryptedBackupError,
    GhPhotosError,
    ManifestInvalidError,
    OperationCancelledError,
    PhotosDatabaseError,
)
from .manifest import humanize_bytes
from .metadata import CommandMetadata
from .models.asset import Asset, AssetType
from .photos.database import is_photos_database, validate_database
from .planner import AssetFilter
from .uploader.sync import SyncRunner
from .utils.console import echo
from .utils.dates import format_rfc3339, parse_cli_date
from .utils.logging import configure_logging, get_logger, resolve_log_level

logger = get_logger()

CANCELLED_EXIT_CODE = 130
_PHOTO_DOMAIN_MARKERS = ("photo", "media", "camera")
_MAX_LISTED_FILES = 25

app = typer.Typer(help="Extract photos and videos from iPhone backups and upload them with rclone")

LogLevelOption = typer.Option(None, "--log-level", help="Log level: debug, info, warn or error (env: LOG_LEVEL)")


def _handle_errors(func):
    @functools.wraps(func)
    def wrapper(*args, **kwargs):
        try:
            return func(*args, **kwargs)
        except OperationCancelledError as exc:
            typer.echo(f"Error: {exc}", err=True)
            raise typer.Exit(CANCELLED_EXIT_CODE) from exc
        except GhPhotosError as exc:
            typer.echo(f"Error: {exc}", err=True)
            raise typer.Exit(1) from exc

    return wrapper


def _setup_logging(log_level: Optional[str]) -> str:
    level = resolve_log_level(log_level, explicit=log_level is not None)
    configure_logging(level)
    return level


def _install_signal_handlers(token: CancellationToken) -> Callable[[], None]:
    """Cancel *token* on SIGINT/SIGTERM; return a function restoring the old handlers."""

    def _handler(signum, _frame) -> None:
        logger.warning("Received interrupt signal, shutting down gracefully...")
        token.cancel(f"operation cancelled by signal {signal.Signals(signum).name}")

    previous = {}
    for sig in (signal.SIGINT, signal.SIGTERM):
        try:
            previous[sig] = signal.signal(sig, _handler)
        except ValueError:
            # Not running in the main thread.
            continue

    def restore() -> None:
        for sig, handler in previous.items():
            signal.signal(sig, handler)

    return restore


def _parse_types(value: Optional[str]) -> list[str]:
    if not value:
        return []
    types = [item.strip() for item in value.split(",") if item.strip()]
    for item in types:
        try:
            AssetType.parse(item)
        except ValueError as exc:
            valid = ", ".join(member.value for member in AssetType)
            raise ConfigurationError(f"invalid asset type '{item}'. Valid types: {valid}") from exc
    return types


def _check_granularity(value: str) -> str:
    normalised = value.strip().lower()
    if normalised not in PATH_GRANULARITIES:
        raise ConfigurationError(
            f"invalid path granularity '{value}'. Valid values: {', '.join(PATH_GRANULARITIES)}"
        )
    return normalised


def _from_command_line(ctx: typer.Context, name: str) -> bool:
    source = ctx.get_parameter_source(name)
    return source is not None and source.name == "COMMANDLINE"


def _apply_last_command(ctx: typer.Context, options: SyncOptions, backup_given: bool, remote_given: bool) -> None:
    """Fill options not given on the command line from the latest audit trail."""

    try:
        trail = load_latest_manifest()
    except (OSError, ManifestInvalidError) as exc:
        raise ConfigurationError(f"could not load last manifest from ~/gh-photos/manifest.json: {exc}") from exc

    flags = trail.invocation.flags
    if not _from_command_line(ctx, "include_hidden"):
        options.include_hidden = flags.include_hidden
    if not _from_command_line(ctx, "include_recently_deleted"):
        options.include_recently_deleted = flags.include_recently_deleted
    if not _from_command_line(ctx, "parallel") and flags.parallel > 0:
        options.parallel = flags.parallel
    if not _from_command_line(ctx, "skip_existing") and not _from_command_line(ctx, "force_overwrite"):
        options.skip_existing = flags.skip_existing
    if not _from_command_line(ctx, "dry_run"):
        options.dry_run = flags.dry_run
    if not _from_command_line(ctx, "log_level") and flags.log_level:
        options.log_level = flags.log_level
    if not _from_command_line(ctx, "types") and flags.types:
        options.asset_types = list(flags.types)
    if not _from_command_line(ctx, "start_date") and flags.start_date is not None:
        options.start_date = flags.start_date
    if not _from_command_line(ctx, "end_date") and flags.end_date is not None:
        options.end_date = flags.end_date
    if not _from_command_line(ctx, "verify"):
        options.verify = flags.verify
    if not _from_command_line(ctx, "checksum"):
        options.checksum = flags.checksum

    if not backup_given:
        options.backup_path = Path(trail.device.backup_path)
    if not remote_given:
        options.remote = trail.invocation.remote
    echo(f"✓ Loaded configuration from last successful run ({trail.run_id})", style="green")


@app.command()
@_handle_errors
def sync(
    ctx: typer.Context,
    backup_path: Optional[Path] = typer.Argument(None, help="iPhone backup or extracted directory"),
    remote: Optional[str] = typer.Argument(None, help="rclone remote, e.g. gdrive:photos/iphone"),
    include_hidden: bool = typer.Option(False, "--include-hidden", help="Include assets flagged as hidden"),
    include_recently_deleted: bool = typer.Option(
        False, "--include-recently-deleted", help="Include assets flagged as recently deleted"
    ),
    dry_run: bool = typer.Option(False, "--dry-run", help="Preview operations without uploading"),
    skip_existing: bool = typer.Option(
        True, "--skip-existing/--no-skip-existing", help="Skip files that already exist on the remote"
    ),
    force_overwrite: bool = typer.Option(
        False, "--force-overwrite", help="Overwrite existing files on the remote (opposite of --skip-existing)"
    ),
    verify: bool = typer.Option(False, "--verify", help="Verify uploaded files match their source"),
    checksum: bool = typer.Option(False, "--checksum", help="Compute SHA-256 checksums for assets"),
    parallel: int = typer.Option(1, "--parallel", min=1, help="Number of parallel rclone transfers"),
    types: Optional[str] = typer.Option(
        None, "--types", help="Comma separated asset types (photos,videos,screenshots,burst,live_photos)"
    ),
    start_date: Optional[str] = typer.Option(None, "--start-date", help="Start date filter (YYYY-MM-DD)"),
    end_date: Optional[str] = typer.Option(None, "--end-date", help="End date filter (YYYY-MM-DD, inclusive)"),
    ignore_pattern: Optional[List[str]] = typer.Option(
        None, "--ignore-pattern", help="Skip assets whose path matches this pattern (repeatable)"
    ),
    path_granularity: str = typer.Option(
        DEFAULT_PATH_GRANULARITY, "--path-granularity", help="Remote folder depth: year, month or day"
    ),
    save_manifest: Optional[Path] = typer.Option(None, "--save-manifest", help="Write the run manifest (JSON) here"),
    save_audit_manifest: Optional[Path] = typer.Option(
        None, "--save-audit-manifest", help="Write an additional copy of the audit trail here"
    ),
    remote_prescan: bool = typer.Option(
        False, "--remote-prescan", help="List the remote before uploading to plan skips up front"
    ),
    use_last_command: bool = typer.Option(
        False, "--use-last-command", help="Reuse settings from ~/gh-photos/manifest.json"
    ),
    log_level: Optional[str] = LogLevelOption,
) -> None:
    """Sync iPhone photos from a backup to an rclone remote."""

    level = _setup_logging(log_level)
    options = SyncOptions(
        backup_path=backup_path or Path(),
        remote=remote or "",
        include_hidden=include_hidden,
        include_recently_deleted=include_recently_deleted,
        dry_run=dry_run,
        skip_existing=skip_existing,
        verify=verify,
        parallel=parallel,
        start_date=parse_cli_date(start_date, option="start-date"),
        end_date=parse_cli_date(end_date, end_of_day=True, option="end-date"),
        asset_types=_parse_types(types),
        ignore_patterns=list(ignore_pattern or []),
        path_granularity=_check_granularity(path_granularity),
        save_manifest=save_manifest,
        save_audit_manifest=save_audit_manifest,
        checksum=checksum,
        log_level=level,
        remote_prescan=remote_prescan,
    )
    if use_last_command:
        _apply_last_command(ctx, options, backup_path is not None, remote is not None)
        if options.log_level != level:
            options.log_level = resolve_log_level(options.log_level, explicit=True)
            configure_logging(options.log_level)
    if force_overwrite:
        options.skip_existing = False
    if (backup_path is None and not use_last_command) or not options.remote:
        raise ConfigurationError("sync requires <backup-path> and <remote> (or --use-last-command)")
    options.backup_path = Path(os.path.abspath(options.backup_path))

    token = CancellationToken()
    restore = _install_signal_handlers(token)
    runner = SyncRunner(options)
    try:
        runner.run(token)
    finally:
        restore()
        if runner.manifest is not None:
            runner.print_summaries()
    if not options.dry_run:
        echo("✓ Sync completed successfully", style="green")


@app.command()
@_handle_errors
def validate(
    backup_path: Optional[Path] = typer.Argument(None, help="Backup directory (default: current directory)"),
    log_level: Optional[str] = LogLevelOption,
) -> None:
    """Validate an iPhone backup directory."""

    _setup_logging(log_level)
    path = backup_path or Path.cwd()
    echo(f"Validating backup directory: {path}\n")
    root = resolve_backup_path(path)
    validate_backup_directory(root)
    if root != path:
        echo(f"Resolved backup root: {root}")

    if (root / EXTRACTION_METADATA_NAME).is_file():
        echo("✓ Found extraction metadata - this is an extracted backup directory", style="green")
        with BackupParser.open(root) as parser:
            assets = parser.parse_assets_for_extraction()
        echo(f"✓ {len(assets)} assets recorded in {EXTRACTION_METADATA_NAME}", style="green")
        echo("\n✓ Backup validation completed successfully", style="green")
        return

    echo("✓ Valid iPhone backup directory structure", style="green")
    if is_backup_encrypted(root):
        raise EncryptedBackupError(ENCRYPTED_BACKUP_MESSAGE)

    has_manifest_db = (root / MANIFEST_DB_NAME).is_file()
    if has_manifest_db:
        echo("✓ Found Manifest.db - this is a hashed iPhone backup", style="green")
    else:
        echo("⚠ No Manifest.db found - checking for traditional directory structure", style="yellow")

    echo("\nSearching for Photos.sqlite...")
    if has_manifest_db:
        try:
            _validate_with_manifest_db(root)
        except GhPhotosError as exc:
            echo(f"✗ Error using Manifest.db: {exc}", style="red")
            echo("⚠ Falling back to traditional search...", style="yellow")
            _validate_by_walking(root)
    else:
        _validate_by_walking(root)

    echo("\n✓ Backup validation completed successfully", style="green")


def _validate_with_manifest_db(root: Path) -> None:
    with ManifestDB.open(root) as manifest:
        manifest.validate_schema()
        domains = manifest.get_domains()
        echo(f"Found {len(domains)} domains in backup")
        photo_domains = [name for name in domains if any(marker in name.lower() for marker in _PHOTO_DOMAIN_MARKERS)]
        if photo_domains:
            echo("Photo-related domains found:", style="cyan")
            for name in photo_domains:
                echo(f"  - {name}")

        files = manifest.list_photos_related_files()
        if files:
            echo("\nPhotos-related files found:", style="cyan")
            for record in files[:_MAX_LISTED_FILES]:
                echo(f"  - {record.domain}: {record.relative_path}")
            if len(files) > _MAX_LISTED_FILES:
                echo(f"  ... and {len(files) - _MAX_LISTED_FILES} more")

        photos_path = manifest.find_photos_database()
    validate_database(photos_path)
    echo(f"✓ Found and validated Photos.sqlite at: {photos_path}", style="green")


def _validate_by_walking(root: Path) -> None:
    for dirpath, _dirnames, filenames in os.walk(root):
        if "Photos.sqlite" in filenames:
            candidate = Path(dirpath) / "Photos.sqlite"
            if is_photos_database(candidate):
                echo(f"✓ Found and validated Photos.sqlite at: {candidate}", style="green")
                return
    echo("✗ Photos.sqlite not found in backup directory", style="red")
    raise PhotosDatabaseError("could not locate Photos.sqlite")


def _flag_names(asset: Asset) -> list[str]:
    flags = asset.flags
    names = [
        name
        for name, enabled in (
            ("hidden", flags.hidden),
            ("recently_deleted", flags.recently_deleted),
            ("screenshot", flags.screenshot),
            ("burst", flags.burst),
            ("live_photo", flags.live_photo),
        )
        if enabled
    ]
    return names


@app.command("list")
@_handle_errors
def list_assets(
    backup_path: Path = typer.Argument(..., help="iPhone backup or extracted directory"),
    include_hidden: bool = typer.Option(False, "--include-hidden", help="Include hidden assets"),
    include_recently_deleted: bool = typer.Option(
        False, "--include-recently-deleted", help="Include recently deleted assets"
    ),
    types: Optional[str] = typer.Option(None, "--types", help="Filter by comma separated asset types"),
    start_date: Optional[str] = typer.Option(None, "--start-date", help="Start date filter (YYYY-MM-DD)"),
    end_date: Optional[str] = typer.Option(None, "--end-date", help="End date filter (YYYY-MM-DD, inclusive)"),
    ignore_pattern: Optional[List[str]] = typer.Option(None, "--ignore-pattern", help="Skip matching paths"),
    path_granularity: str = typer.Option(DEFAULT_PATH_GRANULARITY, "--path-granularity", help="year, month or day"),
    output_format: str = typer.Option("table", "--format", help="Output format: table or json"),
    log_level: Optional[str] = LogLevelOption,
) -> None:
    """List the assets found in an iPhone backup."""

    _setup_logging(log_level)
    if output_format not in ("table", "json"):
        raise ConfigurationError(f"invalid format '{output_format}'. Valid formats: table, json")
    options = SyncOptions(
        backup_path=backup_path,
        remote="",
        include_hidden=include_hidden,
        include_recently_deleted=include_recently_deleted,
        start_date=parse_cli_date(start_date, option="start-date"),
        end_date=parse_cli_date(end_date, end_of_day=True, option="end-date"),
        asset_types=_parse_types(types),
        ignore_patterns=list(ignore_pattern or []),
        path_granularity=_check_granularity(path_granularity),
    )

    with BackupParser.open(backup_path) as parser:
        assets = parser.parse_assets()
    kept, counts = AssetFilter(options).apply(assets)
    for asset in kept:
        asset.target_path = asset.generate_target_path(options.path_granularity)

    if output_format == "json":
        typer.echo(json.dumps([asset.to_dict() for asset in kept], indent=2))
        return

    typer.echo(f"Listing assets in backup: {backup_path}")
    for asset in kept:
        created = format_rfc3339(asset.creation_date) if asset.creation_date else "-"
        line = f"{asset.id:>8}  {asset.type.audit_name:<11}  {created}  {asset.target_path}"
        flags = _flag_names(asset)
        if flags:
            line += f"  [{', '.join(flags)}]"
        typer.echo(line)
    total_size = sum(asset.file_size for asset in kept)
    typer.echo(f"\n{len(kept)} assets ({humanize_bytes(total_size)}), {counts.total} filtered out")


@app.command()
@_handle_errors
def extract(
    backup_path: Path = typer.Argument(..., help="Hashed iTunes/Finder backup directory"),
    output_path: Optional[Path] = typer.Argument(None, help=f"Output directory (default: {DEFAULT_EXTRACT_OUTPUT})"),
    skip_existing: bool = typer.Option(False, "--skip-existing", help="Skip files already in the output directory"),
    verify: bool = typer.Option(False, "--verify", help="Verify extracted files by comparing SHA-1 checksums"),
    progress: bool = typer.Option(True, "--progress/--no-progress", help="Show extraction progress"),
    log_level: Optional[str] = LogLevelOption,
) -> None:
    """Rebuild a readable directory tree from an unencrypted backup."""

    _setup_logging(log_level)
    root = resolve_backup_path(backup_path)
    output = output_path or Path(DEFAULT_EXTRACT_OUTPUT)
    options = ExtractOptions(
        backup_path=root,
        output_path=output,
        skip_existing=skip_existing,
        verify=verify,
        progress=progress,
    )

    token = CancellationToken()
    restore = _install_signal_handlers(token)
    try:
        with Extractor(options) as extractor:
            summary = extractor.extract(token)
    finally:
        restore()

    if summary.errors:
        echo("\nErrors:", style="yellow")
        for message in summary.errors:
            echo(f"  - {message}")
    echo("✓ Backup extraction completed successfully!", style="green")
    echo("\nExtraction Summary:")
    echo(f"  Total files processed: {summary.total_files}")
    echo(f"  Files extracted: {summary.extracted_files}")
    echo(f"  Files skipped: {summary.skipped_files}")
    echo(f"  Files failed: {summary.failed_files}")
    echo(f"  Domains found: {summary.domains_found}")
    echo(f"  Total size: {humanize_bytes(summary.total_size)}")
    echo(f"  Extracted size: {humanize_bytes(summary.extracted_size)}")
    echo(f"  Duration: {summary.duration:.0f}s")

    assets: list[Asset] = []
    try:
        with BackupParser.open(root) as parser:
            assets = parser.parse_assets_for_extraction(token)
    except GhPhotosError as exc:
        logger.warning("Could not read the photo catalog for extraction metadata: %s", exc)

    metadata = CommandMetadata()
    metadata.set_backup_info(root)
    metadata.ios_backup.total_files = summary.total_files
    metadata.set_asset_counts(assets)
    metadata.print_summary()

    metadata_path = output / EXTRACTION_METADATA_NAME
    try:
        metadata.save_to_manifest(metadata_path, assets)
    except OSError as exc:
        logger.warning("Could not save metadata to %s: %s", metadata_path, exc)
    else:
        echo(f"\nMetadata saved to: {metadata_path}")
    echo(f"\nExtracted backup is available at: {output}")

    try:
        trail = load_latest_manifest()
    except (OSError, ManifestInvalidError):
        return
    echo("\nTo sync this extracted backup with the settings of your last run:")
    echo(f"  gh-photos {build_sync_command(trail.invocation, str(output))}")


@app.command()
def version() -> None:
    """Print the gh-photos version."""

    typer.echo(f"gh-photos {VERSION}")


def main() -> None:
    app()


if __name__ == "__main__":  # pragma: no cover
    main()
