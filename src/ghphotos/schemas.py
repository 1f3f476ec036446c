"""JSON schemas for the documents gh-photos reads and writes."""

from __future__ import annotations

from typing import Any

from jsonschema import Draft202012Validator
from jsonschema.exceptions import best_match

from .errors import ManifestInvalidError

_NULLABLE_STRING: dict[str, Any] = {"type": ["string", "null"]}

ASSET_SCHEMA: dict[str, Any] = {
    "type": "object",
    "required": ["filename"],
    "properties": {
        "id": {"type": ["string", "integer"]},
        "source_path": {"type": "string"},
        "filename": {"type": "string"},
        "type": {"type": "string"},
        "creation_date": _NULLABLE_STRING,
        "modified_date": _NULLABLE_STRING,
        "flags": {"type": ["object", "null"]},
        "file_size": {"type": "integer", "minimum": 0},
        "checksum": {"type": "string"},
        "mime_type": {"type": "string"},
        "target_path": {"type": "string"},
    },
    "additionalProperties": True,
}

EXTRACTION_METADATA_SCHEMA: dict[str, Any] = {
    "$id": "gh-photos/extraction-metadata.schema.json",
    "type": "object",
    "properties": {
        "assets": {"type": ["array", "null"], "items": ASSET_SCHEMA},
        "command_metadata": {
            "type": "object",
            "properties": {
                "completed_at": {"type": "string"},
                "cli_version": {"type": "string"},
                "system": {"type": "object"},
                "ios_backup": {"type": "object"},
                "asset_counts": {"type": "object"},
            },
            "additionalProperties": True,
        },
    },
    "additionalProperties": True,
}

PLAN_MANIFEST_SCHEMA: dict[str, Any] = {
    "$id": "gh-photos/plan-manifest.schema.json",
    "type": "object",
    "required": ["generated_at", "backup_path", "remote_target", "summary", "entries"],
    "properties": {
        "generated_at": {"type": "string"},
        "backup_path": {"type": "string"},
        "remote_target": {"type": "string"},
        "config": {"type": "object"},
        "summary": {
            "type": "object",
            "properties": {
                "total_assets": {"type": "integer"},
                "processed_assets": {"type": "integer"},
                "skipped_assets": {"type": "integer"},
                "uploaded_assets": {"type": "integer"},
                "failed_assets": {"type": "integer"},
                "missing_assets": {"type": "integer"},
                "verified_assets": {"type": "integer"},
                "total_size": {"type": "integer"},
                "uploaded_size": {"type": "integer"},
                "duration_seconds": {"type": "number"},
            },
        },
        "entries": {
            "type": "array",
            "items": {
                "type": "object",
                "required": ["source_path", "target_path", "filename", "status"],
                "properties": {
                    "source_path": {"type": "string"},
                    "target_path": {"type": "string"},
                    "filename": {"type": "string"},
                    "asset_type": {"type": "string"},
                    "creation_date": _NULLABLE_STRING,
                    "file_size": {"type": "integer"},
                    "checksum": {"type": "string"},
                    "mime_type": {"type": "string"},
                    "status": {
                        "enum": ["pending", "skipped", "uploaded", "failed", "missing", "verified"],
                    },
                    "flags": {"type": "object"},
                    "error": {"type": "string"},
                },
            },
        },
    },
    "additionalProperties": True,
}

AUDIT_TRAIL_SCHEMA: dict[str, Any] = {
    "$id": "gh-photos/audit-trail.schema.json",
    "type": "object",
    "required": ["metadata", "assets"],
    "properties": {
        "metadata": {
            "type": "object",
            "required": ["run_id", "cli_version", "device", "invocation", "summary", "system"],
            "properties": {
                "run_id": {"type": "string"},
                "cli_version": {"type": "string"},
                "device": {
                    "type": "object",
                    "required": ["backup_path"],
                    "properties": {
                        "backup_path": {"type": "string"},
                        "device_name": {"type": "string"},
                        "device_uuid": {"type": "string"},
                        "ios_version": {"type": "string"},
                    },
                },
                "invocation": {
                    "type": "object",
                    "required": ["remote", "flags"],
                    "properties": {
                        "remote": {"type": "string"},
                        "flags": {
                            "type": "object",
                            "properties": {
                                "include_hidden": {"type": "boolean"},
                                "include_recently_deleted": {"type": "boolean"},
                                "parallel": {"type": "integer", "minimum": 0},
                                "skip_existing": {"type": "boolean"},
                                "dry_run": {"type": "boolean"},
                                "log_level": {"type": "string"},
                                "types": {"type": ["array", "null"], "items": {"type": "string"}},
                                "start_date": _NULLABLE_STRING,
                                "end_date": _NULLABLE_STRING,
                                "verify": {"type": "boolean"},
                                "checksum": {"type": "boolean"},
                            },
                        },
                    },
                },
                "summary": {
                    "type": "object",
                    "properties": {
                        "assets_total": {"type": "integer"},
                        "assets_uploaded": {"type": "integer"},
                        "assets_skipped": {"type": "integer"},
                        "assets_failed": {"type": "integer"},
                        "bytes_transferred": {"type": "integer"},
                        "duration_seconds": {"type": "number"},
                    },
                },
                "system": {"type": "object"},
            },
        },
        "assets": {
            "type": "array",
            "items": {
                "type": "object",
                "required": ["uuid", "local_path", "remote_path", "type", "status"],
                "properties": {
                    "uuid": {"type": "string"},
                    "local_path": {"type": "string"},
                    "remote_path": {"type": "string"},
                    "size_bytes": {"type": "integer"},
                    "sha256": {"type": "string"},
                    "type": {"type": "string"},
                    "hidden": {"type": "boolean"},
                    "deleted": {"type": "boolean"},
                    "created_at": _NULLABLE_STRING,
                    "status": {"type": "string"},
                },
            },
        },
    },
    "additionalProperties": True,
}

_VALIDATORS: dict[str, Draft202012Validator] = {
    "extraction metadata": Draft202012Validator(EXTRACTION_METADATA_SCHEMA),
    "plan manifest": Draft202012Validator(PLAN_MANIFEST_SCHEMA),
    "audit trail": Draft202012Validator(AUDIT_TRAIL_SCHEMA),
}


def validate_document(kind: str, data: Any) -> None:
    """Validate *data* against the schema registered for *kind*.

    Raises
    ------
    ManifestInvalidError
        Raised with the first validation failure, prefixed by its JSON path.
    """

    validator = _VALIDATORS[kind]
    error = best_match(validator.iter_errors(data))
    if error is None:
        return
    location = "/".join(str(part) for part in error.absolute_path) or "<root>"
    raise ManifestInvalidError(f"invalid {kind} at {location}: {error.message}")


__all__ = [
    "ASSET_SCHEMA",
    "AUDIT_TRAIL_SCHEMA",
    "EXTRACTION_METADATA_SCHEMA",
    "PLAN_MANIFEST_SCHEMA",
    "validate_document",
]
