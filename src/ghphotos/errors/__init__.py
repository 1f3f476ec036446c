"""Custom exception hierarchy for gh-photos."""

from __future__ import annotations


class GhPhotosError(Exception):
    """Base class for all custom errors raised by gh-photos."""


# --- 3-layer hierarchy ---

class DomainError(GhPhotosError):
    """Base class for errors about the backup or its contents."""


class InfrastructureError(GhPhotosError):
    """Base class for database, filesystem and external tool errors."""


class ApplicationError(GhPhotosError):
    """Base class for errors raised while orchestrating a run."""


# --- Domain errors ---

class BackupPathError(DomainError):
    """Raised when the supplied backup path is missing or not a backup."""


class AmbiguousBackupError(BackupPathError):
    """Raised when several backups are found and none was selected explicitly."""


class EncryptedBackupError(DomainError):
    """Raised when the backup is encrypted."""


class IndexSchemaError(DomainError):
    """Raised when Manifest.db does not have the expected ``Files`` schema."""


class CatalogSchemaError(DomainError):
    """Raised when Photos.sqlite lacks the columns needed to read assets."""


class AssetNotFoundError(DomainError):
    """Raised when an asset's source file cannot be located on disk."""


# --- Infrastructure errors ---

class ManifestDBError(InfrastructureError):
    """Raised when Manifest.db cannot be opened or queried."""


class PhotosDatabaseError(InfrastructureError):
    """Raised when Photos.sqlite cannot be located, opened or queried."""


class RowDecodeError(PhotosDatabaseError):
    """Raised when a single catalog row cannot be decoded."""


class ExternalToolError(InfrastructureError):
    """Raised when the rclone executable fails."""


class ToolTimeoutError(ExternalToolError):
    """Raised when an rclone invocation exceeds its time limit."""


class RcloneNotFoundError(ExternalToolError):
    """Raised when rclone is not installed or not on PATH."""


class RemoteNotFoundError(ExternalToolError):
    """Raised when the requested remote is not configured in rclone."""


class RemoteAuthError(ExternalToolError):
    """Raised when the remote rejects a listing because of authentication."""


class AuditWriteError(InfrastructureError):
    """Raised when the audit trail cannot be written."""


# --- Application errors ---

class ConfigurationError(ApplicationError):
    """Raised when command line options are invalid."""


class UploadBatchError(ApplicationError):
    """Raised when one or more upload batches failed."""

    def __init__(self, message: str, failed_entries: int = 0) -> None:
        super().__init__(message)
        self.failed_entries = failed_entries


class VerificationError(ApplicationError):
    """Raised when an uploaded file does not match its source."""


class OperationCancelledError(ApplicationError):
    """Raised when a run is cancelled through its cancellation token."""


class ManifestInvalidError(GhPhotosError):
    """Raised when a JSON document fails validation against its schema."""
