"""
Custom exception hierarchy for File My Photos.

Per-file problems during a scan or organize batch are recorded in the
catalog's error table instead of being raised; the exceptions here surface
structural failures and revert precondition violations.
"""


class FileMyPhotosError(Exception):
    """Base exception for all File My Photos errors."""
    pass


class FileHashError(FileMyPhotosError):
    """Raised when file hashing fails."""
    pass


class MetadataExtractionError(FileMyPhotosError):
    """Raised when filesystem metadata cannot be read for a path."""
    pass


class DatabaseError(FileMyPhotosError):
    """Raised when catalog operations fail."""
    pass


class FileOperationError(FileMyPhotosError):
    """Raised when a move or directory operation fails."""
    pass


class FileNotInCatalogError(FileMyPhotosError):
    """Raised when a file id has no catalog row."""
    pass


class ScanError(FileMyPhotosError):
    """Raised when the scan root itself cannot be enumerated."""
    pass


class OrganizeError(FileMyPhotosError):
    """Raised when the destination base cannot be used for a batch."""
    pass


class OperationInProgressError(FileMyPhotosError):
    """Raised when a scan or organize is requested while one is already running."""
    pass


class OperationCancelledError(FileMyPhotosError):
    """Raised internally when a cancel request is seen at a per-file checkpoint."""
    pass


class RevertError(FileMyPhotosError):
    """Base class for revert precondition violations."""
    pass


class NotRevertibleError(RevertError):
    """Raised when the ledger entry is not a move."""
    pass


class AlreadyRevertedError(RevertError):
    """Raised when the ledger entry was reverted before."""
    pass


class SourceMissingError(RevertError):
    """Raised when the moved file no longer exists at its destination."""
    pass


class ContentModifiedError(RevertError):
    """Raised when the file at the destination no longer matches its recorded hash."""
    pass


class OriginalOccupiedError(RevertError):
    """Raised when something already exists at the original location."""
    pass
