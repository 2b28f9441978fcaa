"""Exception hierarchy for the ingestion and placement pipeline."""

from __future__ import annotations


class AlexandriaError(Exception):
    """Base exception for pipeline errors."""

    def __init__(self, message: str, code: str = "INTERNAL_ERROR"):
        self.message = message
        self.code = code
        super().__init__(message)


class CorruptArchiveError(AlexandriaError):
    """Raised when an archive container cannot be opened or read."""

    def __init__(self, message: str):
        super().__init__(message, "CORRUPT_ARCHIVE")


class ArchiveIOError(AlexandriaError):
    """Raised when writing extracted or placed files fails (disk full, permissions)."""

    def __init__(self, message: str):
        super().__init__(message, "IO_FAILURE")


class PathEscapeError(AlexandriaError):
    """Raised when a resolved storage path falls outside its library root."""

    def __init__(self, message: str):
        super().__init__(message, "PATH_ESCAPE")


class InvalidConfigurationError(AlexandriaError):
    """Raised for an unknown strategy name, malformed template, or bad library config."""

    def __init__(self, message: str, field: str | None = None):
        self.field = field
        super().__init__(message, "INVALID_CONFIGURATION")


class ThumbnailError(AlexandriaError):
    """Raised when a source file cannot be decoded as a raster image."""

    def __init__(self, message: str):
        super().__init__(message, "THUMBNAIL_FAILURE")


class NotFoundError(AlexandriaError):
    """Raised when a referenced model or library does not exist."""

    def __init__(self, message: str):
        super().__init__(message, "NOT_FOUND")


# Errors that fail the same way on every attempt of a job
NON_RETRYABLE_ERRORS: tuple[type[AlexandriaError], ...] = (
    CorruptArchiveError,
    PathEscapeError,
    InvalidConfigurationError,
    NotFoundError,
)
