"""Enum types for database models."""

from __future__ import annotations

import enum


class ModelStatus(str, enum.Enum):
    """Lifecycle of an ingested model."""

    PROCESSING = "processing"
    READY = "ready"
    ERROR = "error"


class SourceType(str, enum.Enum):
    """How a model entered the library."""

    ARCHIVE_UPLOAD = "archive_upload"
    FOLDER_IMPORT = "folder_import"
    MANUAL = "manual"


class FileType(str, enum.Enum):
    """Classification of a model file by extension."""

    STL = "stl"
    IMAGE = "image"
    DOCUMENT = "document"
    OTHER = "other"


class ThumbnailSize(str, enum.Enum):
    """Rendition sizes produced for every image file."""

    GRID = "grid"  # Small preview for cards
    DETAIL = "detail"  # Larger preview for the model page


class JobType(str, enum.Enum):
    """Types of background jobs. Each type is its own worker lane."""

    INGEST_ARCHIVE = "INGEST_ARCHIVE"
    IMPORT_FOLDER = "IMPORT_FOLDER"


class JobStatus(str, enum.Enum):
    """Status of a background job."""

    QUEUED = "QUEUED"
    RUNNING = "RUNNING"
    SUCCESS = "SUCCESS"
    FAILED = "FAILED"
