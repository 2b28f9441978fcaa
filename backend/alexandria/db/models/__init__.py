"""Database models for Alexandria."""

from alexandria.db.models.collection import Collection, CollectionModel
from alexandria.db.models.enums import (
    FileType,
    JobStatus,
    JobType,
    ModelStatus,
    SourceType,
    ThumbnailSize,
)
from alexandria.db.models.job import Job
from alexandria.db.models.library import Library
from alexandria.db.models.metadata_value import MetadataValue
from alexandria.db.models.model import Model
from alexandria.db.models.model_file import ModelFile
from alexandria.db.models.thumbnail import Thumbnail

__all__ = [
    # Models
    "Collection",
    "CollectionModel",
    "Job",
    "Library",
    "MetadataValue",
    "Model",
    "ModelFile",
    "Thumbnail",
    # Enums
    "FileType",
    "JobStatus",
    "JobType",
    "ModelStatus",
    "SourceType",
    "ThumbnailSize",
]
