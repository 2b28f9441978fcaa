"""Business logic services for Alexandria."""

from alexandria.services.archive import ArchiveProcessor, Manifest, ManifestEntry
from alexandria.services.import_strategy import ImportStrategy, parse_import_strategy, place
from alexandria.services.job_queue import JobQueueService
from alexandria.services.storage import StorageService, resolve_model_path
from alexandria.services.thumbnail import ThumbnailGenerator

__all__ = [
    "ArchiveProcessor",
    "ImportStrategy",
    "JobQueueService",
    "Manifest",
    "ManifestEntry",
    "StorageService",
    "ThumbnailGenerator",
    "parse_import_strategy",
    "place",
    "resolve_model_path",
]
