"""Background workers for Alexandria."""

from alexandria.workers.base import BaseWorker, NonRetryableError, RetryableError, is_retryable
from alexandria.workers.folder_import import FolderImportWorker
from alexandria.workers.ingest import IngestArchiveWorker
from alexandria.workers.manager import WorkerManager, create_worker_manager

__all__ = [
    # Base classes
    "BaseWorker",
    "is_retryable",
    "RetryableError",
    "NonRetryableError",
    # Workers
    "FolderImportWorker",
    "IngestArchiveWorker",
    # Manager
    "WorkerManager",
    "create_worker_manager",
]
