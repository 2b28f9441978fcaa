"""Explicit dependency bundle for the ingestion pipeline."""

from __future__ import annotations

from dataclasses import dataclass

from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from alexandria.core.config import Settings
from alexandria.services.archive import ArchiveProcessor
from alexandria.services.collection import CollectionService
from alexandria.services.import_strategy import parse_import_strategy
from alexandria.services.ingestion import IngestionService
from alexandria.services.library import LibraryService
from alexandria.services.metadata import MetadataService
from alexandria.services.model import ModelService
from alexandria.services.storage import StorageService
from alexandria.services.thumbnail import ThumbnailGenerator


@dataclass
class Pipeline:
    """Everything workers and the process host need, built once at startup."""

    settings: Settings
    session_maker: async_sessionmaker[AsyncSession]
    models: ModelService
    libraries: LibraryService
    metadata: MetadataService
    collections: CollectionService
    processor: ArchiveProcessor
    storage: StorageService
    thumbnails: ThumbnailGenerator
    ingestion: IngestionService


def build_pipeline(
    settings: Settings,
    session_maker: async_sessionmaker[AsyncSession],
) -> Pipeline:
    """Construct the services from configuration."""
    models = ModelService(session_maker)
    libraries = LibraryService(session_maker)
    metadata = MetadataService(session_maker)
    collections = CollectionService(session_maker)
    processor = ArchiveProcessor()
    storage = StorageService(settings.storage_path, settings.thumbnails_path)
    thumbnails = ThumbnailGenerator(
        storage,
        grid_size=settings.thumbnail_grid_size,
        detail_size=settings.thumbnail_detail_size,
        quality=settings.thumbnail_quality,
    )
    ingestion = IngestionService(
        session_maker=session_maker,
        models=models,
        libraries=libraries,
        metadata=metadata,
        collections=collections,
        processor=processor,
        storage=storage,
        thumbnails=thumbnails,
        temp_path=settings.temp_path,
        ingestion_strategy=parse_import_strategy(settings.ingestion_import_strategy),
        max_attempts=settings.job_max_attempts,
    )

    return Pipeline(
        settings=settings,
        session_maker=session_maker,
        models=models,
        libraries=libraries,
        metadata=metadata,
        collections=collections,
        processor=processor,
        storage=storage,
        thumbnails=thumbnails,
        ingestion=ingestion,
    )
