"""Ingestion orchestrator: turns uploaded archives and folder trees into models.

Single-archive flow (one ``INGEST_ARCHIVE`` job per model)::

    processing --extract(20)--> place(50) --thumbnails(75)--> commit(100) --> ready
         \\_________________________ any fatal error __________________________> error

Folder-import flow (one ``IMPORT_FOLDER`` job per tree) walks the source
directory with a hierarchy pattern and runs the extract-less equivalent of the
same steps for every discovered model, isolating per-model failures.

Uses the "session-per-operation" pattern: no database session is held while
archives are extracted or files are placed.
"""

from __future__ import annotations

import asyncio
import os
import shutil
import uuid
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any

from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from alexandria.core.exceptions import (
    NON_RETRYABLE_ERRORS,
    ArchiveIOError,
    NotFoundError,
    ThumbnailError,
)
from alexandria.core.logging import get_logger
from alexandria.db.models import FileType, JobType, Library, Model, ModelStatus, SourceType
from alexandria.schemas.jobs import (
    FolderImportJobPayload,
    FolderImportResult,
    IngestionJobPayload,
)
from alexandria.services.archive import ArchiveProcessor, Manifest, strip_archive_extension
from alexandria.services.collection import CollectionService
from alexandria.services.import_strategy import ImportStrategy, parse_import_strategy, place
from alexandria.services.job_queue import JobQueueService, ProgressCallback
from alexandria.services.library import LibraryService
from alexandria.services.metadata import MetadataService
from alexandria.services.model import ModelService, NewModelFile
from alexandria.services.storage import StorageService, resolve_model_path
from alexandria.services.thumbnail import ThumbnailGenerator
from alexandria.utils.file_hash import compute_file_hash
from alexandria.utils.slug import generate_slug
from alexandria.utils.templates import PatternSegment, TokenKind, parse_import_pattern

logger = get_logger(__name__)

# Progress checkpoints of the single-archive flow
PROGRESS_STARTED = 0
PROGRESS_EXTRACTED = 20
PROGRESS_PLACED = 50
PROGRESS_THUMBNAILS = 75
PROGRESS_DONE = 100


@dataclass
class DiscoveredModel:
    """A model directory found by walking a folder-import source tree."""

    name: str
    source_path: Path
    metadata: dict[str, str] = field(default_factory=dict)
    collection_name: str | None = None


def walk_directory_for_import(
    source: Path, segments: tuple[PatternSegment, ...]
) -> list[DiscoveredModel]:
    """Interpret each directory level of ``source`` with a hierarchy pattern.

    Hidden directories are skipped and model directories are not descended
    into. A missing source yields an empty list.
    """
    discovered: list[DiscoveredModel] = []

    def _walk(directory: Path, depth: int, metadata: dict[str, str], collection: str | None) -> None:
        try:
            children = sorted(
                (p for p in directory.iterdir() if p.is_dir() and not p.name.startswith(".")),
                key=lambda p: p.name,
            )
        except (FileNotFoundError, NotADirectoryError):
            return

        segment = segments[depth]
        for child in children:
            if segment.kind is TokenKind.MODEL:
                discovered.append(
                    DiscoveredModel(
                        name=child.name,
                        source_path=child,
                        metadata=dict(metadata),
                        collection_name=collection,
                    )
                )
            elif segment.kind is TokenKind.COLLECTION:
                _walk(child, depth + 1, dict(metadata), child.name)
            else:
                branch = dict(metadata)
                branch[segment.metadata_slug or ""] = child.name
                _walk(child, depth + 1, branch, collection)

    _walk(Path(source), 0, {}, None)
    return discovered


class IngestionService:
    """Sequences processing, placement, thumbnailing and commit for models."""

    def __init__(
        self,
        *,
        session_maker: async_sessionmaker[AsyncSession],
        models: ModelService,
        libraries: LibraryService,
        metadata: MetadataService,
        collections: CollectionService,
        processor: ArchiveProcessor,
        storage: StorageService,
        thumbnails: ThumbnailGenerator,
        temp_path: Path,
        ingestion_strategy: ImportStrategy = ImportStrategy.MOVE,
        max_attempts: int = 3,
    ):
        self.session_maker = session_maker
        self.models = models
        self.libraries = libraries
        self.metadata = metadata
        self.collections = collections
        self.processor = processor
        self.storage = storage
        self.thumbnails = thumbnails
        self.temp_path = Path(temp_path)
        self.ingestion_strategy = ingestion_strategy
        self.max_attempts = max_attempts

    # ------------------------------------------------------------------
    # Enqueue side
    # ------------------------------------------------------------------

    async def handle_upload(
        self,
        temp_path: str | Path,
        original_filename: str,
        user_id: str,
        library_id: str | None = None,
        metadata: dict[str, str] | None = None,
        slug: str | None = None,
    ) -> tuple[str, str]:
        """Register an uploaded archive and enqueue its ingestion.

        A desired ``slug`` is used as given; otherwise one is generated from
        the archive name.

        Returns:
            ``(model_id, job_id)``.

        Raises:
            NotFoundError: If ``library_id`` does not exist.
        """
        name = strip_archive_extension(os.path.basename(original_filename)).strip() or "Untitled"
        slug = slug or generate_slug(name)

        if library_id is not None:
            await self.libraries.get_library_by_id(library_id)

        model = await self.models.create_model(
            name=name,
            slug=slug,
            user_id=user_id,
            source_type=SourceType.ARCHIVE_UPLOAD,
            library_id=library_id,
            original_filename=original_filename,
        )
        if metadata:
            await self.metadata.set_model_metadata(model.id, metadata)

        payload = IngestionJobPayload(
            model_id=model.id,
            temp_path=str(temp_path),
            original_filename=original_filename,
            user_id=user_id,
            library_id=library_id,
            slug=slug,
            metadata=metadata or {},
        )
        async with self.session_maker() as db:
            job = await JobQueueService(db).enqueue(
                JobType.INGEST_ARCHIVE,
                model_id=model.id,
                payload=payload.model_dump(mode="json"),
                max_attempts=self.max_attempts,
                display_name=f"Ingest {name}",
            )
            await db.commit()

        return model.id, job.id

    async def handle_folder_import(
        self,
        source_path: str | Path,
        pattern: str,
        strategy: str | ImportStrategy,
        user_id: str,
        library_id: str | None = None,
    ) -> str:
        """Validate and enqueue a folder-tree import.

        Raises:
            InvalidConfigurationError: On a malformed pattern or unknown strategy.
            NotFoundError: If ``library_id`` does not exist.
        """
        parse_import_pattern(pattern)
        parsed_strategy = parse_import_strategy(strategy)
        if library_id is not None:
            await self.libraries.get_library_by_id(library_id)

        payload = FolderImportJobPayload(
            source_path=str(source_path),
            pattern=pattern,
            strategy=parsed_strategy,
            user_id=user_id,
            library_id=library_id,
        )
        async with self.session_maker() as db:
            job = await JobQueueService(db).enqueue(
                JobType.IMPORT_FOLDER,
                payload=payload.model_dump(mode="json"),
                max_attempts=self.max_attempts,
                display_name=f"Import {source_path}",
            )
            await db.commit()

        return job.id

    # ------------------------------------------------------------------
    # Single-archive job
    # ------------------------------------------------------------------

    async def process_ingestion_job(
        self,
        job_id: str,
        payload: IngestionJobPayload,
        report_progress: ProgressCallback,
    ) -> dict[str, Any]:
        """Run one attempt of an archive ingestion.

        Non-retryable errors move the model to ``error`` before propagating.
        Retryable errors leave it in ``processing`` for the next attempt.
        """
        model = await self.models.get_model_by_id(payload.model_id)
        if model is None:
            raise NotFoundError(f"Model not found: {payload.model_id}")

        if model.status is not ModelStatus.PROCESSING:
            logger.info(
                "ingestion_skipped",
                job_id=job_id,
                model_id=model.id,
                status=model.status.value,
            )
            return {"model_id": model.id, "skipped": True}

        archive_path = Path(payload.temp_path)
        extract_dir = self.temp_path / f"{job_id}_extract"

        try:
            await report_progress(PROGRESS_STARTED)

            manifest = await self.processor.process_archive(
                archive_path, extract_dir, archive_name=payload.original_filename
            )
            archive_hash = await self._hash_archive(archive_path)
            await report_progress(PROGRESS_EXTRACTED)

            destination = await self._resolve_destination(model)
            files = await self._place_manifest(manifest, destination, self.ingestion_strategy)
            await report_progress(PROGRESS_PLACED)

            thumbnails = await self._render_thumbnails(model.id, files)
            await report_progress(PROGRESS_THUMBNAILS)

            await self.models.commit_ingestion(
                model.id,
                files,
                thumbnails,
                total_size_bytes=manifest.total_size_bytes,
                file_count=manifest.file_count,
                file_hash=archive_hash,
            )
            await report_progress(PROGRESS_DONE)

        except NON_RETRYABLE_ERRORS as e:
            await self._fail_model(model.id, e)
            raise
        except Exception:
            await self.thumbnails.remove_model_thumbnails(model.id)
            raise
        finally:
            await self._remove_tree(extract_dir)

        await self._remove_file(archive_path)

        logger.info(
            "model_ingested",
            job_id=job_id,
            model_id=model.id,
            slug=payload.slug,
            file_count=manifest.file_count,
            total_size_bytes=manifest.total_size_bytes,
            thumbnails=len(thumbnails),
        )
        return {
            "model_id": model.id,
            "slug": payload.slug,
            "file_count": manifest.file_count,
            "total_size_bytes": manifest.total_size_bytes,
            "thumbnails": len(thumbnails),
            "destination": str(destination),
        }

    async def mark_ingestion_failed(self, payload: IngestionJobPayload, error: BaseException) -> None:
        """Safety net after the last attempt: force ``error`` and drop the upload."""
        logger.error(
            "ingestion_attempts_exhausted",
            model_id=payload.model_id,
            slug=payload.slug,
            error=str(error),
        )
        model = await self.models.get_model_by_id(payload.model_id)
        if model is not None and model.status is not ModelStatus.READY:
            if model.status is not ModelStatus.ERROR:
                await self.models.update_model_status(model.id, ModelStatus.ERROR)
            await self.thumbnails.remove_model_thumbnails(model.id)
        await self._remove_file(Path(payload.temp_path))

    # ------------------------------------------------------------------
    # Folder-import job
    # ------------------------------------------------------------------

    async def discover_models(
        self, source_path: Path, segments: tuple[PatternSegment, ...]
    ) -> list[DiscoveredModel]:
        loop = asyncio.get_running_loop()
        return await loop.run_in_executor(None, walk_directory_for_import, source_path, segments)

    async def process_folder_import_job(
        self,
        job_id: str,
        payload: FolderImportJobPayload,
        report_progress: ProgressCallback,
    ) -> dict[str, Any]:
        """Import every model directory under a source tree, one at a time."""
        segments = parse_import_pattern(payload.pattern)
        strategy = parse_import_strategy(payload.strategy)
        library = (
            await self.libraries.get_library_by_id(payload.library_id)
            if payload.library_id
            else None
        )

        await report_progress(PROGRESS_STARTED)
        discovered = await self.discover_models(Path(payload.source_path), segments)
        result = FolderImportResult(discovered=len(discovered))

        logger.info(
            "folder_import_started",
            job_id=job_id,
            source_path=payload.source_path,
            pattern=payload.pattern,
            strategy=strategy.value,
            discovered=len(discovered),
        )

        for index, found in enumerate(discovered, start=1):
            try:
                model_id = await self._import_discovered_model(found, payload, strategy, library)
            except Exception as e:
                result.failed += 1
                result.failed_models.append(found.name)
                logger.warning(
                    "folder_import_model_failed",
                    job_id=job_id,
                    model_name=found.name,
                    path=str(found.source_path),
                    error=str(e),
                )
            else:
                result.imported += 1
                result.model_ids.append(model_id)

            await report_progress(index * 100 // len(discovered))

        if not discovered:
            await report_progress(PROGRESS_DONE)

        logger.info(
            "folder_import_complete",
            job_id=job_id,
            discovered=result.discovered,
            imported=result.imported,
            failed=result.failed,
        )
        return result.model_dump()

    async def _import_discovered_model(
        self,
        found: DiscoveredModel,
        payload: FolderImportJobPayload,
        strategy: ImportStrategy,
        library: Library | None,
    ) -> str:
        model = await self.models.create_model(
            name=found.name,
            slug=generate_slug(found.name),
            user_id=payload.user_id,
            source_type=SourceType.FOLDER_IMPORT,
            library_id=library.id if library else None,
        )

        try:
            if found.metadata:
                await self.metadata.set_model_metadata(model.id, found.metadata)
            if found.collection_name:
                await self.collections.add_model_to_collection(
                    model.id, found.collection_name, payload.user_id
                )

            manifest = await self.processor.scan_directory(found.source_path)
            destination = await self._resolve_destination(model, library)
            files = await self._place_manifest(manifest, destination, strategy)
            thumbnails = await self._render_thumbnails(model.id, files)

            await self.models.commit_ingestion(
                model.id,
                files,
                thumbnails,
                total_size_bytes=manifest.total_size_bytes,
                file_count=manifest.file_count,
            )
        except Exception as e:
            await self._fail_model(model.id, e)
            raise

        return model.id

    # ------------------------------------------------------------------
    # Shared steps
    # ------------------------------------------------------------------

    async def _resolve_destination(self, model: Model, library: Library | None = None) -> Path:
        """Directory that receives the model's files."""
        if library is None and model.library_id:
            library = await self.libraries.get_library_by_id(model.library_id)

        if library is None:
            return self.storage.default_model_path(model.id)

        values = await self.metadata.get_model_metadata(model.id)
        return resolve_model_path(
            library.name,
            model.name,
            values,
            library.path_template,
            library.root_path,
        )

    async def _place_manifest(
        self, manifest: Manifest, destination: Path, strategy: ImportStrategy
    ) -> list[NewModelFile]:
        files: list[NewModelFile] = []
        for entry in manifest.entries:
            target = self.storage.file_destination(destination, entry.relative_path)
            try:
                await place(strategy, entry.absolute_path, target)
            except OSError as e:
                raise ArchiveIOError(f"Failed to place {entry.relative_path}: {e}") from e

            files.append(
                NewModelFile(
                    id=str(uuid.uuid4()),
                    filename=entry.filename,
                    relative_path=entry.relative_path,
                    file_type=entry.file_type,
                    mime_type=entry.mime_type,
                    size_bytes=entry.size_bytes,
                    storage_path=target,
                    hash=entry.hash,
                )
            )
        return files

    async def _render_thumbnails(self, model_id: str, files: list[NewModelFile]) -> list[dict]:
        rows: list[dict] = []
        for f in files:
            if f.file_type is not FileType.IMAGE:
                continue
            try:
                records = await self.thumbnails.generate_thumbnails(f.storage_path, model_id, f.id)
            except ThumbnailError as e:
                logger.warning(
                    "thumbnail_skipped",
                    model_id=model_id,
                    file=f.relative_path,
                    error=str(e),
                )
                continue

            rows.extend(
                {
                    "source_file_id": r.source_file_id,
                    "size_key": r.size_key,
                    "storage_path": r.storage_path,
                    "width": r.width,
                    "height": r.height,
                    "format": r.format,
                }
                for r in records
            )
        return rows

    async def _hash_archive(self, archive_path: Path) -> str:
        try:
            return await compute_file_hash(archive_path)
        except OSError as e:
            raise ArchiveIOError(f"Failed to hash {archive_path.name}: {e}") from e

    async def _fail_model(self, model_id: str, error: BaseException) -> None:
        logger.error("model_ingestion_failed", model_id=model_id, error=str(error))
        await self.thumbnails.remove_model_thumbnails(model_id)
        await self.models.update_model_status(model_id, ModelStatus.ERROR)

    async def _remove_tree(self, path: Path) -> None:
        def _do_remove() -> None:
            shutil.rmtree(path, ignore_errors=True)

        loop = asyncio.get_running_loop()
        await loop.run_in_executor(None, _do_remove)

    async def _remove_file(self, path: Path) -> None:
        def _do_remove() -> None:
            try:
                path.unlink()
            except FileNotFoundError:
                pass
            except OSError as e:
                logger.warning("temp_file_cleanup_failed", path=str(path), error=str(e))

        loop = asyncio.get_running_loop()
        await loop.run_in_executor(None, _do_remove)
