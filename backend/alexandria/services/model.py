"""Model persistence: the only writes the ingestion pipeline performs on models.

Uses the "session-per-operation" pattern: every call opens a short session
from the injected factory, commits, and returns detached objects.
"""

from __future__ import annotations

from collections.abc import Iterable
from dataclasses import dataclass
from pathlib import Path

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from alexandria.core.exceptions import NotFoundError
from alexandria.core.logging import get_logger
from alexandria.db.models import (
    FileType,
    Model,
    ModelFile,
    ModelStatus,
    SourceType,
    Thumbnail,
    ThumbnailSize,
)

logger = get_logger(__name__)


@dataclass
class NewModelFile:
    """Row data for a placed file, with its id assigned ahead of insertion."""

    id: str
    filename: str
    relative_path: str
    file_type: FileType
    mime_type: str
    size_bytes: int
    storage_path: Path
    hash: str


class ModelService:
    """Narrow persistence interface for models, files and thumbnails."""

    def __init__(self, session_maker: async_sessionmaker[AsyncSession]):
        self.session_maker = session_maker

    async def create_model(
        self,
        *,
        name: str,
        slug: str,
        user_id: str,
        source_type: SourceType,
        library_id: str | None = None,
        original_filename: str | None = None,
    ) -> Model:
        """Insert a model in ``processing`` state."""
        async with self.session_maker() as db:
            model = Model(
                name=name,
                slug=slug,
                user_id=user_id,
                source_type=source_type,
                status=ModelStatus.PROCESSING,
                library_id=library_id,
                original_filename=original_filename,
            )
            db.add(model)
            await db.commit()

        logger.info(
            "model_created",
            model_id=model.id,
            slug=slug,
            source_type=source_type.value,
            library_id=library_id,
        )
        return model

    async def create_model_files(
        self, model_id: str, files: Iterable[NewModelFile]
    ) -> list[ModelFile]:
        """Insert all files of a model in one batch."""
        async with self.session_maker() as db:
            rows = _file_rows(model_id, files)
            db.add_all(rows)
            await db.commit()
        return rows

    async def create_thumbnails(self, thumbnails: Iterable[dict]) -> list[Thumbnail]:
        """Insert thumbnail rows.

        Each item carries ``source_file_id``, ``size_key``, ``storage_path``,
        ``width``, ``height`` and optionally ``format``.
        """
        async with self.session_maker() as db:
            rows = _thumbnail_rows(thumbnails)
            db.add_all(rows)
            await db.commit()
        return rows

    async def commit_ingestion(
        self,
        model_id: str,
        files: list[NewModelFile],
        thumbnails: list[dict],
        *,
        total_size_bytes: int,
        file_count: int,
        file_hash: str | None = None,
    ) -> Model:
        """Persist files, thumbnails and the ``ready`` status in one transaction."""
        async with self.session_maker() as db:
            model = await db.get(Model, model_id)
            if model is None:
                raise NotFoundError(f"Model not found: {model_id}")

            db.add_all(_file_rows(model_id, files))
            # Files must exist before thumbnails reference them
            await db.flush()
            db.add_all(_thumbnail_rows(thumbnails))

            model.status = ModelStatus.READY
            model.total_size_bytes = total_size_bytes
            model.file_count = file_count
            if file_hash is not None:
                model.file_hash = file_hash
            await db.commit()

        logger.info(
            "model_status_updated",
            model_id=model_id,
            status=ModelStatus.READY.value,
            file_count=file_count,
            total_size_bytes=total_size_bytes,
        )
        return model

    async def update_model_status(
        self,
        model_id: str,
        status: ModelStatus,
        *,
        total_size_bytes: int | None = None,
        file_count: int | None = None,
        file_hash: str | None = None,
    ) -> Model | None:
        """Set a model's status and, optionally, its aggregates."""
        async with self.session_maker() as db:
            model = await db.get(Model, model_id)
            if model is None:
                logger.warning("model_not_found", model_id=model_id)
                return None

            old_status = model.status
            model.status = status
            if total_size_bytes is not None:
                model.total_size_bytes = total_size_bytes
            if file_count is not None:
                model.file_count = file_count
            if file_hash is not None:
                model.file_hash = file_hash
            await db.commit()

        logger.info(
            "model_status_updated",
            model_id=model_id,
            old_status=old_status.value if old_status else None,
            status=status.value,
        )
        return model

    async def get_model_by_id(self, model_id: str) -> Model | None:
        async with self.session_maker() as db:
            return await db.get(Model, model_id)

    async def get_model_files(self, model_id: str) -> list[ModelFile]:
        async with self.session_maker() as db:
            result = await db.execute(
                select(ModelFile)
                .where(ModelFile.model_id == model_id)
                .order_by(ModelFile.relative_path)
            )
            return list(result.scalars().all())

    async def get_thumbnails(self, model_id: str) -> list[Thumbnail]:
        async with self.session_maker() as db:
            result = await db.execute(
                select(Thumbnail)
                .join(ModelFile, Thumbnail.source_file_id == ModelFile.id)
                .where(ModelFile.model_id == model_id)
            )
            return list(result.scalars().all())


def _file_rows(model_id: str, files: Iterable[NewModelFile]) -> list[ModelFile]:
    return [
        ModelFile(
            id=f.id,
            model_id=model_id,
            filename=f.filename,
            relative_path=f.relative_path,
            file_type=f.file_type,
            mime_type=f.mime_type,
            size_bytes=f.size_bytes,
            storage_path=str(f.storage_path),
            hash=f.hash,
        )
        for f in files
    ]


def _thumbnail_rows(thumbnails: Iterable[dict]) -> list[Thumbnail]:
    return [
        Thumbnail(
            source_file_id=t["source_file_id"],
            size_key=ThumbnailSize(t["size_key"]),
            storage_path=str(t["storage_path"]),
            width=t["width"],
            height=t["height"],
            format=t.get("format", "webp"),
        )
        for t in thumbnails
    ]
