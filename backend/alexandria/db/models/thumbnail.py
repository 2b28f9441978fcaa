"""Thumbnail table for rendered previews of image files."""

from __future__ import annotations

import uuid
from datetime import datetime, timezone
from typing import TYPE_CHECKING

from sqlalchemy import DateTime, Enum, ForeignKey, Index, Integer, String
from sqlalchemy.orm import Mapped, mapped_column, relationship

from alexandria.db.base import Base
from alexandria.db.models.enums import ThumbnailSize

if TYPE_CHECKING:
    from alexandria.db.models.model_file import ModelFile


class Thumbnail(Base):
    """One webp rendition of an image ModelFile."""

    __tablename__ = "thumbnails"

    id: Mapped[str] = mapped_column(
        String(36), primary_key=True, default=lambda: str(uuid.uuid4())
    )

    source_file_id: Mapped[str] = mapped_column(
        String(36), ForeignKey("model_files.id", ondelete="CASCADE"), nullable=False
    )

    size_key: Mapped[ThumbnailSize] = mapped_column(Enum(ThumbnailSize), nullable=False)
    storage_path: Mapped[str] = mapped_column(String(2048), nullable=False)
    width: Mapped[int] = mapped_column(Integer, nullable=False)
    height: Mapped[int] = mapped_column(Integer, nullable=False)
    format: Mapped[str] = mapped_column(String(16), default="webp", nullable=False)

    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=lambda: datetime.now(timezone.utc)
    )

    source_file: Mapped[ModelFile] = relationship("ModelFile", back_populates="thumbnails")

    __table_args__ = (Index("ix_thumbnails_source_file_id", "source_file_id"),)
