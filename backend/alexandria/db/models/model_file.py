"""ModelFile table for files belonging to a model."""

from __future__ import annotations

import uuid
from datetime import datetime, timezone
from typing import TYPE_CHECKING

from sqlalchemy import BigInteger, DateTime, Enum, ForeignKey, Index, String
from sqlalchemy.orm import Mapped, mapped_column, relationship

from alexandria.db.base import Base
from alexandria.db.models.enums import FileType

if TYPE_CHECKING:
    from alexandria.db.models.model import Model
    from alexandria.db.models.thumbnail import Thumbnail


class ModelFile(Base):
    """A placed file. Inserted in one batch once placement succeeds."""

    __tablename__ = "model_files"

    # Primary key
    id: Mapped[str] = mapped_column(
        String(36), primary_key=True, default=lambda: str(uuid.uuid4())
    )

    # References
    model_id: Mapped[str] = mapped_column(
        String(36), ForeignKey("models.id", ondelete="CASCADE"), nullable=False
    )

    # File metadata
    filename: Mapped[str] = mapped_column(String(512), nullable=False)
    relative_path: Mapped[str] = mapped_column(String(1024), nullable=False)
    file_type: Mapped[FileType] = mapped_column(Enum(FileType), default=FileType.OTHER)
    mime_type: Mapped[str] = mapped_column(String(128), nullable=False)
    size_bytes: Mapped[int] = mapped_column(BigInteger, nullable=False)
    storage_path: Mapped[str] = mapped_column(String(2048), nullable=False)
    hash: Mapped[str] = mapped_column(String(64), nullable=False)

    # Timestamps
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=lambda: datetime.now(timezone.utc)
    )

    # Relationships
    model: Mapped[Model] = relationship("Model", back_populates="files")
    thumbnails: Mapped[list[Thumbnail]] = relationship(
        "Thumbnail", back_populates="source_file", cascade="all, delete-orphan"
    )

    __table_args__ = (
        Index("ix_model_files_model_id", "model_id"),
        Index("ix_model_files_hash", "hash"),
    )
