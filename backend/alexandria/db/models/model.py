"""Model table: one ingested unit of printable files."""

from __future__ import annotations

import uuid
from datetime import datetime, timezone
from typing import TYPE_CHECKING

from sqlalchemy import BigInteger, DateTime, Enum, Float, ForeignKey, Index, Integer, String
from sqlalchemy.orm import Mapped, mapped_column, relationship

from alexandria.db.base import Base
from alexandria.db.models.enums import ModelStatus, SourceType

if TYPE_CHECKING:
    from alexandria.db.models.library import Library
    from alexandria.db.models.metadata_value import MetadataValue
    from alexandria.db.models.model_file import ModelFile


class Model(Base):
    """A model created in ``processing`` at enqueue time and finished by a worker."""

    __tablename__ = "models"

    # Primary key
    id: Mapped[str] = mapped_column(
        String(36), primary_key=True, default=lambda: str(uuid.uuid4())
    )

    # Identity
    name: Mapped[str] = mapped_column(String(512), nullable=False)
    slug: Mapped[str] = mapped_column(String(255), nullable=False, unique=True)
    user_id: Mapped[str] = mapped_column(String(36), nullable=False)

    # Origin
    source_type: Mapped[SourceType] = mapped_column(Enum(SourceType), nullable=False)
    original_filename: Mapped[str | None] = mapped_column(String(512), nullable=True)

    # Lifecycle
    status: Mapped[ModelStatus] = mapped_column(
        Enum(ModelStatus), default=ModelStatus.PROCESSING, nullable=False
    )

    # Aggregates filled in when the model becomes ready
    total_size_bytes: Mapped[int] = mapped_column(BigInteger, default=0)
    file_count: Mapped[int] = mapped_column(Integer, default=0)
    file_hash: Mapped[str | None] = mapped_column(String(64), nullable=True)

    # Placement
    library_id: Mapped[str | None] = mapped_column(
        String(36), ForeignKey("libraries.id", ondelete="SET NULL"), nullable=True
    )

    # Preview selection
    preview_image_file_id: Mapped[str | None] = mapped_column(String(36), nullable=True)
    preview_crop_x: Mapped[float | None] = mapped_column(Float, nullable=True)
    preview_crop_y: Mapped[float | None] = mapped_column(Float, nullable=True)
    preview_crop_scale: Mapped[float | None] = mapped_column(Float, nullable=True)

    # Timestamps
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=lambda: datetime.now(timezone.utc)
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        default=lambda: datetime.now(timezone.utc),
        onupdate=lambda: datetime.now(timezone.utc),
    )

    # Relationships
    library: Mapped[Library | None] = relationship("Library", back_populates="models")
    files: Mapped[list[ModelFile]] = relationship(
        "ModelFile", back_populates="model", cascade="all, delete-orphan"
    )
    metadata_values: Mapped[list[MetadataValue]] = relationship(
        "MetadataValue", back_populates="model", cascade="all, delete-orphan"
    )

    __table_args__ = (
        Index("ix_models_status", "status"),
        Index("ix_models_user_id", "user_id"),
        Index("ix_models_library_id", "library_id"),
    )
