"""Library table: an administrator-configured storage root."""

from __future__ import annotations

import uuid
from datetime import datetime, timezone
from typing import TYPE_CHECKING

from sqlalchemy import DateTime, String
from sqlalchemy.orm import Mapped, mapped_column, relationship

from alexandria.db.base import Base

if TYPE_CHECKING:
    from alexandria.db.models.model import Model


class Library(Base):
    """Shared storage root with the path template that lays models out on disk."""

    __tablename__ = "libraries"

    id: Mapped[str] = mapped_column(
        String(36), primary_key=True, default=lambda: str(uuid.uuid4())
    )

    name: Mapped[str] = mapped_column(String(255), nullable=False, unique=True)
    slug: Mapped[str] = mapped_column(String(255), nullable=False, unique=True)
    root_path: Mapped[str] = mapped_column(String(2048), nullable=False)
    path_template: Mapped[str] = mapped_column(
        String(1024), nullable=False, default="{library}/{model}"
    )

    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=lambda: datetime.now(timezone.utc)
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        default=lambda: datetime.now(timezone.utc),
        onupdate=lambda: datetime.now(timezone.utc),
    )

    models: Mapped[list[Model]] = relationship("Model", back_populates="library")
