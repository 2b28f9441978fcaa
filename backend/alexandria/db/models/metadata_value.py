"""Per-model metadata values keyed by field slug."""

from __future__ import annotations

import uuid
from typing import TYPE_CHECKING

from sqlalchemy import ForeignKey, String, Text, UniqueConstraint
from sqlalchemy.orm import Mapped, mapped_column, relationship

from alexandria.db.base import Base

if TYPE_CHECKING:
    from alexandria.db.models.model import Model


class MetadataValue(Base):
    """A single ``field_slug -> value`` pair attached to a model."""

    __tablename__ = "metadata_values"

    id: Mapped[str] = mapped_column(
        String(36), primary_key=True, default=lambda: str(uuid.uuid4())
    )
    model_id: Mapped[str] = mapped_column(
        String(36), ForeignKey("models.id", ondelete="CASCADE"), nullable=False
    )
    field_slug: Mapped[str] = mapped_column(String(128), nullable=False)
    value: Mapped[str] = mapped_column(Text, nullable=False)

    model: Mapped[Model] = relationship("Model", back_populates="metadata_values")

    __table_args__ = (
        UniqueConstraint("model_id", "field_slug", name="uq_metadata_values_model_field"),
    )
