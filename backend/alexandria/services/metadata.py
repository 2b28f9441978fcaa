"""Model metadata values that feed ``{metadata.<slug>}`` path tokens."""

from __future__ import annotations

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from alexandria.core.logging import get_logger
from alexandria.db.models import MetadataValue

logger = get_logger(__name__)


class MetadataService:
    def __init__(self, session_maker: async_sessionmaker[AsyncSession]):
        self.session_maker = session_maker

    async def get_model_metadata(self, model_id: str) -> dict[str, str]:
        """Map of field slug to value for a model."""
        async with self.session_maker() as db:
            result = await db.execute(
                select(MetadataValue.field_slug, MetadataValue.value).where(
                    MetadataValue.model_id == model_id
                )
            )
            return {slug: value for slug, value in result.all()}

    async def set_model_metadata(self, model_id: str, values: dict[str, str]) -> None:
        """Upsert metadata values. Blank values are ignored."""
        values = {k: str(v) for k, v in values.items() if v is not None and str(v).strip()}
        if not values:
            return

        async with self.session_maker() as db:
            result = await db.execute(
                select(MetadataValue).where(
                    MetadataValue.model_id == model_id,
                    MetadataValue.field_slug.in_(list(values)),
                )
            )
            existing = {row.field_slug: row for row in result.scalars().all()}

            for slug, value in values.items():
                if slug in existing:
                    existing[slug].value = value
                else:
                    db.add(MetadataValue(model_id=model_id, field_slug=slug, value=value))
            await db.commit()

        logger.debug("model_metadata_set", model_id=model_id, fields=sorted(values))
