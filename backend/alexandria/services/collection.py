"""Collection membership for folder imports."""

from __future__ import annotations

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from alexandria.core.logging import get_logger
from alexandria.db.models import Collection, CollectionModel
from alexandria.utils.slug import generate_slug

logger = get_logger(__name__)


class CollectionService:
    def __init__(self, session_maker: async_sessionmaker[AsyncSession]):
        self.session_maker = session_maker

    async def add_model_to_collection(self, model_id: str, name: str, user_id: str) -> Collection:
        """Add a model to the user's collection called ``name``, creating it if needed."""
        async with self.session_maker() as db:
            result = await db.execute(
                select(Collection).where(
                    Collection.user_id == user_id,
                    Collection.name == name,
                )
            )
            collection = result.scalar_one_or_none()

            if collection is None:
                collection = Collection(name=name, slug=generate_slug(name), user_id=user_id)
                db.add(collection)
                await db.flush()
                logger.info("collection_created", collection_id=collection.id, name=name)

            membership = await db.get(
                CollectionModel, {"collection_id": collection.id, "model_id": model_id}
            )
            if membership is None:
                db.add(CollectionModel(collection_id=collection.id, model_id=model_id))

            await db.commit()
        return collection

    async def get_model_collections(self, model_id: str) -> list[Collection]:
        async with self.session_maker() as db:
            result = await db.execute(
                select(Collection)
                .join(CollectionModel, CollectionModel.collection_id == Collection.id)
                .where(CollectionModel.model_id == model_id)
                .order_by(Collection.name)
            )
            return list(result.scalars().all())
