"""Library configuration service."""

from __future__ import annotations

import os

from sqlalchemy import select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from alexandria.core.exceptions import InvalidConfigurationError, NotFoundError
from alexandria.core.logging import get_logger
from alexandria.db.models import Library
from alexandria.utils.slug import slugify
from alexandria.utils.templates import validate_path_template

logger = get_logger(__name__)

DEFAULT_PATH_TEMPLATE = "{library}/{model}"


class LibraryService:
    """Read access for the pipeline plus validated creation for administrators."""

    def __init__(self, session_maker: async_sessionmaker[AsyncSession]):
        self.session_maker = session_maker

    async def get_library_by_id(self, library_id: str) -> Library:
        """Fetch a library.

        Raises:
            NotFoundError: If no library has this id.
        """
        async with self.session_maker() as db:
            library = await db.get(Library, library_id)
        if library is None:
            raise NotFoundError(f"Library not found: {library_id}")
        return library

    async def list_libraries(self) -> list[Library]:
        async with self.session_maker() as db:
            result = await db.execute(select(Library).order_by(Library.name))
            return list(result.scalars().all())

    async def create_library(
        self,
        name: str,
        root_path: str,
        path_template: str = DEFAULT_PATH_TEMPLATE,
    ) -> Library:
        """Create a library after validating its template and root.

        Raises:
            InvalidConfigurationError: On an empty name, a relative root path,
                a malformed template, or a duplicate name.
        """
        name = name.strip()
        if not name:
            raise InvalidConfigurationError("Library name cannot be empty", "name")
        if not os.path.isabs(root_path):
            raise InvalidConfigurationError(
                f"Library root path must be absolute: {root_path!r}", "root_path"
            )
        validate_path_template(path_template)

        slug = slugify(name) or "library"
        async with self.session_maker() as db:
            library = Library(
                name=name,
                slug=slug,
                root_path=os.path.normpath(root_path),
                path_template=path_template,
            )
            db.add(library)
            try:
                await db.commit()
            except IntegrityError as e:
                await db.rollback()
                raise InvalidConfigurationError(
                    f"A library named {name!r} already exists", "name"
                ) from e

        logger.info(
            "library_created",
            library_id=library.id,
            name=name,
            root_path=library.root_path,
            path_template=path_template,
        )
        return library
