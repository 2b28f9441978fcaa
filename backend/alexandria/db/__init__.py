"""Database package for Alexandria."""

from alexandria.db.base import Base
from alexandria.db.session import create_engine, create_session_maker, get_database_url

__all__ = [
    "Base",
    "create_engine",
    "create_session_maker",
    "get_database_url",
]
