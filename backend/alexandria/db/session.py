"""Database session management."""

from __future__ import annotations

from pathlib import Path

from sqlalchemy import event
from sqlalchemy.ext.asyncio import (
    AsyncEngine,
    AsyncSession,
    async_sessionmaker,
    create_async_engine,
)

from alexandria.core.config import Settings, settings


def get_database_url(config: Settings | None = None) -> str:
    """Get the database URL, ensuring the SQLite directory exists."""
    config = config or settings
    if config.database_url:
        return config.database_url

    db_path = config.db_path
    try:
        db_path.parent.mkdir(parents=True, exist_ok=True)
    except OSError:
        # Fall back to local directory for development
        db_path = Path("./config") / db_path.name
        db_path.parent.mkdir(parents=True, exist_ok=True)

    return f"sqlite+aiosqlite:///{db_path}"


def create_engine(url: str, *, echo: bool = False) -> AsyncEngine:
    """Create an async engine; file-backed SQLite gets WAL mode."""
    is_sqlite = url.startswith("sqlite")
    engine = create_async_engine(
        url,
        echo=echo,
        future=True,
        connect_args={"timeout": 30} if is_sqlite else {},
        pool_pre_ping=True,
    )

    if is_sqlite and ":memory:" not in url:

        @event.listens_for(engine.sync_engine, "connect")
        def set_sqlite_pragma(dbapi_connection, connection_record):
            """Enable WAL mode for better concurrent access."""
            cursor = dbapi_connection.cursor()
            cursor.execute("PRAGMA journal_mode=WAL")
            cursor.execute("PRAGMA synchronous=NORMAL")
            cursor.execute("PRAGMA busy_timeout=30000")  # 30 second busy timeout
            cursor.close()

    return engine


def create_session_maker(engine: AsyncEngine) -> async_sessionmaker[AsyncSession]:
    """Create a session factory bound to an engine."""
    return async_sessionmaker(
        engine,
        class_=AsyncSession,
        expire_on_commit=False,
        autocommit=False,
        autoflush=False,
    )
