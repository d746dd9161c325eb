"""Database session and engine (SQLite by default)."""

from contextlib import asynccontextmanager
from typing import AsyncGenerator

from sqlalchemy import event, text
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine
from sqlalchemy.orm import declarative_base
from sqlalchemy.pool import NullPool

from gitfolder.config import get_settings

Base = declarative_base()

_settings = get_settings()
_is_sqlite = _settings.sqlalchemy_url.startswith("sqlite")
if _is_sqlite:
    _settings.db_path.parent.mkdir(parents=True, exist_ok=True)
# aiosqlite connections are bound to the loop that opened them (TestClient runs its own loop)
_engine = create_async_engine(
    _settings.sqlalchemy_url, echo=False, **({"poolclass": NullPool} if _is_sqlite else {})
)
_async_session = async_sessionmaker(
    _engine, class_=AsyncSession, expire_on_commit=False, autoflush=False
)


if _engine.dialect.name == "sqlite":

    @event.listens_for(_engine.sync_engine, "connect")
    def _enable_sqlite_foreign_keys(dbapi_connection, connection_record) -> None:
        """SQLite ignores ON DELETE CASCADE unless foreign keys are switched on per connection."""
        cursor = dbapi_connection.cursor()
        cursor.execute("PRAGMA foreign_keys=ON")
        cursor.close()


def _add_preferences_column_if_missing(conn) -> None:
    """Add users.preferences if the column does not exist (migration for older databases)."""
    if conn.dialect.name != "sqlite":
        return
    rows = conn.execute(text("PRAGMA table_info(users)")).fetchall()
    # SQLite returns (cid, name, type, notnull, dflt_value, pk)
    if any(row[1] == "preferences" for row in rows):
        return
    conn.execute(text("ALTER TABLE users ADD COLUMN preferences JSON"))


def _import_models() -> None:
    """Import every model module so Base.metadata knows all tables."""
    from gitfolder.repositories import models as _repositories  # noqa: F401
    from gitfolder.shared import models as _shared  # noqa: F401
    from gitfolder.users import models as _users  # noqa: F401


async def init_db() -> None:
    """Create tables if they do not exist, then run migrations."""
    _import_models()
    async with _engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
        await conn.run_sync(_add_preferences_column_if_missing)


@asynccontextmanager
async def get_session() -> AsyncGenerator[AsyncSession, None]:
    """Yield an async session (context manager)."""
    async with _async_session() as session:
        try:
            yield session
            await session.commit()
        except Exception:
            await session.rollback()
            raise
        finally:
            await session.close()


async def get_db() -> AsyncGenerator[AsyncSession, None]:
    """FastAPI dependency that yields an async session."""
    async with get_session() as session:
        yield session
