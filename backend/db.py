"""Engine, sessions and schema migrations for the document database."""

from __future__ import annotations

import asyncio
from pathlib import Path

from alembic import command
from alembic.config import Config
from sqlalchemy import event, select
from sqlalchemy.engine import make_url
from sqlalchemy.ext.asyncio import (
    AsyncEngine,
    AsyncSession,
    async_sessionmaker,
    create_async_engine,
)

from backend.app.db.models import Base, SettingEntry

ALEMBIC_INI = Path(__file__).resolve().parent.parent / "alembic.ini"
MIGRATIONS_DIR = Path(__file__).resolve().parent / "alembic"

_ASYNC_DRIVERS = {
    "postgres": "postgresql+asyncpg",
    "postgresql": "postgresql+asyncpg",
    "sqlite": "sqlite+aiosqlite",
}


def normalize_database_url(raw_url: str) -> str:
    """Map plain driver names onto their async dialects.

    Parent directories of sqlite files are created so the first connect works.
    """

    scheme, sep, rest = str(raw_url).partition("://")
    if not sep:
        raise ValueError(f"not a database URL: {raw_url!r}")
    url = f"{_ASYNC_DRIVERS.get(scheme, scheme)}://{rest}"

    parsed = make_url(url)
    if parsed.get_backend_name() == "sqlite" and parsed.database not in (None, "", ":memory:"):
        Path(parsed.database).parent.mkdir(parents=True, exist_ok=True)
    return url


def _sqlite_foreign_keys(engine: AsyncEngine) -> None:
    @event.listens_for(engine.sync_engine, "connect")
    def _on_connect(dbapi_connection, connection_record) -> None:  # pragma: no cover - event hook
        cursor = dbapi_connection.cursor()
        cursor.execute("PRAGMA foreign_keys=ON")
        cursor.close()


def create_engine(database_url: str) -> AsyncEngine:
    url = normalize_database_url(database_url)
    if url.startswith("sqlite"):
        engine = create_async_engine(url, future=True)
        _sqlite_foreign_keys(engine)
        return engine
    return create_async_engine(url, future=True, pool_pre_ping=True)


def create_session_factory(engine: AsyncEngine) -> async_sessionmaker[AsyncSession]:
    return async_sessionmaker(engine, expire_on_commit=False)


def _upgrade_to_head(database_url: str) -> None:
    config = Config(str(ALEMBIC_INI))
    config.set_main_option("script_location", str(MIGRATIONS_DIR))
    config.set_main_option("sqlalchemy.url", database_url)
    command.upgrade(config, "head")


async def record_schema_version(
    session_factory: async_sessionmaker[AsyncSession], version: str
) -> None:
    async with session_factory() as session:
        setting = await session.scalar(
            select(SettingEntry).where(SettingEntry.key == "schema_version")
        )
        if setting is None:
            session.add(SettingEntry(key="schema_version", value=version))
        else:
            setting.value = version
        await session.commit()


async def init_db(
    engine: AsyncEngine,
    session_factory: async_sessionmaker[AsyncSession],
    version: str,
    *,
    migrate: bool = True,
) -> None:
    """Bring the schema to head and stamp the running application version.

    Alembic runs in a worker thread because its env script owns an event loop.
    In-memory sqlite databases skip migrations and use ``create_all`` only.
    """

    url = engine.url
    if migrate and url.database not in (None, "", ":memory:"):
        loop = asyncio.get_running_loop()
        await loop.run_in_executor(
            None, _upgrade_to_head, url.render_as_string(hide_password=False)
        )

    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)

    await record_schema_version(session_factory, version)


__all__ = [
    "create_engine",
    "create_session_factory",
    "init_db",
    "normalize_database_url",
    "record_schema_version",
]
