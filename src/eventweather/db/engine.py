"""Database engine setup for async SQLite via aiosqlite.

Provides factory functions for creating the async engine, session maker,
and initializing the database schema. ``init_db`` is also the one place the
``system_config`` singleton is created.
"""

from __future__ import annotations

from sqlalchemy.dialects.sqlite import insert as sqlite_insert
from sqlalchemy.ext.asyncio import AsyncEngine, AsyncSession, async_sessionmaker, create_async_engine

from eventweather.config import SystemDefaultsConfig
from eventweather.core.rules import clamp_polling_interval
from eventweather.db.models import Base, SystemConfig

SYSTEM_CONFIG_ID = "system_config"


def get_engine(db_path: str) -> AsyncEngine:
    """Create an async SQLAlchemy engine for the given SQLite path.

    Args:
        db_path: Path to the SQLite database file (e.g., ./data/eventweather.db).

    Returns:
        Configured async engine using aiosqlite.
    """
    url = f"sqlite+aiosqlite:///{db_path}"
    return create_async_engine(url, echo=False)


def get_session_factory(engine: AsyncEngine) -> async_sessionmaker[AsyncSession]:
    """Create an async session factory bound to the given engine.

    Args:
        engine: The async SQLAlchemy engine.

    Returns:
        An async session maker that produces AsyncSession instances.
    """
    return async_sessionmaker(engine, class_=AsyncSession, expire_on_commit=False)


async def init_db(engine: AsyncEngine, defaults: SystemDefaultsConfig | None = None) -> None:
    """Create all tables and seed the system config singleton if absent.

    Args:
        engine: The async SQLAlchemy engine.
        defaults: Seed values for the singleton. Existing rows are never touched.
    """
    defaults = defaults or SystemDefaultsConfig()
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
        stmt = (
            sqlite_insert(SystemConfig)
            .values(
                id=SYSTEM_CONFIG_ID,
                enabled=defaults.enabled,
                auto_polling=defaults.auto_polling,
                polling_interval=clamp_polling_interval(defaults.polling_interval),
                allowed_roles=list(defaults.allowed_roles),
                require_approval=defaults.require_approval,
            )
            .on_conflict_do_nothing(index_elements=["id"])
        )
        await conn.execute(stmt)
