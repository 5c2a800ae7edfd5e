"""Engine and session factory for the cache and quota tables.

The application opens one engine per process in ``init_db`` and hands its
session factory to the stores. Tests build their own with ``build_engine``
and ``build_session_factory``.

Usage:
    await init_db(settings)
    store = CacheStore(get_session_factory())
    ...
    await close_db()
"""

from typing import Any

from sqlalchemy import text
from sqlalchemy.engine import make_url
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import (
    AsyncEngine,
    AsyncSession,
    async_sessionmaker,
    create_async_engine,
)
from sqlalchemy.pool import NullPool

from letzpocket.config import Settings
from letzpocket.core.logging import get_logger

logger = get_logger(__name__)

_engine: AsyncEngine | None = None
_session_factory: async_sessionmaker[AsyncSession] | None = None


def build_engine(settings: Settings) -> AsyncEngine:
    """Create the async engine.

    SQLite files get a ``NullPool`` so every unit of work opens its own
    connection; server databases get a pre-pinged pool sized from settings.
    """
    options: dict[str, Any] = {"echo": settings.debug}
    if make_url(settings.database_url).get_backend_name() == "sqlite":
        options.update(poolclass=NullPool, connect_args={"check_same_thread": False})
    else:
        options.update(
            pool_size=settings.database_pool_min,
            max_overflow=settings.database_pool_max - settings.database_pool_min,
            pool_pre_ping=True,
        )
    return create_async_engine(settings.database_url, **options)


def build_session_factory(engine: AsyncEngine) -> async_sessionmaker[AsyncSession]:
    # Rows returned by stores are read after their session closes.
    return async_sessionmaker(engine, expire_on_commit=False, autoflush=False)


async def create_tables(engine: AsyncEngine) -> None:
    from letzpocket.models import Base

    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)


def get_session_factory() -> async_sessionmaker[AsyncSession]:
    if _session_factory is None:
        raise RuntimeError("init_db() has not been called")
    return _session_factory


async def init_db(settings: Settings) -> None:
    """Open the process-wide engine; create tables when auto-create is on."""
    global _engine, _session_factory

    logger.info("database_init", url=_safe_url(settings.database_url))
    _engine = build_engine(settings)
    _session_factory = build_session_factory(_engine)

    if settings.database_auto_create:
        await create_tables(_engine)
        logger.info("database_tables_created")


async def close_db() -> None:
    global _engine, _session_factory

    if _engine is None:
        return
    await _engine.dispose()
    _engine = None
    _session_factory = None
    logger.info("database_closed")


async def check_db_connection() -> bool:
    """Run ``SELECT 1``; False when the engine is missing or unreachable."""
    if _engine is None:
        return False
    try:
        async with _engine.connect() as conn:
            await conn.execute(text("SELECT 1"))
    except (SQLAlchemyError, OSError) as exc:
        logger.error("database_health_check_failed", error=str(exc))
        return False
    return True


def _safe_url(url: str) -> str:
    return make_url(url).render_as_string(hide_password=True)
