import logging
from typing import Any, Dict
from sqlalchemy.ext.asyncio import AsyncEngine, create_async_engine, AsyncSession, async_sessionmaker
from servicehub.core.config import settings

logger = logging.getLogger(__name__)


def engine_options(url: str) -> Dict[str, Any]:
    """Pool settings for the given backend; SQLite takes none of them."""
    if url.startswith("sqlite"):
        return {}
    options: Dict[str, Any] = {"pool_size": 5, "max_overflow": 5, "pool_pre_ping": True}
    # Neon requires SSL; ignore locally
    if "neon.tech" in url:
        options["connect_args"] = {"ssl": "require"}
    return options


def build_engine(url: str) -> AsyncEngine:
    return create_async_engine(url, **engine_options(url))


def build_sessionmaker(bind: AsyncEngine) -> async_sessionmaker:
    # Engines keep using rows after commit, so nothing is expired
    return async_sessionmaker(bind, class_=AsyncSession, expire_on_commit=False)


engine = build_engine(settings.async_database_url)
AsyncSessionLocal = build_sessionmaker(engine)


async def get_db():
    """FastAPI dependency that provides a database session."""
    async with AsyncSessionLocal() as session:
        try:
            yield session
            await session.commit()
        except Exception:
            await session.rollback()
            raise


async def init_db():
    """Create all tables. Called at app startup."""
    from servicehub.db.db_models import Base
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    logger.info("Database schema ready (%s)", engine.url.get_backend_name())


async def close_db():
    """Dispose engine. Called at app shutdown."""
    await engine.dispose()
