"""Database connection for the report dataset.

Key exports:
- init_database(...)    Call at startup to create the engine
- close_database()      Call at shutdown to dispose the engine
- get_session_factory() Session factory for the report sink
- get_db_session()      FastAPI dependency yielding a session
"""

from collections.abc import AsyncGenerator

from sqlalchemy.ext.asyncio import AsyncEngine, AsyncSession, async_sessionmaker, create_async_engine

from license_tracker.observability import get_logger

logger = get_logger(__name__)

# Module-level engine and session factory, initialized by init_database()
_engine: AsyncEngine | None = None
_session_factory: async_sessionmaker[AsyncSession] | None = None


async def init_database(
    database_url: str,
    pool_size: int = 5,
    max_overflow: int = 2,
    pool_timeout: int = 30,
) -> None:
    """Initialize the database engine and session factory.

    Must be called once at application startup before reports are read or
    submitted.

    Args:
        database_url: SQLAlchemy async connection URL.
        pool_size: Connection pool size.
        max_overflow: Max overflow connections above pool_size.
        pool_timeout: Seconds to wait for a connection before raising.
    """
    global _engine, _session_factory  # noqa: PLW0603

    logger.info("Initializing report database engine", pool_size=pool_size, max_overflow=max_overflow)

    engine_options: dict[str, int | bool] = {"echo": False, "pool_pre_ping": True}
    if not database_url.startswith("sqlite"):
        engine_options.update(
            pool_size=pool_size,
            max_overflow=max_overflow,
            pool_timeout=pool_timeout,
        )

    _engine = create_async_engine(database_url, **engine_options)
    _session_factory = async_sessionmaker(
        bind=_engine,
        class_=AsyncSession,
        expire_on_commit=False,
        autoflush=False,
    )

    logger.info("Report database engine initialized")


async def close_database() -> None:
    """Dispose the database engine."""
    global _engine, _session_factory  # noqa: PLW0603

    if _engine is not None:
        logger.info("Disposing report database engine")
        await _engine.dispose()
        _engine = None
        _session_factory = None


def get_session_factory() -> async_sessionmaker[AsyncSession]:
    """Return the session factory.

    Raises:
        RuntimeError: If init_database() has not been called yet.
    """
    if _session_factory is None:
        raise RuntimeError(
            "Report database has not been initialized. "
            "Call init_database() in the application lifespan handler."
        )
    return _session_factory


async def get_db_session() -> AsyncGenerator[AsyncSession, None]:
    """FastAPI dependency that yields a report database session.

    The session is committed when the request succeeds and rolled back
    otherwise.

    Yields:
        AsyncSession: A session connected to the report database.

    Raises:
        RuntimeError: If init_database() has not been called yet.
    """
    async with get_session_factory()() as session:
        try:
            yield session
            await session.commit()
        except Exception:
            await session.rollback()
            raise
