"""Async engine and session factory for the intake database.

Both are process-wide singletons built on first use from
:func:`~survey_db.config.load_database_settings`; the server lifespan
calls :func:`dispose_engine` on shutdown.  Sessions use
``expire_on_commit=False`` so rows loaded in a request stay readable after
the submit route's explicit commit.
"""

import logging
from typing import Any

from sqlalchemy.ext.asyncio import (
    AsyncEngine,
    AsyncSession,
    async_sessionmaker,
    create_async_engine,
)

from survey_db.config import DatabaseSettings, load_database_settings

logger = logging.getLogger(__name__)

_engine: AsyncEngine | None = None
_session_factory: async_sessionmaker[AsyncSession] | None = None


def connect_args(settings: DatabaseSettings) -> dict[str, Any]:
    """asyncpg ``connect()`` arguments for every pooled connection."""
    args: dict[str, Any] = {
        "server_settings": {
            "application_name": settings.application_name,
            "statement_timeout": str(settings.statement_timeout_ms),
        },
    }
    if settings.pgbouncer:
        args["statement_cache_size"] = 0
    return args


def get_engine(settings: DatabaseSettings | None = None) -> AsyncEngine:
    """Return the engine, creating it from ``settings`` (or the env) once."""
    global _engine
    if _engine is None:
        settings = settings or load_database_settings()
        _engine = create_async_engine(
            settings.async_url,
            echo=settings.echo,
            pool_size=settings.pool_size,
            max_overflow=settings.max_overflow,
            pool_pre_ping=True,
            connect_args=connect_args(settings),
        )
        logger.info(
            "Intake database engine created for %s (pool %d+%d)",
            settings.url.render_as_string(hide_password=True),
            settings.pool_size, settings.max_overflow,
        )
    return _engine


def get_session_factory() -> async_sessionmaker[AsyncSession]:
    global _session_factory
    if _session_factory is None:
        _session_factory = async_sessionmaker(
            bind=get_engine(),
            class_=AsyncSession,
            expire_on_commit=False,
        )
    return _session_factory


async def dispose_engine() -> None:
    """Close pooled connections; the next ``get_engine()`` starts afresh."""
    global _engine, _session_factory
    if _engine is not None:
        await _engine.dispose()
        _engine = None
        _session_factory = None
