"""
Database Engine Management Module.

Creates async engines from a database URL. The host owns the engine and
disposes it on shutdown; stores only receive a session factory.
"""

import logging

from sqlalchemy.ext.asyncio import AsyncEngine, create_async_engine
from sqlalchemy.pool import StaticPool

_logger = logging.getLogger(__name__)

def create_engine_for(database_url: str, debug: bool = False) -> AsyncEngine:
    """
    Create an async engine for ``database_url``.

    In-memory SQLite URLs use a StaticPool so every session shares the
    same database.

    Raises:
        ValueError: If the URL is empty.
    """
    if not database_url:
        raise ValueError("database_url is not configured")

    if database_url.startswith("sqlite"):
        kwargs: dict = {"connect_args": {"check_same_thread": False}}
        if ":memory:" in database_url or database_url.rstrip("/").endswith("sqlite+aiosqlite:"):
            kwargs["poolclass"] = StaticPool
        engine = create_async_engine(database_url, echo=debug, **kwargs)
    else:
        engine = create_async_engine(
            database_url,
            echo=debug,
            pool_pre_ping=True,
            pool_size=10,
            max_overflow=20,
        )
    _logger.info(f"Database engine created for {engine.url.render_as_string(hide_password=True)}")
    return engine

