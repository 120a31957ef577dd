"""
Core Database Package.

Provides centralized database management for the framework.
Modules should use these components instead of creating their own connections.
"""

from core.database.base import Base, TimestampMixin, UUIDPrimaryKey, CreatedAt, UpdatedAt, as_utc
from core.database.engine import create_engine_for
from core.database.session import create_session_factory, init_database

__all__ = [
    # Base
    "Base",
    "TimestampMixin",
    "UUIDPrimaryKey",
    "CreatedAt",
    "UpdatedAt",
    "as_utc",
    # Engine
    "create_engine_for",
    # Session
    "create_session_factory",
    "init_database",
]
