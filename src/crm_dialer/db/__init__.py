"""Database module.

Provides:
- SQLAlchemy ORM models for contacts, calls, appointments and profiles
- Async session management with dependency injection
- Repository pattern for data access
"""
from crm_dialer.db.base import (
    Base,
    UUIDMixin,
    TimestampMixin,
    utcnow,
)
from crm_dialer.db.session import (
    get_engine,
    get_session_factory,
    get_db,
    get_db_context,
    init_db,
    close_db,
)

__all__ = [
    "Base",
    "UUIDMixin",
    "TimestampMixin",
    "utcnow",
    "get_engine",
    "get_session_factory",
    "get_db",
    "get_db_context",
    "init_db",
    "close_db",
]
