"""Database layer: models, repositories and session management."""

from outreach_agent.db.base import Base, utcnow
from outreach_agent.db.session import (
    close_db,
    create_all,
    create_engine_for_url,
    create_session_factory,
    get_db,
    get_engine,
    get_session_factory,
    init_db,
)

__all__ = [
    "Base",
    "close_db",
    "create_all",
    "create_engine_for_url",
    "create_session_factory",
    "get_db",
    "get_engine",
    "get_session_factory",
    "init_db",
    "utcnow",
]
