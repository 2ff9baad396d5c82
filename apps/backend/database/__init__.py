"""
Database Package
================
Async engine, session factory and the request-scoped session dependency.
"""

from .session import (
    check_database,
    create_tables,
    dispose_engine,
    get_db,
    get_engine,
    get_session_factory,
    init_engine,
)

__all__ = [
    "check_database",
    "create_tables",
    "dispose_engine",
    "get_db",
    "get_engine",
    "get_session_factory",
    "init_engine",
]
