"""
Database Package

SQLAlchemy session management, store tables and the reading
repository used by the query services.
"""

from .database import Base, SessionLocal, engine, init_db
from .repository import (
    GroupSummary,
    InMemoryReadingRepository,
    ReadingFilter,
    ReadingRepository,
    SqlReadingRepository,
)

__all__ = [
    "Base",
    "SessionLocal",
    "engine",
    "init_db",
    "GroupSummary",
    "InMemoryReadingRepository",
    "ReadingFilter",
    "ReadingRepository",
    "SqlReadingRepository",
]
