"""
Database Configuration and Session Management

SQLAlchemy engine, session factory and table initialization for the
reading store written by the external ingestion pipeline.
"""

import logging
import os
from pathlib import Path

from sqlalchemy import create_engine
from sqlalchemy.orm import declarative_base, sessionmaker

logger = logging.getLogger(__name__)

DATA_DIR = Path(__file__).parent.parent.parent / "data"

# Database URL - SQLite unless DATABASE_URL points elsewhere
DATABASE_URL = os.getenv("DATABASE_URL")
if not DATABASE_URL:
    DATA_DIR.mkdir(exist_ok=True)
    DATABASE_URL = f"sqlite:///{DATA_DIR}/roadwatch.db"


def create_db_engine(url: str = DATABASE_URL):
    """Create an engine; SQLite connections may be shared across threads"""
    connect_args = {"check_same_thread": False} if url.startswith("sqlite") else {}
    return create_engine(url, connect_args=connect_args, echo=False)


engine = create_db_engine()

# Session factory
SessionLocal = sessionmaker(autocommit=False, autoflush=False, bind=engine)

# Base class for ORM models
Base = declarative_base()


def init_db(bind=None):
    """
    Create all tables

    The production store is owned by the ingestion pipeline; this is
    used for local development and tests.
    """
    from roadwatch.database import models  # noqa: F401

    Base.metadata.create_all(bind=bind or engine)
    logger.info("[DB] Database initialized at: %s", bind.url if bind is not None else DATABASE_URL)
