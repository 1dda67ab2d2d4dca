"""SQLAlchemy engine, session factory and declarative base for Prepaidly."""
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker, declarative_base
import logging

from prepaidly.config import config

logger = logging.getLogger(__name__)

Base = declarative_base()


def _create_engine(url: str):
    """Build the engine; SQLite for local runs and tests, PostgreSQL otherwise."""
    if url.startswith("sqlite"):
        logger.info("Using SQLite database")
        # Sessions are handed to request threads and the scheduler thread
        return create_engine(url, connect_args={"check_same_thread": False})

    logger.info("Using PostgreSQL database")
    return create_engine(
        url,
        pool_pre_ping=True,
        pool_size=5,
        max_overflow=10,
        pool_recycle=3600,  # Managed Postgres drops idle connections
        connect_args={"connect_timeout": 10},
    )


engine = _create_engine(config.DATABASE_URL)

SessionLocal = sessionmaker(autocommit=False, autoflush=False, bind=engine)


def get_db():
    """
    Yield a session for one request and close it afterwards.

    Services commit their own units of work; nothing is committed here.
    """
    db = SessionLocal()
    try:
        yield db
    finally:
        db.close()


def init_db():
    """Create any missing tables for the registered models."""
    import prepaidly.models  # noqa: F401

    logger.info(f"Creating tables on {engine.url.render_as_string(hide_password=True)}")
    Base.metadata.create_all(bind=engine)
    logger.info("Database tables ready")
