import os
from functools import lru_cache
from sqlmodel import create_engine, SQLModel, Session
from sqlalchemy.dialects import postgresql, sqlite
from sqlalchemy.exc import OperationalError
from tenacity import retry, retry_if_exception_type, stop_after_attempt, wait_exponential
import logging

from collaboration_graph.data_access.models.catalog import Person, Work, Credit
from collaboration_graph.data_access.models.collaboration import (
    CollaborationPair, CollaborationDetail, PathCacheEntry, TrendSnapshot, BatchJobFlag
)

# Configure logging
logger = logging.getLogger(__name__)

# Store calls are retried a bounded number of times when the store is briefly unavailable
retry_on_transient = retry(
    retry=retry_if_exception_type(OperationalError),
    stop=stop_after_attempt(3),
    wait=wait_exponential(multiplier=0.5, min=0.5, max=5),
    reraise=True,
)


def build_engine(database_url: str):
    """Create an engine, with connection pooling for server databases."""
    if database_url.startswith("sqlite"):
        return create_engine(database_url, echo=False, connect_args={"check_same_thread": False})
    return create_engine(
        database_url,
        echo=False,
        pool_pre_ping=True,
        pool_recycle=3600,
        pool_size=5,
        max_overflow=10
    )


@lru_cache
def get_db_engine():
    """Provide the database engine for dependency injection."""
    database_url = os.getenv("DATABASE_URL")
    if not database_url:
        raise ValueError("DATABASE_URL environment variable not set")
    return build_engine(database_url)


def init_db(engine=None):
    """Initialize the database by creating the catalog and collaboration tables."""
    engine = engine or get_db_engine()
    try:
        logger.info("Initializing database tables")
        SQLModel.metadata.create_all(engine)
        logger.info("Database tables created successfully")
    except Exception as e:
        logger.error(f"Failed to initialize database: {str(e)}")
        raise


def dialect_insert(session: Session, model):
    """Return an INSERT construct supporting ON CONFLICT for the bound dialect."""
    table = model.__table__
    if session.get_bind().dialect.name == "postgresql":
        return postgresql.insert(table)
    return sqlite.insert(table)
