"""
Database connection management.

Provides the SQLAlchemy engine and the token_usage table definition for the
relational backend.
"""

from sqlalchemy import (
    Column,
    DateTime,
    Integer,
    MetaData,
    String,
    Table,
    create_engine,
    func,
    text,
)
from sqlalchemy.engine import Engine

TABLE_NAME = "token_usage"

# Arbitrary key shared by every process creating the schema on PostgreSQL
SCHEMA_LOCK_ID = 48151623

metadata = MetaData()

token_usage = Table(
    TABLE_NAME,
    metadata,
    Column("id", String(255), primary_key=True),
    Column("user_id", String(255), nullable=False),
    Column("user_name", String(255)),
    Column("timestamp", DateTime(timezone=True), server_default=func.now(), index=True),
    Column("model", String(255)),
    Column("prompt_tokens", Integer),
    Column("completion_tokens", Integer),
    Column("total_tokens", Integer),
    Column("persona", String(255)),
)


def normalize_database_url(url: str) -> str:
    """Map hosted-Postgres style URLs onto the psycopg SQLAlchemy driver.

    ``postgres://`` and ``postgresql://`` URLs are rewritten to
    ``postgresql+psycopg://``; anything else is returned unchanged.
    """
    url = url.strip()
    if url.startswith("postgres://"):
        return "postgresql+psycopg://" + url[len("postgres://"):]
    if url.startswith("postgresql://"):
        return "postgresql+psycopg://" + url[len("postgresql://"):]
    return url


def get_engine(database_url: str) -> Engine:
    """Create a SQLAlchemy engine for the given database URL.

    Creating the engine does not open a connection; the first query does.

    Args:
        database_url: SQLAlchemy or hosted-Postgres style connection URL

    Returns:
        Engine with connection health checks enabled
    """
    url = normalize_database_url(database_url)
    if url.startswith("sqlite"):
        # The recorder writes from a worker thread
        return create_engine(url, connect_args={"check_same_thread": False}, future=True)
    return create_engine(url, future=True, pool_pre_ping=True)


def create_schema(engine: Engine) -> None:
    """Create the token_usage table if it doesn't exist.

    Safe to call repeatedly. On PostgreSQL, concurrent workers can race on
    CREATE TABLE and collide on catalog entries, so creation is serialized
    behind an advisory lock.

    Args:
        engine: Engine bound to the relational backend
    """
    if engine.dialect.name.startswith("postgres"):
        with engine.connect() as conn:
            conn.execute(text("SELECT pg_advisory_lock(:lock_id)"), {"lock_id": SCHEMA_LOCK_ID})
            try:
                metadata.create_all(bind=conn, checkfirst=True)
            finally:
                conn.execute(text("SELECT pg_advisory_unlock(:lock_id)"), {"lock_id": SCHEMA_LOCK_ID})
            conn.commit()
        return
    metadata.create_all(bind=engine, checkfirst=True)
