"""Database setup and session utilities for SQLAlchemy.

This module centralizes engine/session initialization, metadata base, and helpers:
- init_db: Ensures the pgvector extension exists, checks the stored vector size,
  and creates the tables plus the IVFFLAT index over points.embedding.
- session_scope: Context-managed transactional scope for imperative workflows.

Configuration is read from campus_rag.config.settings.DATABASE_URL.
"""
import logging
from contextlib import contextmanager
from typing import Iterator, Optional

from sqlalchemy import create_engine, text
from sqlalchemy.orm import Session, declarative_base, sessionmaker

from campus_rag.config import settings
from campus_rag.errors import EmbeddingDimensionError

logger = logging.getLogger(__name__)

# SQLAlchemy setup
engine = create_engine(settings.DATABASE_URL, pool_pre_ping=True, future=True)
SessionLocal = sessionmaker(autocommit=False, autoflush=False, bind=engine, future=True)
Base = declarative_base()


IVFFLAT_LISTS = 100


def _embedding_dimension(conn) -> Optional[int]:
    """Declared dimension of points.embedding, or None when the table is new."""
    row = conn.execute(
        text(
            """
            SELECT a.atttypmod
            FROM pg_attribute a
            JOIN pg_class c ON c.oid = a.attrelid
            WHERE c.relname = 'points' AND a.attname = 'embedding' AND NOT a.attisdropped
            """
        )
    ).first()
    if row is None or row[0] is None or row[0] < 0:
        return None
    return int(row[0])


def init_db() -> None:
    """Initialize the pgvector extension, the tables and the vector index.

    The points table is created with settings.EMBEDDING_DIM dimensions. An
    existing points table declared with another dimension is left alone and
    reported, since every upsert into it would fail.

    This function is idempotent and safe to run multiple times.

    Raises:
        EmbeddingDimensionError: If points.embedding has a different dimension.
    """
    # Import models after Base is defined
    from campus_rag import models  # noqa: F401

    with engine.begin() as conn:
        conn.execute(text("CREATE EXTENSION IF NOT EXISTS vector"))
        existing = _embedding_dimension(conn)
        if existing is not None and existing != settings.EMBEDDING_DIM:
            raise EmbeddingDimensionError(existing, settings.EMBEDDING_DIM)

        Base.metadata.create_all(bind=conn)
        # ivfflat needs ANALYZE after bulk loads for good recall
        conn.execute(
            text(
                "CREATE INDEX IF NOT EXISTS idx_points_embedding_ivfflat "
                f"ON points USING ivfflat (embedding vector_cosine_ops) WITH (lists = {IVFFLAT_LISTS})"
            )
        )
    logger.info("Database initialized (vector size %d)", settings.EMBEDDING_DIM)


@contextmanager
def session_scope(factory: Optional[sessionmaker] = None) -> Iterator[Session]:
    """Provide a transactional scope around a series of operations.

    Args:
        factory: Session factory to use; defaults to SessionLocal.

    Yields:
        Session: A SQLAlchemy session.

    Notes:
        - Commits on successful exit.
        - Rolls back and re-raises on exception.
        - Always closes the session at the end.
    """
    session = (factory or SessionLocal)()
    try:
        yield session
        session.commit()
    except Exception:
        session.rollback()
        raise
    finally:
        session.close()
