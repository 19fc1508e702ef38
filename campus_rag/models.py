"""Database ORM models.

Defines persistent entities:
- Point: an indexed chunk (deterministic id, payload columns, pgvector embedding).
  Used by the pgvector vector-store backend.
- Page: one crawled URL and its index state machine (PageStatus).
- Conversation / Message: per-user chat history with a rolling summary.
"""
import enum
import uuid
from datetime import datetime, timezone

from pgvector.sqlalchemy import Vector
from sqlalchemy import (
    JSON,
    Boolean,
    Column,
    DateTime,
    Enum,
    ForeignKey,
    Index,
    Integer,
    String,
    Text,
)
from sqlalchemy.orm import relationship

from campus_rag.config import settings
from campus_rag.db import Base


def _utcnow() -> datetime:
    return datetime.now(timezone.utc).replace(tzinfo=None)


def _enum_values(e):
    return [m.value for m in e]


class PageStatus(str, enum.Enum):
    """Index state of a Page row.

    queued -> indexed | skipped | error on the first ingest;
    indexed/reindexed/unchanged -> unchanged | reindexed on later ingests;
    any -> delete_pending when the vector-store delete fails (row kept for retry).
    """
    QUEUED = "queued"
    INDEXED = "indexed"
    REINDEXED = "reindexed"
    UNCHANGED = "unchanged"
    SKIPPED = "skipped"
    ERROR = "error"
    DELETE_PENDING = "delete_pending"


class MessageRole(str, enum.Enum):
    USER = "user"
    ASSISTANT = "assistant"


class Point(Base):
    """Vector-embedded chunk stored by the pgvector backend.

    The primary key is derived from (url, chunk_index), so re-indexing the same
    position overwrites the row instead of duplicating it.

    Notes:
        The embedding dimension is settings.EMBEDDING_DIM and must match the
        configured embedding model.
    """
    __tablename__ = "points"

    id = Column(String(36), primary_key=True)
    collection = Column(String(128), nullable=False)

    # Payload
    url = Column(String(2048), nullable=False)
    chunk_index = Column(Integer, nullable=False, default=0)
    title = Column(String(512), nullable=True)
    date = Column(String(64), nullable=True)
    sport = Column(String(128), nullable=True)
    content = Column(Text, nullable=False)

    embedding = Column(Vector(dim=settings.EMBEDDING_DIM), nullable=False)

    created_at = Column(DateTime, default=_utcnow, nullable=False)

    __table_args__ = (Index("idx_points_collection_url", "collection", "url"),)


class Page(Base):
    """A crawled URL keyed by its normalized form."""
    __tablename__ = "pages"

    id = Column(Integer, primary_key=True, autoincrement=True)
    url = Column(String(2048), nullable=False, unique=True)
    status = Column(
        Enum(PageStatus, name="page_status", native_enum=False, length=32, values_callable=_enum_values),
        nullable=False,
        default=PageStatus.QUEUED,
    )
    content_hash = Column(String(64), nullable=True)
    chunk_count = Column(Integer, nullable=False, default=0)
    last_index_at = Column(DateTime, nullable=True)
    created_at = Column(DateTime, default=_utcnow, nullable=False)


class Conversation(Base):
    """A user's chat thread.

    ``first_message`` is True while the question the conversation was created
    with has been stored but not yet consumed by the answer flow.
    """
    __tablename__ = "conversations"

    id = Column(String(36), primary_key=True, default=lambda: str(uuid.uuid4()))
    user_id = Column(String(128), nullable=False, index=True)
    title = Column(String(256), nullable=False, default="New Conversation")
    summary = Column(Text, nullable=True)
    preview = Column(Text, nullable=True)
    first_message = Column(Boolean, nullable=False, default=False)
    created_at = Column(DateTime, default=_utcnow, nullable=False)

    messages = relationship(
        "Message",
        back_populates="conversation",
        cascade="all, delete-orphan",
        order_by="Message.id",
    )


class Message(Base):
    __tablename__ = "messages"

    id = Column(Integer, primary_key=True, autoincrement=True)
    conversation_id = Column(
        String(36), ForeignKey("conversations.id", ondelete="CASCADE"), nullable=False
    )
    role = Column(
        Enum(MessageRole, name="message_role", native_enum=False, length=16, values_callable=_enum_values),
        nullable=False,
    )
    content = Column(Text, nullable=False)
    summarized = Column(Boolean, nullable=False, default=False)
    meta = Column(JSON, nullable=True)
    created_at = Column(DateTime, default=_utcnow, nullable=False)

    conversation = relationship("Conversation", back_populates="messages")

    __table_args__ = (Index("idx_messages_conversation_summarized", "conversation_id", "summarized"),)
