"""Vector store abstraction with pgvector and in-memory backends.

Provides:
- IndexPoint / SearchHit / PointFilter: the records exchanged with a store
- VectorStore: upsert, search and delete by URL filter within a collection
- PgVectorStore: points table in PostgreSQL, cosine distance via pgvector
  (score = 1 - distance)
- InMemoryVectorStore: process-local backend for development and tests
- get_vector_store: backend selected by settings.VECTOR_BACKEND

Backend exceptions are wrapped in VectorStoreError so callers can recover them
into a page status.
"""
import abc
import logging
import threading
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional, Sequence

from sqlalchemy import bindparam, text
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import sessionmaker

from campus_rag.config import settings
from campus_rag.db import session_scope
from campus_rag.errors import VectorStoreError
from campus_rag.utils import cosine_similarity

logger = logging.getLogger(__name__)


@dataclass
class IndexPoint:
    """A record to store: deterministic id, embedding and payload.

    Payload keys: url, content, chunk_index, title, date, sport.
    """
    id: str
    vector: List[float]
    payload: Dict[str, Any] = field(default_factory=dict)


@dataclass
class SearchHit:
    id: str
    score: float
    payload: Dict[str, Any]


@dataclass
class PointFilter:
    """Match points whose payload url is one of ``urls``.

    A single URL is an exact match, several URLs an any-of match.
    """
    urls: Sequence[str]

    @classmethod
    def for_url(cls, url: str) -> "PointFilter":
        return cls(urls=[url])


class VectorStore(abc.ABC):
    """Interface shared by every vector store backend."""

    @abc.abstractmethod
    def upsert(self, collection: str, points: Sequence[IndexPoint]) -> None:
        """Insert points, overwriting any existing point with the same id."""

    @abc.abstractmethod
    def search(
        self,
        collection: str,
        vector: Sequence[float],
        limit: int,
        filter: Optional[PointFilter] = None,
    ) -> List[SearchHit]:
        """Return up to ``limit`` hits ranked by descending similarity."""

    @abc.abstractmethod
    def delete(self, collection: str, filter: Optional[PointFilter] = None) -> None:
        """Delete points matching filter; ``filter=None`` clears the collection."""


def _vector_literal(vec: Sequence[float]) -> str:
    return "[" + ",".join(f"{float(x):.6f}" for x in vec) + "]"


class PgVectorStore(VectorStore):
    """Points table in PostgreSQL queried with pgvector's cosine operator."""

    def __init__(self, session_factory: Optional[sessionmaker] = None) -> None:
        self.session_factory = session_factory

    def upsert(self, collection: str, points: Sequence[IndexPoint]) -> None:
        if not points:
            return
        sql = text(
            """
            INSERT INTO points (id, collection, url, chunk_index, title, date, sport, content, embedding, created_at)
            VALUES (:id, :collection, :url, :chunk_index, :title, :date, :sport, :content,
                    CAST(:embedding AS vector), now())
            ON CONFLICT (id) DO UPDATE SET
                collection = EXCLUDED.collection,
                url = EXCLUDED.url,
                chunk_index = EXCLUDED.chunk_index,
                title = EXCLUDED.title,
                date = EXCLUDED.date,
                sport = EXCLUDED.sport,
                content = EXCLUDED.content,
                embedding = EXCLUDED.embedding
            """
        )
        rows = [
            {
                "id": p.id,
                "collection": collection,
                "url": p.payload.get("url"),
                "chunk_index": p.payload.get("chunk_index", 0),
                "title": p.payload.get("title"),
                "date": p.payload.get("date"),
                "sport": p.payload.get("sport"),
                "content": p.payload.get("content", ""),
                "embedding": _vector_literal(p.vector),
            }
            for p in points
        ]
        try:
            with session_scope(self.session_factory) as db:
                db.execute(sql, rows)
        except SQLAlchemyError as e:
            raise VectorStoreError(f"Upsert into {collection} failed", cause=e) from e

    def search(
        self,
        collection: str,
        vector: Sequence[float],
        limit: int,
        filter: Optional[PointFilter] = None,
    ) -> List[SearchHit]:
        where = "collection = :collection"
        params: Dict[str, Any] = {
            "collection": collection,
            "qvec": _vector_literal(vector),
            "limit": int(limit),
        }
        if filter is not None:
            where += " AND url IN :urls"
            params["urls"] = list(filter.urls)
        sql = text(
            f"""
            SELECT id, url, chunk_index, title, date, sport, content,
                (embedding <=> CAST(:qvec AS vector)) AS distance
            FROM points
            WHERE {where}
            ORDER BY embedding <=> CAST(:qvec AS vector)
            LIMIT :limit
            """
        )
        if filter is not None:
            sql = sql.bindparams(bindparam("urls", expanding=True))
        try:
            with session_scope(self.session_factory) as db:
                rows = db.execute(sql, params).mappings().all()
        except SQLAlchemyError as e:
            raise VectorStoreError(f"Search in {collection} failed", cause=e) from e

        hits: List[SearchHit] = []
        for r in rows:
            hits.append(
                SearchHit(
                    id=r["id"],
                    score=1.0 - float(r["distance"]),
                    payload={
                        "url": r["url"],
                        "chunk_index": r["chunk_index"],
                        "title": r["title"],
                        "date": r["date"],
                        "sport": r["sport"],
                        "content": r["content"],
                    },
                )
            )
        return hits

    def delete(self, collection: str, filter: Optional[PointFilter] = None) -> None:
        if filter is None:
            sql = text("DELETE FROM points WHERE collection = :collection")
            params: Dict[str, Any] = {"collection": collection}
        else:
            if not filter.urls:
                return
            sql = text("DELETE FROM points WHERE collection = :collection AND url IN :urls").bindparams(
                bindparam("urls", expanding=True)
            )
            params = {"collection": collection, "urls": list(filter.urls)}
        try:
            with session_scope(self.session_factory) as db:
                result = db.execute(sql, params)
                logger.debug("Deleted %s points from %s", result.rowcount, collection)
        except SQLAlchemyError as e:
            raise VectorStoreError(f"Delete from {collection} failed", cause=e) from e


class InMemoryVectorStore(VectorStore):
    """Dict-backed store; search is a linear cosine scan."""

    def __init__(self) -> None:
        self._collections: Dict[str, Dict[str, IndexPoint]] = {}
        self._lock = threading.Lock()

    def upsert(self, collection: str, points: Sequence[IndexPoint]) -> None:
        with self._lock:
            bucket = self._collections.setdefault(collection, {})
            for p in points:
                bucket[p.id] = IndexPoint(id=p.id, vector=list(p.vector), payload=dict(p.payload))

    def search(
        self,
        collection: str,
        vector: Sequence[float],
        limit: int,
        filter: Optional[PointFilter] = None,
    ) -> List[SearchHit]:
        with self._lock:
            candidates = list(self._collections.get(collection, {}).values())
        if filter is not None:
            allowed = set(filter.urls)
            candidates = [p for p in candidates if p.payload.get("url") in allowed]
        hits = [
            SearchHit(id=p.id, score=cosine_similarity(vector, p.vector), payload=dict(p.payload))
            for p in candidates
        ]
        hits.sort(key=lambda h: h.score, reverse=True)
        return hits[:limit]

    def delete(self, collection: str, filter: Optional[PointFilter] = None) -> None:
        with self._lock:
            bucket = self._collections.get(collection)
            if bucket is None:
                return
            if filter is None:
                bucket.clear()
                return
            allowed = set(filter.urls)
            for pid in [pid for pid, p in bucket.items() if p.payload.get("url") in allowed]:
                del bucket[pid]

    def count(self, collection: str) -> int:
        with self._lock:
            return len(self._collections.get(collection, {}))


def get_vector_store() -> VectorStore:
    """Return the backend selected by settings.VECTOR_BACKEND ("pgvector" or "memory")."""
    backend = settings.VECTOR_BACKEND.lower()
    if backend == "memory":
        return InMemoryVectorStore()
    if backend == "pgvector":
        return PgVectorStore()
    raise ValueError(f"Unknown VECTOR_BACKEND: {settings.VECTOR_BACKEND}")
