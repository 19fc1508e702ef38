"""Embedding and writing page chunks into the vector store.

Provides:
- PageChunk: a chunk of page text with its source metadata
- content_fingerprint: SHA-256 over a page's chunk contents, used to detect changes
- point_id: deterministic point id for (url, chunk_index)
- Indexer: embed + upsert chunks, reindex a URL, delete by URL or everything

Point ids are derived from (url, chunk_index) so re-indexing the same position
overwrites the existing point instead of duplicating it.
"""
import hashlib
import logging
import uuid
from dataclasses import dataclass
from typing import Dict, Iterable, List, Optional, Sequence

from campus_rag.config import settings
from campus_rag.embedding import Embedder
from campus_rag.errors import EmbeddingDimensionError, VectorStoreError
from campus_rag.vectorstore import IndexPoint, PointFilter, VectorStore

logger = logging.getLogger(__name__)

POINT_NAMESPACE = uuid.UUID("673938f9-f9cf-448f-a03d-fa958684217a")
UPSERT_BATCH_SIZE = 100
FINGERPRINT_SEPARATOR = "\n\n"


@dataclass
class PageChunk:
    url: str
    content: str
    title: Optional[str] = None
    date: Optional[str] = None
    sport: Optional[str] = None


@dataclass
class DeleteResult:
    """Outcome of a vector-store delete; ``error`` is set when ``ok`` is False."""
    ok: bool
    error: Optional[str] = None


def content_fingerprint(chunks: Iterable[str]) -> str:
    """Stable fingerprint of a page's chunk contents, in order.

    Args:
        chunks: Chunk texts in document order.

    Returns:
        str: Hex SHA-256 digest of the contents joined with a blank line.
    """
    return hashlib.sha256(FINGERPRINT_SEPARATOR.join(chunks).encode("utf-8")).hexdigest()


def point_id(url: str, chunk_index: int) -> str:
    return str(uuid.uuid5(POINT_NAMESPACE, f"{url}::{chunk_index}"))


class Indexer:
    """Writes chunks of one collection into a vector store.

    Args:
        store: Target vector store.
        embedder: Embedding provider.
        collection: Collection name; defaults to settings.VECTOR_COLLECTION.
        vector_size: Expected embedding dimension; defaults to settings.EMBEDDING_DIM.
    """

    def __init__(
        self,
        store: VectorStore,
        embedder: Embedder,
        collection: Optional[str] = None,
        vector_size: Optional[int] = None,
    ) -> None:
        self.store = store
        self.embedder = embedder
        self.collection = collection or settings.VECTOR_COLLECTION
        self.vector_size = vector_size or settings.EMBEDDING_DIM

    def index_chunks(self, chunks: Sequence[PageChunk]) -> int:
        """Embed and upsert chunks.

        Chunk indexes are counted per URL in the order given, so the same page
        always maps to the same point ids.

        Returns:
            int: Number of points written.

        Raises:
            EmbeddingDimensionError: If any vector has the wrong dimension.
                Nothing is written in that case.
            VectorStoreError: If the upsert fails.
        """
        items = [(c, c.content.strip()) for c in chunks]
        items = [(c, t) for c, t in items if t]
        if not items:
            return 0

        vectors = self.embedder.embed([t for _, t in items])
        if len(vectors) != len(items):
            raise EmbeddingDimensionError(None, self.vector_size)
        for vec in vectors:
            if len(vec) != self.vector_size:
                raise EmbeddingDimensionError(len(vec), self.vector_size)

        positions: Dict[str, int] = {}
        points: List[IndexPoint] = []
        for (chunk, content), vec in zip(items, vectors):
            idx = positions.get(chunk.url, 0)
            positions[chunk.url] = idx + 1
            points.append(
                IndexPoint(
                    id=point_id(chunk.url, idx),
                    vector=list(vec),
                    payload={
                        "url": chunk.url,
                        "content": content,
                        "chunk_index": idx,
                        "title": chunk.title,
                        "date": chunk.date,
                        "sport": chunk.sport,
                    },
                )
            )

        for start in range(0, len(points), UPSERT_BATCH_SIZE):
            self.store.upsert(self.collection, points[start : start + UPSERT_BATCH_SIZE])
        logger.info("Indexed %d points into %s", len(points), self.collection)
        return len(points)

    def reindex_url(self, url: str, chunks: Sequence[PageChunk]) -> int:
        """Replace every point of ``url`` with the given chunks.

        Chunks for other URLs are ignored.
        """
        self.store.delete(self.collection, PointFilter.for_url(url))
        return self.index_chunks([c for c in chunks if c.url == url])

    def delete_urls(self, urls: Sequence[str]) -> DeleteResult:
        """Delete all points of the given URLs; store failures are returned, not raised."""
        if not urls:
            return DeleteResult(ok=True)
        try:
            self.store.delete(self.collection, PointFilter(urls=list(urls)))
        except VectorStoreError as e:
            logger.warning("Vector delete failed for %d urls: %s", len(urls), e)
            return DeleteResult(ok=False, error=str(e))
        return DeleteResult(ok=True)

    def delete_all(self) -> DeleteResult:
        """Clear the whole collection; store failures are returned, not raised."""
        try:
            self.store.delete(self.collection, None)
        except VectorStoreError as e:
            logger.warning("Vector delete of collection %s failed: %s", self.collection, e)
            return DeleteResult(ok=False, error=str(e))
        return DeleteResult(ok=True)
