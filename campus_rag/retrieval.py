"""Retrieval and prompt-context assembly.

This module implements:
- Retriever: embed the question, search the vector store, drop hits below the score floor
- AcceptedEmbeddings: accumulator of embeddings already admitted into a context
- build_context: greedy embedding-similarity dedup, snippet trimming and a hard
  character budget over the ranked chunks

Vector search uses pgvector cosine distance (similarity = 1 - distance), or the
in-memory backend's cosine scan.
"""
import logging
from dataclasses import dataclass, field
from typing import List, Optional, Sequence

from campus_rag.config import settings
from campus_rag.embedding import Embedder
from campus_rag.utils import cosine_similarity
from campus_rag.vectorstore import SearchHit, VectorStore

logger = logging.getLogger(__name__)

DESCRIPTION_CHARS = 200


@dataclass
class RetrievedChunk:
    content: str
    url: str
    score: float
    title: Optional[str] = None


@dataclass
class SourceRef:
    title: str
    url: str
    description: str

    def as_dict(self) -> dict:
        return {"title": self.title, "url": self.url, "description": self.description}


class AcceptedEmbeddings:
    """Embeddings of chunks already accepted into a context.

    Passed into build_context and returned from it, so a caller can keep
    deduplicating across several calls.
    """

    def __init__(self, vectors: Optional[Sequence[Sequence[float]]] = None) -> None:
        self.vectors: List[List[float]] = [list(v) for v in vectors or ()]

    def __len__(self) -> int:
        return len(self.vectors)

    def is_duplicate(self, vector: Sequence[float], threshold: float) -> bool:
        return any(cosine_similarity(vector, seen) > threshold for seen in self.vectors)

    def add(self, vector: Sequence[float]) -> None:
        self.vectors.append(list(vector))


@dataclass
class BuiltContext:
    context: str
    sources: List[SourceRef] = field(default_factory=list)
    accepted: AcceptedEmbeddings = field(default_factory=AcceptedEmbeddings)


class Retriever:
    """Vector search over one collection with a minimum-score floor.

    Args:
        store: Vector store to search.
        embedder: Embedding provider for questions.
        collection: Collection name; defaults to settings.VECTOR_COLLECTION.
        min_score: Hits scoring below this are discarded; defaults to settings.MIN_SCORE.
    """

    def __init__(
        self,
        store: VectorStore,
        embedder: Embedder,
        collection: Optional[str] = None,
        min_score: Optional[float] = None,
    ) -> None:
        self.store = store
        self.embedder = embedder
        self.collection = collection or settings.VECTOR_COLLECTION
        self.min_score = settings.MIN_SCORE if min_score is None else min_score

    def embed_query(self, question: str) -> List[float]:
        vectors = self.embedder.embed([question])
        if not vectors:
            raise ValueError("Failed to embed question")
        return vectors[0]

    def search(self, vector: Sequence[float], limit: int) -> List[RetrievedChunk]:
        """Top ``limit`` hits with non-empty content and url, highest score first."""
        hits: List[SearchHit] = self.store.search(self.collection, vector, limit)
        out: List[RetrievedChunk] = []
        for h in hits:
            content = (h.payload.get("content") or "").strip()
            url = h.payload.get("url") or ""
            if not content or not url:
                continue
            out.append(RetrievedChunk(content=content, url=url, score=float(h.score), title=h.payload.get("title")))
        return out

    def retrieve(self, question: str, k: Optional[int] = None) -> List[RetrievedChunk]:
        """Embed the question and return the hits at or above the score floor.

        Args:
            question: User question.
            k: Number of candidates requested from the store; defaults to settings.TOP_K.

        Returns:
            List[RetrievedChunk]: Qualifying hits in descending score order.
        """
        k = k or settings.TOP_K
        candidates = self.search(self.embed_query(question), k)
        kept = [c for c in candidates if c.score >= self.min_score]
        logger.debug("Retrieved %d candidates, %d above floor %.2f", len(candidates), len(kept), self.min_score)
        return kept


def _snippet(content: str, cutoff: int) -> str:
    window = content[:cutoff]
    last_period = window.rfind(".")
    return window[: last_period + 1] if last_period > 0 else window


def _source_ref(chunk: RetrievedChunk, snippet: str) -> SourceRef:
    description = " ".join(snippet.split())
    if len(description) > DESCRIPTION_CHARS:
        description = description[:DESCRIPTION_CHARS].rstrip() + "..."
    return SourceRef(title=chunk.title or chunk.url, url=chunk.url, description=description)


def build_context(
    chunks: Sequence[RetrievedChunk],
    embedder: Embedder,
    max_chars: Optional[int] = None,
    similarity_threshold: Optional[float] = None,
    accepted: Optional[AcceptedEmbeddings] = None,
    snippet_cutoff: Optional[int] = None,
) -> BuiltContext:
    """Assemble a prompt context from ranked chunks.

    Chunks are taken in the given order. Each non-empty chunk is embedded and
    rejected when its cosine similarity to any accepted chunk exceeds
    ``similarity_threshold``. Accepted content is cut to ``snippet_cutoff``
    characters and trimmed back to the last period in that window, then
    formatted as ``"Source: <url>\\n<snippet>\\n---\\n"``. The first block
    that would push the context past ``max_chars`` stops the scan.

    Args:
        chunks: Retrieved chunks, highest relevance first.
        embedder: Embedding provider used for dedup.
        max_chars: Context budget; defaults to settings.CONTEXT_MAX_CHARS.
        similarity_threshold: Dedup threshold; defaults to settings.DEDUP_SIMILARITY_THRESHOLD.
        accepted: Embeddings accepted by earlier calls; a new accumulator when None.
        snippet_cutoff: Per-chunk cutoff; defaults to settings.SNIPPET_CUTOFF_CHARS.

    Returns:
        BuiltContext: Context text, one SourceRef per accepted chunk, and the accumulator.
    """
    max_chars = settings.CONTEXT_MAX_CHARS if max_chars is None else max_chars
    threshold = settings.DEDUP_SIMILARITY_THRESHOLD if similarity_threshold is None else similarity_threshold
    cutoff = settings.SNIPPET_CUTOFF_CHARS if snippet_cutoff is None else snippet_cutoff
    accepted = accepted if accepted is not None else AcceptedEmbeddings()

    parts: List[str] = []
    length = 0
    sources: List[SourceRef] = []

    for chunk in chunks:
        if not chunk.content or not chunk.content.strip():
            continue

        vectors = embedder.embed([chunk.content])
        if not vectors:
            continue
        vector = vectors[0]
        if accepted.is_duplicate(vector, threshold):
            continue

        snippet = _snippet(chunk.content, cutoff)
        block = f"Source: {chunk.url}\n{snippet}\n---\n"
        if length + len(block) > max_chars:
            break

        parts.append(block)
        length += len(block)
        sources.append(_source_ref(chunk, snippet))
        accepted.add(vector)

    return BuiltContext(context="".join(parts), sources=sources, accepted=accepted)
